"""
Runtime settings for the MFA engine.

All values are read from environment variables with sensible defaults.
The encryption key is a secret and is loaded separately by SecretVault.
"""
import os
from dataclasses import dataclass


@dataclass(frozen=True)
class MFASettings:
    """Tunable product parameters for enrollment and verification."""
    issuer: str = "TWOFACTOR"
    challenge_ttl_seconds: int = 600
    max_attempts: int = 5
    backup_code_count: int = 10
    backup_code_bcrypt_rounds: int = 10
    totp_interval: int = 30
    totp_digits: int = 6
    totp_valid_window: int = 1

    @classmethod
    def from_env(cls) -> "MFASettings":
        """
        Build settings from MFA_* environment variables.

        Returns:
            MFASettings with defaults for unset variables.
        """
        return cls(
            issuer=os.getenv("MFA_ISSUER", "TWOFACTOR"),
            challenge_ttl_seconds=int(os.getenv("MFA_CHALLENGE_TTL_SECONDS", "600")),
            max_attempts=int(os.getenv("MFA_MAX_ATTEMPTS", "5")),
            backup_code_count=int(os.getenv("MFA_BACKUP_CODE_COUNT", "10")),
            backup_code_bcrypt_rounds=int(os.getenv("MFA_BACKUP_CODE_BCRYPT_ROUNDS", "10")),
            totp_interval=int(os.getenv("MFA_TOTP_INTERVAL", "30")),
            totp_digits=int(os.getenv("MFA_TOTP_DIGITS", "6")),
            totp_valid_window=int(os.getenv("MFA_TOTP_VALID_WINDOW", "1")),
        )
