"""
Enrollment lifecycle: setup -> confirm -> regenerate -> disable.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, List, Optional

from .backup_codes import BackupCodeStore
from .challenges import utc_now
from .config import MFASettings
from .ports import PasswordVerifier, SecretStore, TwoFactorSecret
from .results import DecryptionFailed, MFAError, Result
from .totp import TotpEngine
from .vault import SecretVault

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SetupData:
    """Pending enrollment returned to the client for QR rendering."""
    seed: str = field(repr=False)
    provisioning_uri: str = field(repr=False)


@dataclass(frozen=True)
class TwoFactorStatus:
    enabled: bool
    has_secret: bool
    backup_codes_remaining: int
    enabled_at: Optional[datetime] = None


class EnrollmentCoordinator:
    """
    Orchestrates TOTP enrollment for an account.

    Example usage:
        enrollment = EnrollmentCoordinator(store, vault, totp, backup_codes, passwords)
        setup = enrollment.start_setup(account_id, "user@example.com").value
        codes = enrollment.confirm_setup(account_id, "123456").value
    """

    def __init__(
        self,
        secret_store: SecretStore,
        vault: SecretVault,
        totp: TotpEngine,
        backup_codes: BackupCodeStore,
        password_verifier: PasswordVerifier,
        settings: Optional[MFASettings] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.secret_store = secret_store
        self.vault = vault
        self.totp = totp
        self.backup_codes = backup_codes
        self.password_verifier = password_verifier
        self.settings = settings or MFASettings()
        self.clock = clock

    def start_setup(self, account_id: str, label: str) -> Result[SetupData]:
        """
        Begin enrollment with a fresh seed.

        The seed is stored encrypted with enabled=False until confirmed.
        Calling again before confirmation replaces the pending seed.

        Args:
            account_id: Account identifier.
            label: Account label shown in the authenticator app.

        Returns:
            Result with SetupData, or ALREADY_ENABLED.
        """
        existing = self.secret_store.get_secret(account_id)
        if existing is not None and existing.enabled:
            return Result.failure(MFAError.ALREADY_ENABLED)

        seed = self.vault.generate_seed()
        self.secret_store.put_secret(TwoFactorSecret(
            account_id=account_id,
            encrypted_seed=self.vault.encrypt(seed),
            enabled=False,
        ))
        self.backup_codes.clear(account_id)

        uri = self.totp.provisioning_uri(seed, label, self.settings.issuer)
        logger.info(f"MFA setup initiated for account {account_id}")
        return Result.success(SetupData(seed=seed, provisioning_uri=uri))

    def confirm_setup(self, account_id: str, code: str) -> Result[List[str]]:
        """
        Enable 2FA once the user proves their app produces valid codes.

        Args:
            account_id: Account identifier.
            code: TOTP code from the authenticator app.

        Returns:
            Result with the plaintext backup codes, shown exactly once.
        """
        if not self.totp.is_well_formed(code):
            return Result.failure(MFAError.VALIDATION_ERROR)

        pending = self.secret_store.get_secret(account_id)
        if pending is None:
            return Result.failure(MFAError.NOT_CONFIGURED)
        if pending.enabled:
            return Result.failure(MFAError.ALREADY_ENABLED)

        try:
            seed = self.vault.decrypt(pending.encrypted_seed)
        except DecryptionFailed:
            logger.error(f"Stored MFA seed for account {account_id} could not be decrypted")
            return Result.failure(MFAError.NOT_CONFIGURED)

        if not self.totp.verify(seed, code, self.clock()):
            logger.warning(f"MFA setup confirmation failed for account {account_id}")
            return Result.failure(MFAError.INCORRECT_CODE)

        if not self.secret_store.enable_secret(account_id, pending.encrypted_seed, self.clock()):
            # A concurrent confirm won, or setup was restarted with a new seed
            current = self.secret_store.get_secret(account_id)
            if current is None:
                return Result.failure(MFAError.NOT_CONFIGURED)
            if current.enabled:
                return Result.failure(MFAError.ALREADY_ENABLED)
            return Result.failure(MFAError.INCORRECT_CODE)

        codes = self.backup_codes.generate(self.settings.backup_code_count)
        self.backup_codes.replace(account_id, codes)

        logger.info(f"MFA enabled for account {account_id}")
        return Result.success(codes)

    def regenerate_backup_codes(self, account_id: str) -> Result[List[str]]:
        """
        Replace all backup codes with a new batch. Old codes stop working.

        Returns:
            Result with the new plaintext codes, or NOT_ENABLED.
        """
        secret = self.secret_store.get_secret(account_id)
        if secret is None or not secret.enabled:
            return Result.failure(MFAError.NOT_ENABLED)

        codes = self.backup_codes.generate(self.settings.backup_code_count)
        self.backup_codes.replace(account_id, codes)

        logger.info(f"Backup codes regenerated for account {account_id}")
        return Result.success(codes)

    def disable(self, account_id: str, password: str) -> Result[None]:
        """
        Turn 2FA off after re-checking the account password.

        Args:
            account_id: Account identifier.
            password: Current account password.

        Returns:
            Result with no value, UNAUTHORIZED or NOT_ENABLED.
        """
        if not password or not self.password_verifier.verify(account_id, password):
            logger.warning(f"MFA disable rejected for account {account_id}: password check failed")
            return Result.failure(MFAError.UNAUTHORIZED)

        if self.secret_store.get_secret(account_id) is None:
            return Result.failure(MFAError.NOT_ENABLED)

        self.secret_store.delete_secret(account_id)
        self.backup_codes.clear(account_id)

        logger.info(f"MFA disabled for account {account_id}")
        return Result.success()

    def status(self, account_id: str) -> TwoFactorStatus:
        secret = self.secret_store.get_secret(account_id)
        enabled = bool(secret and secret.enabled)
        return TwoFactorStatus(
            enabled=enabled,
            has_secret=secret is not None,
            backup_codes_remaining=self.backup_codes.count(account_id) if enabled else 0,
            enabled_at=secret.enabled_at if secret else None,
        )
