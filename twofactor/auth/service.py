"""
Wiring for the MFA engine.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from .backup_codes import BackupCodeStore
from .challenges import ChallengeRegistry, utc_now
from .config import MFASettings
from .enrollment import EnrollmentCoordinator
from .ports import ChallengeStore, PasswordVerifier, SecretStore, SessionIssuer
from .totp import TotpEngine
from .vault import SecretVault
from .verification import VerificationCoordinator


@dataclass
class MFAService:
    """The exposed operations, grouped for dependency injection."""
    enrollment: EnrollmentCoordinator
    verification: VerificationCoordinator
    challenges: ChallengeRegistry


def build_mfa_service(
    secret_store: SecretStore,
    challenge_store: ChallengeStore,
    password_verifier: PasswordVerifier,
    session_issuer: SessionIssuer,
    vault: Optional[SecretVault] = None,
    settings: Optional[MFASettings] = None,
    clock: Callable[[], datetime] = utc_now,
) -> MFAService:
    """
    Assemble coordinators around the given collaborators.

    Args:
        secret_store: Storage for secrets and backup codes.
        challenge_store: Storage for challenges.
        password_verifier: Re-checks the password on disable.
        session_issuer: Mints the session after verification.
        vault: Seed cipher. Defaults to a vault keyed from MFA_ENCRYPTION_KEY.
        settings: Product parameters. Defaults to MFASettings.from_env().
        clock: Returns the current UTC time.

    Returns:
        MFAService
    """
    settings = settings or MFASettings.from_env()
    vault = vault or SecretVault()
    totp = TotpEngine(
        interval=settings.totp_interval,
        digits=settings.totp_digits,
        valid_window=settings.totp_valid_window,
    )
    backup_codes = BackupCodeStore(secret_store, bcrypt_rounds=settings.backup_code_bcrypt_rounds)
    challenges = ChallengeRegistry(
        challenge_store,
        ttl_seconds=settings.challenge_ttl_seconds,
        max_attempts=settings.max_attempts,
        clock=clock,
    )

    return MFAService(
        enrollment=EnrollmentCoordinator(
            secret_store, vault, totp, backup_codes, password_verifier,
            settings=settings, clock=clock,
        ),
        verification=VerificationCoordinator(
            challenges, secret_store, vault, totp, backup_codes, session_issuer,
        ),
        challenges=challenges,
    )
