"""
Multi-factor authentication engine.

This package provides:
- SecretVault: authenticated encryption of TOTP seeds
- TotpEngine: RFC 6238 codes with drift tolerance
- BackupCodeStore: single-use recovery codes
- ChallengeRegistry: short-lived second-factor challenges
- EnrollmentCoordinator / VerificationCoordinator: the exposed operations
"""
from .backup_codes import BackupCodeStore
from .challenges import ChallengeRegistry
from .config import MFASettings
from .enrollment import EnrollmentCoordinator, SetupData, TwoFactorStatus
from .results import MFAError, Result, DecryptionFailed, RaceConditionConflict
from .service import MFAService, build_mfa_service
from .totp import TotpEngine
from .vault import SecretVault
from .verification import VerificationCoordinator, VerifiedLogin

__all__ = [
    "BackupCodeStore",
    "ChallengeRegistry",
    "MFASettings",
    "EnrollmentCoordinator",
    "SetupData",
    "TwoFactorStatus",
    "MFAError",
    "Result",
    "DecryptionFailed",
    "RaceConditionConflict",
    "MFAService",
    "build_mfa_service",
    "TotpEngine",
    "SecretVault",
    "VerificationCoordinator",
    "VerifiedLogin",
]
