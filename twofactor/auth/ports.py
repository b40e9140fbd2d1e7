"""
Typed records and collaborator protocols for the MFA engine.

The engine owns no storage, password check or session minting. It talks to
those collaborators through the protocols below; concrete implementations
live in twofactor.database.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple


# ============================================
# Records
# ============================================

@dataclass(frozen=True)
class TwoFactorSecret:
    """Encrypted TOTP seed and enrollment state for one account."""
    account_id: str
    encrypted_seed: str = field(repr=False)
    enabled: bool = False
    enabled_at: Optional[datetime] = None


@dataclass(frozen=True)
class BackupCodeSet:
    """
    Hashed backup codes for one account.

    version is an opaque token replaced on every write and never reused,
    so a set that was deleted and recreated never matches a stale read.
    """
    account_id: str
    hashes: Tuple[str, ...]
    version: str = ""


@dataclass(frozen=True)
class Challenge:
    """Pending second-factor challenge for one login attempt."""
    token: str = field(repr=False)
    account_id: str
    created_at: datetime
    expires_at: datetime
    consumed_at: Optional[datetime] = None
    attempt_count: int = 0
    ip: Optional[str] = None
    user_agent: Optional[str] = None

    def is_live(self, now: datetime) -> bool:
        return self.consumed_at is None and now < self.expires_at


# ============================================
# Collaborators
# ============================================

class SecretStore(Protocol):
    """Persistence for TwoFactorSecret and BackupCodeSet."""

    def get_secret(self, account_id: str) -> Optional[TwoFactorSecret]: ...

    def put_secret(self, secret: TwoFactorSecret) -> None: ...

    def enable_secret(self, account_id: str, encrypted_seed: str, enabled_at: datetime) -> bool:
        """Enable the pending secret only if it is still pending with this seed."""
        ...

    def delete_secret(self, account_id: str) -> None: ...

    def get_backup_codes(self, account_id: str) -> Optional[BackupCodeSet]: ...

    def put_backup_codes(self, account_id: str, hashes: Sequence[str]) -> None:
        """Overwrite the set wholesale under a fresh version."""
        ...

    def delete_backup_codes(self, account_id: str) -> None: ...

    def compare_and_swap_backup_codes(
        self, account_id: str, expected_version: str, hashes: Sequence[str]
    ) -> bool:
        """Write hashes only if the stored version still equals expected_version."""
        ...


class ChallengeStore(Protocol):
    """Persistence for Challenge records with conditional transitions."""

    def put(self, challenge: Challenge) -> None: ...

    def get(self, token: str) -> Optional[Challenge]: ...

    def consume(self, token: str, now: datetime) -> bool:
        """Set consumed_at only if unset and unexpired. True for the single winner."""
        ...

    def increment_attempt(self, token: str, now: datetime) -> Optional[int]:
        """Atomically bump attempt_count on a live challenge; None if not live."""
        ...

    def delete_expired(self, now: datetime) -> int: ...


class PasswordVerifier(Protocol):
    def verify(self, account_id: str, password: str) -> bool: ...


class SessionIssuer(Protocol):
    def create(self, account_id: str, metadata: Dict[str, Optional[str]]) -> Any: ...
