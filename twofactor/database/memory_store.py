"""
In-process storage for the MFA engine.

Used for tests and single-process deployments. Every conditional transition
is evaluated under one lock, so the compare-and-swap semantics match the SQL
store.
"""
import threading
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Dict, Optional, Sequence

from ..auth.ports import BackupCodeSet, Challenge, TwoFactorSecret


class InMemorySecretStore:
    """Thread-safe SecretStore backed by dicts."""

    def __init__(self):
        self._lock = threading.Lock()
        self._secrets: Dict[str, TwoFactorSecret] = {}
        self._codes: Dict[str, BackupCodeSet] = {}

    def get_secret(self, account_id: str) -> Optional[TwoFactorSecret]:
        with self._lock:
            return self._secrets.get(account_id)

    def put_secret(self, secret: TwoFactorSecret) -> None:
        with self._lock:
            self._secrets[secret.account_id] = secret

    def enable_secret(self, account_id: str, encrypted_seed: str, enabled_at: datetime) -> bool:
        with self._lock:
            current = self._secrets.get(account_id)
            if current is None or current.enabled or current.encrypted_seed != encrypted_seed:
                return False
            self._secrets[account_id] = replace(current, enabled=True, enabled_at=enabled_at)
            return True

    def delete_secret(self, account_id: str) -> None:
        with self._lock:
            self._secrets.pop(account_id, None)

    def get_backup_codes(self, account_id: str) -> Optional[BackupCodeSet]:
        with self._lock:
            return self._codes.get(account_id)

    def put_backup_codes(self, account_id: str, hashes: Sequence[str]) -> None:
        with self._lock:
            self._codes[account_id] = BackupCodeSet(account_id, tuple(hashes), uuid.uuid4().hex)

    def delete_backup_codes(self, account_id: str) -> None:
        with self._lock:
            self._codes.pop(account_id, None)

    def compare_and_swap_backup_codes(
        self, account_id: str, expected_version: str, hashes: Sequence[str]
    ) -> bool:
        with self._lock:
            current = self._codes.get(account_id)
            if current is None or current.version != expected_version:
                return False
            self._codes[account_id] = BackupCodeSet(account_id, tuple(hashes), uuid.uuid4().hex)
            return True


class InMemoryChallengeStore:
    """Thread-safe ChallengeStore backed by a dict."""

    def __init__(self):
        self._lock = threading.Lock()
        self._challenges: Dict[str, Challenge] = {}

    def put(self, challenge: Challenge) -> None:
        with self._lock:
            self._challenges[challenge.token] = challenge

    def get(self, token: str) -> Optional[Challenge]:
        with self._lock:
            return self._challenges.get(token)

    def consume(self, token: str, now: datetime) -> bool:
        with self._lock:
            challenge = self._challenges.get(token)
            if challenge is None or not challenge.is_live(now):
                return False
            self._challenges[token] = replace(challenge, consumed_at=now)
            return True

    def increment_attempt(self, token: str, now: datetime) -> Optional[int]:
        with self._lock:
            challenge = self._challenges.get(token)
            if challenge is None or not challenge.is_live(now):
                return None
            count = challenge.attempt_count + 1
            self._challenges[token] = replace(challenge, attempt_count=count)
            return count

    def delete_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [t for t, c in self._challenges.items() if c.expires_at <= now]
            for token in expired:
                del self._challenges[token]
            return len(expired)
