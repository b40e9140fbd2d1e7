"""
Pytest configuration and shared fixtures for twofactor tests.

This module provides common test fixtures for:
- A controllable UTC clock
- Vault keys and low-cost bcrypt settings
- In-memory and SQLite-backed stores
- Mock password verifier and session issuer
"""
import pytest
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import MagicMock

# Make the package importable without installation
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from cryptography.fernet import Fernet

from twofactor.auth.config import MFASettings
from twofactor.auth.service import build_mfa_service
from twofactor.auth.vault import SecretVault
from twofactor.database.memory_store import InMemorySecretStore, InMemoryChallengeStore
from twofactor.database.mfa_db import MfaDB

# 12:00:05 UTC, five seconds into a 30-second TOTP step
START_TIME = datetime(2026, 1, 15, 12, 0, 5, tzinfo=timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = START_TIME):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now = self.now + timedelta(seconds=seconds)


# ============================================
# Engine Fixtures
# ============================================

@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def fernet_key():
    return Fernet.generate_key()


@pytest.fixture
def vault(fernet_key):
    return SecretVault(fernet_key)


@pytest.fixture
def settings():
    """Product defaults with the cheapest bcrypt cost to keep tests fast."""
    return MFASettings(backup_code_bcrypt_rounds=4)


@pytest.fixture
def secret_store():
    return InMemorySecretStore()


@pytest.fixture
def challenge_store():
    return InMemoryChallengeStore()


@pytest.fixture
def password_verifier():
    """Accepts only the password 'correct-horse'."""
    mock = MagicMock()
    mock.verify.side_effect = lambda account_id, password: password == "correct-horse"
    return mock


@pytest.fixture
def session_issuer():
    mock = MagicMock()
    mock.create.side_effect = lambda account_id, metadata: {
        "session_token": f"session-for-{account_id}",
        "expires_at": START_TIME + timedelta(hours=24),
    }
    return mock


@pytest.fixture
def service(secret_store, challenge_store, password_verifier, session_issuer, vault, settings, clock):
    return build_mfa_service(
        secret_store=secret_store,
        challenge_store=challenge_store,
        password_verifier=password_verifier,
        session_issuer=session_issuer,
        vault=vault,
        settings=settings,
        clock=clock,
    )


@pytest.fixture
def enrolled_account(service, clock):
    """
    An account with 2FA enabled.

    Returns:
        Tuple of (account_id, seed, backup_codes).
    """
    account_id = "550e8400-e29b-41d4-a716-446655440000"
    setup = service.enrollment.start_setup(account_id, "test@example.com").value
    code = service.enrollment.totp.code_at(setup.seed, clock())
    codes = service.enrollment.confirm_setup(account_id, code).value
    return account_id, setup.seed, codes


# ============================================
# Database Fixtures
# ============================================

@pytest.fixture
def mfa_db(tmp_path):
    """
    SQLite-backed MfaDB in a temporary directory.
    Automatically cleaned up after test completes.
    """
    db = MfaDB(f"sqlite:///{tmp_path / 'mfa.db'}")
    db.init_schema()
    yield db
    db.engine.dispose()


@pytest.fixture
def sql_service(mfa_db, vault, settings, clock):
    """The engine wired to MfaDB for every collaborator."""
    return build_mfa_service(
        secret_store=mfa_db,
        challenge_store=mfa_db,
        password_verifier=mfa_db,
        session_issuer=mfa_db,
        vault=vault,
        settings=settings,
        clock=clock,
    )
