"""
SQL storage for the MFA engine.

This module provides the reference implementation of every collaborator the
engine needs:
- TwoFactorSecret and BackupCodeSet persistence (SecretStore)
- Challenge persistence with conditional updates (ChallengeStore)
- Password re-verification against the host users table (PasswordVerifier)
- Opaque session tokens (SessionIssuer)

Single-use transitions are conditional UPDATE statements whose rowcount
decides the winner; nothing is read-then-written blindly.

SECURITY NOTE: Seeds are stored only as Fernet ciphertext and backup codes
only as bcrypt hashes.
"""
import json
import uuid
import secrets
import logging
from typing import Optional, Dict, Sequence
from datetime import datetime, timedelta, timezone
from contextlib import contextmanager

import bcrypt
from sqlalchemy import (
    create_engine, select, update, delete,
    Column, String, Text, DateTime, Boolean, Integer, Index,
)
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.orm import sessionmaker, declarative_base
from sqlalchemy.pool import QueuePool

from ..auth.ports import TwoFactorSecret, BackupCodeSet, Challenge
from ..utils.secrets import get_database_url

logger = logging.getLogger(__name__)

Base = declarative_base()


def _utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite returns naive datetimes; all stored times are UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _new_version() -> str:
    return uuid.uuid4().hex


# =============================================================================
# DATABASE MODELS
# =============================================================================

class UserRow(Base):
    """Host application account (first factor only)."""
    __tablename__ = "users"

    user_id = Column(String(36), primary_key=True)
    email = Column(String(255), unique=True, nullable=False)
    password_hash = Column(String(255), nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)


class TwoFactorSecretRow(Base):
    __tablename__ = "two_factor_secrets"

    account_id = Column(String(36), primary_key=True)
    encrypted_seed = Column(Text, nullable=False)
    enabled = Column(Boolean, default=False, nullable=False)
    enabled_at = Column(DateTime(timezone=True), nullable=True)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class BackupCodeSetRow(Base):
    __tablename__ = "backup_code_sets"

    account_id = Column(String(36), primary_key=True)
    hashes = Column(Text, nullable=False)  # JSON array of bcrypt hashes
    version = Column(String(32), nullable=False)  # uuid4 hex, replaced on every write
    updated_at = Column(DateTime(timezone=True), nullable=False)


class ChallengeRow(Base):
    __tablename__ = "mfa_challenges"

    token = Column(String(64), primary_key=True)
    account_id = Column(String(36), nullable=False, index=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    consumed_at = Column(DateTime(timezone=True), nullable=True)
    attempt_count = Column(Integer, nullable=False, default=0)
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)

    __table_args__ = (
        Index('idx_mfa_challenges_expires', 'expires_at'),
    )


class SessionRow(Base):
    __tablename__ = "sessions"

    session_token = Column(String(64), primary_key=True)
    account_id = Column(String(36), nullable=False, index=True)
    ip = Column(String(64), nullable=True)
    user_agent = Column(String(255), nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=False)


# =============================================================================
# DATABASE MANAGER
# =============================================================================

class MfaDB:
    """
    SQLAlchemy-backed storage for secrets, backup codes, challenges and sessions.

    Example usage:
        mfa_db = MfaDB()
        mfa_db.init_schema()

        user_id = mfa_db.create_user("user@example.com", hash_password("pw"))
        mfa_db.put_secret(TwoFactorSecret(user_id, ciphertext))
    """

    def __init__(self, connection_string: Optional[str] = None, session_hours: int = 24):
        """
        Initialize database connection.

        Args:
            connection_string: SQLAlchemy URL. Uses environment variables if
                               not provided.
            session_hours: Lifetime of sessions created by create().
        """
        if connection_string is None:
            connection_string = get_database_url()

        engine_kwargs = {"pool_pre_ping": True}
        if not connection_string.startswith("sqlite"):
            engine_kwargs.update(
                poolclass=QueuePool,
                pool_size=10,
                max_overflow=20,
                pool_timeout=30,
                pool_recycle=300,
            )

        self.engine = create_engine(connection_string, **engine_kwargs)
        self.Session = sessionmaker(bind=self.engine)
        self.session_hours = session_hours

    @contextmanager
    def get_session(self):
        """
        Get a database session with automatic cleanup.

        Usage:
            with mfa_db.get_session() as session:
                result = session.execute(query)
        """
        session = self.Session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_schema(self) -> None:
        """Create tables if they do not exist."""
        Base.metadata.create_all(self.engine)
        logger.info("MFA database schema initialized")

    # ==========================================
    # Users (first factor)
    # ==========================================

    def create_user(self, email: str, password_hash: str) -> str:
        """
        Create a new user account.

        Raises:
            ValueError: If email already exists.
        """
        user_id = str(uuid.uuid4())
        email = email.lower().strip()

        with self.get_session() as session:
            exists = session.execute(
                select(UserRow.user_id).where(UserRow.email == email)
            ).first()
            if exists:
                raise ValueError(f"User with email '{email}' already exists")

            session.add(UserRow(
                user_id=user_id,
                email=email,
                password_hash=password_hash,
                is_active=True,
                created_at=datetime.now(timezone.utc),
            ))

        logger.info(f"Created user: {email} (id={user_id})")
        return user_id

    def get_user_by_email(self, email: str) -> Optional[Dict]:
        with self.get_session() as session:
            row = session.execute(
                select(UserRow).where(UserRow.email == email.lower().strip())
            ).scalar_one_or_none()
            if row is None:
                return None
            return {
                "user_id": row.user_id,
                "email": row.email,
                "password_hash": row.password_hash,
                "is_active": row.is_active,
            }

    def get_user_by_id(self, user_id: str) -> Optional[Dict]:
        with self.get_session() as session:
            row = session.get(UserRow, user_id)
            if row is None:
                return None
            return {
                "user_id": row.user_id,
                "email": row.email,
                "password_hash": row.password_hash,
                "is_active": row.is_active,
            }

    def verify(self, account_id: str, password: str) -> bool:
        """PasswordVerifier: re-check the account password."""
        user = self.get_user_by_id(account_id)
        if user is None or not user["is_active"]:
            return False
        return verify_password(password, user["password_hash"])

    # ==========================================
    # Two-factor secrets
    # ==========================================

    def get_secret(self, account_id: str) -> Optional[TwoFactorSecret]:
        with self.get_session() as session:
            row = session.get(TwoFactorSecretRow, account_id)
            if row is None:
                return None
            return TwoFactorSecret(
                account_id=row.account_id,
                encrypted_seed=row.encrypted_seed,
                enabled=row.enabled,
                enabled_at=_utc(row.enabled_at),
            )

    def put_secret(self, secret: TwoFactorSecret) -> None:
        """Insert or overwrite the secret for an account."""
        with self.get_session() as session:
            session.merge(TwoFactorSecretRow(
                account_id=secret.account_id,
                encrypted_seed=secret.encrypted_seed,
                enabled=secret.enabled,
                enabled_at=secret.enabled_at,
                updated_at=datetime.now(timezone.utc),
            ))
        logger.debug(f"Stored MFA secret for account {secret.account_id}: enabled={secret.enabled}")

    def enable_secret(self, account_id: str, encrypted_seed: str, enabled_at: datetime) -> bool:
        """
        Enable a pending secret.

        Only succeeds while the row is still pending with the seed the caller
        verified against, so exactly one of two racing confirmations wins.

        Returns:
            True if this call enabled the secret.
        """
        with self.get_session() as session:
            result = session.execute(
                update(TwoFactorSecretRow)
                .where(
                    TwoFactorSecretRow.account_id == account_id,
                    TwoFactorSecretRow.enabled.is_(False),
                    TwoFactorSecretRow.encrypted_seed == encrypted_seed,
                )
                .values(
                    enabled=True,
                    enabled_at=enabled_at,
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def delete_secret(self, account_id: str) -> None:
        with self.get_session() as session:
            session.execute(
                delete(TwoFactorSecretRow).where(TwoFactorSecretRow.account_id == account_id)
            )

    # ==========================================
    # Backup codes
    # ==========================================

    def get_backup_codes(self, account_id: str) -> Optional[BackupCodeSet]:
        with self.get_session() as session:
            row = session.get(BackupCodeSetRow, account_id)
            if row is None:
                return None
            return BackupCodeSet(
                account_id=row.account_id,
                hashes=tuple(json.loads(row.hashes)),
                version=row.version,
            )

    def put_backup_codes(self, account_id: str, hashes: Sequence[str]) -> None:
        """Replace the set wholesale under a fresh version, in one upsert."""
        values = {
            "hashes": json.dumps(list(hashes)),
            "version": _new_version(),
            "updated_at": datetime.now(timezone.utc),
        }
        insert = sqlite_insert if self.engine.dialect.name == "sqlite" else pg_insert
        stmt = insert(BackupCodeSetRow).values(account_id=account_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["account_id"], set_=values)
        with self.get_session() as session:
            session.execute(stmt)

    def delete_backup_codes(self, account_id: str) -> None:
        with self.get_session() as session:
            session.execute(
                delete(BackupCodeSetRow).where(BackupCodeSetRow.account_id == account_id)
            )

    def compare_and_swap_backup_codes(
        self, account_id: str, expected_version: str, hashes: Sequence[str]
    ) -> bool:
        """
        Write a reduced set only if the stored version is unchanged.

        Returns:
            True if this write won.
        """
        with self.get_session() as session:
            result = session.execute(
                update(BackupCodeSetRow)
                .where(
                    BackupCodeSetRow.account_id == account_id,
                    BackupCodeSetRow.version == expected_version,
                )
                .values(
                    hashes=json.dumps(list(hashes)),
                    version=_new_version(),
                    updated_at=datetime.now(timezone.utc),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    # ==========================================
    # Challenges
    # ==========================================

    def put(self, challenge: Challenge) -> None:
        with self.get_session() as session:
            session.add(ChallengeRow(
                token=challenge.token,
                account_id=challenge.account_id,
                created_at=challenge.created_at,
                expires_at=challenge.expires_at,
                consumed_at=challenge.consumed_at,
                attempt_count=challenge.attempt_count,
                ip=challenge.ip,
                user_agent=challenge.user_agent,
            ))

    def get(self, token: str) -> Optional[Challenge]:
        with self.get_session() as session:
            row = session.get(ChallengeRow, token)
            if row is None:
                return None
            return Challenge(
                token=row.token,
                account_id=row.account_id,
                created_at=_utc(row.created_at),
                expires_at=_utc(row.expires_at),
                consumed_at=_utc(row.consumed_at),
                attempt_count=row.attempt_count,
                ip=row.ip,
                user_agent=row.user_agent,
            )

    def consume(self, token: str, now: datetime) -> bool:
        """Transition a live challenge to consumed. True for the single winner."""
        with self.get_session() as session:
            result = session.execute(
                update(ChallengeRow)
                .where(
                    ChallengeRow.token == token,
                    ChallengeRow.consumed_at.is_(None),
                    ChallengeRow.expires_at > now,
                )
                .values(consumed_at=now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1

    def increment_attempt(self, token: str, now: datetime) -> Optional[int]:
        with self.get_session() as session:
            result = session.execute(
                update(ChallengeRow)
                .where(
                    ChallengeRow.token == token,
                    ChallengeRow.consumed_at.is_(None),
                    ChallengeRow.expires_at > now,
                )
                .values(attempt_count=ChallengeRow.attempt_count + 1)
                .returning(ChallengeRow.attempt_count)
                .execution_options(synchronize_session=False)
            )
            return result.scalar_one_or_none()

    def delete_expired(self, now: datetime) -> int:
        with self.get_session() as session:
            result = session.execute(
                delete(ChallengeRow)
                .where(ChallengeRow.expires_at <= now)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount

    # ==========================================
    # Sessions
    # ==========================================

    def create(self, account_id: str, metadata: Dict[str, Optional[str]]) -> Dict:
        """
        SessionIssuer: create a new session for an account.

        Returns:
            Dict with session_token (64-char hex) and expires_at.
        """
        session_token = secrets.token_hex(32)
        now = datetime.now(timezone.utc)
        expires_at = now + timedelta(hours=self.session_hours)

        with self.get_session() as session:
            session.add(SessionRow(
                session_token=session_token,
                account_id=account_id,
                ip=metadata.get("ip"),
                user_agent=metadata.get("user_agent"),
                is_active=True,
                created_at=now,
                expires_at=expires_at,
            ))

        logger.debug(f"Created session for account {account_id}, expires {expires_at}")
        return {"session_token": session_token, "expires_at": expires_at}

    def revoke(self, issued: Dict) -> None:
        self.invalidate_session(issued["session_token"])

    def validate_session(self, session_token: str) -> Optional[Dict]:
        """
        Validate a session token.

        Returns:
            User dict if valid, None if invalid/expired.
        """
        now = datetime.now(timezone.utc)
        with self.get_session() as session:
            row = session.execute(
                select(UserRow.user_id, UserRow.email)
                .join(SessionRow, SessionRow.account_id == UserRow.user_id)
                .where(
                    SessionRow.session_token == session_token,
                    SessionRow.is_active.is_(True),
                    SessionRow.expires_at > now,
                    UserRow.is_active.is_(True),
                )
            ).first()
            if row is None:
                return None
            return {"user_id": row.user_id, "email": row.email}

    def invalidate_session(self, session_token: str) -> None:
        with self.get_session() as session:
            session.execute(
                update(SessionRow)
                .where(SessionRow.session_token == session_token)
                .values(is_active=False)
                .execution_options(synchronize_session=False)
            )
        logger.debug("Invalidated session")


# ==========================================
# Password Hashing Utilities
# ==========================================

def hash_password(password: str, rounds: int = 12) -> str:
    """
    Hash a password using bcrypt.

    Args:
        password: Plain text password.
        rounds: bcrypt cost factor.

    Returns:
        Bcrypt hash string.
    """
    salt = bcrypt.gensalt(rounds=rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify a password against its hash.

    Returns:
        True if password matches, False otherwise.
    """
    return bcrypt.checkpw(
        password.encode('utf-8'),
        password_hash.encode('utf-8')
    )


# Singleton instance
_mfa_db_instance: Optional[MfaDB] = None


def get_mfa_db() -> MfaDB:
    """
    Get singleton MfaDB instance.

    Returns:
        MfaDB instance.
    """
    global _mfa_db_instance
    if _mfa_db_instance is None:
        _mfa_db_instance = MfaDB()
    return _mfa_db_instance
