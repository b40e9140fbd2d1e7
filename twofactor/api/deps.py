"""
FastAPI Dependencies for the MFA API.

Provides:
- Authentication dependencies
- Rate limiting (Redis-backed)
- Database and MFA service singletons
"""
import os
import time
import logging
from typing import Optional, Dict

import redis
from fastapi import Depends, status, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from ..auth.service import MFAService, build_mfa_service
from ..database.mfa_db import MfaDB, get_mfa_db
from .errors import APIError

logger = logging.getLogger(__name__)


# ============================================
# Redis Client
# ============================================

_redis_client: Optional[redis.Redis] = None


def get_redis_client() -> Optional[redis.Redis]:
    """
    Get Redis client singleton.

    Returns None if Redis is not configured or unavailable.
    """
    global _redis_client

    if _redis_client is not None:
        return _redis_client

    host = os.getenv("REDIS_HOST", "localhost")
    port = int(os.getenv("REDIS_PORT", "6379"))
    password = os.getenv("REDIS_PASSWORD", "") or None
    db = int(os.getenv("REDIS_DB", "0"))

    try:
        _redis_client = redis.Redis(
            host=host,
            port=port,
            password=password,
            db=db,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        # Test connection
        _redis_client.ping()
        logger.info(f"Redis connected: {host}:{port}")
        return _redis_client
    except redis.ConnectionError as e:
        logger.warning(f"Redis connection failed: {e}. Rate limiting will use in-memory fallback.")
        _redis_client = None
        return None


# Security scheme
security = HTTPBearer(auto_error=False)


# ============================================
# Database / Service Dependencies
# ============================================

def get_db() -> MfaDB:
    """Get database connection."""
    return get_mfa_db()


_mfa_service: Optional[MFAService] = None


def get_mfa_service() -> MFAService:
    """Get the MFA service singleton, wired to the SQL store."""
    global _mfa_service
    if _mfa_service is None:
        db = get_mfa_db()
        _mfa_service = build_mfa_service(
            secret_store=db,
            challenge_store=db,
            password_verifier=db,
            session_issuer=db,
        )
    return _mfa_service


# ============================================
# Authentication Dependencies
# ============================================

async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: MfaDB = Depends(get_db),
) -> Dict:
    """
    Validate bearer token and return current user.

    Raises:
        APIError: If token is missing, invalid, or expired.
    """
    if credentials is None:
        raise APIError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            code="authentication_required",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.validate_session(credentials.credentials)

    if user is None:
        raise APIError(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            code="invalid_session",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return user


# ============================================
# Auth Rate Limiting (IP-based for unauthenticated endpoints)
# ============================================

class AuthRateLimiter:
    """
    Rate limiter for login and second-factor endpoints (IP-based).

    Uses Redis with in-memory fallback. This sits in front of the engine's
    per-challenge attempt ceiling.
    """

    def __init__(self, redis_client: Optional[redis.Redis] = None):
        self.redis = redis_client
        self.login_limit = int(os.getenv("RATE_LIMIT_LOGIN_PER_15_MINUTES", "10"))
        self.mfa_verify_limit = int(os.getenv("RATE_LIMIT_MFA_VERIFY_PER_MINUTE", "10"))
        # In-memory fallback storage
        self._memory_store: Dict[str, list] = {}

    def _get_count(self, key: str, window_seconds: int) -> int:
        """Get current count for a key."""
        if self.redis is not None:
            try:
                count = self.redis.get(f"twofactor:auth_ratelimit:{key}")
                return int(count) if count else 0
            except redis.RedisError as e:
                logger.warning(f"Redis error in auth rate limit check: {e}")

        # In-memory fallback
        now = time.time()
        if key not in self._memory_store:
            return 0
        self._memory_store[key] = [
            ts for ts in self._memory_store[key]
            if now - ts < window_seconds
        ]
        return len(self._memory_store[key])

    def _increment(self, key: str, window_seconds: int) -> int:
        """Increment counter for a key."""
        if self.redis is not None:
            try:
                full_key = f"twofactor:auth_ratelimit:{key}"
                pipe = self.redis.pipeline()
                pipe.incr(full_key)
                pipe.expire(full_key, window_seconds)
                results = pipe.execute()
                return results[0]
            except redis.RedisError as e:
                logger.warning(f"Redis error in auth rate limit increment: {e}")

        # In-memory fallback
        now = time.time()
        if key not in self._memory_store:
            self._memory_store[key] = []
        self._memory_store[key] = [
            ts for ts in self._memory_store[key]
            if now - ts < window_seconds
        ]
        self._memory_store[key].append(now)
        return len(self._memory_store[key])

    def check_login_limit(self, ip: str) -> tuple[bool, int]:
        """
        Check if IP is within login rate limit.

        Returns:
            Tuple of (allowed, remaining_requests)
        """
        count = self._get_count(f"login:{ip}", 900)  # 15 minute window
        remaining = self.login_limit - count
        return remaining > 0, max(0, remaining)

    def check_mfa_verify_limit(self, ip: str) -> tuple[bool, int]:
        count = self._get_count(f"mfa_verify:{ip}", 60)
        remaining = self.mfa_verify_limit - count
        return remaining > 0, max(0, remaining)

    def record_login(self, ip: str) -> None:
        self._increment(f"login:{ip}", 900)

    def record_mfa_verify(self, ip: str) -> None:
        self._increment(f"mfa_verify:{ip}", 60)


# Singleton auth rate limiter
_auth_rate_limiter: Optional[AuthRateLimiter] = None


def get_auth_rate_limiter() -> AuthRateLimiter:
    """Get singleton auth rate limiter."""
    global _auth_rate_limiter
    if _auth_rate_limiter is None:
        _auth_rate_limiter = AuthRateLimiter(get_redis_client())
    return _auth_rate_limiter


async def check_login_rate_limit(
    request: Request,
    limiter: AuthRateLimiter = Depends(get_auth_rate_limiter),
) -> None:
    """
    Dependency to check login rate limit by IP.

    Raises APIError 429 if limit exceeded.
    """
    ip = request.client.host if request.client else "unknown"

    allowed, _ = limiter.check_login_limit(ip)
    if not allowed:
        raise APIError(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many login attempts from this IP. Try again later.",
            code="rate_limited",
            headers={"Retry-After": "900", "X-RateLimit-Remaining": "0"},
        )

    limiter.record_login(ip)


async def check_mfa_verify_rate_limit(
    request: Request,
    limiter: AuthRateLimiter = Depends(get_auth_rate_limiter),
) -> None:
    """
    Dependency to check second-factor rate limit by IP.

    Raises APIError 429 if limit exceeded.
    """
    ip = request.client.host if request.client else "unknown"

    allowed, _ = limiter.check_mfa_verify_limit(ip)
    if not allowed:
        raise APIError(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many verification attempts from this IP. Try again later.",
            code="rate_limited",
            headers={"Retry-After": "60", "X-RateLimit-Remaining": "0"},
        )

    limiter.record_mfa_verify(ip)
