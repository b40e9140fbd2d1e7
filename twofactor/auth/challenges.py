"""
Ephemeral second-factor challenges.

A challenge is created after a successful password check and must be
satisfied with a TOTP or backup code before a session is issued. Tokens are
single-use; expiry is enforced lazily on lookup.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from .ports import Challenge, ChallengeStore
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ChallengeRegistry:
    """
    Creates, looks up and consumes challenges.

    Args:
        store: Challenge persistence with conditional updates.
        ttl_seconds: Lifetime of a challenge.
        max_attempts: Attempts allowed per challenge before it is burned.
        clock: Returns the current UTC time.
    """

    def __init__(
        self,
        store: ChallengeStore,
        ttl_seconds: int = 600,
        max_attempts: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.ttl = timedelta(seconds=ttl_seconds)
        self.max_attempts = max_attempts
        self.clock = clock

    def create(
        self,
        account_id: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """
        Start a challenge for an account that passed the first factor.

        Args:
            account_id: Account identifier.
            ip: Client address, forwarded to the session issuer.
            user_agent: Client user agent, forwarded to the session issuer.

        Returns:
            Unguessable token (256 bits, url-safe).
        """
        now = self.clock()
        token = secrets.token_urlsafe(32)
        self.store.put(Challenge(
            token=token,
            account_id=account_id,
            created_at=now,
            expires_at=now + self.ttl,
            ip=ip,
            user_agent=user_agent,
        ))
        logger.debug(f"Created challenge {mask_secret(token)} for account {account_id}")
        return token

    def lookup(self, token: str) -> Optional[Challenge]:
        """
        Find a live challenge.

        Returns:
            The challenge, or None if it does not exist, has expired or was
            already consumed. The three cases are not distinguished.
        """
        if not token:
            return None
        challenge = self.store.get(token)
        if challenge is None or not challenge.is_live(self.clock()):
            return None
        return challenge

    def increment_attempt(self, token: str) -> Optional[int]:
        """
        Count a verification attempt.

        Burns the challenge once the count exceeds max_attempts.

        Returns:
            The new attempt count, or None if the challenge is no longer live.
        """
        now = self.clock()
        count = self.store.increment_attempt(token, now)
        if count is not None and count > self.max_attempts:
            self.store.consume(token, now)
            logger.warning(f"Challenge {mask_secret(token)} burned after {count - 1} attempts")
        return count

    def is_exhausted(self, count: int) -> bool:
        return count > self.max_attempts

    def consume(self, token: str) -> bool:
        """
        Mark a challenge used.

        Returns:
            True only for the caller that performed the transition.
        """
        return self.store.consume(token, self.clock())

    def purge_expired(self) -> int:
        """Delete expired challenges. Returns the number removed."""
        removed = self.store.delete_expired(self.clock())
        if removed:
            logger.info(f"Purged {removed} expired challenges")
        return removed
