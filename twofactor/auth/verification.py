"""
Second-factor verification for a pending login challenge.

Flow:
1. Look up the challenge (missing, expired and consumed look the same).
2. Burn it if the account has no usable secret.
3. Count the attempt; burn on exceeding the ceiling.
4. Try the TOTP code, then fall back to a backup code.
5. Issue the session, and only then consume the challenge.
"""
import logging
from dataclasses import dataclass
from typing import Any, Optional

from . import backup_codes as backup_code_format
from .backup_codes import BackupCodeStore
from .challenges import ChallengeRegistry
from .ports import SecretStore, SessionIssuer
from .results import DecryptionFailed, MFAError, RaceConditionConflict, Result
from .totp import TotpEngine
from .vault import SecretVault
from ..utils.secrets import mask_secret

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VerifiedLogin:
    account_id: str
    session: Any
    method: str


class VerificationCoordinator:
    """Arbitrates VerifyChallenge(token, code)."""

    def __init__(
        self,
        challenges: ChallengeRegistry,
        secret_store: SecretStore,
        vault: SecretVault,
        totp: TotpEngine,
        backup_codes: BackupCodeStore,
        session_issuer: SessionIssuer,
    ):
        self.challenges = challenges
        self.secret_store = secret_store
        self.vault = vault
        self.totp = totp
        self.backup_codes = backup_codes
        self.session_issuer = session_issuer

    def _is_well_formed(self, code: Optional[str]) -> bool:
        return self.totp.is_well_formed(code) or backup_code_format.is_well_formed(code)

    def verify(
        self,
        token: str,
        code: str,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Result[VerifiedLogin]:
        """
        Verify a second-factor code against a challenge.

        Args:
            token: Challenge token returned by the first-factor login.
            code: 6-digit TOTP code or 8-character backup code.
            ip: Client address for the new session. Falls back to the
                address captured when the challenge was created.
            user_agent: Client user agent for the new session.

        Returns:
            Result with VerifiedLogin on success.
        """
        if not self._is_well_formed(code):
            return Result.failure(MFAError.VALIDATION_ERROR)

        challenge = self.challenges.lookup(token)
        if challenge is None:
            return Result.failure(MFAError.CHALLENGE_EXPIRED)

        account_id = challenge.account_id
        secret = self.secret_store.get_secret(account_id)
        if secret is None or not secret.enabled:
            self.challenges.consume(token)
            logger.warning(f"Challenge {mask_secret(token)} burned: no 2FA configured for account {account_id}")
            return Result.failure(MFAError.NOT_CONFIGURED)

        count = self.challenges.increment_attempt(token)
        if count is None:
            return Result.failure(MFAError.CHALLENGE_EXPIRED)
        if self.challenges.is_exhausted(count):
            return Result.failure(MFAError.TOO_MANY_ATTEMPTS)

        try:
            seed = self.vault.decrypt(secret.encrypted_seed)
        except DecryptionFailed:
            logger.error(f"Stored MFA seed for account {account_id} could not be decrypted")
            self.challenges.consume(token)
            return Result.failure(MFAError.NOT_CONFIGURED)

        if self.totp.verify(seed, code, self.challenges.clock()):
            method = "totp"
        else:
            try:
                redeemed = self.backup_codes.redeem(account_id, code)
            except RaceConditionConflict:
                logger.warning(f"Backup code redemption conflicted twice for account {account_id}")
                return Result.failure(MFAError.RACE_CONDITION_CONFLICT)
            if not redeemed:
                logger.warning(f"Invalid MFA code for account {account_id} (attempt {count})")
                return Result.failure(MFAError.INCORRECT_CODE)
            method = "backup_code"

        metadata = {
            "ip": ip or challenge.ip,
            "user_agent": user_agent or challenge.user_agent,
        }
        try:
            session = self.session_issuer.create(account_id, metadata)
        except Exception as e:
            # Challenge stays live so the client can retry without a new login
            logger.error(f"Session creation failed for account {account_id}: {e}")
            return Result.failure(MFAError.SESSION_FAILED)

        if not self.challenges.consume(token):
            # Another request finished this challenge first
            revoke = getattr(self.session_issuer, "revoke", None)
            if callable(revoke):
                revoke(session)
            logger.warning(f"Challenge {mask_secret(token)} was consumed concurrently")
            return Result.failure(MFAError.CHALLENGE_EXPIRED)

        logger.info(f"Second factor verified for account {account_id} via {method}")
        return Result.success(VerifiedLogin(account_id=account_id, session=session, method=method))
