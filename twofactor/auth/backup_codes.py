"""
Backup code generation, hashing and single-use redemption.

Codes are 8 uppercase hex characters, shown to the user once and stored only
as bcrypt hashes. Redemption persists the reduced set with a compare-and-swap
keyed on the set version, so two requests racing on the same code produce
exactly one winner.
"""
import logging
import re
import secrets
from typing import List, Sequence, Tuple

import bcrypt

from .ports import SecretStore
from .results import RaceConditionConflict

logger = logging.getLogger(__name__)

CODE_LENGTH = 8
CODE_PATTERN = re.compile(r"^[0-9A-F]{8}$")


def normalize_backup_code(code: str) -> str:
    """
    Normalize a user-typed backup code.

    Removes surrounding whitespace, inner spaces and dashes (codes may be
    displayed as XXXX-XXXX) and uppercases the rest.
    """
    if not code:
        return ""
    return code.strip().replace("-", "").replace(" ", "").upper()


def is_well_formed(code: str) -> bool:
    return bool(CODE_PATTERN.match(normalize_backup_code(code)))


class BackupCodeStore:
    """
    Backup codes for one engine instance.

    Example usage:
        store = BackupCodeStore(secret_store)
        codes = store.generate(10)
        store.replace(account_id, codes)
        store.redeem(account_id, codes[0])   # True
        store.redeem(account_id, codes[0])   # False
    """

    def __init__(self, secret_store: SecretStore, bcrypt_rounds: int = 10):
        self.secret_store = secret_store
        self.bcrypt_rounds = bcrypt_rounds

    # ==========================================
    # Pure operations
    # ==========================================

    def generate(self, n: int) -> List[str]:
        """
        Generate backup codes for account recovery.

        Args:
            n: Number of codes.

        Returns:
            n pairwise-distinct codes matching [0-9A-F]{8}.
        """
        codes: List[str] = []
        seen = set()
        while len(codes) < n:
            code = secrets.token_hex(CODE_LENGTH // 2).upper()
            if code in seen:
                continue
            seen.add(code)
            codes.append(code)
        return codes

    def hash(self, code: str) -> str:
        """
        Hash a backup code for storage.

        Args:
            code: Plain text backup code.

        Returns:
            Bcrypt hash of the normalized code.
        """
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(normalize_backup_code(code).encode("utf-8"), salt).decode("utf-8")

    def verify(self, hashed_set: Sequence[str], candidate: str) -> Tuple[bool, List[str]]:
        """
        Check a candidate against a set of hashes.

        Args:
            hashed_set: Stored bcrypt hashes.
            candidate: Code entered by the user.

        Returns:
            (True, set without the matching entry) on match,
            (False, set unchanged) otherwise.
        """
        remaining = list(hashed_set)
        normalized = normalize_backup_code(candidate)
        if not remaining or not CODE_PATTERN.match(normalized):
            return False, remaining

        encoded = normalized.encode("utf-8")
        for i, hashed in enumerate(remaining):
            try:
                matched = bcrypt.checkpw(encoded, hashed.encode("utf-8"))
            except ValueError:
                # Corrupt hash entry; it can never match
                logger.warning("Skipping malformed backup code hash")
                continue
            if matched:
                del remaining[i]
                return True, remaining

        return False, remaining

    # ==========================================
    # Persistence
    # ==========================================

    def replace(self, account_id: str, codes: Sequence[str]) -> None:
        """Hash codes and overwrite the stored set wholesale."""
        self.secret_store.put_backup_codes(account_id, [self.hash(c) for c in codes])
        logger.info(f"Stored {len(codes)} backup codes for account {account_id}")

    def clear(self, account_id: str) -> None:
        self.secret_store.delete_backup_codes(account_id)

    def count(self, account_id: str) -> int:
        code_set = self.secret_store.get_backup_codes(account_id)
        return len(code_set.hashes) if code_set else 0

    def redeem(self, account_id: str, candidate: str) -> bool:
        """
        Consume a backup code.

        Reads the stored set, verifies the candidate and writes the reduced
        set back only if nobody else changed it in between. A lost write is
        retried once against a fresh read, which normally shows the code gone.

        Args:
            account_id: Account identifier.
            candidate: Code entered by the user.

        Returns:
            True if this call consumed the code.

        Raises:
            RaceConditionConflict: If the conditional write lost twice.
        """
        for attempt in range(2):
            code_set = self.secret_store.get_backup_codes(account_id)
            if code_set is None:
                return False

            valid, remaining = self.verify(code_set.hashes, candidate)
            if not valid:
                return False

            if self.secret_store.compare_and_swap_backup_codes(
                account_id, code_set.version, remaining
            ):
                logger.info(
                    f"Backup code used for account {account_id}, {len(remaining)} remaining"
                )
                return True

            logger.warning(
                f"Backup code write lost a race for account {account_id} (attempt {attempt + 1})"
            )

        raise RaceConditionConflict(f"Backup code set for {account_id} kept changing")
