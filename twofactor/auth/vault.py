"""
Reversible, authenticated encryption of TOTP seeds.

Uses Fernet (AES-128-CBC + HMAC-SHA256). Any modification of a stored
ciphertext fails the HMAC check and raises DecryptionFailed instead of
returning a garbage seed.

Key material comes from MFA_ENCRYPTION_KEY (or MFA_ENCRYPTION_KEY_FILE).
A comma-separated list enables key rotation: the first key encrypts, every
key decrypts.
"""
import logging
from typing import List, Optional, Union

import pyotp
from cryptography.fernet import Fernet, InvalidToken, MultiFernet

from .results import DecryptionFailed
from ..utils.secrets import get_secret

logger = logging.getLogger(__name__)

# 32 base32 characters = 160 bits
SEED_LENGTH = 32


class SecretVault:
    """
    Encrypts and decrypts TOTP seeds. Stateless apart from the key.

    Example usage:
        vault = SecretVault(Fernet.generate_key())
        ciphertext = vault.encrypt(vault.generate_seed())
        seed = vault.decrypt(ciphertext)
    """

    def __init__(self, keys: Optional[Union[str, bytes, List[Union[str, bytes]]]] = None):
        """
        Initialize vault with key(s) from parameter or environment.

        Args:
            keys: A Fernet key, a list of keys (primary first), or a
                  comma-separated string of keys. If None, reads from env.

        Raises:
            ValueError: If no key is configured or a key is malformed.
        """
        if keys is None:
            keys = get_secret("MFA_ENCRYPTION_KEY")

        if not keys:
            raise ValueError(
                "MFA_ENCRYPTION_KEY not set. "
                "Generate with: python -c \"from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())\""
            )

        if isinstance(keys, (str, bytes)):
            raw = keys.decode() if isinstance(keys, bytes) else keys
            keys = [k.strip() for k in raw.split(",") if k.strip()]

        # Fernet raises ValueError for keys that are not 32 url-safe base64 bytes
        self._fernet = MultiFernet([
            Fernet(k.encode() if isinstance(k, str) else k) for k in keys
        ])

    @staticmethod
    def generate_seed() -> str:
        """
        Generate a new TOTP seed.

        Returns:
            Base32-encoded seed with 160 bits of entropy.
        """
        return pyotp.random_base32(length=SEED_LENGTH)

    def encrypt(self, seed: str) -> str:
        """
        Encrypt a seed for storage.

        Args:
            seed: Base32 seed in plaintext.

        Returns:
            Fernet token as text.
        """
        if not seed:
            raise ValueError("Cannot encrypt an empty seed")
        return self._fernet.encrypt(seed.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        """
        Decrypt a stored seed.

        Args:
            ciphertext: Fernet token produced by encrypt().

        Returns:
            The plaintext base32 seed.

        Raises:
            DecryptionFailed: If the token is malformed, tampered or was
                encrypted under a key this vault does not hold.
        """
        if not ciphertext:
            raise DecryptionFailed("Empty ciphertext")
        try:
            return self._fernet.decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecryptionFailed("Seed ciphertext failed authentication") from e

    def rotate(self, ciphertext: str) -> str:
        """Re-encrypt a stored seed under the primary key."""
        try:
            return self._fernet.rotate(ciphertext.encode("utf-8")).decode("utf-8")
        except (InvalidToken, UnicodeError) as e:
            raise DecryptionFailed("Seed ciphertext failed authentication") from e
