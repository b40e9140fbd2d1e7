"""
TOTP code generation and verification (RFC 6238).

Compatible with Google Authenticator, Authy, and other TOTP apps.
Comparison is constant-time (pyotp uses hmac.compare_digest).
"""
from datetime import datetime
from typing import Optional

import pyotp


class TotpEngine:
    """
    Time-based one-time password engine with clock-drift tolerance.

    Args:
        interval: Time step in seconds.
        digits: Code length.
        valid_window: Number of steps accepted on each side of `now`
                      (default 1 = +-30s).
    """

    def __init__(self, interval: int = 30, digits: int = 6, valid_window: int = 1):
        self.interval = interval
        self.digits = digits
        self.valid_window = valid_window

    def _totp(self, seed: str) -> pyotp.TOTP:
        return pyotp.TOTP(seed, digits=self.digits, interval=self.interval)

    def normalize(self, candidate: Optional[str]) -> str:
        """Strip whitespace from a user-typed code."""
        if not candidate:
            return ""
        return "".join(candidate.split())

    def is_well_formed(self, candidate: Optional[str]) -> bool:
        code = self.normalize(candidate)
        return len(code) == self.digits and code.isdigit()

    def verify(self, seed: str, candidate: Optional[str], now: datetime) -> bool:
        """
        Verify a TOTP code against the seed.

        Args:
            seed: Base32-encoded TOTP seed.
            candidate: Code entered by user.
            now: Verification time (timezone-aware).

        Returns:
            True if the code matches the step at `now` or one of its
            neighbours within the drift window.
        """
        if not seed or not self.is_well_formed(candidate):
            return False

        return self._totp(seed).verify(
            self.normalize(candidate),
            for_time=now,
            valid_window=self.valid_window,
        )

    def code_at(self, seed: str, when: datetime) -> str:
        """
        Get the code for a given time (for testing/support tooling).

        Args:
            seed: Base32-encoded TOTP seed.
            when: Point in time.

        Returns:
            The code for the step containing `when`.
        """
        return self._totp(seed).at(when)

    def provisioning_uri(self, seed: str, label: str, issuer: str) -> str:
        """
        Generate an otpauth:// URI for authenticator apps.

        The URI can be encoded as a QR code for easy scanning.

        Args:
            seed: Base32-encoded TOTP seed.
            label: Account label displayed in the app (usually the email).
            issuer: Application name displayed in the app.

        Returns:
            otpauth:// URI string.
        """
        return self._totp(seed).provisioning_uri(name=label, issuer_name=issuer)
