"""
twofactor - MFA enrollment and challenge verification.

This package provides TOTP enrollment, single-use backup codes and the
second-factor challenge that stands between a password login and a full
session.
"""

__version__ = "0.1.0"
__author__ = "twofactor maintainers"
