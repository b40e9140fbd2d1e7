"""
Tests for TOTP verification with drift tolerance.
"""
from datetime import datetime, timedelta, timezone
from unittest.mock import patch
from urllib.parse import urlparse, parse_qs

import pyotp
import pytest

from twofactor.auth.totp import TotpEngine

START_TIME = datetime(2026, 1, 15, 12, 0, 5, tzinfo=timezone.utc)
SEED = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP"
OTHER_SEED = "GEZDGNBVGY3TQOJQGEZDGNBVGY3TQOJQ"


@pytest.fixture
def engine():
    return TotpEngine()


class TestVerify:
    """Test the +-1 step window."""

    def test_current_code_accepted(self, engine):
        code = engine.code_at(SEED, START_TIME)
        assert engine.verify(SEED, code, START_TIME)

    @pytest.mark.parametrize("offset", [-30, 30])
    def test_one_step_drift_accepted(self, engine, offset):
        code = engine.code_at(SEED, START_TIME)
        assert engine.verify(SEED, code, START_TIME + timedelta(seconds=offset))

    @pytest.mark.parametrize("offset", [-90, 90])
    def test_three_step_drift_rejected(self, engine, offset):
        code = engine.code_at(SEED, START_TIME)
        assert not engine.verify(SEED, code, START_TIME + timedelta(seconds=offset))

    def test_wrong_seed_rejected(self, engine):
        code = engine.code_at(SEED, START_TIME)
        assert code != engine.code_at(OTHER_SEED, START_TIME)
        assert not engine.verify(OTHER_SEED, code, START_TIME)

    def test_matches_reference_implementation(self, engine):
        assert engine.code_at(SEED, START_TIME) == pyotp.TOTP(SEED).at(START_TIME)

    def test_spaces_are_ignored(self, engine):
        code = engine.code_at(SEED, START_TIME)
        assert engine.verify(SEED, f" {code[:3]} {code[3:]} ", START_TIME)

    @pytest.mark.parametrize("candidate", ["", None, "12345", "1234567", "12a456", "ABCDEF12"])
    def test_malformed_codes_rejected(self, engine, candidate):
        assert not engine.verify(SEED, candidate, START_TIME)

    def test_empty_seed_rejected(self, engine):
        assert not engine.verify("", "123456", START_TIME)

    def test_comparison_is_constant_time(self, engine):
        code = engine.code_at(SEED, START_TIME)
        with patch("pyotp.utils.strings_equal", wraps=pyotp.utils.strings_equal) as strings_equal:
            engine.verify(SEED, code, START_TIME)
        assert strings_equal.called


class TestProvisioning:
    """Test otpauth:// URI generation."""

    def test_uri_embeds_label_issuer_and_secret(self, engine):
        uri = engine.provisioning_uri(SEED, "user@example.com", "TWOFACTOR")
        parsed = urlparse(uri)
        params = parse_qs(parsed.query)

        assert parsed.scheme == "otpauth"
        assert parsed.netloc == "totp"
        assert "user%40example.com" in parsed.path or "user@example.com" in parsed.path
        assert params["secret"] == [SEED]
        assert params["issuer"] == ["TWOFACTOR"]
