"""
Tests for the enrollment lifecycle.

Covers:
- Setup and re-roll before confirmation
- Confirmation with correct and incorrect codes
- Backup code regeneration
- Disable with password re-check
- Status reporting
"""
import threading
from unittest.mock import patch

from twofactor.auth.results import MFAError

ACCOUNT = "account-1"


class TestStartSetup:
    """Test pending enrollment."""

    def test_setup_stores_encrypted_pending_secret(self, service, secret_store):
        result = service.enrollment.start_setup(ACCOUNT, "user@example.com")

        assert result.ok
        stored = secret_store.get_secret(ACCOUNT)
        assert stored.enabled is False
        assert stored.enabled_at is None
        assert result.value.seed not in stored.encrypted_seed
        assert service.enrollment.vault.decrypt(stored.encrypted_seed) == result.value.seed

    def test_setup_returns_provisioning_uri(self, service, settings):
        result = service.enrollment.start_setup(ACCOUNT, "user@example.com")
        uri = result.value.provisioning_uri

        assert uri.startswith("otpauth://totp/")
        assert f"secret={result.value.seed}" in uri
        assert f"issuer={settings.issuer}" in uri

    def test_seed_not_in_repr(self, service):
        result = service.enrollment.start_setup(ACCOUNT, "user@example.com")
        assert result.value.seed not in repr(result)

    def test_rerunning_setup_replaces_pending_secret(self, service, clock):
        first = service.enrollment.start_setup(ACCOUNT, "user@example.com").value
        second = service.enrollment.start_setup(ACCOUNT, "user@example.com").value
        assert first.seed != second.seed

        stale_code = service.enrollment.totp.code_at(first.seed, clock())
        fresh_code = service.enrollment.totp.code_at(second.seed, clock())
        if stale_code != fresh_code:
            assert service.enrollment.confirm_setup(ACCOUNT, stale_code).error == MFAError.INCORRECT_CODE
        assert service.enrollment.confirm_setup(ACCOUNT, fresh_code).ok

    def test_setup_refused_when_enabled(self, service, enrolled_account, secret_store):
        account_id, _, _ = enrolled_account
        before = secret_store.get_secret(account_id)

        result = service.enrollment.start_setup(account_id, "user@example.com")

        assert result.error == MFAError.ALREADY_ENABLED
        assert secret_store.get_secret(account_id) == before


class TestConfirmSetup:
    """Test enabling 2FA."""

    def test_correct_code_enables_and_returns_ten_codes(self, service, secret_store, clock):
        seed = service.enrollment.start_setup(ACCOUNT, "user@example.com").value.seed
        code = service.enrollment.totp.code_at(seed, clock())

        result = service.enrollment.confirm_setup(ACCOUNT, code)

        assert result.ok
        assert len(result.value) == 10
        stored = secret_store.get_secret(ACCOUNT)
        assert stored.enabled is True
        assert stored.enabled_at == clock()
        assert len(secret_store.get_backup_codes(ACCOUNT).hashes) == 10

    def test_backup_codes_stored_only_as_hashes(self, enrolled_account, secret_store):
        account_id, _, codes = enrolled_account
        stored = secret_store.get_backup_codes(account_id).hashes
        assert not set(codes) & set(stored)

    def test_incorrect_code_keeps_setup_pending(self, service, secret_store, clock):
        seed = service.enrollment.start_setup(ACCOUNT, "user@example.com").value.seed
        pending = secret_store.get_secret(ACCOUNT)
        with patch.object(service.enrollment.totp, "verify", return_value=False):
            result = service.enrollment.confirm_setup(ACCOUNT, "000000")

        assert result.error == MFAError.INCORRECT_CODE
        assert secret_store.get_secret(ACCOUNT) == pending
        assert secret_store.get_backup_codes(ACCOUNT) is None

        # Retryable
        code = service.enrollment.totp.code_at(seed, clock())
        assert service.enrollment.confirm_setup(ACCOUNT, code).ok

    def test_malformed_code(self, service):
        service.enrollment.start_setup(ACCOUNT, "user@example.com")
        assert service.enrollment.confirm_setup(ACCOUNT, "12ab").error == MFAError.VALIDATION_ERROR

    def test_confirm_without_setup(self, service):
        assert service.enrollment.confirm_setup(ACCOUNT, "123456").error == MFAError.NOT_CONFIGURED

    def test_confirm_twice(self, service, enrolled_account, clock):
        account_id, seed, _ = enrolled_account
        code = service.enrollment.totp.code_at(seed, clock())
        assert service.enrollment.confirm_setup(account_id, code).error == MFAError.ALREADY_ENABLED

    def test_undecryptable_secret_is_not_configured(self, service, secret_store):
        service.enrollment.start_setup(ACCOUNT, "user@example.com")
        pending = secret_store.get_secret(ACCOUNT)
        secret_store.put_secret(type(pending)(ACCOUNT, "corrupted", False, None))

        assert service.enrollment.confirm_setup(ACCOUNT, "123456").error == MFAError.NOT_CONFIGURED

    def test_concurrent_confirms_have_one_winner(self, service, secret_store, clock):
        seed = service.enrollment.start_setup(ACCOUNT, "user@example.com").value.seed
        code = service.enrollment.totp.code_at(seed, clock())

        read = secret_store.get_secret
        barrier = threading.Barrier(2)
        lock = threading.Lock()
        reads = []

        def read_together(account_id):
            # Both confirms see the pending secret before either enables it
            result = read(account_id)
            with lock:
                reads.append(account_id)
                first_two = len(reads) <= 2
            if first_two:
                barrier.wait(timeout=5)
            return result

        secret_store.get_secret = read_together
        results = []

        def confirm():
            results.append(service.enrollment.confirm_setup(ACCOUNT, code))

        threads = [threading.Thread(target=confirm) for _ in range(2)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)
        secret_store.get_secret = read

        winners = [r for r in results if r.ok]
        losers = [r for r in results if not r.ok]
        assert len(winners) == 1
        assert losers[0].error == MFAError.ALREADY_ENABLED

        backup_codes = service.enrollment.backup_codes
        assert backup_codes.count(ACCOUNT) == 10
        assert backup_codes.redeem(ACCOUNT, winners[0].value[0])

    def test_confirm_racing_setup_restart_is_rejected(self, service, secret_store, clock):
        first_seed = service.enrollment.start_setup(ACCOUNT, "user@example.com").value.seed
        read = secret_store.get_secret

        def read_then_restart(account_id):
            # Setup is restarted after this confirm read the first pending seed
            pending = read(account_id)
            secret_store.get_secret = read
            service.enrollment.start_setup(ACCOUNT, "user@example.com")
            return pending

        secret_store.get_secret = read_then_restart
        code = service.enrollment.totp.code_at(first_seed, clock())

        assert service.enrollment.confirm_setup(ACCOUNT, code).error == MFAError.INCORRECT_CODE
        assert secret_store.get_secret(ACCOUNT).enabled is False
        assert secret_store.get_backup_codes(ACCOUNT) is None


class TestRegenerate:
    """Test wholesale replacement of backup codes."""

    def test_regenerate_invalidates_all_old_codes(self, service, enrolled_account):
        account_id, _, old_codes = enrolled_account

        result = service.enrollment.regenerate_backup_codes(account_id)

        assert result.ok
        assert len(result.value) == 10
        assert not set(result.value) & set(old_codes)
        backup_codes = service.enrollment.backup_codes
        assert not any(backup_codes.redeem(account_id, code) for code in old_codes)
        assert backup_codes.count(account_id) == 10

    def test_regenerate_requires_enabled(self, service):
        assert service.enrollment.regenerate_backup_codes(ACCOUNT).error == MFAError.NOT_ENABLED

        service.enrollment.start_setup(ACCOUNT, "user@example.com")
        assert service.enrollment.regenerate_backup_codes(ACCOUNT).error == MFAError.NOT_ENABLED


class TestDisable:
    """Test turning 2FA off."""

    def test_wrong_password_changes_nothing(self, service, enrolled_account, secret_store):
        account_id, _, _ = enrolled_account
        secret_before = secret_store.get_secret(account_id)
        codes_before = secret_store.get_backup_codes(account_id)

        result = service.enrollment.disable(account_id, "wrong-password")

        assert result.error == MFAError.UNAUTHORIZED
        assert secret_store.get_secret(account_id) == secret_before
        assert secret_store.get_backup_codes(account_id) == codes_before

    def test_empty_password_is_unauthorized(self, service, enrolled_account, password_verifier):
        account_id, _, _ = enrolled_account
        assert service.enrollment.disable(account_id, "").error == MFAError.UNAUTHORIZED
        password_verifier.verify.assert_not_called()

    def test_correct_password_clears_enrollment(self, service, enrolled_account, secret_store):
        account_id, _, _ = enrolled_account

        result = service.enrollment.disable(account_id, "correct-horse")

        assert result.ok
        assert secret_store.get_secret(account_id) is None
        assert secret_store.get_backup_codes(account_id) is None
        status = service.enrollment.status(account_id)
        assert status.enabled is False
        assert status.enabled_at is None

    def test_disable_when_not_enrolled(self, service):
        assert service.enrollment.disable(ACCOUNT, "correct-horse").error == MFAError.NOT_ENABLED


class TestStatus:
    """Test status reporting."""

    def test_status_lifecycle(self, service, enrolled_account):
        account_id, _, codes = enrolled_account
        status = service.enrollment.status(account_id)
        assert status.enabled
        assert status.has_secret
        assert status.backup_codes_remaining == 10

        service.enrollment.backup_codes.redeem(account_id, codes[0])
        assert service.enrollment.status(account_id).backup_codes_remaining == 9

    def test_pending_status(self, service):
        service.enrollment.start_setup(ACCOUNT, "user@example.com")
        status = service.enrollment.status(ACCOUNT)
        assert not status.enabled
        assert status.has_secret
        assert status.backup_codes_remaining == 0
