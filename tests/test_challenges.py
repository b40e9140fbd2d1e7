"""
Tests for the challenge registry.
"""
import threading

import pytest

from twofactor.auth.challenges import ChallengeRegistry


@pytest.fixture
def registry(challenge_store, clock):
    return ChallengeRegistry(challenge_store, ttl_seconds=600, max_attempts=5, clock=clock)


class TestCreateAndLookup:
    """Test creation, TTL and lookup."""

    def test_fresh_challenge_is_found(self, registry, clock):
        token = registry.create("account-1", ip="10.0.0.1", user_agent="pytest")
        challenge = registry.lookup(token)

        assert challenge.account_id == "account-1"
        assert challenge.attempt_count == 0
        assert challenge.consumed_at is None
        assert challenge.created_at == clock()
        assert (challenge.expires_at - challenge.created_at).total_seconds() == 600
        assert challenge.ip == "10.0.0.1"

    def test_tokens_are_long_and_unique(self, registry):
        tokens = {registry.create("account-1") for _ in range(100)}
        assert len(tokens) == 100
        # token_urlsafe(32) -> 43 characters, 256 bits
        assert all(len(t) >= 43 for t in tokens)

    def test_token_not_in_repr(self, registry):
        token = registry.create("account-1")
        assert token not in repr(registry.lookup(token))

    def test_expired_challenge_not_found(self, registry, clock):
        token = registry.create("account-1")
        clock.advance(599)
        assert registry.lookup(token) is not None
        clock.advance(1)
        assert registry.lookup(token) is None

    def test_unknown_token_not_found(self, registry):
        assert registry.lookup("does-not-exist") is None
        assert registry.lookup("") is None

    def test_consumed_challenge_not_found(self, registry):
        token = registry.create("account-1")
        assert registry.consume(token)
        assert registry.lookup(token) is None


class TestConsume:
    """Test single-use consumption."""

    def test_second_consume_fails(self, registry):
        token = registry.create("account-1")
        assert registry.consume(token) is True
        assert registry.consume(token) is False

    def test_expired_challenge_cannot_be_consumed(self, registry, clock):
        token = registry.create("account-1")
        clock.advance(601)
        assert registry.consume(token) is False

    def test_concurrent_consume_has_one_winner(self, registry):
        token = registry.create("account-1")
        barrier = threading.Barrier(8)
        results = []

        def consume():
            barrier.wait(timeout=5)
            results.append(registry.consume(token))

        threads = [threading.Thread(target=consume) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=10)

        assert results.count(True) == 1
        assert results.count(False) == 7


class TestAttempts:
    """Test the per-challenge attempt ceiling."""

    def test_counts_increase(self, registry):
        token = registry.create("account-1")
        assert [registry.increment_attempt(token) for _ in range(3)] == [1, 2, 3]
        assert registry.lookup(token).attempt_count == 3

    def test_exceeding_ceiling_burns_challenge(self, registry):
        token = registry.create("account-1")
        for _ in range(5):
            count = registry.increment_attempt(token)
            assert not registry.is_exhausted(count)
        assert registry.lookup(token) is not None

        count = registry.increment_attempt(token)
        assert count == 6
        assert registry.is_exhausted(count)
        assert registry.lookup(token) is None
        assert registry.consume(token) is False

    def test_increment_on_dead_challenge(self, registry):
        token = registry.create("account-1")
        registry.consume(token)
        assert registry.increment_attempt(token) is None
        assert registry.increment_attempt("missing") is None


class TestPurge:
    """Test the optional janitor."""

    def test_purge_removes_only_expired(self, registry, challenge_store, clock):
        old = registry.create("account-1")
        clock.advance(300)
        fresh = registry.create("account-2")
        clock.advance(301)

        assert registry.purge_expired() == 1
        assert challenge_store.get(old) is None
        assert registry.lookup(fresh) is not None
