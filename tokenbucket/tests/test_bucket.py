"""Tests for TokenBucket."""

from __future__ import annotations

import logging
from unittest.mock import MagicMock, patch

import pytest

from tokenbucket.bucket import ConsumeResult, TokenBucket
from tokenbucket.errors import AlreadyBootstrappedError, ConfigurationError, StorageError
from tokenbucket.mutex import NoMutex
from tokenbucket.rate import Rate, RateUnit
from tokenbucket.storage import InMemoryStorage, Storage

PER_SECOND = Rate(1, RateUnit.SECOND)


def _bucket(capacity: int = 10, rate: Rate = PER_SECOND) -> TokenBucket:
    return TokenBucket(capacity, rate, InMemoryStorage())


def _mock_storage(*, bootstrapped: bool) -> MagicMock:
    storage = MagicMock(spec=Storage)
    storage.mutex = NoMutex()
    storage.is_bootstrapped.return_value = bootstrapped
    return storage


class TestConstruction:
    @pytest.mark.parametrize("capacity", [0, -1])
    def test_rejects_non_positive_capacity(self, capacity):
        with pytest.raises(ConfigurationError, match="greater than 0"):
            TokenBucket(capacity, PER_SECOND, InMemoryStorage())

    @pytest.mark.parametrize("capacity", [1.5, "10", True])
    def test_rejects_non_integer_capacity(self, capacity):
        with pytest.raises(ConfigurationError, match="must be an integer"):
            TokenBucket(capacity, PER_SECOND, InMemoryStorage())

    def test_exposes_configuration(self):
        storage = InMemoryStorage()
        bucket = TokenBucket(5, PER_SECOND, storage)

        assert bucket.capacity == 5
        assert bucket.rate == PER_SECOND
        assert bucket.storage is storage


class TestBootstrap:
    def test_defaults_to_empty_bucket(self, clock):
        bucket = _bucket()
        bucket.bootstrap()

        assert bucket.get_tokens() == 0

    def test_initial_tokens_are_available(self, clock):
        bucket = _bucket()
        bucket.bootstrap(7)

        assert bucket.get_tokens() == 7

    def test_stores_timestamp_of_initial_tokens(self, clock):
        bucket = _bucket()
        bucket.bootstrap(10)

        assert bucket.storage.get_microtime() == clock.now - 10

    def test_second_bootstrap_is_a_no_op(self, clock):
        bucket = _bucket()
        bucket.bootstrap(10)
        bucket.consume(4)

        bucket.bootstrap(0)

        assert bucket.get_tokens() == 6

    def test_skips_storage_when_already_bootstrapped(self, clock):
        storage = _mock_storage(bootstrapped=True)
        TokenBucket(10, PER_SECOND, storage).bootstrap(5)

        storage.bootstrap.assert_not_called()

    def test_writes_storage_when_not_bootstrapped(self, clock):
        storage = _mock_storage(bootstrapped=False)
        TokenBucket(10, PER_SECOND, storage).bootstrap(5)

        storage.bootstrap.assert_called_once_with(clock.now - 5)

    def test_losing_a_concurrent_bootstrap_is_silent(self, clock):
        storage = _mock_storage(bootstrapped=False)
        storage.bootstrap.side_effect = AlreadyBootstrappedError("taken")

        TokenBucket(10, PER_SECOND, storage).bootstrap(5)

        storage.bootstrap.assert_called_once()

    def test_other_storage_errors_propagate(self, clock):
        storage = _mock_storage(bootstrapped=False)
        storage.bootstrap.side_effect = StorageError("disk full")

        with pytest.raises(StorageError, match="disk full"):
            TokenBucket(10, PER_SECOND, storage).bootstrap(5)

    @pytest.mark.parametrize("tokens", [-1, 11])
    def test_rejects_out_of_range_tokens(self, clock, tokens):
        bucket = _bucket()
        with pytest.raises(ConfigurationError):
            bucket.bootstrap(tokens)

        assert not bucket.storage.is_bootstrapped()

    def test_logs_bootstrap(self, clock, caplog):
        bucket = _bucket()
        with caplog.at_level(logging.INFO, logger="tokenbucket.bucket"):
            bucket.bootstrap(3)

        assert "bootstrapped bucket" in caplog.text


class TestConsume:
    def test_drains_and_refuses_with_wait_estimate(self, clock):
        bucket = _bucket(capacity=10)
        bucket.bootstrap(10)

        assert bucket.consume(1)
        assert bucket.consume(2)
        assert bucket.consume(3)
        assert bucket.consume(4)

        result = bucket.consume(1)
        assert not result
        assert result.wait_seconds == pytest.approx(1)

        clock.advance(3)
        result = bucket.consume(4)
        assert not result
        assert result.wait_seconds == pytest.approx(1)

    def test_successful_consume_has_no_wait(self, clock):
        bucket = _bucket()
        bucket.bootstrap(10)

        assert bucket.consume(1) == ConsumeResult(consumed=True, wait_seconds=0.0)

    def test_wait_shrinks_as_time_passes(self, clock):
        bucket = _bucket()
        bucket.bootstrap(0)

        assert bucket.consume(3).wait_seconds == pytest.approx(3)
        clock.advance(1)
        assert bucket.consume(3).wait_seconds == pytest.approx(2)

    def test_wait_uses_rate(self, clock):
        bucket = _bucket(rate=Rate(1, RateUnit.MINUTE))
        bucket.bootstrap(0)

        assert bucket.consume(2).wait_seconds == pytest.approx(120)

    def test_refill_is_capped_at_capacity(self, clock):
        bucket = _bucket(capacity=10)
        bucket.bootstrap(0)
        clock.advance(100)

        assert bucket.consume(1)
        assert bucket.get_tokens() == 9

    def test_refused_consume_leaves_state_unchanged(self, clock):
        bucket = _bucket()
        bucket.bootstrap(2)
        before = bucket.storage.get_microtime()

        with patch.object(bucket.storage, "leave_microtime_unchanged") as leave:
            assert not bucket.consume(3)

        leave.assert_called_once()
        assert bucket.storage.get_microtime() == before

    def test_consume_larger_than_capacity_is_rejected_without_mutation(self, clock):
        bucket = _bucket(capacity=20)
        bucket.bootstrap(20)
        before = bucket.storage.get_microtime()

        with pytest.raises(ConfigurationError, match="larger than the capacity"):
            bucket.consume(21)

        assert bucket.storage.get_microtime() == before
        assert bucket.get_tokens() == 20

    @pytest.mark.parametrize("tokens", [0, -1])
    def test_rejects_non_positive_tokens(self, clock, tokens):
        bucket = _bucket()
        bucket.bootstrap(10)

        with pytest.raises(ConfigurationError, match="at least 1"):
            bucket.consume(tokens)

    @pytest.mark.parametrize("tokens", [1.5, "1", True])
    def test_rejects_non_integer_tokens(self, clock, tokens):
        bucket = _bucket()
        bucket.bootstrap(10)

        with pytest.raises(ConfigurationError, match="must be an integer"):
            bucket.consume(tokens)

    def test_unbootstrapped_storage_raises_storage_error(self, clock):
        bucket = _bucket()

        with pytest.raises(StorageError, match="not bootstrapped"):
            bucket.consume(1)

    def test_consume_decreases_tokens_by_exact_amount(self, clock):
        bucket = _bucket(capacity=10)
        bucket.bootstrap(8)

        bucket.consume(5)

        assert bucket.get_tokens() == 3

    def test_runs_inside_the_storage_mutex(self, clock):
        bucket = _bucket()
        bucket.bootstrap(10)

        with patch.object(bucket.storage.mutex, "synchronized", wraps=bucket.storage.mutex.synchronized) as sync:
            bucket.consume(1)

        sync.assert_called_once()


class TestGetTokens:
    def test_empty_bucket_refills_with_time(self, clock):
        bucket = _bucket(capacity=10)
        bucket.bootstrap(0)

        assert bucket.get_tokens() == 0
        clock.advance(1)
        assert bucket.get_tokens() == 1
        clock.advance(0.5)
        assert bucket.get_tokens() == 1
        clock.advance(0.5)
        assert bucket.get_tokens() == 2

    def test_never_exceeds_capacity(self, clock):
        bucket = _bucket(capacity=10)
        bucket.bootstrap(10)
        clock.advance(1000)

        assert bucket.get_tokens() == 10

    def test_refill_is_monotonic_without_consumption(self, clock):
        bucket = _bucket(capacity=5, rate=Rate(2, RateUnit.SECOND))
        bucket.bootstrap(0)

        seen = []
        for _ in range(12):
            seen.append(bucket.get_tokens())
            clock.advance(0.25)

        assert seen == sorted(seen)
        assert max(seen) == 5

    def test_does_not_write_storage(self, clock):
        bucket = _bucket()
        bucket.bootstrap(10)

        with patch.object(bucket.storage, "set_microtime") as set_microtime:
            bucket.get_tokens()

        set_microtime.assert_not_called()


class TestConsumeResult:
    def test_truthiness_follows_consumed(self):
        assert ConsumeResult(consumed=True)
        assert not ConsumeResult(consumed=False, wait_seconds=1.0)
