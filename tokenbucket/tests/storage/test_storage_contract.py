"""Behaviour every storage backend shares, run against each of them."""

from __future__ import annotations

import pytest

from tokenbucket.bucket import TokenBucket
from tokenbucket.errors import StorageError
from tokenbucket.rate import Rate, RateUnit
from tokenbucket.storage import Storage, StorageScope

MICROTIME = 1417011228.123456


class TestStorageContract:
    def test_is_a_storage_with_scope(self, make_storage):
        storage = make_storage()

        assert isinstance(storage, Storage)
        assert isinstance(storage.scope, StorageScope)

    def test_starts_unbootstrapped(self, make_storage):
        assert not make_storage().is_bootstrapped()

    def test_bootstrap_stores_value(self, make_storage):
        storage = make_storage()
        storage.bootstrap(MICROTIME)

        assert storage.is_bootstrapped()
        assert storage.get_microtime() == MICROTIME

    def test_set_and_get_microtime(self, make_storage):
        storage = make_storage()
        storage.bootstrap(1.0)

        storage.set_microtime(MICROTIME)

        assert storage.get_microtime() == MICROTIME

    def test_remove_clears_state(self, make_storage):
        storage = make_storage()
        storage.bootstrap(MICROTIME)

        storage.remove()

        assert not storage.is_bootstrapped()

    def test_can_bootstrap_again_after_remove(self, make_storage):
        storage = make_storage()
        storage.bootstrap(1.0)
        storage.remove()

        storage.bootstrap(2.0)

        assert storage.get_microtime() == 2.0

    def test_get_before_bootstrap_raises(self, make_storage):
        with pytest.raises(StorageError):
            make_storage().get_microtime()

    def test_leave_microtime_unchanged_inside_section_keeps_value(self, make_storage):
        storage = make_storage()
        storage.bootstrap(MICROTIME)

        def read_only():
            value = storage.get_microtime()
            storage.leave_microtime_unchanged()
            return value

        assert storage.mutex.synchronized(read_only) == MICROTIME
        assert storage.get_microtime() == MICROTIME

    def test_write_inside_section_is_persisted(self, make_storage):
        storage = make_storage()
        storage.bootstrap(1.0)

        def increment():
            storage.set_microtime(storage.get_microtime() + 1)

        storage.mutex.synchronized(increment)

        assert storage.get_microtime() == 2.0

    def test_different_names_do_not_interfere(self, make_storage):
        first = make_storage("first")
        second = make_storage("second")

        first.bootstrap(1.0)
        second.bootstrap(2.0)
        first.set_microtime(3.0)

        assert second.get_microtime() == 2.0
        second.remove()
        assert first.is_bootstrapped()
        assert first.get_microtime() == 3.0

    def test_another_handle_sees_the_same_state(self, make_storage):
        first = make_storage()
        first.bootstrap(MICROTIME)

        second = make_storage()

        assert second.is_bootstrapped()
        assert second.get_microtime() == MICROTIME


class TestBucketOnStorage:
    def test_consume_until_empty(self, make_storage, clock):
        bucket = TokenBucket(3, Rate(1, RateUnit.SECOND), make_storage())
        bucket.bootstrap(3)

        assert bucket.consume(2)
        assert bucket.consume(1)
        assert not bucket.consume(1)

    def test_refill_after_time_passes(self, make_storage, clock):
        bucket = TokenBucket(3, Rate(1, RateUnit.SECOND), make_storage())
        bucket.bootstrap(0)
        assert not bucket.consume(1)

        clock.advance(2)

        assert bucket.get_tokens() == 2
        assert bucket.consume(2)

    def test_bootstrap_is_idempotent(self, make_storage, clock):
        storage = make_storage()
        bucket = TokenBucket(10, Rate(1, RateUnit.SECOND), storage)

        bucket.bootstrap(10)
        bucket.bootstrap(0)
        TokenBucket(10, Rate(1, RateUnit.SECOND), make_storage()).bootstrap(0)

        assert bucket.get_tokens() == 10

    def test_state_is_shared_between_buckets(self, make_storage, clock):
        rate = Rate(1, RateUnit.SECOND)
        first = TokenBucket(5, rate, make_storage())
        first.bootstrap(5)
        second = TokenBucket(5, rate, make_storage())

        assert second.consume(3)

        assert first.get_tokens() == 2
