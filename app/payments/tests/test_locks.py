"""
Tests for payments.locks.

Call shapes are checked against a MagicMock client; exclusion between
holders runs on the in-memory Redis double from conftest.
"""

from unittest.mock import MagicMock

import pytest
from django.test import override_settings

from payments.exceptions import LockAcquisitionError
from payments.locks import DistributedLock, order_lock, refund_lock, settlement_lock


@pytest.fixture
def redis_client(mocker):
    client = MagicMock()
    mocker.patch("payments.locks.get_redis_connection", return_value=client)
    return client


@pytest.fixture
def held_lock(redis_client):
    redis_client.set.return_value = True
    redis_client.eval.return_value = 1
    lock = DistributedLock("orders:7", ttl=30, blocking=False)
    lock.acquire()
    return lock


class TestAcquire:
    def test_sets_prefixed_key_with_nx_and_ttl(self, redis_client):
        redis_client.set.return_value = True

        lock = DistributedLock("orders:7", ttl=30, blocking=False)

        assert lock.acquire() is True
        assert lock.is_held
        args, kwargs = redis_client.set.call_args
        assert args[0] == "lock:orders:7"
        assert kwargs == {"nx": True, "ex": 30}

    def test_non_blocking_fails_fast(self, redis_client):
        redis_client.set.return_value = None

        lock = DistributedLock("orders:7", blocking=False)

        with pytest.raises(LockAcquisitionError, match="already held") as exc_info:
            lock.acquire()
        assert exc_info.value.details["key"] == "lock:orders:7"
        assert redis_client.set.call_count == 1
        assert not lock.is_held

    def test_try_acquire_reports_instead_of_raising(self, redis_client):
        redis_client.set.return_value = None

        assert DistributedLock("orders:7").try_acquire() is False

    def test_blocking_polls_until_free(self, redis_client):
        redis_client.set.side_effect = [None, None, True]

        assert DistributedLock("orders:7", timeout=1.0).acquire() is True
        assert redis_client.set.call_count == 3

    def test_blocking_gives_up_after_timeout(self, redis_client):
        redis_client.set.return_value = None

        with pytest.raises(LockAcquisitionError, match=r"within 0\.1s") as exc_info:
            DistributedLock("orders:7", timeout=0.1).acquire()
        assert exc_info.value.details["timeout"] == 0.1


class TestReleaseAndExtend:
    def test_release(self, held_lock, redis_client):
        assert held_lock.release() is True
        assert not held_lock.is_held
        redis_client.eval.assert_called_once()

    def test_release_after_expiry_returns_false(self, held_lock, redis_client):
        redis_client.eval.return_value = 0

        assert held_lock.release() is False

    def test_release_twice_touches_redis_once(self, held_lock, redis_client):
        held_lock.release()

        assert held_lock.release() is False
        assert redis_client.eval.call_count == 1

    def test_release_never_acquired(self, redis_client):
        assert DistributedLock("orders:7").release() is False
        redis_client.eval.assert_not_called()

    def test_context_manager_releases_on_error(self, redis_client):
        redis_client.set.return_value = True

        with pytest.raises(RuntimeError):
            with DistributedLock("orders:7"):
                raise RuntimeError("processor exploded")

        redis_client.eval.assert_called_once()

    def test_extend_passes_new_ttl(self, held_lock, redis_client):
        assert held_lock.extend(ttl=90) is True
        assert redis_client.eval.call_args.args[-1] == 90

    def test_extend_defaults_to_lock_ttl(self, held_lock, redis_client):
        held_lock.extend()
        assert redis_client.eval.call_args.args[-1] == 30

    def test_extend_without_lock(self, redis_client):
        assert DistributedLock("orders:7").extend() is False


class TestExclusion:
    def test_same_key_has_one_holder(self):
        first = DistributedLock("settlement:biz:proc", ttl=5, blocking=False)
        second = DistributedLock("settlement:biz:proc", ttl=5, blocking=False)

        assert first.try_acquire()
        assert not second.try_acquire()

        first.release()
        assert second.try_acquire()

    def test_keys_are_independent(self):
        assert DistributedLock("payment:order:1").try_acquire()
        assert DistributedLock("payment:order:2").try_acquire()

    def test_foreign_token_cannot_release(self, fake_redis):
        owner = DistributedLock("refund:payment:1", ttl=5)
        owner.try_acquire()
        impostor = DistributedLock("refund:payment:1", ttl=5)
        impostor._token = "someone-else"

        assert impostor.release() is False
        assert fake_redis.get("lock:refund:payment:1") is not None


class TestLockFactories:
    @override_settings(PAYMENT_LOCK_TTL_SECONDS=45, PAYMENT_PROCESSOR_TIMEOUT_SECONDS=8)
    def test_order_lock_waits_up_to_processor_timeout(self):
        lock = order_lock("order-1")

        assert (lock.key, lock.blocking, lock.ttl, lock.timeout) == ("lock:payment:order:order-1", True, 45, 8)

    def test_refund_lock_key(self):
        assert refund_lock("pay-1").key == "lock:refund:payment:pay-1"

    @override_settings(SETTLEMENT_LOCK_TTL_SECONDS=300)
    def test_settlement_lock_does_not_wait(self):
        lock = settlement_lock("biz", "proc")

        assert (lock.key, lock.blocking, lock.ttl) == ("lock:settlement:biz:proc", False, 300)
