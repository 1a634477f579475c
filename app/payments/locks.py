"""
Redis locks shared by web and Celery workers.

Row locks (select_for_update) guard single state transitions. The locks
here cover the longer sequences that include a processor call, which
always happens outside a database transaction.

    payment:order:<order_id>                 payment creation for one order
    refund:payment:<payment_id>              refund creation for one payment
    settlement:<business_id>:<processor_id>  one settlement run at a time

    with order_lock(order.order_id):
        ...

    lock = settlement_lock(business_id, processor_id)
    if not lock.try_acquire():
        return None
    try:
        ...
    finally:
        lock.release()
"""

from __future__ import annotations

import time
import uuid
from typing import TYPE_CHECKING

from django.conf import settings
from django_redis import get_redis_connection

from payments.exceptions import LockAcquisitionError

if TYPE_CHECKING:
    from typing import Any

    from redis import Redis

# Both scripts act only when KEYS[1] still holds our token.
_RELEASE_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
end
return 0
"""

_EXTEND_LUA = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("expire", KEYS[1], ARGV[2])
end
return 0
"""


class DistributedLock:
    """
    Token-owned Redis lock that expires after ``ttl`` seconds.

    A crashed holder frees the key when the TTL runs out; keep the TTL above
    the processor timeout. In blocking mode ``acquire()`` polls for up to
    ``timeout`` seconds, otherwise it fails on the first miss.
    """

    poll_interval = 0.05

    def __init__(self, key: str, ttl: int = 30, blocking: bool = True, timeout: float = 10.0) -> None:
        self.key = f"lock:{key}"
        self.ttl = ttl
        self.blocking = blocking
        self.timeout = timeout
        self._token: str | None = None
        self._client: Redis | None = None

    @property
    def redis(self) -> Redis:
        if self._client is None:
            self._client = get_redis_connection("default")
        return self._client

    @property
    def is_held(self) -> bool:
        return self._token is not None

    def try_acquire(self) -> bool:
        token = uuid.uuid4().hex
        if not self.redis.set(self.key, token, nx=True, ex=self.ttl):
            return False
        self._token = token
        return True

    def acquire(self) -> bool:
        """
        Raises:
            LockAcquisitionError: Key held elsewhere (non-blocking) or still
                held when ``timeout`` ran out (blocking)
        """
        deadline = time.monotonic() + (self.timeout if self.blocking else 0)
        while not self.try_acquire():
            if time.monotonic() >= deadline:
                message = (
                    f"Failed to acquire lock '{self.key}' within {self.timeout}s"
                    if self.blocking
                    else f"Lock '{self.key}' is already held"
                )
                raise LockAcquisitionError(message, details={"key": self.key, "timeout": self.timeout})
            time.sleep(self.poll_interval)
        return True

    def release(self) -> bool:
        """Drop the lock if we still own it. Returns False when it had already expired or was never held."""
        if self._token is None:
            return False
        token, self._token = self._token, None
        return bool(self.redis.eval(_RELEASE_LUA, 1, self.key, token))

    def extend(self, ttl: int | None = None) -> bool:
        """Restart the expiry at ``ttl`` (default: the lock's own TTL) while we own it."""
        if self._token is None:
            return False
        return bool(self.redis.eval(_EXTEND_LUA, 1, self.key, self._token, ttl or self.ttl))

    def __enter__(self) -> DistributedLock:
        self.acquire()
        return self

    def __exit__(self, exc_type: type[BaseException] | None, exc_val: BaseException | None, exc_tb: Any) -> bool:
        self.release()
        return False


def order_lock(order_id) -> DistributedLock:
    return DistributedLock(
        f"payment:order:{order_id}",
        ttl=settings.PAYMENT_LOCK_TTL_SECONDS,
        timeout=settings.PAYMENT_PROCESSOR_TIMEOUT_SECONDS,
    )


def refund_lock(payment_id) -> DistributedLock:
    return DistributedLock(
        f"refund:payment:{payment_id}",
        ttl=settings.PAYMENT_LOCK_TTL_SECONDS,
        timeout=settings.PAYMENT_PROCESSOR_TIMEOUT_SECONDS,
    )


def settlement_lock(business_id, processor_id) -> DistributedLock:
    """Non-blocking: a second settlement run for the same pair backs off instead of waiting."""
    return DistributedLock(
        f"settlement:{business_id}:{processor_id}",
        ttl=settings.SETTLEMENT_LOCK_TTL_SECONDS,
        blocking=False,
    )


__all__ = ["DistributedLock", "order_lock", "refund_lock", "settlement_lock"]
