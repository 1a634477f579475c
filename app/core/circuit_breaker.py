"""
Circuit breaker for outbound calls to payment processors.

The breaker's state is kept in Django's cache (Redis in production), so a
processor that trips in one Celery worker is skipped by every web worker
too.

    closed     calls pass; consecutive failures are counted
    open       calls are refused until ``recovery_timeout`` has passed
    half_open  ``half_open_max_calls`` probes go through; one success
               closes the circuit, one failure reopens it

Usage:
    breaker = CircuitBreaker("processor:razorpay", failure_threshold=5)
    with breaker.call(trip_on=(ProcessorUnavailableError, ProcessorTimeoutError)):
        response = requests.post(url, json=payload, timeout=10)

Only ``trip_on`` exceptions count as failures; a declined card is a healthy
processor saying no.
"""

from __future__ import annotations

import logging
import time
from contextlib import contextmanager
from dataclasses import asdict, dataclass
from enum import Enum
from typing import TYPE_CHECKING

from django.core.cache import cache

if TYPE_CHECKING:
    from collections.abc import Generator

logger = logging.getLogger(__name__)


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitSnapshot:
    """What is stored under ``circuit:<name>``."""

    state: str = CircuitState.CLOSED.value
    failures: int = 0
    opened_at: float | None = None
    half_open_calls: int = 0

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN.value

    @property
    def is_half_open(self) -> bool:
        return self.state == CircuitState.HALF_OPEN.value


class CircuitOpenError(Exception):
    """The call was refused by an open circuit; nothing was sent."""


class CircuitBreaker:
    """
    Args:
        name: Cache identity, e.g. "processor:stripe"; instances with the same
            name share state
        failure_threshold: Consecutive failures that open the circuit
        recovery_timeout: Seconds before an open circuit lets a probe through
        half_open_max_calls: Probes allowed per half-open window
        cache_ttl: Lifetime of the cached snapshot; keep above recovery_timeout
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        recovery_timeout: int = 60,
        half_open_max_calls: int = 1,
        cache_ttl: int = 3600,
    ):
        self.name = name
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.half_open_max_calls = half_open_max_calls
        self.cache_ttl = cache_ttl
        self._key = f"circuit:{name}"

    @property
    def state(self) -> CircuitState:
        try:
            return CircuitState(self._load().state)
        except ValueError:
            return CircuitState.CLOSED

    def is_available(self) -> bool:
        """
        True when a call may go through. Takes a probe slot while half-open.

        An unreachable cache answers True; losing Redis must not take every
        processor offline.
        """
        allowed = True
        with self._fail_open("check"):
            snapshot = self._load()
            if snapshot.is_open:
                if time.time() - (snapshot.opened_at or 0) < self.recovery_timeout:
                    return False
                snapshot.state = CircuitState.HALF_OPEN.value
                snapshot.half_open_calls = 0
                logger.info("Circuit probing after recovery timeout", extra={"circuit": self.name})
            if snapshot.is_half_open:
                allowed = snapshot.half_open_calls < self.half_open_max_calls
                if allowed:
                    snapshot.half_open_calls += 1
                    self._store(snapshot)
        return allowed

    def record_success(self) -> None:
        with self._fail_open("record success"):
            if self._load().state != CircuitState.CLOSED.value:
                logger.info("Circuit closed", extra={"circuit": self.name})
            self._store(CircuitSnapshot())

    def record_failure(self) -> None:
        with self._fail_open("record failure"):
            snapshot = self._load()
            snapshot.failures += 1
            if snapshot.is_half_open or snapshot.failures >= self.failure_threshold:
                self._open(snapshot)
                logger.warning(
                    "Circuit opened",
                    extra={
                        "circuit": self.name,
                        "failure_count": snapshot.failures,
                        "threshold": self.failure_threshold,
                    },
                )
            else:
                self._store(snapshot)

    @contextmanager
    def call(self, trip_on: tuple[type[BaseException], ...] = (Exception,)) -> Generator[None, None, None]:
        """
        Run the block under the circuit.

        Raises CircuitOpenError up front when the circuit refuses the call.
        A ``trip_on`` exception counts as a failure; any other outcome,
        including other exceptions, counts as a success. Exceptions always
        propagate.
        """
        if not self.is_available():
            raise CircuitOpenError(f"Circuit '{self.name}' is open")

        try:
            yield
        except trip_on:
            self.record_failure()
            raise
        except Exception:
            self.record_success()
            raise
        self.record_success()

    def reset(self) -> None:
        """Force the circuit closed."""
        with self._fail_open("reset"):
            self._store(CircuitSnapshot())
            logger.info("Circuit reset", extra={"circuit": self.name})

    def get_status(self) -> dict:
        try:
            snapshot = self._load()
        except Exception as e:
            return {"name": self.name, "state": "unknown", "error": str(e)}

        status = {
            "name": self.name,
            "state": snapshot.state,
            "failure_count": snapshot.failures,
            "failure_threshold": self.failure_threshold,
        }
        if snapshot.opened_at:
            elapsed = time.time() - snapshot.opened_at
            status["opened_seconds_ago"] = int(elapsed)
            status["recovery_in_seconds"] = max(0, int(self.recovery_timeout - elapsed))
        return status

    @contextmanager
    def _fail_open(self, action: str) -> Generator[None, None, None]:
        # Cache outages are logged and otherwise ignored.
        try:
            yield
        except Exception as e:
            logger.warning(
                f"Circuit breaker could not {action}: {e}",
                extra={"circuit": self.name},
            )

    def _load(self) -> CircuitSnapshot:
        raw = cache.get(self._key)
        return CircuitSnapshot(**raw) if raw else CircuitSnapshot()

    def _store(self, snapshot: CircuitSnapshot) -> None:
        cache.set(self._key, asdict(snapshot), timeout=self.cache_ttl)

    def _open(self, snapshot: CircuitSnapshot) -> None:
        snapshot.state = CircuitState.OPEN.value
        snapshot.opened_at = time.time()
        snapshot.half_open_calls = 0
        self._store(snapshot)

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self.state.value})"
