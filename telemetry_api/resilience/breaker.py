"""Circuit breaker for the reading store on the bus path.

    CLOSED --(failure_threshold consecutive store failures)--> OPEN
    OPEN   --(recovery_timeout_seconds elapsed)-------------> HALF_OPEN
    HALF_OPEN --(success_threshold successes)---------------> CLOSED
    HALF_OPEN --(any store failure)-------------------------> OPEN

Only ``trips_on`` exceptions count as store failures; anything else passes
through untouched. The gateway runs in worker threads, so all state changes
happen under a lock.
"""

from __future__ import annotations

import logging
import os
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, Tuple, Type, TypeVar

from ..errors import StorageError
from ..metrics import STORE_BREAKER_STATE

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CircuitState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


_GAUGE_VALUE = {CircuitState.CLOSED: 0, CircuitState.HALF_OPEN: 1, CircuitState.OPEN: 2}


@dataclass(frozen=True)
class BreakerConfig:
    failure_threshold: int = 5
    recovery_timeout_seconds: float = 30.0
    success_threshold: int = 2

    def __post_init__(self) -> None:
        if self.failure_threshold < 1 or self.success_threshold < 1:
            raise ValueError("breaker thresholds must be >= 1")
        if self.recovery_timeout_seconds < 0:
            raise ValueError("recovery_timeout_seconds must be >= 0")

    @classmethod
    def from_env(cls) -> "BreakerConfig":
        return cls(
            failure_threshold=int(os.getenv("CB_FAILURE_THRESHOLD", "5")),
            recovery_timeout_seconds=float(os.getenv("CB_RECOVERY_TIMEOUT", "30")),
            success_threshold=int(os.getenv("CB_SUCCESS_THRESHOLD", "2")),
        )


class CircuitOpenError(StorageError):
    """The store is being skipped until the recovery timeout elapses."""

    status_code = 503

    def __init__(self, name: str, remaining_seconds: float):
        super().__init__(f"Store circuit '{name}' is open, retry in {remaining_seconds:.1f}s")
        self.name = name
        self.remaining_seconds = remaining_seconds


@dataclass
class BreakerStats:
    failures: int = 0
    rejected: int = 0
    trips: int = 0
    consecutive_failures: int = 0
    half_open_successes: int = 0

    def to_dict(self) -> dict:
        return {
            "failures": self.failures,
            "rejected": self.rejected,
            "trips": self.trips,
            "consecutive_failures": self.consecutive_failures,
            "half_open_successes": self.half_open_successes,
        }


class CircuitBreaker:
    def __init__(
        self,
        name: str,
        config: Optional[BreakerConfig] = None,
        clock: Callable[[], float] = time.monotonic,
        trips_on: Tuple[Type[BaseException], ...] = (StorageError,),
    ):
        self.name = name
        self.config = config or BreakerConfig.from_env()
        self.stats = BreakerStats()
        self._clock = clock
        self._trips_on = trips_on
        self._state = CircuitState.CLOSED
        self._opened_at = 0.0
        self._lock = threading.Lock()
        STORE_BREAKER_STATE.labels(breaker=name).set(0)

    @property
    def state(self) -> CircuitState:
        with self._lock:
            self._refresh()
            return self._state

    @property
    def is_open(self) -> bool:
        return self.state == CircuitState.OPEN

    def call(self, func: Callable[[], T]) -> T:
        """Run ``func`` unless the circuit is open; raises ``CircuitOpenError`` when it is."""
        with self._lock:
            self._refresh()
            if self._state == CircuitState.OPEN:
                self.stats.rejected += 1
                remaining = self.config.recovery_timeout_seconds - (self._clock() - self._opened_at)
                raise CircuitOpenError(self.name, max(0.0, remaining))

        try:
            result = func()
        except self._trips_on as e:
            self._record_failure(e)
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        with self._lock:
            self.stats.consecutive_failures = 0
            self._move_to(CircuitState.CLOSED, "manual reset")

    def to_dict(self) -> dict:
        with self._lock:
            self._refresh()
            return {
                "name": self.name,
                "state": self._state.value,
                **self.stats.to_dict(),
                "failure_threshold": self.config.failure_threshold,
                "recovery_timeout_seconds": self.config.recovery_timeout_seconds,
            }

    # Callers hold the lock from here on.

    def _refresh(self) -> None:
        if self._state != CircuitState.OPEN:
            return
        if self._clock() - self._opened_at >= self.config.recovery_timeout_seconds:
            self._move_to(CircuitState.HALF_OPEN, "recovery timeout elapsed")

    def _move_to(self, state: CircuitState, reason: str) -> None:
        if state == self._state:
            return
        logger.warning("[CB] %s: %s -> %s (%s)", self.name, self._state.value, state.value, reason)
        self._state = state
        self.stats.half_open_successes = 0
        if state == CircuitState.OPEN:
            self._opened_at = self._clock()
            self.stats.trips += 1
        STORE_BREAKER_STATE.labels(breaker=self.name).set(_GAUGE_VALUE[state])

    def _record_failure(self, error: BaseException) -> None:
        with self._lock:
            self.stats.failures += 1
            self.stats.consecutive_failures += 1
            if self._state == CircuitState.HALF_OPEN:
                self._move_to(CircuitState.OPEN, f"probe failed: {str(error)[:100]}")
            elif self.stats.consecutive_failures >= self.config.failure_threshold:
                self._move_to(
                    CircuitState.OPEN,
                    f"{self.stats.consecutive_failures} consecutive failures, last: {str(error)[:100]}",
                )

    def _record_success(self) -> None:
        with self._lock:
            self.stats.consecutive_failures = 0
            if self._state != CircuitState.HALF_OPEN:
                return
            self.stats.half_open_successes += 1
            if self.stats.half_open_successes >= self.config.success_threshold:
                self._move_to(CircuitState.CLOSED, "store recovered")
