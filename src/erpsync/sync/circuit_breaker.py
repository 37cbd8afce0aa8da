"""Batch-level circuit breaker for the remote connection.

A batch whose failure ratio reaches ``failure_ratio`` counts as a failed
batch. After ``failure_threshold`` consecutive failed batches the circuit
opens and workers stop claiming jobs. Once ``recovery_delay`` has passed
the breaker goes half-open and lets exactly one probe batch through; a
healthy probe closes the circuit, a failed one re-opens it.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from enum import Enum

import structlog

from src.erpsync.core.monitoring import circuit_breaker_open

logger = structlog.get_logger(__name__)

FAILURE_THRESHOLD = 3
FAILURE_RATIO = 0.8
RECOVERY_DELAY = 300.0
PROBE_TTL = 360.0


class CircuitState(str, Enum):
    closed = "closed"
    open = "open"
    half_open = "half_open"


class CircuitBreaker:
    """Tracks remote health across batches.

    Args:
        failure_threshold: Consecutive failed batches before opening.
        failure_ratio: Failures/total at or above which a batch has failed.
        recovery_delay: Seconds the circuit stays open before probing.
        probe_ttl: Seconds after which an unreported probe is abandoned.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        failure_threshold: int = FAILURE_THRESHOLD,
        failure_ratio: float = FAILURE_RATIO,
        recovery_delay: float = RECOVERY_DELAY,
        probe_ttl: float = PROBE_TTL,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._threshold = failure_threshold
        self._ratio = failure_ratio
        self._recovery_delay = recovery_delay
        self._probe_ttl = probe_ttl
        self._clock = clock
        self._failures = 0
        self._opened_at: float | None = None
        self._probe_started_at: float | None = None

    @property
    def state(self) -> CircuitState:
        if self._opened_at is None:
            return CircuitState.closed
        if self._clock() - self._opened_at >= self._recovery_delay:
            return CircuitState.half_open
        return CircuitState.open

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def is_available(self) -> bool:
        """Whether a worker may process a batch now.

        In half-open state only the first caller gets True (the probe).
        """
        state = self.state
        if state == CircuitState.closed:
            return True
        if state == CircuitState.open:
            return False

        now = self._clock()
        if self._probe_started_at is not None and now - self._probe_started_at < self._probe_ttl:
            return False
        self._probe_started_at = now
        logger.info("circuit_breaker.half_open_probe")
        return True

    def record_batch(self, successes: int, failures: int) -> None:
        """Feed one batch outcome. Empty batches are ignored."""
        total = successes + failures
        if total == 0:
            return
        if failures / total >= self._ratio:
            self.record_failure(successes, failures)
        else:
            self.record_success()

    def record_success(self) -> None:
        if self._opened_at is not None:
            logger.info("circuit_breaker.closed")
        self._failures = 0
        self._opened_at = None
        self._probe_started_at = None
        circuit_breaker_open.set(0)

    def record_failure(self, successes: int = 0, failures: int = 0) -> None:
        self._failures += 1
        self._probe_started_at = None
        if self._failures >= self._threshold:
            was_open = self._opened_at is not None
            self._opened_at = self._clock()
            circuit_breaker_open.set(1)
            log = logger.warning if was_open else logger.error
            log(
                "circuit_breaker.opened",
                consecutive_failures=self._failures,
                batch_successes=successes,
                batch_failures=failures,
                recovery_delay=self._recovery_delay,
            )

    def reset(self) -> None:
        self.record_success()
