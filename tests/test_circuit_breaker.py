"""Tests for the batch-level remote circuit breaker."""

from __future__ import annotations

from src.erpsync.sync.circuit_breaker import CircuitBreaker, CircuitState


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def _make_breaker(clock: FakeClock, **overrides) -> CircuitBreaker:
    options = dict(failure_threshold=3, failure_ratio=0.8, recovery_delay=300.0, probe_ttl=360.0)
    options.update(overrides)
    return CircuitBreaker(clock=clock, **options)


class TestOpening:
    def test_starts_closed(self):
        breaker = _make_breaker(FakeClock())

        assert breaker.state == CircuitState.closed
        assert breaker.is_available()

    def test_opens_after_consecutive_failed_batches(self):
        breaker = _make_breaker(FakeClock())

        breaker.record_batch(0, 10)
        breaker.record_batch(1, 9)
        assert breaker.state == CircuitState.closed

        breaker.record_batch(2, 8)

        assert breaker.state == CircuitState.open
        assert not breaker.is_available()

    def test_batch_below_ratio_resets_the_count(self):
        breaker = _make_breaker(FakeClock())

        breaker.record_batch(0, 5)
        breaker.record_batch(0, 5)
        breaker.record_batch(5, 5)
        breaker.record_batch(0, 5)

        assert breaker.consecutive_failures == 1
        assert breaker.state == CircuitState.closed

    def test_empty_batch_is_ignored(self):
        breaker = _make_breaker(FakeClock(), failure_threshold=1)

        breaker.record_batch(0, 0)

        assert breaker.state == CircuitState.closed


class TestRecovery:
    def _opened(self, clock: FakeClock) -> CircuitBreaker:
        breaker = _make_breaker(clock, failure_threshold=1)
        breaker.record_batch(0, 1)
        return breaker

    def test_half_open_after_recovery_delay(self):
        clock = FakeClock()
        breaker = self._opened(clock)

        clock.advance(299)
        assert breaker.state == CircuitState.open

        clock.advance(1)
        assert breaker.state == CircuitState.half_open

    def test_half_open_admits_a_single_probe(self):
        clock = FakeClock()
        breaker = self._opened(clock)
        clock.advance(300)

        assert breaker.is_available()
        assert not breaker.is_available()

    def test_abandoned_probe_is_replaced_after_ttl(self):
        clock = FakeClock()
        breaker = self._opened(clock)
        clock.advance(300)
        assert breaker.is_available()

        clock.advance(360)

        assert breaker.is_available()

    def test_healthy_probe_closes(self):
        clock = FakeClock()
        breaker = self._opened(clock)
        clock.advance(300)
        breaker.is_available()

        breaker.record_batch(1, 0)

        assert breaker.state == CircuitState.closed
        assert breaker.consecutive_failures == 0

    def test_failed_probe_reopens(self):
        clock = FakeClock()
        breaker = self._opened(clock)
        clock.advance(300)
        breaker.is_available()

        breaker.record_batch(0, 1)

        assert breaker.state == CircuitState.open
        clock.advance(300)
        assert breaker.is_available()

    def test_reset(self):
        breaker = self._opened(FakeClock())

        breaker.reset()

        assert breaker.state == CircuitState.closed
