import threading

import pytest

from jpgrid.circuit import BreakerState, CircuitBreaker
from jpgrid.errors import CircuitOpenError


class Boom(RuntimeError):
    pass


def _fail():
    raise Boom("upstream down")


def _trip(breaker: CircuitBreaker, times: int) -> None:
    for _ in range(times):
        with pytest.raises(Boom):
            breaker.call(_fail)


def test_opens_after_threshold_and_rejects_without_calling(clock):
    breaker = CircuitBreaker(failure_threshold=3, cooldown=10.0, clock=clock)
    _trip(breaker, 2)
    assert breaker.state is BreakerState.CLOSED
    assert breaker.failures == 2

    _trip(breaker, 1)
    assert breaker.state is BreakerState.OPEN

    calls = []
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: calls.append("called"))
    assert calls == []


def test_half_open_success_closes_and_resets_counter(clock):
    breaker = CircuitBreaker(failure_threshold=2, cooldown=10.0, clock=clock)
    _trip(breaker, 2)
    clock.advance(9.0)
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "nope")

    clock.advance(1.0)
    assert breaker.state is BreakerState.HALF_OPEN
    assert breaker.call(lambda: "ok") == "ok"
    assert breaker.state is BreakerState.CLOSED
    assert breaker.failures == 0


def test_half_open_failure_reopens_and_restarts_cooldown(clock):
    breaker = CircuitBreaker(failure_threshold=1, cooldown=5.0, clock=clock)
    _trip(breaker, 1)
    clock.advance(5.0)
    _trip(breaker, 1)
    assert breaker.state is BreakerState.OPEN

    clock.advance(4.0)
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "still cooling")
    clock.advance(1.0)
    assert breaker.call(lambda: "recovered") == "recovered"


def test_success_in_closed_state_resets_failures(clock):
    breaker = CircuitBreaker(failure_threshold=3, clock=clock)
    _trip(breaker, 2)
    breaker.call(lambda: None)
    assert breaker.failures == 0
    _trip(breaker, 2)
    assert breaker.state is BreakerState.CLOSED


def test_half_open_admits_a_single_trial(clock):
    breaker = CircuitBreaker(failure_threshold=1, cooldown=1.0, clock=clock)
    _trip(breaker, 1)
    clock.advance(1.0)

    entered = threading.Event()
    release = threading.Event()
    results = []

    def slow_trial():
        entered.set()
        release.wait(timeout=5)
        return "trial"

    worker = threading.Thread(target=lambda: results.append(breaker.call(slow_trial)))
    worker.start()
    assert entered.wait(timeout=5)
    with pytest.raises(CircuitOpenError):
        breaker.call(lambda: "second")
    release.set()
    worker.join(timeout=5)
    assert results == ["trial"]
    assert breaker.state is BreakerState.CLOSED


def test_reset_returns_to_closed(clock):
    breaker = CircuitBreaker(failure_threshold=1, clock=clock)
    _trip(breaker, 1)
    breaker.reset()
    assert breaker.state is BreakerState.CLOSED
    assert breaker.failures == 0


@pytest.mark.parametrize("kwargs", [{"failure_threshold": 0}, {"cooldown": -1.0}])
def test_rejects_invalid_configuration(kwargs):
    with pytest.raises(ValueError):
        CircuitBreaker(**kwargs)
