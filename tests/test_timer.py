import time
from datetime import timedelta

import pytest

from sonicloop.definitions import Timeout
from sonicloop.poller import Poller
from sonicloop.timer import Timer


@pytest.fixture
def poller():
    p = Poller()
    yield p
    if not p.closed():
        p.close()


def poll_until(poller, done, limit=2.0):
    deadline = time.monotonic() + limit
    while not done() and time.monotonic() < deadline:
        try:
            poller.poll(10)
        except Timeout:
            pass
    return done()


def test_set_fires_once(poller):
    calls = []
    timer = Timer(poller)
    timer.set(0.01, lambda: calls.append("fired"))
    assert timer.armed() is True
    assert poller.pending() == 1

    assert poll_until(poller, lambda: calls)
    assert calls == ["fired"]
    assert timer.armed() is False
    assert poller.pending() == 0

    with pytest.raises(Timeout):
        poller.poll(0)
    assert calls == ["fired"]


def test_unset_cancels(poller):
    calls = []
    timer = Timer(poller)
    timer.set(0.0, lambda: calls.append("fired"))
    timer.unset()
    assert timer.armed() is False
    assert poller.pending() == 0

    with pytest.raises(Timeout):
        poller.poll(0)
    assert calls == []


def test_unset_unarmed_timer_leaves_state_alone(poller):
    timer = Timer(poller)
    timer.unset()
    assert timer.armed() is False
    assert poller.pending() == 0


def test_set_replaces_previous_schedule(poller):
    calls = []
    timer = Timer(poller)
    timer.set(60, lambda: calls.append("old"))
    timer.set(0.01, lambda: calls.append("new"))
    assert poller.pending() == 1

    assert poll_until(poller, lambda: calls)
    assert calls == ["new"]
    assert poller.pending() == 0


def test_timedelta_delay(poller):
    calls = []
    timer = Timer(poller)
    timer.set(timedelta(milliseconds=10), lambda: calls.append("fired"))
    assert poll_until(poller, lambda: calls)
    assert calls == ["fired"]


def test_negative_delay_rejected(poller):
    timer = Timer(poller)
    with pytest.raises(ValueError):
        timer.set(-0.5, lambda: None)
    assert timer.armed() is False


def test_close_disarms(poller):
    timer = Timer(poller)
    timer.set(60, lambda: None)
    timer.close()
    assert timer.armed() is False
    assert poller.pending() == 0


def test_set_after_close_raises(poller):
    timer = Timer(poller)
    timer.close()
    with pytest.raises(OSError):
        timer.set(0.01, lambda: None)
    assert poller.pending() == 0


def test_reschedule_from_callback(poller):
    calls = []
    timer = Timer(poller)

    def tick():
        calls.append(len(calls))
        if len(calls) < 3:
            timer.set(0.01, tick)

    timer.set(0.01, tick)
    assert poll_until(poller, lambda: len(calls) == 3)
    assert calls == [0, 1, 2]
    assert timer.armed() is False
    assert poller.pending() == 0


def test_independent_timers_each_fire(poller):
    calls = []
    first, second = Timer(poller), Timer(poller)
    first.set(0.01, lambda: calls.append("first"))
    second.set(0.02, lambda: calls.append("second"))
    assert poller.pending() == 2
    assert first.slot is not second.slot and first.slot.fd < 0 and second.slot.fd < 0

    assert poll_until(poller, lambda: len(calls) == 2)
    assert sorted(calls) == ["first", "second"]
    assert poller.pending() == 0