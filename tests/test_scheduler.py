import threading

from phoneagent.scheduler import TimerScheduler


def test_callback_runs_after_delay():
    fired = threading.Event()
    timer = TimerScheduler().call_later(0.01, fired.set)
    assert fired.wait(2)
    assert timer.daemon


def test_cancelled_callback_never_runs():
    fired = threading.Event()
    TimerScheduler().call_later(0.2, fired.set).cancel()
    assert not fired.wait(0.4)


def test_clock_is_monotonic():
    s = TimerScheduler()
    assert s.now() <= s.now()
