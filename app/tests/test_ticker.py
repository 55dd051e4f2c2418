import threading
import time

from app.engine.ticker import TickScheduler


def test_ticks_until_stopped():
    fired = threading.Event()
    calls = []

    def _tick():
        calls.append(True)
        if len(calls) >= 3:
            fired.set()

    scheduler = TickScheduler(_tick, interval=0.01)
    scheduler.start()
    assert fired.wait(timeout=2)
    scheduler.stop()

    assert scheduler.running is False
    count = len(calls)
    time.sleep(0.05)
    assert len(calls) == count


def test_failing_callback_keeps_ticking():
    fired = threading.Event()
    calls = []

    def _tick():
        calls.append(True)
        if len(calls) == 1:
            raise RuntimeError("boom")
        fired.set()

    scheduler = TickScheduler(_tick, interval=0.01)
    scheduler.start()
    assert fired.wait(timeout=2)
    scheduler.stop()


def test_stop_from_inside_callback():
    done = threading.Event()
    holder = {}

    def _tick():
        holder["scheduler"].stop()
        done.set()

    holder["scheduler"] = TickScheduler(_tick, interval=0.01)
    holder["scheduler"].start()

    assert done.wait(timeout=2)
    holder["scheduler"].stop()
    assert holder["scheduler"].running is False
