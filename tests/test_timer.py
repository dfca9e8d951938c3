import threading
import time

import pytest

from flowtriggers.timer import HandlerSettings, Job, Trigger, parse_duration

TEST_CONFIG = {
    "id": "flogo-timer",
    "handlers": [{"settings": {"repeatInterval": "1s"}, "action": {"id": "dummy"}}],
}


class _Handler:
    def __init__(self, settings):
        self.settings = settings
        self.name = "timer"
        self.calls = []
        self.called = threading.Event()
        self._lock = threading.Lock()

    def handle(self, data):
        with self._lock:
            self.calls.append(data)
        self.called.set()
        return {}

    def count(self):
        with self._lock:
            return len(self.calls)


def test_init_ok():
    trg = Trigger(None)
    trg.initialize([])
    trg.start()
    trg.stop()
    assert trg.handlers == []


def test_timer_trigger_initialize_start_stop():
    handler = _Handler(TEST_CONFIG["handlers"][0]["settings"])
    trg = Trigger(TEST_CONFIG)
    trg.initialize([handler])
    trg.start()
    assert handler.called.wait(3)
    trg.stop()
    time.sleep(0.1)
    count = handler.count()
    time.sleep(1.3)
    assert handler.count() == count
    assert handler.calls[0] is None


def test_once_without_delay_runs_immediately():
    handler = _Handler({})
    trg = Trigger()
    trg.initialize([handler])
    trg.start()
    assert handler.count() == 1
    trg.stop()


def test_once_with_delay_runs_exactly_once():
    handler = _Handler({"startDelay": "1s"})
    trg = Trigger()
    trg.initialize([handler])
    trg.start()
    assert handler.count() == 0
    assert handler.called.wait(3)
    time.sleep(1.4)
    assert handler.count() == 1
    trg.stop()


def test_repeating_with_start_delay():
    handler = _Handler({"startDelay": "1s", "repeatInterval": "1s"})
    trg = Trigger()
    trg.initialize([handler])
    trg.start()
    assert handler.count() == 0
    assert handler.called.wait(3)
    trg.stop()
    time.sleep(0.1)
    count = handler.count()
    time.sleep(1.3)
    assert handler.count() == count


def test_invalid_start_delay():
    trg = Trigger()
    trg.initialize([_Handler({"startDelay": "soon"})])
    with pytest.raises(ValueError, match="unable to parse start delay"):
        trg.start()


def test_invalid_repeat_interval():
    trg = Trigger()
    trg.initialize([_Handler({"repeatInterval": "often"})])
    with pytest.raises(ValueError, match="unable to parse repeat interval"):
        trg.start()


def test_handler_settings_from_dict():
    settings = HandlerSettings.from_dict({"startDelay": "1m", "repeatInterval": "1h"})
    assert settings == HandlerSettings(start_delay="1m", repeat_interval="1h")
    assert HandlerSettings.from_dict({}) == HandlerSettings()


@pytest.mark.parametrize(
    "text, seconds",
    [
        ("1s", 1.0),
        ("1m", 60.0),
        ("1h", 3600.0),
        ("1h30m", 5400.0),
        ("1.5s", 1.5),
        ("300ms", 0.3),
        ("-2s", -2.0),
        ("+3s", 3.0),
        ("0", 0.0),
        (".5s", 0.5),
        ("1500us", 0.0015),
    ],
)
def test_parse_duration(text, seconds):
    assert parse_duration(text) == pytest.approx(seconds)


@pytest.mark.parametrize(
    "text, message",
    [
        ("", "invalid duration"),
        ("abc", "invalid duration"),
        ("1", "missing unit"),
        ("1x", "unknown unit"),
        ("-", "invalid duration"),
    ],
)
def test_parse_duration_errors(text, message):
    with pytest.raises(ValueError, match=message):
        parse_duration(text)


def test_job_runs_immediately_and_repeats():
    counter = {"n": 0}
    lock = threading.Lock()
    done = threading.Event()

    def tick():
        with lock:
            counter["n"] += 1
            if counter["n"] >= 3:
                done.set()

    job = Job(0.05, tick)
    job.start()
    assert done.wait(3)
    assert job.is_running()
    job.quit()
    assert not job.is_running()
    time.sleep(0.1)
    with lock:
        stopped_at = counter["n"]
    time.sleep(0.2)
    with lock:
        assert counter["n"] == stopped_at


def test_job_not_immediately_waits_for_interval():
    fired = threading.Event()
    job = Job(0.3, fired.set, immediately=False)
    job.start()
    assert not fired.is_set()
    assert fired.wait(3)
    job.quit()


def test_job_rejects_non_positive_interval():
    with pytest.raises(ValueError):
        Job(0, lambda: None)


def test_job_cannot_start_twice():
    job = Job(1, lambda: None, immediately=False)
    job.start()
    with pytest.raises(RuntimeError):
        job.start()
    job.quit()
    assert not job.is_running()