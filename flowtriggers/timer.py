"""Timer trigger: runs handlers once or repeatedly, optionally after a start delay."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from fractions import Fraction
from typing import Any, Protocol

logger = logging.getLogger(__name__)

_NANOS_PER_SECOND = 1_000_000_000
_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "µs": 1_000,
    "μs": 1_000,
    "ms": 1_000_000,
    "s": _NANOS_PER_SECOND,
    "m": 60 * _NANOS_PER_SECOND,
    "h": 3600 * _NANOS_PER_SECOND,
}
_COMPONENT = re.compile(r"(\d*)(?:\.(\d*))?([^\d.]*)")


class _Handler(Protocol):
    settings: Mapping[str, Any]

    def handle(self, data: Any) -> Any: ...


def parse_duration(text: str) -> float:
    """Parse a duration such as ``1h30m`` or ``1.5s`` and return it in seconds."""
    rest = text
    sign = 1
    if rest[:1] in ("+", "-"):
        sign = -1 if rest[0] == "-" else 1
        rest = rest[1:]
    if rest == "0":
        return 0.0
    if not rest:
        raise ValueError(f'time: invalid duration "{text}"')

    total = 0
    position = 0
    while position < len(rest):
        match = _COMPONENT.match(rest, position)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{text}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        if unit not in _UNIT_NANOS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        value = Fraction(int(whole or "0"))
        if fraction:
            value += Fraction(int(fraction), 10 ** len(fraction))
        total += int(value * _UNIT_NANOS[unit])
        position = match.end()
    return sign * total / _NANOS_PER_SECOND


@dataclass
class HandlerSettings:
    """Per-handler settings: start delay and repeat interval, as duration strings."""

    start_delay: str = ""
    repeat_interval: str = ""

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> HandlerSettings:
        start = values.get("startDelay")
        repeat = values.get("repeatInterval")
        return cls(
            start_delay="" if start is None else str(start),
            repeat_interval="" if repeat is None else str(repeat),
        )


class Job:
    """Calls ``fn`` every ``interval`` seconds on a background thread until quit."""

    def __init__(self, interval: float, fn: Callable[[], None], immediately: bool = True) -> None:
        if interval <= 0:
            raise ValueError(f"job interval must be positive, got {interval}")
        self.interval = interval
        self.fn = fn
        self.immediately = immediately
        self._quit = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("job already started")
        self._thread = threading.Thread(target=self._loop, daemon=True)
        self._thread.start()

    def quit(self) -> None:
        self._quit.set()

    def is_running(self) -> bool:
        return (
            self._thread is not None and self._thread.is_alive() and not self._quit.is_set()
        )

    def _loop(self) -> None:
        if self.immediately and not self._quit.is_set():
            self._run_once()
        while not self._quit.wait(self.interval):
            self._run_once()

    def _run_once(self) -> None:
        try:
            self.fn()
        except Exception:
            logger.exception("timer job failed")


def _whole_seconds(text: str, what: str) -> int:
    try:
        return int(parse_duration(text))
    except ValueError as err:
        raise ValueError(f"unable to parse {what}: {err}") from None


class Trigger:
    """Schedules each handler according to its start delay and repeat interval."""

    def __init__(self, config: Any = None) -> None:
        self.config = config
        self.handlers: list[_Handler] = []
        self._timers: list[Job] = []
        self._lock = threading.Lock()
        self._stopped = False

    def initialize(self, handlers: Iterable[_Handler]) -> None:
        self.handlers = list(handlers)

    def start(self) -> None:
        with self._lock:
            self._stopped = False
        for handler in self.handlers:
            settings = HandlerSettings.from_dict(handler.settings or {})
            if not settings.repeat_interval:
                self._schedule_once(handler, settings)
            else:
                self._schedule_repeating(handler, settings)

    def stop(self) -> None:
        with self._lock:
            self._stopped = True
            timers, self._timers = self._timers, []
        for timer in timers:
            if timer.is_running():
                timer.quit()

    def _add(self, job: Job) -> None:
        with self._lock:
            if not self._stopped:
                self._timers.append(job)
                return
        job.quit()

    @staticmethod
    def _run_handler(handler: _Handler, message: str) -> None:
        logger.debug(message)
        try:
            handler.handle(None)
        except Exception as err:
            logger.error("Error running handler: %s", err)

    def _schedule_once(self, handler: _Handler, settings: HandlerSettings) -> None:
        seconds = 0
        if settings.start_delay:
            seconds = _whole_seconds(settings.start_delay, "start delay")
            logger.debug("Scheduling action to run once in %d seconds", seconds)

        if seconds == 0:
            logger.debug("Start delay not specified, executing action immediately")
            self._run_handler(handler, 'Executing "Once" timer trigger')
            return

        def fire_once() -> None:
            self._run_handler(handler, 'Executing "Once" timer trigger')
            job.quit()

        job = Job(seconds, fire_once, immediately=False)
        job.start()
        self._add(job)

    def _schedule_repeating(self, handler: _Handler, settings: HandlerSettings) -> None:
        logger.info("Scheduling a repeating timer")

        start_seconds = 0
        if settings.start_delay:
            start_seconds = _whole_seconds(settings.start_delay, "start delay")
            logger.debug("Scheduling action to start in %d seconds", start_seconds)

        repeat = _whole_seconds(settings.repeat_interval, "repeat interval")
        logger.debug("Scheduling action to repeat every %d seconds", repeat)

        def fire() -> None:
            self._run_handler(handler, 'Executing "Repeating" timer')

        if start_seconds == 0:
            job = Job(repeat, fire, immediately=True)
            job.start()
            self._add(job)
            return

        # Validate the repeat interval before anything is scheduled.
        Job(repeat, fire, immediately=False)

        def first_run() -> None:
            self._run_handler(handler, "Executing first run of repeating timer")
            delayed.quit()
            follow = Job(repeat, fire, immediately=False)
            follow.start()
            self._add(follow)

        delayed = Job(start_seconds, first_run, immediately=False)
        delayed.start()
        self._add(delayed)