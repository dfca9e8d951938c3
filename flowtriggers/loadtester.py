"""Load-testing trigger: calls one handler concurrently for a fixed time and reports statistics."""

from __future__ import annotations

import logging
import sys
import threading
import time
from collections.abc import Iterable, Mapping
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Protocol

logger = logging.getLogger(__name__)

OV_DATA = "data"
DEFAULT_START_DELAY = 30
DEFAULT_CONCURRENCY = 5
DEFAULT_DURATION = 120
_INITIAL_MIN_REQUEST_TIME = 60.0


class _Handler(Protocol):
    name: str

    def handle(self, data: Any) -> Any: ...


def _to_int(value: Any, default: int) -> int:
    if value is None or value == "":
        return default
    if isinstance(value, bool):
        return int(value)
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValueError(f"unable to coerce {value!r} to int") from None


def _fraction(nanos: int, unit: int) -> str:
    whole, rest = divmod(nanos, unit)
    digits = len(str(unit)) - 1
    frac = str(rest).rjust(digits, "0").rstrip("0")
    return f"{whole}.{frac}" if frac else str(whole)


def _format_duration(seconds: float) -> str:
    nanos = round(seconds * 1_000_000_000)
    sign = "-" if nanos < 0 else ""
    nanos = abs(nanos)
    if nanos == 0:
        return "0s"
    if nanos < 1_000:
        return f"{sign}{nanos}ns"
    if nanos < 1_000_000:
        return f"{sign}{_fraction(nanos, 1_000)}µs"
    if nanos < 1_000_000_000:
        return f"{sign}{_fraction(nanos, 1_000_000)}ms"
    hours, rest = divmod(nanos, 3600 * 1_000_000_000)
    minutes, rest = divmod(rest, 60 * 1_000_000_000)
    text = f"{_fraction(rest, 1_000_000_000)}s"
    if hours or minutes:
        text = f"{minutes}m{text}"
    if hours:
        text = f"{hours}h{text}"
    return sign + text


@dataclass
class RequesterStats:
    """Aggregate request statistics; times are in seconds."""

    tot_duration: float = 0.0
    min_request_time: float = _INITIAL_MIN_REQUEST_TIME
    max_request_time: float = 0.0
    num_requests: int = 0
    num_errs: int = 0

    def merge(self, other: RequesterStats) -> None:
        """Fold another set of statistics into this one."""
        self.num_errs += other.num_errs
        self.num_requests += other.num_requests
        self.tot_duration += other.tot_duration
        self.max_request_time = max(self.max_request_time, other.max_request_time)
        self.min_request_time = min(self.min_request_time, other.min_request_time)


class LoadSession:
    """Calls a handler repeatedly for ``duration`` seconds or until stopped."""

    def __init__(self, duration: int) -> None:
        self.duration = duration
        self._interrupted = threading.Event()

    def run(self, handler: _Handler, data: Any) -> RequesterStats:
        stats = RequesterStats()
        session_start = time.monotonic()
        while (
            time.monotonic() - session_start <= self.duration
            and not self._interrupted.is_set()
        ):
            start = time.monotonic()
            try:
                handler.handle(data)
            except Exception:
                stats.num_errs += 1
                continue
            elapsed = time.monotonic() - start
            stats.tot_duration += elapsed
            stats.max_request_time = max(elapsed, stats.max_request_time)
            stats.min_request_time = min(elapsed, stats.min_request_time)
            stats.num_requests += 1
        return stats

    def stop(self) -> None:
        self._interrupted.set()


class LoadTest:
    """Runs ``concurrency_level`` sessions side by side and prints a summary."""

    def __init__(self, duration: int, concurrency_level: int) -> None:
        self.duration = duration
        self.concurrency_level = concurrency_level
        self._session: LoadSession | None = None

    def run(self, handler: _Handler, data: Any) -> RequesterStats:
        """Run the test and return the aggregated statistics."""
        out = sys.stdout
        out.write(
            f"Running {self.duration}s test\n"
            f"  {self.concurrency_level} worker(s) running concurrently\n"
        )

        session = LoadSession(self.duration)
        self._session = session
        agg = RequesterStats()
        responders = 0

        with ThreadPoolExecutor(max_workers=max(self.concurrency_level, 1)) as pool:
            pending = {
                pool.submit(session.run, handler, data)
                for _ in range(self.concurrency_level)
            }
            while pending:
                try:
                    done, pending = wait(pending, return_when=FIRST_COMPLETED)
                except KeyboardInterrupt:
                    session.stop()
                    continue
                for future in done:
                    agg.merge(future.result())
                    responders += 1

        if agg.num_requests == 0:
            out.write("Error: No statistics collected\n")
            return agg

        avg_thread_dur = agg.tot_duration / responders
        req_rate = agg.num_requests / avg_thread_dur if avg_thread_dur > 0 else float("inf")
        avg_req_time = agg.tot_duration / agg.num_requests
        out.write(f"{agg.num_requests} requests in {_format_duration(avg_thread_dur)}\n")
        out.write(f"Requests/sec:\t\t{req_rate:.2f}\n")
        out.write(f"Avg Req Time:\t\t{_format_duration(avg_req_time)}\n")
        out.write(f"Fastest Request:\t{_format_duration(agg.min_request_time)}\n")
        out.write(f"Slowest Request:\t{_format_duration(agg.max_request_time)}\n")
        out.write(f"Number of Errors:\t{agg.num_errs}\n")
        return agg


@dataclass
class Settings:
    """Load test settings; delays and durations are in seconds."""

    concurrency: int = DEFAULT_CONCURRENCY
    duration: int = DEFAULT_DURATION
    data: Any = None
    handler: str = ""
    start_delay: int = DEFAULT_START_DELAY

    @classmethod
    def from_dict(cls, values: Mapping[str, Any]) -> Settings:
        handler = values.get("handler")
        return cls(
            concurrency=_to_int(values.get("concurrency"), DEFAULT_CONCURRENCY),
            duration=_to_int(values.get("duration"), DEFAULT_DURATION),
            data=values.get("data"),
            handler="" if handler is None else str(handler),
            start_delay=_to_int(values.get("startDelay"), DEFAULT_START_DELAY),
        )


@dataclass
class Output:
    """The data from the settings that is passed to the handler."""

    data: Any = None

    def to_map(self) -> dict[str, Any]:
        return {OV_DATA: self.data}

    @classmethod
    def from_map(cls, values: Mapping[str, Any]) -> Output:
        return cls(data=values.get(OV_DATA))


class Trigger:
    """Starts a load test against one handler after a start delay."""

    def __init__(self, config: Mapping[str, Any]) -> None:
        self.id = config.get("id", "")
        self.settings = Settings.from_dict(config.get("settings") or {})
        self.handler: _Handler | None = None
        self._stopping = threading.Event()
        self._thread: threading.Thread | None = None
        self._load_test: LoadTest | None = None

    def initialize(self, handlers: Iterable[_Handler]) -> None:
        handlers = list(handlers)
        if not handlers:
            logger.warning("No Handlers specified for Load Trigger: %s", self.id)
            raise ValueError(f"no handlers specified for load trigger '{self.id}'")

        self.handler = handlers[0]
        if not self.settings.handler:
            return

        for handler in handlers:
            if getattr(handler, "name", "") == self.settings.handler:
                self.handler = handler
                return
        logger.warning("Handler '%s' not found, using first handler", self.settings.handler)

    def start(self) -> None:
        if self.handler is None:
            raise RuntimeError("trigger has not been initialized")
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run_load_test, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stopping.set()
        if self._load_test is not None and self._load_test._session is not None:
            self._load_test._session.stop()

    def _run_load_test(self) -> None:
        sys.stdout.write(f"Starting load test in {self.settings.start_delay} seconds\n")
        if self._stopping.wait(self.settings.start_delay):
            return
        data = Output(data=self.settings.data).to_map()
        self._load_test = LoadTest(self.settings.duration, self.settings.concurrency)
        self._load_test.run(self.handler, data)