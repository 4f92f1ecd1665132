"""
Background aggregation of per-query timings.

Producers (repository and query terminal operations) hand a `(descriptor, duration)`
sample to a bounded queue with `put_nowait`, so recording a sample never blocks the
caller. When the queue is full the sample is dropped and counted instead.

Two daemon threads belong to a started collector:
  - the consumer: the only writer of the aggregate table. It updates the running
    stat under a lock (the queue serialises arrival, the lock protects readers of
    a point-in-time snapshot or report).
  - the reporter: after each warm-up interval, then every steady interval, logs the
    ranked top-N report on the `daokit.stats` logger and resets the table.

Lifecycle:
    stats = StatsCollector.from_settings(get_settings())
    stats.start()
    ...
    stats.stop()
"""

import itertools
import logging
import queue
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass

from daokit.config.settings import Settings
from daokit.core.logging.builder import STATS_LOGGER_NAME
from daokit.core.logging.filters import get_request_id

from .report import QueryStat, format_report

logger = logging.getLogger(__name__)
report_logger = logging.getLogger(STATS_LOGGER_NAME)


@dataclass(frozen=True)
class Sample:
    descriptor: str
    duration: float
    request_id: str | None = None


_STOP = object()


class NullStatsCollector:
    """
    Collector that discards everything. Used when no stats are wanted
    (and as the base class holding the producer-side helpers).
    """

    last_report: str = ""

    def start(self) -> None:
        pass

    def stop(self, timeout: float | None = 5.0) -> None:
        pass

    def add_sample(self, descriptor: str, duration: float) -> None:
        pass

    def add_stats(self, started: float, fmt: str, *params) -> None:
        """
        Record the time elapsed since `started` (a `time.perf_counter()` value)
        under the descriptor `fmt % params`.
        """
        if not fmt:
            logger.warning("stats.empty_descriptor", stack_info=True)
        duration = time.perf_counter() - started
        descriptor = fmt % params if params else fmt
        self.add_sample(descriptor, duration)

    @contextmanager
    def measure(self, fmt: str, *params):
        """
        Time the body of a `with` block. The sample is recorded even when the body
        raises or the surrounding task is cancelled.
        """
        started = time.perf_counter()
        try:
            yield
        finally:
            self.add_stats(started, fmt, *params)

    def wait_idle(self) -> None:
        pass

    def snapshot(self) -> dict[str, QueryStat]:
        return {}

    def report_and_reset(self) -> str:
        return ""

    def reset(self) -> None:
        pass


class StatsCollector(NullStatsCollector):
    """
    Aggregates samples per descriptor and periodically reports the slowest ones.

    Args:
        title: report heading (upper-cased in the report).
        top: number of ranked lines per report.
        interval: steady reporting interval, in seconds.
        warmup_intervals: shorter intervals used once, in order, before `interval`.
        warn_descriptors: log a warning once more distinct descriptors are tracked.
        max_descriptors: past this many, report and reset immediately.
        queue_max_size: bound of the sample queue; a full queue drops samples.
        slow_query_ms: samples at least this slow are logged individually with
            the request id of the caller (None disables it).
    """

    def __init__(
        self,
        title: str = "db stats",
        *,
        top: int = 30,
        interval: float = 3600.0,
        warmup_intervals: tuple[float, ...] | list[float] = (600.0, 1800.0),
        warn_descriptors: int = 500,
        max_descriptors: int = 1000,
        queue_max_size: int = 10_000,
        slow_query_ms: float | None = None,
    ):
        self.title = title.upper()
        self.top = top
        self.interval = interval
        self.warmup_intervals = tuple(warmup_intervals)
        self.warn_descriptors = warn_descriptors
        self.max_descriptors = max_descriptors
        self.slow_query_ms = slow_query_ms

        self.last_report = ""
        self._stats: dict[str, QueryStat] = {}
        self._stats_lock = threading.Lock()
        self._queue: queue.Queue = queue.Queue(maxsize=queue_max_size)
        self._stop_event = threading.Event()
        self._lifecycle_lock = threading.Lock()
        self._threads: list[threading.Thread] = []

        self._dropped = 0
        self._dropped_lock = threading.Lock()

    @classmethod
    def from_settings(cls, settings: Settings) -> "StatsCollector":
        return cls(
            settings.STATS_TITLE,
            top=settings.STATS_TOP,
            interval=settings.STATS_INTERVAL_SECONDS,
            warmup_intervals=settings.STATS_WARMUP_INTERVALS_SECONDS,
            warn_descriptors=settings.STATS_WARN_DESCRIPTORS,
            max_descriptors=settings.STATS_MAX_DESCRIPTORS,
            queue_max_size=settings.STATS_QUEUE_MAX_SIZE,
            slow_query_ms=settings.STATS_SLOW_QUERY_MS,
        )

    # =================================================================================================================
    # Lifecycle
    # =================================================================================================================

    @property
    def running(self) -> bool:
        return any(t.is_alive() for t in self._threads)

    def start(self) -> None:
        """Start the consumer and reporter threads. Calling it twice is a no-op."""
        with self._lifecycle_lock:
            if self._threads:
                logger.warning("stats.already_started", extra={"title": self.title})
                return
            self._stop_event.clear()
            self._threads = [
                threading.Thread(target=self._consume, name="daokit-stats-consumer", daemon=True),
                threading.Thread(target=self._report_periodically, name="daokit-stats-reporter", daemon=True),
            ]
            for thread in self._threads:
                thread.start()
        logger.debug("stats.started", extra={"title": self.title, "interval": self.interval})

    def stop(self, timeout: float | None = 5.0) -> None:
        """
        Stop both threads. Samples already queued are aggregated before the consumer
        exits; nothing is reported on the way out.
        """
        with self._lifecycle_lock:
            if not self._threads:
                return
            self._stop_event.set()
            try:
                self._queue.put(_STOP, timeout=timeout)
            except queue.Full:
                logger.warning("stats.stop_queue_full", extra={"title": self.title})
            for thread in self._threads:
                thread.join(timeout)
            self._threads = []
        logger.debug("stats.stopped", extra={"title": self.title, "dropped": self.dropped})

    # =================================================================================================================
    # Producer side
    # =================================================================================================================

    @property
    def dropped(self) -> int:
        with self._dropped_lock:
            return self._dropped

    def add_sample(self, descriptor: str, duration: float) -> None:
        sample = Sample(descriptor, duration, get_request_id())
        try:
            self._queue.put_nowait(sample)
        except queue.Full:
            with self._dropped_lock:
                self._dropped += 1
                dropped = self._dropped
            # One warning per thousand drops keeps this path quiet under sustained overload
            if dropped == 1 or dropped % 1000 == 0:
                logger.warning("stats.sample_dropped", extra={"dropped": dropped, "title": self.title})

    def wait_idle(self) -> None:
        """Block until every queued sample has been aggregated (requires start())."""
        self._queue.join()

    # =================================================================================================================
    # Consumer side
    # =================================================================================================================

    def _consume(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                self._record(item)
            except Exception:
                logger.exception("stats.consume_failed")
            finally:
                self._queue.task_done()

    def _record(self, sample: Sample) -> None:
        with self._stats_lock:
            stat = self._stats.get(sample.descriptor)
            if stat is None:
                stat = QueryStat(sample.descriptor)
                self._stats[sample.descriptor] = stat
            stat.add(sample.duration)
            tracked = len(self._stats)

        if tracked > self.max_descriptors:
            logger.warning(
                "stats.too_many_descriptors.reset",
                extra={"descriptors": tracked, "limit": self.max_descriptors},
            )
            self.report_and_reset()
        elif tracked == self.warn_descriptors + 1 and stat.count == 1:
            logger.warning(
                "stats.too_many_descriptors",
                extra={"descriptors": tracked, "threshold": self.warn_descriptors},
            )

        if self.slow_query_ms is not None and sample.duration * 1000 >= self.slow_query_ms:
            logger.warning(
                "stats.slow_query",
                extra={
                    "descriptor": sample.descriptor,
                    "duration_ms": round(sample.duration * 1000, 3),
                    "request_id": sample.request_id,
                },
            )

    # =================================================================================================================
    # Reporting
    # =================================================================================================================

    def _report_periodically(self) -> None:
        for delay in itertools.chain(self.warmup_intervals, itertools.repeat(self.interval)):
            if self._stop_event.wait(delay):
                return
            try:
                self.report_and_reset()
            except Exception:
                logger.exception("stats.report_failed")

    def snapshot(self) -> dict[str, QueryStat]:
        with self._stats_lock:
            return {key: stat.copy() for key, stat in self._stats.items()}

    def reset(self) -> None:
        with self._stats_lock:
            self._stats = {}

    def report_and_reset(self) -> str:
        """
        Build the ranked report from the current table, swap in an empty table,
        log the report and return it.
        """
        with self._stats_lock:
            current = self._stats
            self._stats = {}
        report = format_report(self.title, current.values(), self.top)
        self.last_report = report
        report_logger.info(report)
        return report
