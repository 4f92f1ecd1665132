import logging
import threading
import time

import pytest

from daokit.core.logging.builder import STATS_LOGGER_NAME
from daokit.core.logging.filters import request_id_scope
from daokit.stats.collector import NullStatsCollector, StatsCollector


@pytest.fixture
def collector():
    stats = StatsCollector("db stats", interval=3600, warmup_intervals=(), slow_query_ms=None)
    stats.start()
    yield stats
    stats.stop()


class TestStatsCollector:

    def test_samples_are_aggregated_per_descriptor(self, collector):
        """
        Behavior:
                - Three samples of 10, 20 and 30 ms under one descriptor.
                - The aggregate has count 3, min 10 ms, max 30 ms, avg 20 ms.
        """
        for duration in (0.010, 0.020, 0.030):
            collector.add_sample("loading User", duration)
        collector.wait_idle()

        stat = collector.snapshot()["loading User"]
        assert stat.count == 3
        assert stat.min == pytest.approx(0.010)
        assert stat.max == pytest.approx(0.030)
        assert stat.avg == pytest.approx(0.020)

    def test_add_stats_formats_descriptor(self, collector):
        collector.add_stats(time.perf_counter(), "creating %s", "User")
        collector.add_stats(time.perf_counter(), "100% literal")
        collector.wait_idle()

        assert set(collector.snapshot()) == {"creating User", "100% literal"}

    def test_measure_records_even_on_error(self, collector):
        with pytest.raises(ValueError):
            with collector.measure("updating %s", "Note"):
                raise ValueError("boom")
        collector.wait_idle()

        assert collector.snapshot()["updating Note"].count == 1

    def test_empty_descriptor_warns_with_stack(self, collector, caplog):
        with caplog.at_level(logging.WARNING, logger="daokit"):
            collector.add_stats(time.perf_counter(), "")
        record = next(r for r in caplog.records if r.getMessage() == "stats.empty_descriptor")
        assert record.stack_info

    def test_report_and_reset(self, collector, caplog):
        collector.add_sample("loading User", 0.020)
        collector.wait_idle()

        with caplog.at_level(logging.INFO, logger=STATS_LOGGER_NAME):
            report = collector.report_and_reset()

        assert report.startswith("DB STATS (avg/min/max/count):\n")
        assert "loading User" in report
        assert collector.last_report == report
        assert collector.snapshot() == {}
        assert any(r.name == STATS_LOGGER_NAME and "loading User" in r.getMessage() for r in caplog.records)

    def test_report_lists_at_most_top_entries(self):
        stats = StatsCollector("db stats", top=2)
        for n in range(5):
            stats.add_sample(f"query {n}", n / 1000)
        # not started: aggregate synchronously from the queue
        while not stats._queue.empty():
            stats._record(stats._queue.get_nowait())

        lines = stats.report_and_reset().splitlines()
        assert len(lines) == 3
        assert lines[1].endswith("query 4")

    def test_too_many_descriptors_forces_reset(self, caplog):
        stats = StatsCollector("db stats", warn_descriptors=2, max_descriptors=3)
        with caplog.at_level(logging.WARNING, logger="daokit"):
            for n in range(4):
                stats.add_sample(f"query {n}", 0.001)
                stats._record(stats._queue.get_nowait())

        messages = [r.getMessage() for r in caplog.records]
        assert messages.count("stats.too_many_descriptors") == 1
        assert "stats.too_many_descriptors.reset" in messages
        assert stats.snapshot() == {}
        assert "query 3" in stats.last_report

    def test_full_queue_drops_without_blocking(self):
        stats = StatsCollector("db stats", queue_max_size=2)

        for n in range(5):
            stats.add_sample("q", 0.001)

        assert stats.dropped == 3

    def test_slow_sample_logged_with_request_id(self, caplog):
        stats = StatsCollector("db stats", slow_query_ms=5)
        with request_id_scope("req-42"):
            stats.add_sample("loading User", 0.050)

        with caplog.at_level(logging.WARNING, logger="daokit"):
            stats._record(stats._queue.get_nowait())

        record = next(r for r in caplog.records if r.getMessage() == "stats.slow_query")
        assert record.request_id == "req-42"
        assert record.duration_ms == pytest.approx(50.0)

    def test_reporter_runs_after_warmup(self):
        reported = threading.Event()

        class Recording(StatsCollector):
            def report_and_reset(self):
                reported.set()
                return super().report_and_reset()

        stats = Recording("db stats", interval=3600, warmup_intervals=(0.01,))
        stats.start()
        try:
            assert reported.wait(2)
        finally:
            stats.stop()
        assert not stats.running

    def test_start_twice_is_noop(self, collector, caplog):
        with caplog.at_level(logging.WARNING, logger="daokit"):
            collector.start()
        assert any(r.getMessage() == "stats.already_started" for r in caplog.records)
        assert collector.running


def test_null_collector_discards():
    stats = NullStatsCollector()
    with stats.measure("creating %s", "User"):
        pass
    stats.add_sample("x", 1.0)
    stats.wait_idle()
    assert stats.snapshot() == {}
    assert stats.report_and_reset() == ""
