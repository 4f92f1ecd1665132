import pytest

from daokit.stats.report import QueryStat, format_duration, format_report, rank_stats


def make_stat(descriptor, *durations):
    stat = QueryStat(descriptor)
    for duration in durations:
        stat.add(duration)
    return stat


def test_query_stat_aggregates():
    stat = make_stat("loading User", 0.010, 0.020, 0.030)

    assert stat.count == 3
    assert stat.min == pytest.approx(0.010)
    assert stat.max == pytest.approx(0.030)
    assert stat.avg == pytest.approx(0.020)
    assert stat.total == pytest.approx(0.060)


def test_first_sample_sets_min_even_when_slow():
    stat = make_stat("x", 0.5)
    assert stat.min == stat.max == 0.5


def test_format_duration():
    assert format_duration(0.0205) == "20.500ms"


def test_rank_stats_slowest_first_capped():
    stats = [make_stat("fast", 0.001), make_stat("slow", 0.9), make_stat("mid", 0.1)]

    assert [s.descriptor for s in rank_stats(stats, 2)] == ["slow", "mid"]


def test_format_report_lines():
    report = format_report("db stats", [make_stat("loading User", 0.010, 0.020, 0.030)], top=30)

    lines = report.splitlines()
    assert lines[0] == "DB STATS (avg/min/max/count):"
    assert lines[1] == "%50s  %s" % ("20.000ms/10.000ms/30.000ms/n=3", "loading User")
    assert report.endswith("\n")


def test_format_empty_report():
    assert format_report("db stats", [], top=30) == "DB STATS (avg/min/max/count):\nempty\n"
