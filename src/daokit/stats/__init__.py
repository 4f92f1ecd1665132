from .collector import NullStatsCollector, Sample, StatsCollector
from .report import QueryStat, format_duration, format_report, rank_stats

__all__ = [
    "StatsCollector",
    "NullStatsCollector",
    "Sample",
    "QueryStat",
    "format_duration",
    "format_report",
    "rank_stats",
]
