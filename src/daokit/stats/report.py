"""
Aggregate type and text report for query timing stats.
"""

from dataclasses import dataclass
from typing import Iterable


@dataclass
class QueryStat:
    """
    Running aggregate for one query descriptor. Durations are in seconds.

    `avg` is recomputed from `total / count` on every sample, never adjusted
    incrementally.
    """

    descriptor: str
    count: int = 0
    min: float = 0.0
    max: float = 0.0
    total: float = 0.0
    avg: float = 0.0

    def add(self, duration: float) -> None:
        if self.count == 0 or duration < self.min:
            self.min = duration
        if self.count == 0 or duration > self.max:
            self.max = duration
        self.count += 1
        self.total += duration
        self.avg = self.total / self.count

    def copy(self) -> "QueryStat":
        return QueryStat(self.descriptor, self.count, self.min, self.max, self.total, self.avg)


def format_duration(seconds: float) -> str:
    """`0.0205` -> `'20.500ms'`"""
    return f"{seconds * 1000:.3f}ms"


def rank_stats(stats: Iterable[QueryStat], top: int) -> list[QueryStat]:
    """Slowest first (by average), at most `top` entries."""
    ranked = sorted(stats, key=lambda s: s.avg, reverse=True)
    return ranked[:top] if top > 0 else ranked


def format_report(title: str, stats: Iterable[QueryStat], top: int) -> str:
    """
    Render the ranked report:

        DB STATS (avg/min/max/count):
                     20.000ms/10.000ms/30.000ms/n=3  loading User
    """
    lines = [f"{title.upper()} (avg/min/max/count):"]
    ranked = rank_stats(stats, top)
    if not ranked:
        lines.append("empty")
    for stat in ranked:
        figures = (
            f"{format_duration(stat.avg)}/{format_duration(stat.min)}/"
            f"{format_duration(stat.max)}/n={stat.count}"
        )
        lines.append("%50s  %s" % (figures, stat.descriptor))
    return "\n".join(lines) + "\n"
