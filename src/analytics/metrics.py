"""Summary statistics over a filtered list of :class:`CombinedRecord` s.

All functions are read-only and accept any sequence of records, normally
the output of :func:`src.analytics.filters.apply_filters`.
"""
from __future__ import annotations

import logging
import zlib
from collections import Counter
from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Protocol, Sequence

from src.analytics import config
from src.analytics.filters import ScoreThresholds
from src.records import CombinedRecord

__all__ = [
    "Metrics",
    "CategoryStat",
    "LocationResolver",
    "PlaceholderLocationResolver",
    "round_half_up",
    "metrics",
    "category_stats",
    "category_performance",
    "responses_over_time",
    "correlation_label",
    "score_distribution",
    "geographic_breakdown",
    "survey_versions",
    "email_records",
    "responses_table",
]

logger = logging.getLogger(__name__)

DISTRIBUTION_LABELS = ("0-20%", "21-40%", "41-60%", "61-80%", "81-100%", "100%+")


@dataclass(slots=True)
class Metrics:
    """Headline numbers shown at the top of the dashboard."""

    total_responses: int
    email_request_percentage: float
    average_score: float
    completion_rate: float

    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – simple helper
        """Return the camelCase wire representation."""
        return {
            "totalResponses": self.total_responses,
            "emailRequestPercentage": self.email_request_percentage,
            "averageScore": self.average_score,
            "completionRate": self.completion_rate,
        }


@dataclass(slots=True)
class CategoryStat:
    """Aggregate of one survey category across records."""

    category: str
    avg_score: float
    count: int
    performance: str
    performance_text: str
    correlation: str

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        return {
            "category": data["category"],
            "avgScore": data["avg_score"],
            "count": data["count"],
            "performance": data["performance"],
            "performanceText": data["performance_text"],
            "correlation": data["correlation"],
        }


# ---------------------------------------------------------------------------
# Location lookup seam
# ---------------------------------------------------------------------------
class LocationResolver(Protocol):
    """Maps an IP address to a human-readable location label."""

    def resolve(self, ip: str) -> str:
        ...


class PlaceholderLocationResolver:
    """Stand-in for a real IP geolocation service.

    Private-network addresses are labelled ``Local Network``. Any other
    address gets one of a fixed list of placeholder labels, chosen from a
    checksum of the address so the same IP always lands on the same label.
    This is not geolocation.
    """

    def __init__(
        self,
        local_prefixes: Optional[Sequence[str]] = None,
        placeholder_locations: Optional[Sequence[str]] = None,
        local_label: str = config.LOCAL_NETWORK_LABEL,
    ) -> None:
        self.local_prefixes = tuple(
            local_prefixes
            if local_prefixes is not None
            else config.LOCAL_NETWORK_PREFIXES
        )
        self.placeholder_locations = tuple(
            placeholder_locations or config.PLACEHOLDER_LOCATIONS
        )
        self.local_label = local_label

    def resolve(self, ip: str) -> str:
        if ip.startswith(self.local_prefixes):
            return self.local_label
        index = zlib.crc32(ip.encode("utf-8")) % len(self.placeholder_locations)
        return self.placeholder_locations[index]


# ---------------------------------------------------------------------------
# Aggregates
# ---------------------------------------------------------------------------
def _scored(records: Sequence[CombinedRecord]) -> List[float]:
    return [r.percentage for r in records if r.percentage is not None]


def round_half_up(value: float, digits: int = 1) -> float:
    """Round *value* to *digits* places with exact halves rounded away from zero.

    The built-in :func:`round` rounds halves to even (72.25 -> 72.2); dashboard
    figures round halves up (72.25 -> 72.3).
    """
    quantum = Decimal(1).scaleb(-digits)
    return float(Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def metrics(
    records: Sequence[CombinedRecord],
    *,
    completion_rate: float = config.COMPLETION_RATE,
) -> Metrics:
    """Return :class:`Metrics` for *records*.

    ``completion_rate`` is reported as a constant: the store only ever holds
    completed submissions, so there is no partial-completion data to divide
    by.
    """
    total = len(records)
    email_requests = sum(1 for r in records if r.has_email_request)
    scores = _scored(records)

    return Metrics(
        total_responses=total,
        email_request_percentage=(
            round_half_up(email_requests / total * 100) if total else 0
        ),
        average_score=round_half_up(sum(scores) / len(scores)) if scores else 0,
        completion_rate=completion_rate,
    )


def correlation_label(
    scores: Sequence[float],
    *,
    high: float = config.VARIANCE_THRESHOLD_HIGH,
    medium: float = config.VARIANCE_THRESHOLD_MEDIUM,
) -> str:
    """Label the spread of *scores* by population variance.

    Low variance means respondents agree, which is labelled ``High``; this
    is a spread indicator, not a correlation coefficient. Fewer than two
    scores give ``N/A``.
    """
    if len(scores) < 2:
        return "N/A"
    mean = sum(scores) / len(scores)
    variance = sum((s - mean) ** 2 for s in scores) / len(scores)
    if variance < high:
        return "High"
    if variance < medium:
        return "Medium"
    return "Low"


def category_stats(
    records: Sequence[CombinedRecord],
    thresholds: Optional[ScoreThresholds] = None,
) -> List[CategoryStat]:
    """Return one :class:`CategoryStat` per category, in first-seen order."""
    thresholds = thresholds or ScoreThresholds()
    raw_scores: Dict[str, List[float]] = {}

    for record in records:
        if record.results is None:
            continue
        for name, category_score in record.results.category_scores.items():
            if category_score.score is None:
                continue
            raw_scores.setdefault(name, []).append(category_score.score)

    stats: List[CategoryStat] = []
    for name, scores in raw_scores.items():
        avg = round_half_up(sum(scores) / len(scores))
        band = thresholds.band(avg)
        stats.append(
            CategoryStat(
                category=name,
                avg_score=avg,
                count=len(scores),
                performance=band,
                performance_text=band.capitalize(),
                correlation=correlation_label(scores),
            )
        )
    return stats


def _category_percentage(category_score) -> Optional[float]:
    if category_score.percentage is not None:
        return category_score.percentage
    # A bare-number category score is already a percentage
    if category_score.max_score is None:
        return category_score.score
    return None


def category_performance(
    records: Sequence[CombinedRecord],
    cap: float = config.CATEGORY_PERFORMANCE_CAP,
) -> List[Dict[str, Any]]:
    """Average category percentage per category, in first-seen order.

    Unlike :func:`category_stats`, which averages raw scores, this averages
    the per-category percentages and caps each average at *cap* for the
    radar chart.
    """
    percentages: Dict[str, List[float]] = {}
    for record in records:
        if record.results is None:
            continue
        for name, category_score in record.results.category_scores.items():
            value = _category_percentage(category_score)
            if value is not None:
                percentages.setdefault(name, []).append(value)

    return [
        {
            "category": name,
            "avgPercentage": min(round_half_up(sum(values) / len(values)), cap),
            "count": len(values),
        }
        for name, values in percentages.items()
    ]


def responses_over_time(records: Sequence[CombinedRecord]) -> List[Dict[str, Any]]:
    """Return ``[{date, count}]`` per UTC calendar day, oldest day first."""
    per_day: Counter[str] = Counter(
        record.timestamp.date().isoformat() for record in records
    )
    return [{"date": day, "count": per_day[day]} for day in sorted(per_day)]


def score_distribution(
    records: Sequence[CombinedRecord],
    edges: Sequence[float] = tuple(config.DISTRIBUTION_EDGES),
) -> Dict[str, int]:
    """Count records per score bucket; edges are upper-inclusive.

    Percentages above the last edge (upstream rounding can push a score past
    100) go into ``100%+``.
    """
    buckets = dict.fromkeys(DISTRIBUTION_LABELS, 0)
    for percentage in _scored(records):
        for label, edge in zip(DISTRIBUTION_LABELS, edges):
            if percentage <= edge:
                buckets[label] += 1
                break
        else:
            buckets[DISTRIBUTION_LABELS[-1]] += 1
    return buckets


def geographic_breakdown(
    records: Sequence[CombinedRecord],
    resolver: Optional[LocationResolver] = None,
) -> List[Dict[str, Any]]:
    """Return ``[{location, count}]`` sorted by count, most common first."""
    resolver = resolver or PlaceholderLocationResolver()
    counts: Counter[str] = Counter()
    for record in records:
        if record.ip:
            counts[resolver.resolve(record.ip)] += 1
    return [
        {"location": location, "count": count}
        for location, count in counts.most_common()
    ]


# ---------------------------------------------------------------------------
# Dashboard helpers
# ---------------------------------------------------------------------------
def survey_versions(records: Sequence[CombinedRecord]) -> List[str]:
    """Distinct survey titles in first-seen order, excluding unknown ones."""
    seen: Dict[str, None] = {}
    for record in records:
        title = record.survey_title
        if title and title != config.UNKNOWN_SURVEY_TITLE:
            seen.setdefault(title, None)
    return list(seen)


def email_records(records: Sequence[CombinedRecord]) -> List[CombinedRecord]:
    """Records that carry a recipient email address."""
    return [r for r in records if r.email]


def responses_table(
    records: Sequence[CombinedRecord],
    resolver: Optional[LocationResolver] = None,
    limit: int = config.RESPONSES_TABLE_LIMIT,
) -> List[Dict[str, str]]:
    """Return display rows for the first *limit* records."""
    resolver = resolver or PlaceholderLocationResolver()
    rows: List[Dict[str, str]] = []
    for record in records[:limit]:
        results = record.results
        total = results.total_score if results else None
        percentage = record.percentage
        rows.append(
            {
                "date": record.timestamp.date().isoformat(),
                "surveyTitle": record.survey_title or "",
                "score": "N/A" if total is None else f"{total:g}",
                "percentage": "N/A" if percentage is None else f"{round_half_up(percentage):.1f}%",
                "emailSent": "yes" if record.has_email_request else "no",
                "location": resolver.resolve(record.ip) if record.ip else "Unknown",
            }
        )
    return rows
