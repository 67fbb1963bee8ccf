"""Composable predicates narrowing a list of :class:`CombinedRecord` s.

Each recognised filter option turns into one small predicate; the active
predicates are AND-ed together by :func:`apply_filters`. Inputs are
assumed to be validated upstream, but odd values (an inverted range, a
huge day count, a non-numeric day count) never raise here: they produce an
empty or unrestricted result instead.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Union

from src.analytics import config
from src.records import CombinedRecord, parse_timestamp

__all__ = [
    "ScoreThresholds",
    "FilterOptions",
    "Predicate",
    "build_predicates",
    "apply_filters",
]

logger = logging.getLogger(__name__)

Predicate = Callable[[CombinedRecord], bool]

DateLike = Union[str, datetime.date, datetime.datetime, None]

SCORE_RANGES = ("all", "high", "medium", "low")


@dataclass(frozen=True, slots=True)
class ScoreThresholds:
    """Lower bounds (percent) of the high and medium score bands."""

    high: float = config.SCORE_THRESHOLD_HIGH
    medium: float = config.SCORE_THRESHOLD_MEDIUM

    def band(self, percentage: float) -> str:
        """Return ``"high"``, ``"medium"`` or ``"low"`` for *percentage*."""
        if percentage >= self.high:
            return "high"
        if percentage >= self.medium:
            return "medium"
        return "low"


@dataclass(frozen=True, slots=True)
class FilterOptions:
    """Filter selection as sent by the analytics dashboard."""

    date_range: str = "all"  # "all" | "custom" | "<N>" days
    start_date: DateLike = None
    end_date: DateLike = None
    score_range: str = "all"
    survey_version: str = "all"

    @classmethod
    def from_query(
        cls,
        *,
        start_date: DateLike = None,
        end_date: DateLike = None,
        date_range: Optional[str] = None,
        score_range: Optional[str] = None,
        survey_version: Optional[str] = None,
    ) -> "FilterOptions":
        """Build options from endpoint query parameters.

        A start and end date together always select a custom range.
        """
        if start_date and end_date:
            date_range = "custom"
        return cls(
            date_range=date_range or "all",
            start_date=start_date,
            end_date=end_date,
            score_range=score_range or "all",
            survey_version=survey_version or "all",
        )


# ---------------------------------------------------------------------------
# Boundary helpers
# ---------------------------------------------------------------------------
def _start_of(value: DateLike) -> Optional[datetime.datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime.datetime):
        return parse_timestamp(value)
    if isinstance(value, datetime.date):
        return datetime.datetime.combine(
            value, datetime.time.min, tzinfo=datetime.timezone.utc
        )
    return parse_timestamp(value)


def _end_of_day(value: DateLike) -> Optional[datetime.datetime]:
    start = _start_of(value)
    if start is None:
        return None
    return datetime.datetime.combine(
        start.date(), datetime.time.max, tzinfo=datetime.timezone.utc
    )


# ---------------------------------------------------------------------------
# Predicate builders
# ---------------------------------------------------------------------------
def _custom_range_predicate(options: FilterOptions) -> Optional[Predicate]:
    try:
        start = _start_of(options.start_date)
        end = _end_of_day(options.end_date)
    except ValueError:
        logger.warning(
            "Ignoring unparsable custom date range %r..%r",
            options.start_date,
            options.end_date,
        )
        return None
    if start is None or end is None:
        return None
    if start > end:
        logger.debug("Inverted date range %s > %s; nothing matches", start, end)
    return lambda record: start <= record.timestamp <= end


def _relative_range_predicate(
    days_raw: str, now: datetime.datetime
) -> Optional[Predicate]:
    try:
        days = int(days_raw)
        cutoff = now - datetime.timedelta(days=days)
    except (TypeError, ValueError, OverflowError):
        logger.warning("Ignoring unusable relative date range %r", days_raw)
        return None
    return lambda record: record.timestamp >= cutoff


def _score_predicate(
    score_range: str, thresholds: ScoreThresholds
) -> Optional[Predicate]:
    if score_range not in SCORE_RANGES:
        logger.warning("Ignoring unknown score range %r", score_range)
        return None

    def _predicate(record: CombinedRecord) -> bool:
        percentage = record.percentage
        if percentage is None:
            # Unscored records are not subject to the score filter.
            return True
        return thresholds.band(percentage) == score_range

    return _predicate


def _survey_predicate(title: str) -> Predicate:
    return lambda record: record.survey_title == title


def build_predicates(
    options: FilterOptions,
    *,
    thresholds: Optional[ScoreThresholds] = None,
    now: Optional[datetime.datetime] = None,
) -> List[Predicate]:
    """Return the list of active predicates for *options*."""
    thresholds = thresholds or ScoreThresholds()
    now = now or datetime.datetime.now(datetime.timezone.utc)
    predicates: List[Optional[Predicate]] = []

    if options.date_range == "custom":
        predicates.append(_custom_range_predicate(options))
    elif options.date_range and options.date_range != "all":
        predicates.append(_relative_range_predicate(options.date_range, now))

    if options.score_range and options.score_range != "all":
        predicates.append(_score_predicate(options.score_range, thresholds))

    if options.survey_version and options.survey_version != "all":
        predicates.append(_survey_predicate(options.survey_version))

    return [p for p in predicates if p is not None]


def apply_filters(
    records: Sequence[CombinedRecord],
    options: Optional[FilterOptions] = None,
    *,
    thresholds: Optional[ScoreThresholds] = None,
    now: Optional[datetime.datetime] = None,
) -> List[CombinedRecord]:
    """Return the records matching every active filter, in input order."""
    predicates = build_predicates(
        options or FilterOptions(), thresholds=thresholds, now=now
    )
    if not predicates:
        return list(records)
    return [r for r in records if all(p(r) for p in predicates)]
