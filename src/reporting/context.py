"""Context dataclasses for the Jinja2 templates in ``src/reporting/templates``.

Building the context is kept apart from rendering so the expiry and
formatting rules can be unit-tested without touching template strings.
"""
from __future__ import annotations

import datetime
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional

from src.analytics import config
from src.analytics.filters import ScoreThresholds
from src.exceptions import RecordExpiredError
from src.records import SurveyResponseRecord

__all__ = [
    "CategoryRow",
    "SharedResultContext",
    "SummaryReportContext",
    "build_shared_result_context",
    "build_summary_report_context",
]

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class CategoryRow:
    """One category line on the shared results page."""

    name: str
    score: Optional[float]
    max_score: Optional[float]
    percentage: Optional[float]
    performance: str


@dataclass(slots=True)
class SharedResultContext:
    """Container with all fields used by ``shared_result.html.j2``."""

    record_id: str
    survey_title: str
    date: str  # ISO-8601 date string (UTC)
    expires_at: str

    total_score: Optional[float]
    max_possible_score: Optional[float]
    percentage: Optional[float]
    performance: str

    categories: List[CategoryRow] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:  # noqa: D401 – simple helper
        """Return a *plain* ``dict`` (recursively) for Jinja rendering."""
        return asdict(self)


@dataclass(slots=True)
class SummaryReportContext:
    """Container with all fields used by ``summary_report.md.j2``."""

    generated_at: str
    filters: Dict[str, Any]
    metrics: Dict[str, Any]
    category_stats: List[Dict[str, Any]] = field(default_factory=list)
    category_performance: List[Dict[str, Any]] = field(default_factory=list)
    score_distribution: Dict[str, int] = field(default_factory=dict)
    responses_over_time: List[Dict[str, Any]] = field(default_factory=list)
    geographic: List[Dict[str, Any]] = field(default_factory=list)
    survey_versions: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _band(percentage: Optional[float], thresholds: ScoreThresholds) -> str:
    if percentage is None:
        return "unknown"
    return thresholds.band(percentage)


def build_shared_result_context(
    record: SurveyResponseRecord,
    *,
    now: Optional[datetime.datetime] = None,
    max_age_days: int = config.SHARED_RESULT_MAX_AGE_DAYS,
    thresholds: Optional[ScoreThresholds] = None,
) -> SharedResultContext:
    """Convert a stored response into :class:`SharedResultContext`.

    Raises
    ------
    RecordExpiredError
        If the record is older than the share-link lifetime. The file is
        left in place; stored records are never deleted by readers.
    """
    now = now or datetime.datetime.now(datetime.timezone.utc)
    thresholds = thresholds or ScoreThresholds()
    expires_at = record.timestamp + datetime.timedelta(days=max_age_days)
    if now > expires_at:
        logger.info(
            "shared_result_expired",
            extra={"record_id": record.id, "expired_at": expires_at.isoformat()},
        )
        raise RecordExpiredError(record.id)

    results = record.results
    categories: List[CategoryRow] = []
    if results is not None:
        for name, score in results.category_scores.items():
            categories.append(
                CategoryRow(
                    name=name,
                    score=score.score,
                    max_score=score.max_score,
                    percentage=score.percentage,
                    performance=_band(score.percentage, thresholds),
                )
            )

    percentage = results.percentage if results else None
    return SharedResultContext(
        record_id=record.id,
        survey_title=record.survey_title,
        date=record.timestamp.date().isoformat(),
        expires_at=expires_at.isoformat(),
        total_score=results.total_score if results else None,
        max_possible_score=results.max_possible_score if results else None,
        percentage=percentage,
        performance=_band(percentage, thresholds),
        categories=categories,
    )


def build_summary_report_context(
    summary: Mapping[str, Any],
    *,
    filters: Optional[Mapping[str, Any]] = None,
    now: Optional[datetime.datetime] = None,
) -> SummaryReportContext:
    """Wrap an analytics summary payload for the markdown report template."""
    now = now or datetime.datetime.now(datetime.timezone.utc)
    return SummaryReportContext(
        generated_at=now.strftime("%Y-%m-%d %H:%M UTC"),
        filters={k: v for k, v in (filters or {}).items() if v},
        metrics=dict(summary.get("metrics", {})),
        category_stats=list(summary.get("categoryStats", [])),
        category_performance=list(summary.get("categoryPerformance", [])),
        score_distribution=dict(summary.get("scoreDistribution", {})),
        responses_over_time=list(summary.get("responsesOverTime", [])),
        geographic=list(summary.get("geographicBreakdown", [])),
        survey_versions=list(summary.get("surveyVersions", [])),
    )
