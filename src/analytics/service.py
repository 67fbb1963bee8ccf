"""Analytics pipeline served through the response cache.

On a cache miss one synchronous pass runs: read both record streams,
correlate them, apply the filters and aggregate. The resulting payload is
cached under a key built from the endpoint path, its normalised query
parameters and the streams it depends on.
"""
from __future__ import annotations

import datetime
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

from src.analytics import config
from src.analytics import export as exporters
from src.analytics import metrics as agg
from src.analytics.correlator import (
    MatchStrategy,
    combine,
    email_only_record,
    match_by_title_and_time,
)
from src.analytics.filters import FilterOptions, ScoreThresholds, apply_filters
from src.cache import (
    CACHE_MISS,
    EMAILS_STREAM,
    RESPONSES_STREAM,
    ResponseCache,
    make_cache_key,
)
from src.exceptions import UnknownExportError
from src.record_store import RecordStore
from src.records import CombinedRecord, EmailRecord
from src.reporting.render import render_summary_report

__all__ = [
    "EXPORT_KINDS",
    "AnalyticsService",
]

logger = logging.getLogger(__name__)

EXPORT_KINDS = {
    "responses.csv": "text/csv",
    "categories.csv": "text/csv",
    "emails.csv": "text/csv",
    "data.json": "application/json",
    "report.md": "text/markdown",
}

Query = Mapping[str, Any]


def _filter_options(query: Query) -> FilterOptions:
    return FilterOptions.from_query(
        start_date=query.get("startDate"),
        end_date=query.get("endDate"),
        date_range=query.get("dateRange"),
        score_range=query.get("scoreRange"),
        survey_version=query.get("surveyVersion"),
    )


class AnalyticsService:
    """Read side of the analytics dashboard."""

    def __init__(
        self,
        store: RecordStore,
        cache: ResponseCache,
        *,
        window_ms: int = config.CORRELATION_WINDOW_MS,
        thresholds: Optional[ScoreThresholds] = None,
        resolver: Optional[agg.LocationResolver] = None,
        strategy: MatchStrategy = match_by_title_and_time,
        now: Callable[[], datetime.datetime] = lambda: datetime.datetime.now(
            datetime.timezone.utc
        ),
    ) -> None:
        self.store = store
        self.cache = cache
        self.window_ms = window_ms
        self.thresholds = thresholds or ScoreThresholds()
        self.resolver = resolver or agg.PlaceholderLocationResolver()
        self.strategy = strategy
        self._now = now

    # ------------------------------------------------------------------
    # Pipeline stages
    # ------------------------------------------------------------------
    def combined_records(self) -> List[CombinedRecord]:
        """Correlate the current contents of both streams."""
        return combine(
            self.store.load_responses(),
            self.store.load_emails(),
            window_ms=self.window_ms,
            strategy=self.strategy,
        )

    def filtered_records(self, query: Query) -> List[CombinedRecord]:
        return apply_filters(
            self.combined_records(),
            _filter_options(query),
            thresholds=self.thresholds,
            now=self._now(),
        )

    def build_summary(self, records: Sequence[CombinedRecord]) -> Dict[str, Any]:
        """Aggregate *records* into the dashboard summary payload."""
        return {
            "metrics": agg.metrics(records).to_dict(),
            "categoryStats": [
                s.to_dict() for s in agg.category_stats(records, self.thresholds)
            ],
            "categoryPerformance": agg.category_performance(records),
            "scoreDistribution": agg.score_distribution(records),
            "responsesOverTime": agg.responses_over_time(records),
            "geographicBreakdown": agg.geographic_breakdown(records, self.resolver),
            "surveyVersions": agg.survey_versions(records),
            "responsesTable": agg.responses_table(records, self.resolver),
        }

    # ------------------------------------------------------------------
    # Cached endpoints
    # ------------------------------------------------------------------
    def responses(self, query: Query) -> Tuple[List[Dict[str, Any]], bool]:
        """Filtered combined records; returns ``(payload, cache_hit)``."""
        return self._cached(
            "/analytics/responses",
            query,
            (RESPONSES_STREAM, EMAILS_STREAM),
            lambda: [r.to_dict() for r in self.filtered_records(query)],
        )

    def emails(self, query: Query) -> Tuple[List[Dict[str, Any]], bool]:
        """Filtered email-send records; returns ``(payload, cache_hit)``."""
        return self._cached(
            "/analytics/emails",
            query,
            (EMAILS_STREAM,),
            lambda: [e.to_dict() for e in self._filtered_emails(query)],
        )

    def summary(self, query: Query) -> Tuple[Dict[str, Any], bool]:
        """Aggregates over the filtered records; returns ``(payload, cache_hit)``."""

        def _compute() -> Dict[str, Any]:
            records = self.filtered_records(query)
            payload = self.build_summary(records)
            payload["totalRecords"] = len(records)
            return payload

        return self._cached(
            "/analytics/summary",
            query,
            (RESPONSES_STREAM, EMAILS_STREAM),
            _compute,
        )

    # ------------------------------------------------------------------
    # Exports (never cached)
    # ------------------------------------------------------------------
    def export(self, kind: str, query: Query) -> Tuple[str, str, str]:
        """Return ``(content, mimetype, filename)`` for an export *kind*.

        Raises
        ------
        UnknownExportError
            If *kind* is not one of :data:`EXPORT_KINDS`.
        """
        if kind not in EXPORT_KINDS:
            raise UnknownExportError(kind)

        records = self.filtered_records(query)
        if kind == "responses.csv":
            content = exporters.responses_csv(records, self.resolver)
        elif kind == "categories.csv":
            content = exporters.category_stats_csv(
                agg.category_stats(records, self.thresholds)
            )
        elif kind == "emails.csv":
            content = exporters.email_list_csv(records)
        elif kind == "data.json":
            content = exporters.analytics_json(
                records,
                metrics=agg.metrics(records),
                stats=agg.category_stats(records, self.thresholds),
                geographic=agg.geographic_breakdown(records, self.resolver),
                filters=query,
                exported_at=self._now(),
            )
        else:
            content = render_summary_report(self.build_summary(records), filters=query)

        logger.info(
            "analytics_exported", extra={"kind": kind, "records": len(records)}
        )
        return content, EXPORT_KINDS[kind], exporters.export_filename(
            kind, self._now().date()
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _filtered_emails(self, query: Query) -> List[EmailRecord]:
        emails = self.store.load_emails()
        wanted = query.get("email")
        if wanted:
            emails = [e for e in emails if e.recipient_email == wanted]

        # Reuse the record filters by viewing each email as an email-only entry.
        views = [email_only_record(e) for e in emails]
        kept = apply_filters(
            views, _filter_options(query), thresholds=self.thresholds, now=self._now()
        )
        kept_ids = {id(view) for view in kept}
        return [e for e, view in zip(emails, views) if id(view) in kept_ids]

    def _cached(
        self,
        path: str,
        query: Query,
        streams: Sequence[str],
        compute: Callable[[], Any],
    ) -> Tuple[Any, bool]:
        key = make_cache_key(path, query, streams)
        try:
            cached = self.cache.get(key)
        except Exception:  # noqa: BLE001 – caching must never block serving
            logger.warning("Cache lookup failed for %s", key, exc_info=True)
            cached = CACHE_MISS
        if cached is not CACHE_MISS:
            return cached, True

        value = compute()
        try:
            self.cache.set(key, value)
        except Exception:  # noqa: BLE001 – caching must never block serving
            logger.warning("Cache store failed for %s", key, exc_info=True)
        return value, False
