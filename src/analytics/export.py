"""CSV and JSON exports of filtered analytics data."""
from __future__ import annotations

import csv
import datetime
import io
import json
from typing import Any, Dict, List, Mapping, Optional, Sequence

from src.analytics import config
from src.analytics.metrics import (
    CategoryStat,
    LocationResolver,
    Metrics,
    email_records,
    responses_table,
)
from src.records import CombinedRecord

__all__ = [
    "responses_csv",
    "category_stats_csv",
    "email_list_csv",
    "analytics_json",
    "export_filename",
]

_FILE_PREFIXES = {
    "responses.csv": "survey-responses-",
    "categories.csv": "survey-category-stats-",
    "emails.csv": "survey-email-list-",
    "data.json": "survey-analytics-data-",
    "report.md": "survey-analytics-report-",
}


def export_filename(kind: str, today: Optional[datetime.date] = None) -> str:
    """Return the download file name for an export *kind*."""
    today = today or datetime.datetime.now(datetime.timezone.utc).date()
    extension = kind.rsplit(".", 1)[-1]
    return f"{_FILE_PREFIXES[kind]}{today.isoformat()}.{extension}"


def _write_rows(header: Sequence[str], rows: Sequence[Sequence[Any]]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buffer.getvalue()


def responses_csv(
    records: Sequence[CombinedRecord],
    resolver: Optional[LocationResolver] = None,
    limit: int = config.EXPORT_LIMIT,
) -> str:
    """One row per record: date, title, score, percentage, email flag, location."""
    table = responses_table(records, resolver, limit=limit)
    return _write_rows(
        ["Date", "Survey Title", "Score", "Percentage", "Email Sent", "Location"],
        [
            [
                row["date"],
                row["surveyTitle"],
                row["score"],
                row["percentage"],
                row["emailSent"],
                row["location"],
            ]
            for row in table
        ],
    )


def category_stats_csv(stats: Sequence[CategoryStat]) -> str:
    """One row per category with its average, count and labels."""
    return _write_rows(
        ["Category", "Average Score", "Response Count", "Performance", "Correlation"],
        [
            [
                stat.category,
                f"{stat.avg_score}%",
                stat.count,
                stat.performance_text,
                stat.correlation,
            ]
            for stat in stats
        ],
    )


def email_list_csv(records: Sequence[CombinedRecord]) -> str:
    """Recipient addresses with the score they were sent."""
    rows: List[List[Any]] = []
    for record in email_records(records):
        percentage = record.percentage
        rows.append(
            [record.email, "N/A" if percentage is None else f"{percentage:g}%"]
        )
    return _write_rows(["Email", "Score"], rows)


def analytics_json(
    records: Sequence[CombinedRecord],
    *,
    metrics: Metrics,
    stats: Sequence[CategoryStat],
    geographic: Sequence[Mapping[str, Any]],
    filters: Mapping[str, Any],
    exported_at: Optional[datetime.datetime] = None,
) -> str:
    """Full JSON bundle of the filtered data and its aggregates."""
    exported_at = exported_at or datetime.datetime.now(datetime.timezone.utc)
    payload: Dict[str, Any] = {
        "metadata": {
            "exportDate": exported_at.isoformat(),
            "totalRecords": len(records),
            "filters": dict(filters),
        },
        "metrics": metrics.to_dict(),
        "responses": [record.to_dict() for record in records],
        "categoryStats": [stat.to_dict() for stat in stats],
        "geographicData": list(geographic),
    }
    return json.dumps(payload, indent=2)
