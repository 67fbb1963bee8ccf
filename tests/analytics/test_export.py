"""Tests for CSV and JSON exports."""
from __future__ import annotations

import datetime
import json

from src.analytics import export
from src.analytics.metrics import CategoryStat, Metrics, PlaceholderLocationResolver
from src.records import CombinedRecord, Results

NOW = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)


def _make_record(record_id: str, percentage=80, email=None, title="Team, Health"):
    return CombinedRecord(
        id=record_id,
        timestamp=NOW,
        survey_title=title,
        results=Results(total_score=40, max_possible_score=50, percentage=percentage),
        email=email,
        ip="10.0.0.1",
        user_agent=None,
        method=None,
        has_email_request=email is not None,
    )


def test_export_filename():
    assert (
        export.export_filename("responses.csv", datetime.date(2024, 6, 15))
        == "survey-responses-2024-06-15.csv"
    )
    assert (
        export.export_filename("data.json", datetime.date(2024, 6, 15))
        == "survey-analytics-data-2024-06-15.json"
    )


def test_responses_csv_quotes_and_limits():
    records = [_make_record("a"), _make_record("b"), _make_record("c")]

    content = export.responses_csv(records, PlaceholderLocationResolver(), limit=2)

    lines = content.splitlines()
    assert lines[0] == "Date,Survey Title,Score,Percentage,Email Sent,Location"
    assert lines[1] == '2024-06-15,"Team, Health",40,80.0%,no,Local Network'
    assert len(lines) == 3


def test_category_stats_csv():
    stats = [CategoryStat("Delivery", 85.0, 2, "high", "High", "Medium")]

    content = export.category_stats_csv(stats)

    assert content == (
        "Category,Average Score,Response Count,Performance,Correlation\n"
        "Delivery,85.0%,2,High,Medium\n"
    )


def test_email_list_csv_only_lists_records_with_email():
    records = [
        _make_record("a", email="a@example.com", percentage=92.5),
        _make_record("b"),
    ]

    content = export.email_list_csv(records)

    assert content == "Email,Score\na@example.com,92.5%\n"


def test_analytics_json_bundle():
    records = [_make_record("a", email="a@example.com")]

    content = export.analytics_json(
        records,
        metrics=Metrics(1, 100.0, 80.0, 100),
        stats=[],
        geographic=[{"location": "Local Network", "count": 1}],
        filters={"scoreRange": "high"},
        exported_at=NOW,
    )

    data = json.loads(content)
    assert data["metadata"] == {
        "exportDate": NOW.isoformat(),
        "totalRecords": 1,
        "filters": {"scoreRange": "high"},
    }
    assert data["metrics"]["totalResponses"] == 1
    assert data["responses"][0]["email"] == "a@example.com"
    assert data["responses"][0]["hasEmailRequest"] is True
    assert data["geographicData"] == [{"location": "Local Network", "count": 1}]
