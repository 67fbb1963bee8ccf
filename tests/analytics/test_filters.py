"""Tests for the filter predicates applied to combined records."""
from __future__ import annotations

import datetime

import pytest

from src.analytics.filters import FilterOptions, ScoreThresholds, apply_filters
from src.records import CombinedRecord, Results

NOW = datetime.datetime(2024, 6, 15, 12, 0, tzinfo=datetime.timezone.utc)


def _make_record(
    record_id: str,
    when: datetime.datetime = NOW,
    percentage=80,
    title: str = "Team Health",
) -> CombinedRecord:
    results = None
    if percentage is not None:
        results = Results(total_score=1, max_possible_score=1, percentage=percentage)
    return CombinedRecord(
        id=record_id,
        timestamp=when,
        survey_title=title,
        results=results,
        email=None,
        ip=None,
        user_agent=None,
        method=None,
        has_email_request=False,
    )


def _ids(records):
    return [r.id for r in records]


class TestScoreRange:
    RECORDS = [
        _make_record("p80", percentage=80),
        _make_record("p79", percentage=79.9),
        _make_record("p50", percentage=50),
        _make_record("p49", percentage=49.9),
        _make_record("none", percentage=None),
    ]

    @pytest.mark.parametrize(
        "score_range, expected",
        [
            ("high", ["p80", "none"]),
            ("medium", ["p79", "p50", "none"]),
            ("low", ["p49", "none"]),
            ("all", ["p80", "p79", "p50", "p49", "none"]),
        ],
    )
    def test_bands_are_exact(self, score_range, expected):
        result = apply_filters(self.RECORDS, FilterOptions(score_range=score_range))

        assert _ids(result) == expected

    def test_unknown_score_range_is_ignored(self):
        result = apply_filters(self.RECORDS, FilterOptions(score_range="stellar"))

        assert len(result) == len(self.RECORDS)

    def test_thresholds_are_configurable(self):
        result = apply_filters(
            self.RECORDS,
            FilterOptions(score_range="high"),
            thresholds=ScoreThresholds(high=50, medium=20),
        )

        assert _ids(result) == ["p80", "p79", "p50", "none"]


class TestDateRange:
    def test_custom_range_includes_the_whole_end_day(self):
        records = [
            _make_record("late", when=datetime.datetime(2024, 1, 31, 23, 59, 59, tzinfo=datetime.timezone.utc)),
            _make_record("next", when=datetime.datetime(2024, 2, 1, 0, 0, tzinfo=datetime.timezone.utc)),
            _make_record("first", when=datetime.datetime(2024, 1, 1, 0, 0, tzinfo=datetime.timezone.utc)),
            _make_record("before", when=datetime.datetime(2023, 12, 31, 23, 59, tzinfo=datetime.timezone.utc)),
        ]
        options = FilterOptions.from_query(start_date="2024-01-01", end_date="2024-01-31")

        result = apply_filters(records, options, now=NOW)

        assert options.date_range == "custom"
        assert _ids(result) == ["late", "first"]

    def test_inverted_range_yields_nothing(self):
        options = FilterOptions.from_query(start_date="2024-02-01", end_date="2024-01-01")

        result = apply_filters([_make_record("a", when=datetime.datetime(2024, 1, 15, tzinfo=datetime.timezone.utc))], options)

        assert result == []

    def test_unparsable_custom_dates_are_ignored(self):
        options = FilterOptions.from_query(start_date="someday", end_date="2024-01-01")

        result = apply_filters([_make_record("a")], options, now=NOW)

        assert _ids(result) == ["a"]

    def test_relative_days(self):
        records = [
            _make_record("recent", when=NOW - datetime.timedelta(days=6)),
            _make_record("old", when=NOW - datetime.timedelta(days=8)),
        ]

        result = apply_filters(records, FilterOptions(date_range="7"), now=NOW)

        assert _ids(result) == ["recent"]

    @pytest.mark.parametrize("days", ["99999999999", "soon", "-"])
    def test_absurd_day_counts_are_unrestricted(self, days):
        records = [_make_record("a"), _make_record("b", when=NOW - datetime.timedelta(days=900))]

        result = apply_filters(records, FilterOptions(date_range=days), now=NOW)

        assert _ids(result) == ["a", "b"]


class TestSurveyVersion:
    def test_exact_title_match(self):
        records = [
            _make_record("a", title="Team Health"),
            _make_record("b", title="Team Health v2"),
        ]

        result = apply_filters(records, FilterOptions(survey_version="Team Health"))

        assert _ids(result) == ["a"]


def test_filters_combine_with_and_and_keep_order():
    records = [
        _make_record("keep1", percentage=90),
        _make_record("wrong-title", percentage=90, title="Retro"),
        _make_record("low", percentage=10),
        _make_record("keep2", percentage=85),
    ]
    options = FilterOptions(score_range="high", survey_version="Team Health")

    assert _ids(apply_filters(records, options)) == ["keep1", "keep2"]


def test_no_options_returns_a_copy():
    records = [_make_record("a")]

    result = apply_filters(records)

    assert result == records
    assert result is not records
