"""Tests for correlating survey responses with email-send events."""
from __future__ import annotations

import datetime

from src.analytics.correlator import combine, match_by_title_and_time, within_window
from src.records import EmailRecord, Results, SurveyResponseRecord

T0 = datetime.datetime(2024, 6, 1, 10, 0, tzinfo=datetime.timezone.utc)


def _at(ms: int) -> datetime.datetime:
    return T0 + datetime.timedelta(milliseconds=ms)


def _make_response(
    record_id: str, ms: int = 0, title: str = "Team Health", percentage: float = 80
) -> SurveyResponseRecord:
    return SurveyResponseRecord(
        id=record_id,
        timestamp=_at(ms),
        survey_title=title,
        results=Results(total_score=40, max_possible_score=50, percentage=percentage),
    )


def _make_email(
    record_id: str,
    ms: int = 0,
    email: str = "a@example.com",
    title: str = "Team Health",
    **extra,
) -> EmailRecord:
    return EmailRecord(
        id=record_id,
        recipient_email=email,
        survey_title=title,
        results=Results(total_score=40, max_possible_score=50, percentage=80),
        timestamp=_at(ms),
        method=extra.get("method", "email"),
        ip=extra.get("ip"),
        user_agent=extra.get("user_agent"),
    )


class TestWindow:
    def test_59999_ms_is_inside_the_window(self):
        assert within_window(_at(0), _at(59_999), 60_000)

    def test_60000_ms_is_outside_the_window(self):
        assert not within_window(_at(0), _at(60_000), 60_000)

    def test_direction_does_not_matter(self):
        assert within_window(_at(59_999), _at(0), 60_000)


class TestMatchStrategy:
    def test_first_email_in_store_order_wins(self):
        response = _make_response("r1", ms=0)
        far = _make_email("e-far", ms=50_000, email="far@example.com")
        near = _make_email("e-near", ms=1_000, email="near@example.com")

        match = match_by_title_and_time(response, [far, near], 60_000)

        assert match is far

    def test_title_must_match(self):
        response = _make_response("r1", title="Team Health")
        email = _make_email("e1", title="Retro")

        assert match_by_title_and_time(response, [email], 60_000) is None


class TestCombine:
    def test_matched_response_and_distant_email(self):
        responses = [_make_response("r1", ms=0)]
        emails = [
            _make_email("e1", ms=30_000),
            _make_email("e2", ms=120_000),
        ]

        combined = combine(responses, emails)

        assert len(combined) == 2
        by_id = {c.id: c for c in combined}
        assert by_id["r1"].email == "a@example.com"
        assert by_id["r1"].has_email_request is True
        assert by_id["e2"].email == "a@example.com"
        assert by_id["e2"].has_email_request is True
        assert by_id["e2"].timestamp == _at(120_000)
        # newest first
        assert [c.id for c in combined] == ["e2", "r1"]

    def test_response_without_email(self):
        (entry,) = combine([_make_response("r1")], [])

        assert entry.email is None
        assert entry.has_email_request is False

    def test_boundary_at_exactly_the_window_does_not_correlate(self):
        combined = combine([_make_response("r1", ms=0)], [_make_email("e1", ms=60_000)])

        by_id = {c.id: c for c in combined}
        assert by_id["r1"].has_email_request is False
        assert by_id["e1"].has_email_request is True

    def test_boundary_just_inside_the_window_correlates(self):
        combined = combine([_make_response("r1", ms=0)], [_make_email("e1", ms=59_999)])

        assert [c.id for c in combined] == ["r1"]
        assert combined[0].email == "a@example.com"

    def test_different_titles_never_correlate(self):
        combined = combine(
            [_make_response("r1", title="Team Health")],
            [_make_email("e1", ms=1_000, title="Retro")],
        )

        assert len(combined) == 2
        assert {c.id for c in combined} == {"r1", "e1"}

    def test_duplicate_email_sends_collapse_into_one_entry(self):
        emails = [
            _make_email("e1", ms=0),
            _make_email("e2", ms=10_000),
        ]

        combined = combine([], emails)

        assert [c.id for c in combined] == ["e1"]

    def test_one_email_may_match_several_responses(self):
        responses = [_make_response("r1", ms=0), _make_response("r2", ms=20_000)]
        emails = [_make_email("e1", ms=10_000)]

        combined = combine(responses, emails)

        assert len(combined) == 2
        assert all(c.email == "a@example.com" for c in combined)

    def test_metadata_falls_back_to_the_email(self):
        email = _make_email("e1", ms=5_000, ip="192.168.1.10", user_agent="mail-client")

        (entry,) = combine([_make_response("r1")], [email])

        assert entry.ip == "192.168.1.10"
        assert entry.user_agent == "mail-client"
        assert entry.method == "email"

    def test_combine_is_deterministic(self):
        responses = [_make_response(f"r{i}", ms=i * 90_000) for i in range(5)]
        emails = [_make_email(f"e{i}", ms=i * 45_000, email=f"u{i}@x.io") for i in range(6)]

        first = combine(responses, emails)
        second = combine(responses, emails)

        assert first == second
        assert [c.timestamp for c in first] == sorted(
            (c.timestamp for c in first), reverse=True
        )

    def test_equal_timestamps_keep_store_order(self):
        responses = [_make_response("r1"), _make_response("r2")]

        combined = combine(responses, [])

        assert [c.id for c in combined] == ["r1", "r2"]

    def test_custom_strategy_is_used(self):
        calls = []

        def never(response, emails, window_ms):
            calls.append(response.id)
            return None

        combined = combine([_make_response("r1")], [], strategy=never)

        assert calls == ["r1"]
        assert combined[0].has_email_request is False
