"""Merge survey responses and email-send events into :class:`CombinedRecord` s.

The two record kinds are written by independent handlers and share no
foreign key. The only signal tying an email send to a submission is the
survey title plus the proximity of their timestamps, so correlation is a
heuristic. It is expressed as a named :class:`MatchStrategy` so a future
exact-key join can be dropped in without touching callers.
"""
from __future__ import annotations

import datetime
import logging
from typing import List, Optional, Protocol, Sequence

from src.analytics import config
from src.records import CombinedRecord, EmailRecord, SurveyResponseRecord

__all__ = [
    "MatchStrategy",
    "within_window",
    "email_only_record",
    "match_by_title_and_time",
    "combine",
]

logger = logging.getLogger(__name__)

_ONE_MS = datetime.timedelta(milliseconds=1)


class MatchStrategy(Protocol):
    """Pick the email record (if any) that belongs to *response*."""

    def __call__(
        self,
        response: SurveyResponseRecord,
        emails: Sequence[EmailRecord],
        window_ms: int,
    ) -> Optional[EmailRecord]:
        ...


def within_window(
    first: datetime.datetime, second: datetime.datetime, window_ms: int
) -> bool:
    """Return True if the two instants are strictly less than *window_ms* apart."""
    return abs(first - second) / _ONE_MS < window_ms


def match_by_title_and_time(
    response: SurveyResponseRecord,
    emails: Sequence[EmailRecord],
    window_ms: int,
) -> Optional[EmailRecord]:
    """Return the first email, in store order, with the same title within the window.

    Ties are broken by store order only; a closer email further down the
    list does not win over an earlier one. Emails are not claimed, so the
    same email may be returned for several responses.
    """
    for email in emails:
        if email.survey_title == response.survey_title and within_window(
            email.timestamp, response.timestamp, window_ms
        ):
            return email
    return None


def _from_response(response: SurveyResponseRecord) -> CombinedRecord:
    return CombinedRecord(
        id=response.id,
        timestamp=response.timestamp,
        survey_title=response.survey_title,
        results=response.results,
        email=None,
        ip=response.ip,
        user_agent=response.user_agent,
        method=response.method,
        has_email_request=False,
    )


def email_only_record(email: EmailRecord) -> CombinedRecord:
    """View an email-send event as a combined entry with no response behind it."""
    return CombinedRecord(
        id=email.id,
        timestamp=email.timestamp,
        survey_title=email.survey_title,
        results=email.results,
        email=email.recipient_email,
        ip=email.ip,
        user_agent=email.user_agent,
        method=email.method,
        has_email_request=True,
    )


def _is_represented(
    email: EmailRecord, combined: Sequence[CombinedRecord], window_ms: int
) -> bool:
    return any(
        item.email == email.recipient_email
        and item.survey_title == email.survey_title
        and within_window(item.timestamp, email.timestamp, window_ms)
        for item in combined
    )


def combine(
    responses: Sequence[SurveyResponseRecord],
    emails: Sequence[EmailRecord],
    window_ms: int = config.CORRELATION_WINDOW_MS,
    strategy: MatchStrategy = match_by_title_and_time,
) -> List[CombinedRecord]:
    """Correlate *responses* with *emails* and return them newest first.

    Every response yields exactly one entry, attributed to the email picked
    by *strategy* if there is one. Every email that is not already
    represented by an entry with the same recipient, title and a timestamp
    within the window yields an extra email-only entry. The check runs
    against the growing list, so duplicate email sends collapse into one
    email-only entry.

    The function is pure; repeated calls with equal inputs return equal
    output in the same order.
    """
    combined: List[CombinedRecord] = []
    matched = 0

    for response in responses:
        entry = _from_response(response)
        email = strategy(response, emails, window_ms)
        if email is not None:
            entry = entry.with_email(email)
            matched += 1
        combined.append(entry)

    email_only = 0
    for email in emails:
        if not _is_represented(email, combined, window_ms):
            combined.append(email_only_record(email))
            email_only += 1

    logger.debug(
        "Correlated %d response(s) and %d email(s): %d matched, %d email-only",
        len(responses),
        len(emails),
        matched,
        email_only,
    )
    # sorted() is stable, so equal timestamps keep store order
    return sorted(combined, key=lambda item: item.timestamp, reverse=True)
