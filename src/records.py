"""Record types for survey results, email-send events and their correlation.

Response and email records are parsed from the JSON files written by the
survey handlers. :class:`CombinedRecord` is derived on every correlation
pass and never persisted.
"""
from __future__ import annotations

import datetime
import math
import re
from dataclasses import dataclass, field, replace
from typing import Any, Dict, Mapping, Optional

from src.analytics import config

__all__ = [
    "CategoryScore",
    "Results",
    "SurveyResponseRecord",
    "EmailRecord",
    "CombinedRecord",
    "parse_timestamp",
    "format_timestamp",
    "sanitize_text",
]

_SCRIPT_RE = re.compile(r"<script[^>]*>.*?</script>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]*>")
_SCHEME_RE = re.compile(r"(?:javascript|vbscript):", re.IGNORECASE)


def sanitize_text(value: Any) -> Optional[str]:
    """Strip markup and script schemes from *value*; non-strings become None."""
    if not isinstance(value, str):
        return None
    cleaned = _SCRIPT_RE.sub("", value)
    cleaned = _TAG_RE.sub("", cleaned)
    cleaned = _SCHEME_RE.sub("", cleaned)
    return cleaned.strip()


def parse_timestamp(value: Any) -> datetime.datetime:
    """Return an aware UTC datetime for an ISO-8601 string.

    A trailing ``Z`` is accepted and naive values are read as UTC.

    Raises
    ------
    ValueError
        If *value* is not a parsable ISO-8601 string.
    """
    if isinstance(value, datetime.datetime):
        parsed = value
    elif isinstance(value, str) and value.strip():
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        parsed = datetime.datetime.fromisoformat(text)
    else:
        raise ValueError(f"Invalid timestamp: {value!r}")

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=datetime.timezone.utc)
    return parsed.astimezone(datetime.timezone.utc)


def format_timestamp(value: datetime.datetime) -> str:
    """Render *value* the way the survey handlers write it (``...Z``)."""
    utc = value.astimezone(datetime.timezone.utc)
    return utc.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _number(value: Any) -> Optional[float]:
    # bool is an int subclass but never a score
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return value


@dataclass(frozen=True, slots=True)
class CategoryScore:
    """Score obtained in a single survey category."""

    score: Optional[float]
    max_score: Optional[float] = None
    percentage: Optional[float] = None

    @classmethod
    def from_value(cls, value: Any) -> "CategoryScore":
        """Build from either ``{score, maxScore, percentage}`` or a bare number."""
        if isinstance(value, Mapping):
            return cls(
                score=_number(value.get("score")),
                max_score=_number(value.get("maxScore")),
                percentage=_number(value.get("percentage")),
            )
        number = _number(value)
        if number is None:
            raise ValueError(f"Invalid category score: {value!r}")
        return cls(score=number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "maxScore": self.max_score,
            "percentage": self.percentage,
        }


@dataclass(frozen=True, slots=True)
class Results:
    """Scored outcome of one completed survey."""

    total_score: Optional[float]
    max_possible_score: Optional[float]
    percentage: Optional[float]
    category_scores: Dict[str, CategoryScore] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Any) -> "Results":
        if not isinstance(data, Mapping):
            raise ValueError("results must be an object")
        raw_categories = data.get("categoryScores") or {}
        if not isinstance(raw_categories, Mapping):
            raise ValueError("categoryScores must be an object")
        return cls(
            total_score=_number(data.get("totalScore")),
            max_possible_score=_number(data.get("maxPossibleScore")),
            percentage=_number(data.get("percentage")),
            category_scores={
                str(name): CategoryScore.from_value(value)
                for name, value in raw_categories.items()
            },
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "totalScore": self.total_score,
            "maxPossibleScore": self.max_possible_score,
            "percentage": self.percentage,
            "categoryScores": {
                name: score.to_dict() for name, score in self.category_scores.items()
            },
        }


def _results_or_none(data: Any) -> Optional[Results]:
    if data is None:
        return None
    return Results.from_dict(data)


@dataclass(frozen=True, slots=True)
class SurveyResponseRecord:
    """One completed survey submission (``<id>.json`` in the data directory)."""

    id: str
    timestamp: datetime.datetime
    survey_title: str
    results: Optional[Results]
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    method: Optional[str] = None

    @classmethod
    def from_dict(
        cls,
        data: Any,
        *,
        record_id: str,
        read_at: Optional[datetime.datetime] = None,
    ) -> "SurveyResponseRecord":
        """Parse a response file body; *record_id* comes from the file name.

        Raises
        ------
        ValueError
            If *data* is not an object or one of its fields is malformed.
        """
        if not isinstance(data, Mapping):
            raise ValueError("record must be a JSON object")
        raw_ts = data.get("timestamp")
        if raw_ts:
            timestamp = parse_timestamp(raw_ts)
        else:
            timestamp = read_at or datetime.datetime.now(datetime.timezone.utc)
        return cls(
            id=record_id,
            timestamp=timestamp,
            survey_title=sanitize_text(data.get("surveyTitle"))
            or config.UNKNOWN_SURVEY_TITLE,
            results=_results_or_none(data.get("results")),
            ip=data.get("ip") if isinstance(data.get("ip"), str) else None,
            user_agent=sanitize_text(data.get("userAgent")),
            method=sanitize_text(data.get("method")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "surveyTitle": self.survey_title,
            "results": self.results.to_dict() if self.results else None,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "method": self.method,
        }


@dataclass(frozen=True, slots=True)
class EmailRecord:
    """One email-send attempt tied to a survey result."""

    id: str
    recipient_email: Optional[str]
    survey_title: Optional[str]
    results: Optional[Results]
    timestamp: datetime.datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    method: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Any, *, record_id: str) -> "EmailRecord":
        """Parse an email file body; *record_id* is used when ``id`` is absent.

        Raises
        ------
        ValueError
            If *data* is not an object, has no timestamp or a field is malformed.
        """
        if not isinstance(data, Mapping):
            raise ValueError("record must be a JSON object")
        return cls(
            id=str(data.get("id") or record_id),
            recipient_email=sanitize_text(data.get("recipientEmail")),
            survey_title=sanitize_text(data.get("surveyTitle")),
            results=_results_or_none(data.get("results")),
            timestamp=parse_timestamp(data.get("timestamp")),
            ip=data.get("ip") if isinstance(data.get("ip"), str) else None,
            user_agent=sanitize_text(data.get("userAgent")),
            method=sanitize_text(data.get("method")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "recipientEmail": self.recipient_email,
            "surveyTitle": self.survey_title,
            "results": self.results.to_dict() if self.results else None,
            "timestamp": format_timestamp(self.timestamp),
            "ip": self.ip,
            "userAgent": self.user_agent,
            "method": self.method,
        }


@dataclass(frozen=True, slots=True)
class CombinedRecord:
    """A survey submission merged with any correlated email-send event."""

    id: str
    timestamp: datetime.datetime
    survey_title: Optional[str]
    results: Optional[Results]
    email: Optional[str]
    ip: Optional[str]
    user_agent: Optional[str]
    method: Optional[str]
    has_email_request: bool

    @property
    def percentage(self) -> Optional[float]:
        """Overall percentage, or None when the record carries no score."""
        return self.results.percentage if self.results else None

    def with_email(self, email: EmailRecord) -> "CombinedRecord":
        """Return a copy attributed to *email*, filling gaps from its metadata."""
        return replace(
            self,
            email=email.recipient_email,
            ip=self.ip or email.ip,
            user_agent=self.user_agent or email.user_agent,
            method=self.method or email.method,
            has_email_request=True,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": format_timestamp(self.timestamp),
            "surveyTitle": self.survey_title,
            "results": self.results.to_dict() if self.results else None,
            "email": self.email,
            "ip": self.ip,
            "userAgent": self.user_agent,
            "method": self.method,
            "hasEmailRequest": self.has_email_request,
        }
