"""Pydantic models validating analytics queries and record write payloads.

The analytics core tolerates odd filter values; these models are the strict
front door used by the HTTP layer so that clients get a 400 instead of a
silently unrestricted result.
"""
from __future__ import annotations

import datetime
from typing import Any, Dict, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    EmailStr,
    Field,
    field_validator,
    model_validator,
)

from src.analytics.filters import SCORE_RANGES
from src.records import parse_timestamp

__all__ = ["AnalyticsQuery", "SurveyResultPayload", "EmailRecordPayload"]

MAX_RANGE_DAYS = 3650


class AnalyticsQuery(BaseModel):
    """Query parameters accepted by the ``/analytics/*`` endpoints."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    start_date: Optional[str] = Field(default=None, alias="startDate")
    end_date: Optional[str] = Field(default=None, alias="endDate")
    date_range: Optional[str] = Field(default=None, alias="dateRange")
    score_range: Optional[str] = Field(default=None, alias="scoreRange")
    survey_version: Optional[str] = Field(default=None, alias="surveyVersion")
    email: Optional[EmailStr] = None

    @field_validator(
        "start_date",
        "end_date",
        "date_range",
        "score_range",
        "survey_version",
        "email",
        mode="before",
    )
    @classmethod
    def _blank_is_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("start_date", "end_date")
    @classmethod
    def _parsable_date(cls, value: Optional[str]) -> Optional[str]:
        if value is not None:
            parse_timestamp(value)  # raises ValueError
        return value

    @field_validator("date_range")
    @classmethod
    def _known_date_range(cls, value: Optional[str]) -> Optional[str]:
        if value is None or value in ("all", "custom"):
            return value
        if not value.isdigit():
            raise ValueError("dateRange must be 'all', 'custom' or a number of days")
        if int(value) > MAX_RANGE_DAYS:
            raise ValueError(f"dateRange must be at most {MAX_RANGE_DAYS} days")
        return value

    @field_validator("score_range")
    @classmethod
    def _known_score_range(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in SCORE_RANGES:
            raise ValueError(f"scoreRange must be one of {', '.join(SCORE_RANGES)}")
        return value

    @model_validator(mode="after")
    def _ordered_range(self) -> "AnalyticsQuery":
        if self.start_date and self.end_date:
            start = parse_timestamp(self.start_date)
            end = parse_timestamp(self.end_date)
            if start > end:
                raise ValueError("startDate must not be after endDate")
            if end - start > datetime.timedelta(days=MAX_RANGE_DAYS):
                raise ValueError(f"date range must not exceed {MAX_RANGE_DAYS} days")
        return self

    def to_query(self) -> Dict[str, Any]:
        """Return the set parameters keyed by their wire names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class SurveyResultPayload(BaseModel):
    """Body of ``POST /survey/results``."""

    model_config = ConfigDict(populate_by_name=True)

    survey_title: str = Field(alias="surveyTitle")
    results: Dict[str, Any]


class EmailRecordPayload(BaseModel):
    """Body of ``POST /survey/email-records``."""

    model_config = ConfigDict(populate_by_name=True)

    recipient_email: EmailStr = Field(alias="recipientEmail")
    survey_title: str = Field(alias="surveyTitle")
    results: Dict[str, Any]
    method: str = "email"
