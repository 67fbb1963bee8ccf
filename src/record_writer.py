"""Append survey-result and email-send record files.

Every write creates a new file named after a fresh unique id, so concurrent
writers never touch the same file. The body is written to a hidden
temporary file and renamed into place, which keeps readers from seeing a
half-written record. After the rename the writer invalidates the cache
stream it appended to; until then cached aggregates may still be served.
"""
from __future__ import annotations

import datetime
import json
import logging
import os
import uuid
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from src.analytics import config
from src.cache import EMAILS_STREAM, RESPONSES_STREAM, ResponseCache
from src.exceptions import InvalidRecordError
from src.record_store import RECORD_SUFFIX, RecordStore
from src.records import (
    EmailRecord,
    Results,
    SurveyResponseRecord,
    format_timestamp,
    sanitize_text,
)

__all__ = ["RecordWriter", "MAX_TITLE_LENGTH", "link_expires_at"]

logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200


def _validated_title(survey_title: Any) -> str:
    title = sanitize_text(survey_title)
    if not title:
        raise InvalidRecordError("surveyTitle is required")
    if len(title) > MAX_TITLE_LENGTH:
        raise InvalidRecordError(
            f"surveyTitle must be at most {MAX_TITLE_LENGTH} characters"
        )
    return title


def _validated_results(results: Any) -> Dict[str, Any]:
    """Check the results object and return it unchanged.

    Percentages above 100 are accepted; upstream rounding produces them and
    the analytics side buckets them separately.
    """
    try:
        parsed = Results.from_dict(results)
    except ValueError as exc:
        raise InvalidRecordError(str(exc)) from exc
    if parsed.total_score is None or parsed.total_score < 0:
        raise InvalidRecordError("results.totalScore must be a non-negative number")
    if parsed.percentage is None or parsed.percentage < 0:
        raise InvalidRecordError("results.percentage must be a non-negative number")
    if parsed.max_possible_score is not None and parsed.max_possible_score <= 0:
        raise InvalidRecordError("results.maxPossibleScore must be positive")
    try:
        json.dumps(results, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise InvalidRecordError(f"results is not serialisable: {exc}") from exc
    return dict(results)


class RecordWriter:
    """Writes new record files next to a :class:`RecordStore`."""

    def __init__(
        self,
        store: RecordStore,
        cache: Optional[ResponseCache] = None,
        *,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
        now: Callable[[], datetime.datetime] = lambda: datetime.datetime.now(
            datetime.timezone.utc
        ),
    ) -> None:
        self.store = store
        self.cache = cache
        self._new_id = id_factory
        self._now = now

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def save_response(
        self,
        survey_title: str,
        results: Mapping[str, Any],
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        method: Optional[str] = None,
    ) -> SurveyResponseRecord:
        """Persist a completed survey and invalidate the ``responses`` stream.

        Raises
        ------
        InvalidRecordError
            If the title or results fail validation.
        """
        record_id = self._new_id()
        body = {
            "id": record_id,
            "surveyTitle": _validated_title(survey_title),
            "results": _validated_results(results),
            "timestamp": format_timestamp(self._now()),
            "ip": ip,
            "userAgent": user_agent,
        }
        if method:
            body["method"] = method

        self._write(self.store.responses_dir, record_id, body)
        self._invalidate(RESPONSES_STREAM)
        logger.info(
            "response_saved",
            extra={"record_id": record_id, "survey_title": body["surveyTitle"]},
        )
        return SurveyResponseRecord.from_dict(body, record_id=record_id)

    def save_email(
        self,
        recipient_email: str,
        survey_title: str,
        results: Mapping[str, Any],
        *,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        method: str = "email",
    ) -> EmailRecord:
        """Persist an email-send event and invalidate the ``emails`` stream.

        Raises
        ------
        InvalidRecordError
            If the recipient, title or results fail validation.
        """
        if not recipient_email or "@" not in recipient_email:
            raise InvalidRecordError("recipientEmail must be an email address")
        record_id = self._new_id()
        body = {
            "id": record_id,
            "recipientEmail": recipient_email,
            "surveyTitle": _validated_title(survey_title),
            "results": _validated_results(results),
            "timestamp": format_timestamp(self._now()),
            "ip": ip,
            "userAgent": user_agent,
            "method": method,
        }

        self._write(self.store.emails_dir, record_id, body)
        self._invalidate(EMAILS_STREAM)
        logger.info(
            "email_record_saved",
            extra={"record_id": record_id, "survey_title": body["surveyTitle"]},
        )
        return EmailRecord.from_dict(body, record_id=record_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _write(self, directory: Path, record_id: str, body: Dict[str, Any]) -> Path:
        directory.mkdir(parents=True, exist_ok=True)
        target = directory / f"{record_id}{RECORD_SUFFIX}"
        if target.exists():
            raise FileExistsError(f"Record {record_id} already exists in {directory}")
        temp = directory / f".{record_id}{RECORD_SUFFIX}.tmp"
        try:
            temp.write_text(json.dumps(body, indent=2, allow_nan=False), encoding="utf-8")
            os.replace(temp, target)
        except Exception:
            temp.unlink(missing_ok=True)
            raise
        return target

    def _invalidate(self, stream: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.invalidate(stream)
        except Exception:  # noqa: BLE001 – the record is already committed
            logger.exception("Cache invalidation failed for stream %s", stream)


def link_expires_at(record: SurveyResponseRecord) -> datetime.datetime:
    """Return when the share link for *record* stops resolving."""
    return record.timestamp + datetime.timedelta(days=config.SHARED_RESULT_MAX_AGE_DAYS)
