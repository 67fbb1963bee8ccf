"""Read survey-result and email-send record files from disk.

Each completed survey is stored as ``<data_dir>/<id>.json`` and each email
send as ``<data_dir>/email-recipients/<id>.json``. Files are written once by
:mod:`src.record_writer` and never modified, so the store keeps no state and
re-scans the directories on every call.
"""
from __future__ import annotations

import datetime
import json
import logging
import re
from pathlib import Path
from typing import Callable, List, Optional, TypeVar, Union

from src.analytics import config
from src.exceptions import RecordNotFoundError
from src.records import EmailRecord, SurveyResponseRecord

logger = logging.getLogger(__name__)

RECORD_SUFFIX = ".json"
EMAIL_FILE_PREFIX = "email-"

_RECORD_ID_RE = re.compile(r"^[A-Za-z0-9_-]+$")

_T = TypeVar("_T")


def _reject_constant(name: str) -> None:
    raise ValueError(f"Non-finite number {name} is not valid JSON")


def read_record_file(path: Path) -> object:
    """Parse a record file strictly; ``NaN`` and ``Infinity`` raise ValueError."""
    return json.loads(
        path.read_text(encoding="utf-8"), parse_constant=_reject_constant
    )


def is_valid_record_id(record_id: str) -> bool:
    """Return True if *record_id* is safe to use as a file stem."""
    return bool(_RECORD_ID_RE.fullmatch(record_id or ""))


class RecordStore:
    """Directory-backed reader for response and email records."""

    def __init__(
        self,
        responses_dir: Union[str, Path],
        emails_dir: Optional[Union[str, Path]] = None,
    ) -> None:
        """Create a store reading from *responses_dir*.

        Args:
            responses_dir: Directory holding one JSON file per submission.
            emails_dir: Directory holding one JSON file per email send.
                Defaults to the ``email-recipients`` sub-directory.
        """
        self.responses_dir = Path(responses_dir)
        self.emails_dir = (
            Path(emails_dir)
            if emails_dir is not None
            else self.responses_dir / config.EMAIL_SUBDIR
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def load_responses(self) -> List[SurveyResponseRecord]:
        """Return every readable survey response record."""
        return self._load_dir(
            self.responses_dir,
            lambda path, data, read_at: SurveyResponseRecord.from_dict(
                data, record_id=path.stem, read_at=read_at
            ),
            skip_prefix=EMAIL_FILE_PREFIX,
        )

    def load_emails(self) -> List[EmailRecord]:
        """Return every readable email-send record."""
        return self._load_dir(
            self.emails_dir,
            lambda path, data, _read_at: EmailRecord.from_dict(
                data, record_id=path.stem
            ),
        )

    def get_response(self, record_id: str) -> SurveyResponseRecord:
        """Return the response stored under *record_id*.

        Raises
        ------
        RecordNotFoundError
            If the id is malformed or no such file exists.
        ValueError
            If the file exists but cannot be parsed.
        """
        if not is_valid_record_id(record_id):
            raise RecordNotFoundError(record_id)
        path = self.responses_dir / f"{record_id}{RECORD_SUFFIX}"
        if not path.is_file():
            raise RecordNotFoundError(record_id)
        data = read_record_file(path)
        return SurveyResponseRecord.from_dict(data, record_id=record_id)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _load_dir(
        self,
        directory: Path,
        parse: Callable[[Path, object, datetime.datetime], _T],
        *,
        skip_prefix: Optional[str] = None,
    ) -> List[_T]:
        if not directory.is_dir():
            logger.debug("Record directory %s does not exist; no records", directory)
            return []

        read_at = datetime.datetime.now(datetime.timezone.utc)
        records: List[_T] = []
        skipped = 0
        # Sorted so that "store order" is stable across platforms.
        for path in sorted(directory.iterdir()):
            name = path.name
            if not name.endswith(RECORD_SUFFIX) or not path.is_file():
                continue
            if skip_prefix and name.startswith(skip_prefix):
                continue
            try:
                data = read_record_file(path)
                records.append(parse(path, data, read_at))
            except (OSError, ValueError, TypeError) as exc:
                # json.JSONDecodeError is a ValueError subclass
                skipped += 1
                logger.warning("Skipping unreadable record file %s: %s", path, exc)

        logger.debug(
            "Loaded %d record(s) from %s (%d skipped)", len(records), directory, skipped
        )
        return records
