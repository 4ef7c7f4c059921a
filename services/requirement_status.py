from __future__ import annotations

import re
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional, Union

from services.storage_path import DEFAULT_BUCKETS, same_file
from utils import parse_datetime_maybe


class RequirementStatus(str, Enum):
    MISSING = "Missing"
    PENDING = "Pending"
    APPROVED = "Approved"
    RESUBMIT = "Resubmit"
    EXPIRED = "Expired"


StatusValue = Union[RequirementStatus, str]

_SYNONYMS = {
    "": RequirementStatus.MISSING,
    "missing": RequirementStatus.MISSING,
    "no file": RequirementStatus.MISSING,
    "validated": RequirementStatus.APPROVED,
    "approved": RequirementStatus.APPROVED,
    "submitted": RequirementStatus.PENDING,
    "pending": RequirementStatus.PENDING,
    "re-submit": RequirementStatus.RESUBMIT,
    "resubmit": RequirementStatus.RESUBMIT,
    "expired": RequirementStatus.EXPIRED,
}

# Decisions that close a review; a new file is needed before HR can act again.
CLOSED_DECISIONS = (RequirementStatus.APPROVED, RequirementStatus.RESUBMIT)

_ISO_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")

# Partial dates ("15", "March 2026") are rejected instead of filled from the clock.
_FILL_A = datetime(2000, 1, 1)
_FILL_B = datetime(2001, 2, 2)


def normalize_status(raw: Any) -> StatusValue:
    """Map a stored status string onto RequirementStatus; unknown strings pass through unchanged."""
    if isinstance(raw, RequirementStatus):
        return raw
    if raw is None:
        return RequirementStatus.MISSING
    s = str(raw)
    return _SYNONYMS.get(s.strip().lower(), s)


def status_text(status: StatusValue) -> str:
    return status.value if isinstance(status, RequirementStatus) else str(status)


def parse_calendar_date(value: Any) -> Optional[date]:
    """`YYYY-MM-DD` as a plain calendar date; other parseable forms reduced to their date."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    s = str(value).strip()
    if not s:
        return None
    if _ISO_DATE_RE.match(s):
        try:
            return date.fromisoformat(s)
        except ValueError:
            return None
    dt = parse_datetime_maybe(s)
    if dt is not None:
        return dt.date()
    try:
        from dateutil import parser as dt_parser  # type: ignore

        # Two different fill-in defaults: any part taken from them makes the results differ.
        first = dt_parser.parse(s, default=_FILL_A).date()
        second = dt_parser.parse(s, default=_FILL_B).date()
    except (ValueError, OverflowError):
        return None
    return first if first == second else None


def _as_date(as_of: Union[date, datetime]) -> date:
    return as_of.date() if isinstance(as_of, datetime) else as_of


def is_expired(valid_until: Any, as_of: Union[date, datetime]) -> bool:
    until = parse_calendar_date(valid_until)
    if until is None:
        return False
    return until < _as_date(as_of)


def days_until(value: Any, as_of: Union[date, datetime]) -> Optional[int]:
    d = parse_calendar_date(value)
    if d is None:
        return None
    return (d - _as_date(as_of)).days


def can_validate(entry, buckets=DEFAULT_BUCKETS) -> bool:
    """
    Whether HR may record a decision on this entry now.

    Needs a file on record, and then one of: the file was never reviewed, it
    differs from the reviewed file, or the stored decision is still open. A
    rejection with no reviewed file on record reopens once the upload is
    stamped after the review.
    """
    if not entry.file_path:
        return False
    if not (entry.validated_file_path or entry.validated_at):
        return True
    if entry.new_upload:
        return True
    if entry.validated_file_path:
        if not same_file(entry.file_path, entry.validated_file_path, buckets):
            return True
        return entry.validation_status not in CLOSED_DECISIONS
    if entry.validation_status == RequirementStatus.RESUBMIT:
        # No reviewed file on record: only an upload stamped before the rejection keeps it closed.
        submitted = parse_datetime_maybe(entry.submitted_at)
        validated = parse_datetime_maybe(entry.validated_at)
        return not (submitted and validated and submitted <= validated)
    return entry.validation_status not in CLOSED_DECISIONS
