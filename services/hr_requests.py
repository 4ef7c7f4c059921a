from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from services.requirement_catalog import (
    GROUP_IDS,
    CATALOG_BY_KEY,
    HR_REQUEST_KEY_PREFIX,
    EmployeeProfile,
    applicable_requirements,
    hr_request_definition,
)
from services.requirement_entries import (
    CanonicalEntry,
    HrRequestRecord,
    append_hr_request,
    build_entries,
    copy_blob,
    find_entry,
    hr_requests_from_blob,
    write_record_fields,
)
from services.requirement_status import days_until, parse_calendar_date, status_text
from services.storage_path import DEFAULT_BUCKETS, usable_file_path
from utils import ApiError


logger = logging.getLogger("requirements")

PRIORITIES = ("low", "normal", "high", "urgent")

DECISION_VALIDATED = "Validated"
DECISION_RESUBMIT = "Re-submit"

_DECISIONS = {
    "validated": DECISION_VALIDATED,
    "approved": DECISION_VALIDATED,
    "approve": DECISION_VALIDATED,
    "re-submit": DECISION_RESUBMIT,
    "resubmit": DECISION_RESUBMIT,
}

# Stored status per decision: ID numbers keep their own vocabulary.
_ID_STATUS = {DECISION_VALIDATED: "Validated", DECISION_RESUBMIT: "Re-submit"}
_DOC_STATUS = {DECISION_VALIDATED: "approved", DECISION_RESUBMIT: "resubmit"}

_NON_ALNUM_RE = re.compile(r"[^a-z0-9]+")

# Shortest canonical label that may match by containment.
MIN_CONTAINMENT_LEN = 3


@dataclass
class AddRequestResult:
    blob: dict
    request: HrRequestRecord
    deadline_soon: bool


@dataclass
class MutationResult:
    blob: dict
    entry: CanonicalEntry


def canonicalize(label: Any) -> str:
    return _NON_ALNUM_RE.sub("", str(label or "").lower())


def required_document_labels(employee: EmployeeProfile, blob: Any) -> list[str]:
    """Names a new HR request must not collide with: catalog names, short names, keys, and earlier requests."""
    out: list[str] = []
    for defn in applicable_requirements(employee):
        out.extend(defn.labels)
    out.extend(r.label for r in hr_requests_from_blob(blob) if r.label)
    return out


def find_duplicate_label(label: Any, existing: Iterable[str]) -> Optional[str]:
    """
    First existing label that `label` collides with.

    Equality of canonical forms, or containment either way when the shorter
    canonical form has at least MIN_CONTAINMENT_LEN characters. This is a
    heuristic: distinct documents sharing a word can be rejected, and short
    names or keys such as `tin`, `sss` or `cbc` also match inside unrelated
    words ("Meeting Attendance Certificate" collides with `TIN`).
    """
    wanted = canonicalize(label)
    if not wanted:
        return None
    for other in existing:
        c = canonicalize(other)
        if not c:
            continue
        if c == wanted:
            return other
        shorter, longer = (c, wanted) if len(c) <= len(wanted) else (wanted, c)
        if len(shorter) >= MIN_CONTAINMENT_LEN and shorter in longer:
            return other
    return None


def add_request(
    employee: EmployeeProfile,
    blob: Any,
    label: Any,
    deadline: Any,
    *,
    request_id: str,
    as_of: Union[date, datetime],
    requested_at: str,
    requested_by: str = "",
    description: str = "",
    priority: str = "normal",
    soon_days: int = 7,
) -> AddRequestResult:
    label_s = str(label or "").strip()
    deadline_s = str(deadline or "").strip()
    if not label_s:
        raise ApiError("MISSING_FIELD", "Document label is required", http_status=400, details={"field": "label"})
    if not deadline_s:
        raise ApiError("MISSING_FIELD", "Deadline is required", http_status=400, details={"field": "deadline"})

    deadline_d = parse_calendar_date(deadline_s)
    if deadline_d is None:
        raise ApiError("BAD_REQUEST", f"Invalid deadline: {deadline_s}", http_status=400)

    priority_s = str(priority or "normal").strip().lower()
    if priority_s not in PRIORITIES:
        raise ApiError("BAD_REQUEST", f"Invalid priority: {priority}", http_status=400)

    clash = find_duplicate_label(label_s, required_document_labels(employee, blob))
    if clash is not None:
        raise ApiError(
            "DUPLICATE_REQUIREMENT",
            f"'{label_s}' is already required as '{clash}'",
            http_status=409,
            details={"conflictsWith": clash},
        )

    new_blob = copy_blob(blob)
    raw = {
        "id": request_id,
        "document_type": label_s,
        "description": str(description or "").strip(),
        "priority": priority_s,
        "deadline": deadline_d.isoformat(),
        "status": "pending",
        "requested_at": requested_at,
        "requested_by": requested_by,
        "file_path": None,
        "submitted_at": None,
        "validated_at": None,
        "validated_by": None,
        "validated_file_path": None,
        "remarks": None,
    }
    append_hr_request(new_blob, raw)

    days = days_until(deadline_d, as_of)
    request = next(r for r in hr_requests_from_blob(new_blob) if r.id == request_id)
    logger.info("hr_request_added employee=%s id=%s label=%s deadline=%s", employee.employee_id, request_id, label_s, raw["deadline"])
    return AddRequestResult(blob=new_blob, request=request, deadline_soon=days is not None and days <= soon_days)


def _definition_for(employee: EmployeeProfile, blob: Any, key: str):
    k = str(key or "").strip()
    if k.startswith(HR_REQUEST_KEY_PREFIX):
        rid = k[len(HR_REQUEST_KEY_PREFIX) :]
        for r in hr_requests_from_blob(blob):
            if r.id == rid:
                return hr_request_definition(r.id, r.label)
        return None
    defn = CATALOG_BY_KEY.get(k)
    if defn is None or not defn.applicable(employee):
        return None
    return defn


def _require_entry(employee: EmployeeProfile, blob: Any, key: str, as_of, buckets):
    defn = _definition_for(employee, blob, key)
    entry = find_entry(build_entries(employee, blob, as_of, buckets), key) if defn else None
    if defn is None or entry is None:
        raise ApiError("NOT_FOUND", f"Unknown requirement: {key}", http_status=404, details={"key": str(key or "")})
    return defn, entry


def normalize_decision(raw: Any) -> str:
    decision = _DECISIONS.get(str(raw or "").strip().lower())
    if decision is None:
        raise ApiError("BAD_REQUEST", "Decision must be Validated or Re-submit", http_status=400)
    return decision


def validate_requirement(
    employee: EmployeeProfile,
    blob: Any,
    key: str,
    decision: Any,
    *,
    validated_by: str,
    validated_at: str,
    as_of: Union[date, datetime],
    remarks: str = "",
    buckets: Iterable[str] = DEFAULT_BUCKETS,
) -> MutationResult:
    decision_s = normalize_decision(decision)
    defn, entry = _require_entry(employee, blob, key, as_of, buckets)
    if not entry.can_validate:
        raise ApiError(
            "BAD_REQUEST",
            f"{entry.label} has no file awaiting review",
            http_status=400,
            details={"key": entry.key, "status": status_text(entry.status)},
        )

    vocab = _ID_STATUS if defn.group == GROUP_IDS else _DOC_STATUS
    new_blob = copy_blob(blob)
    write_record_fields(
        new_blob,
        defn,
        {
            "status": vocab[decision_s],
            "remarks": str(remarks or "").strip() or None,
            "validated_at": validated_at,
            "validated_by": validated_by,
            "validated_file_path": entry.file_path,
        },
    )

    updated = find_entry(build_entries(employee, new_blob, as_of, buckets), entry.key)
    logger.info(
        "requirement_validated employee=%s key=%s decision=%s by=%s",
        employee.employee_id,
        entry.key,
        decision_s,
        validated_by,
    )
    return MutationResult(blob=new_blob, entry=updated)


def record_submission(
    employee: EmployeeProfile,
    blob: Any,
    key: str,
    file_path: Any,
    *,
    submitted_at: str,
    as_of: Union[date, datetime],
    value: Any = None,
    valid_until: Any = None,
    buckets: Iterable[str] = DEFAULT_BUCKETS,
) -> MutationResult:
    """Record an upload that already sits in file storage. Stored status is left for the resubmission rules."""
    defn, _entry = _require_entry(employee, blob, key, as_of, buckets)

    path = str(file_path or "").strip()
    value_s = str(value or "").strip()
    if path and usable_file_path(path) is None:
        raise ApiError("BAD_REQUEST", "File path is an upload placeholder", http_status=400)
    if not path and not (defn.group == GROUP_IDS and value_s):
        raise ApiError("MISSING_FIELD", "File path is required", http_status=400, details={"field": "filePath"})

    fields: dict[str, Any] = {"submitted_at": submitted_at}
    if path:
        fields["file_path"] = path
    if value_s:
        fields["value"] = value_s
    if valid_until not in (None, ""):
        until = parse_calendar_date(valid_until)
        if until is None:
            raise ApiError("BAD_REQUEST", f"Invalid validity date: {valid_until}", http_status=400)
        if not defn.expires:
            raise ApiError("BAD_REQUEST", f"{defn.display_name} has no validity date", http_status=400)
        fields["valid_until"] = until.isoformat()

    new_blob = copy_blob(blob)
    write_record_fields(new_blob, defn, fields)

    updated = find_entry(build_entries(employee, new_blob, as_of, buckets), defn.key)
    logger.info("requirement_submitted employee=%s key=%s file=%s", employee.employee_id, defn.key, path or "-")
    return MutationResult(blob=new_blob, entry=updated)
