"""
Adapter over the stored `requirements` blob plus the entry normalizer.

The blob has grown by accretion: snake_case and camelCase field names, optional
nested groups, a legacy `documents` array, and HR requests in a list. Every
field-name variant is resolved here; the rest of the engine works on
`CanonicalEntry` only.
"""

from __future__ import annotations

import copy
import json
import re
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional, Union

from services.requirement_catalog import (
    CATALOG_BY_KEY,
    GROUP_CLEARANCE,
    GROUP_EDUCATION,
    GROUP_HR_REQUEST,
    GROUP_IDS,
    GROUP_LICENSE,
    GROUP_MEDICAL,
    GROUP_PERSONAL,
    HR_REQUEST_KEY_PREFIX,
    EmployeeProfile,
    RequirementDefinition,
    applicable_requirements,
    hr_request_key,
)
from services.requirement_status import (
    RequirementStatus,
    StatusValue,
    can_validate,
    is_expired,
    normalize_status,
    status_text,
)
from services.storage_path import DEFAULT_BUCKETS, same_file, usable_file_path
from utils import parse_datetime_maybe


# Container names per group; the first one is used when a new container is created.
_GROUP_CONTAINERS = {
    GROUP_IDS: ("id_numbers", "idNumbers"),
    GROUP_MEDICAL: ("medicalExams", "medical_exams"),
    GROUP_PERSONAL: ("personalDocuments", "personal_documents"),
    GROUP_CLEARANCE: ("clearances",),
    GROUP_EDUCATION: ("educationalDocuments", "educational_documents"),
}
_LICENSE_CONTAINER = "license"
_HR_REQUEST_CONTAINERS = ("hr_requests", "hrRequests")

_FIELD_ALIASES = {
    "file_path": ("filePath",),
    "submitted_at": ("submittedAt", "submittedDate"),
    "validated_at": ("validatedAt",),
    "validated_by": ("validatedBy",),
    "validated_file_path": ("validatedFilePath",),
    "value": ("idNumber", "id_number"),
    "license_file_path": ("licenseFilePath",),
    "license_number": ("licenseNumber",),
    "license_expiry": ("licenseExpiry",),
    "front_file_path": ("frontFilePath",),
    "back_file_path": ("backFilePath",),
    "valid_until": ("validUntil",),
    "date_validity": ("dateValidity",),
    "document_type": ("document", "documentType", "documentLabel", "label"),
    "requested_at": ("requestedAt",),
    "requested_by": ("requestedBy",),
}

# Logical field -> stored field, where a group names it differently.
_GROUP_FIELD_NAMES = {
    GROUP_LICENSE: {"file_path": "license_file_path", "value": "license_number", "valid_until": "license_expiry"},
    GROUP_CLEARANCE: {"valid_until": "date_validity"},
}


def _pick(d: Any, *names: str) -> Any:
    if not isinstance(d, dict):
        return None
    for name in names:
        v = d.get(name)
        if v is not None and v != "":
            return v
    return None


def _pick_field(d: Any, name: str) -> Any:
    return _pick(d, name, *_FIELD_ALIASES.get(name, ()))


def _text(v: Any) -> str:
    return "" if v is None else str(v).strip()


def parse_blob(raw: Any) -> dict:
    """The stored blob as a dict; JSON text is decoded, anything unusable is an empty blob."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    if isinstance(raw, str) and raw.strip():
        try:
            parsed = json.loads(raw)
        except ValueError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


@dataclass
class RawRecord:
    status: Any = None
    value: str = ""
    file_path: Optional[str] = None
    submitted_at: str = ""
    validated_at: str = ""
    validated_by: str = ""
    validated_file_path: Optional[str] = None
    remarks: str = ""
    valid_until: str = ""


@dataclass
class HrRequestRecord:
    id: str
    label: str
    description: str = ""
    priority: str = "normal"
    deadline: str = ""
    requested_at: str = ""
    requested_by: str = ""
    record: RawRecord = field(default_factory=RawRecord)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "documentType": self.label,
            "description": self.description,
            "priority": self.priority,
            "deadline": self.deadline,
            "requestedAt": self.requested_at,
            "requestedBy": self.requested_by,
        }


def _record_from_dict(d: Any, group: str) -> RawRecord:
    if isinstance(d, str):
        # Oldest ID rows stored the number alone.
        return RawRecord(value=d.strip())
    if not isinstance(d, dict):
        return RawRecord()

    names = _GROUP_FIELD_NAMES.get(group, {})
    if group == GROUP_LICENSE:
        photocopy = usable_file_path(_pick_field(d, "license_file_path"))
        front = usable_file_path(_pick_field(d, "front_file_path"))
        back = usable_file_path(_pick_field(d, "back_file_path"))
        file_path = photocopy or (front if front and back else None) or usable_file_path(_pick_field(d, "file_path"))
    else:
        file_path = usable_file_path(_pick_field(d, "file_path"))

    valid_until = _pick_field(d, names.get("valid_until", "valid_until"))
    if valid_until is None:
        valid_until = _pick(d, "valid_until", "validUntil", "date_validity", "dateValidity")

    return RawRecord(
        status=d.get("status"),
        value=_text(_pick_field(d, names.get("value", "value"))),
        file_path=file_path,
        submitted_at=_text(_pick_field(d, "submitted_at") or _pick(d, "uploaded_at", "uploadedAt")),
        validated_at=_text(_pick_field(d, "validated_at")),
        validated_by=_text(_pick_field(d, "validated_by")),
        validated_file_path=usable_file_path(_pick_field(d, "validated_file_path")),
        remarks=_text(d.get("remarks")),
        valid_until=_text(valid_until),
    )


def _group_container(blob: dict, group: str) -> dict:
    for name in _GROUP_CONTAINERS.get(group, ()):
        v = blob.get(name)
        if isinstance(v, dict):
            return v
    return {}


def _doc_key(raw: Any) -> str:
    return re.sub(r"[\s\-]+", "_", _text(raw).lower())


def _legacy_documents(blob: dict) -> dict[str, dict]:
    out: dict[str, dict] = {}
    docs = blob.get("documents")
    if not isinstance(docs, list):
        return out
    for doc in docs:
        if not isinstance(doc, dict):
            continue
        key = _doc_key(_pick(doc, "key", "type", "name"))
        if key in CATALOG_BY_KEY and key not in out:
            out[key] = doc
    return out


def _hr_request_list(blob: dict) -> list:
    for name in _HR_REQUEST_CONTAINERS:
        v = blob.get(name)
        if isinstance(v, list):
            return v
    return []


def _request_id(req: dict, index: int) -> str:
    return _text(req.get("id")) or f"idx-{index}"


def hr_requests_from_blob(blob: Any) -> list[HrRequestRecord]:
    out: list[HrRequestRecord] = []
    seen: set[str] = set()
    for index, req in enumerate(_hr_request_list(parse_blob(blob))):
        if not isinstance(req, dict):
            continue
        rid = _request_id(req, index)
        if rid in seen:
            continue
        seen.add(rid)
        out.append(
            HrRequestRecord(
                id=rid,
                label=_text(_pick_field(req, "document_type")),
                description=_text(req.get("description")),
                priority=_text(req.get("priority")).lower() or "normal",
                deadline=_text(req.get("deadline")),
                requested_at=_text(_pick_field(req, "requested_at")),
                requested_by=_text(_pick_field(req, "requested_by")),
                record=_record_from_dict(req, GROUP_HR_REQUEST),
            )
        )
    return out


def raw_record(defn: RequirementDefinition, blob: Any) -> RawRecord:
    """Raw state of one catalog requirement, with legacy `documents` filling gaps."""
    blob = parse_blob(blob)
    if defn.group == GROUP_LICENSE:
        rec = _record_from_dict(blob.get(_LICENSE_CONTAINER), GROUP_LICENSE)
    else:
        rec = _record_from_dict(_group_container(blob, defn.group).get(defn.key), defn.group)

    legacy = _legacy_documents(blob).get(defn.key)
    if legacy is not None:
        if rec.file_path is None:
            rec.file_path = usable_file_path(_pick_field(legacy, "file_path"))
            if not rec.submitted_at:
                rec.submitted_at = _text(_pick(legacy, "uploaded_at", "uploadedAt") or _pick_field(legacy, "submitted_at"))
        if rec.status in (None, ""):
            rec.status = legacy.get("status")
    return rec


@dataclass
class CanonicalEntry:
    key: str
    label: str
    group: str
    status: StatusValue
    submitted: bool
    required_for_completion: bool
    validation_status: StatusValue = RequirementStatus.MISSING
    file_path: Optional[str] = None
    validated_file_path: Optional[str] = None
    valid_until: str = ""
    remarks: str = ""
    new_upload: bool = False
    can_validate: bool = False
    submitted_at: str = ""
    validated_at: str = ""
    validated_by: str = ""
    value: str = ""
    request: Optional[HrRequestRecord] = None

    def to_dict(self) -> dict:
        out = {
            "key": self.key,
            "label": self.label,
            "group": self.group,
            "status": status_text(self.status),
            "validationStatus": status_text(self.validation_status),
            "submitted": self.submitted,
            "requiredForCompletion": self.required_for_completion,
            "filePath": self.file_path,
            "validatedFilePath": self.validated_file_path,
            "validUntil": self.valid_until,
            "remarks": self.remarks,
            "newUpload": self.new_upload,
            "canValidate": self.can_validate,
            "submittedAt": self.submitted_at,
            "validatedAt": self.validated_at,
            "validatedBy": self.validated_by,
            "value": self.value,
        }
        if self.request is not None:
            out["request"] = self.request.to_dict()
        return out


def _is_new_upload(defn: RequirementDefinition, rec: RawRecord, stored: StatusValue, buckets) -> bool:
    if not defn.tracks_resubmission or rec.file_path is None or not rec.validated_at:
        return False
    if rec.validated_file_path:
        return not same_file(rec.file_path, rec.validated_file_path, buckets)
    # Records reviewed before validated_file_path existed: fall back to timestamps.
    if stored != RequirementStatus.RESUBMIT:
        return False
    submitted = parse_datetime_maybe(rec.submitted_at)
    validated = parse_datetime_maybe(rec.validated_at)
    return bool(submitted and validated and submitted > validated)


def build_entry(
    defn: RequirementDefinition,
    rec: RawRecord,
    employee: EmployeeProfile,
    as_of: Union[date, datetime],
    buckets: Iterable[str] = DEFAULT_BUCKETS,
    request: Optional[HrRequestRecord] = None,
) -> CanonicalEntry:
    has_file = rec.file_path is not None
    submitted = has_file or (defn.group == GROUP_IDS and bool(rec.value))

    stored = normalize_status(rec.status)
    # Unrecognized stored values count as no decision.
    if not isinstance(stored, RequirementStatus):
        stored = RequirementStatus.MISSING
    new_upload = _is_new_upload(defn, rec, stored, buckets)

    status = RequirementStatus.PENDING if new_upload else stored
    if submitted and status == RequirementStatus.MISSING:
        status = RequirementStatus.PENDING
    if not submitted and status == RequirementStatus.APPROVED:
        status = RequirementStatus.MISSING

    validation_status = status
    if has_file and defn.expires and is_expired(rec.valid_until, as_of):
        status = RequirementStatus.EXPIRED

    entry = CanonicalEntry(
        key=defn.key,
        label=defn.display_name,
        group=defn.group,
        status=status,
        submitted=submitted,
        required_for_completion=bool(defn.required(employee)),
        validation_status=validation_status,
        file_path=rec.file_path,
        validated_file_path=rec.validated_file_path,
        valid_until=rec.valid_until,
        remarks=rec.remarks,
        new_upload=new_upload,
        submitted_at=rec.submitted_at,
        validated_at=rec.validated_at,
        validated_by=rec.validated_by,
        value=rec.value,
        request=request,
    )
    entry.can_validate = can_validate(entry, buckets)
    return entry


def build_entries(
    employee: EmployeeProfile,
    blob: Any,
    as_of: Union[date, datetime],
    buckets: Iterable[str] = DEFAULT_BUCKETS,
) -> list[CanonicalEntry]:
    blob = parse_blob(blob)
    requests = hr_requests_from_blob(blob)
    by_key = {hr_request_key(r.id): r for r in requests}

    out: list[CanonicalEntry] = []
    for defn in applicable_requirements(employee, [(r.id, r.label) for r in requests]):
        if defn.group == GROUP_HR_REQUEST:
            req = by_key[defn.key]
            out.append(build_entry(defn, req.record, employee, as_of, buckets, request=req))
        else:
            out.append(build_entry(defn, raw_record(defn, blob), employee, as_of, buckets))
    return out


def find_entry(entries: Iterable[CanonicalEntry], key: str) -> Optional[CanonicalEntry]:
    k = _text(key)
    for e in entries:
        if e.key == k:
            return e
    return None


# ---- writes ----


def copy_blob(raw: Any) -> dict:
    return copy.deepcopy(parse_blob(raw))


def _container_for_write(blob: dict, group: str) -> dict:
    names = _GROUP_CONTAINERS[group]
    for name in names:
        v = blob.get(name)
        if isinstance(v, dict):
            return v
    blob[names[0]] = {}
    return blob[names[0]]


def _slot_for_write(blob: dict, defn: RequirementDefinition) -> dict:
    if defn.group == GROUP_LICENSE:
        if not isinstance(blob.get(_LICENSE_CONTAINER), dict):
            blob[_LICENSE_CONTAINER] = {}
        return blob[_LICENSE_CONTAINER]

    if defn.group == GROUP_HR_REQUEST:
        rid = defn.key[len(HR_REQUEST_KEY_PREFIX) :]
        for index, req in enumerate(_hr_request_list(blob)):
            if isinstance(req, dict) and _request_id(req, index) == rid:
                return req
        raise KeyError(defn.key)

    container = _container_for_write(blob, defn.group)
    slot = container.get(defn.key)
    if isinstance(slot, str):
        slot = {"value": slot}
    if not isinstance(slot, dict):
        slot = {}
    container[defn.key] = slot
    return slot


def write_record_fields(blob: dict, defn: RequirementDefinition, fields: dict[str, Any]) -> dict:
    """
    Set logical record fields (status, file_path, valid_until, ...) on `blob` in place.

    Aliased spellings of each written field are dropped so the new value is the
    only one a later read can see.
    """
    slot = _slot_for_write(blob, defn)
    names = _GROUP_FIELD_NAMES.get(defn.group, {})
    for logical, value in fields.items():
        stored = names.get(logical, logical)
        for alias in _FIELD_ALIASES.get(stored, ()):
            slot.pop(alias, None)
        slot[stored] = value
    return slot


def append_hr_request(blob: dict, request: dict) -> None:
    for name in _HR_REQUEST_CONTAINERS:
        if isinstance(blob.get(name), list):
            blob[name].append(request)
            return
    blob[_HR_REQUEST_CONTAINERS[0]] = [request]
