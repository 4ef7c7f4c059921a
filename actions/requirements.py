from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo

from sqlalchemy import false, or_, select

from actions.helpers import append_audit, next_prefixed_id
from models import Employee
from services.compliance import compliance_by_depot, employee_status, progress
from services.hr_requests import add_request, record_submission, validate_requirement
from services.requirement_entries import build_entries, hr_requests_from_blob
from services.requirement_status import parse_calendar_date, status_text
from services.requirements_store import (
    check_expected_version,
    employee_display_name,
    load_blob,
    load_employee,
    profile_from_row,
    save_blob,
)
from utils import ApiError, AuthContext, iso_utc_now, normalize_role


EXPORT_COLUMNS = [
    "employeeId",
    "name",
    "position",
    "depot",
    "category",
    "status",
    "approved",
    "pending",
    "expired",
    "submitted",
    "total",
]


def _as_of(data: dict, cfg) -> date:
    raw = (data or {}).get("asOf")
    if raw not in (None, ""):
        d = parse_calendar_date(raw)
        if d is None:
            raise ApiError("BAD_REQUEST", f"Invalid asOf: {raw}", http_status=400)
        return d
    return datetime.now(ZoneInfo(cfg.APP_TIMEZONE)).date()


def _actor(auth: Optional[AuthContext]) -> str:
    if not auth:
        return ""
    return str(auth.email or auth.userId or "")


def _scope_query(q, auth: Optional[AuthContext]):
    role = normalize_role(auth.role if auth else "")
    if role == "HRC":
        if not auth.depot:
            raise ApiError("FORBIDDEN", "HRC user has no depot assigned", http_status=403)
        return q.where(Employee.depot == auth.depot)
    if role == "AGENCY":
        return q.where(Employee.isAgency == True)  # noqa: E712
    if role == "EMPLOYEE":
        if not auth.employeeId:
            return q.where(false())
        return q.where(Employee.employeeId == auth.employeeId)
    return q


def _assert_visible(auth: Optional[AuthContext], emp: Employee) -> None:
    role = normalize_role(auth.role if auth else "")
    visible = True
    if role == "HRC":
        visible = bool(auth.depot) and str(emp.depot or "") == auth.depot
    elif role == "AGENCY":
        visible = bool(emp.isAgency)
    elif role == "EMPLOYEE":
        visible = bool(auth.employeeId) and emp.employeeId == auth.employeeId
    if not visible:
        raise ApiError("FORBIDDEN", "Employee is outside your scope", http_status=403)


def _employee_id_for(data: dict, auth: Optional[AuthContext]) -> str:
    emp_id = str((data or {}).get("employeeId") or "").strip()
    if not emp_id and auth and normalize_role(auth.role) == "EMPLOYEE":
        emp_id = auth.employeeId
    if not emp_id:
        raise ApiError("BAD_REQUEST", "Missing employeeId", http_status=400)
    return emp_id


def _summary(emp: Employee, entries: list) -> dict[str, Any]:
    prog = progress(entries)
    return {
        "employeeId": emp.employeeId,
        "name": employee_display_name(emp),
        "email": emp.email or "",
        "position": emp.position or "",
        "depot": emp.depot or "",
        "category": "agency" if emp.isAgency else "direct",
        "status": employee_status(entries),
        "progress": prog.to_dict(),
        "rowVersion": int(emp.rowVersion or 0),
    }


def _evaluate(emp: Employee, cfg, as_of: date) -> list:
    return build_entries(profile_from_row(emp), load_blob(emp), as_of, cfg.STORAGE_BUCKETS)


def _visible_employees(db, auth: Optional[AuthContext], data: dict) -> list[Employee]:
    q = _scope_query(select(Employee), auth)

    depot = str((data or {}).get("depot") or "").strip()
    if depot:
        q = q.where(Employee.depot == depot)
    category = str((data or {}).get("category") or "").strip().lower()
    if category in {"agency", "direct"}:
        q = q.where(Employee.isAgency == (category == "agency"))
    search = str((data or {}).get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.where(
            or_(
                Employee.employeeId.ilike(like),
                Employee.fname.ilike(like),
                Employee.lname.ilike(like),
                Employee.email.ilike(like),
                Employee.position.ilike(like),
            )
        )

    q = q.order_by(Employee.lname, Employee.fname, Employee.employeeId)
    return list(db.execute(q).scalars().all())


def _summaries(db, auth, data, cfg, as_of: date) -> list[dict[str, Any]]:
    wanted = str((data or {}).get("status") or "").strip().lower()
    out = []
    for emp in _visible_employees(db, auth, data):
        row = _summary(emp, _evaluate(emp, cfg, as_of))
        if wanted and row["status"].lower() != wanted:
            continue
        out.append(row)
    return out


def employee_requirements_get(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    emp = load_employee(db, _employee_id_for(data, auth))
    _assert_visible(auth, emp)

    entries = _evaluate(emp, cfg, as_of)
    return {
        "employee": _summary(emp, entries),
        "entries": [e.to_dict() for e in entries],
        "asOf": as_of.isoformat(),
    }


def requirements_list(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    items = _summaries(db, auth, data, cfg, as_of)
    return {"items": items, "total": len(items), "asOf": as_of.isoformat()}


def depot_compliance(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    rows = _summaries(db, auth, data, cfg, as_of)
    return {"items": compliance_by_depot(rows), "asOf": as_of.isoformat()}


def requirements_export(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    rows = []
    for s in _summaries(db, auth, data, cfg, as_of):
        rows.append(
            {
                "employeeId": s["employeeId"],
                "name": s["name"],
                "position": s["position"],
                "depot": s["depot"],
                "category": s["category"],
                "status": s["status"],
                **s["progress"],
            }
        )
    return {"columns": EXPORT_COLUMNS, "rows": rows, "asOf": as_of.isoformat()}


def _load_for_write(db, data, auth):
    emp = load_employee(db, _employee_id_for(data, auth), for_update=True)
    _assert_visible(auth, emp)
    check_expected_version(emp, (data or {}).get("rowVersion"))
    return emp


def requirement_validate(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    emp = _load_for_write(db, data, auth)
    seen_version = int(emp.rowVersion or 0)
    key = str((data or {}).get("key") or "").strip()
    if not key:
        raise ApiError("MISSING_FIELD", "Requirement key is required", http_status=400, details={"field": "key"})

    profile = profile_from_row(emp)
    now = iso_utc_now()
    result = validate_requirement(
        profile,
        load_blob(emp),
        key,
        (data or {}).get("decision") or (data or {}).get("status"),
        remarks=str((data or {}).get("remarks") or ""),
        validated_by=_actor(auth),
        validated_at=now,
        as_of=as_of,
        buckets=cfg.STORAGE_BUCKETS,
    )
    new_version = save_blob(db, emp, result.blob, seen_version=seen_version, actor=_actor(auth))

    append_audit(
        db,
        entityType="EMPLOYEE_REQUIREMENT",
        entityId=f"{emp.employeeId}:{result.entry.key}",
        action="REQUIREMENT_VALIDATE",
        toState=status_text(result.entry.validation_status),
        stageTag="REQUIREMENT_VALIDATE",
        remark=str((data or {}).get("remarks") or ""),
        actor=auth,
        at=now,
        meta={"employeeId": emp.employeeId, "key": result.entry.key, "filePath": result.entry.file_path},
    )

    entries = build_entries(profile, result.blob, as_of, cfg.STORAGE_BUCKETS)
    return {
        "employeeId": emp.employeeId,
        "rowVersion": new_version,
        "entry": result.entry.to_dict(),
        "status": employee_status(entries),
        "progress": progress(entries).to_dict(),
    }


def requirement_submit(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    emp = _load_for_write(db, data, auth)
    seen_version = int(emp.rowVersion or 0)
    key = str((data or {}).get("key") or "").strip()
    if not key:
        raise ApiError("MISSING_FIELD", "Requirement key is required", http_status=400, details={"field": "key"})

    profile = profile_from_row(emp)
    now = iso_utc_now()
    result = record_submission(
        profile,
        load_blob(emp),
        key,
        (data or {}).get("filePath") or (data or {}).get("file_path"),
        submitted_at=now,
        as_of=as_of,
        value=(data or {}).get("value"),
        valid_until=(data or {}).get("validUntil"),
        buckets=cfg.STORAGE_BUCKETS,
    )
    new_version = save_blob(db, emp, result.blob, seen_version=seen_version, actor=_actor(auth))

    append_audit(
        db,
        entityType="EMPLOYEE_REQUIREMENT",
        entityId=f"{emp.employeeId}:{result.entry.key}",
        action="REQUIREMENT_SUBMIT",
        toState=status_text(result.entry.status),
        stageTag="REQUIREMENT_SUBMIT",
        actor=auth,
        at=now,
        meta={"employeeId": emp.employeeId, "key": result.entry.key, "filePath": result.entry.file_path},
    )

    entries = build_entries(profile, result.blob, as_of, cfg.STORAGE_BUCKETS)
    return {
        "employeeId": emp.employeeId,
        "rowVersion": new_version,
        "entry": result.entry.to_dict(),
        "status": employee_status(entries),
        "progress": progress(entries).to_dict(),
    }


def _new_request_id(db, blob: dict) -> str:
    year = datetime.now(timezone.utc).strftime("%Y")
    prefix = f"HRQ-{year}-"
    existing = [r.id for r in hr_requests_from_blob(blob)]
    return next_prefixed_id(db, counter_key=f"HRQ_{year}", prefix=prefix, pad=5, existing_ids=existing)


def hr_request_add(data, auth: AuthContext | None, db, cfg):
    as_of = _as_of(data, cfg)
    emp = _load_for_write(db, data, auth)
    seen_version = int(emp.rowVersion or 0)
    blob = load_blob(emp)
    profile = profile_from_row(emp)

    label = (data or {}).get("label") or (data or {}).get("documentType") or (data or {}).get("document")
    now = iso_utc_now()
    result = add_request(
        profile,
        blob,
        label,
        (data or {}).get("deadline"),
        request_id=_new_request_id(db, blob),
        as_of=as_of,
        requested_at=now,
        requested_by=_actor(auth),
        description=str((data or {}).get("description") or ""),
        priority=str((data or {}).get("priority") or "normal"),
        soon_days=cfg.HR_REQUEST_SOON_DAYS,
    )
    new_version = save_blob(db, emp, result.blob, seen_version=seen_version, actor=_actor(auth))

    append_audit(
        db,
        entityType="EMPLOYEE_REQUIREMENT",
        entityId=f"{emp.employeeId}:{result.request.id}",
        action="HR_REQUEST_ADD",
        toState="pending",
        stageTag="HR_REQUEST_ADD",
        actor=auth,
        at=now,
        meta={"employeeId": emp.employeeId, **result.request.to_dict()},
    )

    return {
        "employeeId": emp.employeeId,
        "rowVersion": new_version,
        "request": result.request.to_dict(),
        "deadlineSoon": result.deadline_soon,
    }
