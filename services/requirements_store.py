from __future__ import annotations

import json
import logging
from typing import Any, Optional

from sqlalchemy import select, update

from models import Employee
from services.requirement_catalog import CATEGORY_AGENCY, CATEGORY_DIRECT, EmployeeProfile
from services.requirement_entries import parse_blob
from utils import ApiError, iso_utc_now


logger = logging.getLogger("requirements")


def profile_from_row(emp: Employee) -> EmployeeProfile:
    return EmployeeProfile(
        employee_id=str(emp.employeeId or ""),
        category=CATEGORY_AGENCY if bool(emp.isAgency) else CATEGORY_DIRECT,
        position=str(emp.position or ""),
        depot=str(emp.depot or ""),
        marital_status=str(emp.maritalStatus or ""),
        educational_attainment=emp.educationalAttainment,
        name=employee_display_name(emp),
    )


def employee_display_name(emp: Employee) -> str:
    parts = [str(x or "").strip() for x in (emp.fname, emp.mname, emp.lname)]
    return " ".join(p for p in parts if p) or str(emp.email or "") or str(emp.employeeId or "")


def load_employee(db, employee_id: Any, *, for_update: bool = False) -> Employee:
    emp_id = str(employee_id or "").strip()
    if not emp_id:
        raise ApiError("BAD_REQUEST", "Missing employeeId", http_status=400)

    q = select(Employee).where(Employee.employeeId == emp_id)
    if for_update:
        q = q.with_for_update(of=Employee)
    emp = db.execute(q).scalar_one_or_none()
    if not emp:
        raise ApiError("NOT_FOUND", "Employee not found", http_status=404, details={"employeeId": emp_id})
    return emp


def load_blob(emp: Employee) -> dict:
    return parse_blob(emp.requirementsJson)


def check_expected_version(emp: Employee, expected: Optional[Any]) -> None:
    """Reject early when the caller edited a copy older than the stored row."""
    if expected is None or expected == "":
        return
    try:
        expected_i = int(expected)
    except (TypeError, ValueError):
        raise ApiError("BAD_REQUEST", "rowVersion must be an integer", http_status=400)
    if expected_i != int(emp.rowVersion or 0):
        raise ApiError(
            "STALE_WRITE",
            "Employee requirements changed since they were loaded; reload and retry",
            http_status=409,
            details={"employeeId": emp.employeeId, "expected": expected_i, "current": int(emp.rowVersion or 0)},
        )


def save_blob(db, emp: Employee, blob: dict, *, seen_version: int, actor: str) -> int:
    """
    Conditional write of the requirements blob.

    Succeeds only while the row still carries `seen_version`; returns the new
    version. Zero rows updated means another writer got there first.
    """
    now = iso_utc_now()
    res = db.execute(
        update(Employee)
        .where(Employee.employeeId == emp.employeeId)
        .where(Employee.rowVersion == int(seen_version))
        .values(
            requirementsJson=json.dumps(blob, separators=(",", ":"), ensure_ascii=False),
            rowVersion=Employee.rowVersion + 1,
            updatedAt=now,
            updatedBy=str(actor or ""),
        )
        .execution_options(synchronize_session=False)
    )
    if int(res.rowcount or 0) != 1:
        logger.warning("stale_write employee=%s seen_version=%s", emp.employeeId, seen_version)
        raise ApiError(
            "STALE_WRITE",
            "Employee requirements changed since they were loaded; reload and retry",
            http_status=409,
            details={"employeeId": emp.employeeId, "expected": int(seen_version)},
        )
    return int(seen_version) + 1
