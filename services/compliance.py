from __future__ import annotations

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Iterable, Mapping

from services.requirement_status import RequirementStatus


STATUS_COMPLETE = "Complete"
STATUS_PENDING = "Pending"
STATUS_INCOMPLETE = "Incomplete"

PLACEHOLDER_DEPOTS = {"", "—", "-", "n/a"}

_OPEN = (RequirementStatus.PENDING, RequirementStatus.RESUBMIT)


@dataclass(frozen=True)
class Progress:
    approved: int = 0
    pending: int = 0
    expired: int = 0
    submitted: int = 0
    total: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "approved": self.approved,
            "pending": self.pending,
            "expired": self.expired,
            "submitted": self.submitted,
            "total": self.total,
        }


def included_entries(entries: Iterable) -> list:
    """Required entries, plus optional ones once something was submitted for them."""
    return [e for e in entries if e.required_for_completion or e.submitted]


def employee_status(entries: Iterable) -> str:
    included = included_entries(entries)
    required = [e for e in included if e.required_for_completion]

    if required and all(e.status == RequirementStatus.APPROVED for e in required):
        return STATUS_COMPLETE
    # An HR request nobody has filed yet sits at "pending" without making the employee Pending.
    if any(e.status == RequirementStatus.PENDING and e.submitted for e in included):
        return STATUS_PENDING
    return STATUS_INCOMPLETE


def progress(entries: Iterable) -> Progress:
    included = included_entries(entries)
    approved = sum(1 for e in included if e.status == RequirementStatus.APPROVED)
    expired = sum(1 for e in included if e.status == RequirementStatus.EXPIRED and e.submitted)
    pending = sum(1 for e in included if e.status in _OPEN and e.submitted)
    return Progress(
        approved=approved,
        pending=pending,
        expired=expired,
        submitted=approved + pending + expired,
        total=len(included),
    )


def is_placeholder_depot(depot: Any) -> bool:
    return str(depot or "").strip().lower() in PLACEHOLDER_DEPOTS


def compliance_percent(approved: int, total: int) -> int:
    if total <= 0:
        return 0
    pct = (Decimal(100) * Decimal(approved) / Decimal(total)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return max(0, min(100, int(pct)))


def compliance_by_depot(rows: Iterable[Mapping[str, Any]]) -> list[dict[str, Any]]:
    """
    Group per-employee progress rows by depot.

    Each row needs `depot` and `progress` (a `Progress` or a dict with
    `approved` and `total`). Rows with a placeholder depot are skipped.
    """
    groups: dict[str, dict[str, int]] = {}
    for row in rows:
        depot = str(row.get("depot") or "").strip()
        if is_placeholder_depot(depot):
            continue
        prog = row.get("progress")
        if isinstance(prog, Progress):
            approved, total = prog.approved, prog.total
        else:
            approved, total = int((prog or {}).get("approved") or 0), int((prog or {}).get("total") or 0)

        g = groups.setdefault(depot, {"employeeCount": 0, "approvedSum": 0, "totalSum": 0})
        g["employeeCount"] += 1
        g["approvedSum"] += approved
        g["totalSum"] += total

    return [
        {
            "depot": depot,
            "employeeCount": g["employeeCount"],
            "approvedSum": g["approvedSum"],
            "totalSum": g["totalSum"],
            "compliancePercent": compliance_percent(g["approvedSum"], g["totalSum"]),
        }
        for depot, g in sorted(groups.items(), key=lambda kv: kv[0])
    ]
