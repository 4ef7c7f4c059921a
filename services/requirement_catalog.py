from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence


GROUP_IDS = "ids"
GROUP_LICENSE = "license"
GROUP_MEDICAL = "medical"
GROUP_PERSONAL = "personal"
GROUP_CLEARANCE = "clearance"
GROUP_EDUCATION = "education"
GROUP_HR_REQUEST = "hr_request"

# Groups where a re-upload after review must be detected from the file reference.
RESUBMISSION_GROUPS = frozenset({GROUP_LICENSE, GROUP_MEDICAL, GROUP_CLEARANCE, GROUP_HR_REQUEST})

# Groups whose documents carry a validity date.
EXPIRING_GROUPS = frozenset({GROUP_LICENSE, GROUP_MEDICAL, GROUP_CLEARANCE})

HR_REQUEST_KEY_PREFIX = "hr_request:"

CATEGORY_AGENCY = "agency"
CATEGORY_DIRECT = "direct"

_DELIVERY_ROLE_RE = re.compile(r"delivery|driver|helper|rider|messenger", re.IGNORECASE)

_NO_ATTAINMENT = {"", "n/a"}


@dataclass(frozen=True)
class EmployeeProfile:
    employee_id: str
    category: str = CATEGORY_DIRECT
    position: str = ""
    depot: str = ""
    marital_status: str = ""
    educational_attainment: Optional[str] = None
    name: str = ""

    @property
    def is_agency(self) -> bool:
        return self.category == CATEGORY_AGENCY

    @property
    def is_delivery_crew(self) -> bool:
        return bool(_DELIVERY_ROLE_RE.search(self.position or ""))

    @property
    def is_married(self) -> bool:
        return str(self.marital_status or "").strip().lower() == "married"

    @property
    def has_education(self) -> bool:
        return str(self.educational_attainment or "").strip().lower() not in _NO_ATTAINMENT


def _always(_emp: EmployeeProfile) -> bool:
    return True


def _never(_emp: EmployeeProfile) -> bool:
    return False


def _direct(emp: EmployeeProfile) -> bool:
    return not emp.is_agency


@dataclass(frozen=True)
class RequirementDefinition:
    key: str
    display_name: str
    group: str
    short_name: str = ""
    applicable: Callable[[EmployeeProfile], bool] = field(default=_always, compare=False, repr=False)
    required: Callable[[EmployeeProfile], bool] = field(default=_always, compare=False, repr=False)

    @property
    def tracks_resubmission(self) -> bool:
        return self.group in RESUBMISSION_GROUPS

    @property
    def expires(self) -> bool:
        return self.group in EXPIRING_GROUPS

    @property
    def labels(self) -> list[str]:
        return [x for x in (self.display_name, self.short_name, self.key) if x]


def _defs(group: str, rows: Sequence[tuple], applicable=_direct, required=_always) -> list[RequirementDefinition]:
    out = []
    for row in rows:
        key, display_name = row[0], row[1]
        short_name = row[2] if len(row) > 2 else ""
        out.append(
            RequirementDefinition(
                key=key,
                display_name=display_name,
                group=group,
                short_name=short_name,
                applicable=applicable,
                required=required,
            )
        )
    return out


GOVERNMENT_IDS = _defs(
    GROUP_IDS,
    [
        ("sss", "SSS (Social Security System)", "SSS"),
        ("tin", "TIN (Tax Identification Number)", "TIN"),
        ("pagibig", "PAG-IBIG (HDMF)", "PAG-IBIG"),
        ("philhealth", "PhilHealth"),
    ],
    applicable=_always,
)

DRIVERS_LICENSE = RequirementDefinition(
    key="drivers_license",
    display_name="Driver's License",
    group=GROUP_LICENSE,
    short_name="License",
    applicable=_direct,
    required=lambda emp: emp.is_delivery_crew,
)

MEDICAL_EXAMS = _defs(
    GROUP_MEDICAL,
    [
        ("xray", "X-ray"),
        ("stool", "Stool"),
        ("urine", "Urine"),
        ("hepa", "HEPA"),
        ("cbc", "CBC"),
        ("drug_test", "Drug Test"),
    ],
)

PERSONAL_DOCUMENTS = [
    *_defs(
        GROUP_PERSONAL,
        [
            ("photo_2x2", "2x2 Picture w/ White Background", "2x2 Picture"),
            ("psa_birth_certificate", "PSA Birth Certificate"),
        ],
    ),
    RequirementDefinition(
        key="marriage_contract",
        display_name="Marriage Contract",
        group=GROUP_PERSONAL,
        applicable=lambda emp: _direct(emp) and emp.is_married,
        required=_never,
    ),
    *_defs(GROUP_PERSONAL, [("dependents_birth_certificate", "PSA Birth Certificate of Dependents")]),
    RequirementDefinition(
        key="residence_sketch",
        display_name="Direction of Residence (House to Depot Sketch)",
        group=GROUP_PERSONAL,
        short_name="Residence Sketch",
        applicable=lambda emp: _direct(emp) and not emp.is_delivery_crew,
    ),
]

CLEARANCES = _defs(
    GROUP_CLEARANCE,
    [
        ("nbi_clearance", "NBI Clearance"),
        ("police_clearance", "Police Clearance"),
        ("barangay_clearance", "Barangay Clearance"),
    ],
)

EDUCATIONAL_DOCUMENTS = _defs(
    GROUP_EDUCATION,
    [
        ("diploma", "Diploma"),
        ("transcript_of_records", "Transcript of Records", "TOR"),
    ],
    applicable=lambda emp: _direct(emp) and emp.has_education,
)

CATALOG: list[RequirementDefinition] = [
    *GOVERNMENT_IDS,
    DRIVERS_LICENSE,
    *MEDICAL_EXAMS,
    *PERSONAL_DOCUMENTS,
    *CLEARANCES,
    *EDUCATIONAL_DOCUMENTS,
]

CATALOG_BY_KEY = {d.key: d for d in CATALOG}


def hr_request_key(request_id: Any) -> str:
    return f"{HR_REQUEST_KEY_PREFIX}{str(request_id or '').strip()}"


def hr_request_definition(request_id: Any, label: Any) -> RequirementDefinition:
    return RequirementDefinition(
        key=hr_request_key(request_id),
        display_name=str(label or "").strip() or "HR Request",
        group=GROUP_HR_REQUEST,
    )


def applicable_requirements(
    employee: EmployeeProfile,
    hr_requests: Sequence[tuple[str, str]] = (),
) -> list[RequirementDefinition]:
    """
    Requirement definitions that apply to `employee`, in display order.

    `hr_requests` is a sequence of `(request_id, label)` pairs; every request on
    record becomes a required entry whatever the employee's category.
    """
    out = [d for d in CATALOG if d.applicable(employee)]
    out.extend(hr_request_definition(rid, label) for rid, label in hr_requests)

    seen: set[str] = set()
    for d in out:
        if d.key in seen:
            raise ValueError(f"duplicate requirement key: {d.key}")
        seen.add(d.key)
    return out
