from __future__ import annotations

import copy
from datetime import date

import pytest

from services.compliance import employee_status, progress
from services.requirement_catalog import CATEGORY_AGENCY, EmployeeProfile, applicable_requirements
from services.requirement_entries import build_entries, find_entry, hr_requests_from_blob, parse_blob
from services.requirement_status import RequirementStatus, is_expired, normalize_status, parse_calendar_date


AS_OF = date(2026, 3, 1)
REVIEWED_AT = "2026-01-05T00:00:00Z"

OFFICE_STAFF = EmployeeProfile(employee_id="EMP-1", position="Office Staff", depot="Batangas", marital_status="Single")
DRIVER = EmployeeProfile(employee_id="EMP-2", position="Delivery Driver", depot="Batangas")
AGENCY_HELPER = EmployeeProfile(employee_id="EMP-3", category=CATEGORY_AGENCY, position="Helper", depot="Lipa")


def _approved_doc(path: str, valid_until: str = "") -> dict:
    d = {
        "file_path": path,
        "status": "approved",
        "validated_at": REVIEWED_AT,
        "validated_by": "hr@example.com",
        "validated_file_path": path,
    }
    if valid_until:
        d["valid_until"] = valid_until
    return d


def _complete_blob() -> dict:
    return {
        "id_numbers": {
            k: {"value": f"{k}-0001", "file_path": f"ids/{k}.pdf", "status": "Validated"}
            for k in ("sss", "tin", "pagibig", "philhealth")
        },
        "medicalExams": {
            k: _approved_doc(f"medical/{k}.pdf", "2027-01-01") for k in ("xray", "stool", "urine", "hepa", "cbc", "drug_test")
        },
        "personalDocuments": {
            k: _approved_doc(f"personal/{k}.pdf")
            for k in ("photo_2x2", "psa_birth_certificate", "dependents_birth_certificate", "residence_sketch")
        },
        "clearances": {
            k: {**_approved_doc(f"clearances/{k}.pdf"), "date_validity": "2027-01-01"}
            for k in ("nbi_clearance", "police_clearance", "barangay_clearance")
        },
    }


def _keys(employee: EmployeeProfile) -> list[str]:
    return [d.key for d in applicable_requirements(employee)]


def test_agency_employee_only_needs_government_ids():
    assert _keys(AGENCY_HELPER) == ["sss", "tin", "pagibig", "philhealth"]


def test_direct_office_staff_catalog():
    keys = _keys(OFFICE_STAFF)
    assert "residence_sketch" in keys
    assert "drivers_license" in keys
    assert "marriage_contract" not in keys
    assert "diploma" not in keys

    by_key = {d.key: d for d in applicable_requirements(OFFICE_STAFF)}
    assert by_key["drivers_license"].required(OFFICE_STAFF) is False
    assert by_key["residence_sketch"].required(OFFICE_STAFF) is True


def test_delivery_crew_needs_license_not_sketch():
    by_key = {d.key: d for d in applicable_requirements(DRIVER)}
    assert by_key["drivers_license"].required(DRIVER) is True
    assert "residence_sketch" not in by_key


def test_marriage_and_education_documents():
    married_grad = EmployeeProfile(
        employee_id="EMP-9", position="Clerk", marital_status="Married", educational_attainment="College Graduate"
    )
    by_key = {d.key: d for d in applicable_requirements(married_grad)}
    assert by_key["marriage_contract"].required(married_grad) is False
    assert by_key["diploma"].required(married_grad) is True
    assert by_key["transcript_of_records"].required(married_grad) is True

    no_attainment = EmployeeProfile(employee_id="EMP-10", position="Clerk", educational_attainment="N/A")
    assert "diploma" not in _keys(no_attainment)


def test_status_synonyms_and_passthrough():
    assert normalize_status(None) == RequirementStatus.MISSING
    assert normalize_status("") == RequirementStatus.MISSING
    assert normalize_status("no file") == RequirementStatus.MISSING
    assert normalize_status("Validated") == RequirementStatus.APPROVED
    assert normalize_status("submitted") == RequirementStatus.PENDING
    assert normalize_status("Re-submit") == RequirementStatus.RESUBMIT
    assert normalize_status("On Hold") == "On Hold"


def test_expiry_is_strictly_before_as_of():
    assert is_expired("2026-02-28", AS_OF) is True
    assert is_expired("2026-03-01", AS_OF) is False
    assert is_expired("", AS_OF) is False
    assert is_expired("not a date", AS_OF) is False
    assert parse_calendar_date("2026-03-01T10:00:00Z") == date(2026, 3, 1)


def test_fully_approved_office_staff_is_complete():
    entries = build_entries(OFFICE_STAFF, _complete_blob(), AS_OF)

    assert employee_status(entries) == "Complete"
    license_entry = find_entry(entries, "drivers_license")
    assert license_entry.status == RequirementStatus.MISSING
    assert license_entry.required_for_completion is False

    prog = progress(entries)
    assert prog.approved == prog.total == 17
    assert prog.pending == 0 and prog.expired == 0
    for e in entries:
        if e.required_for_completion:
            assert e.status == RequirementStatus.APPROVED


def test_unreviewed_upload_makes_employee_pending():
    blob = _complete_blob()
    blob["medicalExams"]["xray"] = {"file_path": "medical/xray-new.pdf", "status": ""}

    entries = build_entries(OFFICE_STAFF, blob, AS_OF)
    xray = find_entry(entries, "xray")
    assert xray.status == RequirementStatus.PENDING
    assert xray.submitted is True
    assert xray.can_validate is True
    assert employee_status(entries) == "Pending"


def test_rejected_file_not_replaced_stays_resubmit():
    blob = _complete_blob()
    blob["clearances"]["nbi_clearance"] = {
        "file_path": "clearances/a.pdf",
        "status": "resubmit",
        "validated_at": REVIEWED_AT,
        "validated_file_path": "clearances/a.pdf",
    }

    entries = build_entries(OFFICE_STAFF, blob, AS_OF)
    nbi = find_entry(entries, "nbi_clearance")
    assert nbi.status == RequirementStatus.RESUBMIT
    assert nbi.new_upload is False
    assert nbi.can_validate is False
    assert employee_status(entries) == "Incomplete"


def test_replacement_upload_is_detected():
    blob = _complete_blob()
    blob["clearances"]["nbi_clearance"] = {
        "file_path": "clearances/a-v2.pdf",
        "status": "resubmit",
        "validated_at": REVIEWED_AT,
        "validated_file_path": "clearances/a.pdf",
    }

    nbi = find_entry(build_entries(OFFICE_STAFF, blob, AS_OF), "nbi_clearance")
    assert nbi.status == RequirementStatus.PENDING
    assert nbi.new_upload is True
    assert nbi.can_validate is True


def test_same_file_under_different_spelling_is_not_a_new_upload():
    blob = _complete_blob()
    blob["clearances"]["nbi_clearance"] = {
        "filePath": "https://x.supabase.co/storage/v1/object/public/application-files/clearances/a.pdf?t=1",
        "status": "resubmit",
        "validatedAt": REVIEWED_AT,
        "validatedFilePath": "application-files/clearances/a.pdf",
    }

    nbi = find_entry(build_entries(OFFICE_STAFF, blob, AS_OF), "nbi_clearance")
    assert nbi.new_upload is False
    assert nbi.status == RequirementStatus.RESUBMIT


def test_legacy_license_resubmission_uses_timestamps():
    blob = _complete_blob()
    blob["license"] = {
        "license_file_path": "license/front.pdf",
        "status": "resubmit",
        "validated_at": "2026-01-01T00:00:00Z",
        "submitted_at": "2026-01-03T00:00:00Z",
    }

    lic = find_entry(build_entries(DRIVER, blob, AS_OF), "drivers_license")
    assert lic.new_upload is True
    assert lic.status == RequirementStatus.PENDING


def test_expired_document_keeps_review_decision():
    blob = _complete_blob()
    blob["medicalExams"]["cbc"] = _approved_doc("medical/cbc.pdf", "2026-02-28")

    entries = build_entries(OFFICE_STAFF, blob, AS_OF)
    cbc = find_entry(entries, "cbc")
    assert cbc.status == RequirementStatus.EXPIRED
    assert cbc.validation_status == RequirementStatus.APPROVED
    assert progress(entries).expired == 1
    assert employee_status(entries) == "Incomplete"

    later = find_entry(build_entries(OFFICE_STAFF, blob, date(2026, 2, 1)), "cbc")
    assert later.status == RequirementStatus.APPROVED


def test_approved_without_file_is_missing():
    blob = _complete_blob()
    blob["personalDocuments"]["photo_2x2"] = {"status": "approved", "file_path": "local-file-path"}

    photo = find_entry(build_entries(OFFICE_STAFF, blob, AS_OF), "photo_2x2")
    assert photo.submitted is False
    assert photo.file_path is None
    assert photo.status == RequirementStatus.MISSING
    assert photo.can_validate is False


def test_id_number_without_file_counts_as_submitted():
    blob = {"idNumbers": {"sss": "34-1234567-8"}}

    sss = find_entry(build_entries(AGENCY_HELPER, blob, AS_OF), "sss")
    assert sss.value == "34-1234567-8"
    assert sss.submitted is True
    assert sss.status == RequirementStatus.PENDING
    assert sss.can_validate is False


def test_legacy_documents_fill_missing_file():
    blob = {
        "id_numbers": {"tin": {"value": "", "status": ""}},
        "documents": [{"key": "TIN", "file_path": "application-files/ids/tin.pdf", "uploaded_at": "2026-01-02T00:00:00Z"}],
    }

    tin = find_entry(build_entries(AGENCY_HELPER, blob, AS_OF), "tin")
    assert tin.file_path == "application-files/ids/tin.pdf"
    assert tin.submitted_at == "2026-01-02T00:00:00Z"
    assert tin.status == RequirementStatus.PENDING


def test_unknown_stored_status_on_filed_record_is_pending():
    blob = {"medicalExams": {"xray": {"file_path": "medical/xray.pdf", "status": "Rejected"}}}

    assert normalize_status("Rejected") == "Rejected"
    entries = build_entries(OFFICE_STAFF, blob, AS_OF)
    xray = find_entry(entries, "xray")
    assert xray.status == RequirementStatus.PENDING
    assert xray.to_dict()["status"] == "Pending"
    assert xray.can_validate is True
    assert progress(entries).pending == 1
    assert all(isinstance(e.status, RequirementStatus) for e in entries)


def test_unknown_stored_status_without_file_is_missing():
    blob = {"medicalExams": {"xray": {"status": "On Hold"}}}

    xray = find_entry(build_entries(OFFICE_STAFF, blob, AS_OF), "xray")
    assert xray.status == RequirementStatus.MISSING
    assert xray.submitted is False


def test_hr_request_becomes_required_entry():
    blob = _complete_blob()
    blob["hr_requests"] = [
        {"id": "HRQ-2026-00001", "document_type": "Certificate of Employment", "status": "pending", "deadline": "2026-03-05"},
        {"id": "HRQ-2026-00001", "document_type": "Duplicate id is ignored"},
        {"documentType": "No id on record"},
    ]

    requests = hr_requests_from_blob(blob)
    assert [r.id for r in requests] == ["HRQ-2026-00001", "idx-2"]

    entries = build_entries(OFFICE_STAFF, blob, AS_OF)
    coe = find_entry(entries, "hr_request:HRQ-2026-00001")
    assert coe.required_for_completion is True
    assert coe.status == RequirementStatus.PENDING
    assert coe.submitted is False
    assert coe.to_dict()["request"]["deadline"] == "2026-03-05"
    # Outstanding request with nothing uploaded keeps the employee off Complete and Pending.
    assert employee_status(entries) == "Incomplete"


def test_hr_requests_apply_to_agency_employees_too():
    blob = {"hrRequests": [{"id": "R1", "document": "Barangay Certificate", "file_path": "hr/r1.pdf"}]}

    keys = [e.key for e in build_entries(AGENCY_HELPER, blob, AS_OF)]
    assert keys[-1] == "hr_request:R1"


def test_blob_parsing_is_lenient():
    assert parse_blob(None) == {}
    assert parse_blob("not json") == {}
    assert parse_blob("[1, 2]") == {}
    assert parse_blob('{"clearances": {}}') == {"clearances": {}}
    assert parse_blob(b'{"a": 1}') == {"a": 1}


@pytest.mark.parametrize("employee", [OFFICE_STAFF, DRIVER, AGENCY_HELPER])
def test_entry_keys_are_unique(employee):
    keys = [e.key for e in build_entries(employee, _complete_blob(), AS_OF)]
    assert len(keys) == len(set(keys))


def test_partial_dates_are_not_filled_from_the_clock():
    assert parse_calendar_date("15") is None
    assert parse_calendar_date("March 2026") is None
    assert parse_calendar_date("March 5, 2026") == date(2026, 3, 5)
    assert is_expired("15", date(2099, 1, 1)) is False
    assert is_expired("February 5, 2026", AS_OF) is True


def test_legacy_rejected_personal_document_reopens_after_later_upload():
    blob = _complete_blob()
    blob["personalDocuments"]["photo_2x2"] = {
        "file_path": "p/new.png",
        "status": "resubmit",
        "validated_at": "2026-01-01T00:00:00Z",
        "submitted_at": "2026-02-01T00:00:00Z",
    }

    photo = find_entry(build_entries(OFFICE_STAFF, blob, AS_OF), "photo_2x2")
    assert photo.status == RequirementStatus.RESUBMIT
    assert photo.can_validate is True


def test_legacy_rejected_document_without_later_upload_stays_closed():
    blob = _complete_blob()
    blob["personalDocuments"]["photo_2x2"] = {
        "file_path": "p/old.png",
        "status": "resubmit",
        "validated_at": "2026-01-05T00:00:00Z",
        "submitted_at": "2026-01-02T00:00:00Z",
    }

    photo = find_entry(build_entries(OFFICE_STAFF, blob, AS_OF), "photo_2x2")
    assert photo.can_validate is False


def _set(path: tuple, value):
    def mutate(blob: dict) -> None:
        node = blob
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    return mutate


def _drop(group: str, key: str):
    def mutate(blob: dict) -> None:
        blob[group].pop(key, None)

    return mutate


@pytest.mark.parametrize(
    "mutate",
    [
        lambda blob: None,
        _set(("medicalExams", "xray"), {"file_path": "medical/xray-new.pdf"}),
        _set(("medicalExams", "cbc"), _approved_doc("medical/cbc.pdf", "2026-01-31")),
        _set(("clearances", "nbi_clearance"), {"file_path": "c/n.pdf", "status": "resubmit", "validated_file_path": "c/n.pdf", "validated_at": REVIEWED_AT}),
        _set(("personalDocuments", "photo_2x2"), {"file_path": "p/x.png", "status": "Rejected"}),
        _set(("license",), {"license_file_path": "l/x.pdf", "status": "approved", "validated_at": REVIEWED_AT, "validated_file_path": "l/x.pdf"}),
        _set(("license",), {"license_file_path": "l/x.pdf", "status": "resubmit", "validated_at": REVIEWED_AT, "validated_file_path": "l/x.pdf"}),
        _set(("id_numbers", "tin"), {"value": "123"}),
        _set(("hr_requests",), [{"id": "R1", "document_type": "Certificate of Employment", "status": "pending"}]),
        _set(("hr_requests",), [{"id": "R1", "document_type": "Certificate of Employment", "file_path": "hr/r1.pdf", "status": "approved"}]),
        _drop("personalDocuments", "residence_sketch"),
    ],
)
@pytest.mark.parametrize("employee", [OFFICE_STAFF, DRIVER])
def test_complete_means_every_required_entry_approved(mutate, employee):
    blob = copy.deepcopy(_complete_blob())
    mutate(blob)

    entries = build_entries(employee, blob, AS_OF)
    required = [e for e in entries if e.required_for_completion]
    all_approved = bool(required) and all(e.status == RequirementStatus.APPROVED for e in required)
    assert (employee_status(entries) == "Complete") == all_approved
    for e in entries:
        assert isinstance(e.status, RequirementStatus)
