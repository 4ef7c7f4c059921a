from __future__ import annotations

import json
from datetime import date

import pytest

from services.hr_requests import (
    add_request,
    canonicalize,
    find_duplicate_label,
    record_submission,
    required_document_labels,
    validate_requirement,
)
from services.requirement_catalog import CATEGORY_AGENCY, EmployeeProfile
from services.requirement_entries import build_entries, find_entry
from services.requirement_status import RequirementStatus
from utils import ApiError


AS_OF = date(2026, 3, 1)
NOW = "2026-03-01T02:00:00.000Z"

CLERK = EmployeeProfile(employee_id="EMP-1", position="Office Clerk", depot="Batangas")
AGENCY = EmployeeProfile(employee_id="EMP-2", category=CATEGORY_AGENCY, position="Helper", depot="Lipa")


def _add(blob, label, deadline="2026-03-05", request_id="HRQ-2026-00001", **kw):
    return add_request(
        CLERK,
        blob,
        label,
        deadline,
        request_id=request_id,
        as_of=AS_OF,
        requested_at=NOW,
        requested_by="hr@example.com",
        **kw,
    )


def _validate(employee, blob, key, decision, **kw):
    return validate_requirement(
        employee, blob, key, decision, validated_by="hr@example.com", validated_at=NOW, as_of=AS_OF, **kw
    )


@pytest.mark.parametrize("label", ["SSS", "  sss ", "S.S.S.", "Certificate - of Employment", "x"])
def test_canonicalize_is_idempotent(label):
    once = canonicalize(label)
    assert canonicalize(once) == once


def test_duplicate_label_matches_short_name():
    labels = required_document_labels(CLERK, {})
    assert find_duplicate_label("sss id", labels) == "SSS"
    assert find_duplicate_label("NBI clearance", labels) == "NBI Clearance"
    assert find_duplicate_label("Certificate of Employment", labels) is None
    # Containment needs at least three characters on the shorter side.
    assert find_duplicate_label("ab", ["abc document"]) is None
    # Known false positive: three-letter names match inside longer words.
    assert find_duplicate_label("Meeting Attendance Certificate", labels) == "TIN"


def test_add_request_appends_without_touching_input():
    blob = {"clearances": {}}
    res = _add(blob, "Certificate of Employment", description="Latest employer", priority="High")

    assert blob == {"clearances": {}}
    assert res.deadline_soon is True
    assert res.request.id == "HRQ-2026-00001"
    assert res.request.priority == "high"

    raw = res.blob["hr_requests"][0]
    assert raw["document_type"] == "Certificate of Employment"
    assert raw["status"] == "pending"
    assert raw["deadline"] == "2026-03-05"

    entry = find_entry(build_entries(CLERK, res.blob, AS_OF), "hr_request:HRQ-2026-00001")
    assert entry.required_for_completion is True
    assert entry.status == RequirementStatus.PENDING


def test_deadline_far_away_is_not_soon():
    res = _add({}, "Certificate of Employment", deadline="2026-04-30")
    assert res.deadline_soon is False


def test_add_request_rejects_duplicates_of_catalog_and_earlier_requests():
    with pytest.raises(ApiError) as e:
        _add({}, "sss id")
    assert e.value.code == "DUPLICATE_REQUIREMENT"
    assert e.value.http_status == 409
    assert e.value.details == {"conflictsWith": "SSS"}

    first = _add({}, "Certificate of Employment")
    with pytest.raises(ApiError) as e:
        _add(first.blob, "certificate of employment", request_id="HRQ-2026-00002")
    assert e.value.details["conflictsWith"] == "Certificate of Employment"


def test_add_request_field_errors():
    with pytest.raises(ApiError) as e:
        _add({}, "  ", deadline="")
    assert e.value.code == "MISSING_FIELD"
    assert e.value.details == {"field": "label"}

    with pytest.raises(ApiError) as e:
        _add({}, "Certificate of Employment", deadline=" ")
    assert e.value.code == "MISSING_FIELD"
    assert e.value.details == {"field": "deadline"}

    with pytest.raises(ApiError) as e:
        _add({}, "Certificate of Employment", deadline="someday")
    assert e.value.code == "BAD_REQUEST"

    with pytest.raises(ApiError) as e:
        _add({}, "Certificate of Employment", priority="whenever")
    assert e.value.code == "BAD_REQUEST"


def test_validate_writes_group_vocabulary():
    blob = {
        "id_numbers": {"sss": {"value": "34-1", "file_path": "ids/sss.pdf"}},
        "medicalExams": {"xray": {"file_path": "medical/xray.pdf"}},
    }

    res = _validate(CLERK, blob, "sss", "approved")
    assert res.blob["id_numbers"]["sss"]["status"] == "Validated"
    assert res.entry.status == RequirementStatus.APPROVED
    assert "status" not in blob["id_numbers"]["sss"]

    res = _validate(CLERK, res.blob, "xray", "Re-submit", remarks="Blurry")
    xray = res.blob["medicalExams"]["xray"]
    assert xray["status"] == "resubmit"
    assert xray["validated_file_path"] == "medical/xray.pdf"
    assert xray["remarks"] == "Blurry"
    assert res.entry.status == RequirementStatus.RESUBMIT
    assert res.entry.can_validate is False


def test_validate_refuses_when_nothing_awaits_review():
    blob = {
        "clearances": {
            "nbi_clearance": {
                "file_path": "clearances/a.pdf",
                "status": "resubmit",
                "validated_at": "2026-01-05T00:00:00Z",
                "validated_file_path": "clearances/a.pdf",
            }
        }
    }
    with pytest.raises(ApiError) as e:
        _validate(CLERK, blob, "nbi_clearance", "Validated")
    assert e.value.code == "BAD_REQUEST"

    with pytest.raises(ApiError) as e:
        _validate(CLERK, {}, "police_clearance", "Validated")
    assert e.value.code == "BAD_REQUEST"


def test_validate_unknown_or_inapplicable_key():
    with pytest.raises(ApiError) as e:
        _validate(CLERK, {}, "no_such_doc", "Validated")
    assert e.value.code == "NOT_FOUND"

    # Agency employees have no medical exams.
    with pytest.raises(ApiError) as e:
        _validate(AGENCY, {"medicalExams": {"xray": {"file_path": "m/x.pdf"}}}, "xray", "Validated")
    assert e.value.code == "NOT_FOUND"

    with pytest.raises(ApiError) as e:
        _validate(CLERK, {}, "xray", "maybe")
    assert e.value.code == "BAD_REQUEST"


def test_resubmission_cycle():
    blob = {"clearances": {"nbi_clearance": {"file_path": "clearances/a.pdf"}}}
    rejected = _validate(CLERK, blob, "nbi_clearance", "resubmit").blob

    res = record_submission(
        CLERK, rejected, "nbi_clearance", "clearances/a-v2.pdf", submitted_at=NOW, as_of=AS_OF, valid_until="2027-02-01"
    )
    assert res.entry.status == RequirementStatus.PENDING
    assert res.entry.new_upload is True
    assert res.entry.can_validate is True
    assert res.blob["clearances"]["nbi_clearance"]["date_validity"] == "2027-02-01"

    approved = _validate(CLERK, res.blob, "nbi_clearance", "validated")
    assert approved.entry.status == RequirementStatus.APPROVED
    assert approved.entry.validated_file_path == "clearances/a-v2.pdf"


def test_submit_to_hr_request_then_validate():
    blob = _add({}, "Certificate of Employment").blob
    key = "hr_request:HRQ-2026-00001"

    res = record_submission(CLERK, json.dumps(blob), key, "hr/coe.pdf", submitted_at=NOW, as_of=AS_OF)
    assert res.entry.submitted is True
    assert res.blob["hr_requests"][0]["file_path"] == "hr/coe.pdf"

    res = _validate(CLERK, res.blob, key, "Validated")
    assert res.blob["hr_requests"][0]["status"] == "approved"


def test_submission_field_errors():
    with pytest.raises(ApiError) as e:
        record_submission(CLERK, {}, "xray", "", submitted_at=NOW, as_of=AS_OF)
    assert e.value.code == "MISSING_FIELD"

    with pytest.raises(ApiError) as e:
        record_submission(CLERK, {}, "xray", "local-file-path", submitted_at=NOW, as_of=AS_OF)
    assert e.value.code == "BAD_REQUEST"

    with pytest.raises(ApiError) as e:
        record_submission(CLERK, {}, "photo_2x2", "p/photo.png", submitted_at=NOW, as_of=AS_OF, valid_until="2027-01-01")
    assert e.value.code == "BAD_REQUEST"

    res = record_submission(AGENCY, {}, "tin", None, value="123-456", submitted_at=NOW, as_of=AS_OF)
    assert res.entry.submitted is True
    assert res.entry.value == "123-456"


def test_legacy_rejected_personal_document_can_be_reviewed_after_reupload():
    blob = {
        "personalDocuments": {
            "photo_2x2": {
                "file_path": "p/old.png",
                "status": "resubmit",
                "validated_at": "2026-01-05T00:00:00Z",
                "submitted_at": "2026-01-02T00:00:00Z",
            }
        }
    }
    with pytest.raises(ApiError):
        _validate(CLERK, blob, "photo_2x2", "Validated")

    res = record_submission(CLERK, blob, "photo_2x2", "p/newer.png", submitted_at=NOW, as_of=AS_OF)
    assert res.entry.can_validate is True

    approved = _validate(CLERK, res.blob, "photo_2x2", "Validated")
    assert approved.entry.status == RequirementStatus.APPROVED
    assert approved.entry.validated_file_path == "p/newer.png"
    assert approved.entry.can_validate is False
