from __future__ import annotations

import csv
import io

from flask import Blueprint, Response, request

from actions.requirements import EXPORT_COLUMNS
from app import _request_token, run_action

requirements_bp = Blueprint("requirements", __name__)


def _rest_handle(action: str, data: dict):
    return run_action(action, data, _request_token(_json_body()), stage_tag="API_CALL_REST")


def _json_body() -> dict:
    body = request.get_json(silent=True)
    return body if isinstance(body, dict) else {}


def _list_params() -> dict:
    out = {}
    for name in ("depot", "status", "category", "q", "asOf"):
        v = str(request.args.get(name) or "").strip()
        if v:
            out[name] = v
    return out


@requirements_bp.get("/api/requirements")
def rest_requirements_list():
    return _rest_handle("REQUIREMENTS_LIST", _list_params())


@requirements_bp.get("/api/requirements/depots")
def rest_depot_compliance():
    return _rest_handle("DEPOT_COMPLIANCE", _list_params())


@requirements_bp.get("/api/requirements/export.csv")
def rest_requirements_export_csv():
    body, status = _rest_handle("REQUIREMENTS_EXPORT", _list_params())
    if not body.get("ok"):
        return body, status

    buf = io.StringIO()
    writer = csv.DictWriter(buf, fieldnames=EXPORT_COLUMNS, extrasaction="ignore")
    writer.writeheader()
    for row in body["data"]["rows"]:
        writer.writerow(row)

    as_of = body["data"].get("asOf") or ""
    return Response(
        buf.getvalue(),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="requirements-{as_of}.csv"'},
    )


@requirements_bp.get("/api/employees/<employee_id>/requirements")
def rest_employee_requirements_get(employee_id: str):
    data = {"employeeId": employee_id}
    as_of = str(request.args.get("asOf") or "").strip()
    if as_of:
        data["asOf"] = as_of
    return _rest_handle("EMPLOYEE_REQUIREMENTS_GET", data)


@requirements_bp.post("/api/employees/<employee_id>/requirements/<key>/validate")
def rest_requirement_validate(employee_id: str, key: str):
    return _rest_handle("REQUIREMENT_VALIDATE", {**_json_body(), "employeeId": employee_id, "key": key})


@requirements_bp.post("/api/employees/<employee_id>/requirements/<key>/submit")
def rest_requirement_submit(employee_id: str, key: str):
    return _rest_handle("REQUIREMENT_SUBMIT", {**_json_body(), "employeeId": employee_id, "key": key})


@requirements_bp.post("/api/employees/<employee_id>/requirements/requests")
def rest_hr_request_add(employee_id: str):
    return _rest_handle("HR_REQUEST_ADD", {**_json_body(), "employeeId": employee_id})
