from __future__ import annotations

from typing import Any, Callable

from actions.auth_actions import get_me, login_exchange
from actions.requirements import (
    depot_compliance,
    employee_requirements_get,
    hr_request_add,
    requirement_submit,
    requirement_validate,
    requirements_export,
    requirements_list,
)
from utils import ApiError, AuthContext


Handler = Callable[[dict, "AuthContext | None", Any, Any], Any]

ACTION_HANDLERS: dict[str, Handler] = {
    "LOGIN_EXCHANGE": login_exchange,
    "GET_ME": get_me,
    "EMPLOYEE_REQUIREMENTS_GET": employee_requirements_get,
    "REQUIREMENTS_LIST": requirements_list,
    "REQUIREMENT_VALIDATE": requirement_validate,
    "REQUIREMENT_SUBMIT": requirement_submit,
    "HR_REQUEST_ADD": hr_request_add,
    "DEPOT_COMPLIANCE": depot_compliance,
    "REQUIREMENTS_EXPORT": requirements_export,
}


def dispatch(action: str, data: dict, auth: AuthContext | None, db, cfg):
    handler = ACTION_HANDLERS.get(str(action or "").upper().strip())
    if handler is None:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action}")
    if not isinstance(data, dict):
        raise ApiError("BAD_REQUEST", "data must be a JSON object")
    return handler(data, auth, db, cfg)
