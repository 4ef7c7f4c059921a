from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from google.auth.transport import requests as google_requests
from google.oauth2 import id_token as google_id_token
from sqlalchemy import select

from cache_layer import cache_get, cache_get_or_set, cache_invalidate_prefix, cache_set
from models import Permission, Role, Session as DbSession, User
from utils import (
    ApiError,
    AuthContext,
    iso_utc_now,
    new_uuid,
    normalize_role,
    parse_datetime_maybe,
    parse_roles_csv,
    sha256_hex,
    to_iso_utc,
)


PUBLIC_ACTIONS = {"LOGIN_EXCHANGE"}

ROLE_CODES = ["ADMIN", "HR", "HRC", "EMPLOYEE", "AGENCY"]

# Roles that review documents. HRC is limited to its own depot by the action handlers.
REVIEWER_ROLES = ["ADMIN", "HR", "HRC"]


STATIC_RBAC_PERMISSIONS: dict[str, list[str]] = {
    "LOGIN_EXCHANGE": ["PUBLIC"],
    "GET_ME": ["ADMIN", "HR", "HRC", "EMPLOYEE", "AGENCY"],
    "EMPLOYEE_REQUIREMENTS_GET": ["ADMIN", "HR", "HRC", "EMPLOYEE", "AGENCY"],
    "REQUIREMENTS_LIST": ["ADMIN", "HR", "HRC", "AGENCY"],
    "REQUIREMENT_SUBMIT": ["ADMIN", "HR", "HRC", "EMPLOYEE", "AGENCY"],
    "REQUIREMENT_VALIDATE": REVIEWER_ROLES,
    "HR_REQUEST_ADD": REVIEWER_ROLES,
    "DEPOT_COMPLIANCE": REVIEWER_ROLES,
    "REQUIREMENTS_EXPORT": REVIEWER_ROLES,
}


_RBAC_CACHE_PREFIX = "RBAC:"
_RBAC_ROLES_INDEX_KEY = f"{_RBAC_CACHE_PREFIX}ROLES_INDEX"
_RBAC_RULE_PREFIX = f"{_RBAC_CACHE_PREFIX}RULE:"
_RBAC_PERMS_FOR_ROLE_PREFIX = f"{_RBAC_CACHE_PREFIX}PERMS_FOR_ROLE:"

_INVALID = AuthContext(valid=False, userId="", email="", role="", expiresAt="")


def is_public_action(action: str) -> bool:
    return str(action or "").upper() in PUBLIC_ACTIONS


def verify_google_id_token(id_token: str, google_client_id: str, allow_test_tokens: bool = False) -> dict[str, Any]:
    if not id_token or not isinstance(id_token, str):
        raise ApiError("BAD_REQUEST", "Missing idToken")

    # TEST:<email> stands in for a Google credential in local and test runs.
    if allow_test_tokens and id_token.startswith("TEST:"):
        email = id_token.split(":", 1)[1].strip().lower()
        if not email:
            raise ApiError("AUTH_INVALID", "Invalid test token")
        return {"email": email, "fullName": "Test User", "picture": "", "sub": "TEST", "exp": 0}

    if not google_client_id:
        raise ApiError("INTERNAL", "Missing GOOGLE_CLIENT_ID")

    try:
        req = google_requests.Request()
        payload = google_id_token.verify_oauth2_token(id_token, req, audience=google_client_id)
    except Exception:
        raise ApiError("AUTH_INVALID", "Invalid Google ID token")

    if payload.get("aud") != google_client_id:
        raise ApiError("AUTH_INVALID", "Google token audience mismatch")
    if str(payload.get("email_verified", "")).lower() != "true":
        raise ApiError("AUTH_INVALID", "Google email not verified")

    return {
        "email": str(payload.get("email", "")).lower(),
        "fullName": payload.get("name", "") or "",
        "picture": payload.get("picture", "") or "",
        "sub": payload.get("sub", "") or "",
        "exp": payload.get("exp", 0) or 0,
    }


def _uuid_hex_32() -> str:
    return new_uuid().replace("-", "")


def issue_session_token(db, *, user_id: str, email: str, role: str, session_ttl_minutes: int) -> dict[str, str]:
    token = "ST-" + _uuid_hex_32() + _uuid_hex_32()
    issued_at = iso_utc_now()
    expires_at = to_iso_utc(datetime.now(timezone.utc) + timedelta(minutes=session_ttl_minutes))

    db.add(
        DbSession(
            sessionId="SES-" + new_uuid(),
            tokenHash=sha256_hex(token),
            tokenPrefix=token[:12],
            userId=str(user_id or ""),
            email=str(email or ""),
            role=normalize_role(role),
            issuedAt=issued_at,
            expiresAt=expires_at,
            lastSeenAt=issued_at,
            revokedAt="",
            revokedBy="",
        )
    )
    return {"sessionToken": token, "expiresAt": expires_at}


def validate_session_token(db, token: Any) -> AuthContext:
    if not token or not isinstance(token, str):
        return _INVALID

    ses = db.execute(select(DbSession).where(DbSession.tokenHash == sha256_hex(token))).scalar_one_or_none()
    if not ses or ses.revokedAt:
        return _INVALID

    expires_at = ses.expiresAt or ""
    exp_dt = parse_datetime_maybe(expires_at)
    if exp_dt and exp_dt < datetime.now(timezone.utc):
        return _INVALID

    usr = db.execute(select(User).where(User.userId == ses.userId)).scalar_one_or_none()
    if not usr:
        return _INVALID
    if str(usr.status or "").upper().strip() != "ACTIVE":
        raise ApiError("FORBIDDEN", "User is disabled", http_status=403)

    # Avoid writing on every request: update lastSeenAt at most once per interval.
    try:
        interval_s = int(str(os.getenv("SESSION_LAST_SEEN_UPDATE_SECONDS", "300") or "300"))
    except Exception:
        interval_s = 300
    last_dt = parse_datetime_maybe(ses.lastSeenAt)
    if interval_s <= 0 or not last_dt or (datetime.now(timezone.utc) - last_dt).total_seconds() >= interval_s:
        ses.lastSeenAt = iso_utc_now()

    return AuthContext(
        valid=True,
        userId=str(usr.userId or ""),
        email=str(ses.email or ""),
        role=normalize_role(ses.role),
        expiresAt=expires_at,
        depot=str(usr.depot or "").strip(),
        employeeId=str(usr.employeeId or "").strip(),
    )


def get_permission_rule(db, perm_type: str, perm_key: str) -> Optional[dict[str, Any]]:
    perm_type_u = str(perm_type or "").upper().strip()
    perm_key_u = str(perm_key or "").upper().strip()
    if not perm_type_u or not perm_key_u:
        return None

    cache_key = f"{_RBAC_RULE_PREFIX}{perm_type_u}:{perm_key_u}"
    cached = cache_get(cache_key)
    if cached is False:
        return None
    if isinstance(cached, dict):
        return cached

    row = (
        db.execute(select(Permission).where(Permission.permType == perm_type_u).where(Permission.permKey == perm_key_u))
        .scalars()
        .first()
    )
    if not row:
        cache_set(cache_key, False)
        return None
    out = {"enabled": bool(row.enabled), "roles": parse_roles_csv(row.rolesCsv or "")}
    cache_set(cache_key, out)
    return out


def _load_roles_index(db) -> dict[str, dict[str, Any]]:
    out: dict[str, dict[str, Any]] = {}
    rows = db.execute(select(Role)).scalars().all()
    if not rows:
        for rc in ROLE_CODES:
            out[rc] = {"roleCode": rc, "roleName": rc, "status": "ACTIVE"}
    for r in rows:
        code = normalize_role(r.roleCode)
        if code:
            out[code] = {"roleCode": code, "roleName": str(r.roleName or code), "status": str(r.status or "ACTIVE").upper()}
    return out


def _roles_index(db) -> dict[str, dict[str, Any]]:
    return cache_get_or_set(_RBAC_ROLES_INDEX_KEY, lambda: _load_roles_index(db))


def invalidate_rbac_cache() -> int:
    return cache_invalidate_prefix(_RBAC_CACHE_PREFIX)


def is_role_active(db, role: str) -> bool:
    it = _roles_index(db).get(normalize_role(role))
    return bool(it) and str(it.get("status", "")).upper() == "ACTIVE"


def assert_permission(db, role: str, action: str) -> None:
    role_u = normalize_role(role)
    action_u = str(action or "").upper().strip()

    if is_public_action(action_u):
        return

    allowed_static = STATIC_RBAC_PERMISSIONS.get(action_u)
    rule = get_permission_rule(db, "ACTION", action_u)
    has_dyn = bool(rule and rule.get("enabled") is True)

    if not allowed_static and not has_dyn:
        raise ApiError("BAD_REQUEST", f"Unknown action: {action_u}")

    if not role_u or role_u == "PUBLIC":
        raise ApiError("AUTH_INVALID", "Login required")
    if not is_role_active(db, role_u):
        raise ApiError("FORBIDDEN", f"Inactive or unknown role: {role_u}", http_status=403)

    # Any ACTIVE role may load its own profile.
    if action_u == "GET_ME":
        return

    if has_dyn:
        roles = rule.get("roles") or []
        allowed = "PUBLIC" in roles or role_u in roles
    else:
        allowed = role_u in (allowed_static or [])

    if not allowed:
        raise ApiError("FORBIDDEN", f"Not allowed for role: {role_u}", http_status=403)


def permissions_for_role(db, role: str) -> list[str]:
    """Action keys the role may call, DB overrides first, static map for the rest."""
    role_u = normalize_role(role)
    if not role_u:
        raise ApiError("AUTH_INVALID", "Login required")

    cache_key = f"{_RBAC_PERMS_FOR_ROLE_PREFIX}{role_u}"
    cached = cache_get(cache_key)
    if isinstance(cached, list):
        return cached

    action_keys: set[str] = set()
    overridden: set[str] = set()
    rows = db.execute(select(Permission).where(Permission.permType == "ACTION").where(Permission.enabled == True)).scalars().all()  # noqa: E712
    for row in rows:
        key = str(row.permKey or "").upper().strip()
        if not key:
            continue
        overridden.add(key)
        roles = parse_roles_csv(row.rolesCsv or "")
        if role_u in roles or "PUBLIC" in roles:
            action_keys.add(key)

    for key, static_roles in STATIC_RBAC_PERMISSIONS.items():
        if key in overridden:
            continue
        if "PUBLIC" in static_roles or role_u in static_roles:
            action_keys.add(key)

    out = sorted(action_keys)
    cache_set(cache_key, out)
    return out


def role_or_public(auth: Optional[AuthContext]) -> str:
    if not auth or not auth.valid:
        return "PUBLIC"
    return normalize_role(auth.role) or "PUBLIC"
