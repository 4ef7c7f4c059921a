from __future__ import annotations

from sqlalchemy import func, select

from actions.helpers import append_audit
from auth import issue_session_token, permissions_for_role, verify_google_id_token
from models import User
from utils import ApiError, AuthContext, iso_utc_now, normalize_role


def _find_user_by_email(db, email: str):
    email_lc = str(email or "").strip().lower()
    if not email_lc or "@" not in email_lc:
        return None
    return db.execute(select(User).where(func.lower(User.email) == email_lc)).scalars().first()


def _serialize_me(user: User) -> dict:
    return {
        "userId": user.userId,
        "email": user.email or "",
        "fullName": user.fullName or user.userId,
        "role": normalize_role(user.role),
        "depot": user.depot or "",
        "employeeId": user.employeeId or "",
    }


def login_exchange(data, auth: AuthContext | None, db, cfg):
    google_user = verify_google_id_token(
        (data or {}).get("idToken"),
        google_client_id=cfg.GOOGLE_CLIENT_ID,
        allow_test_tokens=bool(cfg.AUTH_ALLOW_TEST_TOKENS),
    )

    user = _find_user_by_email(db, google_user.get("email") or "")
    if not user:
        raise ApiError("AUTH_INVALID", "User not found in Users")
    if str(user.status or "").upper() != "ACTIVE":
        raise ApiError("AUTH_INVALID", "User is disabled")

    user.lastLoginAt = iso_utc_now()
    if not user.fullName and google_user.get("fullName"):
        user.fullName = str(google_user["fullName"])

    ses = issue_session_token(
        db,
        user_id=user.userId,
        email=user.email,
        role=user.role,
        session_ttl_minutes=cfg.SESSION_TTL_MINUTES,
    )

    append_audit(
        db,
        entityType="AUTH",
        entityId=str(user.userId),
        action="LOGIN_EXCHANGE",
        stageTag="AUTH_LOGIN",
        actor=AuthContext(
            valid=True,
            userId=user.userId,
            email=user.email,
            role=normalize_role(user.role),
            expiresAt=ses["expiresAt"],
            depot=user.depot or "",
        ),
    )

    return {"sessionToken": ses["sessionToken"], "expiresAt": ses["expiresAt"], "me": _serialize_me(user)}


def get_me(data, auth: AuthContext | None, db, cfg):
    if not auth or not auth.valid:
        raise ApiError("AUTH_INVALID", "Invalid or expired session")

    user = db.execute(select(User).where(User.userId == auth.userId)).scalar_one_or_none()
    if not user:
        raise ApiError("AUTH_INVALID", "User missing")

    return {"me": _serialize_me(user), "actionKeys": permissions_for_role(db, auth.role)}
