from __future__ import annotations

import json
import logging
import os
import re
from typing import Any, Optional

from dotenv import load_dotenv
from flask import Flask, g, request
from flask_cors import CORS
from sqlalchemy.exc import DBAPIError

from actions import dispatch
from auth import (
    ROLE_CODES,
    STATIC_RBAC_PERMISSIONS,
    assert_permission,
    invalidate_rbac_cache,
    is_public_action,
    role_or_public,
    validate_session_token,
)
from config import Config
from db import SessionLocal, init_engine
from models import AuditLog, Permission, Role
from utils import ApiError, AuthContext, err, iso_utc_now, now_monotonic, ok, parse_json_body, redact_for_audit


def _configure_logging(level: str):
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _seed_roles_and_permissions(db):
    now = iso_utc_now()
    actor = "SYSTEM_INIT"

    existing_roles = {str(r.roleCode or "").upper() for r in db.query(Role).all()}  # type: ignore[attr-defined]
    for rc in ROLE_CODES:
        if rc in existing_roles:
            continue
        db.add(Role(roleCode=rc, roleName=rc, status="ACTIVE", createdAt=now, createdBy=actor, updatedAt=now, updatedBy=actor))

    # Only missing keys are inserted so admin edits to the permissions table survive restarts.
    existing_perm = {
        (str(p.permType or "").upper().strip(), str(p.permKey or "").upper().strip())
        for p in db.query(Permission).all()  # type: ignore[attr-defined]
    }
    for action, roles in STATIC_RBAC_PERMISSIONS.items():
        if ("ACTION", action.upper()) in existing_perm:
            continue
        db.add(
            Permission(
                permType="ACTION",
                permKey=action.upper(),
                rolesCsv=",".join(roles),
                enabled=True,
                updatedAt=now,
                updatedBy=actor,
            )
        )


def _request_token(body: Optional[dict] = None) -> str:
    token = str((body or {}).get("token") or "").strip()
    if token:
        return token
    authz = str(request.headers.get("Authorization") or "").strip()
    if authz.lower().startswith("bearer "):
        return authz.split(" ", 1)[1].strip()
    return str(request.headers.get("X-Session-Token") or "").strip() or str(request.args.get("token") or "").strip()


def _audit_row(action: str, auth_ctx: Optional[AuthContext], *, stage_tag: str, remark: str, meta: dict) -> AuditLog:
    return AuditLog(
        logId=f"LOG-{os.urandom(16).hex()}",
        entityType="API",
        entityId=str(auth_ctx.userId or auth_ctx.email or "") if auth_ctx else "PUBLIC",
        action=str(action or "").upper() or "UNKNOWN",
        fromState="",
        toState="",
        stageTag=stage_tag,
        remark=remark,
        actorUserId=str(auth_ctx.userId) if auth_ctx else "PUBLIC",
        actorRole=str(auth_ctx.role) if auth_ctx else "PUBLIC",
        actorEmail=str(auth_ctx.email or "") if auth_ctx else "",
        at=iso_utc_now(),
        correlationId=str(getattr(g, "request_id", "") or ""),
        metaJson=json.dumps(meta, default=str),
    )


def _write_error_audit(action: str, auth_ctx: Optional[AuthContext], data: Any, err_obj: ApiError):
    db2 = SessionLocal()
    try:
        db2.add(
            _audit_row(
                action,
                auth_ctx,
                stage_tag="API_ERROR",
                remark=f"{err_obj.code}: {err_obj.message}",
                meta={"data": redact_for_audit(data or {}), "error": {"code": err_obj.code, "message": err_obj.message}},
            )
        )
        db2.commit()
    except Exception:
        db2.rollback()
        logging.getLogger("api").exception("audit write failed action=%s", action)
    finally:
        db2.close()


def run_action(action: str, data: Any, token: Any, *, stage_tag: str = "API_CALL"):
    """
    Authenticate, authorize and dispatch one action inside one transaction.

    Returns `(body, http_status)`. Shared by `POST /api` and the REST routes.
    """
    cfg: Config = g.cfg
    action_u = str(action or "").upper().strip()
    db = None
    auth_ctx: Optional[AuthContext] = None

    try:
        if not action_u:
            raise ApiError("BAD_REQUEST", "Missing action")

        db = SessionLocal()

        if not is_public_action(action_u):
            auth_ctx = validate_session_token(db, token)
            if not auth_ctx.valid:
                raise ApiError("AUTH_INVALID", "Invalid or expired session")

        assert_permission(db, role_or_public(auth_ctx), action_u)

        out = dispatch(action_u, data if data is not None else {}, auth_ctx, db, cfg)

        db.add(_audit_row(action_u, auth_ctx, stage_tag=stage_tag, remark="", meta={"data": redact_for_audit(data or {})}))
        db.commit()

        logging.getLogger("api").info(
            "request_id=%s action=%s user=%s role=%s latency_ms=%s",
            g.request_id,
            action_u,
            (auth_ctx.userId if auth_ctx else "PUBLIC"),
            (auth_ctx.role if auth_ctx else "PUBLIC"),
            int((now_monotonic() - g.start_ts) * 1000),
        )
        return ok(out)
    except ApiError as e:
        if db is not None:
            db.rollback()
        _write_error_audit(action_u, auth_ctx, data, e)
        return err(e.code, e.message, http_status=e.http_status, details=e.details)
    except DBAPIError as e:
        if db is not None:
            db.rollback()

        request_id = str(getattr(g, "request_id", "") or "")
        orig_msg = re.sub(r"\s+", " ", str(getattr(e, "orig", "") or "")).strip()[:300]
        if cfg.IS_PRODUCTION or not orig_msg:
            msg = f"Database error (requestId: {request_id})"
        else:
            msg = f"Database error: {orig_msg} (requestId: {request_id})"

        api_err = ApiError("INTERNAL", msg, http_status=500)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        logging.getLogger("api").exception("request_id=%s action=%s", request_id, action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    except Exception as e:
        if db is not None:
            db.rollback()

        request_id = str(getattr(g, "request_id", "") or "")
        if cfg.IS_PRODUCTION:
            msg = f"Unexpected error (requestId: {request_id})"
        else:
            msg = f"Unexpected error: {type(e).__name__} (requestId: {request_id})"

        api_err = ApiError("INTERNAL", msg, http_status=500)
        _write_error_audit(action_u, auth_ctx, data, api_err)
        logging.getLogger("api").exception("request_id=%s action=%s", request_id, action_u)
        return err(api_err.code, api_err.message, http_status=api_err.http_status)
    finally:
        if db is not None:
            db.close()


def create_app(cfg: Optional[Config] = None) -> Flask:
    load_dotenv()
    cfg = cfg or Config()
    cfg.validate()
    _configure_logging(cfg.LOG_LEVEL)

    init_engine(cfg.DATABASE_URL)

    app = Flask(__name__)
    app.config["CFG"] = cfg
    app.config["JSON_SORT_KEYS"] = False

    CORS(
        app,
        origins=cfg.CORS_ORIGINS,
        supports_credentials=cfg.CORS_ALLOW_CREDENTIALS,
        allow_headers=["Content-Type", "Authorization", "X-Session-Token", "X-Request-ID"],
        expose_headers=["X-Request-ID"],
        max_age=3600,
    )

    from app.routes.core import core_bp
    from app.routes.requirements import requirements_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(requirements_bp)

    db0 = SessionLocal()
    try:
        _seed_roles_and_permissions(db0)
        db0.commit()
    finally:
        db0.close()
    invalidate_rbac_cache()

    @app.before_request
    def _before():
        g.request_id = str(request.headers.get("X-Request-ID") or "").strip()[:64] or os.urandom(8).hex()
        g.start_ts = now_monotonic()
        g.cfg = app.config["CFG"]

    @app.after_request
    def _after(resp):
        resp.headers["X-Request-ID"] = str(getattr(g, "request_id", "") or "")
        resp.headers.setdefault("X-Content-Type-Options", "nosniff")
        resp.headers.setdefault("X-Frame-Options", "DENY")
        resp.headers.setdefault("Referrer-Policy", "no-referrer")
        resp.headers.setdefault("Cache-Control", "no-store")
        return resp

    @app.errorhandler(404)
    def not_found(_e):
        return err("NOT_FOUND", f"Unknown endpoint: {request.path}", http_status=404)

    @app.errorhandler(405)
    def method_not_allowed(_e):
        return err("BAD_REQUEST", "Method not allowed. Use POST /api for actions.", http_status=405)

    @app.post("/api")
    def api_route():
        try:
            body = parse_json_body(request.get_data(as_text=True))
        except ApiError as e:
            return err(e.code, e.message, http_status=e.http_status)
        return run_action(body.get("action"), body.get("data") or {}, _request_token(body))

    return app
