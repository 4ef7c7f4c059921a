from __future__ import annotations

import json
from typing import Any, Iterable, Optional

from sqlalchemy import select

from models import AuditLog, IdCounter
from utils import AuthContext, iso_utc_now, new_uuid, redact_for_audit


def append_audit(
    db,
    *,
    entityType: str,
    entityId: str,
    action: str,
    stageTag: str = "",
    remark: str = "",
    fromState: str = "",
    toState: str = "",
    actor: Optional[AuthContext] = None,
    at: str = "",
    before: Any = None,
    after: Any = None,
    meta: Any = None,
    correlationId: str = "",
) -> None:
    payload: dict[str, Any] = {}
    if before is not None:
        payload["before"] = redact_for_audit(before)
    if after is not None:
        payload["after"] = redact_for_audit(after)
    if meta is not None:
        payload["meta"] = redact_for_audit(meta)

    db.add(
        AuditLog(
            logId="LOG-" + new_uuid(),
            entityType=str(entityType or ""),
            entityId=str(entityId or ""),
            action=str(action or ""),
            fromState=str(fromState or ""),
            toState=str(toState or ""),
            stageTag=str(stageTag or ""),
            remark=str(remark or ""),
            actorUserId=str(getattr(actor, "userId", "") or ""),
            actorRole=str(getattr(actor, "role", "") or ""),
            actorEmail=str(getattr(actor, "email", "") or ""),
            at=at or iso_utc_now(),
            correlationId=str(correlationId or ""),
            metaJson=json.dumps(payload, separators=(",", ":"), default=str) if payload else "",
        )
    )


def _max_existing_suffix(existing_ids: Iterable[str], prefix: str) -> int:
    best = 0
    for raw in existing_ids or []:
        s = str(raw or "")
        if not s.startswith(prefix):
            continue
        tail = s[len(prefix) :]
        if tail.isdigit():
            best = max(best, int(tail))
    return best


def next_prefixed_id(db, *, counter_key: str, prefix: str, pad: int, existing_ids: Iterable[str] = ()) -> str:
    """Allocate `<prefix><zero-padded n>` from id_counters, skipping past any id already in use."""
    key = str(counter_key or "").strip().upper()
    row = db.execute(select(IdCounter).where(IdCounter.key == key).with_for_update()).scalar_one_or_none()
    if not row:
        row = IdCounter(key=key, nextValue=1)
        db.add(row)

    n = max(int(row.nextValue or 1), _max_existing_suffix(existing_ids, prefix) + 1)
    row.nextValue = n + 1
    db.flush()
    return f"{prefix}{str(n).zfill(int(pad or 1))}"
