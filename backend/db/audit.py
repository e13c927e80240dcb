"""Audit trail entries written alongside user-initiated mutations."""

import json
from typing import Any

from db.models import AuditLog, generate_id, utcnow
from db.store import StoreTransaction

MAX_PAYLOAD_SNIPPET = 800


def safe_json_snippet(payload: Any, max_len: int = MAX_PAYLOAD_SNIPPET) -> str:
    try:
        text = json.dumps(payload, default=str, ensure_ascii=False)
    except (TypeError, ValueError):
        return "[unserializable]"
    if len(text) <= max_len:
        return text
    return text[:max_len] + "..."


async def record_audit(
    tx: StoreTransaction,
    *,
    org_id: str,
    user: dict,
    action: str,
    entity: str,
    entity_id: str | None = None,
    payload: Any = None,
) -> AuditLog:
    entry = AuditLog(
        id=generate_id("aud"),
        org_id=org_id,
        user_id=user.get("sub", "unknown"),
        user_email=user.get("email", ""),
        action=action,
        entity=entity,
        entity_id=entity_id,
        payload_snippet=safe_json_snippet(payload) if payload is not None else None,
        created_at=utcnow(),
    )
    await tx.append_unique(entry)
    return entry
