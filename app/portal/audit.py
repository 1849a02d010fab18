import json
from typing import Any

from flask import g, has_request_context
from sqlalchemy.orm import Session

from app.portal.models import IP_MAX_LENGTH, AuditEvent, User


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    client_ip: str | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append an audit event to the current unit of work. Never pass passwords in `metadata`.
    """
    rid = request_id or (getattr(g, "request_id", None) if has_request_context() else None)
    ev = AuditEvent(
        request_id=rid,
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        client_ip=client_ip[:IP_MAX_LENGTH] if client_ip else None,
        metadata_json=json.dumps(metadata, sort_keys=True) if metadata else None,
    )
    s.add(ev)
    return ev
