import json
from typing import Any

from flask import g, has_request_context, request
from sqlalchemy.orm import Session

from app.spipuniform.models import AuditEvent, User
from app.spipuniform.utils import iso


def record_event(
    s: Session,
    *,
    actor: User | None,
    action: str,
    entity_type: str | None = None,
    entity_id: str | int | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditEvent:
    """
    Append an audit row for a moderation, account or catalog change.
    Works outside a request too (seed scripts pass actor=None).
    """
    in_request = has_request_context()
    ev = AuditEvent(
        request_id=request_id or (getattr(g, "request_id", None) if in_request else None),
        actor_user_id=actor.id if actor else None,
        actor_user_email=actor.email if actor else None,
        action=action,
        entity_type=entity_type,
        entity_id=None if entity_id is None else str(entity_id),
        reason=reason,
        metadata_json=json.dumps(metadata, sort_keys=True, default=str) if metadata else None,
        client_ip=request.remote_addr if in_request else None,
    )
    s.add(ev)
    return ev


def event_to_dict(ev: AuditEvent) -> dict[str, Any]:
    return {
        "id": ev.id,
        "created_at": iso(ev.created_at),
        "request_id": ev.request_id,
        "actor_user_id": ev.actor_user_id,
        "actor_user_email": ev.actor_user_email,
        "action": ev.action,
        "entity_type": ev.entity_type,
        "entity_id": ev.entity_id,
        "reason": ev.reason,
        "metadata": json.loads(ev.metadata_json) if ev.metadata_json else {},
    }


def events_query(s: Session, *, action_prefix: str = "", entity_type: str = "", entity_id: str = "", actor_user_id: int | None = None):
    """Newest first. `action_prefix` matches a family like "listing." or "user.ban"."""
    q = s.query(AuditEvent)
    if action_prefix:
        q = q.filter(AuditEvent.action.startswith(action_prefix, autoescape=True))
    if entity_type:
        q = q.filter(AuditEvent.entity_type == entity_type)
    if entity_id:
        q = q.filter(AuditEvent.entity_id == entity_id)
    if actor_user_id is not None:
        q = q.filter(AuditEvent.actor_user_id == actor_user_id)
    return q.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc())
