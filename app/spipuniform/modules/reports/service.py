from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Literal

from pydantic import Field

from app.spipuniform.audit import record_event
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.item_requests.models import ItemRequest
from app.spipuniform.modules.listings.models import Listing
from app.spipuniform.modules.reports.models import Report
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload

logger = logging.getLogger(__name__)


class ReportPayload(Payload):
    listing_id: int | None = None
    request_id: int | None = None
    reason: Literal["spam", "inappropriate", "scam", "harassment", "fake", "other"]
    description: str = Field(..., min_length=10, max_length=2000)


class ReportUpdatePayload(Payload):
    status: Literal["open", "reviewing", "resolved", "dismissed"]
    handler_notes: str | None = Field(None, max_length=2000)


def report_to_dict(r: Report) -> dict[str, Any]:
    return {
        "id": r.id,
        "reporter_user_id": r.reporter_user_id,
        "reporter_name": r.reporter.name if r.reporter else None,
        "reporter_email": r.reporter.email if r.reporter else None,
        "listing_id": r.listing_id,
        "listing_title": r.listing.title if r.listing else None,
        "request_id": r.request_id,
        "request_description": r.item_request.description if r.item_request else None,
        "reason": r.reason,
        "description": r.description,
        "status": r.status,
        "handled_by": r.handled_by,
        "handled_at": iso(r.handled_at),
        "handler_notes": r.handler_notes,
        "created_at": iso(r.created_at),
        "updated_at": iso(r.updated_at),
    }


def reports_query(s, *, status: str | None = None):
    q = s.query(Report)
    if status:
        q = q.filter(Report.status == status)
    return q.order_by(Report.created_at.desc(), Report.id.desc())


def create_report(s, payload: ReportPayload, user: User) -> Report:
    if payload.listing_id is None and payload.request_id is None:
        raise ValidationFailed("Either listing_id or request_id must be provided")
    if payload.listing_id is not None and not s.get(Listing, payload.listing_id):
        raise NotFound("Listing not found")
    if payload.request_id is not None and not s.get(ItemRequest, payload.request_id):
        raise NotFound("Request not found")
    now = datetime.utcnow()
    r = Report(
        reporter_user_id=user.id,
        listing_id=payload.listing_id,
        request_id=payload.request_id,
        reason=payload.reason,
        description=payload.description,
        status="open",
        created_at=now,
        updated_at=now,
    )
    s.add(r)
    s.flush()
    record_event(
        s,
        actor=user,
        action="report.create",
        entity_type="Report",
        entity_id=r.id,
        metadata={"listing_id": r.listing_id, "request_id": r.request_id, "reason": r.reason},
    )
    logger.info("Report %s filed (%s) against listing=%s request=%s", r.id, r.reason, r.listing_id, r.request_id)
    return r


def handle_report(s, report_id: int, payload: ReportUpdatePayload, user: User) -> Report:
    r = s.get(Report, report_id)
    if not r:
        raise NotFound("Report not found")
    now = datetime.utcnow()
    previous = r.status
    r.status = payload.status
    if "handler_notes" in payload.model_fields_set:
        r.handler_notes = payload.handler_notes
    r.handled_by = user.id
    r.handled_at = now
    r.updated_at = now
    record_event(
        s,
        actor=user,
        action="report.update",
        entity_type="Report",
        entity_id=r.id,
        metadata={"from": previous, "to": r.status},
    )
    return r
