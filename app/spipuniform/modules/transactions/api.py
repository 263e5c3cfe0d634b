from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.spipuniform.db import db_session
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.modules.transactions.models import TRANSACTION_STATUSES
from app.spipuniform.modules.transactions.service import (
    MessagePayload,
    TransactionPayload,
    create_transaction,
    get_transaction_for_participant,
    list_messages,
    message_to_dict,
    post_message,
    transaction_to_dict,
    update_transaction,
    user_transactions_query,
)
from app.spipuniform.rbac import require_login
from app.spipuniform.utils import arg_int
from app.spipuniform.validation import parse_json

bp = Blueprint("transactions", __name__)


@bp.get("/transactions")
@require_login
def transactions_list():
    s = db_session()
    user = g.current_user
    side = (request.args.get("type") or "all").strip().lower()
    if side not in ("buyer", "seller", "all"):
        raise ValidationFailed("Invalid type. Must be one of: buyer, seller, all")
    status = (request.args.get("status") or "").strip()
    if status and status not in TRANSACTION_STATUSES:
        raise ValidationFailed(f"Invalid status. Must be one of: {', '.join(TRANSACTION_STATUSES)}")
    limit = min(max(arg_int("limit", 50), 1), 100)
    offset = max(arg_int("offset", 0), 0)

    q = user_transactions_query(s, user, side=side, status=status or None)
    total = q.order_by(None).count()
    rows = q.offset(offset).limit(limit).all()
    return jsonify(
        {
            "success": True,
            "data": [transaction_to_dict(t, viewer=user) for t in rows],
            "pagination": {"limit": limit, "offset": offset, "total": total},
        }
    )


@bp.post("/transactions")
@require_login
def transactions_create():
    s = db_session()
    t = create_transaction(s, parse_json(TransactionPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": transaction_to_dict(t, viewer=g.current_user)}), 201


@bp.get("/transactions/<int:transaction_id>")
@require_login
def transactions_detail(transaction_id: int):
    s = db_session()
    t = get_transaction_for_participant(s, transaction_id, g.current_user)
    data = transaction_to_dict(t, viewer=g.current_user)
    data["messages"] = [message_to_dict(m) for m in t.messages]
    return jsonify({"success": True, "data": data})


@bp.put("/transactions/<int:transaction_id>")
@require_login
def transactions_update(transaction_id: int):
    s = db_session()
    t = get_transaction_for_participant(s, transaction_id, g.current_user)
    update_transaction(s, t, parse_json(TransactionPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": transaction_to_dict(t, viewer=g.current_user)})


@bp.get("/transactions/<int:transaction_id>/messages")
@require_login
def messages_list(transaction_id: int):
    s = db_session()
    t = get_transaction_for_participant(s, transaction_id, g.current_user)
    rows = list_messages(s, t, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": [message_to_dict(m) for m in rows]})


@bp.post("/transactions/<int:transaction_id>/messages")
@require_login
def messages_create(transaction_id: int):
    s = db_session()
    t = get_transaction_for_participant(s, transaction_id, g.current_user)
    m = post_message(s, t, parse_json(MessagePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": message_to_dict(m)}), 201
