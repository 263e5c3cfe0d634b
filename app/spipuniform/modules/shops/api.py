from __future__ import annotations

from flask import Blueprint, g, jsonify, request
from sqlalchemy import or_

from app.spipuniform.db import db_session
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.modules.shops.models import MEMBERSHIP_STATUSES, Shop
from app.spipuniform.modules.shops.service import (
    ShopPayload,
    create_shop,
    delete_shop,
    get_shop_for_user,
    shop_to_dict,
    update_shop,
    verify_shop,
)
from app.spipuniform.rbac import is_admin, require_admin, require_login
from app.spipuniform.utils import arg_bool, page_params, paginate
from app.spipuniform.validation import parse_json

bp = Blueprint("shops", __name__)

_SORTS = {"name": Shop.name, "created_at": Shop.created_at, "updated_at": Shop.updated_at}


@bp.get("/shops")
@require_login
def shops_list():
    s = db_session()
    user = g.current_user
    params = page_params(default_sort="created_at", allowed_sorts=tuple(_SORTS))
    q = s.query(Shop)
    if not (arg_bool("all") and is_admin(user)):
        q = q.filter(Shop.user_id == user.id)

    status = (request.args.get("membership_status") or "").strip()
    if status:
        if status not in MEMBERSHIP_STATUSES:
            raise ValidationFailed(f"Invalid membership_status. Must be one of: {', '.join(MEMBERSHIP_STATUSES)}")
        q = q.filter(Shop.membership_status == status)
    verified = arg_bool("verified")
    if verified is not None:
        q = q.filter(Shop.is_verified.is_(verified))
    search = (request.args.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Shop.name.ilike(like), Shop.description.ilike(like)))

    col = _SORTS[params.sort_by]
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc(), Shop.id.asc())
    rows, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [shop_to_dict(x) for x in rows], "pagination": pagination})


@bp.post("/shops")
@require_login
def shops_create():
    s = db_session()
    shop = create_shop(s, parse_json(ShopPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": shop_to_dict(shop)}), 201


@bp.get("/shops/<int:shop_id>")
@require_login
def shops_detail(shop_id: int):
    shop = get_shop_for_user(db_session(), shop_id, g.current_user)
    return jsonify({"success": True, "data": shop_to_dict(shop)})


@bp.put("/shops/<int:shop_id>")
@require_login
def shops_update(shop_id: int):
    s = db_session()
    shop = get_shop_for_user(s, shop_id, g.current_user)
    update_shop(s, shop, parse_json(ShopPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": shop_to_dict(shop)})


@bp.delete("/shops/<int:shop_id>")
@require_login
def shops_delete(shop_id: int):
    s = db_session()
    shop = get_shop_for_user(s, shop_id, g.current_user)
    delete_shop(s, shop, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "Shop deleted"})


@bp.post("/shops/<int:shop_id>/verify")
@require_admin
def shops_verify(shop_id: int):
    s = db_session()
    shop = get_shop_for_user(s, shop_id, g.current_user)
    verify_shop(s, shop, g.current_user)
    s.commit()
    return jsonify({"success": True, "data": shop_to_dict(shop)})
