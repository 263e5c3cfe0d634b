from __future__ import annotations

from flask import Blueprint, g, jsonify

from app.spipuniform.db import db_session
from app.spipuniform.modules.favorites.service import (
    FavoritePayload,
    add_favorite,
    favorite_to_dict,
    favorites_query,
    remove_favorite,
)
from app.spipuniform.rbac import require_login
from app.spipuniform.utils import arg_int, page_params, paginate
from app.spipuniform.validation import parse_json

bp = Blueprint("favorites", __name__)


@bp.get("/favorites")
@require_login
def favorites_list():
    s = db_session()
    params = page_params(default_sort="created_at", allowed_sorts=("created_at",), default_limit=20)
    rows, pagination = paginate(favorites_query(s, g.current_user), params)
    return jsonify({"success": True, "data": [favorite_to_dict(f) for f in rows], "pagination": pagination})


@bp.post("/favorites")
@require_login
def favorites_add():
    s = db_session()
    f = add_favorite(s, parse_json(FavoritePayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": favorite_to_dict(f), "message": "Added to favorites"}), 201


@bp.delete("/favorites")
@require_login
def favorites_remove():
    s = db_session()
    remove_favorite(s, g.current_user, listing_id=arg_int("listing_id"), favorite_id=arg_int("favorite_id"))
    s.commit()
    return jsonify({"success": True, "message": "Removed from favorites"})
