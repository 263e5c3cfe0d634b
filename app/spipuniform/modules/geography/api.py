from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func

from app.spipuniform.db import db_session
from app.spipuniform.errors import ApiError, NotFound
from app.spipuniform.modules.geography.models import County, Locality
from app.spipuniform.modules.geography.overpass_client import OverpassClient, OverpassError, OverpassRateLimited
from app.spipuniform.modules.geography.service import (
    county_to_dict,
    fetch_localities_for_county,
    locality_to_dict,
    place_to_dict,
    search_localities,
)
from app.spipuniform.rbac import require_permission
from app.spipuniform.utils import arg_int

bp = Blueprint("geography", __name__)


def overpass_client() -> OverpassClient:
    return OverpassClient(
        endpoint=current_app.config.get("OVERPASS_ENDPOINT") or "https://overpass-api.de/api/interpreter",
        timeout_seconds=int(current_app.config.get("OVERPASS_TIMEOUT") or 25),
    )


@bp.get("/counties")
def counties_list():
    s = db_session()
    counts = dict(s.query(Locality.county_id, func.count(Locality.id)).group_by(Locality.county_id).all())
    rows = s.query(County).order_by(County.name.asc()).all()
    return jsonify({"success": True, "data": [county_to_dict(c, counts.get(c.id, 0)) for c in rows]})


@bp.get("/localities")
def localities_list():
    s = db_session()
    county_id = arg_int("county_id")
    q = s.query(Locality)
    if county_id:
        q = q.filter(Locality.county_id == county_id)
    rows = q.order_by(Locality.name.asc()).all()
    return jsonify({"success": True, "data": [locality_to_dict(l) for l in rows]})


@bp.get("/localities/search")
def localities_search():
    """
    Stored localities first. When a county has no stored match for a query of
    2+ characters, fall back to a live OpenStreetMap name search in that county.
    """
    s = db_session()
    q = (request.args.get("q") or "").strip()
    limit = min(max(arg_int("limit", 20), 1), 100)
    county_id = arg_int("county_id")
    rows = search_localities(s, q, county_id=county_id, limit=limit)
    if rows or not county_id or len(q) < 2:
        return jsonify({"success": True, "data": [locality_to_dict(l) for l in rows]})

    county = s.get(County, county_id)
    if not county:
        raise NotFound("County not found")
    try:
        places = overpass_client().search_places(county.name, q)
    except OverpassRateLimited as e:
        raise ApiError("Locality search is temporarily busy. Please try again shortly.", status_code=429) from e
    except OverpassError as e:
        current_app.logger.error("Overpass search failed for %s q=%r: %s", county.name, q, e)
        raise ApiError(str(e), status_code=502) from e
    return jsonify({"success": True, "data": [place_to_dict(p, county) for p in places[:limit]]})


@bp.post("/localities/fetch/<int:county_id>")
@require_permission("viewLocalities")
def localities_fetch(county_id: int):
    s = db_session()
    county = s.get(County, county_id)
    if not county:
        raise NotFound("County not found")
    try:
        result = fetch_localities_for_county(s, county, overpass_client(), user=g.current_user)
    except OverpassError as e:
        current_app.logger.error("Overpass fetch failed for %s: %s", county.name, e)
        s.rollback()
        raise ApiError(str(e), status_code=502) from e
    s.commit()
    return jsonify({"success": True, "data": result.to_dict()})


@bp.get("/counties/<int:county_id>")
def counties_detail(county_id: int):
    s = db_session()
    county = s.get(County, county_id)
    if not county:
        raise NotFound("County not found")
    count = s.query(func.count(Locality.id)).filter(Locality.county_id == county.id).scalar() or 0
    return jsonify({"success": True, "data": county_to_dict(county, count)})


@bp.get("/localities/<int:locality_id>")
def localities_detail(locality_id: int):
    loc = db_session().get(Locality, locality_id)
    if not loc:
        raise NotFound("Locality not found")
    return jsonify({"success": True, "data": locality_to_dict(loc)})

