from __future__ import annotations

from flask import Blueprint, g, jsonify, request
from sqlalchemy import or_

from app.spipuniform.db import db_session
from app.spipuniform.errors import NotFound, ValidationFailed
from app.spipuniform.modules.schools.csv_import import parse_schools_csv
from app.spipuniform.modules.schools.models import SCHOOL_LEVELS, School
from app.spipuniform.modules.schools.service import (
    SchoolPayload,
    create_school,
    deactivate_school,
    import_school_rows,
    school_to_dict,
    update_school,
)
from app.spipuniform.rbac import require_permission
from app.spipuniform.utils import arg_bool, arg_int, page_params, paginate
from app.spipuniform.validation import parse_json

bp = Blueprint("schools", __name__)

_SORTS = {"name": School.name, "created_at": School.created_at, "updated_at": School.updated_at}


def _school_or_404(school_id: int) -> School:
    sc = db_session().get(School, school_id)
    if not sc:
        raise NotFound("School not found")
    return sc


@bp.get("/schools")
def schools_list():
    s = db_session()
    params = page_params(default_sort="name", allowed_sorts=tuple(_SORTS), default_limit=50, default_order="asc")
    q = s.query(School)

    county_id = arg_int("county_id")
    if county_id:
        q = q.filter(School.county_id == county_id)
    locality_id = arg_int("locality_id")
    if locality_id:
        q = q.filter(School.locality_id == locality_id)
    level = (request.args.get("level") or "").strip().lower()
    if level:
        if level not in SCHOOL_LEVELS:
            raise ValidationFailed(f"Invalid level. Must be one of: {', '.join(SCHOOL_LEVELS)}")
        q = q.filter(School.level == level)
    search = (request.args.get("q") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(School.name.ilike(like), School.address.ilike(like)))
    active = arg_bool("active")
    q = q.filter(School.is_active.is_(True if active is None else active))

    col = _SORTS[params.sort_by]
    q = q.order_by(col.asc() if params.sort_order == "asc" else col.desc(), School.id.asc())
    rows, pagination = paginate(q, params)
    return jsonify({"success": True, "data": [school_to_dict(x) for x in rows], "pagination": pagination})


@bp.post("/schools")
@require_permission("viewSchools")
def schools_create():
    s = db_session()
    sc = create_school(s, parse_json(SchoolPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": school_to_dict(sc)}), 201


@bp.get("/schools/<int:school_id>")
def schools_detail(school_id: int):
    return jsonify({"success": True, "data": school_to_dict(_school_or_404(school_id))})


@bp.put("/schools/<int:school_id>")
@require_permission("viewSchools")
def schools_update(school_id: int):
    s = db_session()
    sc = _school_or_404(school_id)
    update_school(s, sc, parse_json(SchoolPayload), g.current_user)
    s.commit()
    return jsonify({"success": True, "data": school_to_dict(sc)})


@bp.delete("/schools/<int:school_id>")
@require_permission("viewSchools")
def schools_delete(school_id: int):
    s = db_session()
    sc = _school_or_404(school_id)
    deactivate_school(s, sc, g.current_user)
    s.commit()
    return jsonify({"success": True, "message": "School deactivated"})


@bp.post("/schools/import")
@require_permission("viewSchools")
def schools_import():
    f = request.files.get("file")
    if not f or not f.filename:
        raise ValidationFailed("CSV file is required", details={"file": "Field required"})
    try:
        rows, errors = parse_schools_csv(f.read())
    except ValueError as e:
        raise ValidationFailed(str(e)) from e
    s = db_session()
    summary = import_school_rows(s, rows, errors, user=g.current_user)
    s.commit()
    return jsonify({"success": True, "data": summary.to_dict()})
