from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Literal

from pydantic import EmailStr, Field
from sqlalchemy import func

from app.spipuniform.audit import record_event
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.geography.service import get_or_create_county, get_or_create_locality, require_county, require_locality
from app.spipuniform.modules.schools.csv_import import CsvRowError
from app.spipuniform.modules.schools.models import School
from app.spipuniform.utils import iso
from app.spipuniform.validation import Payload


class SchoolPayload(Payload):
    name: str | None = Field(None, min_length=1, max_length=255)
    address: str | None = None
    county_id: int | None = None
    locality_id: int | None = None
    level: Literal["primary", "secondary", "mixed"] | None = None
    external_id: str | None = Field(None, max_length=64)
    website: str | None = Field(None, max_length=500)
    phone: str | None = Field(None, max_length=50)
    email: EmailStr | None = None
    is_active: bool | None = None


_FIELDS = ("name", "address", "county_id", "locality_id", "level", "external_id", "website", "phone", "email", "is_active")


def school_to_dict(sc: School) -> dict[str, Any]:
    return {
        "id": sc.id,
        "name": sc.name,
        "address": sc.address,
        "county_id": sc.county_id,
        "county_name": sc.county.name if sc.county else None,
        "locality_id": sc.locality_id,
        "locality_name": sc.locality.name if sc.locality else None,
        "level": sc.level,
        "external_id": sc.external_id,
        "website": sc.website,
        "phone": sc.phone,
        "email": sc.email,
        "is_active": sc.is_active,
        "created_at": iso(sc.created_at),
        "updated_at": iso(sc.updated_at),
    }


def _check_refs(s, county_id: int | None, locality_id: int | None) -> None:
    require_county(s, county_id)
    loc = require_locality(s, locality_id)
    if loc and county_id and loc.county_id != county_id:
        raise ValidationFailed("Locality is not in the selected county", details={"locality_id": "Locality/county mismatch"})


def _check_external_id(s, external_id: str | None, exclude_id: int | None = None) -> None:
    if not external_id:
        return
    q = s.query(School).filter(School.external_id == external_id)
    if exclude_id:
        q = q.filter(School.id != exclude_id)
    if q.first():
        raise ValidationFailed("A school with this external id already exists", details={"external_id": "Duplicate"})


def create_school(s, payload: SchoolPayload, user: User) -> School:
    if not payload.name:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    _check_refs(s, payload.county_id, payload.locality_id)
    _check_external_id(s, payload.external_id)
    now = datetime.utcnow()
    sc = School(
        name=payload.name,
        address=payload.address,
        county_id=payload.county_id,
        locality_id=payload.locality_id,
        level=payload.level or "primary",
        external_id=payload.external_id or None,
        website=payload.website,
        phone=payload.phone,
        email=str(payload.email) if payload.email else None,
        is_active=True if payload.is_active is None else payload.is_active,
        created_at=now,
        updated_at=now,
    )
    s.add(sc)
    s.flush()
    record_event(s, actor=user, action="school.create", entity_type="School", entity_id=sc.id, metadata={"name": sc.name})
    return sc


def update_school(s, sc: School, payload: SchoolPayload, user: User) -> School:
    data = payload.model_dump(exclude_unset=True)
    if "name" in data and not data["name"]:
        raise ValidationFailed("Validation failed", details={"name": "Field required"})
    county_id = data.get("county_id", sc.county_id)
    locality_id = data.get("locality_id", sc.locality_id)
    _check_refs(s, county_id, locality_id)
    if "external_id" in data:
        _check_external_id(s, data["external_id"], exclude_id=sc.id)

    changed: dict[str, Any] = {}
    for k in _FIELDS:
        if k not in data:
            continue
        v = data[k]
        if k == "email" and v is not None:
            v = str(v)
        if k in ("level", "is_active") and v is None:
            continue
        if getattr(sc, k) != v:
            changed[k] = v
            setattr(sc, k, v)
    if changed:
        sc.updated_at = datetime.utcnow()
        record_event(s, actor=user, action="school.update", entity_type="School", entity_id=sc.id, metadata={"fields": sorted(changed)})
    return sc


def deactivate_school(s, sc: School, user: User) -> School:
    sc.is_active = False
    sc.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="school.deactivate", entity_type="School", entity_id=sc.id)
    return sc


@dataclass
class ImportSummary:
    created: int = 0
    updated: int = 0
    errors: list[CsvRowError] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "errors": [{"row": e.row_number, "message": e.message} for e in self.errors],
        }


def upsert_school_from_row(s, row: dict) -> tuple[School, bool]:
    """Match on external id, else name+county. Counties/localities are created on demand."""
    county = get_or_create_county(s, row["county"])
    locality = get_or_create_locality(s, county, row["locality"]) if row.get("locality") else None

    sc = None
    if row.get("external_id"):
        sc = s.query(School).filter(School.external_id == row["external_id"]).one_or_none()
    if sc is None:
        sc = (
            s.query(School)
            .filter(func.lower(School.name) == row["name"].lower(), School.county_id == county.id)
            .first()
        )
    now = datetime.utcnow()
    created = sc is None
    if created:
        sc = School(name=row["name"], created_at=now)
        s.add(sc)
    sc.name = row["name"]
    sc.county_id = county.id
    if locality:
        sc.locality_id = locality.id
    for k in ("address", "website", "phone", "email"):
        if row.get(k):
            setattr(sc, k, row[k])
    if row.get("external_id"):
        sc.external_id = row["external_id"]
    sc.level = row.get("level") or sc.level or "primary"
    sc.is_active = True
    sc.csv_source_row = row.get("source_row")
    sc.updated_at = now
    s.flush()
    return sc, created


def import_school_rows(s, rows: list[dict], errors: list[CsvRowError], *, user: User | None = None) -> ImportSummary:
    summary = ImportSummary(errors=list(errors))
    for row in rows:
        try:
            with s.begin_nested():
                _, created = upsert_school_from_row(s, row)
        except Exception as e:
            summary.errors.append(CsvRowError(row.get("row_number", 0), f"{row.get('name')}: {e}"))
            continue
        if created:
            summary.created += 1
        else:
            summary.updated += 1
    record_event(
        s,
        actor=user,
        action="school.csv_import",
        entity_type="School",
        metadata={"created": summary.created, "updated": summary.updated, "errors": len(summary.errors)},
    )
    return summary
