from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import func

from app.spipuniform.audit import record_event
from app.spipuniform.errors import ValidationFailed
from app.spipuniform.models import User
from app.spipuniform.modules.geography.models import County, Locality
from app.spipuniform.modules.geography.overpass_client import IRISH_COUNTY_BOUNDS, OverpassClient, Place
from app.spipuniform.utils import iso

logger = logging.getLogger(__name__)

INSERT_BATCH_SIZE = 100


@dataclass
class IngestResult:
    county_id: int
    county_name: str
    fetched: int = 0
    inserted: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "county_id": self.county_id,
            "county_name": self.county_name,
            "fetched": self.fetched,
            "inserted": self.inserted,
            "skipped": self.skipped,
        }


def county_to_dict(c: County, locality_count: int | None = None) -> dict[str, Any]:
    d = {
        "id": c.id,
        "name": c.name,
        "osm_id": c.osm_id,
        "bounding_box": c.bounding_box,
        "created_at": iso(c.created_at),
        "updated_at": iso(c.updated_at),
    }
    if locality_count is not None:
        d["locality_count"] = locality_count
    return d


def locality_to_dict(l: Locality) -> dict[str, Any]:
    return {
        "id": l.id,
        "county_id": l.county_id,
        "county_name": l.county.name if l.county else None,
        "name": l.name,
        "osm_id": l.osm_id,
        "place_type": l.place_type,
        "centre_lat": l.centre_lat,
        "centre_lng": l.centre_lng,
    }


def place_to_dict(p: Place, county: County) -> dict[str, Any]:
    """OSM result not (yet) stored as a locality; same keys as locality_to_dict."""
    return {
        "id": None,
        "county_id": county.id,
        "county_name": county.name,
        "name": p.name,
        "osm_id": str(p.osm_id),
        "place_type": p.place_type,
        "centre_lat": p.lat,
        "centre_lng": p.lon,
        "source": "osm",
    }


def get_county_by_name(s, name: str) -> County | None:
    name = (name or "").strip()
    if name.lower().startswith("county "):
        name = name[7:].strip()
    return s.query(County).filter(func.lower(County.name) == name.lower()).one_or_none()


def get_or_create_county(s, name: str) -> County:
    c = get_county_by_name(s, name)
    if c:
        return c
    clean = name.strip()
    if clean.lower().startswith("county "):
        clean = clean[7:].strip()
    clean = clean[:1].upper() + clean[1:]
    bounds = IRISH_COUNTY_BOUNDS.get(clean.lower())
    c = County(
        name=clean,
        bounding_box=(
            {"min_lat": bounds[0], "max_lat": bounds[1], "min_lon": bounds[2], "max_lon": bounds[3]} if bounds else None
        ),
    )
    s.add(c)
    s.flush()
    return c


def seed_irish_counties(s) -> int:
    """Creates the 26 counties with their bounding boxes; returns how many were new."""
    created = 0
    for name in IRISH_COUNTY_BOUNDS:
        if not get_county_by_name(s, name):
            get_or_create_county(s, name)
            created += 1
    return created


def get_or_create_locality(s, county: County, name: str) -> Locality:
    name = name.strip()
    loc = (
        s.query(Locality)
        .filter(Locality.county_id == county.id, func.lower(Locality.name) == name.lower())
        .one_or_none()
    )
    if loc:
        return loc
    loc = Locality(county_id=county.id, name=name)
    s.add(loc)
    s.flush()
    return loc


def ingest_places(s, county: County, places: list[Place]) -> IngestResult:
    """
    Insert places not already present in the county (case-insensitive match on name).
    Rows are added in batches of INSERT_BATCH_SIZE.
    """
    result = IngestResult(county_id=county.id, county_name=county.name, fetched=len(places))
    existing = {
        (n or "").strip().lower()
        for (n,) in s.query(Locality.name).filter(Locality.county_id == county.id).all()
    }
    pending: list[Locality] = []
    now = datetime.utcnow()
    for p in places:
        key = p.name.strip().lower()
        if not key or key in existing:
            result.skipped += 1
            continue
        existing.add(key)
        pending.append(
            Locality(
                county_id=county.id,
                name=p.name.strip(),
                osm_id=str(p.osm_id) if p.osm_id else None,
                place_type=p.place_type,
                centre_lat=p.lat,
                centre_lng=p.lon,
                created_at=now,
                updated_at=now,
            )
        )
        if len(pending) >= INSERT_BATCH_SIZE:
            s.add_all(pending)
            s.flush()
            result.inserted += len(pending)
            pending = []
    if pending:
        s.add_all(pending)
        s.flush()
        result.inserted += len(pending)
    return result


def fetch_localities_for_county(s, county: County, client: OverpassClient, *, user: User | None = None) -> IngestResult:
    places = client.fetch_towns_for_county(county.name)
    result = ingest_places(s, county, places)
    county.updated_at = datetime.utcnow()
    logger.info(
        "Localities for %s: fetched=%s inserted=%s skipped=%s",
        county.name,
        result.fetched,
        result.inserted,
        result.skipped,
    )
    record_event(
        s,
        actor=user,
        action="geography.localities_fetch",
        entity_type="County",
        entity_id=county.id,
        metadata=result.to_dict(),
    )
    return result


def search_localities(s, q: str, *, county_id: int | None = None, limit: int = 20) -> list[Locality]:
    query = s.query(Locality)
    if county_id:
        query = query.filter(Locality.county_id == county_id)
    q = (q or "").strip()
    if q:
        query = query.filter(Locality.name.ilike(f"%{q}%"))
        # Prefix matches first.
        query = query.order_by(func.lower(Locality.name).like(f"{q.lower()}%").desc(), Locality.name.asc())
    else:
        query = query.order_by(Locality.name.asc())
    return query.limit(limit).all()


def require_locality(s, locality_id: int | None) -> Locality | None:
    if locality_id is None:
        return None
    loc = s.get(Locality, locality_id)
    if not loc:
        raise ValidationFailed("Locality not found", details={"locality_id": "Unknown locality"})
    return loc


def require_county(s, county_id: int | None) -> County | None:
    if county_id is None:
        return None
    c = s.get(County, county_id)
    if not c:
        raise ValidationFailed("County not found", details={"county_id": "Unknown county"})
    return c
