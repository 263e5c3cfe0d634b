"""Tests for schools: CRUD, filters and CSV import."""
import io

from app.spipuniform.db import session_scope
from app.spipuniform.modules.geography.models import County
from app.spipuniform.modules.geography.service import get_or_create_county, get_or_create_locality
from app.spipuniform.modules.schools.csv_import import normalize_level, parse_schools_csv

CSV = (
    "Roll Number,Official School Name,Address (1),Address (2),County,Town,School Level\n"
    "12345A,Scoil Mhuire,Main Street,Cobh,Cork,Cobh,Primary\n"
    "67890B,St. Colman's College,Midleton Road,,Cork,Fermoy,Post Primary\n"
    ",Nameless Row,,,Cork,,\n"
    "55555C,,,,Cork,,\n"
    "11111D,Odd School,,,Kerry,,University\n"
    "22222E,Gaelscoil,,,,,\n"
)


def _geo(app):
    with session_scope(app) as s:
        cork = get_or_create_county(s, "Cork")
        kerry = get_or_create_county(s, "Kerry")
        cobh = get_or_create_locality(s, cork, "Cobh")
        tralee = get_or_create_locality(s, kerry, "Tralee")
        return cork.id, kerry.id, cobh.id, tralee.id


def test_normalize_level():
    assert normalize_level("Primary") == "primary"
    assert normalize_level("National School") == "primary"
    assert normalize_level("Post Primary") == "secondary"
    assert normalize_level("mixed") == "mixed"
    assert normalize_level("") is None
    assert normalize_level("University") is None


def test_parse_schools_csv_collects_row_errors():
    rows, errors = parse_schools_csv(CSV.encode("utf-8-sig"))
    assert [r["name"] for r in rows] == ["Scoil Mhuire", "St. Colman's College", "Nameless Row"]
    assert rows[0]["address"] == "Main Street, Cobh"
    assert rows[0]["external_id"] == "12345A"
    assert rows[1]["level"] == "secondary"
    assert rows[2]["level"] == "primary"
    assert rows[2]["external_id"] is None
    assert [e.row_number for e in errors] == [5, 6, 7]
    assert "Unknown school level" in errors[1].message


def test_schools_public_listing_and_filters(app, admin_client, client):
    cork_id, kerry_id, cobh_id, tralee_id = _geo(app)
    admin_client.post("/api/schools", json={"name": "Scoil Mhuire", "county_id": cork_id, "locality_id": cobh_id})
    admin_client.post("/api/schools", json={"name": "Tralee CBS", "county_id": kerry_id, "locality_id": tralee_id, "level": "secondary"})
    closed = admin_client.post("/api/schools", json={"name": "Closed NS", "county_id": cork_id}).json["data"]["id"]
    assert admin_client.delete(f"/api/schools/{closed}").status_code == 200

    r = client.get("/api/schools")
    assert r.status_code == 200
    assert [x["name"] for x in r.json["data"]] == ["Scoil Mhuire", "Tralee CBS"]

    r = client.get(f"/api/schools?county_id={kerry_id}")
    assert [x["name"] for x in r.json["data"]] == ["Tralee CBS"]
    assert r.json["data"][0]["locality_name"] == "Tralee"

    r = client.get("/api/schools?level=secondary")
    assert [x["name"] for x in r.json["data"]] == ["Tralee CBS"]
    assert client.get("/api/schools?level=college").status_code == 400

    r = client.get("/api/schools?active=false")
    assert [x["name"] for x in r.json["data"]] == ["Closed NS"]

    r = client.get("/api/schools?q=mhuire")
    assert r.json["pagination"]["total"] == 1


def test_school_validation(app, admin_client, user_client):
    cork_id, kerry_id, cobh_id, tralee_id = _geo(app)

    assert user_client.post("/api/schools", json={"name": "X"}).status_code == 403

    r = admin_client.post("/api/schools", json={"county_id": cork_id})
    assert r.status_code == 400
    assert r.json["details"]["name"] == "Field required"

    r = admin_client.post("/api/schools", json={"name": "Wrong Place", "county_id": cork_id, "locality_id": tralee_id})
    assert r.status_code == 400
    assert "locality_id" in r.json["details"]

    r = admin_client.post("/api/schools", json={"name": "Ghost", "county_id": 9999})
    assert r.status_code == 400

    sid = admin_client.post("/api/schools", json={"name": "A", "external_id": "R1"}).json["data"]["id"]
    r = admin_client.post("/api/schools", json={"name": "B", "external_id": "R1"})
    assert r.status_code == 400
    assert r.json["details"]["external_id"] == "Duplicate"

    r = admin_client.put(f"/api/schools/{sid}", json={"website": "https://a.example.ie", "level": None})
    assert r.status_code == 200
    assert r.json["data"]["website"] == "https://a.example.ie"
    assert r.json["data"]["level"] == "primary"

    assert admin_client.put("/api/schools/9999", json={}).status_code == 404


def test_csv_import_endpoint_upserts(app, admin_client):
    r = admin_client.post(
        "/api/schools/import",
        data={"file": (io.BytesIO(CSV.encode("utf-8")), "schools.csv")},
        content_type="multipart/form-data",
    )
    assert r.status_code == 200
    data = r.json["data"]
    assert data["created"] == 3
    assert data["updated"] == 0
    assert len(data["errors"]) == 3

    # Counties and towns are created on demand.
    with session_scope(app) as s:
        assert s.query(County).filter(County.name == "Cork").count() == 1

    r = admin_client.get("/api/schools?q=Colman")
    school = r.json["data"][0]
    assert school["locality_name"] == "Fermoy"
    assert school["level"] == "secondary"

    # Second run matches by roll number / name+county.
    r = admin_client.post(
        "/api/schools/import",
        data={"file": (io.BytesIO(CSV.encode("utf-8")), "schools.csv")},
        content_type="multipart/form-data",
    )
    assert r.json["data"]["created"] == 0
    assert r.json["data"]["updated"] == 3


def test_csv_import_requires_file(admin_client):
    r = admin_client.post("/api/schools/import", data={}, content_type="multipart/form-data")
    assert r.status_code == 400
    assert r.json["details"]["file"] == "Field required"
