"""Tests for the children listed on a parent's profile."""
from datetime import date, timedelta

from app.spipuniform.db import session_scope
from app.spipuniform.modules.schools.models import School


def test_family_members_need_permission(client, make_user, client_for):
    assert client.get("/api/profiles/family-members").status_code == 401
    make_user("plain@example.com", role="user")
    plain = client_for("plain@example.com")
    assert plain.get("/api/profiles/family-members").status_code == 403


def test_family_member_crud(app, user_client):
    with session_scope(app) as s:
        school = School(name="Scoil Mhuire", level="primary")
        s.add(school)
        s.flush()
        school_id = school.id

    r = user_client.post(
        "/api/profiles/family-members",
        json={
            "first_name": " Aoife ",
            "school_id": school_id,
            "school_year": "2nd class",
            "current_sizes": {"shirt": "Age 7-8", "jumper": " ", " ": "Age 8"},
        },
    )
    assert r.status_code == 201
    member = r.json["data"]
    assert member["first_name"] == "Aoife"
    assert member["school_name"] == "Scoil Mhuire"
    assert member["current_sizes"] == {"shirt": "Age 7-8"}
    assert member["show_in_profile"] is True
    assert member["is_active"] is True

    r = user_client.put(
        f"/api/profiles/family-members/{member['id']}",
        json={"current_sizes": {"shirt": "Age 8-9"}, "is_active": False},
    )
    assert r.status_code == 200
    assert r.json["data"]["current_sizes"] == {"shirt": "Age 8-9"}

    assert len(user_client.get("/api/profiles/family-members").json["data"]) == 1
    assert user_client.get("/api/profiles/family-members?include_inactive=0").json["data"] == []

    r = user_client.delete(f"/api/profiles/family-members/{member['id']}")
    assert r.status_code == 200
    assert user_client.get(f"/api/profiles/family-members/{member['id']}").status_code == 404


def test_family_member_validation(user_client):
    r = user_client.post("/api/profiles/family-members", json={"last_name": "Murphy"})
    assert r.status_code == 400
    assert r.json["details"]["first_name"] == "First name is required"

    tomorrow = (date.today() + timedelta(days=1)).isoformat()
    r = user_client.post("/api/profiles/family-members", json={"first_name": "Sean", "date_of_birth": tomorrow})
    assert r.status_code == 400
    assert r.json["details"]["date_of_birth"] == "Date of birth cannot be in the future"

    r = user_client.post("/api/profiles/family-members", json={"first_name": "Sean", "school_id": 9999})
    assert r.status_code == 400
    assert r.json["details"]["school_id"] == "Unknown school"

    r = user_client.post("/api/profiles/family-members", json={"first_name": "Sean", "date_of_birth": "2018-03-01"})
    assert r.status_code == 201
    assert r.json["data"]["date_of_birth"] == "2018-03-01"


def test_family_members_are_private(user_client, make_user, client_for):
    member_id = user_client.post("/api/profiles/family-members", json={"first_name": "Aoife"}).json["data"]["id"]
    make_user("other@example.com", role="family")
    other = client_for("other@example.com")
    assert other.get(f"/api/profiles/family-members/{member_id}").status_code == 404
    assert other.put(f"/api/profiles/family-members/{member_id}", json={"first_name": "X"}).status_code == 404
    assert other.delete(f"/api/profiles/family-members/{member_id}").status_code == 404
    assert other.get("/api/profiles/family-members").json["data"] == []
