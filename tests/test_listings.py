"""Tests for listings, the public marketplace search and seller profiles."""
from datetime import datetime, timedelta

from app.spipuniform.db import session_scope
from app.spipuniform.modules.catalog.models import ProductType
from app.spipuniform.modules.geography.service import get_or_create_county, get_or_create_locality
from app.spipuniform.modules.listings.models import Listing


def test_listing_requires_login(client, marketplace):
    assert client.post("/api/listings", json=marketplace["payload"]()).status_code == 401
    assert client.get("/api/listings").status_code == 401


def test_create_listing_matches_attribute_values(user_client, marketplace):
    body = marketplace["payload"](attributes={"size": "age 7-8", "color": "white", "brand": "Dunnes"})
    r = user_client.post("/api/listings", json=body)
    assert r.status_code == 201
    data = r.json["data"]
    assert data["status"] == "active"
    assert data["price"] == "5.00"
    assert data["seller_name"] == "Parent"
    assert data["locality_name"] == "Cobh"
    assert data["published_at"] is not None

    published = datetime.fromisoformat(data["published_at"])
    expires = datetime.fromisoformat(data["expires_at"])
    assert expires - published == timedelta(days=60)

    attrs = {a["slug"]: a for a in data["attributes"]}
    assert [a["slug"] for a in data["attributes"]] == ["size", "color", "brand"]
    assert attrs["size"]["value"] == "Age 7-8"
    assert attrs["color"]["display_name"] == "White"
    assert attrs["color"]["custom"] is False
    assert attrs["brand"]["value"] == "Dunnes"
    assert attrs["brand"]["custom"] is True


def test_listing_validation(user_client, marketplace):
    payload = marketplace["payload"]

    r = user_client.post("/api/listings", json=payload(price=None))
    assert r.status_code == 400
    assert r.json["details"]["price"] == "Field required"

    r = user_client.post("/api/listings", json=payload(attributes={"color": "Navy"}))
    assert r.status_code == 400
    assert "attributes.size" in r.json["details"]

    r = user_client.post("/api/listings", json=payload(attributes={"size": "S", "color": "Navy", "sleeve": "long"}))
    assert r.status_code == 400
    assert r.json["details"]["attributes.sleeve"] == "Unknown attribute"

    r = user_client.post("/api/listings", json=payload(category_id=marketplace["category_id"] + 1))
    assert r.status_code == 400
    assert r.json["details"]["product_type_id"] == "Category mismatch"

    r = user_client.post("/api/listings", json=payload(condition_id=9999))
    assert r.status_code == 400
    assert r.json["details"]["condition_id"] == "Unknown condition"

    r = user_client.post("/api/listings", json=payload(price="-1"))
    assert r.status_code == 400

    r = user_client.post("/api/listings", json=payload(title=""))
    assert r.status_code == 400

    # No locality on the listing or the profile.
    r = user_client.post("/api/listings", json=payload(locality_id=None))
    assert r.status_code == 400
    assert r.json["details"]["locality_id"] == "Field required"


def test_free_and_draft_listings(user_client, marketplace):
    r = user_client.post("/api/listings", json=marketplace["payload"](is_free=True, price="9.99"))
    assert r.status_code == 201
    assert r.json["data"]["is_free"] is True
    assert r.json["data"]["price"] is None

    # Drafts may skip the price and required attributes.
    r = user_client.post("/api/listings", json=marketplace["payload"](status="draft", price=None, attributes={}))
    assert r.status_code == 201
    draft = r.json["data"]
    assert draft["published_at"] is None

    r = user_client.put(f"/api/listings/{draft['id']}", json={"status": "active"})
    assert r.status_code == 400

    r = user_client.put(
        f"/api/listings/{draft['id']}",
        json={"status": "active", "price": "3.50", "attributes": {"size": "M", "color": "Grey"}},
    )
    assert r.status_code == 200
    assert r.json["data"]["status"] == "active"
    assert r.json["data"]["published_at"] is not None


def test_locality_defaults_from_profile(app, user_client, marketplace):
    r = user_client.get("/api/me/profile")
    assert r.json["data"]["locality_id"] is None

    r = user_client.put("/api/me/profile", json={"phone": "087 123 4567", "locality_id": marketplace["locality_id"]})
    assert r.status_code == 200
    assert r.json["data"]["locality_name"] == "Cobh"

    r = user_client.put("/api/me/profile", json={"primary_school_id": 9999})
    assert r.status_code == 400

    r = user_client.post("/api/listings", json=marketplace["payload"](locality_id=None))
    assert r.status_code == 201
    assert r.json["data"]["locality_id"] == marketplace["locality_id"]


def test_own_listing_list_and_status(user_client, marketplace):
    ids = [user_client.post("/api/listings", json=marketplace["payload"](title=f"Shirt {i}")).json["data"]["id"] for i in range(3)]

    r = user_client.put(f"/api/listings/{ids[0]}", json={"status": "sold"})
    assert r.json["data"]["status"] == "sold"
    assert user_client.delete(f"/api/listings/{ids[1]}").status_code == 200

    r = user_client.get("/api/listings")
    assert [l["id"] for l in r.json["data"]] == [ids[2]]

    r = user_client.get("/api/listings?include_inactive=1")
    assert r.json["pagination"]["total"] == 3

    r = user_client.get("/api/listings?status=removed")
    assert [l["id"] for l in r.json["data"]] == [ids[1]]

    assert user_client.get("/api/listings?status=lost").status_code == 400

    r = user_client.put(f"/api/listings/{ids[1]}", json={"title": "Back again"})
    assert r.status_code == 400


def test_other_users_cannot_touch_listing(app, user_client, make_user, client_for, admin_client, marketplace):
    lid = user_client.post("/api/listings", json=marketplace["payload"]()).json["data"]["id"]
    make_user("other@example.com")
    other = client_for("other@example.com")

    assert other.put(f"/api/listings/{lid}", json={"title": "Mine now"}).status_code == 404
    assert other.delete(f"/api/listings/{lid}").status_code == 404
    assert other.get("/api/listings").json["data"] == []

    # Admins can moderate any listing.
    r = admin_client.put(f"/api/listings/{lid}", json={"title": "Edited by admin"})
    assert r.status_code == 200


def test_listing_detail_visibility_and_views(app, client, user_client, marketplace):
    lid = user_client.post("/api/listings", json=marketplace["payload"]()).json["data"]["id"]
    draft = user_client.post("/api/listings", json=marketplace["payload"](status="draft")).json["data"]["id"]

    r = client.get(f"/api/listings/{lid}")
    assert r.status_code == 200
    assert r.json["data"]["view_count"] == 1
    assert client.get(f"/api/listings/{lid}").json["data"]["view_count"] == 2

    # The owner's own views are not counted.
    assert user_client.get(f"/api/listings/{lid}").json["data"]["view_count"] == 2

    assert client.get(f"/api/listings/{draft}").status_code == 404
    assert user_client.get(f"/api/listings/{draft}").status_code == 200

    with session_scope(app) as s:
        s.get(Listing, lid).expires_at = datetime.utcnow() - timedelta(days=1)
    assert client.get(f"/api/listings/{lid}").status_code == 404
    assert client.get("/api/listings/9999").status_code == 404


def test_marketplace_search_filters(app, client, user_client, marketplace):
    payload = marketplace["payload"]
    with session_scope(app) as s:
        kerry = get_or_create_county(s, "Kerry")
        tralee_id = get_or_create_locality(s, kerry, "Tralee").id
        kerry_id = kerry.id
        polo = s.query(ProductType).filter(ProductType.slug == "polo-shirt").one().id

    user_client.post("/api/listings", json=payload(title="Navy jumper shirt", price="12.00"))
    user_client.post("/api/listings", json=payload(title="Free shirt", is_free=True, locality_id=tralee_id))
    user_client.post("/api/listings", json=payload(title="Polo", product_type_id=polo, description="Green polo"))
    user_client.post("/api/listings", json=payload(title="Hidden draft", status="draft"))

    r = client.get("/api/marketplace/search")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 3

    r = client.get("/api/marketplace/search?q=green")
    assert [l["title"] for l in r.json["data"]] == ["Polo"]

    r = client.get("/api/marketplace/search?free=true")
    assert [l["title"] for l in r.json["data"]] == ["Free shirt"]

    r = client.get(f"/api/marketplace/search?county_id={kerry_id}")
    assert [l["title"] for l in r.json["data"]] == ["Free shirt"]

    r = client.get(f"/api/marketplace/search?product_type_id={polo}")
    assert [l["title"] for l in r.json["data"]] == ["Polo"]

    r = client.get("/api/marketplace/search?min_price=10")
    assert [l["title"] for l in r.json["data"]] == ["Navy jumper shirt"]

    r = client.get("/api/marketplace/search?max_price=6&sort_by=title&sort_order=asc")
    assert [l["title"] for l in r.json["data"]] == ["Free shirt", "Polo"]

    assert client.get("/api/marketplace/search?min_price=10&max_price=5").status_code == 400
    assert client.get("/api/marketplace/search?min_price=cheap").status_code == 400


def test_marketplace_rejects_non_finite_prices(client):
    for raw in ("nan", "inf", "-Infinity", "sNaN"):
        r = client.get(f"/api/marketplace/search?min_price={raw}&max_price=5")
        assert r.status_code == 400, raw
        assert "min_price" in r.json["error"]
