"""Tests for wanted-item requests and the listings that match them."""


def _request_body(marketplace, **overrides):
    body = {
        "product_type_id": marketplace["product_type_id"],
        "locality_id": marketplace["locality_id"],
        "size": "Age 7-8",
        "description": "Looking for a white shirt",
        "max_price": "10.00",
    }
    body.update(overrides)
    return body


def test_create_request_needs_permission_and_locality(user_client, make_user, client_for, marketplace):
    r = user_client.post("/api/requests", json=_request_body(marketplace, locality_id=None))
    assert r.status_code == 400
    assert r.json["details"]["locality_id"] == "Field required"

    r = user_client.post("/api/requests", json=_request_body(marketplace, product_type_id=9999))
    assert r.status_code == 400
    assert r.json["details"]["product_type_id"] == "Unknown product type"

    r = user_client.post("/api/requests", json=_request_body(marketplace, max_price="20000"))
    assert r.status_code == 400
    assert "max_price" in r.json["details"]

    r = user_client.post("/api/requests", json=_request_body(marketplace))
    assert r.status_code == 201
    data = r.json["data"]
    assert data["status"] == "open"
    assert data["user_id"] is not None
    assert data["locality_name"] == "Cobh"
    assert data["county_name"] == "Cork"
    assert data["max_price"] == "10.00"

    make_user("plain@example.com", role="user")
    plain = client_for("plain@example.com")
    assert plain.post("/api/requests", json=_request_body(marketplace)).status_code == 403


def test_locality_defaults_from_profile(user_client, marketplace):
    user_client.put("/api/me/profile", json={"locality_id": marketplace["locality_id"]})
    r = user_client.post("/api/requests", json=_request_body(marketplace, locality_id=None))
    assert r.status_code == 201
    assert r.json["data"]["locality_id"] == marketplace["locality_id"]


def test_request_board_and_matches(client, user_client, make_user, client_for, marketplace):
    request_id = user_client.post("/api/requests", json=_request_body(marketplace)).json["data"]["id"]

    make_user("seller@example.com", role="family")
    seller = client_for("seller@example.com")
    assert seller.post("/api/listings", json=marketplace["payload"]()).status_code == 201
    assert seller.post("/api/listings", json=marketplace["payload"](price="25.00")).status_code == 201

    r = client.get("/api/requests")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 1
    row = r.json["data"][0]
    assert row["user_id"] is None
    assert row["match_count"] == 1

    # Requesters don't see their own posts on the board unless asked.
    assert user_client.get("/api/requests").json["data"] == []
    assert len(user_client.get("/api/requests?include_own=1").json["data"]) == 1

    r = client.get("/api/requests?q=white")
    assert r.json["pagination"]["total"] == 1
    r = client.get("/api/requests?q=blazer")
    assert r.json["pagination"]["total"] == 0
    assert client.get("/api/requests?sort_by=cheapest").status_code == 400
    assert client.get("/api/requests?status=pending").status_code == 400

    r = user_client.get(f"/api/requests/{request_id}")
    assert r.json["is_owner"] is True
    assert [m["price"] for m in r.json["data"]["potential_matches"]] == ["5.00"]

    r = seller.get(f"/api/requests/{request_id}")
    assert r.json["is_owner"] is False
    assert r.json["data"]["potential_matches"] == []


def test_owner_updates_and_deletes(client, user_client, make_user, client_for, marketplace):
    request_id = user_client.post("/api/requests", json=_request_body(marketplace)).json["data"]["id"]

    make_user("other@example.com", role="family")
    other = client_for("other@example.com")
    r = other.put(f"/api/requests/{request_id}", json={"status": "closed"})
    assert r.status_code == 404
    assert r.json["error"] == "Request not found or access denied"

    r = user_client.put(f"/api/requests/{request_id}", json={"status": "fulfilled", "size": "Age 8-9"})
    assert r.status_code == 200
    assert r.json["data"]["status"] == "fulfilled"
    assert r.json["data"]["size"] == "Age 8-9"

    # Only open requests are public.
    assert client.get(f"/api/requests/{request_id}").status_code == 404
    assert user_client.get(f"/api/requests/{request_id}").status_code == 200
    assert client.get("/api/requests").json["data"] == []

    r = user_client.get("/api/requests/mine")
    assert [x["status"] for x in r.json["data"]] == ["fulfilled"]

    assert other.delete(f"/api/requests/{request_id}").status_code == 404
    assert user_client.delete(f"/api/requests/{request_id}").status_code == 200
    assert user_client.get(f"/api/requests/{request_id}").status_code == 404


def test_admin_request_moderation_list(admin_client, user_client, marketplace):
    request_id = user_client.post("/api/requests", json=_request_body(marketplace)).json["data"]["id"]
    user_client.put(f"/api/requests/{request_id}", json={"status": "closed"})

    assert user_client.get("/api/admin/requests").status_code == 403
    r = admin_client.get("/api/admin/requests")
    assert r.status_code == 200
    assert r.json["data"][0]["status"] == "closed"
    assert r.json["data"][0]["user_id"] is not None
    assert admin_client.get("/api/admin/requests?status=open").json["data"] == []
