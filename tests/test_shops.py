"""Tests for shop profiles."""


def test_shop_create_and_owner_access(user_client, make_user, client_for, marketplace):
    r = user_client.post(
        "/api/shops",
        json={"name": "Cobh Uniforms", "contact_email": "shop@example.com", "locality_id": marketplace["locality_id"]},
    )
    assert r.status_code == 201
    shop = r.json["data"]
    assert shop["membership_status"] == "pending"
    assert shop["is_verified"] is False
    assert shop["locality_name"] == "Cobh"
    assert shop["owner_name"] == "Parent"

    make_user("other@example.com")
    other = client_for("other@example.com")
    assert other.get(f"/api/shops/{shop['id']}").status_code == 404
    assert other.put(f"/api/shops/{shop['id']}", json={"name": "Stolen"}).status_code == 404
    assert other.delete(f"/api/shops/{shop['id']}").status_code == 404
    assert other.get("/api/shops").json["data"] == []

    r = user_client.put(f"/api/shops/{shop['id']}", json={"phone": "021 555 0101", "website": "https://cobh.example.ie"})
    assert r.status_code == 200
    assert r.json["data"]["phone"] == "021 555 0101"


def test_shop_validation(user_client):
    assert user_client.post("/api/shops", json={"description": "No name"}).status_code == 400
    assert user_client.post("/api/shops", json={"name": "X", "contact_email": "not-an-email"}).status_code == 400
    assert user_client.post("/api/shops", json={"name": "X", "locality_id": 9999}).status_code == 400
    assert user_client.post("/api/shops", json={"name": "X", "membership_status": "gold"}).status_code == 400


def test_membership_is_admin_only(user_client, admin_client):
    r = user_client.post("/api/shops", json={"name": "Cobh Uniforms", "membership_status": "active"})
    shop_id = r.json["data"]["id"]
    # Ignored for non-admins on create.
    assert r.json["data"]["membership_status"] == "pending"

    r = user_client.put(f"/api/shops/{shop_id}", json={"membership_status": "active"})
    assert r.status_code == 400
    assert r.json["details"]["membership_status"] == "Not allowed"

    r = admin_client.put(f"/api/shops/{shop_id}", json={"membership_status": "cancelled"})
    assert r.status_code == 200
    assert r.json["data"]["membership_status"] == "cancelled"


def test_verify_and_admin_listing(user_client, admin_client):
    first = user_client.post("/api/shops", json={"name": "Alpha Uniforms"}).json["data"]["id"]
    user_client.post("/api/shops", json={"name": "Beta Schoolwear", "description": "Blazers and crests"})
    admin_client.post("/api/shops", json={"name": "Admin Test Shop"})

    assert user_client.post(f"/api/shops/{first}/verify").status_code == 403

    r = admin_client.post(f"/api/shops/{first}/verify")
    assert r.status_code == 200
    assert r.json["data"]["is_verified"] is True
    assert r.json["data"]["membership_status"] == "active"
    assert r.json["data"]["verified_at"] is not None

    # Admins only see their own shops unless they ask for all of them.
    r = admin_client.get("/api/shops")
    assert [x["name"] for x in r.json["data"]] == ["Admin Test Shop"]

    r = admin_client.get("/api/shops?all=1&sort_by=name&sort_order=asc")
    assert [x["name"] for x in r.json["data"]] == ["Admin Test Shop", "Alpha Uniforms", "Beta Schoolwear"]

    r = admin_client.get("/api/shops?all=1&verified=true")
    assert [x["name"] for x in r.json["data"]] == ["Alpha Uniforms"]

    r = admin_client.get("/api/shops?all=1&search=blazer")
    assert [x["name"] for x in r.json["data"]] == ["Beta Schoolwear"]

    assert admin_client.get("/api/shops?membership_status=gold").status_code == 400

    # all=1 means nothing for regular users.
    r = user_client.get("/api/shops?all=1")
    assert r.json["pagination"]["total"] == 2

    assert admin_client.delete(f"/api/shops/{first}").status_code == 200
    assert user_client.get(f"/api/shops/{first}").status_code == 404
