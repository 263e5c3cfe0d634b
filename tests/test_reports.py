"""Tests for reporting listings/requests and handling those reports."""


def test_report_a_listing_and_resolve_it(admin_client, user_client, make_user, client_for, marketplace):
    make_user("seller@example.com", role="family")
    seller = client_for("seller@example.com")
    listing_id = seller.post("/api/listings", json=marketplace["payload"]()).json["data"]["id"]

    r = user_client.post("/api/reports", json={"reason": "scam", "description": "Asked me to pay up front"})
    assert r.status_code == 400
    assert r.json["error"] == "Either listing_id or request_id must be provided"

    r = user_client.post("/api/reports", json={"listing_id": listing_id, "reason": "scam", "description": "short"})
    assert r.status_code == 400
    assert "description" in r.json["details"]

    r = user_client.post("/api/reports", json={"listing_id": 9999, "reason": "scam", "description": "Asked me to pay up front"})
    assert r.status_code == 404

    r = user_client.post(
        "/api/reports",
        json={"listing_id": listing_id, "reason": "scam", "description": "Asked me to pay up front"},
    )
    assert r.status_code == 201
    report_id = r.json["data"]["id"]
    assert r.json["data"]["status"] == "open"

    assert user_client.get("/api/reports").status_code == 403
    assert user_client.put(f"/api/reports/{report_id}", json={"status": "resolved"}).status_code == 403

    r = admin_client.get("/api/reports?status=open")
    assert r.status_code == 200
    assert r.json["pagination"]["total"] == 1
    assert r.json["data"][0]["listing_title"] == "White school shirt"
    assert r.json["data"][0]["reporter_email"] == "parent@example.com"

    r = admin_client.put(f"/api/reports/{report_id}", json={"status": "resolved", "handler_notes": "Listing removed"})
    assert r.status_code == 200
    data = r.json["data"]
    assert data["status"] == "resolved"
    assert data["handler_notes"] == "Listing removed"
    assert data["handled_by"] is not None
    assert data["handled_at"] is not None

    assert admin_client.get("/api/reports?status=open").json["data"] == []
    assert admin_client.get("/api/reports?status=closed").status_code == 400
    assert admin_client.put("/api/reports/9999", json={"status": "resolved"}).status_code == 404


def test_report_a_request(admin_client, user_client, marketplace):
    body = {"product_type_id": marketplace["product_type_id"], "locality_id": marketplace["locality_id"]}
    request_id = user_client.post("/api/requests", json=body).json["data"]["id"]
    r = user_client.post(
        "/api/reports",
        json={"request_id": request_id, "reason": "spam", "description": "Same post repeated everywhere"},
    )
    assert r.status_code == 201
    r = admin_client.get("/api/reports")
    assert r.json["data"][0]["request_id"] == request_id
