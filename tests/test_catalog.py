"""Tests for the product catalog: public tree, admin CRUD and the default seed."""
from app.spipuniform.db import session_scope
from app.spipuniform.modules.catalog.models import Attribute, ProductCategory
from app.spipuniform.modules.catalog.seed import seed_catalog

ADMIN = "/api/admin/catalog"


def test_seed_catalog_is_idempotent(app):
    with session_scope(app) as s:
        counts = seed_catalog(s)
        assert counts["categories"] == 7
        assert counts["conditions"] == 6
        assert counts["product_types"] == 8
        assert counts["attributes"] == 32

    with session_scope(app) as s:
        again = seed_catalog(s)
        assert set(again.values()) == {0}
        trousers = s.query(Attribute).join(Attribute.product_type).filter(Attribute.slug == "size").all()
        inputs = {a.product_type.slug: a.input_type for a in trousers}
        assert inputs["school-trousers"] == "waist_inseam"
        assert inputs["school-shirt"] == "alpha_sizes"


def test_public_tree_hides_inactive(app, client, marketplace):
    r = client.get("/api/product-categories")
    assert r.status_code == 200
    names = [c["name"] for c in r.json["data"]]
    assert names[0] == "Shirts & Blouses"
    assert len(names) == 7
    shirts = r.json["data"][0]
    assert [t["slug"] for t in shirts["product_types"]] == ["blouse", "polo-shirt", "school-shirt"]

    with session_scope(app) as s:
        s.query(ProductCategory).filter(ProductCategory.slug == "footwear").one().is_active = False

    r = client.get("/api/product-categories")
    assert "Footwear" not in [c["name"] for c in r.json["data"]]

    r = client.get(f"/api/product-categories/{marketplace['category_id']}/types")
    assert len(r.json["data"]) == 3
    assert client.get("/api/product-categories/9999/types").status_code == 404

    r = client.get(f"/api/product-types/{marketplace['product_type_id']}/attributes")
    attrs = r.json["data"]
    assert [a["slug"] for a in attrs] == ["size", "color", "brand", "gender"]
    assert attrs[0]["required"] is True
    assert "Age 7-8" in [v["value"] for v in attrs[0]["values"]]

    r = client.get("/api/conditions")
    assert [c["name"] for c in r.json["data"]][:2] == ["New", "Excellent"]


def test_catalog_admin_requires_permission(client, user_client):
    assert client.get(f"{ADMIN}/categories").status_code == 401
    assert user_client.post(f"{ADMIN}/categories", json={"name": "Hats"}).status_code == 403


def test_category_and_type_crud(admin_client):
    r = admin_client.post(f"{ADMIN}/categories", json={"name": "Hats & Caps"})
    assert r.status_code == 201
    cat = r.json["data"]
    assert cat["slug"] == "hats-and-caps"
    assert cat["is_active"] is True

    r = admin_client.post(f"{ADMIN}/categories", json={"name": "Other Hats", "slug": "Hats and Caps"})
    assert r.status_code == 400
    assert r.json["details"]["slug"] == "Duplicate"

    r = admin_client.post(f"{ADMIN}/categories", json={"description": "no name"})
    assert r.status_code == 400

    r = admin_client.post(f"{ADMIN}/product-types", json={"name": "Sun Hat", "category_id": 9999})
    assert r.status_code == 400
    assert r.json["details"]["category_id"] == "Unknown category"

    r = admin_client.post(f"{ADMIN}/product-types", json={"name": "Sun Hat", "category_id": cat["id"]})
    assert r.status_code == 201
    pt = r.json["data"]

    r = admin_client.get(f"{ADMIN}/categories/{cat['id']}")
    assert [t["name"] for t in r.json["data"]["product_types"]] == ["Sun Hat"]

    r = admin_client.put(f"{ADMIN}/categories/{cat['id']}", json={"name": "Headwear", "sort_order": 9})
    assert r.json["data"]["name"] == "Headwear"
    assert r.json["data"]["slug"] == "hats-and-caps"

    r = admin_client.get(f"{ADMIN}/product-types?category_id={cat['id']}")
    assert [t["id"] for t in r.json["data"]] == [pt["id"]]

    assert admin_client.delete(f"{ADMIN}/product-types/{pt['id']}").status_code == 200
    assert admin_client.delete(f"{ADMIN}/categories/{cat['id']}").status_code == 200
    assert admin_client.get(f"{ADMIN}/categories/{cat['id']}").status_code == 404


def test_attribute_and_value_crud(admin_client, marketplace):
    pt_id = marketplace["product_type_id"]
    r = admin_client.post(f"{ADMIN}/attributes", json={"product_type_id": pt_id, "name": "Crest", "input_type": "material_select"})
    assert r.status_code == 201
    attr = r.json["data"]
    assert attr["slug"] == "crest"
    assert attr["order"] == 5

    r = admin_client.post(f"{ADMIN}/attributes", json={"product_type_id": pt_id, "name": "Crest"})
    assert r.status_code == 400

    r = admin_client.post(f"{ADMIN}/attributes", json={"product_type_id": pt_id, "name": "Bad", "input_type": "slider"})
    assert r.status_code == 400

    r = admin_client.post(f"{ADMIN}/attribute-values", json={"attribute_id": attr["id"], "value": "embroidered"})
    assert r.status_code == 201
    value = r.json["data"]
    assert value["display_name"] == "embroidered"
    assert value["sort_order"] == 1

    r = admin_client.post(f"{ADMIN}/attribute-values", json={"attribute_id": attr["id"], "value": "embroidered"})
    assert r.status_code == 400
    assert r.json["details"]["value"] == "Duplicate"

    r = admin_client.put(f"{ADMIN}/attribute-values/{value['id']}", json={"display_name": "Embroidered", "is_active": False})
    assert r.json["data"]["display_name"] == "Embroidered"

    r = admin_client.get(f"/api/product-types/{pt_id}/attributes")
    crest = next(a for a in r.json["data"] if a["slug"] == "crest")
    assert crest["values"] == []

    assert admin_client.delete(f"{ADMIN}/attribute-values/{value['id']}").status_code == 200
    assert admin_client.delete(f"{ADMIN}/attributes/{attr['id']}").status_code == 200
    assert admin_client.delete(f"{ADMIN}/attributes/{attr['id']}").status_code == 404


def test_delete_blocked_while_listings_use_it(admin_client, user_client, marketplace):
    r = user_client.post("/api/listings", json=marketplace["payload"]())
    assert r.status_code == 201

    r = admin_client.delete(f"{ADMIN}/categories/{marketplace['category_id']}")
    assert r.status_code == 400
    assert "used by 1 listing(s)" in r.json["error"]

    r = admin_client.delete(f"{ADMIN}/product-types/{marketplace['product_type_id']}")
    assert r.status_code == 400

    r = admin_client.delete(f"{ADMIN}/conditions/{marketplace['condition_id']}")
    assert r.status_code == 400

    attrs = admin_client.get(f"/api/product-types/{marketplace['product_type_id']}/attributes").json["data"]
    size = next(a for a in attrs if a["slug"] == "size")
    age_7_8 = next(v for v in size["values"] if v["value"] == "Age 7-8")
    r = admin_client.delete(f"{ADMIN}/attribute-values/{age_7_8['id']}")
    assert r.status_code == 400
    assert "attribute value" in r.json["error"]
    assert admin_client.delete(f"{ADMIN}/attributes/{size['id']}").status_code == 400

    # Unused values of the same attribute can still go.
    unused = next(v for v in size["values"] if v["value"] != "Age 7-8")
    assert admin_client.delete(f"{ADMIN}/attribute-values/{unused['id']}").status_code == 200

    # Deactivating is still allowed.
    r = admin_client.put(f"{ADMIN}/conditions/{marketplace['condition_id']}", json={"is_active": False})
    assert r.status_code == 200
    assert r.json["data"]["is_active"] is False


def test_conditions_crud_and_reorder(admin_client):
    r = admin_client.post(f"{ADMIN}/conditions", json={"name": "New"})
    new_id = r.json["data"]["id"]
    assert r.json["data"]["order"] == 1
    used_id = admin_client.post(f"{ADMIN}/conditions", json={"name": "Used"}).json["data"]["id"]

    r = admin_client.post(f"{ADMIN}/conditions", json={"name": "new"})
    assert r.status_code == 400

    r = admin_client.post(f"{ADMIN}/conditions/reorder", json={"ids": [used_id, new_id]})
    assert r.status_code == 200
    assert [(c["id"], c["order"]) for c in r.json["data"]] == [(used_id, 1), (new_id, 2)]

    r = admin_client.get(f"{ADMIN}/conditions")
    assert [c["name"] for c in r.json["data"]] == ["Used", "New"]

    assert admin_client.post(f"{ADMIN}/conditions/reorder", json={"ids": [used_id, used_id]}).status_code == 400
    r = admin_client.post(f"{ADMIN}/conditions/reorder", json={"ids": [used_id, 9999]})
    assert r.status_code == 400
    assert r.json["details"]["ids"] == "9999"

    assert admin_client.delete(f"{ADMIN}/conditions/{used_id}").status_code == 200
