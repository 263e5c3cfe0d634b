"""Tests for uploads, the file manager and storage settings."""
import hashlib
import io

import pytest

PNG = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64


def _upload(c, data=PNG, name="shirt.png", **form):
    body = {"file": (io.BytesIO(data), name)}
    body.update(form)
    return c.post("/api/upload", data=body, content_type="multipart/form-data")


def test_upload_listing_image_and_download(client, user_client):
    r = _upload(user_client, alt_text="Front view")
    assert r.status_code == 201
    f = r.json["data"]
    assert f["mime_type"] == "image/png"
    assert f["size"] == len(PNG)
    assert f["sha256"] == hashlib.sha256(PNG).hexdigest()
    assert f["is_public"] is True
    assert f["provider"] == "local"
    assert f["metadata"]["alt_text"] == "Front view"
    assert f["metadata"]["category"] == "listing"

    # Public images are readable without a session.
    r = client.get(f["url"])
    assert r.status_code == 200
    assert r.data == PNG
    assert r.mimetype == "image/png"

    r = client.get(f"{f['url']}?download=1")
    assert "attachment" in r.headers["Content-Disposition"]


def test_upload_validation(client, user_client):
    assert _upload(client).status_code == 401

    r = _upload(user_client, data=b"hello", name="notes.txt")
    assert r.status_code == 400
    assert "Only JPG, PNG, WebP and GIF" in r.json["error"]

    r = _upload(user_client, data=b"hello", name="notes.txt", category="profile")
    assert r.status_code == 400

    r = _upload(user_client, category="avatar")
    assert r.status_code == 400

    r = _upload(user_client, data=b"", name="empty.png")
    assert r.status_code == 400

    r = _upload(user_client, data=b"MZ\x90\x00", name="setup.exe", category="document")
    assert r.status_code == 400
    assert "is not allowed" in r.json["error"]

    r = user_client.post("/api/upload", data={}, content_type="multipart/form-data")
    assert r.status_code == 400


def test_private_document_access(client, user_client, admin_client, make_user, client_for):
    r = _upload(user_client, data=b"receipt", name="receipt.txt", category="document")
    assert r.status_code == 201
    f = r.json["data"]
    assert f["is_public"] is False

    assert client.get(f["url"]).status_code == 404
    assert user_client.get(f["url"]).data == b"receipt"

    make_user("other@example.com")
    other = client_for("other@example.com")
    assert other.get(f"/api/files/{f['id']}").status_code == 404
    assert other.delete(f"/api/files/{f['id']}").status_code == 404

    # File managers can see everything.
    assert admin_client.get(f"/api/files/{f['id']}").status_code == 200


def test_folders_and_soft_delete(user_client):
    r = user_client.post("/api/files/folders", json={"name": "Photos"})
    assert r.status_code == 201
    photos = r.json["data"]
    assert photos["path"] == "/Photos"
    assert "url" not in photos

    assert user_client.post("/api/files/folders", json={"name": "Photos"}).status_code == 400

    r = user_client.post("/api/files/folders", json={"name": "2025/Autumn", "parent_id": photos["id"]})
    autumn = r.json["data"]
    assert autumn["path"] == "/Photos/2025-Autumn"

    r = _upload(user_client, parent_id=str(autumn["id"]))
    assert r.status_code == 201
    img = r.json["data"]
    assert img["path"] == "/Photos/2025-Autumn/shirt.png"

    assert user_client.post("/api/files/folders", json={"name": "x", "parent_id": img["id"]}).status_code == 400
    assert _upload(user_client, parent_id="abc").status_code == 400

    r = user_client.get("/api/files")
    assert [x["name"] for x in r.json["data"]] == ["Photos"]
    r = user_client.get(f"/api/files?parent_id={autumn['id']}")
    assert [x["name"] for x in r.json["data"]] == ["shirt.png"]

    r = user_client.delete(f"/api/files/{photos['id']}")
    assert r.status_code == 200
    assert r.json["data"]["deleted"] == 3

    assert user_client.get("/api/files").json["data"] == []
    assert user_client.get(f"/api/files/{img['id']}").status_code == 404
    assert user_client.get(img["url"]).status_code == 404


def test_listing_images_reference_uploads(user_client, make_user, client_for, marketplace):
    img = _upload(user_client).json["data"]
    doc = _upload(user_client, data=b"private", name="notes.txt", category="document").json["data"]

    r = user_client.post("/api/listings", json=marketplace["payload"](images=[{"file_id": img["id"], "alt_text": "Front"}]))
    assert r.status_code == 201
    images = r.json["data"]["images"]
    assert images[0]["url"] == img["url"]
    assert images[0]["order"] == 0

    # Someone else's private file can't be attached.
    make_user("other@example.com")
    other = client_for("other@example.com")
    r = other.post("/api/listings", json=marketplace["payload"](images=[{"file_id": doc["id"]}]))
    assert r.status_code == 400
    assert "images" in r.json["details"]


def test_storage_settings_permissions(user_client):
    assert user_client.get("/api/storage-settings").status_code == 403


def test_storage_settings_masking_and_activation(admin_client, tmp_path):
    r = admin_client.post(
        "/api/storage-settings",
        json={
            "provider": "s3",
            "name": "Spaces",
            "config": {"bucket": "uniforms", "access_key_id": "AKIA", "secret_access_key": "topsecret"},
        },
    )
    assert r.status_code == 201
    s3 = r.json["data"]
    assert s3["config"]["secret_access_key"] == "********"
    assert s3["config"]["access_key_id"] == "AKIA"
    assert s3["is_active"] is False

    # Sending the mask back keeps the stored secret.
    r = admin_client.put(
        f"/api/storage-settings/{s3['id']}",
        json={"config": {"secret_access_key": "********", "region": "eu-west-1"}},
    )
    assert r.status_code == 200
    assert r.json["data"]["config"]["region"] == "eu-west-1"
    assert r.json["data"]["config"]["secret_access_key"] == "********"

    r = admin_client.post(
        "/api/storage-settings",
        json={"provider": "local", "name": "Disk", "config": {"base_path": str(tmp_path / "disk")}, "is_active": True},
    )
    disk = r.json["data"]
    assert disk["is_active"] is True

    r = admin_client.post(f"/api/storage-settings/{s3['id']}/activate")
    assert r.json["data"]["is_active"] is True
    assert admin_client.get(f"/api/storage-settings/{disk['id']}").json["data"]["is_active"] is False

    r = admin_client.delete(f"/api/storage-settings/{s3['id']}")
    assert r.status_code == 400
    assert admin_client.delete(f"/api/storage-settings/{disk['id']}").status_code == 200
    assert admin_client.get(f"/api/storage-settings/{disk['id']}").status_code == 404

    assert admin_client.post("/api/storage-settings", json={"name": "No provider"}).status_code == 400
    assert admin_client.post("/api/storage-settings", json={"provider": "ftp", "name": "Old"}).status_code == 400


def test_storage_settings_connection_test(admin_client, tmp_path):
    disk = admin_client.post(
        "/api/storage-settings",
        json={"provider": "local", "name": "Disk", "config": {"base_path": str(tmp_path / "disk")}},
    ).json["data"]
    r = admin_client.post(f"/api/storage-settings/{disk['id']}/test")
    assert r.status_code == 200
    assert r.json["data"] == {"ok": True, "message": "local storage connection successful"}

    broken = admin_client.post("/api/storage-settings", json={"provider": "s3", "name": "No bucket", "config": {}}).json["data"]
    r = admin_client.post(f"/api/storage-settings/{broken['id']}/test")
    assert r.json["success"] is False
    assert "bucket" in r.json["data"]["message"]


def test_active_settings_drive_uploads(admin_client, user_client, tmp_path):
    admin_client.post(
        "/api/storage-settings",
        json={
            "provider": "local",
            "name": "Small disk",
            "config": {"base_path": str(tmp_path / "small"), "max_file_size": 16, "allowed_mime_types": ["image/png"]},
            "is_active": True,
        },
    )

    r = _upload(user_client)
    assert r.status_code == 400
    assert "File size too large" in r.json["error"]

    r = _upload(user_client, data=b"\x89PNG tiny")
    assert r.status_code == 201
    assert list((tmp_path / "small" / "uploads" / "listing").iterdir())
    assert user_client.get(r.json["data"]["url"]).data == b"\x89PNG tiny"

    r = _upload(user_client, data=b"GIF89a", name="x.gif")
    assert r.status_code == 400


def test_build_storage_providers(tmp_path):
    from app.spipuniform.storage import LocalStorage, StorageError, build_storage

    assert isinstance(build_storage("LOCAL", {"base_path": str(tmp_path)}, {}), LocalStorage)
    with pytest.raises(StorageError):
        build_storage("pcloud", None, {})
    with pytest.raises(StorageError):
        build_storage("s3", {}, {})
