"""Tests for roles, users, moderation and the approval queue."""
from app.spipuniform.db import session_scope
from app.spipuniform.models import PENDING_APPROVAL, User
from app.spipuniform.rbac import PERMISSIONS


def test_endpoints_require_auth(client):
    assert client.get("/api/roles").status_code == 401
    assert client.get("/api/users").status_code == 401
    assert client.get("/api/my-permissions").status_code == 401


def test_family_user_forbidden_from_admin_endpoints(user_client):
    r = user_client.get("/api/users")
    assert r.status_code == 403
    assert r.json["error"] == "Insufficient permissions"

    r = user_client.get("/api/my-permissions")
    assert r.status_code == 200
    perms = r.json["data"]["permissions"]
    assert r.json["data"]["role"] == "family"
    assert perms["viewUserListings"] is True
    assert perms["manageRoles"] is False


def test_permissions_catalogue(admin_client):
    r = admin_client.get("/api/permissions")
    assert r.status_code == 200
    keys = {p["key"] for p in r.json["data"]}
    assert {"manageUsers", "viewSchools", "viewStorageSettings"} <= keys


def test_roles_list_has_user_counts(admin_client):
    r = admin_client.get("/api/roles?limit=50&sort_by=name&sort_order=asc")
    assert r.status_code == 200
    by_name = {x["name"]: x for x in r.json["data"]}
    assert by_name["admin"]["user_count"] == 1
    assert by_name["admin"]["is_system"] is True
    assert r.json["pagination"]["total"] == len(by_name)

    r = admin_client.get("/api/roles?sort_by=bogus")
    assert r.status_code == 400


def test_role_crud_and_rename_propagates(app, admin_client, make_user):
    r = admin_client.post(
        "/api/roles",
        json={"name": "volunteer", "description": "Helpers", "color": "#123ABC", "permissions": {"viewSchools": True}},
    )
    assert r.status_code == 201
    role_id = r.json["data"]["id"]
    assert r.json["data"]["permissions"]["viewSchools"] is True
    assert r.json["data"]["permissions"]["manageUsers"] is False

    r = admin_client.post("/api/roles", json={"name": "Volunteer"})
    assert r.status_code == 400

    r = admin_client.post("/api/roles", json={"name": "x", "permissions": {"notARealPermission": True}})
    assert r.status_code == 400

    uid = make_user("helper@example.com", role="volunteer")

    r = admin_client.put(f"/api/roles/{role_id}", json={"name": "helper", "permissions": {"viewLocalities": True}})
    assert r.status_code == 200
    assert r.json["data"]["name"] == "helper"
    assert r.json["data"]["user_count"] == 1
    # Merged, not replaced.
    assert r.json["data"]["permissions"]["viewSchools"] is True
    assert r.json["data"]["permissions"]["viewLocalities"] is True

    with session_scope(app) as s:
        assert s.get(User, uid).role == "helper"

    r = admin_client.delete(f"/api/roles/{role_id}")
    assert r.status_code == 400
    assert r.json["details"]["user_count"] == 1

    admin_client.put(f"/api/users/{uid}", json={"role": "user"})
    r = admin_client.delete(f"/api/roles/{role_id}")
    assert r.status_code == 200
    assert admin_client.get(f"/api/roles/{role_id}").status_code == 404


def test_system_roles_protected(admin_client):
    roles = admin_client.get("/api/roles?limit=50").json["data"]
    moderator = next(x for x in roles if x["name"] == "moderator")

    r = admin_client.put(f"/api/roles/{moderator['id']}", json={"name": "mods"})
    assert r.status_code == 403
    r = admin_client.delete(f"/api/roles/{moderator['id']}")
    assert r.status_code == 403

    # Permissions of a system role can still be edited.
    r = admin_client.put(f"/api/roles/{moderator['id']}", json={"permissions": {"banUsers": True}})
    assert r.status_code == 200
    assert r.json["data"]["permissions"]["banUsers"] is True


def test_users_list_filters(admin_client, make_user):
    make_user("alice@example.com", name="Alice")
    make_user("bob@example.com", name="Bob", role="shop")
    make_user("carol@example.com", name="Carol", banned=True, ban_reason=PENDING_APPROVAL)
    make_user("dave@example.com", name="Dave", banned=True, ban_reason="Spam")

    r = admin_client.get("/api/users?search=ali")
    assert [u["email"] for u in r.json["data"]] == ["alice@example.com"]

    r = admin_client.get("/api/users?role=shop")
    assert [u["email"] for u in r.json["data"]] == ["bob@example.com"]

    r = admin_client.get("/api/users?moderation=pending")
    assert [u["email"] for u in r.json["data"]] == ["carol@example.com"]
    assert r.json["data"][0]["pending_approval"] is True

    r = admin_client.get("/api/users?moderation=banned")
    assert [u["email"] for u in r.json["data"]] == ["dave@example.com"]

    r = admin_client.get("/api/users?moderation=weird")
    assert r.status_code == 400

    r = admin_client.get("/api/users?limit=2&page=2&sort_by=email&sort_order=asc")
    assert r.json["pagination"]["total"] == 5
    assert r.json["pagination"]["total_pages"] == 3
    assert r.json["pagination"]["has_prev"] is True
    assert len(r.json["data"]) == 2

    r = admin_client.get("/api/users?limit=0&page=0")
    assert r.json["pagination"]["limit"] == 1
    assert r.json["pagination"]["page"] == 1
    assert len(r.json["data"]) == 1


def test_user_create_update_delete(admin_client):
    r = admin_client.post("/api/users", json={"name": "New", "email": "new@example.com", "password": "password123", "role": "shop"})
    assert r.status_code == 201
    uid = r.json["data"]["id"]
    assert r.json["data"]["role"] == "shop"

    r = admin_client.post("/api/users", json={"name": "X", "email": "x@example.com", "password": "password123", "role": "ghost"})
    assert r.status_code == 400

    r = admin_client.put(f"/api/users/{uid}", json={"email": "renamed@example.com"})
    assert r.status_code == 200
    assert r.json["data"]["email"] == "renamed@example.com"
    assert r.json["data"]["email_verified"] is False

    r = admin_client.delete(f"/api/users/{uid}")
    assert r.status_code == 200
    assert admin_client.get(f"/api/users/{uid}").status_code == 404


def test_admin_cannot_change_own_role_or_delete_self(admin_client):
    me = admin_client.get("/api/auth/session").json["data"]["user"]
    r = admin_client.put(f"/api/users/{me['id']}", json={"role": "user"})
    assert r.status_code == 403
    r = admin_client.delete(f"/api/users/{me['id']}")
    assert r.status_code == 403
    r = admin_client.post(f"/api/users/{me['id']}/ban", json={"reason": "oops"})
    assert r.status_code == 403


def test_ban_and_unban(app, admin_client, make_user, login):
    uid = make_user("mary@example.com")
    r = admin_client.post(f"/api/users/{uid}/ban", json={"reason": "Scam listings"})
    assert r.status_code == 200
    assert r.json["data"]["banned"] is True
    assert r.json["data"]["ban_reason"] == "Scam listings"

    c = app.test_client()
    r = c.post("/api/auth/sign-in", json={"email": "mary@example.com", "password": "password123"})
    assert r.status_code == 403

    r = admin_client.post(f"/api/users/{uid}/unban")
    assert r.json["data"]["banned"] is False
    assert r.json["data"]["ban_reason"] is None
    login(c, "mary@example.com")


def test_banned_session_is_dropped(app, admin_client, make_user, client_for):
    uid = make_user("mary@example.com")
    c = client_for("mary@example.com")
    assert c.get("/api/auth/session").json["data"]["user"]["id"] == uid

    admin_client.post(f"/api/users/{uid}/ban", json={})
    assert c.get("/api/auth/session").json["data"]["user"] is None


def test_approval_flow(app, admin_client, outbox):
    r = admin_client.get("/api/auth-settings/flag")
    assert r.json["data"]["require_admin_approval"] is False

    r = admin_client.post("/api/auth-settings", json={"require_admin_approval": True})
    assert r.status_code == 200
    assert r.json["data"]["require_admin_approval"] is True

    c = app.test_client()
    r = c.post("/api/auth/sign-up", json={"name": "Pat", "email": "pat@example.com", "password": "supersecret"})
    assert r.status_code == 201
    assert r.json["data"]["status"] == "pending_approval"
    pat_id = r.json["data"]["user"]["id"]
    subjects = [m["subject"] for m in outbox]
    assert "New user awaiting approval" in subjects
    assert any(m["to"] == ["admin@example.com"] for m in outbox)

    r = c.post("/api/auth/sign-in", json={"email": "pat@example.com", "password": "supersecret"})
    assert r.status_code == 403
    assert r.json["code"] == "PENDING_APPROVAL"

    r = admin_client.get("/api/users-approval")
    assert r.json["data"]["pending"] == 1

    r = admin_client.post("/api/users-approval", json={"user_id": pat_id, "action": "approve"})
    assert r.status_code == 200
    assert r.json["data"]["banned"] is False
    assert outbox[-1]["to"] == ["pat@example.com"]

    # Already handled.
    r = admin_client.post("/api/users-approval", json={"user_id": pat_id, "action": "reject"})
    assert r.status_code == 400

    r = admin_client.get("/api/users-approval")
    assert r.json["data"]["pending"] == 0


def test_reject_pending_user(app, admin_client, make_user, outbox):
    uid = make_user("pat@example.com", banned=True, ban_reason=PENDING_APPROVAL)
    r = admin_client.post("/api/users-approval", json={"user_id": uid, "action": "reject"})
    assert r.status_code == 200
    assert r.json["data"]["ban_reason"] == "REJECTED"
    assert outbox[-1]["subject"] == "Your account application was not approved"

    c = app.test_client()
    r = c.post("/api/auth/sign-in", json={"email": "pat@example.com", "password": "password123"})
    assert r.status_code == 403
    assert r.json["code"] == "REJECTED"

    r = admin_client.post("/api/users-approval", json={"user_id": 9999, "action": "approve"})
    assert r.status_code == 404


def test_resend_verification(admin_client, make_user, outbox):
    uid = make_user("new@example.com", verified=False)
    r = admin_client.post("/api/users-actions", json={"action": "resend-verification", "user_id": uid})
    assert r.status_code == 200
    assert outbox[-1]["to"] == ["new@example.com"]

    verified = make_user("done@example.com")
    r = admin_client.post("/api/users-actions", json={"action": "resend-verification", "user_id": verified})
    assert r.status_code == 400


def test_edited_template_subject_wins(admin_client, make_user, outbox):
    r = admin_client.post(
        "/api/email/templates",
        json={"name": "Approval Rejected", "subject": "Custom subject for {{ user_name }}", "html_content": "<p>Sorry {{ user_name }}</p>"},
    )
    assert r.status_code == 201

    uid = make_user("pat@example.com", banned=True, ban_reason=PENDING_APPROVAL)
    r = admin_client.post("/api/users-approval", json={"user_id": uid, "action": "reject"})
    assert r.status_code == 200
    assert outbox[-1]["subject"] == "Custom subject for Pat"
    assert "Sorry Pat" in outbox[-1]["html"]


def test_sentinel_email_gets_every_permission(make_user, client_for):
    # Plain "user" role and an unverified address; the sentinel email still wins.
    make_user("admin@admin.com", role="user", verified=False)
    c = client_for("admin@admin.com")

    r = c.get("/api/my-permissions")
    assert r.status_code == 200
    assert r.json["data"]["role"] == "user"
    perms = r.json["data"]["permissions"]
    assert set(perms) == set(PERMISSIONS)
    assert all(perms.values())

    assert c.get("/api/users").status_code == 200
    assert c.get("/api/storage-settings").status_code == 200


def test_signups_stay_active_once_approval_is_switched_off(app, admin_client, outbox):
    assert admin_client.post("/api/auth-settings", json={"require_admin_approval": True}).status_code == 200
    r = admin_client.post("/api/auth-settings", json={"require_admin_approval": False})
    assert r.json["data"]["require_admin_approval"] is False

    c = app.test_client()
    r = c.post("/api/auth/sign-up", json={"name": "Sam", "email": "sam@example.com", "password": "supersecret"})
    assert r.status_code == 201
    assert r.json["data"]["status"] == "active"
    assert r.json["data"]["user"]["banned"] is False
    assert r.json["data"]["user"]["pending_approval"] is False
    assert admin_client.get("/api/users-approval").json["data"]["pending"] == 0
