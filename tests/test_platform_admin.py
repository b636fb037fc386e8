from app.steward.db import session_scope
from app.steward.models import User
from tests.conftest import PASSWORD, TenantClient, category_ids, make_household, make_member


def test_dashboard_counts(root_client, admin_client):
    h = make_household(admin_client)
    make_member(admin_client, h["id"], "Count", "Me")

    r = root_client.get("/api/admin/dashboard")
    assert r.status_code == 200
    assert r.json["churches"] == 2
    assert r.json["users"] == 3
    assert r.json["members"] == 1
    assert r.json["churchesByPlan"]["premium"] == 1
    assert r.json["churchesByPlan"]["basic"] == 1
    assert r.json["churchesByStatus"]["active"] == 2
    assert r.json["database"]["connected"] is True


def test_non_super_admin_is_forbidden(admin_client):
    r = admin_client.get("/api/admin/dashboard")
    assert r.status_code == 403
    assert r.json["missingPermission"] == "platform.super_admin"


def test_anonymous_is_unauthorized(anon):
    assert anon.get("/api/admin/churches").status_code == 401


def test_church_list_and_detail(root_client, seed):
    r = root_client.get("/api/admin/churches")
    assert r.status_code == 200
    rows = {c["subdomain"]: c for c in r.json["churches"]}
    assert set(rows) == {"grace", "trinity"}
    assert rows["grace"]["userCount"] == 2
    assert rows["trinity"]["userCount"] == 0

    r = root_client.get(f"/api/admin/churches/{seed.church_id}")
    assert r.status_code == 200
    church = r.json["church"]
    assert [u["email"] for u in church["users"]] == ["admin@grace.org", "viewer@grace.org"]
    assert church["stripeCustomerId"] is None

    assert root_client.get("/api/admin/churches/99999").status_code == 404


def test_update_church_plan_and_status(root_client, seed):
    r = root_client.patch(
        f"/api/admin/churches/{seed.other_church_id}",
        json={"subscriptionPlan": "premium", "subscriptionStatus": "past_due"},
    )
    assert r.status_code == 200
    assert r.json["church"]["subscriptionPlan"] == "premium"
    assert r.json["church"]["subscriptionStatus"] == "past_due"

    r = root_client.patch(f"/api/admin/churches/{seed.other_church_id}", json={"subscriptionPlan": "gold"})
    assert r.status_code == 400
    assert r.json["error"] == "Invalid subscription plan: gold"

    r = root_client.patch(f"/api/admin/churches/{seed.other_church_id}", json={})
    assert r.status_code == 400
    assert r.json["error"] == "Nothing to update"


def test_wipe_church_data(root_client, admin_client, seed):
    cats = category_ids(admin_client)
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Wipe", "Out")
    svc = admin_client.post("/api/services", json={"serviceDate": "2024-05-05", "serviceType": "divine_service"}).json[
        "service"
    ]
    admin_client.post("/api/attendance", json={"serviceId": svc["id"], "records": [{"memberId": m["id"], "attended": True}]})
    r = admin_client.post(
        "/api/giving",
        json={
            "memberId": m["id"],
            "dateGiven": "2024-05-05",
            "serviceId": svc["id"],
            "items": [{"categoryId": cats["Current"], "amount": 10}],
        },
    )
    assert r.status_code == 201

    base = f"/api/admin/churches/{seed.church_id}"
    r = root_client.delete(f"{base}/giving")
    assert r.json == {"success": True, "deleted": {"giving": 1}}
    assert admin_client.get(f"/api/giving?memberId={m['id']}").json["giving"] == []

    r = root_client.delete(f"{base}/attendance")
    assert r.json["deleted"] == {"services": 1}

    r = root_client.delete(f"{base}/members-households")
    assert r.json["deleted"] == {"giving": 0, "members": 1, "households": 1}
    assert admin_client.get("/api/members").json["pagination"]["total"] == 0

    # categories and users survive
    assert len(category_ids(admin_client)) == 6
    assert len(admin_client.get("/api/churches/users").json["users"]) == 2


def test_users_list(root_client, seed):
    r = root_client.get("/api/admin/users")
    assert r.status_code == 200
    assert [u["email"] for u in r.json["users"]] == ["admin@grace.org", "root@steward.local", "viewer@grace.org"]
    assert r.json["pagination"]["total"] == 3
    admin = r.json["users"][0]
    assert admin["churches"] == [{"id": seed.church_id, "name": "Grace Lutheran", "subdomain": "grace", "role": "admin"}]

    r = root_client.get("/api/admin/users?search=VIEW")
    assert [u["email"] for u in r.json["users"]] == ["viewer@grace.org"]

    r = root_client.get(f"/api/admin/users?churchId={seed.church_id}")
    assert r.json["pagination"]["total"] == 2


def test_users_list_requires_super_admin(admin_client):
    r = admin_client.get("/api/admin/users")
    assert r.status_code == 403
    assert r.json["missingPermission"] == "platform.super_admin"


def test_update_role_by_email(root_client, seed):
    r = root_client.put(
        "/api/admin/users/update-role",
        json={"churchId": seed.church_id, "email": "Viewer@Grace.org", "role": "giving_editor"},
    )
    assert r.status_code == 200
    assert r.json["message"] == "User role updated to giving_editor"
    assert r.json["user"]["role"] == "giving_editor"

    r = root_client.put(
        "/api/admin/users/update-role",
        json={"churchId": seed.church_id, "email": "admin@grace.org", "role": "viewer"},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Cannot change the last admin user to another role"

    r = root_client.put(
        "/api/admin/users/update-role",
        json={"churchId": seed.church_id, "email": "ghost@grace.org", "role": "viewer"},
    )
    assert r.status_code == 404
    assert r.json["error"] == "User not found"

    r = root_client.put("/api/admin/users/update-role", json={"email": "viewer@grace.org", "role": "viewer"})
    assert r.status_code == 400
    assert r.json["error"] == "Church ID is required"

    r = root_client.put(
        "/api/admin/users/update-role",
        json={"churchId": 99999, "email": "viewer@grace.org", "role": "viewer"},
    )
    assert r.status_code == 404


def test_invite_and_withdraw(root_client, seed):
    r = root_client.post("/api/admin/invite", json={"churchId": seed.other_church_id, "email": "new@trinity.org"})
    assert r.status_code == 201
    assert r.json["inviteCode"]
    assert r.json["emailSent"] is False
    assert r.json["invitation"]["status"] == "invited"

    body = {"churchId": seed.other_church_id, "email": "new@trinity.org"}
    r = root_client.delete("/api/admin/users/delete", json=body)
    assert r.status_code == 200
    assert r.json["message"] == "Invitation removed for new@trinity.org"

    r = root_client.delete("/api/admin/users/delete", json=body)
    assert r.status_code == 404
    assert r.json["error"] == "User does not belong to this church"


def test_remove_user_by_email(root_client, admin_client, seed):
    r = root_client.delete("/api/admin/users/delete", json={"churchId": seed.church_id, "email": "viewer@grace.org"})
    assert r.status_code == 200
    assert r.json["message"] == "User access removed for viewer@grace.org"
    assert [u["email"] for u in admin_client.get("/api/churches/users").json["users"]] == ["admin@grace.org"]

    r = root_client.delete("/api/admin/users/delete", json={"churchId": seed.church_id, "email": "admin@grace.org"})
    assert r.status_code == 400
    assert r.json["error"] == "Cannot remove the last admin user for this church"


def _anonymous_root(app) -> TenantClient:
    c = TenantClient(app)
    c.csrf_token = c.get("/auth/session").json["csrf_token"]
    return c


def test_create_super_admin_disabled_by_default(app):
    c = _anonymous_root(app)
    r = c.post("/api/admin/create-super-admin", json={"email": "boot@steward.local", "password": PASSWORD, "name": "Boot"})
    assert r.status_code == 404


def test_create_super_admin_bootstrap(app, seed):
    app.config["ENABLE_CREATE_SUPER_ADMIN"] = True
    c = _anonymous_root(app)
    body = {"email": "boot@steward.local", "password": PASSWORD, "name": "Boot"}

    r = c.post("/api/admin/create-super-admin", json=body)
    assert r.status_code == 400
    assert r.json["error"] == "Super admin already exists. Use the script instead."

    with session_scope(app) as s:
        s.get(User, seed.super_admin_id).is_super_admin = False

    r = c.post("/api/admin/create-super-admin", json={**body, "password": "short"})
    assert r.json["error"] == "Password must be at least 8 characters"
    r = c.post("/api/admin/create-super-admin", json={**body, "email": "admin@grace.org"})
    assert r.json["error"] == "User with this email already exists"

    r = c.post("/api/admin/create-super-admin", json=body)
    assert r.status_code == 201
    assert r.json["message"] == "Super admin created successfully"

    boot = TenantClient(app)
    assert boot.login("boot@steward.local").status_code == 200
    assert boot.get("/api/admin/dashboard").status_code == 200
