from dataclasses import dataclass

import pytest
from werkzeug.security import generate_password_hash

from app.steward import create_app
from app.steward.auth import reset_rate_limits
from app.steward.db import session_scope
from app.steward.models import Base, Church, ChurchUser, User
from app.steward.modules.giving.service import seed_default_categories

PASSWORD = "password123"
# base64 of 32 bytes
TEST_ENCRYPTION_KEY = "MDEyMzQ1Njc4OWFiY2RlZjAxMjM0NTY3ODlhYmNkZWY="


@dataclass
class Seed:
    church_id: int
    other_church_id: int
    admin_id: int
    viewer_id: int
    super_admin_id: int


class TenantClient:
    """
    Test client bound to one host (a tenant subdomain or the root domain).
    Remembers the CSRF token handed out at login and sends it on writes.
    """

    def __init__(self, app, subdomain: str | None = None):
        self.client = app.test_client()
        self.base_url = f"http://{subdomain}.localhost" if subdomain else "http://localhost"
        self.csrf_token: str | None = None

    def login(self, email: str, password: str = PASSWORD):
        r = self.client.post("/auth/login", json={"email": email, "password": password}, base_url=self.base_url)
        if r.status_code == 200:
            self.csrf_token = r.json["csrf_token"]
        return r

    def open(self, path: str, method: str = "GET", **kwargs):
        kwargs.setdefault("base_url", self.base_url)
        if method in ("POST", "PUT", "PATCH", "DELETE") and self.csrf_token:
            headers = dict(kwargs.pop("headers", None) or {})
            headers.setdefault("X-CSRF-Token", self.csrf_token)
            kwargs["headers"] = headers
        return self.client.open(path, method=method, **kwargs)

    def get(self, path: str, **kwargs):
        return self.open(path, "GET", **kwargs)

    def post(self, path: str, **kwargs):
        return self.open(path, "POST", **kwargs)

    def put(self, path: str, **kwargs):
        return self.open(path, "PUT", **kwargs)

    def patch(self, path: str, **kwargs):
        return self.open(path, "PATCH", **kwargs)

    def delete(self, path: str, **kwargs):
        return self.open(path, "DELETE", **kwargs)


@pytest.fixture()
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("SECRET_KEY", "test-secret")
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path/'test.db'}")
    monkeypatch.setenv("ENV", "test")
    monkeypatch.setenv("ROOT_DOMAIN", "localhost")
    monkeypatch.setenv("APP_BASE_URL", "http://localhost")
    monkeypatch.setenv("STORAGE_BACKEND", "local")
    monkeypatch.setenv("STORAGE_ROOT", str(tmp_path / "storage"))
    for k in (
        "S3_ENDPOINT",
        "S3_BUCKET",
        "S3_ACCESS_KEY_ID",
        "S3_SECRET_ACCESS_KEY",
        "SMTP_SERVER",
        "EMAIL_FROM",
        "SUPER_ADMIN_ALERT_EMAIL",
        "STRIPE_SECRET_KEY",
        "STRIPE_PRICE_ID_BASIC",
        "STRIPE_PRICE_ID_PREMIUM",
        "ENABLE_CREATE_SUPER_ADMIN",
    ):
        monkeypatch.delenv(k, raising=False)
    monkeypatch.setenv("STRIPE_WEBHOOK_SECRET", "whsec_test")
    monkeypatch.setenv("ENCRYPTION_KEY", TEST_ENCRYPTION_KEY)

    reset_rate_limits()
    app = create_app()
    Base.metadata.create_all(bind=app.extensions["sqlalchemy_engine"])

    with session_scope(app) as s:
        grace = Church(name="Grace Lutheran", subdomain="grace", subscription_plan="premium", subscription_status="active")
        other = Church(name="Trinity", subdomain="trinity", subscription_plan="basic", subscription_status="active")
        s.add_all([grace, other])
        s.flush()
        seed_default_categories(s, grace)
        seed_default_categories(s, other)

        pw = generate_password_hash(PASSWORD)
        admin = User(email="admin@grace.org", name="Pat Admin", password_hash=pw, is_active=True)
        viewer = User(email="viewer@grace.org", name="Val Viewer", password_hash=pw, is_active=True)
        root = User(email="root@steward.local", name="Root", password_hash=pw, is_active=True, is_super_admin=True)
        s.add_all([admin, viewer, root])
        s.flush()
        s.add_all(
            [
                ChurchUser(user_id=admin.id, church_id=grace.id, role="admin"),
                ChurchUser(user_id=viewer.id, church_id=grace.id, role="viewer"),
            ]
        )
        app.config["TEST_SEED"] = Seed(
            church_id=grace.id,
            other_church_id=other.id,
            admin_id=admin.id,
            viewer_id=viewer.id,
            super_admin_id=root.id,
        )

    return app


@pytest.fixture()
def seed(app) -> Seed:
    return app.config["TEST_SEED"]


@pytest.fixture()
def anon(app) -> TenantClient:
    return TenantClient(app, "grace")


@pytest.fixture()
def admin_client(app) -> TenantClient:
    c = TenantClient(app, "grace")
    r = c.login("admin@grace.org")
    assert r.status_code == 200
    return c


@pytest.fixture()
def viewer_client(app) -> TenantClient:
    c = TenantClient(app, "grace")
    r = c.login("viewer@grace.org")
    assert r.status_code == 200
    return c


@pytest.fixture()
def root_client(app) -> TenantClient:
    c = TenantClient(app)
    r = c.login("root@steward.local")
    assert r.status_code == 200
    return c


def make_household(client: TenantClient, **fields) -> dict:
    r = client.post("/api/households", json={"type": "family", **fields})
    assert r.status_code == 201, r.json
    return r.json["household"]


def make_member(client: TenantClient, household_id: int, first: str, last: str, **fields) -> dict:
    r = client.post(
        "/api/members",
        json={"householdId": household_id, "firstName": first, "lastName": last, **fields},
    )
    assert r.status_code == 201, r.json
    return r.json["member"]


def category_ids(client: TenantClient) -> dict[str, int]:
    r = client.get("/api/giving-categories")
    assert r.status_code == 200
    return {c["name"]: c["id"] for c in r.json["categories"]}
