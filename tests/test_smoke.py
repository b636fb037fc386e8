import pytest
from flask import request

from app.steward import routes
from app.steward.db import engine_options
from app.steward.security import csrf_required
from scripts.start import gunicorn_argv, preflight
from tests.conftest import TEST_ENCRYPTION_KEY, TenantClient


def test_health_ok(app):
    c = app.test_client()
    r = c.get("/health")
    assert r.status_code == 200
    assert r.json == {"ok": True, "database": "ok"}

    r = c.get("/healthz")
    assert r.status_code == 200
    assert r.data == b"ok"


def test_landing_on_tenant_host_names_the_church(anon):
    r = anon.get("/")
    assert r.status_code == 200
    assert r.json["church"]["subdomain"] == "grace"


def test_login_and_session(anon):
    r = anon.get("/auth/session")
    assert r.status_code == 200
    assert r.json["user"] is None

    r = anon.login("admin@grace.org", "wrong-password")
    assert r.status_code == 401
    assert r.json["error"] == "Invalid credentials."

    r = anon.login("admin@grace.org")
    assert r.status_code == 200
    assert r.json["csrf_token"]
    assert r.json["user"]["churches"][0]["subdomain"] == "grace"

    r = anon.get("/auth/session")
    church = r.json["church"]
    assert church["role"] == "admin"
    assert church["plan"] == "premium"
    assert "members.edit" in church["permissions"]


def test_login_rate_limited(app):
    c = TenantClient(app, "grace")
    for _ in range(5):
        assert c.login("admin@grace.org", "nope").status_code == 401
    r = c.login("admin@grace.org")
    assert r.status_code == 429


def test_write_without_csrf_token_is_rejected(admin_client):
    r = admin_client.client.post(
        "/api/households",
        json={"type": "family"},
        base_url=admin_client.base_url,
    )
    assert r.status_code == 400
    assert r.json["error"] == "CSRF token missing or invalid."


def test_anonymous_api_call_is_unauthorized(anon):
    r = anon.get("/api/members")
    assert r.status_code == 401


def test_logout_clears_session(admin_client):
    assert admin_client.get("/api/members").status_code == 200
    admin_client.post("/auth/logout")
    assert admin_client.get("/api/members").status_code == 401


@pytest.mark.parametrize(
    ("method", "path", "expected"),
    [
        ("POST", "/api/signup", False),
        ("POST", "/api/invite-signup", False),
        ("POST", "/api/stripe/webhook", False),
        ("POST", "/auth/logout", False),
        ("GET", "/api/members", False),
        ("POST", "/api/households", True),
        ("DELETE", "/api/members/1", True),
    ],
)
def test_csrf_required(app, method, path, expected):
    with app.test_request_context(path, method=method, base_url="http://grace.localhost"):
        assert csrf_required(request) is expected


def test_health_reports_database_failure(app, monkeypatch):
    monkeypatch.setattr(routes, "check_database", lambda s: "connection refused")
    r = app.test_client().get("/health")
    assert r.status_code == 503
    assert r.json == {"ok": False, "database": "unavailable"}


def test_engine_options_size_postgres_pool_from_config():
    opts = engine_options({"DATABASE_URL": "postgresql+psycopg://u@db/steward", "DB_POOL_SIZE": 3, "DB_MAX_OVERFLOW": 4})
    assert opts["pool_size"] == 3
    assert opts["max_overflow"] == 4
    assert opts["pool_pre_ping"] is True

    opts = engine_options({"DATABASE_URL": "sqlite:///steward.db"})
    assert "pool_size" not in opts


def test_start_preflight_defaults_outside_production():
    port, workers, errors = preflight({"ENV": "development"})
    assert (port, workers, errors) == ("8080", "2", [])
    assert gunicorn_argv(port, workers)[:4] == ["gunicorn", "app.wsgi:app", "--bind", "0.0.0.0:8080"]


def test_start_preflight_rejects_bad_values():
    _, _, errors = preflight({"PORT": "http", "WEB_CONCURRENCY": "0"})
    assert errors == [
        "Invalid PORT value 'http'. Must be an integer.",
        "Invalid WEB_CONCURRENCY value '0'. Must be at least 1.",
    ]
    _, _, errors = preflight({"PORT": "70000"})
    assert errors == ["Invalid PORT value '70000'. Must be 1-65535."]


def test_start_preflight_production_needs_keys():
    _, _, errors = preflight({"ENV": "production"})
    assert errors[0] == "SECRET_KEY must be set in production."
    assert errors[1].startswith("ENCRYPTION_KEY must be set.")

    _, _, errors = preflight(
        {"ENV": "production", "SECRET_KEY": "s3cret", "ENCRYPTION_KEY": TEST_ENCRYPTION_KEY, "PORT": "9000"}
    )
    assert errors == []
