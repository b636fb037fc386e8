import pytest

from app.steward.tenancy import extract_subdomain, is_public_path, validate_subdomain
from tests.conftest import TenantClient


@pytest.mark.parametrize(
    "host,expected",
    [
        ("grace.localhost", "grace"),
        ("grace.localhost:5000", "grace"),
        ("grace.steward.app", "grace"),
        ("GRACE.Steward.App", "grace"),
        ("localhost", None),
        ("localhost:5000", None),
        ("steward.app", None),
        ("www.steward.app", None),
        ("admin.localhost", None),
        ("", None),
        (None, None),
    ],
)
def test_extract_subdomain(host, expected):
    assert extract_subdomain(host) == expected


def test_validate_subdomain():
    assert validate_subdomain("grace-lutheran") is None
    assert validate_subdomain("") == "Subdomain is required"
    assert validate_subdomain("ab") is not None
    assert validate_subdomain("has space") is not None
    assert validate_subdomain("under_score") is not None
    assert validate_subdomain("x" * 31) is not None
    assert validate_subdomain("www") == "This subdomain is reserved"


def test_public_paths():
    assert is_public_path("/")
    assert is_public_path("/auth/login")
    assert is_public_path("/api/signup")
    assert is_public_path("/api/stripe/webhook")
    assert not is_public_path("/api/members")
    assert not is_public_path("/authority")


def test_unknown_subdomain_api_returns_church_not_found(app):
    c = TenantClient(app, "nowhere")
    r = c.get("/api/members")
    assert r.status_code == 400
    assert r.json["error"] == "Church not found"


def test_unknown_subdomain_page_redirects_to_root(app):
    c = TenantClient(app, "nowhere")
    r = c.get("/members")
    assert r.status_code == 302
    assert "church_not_found" in r.headers["Location"]


def test_tenant_api_on_root_domain_has_no_church(root_client):
    r = root_client.get("/api/members")
    assert r.status_code == 400
    assert r.json["error"] == "Church not found"


def test_user_cannot_read_another_church(app):
    c = TenantClient(app, "trinity")
    assert c.login("admin@grace.org").status_code == 200
    r = c.get("/api/members")
    assert r.status_code == 403


def test_records_are_scoped_to_tenant(app, admin_client):
    r = admin_client.post("/api/households", json={"type": "family", "name": "Grace Family"})
    hid = r.json["household"]["id"]

    other = TenantClient(app, "trinity")
    other.login("root@steward.local")
    r = other.get(f"/api/households/{hid}")
    assert r.status_code == 404
