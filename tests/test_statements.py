import pytest

from app.steward.modules.statements.service import statement_number
from tests.conftest import category_ids, make_household, make_member


@pytest.fixture()
def giving_household(admin_client):
    cats = category_ids(admin_client)
    h = make_household(admin_client, name="Tax Family", address1="1 Church St", city="Springfield", state="IL", zip="62701")
    head = make_member(
        admin_client, h["id"], "Tess", "Tax", sequence="head_of_house", email1="tess@example.com", envelopeNumber=50
    )
    for day, amount in (("2024-01-07", "100.00"), ("2024-06-02", "50.25")):
        r = admin_client.post(
            "/api/giving",
            json={"memberId": head["id"], "dateGiven": day, "items": [{"categoryId": cats["Current"], "amount": amount}]},
        )
        assert r.status_code == 201
    return h


def _set_tax_id(admin_client):
    r = admin_client.put("/api/church/settings", json={"name": "Grace Lutheran", "taxId": "12-3456789"})
    assert r.status_code == 200


def test_statement_number_format():
    assert statement_number(2024, 42, now_ms=35) == "2024-00000042-Z"


def test_generate_requires_confirmation_without_tax_id(admin_client, giving_household):
    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024})
    assert r.status_code == 200
    assert r.json["requiresConfirmation"] is True
    assert r.json["missing"] == ["Tax ID (EIN)"]


def test_generate_download_and_regenerate(admin_client, giving_household):
    _set_tax_id(admin_client)
    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024})
    assert r.status_code == 200
    assert r.json["success"] is True
    assert r.json["generated"] == 1
    result = r.json["results"][0]
    assert result["status"] == "created"
    assert result["totalAmount"] == "150.25"
    assert result["statementNumber"].startswith(f"2024-{giving_household['id']:08d}-")

    r = admin_client.get("/api/giving-statements?year=2024")
    assert [st["id"] for st in r.json["statements"]] == [result["statementId"]]

    r = admin_client.get(f"/api/giving-statements/{result['statementId']}/download")
    assert r.status_code == 200
    assert r.mimetype == "application/pdf"
    assert r.data.startswith(b"%PDF")
    assert "attachment" in r.headers["Content-Disposition"]

    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024})
    assert r.json["results"][0]["status"] == "updated"
    assert r.json["results"][0]["statementId"] == result["statementId"]


def test_generate_with_skip_validation(admin_client, giving_household):
    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024, "skipValidation": True})
    assert r.json["generated"] == 1


def test_single_household_preview_returns_pdf(admin_client, giving_household):
    r = admin_client.post(
        "/api/giving-statements/generate",
        json={"year": 2024, "skipValidation": True, "preview": True, "householdId": giving_household["id"]},
    )
    assert r.status_code == 200
    assert r.mimetype == "application/pdf"
    assert r.data.startswith(b"%PDF")

    # previews are not stored
    assert admin_client.get("/api/giving-statements").json["statements"] == []


def test_generate_without_giving_is_404(admin_client, giving_household):
    r = admin_client.post("/api/giving-statements/generate", json={"year": 2019, "skipValidation": True})
    assert r.status_code == 404
    assert r.json["error"] == "No giving records found"


def test_generate_rejects_bad_year(admin_client):
    r = admin_client.post("/api/giving-statements/generate", json={"year": "soon"})
    assert r.status_code == 400
    assert r.json["error"] == "Year is required and must be a number"


def test_send_statements(admin_client, giving_household, monkeypatch):
    sent = []

    def fake_send(**kwargs):
        sent.append(kwargs)
        return True, "sent"

    monkeypatch.setattr("app.steward.modules.statements.service.send_giving_statement_email", fake_send)

    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024, "skipValidation": True})
    statement_id = r.json["results"][0]["statementId"]

    r = admin_client.post("/api/giving-statements/send", json={"statementIds": [statement_id]})
    assert r.status_code == 200
    assert r.json["sent"] == 1
    assert r.json["failed"] == 0
    assert sent[0]["email"] == "tess@example.com"
    assert sent[0]["pdf_bytes"].startswith(b"%PDF")

    r = admin_client.get(f"/api/giving-statements/{statement_id}")
    assert r.json["statement"]["emailStatus"] == "sent"
    assert r.json["statement"]["sentAt"] is not None


def test_send_without_smtp_records_failure(admin_client, giving_household):
    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024, "skipValidation": True})
    statement_id = r.json["results"][0]["statementId"]

    r = admin_client.post("/api/giving-statements/send", json={"statementIds": [statement_id]})
    assert r.json["sent"] == 0
    assert r.json["failed"] == 1

    r = admin_client.get(f"/api/giving-statements/{statement_id}")
    assert r.json["statement"]["emailStatus"] == "failed"
    assert r.json["statement"]["emailError"].startswith("SMTP server not configured")


def test_send_requires_ids(admin_client):
    r = admin_client.post("/api/giving-statements/send", json={"statementIds": []})
    assert r.status_code == 400


def test_delete_statement(admin_client, giving_household):
    r = admin_client.post("/api/giving-statements/generate", json={"year": 2024, "skipValidation": True})
    statement_id = r.json["results"][0]["statementId"]
    assert admin_client.delete(f"/api/giving-statements/{statement_id}").status_code == 200
    assert admin_client.get(f"/api/giving-statements/{statement_id}").status_code == 404


def test_viewer_cannot_generate(viewer_client):
    r = viewer_client.post("/api/giving-statements/generate", json={"year": 2024})
    assert r.status_code == 403
    assert r.json["missingPermission"] == "statements.manage"
