import base64

import pytest
from sqlalchemy import text

from app.steward.db import session_scope
from app.steward.encryption import PREFIX, EncryptionKeyError, decrypt, encrypt, load_key
from tests.conftest import TEST_ENCRYPTION_KEY, make_household, make_member

KEY = load_key(TEST_ENCRYPTION_KEY)
OTHER_KEY = bytes(range(32))


def test_encrypt_round_trip():
    a = encrypt("12-3456789", key=KEY)
    b = encrypt("12-3456789", key=KEY)
    assert a.startswith(PREFIX)
    assert a != b
    assert decrypt(a, key=KEY) == "12-3456789"
    assert decrypt(b, key=KEY) == "12-3456789"


def test_empty_and_plaintext_pass_through():
    assert encrypt(None, key=KEY) is None
    assert encrypt("", key=KEY) == ""
    assert decrypt(None, key=KEY) is None
    assert decrypt("", key=KEY) == ""
    assert decrypt("1980-05-17", key=KEY) == "1980-05-17"


def test_wrong_key_or_corrupt_value_reads_as_none():
    sealed = encrypt("secret", key=KEY)
    assert decrypt(sealed, key=OTHER_KEY) is None
    assert decrypt(PREFIX + "not base64!", key=KEY) is None
    assert decrypt(PREFIX + base64.b64encode(b"short").decode(), key=KEY) is None


@pytest.mark.parametrize(
    ("raw", "message"),
    [
        ("", "ENCRYPTION_KEY must be set"),
        ("%%%", "ENCRYPTION_KEY must be base64 encoded"),
        (base64.b64encode(b"too-short").decode(), "ENCRYPTION_KEY must decode to 32 bytes, got 9"),
    ],
)
def test_load_key_rejects_bad_keys(raw, message):
    with pytest.raises(EncryptionKeyError) as exc:
        load_key(raw)
    assert str(exc.value).startswith(message)


def test_member_date_of_birth_is_encrypted_in_database(app, admin_client):
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Secret", "Birthday", dateOfBirth="1980-05-17")
    assert m["dateOfBirth"] == "1980-05-17"

    with session_scope(app) as s:
        stored = s.execute(text("SELECT date_of_birth FROM members WHERE id = :id"), {"id": m["id"]}).scalar()
    assert stored.startswith(PREFIX)
    assert "1980" not in stored

    r = admin_client.get(f"/api/members/{m['id']}")
    assert r.json["member"]["dateOfBirth"] == "1980-05-17"


def test_church_tax_id_is_encrypted_in_database(app, admin_client, seed):
    r = admin_client.put("/api/church/settings", json={"name": "Grace Lutheran", "taxId": "12-3456789"})
    assert r.status_code == 200

    with session_scope(app) as s:
        stored = s.execute(text("SELECT tax_id FROM churches WHERE id = :id"), {"id": seed.church_id}).scalar()
    assert stored.startswith(PREFIX)
    assert decrypt(stored, key=KEY) == "12-3456789"

    assert admin_client.get("/api/church").json["church"]["taxId"] == "12-3456789"


def test_legacy_plaintext_values_stay_readable(app, admin_client, seed):
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Old", "Row")
    with session_scope(app) as s:
        s.execute(text("UPDATE members SET date_of_birth = '1975-01-02' WHERE id = :id"), {"id": m["id"]})
        s.execute(text("UPDATE churches SET tax_id = '98-7654321' WHERE id = :id"), {"id": seed.church_id})

    assert admin_client.get(f"/api/members/{m['id']}").json["member"]["dateOfBirth"] == "1975-01-02"
    assert admin_client.get("/api/church").json["church"]["taxId"] == "98-7654321"
