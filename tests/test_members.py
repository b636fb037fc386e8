import io

from app.steward import rbac
from app.steward.db import session_scope
from app.steward.models import Church
from tests.conftest import make_household, make_member


def _upload(client, path: str, text: str, filename: str = "import.csv"):
    return client.post(
        path,
        data={"file": (io.BytesIO(text.encode("utf-8")), filename)},
        content_type="multipart/form-data",
    )


def test_household_and_member_crud(admin_client):
    h = make_household(admin_client, name="Smith Family", city="Springfield")
    assert h["type"] == "family"
    assert h["city"] == "Springfield"

    m = make_member(
        admin_client,
        h["id"],
        "John",
        "Smith",
        email1="John@Example.com",
        sex="Male",
        sequence="Head Of House",
        dateOfBirth="1970-05-01",
    )
    assert m["email1"] == "john@example.com"
    assert m["sex"] == "male"
    assert m["sequence"] == "head_of_house"
    assert m["participation"] == "active"
    assert m["householdName"] == "Smith Family"

    r = admin_client.get(f"/api/members/{m['id']}")
    assert r.status_code == 200
    assert r.json["member"]["headOfHousehold"]["isCurrentMember"] is True

    r = admin_client.put(f"/api/members/{m['id']}", json={"preferredName": "Jack"})
    assert r.status_code == 200
    assert r.json["member"]["preferredName"] == "Jack"

    r = admin_client.get(f"/api/households/{h['id']}")
    assert r.status_code == 200
    assert r.json["household"]["memberCount"] == 1

    r = admin_client.delete(f"/api/members/{m['id']}")
    assert r.status_code == 200
    assert admin_client.get(f"/api/members/{m['id']}").status_code == 404


def test_member_requires_household(admin_client):
    r = admin_client.post("/api/members", json={"firstName": "No", "lastName": "Home"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Household is required")


def test_member_requires_names(admin_client):
    h = make_household(admin_client)
    r = admin_client.post("/api/members", json={"householdId": h["id"], "firstName": "", "lastName": "X"})
    assert r.status_code == 400
    assert r.json["error"] == "First name is required"


def test_member_with_new_household(admin_client):
    r = admin_client.post(
        "/api/members",
        json={"firstName": "Ann", "lastName": "Lee", "createNewHousehold": True},
    )
    assert r.status_code == 201
    assert r.json["member"]["householdName"] == "Ann Lee"


def test_duplicate_email_rejected(admin_client):
    h = make_household(admin_client)
    make_member(admin_client, h["id"], "A", "One", email1="dup@example.com")
    r = admin_client.post(
        "/api/members",
        json={"householdId": h["id"], "firstName": "B", "lastName": "Two", "email1": "DUP@example.com"},
    )
    assert r.status_code == 400
    assert r.json["error"] == "Email already exists"


def test_list_search_and_pagination(admin_client):
    h = make_household(admin_client)
    for first in ("Alice", "Bob", "Carol"):
        make_member(admin_client, h["id"], first, "Jones")
    make_member(admin_client, h["id"], "Dan", "Jones", participation="inactive")

    r = admin_client.get("/api/members?q=ali")
    assert [m["firstName"] for m in r.json["members"]] == ["Alice"]

    r = admin_client.get("/api/members?pageSize=2&page=2")
    assert r.status_code == 200
    assert len(r.json["members"]) == 2
    assert r.json["pagination"]["total"] == 4

    r = admin_client.get("/api/members?participation=inactive")
    assert [m["firstName"] for m in r.json["members"]] == ["Dan"]

    r = admin_client.get("/api/members?participation=bogus")
    assert r.status_code == 400


def test_participation_change_is_recorded_in_history(admin_client):
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Eve", "Brown")
    r = admin_client.put(
        f"/api/members/{m['id']}",
        json={"participation": "homebound", "changeNotes": "Moved to care home"},
    )
    assert r.status_code == 200

    r = admin_client.get(f"/api/members/{m['id']}/history")
    history = r.json["history"]
    assert len(history) == 1
    assert history[0]["fieldChanged"] == "participation"
    assert history[0]["oldValue"] == "active"
    assert history[0]["newValue"] == "homebound"


def test_delete_household_detaches_members(admin_client):
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Fay", "Green")
    assert admin_client.delete(f"/api/households/{h['id']}").status_code == 200
    r = admin_client.get(f"/api/members/{m['id']}")
    assert r.json["member"]["householdId"] is None


def test_export_csv(admin_client):
    h = make_household(admin_client, name="Export Family")
    make_member(admin_client, h["id"], "Gus", "White", email1="gus@example.com")
    r = admin_client.get("/api/members/export")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    text = r.data.decode("utf-8")
    header, first = text.splitlines()[:2]
    assert header.startswith("ID,Household ID,Household Name,First Name")
    assert "Gus" in first and "gus@example.com" in first


def test_bulk_import_members(admin_client):
    csv_text = (
        "\ufeffFirst Name,Last_Name,Email,Household Group,Sex,Date of Birth\n"
        "Hal,Black,hal@example.com,black,male,1980-01-02\n"
        "Ivy,Black,,black,female,not-a-date\n"
        ",Nobody,,,,\n"
        "Jo,Gray,hal@example.com,,,\n"
        "\n"
        "Kim,Stone,,,unknown,\n"
    )
    r = _upload(admin_client, "/api/members/bulk-import", csv_text)
    assert r.status_code == 200
    assert r.json["success"] == 3
    assert r.json["failed"] == 2
    assert r.json["errors"] == [
        "Row 4: First name and last name are required",
        "Row 5: Email hal@example.com already exists",
    ]

    r = admin_client.get("/api/members?q=Black")
    blacks = r.json["members"]
    assert len(blacks) == 2
    assert blacks[0]["householdId"] == blacks[1]["householdId"]
    ivy = next(m for m in blacks if m["firstName"] == "Ivy")
    assert ivy["dateOfBirth"] is None

    r = admin_client.get("/api/members?q=Kim")
    assert r.json["members"][0]["sex"] is None


def test_bulk_import_requires_name_columns(admin_client):
    r = _upload(admin_client, "/api/members/bulk-import", "Name,Email\nSomeone,a@b.c\n")
    assert r.status_code == 400
    assert "First Name, Last Name" in r.json["error"]
    assert r.json["foundHeaders"] == ["Name", "Email"]


def test_bulk_import_rejects_non_csv(admin_client):
    r = _upload(admin_client, "/api/members/bulk-import", "First Name,Last Name\n", filename="members.xlsx")
    assert r.status_code == 400
    assert r.json["error"] == "File must be a CSV"


def test_bulk_import_member_limit_counts_data_rows(app, seed, admin_client, monkeypatch):
    monkeypatch.setitem(rbac.MEMBER_LIMITS, "basic", 2)
    with session_scope(app) as s:
        s.get(Church, seed.church_id).subscription_plan = "basic"

    three = "First Name,Last Name\nA,One\nB,Two\nC,Three\n"
    r = _upload(admin_client, "/api/members/bulk-import", three)
    assert r.status_code == 403
    assert r.json["error"].startswith("Import would exceed your member limit.")
    assert "this file has 3 rows" in r.json["error"]
    assert r.json["limit"]["limit"] == 2
    assert r.json["limit"]["remaining"] == 2
    assert admin_client.get("/api/members").json["members"] == []

    # Blank lines are not data rows.
    two = "First Name,Last Name\nA,One\n\n\nB,Two\n"
    r = _upload(admin_client, "/api/members/bulk-import", two)
    assert r.status_code == 200
    assert r.json["success"] == 2


def test_bulk_import_unknown_household_id_is_a_row_error(admin_client):
    h = make_household(admin_client, name="Known House")
    csv_text = f"First Name,Last Name,Household ID\nKnown,Person,{h['id']}\nLost,Person,999999\n"
    r = _upload(admin_client, "/api/members/bulk-import", csv_text)
    assert r.status_code == 200
    assert r.json["success"] == 1
    assert r.json["errors"] == ["Row 3: Household ID 999999 not found"]

    members = admin_client.get("/api/members?q=Person").json["members"]
    assert [(m["firstName"], m["householdId"]) for m in members] == [("Known", h["id"])]


def test_bulk_import_create_new_household_flag(admin_client):
    existing = make_household(admin_client, name="Existing House")
    csv_text = (
        "First Name,Last Name,Household ID,Create New Household,Household Name,Household Type\n"
        f"Nell,Fresh,{existing['id']},true,Fresh Start,family\n"
        f"Olin,Stays,{existing['id']},false,,\n"
    )
    r = _upload(admin_client, "/api/members/bulk-import", csv_text)
    assert r.status_code == 200
    assert r.json["success"] == 2

    nell = admin_client.get("/api/members?q=Nell").json["members"][0]
    assert nell["householdId"] != existing["id"]
    h = admin_client.get(f"/api/households/{nell['householdId']}").json["household"]
    assert h["name"] == "Fresh Start"
    assert h["type"] == "family"

    olin = admin_client.get("/api/members?q=Olin").json["members"][0]
    assert olin["householdId"] == existing["id"]


def test_bulk_import_household_address_columns(admin_client):
    csv_text = (
        "First Name,Last Name,Household Address1,Address1,City,State,Zip\n"
        "Pam,Porch,12 Elm St,ignored,Springfield,IL,62701\n"
        "Quin,Yard,,34 Oak Ave,Shelbyville,IL,\n"
    )
    r = _upload(admin_client, "/api/members/bulk-import", csv_text)
    assert r.status_code == 200
    assert r.json["success"] == 2

    pam = admin_client.get("/api/members?q=Pam").json["members"][0]
    h = admin_client.get(f"/api/households/{pam['householdId']}").json["household"]
    assert (h["address1"], h["city"], h["state"], h["zip"]) == ("12 Elm St", "Springfield", "IL", "62701")
    assert h["name"] == "Pam Porch"
    assert h["type"] == "single"

    quin = admin_client.get("/api/members?q=Quin").json["members"][0]
    h = admin_client.get(f"/api/households/{quin['householdId']}").json["household"]
    assert h["address1"] == "34 Oak Ave"
    assert h["zip"] is None
