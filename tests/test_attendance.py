from tests.conftest import make_household, make_member


def _service(client, service_date="2024-03-03", service_type="divine_service", service_time="09:00"):
    r = client.post(
        "/api/services",
        json={"serviceDate": service_date, "serviceType": service_type, "serviceTime": service_time},
    )
    assert r.status_code == 201, r.json
    return r.json["service"]


def test_create_service(admin_client):
    svc = _service(admin_client)
    assert svc["serviceType"] == "divine_service"
    assert svc["displayName"].startswith("2024-03-03 09:00")
    assert svc["attendanceCount"] == 0

    r = admin_client.post("/api/services", json={"serviceDate": "2024-03-03", "serviceType": "divine_service"})
    assert r.status_code == 400
    assert r.json["error"] == "A service of this type already exists on this date"


def test_invalid_service_type(admin_client):
    r = admin_client.post("/api/services", json={"serviceDate": "2024-03-03", "serviceType": "brunch"})
    assert r.status_code == 400
    assert r.json["error"].startswith("Invalid service type")


def test_record_attendance_replaces_roll(admin_client):
    h = make_household(admin_client)
    a = make_member(admin_client, h["id"], "Ada", "Adams")
    b = make_member(admin_client, h["id"], "Ben", "Adams")
    svc = _service(admin_client)

    r = admin_client.post(
        "/api/attendance",
        json={
            "serviceId": svc["id"],
            "records": [
                {"memberId": a["id"], "attended": True, "tookCommunion": True},
                {"memberId": b["id"], "attended": True, "tookCommunion": False},
            ],
        },
    )
    assert r.status_code == 200
    assert r.json == {"success": 2, "failed": 0, "errors": []}

    r = admin_client.get(f"/api/services/{svc['id']}")
    assert r.json["service"]["attendanceCount"] == 2
    assert r.json["service"]["communionCount"] == 1

    # Ben is no longer marked present; his row is removed.
    r = admin_client.post(
        "/api/attendance",
        json={
            "serviceId": svc["id"],
            "records": [
                {"memberId": a["id"], "attended": True, "tookCommunion": False},
                {"memberId": b["id"], "attended": False, "tookCommunion": False},
            ],
        },
    )
    assert r.json["success"] == 1

    r = admin_client.get(f"/api/attendance?serviceId={svc['id']}")
    rows = r.json["attendance"]
    assert [row["firstName"] for row in rows] == ["Ada"]
    assert rows[0]["tookCommunion"] is False


def test_record_attendance_with_nobody_present(admin_client):
    svc = _service(admin_client)
    r = admin_client.post("/api/attendance", json={"serviceId": svc["id"], "records": []})
    assert r.status_code == 200
    assert r.json["success"] == 0
    assert "message" in r.json


def test_record_attendance_row_errors(admin_client):
    h = make_household(admin_client)
    a = make_member(admin_client, h["id"], "Cal", "Cole")
    svc = _service(admin_client)
    r = admin_client.post(
        "/api/attendance",
        json={
            "serviceId": svc["id"],
            "records": [
                {"memberId": a["id"], "attended": True},
                {"memberId": 99999, "attended": True, "tookCommunion": False},
            ],
        },
    )
    assert r.json["success"] == 0
    assert r.json["failed"] == 2
    assert r.json["errors"] == [
        "Row 1: Missing required fields (memberId, tookCommunion)",
        "Row 2: Member not found",
    ]


def test_attendance_requires_service_and_records(admin_client):
    r = admin_client.post("/api/attendance", json={"serviceId": 1})
    assert r.status_code == 400
    assert r.json["error"] == "Service ID and records array are required"


def test_member_attendance_history(admin_client):
    h = make_household(admin_client)
    a = make_member(admin_client, h["id"], "Dee", "Dunn")
    first = _service(admin_client, "2024-01-07")
    second = _service(admin_client, "2024-02-21", "midweek_lent", "19:00")
    for svc in (first, second):
        admin_client.post(
            "/api/attendance",
            json={"serviceId": svc["id"], "records": [{"memberId": a["id"], "attended": True, "tookCommunion": True}]},
        )

    r = admin_client.get(f"/api/attendance/member/{a['id']}")
    assert r.status_code == 200
    assert [row["serviceDate"] for row in r.json["attendance"]] == ["2024-02-21", "2024-01-07"]


def test_delete_service(admin_client):
    svc = _service(admin_client)
    assert admin_client.delete(f"/api/services/{svc['id']}").status_code == 200
    assert admin_client.get(f"/api/services/{svc['id']}").status_code == 404
