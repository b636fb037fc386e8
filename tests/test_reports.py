import csv
import io
from datetime import date, timedelta

from app.steward.modules.reports.service import age_group, age_on, giving_age_group
from tests.conftest import category_ids, make_household, make_member


def _rows(response) -> list[list[str]]:
    return list(csv.reader(io.StringIO(response.data.decode("utf-8"))))


def test_age_helpers():
    assert age_on(date(2000, 6, 15), date(2024, 6, 14)) == 23
    assert age_on(date(2000, 6, 15), date(2024, 6, 15)) == 24
    assert age_group(7) == "0-9"
    assert age_group(45) == "40-49"
    assert age_group(85) == "80+"


def test_membership_report_csv_and_json(admin_client):
    h = make_household(admin_client, name="Report Family", city="Springfield")
    make_member(admin_client, h["id"], "Rae", "Report", email1="rae@example.com")
    make_member(admin_client, h["id"], "Old", "Report", participation="inactive")

    r = admin_client.get("/api/reports/membership?format=json&participation=active")
    assert r.status_code == 200
    assert [m["firstName"] for m in r.json["members"]] == ["Rae"]

    r = admin_client.get("/api/reports/membership")
    assert r.mimetype == "text/csv"
    rows = _rows(r)
    assert rows[0][:4] == ["Household Name", "Household ID", "First Name", "Last Name"]
    assert len(rows) == 3

    r = admin_client.get("/api/reports/membership?participation=nope")
    assert r.status_code == 400


def test_giving_report_by_service(admin_client):
    cats = category_ids(admin_client)
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Gina", "Given")
    svc = admin_client.post(
        "/api/services", json={"serviceDate": "2024-03-03", "serviceType": "divine_service", "serviceTime": "09:00"}
    ).json["service"]

    def give(day, items, service_id=None):
        body = {"memberId": m["id"], "dateGiven": day, "items": items}
        if service_id:
            body["serviceId"] = service_id
        assert admin_client.post("/api/giving", json=body).status_code == 201

    give("2024-03-03", [{"categoryId": cats["Current"], "amount": 40}, {"categoryId": cats["Mission"], "amount": 10}], svc["id"])
    give("2024-03-05", [{"categoryId": cats["Current"], "amount": 5}])

    r = admin_client.get("/api/reports/giving?startDate=2024-03-01&endDate=2024-03-31&format=json")
    assert r.status_code == 200
    services = r.json["services"]
    assert [row["displayName"] for row in services][-1] == "OTHER"
    assert services[0]["categoryTotals"]["Current"] == "40.00"
    assert services[0]["total"] == "50.00"
    assert r.json["totals"]["Current"] == "45.00"
    assert r.json["totals"]["total"] == "55.00"

    r = admin_client.get("/api/reports/giving?startDate=2024-03-01&endDate=2024-03-31")
    rows = _rows(r)
    assert rows[0][:3] == ["Service Date", "Service Type", "Service Time"]
    assert rows[1][1] == "Divine Service"
    assert rows[2][1] == "OTHER"
    assert rows[-1][2] == "GRAND TOTAL"
    assert rows[-1][-1] == "55.00"


def test_giving_report_requires_dates(admin_client):
    r = admin_client.get("/api/reports/giving?startDate=2024-03-01")
    assert r.status_code == 400
    assert r.json["error"] == "Start date and end date are required"

    r = admin_client.get("/api/reports/giving?startDate=2024-04-01&endDate=2024-03-01")
    assert r.status_code == 400


def test_households_report(admin_client):
    h = make_household(admin_client, name="Env Family")
    make_member(admin_client, h["id"], "Ed", "Env", envelopeNumber=9, sequence="head_of_house")
    r = admin_client.get("/api/reports/households")
    assert r.status_code == 200
    row = next(x for x in r.json["households"] if x["id"] == h["id"])
    assert row["envelopeNumber"] == 9
    assert row["memberCount"] == 1


def test_attendance_report(admin_client):
    h = make_household(admin_client)
    a = make_member(admin_client, h["id"], "Al", "Attend", sex="male")
    b = make_member(admin_client, h["id"], "Bea", "Attend", sex="female")
    svc = admin_client.post(
        "/api/services", json={"serviceDate": "2024-02-04", "serviceType": "divine_service"}
    ).json["service"]
    admin_client.post(
        "/api/attendance",
        json={
            "serviceId": svc["id"],
            "records": [
                {"memberId": a["id"], "attended": True, "tookCommunion": True},
                {"memberId": b["id"], "attended": True, "tookCommunion": False},
            ],
        },
    )

    r = admin_client.get("/api/reports/attendance?startDate=2024-01-01&endDate=2024-12-31")
    assert r.status_code == 200
    per_service = r.json["attendancePerService"]
    assert len(per_service) == 1
    assert per_service[0]["totalAttendance"] == 2
    assert per_service[0]["totalCommunion"] == 1
    assert per_service[0]["malePercent"] == 50
    assert r.json["divineServiceComparison"]["divineService"]["serviceCount"] == 1
    assert r.json["year"] is None


def test_demographics_report(admin_client):
    h = make_household(admin_client)
    make_member(admin_client, h["id"], "Dot", "Demo", sex="female", dateOfBirth="1950-01-01")
    make_member(admin_client, h["id"], "Don", "Demo")
    r = admin_client.get("/api/reports/demographics")
    assert r.status_code == 200
    assert r.json["totalMembers"] == 2
    assert r.json["gender"] == [{"name": "Female", "value": 1}]
    ages = {g["name"]: g["value"] for g in r.json["ageGroups"]}
    assert ages["Unknown"] == 1
    assert sum(ages.values()) == 2


def test_dashboard_stats(admin_client, viewer_client):
    h = make_household(admin_client)
    make_member(admin_client, h["id"], "Stat", "One")
    make_member(admin_client, h["id"], "Stat", "Two", participation="inactive")
    r = viewer_client.get("/api/dashboard/stats")
    assert r.status_code == 200
    assert r.json["totalMembers"] == 2
    assert r.json["activeMembers"] == 1
    assert len(r.json["monthlyGiving"]) == 6


def test_viewer_cannot_read_reports(viewer_client):
    r = viewer_client.get("/api/reports/membership")
    assert r.status_code == 403
    r = viewer_client.get("/api/reports/attendance")
    assert r.status_code == 403
    assert r.json["missingPermission"] == "analytics.view"


def _service(client, day, service_type="divine_service", time=None) -> dict:
    body = {"serviceDate": day, "serviceType": service_type}
    if time:
        body["serviceTime"] = time
    r = client.post("/api/services", json=body)
    assert r.status_code == 201
    return r.json["service"]


def test_giving_age_groups():
    assert giving_age_group(None) == "unknown"
    assert giving_age_group(14) == "under 15"
    assert giving_age_group(15) == "15-18"
    assert giving_age_group(18) == "15-18"
    assert giving_age_group(34) == "19-34"
    assert giving_age_group(64) == "50-64"
    assert giving_age_group(65) == "65+"


def test_congressional_statistics_csv(admin_client):
    h = make_household(admin_client)
    make_member(admin_client, h["id"], "Baby", "Stat", dateOfBirth="2023-01-10", baptismDate="2024-02-01")
    make_member(admin_client, h["id"], "Adult", "Stat", dateOfBirth="1990-01-10", baptismDate="2024-05-01")
    make_member(admin_client, h["id"], "Old", "Stat", baptismDate="1960-05-01", confirmationDate="1974-05-01")
    make_member(
        admin_client, h["id"], "Teen", "Stat", dateOfBirth="2010-03-01", confirmationDate="2024-04-14"
    )
    make_member(admin_client, h["id"], "Gone", "Stat", participation="deceased", deceasedDate="2024-07-01")
    make_member(admin_client, h["id"], "Left", "Stat", participation="inactive", dateRemoved="2023-07-01")
    _service(admin_client, "2024-03-03")
    _service(admin_client, "2024-03-06", "midweek_lent")

    r = admin_client.get("/api/reports/congressional-statistics?startDate=2024-01-01&endDate=2024-12-31")
    assert r.status_code == 200
    assert r.mimetype == "text/csv"
    assert "congressional-statistics-report-2024-01-01-to-2024-12-31.csv" in r.headers["Content-Disposition"]
    rows = _rows(r)
    assert rows[0] == ["Metric", "Value"]
    stats = dict(rows[1:])
    assert stats["Total Baptized Membership"] == "3"
    assert stats["Number Baptized During Year - Infant/Children (<18)"] == "1"
    assert stats["Number Baptized During Year - Adults (18+)"] == "1"
    assert stats["Total Number Baptized During Year"] == "2"
    assert stats["Total Confirmed Membership"] == "2"
    assert stats["Confirmation Gains - Juniors (<18)"] == "1"
    assert stats["Total Confirmation Gains"] == "1"
    assert stats["Losses (Deceased or Removed)"] == "1"
    assert float(stats["Weekly Church Attendance (Average)"]) == 0


def test_congressional_statistics_requires_dates(admin_client, viewer_client):
    r = admin_client.get("/api/reports/congressional-statistics?endDate=2024-12-31")
    assert r.status_code == 400
    assert r.json["error"] == "Start date and end date are required"

    r = viewer_client.get("/api/reports/congressional-statistics?startDate=2024-01-01&endDate=2024-12-31")
    assert r.status_code == 403


def test_giving_analytics(admin_client, viewer_client):
    cats = category_ids(admin_client)
    h = make_household(admin_client)
    young = make_member(admin_client, h["id"], "Young", "Giver", dateOfBirth=f"{date.today().year - 10}-01-01")
    unknown = make_member(admin_client, h["id"], "Ageless", "Giver")
    svc = _service(admin_client, "2024-03-03")

    for body in (
        {"memberId": young["id"], "dateGiven": "2024-03-03", "serviceId": svc["id"],
         "items": [{"categoryId": cats["Current"], "amount": 30}, {"categoryId": cats["Mission"], "amount": 10}]},
        {"memberId": unknown["id"], "dateGiven": "2024-04-10", "items": [{"categoryId": cats["Current"], "amount": 20}]},
    ):
        assert admin_client.post("/api/giving", json=body).status_code == 201

    r = admin_client.get("/api/reports/giving-analytics?startDate=2024-03-01&endDate=2024-04-30")
    assert r.status_code == 200
    body = r.json
    assert body["year"] is None
    assert body["totalGiving"] == "60.00"
    assert body["totalRecords"] == 2
    assert [m["month"] for m in body["monthlyTrend"]] == ["March 2024", "April 2024"]
    assert body["monthlyTrend"][0]["totalAmount"] == "40.00"
    assert body["monthlyTrend"][0]["categoryAmounts"][str(cats["Mission"])] == "10.00"
    assert body["monthlyGivingByService"][0]["divineService"] == "40.00"
    assert body["monthlyGivingByService"][1]["other"] == "20.00"

    by_type = {t["name"]: t for t in body["serviceTypeData"]}
    assert by_type["Divine Service"]["averageAmount"] == "40.00"
    assert by_type["Other"]["recordCount"] == 1
    ages = {a["name"]: a["totalAmount"] for a in body["ageGroupData"]}
    assert ages == {"under 15": "40.00", "Unknown": "20.00"}
    assert {c["name"]: c["value"] for c in body["categoryBreakdown"]} == {"Current": "50.00", "Mission": "10.00"}

    r = admin_client.get("/api/reports/giving-analytics")
    assert r.json["year"] == date.today().year
    assert len(r.json["monthlyTrend"]) == 12

    assert viewer_client.get("/api/reports/giving-analytics").status_code == 403


def test_dashboard_recent_giving(admin_client, viewer_client):
    cats = category_ids(admin_client)
    named = make_household(admin_client, name="Named House")
    m1 = make_member(admin_client, named["id"], "Ned", "Named")
    bare = make_household(admin_client)
    m2 = make_member(admin_client, bare["id"], "Solo", "Giver")
    for member, day in ((m1, "2024-01-07"), (m2, "2024-01-14")):
        body = {"memberId": member["id"], "dateGiven": day, "items": [{"categoryId": cats["Current"], "amount": 5}]}
        assert admin_client.post("/api/giving", json=body).status_code == 201

    r = viewer_client.get("/api/dashboard/recent-giving")
    assert r.status_code == 200
    assert [(x["dateGiven"], x["householdName"]) for x in r.json["giving"]] == [
        ("2024-01-14", "Solo Giver"),
        ("2024-01-07", "Named House"),
    ]


def test_dashboard_recent_giving_by_service(admin_client, viewer_client):
    cats = category_ids(admin_client)
    h = make_household(admin_client)
    m = make_member(admin_client, h["id"], "Serv", "Giver")
    older = _service(admin_client, "2024-01-07")
    newer = _service(admin_client, "2024-01-14", time="10:30")
    body = {
        "memberId": m["id"],
        "dateGiven": "2024-01-14",
        "serviceId": newer["id"],
        "items": [{"categoryId": cats["Current"], "amount": 25}, {"categoryId": cats["Mission"], "amount": 5}],
    }
    assert admin_client.post("/api/giving", json=body).status_code == 201

    r = viewer_client.get("/api/dashboard/recent-giving-by-service")
    assert r.status_code == 200
    services = r.json["services"]
    assert [x["serviceId"] for x in services] == [newer["id"], older["id"]]
    assert services[0]["serviceTime"] == "10:30"
    assert services[0]["totalAmount"] == "30.00"
    assert {c["categoryName"]: c["amount"] for c in services[0]["categoryTotals"]} == {
        "Current": "25.00",
        "Mission": "5.00",
    }
    assert services[1]["categoryTotals"] == []
    assert services[1]["totalAmount"] == "0.00"


def test_dashboard_recent_services(admin_client, viewer_client):
    h = make_household(admin_client)
    a = make_member(admin_client, h["id"], "Ann", "Pew")
    b = make_member(admin_client, h["id"], "Ben", "Pew")
    created = [_service(admin_client, f"2024-02-0{n + 1}") for n in range(6)]
    latest_id = created[-1]["id"]
    admin_client.post(
        "/api/attendance",
        json={
            "serviceId": latest_id,
            "records": [
                {"memberId": a["id"], "attended": True, "tookCommunion": True},
                {"memberId": b["id"], "attended": False, "tookCommunion": False},
            ],
        },
    )

    r = viewer_client.get("/api/dashboard/recent-services")
    assert r.status_code == 200
    services = r.json["services"]
    assert len(services) == 5
    assert services[0]["serviceDate"] == "2024-02-06"
    assert services[0]["attendeesCount"] == 1
    assert services[0]["communionCount"] == 1
    assert services[-1]["serviceDate"] == "2024-02-02"


def test_dashboard_recent_status_changes(admin_client, viewer_client):
    h = make_household(admin_client, name="Status House")
    make_member(admin_client, h["id"], "New", "Comer", dateReceived="2024-05-01")
    make_member(admin_client, h["id"], "Gone", "Quiet", participation="inactive", dateRemoved="2024-06-01")
    make_member(admin_client, h["id"], "Steady", "One")

    r = viewer_client.get("/api/dashboard/recent-status-changes")
    assert r.status_code == 200
    changes = r.json["changes"]
    assert [(c["firstName"], c["type"], c["date"]) for c in changes] == [
        ("Gone", "inactive", "2024-06-01"),
        ("New", "new", "2024-05-01"),
    ]
    assert changes[0]["householdName"] == "Status House"


def test_dashboard_upcoming_member_events(admin_client, viewer_client):
    today = date.today()
    soon = today + timedelta(days=10)
    later = today + timedelta(days=200)
    h = make_household(admin_client)

    def years_back(d: date, n: int) -> str:
        # Clamp the day so the date exists in every year.
        return d.replace(year=d.year - n, day=min(d.day, 28)).isoformat()

    m = make_member(admin_client, h["id"], "Bap", "Tized", baptismDate=years_back(soon, 30))
    make_member(admin_client, h["id"], "Far", "Off", confirmationDate=years_back(later, 15))

    r = viewer_client.get("/api/dashboard/upcoming-member-events")
    assert r.status_code == 200
    events = r.json["events"]
    assert len(events) == 1
    assert events[0]["type"] == "baptism_anniversary"
    assert events[0]["label"] == "Baptism Anniversary"
    assert events[0]["memberId"] == m["id"]
    assert events[0]["memberName"] == "Bap Tized"
    assert today.isoformat() <= events[0]["date"] <= (today + timedelta(days=90)).isoformat()


def test_dashboard_feeds_require_login(anon):
    r = anon.get("/api/dashboard/recent-giving")
    assert r.status_code == 401
