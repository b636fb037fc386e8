"""
Read-only report builders. Each returns plain dicts; routes decide JSON vs CSV.
"""
from __future__ import annotations

from collections import Counter, defaultdict
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.steward.constants import GUEST_MEMBERSHIP_CODE, PARTICIPATION_STATUSES
from app.steward.errors import ApiError
from app.steward.modules.attendance.models import Attendance, Service
from app.steward.modules.attendance.service import format_service_type, service_display_name
from app.steward.modules.giving.models import Giving, GivingCategory, GivingItem
from app.steward.modules.members.models import Household, Member
from app.steward.modules.members.service import household_display_name
from app.steward.utils import iso, money

ZERO = Decimal("0")

AGE_GROUPS = ("0-9", "10-19", "20-29", "30-39", "40-49", "50-59", "60-69", "70-79", "80+")


def age_on(born: date, on: date) -> int:
    years = on.year - born.year
    if (on.month, on.day) < (born.month, born.day):
        years -= 1
    return years


def age_group(age: int) -> str:
    if age >= 80:
        return "80+"
    lo = max(age, 0) // 10 * 10
    return f"{lo}-{lo + 9}"


def _round2(value: float) -> float:
    return round(value, 2)


def _month_start(d: date, months_back: int = 0) -> date:
    y, m = d.year, d.month - months_back
    while m <= 0:
        m += 12
        y -= 1
    return date(y, m, 1)


def _month_end(d: date) -> date:
    nxt = date(d.year + (d.month == 12), d.month % 12 + 1, 1)
    return nxt - timedelta(days=1)


def parse_participation_filter(raw: str | None) -> list[str]:
    if not raw:
        return list(PARTICIPATION_STATUSES)
    statuses = [p.strip().lower() for p in raw.split(",") if p.strip()]
    invalid = [p for p in statuses if p not in PARTICIPATION_STATUSES]
    if invalid:
        raise ApiError(f"Invalid participation statuses: {', '.join(invalid)}")
    return statuses


# ---------------------------------------------------------------------------
# Membership
# ---------------------------------------------------------------------------

MEMBERSHIP_CSV_HEADERS = [
    "Household Name",
    "Household ID",
    "First Name",
    "Last Name",
    "Preferred Name",
    "Email",
    "Phone",
    "Participation Status",
    "Envelope Number",
    "Date of Birth",
    "Date Received",
    "Address",
    "City",
    "State",
    "ZIP",
]


def membership_report(s: Session, church_id: int, statuses: list[str]) -> list[dict[str, Any]]:
    rows = (
        s.query(Member)
        .filter(Member.church_id == church_id, Member.participation.in_(statuses))
        .order_by(Member.household_id.asc(), Member.last_name.asc(), Member.first_name.asc())
        .all()
    )
    out: list[dict[str, Any]] = []
    for m in rows:
        h = m.household
        out.append(
            {
                "id": m.id,
                "householdId": m.household_id,
                "householdName": household_display_name(h) if h else None,
                "firstName": m.first_name,
                "middleName": m.middle_name,
                "lastName": m.last_name,
                "preferredName": m.preferred_name,
                "email1": m.email1,
                "phoneHome": m.phone_home,
                "phoneCell1": m.phone_cell1,
                "participation": m.participation,
                "envelopeNumber": m.envelope_number,
                "dateOfBirth": iso(m.date_of_birth),
                "dateReceived": iso(m.date_received),
                "address": " ".join(p for p in ((h.address1, h.address2) if h else ()) if p),
                "city": h.city if h else None,
                "state": h.state if h else None,
                "zip": h.zip if h else None,
            }
        )
    return out


def membership_csv_rows(members: list[dict[str, Any]]) -> list[list[Any]]:
    def na(v: Any) -> Any:
        return "N/A" if v is None or v == "" else v

    return [
        [
            na(m["householdName"]),
            na(m["householdId"]),
            m["firstName"] or "",
            m["lastName"] or "",
            m["preferredName"] or "",
            na(m["email1"]),
            na(m["phoneCell1"] or m["phoneHome"]),
            na(m["participation"]),
            na(m["envelopeNumber"]),
            na(m["dateOfBirth"]),
            na(m["dateReceived"]),
            na(m["address"]),
            na(m["city"]),
            na(m["state"]),
            na(m["zip"]),
        ]
        for m in members
    ]


# ---------------------------------------------------------------------------
# Giving by service
# ---------------------------------------------------------------------------


def giving_report(s: Session, church_id: int, start: date, end: date) -> dict[str, Any]:
    """
    Category totals per service in range. Giving not tied to a service is
    grouped into a trailing "OTHER" row; a grand total closes the report.
    """
    if start > end:
        raise ApiError("Start date must be before or equal to end date")

    services = (
        s.query(Service)
        .filter(Service.church_id == church_id, Service.service_date >= start, Service.service_date <= end)
        .order_by(Service.service_date.asc(), Service.service_time.asc())
        .all()
    )
    categories = (
        s.query(GivingCategory)
        .filter(GivingCategory.church_id == church_id, GivingCategory.is_active.is_(True))
        .order_by(GivingCategory.display_order.asc(), GivingCategory.name.asc())
        .all()
    )
    items = (
        s.query(Giving.service_id, GivingItem.category_id, GivingItem.amount)
        .join(GivingItem, GivingItem.giving_id == Giving.id)
        .join(Member, Member.id == Giving.member_id)
        .filter(Member.church_id == church_id, Giving.date_given >= start, Giving.date_given <= end)
        .all()
    )

    by_service: dict[Any, dict[int, Decimal]] = defaultdict(lambda: defaultdict(lambda: ZERO))
    for service_id, category_id, amount in items:
        by_service[service_id if service_id is not None else "OTHER"][category_id] += amount

    def row(totals: dict[int, Decimal]) -> tuple[dict[str, str], str]:
        per_cat = {c.name: money(totals.get(c.id, ZERO)) for c in categories}
        return per_cat, money(sum(totals.values(), ZERO))

    out_rows: list[dict[str, Any]] = []
    for svc in services:
        per_cat, total = row(by_service.get(svc.id, {}))
        out_rows.append(
            {
                "serviceId": svc.id,
                "serviceDate": iso(svc.service_date),
                "serviceType": svc.service_type,
                "serviceTime": svc.service_time,
                "displayName": service_display_name(svc),
                "categoryTotals": per_cat,
                "total": total,
            }
        )

    other = by_service.get("OTHER")
    if other and sum(other.values(), ZERO) > ZERO:
        per_cat, total = row(other)
        out_rows.append(
            {
                "serviceId": None,
                "serviceDate": None,
                "serviceType": None,
                "serviceTime": None,
                "displayName": "OTHER",
                "categoryTotals": per_cat,
                "total": total,
            }
        )

    # Grand totals sum the rows shown above.
    grand_totals = {
        c.name: money(sum((Decimal(r["categoryTotals"][c.name]) for r in out_rows), ZERO)) for c in categories
    }
    grand_totals["total"] = money(sum((Decimal(r["total"]) for r in out_rows), ZERO))

    return {
        "categories": [c.name for c in categories],
        "services": out_rows,
        "totals": grand_totals,
    }


def giving_csv(report: dict[str, Any]) -> tuple[list[str], list[list[Any]]]:
    cats = report["categories"]
    headers = ["Service Date", "Service Type", "Service Time", *cats, "Total"]
    rows: list[list[Any]] = []
    for r in report["services"]:
        rows.append(
            [
                r["serviceDate"] or "",
                format_service_type(r["serviceType"]) if r["serviceType"] else "OTHER",
                r["serviceTime"] or "",
                *[r["categoryTotals"][c] for c in cats],
                r["total"],
            ]
        )
    rows.append(["", "", "GRAND TOTAL", *[report["totals"][c] for c in cats], report["totals"]["total"]])
    return headers, rows


# ---------------------------------------------------------------------------
# Households by envelope
# ---------------------------------------------------------------------------


def households_report(s: Session, church_id: int) -> list[dict[str, Any]]:
    households = s.query(Household).filter(Household.church_id == church_id).all()
    out = []
    for h in households:
        envelope = next((m.envelope_number for m in h.members if m.envelope_number is not None), None)
        if envelope is None:
            continue
        out.append(
            {
                "id": h.id,
                "name": household_display_name(h),
                "type": h.type,
                "envelopeNumber": envelope,
                "memberCount": len(h.members),
            }
        )
    out.sort(key=lambda x: x["envelopeNumber"])
    return out


# ---------------------------------------------------------------------------
# Attendance analytics
# ---------------------------------------------------------------------------


def attendance_report(s: Session, church_id: int, start: date, end: date) -> dict[str, Any]:
    services = (
        s.query(Service)
        .filter(Service.church_id == church_id, Service.service_date >= start, Service.service_date <= end)
        .order_by(Service.service_date.asc())
        .all()
    )
    records = (
        s.query(Attendance.service_id, Attendance.took_communion, Member.sex, Member.date_of_birth, Member.membership_code)
        .join(Member, Member.id == Attendance.member_id)
        .join(Service, Service.id == Attendance.service_id)
        .filter(
            Service.church_id == church_id,
            Member.church_id == church_id,
            Service.service_date >= start,
            Service.service_date <= end,
            Attendance.attended.is_(True),
        )
        .all()
    )
    by_service: dict[int, list[Any]] = defaultdict(list)
    for rec in records:
        by_service[rec.service_id].append(rec)

    per_service = []
    for svc in services:
        recs = by_service.get(svc.id, [])
        male = sum(1 for r in recs if r.sex == "male")
        female = sum(1 for r in recs if r.sex == "female")
        gendered = male + female
        children = sum(1 for r in recs if r.date_of_birth and age_on(r.date_of_birth, svc.service_date) < 18)
        guests = sum(1 for r in recs if r.membership_code == GUEST_MEMBERSHIP_CODE)
        per_service.append(
            {
                "serviceId": svc.id,
                "serviceDate": iso(svc.service_date),
                "serviceType": svc.service_type,
                "serviceTime": svc.service_time,
                "totalAttendance": len(recs),
                "totalCommunion": sum(1 for r in recs if r.took_communion),
                "maleCount": male,
                "femaleCount": female,
                "malePercent": _round2(male / gendered * 100) if gendered else 0,
                "femalePercent": _round2(female / gendered * 100) if gendered else 0,
                "childrenCount": children,
                "memberCount": len(recs) - guests,
                "guestCount": guests,
            }
        )

    def avg(total: int, n: int) -> float:
        return _round2(total / n) if n else 0

    divine = [p for p in per_service if p["serviceType"] == "divine_service"]
    other = [p for p in per_service if p["serviceType"] != "divine_service"]
    divine_total = sum(p["totalAttendance"] for p in divine)
    other_total = sum(p["totalAttendance"] for p in other)
    member_total = sum(p["memberCount"] for p in per_service)
    guest_total = sum(p["guestCount"] for p in per_service)

    trend = []
    cursor = date(start.year, start.month, 1)
    while cursor <= end:
        m_start, m_end = max(cursor, start), min(_month_end(cursor), end)
        month_rows = [p for p in per_service if m_start.isoformat() <= p["serviceDate"] <= m_end.isoformat()]
        n = len(month_rows)
        trend.append(
            {
                "month": cursor.strftime("%B %Y"),
                "attendance": avg(sum(p["totalAttendance"] for p in month_rows), n),
                "communion": avg(sum(p["totalCommunion"] for p in month_rows), n),
                "serviceCount": n,
                "memberAttendance": avg(sum(p["memberCount"] for p in month_rows), n),
                "guestAttendance": avg(sum(p["guestCount"] for p in month_rows), n),
            }
        )
        cursor = _month_end(cursor) + timedelta(days=1)

    return {
        "attendancePerService": per_service,
        "divineServiceComparison": {
            "divineService": {
                "totalAttendance": divine_total,
                "serviceCount": len(divine),
                "averageAttendance": avg(divine_total, len(divine)),
            },
            "otherServices": {
                "totalAttendance": other_total,
                "serviceCount": len(other),
                "averageAttendance": avg(other_total, len(other)),
            },
        },
        "memberVsGuestComparison": {
            "members": {"totalAttendance": member_total, "averageAttendance": avg(member_total, len(per_service))},
            "guests": {"totalAttendance": guest_total, "averageAttendance": avg(guest_total, len(per_service))},
        },
        "monthlyTrend": trend,
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
    }


# ---------------------------------------------------------------------------
# Demographics
# ---------------------------------------------------------------------------


def demographics_report(s: Session, church_id: int, *, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    rows = (
        s.query(Member.sex, Member.date_of_birth, Member.participation, Household.type)
        .outerjoin(Household, Household.id == Member.household_id)
        .filter(Member.church_id == church_id)
        .all()
    )

    gender: Counter[str] = Counter()
    ages: Counter[str] = Counter()
    household_types: Counter[str] = Counter()
    statuses: Counter[str] = Counter()
    for sex, dob, participation, htype in rows:
        gender[sex if sex in ("male", "female", "other") else "unknown"] += 1
        ages[age_group(age_on(dob, today)) if dob else "unknown"] += 1
        if htype:
            household_types[htype.lower() if htype.lower() in ("family", "single", "other") else "other"] += 1
        else:
            household_types["unknown"] += 1
        if participation in PARTICIPATION_STATUSES:
            statuses[participation] += 1

    def series(counter: Counter[str], order: tuple[str, ...]) -> list[dict[str, Any]]:
        return [
            {"name": "Unknown" if k == "unknown" else (k if k[0].isdigit() else k.capitalize()), "value": counter[k]}
            for k in order
            if counter[k] > 0
        ]

    return {
        "gender": series(gender, ("male", "female", "other")),
        "ageGroups": series(ages, (*AGE_GROUPS, "unknown")),
        "householdTypes": series(household_types, ("family", "single", "other", "unknown")),
        "memberStatus": series(statuses, ("active", "inactive", "deceased", "homebound", "military", "school")),
        "totalMembers": len(rows),
    }


# ---------------------------------------------------------------------------
# Dashboard
# ---------------------------------------------------------------------------


def _giving_sum(s: Session, church_id: int, start: date, end: date) -> Decimal:
    total = (
        s.query(func.coalesce(func.sum(GivingItem.amount), 0))
        .join(Giving, Giving.id == GivingItem.giving_id)
        .join(Member, Member.id == Giving.member_id)
        .filter(Member.church_id == church_id, Giving.date_given >= start, Giving.date_given <= end)
        .scalar()
    )
    return Decimal(str(total or 0))


def dashboard_stats(s: Session, church_id: int, *, today: date | None = None) -> dict[str, Any]:
    today = today or date.today()
    total_members = s.query(func.count(Member.id)).filter(Member.church_id == church_id).scalar() or 0
    active_members = (
        s.query(func.count(Member.id))
        .filter(Member.church_id == church_id, Member.participation == "active")
        .scalar()
        or 0
    )
    recent_services = (
        s.query(func.count(Service.id))
        .filter(
            Service.church_id == church_id,
            Service.service_date >= today - timedelta(days=30),
            Service.service_date <= today,
        )
        .scalar()
        or 0
    )

    back6 = _month_start(today, 6)
    six_months_ago = back6.replace(day=min(today.day, _month_end(back6).day))
    services = (
        s.query(Service.id)
        .filter(Service.church_id == church_id, Service.service_date >= six_months_ago, Service.service_date <= today)
        .all()
    )
    service_ids = [sid for (sid,) in services]
    attended = 0
    if service_ids:
        attended = (
            s.query(func.count(Attendance.id))
            .join(Member, Member.id == Attendance.member_id)
            .filter(
                Member.church_id == church_id,
                Attendance.service_id.in_(service_ids),
                Attendance.attended.is_(True),
            )
            .scalar()
            or 0
        )

    monthly = []
    for back in range(5, -1, -1):
        m_start = _month_start(today, back)
        m_end = min(_month_end(m_start), today)
        monthly.append({"month": m_start.strftime("%b %Y"), "amount": money(_giving_sum(s, church_id, m_start, m_end))})

    return {
        "totalMembers": total_members,
        "activeMembers": active_members,
        "inactiveMembers": total_members - active_members,
        "recentServices": recent_services,
        "thisMonthGiving": money(_giving_sum(s, church_id, _month_start(today), today)),
        "thisYearGiving": money(_giving_sum(s, church_id, date(today.year, 1, 1), today)),
        "averageAttendance": _round2(attended / len(service_ids)) if service_ids else 0,
        "monthlyGiving": monthly,
    }


DASHBOARD_FEED_LIMIT = 5
UPCOMING_DAYS_AHEAD = 90
UPCOMING_MAX_EVENTS = 20

ANNIVERSARY_FIELDS = (
    ("baptism_date", "baptism_anniversary", "Baptism Anniversary"),
    ("confirmation_date", "confirmation_anniversary", "Confirmation Anniversary"),
)


def _member_household_name(m: Member) -> str | None:
    h = m.household
    return household_display_name(h) if h else None


def recent_giving(s: Session, church_id: int) -> list[dict[str, Any]]:
    rows = (
        s.query(Giving, Member)
        .join(Member, Member.id == Giving.member_id)
        .filter(Member.church_id == church_id)
        .order_by(Giving.date_given.desc(), Giving.created_at.desc())
        .limit(DASHBOARD_FEED_LIMIT)
        .all()
    )
    return [
        {
            "id": gift.id,
            "dateGiven": iso(gift.date_given),
            "householdName": _member_household_name(m) or f"{m.first_name} {m.last_name}",
        }
        for gift, m in rows
    ]


def _latest_services(s: Session, church_id: int) -> list[Service]:
    return (
        s.query(Service)
        .filter(Service.church_id == church_id)
        .order_by(Service.service_date.desc(), Service.service_time.desc())
        .limit(DASHBOARD_FEED_LIMIT)
        .all()
    )


def recent_giving_by_service(s: Session, church_id: int) -> list[dict[str, Any]]:
    services = _latest_services(s, church_id)
    if not services:
        return []
    rows = (
        s.query(Giving.service_id, GivingCategory.id, GivingCategory.name, func.sum(GivingItem.amount))
        .join(GivingItem, GivingItem.giving_id == Giving.id)
        .join(GivingCategory, GivingCategory.id == GivingItem.category_id)
        .filter(Giving.service_id.in_([svc.id for svc in services]))
        .group_by(Giving.service_id, GivingCategory.id, GivingCategory.name, GivingCategory.display_order)
        .order_by(GivingCategory.display_order.asc(), GivingCategory.name.asc())
        .all()
    )
    by_service: dict[int, list[tuple[int, str, Decimal]]] = defaultdict(list)
    for service_id, category_id, name, amount in rows:
        by_service[service_id].append((category_id, name, Decimal(str(amount or 0))))

    out = []
    for svc in services:
        totals = by_service.get(svc.id, [])
        out.append(
            {
                "serviceId": svc.id,
                "serviceDate": iso(svc.service_date),
                "serviceType": svc.service_type,
                "serviceTime": svc.service_time,
                "categoryTotals": [
                    {"categoryId": cid, "categoryName": name, "amount": money(amount)} for cid, name, amount in totals
                ],
                "totalAmount": money(sum((a for _, _, a in totals), ZERO)),
            }
        )
    return out


def recent_services(s: Session, church_id: int) -> list[dict[str, Any]]:
    out = []
    for svc in _latest_services(s, church_id):
        attended = [a for a in svc.attendance if a.attended]
        out.append(
            {
                "id": svc.id,
                "serviceDate": iso(svc.service_date),
                "serviceType": svc.service_type,
                "serviceTime": svc.service_time,
                "attendeesCount": len(attended),
                "communionCount": sum(1 for a in attended if a.took_communion),
            }
        )
    return out


def recent_status_changes(s: Session, church_id: int) -> list[dict[str, Any]]:
    """Newest inactivations and receptions, merged and cut to the feed size."""
    inactive = (
        s.query(Member)
        .filter(Member.church_id == church_id, Member.participation == "inactive")
        .order_by(Member.updated_at.desc())
        .limit(DASHBOARD_FEED_LIMIT)
        .all()
    )
    received = (
        s.query(Member)
        .filter(Member.church_id == church_id, Member.date_received.isnot(None))
        .order_by(Member.date_received.desc())
        .limit(DASHBOARD_FEED_LIMIT)
        .all()
    )

    def change(m: Member, kind: str, when: date) -> dict[str, Any]:
        return {
            "id": m.id,
            "firstName": m.first_name,
            "lastName": m.last_name,
            "participation": m.participation,
            "householdId": m.household_id,
            "householdName": _member_household_name(m),
            "type": kind,
            "date": when.isoformat(),
        }

    changes = [change(m, "inactive", m.date_removed or m.updated_at.date()) for m in inactive]
    changes += [change(m, "new", m.date_received) for m in received]
    changes.sort(key=lambda c: c["date"], reverse=True)
    return changes[:DASHBOARD_FEED_LIMIT]


def _anniversary(original: date, year: int) -> date:
    # Feb 29 falls back to Feb 28 in common years.
    try:
        return original.replace(year=year)
    except ValueError:
        return original.replace(year=year, day=28)


def upcoming_member_events(s: Session, church_id: int, *, today: date | None = None) -> list[dict[str, Any]]:
    today = today or date.today()
    horizon = today + timedelta(days=UPCOMING_DAYS_AHEAD)
    members = (
        s.query(Member)
        .filter(
            Member.church_id == church_id,
            (Member.baptism_date.isnot(None)) | (Member.confirmation_date.isnot(None)),
        )
        .all()
    )

    events = []
    for m in members:
        for field, kind, label in ANNIVERSARY_FIELDS:
            original = getattr(m, field)
            if original is None:
                continue
            for year in (today.year, today.year + 1):
                if year <= original.year:
                    continue
                when = _anniversary(original, year)
                if today <= when <= horizon:
                    events.append(
                        {
                            "type": kind,
                            "label": label,
                            "date": when.isoformat(),
                            "memberId": m.id,
                            "memberName": f"{m.first_name} {m.last_name}",
                            "householdId": m.household_id,
                            "householdName": _member_household_name(m),
                        }
                    )
    events.sort(key=lambda e: (e["date"], e["label"]))
    return events[:UPCOMING_MAX_EVENTS]


# ---------------------------------------------------------------------------
# Congressional statistics
# ---------------------------------------------------------------------------

CONGRESSIONAL_CSV_HEADERS = ["Metric", "Value"]

ADULT_AGE = 18


def _count_members(s: Session, church_id: int, *criteria) -> int:
    return s.query(func.count(Member.id)).filter(Member.church_id == church_id, *criteria).scalar() or 0


def _split_by_age(s: Session, church_id: int, column, start: date, end: date) -> tuple[int, int]:
    """(under 18, 18 and over) at the event date; members without a birth date are not counted."""
    rows = (
        s.query(column, Member.date_of_birth)
        .filter(Member.church_id == church_id, column.isnot(None), column >= start, column <= end)
        .all()
    )
    young = adult = 0
    for happened, born in rows:
        if born is None:
            continue
        if age_on(born, happened) < ADULT_AGE:
            young += 1
        else:
            adult += 1
    return young, adult


def congressional_statistics(s: Session, church_id: int, start: date, end: date) -> list[tuple[str, Any]]:
    """Yearly figures for the synod's congregational statistics form."""
    if start > end:
        raise ApiError("Start date must be before or equal to end date")

    baptized_young, baptized_adult = _split_by_age(s, church_id, Member.baptism_date, start, end)
    confirmed_young, confirmed_adult = _split_by_age(s, church_id, Member.confirmation_date, start, end)
    losses = _count_members(
        s, church_id, Member.deceased_date.isnot(None), Member.deceased_date >= start, Member.deceased_date <= end
    ) + _count_members(
        s, church_id, Member.date_removed.isnot(None), Member.date_removed >= start, Member.date_removed <= end
    )

    in_range = (
        Service.church_id == church_id,
        Service.service_type == "divine_service",
        Service.service_date >= start,
        Service.service_date <= end,
    )
    divine_count = s.query(func.count(Service.id)).filter(*in_range).scalar() or 0
    divine_attendance = (
        s.query(func.count(Attendance.id))
        .join(Service, Service.id == Attendance.service_id)
        .filter(*in_range, Attendance.attended.is_(True))
        .scalar()
        or 0
    )
    guests = (
        s.query(func.count(Attendance.id))
        .join(Service, Service.id == Attendance.service_id)
        .join(Member, Member.id == Attendance.member_id)
        .filter(*in_range, Attendance.attended.is_(True), Member.membership_code == GUEST_MEMBERSHIP_CODE)
        .scalar()
        or 0
    )

    return [
        ("Total Baptized Membership", _count_members(s, church_id, Member.baptism_date.isnot(None))),
        ("Number Baptized During Year - Infant/Children (<18)", baptized_young),
        ("Number Baptized During Year - Adults (18+)", baptized_adult),
        ("Total Number Baptized During Year", baptized_young + baptized_adult),
        ("Total Confirmed Membership", _count_members(s, church_id, Member.confirmation_date.isnot(None))),
        ("Confirmation Gains - Juniors (<18)", confirmed_young),
        ("Confirmation Gains - Adults (18+)", confirmed_adult),
        ("Total Confirmation Gains", confirmed_young + confirmed_adult),
        ("Losses (Deceased or Removed)", losses),
        ("Weekly Church Attendance (Average)", _round2(divine_attendance / divine_count) if divine_count else 0),
        ("Average Visitors Per Service", _round2(guests / divine_count) if divine_count else 0),
    ]


# ---------------------------------------------------------------------------
# Giving analytics
# ---------------------------------------------------------------------------

GIVING_AGE_GROUPS = ("under 15", "15-18", "19-34", "35-49", "50-64", "65+", "unknown")

ANALYTICS_SERVICE_TYPES = ("divine_service", "midweek_lent", "midweek_advent", "festival", "other")


def giving_age_group(age: int | None) -> str:
    if age is None:
        return "unknown"
    for upper, name in ((14, "under 15"), (18, "15-18"), (34, "19-34"), (49, "35-49"), (64, "50-64")):
        if age <= upper:
            return name
    return "65+"


def _camel(snake: str) -> str:
    head, *rest = snake.split("_")
    return head + "".join(p.capitalize() for p in rest)


def _months(start: date, end: date) -> list[tuple[date, date, date]]:
    """(first of month, clipped start, clipped end) for each month the range touches."""
    out = []
    cursor = date(start.year, start.month, 1)
    while cursor <= end:
        out.append((cursor, max(cursor, start), min(_month_end(cursor), end)))
        cursor = _month_end(cursor) + timedelta(days=1)
    return out


def giving_analytics(s: Session, church_id: int, start: date, end: date, *, today: date | None = None) -> dict[str, Any]:
    """
    Giving trends for charts: per-month totals (overall, per category and per
    service type), totals by service type, by giver age group and by category.

    A gift counts toward the type of the service it was recorded against; gifts
    without a service count as "other". Ages are taken as of ``today``.
    """
    if start > end:
        raise ApiError("Start date must be before or equal to end date")
    today = today or date.today()

    gifts = (
        s.query(Giving, Member.date_of_birth, Service.service_type)
        .join(Member, Member.id == Giving.member_id)
        .outerjoin(Service, Service.id == Giving.service_id)
        .filter(Member.church_id == church_id, Giving.date_given >= start, Giving.date_given <= end)
        .all()
    )
    categories = (
        s.query(GivingCategory)
        .filter(GivingCategory.church_id == church_id, GivingCategory.is_active.is_(True))
        .order_by(GivingCategory.display_order.asc(), GivingCategory.name.asc())
        .all()
    )

    records = [
        {
            "date": gift.date_given,
            "total": gift.total,
            "items": [(item.category_id, item.amount) for item in gift.items],
            "serviceType": service_type if service_type in ANALYTICS_SERVICE_TYPES else "other",
            "ageGroup": giving_age_group(age_on(born, today) if born else None),
        }
        for gift, born, service_type in gifts
    ]

    monthly_trend = []
    monthly_by_service = []
    for first, m_start, m_end in _months(start, end):
        month = [r for r in records if m_start <= r["date"] <= m_end]
        per_cat: dict[int, Decimal] = {c.id: ZERO for c in categories}
        per_type: dict[str, Decimal] = {t: ZERO for t in ANALYTICS_SERVICE_TYPES}
        for r in month:
            per_type[r["serviceType"]] += r["total"]
            for category_id, amount in r["items"]:
                per_cat[category_id] = per_cat.get(category_id, ZERO) + amount
        label = first.strftime("%B %Y")
        monthly_trend.append(
            {
                "month": label,
                "totalAmount": money(sum((r["total"] for r in month), ZERO)),
                "recordCount": len(month),
                "categoryAmounts": {str(cid): money(amount) for cid, amount in per_cat.items()},
            }
        )
        monthly_by_service.append({"month": label, **{_camel(t): money(v) for t, v in per_type.items()}})

    def summary(group: list[dict[str, Any]]) -> dict[str, Any]:
        total = sum((r["total"] for r in group), ZERO)
        return {
            "totalAmount": money(total),
            "recordCount": len(group),
            "averageAmount": money(total / len(group)) if group else money(ZERO),
        }

    service_type_data = []
    for t in ANALYTICS_SERVICE_TYPES:
        group = [r for r in records if r["serviceType"] == t]
        if group:
            name = "Other" if t == "other" else format_service_type(t)
            service_type_data.append({"name": name, **summary(group)})

    age_group_data = []
    for name in GIVING_AGE_GROUPS:
        group = [r for r in records if r["ageGroup"] == name]
        if group:
            age_group_data.append({"name": "Unknown" if name == "unknown" else name, **summary(group)})

    category_totals: dict[int, Decimal] = defaultdict(lambda: ZERO)
    for r in records:
        for category_id, amount in r["items"]:
            category_totals[category_id] += amount
    category_breakdown = [
        {"name": c.name, "value": money(category_totals[c.id])} for c in categories if category_totals[c.id] > ZERO
    ]

    return {
        "monthlyTrend": monthly_trend,
        "monthlyGivingByService": monthly_by_service,
        "serviceTypeData": service_type_data,
        "ageGroupData": age_group_data,
        "categoryBreakdown": category_breakdown,
        "startDate": start.isoformat(),
        "endDate": end.isoformat(),
        "totalGiving": money(sum((r["total"] for r in records), ZERO)),
        "totalRecords": len(records),
    }
