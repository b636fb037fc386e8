from __future__ import annotations

from datetime import date

from flask import Blueprint, Response, g, jsonify, request

from app.steward.csvio import build_csv
from app.steward.db import db_session
from app.steward.errors import ApiError
from app.steward.models import Church
from app.steward.modules.reports.service import (
    CONGRESSIONAL_CSV_HEADERS,
    MEMBERSHIP_CSV_HEADERS,
    attendance_report,
    congressional_statistics,
    dashboard_stats,
    demographics_report,
    giving_analytics,
    giving_csv,
    giving_report,
    households_report,
    membership_csv_rows,
    membership_report,
    parse_participation_filter,
    recent_giving,
    recent_giving_by_service,
    recent_services,
    recent_status_changes,
    upcoming_member_events,
)
from app.steward.rbac import require_permission
from app.steward.utils import parse_iso_date

bp = Blueprint("reports", __name__)


def _church() -> Church:
    c = getattr(g, "church", None)
    if c is None:
        raise RuntimeError("No tenant church")
    return c


def _format() -> str:
    fmt = (request.args.get("format") or "csv").strip().lower()
    if fmt not in ("csv", "json"):
        raise ApiError("format must be csv or json")
    return fmt


def _required_range() -> tuple[date, date]:
    start = parse_iso_date(request.args.get("startDate"))
    end = parse_iso_date(request.args.get("endDate"))
    if start is None or end is None:
        raise ApiError("Start date and end date are required")
    return start, end


def _year_range() -> tuple[date, date, int | None]:
    """Query range, defaulting to the current calendar year (reported back as "year")."""
    today = date.today()
    start = parse_iso_date(request.args.get("startDate")) or date(today.year, 1, 1)
    end = parse_iso_date(request.args.get("endDate")) or date(today.year, 12, 31)
    if start > end:
        raise ApiError("Start date must be before or equal to end date")
    explicit = request.args.get("startDate") and request.args.get("endDate")
    return start, end, None if explicit else today.year


def _csv_response(headers: list[str], rows: list[list], filename: str) -> Response:
    return Response(
        build_csv(headers, rows),
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.get("/reports/membership")
@require_permission("reports.view")
def report_membership():
    s = db_session()
    statuses = parse_participation_filter(request.args.get("participation"))
    members = membership_report(s, _church().id, statuses)
    if _format() == "json":
        return jsonify({"members": members})
    return _csv_response(
        MEMBERSHIP_CSV_HEADERS,
        membership_csv_rows(members),
        f"membership-member-report-{date.today().isoformat()}.csv",
    )


@bp.get("/reports/giving")
@require_permission("reports.view")
def report_giving():
    start, end = _required_range()
    s = db_session()
    report = giving_report(s, _church().id, start, end)
    if _format() == "json":
        return jsonify({"services": report["services"], "totals": report["totals"]})
    headers, rows = giving_csv(report)
    return _csv_response(headers, rows, f"giving-report-by-service-{date.today().isoformat()}.csv")


@bp.get("/reports/congressional-statistics")
@require_permission("reports.view")
def report_congressional_statistics():
    start, end = _required_range()
    s = db_session()
    rows = congressional_statistics(s, _church().id, start, end)
    return _csv_response(
        CONGRESSIONAL_CSV_HEADERS,
        [list(r) for r in rows],
        f"congressional-statistics-report-{start.isoformat()}-to-{end.isoformat()}.csv",
    )


@bp.get("/reports/households")
@require_permission("reports.view")
def report_households():
    s = db_session()
    return jsonify({"households": households_report(s, _church().id)})


@bp.get("/reports/attendance")
@require_permission("analytics.view")
def report_attendance():
    start, end, year = _year_range()
    s = db_session()
    body = attendance_report(s, _church().id, start, end)
    body["year"] = year
    return jsonify(body)


@bp.get("/reports/demographics")
@require_permission("analytics.view")
def report_demographics():
    s = db_session()
    return jsonify(demographics_report(s, _church().id))


@bp.get("/dashboard/stats")
@require_permission("church.view")
def dashboard():
    s = db_session()
    return jsonify(dashboard_stats(s, _church().id))


@bp.get("/reports/giving-analytics")
@require_permission("analytics.view")
def report_giving_analytics():
    start, end, year = _year_range()
    s = db_session()
    body = giving_analytics(s, _church().id, start, end)
    body["year"] = year
    return jsonify(body)


@bp.get("/dashboard/recent-giving")
@require_permission("church.view")
def dashboard_recent_giving():
    return jsonify({"giving": recent_giving(db_session(), _church().id)})


@bp.get("/dashboard/recent-giving-by-service")
@require_permission("church.view")
def dashboard_recent_giving_by_service():
    return jsonify({"services": recent_giving_by_service(db_session(), _church().id)})


@bp.get("/dashboard/recent-services")
@require_permission("church.view")
def dashboard_recent_services():
    return jsonify({"services": recent_services(db_session(), _church().id)})


@bp.get("/dashboard/recent-status-changes")
@require_permission("church.view")
def dashboard_recent_status_changes():
    return jsonify({"changes": recent_status_changes(db_session(), _church().id)})


@bp.get("/dashboard/upcoming-member-events")
@require_permission("church.view")
def dashboard_upcoming_member_events():
    return jsonify({"events": upcoming_member_events(db_session(), _church().id)})
