from __future__ import annotations

from flask import Blueprint, Response, g, jsonify, request

from app.steward.constants import PARTICIPATION_STATUSES
from app.steward.csvio import build_csv
from app.steward.db import db_session
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.members.imports import import_members
from app.steward.modules.members.models import Household
from app.steward.modules.members.service import (
    create_household,
    create_member,
    delete_household,
    delete_member,
    head_of_household,
    history_to_dict,
    household_to_dict,
    list_members_query,
    member_history,
    member_to_dict,
    require_household,
    require_member,
    update_household,
    update_member,
)
from app.steward.rbac import require_permission
from app.steward.utils import get_json_body, pagination_args, pagination_meta, parse_int

bp = Blueprint("members", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _church() -> Church:
    c = getattr(g, "church", None)
    if c is None:
        raise RuntimeError("No tenant church")
    return c


# ---------------------------------------------------------------------------
# Households
# ---------------------------------------------------------------------------


@bp.get("/households")
@require_permission("church.view")
def households_list():
    s = db_session()
    church = _church()
    page, page_size = pagination_args()
    q = (request.args.get("q") or "").strip()

    query = s.query(Household).filter(Household.church_id == church.id)
    if q:
        query = query.filter(Household.name.ilike(f"%{q}%"))
    total = query.count()
    households = (
        query.order_by(Household.name.asc(), Household.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return jsonify(
        {
            "households": [household_to_dict(h) for h in households],
            "pagination": pagination_meta(page=page, page_size=page_size, total=total),
        }
    )


@bp.post("/households")
@require_permission("members.edit")
def households_create():
    s = db_session()
    h = create_household(s, _church(), get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"household": household_to_dict(h)}), 201


@bp.get("/households/<int:household_id>")
@require_permission("church.view")
def household_detail(household_id: int):
    s = db_session()
    h = require_household(s, _church().id, household_id)
    return jsonify({"household": household_to_dict(h, include_members=True)})


@bp.put("/households/<int:household_id>")
@require_permission("members.edit")
def household_update(household_id: int):
    s = db_session()
    h = require_household(s, _church().id, household_id)
    update_household(s, h, get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"household": household_to_dict(h)})


@bp.delete("/households/<int:household_id>")
@require_permission("members.edit")
def household_delete(household_id: int):
    s = db_session()
    h = require_household(s, _church().id, household_id)
    delete_household(s, h, user=_current_user())
    s.commit()
    return jsonify({"success": True})


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------


@bp.get("/members")
@require_permission("church.view")
def members_list():
    s = db_session()
    church = _church()
    page, page_size = pagination_args()
    participation = (request.args.get("participation") or "").strip().lower() or None
    if participation and participation not in PARTICIPATION_STATUSES:
        raise ApiError(f"Invalid participation status: {participation}")

    query = list_members_query(
        s,
        church.id,
        q=(request.args.get("q") or "").strip() or None,
        household_id=parse_int(request.args.get("householdId")),
        participation=participation,
    )
    total = query.count()
    members = query.offset((page - 1) * page_size).limit(page_size).all()
    return jsonify(
        {
            "members": [member_to_dict(m) for m in members],
            "pagination": pagination_meta(page=page, page_size=page_size, total=total),
        }
    )


@bp.post("/members")
@require_permission("members.edit")
def members_create():
    s = db_session()
    m = create_member(s, _church(), get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"member": member_to_dict(m)}), 201


@bp.get("/members/export")
@require_permission("church.view")
def members_export():
    s = db_session()
    church = _church()
    members = list_members_query(s, church.id).all()
    headers = [
        "ID",
        "Household ID",
        "Household Name",
        "First Name",
        "Middle Name",
        "Last Name",
        "Suffix",
        "Preferred Name",
        "Maiden Name",
        "Title",
        "Sex",
        "Date of Birth",
        "Email1",
        "Email2",
        "Phone Home",
        "Phone Cell1",
        "Phone Cell2",
        "Baptism Date",
        "Confirmation Date",
        "Received By",
        "Date Received",
        "Removed By",
        "Date Removed",
        "Deceased Date",
        "Membership Code",
        "Envelope Number",
        "Participation",
        "Sequence",
    ]
    rows = []
    for m in members:
        d = member_to_dict(m)
        rows.append(
            [
                m.id,
                m.household_id,
                d["householdName"],
                d["firstName"],
                d["middleName"],
                d["lastName"],
                d["suffix"],
                d["preferredName"],
                d["maidenName"],
                d["title"],
                d["sex"],
                d["dateOfBirth"],
                d["email1"],
                d["email2"],
                d["phoneHome"],
                d["phoneCell1"],
                d["phoneCell2"],
                d["baptismDate"],
                d["confirmationDate"],
                d["receivedBy"],
                d["dateReceived"],
                d["removedBy"],
                d["dateRemoved"],
                d["deceasedDate"],
                d["membershipCode"],
                d["envelopeNumber"],
                d["participation"],
                d["sequence"],
            ]
        )
    csv_text = build_csv(headers, rows)
    filename = f"members-{church.subdomain}.csv"
    return Response(
        csv_text,
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@bp.post("/members/bulk-import")
@require_permission("members.edit")
def members_bulk_import():
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ApiError("No file provided")
    if not f.filename.lower().endswith(".csv"):
        raise ApiError("File must be a CSV")
    s = db_session()
    results = import_members(s, _church(), f.read(), user=_current_user())
    return jsonify(results)


@bp.get("/members/<int:member_id>")
@require_permission("church.view")
def member_detail(member_id: int):
    s = db_session()
    church = _church()
    m = require_member(s, church.id, member_id)
    body = member_to_dict(m)
    head = head_of_household(s, church.id, m.household_id) if m.household_id else None
    body["headOfHousehold"] = (
        {
            "id": head.id,
            "firstName": head.first_name,
            "lastName": head.last_name,
            "isCurrentMember": head.id == m.id,
        }
        if head
        else None
    )
    return jsonify({"member": body})


@bp.put("/members/<int:member_id>")
@require_permission("members.edit")
def member_update(member_id: int):
    s = db_session()
    church = _church()
    m = require_member(s, church.id, member_id)
    update_member(s, church, m, get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"member": member_to_dict(m)})


@bp.delete("/members/<int:member_id>")
@require_permission("members.edit")
def member_delete(member_id: int):
    s = db_session()
    m = require_member(s, _church().id, member_id)
    delete_member(s, m, user=_current_user())
    s.commit()
    return jsonify({"success": True})


@bp.get("/members/<int:member_id>/history")
@require_permission("church.view")
def member_history_list(member_id: int):
    s = db_session()
    m = require_member(s, _church().id, member_id)
    return jsonify({"history": [history_to_dict(h) for h in member_history(s, m)]})
