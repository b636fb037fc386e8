from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.steward.db import db_session
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.giving.imports import import_giving
from app.steward.modules.giving.service import (
    bulk_input,
    category_to_dict,
    create_category,
    create_giving,
    delete_category,
    delete_giving,
    giving_to_dict,
    list_categories,
    list_giving_query,
    require_category,
    require_giving,
    update_category,
    update_giving,
)
from app.steward.modules.members.models import Member
from app.steward.rbac import require_permission
from app.steward.utils import (
    get_json_body,
    pagination_args,
    pagination_meta,
    parse_bool,
    parse_int,
    parse_iso_date,
)

bp = Blueprint("giving", __name__)


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
# Categories
# ---------------------------------------------------------------------------


@bp.get("/giving-categories")
@require_permission("church.view")
def categories_list():
    s = db_session()
    active_only = parse_bool(request.args.get("activeOnly"))
    cats = list_categories(s, _church().id, active_only=active_only)
    return jsonify({"categories": [category_to_dict(c) for c in cats]})


@bp.post("/giving-categories")
@require_permission("settings.manage")
def categories_create():
    s = db_session()
    c = create_category(s, _church(), get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"category": category_to_dict(c)}), 201


@bp.put("/giving-categories/<int:category_id>")
@require_permission("settings.manage")
def categories_update(category_id: int):
    s = db_session()
    c = require_category(s, _church().id, category_id)
    update_category(s, c, get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"category": category_to_dict(c)})


@bp.delete("/giving-categories/<int:category_id>")
@require_permission("settings.manage")
def categories_delete(category_id: int):
    s = db_session()
    c = require_category(s, _church().id, category_id)
    delete_category(s, c, user=_current_user())
    s.commit()
    return jsonify({"success": True})


# ---------------------------------------------------------------------------
# Giving
# ---------------------------------------------------------------------------


@bp.get("/giving")
@require_permission("church.view")
def giving_list():
    s = db_session()
    church = _church()
    page, page_size = pagination_args()
    query = list_giving_query(
        s,
        church.id,
        member_id=parse_int(request.args.get("memberId")),
        start=parse_iso_date(request.args.get("startDate")),
        end=parse_iso_date(request.args.get("endDate")),
    )
    total = query.count()
    rows = query.offset((page - 1) * page_size).limit(page_size).all()
    return jsonify(
        {
            "giving": [giving_to_dict(gv, m) for gv, m in rows],
            "pagination": pagination_meta(page=page, page_size=page_size, total=total),
        }
    )


@bp.post("/giving")
@require_permission("giving.edit")
def giving_create():
    s = db_session()
    gv = create_giving(s, _church(), get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"giving": giving_to_dict(gv, s.get(Member, gv.member_id))}), 201


@bp.post("/giving/bulk-input")
@require_permission("giving.edit")
def giving_bulk_input():
    entries = get_json_body().get("entries")
    if not isinstance(entries, list) or not entries:
        raise ApiError("entries must be a non-empty list")
    s = db_session()
    return jsonify(bulk_input(s, _church(), entries, user=_current_user()))


@bp.post("/giving/bulk-import")
@require_permission("giving.edit")
def giving_bulk_import():
    f = request.files.get("file")
    if f is None or not f.filename:
        raise ApiError("No file provided")
    s = db_session()
    return jsonify(import_giving(s, _church(), f.read(), user=_current_user()))


@bp.get("/giving/<int:giving_id>")
@require_permission("church.view")
def giving_detail(giving_id: int):
    s = db_session()
    gv = require_giving(s, _church().id, giving_id)
    return jsonify({"giving": giving_to_dict(gv, s.get(Member, gv.member_id))})


@bp.put("/giving/<int:giving_id>")
@require_permission("giving.edit")
def giving_update(giving_id: int):
    s = db_session()
    church = _church()
    gv = require_giving(s, church.id, giving_id)
    update_giving(s, church, gv, get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"giving": giving_to_dict(gv, s.get(Member, gv.member_id))})


@bp.delete("/giving/<int:giving_id>")
@require_permission("giving.edit")
def giving_delete(giving_id: int):
    s = db_session()
    church = _church()
    gv = require_giving(s, church.id, giving_id)
    delete_giving(s, church, gv, user=_current_user())
    s.commit()
    return jsonify({"success": True})
