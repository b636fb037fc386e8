from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from app.steward.db import db_session
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.attendance.models import Service
from app.steward.modules.attendance.service import (
    attendance_for_member,
    attendance_for_service,
    create_service,
    delete_service,
    record_attendance,
    require_service,
    service_to_dict,
    update_service,
)
from app.steward.modules.members.service import member_to_dict, require_member
from app.steward.rbac import require_permission
from app.steward.utils import get_json_body, pagination_args, pagination_meta, parse_iso_date

bp = Blueprint("attendance", __name__)


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


@bp.get("/services")
@require_permission("church.view")
def services_list():
    s = db_session()
    church = _church()
    page, page_size = pagination_args()
    start = parse_iso_date(request.args.get("startDate"))
    end = parse_iso_date(request.args.get("endDate"))

    query = s.query(Service).filter(Service.church_id == church.id)
    if start:
        query = query.filter(Service.service_date >= start)
    if end:
        query = query.filter(Service.service_date <= end)
    total = query.count()
    services = (
        query.order_by(Service.service_date.desc(), Service.service_time.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return jsonify(
        {
            "services": [service_to_dict(svc) for svc in services],
            "pagination": pagination_meta(page=page, page_size=page_size, total=total),
        }
    )


@bp.post("/services")
@require_permission("attendance.edit")
def services_create():
    s = db_session()
    svc = create_service(s, _church(), get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"service": service_to_dict(svc)}), 201


@bp.get("/services/<int:service_id>")
@require_permission("church.view")
def service_detail(service_id: int):
    s = db_session()
    svc = require_service(s, _church().id, service_id)
    return jsonify({"service": service_to_dict(svc)})


@bp.put("/services/<int:service_id>")
@require_permission("attendance.edit")
def service_update(service_id: int):
    s = db_session()
    svc = require_service(s, _church().id, service_id)
    update_service(s, svc, get_json_body(), user=_current_user())
    s.commit()
    return jsonify({"service": service_to_dict(svc)})


@bp.delete("/services/<int:service_id>")
@require_permission("attendance.edit")
def service_delete(service_id: int):
    s = db_session()
    svc = require_service(s, _church().id, service_id)
    delete_service(s, svc, user=_current_user())
    s.commit()
    return jsonify({"success": True})


@bp.get("/attendance")
@require_permission("church.view")
def attendance_list():
    s = db_session()
    service_id = request.args.get("serviceId")
    if not service_id:
        raise ApiError("serviceId is required")
    svc = require_service(s, _church().id, service_id)
    return jsonify({"service": service_to_dict(svc), "attendance": attendance_for_service(s, svc)})


@bp.post("/attendance")
@require_permission("attendance.edit")
def attendance_record():
    body = get_json_body()
    records = body.get("records")
    if not body.get("serviceId") or not isinstance(records, list):
        raise ApiError("Service ID and records array are required")
    s = db_session()
    results = record_attendance(s, _church(), body.get("serviceId"), records, user=_current_user())
    s.commit()
    return jsonify(results)


@bp.get("/attendance/member/<int:member_id>")
@require_permission("church.view")
def attendance_member(member_id: int):
    s = db_session()
    church = _church()
    m = require_member(s, church.id, member_id)
    return jsonify({"member": member_to_dict(m), "attendance": attendance_for_member(s, church.id, m)})
