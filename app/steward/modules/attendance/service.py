from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session

from app.steward.audit import record_event
from app.steward.constants import SERVICE_TYPE_LABELS, SERVICE_TYPES
from app.steward.errors import ApiError, NotFound
from app.steward.models import Church, User
from app.steward.modules.attendance.models import Attendance, Service
from app.steward.modules.members.models import Member
from app.steward.utils import iso, normalize_text, parse_int, require_iso_date


def format_service_type(service_type: str) -> str:
    return SERVICE_TYPE_LABELS.get(service_type, service_type)


def service_display_name(svc: Service) -> str:
    time_part = f" {svc.service_time}" if svc.service_time else ""
    return f"{svc.service_date.isoformat()}{time_part} - {format_service_type(svc.service_type)}"


def service_to_dict(svc: Service) -> dict[str, Any]:
    attended = [a for a in svc.attendance if a.attended]
    return {
        "id": svc.id,
        "serviceDate": iso(svc.service_date),
        "serviceType": svc.service_type,
        "serviceTypeLabel": format_service_type(svc.service_type),
        "serviceTime": svc.service_time,
        "displayName": service_display_name(svc),
        "attendanceCount": len(attended),
        "communionCount": sum(1 for a in attended if a.took_communion),
        "createdAt": iso(svc.created_at),
    }


def get_service(s: Session, church_id: int, service_id: Any) -> Service | None:
    sid = parse_int(service_id)
    if sid is None:
        return None
    return s.query(Service).filter(Service.id == sid, Service.church_id == church_id).one_or_none()


def require_service(s: Session, church_id: int, service_id: Any) -> Service:
    svc = get_service(s, church_id, service_id)
    if svc is None:
        raise NotFound("Service not found")
    return svc


def _validated_service_fields(payload: dict[str, Any]) -> tuple[date, str, str | None]:
    service_date = require_iso_date(payload.get("serviceDate"), "service date")
    service_type = (normalize_text(payload.get("serviceType")) or "").lower()
    if service_type not in SERVICE_TYPES:
        raise ApiError(f"Invalid service type. Must be one of: {', '.join(SERVICE_TYPES)}")
    return service_date, service_type, normalize_text(payload.get("serviceTime"))


def _duplicate_service(s: Session, church_id: int, service_date: date, service_type: str, *, exclude_id: int | None = None) -> bool:
    q = s.query(Service.id).filter(
        Service.church_id == church_id,
        Service.service_date == service_date,
        Service.service_type == service_type,
    )
    if exclude_id is not None:
        q = q.filter(Service.id != exclude_id)
    return q.first() is not None


def create_service(s: Session, church: Church, payload: dict[str, Any], *, user: User | None) -> Service:
    service_date, service_type, service_time = _validated_service_fields(payload)
    if _duplicate_service(s, church.id, service_date, service_type):
        raise ApiError("A service of this type already exists on this date")
    svc = Service(church_id=church.id, service_date=service_date, service_type=service_type, service_time=service_time)
    s.add(svc)
    s.flush()
    record_event(
        s,
        actor=user,
        action="service.create",
        church_id=church.id,
        entity_type="Service",
        entity_id=str(svc.id),
        metadata={"date": service_date.isoformat(), "type": service_type},
    )
    return svc


def update_service(s: Session, svc: Service, payload: dict[str, Any], *, user: User | None) -> Service:
    merged = {
        "serviceDate": payload.get("serviceDate", iso(svc.service_date)),
        "serviceType": payload.get("serviceType", svc.service_type),
        "serviceTime": payload.get("serviceTime", svc.service_time),
    }
    service_date, service_type, service_time = _validated_service_fields(merged)
    if _duplicate_service(s, svc.church_id, service_date, service_type, exclude_id=svc.id):
        raise ApiError("A service of this type already exists on this date")
    svc.service_date = service_date
    svc.service_type = service_type
    svc.service_time = service_time
    svc.updated_at = datetime.utcnow()
    record_event(s, actor=user, action="service.update", church_id=svc.church_id, entity_type="Service", entity_id=str(svc.id))
    return svc


def delete_service(s: Session, svc: Service, *, user: User | None) -> None:
    record_event(
        s,
        actor=user,
        action="service.delete",
        church_id=svc.church_id,
        entity_type="Service",
        entity_id=str(svc.id),
        metadata={"date": iso(svc.service_date), "type": svc.service_type},
    )
    s.delete(svc)


def record_attendance(
    s: Session,
    church: Church,
    service_id: Any,
    records: list[dict[str, Any]],
    *,
    user: User | None,
) -> dict[str, Any]:
    """
    Replace the attendance roll for a service.

    Only members marked attended are stored; anyone previously recorded for the
    service but absent from the attended list is removed.
    """
    attended_records = [r for r in records if isinstance(r, dict) and r.get("attended") is True]
    if not attended_records:
        return {
            "success": 0,
            "failed": 0,
            "errors": [],
            "message": "No attendance records to create (only members who attended are recorded)",
        }

    svc = get_service(s, church.id, service_id)
    if svc is None:
        raise ApiError("Service not found")

    results: dict[str, Any] = {"success": 0, "failed": 0, "errors": []}
    existing = {a.member_id: a for a in s.query(Attendance).filter(Attendance.service_id == svc.id).all()}
    processed: set[int] = set()

    for i, record in enumerate(attended_records, start=1):
        member_id = parse_int(record.get("memberId"))
        took_communion = record.get("tookCommunion")
        if member_id is None or not isinstance(took_communion, bool):
            results["failed"] += 1
            results["errors"].append(f"Row {i}: Missing required fields (memberId, tookCommunion)")
            continue
        processed.add(member_id)

        member = s.query(Member.id).filter(Member.id == member_id, Member.church_id == church.id).one_or_none()
        if member is None:
            results["failed"] += 1
            results["errors"].append(f"Row {i}: Member not found")
            continue

        row = existing.get(member_id)
        if row is not None:
            row.attended = True
            row.took_communion = took_communion
            row.updated_at = datetime.utcnow()
        else:
            row = Attendance(member_id=member_id, service_id=svc.id, attended=True, took_communion=took_communion)
            s.add(row)
            existing[member_id] = row
        results["success"] += 1

    removed = 0
    for member_id, row in list(existing.items()):
        if member_id not in processed and row.id is not None:
            s.delete(row)
            removed += 1

    record_event(
        s,
        actor=user,
        action="attendance.record",
        church_id=church.id,
        entity_type="Service",
        entity_id=str(svc.id),
        metadata={"success": results["success"], "failed": results["failed"], "removed": removed},
    )
    return results


def attendance_for_service(s: Session, svc: Service) -> list[dict[str, Any]]:
    rows = (
        s.query(Attendance, Member)
        .join(Member, Member.id == Attendance.member_id)
        .filter(Attendance.service_id == svc.id)
        .order_by(Member.last_name.asc(), Member.first_name.asc())
        .all()
    )
    return [
        {
            "id": a.id,
            "memberId": m.id,
            "firstName": m.first_name,
            "lastName": m.last_name,
            "attended": a.attended,
            "tookCommunion": a.took_communion,
        }
        for a, m in rows
    ]


def attendance_for_member(s: Session, church_id: int, member: Member) -> list[dict[str, Any]]:
    rows = (
        s.query(Attendance, Service)
        .join(Service, Service.id == Attendance.service_id)
        .filter(Attendance.member_id == member.id, Service.church_id == church_id)
        .order_by(Service.service_date.desc())
        .all()
    )
    return [
        {
            "id": a.id,
            "serviceId": svc.id,
            "serviceDate": iso(svc.service_date),
            "serviceType": svc.service_type,
            "displayName": service_display_name(svc),
            "attended": a.attended,
            "tookCommunion": a.took_communion,
        }
        for a, svc in rows
    ]
