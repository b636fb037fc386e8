"""
Platform super-admin API (root domain, /api/admin).
"""
from __future__ import annotations

from datetime import datetime
from typing import Any

from flask import Blueprint, current_app, g, jsonify, request
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session
from werkzeug.security import generate_password_hash

from app.steward.audit import record_event
from app.steward.constants import MIN_PASSWORD_LENGTH, SUBSCRIPTION_PLANS, SUBSCRIPTION_STATUSES
from app.steward.db import check_database, db_session
from app.steward.errors import ApiError, NotFound, UserNotFound
from app.steward.models import Church, ChurchUser, User
from app.steward.modules.attendance.models import Attendance, Service
from app.steward.modules.churches.service import (
    change_user_role,
    church_to_dict,
    church_user_to_dict,
    create_invitation,
    invitation_to_dict,
    remove_user_by_email,
)
from app.steward.modules.giving.models import Giving, GivingItem
from app.steward.modules.members.models import Household, Member, MembershipHistory
from app.steward.modules.statements.models import GivingStatement
from app.steward.rbac import require_super_admin
from app.steward.utils import (
    get_json_body,
    is_valid_email,
    iso,
    normalize_email,
    normalize_text,
    pagination_args,
    pagination_meta,
    parse_int,
)

bp = Blueprint("platform_admin", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _require_church(s: Session, church_id: int) -> Church:
    church = s.get(Church, church_id)
    if church is None:
        raise NotFound("Church not found")
    return church


def _counts_by_church(s: Session, column) -> dict[int, int]:
    return {cid: n for cid, n in s.query(column, func.count()).group_by(column).all()}


def _church_row(c: Church, user_counts: dict[int, int], member_counts: dict[int, int]) -> dict[str, Any]:
    row = church_to_dict(c)
    row["userCount"] = user_counts.get(c.id, 0)
    row["memberCount"] = member_counts.get(c.id, 0)
    return row


@bp.get("/admin/dashboard")
@require_super_admin
def dashboard():
    s = db_session()
    db_error = check_database(s)
    db_ok = db_error is None
    if not db_ok:
        current_app.logger.error("Admin dashboard DB check failed: %s", db_error)

    by_plan = {p: 0 for p in SUBSCRIPTION_PLANS}
    by_status = {st: 0 for st in SUBSCRIPTION_STATUSES}
    if db_ok:
        for plan, n in s.query(Church.subscription_plan, func.count()).group_by(Church.subscription_plan).all():
            by_plan[plan] = n
        for status, n in s.query(Church.subscription_status, func.count()).group_by(Church.subscription_status).all():
            by_status[status] = n

    return jsonify(
        {
            "churches": s.query(func.count(Church.id)).scalar() if db_ok else None,
            "users": s.query(func.count(User.id)).scalar() if db_ok else None,
            "members": s.query(func.count(Member.id)).scalar() if db_ok else None,
            "churchesByPlan": by_plan,
            "churchesByStatus": by_status,
            "database": {"connected": db_ok, "error": db_error},
        }
    )


@bp.get("/admin/churches")
@require_super_admin
def churches_list():
    s = db_session()
    churches = s.query(Church).order_by(Church.created_at.desc(), Church.id.desc()).all()
    user_counts = _counts_by_church(s, ChurchUser.church_id)
    member_counts = _counts_by_church(s, Member.church_id)
    return jsonify({"churches": [_church_row(c, user_counts, member_counts) for c in churches]})


@bp.get("/admin/churches/<int:church_id>")
@require_super_admin
def church_detail(church_id: int):
    s = db_session()
    church = _require_church(s, church_id)
    users = (
        s.query(ChurchUser)
        .join(User, User.id == ChurchUser.user_id)
        .filter(ChurchUser.church_id == church.id)
        .order_by(User.email.asc())
        .all()
    )
    body = _church_row(
        church,
        {church.id: len(users)},
        {church.id: s.query(func.count(Member.id)).filter(Member.church_id == church.id).scalar() or 0},
    )
    body["users"] = [{"id": u.user.id, "email": u.user.email, "name": u.user.name, "role": u.role} for u in users]
    body["stripeCustomerId"] = church.stripe_customer_id
    body["stripeSubscriptionId"] = church.stripe_subscription_id
    return jsonify({"church": body})


@bp.patch("/admin/churches/<int:church_id>")
@require_super_admin
def church_update(church_id: int):
    s = db_session()
    church = _require_church(s, church_id)
    data = get_json_body()
    changes: dict[str, Any] = {}

    if "subscriptionPlan" in data:
        plan = str(data.get("subscriptionPlan") or "").strip().lower()
        if plan not in SUBSCRIPTION_PLANS:
            raise ApiError(f"Invalid subscription plan: {plan}")
        changes["subscription_plan"] = [church.subscription_plan, plan]
        church.subscription_plan = plan
    if "subscriptionStatus" in data:
        status = str(data.get("subscriptionStatus") or "").strip().lower()
        if status not in SUBSCRIPTION_STATUSES:
            raise ApiError(f"Invalid subscription status: {status}")
        changes["subscription_status"] = [church.subscription_status, status]
        church.subscription_status = status
    if not changes:
        raise ApiError("Nothing to update")

    church.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=_current_user(),
        action="platform.church_update",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata=changes,
    )
    s.commit()
    return jsonify({"church": church_to_dict(church)})


def _member_ids(church_id: int):
    return select(Member.id).where(Member.church_id == church_id)


def _wipe_giving(s: Session, church_id: int) -> int:
    giving_ids = select(Giving.id).where(Giving.member_id.in_(_member_ids(church_id)))
    s.query(GivingItem).filter(GivingItem.giving_id.in_(giving_ids)).delete(synchronize_session=False)
    n = s.query(Giving).filter(Giving.member_id.in_(_member_ids(church_id))).delete(synchronize_session=False)
    s.query(GivingStatement).filter(GivingStatement.church_id == church_id).delete(synchronize_session=False)
    return n


def _wipe_attendance(s: Session, church_id: int) -> int:
    service_ids = select(Service.id).where(Service.church_id == church_id)
    s.query(Giving).filter(Giving.service_id.in_(service_ids)).update(
        {Giving.service_id: None}, synchronize_session=False
    )
    s.query(Attendance).filter(Attendance.service_id.in_(service_ids)).delete(synchronize_session=False)
    return s.query(Service).filter(Service.church_id == church_id).delete(synchronize_session=False)


def _wipe(s: Session, church_id: int, kind: str) -> dict[str, int]:
    church = _require_church(s, church_id)
    if kind == "giving":
        deleted = {"giving": _wipe_giving(s, church.id)}
    elif kind == "attendance":
        deleted = {"services": _wipe_attendance(s, church.id)}
    else:
        deleted = {"giving": _wipe_giving(s, church.id)}
        s.query(Attendance).filter(Attendance.member_id.in_(_member_ids(church.id))).delete(
            synchronize_session=False
        )
        s.query(MembershipHistory).filter(MembershipHistory.member_id.in_(_member_ids(church.id))).delete(
            synchronize_session=False
        )
        deleted["members"] = s.query(Member).filter(Member.church_id == church.id).delete(synchronize_session=False)
        deleted["households"] = (
            s.query(Household).filter(Household.church_id == church.id).delete(synchronize_session=False)
        )

    record_event(
        s,
        actor=_current_user(),
        action=f"platform.wipe_{kind}",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata=deleted,
    )
    s.commit()
    current_app.logger.warning("Super admin wiped %s for church_id=%s: %s", kind, church.id, deleted)
    return deleted


@bp.delete("/admin/churches/<int:church_id>/giving")
@require_super_admin
def church_wipe_giving(church_id: int):
    return jsonify({"success": True, "deleted": _wipe(db_session(), church_id, "giving")})


@bp.delete("/admin/churches/<int:church_id>/attendance")
@require_super_admin
def church_wipe_attendance(church_id: int):
    return jsonify({"success": True, "deleted": _wipe(db_session(), church_id, "attendance")})


@bp.delete("/admin/churches/<int:church_id>/members-households")
@require_super_admin
def church_wipe_members(church_id: int):
    return jsonify({"success": True, "deleted": _wipe(db_session(), church_id, "members_households")})


# ---------------------------------------------------------------------------
# Users across churches
# ---------------------------------------------------------------------------


def _platform_user_row(u: User) -> dict[str, Any]:
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "isSuperAdmin": bool(u.is_super_admin),
        "isActive": u.is_active,
        "createdAt": iso(u.created_at),
        "churches": [
            {"id": m.church_id, "name": m.church.name, "subdomain": m.church.subdomain, "role": m.role}
            for m in sorted(u.memberships, key=lambda m: m.id)
        ],
    }


def _church_from_body(s: Session, data: dict[str, Any]) -> Church:
    church_id = parse_int(data.get("churchId"))
    if church_id is None:
        raise ApiError("Church ID is required")
    return _require_church(s, church_id)


@bp.get("/admin/users")
@require_super_admin
def users_list():
    s = db_session()
    page, page_size = pagination_args()
    q = s.query(User)
    search = normalize_text(request.args.get("search"))
    if search:
        like = f"%{search.lower()}%"
        q = q.filter(or_(func.lower(User.email).like(like), func.lower(User.name).like(like)))
    church_id = parse_int(request.args.get("churchId"))
    if church_id is not None:
        q = q.filter(User.memberships.any(ChurchUser.church_id == church_id))
    total = q.count()
    users = q.order_by(User.email.asc()).offset((page - 1) * page_size).limit(page_size).all()
    return jsonify(
        {
            "users": [_platform_user_row(u) for u in users],
            "pagination": pagination_meta(page=page, page_size=page_size, total=total),
        }
    )


@bp.put("/admin/users/update-role")
@require_super_admin
def users_update_role():
    s = db_session()
    data = get_json_body()
    church = _church_from_body(s, data)
    email = normalize_email(data.get("email"))
    if not email:
        raise ApiError("Email is required")
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        raise UserNotFound()
    link = change_user_role(s, church, user.id, str(data.get("role") or ""), actor=_current_user())
    return jsonify({"success": True, "message": f"User role updated to {link.role}", "user": church_user_to_dict(link)})


@bp.delete("/admin/users/delete")
@require_super_admin
def users_delete():
    s = db_session()
    data = get_json_body()
    church = _church_from_body(s, data)
    message = remove_user_by_email(s, church, data.get("email"), actor=_current_user())
    return jsonify({"success": True, "message": message})


@bp.post("/admin/invite")
@require_super_admin
def users_invite():
    s = db_session()
    data = get_json_body()
    church = _church_from_body(s, data)
    outcome = create_invitation(s, church, data.get("email"), inviter=_current_user())
    body = {
        "success": True,
        "invitation": invitation_to_dict(outcome.invitation),
        "inviteCode": outcome.invitation.code,
        "emailSent": outcome.email_sent,
    }
    if not outcome.email_sent:
        body["warning"] = f"Email could not be sent: {outcome.email_message}. Share the invitation code manually."
    return jsonify(body), 201


@bp.post("/admin/create-super-admin")
def create_super_admin():
    """
    Bootstrap the first super admin over HTTP. Off unless ENABLE_CREATE_SUPER_ADMIN
    is set, and refuses once any super admin exists; scripts/init_db.py is the
    normal path.
    """
    if not current_app.config.get("ENABLE_CREATE_SUPER_ADMIN"):
        raise NotFound("This endpoint is disabled. Use scripts/init_db.py to create a super admin.")
    s = db_session()
    if s.query(User).filter(User.is_super_admin.is_(True)).first() is not None:
        raise ApiError("Super admin already exists. Use the script instead.")

    data = get_json_body()
    email = normalize_email(data.get("email"))
    name = normalize_text(data.get("name"))
    password = str(data.get("password") or "")
    if not email or not name or not password:
        raise ApiError("Email, password, and name are required")
    if not is_valid_email(email):
        raise ApiError("Invalid email address")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ApiError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if s.query(User).filter(User.email == email).one_or_none() is not None:
        raise ApiError("User with this email already exists")

    user = User(
        email=email,
        name=name,
        password_hash=generate_password_hash(password),
        is_active=True,
        is_super_admin=True,
    )
    s.add(user)
    s.flush()
    record_event(s, actor=user, action="platform.create_super_admin", entity_type="User", entity_id=str(user.id))
    s.commit()
    current_app.logger.warning("Super admin created via bootstrap endpoint: user_id=%s", user.id)
    return jsonify({"success": True, "message": "Super admin created successfully", "userId": user.id}), 201
