"""
Role/plan capability tables.

A user's role is stored per church (church_users.role). What a role may do
depends on the church's subscription plan: the editor/viewer specialist roles
only exist on premium; the free plan behaves as basic.
"""
from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any

from flask import abort, g
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.steward.errors import Forbidden, TenantNotFound, Unauthorized
from app.steward.models import Church, ChurchUser, User

ROLES = (
    "admin",
    "viewer",
    "members_editor",
    "giving_editor",
    "attendance_editor",
    "reports_viewer",
    "analytics_viewer",
)

BASIC_ROLES = ("admin", "viewer")

ROLE_DISPLAY_NAMES = {
    "admin": "Admin",
    "viewer": "Viewer",
    "members_editor": "Members Editor",
    "giving_editor": "Giving Editor",
    "attendance_editor": "Attendance Editor",
    "reports_viewer": "Reports Viewer",
    "analytics_viewer": "Analytics Viewer",
}

# Every church user can read tenant data.
BASE_PERMISSIONS = frozenset({"church.view"})

ADMIN_ONLY_PERMISSIONS = frozenset({"users.manage", "settings.manage", "billing.manage"})

# Granted to specialist roles on the premium plan only.
PREMIUM_ROLE_PERMISSIONS: dict[str, frozenset[str]] = {
    "members_editor": frozenset({"members.edit"}),
    "giving_editor": frozenset({"giving.edit", "statements.manage"}),
    "attendance_editor": frozenset({"attendance.edit"}),
    "reports_viewer": frozenset({"reports.view"}),
    "analytics_viewer": frozenset({"analytics.view"}),
}

ALL_PERMISSIONS = (
    BASE_PERMISSIONS
    | ADMIN_ONLY_PERMISSIONS
    | frozenset().union(*PREMIUM_ROLE_PERMISSIONS.values())
)

MEMBER_LIMITS: dict[str, int | None] = {"free": 300, "basic": 300, "premium": None}
ADMIN_LIMITS: dict[str, int] = {"free": 3, "basic": 3, "premium": 10}


def effective_plan(plan: str | None) -> str:
    return "premium" if (plan or "").lower() == "premium" else "basic"


def available_roles(plan: str | None) -> tuple[str, ...]:
    return ROLES if effective_plan(plan) == "premium" else BASIC_ROLES


def is_role_available_for_plan(role: str, plan: str | None) -> bool:
    return role in available_roles(plan)


def role_display_name(role: str) -> str:
    return ROLE_DISPLAY_NAMES.get(role, role)


def role_permissions(role: str | None, plan: str | None) -> frozenset[str]:
    if not role:
        return frozenset()
    if role == "admin":
        return ALL_PERMISSIONS
    perms = set(BASE_PERMISSIONS)
    if effective_plan(plan) == "premium":
        perms |= PREMIUM_ROLE_PERMISSIONS.get(role, frozenset())
    return frozenset(perms)


def role_has_permission(role: str | None, plan: str | None, permission_key: str) -> bool:
    return permission_key in role_permissions(role, plan)


def user_has_permission(user: User | None, church: Church | None, permission_key: str) -> bool:
    if not user or not user.is_active:
        return False
    if user.is_super_admin:
        return True
    if church is None:
        return False
    return role_has_permission(user.role_in(church.id), church.subscription_plan, permission_key)


def tenant_context() -> tuple[User, Church, str]:
    """
    Current (user, church, role) for a tenant-scoped request.
    Super admins get an implicit admin role in every church.
    """
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise Unauthorized()
    church: Church | None = getattr(g, "church", None)
    if church is None:
        raise TenantNotFound()
    role = user.role_in(church.id)
    if role is None:
        if not user.is_super_admin:
            raise Forbidden("You do not have access to this church")
        role = "admin"
    return user, church, role


def require_permission(permission_key: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user, church, role = tenant_context()
            if not user.is_super_admin and not role_has_permission(role, church.subscription_plan, permission_key):
                g.missing_permission = permission_key
                abort(403)
            g.church_role = role
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def authenticated_user() -> User:
    user: User | None = getattr(g, "current_user", None)
    if not user or not user.is_active:
        raise Unauthorized()
    return user


def require_login(fn: Callable[..., Any]) -> Callable[..., Any]:
    """Signed-in user on any host; no church role needed."""

    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        authenticated_user()
        return fn(*args, **kwargs)

    return wrapped


def require_super_admin(fn: Callable[..., Any]) -> Callable[..., Any]:
    @wraps(fn)
    def wrapped(*args: Any, **kwargs: Any):
        user = authenticated_user()
        if not user.is_super_admin:
            g.missing_permission = "platform.super_admin"
            abort(403)
        return fn(*args, **kwargs)

    return wrapped


@dataclass(frozen=True)
class LimitCheck:
    allowed: bool
    current_count: int
    limit: int | None
    plan: str
    remaining: int | None

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "currentCount": self.current_count,
            "limit": self.limit,
            "plan": self.plan,
            "remaining": self.remaining,
        }


def check_member_limit(s: Session, church: Church, *, adding: int = 1) -> LimitCheck:
    from app.steward.modules.members.models import Member

    plan = (church.subscription_plan or "basic").lower()
    limit = MEMBER_LIMITS.get(plan, MEMBER_LIMITS["basic"])
    current = s.query(func.count(Member.id)).filter(Member.church_id == church.id).scalar() or 0
    if limit is None:
        return LimitCheck(True, current, None, plan, None)
    return LimitCheck(current + adding <= limit, current, limit, plan, max(limit - current, 0))


def check_admin_limit(s: Session, church: Church) -> LimitCheck:
    plan = (church.subscription_plan or "basic").lower()
    limit = ADMIN_LIMITS.get(plan, ADMIN_LIMITS["basic"])
    current = (
        s.query(func.count(ChurchUser.id))
        .join(User, User.id == ChurchUser.user_id)
        .filter(
            ChurchUser.church_id == church.id,
            ChurchUser.role == "admin",
            User.is_super_admin.is_(False),
        )
        .scalar()
        or 0
    )
    return LimitCheck(current < limit, current, limit, plan, max(limit - current, 0))
