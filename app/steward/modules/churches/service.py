from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from flask import current_app
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

from app.steward.audit import record_event
from app.steward.constants import INVITATION_TTL_DAYS, MIN_PASSWORD_LENGTH, SUBSCRIPTION_PLANS
from app.steward.emailer import send_invitation_email, send_super_admin_alert
from app.steward.errors import ApiError, Forbidden, NotFound
from app.steward.models import Church, ChurchUser, Invitation, User
from app.steward.modules.billing.service import stripe_client, stripe_configured, tenant_url
from app.steward.modules.billing.stripe_client import StripeError
from app.steward.modules.giving.service import seed_default_categories
from app.steward.rbac import (
    available_roles,
    check_admin_limit,
    is_role_available_for_plan,
    role_display_name,
)
from app.steward.tenancy import is_subdomain_available
from app.steward.utils import iso, is_valid_email, normalize_email, normalize_text, parse_bool

logger = logging.getLogger(__name__)

CHURCH_TEXT_FIELDS = {
    "address": "address",
    "city": "city",
    "state": "state",
    "zip": "zip",
    "phone": "phone",
    "email": "email",
    "logoUrl": "logo_url",
    "primaryColor": "primary_color",
    "domain": "domain",
    "taxId": "tax_id",
    "taxStatementDisclaimer": "tax_statement_disclaimer",
    "goodsServicesStatement": "goods_services_statement",
}

CHURCH_BOOL_FIELDS = {
    "is501c3": "is_501c3",
    "goodsServicesProvided": "goods_services_provided",
}


def church_to_dict(c: Church) -> dict[str, Any]:
    return {
        "id": c.id,
        "name": c.name,
        "subdomain": c.subdomain,
        "domain": c.domain,
        "address": c.address,
        "city": c.city,
        "state": c.state,
        "zip": c.zip,
        "phone": c.phone,
        "email": c.email,
        "logoUrl": c.logo_url,
        "primaryColor": c.primary_color,
        "subscriptionStatus": c.subscription_status,
        "subscriptionPlan": c.subscription_plan,
        "trialEndsAt": iso(c.trial_ends_at),
        "taxId": c.tax_id,
        "is501c3": c.is_501c3,
        "taxStatementDisclaimer": c.tax_statement_disclaimer,
        "goodsServicesProvided": c.goods_services_provided,
        "goodsServicesStatement": c.goods_services_statement,
        "createdAt": iso(c.created_at),
    }


def update_church_settings(s: Session, church: Church, data: dict[str, Any], *, user: User) -> Church:
    name = normalize_text(data.get("name"))
    if not name:
        raise ApiError("Church name is required")
    church.name = name

    changed = ["name"]
    for key, attr in CHURCH_TEXT_FIELDS.items():
        if key in data:
            value = normalize_text(data.get(key))
            if attr == "email" and value:
                value = value.lower()
                if not is_valid_email(value):
                    raise ApiError("Invalid email address")
            setattr(church, attr, value)
            changed.append(attr)
    for key, attr in CHURCH_BOOL_FIELDS.items():
        if key in data:
            setattr(church, attr, parse_bool(data.get(key)))
            changed.append(attr)
    church.updated_at = datetime.utcnow()

    record_event(
        s,
        actor=user,
        action="church.settings_update",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata={"fields": changed},
    )
    s.commit()
    return church


# ---------------------------------------------------------------------------
# Church users
# ---------------------------------------------------------------------------


def church_user_to_dict(link: ChurchUser) -> dict[str, Any]:
    return {
        "id": link.user.id,
        "email": link.user.email,
        "name": link.user.name,
        "role": link.role,
        "roleDisplayName": role_display_name(link.role),
        "isActive": link.user.is_active,
        "joinedAt": iso(link.created_at),
    }


def list_church_users(s: Session, church_id: int) -> list[ChurchUser]:
    return (
        s.query(ChurchUser)
        .join(User, User.id == ChurchUser.user_id)
        .filter(ChurchUser.church_id == church_id)
        .order_by(User.email.asc())
        .all()
    )


def _require_link(s: Session, church_id: int, user_id: int) -> ChurchUser:
    link = (
        s.query(ChurchUser)
        .filter(ChurchUser.church_id == church_id, ChurchUser.user_id == user_id)
        .one_or_none()
    )
    if link is None:
        raise NotFound("User not found in this church")
    return link


def _admin_count(s: Session, church_id: int) -> int:
    return s.query(ChurchUser).filter(ChurchUser.church_id == church_id, ChurchUser.role == "admin").count()


def change_user_role(s: Session, church: Church, user_id: int, role: str, *, actor: User) -> ChurchUser:
    role = (role or "").strip()
    if not role:
        raise ApiError("Role is required")
    if not is_role_available_for_plan(role, church.subscription_plan):
        raise ApiError(
            f"Role '{role}' is not available on the {church.subscription_plan} plan",
            payload={"availableRoles": list(available_roles(church.subscription_plan))},
        )
    link = _require_link(s, church.id, user_id)
    if link.role == role:
        return link

    if role == "admin":
        limit = check_admin_limit(s, church)
        if not limit.allowed and not link.user.is_super_admin:
            raise ApiError(
                f"Admin limit reached for the {limit.plan} plan",
                status_code=403,
                payload={"limit": limit.to_dict()},
            )
    if link.role == "admin" and link.user_id == actor.id and _admin_count(s, church.id) <= 1:
        raise ApiError("You cannot remove your own admin role while you are the only admin")
    if link.role == "admin" and _admin_count(s, church.id) <= 1:
        raise ApiError("Cannot change the last admin user to another role")

    previous = link.role
    link.role = role
    record_event(
        s,
        actor=actor,
        action="church_user.role_change",
        church_id=church.id,
        entity_type="User",
        entity_id=str(user_id),
        metadata={"from": previous, "to": role},
    )
    s.commit()
    return link


def remove_church_user(s: Session, church: Church, user_id: int, *, actor: User) -> None:
    if user_id == actor.id:
        raise ApiError("You cannot remove yourself from the church")
    link = _require_link(s, church.id, user_id)
    if link.role == "admin" and _admin_count(s, church.id) <= 1:
        raise ApiError("Cannot remove the last admin user for this church")
    email = link.user.email
    s.delete(link)
    s.query(Invitation).filter(Invitation.church_id == church.id, Invitation.email == email).delete(
        synchronize_session=False
    )
    record_event(
        s,
        actor=actor,
        action="church_user.remove",
        church_id=church.id,
        entity_type="User",
        entity_id=str(user_id),
        metadata={"email": email},
    )
    s.commit()


# ---------------------------------------------------------------------------
# The signed-in user's own churches
# ---------------------------------------------------------------------------


def _ordered_memberships(user: User) -> list[ChurchUser]:
    return sorted(user.memberships, key=lambda m: m.id)


def user_church_to_dict(link: ChurchUser) -> dict[str, Any]:
    c = link.church
    return {
        "id": c.id,
        "name": c.name,
        "subdomain": c.subdomain,
        "role": link.role,
        "roleDisplayName": role_display_name(link.role),
        "logoUrl": c.logo_url,
        "primaryColor": c.primary_color,
        "url": tenant_url(c),
    }


def list_user_churches(user: User) -> list[dict[str, Any]]:
    return [user_church_to_dict(m) for m in _ordered_memberships(user)]


def leave_church(s: Session, user: User, church_id: int) -> None:
    """Drop the user's own membership. Users keep at least one church, and churches keep an admin."""
    links = _ordered_memberships(user)
    if len(links) <= 1:
        raise ApiError("Cannot remove your only church. You must belong to at least one church.")
    link = next((m for m in links if m.church_id == church_id), None)
    if link is None:
        raise NotFound("You do not belong to this church")
    if link.role == "admin" and _admin_count(s, church_id) <= 1:
        raise ApiError("You are the only admin of this church. Make another user an admin before leaving.")
    s.delete(link)
    record_event(
        s,
        actor=user,
        action="church_user.leave",
        church_id=church_id,
        entity_type="User",
        entity_id=str(user.id),
    )
    s.commit()


def resolve_active_church(user: User, tenant: Church | None, preferred_id: int | None) -> ChurchUser | None:
    """
    The church the user is working in: the tenant host when the user belongs to it,
    then the church they last selected, then their oldest membership.
    """
    links = _ordered_memberships(user)
    by_church = {m.church_id: m for m in links}
    if tenant is not None and tenant.id in by_church:
        return by_church[tenant.id]
    if preferred_id is not None and preferred_id in by_church:
        return by_church[preferred_id]
    return links[0] if links else None


def select_active_church(user: User, church_id: int | None) -> ChurchUser:
    if church_id is None:
        raise ApiError("Church ID is required")
    link = next((m for m in user.memberships if m.church_id == church_id), None)
    if link is None:
        raise Forbidden("You do not belong to this church")
    return link


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InviteOutcome:
    invitation: Invitation
    email_sent: bool
    email_message: str


def invitation_status(inv: Invitation, now: datetime | None = None) -> str:
    if inv.accepted_at is not None:
        return "accepted"
    if inv.expires_at < (now or datetime.utcnow()):
        return "expired"
    return "invited"


def invitation_to_dict(inv: Invitation) -> dict[str, Any]:
    return {
        "id": inv.id,
        "email": inv.email,
        "status": invitation_status(inv),
        "expiresAt": iso(inv.expires_at),
        "acceptedAt": iso(inv.accepted_at),
        "createdAt": iso(inv.created_at),
    }


def invite_accept_url(church: Church, code: str) -> str:
    return tenant_url(church, f"/invite?code={code}")


def pending_invitations(s: Session, church_id: int) -> list[Invitation]:
    """Unaccepted invitations, expired ones included, newest first."""
    return (
        s.query(Invitation)
        .filter(Invitation.church_id == church_id, Invitation.accepted_at.is_(None))
        .order_by(Invitation.created_at.desc(), Invitation.id.desc())
        .all()
    )


def remove_user_by_email(s: Session, church: Church, email: Any, *, actor: User) -> str:
    """
    Remove a member's access by email, or withdraw their invitation when they
    have not joined yet. Returns a message for the response.
    """
    addr = normalize_email(email)
    if not addr:
        raise ApiError("Email is required")
    user = s.query(User).filter(User.email == addr).one_or_none()
    if user is not None and user.role_in(church.id) is not None:
        remove_church_user(s, church, user.id, actor=actor)
        return f"User access removed for {addr}"

    deleted = (
        s.query(Invitation)
        .filter(Invitation.church_id == church.id, Invitation.email == addr)
        .delete(synchronize_session=False)
    )
    if not deleted:
        raise NotFound("User does not belong to this church")
    record_event(
        s,
        actor=actor,
        action="invitation.delete",
        church_id=church.id,
        entity_type="Invitation",
        entity_id=addr,
    )
    s.commit()
    return f"Invitation removed for {addr}"


def create_invitation(s: Session, church: Church, email: Any, *, inviter: User) -> InviteOutcome:
    addr = normalize_email(email)
    if not addr or not is_valid_email(addr):
        raise ApiError("A valid email address is required")

    existing_user = s.query(User).filter(User.email == addr).one_or_none()
    if existing_user is not None and existing_user.role_in(church.id) is not None:
        raise ApiError("This user is already a member of the church")

    now = datetime.utcnow()
    pending = (
        s.query(Invitation)
        .filter(
            Invitation.church_id == church.id,
            Invitation.email == addr,
            Invitation.accepted_at.is_(None),
            Invitation.expires_at > now,
        )
        .first()
    )
    if pending is not None:
        raise ApiError("An invitation has already been sent to this email")

    inv = Invitation(
        email=addr,
        code=secrets.token_hex(16),
        church_id=church.id,
        invited_by_user_id=inviter.id,
        expires_at=now + timedelta(days=INVITATION_TTL_DAYS),
    )
    s.add(inv)
    s.flush()
    record_event(
        s,
        actor=inviter,
        action="invitation.create",
        church_id=church.id,
        entity_type="Invitation",
        entity_id=str(inv.id),
        metadata={"email": addr},
    )
    s.commit()

    ok, msg = send_invitation_email(
        email=addr,
        invite_code=inv.code,
        inviter=inviter.name or inviter.email,
        church_name=church.name,
        accept_url=invite_accept_url(church, inv.code),
    )
    if not ok:
        logger.warning("Invitation email to %s not sent: %s", addr, msg)
    return InviteOutcome(inv, ok, msg)


def validate_invitation(s: Session, code: Any) -> dict[str, Any]:
    code = (str(code or "")).strip()
    if not code:
        return {"valid": False, "reason": "Invitation code is required"}
    inv = s.query(Invitation).filter(Invitation.code == code).one_or_none()
    if inv is None:
        return {"valid": False, "reason": "Invitation not found"}
    if inv.accepted_at is not None:
        return {"valid": False, "reason": "Invitation has already been used"}
    if inv.expires_at <= datetime.utcnow():
        return {"valid": False, "reason": "Invitation has expired"}
    return {
        "valid": True,
        "email": inv.email,
        "churchName": inv.church.name,
        "subdomain": inv.church.subdomain,
        "expiresAt": iso(inv.expires_at),
    }


def accept_invitation(s: Session, data: dict[str, Any]) -> tuple[User, Church]:
    email = normalize_email(data.get("email"))
    password = str(data.get("password") or "")
    name = normalize_text(data.get("name"))
    code = (str(data.get("inviteCode") or "")).strip()

    if not email or not password or not code:
        raise ApiError("Email, password, and invitation code are required")
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ApiError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")

    inv = s.query(Invitation).filter(Invitation.code == code).one_or_none()
    if inv is None:
        raise ApiError("Invalid invitation code")
    if inv.email.lower() != email:
        raise ApiError("This invitation was sent to a different email address")
    if inv.accepted_at is not None:
        raise ApiError("This invitation has already been used")
    if inv.expires_at <= datetime.utcnow():
        raise ApiError("This invitation has expired")

    church = inv.church
    user = s.query(User).filter(User.email == email).one_or_none()
    if user is None:
        user = User(email=email, name=name, password_hash=generate_password_hash(password), is_active=True)
        s.add(user)
        s.flush()
    else:
        if not check_password_hash(user.password_hash, password):
            raise ApiError("An account with this email already exists. Enter its password to join.", status_code=401)
        if user.role_in(church.id) is not None:
            raise ApiError("You are already a member of this church")
        if name and not user.name:
            user.name = name

    s.add(ChurchUser(user_id=user.id, church_id=church.id, role="viewer"))
    inv.accepted_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="invitation.accept",
        church_id=church.id,
        entity_type="Invitation",
        entity_id=str(inv.id),
        metadata={"email": email},
    )
    s.commit()
    s.refresh(user)

    ok, msg = send_super_admin_alert(
        f"User joined {church.name}",
        f"{user.name or email} ({email}) accepted an invitation to {church.name} ({church.subdomain}).",
    )
    if not ok:
        logger.info("Super admin alert skipped: %s", msg)
    return user, church


# ---------------------------------------------------------------------------
# Signup and setup
# ---------------------------------------------------------------------------


def signup_church(s: Session, data: dict[str, Any]) -> tuple[User, Church]:
    church_name = normalize_text(data.get("churchName"))
    subdomain = (normalize_text(data.get("subdomain")) or "").lower()
    admin_name = normalize_text(data.get("adminName"))
    admin_email = normalize_email(data.get("adminEmail"))
    admin_password = str(data.get("adminPassword") or "")
    plan = (normalize_text(data.get("plan")) or "basic").lower()

    if not church_name or not subdomain or not admin_name or not admin_email or not admin_password:
        raise ApiError("All fields are required")
    if plan not in SUBSCRIPTION_PLANS:
        raise ApiError("Plan must be free, basic, or premium")
    available, err = is_subdomain_available(s, subdomain)
    if not available:
        raise ApiError(err or "This subdomain is not available")
    if not is_valid_email(admin_email):
        raise ApiError("Invalid email address")
    if len(admin_password) < MIN_PASSWORD_LENGTH:
        raise ApiError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
    if s.query(User).filter(User.email == admin_email).one_or_none() is not None:
        raise ApiError("An account with this email already exists")

    customer_id = None
    if stripe_configured():
        try:
            customer = stripe_client().create_customer(email=admin_email, name=church_name)
            customer_id = customer.get("id")
        except StripeError as e:
            logger.error("Stripe customer creation failed for %s: %s", subdomain, e)
            raise ApiError("Failed to set up billing. Please try again.", status_code=502) from e

    church = Church(
        name=church_name,
        subdomain=subdomain,
        email=admin_email,
        subscription_plan=plan,
        subscription_status="active" if plan == "free" else "unpaid",
        stripe_customer_id=customer_id,
    )
    s.add(church)
    s.flush()
    seed_default_categories(s, church)

    user = User(
        email=admin_email,
        name=admin_name,
        password_hash=generate_password_hash(admin_password),
        is_active=True,
    )
    s.add(user)
    s.flush()
    s.add(ChurchUser(user_id=user.id, church_id=church.id, role="admin"))
    record_event(
        s,
        actor=user,
        action="church.signup",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
        metadata={"subdomain": subdomain, "plan": plan},
    )
    s.commit()
    s.refresh(user)
    current_app.logger.info("New church signup subdomain=%s plan=%s", subdomain, plan)

    ok, msg = send_super_admin_alert(
        f"New church signup: {church_name}",
        f"{church_name} ({subdomain}) signed up on the {plan} plan.\nAdmin: {admin_name} <{admin_email}>",
    )
    if not ok:
        logger.info("Super admin alert skipped: %s", msg)
    return user, church


def is_setup_complete(church: Church) -> bool:
    if church.subscription_status == "active":
        return True
    return church.subscription_status == "trialing" and bool(church.stripe_subscription_id)


def setup_status(church: Church) -> dict[str, Any]:
    return {
        "isSetupComplete": is_setup_complete(church),
        "plan": church.subscription_plan,
        "status": church.subscription_status,
        "trialEndsAt": iso(church.trial_ends_at),
    }


def activate_free_plan(s: Session, church: Church, *, user: User) -> Church:
    if church.subscription_plan != "free":
        raise ApiError("Only churches on the free plan can be activated without payment")
    if church.subscription_status == "active":
        raise ApiError("Church is already active")
    church.subscription_status = "active"
    church.updated_at = datetime.utcnow()
    record_event(
        s,
        actor=user,
        action="church.activate_free",
        church_id=church.id,
        entity_type="Church",
        entity_id=str(church.id),
    )
    s.commit()
    return church
