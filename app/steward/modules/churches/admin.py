from __future__ import annotations

from flask import Blueprint, g, jsonify, request, session

from app.steward.auth import login_user, user_payload
from app.steward.db import db_session
from app.steward.errors import ApiError, NotFound
from app.steward.models import Church, User
from app.steward.modules.churches.service import (
    accept_invitation,
    activate_free_plan,
    change_user_role,
    church_to_dict,
    church_user_to_dict,
    create_invitation,
    invitation_to_dict,
    leave_church,
    list_church_users,
    list_user_churches,
    pending_invitations,
    remove_church_user,
    resolve_active_church,
    select_active_church,
    setup_status,
    signup_church,
    update_church_settings,
    user_church_to_dict,
    validate_invitation,
)
from app.steward.rbac import available_roles, require_login, require_permission, role_display_name
from app.steward.security import ensure_csrf_token
from app.steward.tenancy import is_subdomain_available
from app.steward.utils import get_json_body, parse_int

bp = Blueprint("churches", __name__)


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
# Church settings
# ---------------------------------------------------------------------------


@bp.get("/church")
@require_permission("church.view")
def church_get():
    church = _church()
    role = g.church_role
    return jsonify(
        {
            "church": church_to_dict(church),
            "role": role,
            "roleDisplayName": role_display_name(role),
            "availableRoles": [
                {"value": r, "label": role_display_name(r)} for r in available_roles(church.subscription_plan)
            ],
        }
    )


@bp.put("/church/settings")
@require_permission("settings.manage")
def church_settings_update():
    s = db_session()
    church = update_church_settings(s, _church(), get_json_body(), user=_current_user())
    return jsonify({"church": church_to_dict(church)})


# ---------------------------------------------------------------------------
# The signed-in user
# ---------------------------------------------------------------------------

ACTIVE_CHURCH_SESSION_KEY = "active_church_id"


@bp.get("/user")
@require_login
def user_get():
    return jsonify({"user": user_payload(_current_user())})


@bp.get("/user/churches")
@require_login
def user_churches():
    return jsonify({"churches": list_user_churches(_current_user())})


@bp.delete("/user/churches/<int:church_id>")
@require_login
def user_church_leave(church_id: int):
    s = db_session()
    user = _current_user()
    leave_church(s, user, church_id)
    if session.get(ACTIVE_CHURCH_SESSION_KEY) == church_id:
        session.pop(ACTIVE_CHURCH_SESSION_KEY, None)
    return jsonify({"success": True, "message": "Church removed from your account"})


@bp.get("/user/active-church")
@require_login
def user_active_church():
    link = resolve_active_church(
        _current_user(), getattr(g, "church", None), parse_int(session.get(ACTIVE_CHURCH_SESSION_KEY))
    )
    if link is None:
        raise NotFound("No active church found")
    return jsonify({"churchId": link.church_id, "church": user_church_to_dict(link)})


@bp.post("/user/active-church")
@require_login
def user_active_church_set():
    link = select_active_church(_current_user(), parse_int(get_json_body().get("churchId")))
    session[ACTIVE_CHURCH_SESSION_KEY] = link.church_id
    return jsonify(
        {
            "success": True,
            "churchId": link.church_id,
            "church": user_church_to_dict(link),
            "message": "Active church updated",
        }
    )


# ---------------------------------------------------------------------------
# Church users and invitations
# ---------------------------------------------------------------------------


@bp.get("/churches/users")
@require_permission("users.manage")
def church_users_list():
    s = db_session()
    church = _church()
    return jsonify(
        {
            "users": [church_user_to_dict(link) for link in list_church_users(s, church.id)],
            "invitations": [invitation_to_dict(inv) for inv in pending_invitations(s, church.id)],
            "availableRoles": list(available_roles(church.subscription_plan)),
        }
    )


@bp.put("/churches/users/<int:user_id>/role")
@require_permission("users.manage")
def church_user_role_update(user_id: int):
    s = db_session()
    role = get_json_body().get("role")
    link = change_user_role(s, _church(), user_id, str(role or ""), actor=_current_user())
    return jsonify({"user": church_user_to_dict(link)})


@bp.delete("/churches/users/<int:user_id>")
@require_permission("users.manage")
def church_user_remove(user_id: int):
    s = db_session()
    remove_church_user(s, _church(), user_id, actor=_current_user())
    return jsonify({"success": True})


@bp.post("/churches/invite")
@require_permission("users.manage")
def church_invite():
    s = db_session()
    outcome = create_invitation(s, _church(), get_json_body().get("email"), inviter=_current_user())
    body = {
        "success": True,
        "invitation": invitation_to_dict(outcome.invitation),
        "emailSent": outcome.email_sent,
    }
    if not outcome.email_sent:
        body["warning"] = "Invitation created but the email could not be sent. Share the invitation code manually."
        body["inviteCode"] = outcome.invitation.code
    return jsonify(body), 201


@bp.get("/invite/validate")
def invite_validate():
    s = db_session()
    return jsonify(validate_invitation(s, request.args.get("code")))


@bp.post("/invite-signup")
def invite_signup():
    s = db_session()
    user, church = accept_invitation(s, get_json_body())
    login_user(user)
    return (
        jsonify(
            {
                "success": True,
                "user": user_payload(user),
                "church": {"id": church.id, "name": church.name, "subdomain": church.subdomain},
                "csrf_token": ensure_csrf_token(),
            }
        ),
        201,
    )


# ---------------------------------------------------------------------------
# Signup and setup
# ---------------------------------------------------------------------------


@bp.get("/signup/check-subdomain")
def signup_check_subdomain():
    value = (request.args.get("subdomain") or "").strip().lower()
    if not value:
        raise ApiError("Subdomain is required")
    available, err = is_subdomain_available(db_session(), value)
    return jsonify({"subdomain": value, "available": available, "error": err})


@bp.post("/signup")
def signup():
    s = db_session()
    user, church = signup_church(s, get_json_body())
    login_user(user)
    return (
        jsonify(
            {
                "success": True,
                "user": user_payload(user),
                "church": church_to_dict(church),
                "csrf_token": ensure_csrf_token(),
            }
        ),
        201,
    )


@bp.get("/setup")
@require_permission("church.view")
def setup_get():
    return jsonify(setup_status(_church()))


@bp.post("/setup/activate-free")
@require_permission("settings.manage")
def setup_activate_free():
    s = db_session()
    church = activate_free_plan(s, _church(), user=_current_user())
    return jsonify({"success": True, **setup_status(church)})
