"""
Subdomain-based tenant resolution.

grace.example.org -> church with subdomain "grace". The root domain (and any
reserved subdomain) carries no tenant; it serves signup, the landing page and
the super-admin API.
"""
from __future__ import annotations

import re

from flask import current_app, g, jsonify, redirect, request
from sqlalchemy import func
from sqlalchemy.orm import Session

from app.steward.db import db_session
from app.steward.models import Church

RESERVED_SUBDOMAINS = frozenset(
    {
        "www",
        "api",
        "admin",
        "app",
        "mail",
        "ftp",
        "localhost",
        "staging",
        "dev",
        "test",
        "signup",
        "login",
        "auth",
        "stripe",
        "webhooks",
    }
)

PUBLIC_PATHS = (
    "/",
    "/health",
    "/healthz",
    "/auth",
    "/api/signup",
    "/api/invite",
    "/api/invite-signup",
    "/api/stripe/webhook",
)

_SUBDOMAIN_RE = re.compile(r"^[a-z0-9-]{3,30}$")


def extract_subdomain(host: str | None) -> str | None:
    if not host:
        return None
    hostname = host.split(":", 1)[0].strip().lower().rstrip(".")
    if not hostname or hostname == "localhost":
        return None
    parts = hostname.split(".")
    if len(parts) == 1:
        return None
    if len(parts) == 2 and parts[1] == "localhost":
        sub = parts[0]
    elif len(parts) >= 3:
        sub = parts[0]
    else:
        return None
    if sub in RESERVED_SUBDOMAINS:
        return None
    return sub


def validate_subdomain(value: str | None) -> str | None:
    """Returns an error message, or None if the subdomain is acceptable."""
    sub = (value or "").strip().lower()
    if not sub:
        return "Subdomain is required"
    if not _SUBDOMAIN_RE.match(sub):
        return "Subdomain must be 3-30 characters: lowercase letters, numbers, and hyphens only"
    if sub in RESERVED_SUBDOMAINS:
        return "This subdomain is reserved"
    return None


def get_church_by_subdomain(s: Session, subdomain: str) -> Church | None:
    return s.query(Church).filter(func.lower(Church.subdomain) == subdomain.lower()).one_or_none()


def is_subdomain_available(s: Session, value: str | None) -> tuple[bool, str | None]:
    err = validate_subdomain(value)
    if err:
        return False, err
    if get_church_by_subdomain(s, (value or "").strip()):
        return False, "This subdomain is already taken"
    return True, None


def is_public_path(path: str) -> bool:
    for p in PUBLIC_PATHS:
        if p == "/":
            if path == "/":
                return True
            continue
        if path == p or path.startswith(p + "/"):
            return True
    return False


def resolve_tenant():
    """
    before_request hook: sets g.subdomain and g.church.
    Returns a response to short-circuit the request, else None.
    """
    g.church = None
    g.subdomain = extract_subdomain(request.host)
    path = request.path
    is_api = path.startswith("/api/")

    if g.subdomain is None:
        if path != "/" and not is_api and not is_public_path(path):
            return redirect("/")
        return None

    church = get_church_by_subdomain(db_session(), g.subdomain)
    if church is not None:
        g.church = church
        return None

    if is_public_path(path):
        return None
    current_app.logger.info("Unknown tenant subdomain=%s path=%s request_id=%s", g.subdomain, path, getattr(g, "request_id", None))
    if is_api:
        return jsonify({"error": "Church not found"}), 400
    return redirect(f"{current_app.config['APP_BASE_URL']}/?error=church_not_found")
