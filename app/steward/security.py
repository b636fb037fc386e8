import secrets

from flask import session, Request

# Writes that happen before a session (and so a CSRF token) exists:
# church signup, invitation acceptance, and Stripe's signed webhook.
CSRF_EXEMPT_ENDPOINTS = frozenset(
    {
        "churches.signup",
        "churches.invite_signup",
        "billing.webhook",
    }
)
UNSAFE_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def ensure_csrf_token() -> str:
    """Ensure a CSRF token exists in the session and return it."""
    token = session.get("csrf_token")
    if not token:
        token = secrets.token_urlsafe(32)
        session["csrf_token"] = token
    return token


def csrf_required(req: Request) -> bool:
    """True when this request must carry a valid CSRF token."""
    if req.method not in UNSAFE_METHODS:
        return False
    endpoint = req.endpoint or ""
    # Login/logout establish or drop the session the token lives in.
    if endpoint.startswith("auth."):
        return False
    return endpoint not in CSRF_EXEMPT_ENDPOINTS


def validate_csrf(req: Request) -> bool:
    """Validate CSRF token from the X-CSRF-Token header or a JSON body."""
    token = req.headers.get("X-CSRF-Token")
    if not token and req.is_json:
        json_data = req.get_json(silent=True) or {}
        if isinstance(json_data, dict):
            token = json_data.get("csrf_token")

    expected = session.get("csrf_token")
    return bool(token and expected and secrets.compare_digest(str(token), str(expected)))
