from flask import Blueprint, current_app, g, jsonify

from app.steward.db import check_database, db_session

bp = Blueprint("routes", __name__)


@bp.get("/")
def index():
    church = getattr(g, "church", None)
    body = {"name": "Steward", "baseUrl": current_app.config.get("APP_BASE_URL")}
    if church is not None:
        body["church"] = {"name": church.name, "subdomain": church.subdomain}
    return jsonify(body)


@bp.get("/health")
def health():
    """Health check with a database round trip. 503 when the database is unreachable."""
    error = check_database(db_session())
    if error is not None:
        current_app.logger.error("Health check DB failure: %s", error)
        return jsonify({"ok": False, "database": "unavailable"}), 503
    return jsonify({"ok": True, "database": "ok"})


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for the load balancer. No DB access.
    """
    return "ok", 200
