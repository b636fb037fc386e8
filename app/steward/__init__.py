import logging
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from app.steward.admin import bp as platform_admin_bp
from app.steward.auth import bp as auth_bp, load_current_user
from app.steward.config import load_config
from app.steward.db import init_db, teardown_db_session
from app.steward.encryption import EncryptionKeyError, load_key
from app.steward.errors import ApiError, sanitize_error
from app.steward.modules.attendance.admin import bp as attendance_bp
from app.steward.modules.billing.admin import bp as billing_bp
from app.steward.modules.churches.admin import bp as churches_bp
from app.steward.modules.giving.admin import bp as giving_bp
from app.steward.modules.members.admin import bp as members_bp
from app.steward.modules.reports.admin import bp as reports_bp
from app.steward.modules.statements.admin import bp as statements_bp
from app.steward.routes import bp as routes_bp
from app.steward.tenancy import resolve_tenant


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True
    is_production = (app.config.get("ENV") or "").strip().lower() in ("prod", "production")

    # Tenant subdomains share the session cookie with the root domain.
    root_domain = (app.config.get("ROOT_DOMAIN") or "").strip()
    if is_production and root_domain and root_domain != "localhost":
        app.config["SESSION_COOKIE_DOMAIN"] = f".{root_domain}"

    from app.steward.security import csrf_required, ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if csrf_required(request) and not validate_csrf(request):
            return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    if is_production:
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        try:
            load_key(app.config.get("ENCRYPTION_KEY"))
        except EncryptionKeyError as e:
            raise RuntimeError(f"ENCRYPTION_KEY is required in production: {e}") from e
    elif not (app.config.get("ENCRYPTION_KEY") or "").strip():
        app.logger.warning("ENCRYPTION_KEY not set; saving a tax id or date of birth will fail")

    init_db(app)

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    if not (app.config.get("STRIPE_SECRET_KEY") or "").strip():
        app.logger.warning("STRIPE_SECRET_KEY not set; billing endpoints will return 503")

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(churches_bp, url_prefix="/api")
    app.register_blueprint(members_bp, url_prefix="/api")
    app.register_blueprint(attendance_bp, url_prefix="/api")
    app.register_blueprint(giving_bp, url_prefix="/api")
    app.register_blueprint(statements_bp, url_prefix="/api")
    app.register_blueprint(reports_bp, url_prefix="/api")
    app.register_blueprint(billing_bp, url_prefix="/api")
    app.register_blueprint(platform_admin_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.before_request(resolve_tenant)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(ApiError)
    def _err_api(e: ApiError):  # type: ignore[no-redef]
        if e.status_code >= 500:
            app.logger.error("ApiError %s: %s (request_id=%s)", e.status_code, e.message, getattr(g, "request_id", None))
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
        body = {"error": "You do not have permission to perform this action"}
        if missing:
            body["missingPermission"] = missing
        return jsonify(body), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        limit_mb = int(app.config.get("MAX_CONTENT_LENGTH") or 0) // (1024 * 1024)
        return jsonify({"error": f"File too large. Maximum size is {limit_mb}MB."}), 413

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):  # type: ignore[no-redef]
        return jsonify({"error": e.description or e.name}), e.code or 500

    @app.errorhandler(Exception)
    def _err_500(e: Exception):  # type: ignore[no-redef]
        # Ensure stack trace shows in platform logs.
        app.logger.exception("Unhandled error (request_id=%s)", getattr(g, "request_id", None))
        s = getattr(g, "db_session", None)
        if s is not None:
            s.rollback()
        body, status = sanitize_error(e, is_production=is_production)
        return jsonify(body), status

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")

    return app
