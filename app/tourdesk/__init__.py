import logging
import os
from datetime import timedelta

from dotenv import load_dotenv
from flask import Flask, g, jsonify, request, session
from werkzeug.exceptions import HTTPException

from app.tourdesk.auth import bp as auth_bp, load_current_user
from app.tourdesk.config import load_config
from app.tourdesk.db import init_db, teardown_db_session
from app.tourdesk.modules.hotel_pricing.admin import bp as hotel_pricing_bp
from app.tourdesk.modules.masters.admin import bp as masters_bp
from app.tourdesk.modules.pricing.admin import bp as pricing_bp
from app.tourdesk.modules.tour_queries.admin import bp as tour_queries_bp
from app.tourdesk.modules.whatsapp.admin import bp as whatsapp_bp
from app.tourdesk.modules.whatsapp.webhook import bp as whatsapp_webhook_bp
from app.tourdesk.routes import bp as routes_bp

# Mutating requests from these blueprints skip the session CSRF check.
CSRF_EXEMPT_BLUEPRINTS = ("auth", "whatsapp_webhook")


def create_app(config_overrides: dict | None = None) -> Flask:
    load_dotenv()
    app = Flask(__name__)
    app.config.from_mapping(load_config())
    if config_overrides:
        app.config.update(config_overrides)
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    if not logging.getLogger().handlers:
        logging.basicConfig(
            level=os.environ.get("LOG_LEVEL", "INFO").upper(),
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    from app.tourdesk.security import ensure_csrf_token, validate_csrf

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            if (request.blueprint or "") in CSRF_EXEMPT_BLUEPRINTS:
                return None
            if not validate_csrf(request):
                return jsonify({"error": "CSRF token missing or invalid."}), 400
        return None

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")
        if not app.config.get("META_APP_SECRET"):
            app.logger.warning("META_APP_SECRET is not set; webhook signatures will not be verified.")

    init_db(app)

    def _dispose_engine_on_fork() -> None:
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    if app.config.get("STORAGE_BACKEND") == "s3":
        missing_s3 = [
            key
            for key in ("S3_ENDPOINT", "S3_BUCKET", "S3_ACCESS_KEY_ID", "S3_SECRET_ACCESS_KEY")
            if not app.config.get(key)
        ]
        if missing_s3:
            app.logger.error("STORAGE CONFIG ERROR: Missing required S3 env vars: %s", ", ".join(missing_s3))

    app.register_blueprint(routes_bp)
    app.register_blueprint(auth_bp, url_prefix="/auth")
    app.register_blueprint(masters_bp, url_prefix="/api")
    app.register_blueprint(tour_queries_bp, url_prefix="/api")
    app.register_blueprint(pricing_bp, url_prefix="/api")
    app.register_blueprint(hotel_pricing_bp, url_prefix="/api")
    app.register_blueprint(whatsapp_bp, url_prefix="/api")
    app.register_blueprint(whatsapp_webhook_bp, url_prefix="/api")

    def _load_user_wrapper():
        if request.path.startswith(("/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    app.before_request(_load_user_wrapper)
    app.teardown_appcontext(teardown_db_session)

    @app.errorhandler(HTTPException)
    def _err_http(e: HTTPException):
        body = {"error": e.description or e.name}
        if e.code == 403:
            missing = getattr(g, "missing_permission", None)
            if missing:
                app.logger.warning("Forbidden: missing_permission=%s request_id=%s", missing, getattr(g, "request_id", None))
                body = {"error": "Forbidden", "missing_permission": missing}
        elif e.code == 413:
            body = {"error": "File too large."}
        return jsonify(body), e.code

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        app.logger.exception("Unhandled 500 (request_id=%s)", getattr(g, "request_id", None))
        return jsonify({"error": "Internal server error", "request_id": getattr(g, "request_id", None)}), 500

    logging.getLogger(__name__).info("create_app() complete; app ready to serve")
    return app
