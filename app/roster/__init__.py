import logging
from datetime import timedelta

from flask import Flask, g, jsonify, render_template, request, session
from dotenv import load_dotenv

from app.roster.config import load_config
from app.roster.db import init_db, teardown_db_session
from app.roster.group_types import GroupTypeNotFound, RoleTypeNotFound
from app.roster.mailer import init_mailer
from app.roster.routes import bp as routes_bp
from app.roster.auth import bp as auth_bp, load_current_user
from app.roster.modules.groups.admin import bp as groups_bp
from app.roster.modules.people.admin import bp as people_bp
from app.roster.modules.roles.admin import bp as roles_bp
from app.roster.modules.self_registration.admin import bp as self_registration_bp

logger = logging.getLogger(__name__)


def create_app() -> Flask:
    load_dotenv()
    app = Flask(__name__, template_folder="templates", static_folder="static")
    app.config.from_mapping(load_config())
    app.config["PERMANENT_SESSION_LIFETIME"] = timedelta(hours=8)
    app.config["SESSION_REFRESH_EACH_REQUEST"] = True

    logging.basicConfig(
        level=app.config.get("LOG_LEVEL") or "INFO",
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app.logger.setLevel(app.config.get("LOG_LEVEL") or "INFO")

    # CSRF protection (minimal)
    from app.roster.security import ensure_csrf_token, validate_csrf

    @app.context_processor
    def _inject_csrf() -> dict:
        return {"csrf_token": ensure_csrf_token()}

    @app.context_processor
    def _inject_permissions() -> dict:
        from app.roster.rbac import can_manage_group, can_read_group, has_permission

        def has_perm(key: str) -> bool:
            return has_permission(getattr(g, "current_user", None), key)

        def can_manage(group) -> bool:
            return can_manage_group(getattr(g, "current_user", None), group)

        def can_read(group) -> bool:
            return can_read_group(getattr(g, "current_user", None), group)

        return {"has_perm": has_perm, "can_manage": can_manage, "can_read": can_read}

    @app.template_filter("dateformat")
    def _dateformat_filter(value, format: str = "%Y-%m-%d") -> str:
        if value is None:
            return "-"
        if hasattr(value, "strftime"):
            return value.strftime(format)
        return str(value)

    @app.before_request
    def _load_user_wrapper():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            g.current_user = None
            return None
        return load_current_user()

    @app.before_request
    def _csrf_guard():
        if request.path.startswith(("/static/", "/health", "/healthz")):
            return None
        ensure_csrf_token()
        session.permanent = True
        if not app.config.get("CSRF_ENABLED", True):
            return None
        if request.method in ("POST", "PUT", "PATCH", "DELETE"):
            # Allow safe auth endpoints to pass through (login/logout)
            if request.endpoint in ("auth.login_post",):
                return None
            if not validate_csrf(request):
                return render_template("errors/400.html", message="CSRF token missing or invalid."), 400

    # Production guardrails (fail fast with clear logs)
    env = (app.config.get("ENV") or "").strip().lower()
    if env in ("prod", "production"):
        if not app.config.get("DATABASE_URL") or str(app.config["DATABASE_URL"]).strip() == "":
            raise RuntimeError("DATABASE_URL is required in production.")
        if str(app.config["DATABASE_URL"]).startswith("sqlite"):
            raise RuntimeError("DATABASE_URL must be Postgres in production (not sqlite).")
        if not app.config.get("SECRET_KEY") or str(app.config["SECRET_KEY"]) in ("", "change-me"):
            raise RuntimeError("SECRET_KEY must be set to a strong value in production (not default).")

    init_db(app)
    init_mailer(app)

    def _dispose_engine_on_fork() -> None:
        import os
        if hasattr(os, "register_at_fork"):
            def _after_fork_child():
                engine = app.extensions.get("sqlalchemy_engine")
                if engine:
                    engine.dispose()
                    app.logger.info("Disposed DB engine after fork (pid=%s)", os.getpid())

            os.register_at_fork(after_in_child=_after_fork_child)

    _dispose_engine_on_fork()

    # Storage check (log loudly on misconfiguration)
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
    app.register_blueprint(groups_bp)
    app.register_blueprint(people_bp)
    app.register_blueprint(roles_bp)
    app.register_blueprint(self_registration_bp)

    app.teardown_appcontext(teardown_db_session)

    def _wants_json() -> bool:
        return request.headers.get("X-Requested-With") == "XMLHttpRequest" or request.is_json

    @app.errorhandler(RoleTypeNotFound)
    def _err_role_type(e):  # type: ignore[no-redef]
        app.logger.info("Unknown role type %r for group type %r (request_id=%s)", e.role_type, e.group_type, getattr(g, "request_id", None))
        if _wants_json():
            return jsonify({"error": str(e)}), 404
        return render_template("errors/404.html", message=str(e)), 404

    @app.errorhandler(GroupTypeNotFound)
    def _err_group_type(e):  # type: ignore[no-redef]
        app.logger.error("Group with unknown type (request_id=%s): %s", getattr(g, "request_id", None), e)
        return render_template("errors/404.html", message=str(e)), 404

    @app.errorhandler(404)
    def _err_404(e):  # type: ignore[no-redef]
        if _wants_json():
            return jsonify({"error": "not found"}), 404
        return render_template("errors/404.html", message=None), 404

    @app.errorhandler(500)
    def _err_500(e):  # type: ignore[no-redef]
        rid = getattr(g, "request_id", None)
        app.logger.exception("Unhandled 500 (request_id=%s)", rid)
        return render_template("errors/500.html", request_id=rid), 500

    @app.errorhandler(403)
    def _err_403(e):  # type: ignore[no-redef]
        missing = getattr(g, "missing_permission", None)
        if missing:
            app.logger.warning("Forbidden: missing_permission=%s path=%s request_id=%s", missing, request.path, getattr(g, "request_id", None))
        if _wants_json():
            return jsonify({"error": "forbidden", "missing_permission": missing}), 403
        return render_template("errors/403.html", missing_permission=missing), 403

    @app.errorhandler(413)
    def _err_413(e):  # type: ignore[no-redef]
        return render_template("errors/400.html", message="File too large. Maximum size is 10MB."), 413

    logger.info("create_app() complete; app ready to serve (env=%s)", env or "development")

    return app
