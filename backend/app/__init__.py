import logging
import os
import subprocess

import click
from flask import Flask, jsonify, request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

from app.config import Config
from app.errors import ApiError
from app.extensions import cors, db, login_manager, migrate, socketio


def _check_production(env: str) -> None:
    if env not in ("prod", "production"):
        return
    secret = (os.getenv("SECRET_KEY") or "").strip()
    if not secret or len(secret) < 16:
        raise RuntimeError("SECRET_KEY must be set and at least 16 chars in production")
    if not (os.getenv("DATABASE_URL") or "").strip():
        raise RuntimeError("DATABASE_URL must be set in production")


def _cors_origins(app: Flask) -> list:
    raw = (app.config.get("CORS_ORIGINS") or "").strip()
    origins = [o.strip() for o in raw.split(",") if o.strip()]
    if not origins and app.config["ENV_NAME"] not in ("prod", "production"):
        origins = ["*"]
    return origins


def _register_error_handlers(app: Flask) -> None:
    @app.errorhandler(ApiError)
    def handle_api_error(e: ApiError):
        db.session.rollback()
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_error(e: HTTPException):
        if not request.path.startswith("/api/"):
            return e
        return jsonify({"success": False, "message": e.description or e.name}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e: Exception):
        db.session.rollback()
        app.logger.exception("unhandled error on %s %s", request.method, request.path)
        return jsonify({"success": False, "message": "Internal server error"}), 500


def _register_blueprints(app: Flask) -> None:
    from app.auth import api_auth
    from app.segments.segment_notifications import notifications_bp
    from app.segments.segment_payments import payments_bp
    from app.segments.segment_support import support_bp
    from app.segments.segment_verification import verification_bp

    app.register_blueprint(api_auth)
    app.register_blueprint(payments_bp)
    app.register_blueprint(support_bp)
    app.register_blueprint(verification_bp)
    app.register_blueprint(notifications_bp)


def _register_cli(app: Flask) -> None:
    @app.cli.command("promotions-cleanup")
    @click.option("--limit", default=500, show_default=True, help="Maximum promotions to process.")
    def promotions_cleanup(limit):
        """Deactivate expired ad promotions and clear their ad flags."""
        from app.jobs.promotion_expiry import run_promotion_expiry

        result = run_promotion_expiry(limit=limit)
        click.echo(
            f"checked={result['checked']} deactivated={result['deactivated']} failed={result['failed']} "
            f"flags_cleared={result['flagsCleared']}"
        )


def create_app(overrides=None):
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)

    env = app.config["ENV_NAME"]
    if not app.config.get("TESTING"):
        _check_production(env)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Ensure instance dir exists for SQLite paths
    os.makedirs(app.config["INSTANCE_DIR"], exist_ok=True)

    cors.init_app(app, resources={r"/api/*": {"origins": _cors_origins(app)}})
    db.init_app(app)
    migrate.init_app(app, db)
    login_manager.init_app(app)

    # Handlers must be registered before init_app so every app instance gets them
    from app.realtime import support_events  # noqa: F401

    if app.config.get("REALTIME_ENABLED"):
        origins = _cors_origins(app)
        socketio.init_app(
            app,
            cors_allowed_origins="*" if origins == ["*"] else origins,
            async_mode=app.config.get("SOCKETIO_ASYNC_MODE"),
        )
    else:
        app.logger.info("realtime disabled; clients fall back to HTTP polling")

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)

    @app.get("/api/health")
    def health():
        db_state = "ok"
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError:
            db_state = "fail"
        return jsonify({
            "success": True,
            "service": "thulobazaar-backend",
            "env": env,
            "db": db_state,
            "realtime": bool(app.config.get("REALTIME_ENABLED")),
        })

    @app.get("/api/version")
    def version():
        def _get_alembic_head() -> str:
            try:
                from alembic.config import Config as AlembicConfig
                from alembic.script import ScriptDirectory
                migrations_dir = os.path.join(app.config["BACKEND_DIR"], "migrations")
                cfg = AlembicConfig(os.path.join(migrations_dir, "alembic.ini"))
                cfg.set_main_option("script_location", migrations_dir)
                heads = ScriptDirectory.from_config(cfg).get_heads()
                return heads[0] if heads else "unknown"
            except Exception:
                return "unknown"

        def _get_git_sha() -> str:
            try:
                out = subprocess.check_output(
                    ["git", "rev-parse", "HEAD"], cwd=app.config["BACKEND_DIR"], stderr=subprocess.DEVNULL
                )
                return out.decode().strip()
            except (OSError, subprocess.CalledProcessError):
                return "unknown"

        return jsonify({
            "success": True,
            "alembic_head": _get_alembic_head(),
            "git_sha": _get_git_sha(),
        })

    if app.config.get("AUTO_CREATE_TABLES"):
        with app.app_context():
            from app import models  # noqa: F401
            db.create_all()

    return app
