"""
Audit Engagement Workflow
Flask application factory.

Usage:
    from auditflow import create_app
    app = create_app()           # APP_ENV, or "development"
    app = create_app("testing")
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as _sa_engine
from sqlalchemy import event as _sa_event
from sqlalchemy.exc import SQLAlchemyError

from auditflow.auth import init_auth
from auditflow.config import config
from auditflow.middleware.logging_config import configure_logging
from auditflow.middleware.rate_limiter import init_rate_limits
from auditflow.middleware.timing import init_request_timing
from auditflow.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("REDIS_URL", "memory://"),
)


@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    # SQLite ships with foreign key enforcement off
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_app(config_name=None):
    """Build a configured application for *config_name* (development | testing | production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(config[config_name]())

    configure_logging(app)
    _init_extensions(app)

    init_auth(app)
    init_request_timing(app)

    _ensure_schema(app, create_instance_dir=config_name == "development")
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cli(app)

    init_rate_limits(app, limiter)
    return app


def _init_extensions(app):
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)

    origins = app.config.get("CORS_ORIGINS", "*")
    if origins and origins != "*":
        CORS(app, origins=[o.strip() for o in origins.split(",") if o.strip()])
    else:
        CORS(app)


def _ensure_schema(app, create_instance_dir=False):
    """Import every model module, then CREATE IF NOT EXISTS.

    Alembic revisions under ``migrations/`` remain the source of truth for
    deployed databases; this only bootstraps local and test databases.
    """
    from auditflow.models import auth, engagement, notification, workpaper  # noqa: F401

    with app.app_context():
        if create_instance_dir:
            os.makedirs(app.instance_path, exist_ok=True)
        try:
            db.create_all()
        except SQLAlchemyError as exc:
            app.logger.warning("Schema bootstrap failed: %s", exc)


def _register_blueprints(app):
    from auditflow.blueprints.health_bp import health_bp
    from auditflow.blueprints.signoff_bp import signoff_bp
    from auditflow.blueprints.workflow_bp import workflow_bp

    for bp in (health_bp, workflow_bp, signoff_bp):
        app.register_blueprint(bp)


def _register_cli(app):
    @app.cli.command("issue-token")
    @click.argument("user_id", type=int)
    def issue_token_cmd(user_id):
        """Print an access token for an active user."""
        from auditflow.models.auth import User
        from auditflow.services.jwt_service import generate_access_token

        user = db.session.get(User, user_id)
        if user is None or not user.is_active:
            raise click.ClickException(f"No active user with id {user_id}")
        logger.info("Issued access token for user %s", user.id)
        click.echo(generate_access_token(user.id, user.tenant_id))


def _register_error_handlers(app):
    """App-wide fallbacks; workflow errors are mapped per blueprint."""

    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(413)
    def too_large(e):
        return {"error": "Request body too large"}, 413

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    @app.errorhandler(500)
    def server_error(e):
        logger.error("Unhandled server error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500
