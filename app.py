"""Flask application factory for the civic complaint workflow service."""
import os
from typing import Optional

import click
from dotenv import load_dotenv
from flask import Flask, g, jsonify, request
from sqlalchemy import create_engine, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.exc import OperationalError
from werkzeug.exceptions import HTTPException

from extensions import csrf, db, migrate
from utils.logger import init_logging
from utils.security import apply_security_headers, sanitize_input
from utils.workflow import WorkflowError


def register_error_handlers(app: Flask) -> None:
    @app.errorhandler(WorkflowError)
    def workflow_error(error: WorkflowError):
        app.logger.warning(
            "Workflow operation rejected",
            extra={"path": request.path, "method": request.method, "code": error.code, "status": error.status_code},
        )
        return jsonify(error.to_payload()), error.status_code

    @app.errorhandler(HTTPException)
    def http_error(error: HTTPException):
        app.logger.warning(f"{error.code} {error.name}", extra={"path": request.path, "method": request.method})
        return jsonify({"error": error.description, "code": error.name.upper().replace(" ", "_")}), error.code

    @app.errorhandler(500)
    def internal_error(error):
        app.logger.exception("500 Internal Server Error")
        db.session.rollback()
        return jsonify({"error": "Internal server error", "code": "INTERNAL_ERROR"}), 500


def ensure_database_exists(database_uri: str) -> None:
    """Create the target database if it does not exist (PostgreSQL + SQLite support)."""
    url = make_url(database_uri)

    if url.drivername.startswith("sqlite"):
        if url.database:
            os.makedirs(os.path.dirname(url.database) or ".", exist_ok=True)
        return

    if url.drivername.startswith("postgres"):
        db_name = url.database
        admin_url = url.set(database=os.getenv("POSTGRES_DB_ADMIN", "postgres"))
        engine = create_engine(admin_url, isolation_level="AUTOCOMMIT")
        try:
            with engine.connect() as conn:
                exists = conn.execute(
                    text("SELECT 1 FROM pg_database WHERE datname = :name"), {"name": db_name}
                ).scalar()
                if not exists:
                    conn.execute(text(f'CREATE DATABASE "{db_name}"'))
        except OperationalError:
            # Startup fails loudly later on the first real connection.
            pass
        finally:
            engine.dispose()


def register_cli(app: Flask) -> None:
    from utils.escalation_agent import run_escalation_cycle
    from utils.verification import run_verification_deadline_sweep

    @app.cli.command("escalation-run")
    def escalation_run():
        """Escalate complaints past the SLA (schedule this via cron)."""
        result = run_escalation_cycle(app)
        click.echo(f"Escalated {result['escalated_count']} complaint(s); {len(result['errors'])} error(s).")

    @app.cli.command("verification-sweep")
    def verification_sweep():
        """Auto-resolve complaints whose verification window has elapsed."""
        with app.app_context():
            result = run_verification_deadline_sweep()
        click.echo(f"Auto-resolved {result['auto_resolved_count']} complaint(s); {len(result['errors'])} error(s).")


def create_app(config_name: Optional[str] = None) -> Flask:
    """Application factory with environment-aware configuration."""
    load_dotenv()

    app = Flask(__name__, instance_relative_config=True)

    from config import DevelopmentConfig, ProductionConfig, TestingConfig

    config_key = (config_name or os.getenv("FLASK_CONFIG") or os.getenv("FLASK_ENV") or "production").lower()
    config_map = {
        "development": DevelopmentConfig,
        "dev": DevelopmentConfig,
        "production": ProductionConfig,
        "prod": ProductionConfig,
        "testing": TestingConfig,
        "test": TestingConfig,
    }
    config_class = config_map.get(config_key, ProductionConfig)
    app.config.from_object(config_class())

    ensure_database_exists(app.config["SQLALCHEMY_DATABASE_URI"])

    # Optional instance-specific overrides
    if not app.testing:
        app.config.from_pyfile("config.py", silent=True)
        os.makedirs(app.instance_path, exist_ok=True)

    logger = init_logging(app)
    app.logger = logger

    csrf.init_app(app)
    db.init_app(app)
    migrate.init_app(app, db)

    from routes import complaints_bp, main_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(complaints_bp)

    register_error_handlers(app)
    register_cli(app)

    @app.before_request
    def _before_request() -> None:
        g.sanitized_args = sanitize_input(request.args)

    @app.after_request
    def _after_request(response):
        return apply_security_headers(response, force_https=app.config.get("PREFERRED_URL_SCHEME") == "https")

    with app.app_context():
        db.create_all()

    return app
