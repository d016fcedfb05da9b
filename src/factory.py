# -*- coding: utf-8 -*-
from typing import Optional

from flask import Flask, jsonify
from flask_cors import CORS
from flask_jwt_extended import JWTManager
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from src.config import Config, database_url
from src.database import db
from src.database.migrations import upgrade_to_head
from src.jobs.credit_sweep import register_commands
from src.middleware import register_error_handlers
from src.routes.credits import credits_bp
from src.routes.purchases import purchases_bp
from src.services.metrics import init_metrics
from src.services.request_context import init_request_context
from src.services.structured_logging import get_logger, init_logging

logger = get_logger('jobcredits.startup')


def _prepare_schema(app: Flask) -> None:
    """Test runs and explicit opt-in create tables directly; otherwise migrate."""
    with app.app_context():
        if app.testing or app.config["DB_AUTOCREATE"]:
            db.create_all()
        elif app.config["DB_MIGRATE_ON_START"]:
            upgrade_to_head(app)


def create_app(config_overrides: Optional[dict] = None) -> Flask:
    app = Flask(__name__)
    app.url_map.strict_slashes = False

    app.config.from_object(Config)
    app.config["SQLALCHEMY_DATABASE_URI"] = database_url()
    if config_overrides:
        app.config.update(config_overrides)

    db.init_app(app)
    JWTManager(app)
    CORS(app, resources={
        r"/api/*": {
            "origins": app.config["CORS_ALLOWED_ORIGINS"],
            "methods": ["GET", "POST", "OPTIONS"],
            "allow_headers": ["Content-Type", "Authorization", "X-Request-ID"],
            "supports_credentials": False,
            "max_age": 600,
        }}
    )

    # Request id first so every later hook and log line can see it
    init_request_context(app)
    init_logging(app)
    init_metrics(app)
    register_error_handlers(app)

    app.register_blueprint(purchases_bp)
    app.register_blueprint(credits_bp)
    register_commands(app)

    @app.route("/healthz")
    def healthz():
        try:
            db.session.execute(text("SELECT 1"))
        except SQLAlchemyError as e:
            logger.error("Health check failed", error=str(e))
            return jsonify({"status": "degraded", "database": "unavailable"}), 503
        return jsonify({"status": "ok"}), 200

    _prepare_schema(app)
    return app
