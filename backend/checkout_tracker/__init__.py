# backend/checkout_tracker/__init__.py
from flask import Flask, g, request

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.items import items_bp
    from .routes.transactions import transactions_bp
    from .routes.notifications import notifications_bp
    from .routes.users import users_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(items_bp)
    app.register_blueprint(transactions_bp)
    app.register_blueprint(notifications_bp)
    app.register_blueprint(users_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in app.config["CORS_ALLOWED_ORIGINS"]:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,OPTIONS"
        return response

    @app.after_request
    def dispatch_notifications(response):
        # Outbox rows are already committed; delivery problems never change the response.
        from .services import event_service, notification_service

        if not event_service.pending_events_emitted():
            return response
        g.pop("notification_events_emitted", None)
        if not app.config["NOTIFICATIONS_DISPATCH_INLINE"]:
            return response
        try:
            notification_service.dispatch_pending_events()
        except Exception:
            db.session.rollback()
            app.logger.exception("Inline notification dispatch failed")
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
