# backend/storefront/__init__.py
import logging

from flask import Flask, request

from .config import Config
from .extensions import db, migrate, gateway, mailer, notifier


def create_app(test_config=None) -> Flask:
    """
    Application factory.

    `test_config` is a config object or mapping applied over Config before
    any extension reads its settings.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config is not None:
        if isinstance(test_config, dict):
            app.config.from_mapping(test_config)
        else:
            app.config.from_object(test_config)

    logging.basicConfig(level=app.config.get("LOG_LEVEL", "INFO"))
    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    gateway.init_app(app)
    mailer.init_app(app)
    notifier.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.orders import orders_bp, admin_orders_bp
    from .routes.returns import returns_bp, admin_returns_bp
    from .routes.abandoned_carts import abandoned_carts_bp, admin_abandoned_carts_bp, cron_bp
    from .routes.inventory_alerts import inventory_alerts_bp
    from .routes.settings import settings_bp, admin_settings_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(admin_orders_bp)
    app.register_blueprint(returns_bp)
    app.register_blueprint(admin_returns_bp)
    app.register_blueprint(abandoned_carts_bp)
    app.register_blueprint(admin_abandoned_carts_bp)
    app.register_blueprint(cron_bp)
    app.register_blueprint(inventory_alerts_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(admin_settings_bp)

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        store_url = (app.config.get("STORE_URL") or "").rstrip("/")
        allowed_origins = {
            store_url,
            "http://localhost:3000",
            "http://127.0.0.1:3000",
        }
        if origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
