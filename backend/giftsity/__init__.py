# backend/giftsity/__init__.py
from __future__ import annotations

from flask import Flask, request

from .config import Config
from .extensions import db, migrate
from .gateways import get_gateway


def create_app(service: str | None = None, test_config: dict | None = None) -> Flask:
    """
    Build one gateway.

    service overrides GIFTSITY_SERVICE (main | seller | corporate). Every
    gateway gets the auth and system blueprints; the rest depends on which
    data slice the gateway owns.
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if test_config:
        app.config.update(test_config)
    if service:
        app.config["GIFTSITY_SERVICE"] = service

    gateway = get_gateway(app.config["GIFTSITY_SERVICE"])

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Collaborators (tests swap these for capturing fakes)
    from .services import otp_delivery, payment_service
    app.extensions[otp_delivery.EXTENSION_KEY] = otp_delivery.build_delivery(app.config)
    app.extensions[payment_service.EXTENSION_KEY] = payment_service.build_gateway(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)

    if gateway.name == "main":
        from .routes.products import products_bp
        from .routes.orders import orders_bp
        from .routes.returns import returns_bp
        from .routes.webhooks import webhooks_bp

        app.register_blueprint(products_bp)
        app.register_blueprint(orders_bp)
        app.register_blueprint(returns_bp)
        app.register_blueprint(webhooks_bp)
    elif gateway.name == "seller":
        from .routes.seller import seller_bp
        app.register_blueprint(seller_bp)
    elif gateway.name == "corporate":
        from .routes.corporate import corporate_bp
        app.register_blueprint(corporate_bp)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or [])

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    app.logger.info("Giftsity %s gateway ready", gateway.name)
    return app
