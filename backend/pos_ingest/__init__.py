# backend/pos_ingest/__init__.py
from flask import Flask, request

from .config import Config
from .extensions import db, enable_sqlite_savepoints, migrate
from .services.rate_limiter import SlidingWindowRateLimiter

__version__ = "1.0.0"

CORS_ALLOW_HEADERS = "authorization, x-client-info, apikey, content-type, x-pos-api-key"
CORS_ALLOW_METHODS = "GET, POST, OPTIONS"


def _install_rate_limiters(app: Flask) -> None:
    window = app.config["POS_RATE_LIMIT_WINDOW_SECONDS"]
    max_keys = app.config["POS_RATE_LIMIT_MAX_KEYS"]
    app.extensions["pos_rate_limiter"] = SlidingWindowRateLimiter(
        app.config["POS_RATE_LIMIT_PER_MINUTE"],
        window,
        max_keys=max_keys,
    )
    app.extensions["pos_customers_rate_limiter"] = SlidingWindowRateLimiter(
        app.config["POS_CUSTOMERS_RATE_LIMIT_PER_MINUTE"],
        window,
        max_keys=max_keys,
    )


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    if str(app.config.get("SQLALCHEMY_DATABASE_URI", "")).startswith("sqlite"):
        with app.app_context():
            enable_sqlite_savepoints(db.engine)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    _install_rate_limiters(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.pos import pos_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(pos_bp)

    allowed_origins = [
        o.strip() for o in (app.config.get("ALLOWED_POS_ORIGINS") or "*").split(",") if o.strip()
    ] or ["*"]

    @app.before_request
    def answer_preflight():
        if request.method == "OPTIONS":
            return "", 204

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if "*" in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = "*"
        else:
            response.headers["Access-Control-Allow-Origin"] = origin if origin in allowed_origins else allowed_origins[0]
            response.headers["Vary"] = "Origin"
        response.headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
        response.headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
        return response

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
