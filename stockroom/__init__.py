import logging
import os
from typing import Any

from flask import Flask
from sqlalchemy.pool import StaticPool

from .blueprints import register_blueprints
from .config import ENV_DIAGNOSTICS, EnvReader
from .extensions import db, limiter, migrate
from .logging_config import configure_logging

logger = logging.getLogger(__name__)

SQLITE_BUSY_TIMEOUT_SECONDS = 30
_POOL_SIZING_OPTIONS = ("pool_size", "max_overflow", "pool_timeout")


def create_app(config: dict[str, Any] | None = None) -> Flask:
    app = Flask(__name__)
    os.makedirs(app.instance_path, exist_ok=True)

    _load_config(app, config)
    _configure_sqlite_engine_options(app)

    db.init_app(app)
    migrate.init_app(app, db)
    _configure_rate_limiter(app)

    register_blueprints(app)
    from . import models  # noqa: F401  # tables must be mapped before create_all / Alembic

    configure_logging(app)

    from .resilience import register_resilience_handlers

    register_resilience_handlers(app)

    from .management import register_commands

    register_commands(app)
    _maybe_create_tables(app)

    logger.info("Stockroom app created (%s)", ENV_DIAGNOSTICS["active"])
    return app


def _load_config(app: Flask, overrides: dict[str, Any] | None) -> None:
    app.config.from_object("stockroom.config.Config")
    if overrides:
        app.config.update(overrides)
        if overrides.get("DATABASE_URL"):
            app.config["SQLALCHEMY_DATABASE_URI"] = overrides["DATABASE_URL"]
    app.config["ENV_DIAGNOSTICS"] = ENV_DIAGNOSTICS

    for warning in ENV_DIAGNOSTICS["warnings"]:
        logger.warning("Environment configuration warning: %s", warning)
    if not app.config.get("SQLALCHEMY_DATABASE_URI"):
        raise RuntimeError(f"DATABASE_URL is not set for the {ENV_DIAGNOSTICS['active']} environment")


def _configure_sqlite_engine_options(app: Flask) -> None:
    """SQLite has no server-side pool; connections are shared across request threads."""
    uri = app.config["SQLALCHEMY_DATABASE_URI"]
    if not uri.startswith("sqlite"):
        return

    opts = {
        key: value
        for key, value in (app.config.get("SQLALCHEMY_ENGINE_OPTIONS") or {}).items()
        if key not in _POOL_SIZING_OPTIONS
    }
    connect_args = dict(opts.get("connect_args") or {}, check_same_thread=False)
    if uri in ("sqlite://", "sqlite:///:memory:"):
        opts["poolclass"] = StaticPool
    else:
        # Writers wait on the database lock rather than failing at once.
        connect_args.setdefault("timeout", SQLITE_BUSY_TIMEOUT_SECONDS)
    opts["connect_args"] = connect_args
    app.config["SQLALCHEMY_ENGINE_OPTIONS"] = opts


def _configure_rate_limiter(app: Flask) -> None:
    app.config["RATELIMIT_STORAGE_URI"] = app.config.get("RATELIMIT_STORAGE_URI") or "memory://"
    limiter.init_app(app)

    if app.config.get("ENV") == "production" and app.config["RATELIMIT_STORAGE_URI"].startswith("memory://"):
        logger.warning("Rate limiter uses in-memory storage; limits are per worker process.")


def _maybe_create_tables(app: Flask) -> None:
    """SQLALCHEMY_CREATE_ALL=1 creates tables directly; otherwise Alembic owns the schema."""
    if not EnvReader().bool("SQLALCHEMY_CREATE_ALL", False):
        logger.debug("db.create_all() not enabled; run `flask db upgrade` to migrate")
        return

    with app.app_context():
        db.create_all()
    logger.info("Database tables created/verified via SQLALCHEMY_CREATE_ALL")
