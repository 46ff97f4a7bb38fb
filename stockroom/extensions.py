from __future__ import annotations

from flask import current_app, request
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from flask_sqlalchemy import SQLAlchemy

__all__ = [
    "db",
    "migrate",
    "limiter",
    "sale_rate_limit",
]

db = SQLAlchemy()
migrate = Migrate(compare_type=True, render_as_batch=True)


def _limiter_key_func():
    """Key store terminals by X-Terminal-Id; fall back to IP address."""
    terminal_id = (request.headers.get("X-Terminal-Id") or "").strip()
    if terminal_id:
        return f"terminal:{terminal_id}"
    return get_remote_address()


def sale_rate_limit() -> str:
    """Per-terminal limit for the sale endpoint, resolved at request time."""
    configured = current_app.config.get("SALE_RATE_LIMIT")
    if isinstance(configured, str) and configured.strip():
        return configured.strip()
    return "120 per minute"


# Default limits come from RATELIMIT_DEFAULT in the app config.
limiter = Limiter(key_func=_limiter_key_func)
