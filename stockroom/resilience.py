"""Global resilience and error-handler registration.

Registers teardown and error handlers that keep the database session usable
after failures and answer with the standard JSON envelope.
"""

from __future__ import annotations

import logging

from sqlalchemy.exc import DBAPIError, OperationalError, SQLAlchemyError
from werkzeug.exceptions import HTTPException

from .extensions import db
from .utils.api_responses import APIResponse

logger = logging.getLogger(__name__)


def register_resilience_handlers(app) -> None:
    """Install global DB rollback, maintenance and HTTP error handlers."""

    @app.teardown_request
    def _rollback_on_error(exc):
        try:
            if exc is not None:
                db.session.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback during teardown failed", exc_info=True)
        finally:
            db.session.remove()

    @app.errorhandler(OperationalError)
    @app.errorhandler(DBAPIError)
    def _db_error_handler(error):
        try:
            db.session.rollback()
        except SQLAlchemyError:
            logger.warning("Rollback after database error failed", exc_info=True)
        logger.error("Database unavailable: %s", error)
        return APIResponse.error(
            "Service temporarily unavailable. Please try again shortly.",
            status_code=503,
        )

    @app.errorhandler(HTTPException)
    def _http_error_handler(error: HTTPException):
        return APIResponse.error(error.description or error.name, status_code=error.code or 500)
