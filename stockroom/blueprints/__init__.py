import logging

logger = logging.getLogger(__name__)


def register_blueprints(app):
    """Register all blueprints with the Flask app."""
    from .core import core_bp
    from .products import products_bp

    app.register_blueprint(core_bp)
    app.register_blueprint(products_bp)

    logger.debug("Registered blueprints: %s", ", ".join(sorted(app.blueprints)))
