from flask import Blueprint

products_bp = Blueprint('products', __name__, url_prefix='/products')

from . import routes  # noqa: E402,F401

__all__ = ['products_bp']
