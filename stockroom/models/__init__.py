"""Models package - imports all models for the application"""
from ..extensions import db
from .mixins import TimestampMixin

# Import in dependency order for table creation
from .product import Product, Batch
from .sale import SaleRecord, SaleLine, SaleLineBatch

__all__ = [
    'db',
    'TimestampMixin',
    'Product',
    'Batch',
    'SaleRecord',
    'SaleLine',
    'SaleLineBatch',
]
