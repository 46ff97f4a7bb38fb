from __future__ import annotations

from decimal import Decimal

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .mixins import TimestampMixin

MONEY = db.Numeric(12, 2)


def money_to_json(value) -> float | None:
    if value is None:
        return None
    return float(Decimal(value).quantize(Decimal("0.01")))


class Product(TimestampMixin, db.Model):
    """
    A sellable product. Stock lives in its batches; total_quantity is a cache
    of their sum maintained by the batch store.
    """
    __tablename__ = 'product'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    barcode = db.Column(db.String(64), nullable=True, unique=True)
    internal_code = db.Column(db.String(64), nullable=True, unique=True)
    category = db.Column(db.String(64), nullable=False, default='Uncategorized')
    is_perishable = db.Column(db.Boolean, nullable=False, default=False)
    image_url = db.Column(db.String(512), nullable=True)

    # Fallback unit price when a batch carries none. Null means not set.
    generic_price = db.Column(MONEY, nullable=True)

    total_quantity = db.Column(db.Integer, nullable=False, default=0)
    threshold_value = db.Column(db.Integer, nullable=False, default=10)
    last_restocked = db.Column(db.DateTime, nullable=True)

    # Optimistic concurrency counter; every stock mutation bumps it.
    version_id = db.Column(db.Integer, nullable=False, default=1)

    batches = db.relationship(
        'Batch',
        back_populates='product',
        cascade='all, delete-orphan',
        lazy='select',
    )

    __mapper_args__ = {'version_id_col': version_id}
    __table_args__ = (
        db.CheckConstraint('total_quantity >= 0', name='check_product_total_quantity_non_negative'),
        db.Index('ix_product_category_name', 'category', 'name'),
    )

    def __repr__(self):
        return f'<Product {self.id}: {self.name!r} qty={self.total_quantity} v{self.version_id}>'

    @property
    def has_barcode(self):
        return bool(self.barcode)

    @property
    def is_low_stock(self):
        return (self.total_quantity or 0) <= (self.threshold_value or 0)

    def to_dict(self, include_batches: bool = False) -> dict:
        data = {
            'id': self.id,
            'name': self.name,
            'barcode': self.barcode,
            'internalCode': self.internal_code,
            'category': self.category,
            'isPerishable': bool(self.is_perishable),
            'hasBarcode': self.has_barcode,
            'imageUrl': self.image_url,
            'genericPrice': money_to_json(self.generic_price),
            'totalQuantity': self.total_quantity,
            'quantity': self.total_quantity,
            'thresholdValue': self.threshold_value,
            'isLowStock': self.is_low_stock,
            'lastRestocked': TimezoneUtils.format_datetime_for_api(self.last_restocked),
            'version': self.version_id,
        }
        if include_batches:
            from ..services.fefo import fefo_sort_key
            data['batches'] = [batch.to_dict() for batch in sorted(self.batches, key=fefo_sort_key)]
        return data


class Batch(db.Model):
    """
    A lot of one product received at one time, with its own quantity,
    expiry date and unit price. Depleted batches are kept at zero.
    """
    __tablename__ = 'batch'

    id = db.Column(db.Integer, primary_key=True)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id', ondelete='CASCADE'), nullable=False, index=True)
    batch_number = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)
    original_quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(MONEY, nullable=True)

    expiry_date = db.Column(db.Date, nullable=True)
    manufactured_date = db.Column(db.Date, nullable=True)
    received_at = db.Column(db.DateTime, default=TimezoneUtils.utc_now, nullable=False)

    product = db.relationship('Product', back_populates='batches')

    __table_args__ = (
        db.UniqueConstraint('product_id', 'batch_number', name='uq_batch_product_batch_number'),
        db.CheckConstraint('quantity >= 0', name='check_batch_quantity_non_negative'),
        db.CheckConstraint('original_quantity >= 0', name='check_batch_original_quantity_non_negative'),
        db.Index('ix_batch_product_expiry', 'product_id', 'expiry_date'),
    )

    def __repr__(self):
        return f'<Batch {self.id} {self.batch_number}: {self.quantity}/{self.original_quantity} exp={self.expiry_date}>'

    @property
    def is_depleted(self):
        return (self.quantity or 0) <= 0

    @property
    def is_expired(self):
        if not self.expiry_date:
            return False
        return self.expiry_date < TimezoneUtils.store_today()

    @property
    def days_until_expiry(self):
        """Days until expiry in the store timezone (negative once expired)."""
        if not self.expiry_date:
            return None
        return (self.expiry_date - TimezoneUtils.store_today()).days

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'batchNumber': self.batch_number,
            'quantity': self.quantity,
            'originalQuantity': self.original_quantity,
            'price': money_to_json(self.unit_price),
            'expiryDate': self.expiry_date.isoformat() if self.expiry_date else None,
            'manufacturerDate': self.manufactured_date.isoformat() if self.manufactured_date else None,
            'receivedDate': TimezoneUtils.format_datetime_for_api(self.received_at),
            'isExpired': self.is_expired,
            'daysUntilExpiry': self.days_until_expiry,
        }
