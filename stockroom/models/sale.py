from __future__ import annotations

from ..extensions import db
from ..utils.timezone_utils import TimezoneUtils
from .product import MONEY, money_to_json


class SaleRecord(db.Model):
    """A committed cart. Rows only exist for sales whose every line succeeded."""
    __tablename__ = 'sale_record'

    id = db.Column(db.Integer, primary_key=True)
    sale_code = db.Column(db.String(32), nullable=False, unique=True)
    status = db.Column(db.String(20), nullable=False, default='committed')
    payment_method = db.Column(db.String(32), nullable=False, default='cash')
    total_amount = db.Column(MONEY, nullable=False, default=0)
    item_count = db.Column(db.Integer, nullable=False, default=0)
    sale_date = db.Column(db.DateTime, default=TimezoneUtils.utc_now, nullable=False, index=True)

    lines = db.relationship(
        'SaleLine',
        back_populates='sale',
        cascade='all, delete-orphan',
        order_by='SaleLine.position',
    )

    def __repr__(self):
        return f'<SaleRecord {self.sale_code}: {len(self.lines)} lines {self.total_amount}>'

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'saleCode': self.sale_code,
            'status': self.status,
            'paymentMethod': self.payment_method,
            'saleDate': TimezoneUtils.format_datetime_for_api(self.sale_date),
            'totalAmount': money_to_json(self.total_amount),
            'itemCount': self.item_count,
            'lines': [line.to_dict() for line in self.lines],
        }


class SaleLine(db.Model):
    """Persisted allocation line: one product of a sale and the batches it drew."""
    __tablename__ = 'sale_line'

    id = db.Column(db.Integer, primary_key=True)
    sale_id = db.Column(db.Integer, db.ForeignKey('sale_record.id', ondelete='CASCADE'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    product_id = db.Column(db.Integer, db.ForeignKey('product.id'), nullable=False, index=True)
    product_name = db.Column(db.String(128), nullable=False)
    category = db.Column(db.String(64), nullable=True)
    requested_quantity = db.Column(db.Integer, nullable=False)
    total_amount = db.Column(MONEY, nullable=False, default=0)

    sale = db.relationship('SaleRecord', back_populates='lines')
    draws = db.relationship(
        'SaleLineBatch',
        back_populates='line',
        cascade='all, delete-orphan',
        order_by='SaleLineBatch.position',
    )

    __table_args__ = (
        db.CheckConstraint('requested_quantity > 0', name='check_sale_line_quantity_positive'),
    )

    def to_dict(self) -> dict:
        return {
            'productId': self.product_id,
            'productName': self.product_name,
            'category': self.category,
            'requestedQuantity': self.requested_quantity,
            'totalAmount': money_to_json(self.total_amount),
            'batches': [draw.to_dict() for draw in self.draws],
        }


class SaleLineBatch(db.Model):
    """How many units of a sale line came from which batch, at which price."""
    __tablename__ = 'sale_line_batch'

    id = db.Column(db.Integer, primary_key=True)
    sale_line_id = db.Column(db.Integer, db.ForeignKey('sale_line.id', ondelete='CASCADE'), nullable=False, index=True)
    position = db.Column(db.Integer, nullable=False)
    batch_id = db.Column(db.Integer, db.ForeignKey('batch.id', ondelete='SET NULL'), nullable=True, index=True)
    batch_number = db.Column(db.String(64), nullable=False)
    quantity = db.Column(db.Integer, nullable=False)
    unit_price = db.Column(MONEY, nullable=False, default=0)
    amount = db.Column(MONEY, nullable=False, default=0)

    line = db.relationship('SaleLine', back_populates='draws')

    __table_args__ = (
        db.CheckConstraint('quantity > 0', name='check_sale_line_batch_quantity_positive'),
    )

    def to_dict(self) -> dict:
        return {
            'batchId': self.batch_id,
            'batchNumber': self.batch_number,
            'quantity': self.quantity,
            'priceAtSale': money_to_json(self.unit_price),
            'amount': money_to_json(self.amount),
        }
