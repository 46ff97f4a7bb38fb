from __future__ import annotations

import logging
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, List, Mapping, Optional, Tuple

from flask import current_app, has_app_context
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..extensions import db
from ..models import Batch, Product, SaleLine, SaleLineBatch, SaleRecord
from ..utils.timezone_utils import TimezoneUtils
from .fefo import (
    MAX_INTEGER,
    BatchStore,
    Conflict,
    NotFound,
    ValidationError,
    is_storable_id,
    require_positive_quantity,
    to_money,
)

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def _clean_str(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _parse_date(value, field: str) -> Optional[date]:
    """Accept a date, 'YYYY-MM-DD' or an ISO timestamp; blank means no date."""
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text[:10]) if len(text) == 10 else datetime.fromisoformat(
                text.replace("Z", "+00:00")
            ).date()
        except ValueError:
            pass
    raise ValidationError(f"{field} must be an ISO date", {field: ["must be an ISO date (YYYY-MM-DD)"]})


def _parse_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return bool(value)


class ProductCatalogService:
    """Product registration, lookup and pricing around the batch store."""

    @staticmethod
    def register_stock(payload: Mapping[str, Any], store: BatchStore | None = None) -> Tuple[Product, bool, Batch]:
        """
        Add stock. When a product with the same barcode or internal code
        exists a new batch is appended to it, otherwise the product is
        created with this batch as its first one.

        Returns (product, created, batch).
        """
        store = store or BatchStore()
        session = store.session

        barcode = _clean_str(payload.get("barcode"))
        internal_code = _clean_str(payload.get("internalCode"))
        quantity = require_positive_quantity(payload.get("quantity"))
        unit_price = to_money(payload.get("price"))
        expiry_date = _parse_date(payload.get("expiryDate"), "expiryDate")
        manufactured_date = _parse_date(payload.get("manufacturerDate"), "manufacturerDate")
        batch_number = _clean_str(payload.get("batchNumber"))

        try:
            product = ProductCatalogService._find_by_codes(session, barcode, internal_code)
            created = product is None
            if created:
                name = _clean_str(payload.get("name"))
                if not name:
                    raise ValidationError("name is required for a new product", {"name": ["is required"]})
                product = Product(
                    name=name,
                    barcode=barcode,
                    internal_code=internal_code,
                    category=_clean_str(payload.get("category")) or "Uncategorized",
                    is_perishable=_parse_bool(payload.get("isPerishable")),
                    image_url=_clean_str(payload.get("imageUrl")),
                    generic_price=to_money(payload.get("genericPrice"), "genericPrice"),
                    threshold_value=ProductCatalogService._threshold(payload.get("thresholdValue")),
                )
                session.add(product)
            else:
                if _clean_str(payload.get("imageUrl")):
                    product.image_url = _clean_str(payload.get("imageUrl"))
                if _clean_str(payload.get("category")):
                    product.category = _clean_str(payload.get("category"))
            session.flush()

            batch = store.add_batch(
                product.id,
                quantity,
                expiry_date=expiry_date,
                unit_price=unit_price,
                batch_number=batch_number,
                manufactured_date=manufactured_date,
            )
            session.commit()
        except IntegrityError as exc:
            session.rollback()
            raise Conflict("A product with this barcode or internal code was registered concurrently") from exc
        except Exception:
            session.rollback()
            raise

        logger.info(
            "CATALOG: %s product %s, batch %s (%s units)",
            "created" if created else "restocked", product.id, batch.batch_number, quantity,
        )
        return product, created, batch

    @staticmethod
    def _find_by_codes(session, barcode, internal_code) -> Optional[Product]:
        criteria = []
        if barcode:
            criteria.append(Product.barcode == barcode)
        if internal_code:
            criteria.append(Product.internal_code == internal_code)
        if not criteria:
            return None
        stmt = select(Product).where(or_(*criteria)).execution_options(populate_existing=True)
        return session.scalars(stmt).first()

    @staticmethod
    def _threshold(value) -> int:
        if value is None or value == "":
            if has_app_context():
                return int(current_app.config.get("LOW_STOCK_THRESHOLD", 10))
            return 10
        try:
            threshold = int(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError("thresholdValue must be an integer", {"thresholdValue": ["must be an integer"]}) from exc
        if threshold < 0:
            raise ValidationError("thresholdValue must be non-negative", {"thresholdValue": ["must be non-negative"]})
        if threshold > MAX_INTEGER:
            raise ValidationError("thresholdValue is too large", {"thresholdValue": [f"must be at most {MAX_INTEGER}"]})
        return threshold

    @staticmethod
    def list_products(category: str | None = None, search: str | None = None) -> List[Product]:
        stmt = select(Product)
        if category:
            stmt = stmt.where(Product.category == category)
        if search:
            pattern = f"%{search.strip()}%"
            stmt = stmt.where(
                or_(
                    Product.name.ilike(pattern),
                    Product.barcode.ilike(pattern),
                    Product.internal_code.ilike(pattern),
                )
            )
        stmt = stmt.order_by(Product.updated_at.desc(), Product.id.desc())
        return list(db.session.scalars(stmt).all())

    @staticmethod
    def find_product(identifier) -> Product:
        """Look up by numeric id, falling back to barcode."""
        product = None
        text = str(identifier).strip()
        if text.isascii() and text.isdigit() and is_storable_id(int(text)):
            product = db.session.get(Product, int(text))
        if product is None:
            product = db.session.scalars(select(Product).where(Product.barcode == text)).first()
        if product is None:
            raise NotFound(f"Product {identifier} not found")
        return product

    @staticmethod
    def update_product(product_id, payload: Mapping[str, Any]) -> Product:
        """Update descriptive fields only; stock and prices have their own paths."""
        store = BatchStore()
        try:
            product = store.get_product(product_id)
            if "name" in payload:
                name = _clean_str(payload.get("name"))
                if not name:
                    raise ValidationError("name cannot be blank", {"name": ["cannot be blank"]})
                product.name = name
            if "category" in payload:
                product.category = _clean_str(payload.get("category")) or "Uncategorized"
            if "imageUrl" in payload:
                product.image_url = _clean_str(payload.get("imageUrl"))
            if "thresholdValue" in payload:
                product.threshold_value = ProductCatalogService._threshold(payload.get("thresholdValue"))
            if "isPerishable" in payload:
                product.is_perishable = _parse_bool(payload.get("isPerishable"))
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        return product

    @staticmethod
    def set_generic_price(product_id, generic_price) -> Product:
        """Set the fallback price; None clears it."""
        store = BatchStore()
        try:
            product = store.get_product(product_id)
            product.generic_price = to_money(generic_price, "genericPrice")
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("CATALOG: generic price of product %s set to %s", product_id, product.generic_price)
        return product

    @staticmethod
    def apply_discount(product_id, discount_percent) -> Product:
        """Reduce every priced batch and the generic price by a percentage."""
        if isinstance(discount_percent, bool):
            discount_percent = None
        try:
            percent = Decimal(str(discount_percent))
        except (InvalidOperation, ValueError):
            percent = None
        if percent is None or not percent.is_finite() or percent <= 0 or percent > 100:
            raise ValidationError(
                "Invalid discount percentage (must be greater than 0 and at most 100)",
                {"discountPercent": ["must be greater than 0 and at most 100"]},
            )

        store = BatchStore()
        factor = (Decimal("100") - percent) / Decimal("100")
        try:
            product = store.get_product(product_id)
            for batch in store.get_batches_for_product(product_id):
                if batch.unit_price is not None and batch.unit_price > 0:
                    batch.unit_price = max(Decimal("0"), (batch.unit_price * factor).quantize(CENT, ROUND_HALF_UP))
            if product.generic_price is not None and product.generic_price > 0:
                product.generic_price = max(
                    Decimal("0"), (product.generic_price * factor).quantize(CENT, ROUND_HALF_UP)
                )
            db.session.flush()
            # Prices feed allocation plans, so in-flight plans must re-read.
            store.bump_version(product_id)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("CATALOG: %s%% discount applied to product %s", percent, product_id)
        return store.get_product(product_id)

    @staticmethod
    def delete_batch(product_id, batch_number: str) -> Product:
        """Remove a batch that no sale has drawn from."""
        store = BatchStore()
        try:
            store.get_product(product_id)
            batch = db.session.scalars(
                select(Batch).where(Batch.product_id == product_id, Batch.batch_number == batch_number)
            ).first()
            if batch is None:
                raise NotFound(f"Batch {batch_number} not found", product_id=product_id)

            referenced = db.session.scalar(
                select(SaleLineBatch.id).where(SaleLineBatch.batch_id == batch.id).limit(1)
            )
            if referenced is not None:
                raise Conflict(
                    f"Batch {batch_number} has sales recorded against it and is kept for audit",
                    product_id=product_id,
                )

            store.remove_batch(product_id, batch)
            db.session.commit()
        except Exception:
            db.session.rollback()
            raise
        logger.info("CATALOG: deleted batch %s of product %s", batch_number, product_id)
        return store.get_product(product_id)

    @staticmethod
    def delete_product(product_id) -> None:
        """Delete a product and its batches; products that appear in sales are kept."""
        store = BatchStore()
        try:
            product = store.get_product(product_id)
            sold = db.session.scalar(select(SaleLine.id).where(SaleLine.product_id == product_id).limit(1))
            if sold is not None:
                raise Conflict(
                    f"Product {product_id} has sales recorded against it and is kept for audit",
                    product_id=product_id,
                )
            db.session.delete(product)
            db.session.commit()
        except (IntegrityError, StaleDataError) as exc:
            db.session.rollback()
            raise Conflict(f"Product {product_id} changed while being deleted", product_id=product_id) from exc
        except Exception:
            db.session.rollback()
            raise
        logger.info("CATALOG: deleted product %s", product_id)

    @staticmethod
    def sales_history(product_id, limit: int = 50) -> List[Dict[str, Any]]:
        """Sale lines for a product, newest first, with the batches each drew."""
        BatchStore().get_product(product_id)
        stmt = (
            select(SaleLine, SaleRecord)
            .join(SaleRecord, SaleLine.sale_id == SaleRecord.id)
            .where(SaleLine.product_id == product_id)
            .order_by(SaleRecord.sale_date.desc(), SaleLine.id.desc())
            .limit(limit)
        )
        history = []
        for line, record in db.session.execute(stmt).all():
            entry = line.to_dict()
            entry.update(
                {
                    "saleCode": record.sale_code,
                    "saleDate": TimezoneUtils.format_datetime_for_api(record.sale_date),
                    "paymentMethod": record.payment_method,
                    "status": record.status,
                }
            )
            history.append(entry)
        return history
