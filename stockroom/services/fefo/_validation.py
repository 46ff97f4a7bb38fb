from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select

from ...extensions import db
from ...models import Batch, Product
from ._errors import ValidationError
from ._planning import MAX_INTEGER, require_positive_quantity, to_money
from ._store import is_storable_id

logger = logging.getLogger(__name__)

MAX_PAYMENT_METHOD_LENGTH = 32


@dataclass(frozen=True)
class SaleItem:
    product_id: int
    quantity: int
    price: Optional[Decimal] = None
    payment_method: Optional[str] = None


@dataclass(frozen=True)
class SaleRequest:
    items: Tuple[SaleItem, ...]
    payment_method: Optional[str] = None

    def resolved_payment_method(self, default: str = "cash") -> str:
        if self.payment_method:
            return self.payment_method
        for item in self.items:
            if item.payment_method:
                return item.payment_method
        return default


def parse_product_id(value, field: str = "productId") -> int:
    """Product ids are integers; numeric strings are accepted."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer id", {field: ["must be an integer id"]})
    if isinstance(value, str) and value.strip().isascii() and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int) or value <= 0:
        raise ValidationError(f"{field} must be an integer id", {field: ["must be an integer id"]})
    if value > MAX_INTEGER:
        raise ValidationError(f"{field} is out of range", {field: [f"must be at most {MAX_INTEGER}"]})
    return value


def _parse_payment_method(value, field: str) -> Optional[str]:
    if value is None or value == "":
        return None
    if not isinstance(value, str) or len(value.strip()) > MAX_PAYMENT_METHOD_LENGTH:
        raise ValidationError(
            f"{field} must be a short string",
            {field: [f"must be a string of at most {MAX_PAYMENT_METHOD_LENGTH} characters"]},
        )
    return value.strip() or None


def parse_sale_request(payload: Any) -> SaleRequest:
    """
    Validate a process-sale body: {"items": [{productId, quantity, price?,
    paymentMethod?}], "paymentMethod"?}. Every problem found is reported at
    once, keyed by field path.
    """
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object", {"body": ["must be a JSON object"]})

    raw_items = payload.get("items")
    if not isinstance(raw_items, list) or not raw_items:
        raise ValidationError("items must be a non-empty list", {"items": ["must be a non-empty list"]})

    errors: Dict[str, List[str]] = {}
    payment_method = None
    try:
        payment_method = _parse_payment_method(payload.get("paymentMethod"), "paymentMethod")
    except ValidationError as exc:
        errors.update(exc.errors)

    items: List[SaleItem] = []
    for index, raw in enumerate(raw_items):
        prefix = f"items[{index}]"
        if not isinstance(raw, dict):
            errors[prefix] = ["must be an object"]
            continue

        parsed = {}
        for key, parser in (
            ("productId", parse_product_id),
            ("quantity", require_positive_quantity),
            ("price", to_money),
            ("paymentMethod", _parse_payment_method),
        ):
            field = f"{prefix}.{key}"
            if key == "productId" and raw.get(key) is None:
                errors[field] = ["is required"]
                continue
            if key == "quantity" and raw.get(key) is None:
                errors[field] = ["is required"]
                continue
            try:
                parsed[key] = parser(raw.get(key), field)
            except ValidationError as exc:
                errors.update(exc.errors)

        if len(parsed) == 4:
            items.append(
                SaleItem(
                    product_id=parsed["productId"],
                    quantity=parsed["quantity"],
                    price=parsed["price"],
                    payment_method=parsed["paymentMethod"],
                )
            )

    if errors:
        raise ValidationError("Invalid sale request", errors)

    return SaleRequest(items=tuple(items), payment_method=payment_method)


def validate_product_batch_sync(product_id, session=None):
    """
    Check that a product's cached total equals the sum of its batches.

    Returns (is_valid, error_message, product_total, batch_total).
    """
    session = session if session is not None else db.session
    product = session.get(Product, product_id, populate_existing=True) if is_storable_id(product_id) else None
    if not product:
        return False, "Product not found", 0, 0

    batches = session.scalars(select(Batch).where(Batch.product_id == product_id)).all()
    batch_total = sum(batch.quantity for batch in batches)
    product_total = product.total_quantity
    negative = [batch for batch in batches if batch.quantity < 0]

    if product_total != batch_total or negative:
        logger.error("BATCH SYNC MISMATCH for product %s (%s):", product_id, product.name)
        logger.error("  Product total: %s", product_total)
        logger.error("  Batch total: %s", batch_total)
        for i, batch in enumerate(batches):
            logger.error("    Batch %s: %s %s (expires %s)", i + 1, batch.batch_number, batch.quantity, batch.expiry_date)
        if negative:
            return False, f"Negative batch quantity on {negative[0].batch_number}", product_total, batch_total
        return (
            False,
            f"Batch sync error: product={product_total}, batches={batch_total}, diff={abs(product_total - batch_total)}",
            product_total,
            batch_total,
        )

    return True, None, product_total, batch_total
