"""
Pure FEFO planning: ordering batches and splitting a requested quantity
across them. Nothing here touches the database.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Iterable, List, Optional

from ...utils.timezone_utils import TimezoneUtils
from ._errors import InsufficientStock, ValidationError

logger = logging.getLogger(__name__)

_LATEST_RECEIPT = datetime.max.replace(tzinfo=timezone.utc)
ZERO = Decimal("0")
CENT = Decimal("0.01")
# Ids and quantities live in INTEGER columns, 32-bit on PostgreSQL.
MAX_INTEGER = 2**31 - 1


@dataclass(frozen=True)
class DeductionStep:
    """One planned draw against one batch."""

    batch_id: int
    batch_number: str
    quantity: int
    unit_price: Decimal
    quantity_before: int

    @property
    def amount(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)


def fefo_sort_key(batch):
    """
    Consumption order: earliest expiry first, batches without an expiry
    after every dated batch, then oldest receipt, then lowest id.
    """
    expiry = batch.expiry_date
    received = TimezoneUtils.ensure_timezone_aware(batch.received_at) or _LATEST_RECEIPT
    return (
        expiry is None,
        expiry or date.max,
        received,
        batch.id if batch.id is not None else 0,
    )


def to_money(value, field: str = "price") -> Optional[Decimal]:
    """Coerce a price to Decimal; None stays None."""
    if value is None:
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be a number", {field: ["must be a number"]})
    try:
        amount = Decimal(str(value))
    except (InvalidOperation, ValueError) as exc:
        raise ValidationError(f"{field} must be a number", {field: ["must be a number"]}) from exc
    if not amount.is_finite() or amount < 0:
        raise ValidationError(f"{field} must be a non-negative number", {field: ["must be non-negative"]})
    return amount


def resolve_unit_price(batch_price, fallback_price=None, generic_price=None) -> Decimal:
    """Batch price, else the caller's price, else the product's generic price, else zero."""
    for candidate in (batch_price, fallback_price, generic_price):
        if candidate is not None:
            return Decimal(str(candidate))
    return ZERO


def require_positive_quantity(quantity, field: str = "quantity") -> int:
    """Accept whole positive numbers only; 2.0 is fine, 2.5 and True are not."""
    if isinstance(quantity, bool):
        raise ValidationError(f"{field} must be a positive integer", {field: ["must be a positive integer"]})
    if isinstance(quantity, str) and quantity.strip().isascii() and quantity.strip().isdigit():
        quantity = int(quantity.strip())
    if isinstance(quantity, float) and quantity.is_integer():
        quantity = int(quantity)
    if not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"{field} must be a positive integer", {field: ["must be a positive integer"]})
    if quantity > MAX_INTEGER:
        raise ValidationError(f"{field} is too large", {field: [f"must be at most {MAX_INTEGER}"]})
    return quantity


def sellable_batches(batches: Iterable, *, allow_expired: bool = True, today: date | None = None) -> List:
    """Batches with stock left, in FEFO order."""
    candidates = [batch for batch in batches if (batch.quantity or 0) > 0]
    if not allow_expired:
        today = today or TimezoneUtils.store_today()
        candidates = [
            batch for batch in candidates
            if batch.expiry_date is None or batch.expiry_date >= today
        ]
    return sorted(candidates, key=fefo_sort_key)


def plan_fefo_deduction(
    batches: Iterable,
    requested_quantity: int,
    *,
    product_id=None,
    fallback_price=None,
    generic_price=None,
    allow_expired: bool = True,
    today: date | None = None,
) -> List[DeductionStep]:
    """
    Split requested_quantity across batches in FEFO order.

    Each step takes min(remaining, batch quantity), so every batch before the
    last one touched is drained completely. Raises InsufficientStock when the
    sellable batches together hold less than requested; nothing is planned
    in that case.
    """
    requested = require_positive_quantity(requested_quantity)
    ordered = sellable_batches(batches, allow_expired=allow_expired, today=today)

    available = sum(batch.quantity for batch in ordered)
    if available < requested:
        logger.info(
            "FEFO PLAN: product %s short, requested %s available %s",
            product_id, requested, available,
        )
        raise InsufficientStock(product_id, requested, available)

    plan: List[DeductionStep] = []
    remaining = requested
    for batch in ordered:
        if remaining <= 0:
            break
        take = min(remaining, batch.quantity)
        plan.append(
            DeductionStep(
                batch_id=batch.id,
                batch_number=batch.batch_number,
                quantity=take,
                unit_price=resolve_unit_price(batch.unit_price, fallback_price, generic_price),
                quantity_before=batch.quantity,
            )
        )
        remaining -= take

    return plan
