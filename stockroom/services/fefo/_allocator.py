from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Callable, Optional, Tuple

from flask import current_app, has_app_context

from ._errors import Conflict, ConcurrentModification, SaleTimeout
from ._planning import CENT, DeductionStep, plan_fefo_deduction, require_positive_quantity
from ._store import BatchStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 5
DEFAULT_BACKOFF_SECONDS = 0.01


@dataclass(frozen=True)
class BatchDraw:
    """Units taken from one batch at that batch's price."""

    batch_id: int
    batch_number: str
    quantity: int
    unit_price: Decimal

    @property
    def amount(self) -> Decimal:
        return (self.unit_price * self.quantity).quantize(CENT)

    @classmethod
    def from_step(cls, step: DeductionStep) -> "BatchDraw":
        return cls(step.batch_id, step.batch_number, step.quantity, step.unit_price)


@dataclass(frozen=True)
class AllocationLine:
    """The committed outcome of allocating one product."""

    product_id: int
    product_name: str
    category: Optional[str]
    requested_quantity: int
    draws: Tuple[BatchDraw, ...] = field(default_factory=tuple)
    attempts: int = 1
    version: Optional[int] = None

    @property
    def quantity_allocated(self) -> int:
        return sum(draw.quantity for draw in self.draws)

    @property
    def total_amount(self) -> Decimal:
        return sum((draw.amount for draw in self.draws), Decimal("0.00"))


def _config_value(key, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


class FefoAllocator:
    """
    Allocates a quantity of one product across its batches, earliest expiry first.

    Each attempt snapshots the product, plans against the snapshot and asks
    the store to commit the plan against the snapshot's version. A version
    mismatch means another writer won; the allocator re-reads and re-plans,
    up to max_retries attempts, then gives up with Conflict.
    """

    def __init__(
        self,
        store: BatchStore | None = None,
        *,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        allow_expired: bool | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store or BatchStore()
        self.max_retries = max(1, int(
            max_retries if max_retries is not None
            else _config_value("FEFO_MAX_RETRIES", DEFAULT_MAX_RETRIES)
        ))
        self.backoff_seconds = float(
            backoff_seconds if backoff_seconds is not None
            else _config_value("FEFO_RETRY_BACKOFF_SECONDS", DEFAULT_BACKOFF_SECONDS)
        )
        self.allow_expired = bool(
            allow_expired if allow_expired is not None
            else _config_value("FEFO_ALLOW_EXPIRED", True)
        )
        self._clock = clock
        self._sleep = sleep

    @property
    def session(self):
        return self.store.session

    def allocate(
        self,
        product_id,
        requested_quantity,
        *,
        fallback_price=None,
        deadline: float | None = None,
        commit: bool = True,
    ) -> AllocationLine:
        """
        Deduct requested_quantity from the product's batches in FEFO order.

        With commit=True the allocation is committed on success and rolled
        back on failure. With commit=False the caller owns the transaction,
        which is how SaleProcessor groups several lines into one sale.
        """
        quantity = require_positive_quantity(requested_quantity)
        try:
            line = self._allocate_with_retry(product_id, quantity, fallback_price, deadline)
            if commit:
                self.session.commit()
            return line
        except Exception:
            if commit:
                self.session.rollback()
            raise

    def _allocate_with_retry(self, product_id, quantity, fallback_price, deadline) -> AllocationLine:
        for attempt in range(1, self.max_retries + 1):
            if deadline is not None and self._clock() > deadline:
                raise SaleTimeout(
                    f"Sale timed out while allocating product {product_id}",
                    product_id=product_id,
                    attempts=attempt - 1,
                )

            snapshot = self.store.snapshot(product_id)
            plan = plan_fefo_deduction(
                snapshot.batches,
                quantity,
                product_id=product_id,
                fallback_price=fallback_price,
                generic_price=snapshot.generic_price,
                allow_expired=self.allow_expired,
            )

            try:
                version = self.store.apply_deduction(
                    product_id,
                    [(step.batch_id, step.quantity) for step in plan],
                    expected_version=snapshot.version,
                )
            except ConcurrentModification:
                logger.info(
                    "FEFO ALLOCATE: product %s changed under attempt %s/%s, re-planning",
                    product_id, attempt, self.max_retries,
                )
                if self.backoff_seconds and attempt < self.max_retries:
                    self._sleep(self.backoff_seconds * attempt)
                continue

            line = AllocationLine(
                product_id=snapshot.product_id,
                product_name=snapshot.product_name,
                category=snapshot.category,
                requested_quantity=quantity,
                draws=tuple(BatchDraw.from_step(step) for step in plan),
                attempts=attempt,
                version=version,
            )
            logger.info(
                "FEFO ALLOCATE: product %s qty %s from %s batch(es), total %s, attempt %s",
                product_id, quantity, len(line.draws), line.total_amount, attempt,
            )
            return line

        logger.warning(
            "FEFO ALLOCATE: product %s still contended after %s attempts",
            product_id, self.max_retries,
        )
        raise Conflict(
            f"Product {product_id} is being modified concurrently; retry the sale",
            product_id=product_id,
            attempts=self.max_retries,
        )
