"""
Sale processing: a cart is committed whole or not at all.

All lines of a sale are allocated inside one database transaction. The
first failing line aborts the sale, and rolling the transaction back
reverses the deductions of every line allocated before it, so other
readers never observe a partially applied sale.
"""

from __future__ import annotations

import enum
import logging
import time
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError

from ...models import SaleLine, SaleLineBatch, SaleRecord
from ...utils.code_generator import generate_sale_code
from ._allocator import AllocationLine, FefoAllocator, _config_value
from ._errors import (
    Conflict,
    FefoError,
    InsufficientStock,
    NotFound,
    SaleFailed,
    SaleTimeout,
    ValidationError,
)
from ._planning import plan_fefo_deduction
from ._validation import SaleItem, SaleRequest, parse_sale_request

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 10.0


class SaleState(str, enum.Enum):
    RECEIVED = "received"
    ALLOCATING = "allocating"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"
    VOIDED = "voided"


def _failure_entry(index: int, item: SaleItem, exc: FefoError) -> Dict[str, Any]:
    entry = {
        "index": index,
        "productId": item.product_id,
        "requested": item.quantity,
        "reason": exc.code,
        "message": str(exc),
    }
    if isinstance(exc, InsufficientStock):
        entry["available"] = exc.available
    return entry


class SaleProcessor:
    """Processes multi-line sales on top of a FefoAllocator."""

    def __init__(
        self,
        allocator: FefoAllocator | None = None,
        *,
        timeout_seconds: float | None = None,
        default_payment_method: str | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.allocator = allocator or FefoAllocator(clock=clock)
        self.timeout_seconds = float(
            timeout_seconds if timeout_seconds is not None
            else _config_value("SALE_TIMEOUT_SECONDS", DEFAULT_TIMEOUT_SECONDS)
        )
        self.default_payment_method = (
            default_payment_method or _config_value("DEFAULT_PAYMENT_METHOD", "cash")
        )
        self._clock = clock
        self.state = SaleState.RECEIVED

    @property
    def store(self):
        return self.allocator.store

    @property
    def session(self):
        return self.allocator.session

    def process_sale(self, items, payment_method: str | None = None) -> SaleRecord:
        """
        Allocate every line of the sale and persist a SaleRecord.

        items is either a SaleRequest or the raw list of
        {productId, quantity, price?, paymentMethod?} mappings. Raises
        ValidationError before any stock is touched, or SaleFailed (after
        rolling everything back) naming the line that failed and why.
        """
        if isinstance(items, SaleRequest):
            request = items
        else:
            request = parse_sale_request({"items": items, "paymentMethod": payment_method})

        self.state = SaleState.RECEIVED
        deadline = self._clock() + self.timeout_seconds
        logger.info("SALE: received %s line(s)", len(request.items))

        self.state = SaleState.ALLOCATING
        lines: List[AllocationLine] = []
        index = 0
        try:
            for index, item in enumerate(request.items):
                if self._clock() > deadline:
                    raise SaleTimeout(
                        f"Sale timed out before line {index}",
                        product_id=item.product_id,
                    )
                lines.append(
                    self.allocator.allocate(
                        item.product_id,
                        item.quantity,
                        fallback_price=item.price,
                        deadline=deadline,
                        commit=False,
                    )
                )
            record = self._record_sale(request, lines)
            self.session.commit()
        except (InsufficientStock, NotFound, Conflict, ValidationError) as exc:
            self._roll_back(index, len(lines))
            failures = [_failure_entry(index, request.items[index], exc)]
            failures.extend(self._diagnose_remaining(request.items, index + 1))
            logger.warning("SALE: line %s (product %s) failed: %s", index, request.items[index].product_id, exc)
            raise SaleFailed(exc, failures, state=self.state.value) from exc
        except SQLAlchemyError:
            self._roll_back(index, len(lines))
            raise

        self.state = SaleState.COMMITTED
        logger.info(
            "SALE: %s committed, %s line(s), total %s",
            record.sale_code, len(lines), record.total_amount,
        )
        return record

    def void_sale(self, sale_code: str) -> SaleRecord:
        """
        Return every unit of a committed sale to the batch it was drawn from.

        The status flip from committed to voided is a conditional update in
        the same transaction as the credits, so of two overlapping voids only
        one restores stock; the other gets Conflict.
        """
        record = self._find_sale(sale_code)
        if record.status != SaleState.COMMITTED.value:
            raise ValidationError(
                f"Sale {sale_code} is {record.status} and cannot be voided",
                {"status": [f"is {record.status}"]},
            )

        try:
            claimed = self.session.execute(
                update(SaleRecord)
                .where(SaleRecord.id == record.id, SaleRecord.status == SaleState.COMMITTED.value)
                .values(status=SaleState.VOIDED.value)
                .execution_options(synchronize_session=False)
            )
            if claimed.rowcount != 1:
                raise Conflict(f"Sale {sale_code} was voided concurrently")

            for line in record.lines:
                credits = [(draw.batch_id, draw.quantity) for draw in line.draws if draw.batch_id is not None]
                if len(credits) != len(line.draws):
                    raise ValidationError(
                        f"Sale {sale_code} drew from a batch that no longer exists",
                        {"lines": [f"product {line.product_id} has a deleted batch"]},
                    )
                self.store.restore_deduction(line.product_id, credits)
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

        logger.info("SALE: %s voided", sale_code)
        return record

    def _find_sale(self, sale_code: str) -> SaleRecord:
        record = self.session.scalars(
            select(SaleRecord)
            .where(SaleRecord.sale_code == sale_code)
            .execution_options(populate_existing=True)
        ).first()
        if record is None:
            raise NotFound(f"Sale {sale_code} not found")
        return record

    def _record_sale(self, request: SaleRequest, lines: List[AllocationLine]) -> SaleRecord:
        record = SaleRecord(
            sale_code=generate_sale_code(),
            status=SaleState.COMMITTED.value,
            payment_method=request.resolved_payment_method(self.default_payment_method),
            total_amount=sum((line.total_amount for line in lines), Decimal("0.00")),
            item_count=sum(line.requested_quantity for line in lines),
        )
        for position, allocation in enumerate(lines):
            sale_line = SaleLine(
                position=position,
                product_id=allocation.product_id,
                product_name=allocation.product_name,
                category=allocation.category,
                requested_quantity=allocation.requested_quantity,
                total_amount=allocation.total_amount,
            )
            for draw_position, draw in enumerate(allocation.draws):
                sale_line.draws.append(
                    SaleLineBatch(
                        position=draw_position,
                        batch_id=draw.batch_id,
                        batch_number=draw.batch_number,
                        quantity=draw.quantity,
                        unit_price=draw.unit_price,
                        amount=draw.amount,
                    )
                )
            record.lines.append(sale_line)

        self.session.add(record)
        self.session.flush()
        return record

    def _roll_back(self, index: int, allocated: int) -> None:
        self.session.rollback()
        self.state = SaleState.ROLLED_BACK
        logger.info("SALE: rolled back at line %s, %s allocated line(s) reversed", index, allocated)

    def _diagnose_remaining(self, items, start: int) -> List[Dict[str, Any]]:
        """Read-only check of the lines after a failure, so the caller sees every short line."""
        failures = []
        for index in range(start, len(items)):
            item = items[index]
            try:
                snapshot = self.store.snapshot(item.product_id)
                plan_fefo_deduction(
                    snapshot.batches,
                    item.quantity,
                    product_id=item.product_id,
                    allow_expired=self.allocator.allow_expired,
                )
            except (InsufficientStock, NotFound) as exc:
                failures.append(_failure_entry(index, item, exc))
        self.session.rollback()
        return failures
