"""
Batch store: the only code that writes batch quantities.

Writes are optimistic. A deduction first advances the product's version_id
with a compare-and-swap; if another writer got there first, nothing is
written and ConcurrentModification is raised for the allocator to retry.
Batch updates are themselves conditional (quantity >= delta), so a batch can
never go negative even if a caller passes a stale plan.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func, inspect, select, update
from sqlalchemy.exc import IntegrityError

from ...extensions import db
from ...models import Batch, Product
from ...utils.code_generator import generate_batch_number
from ...utils.timezone_utils import TimezoneUtils
from ._errors import ConcurrentModification, InsufficientStock, NotFound, ValidationError
from ._planning import MAX_INTEGER, require_positive_quantity, to_money

logger = logging.getLogger(__name__)


def is_storable_id(value) -> bool:
    """True for an int that can be a primary key; anything else cannot name a row."""
    return isinstance(value, int) and not isinstance(value, bool) and 0 < value <= MAX_INTEGER


def _fefo_order():
    return (
        Batch.expiry_date.is_(None),
        Batch.expiry_date.asc(),
        Batch.received_at.asc(),
        Batch.id.asc(),
    )


@dataclass(frozen=True)
class BatchView:
    """Detached copy of a batch row, safe to plan against."""

    id: int
    batch_number: str
    quantity: int
    unit_price: Optional[Decimal]
    expiry_date: Optional[date]
    received_at: Optional[datetime]


@dataclass(frozen=True)
class StockSnapshot:
    """A product's version together with its batches as read at that version."""

    product_id: int
    version: int
    product_name: str
    category: Optional[str]
    generic_price: Optional[Decimal]
    batches: Tuple[BatchView, ...]

    @property
    def total_quantity(self) -> int:
        return sum(batch.quantity for batch in self.batches)


class BatchStore:
    """Persistence of products' batches, bound to one SQLAlchemy session."""

    def __init__(self, session=None):
        self.session = session if session is not None else db.session

    # ------------------------------------------------------------------ reads

    def get_product(self, product_id) -> Product:
        if not is_storable_id(product_id):
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        product = self.session.get(Product, product_id, populate_existing=True)
        if product is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        return product

    def get_batches_for_product(self, product_id) -> List[Batch]:
        """All batches of the product in FEFO order, depleted ones included."""
        self.get_product(product_id)
        stmt = (
            select(Batch)
            .where(Batch.product_id == product_id)
            .order_by(*_fefo_order())
            .execution_options(populate_existing=True)
        )
        return list(self.session.scalars(stmt).all())

    def snapshot(self, product_id) -> StockSnapshot:
        product = self.get_product(product_id)
        version = product.version_id
        batches = tuple(
            BatchView(
                id=batch.id,
                batch_number=batch.batch_number,
                quantity=batch.quantity,
                unit_price=batch.unit_price,
                expiry_date=batch.expiry_date,
                received_at=batch.received_at,
            )
            for batch in self.get_batches_for_product(product_id)
        )
        return StockSnapshot(
            product_id=product.id,
            version=version,
            product_name=product.name,
            category=product.category,
            generic_price=product.generic_price,
            batches=batches,
        )

    def current_version(self, product_id) -> int:
        if not is_storable_id(product_id):
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        version = self.session.scalar(select(Product.version_id).where(Product.id == product_id))
        if version is None:
            raise NotFound(f"Product {product_id} not found", product_id=product_id)
        return version

    def batch_total(self, product_id) -> int:
        return self.session.scalar(
            select(func.coalesce(func.sum(Batch.quantity), 0)).where(Batch.product_id == product_id)
        )

    # ----------------------------------------------------------------- writes

    def apply_deduction(
        self,
        product_id,
        deductions: Iterable[Tuple[int, int]],
        expected_version: Optional[int] = None,
    ) -> int:
        """
        Subtract each (batch_id, quantity) from its batch as one unit and
        return the product's new version.

        Raises ConcurrentModification when expected_version is stale,
        InsufficientStock when a batch holds less than its delta, and
        NotFound for a batch that is not one of the product's. The caller
        owns the transaction and must roll back after any of these.
        """
        deltas = self._merge_deltas(deductions)
        if not deltas:
            raise ValidationError("Deduction is empty", {"deductions": ["at least one batch is required"]})

        self._require_owned_batches(product_id, deltas.keys())
        new_version = self._advance_version(product_id, expected_version)

        for batch_id, delta in deltas.items():
            result = self.session.execute(
                update(Batch)
                .where(
                    Batch.id == batch_id,
                    Batch.product_id == product_id,
                    Batch.quantity >= delta,
                )
                .values(quantity=Batch.quantity - delta)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                held = self.session.scalar(select(Batch.quantity).where(Batch.id == batch_id)) or 0
                raise InsufficientStock(product_id, delta, held, batch_id=batch_id)

        self._sync_total(product_id)
        logger.debug(
            "BATCH STORE: deducted %s from product %s, now v%s",
            dict(deltas), product_id, new_version,
        )
        return new_version

    def restore_deduction(self, product_id, credits: Iterable[Tuple[int, int]]) -> int:
        """Put previously deducted units back into the batches they came from."""
        deltas = self._merge_deltas(credits)
        if not deltas:
            raise ValidationError("Credit is empty", {"credits": ["at least one batch is required"]})

        self._require_owned_batches(product_id, deltas.keys())
        new_version = self._advance_version(product_id, None)

        for batch_id, delta in deltas.items():
            self.session.execute(
                update(Batch)
                .where(Batch.id == batch_id, Batch.product_id == product_id)
                .values(quantity=Batch.quantity + delta)
                .execution_options(synchronize_session=False)
            )

        self._sync_total(product_id)
        logger.info("BATCH STORE: credited %s back to product %s", dict(deltas), product_id)
        return new_version

    def add_batch(
        self,
        product_id,
        quantity,
        *,
        expiry_date: date | None = None,
        unit_price=None,
        batch_number: str | None = None,
        manufactured_date: date | None = None,
        received_at: datetime | None = None,
    ) -> Batch:
        """Receive a new batch; the product's total grows by its quantity."""
        quantity = require_positive_quantity(quantity)
        price = to_money(unit_price)
        self.get_product(product_id)

        batch = Batch(
            product_id=product_id,
            batch_number=batch_number or generate_batch_number(product_id),
            quantity=quantity,
            original_quantity=quantity,
            unit_price=price,
            expiry_date=expiry_date,
            manufactured_date=manufactured_date,
            received_at=TimezoneUtils.to_utc(received_at) if received_at else TimezoneUtils.utc_now(),
        )
        self.session.add(batch)
        try:
            self.session.flush()
        except IntegrityError as exc:
            raise ValidationError(
                f"Batch number {batch.batch_number} already exists for product {product_id}",
                {"batchNumber": ["already exists for this product"]},
            ) from exc

        self._advance_version(product_id, None, restocked=True)
        self._sync_total(product_id)
        logger.info(
            "BATCH STORE: received batch %s (%s units, expires %s) for product %s",
            batch.batch_number, quantity, expiry_date, product_id,
        )
        return batch

    def bump_version(self, product_id) -> int:
        """Invalidate snapshots of the product after a non-quantity change such as a price edit."""
        version = self._advance_version(product_id, None)
        self._expire_cached(product_id)
        return version

    def remove_batch(self, product_id, batch: Batch) -> None:
        """Delete a batch row and drop its remaining units from the total."""
        self.session.delete(batch)
        self.session.flush()
        self._advance_version(product_id, None)
        self._sync_total(product_id)

    # ---------------------------------------------------------------- helpers

    @staticmethod
    def _merge_deltas(pairs: Iterable[Tuple[int, int]]) -> "OrderedDict[int, int]":
        merged: "OrderedDict[int, int]" = OrderedDict()
        for batch_id, quantity in pairs:
            merged[batch_id] = merged.get(batch_id, 0) + require_positive_quantity(quantity)
        return merged

    def _require_owned_batches(self, product_id, batch_ids: Sequence[int]) -> None:
        wanted = set(batch_ids)
        owned = set(
            self.session.scalars(
                select(Batch.id).where(Batch.product_id == product_id, Batch.id.in_(wanted))
            ).all()
        )
        missing = wanted - owned
        if missing:
            self.current_version(product_id)
            batch_id = sorted(missing)[0]
            raise NotFound(
                f"Batch {batch_id} does not belong to product {product_id}",
                product_id=product_id,
                batch_id=batch_id,
            )

    def _advance_version(self, product_id, expected_version: Optional[int], restocked: bool = False) -> int:
        """
        Compare-and-swap the product version. With no expected version the
        bump is unconditional, so only the deducting path can lose a race.
        """
        values = {"updated_at": TimezoneUtils.utc_now()}
        if restocked:
            values["last_restocked"] = TimezoneUtils.utc_now()

        if expected_version is None:
            result = self.session.execute(
                update(Product)
                .where(Product.id == product_id)
                .values(version_id=Product.version_id + 1, **values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise NotFound(f"Product {product_id} not found", product_id=product_id)
            return self.current_version(product_id)

        values["version_id"] = expected_version + 1
        result = self.session.execute(
            update(Product)
            .where(Product.id == product_id, Product.version_id == expected_version)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.current_version(product_id)
            raise ConcurrentModification(product_id, expected_version)
        return expected_version + 1

    def _sync_total(self, product_id) -> None:
        total = (
            select(func.coalesce(func.sum(Batch.quantity), 0))
            .where(Batch.product_id == product_id)
            .scalar_subquery()
        )
        self.session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(total_quantity=total)
            .execution_options(synchronize_session=False)
        )
        self._expire_cached(product_id)

    def _expire_cached(self, product_id) -> None:
        """Drop identity-map copies that the bulk updates above made stale."""
        for instance in list(self.session.identity_map.values()):
            loaded = inspect(instance).dict
            if isinstance(instance, Product) and loaded.get("id") == product_id:
                self.session.expire(instance)
            elif isinstance(instance, Batch) and loaded.get("product_id") == product_id:
                self.session.expire(instance)
