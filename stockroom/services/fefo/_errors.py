"""Failure taxonomy for the FEFO stock engine."""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class FefoError(RuntimeError):
    """Base class for stock engine failures."""

    code = "fefo_error"

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": str(self)}


class ValidationError(FefoError):
    """Malformed input; rejected before the store is touched."""

    code = "validation_error"

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message)
        self.errors = errors or {}

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["errors"] = self.errors
        return data


class NotFound(FefoError):
    """Unknown product, or a batch that does not belong to the product."""

    code = "not_found"

    def __init__(self, message: str, *, product_id=None, batch_id=None):
        super().__init__(message)
        self.product_id = product_id
        self.batch_id = batch_id


class InsufficientStock(FefoError):
    """Requested more units than the product's batches hold."""

    code = "insufficient_stock"

    def __init__(self, product_id, requested: int, available: int, *, batch_id=None, message: str | None = None):
        if message is None:
            if batch_id is not None:
                message = f"Batch {batch_id} of product {product_id} cannot cover {requested} units (has {available})"
            else:
                message = f"Insufficient stock for product {product_id}: requested {requested}, only {available} available"
        super().__init__(message)
        self.product_id = product_id
        self.requested = requested
        self.available = available
        self.batch_id = batch_id

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "productId": self.product_id,
                "requested": self.requested,
                "available": self.available,
            }
        )
        return data


class ConcurrentModification(FefoError):
    """The product changed between snapshot and commit. The allocator retries it; elsewhere it is a 409."""

    code = "concurrent_modification"

    def __init__(self, product_id, expected_version=None):
        super().__init__(
            f"Product {product_id} was modified concurrently (expected version {expected_version})"
        )
        self.product_id = product_id
        self.expected_version = expected_version


class Conflict(FefoError):
    """Concurrent modification persisted through every retry."""

    code = "conflict"

    def __init__(self, message: str, *, product_id=None, attempts: int = 0):
        super().__init__(message)
        self.product_id = product_id
        self.attempts = attempts


class SaleTimeout(Conflict):
    """The sale ran past its deadline."""

    code = "timeout"


class SaleFailed(FefoError):
    """A whole-sale failure. Every line of the sale has been rolled back."""

    code = "sale_failed"

    def __init__(self, cause: FefoError, failures: List[Dict[str, Any]], state: str = "rolled_back"):
        super().__init__(str(cause))
        self.cause = cause
        self.failures = failures
        self.state = state

    @property
    def reason(self) -> str:
        return getattr(self.cause, "code", FefoError.code)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.reason,
            "message": str(self),
            "state": self.state,
            "failures": self.failures,
        }
