"""
FEFO stock engine - canonical entry point.

Every change to batch quantities goes through BatchStore; sales go through
SaleProcessor, which allocates each line with FefoAllocator.
"""

from ._errors import (
    FefoError,
    ValidationError,
    NotFound,
    InsufficientStock,
    ConcurrentModification,
    Conflict,
    SaleTimeout,
    SaleFailed,
)
from ._planning import (
    MAX_INTEGER,
    DeductionStep,
    fefo_sort_key,
    plan_fefo_deduction,
    resolve_unit_price,
    require_positive_quantity,
    to_money,
)
from ._store import BatchStore, BatchView, StockSnapshot, is_storable_id
from ._allocator import AllocationLine, BatchDraw, FefoAllocator
from ._validation import SaleItem, SaleRequest, parse_product_id, parse_sale_request, validate_product_batch_sync
from ._sale_processor import SaleProcessor, SaleState

__all__ = [
    'FefoError',
    'ValidationError',
    'NotFound',
    'InsufficientStock',
    'ConcurrentModification',
    'Conflict',
    'SaleTimeout',
    'SaleFailed',
    'MAX_INTEGER',
    'DeductionStep',
    'fefo_sort_key',
    'plan_fefo_deduction',
    'resolve_unit_price',
    'require_positive_quantity',
    'to_money',
    'BatchStore',
    'BatchView',
    'StockSnapshot',
    'is_storable_id',
    'AllocationLine',
    'BatchDraw',
    'FefoAllocator',
    'SaleItem',
    'SaleRequest',
    'parse_product_id',
    'parse_sale_request',
    'validate_product_batch_sync',
    'SaleProcessor',
    'SaleState',
]
