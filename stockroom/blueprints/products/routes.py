import logging

from flask import request

from ...extensions import limiter, sale_rate_limit
from ...services.fefo import (
    BatchStore,
    ConcurrentModification,
    Conflict,
    FefoError,
    InsufficientStock,
    NotFound,
    SaleFailed,
    SaleProcessor,
    ValidationError,
    parse_sale_request,
)
from ...services.product_catalog_service import ProductCatalogService
from ...utils.api_responses import APIResponse
from ...utils.code_generator import validate_stock_code
from . import products_bp

logger = logging.getLogger(__name__)


def _status_for(exc: FefoError) -> int:
    if isinstance(exc, SaleFailed):
        return _status_for(exc.cause)
    if isinstance(exc, ValidationError):
        return 400 if "body" in exc.errors else 422
    if isinstance(exc, NotFound):
        return 404
    if isinstance(exc, (InsufficientStock, ConcurrentModification, Conflict)):
        return 409
    return 400


@products_bp.errorhandler(FefoError)
def _fefo_error_handler(exc: FefoError):
    status = _status_for(exc)
    extra = {'code': getattr(exc, 'reason', exc.code)}
    if isinstance(exc, SaleFailed):
        extra.update(failures=exc.failures, state=exc.state)
    elif isinstance(exc, InsufficientStock):
        extra.update(productId=exc.product_id, requested=exc.requested, available=exc.available)
    logger.info("%s %s -> %s: %s", request.method, request.path, status, exc)
    return APIResponse.error(
        str(exc),
        errors=getattr(exc, 'errors', None),
        status_code=status,
        **extra,
    )


@products_bp.route('/process-sale', methods=['POST'])
@limiter.limit(sale_rate_limit)
def process_sale():
    """Deduct a whole cart from stock in FEFO order, or nothing at all."""
    sale_request = parse_sale_request(request.get_json(silent=True))
    record = SaleProcessor().process_sale(sale_request)
    data = record.to_dict()
    return APIResponse.success(
        data,
        message="Sale processed successfully via FEFO",
        salesRecorded=sum(len(line['batches']) for line in data['lines']),
    )


@products_bp.route('/sales/<sale_code>/void', methods=['POST'])
def void_sale(sale_code):
    if not validate_stock_code(sale_code):
        return APIResponse.not_found("Sale")
    record = SaleProcessor().void_sale(sale_code)
    return APIResponse.success(record.to_dict(), message="Sale voided")


@products_bp.route('', methods=['POST'])
def add_product():
    """Register a product, or append a batch when the barcode/internal code is known."""
    payload = APIResponse.handle_request_content()
    product, created, batch = ProductCatalogService.register_stock(payload)
    data = product.to_dict(include_batches=True)
    data['batch'] = batch.to_dict()
    if created:
        return APIResponse.success(data, message="Product and first batch created", status_code=201)
    return APIResponse.success(data, message="New batch added to existing product")


@products_bp.route('', methods=['GET'])
def list_products():
    products = ProductCatalogService.list_products(
        category=request.args.get('category') or None,
        search=request.args.get('search') or None,
    )
    return APIResponse.success([product.to_dict(include_batches=True) for product in products])


@products_bp.route('/<identifier>', methods=['GET'])
def get_product(identifier):
    product = ProductCatalogService.find_product(identifier)
    return APIResponse.success(product.to_dict(include_batches=True))


@products_bp.route('/<int:product_id>', methods=['PATCH'])
def update_product(product_id):
    product = ProductCatalogService.update_product(product_id, APIResponse.handle_request_content())
    return APIResponse.success(product.to_dict(), message="Product updated successfully")


@products_bp.route('/<int:product_id>', methods=['DELETE'])
def delete_product(product_id):
    ProductCatalogService.delete_product(product_id)
    return APIResponse.success(None, message="Product deleted successfully")


@products_bp.route('/<int:product_id>/batches', methods=['GET'])
def list_batches(product_id):
    batches = BatchStore().get_batches_for_product(product_id)
    return APIResponse.success([batch.to_dict() for batch in batches])


@products_bp.route('/<int:product_id>/batches/<batch_number>', methods=['DELETE'])
def delete_batch(product_id, batch_number):
    product = ProductCatalogService.delete_batch(product_id, batch_number)
    return APIResponse.success(product.to_dict(include_batches=True), message="Batch deleted successfully")


@products_bp.route('/<int:product_id>/generic-price', methods=['PUT'])
def update_generic_price(product_id):
    payload = APIResponse.handle_request_content()
    product = ProductCatalogService.set_generic_price(product_id, payload.get('genericPrice'))
    return APIResponse.success(product.to_dict(), message="Generic price updated")


@products_bp.route('/<int:product_id>/discount', methods=['POST'])
def apply_discount(product_id):
    payload = APIResponse.handle_request_content()
    percent = payload.get('discountPercent')
    product = ProductCatalogService.apply_discount(product_id, percent)
    return APIResponse.success(
        product.to_dict(include_batches=True),
        message=f"{percent}% discount applied successfully",
    )


@products_bp.route('/<int:product_id>/sales', methods=['GET'])
def sales_history(product_id):
    limit = request.args.get('limit', default=50, type=int)
    history = ProductCatalogService.sales_history(product_id, limit=max(1, min(limit, 500)))
    return APIResponse.success(history)
