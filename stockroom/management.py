"""
Management commands for deployment and maintenance
"""
from datetime import timedelta

import click
from flask.cli import with_appcontext
from sqlalchemy import func, select

from .extensions import db
from .models import Product
from .services.fefo import validate_product_batch_sync
from .services.product_catalog_service import ProductCatalogService
from .utils.timezone_utils import TimezoneUtils

DEMO_STOCK = (
    # name, barcode, category, [(quantity, days until expiry or None, price)]
    ("Whole Milk 1L", "4006381333931", "Dairy", [(3, 2, "2.00"), (5, 6, "3.00"), (2, 12, "3.00")]),
    ("Greek Yogurt 500g", "5000112637922", "Dairy", [(12, 5, "4.50"), (8, 14, "4.75")]),
    ("Sourdough Loaf", "0012345678905", "Bakery", [(6, 1, "5.25")]),
    ("Paper Towels 6pk", "0036000291452", "Household", [(20, None, "7.99")]),
)


@click.command('create-db')
@with_appcontext
def create_db_command():
    """Create all tables directly (local development; use `flask db upgrade` elsewhere)"""
    db.create_all()
    print("✅ Database tables created/verified")


@click.command('seed-demo')
@with_appcontext
def seed_demo_command():
    """Load a handful of products with dated batches for trying out sales"""
    existing = db.session.scalar(select(func.count(Product.id)))
    if existing:
        print(f"ℹ️  {existing} products already present; skipping demo seed.")
        return

    today = TimezoneUtils.store_today()
    batches = 0
    for name, barcode, category, lots in DEMO_STOCK:
        for quantity, days, price in lots:
            ProductCatalogService.register_stock(
                {
                    "name": name,
                    "barcode": barcode,
                    "category": category,
                    "isPerishable": days is not None,
                    "quantity": quantity,
                    "price": price,
                    "expiryDate": (today + timedelta(days=days)).isoformat() if days is not None else None,
                }
            )
            batches += 1
    print(f"✅ Seeded {len(DEMO_STOCK)} products with {batches} batches.")


@click.command('check-stock-sync')
@click.option('--product-id', type=int, default=None, help='Check a single product')
@with_appcontext
def check_stock_sync_command(product_id):
    """Verify every product's cached total equals the sum of its batches"""
    if product_id is not None:
        product_ids = [product_id]
    else:
        product_ids = list(db.session.scalars(select(Product.id).order_by(Product.id)).all())

    mismatches = 0
    for pid in product_ids:
        is_valid, error, product_total, batch_total = validate_product_batch_sync(pid)
        if is_valid:
            print(f"✅ Product {pid}: {product_total} units")
        else:
            mismatches += 1
            print(f"❌ Product {pid}: {error}")

    if mismatches:
        print(f"❌ {mismatches} of {len(product_ids)} products out of sync")
        raise SystemExit(1)
    print(f"✅ All {len(product_ids)} products in sync")


def register_commands(app):
    """Register CLI commands"""
    app.cli.add_command(create_db_command)
    app.cli.add_command(seed_demo_command)
    app.cli.add_command(check_stock_sync_command)
