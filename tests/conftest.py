"""
Pytest configuration and shared fixtures for stockroom tests.
"""
import os
import tempfile
from datetime import date, datetime, timedelta, timezone

import pytest

from stockroom import create_app
from stockroom.extensions import db
from stockroom.models import Product
from stockroom.services.fefo import BatchStore

TODAY = date(2026, 3, 2)
RECEIVED = datetime(2026, 1, 10, 9, 0, tzinfo=timezone.utc)


@pytest.fixture(scope='function')
def app():
    """Create and configure a new app instance for each test."""
    # Threads in the concurrency tests need a real file, not :memory:
    db_fd, db_path = tempfile.mkstemp(suffix='.db')

    app = create_app({
        'TESTING': True,
        'DATABASE_URL': f'sqlite:///{db_path}',
        'SECRET_KEY': 'test-secret-key',
        'RATELIMIT_ENABLED': False,
        'FEFO_RETRY_BACKOFF_SECONDS': 0.0,
        'FEFO_MAX_RETRIES': 5,
        'SALE_TIMEOUT_SECONDS': 10.0,
        'FEFO_ALLOW_EXPIRED': True,
        'STORE_TIMEZONE': 'UTC',
    })

    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()

    os.close(db_fd)
    os.unlink(db_path)


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test runner for the app's Click commands."""
    return app.test_cli_runner()


@pytest.fixture
def app_context(app):
    """Provide an application context for tests that need it."""
    with app.app_context():
        yield


@pytest.fixture
def make_product(app):
    """
    Build a product with batches and return its id.

    Each batch is (quantity, days_until_expiry or None, unit_price or None);
    batches are received one hour apart in the order given.
    """
    def _make(name='Whole Milk', batches=(), generic_price=None, barcode=None, category='Dairy'):
        product = Product(name=name, barcode=barcode, category=category, generic_price=generic_price)
        db.session.add(product)
        db.session.flush()

        store = BatchStore()
        for offset, (quantity, days, price) in enumerate(batches):
            store.add_batch(
                product.id,
                quantity,
                expiry_date=TODAY + timedelta(days=days) if days is not None else None,
                unit_price=price,
                received_at=RECEIVED + timedelta(hours=offset),
            )
        db.session.commit()
        return product.id

    return _make


def batch_quantities(product_id):
    """Quantities of a product's batches in FEFO order, read fresh."""
    return [batch.quantity for batch in BatchStore().get_batches_for_product(product_id)]
