from sqlalchemy import func, select, update

from stockroom.extensions import db
from stockroom.management import DEMO_STOCK
from stockroom.models import Batch, Product


def test_create_db(runner):
    result = runner.invoke(args=['create-db'])
    assert result.exit_code == 0
    assert "Database tables created/verified" in result.output


def test_seed_demo_loads_once(app, runner):
    result = runner.invoke(args=['seed-demo'])
    assert result.exit_code == 0
    assert f"Seeded {len(DEMO_STOCK)} products" in result.output

    with app.app_context():
        assert db.session.scalar(select(func.count(Product.id))) == len(DEMO_STOCK)
        expected_batches = sum(len(lots) for _, _, _, lots in DEMO_STOCK)
        assert db.session.scalar(select(func.count(Batch.id))) == expected_batches

    again = runner.invoke(args=['seed-demo'])
    assert again.exit_code == 0
    assert "skipping demo seed" in again.output


def test_check_stock_sync_passes_on_seeded_data(runner):
    runner.invoke(args=['seed-demo'])
    result = runner.invoke(args=['check-stock-sync'])
    assert result.exit_code == 0
    assert f"All {len(DEMO_STOCK)} products in sync" in result.output


def test_check_stock_sync_flags_drift(app, runner, make_product):
    with app.app_context():
        pid = make_product(batches=[(3, 1, None)])
        db.session.execute(update(Product).where(Product.id == pid).values(total_quantity=7))
        db.session.commit()

    result = runner.invoke(args=['check-stock-sync', '--product-id', str(pid)])
    assert result.exit_code == 1
    assert "Batch sync error" in result.output
