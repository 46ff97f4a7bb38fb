"""
Concurrent sales against one SQLite file. Each thread pushes its own app
context and so gets its own session and connection.
"""
import threading

from stockroom.extensions import db
from stockroom.models import Batch, Product
from stockroom.services.fefo import SaleFailed, SaleProcessor, validate_product_batch_sync
from tests.conftest import batch_quantities

WORKERS = 8


def _run_concurrently(app, carts):
    barrier = threading.Barrier(len(carts))
    outcomes = [None] * len(carts)

    def worker(slot, cart):
        with app.app_context():
            barrier.wait()
            try:
                record = SaleProcessor().process_sale(cart)
                outcomes[slot] = ("ok", record.sale_code)
            except SaleFailed as exc:
                outcomes[slot] = (exc.reason, None)

    threads = [threading.Thread(target=worker, args=(slot, cart)) for slot, cart in enumerate(carts)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    return outcomes


class TestConcurrentSales:

    def test_competing_sales_never_oversell(self, app, make_product):
        app.config['FEFO_MAX_RETRIES'] = 50
        with app.app_context():
            pid = make_product(batches=[(8, 1, "2.00"), (7, 3, "2.50"), (5, 9, "3.00")])

        outcomes = _run_concurrently(app, [[{"productId": pid, "quantity": 3}]] * WORKERS)

        reasons = sorted(reason for reason, _ in outcomes)
        assert reasons.count("ok") == 6
        assert reasons.count("insufficient_stock") == 2
        assert len({code for reason, code in outcomes if reason == "ok"}) == 6

        with app.app_context():
            assert db.session.get(Product, pid).total_quantity == 2
            assert batch_quantities(pid) == [0, 0, 2]
            assert all(batch.quantity >= 0 for batch in Batch.query.filter_by(product_id=pid))
            assert validate_product_batch_sync(pid) == (True, None, 2, 2)

    def test_disjoint_products_all_succeed(self, app, make_product):
        app.config['FEFO_MAX_RETRIES'] = 50
        with app.app_context():
            pids = [make_product(name=f'Item {i}', batches=[(5, 1, "1.00")]) for i in range(4)]

        outcomes = _run_concurrently(app, [[{"productId": pid, "quantity": 5}] for pid in pids])

        assert [reason for reason, _ in outcomes] == ["ok"] * 4
        with app.app_context():
            for pid in pids:
                assert batch_quantities(pid) == [0]
                assert validate_product_batch_sync(pid)[0] is True

    def test_multi_line_sales_are_atomic_under_contention(self, app, make_product):
        app.config['FEFO_MAX_RETRIES'] = 50
        with app.app_context():
            milk = make_product(batches=[(10, 1, "1.00")])
            bread = make_product(name='Sourdough', batches=[(3, 2, "4.00")])

        cart = [{"productId": milk, "quantity": 2}, {"productId": bread, "quantity": 1}]
        outcomes = _run_concurrently(app, [cart] * 5)

        sold = sum(1 for reason, _ in outcomes if reason == "ok")
        assert sold == 3
        with app.app_context():
            assert batch_quantities(milk) == [10 - 2 * sold]
            assert batch_quantities(bread) == [0]
            assert validate_product_batch_sync(milk)[0] is True
