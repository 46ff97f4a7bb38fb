from decimal import Decimal
from unittest.mock import patch

from sqlalchemy import func, select

from stockroom.extensions import db
from stockroom.models import Batch, SaleRecord
from stockroom.services.fefo import MAX_INTEGER, BatchStore, ConcurrentModification
from tests.conftest import batch_quantities


def _sell(client, *lines, **extra):
    payload = {"items": [{"productId": pid, "quantity": qty} for pid, qty in lines]}
    payload.update(extra)
    return client.post('/products/process-sale', json=payload)


class TestProcessSaleEndpoint:

    def test_success_envelope(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, "2.00"), (5, 5, "3.00"), (2, 10, "3.00")])

        response = _sell(client, (pid, 6))

        assert response.status_code == 200
        body = response.get_json()
        assert body['success'] is True
        assert body['message'] == "Sale processed successfully via FEFO"
        assert body['salesRecorded'] == 2
        assert body['data']['saleCode'].startswith("SLD-")
        assert body['data']['totalAmount'] == 15.0
        assert [b['quantity'] for b in body['data']['lines'][0]['batches']] == [3, 3]

        with app.app_context():
            assert batch_quantities(pid) == [0, 2, 2]

    def test_insufficient_stock_is_409_with_availability(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None), (5, 5, None), (2, 10, None)])

        response = _sell(client, (pid, 11))

        assert response.status_code == 409
        body = response.get_json()
        assert body['success'] is False
        assert body['code'] == 'insufficient_stock'
        assert body['state'] == 'rolled_back'
        assert body['failures'][0]['available'] == 10
        assert body['failures'][0]['requested'] == 11

    def test_failed_line_rolls_back_whole_cart(self, app, client, make_product):
        with app.app_context():
            milk = make_product(batches=[(5, 1, None)])
            bread = make_product(name='Sourdough', batches=[(1, 2, None)])

        response = _sell(client, (milk, 4), (bread, 2))

        assert response.status_code == 409
        assert response.get_json()['failures'][0]['index'] == 1
        with app.app_context():
            assert batch_quantities(milk) == [5]
            assert db.session.scalar(select(func.count(SaleRecord.id))) == 0

    def test_unknown_product_is_404(self, client):
        response = _sell(client, (4242, 1))
        assert response.status_code == 404
        assert response.get_json()['code'] == 'not_found'

    def test_invalid_quantity_is_422(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None)])

        response = _sell(client, (pid, -1))

        assert response.status_code == 422
        assert 'items[0].quantity' in response.get_json()['errors']

    def test_empty_items_is_422(self, client):
        response = client.post('/products/process-sale', json={"items": []})
        assert response.status_code == 422
        assert 'items' in response.get_json()['errors']

    def test_non_json_body_is_400(self, client):
        response = client.post('/products/process-sale', data='not json', content_type='text/plain')
        assert response.status_code == 400
        assert 'body' in response.get_json()['errors']

    def test_ids_and_quantities_beyond_integer_range_are_422(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None)])

        response = _sell(client, (10**20, 1))
        assert response.status_code == 422
        assert response.get_json()['errors']['items[0].productId'] == [f"must be at most {MAX_INTEGER}"]

        response = _sell(client, (pid, 10**20))
        assert response.status_code == 422
        assert 'items[0].quantity' in response.get_json()['errors']

        with app.app_context():
            assert batch_quantities(pid) == [3]

    def test_payment_method_is_recorded(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None)])

        response = _sell(client, (pid, 1), paymentMethod='card')
        assert response.get_json()['data']['paymentMethod'] == 'card'


class TestVoidEndpoint:

    def test_void_restores_stock(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None)])
        sale_code = _sell(client, (pid, 2)).get_json()['data']['saleCode']

        response = client.post(f'/products/sales/{sale_code}/void')

        assert response.status_code == 200
        assert response.get_json()['data']['status'] == 'voided'
        with app.app_context():
            assert batch_quantities(pid) == [3]

        assert client.post(f'/products/sales/{sale_code}/void').status_code == 422

    def test_lost_version_race_is_409(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None)])
        sale_code = _sell(client, (pid, 2)).get_json()['data']['saleCode']

        def lose(store, product_id, credits):
            raise ConcurrentModification(product_id)

        with patch.object(BatchStore, 'restore_deduction', autospec=True, side_effect=lose):
            response = client.post(f'/products/sales/{sale_code}/void')

        assert response.status_code == 409
        assert response.get_json()['code'] == 'concurrent_modification'
        with app.app_context():
            assert batch_quantities(pid) == [1]
        assert client.post(f'/products/sales/{sale_code}/void').status_code == 200

    def test_malformed_code_is_404(self, client):
        assert client.post('/products/sales/whatever/void').status_code == 404


class TestRegisterStock:

    def test_create_then_restock_by_barcode(self, client):
        first = client.post('/products', json={
            "name": "Oat Milk",
            "barcode": "7310867001823",
            "category": "Dairy",
            "quantity": 6,
            "price": 2.5,
            "expiryDate": "2026-11-30",
        })
        assert first.status_code == 201
        created = first.get_json()['data']
        assert created['totalQuantity'] == 6
        assert created['batch']['batchNumber'].startswith("BN-")
        assert created['batch']['expiryDate'] == "2026-11-30"

        second = client.post('/products', json={
            "barcode": "7310867001823",
            "quantity": 4,
            "price": 2.75,
            "expiryDate": "2026-11-15",
        })
        assert second.status_code == 200
        restocked = second.get_json()['data']
        assert restocked['id'] == created['id']
        assert restocked['totalQuantity'] == 10
        assert [b['quantity'] for b in restocked['batches']] == [4, 6]

    def test_new_product_requires_name(self, client):
        response = client.post('/products', json={"quantity": 1})
        assert response.status_code == 422
        assert 'name' in response.get_json()['errors']

    def test_quantity_beyond_integer_range_is_422(self, client):
        response = client.post('/products', json={"name": "Tea", "quantity": 10**20})
        assert response.status_code == 422
        assert response.get_json()['errors']['quantity'] == [f"must be at most {MAX_INTEGER}"]

        response = client.post('/products', json={"name": "Tea", "quantity": 1, "thresholdValue": 10**20})
        assert response.status_code == 422
        assert 'thresholdValue' in response.get_json()['errors']

    def test_bad_expiry_date(self, client):
        response = client.post('/products', json={"name": "Tea", "quantity": 1, "expiryDate": "soon"})
        assert response.status_code == 422
        assert 'expiryDate' in response.get_json()['errors']


class TestCatalogEndpoints:

    def test_lookup_by_id_and_barcode(self, app, client, make_product):
        with app.app_context():
            pid = make_product(barcode='5012345678900', batches=[(2, 10, None), (3, 1, None)])

        by_id = client.get(f'/products/{pid}').get_json()['data']
        by_barcode = client.get('/products/5012345678900').get_json()['data']
        assert by_id['id'] == by_barcode['id'] == pid
        assert [b['quantity'] for b in by_id['batches']] == [3, 2]
        assert client.get('/products/0000000000').status_code == 404

    def test_list_with_search_and_category(self, app, client, make_product):
        with app.app_context():
            make_product(name='Whole Milk', batches=[(1, 1, None)])
            make_product(name='Rye Bread', category='Bakery', batches=[(1, 1, None)])

        names = [p['name'] for p in client.get('/products?search=milk').get_json()['data']]
        assert names == ['Whole Milk']
        names = [p['name'] for p in client.get('/products?category=Bakery').get_json()['data']]
        assert names == ['Rye Bread']

    def test_batches_listed_in_fefo_order(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(2, 10, None), (5, None, None), (3, 1, None)])

        response = client.get(f'/products/{pid}/batches')
        assert [b['quantity'] for b in response.get_json()['data']] == [3, 2, 5]
        assert client.get('/products/777/batches').status_code == 404

    def test_update_product(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(2, 1, None)])

        response = client.patch(f'/products/{pid}', json={"name": "Skimmed Milk", "thresholdValue": 4})
        assert response.status_code == 200
        assert response.get_json()['data']['name'] == "Skimmed Milk"
        assert response.get_json()['data']['thresholdValue'] == 4
        assert client.patch(f'/products/{pid}', json={"name": "  "}).status_code == 422

    def test_generic_price(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(2, 1, None)])

        response = client.put(f'/products/{pid}/generic-price', json={"genericPrice": 3.2})
        assert response.get_json()['data']['genericPrice'] == 3.2

        sale = _sell(client, (pid, 2)).get_json()['data']
        assert sale['totalAmount'] == 6.4

    def test_discount(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(2, 1, "2.00"), (2, 2, None)], generic_price=Decimal("5.00"))

        response = client.post(f'/products/{pid}/discount', json={"discountPercent": 20})
        assert response.status_code == 200
        data = response.get_json()['data']
        assert [b['price'] for b in data['batches']] == [1.6, None]
        assert data['genericPrice'] == 4.0

        assert client.post(f'/products/{pid}/discount', json={"discountPercent": 150}).status_code == 422
        assert client.post(f'/products/{pid}/discount', json={}).status_code == 422

    def test_delete_batch(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(3, 1, None), (4, 5, None)])
            first, second = [b.batch_number for b in BatchStore().get_batches_for_product(pid)]

        _sell(client, (pid, 1))

        assert client.delete(f'/products/{pid}/batches/{first}').status_code == 409

        response = client.delete(f'/products/{pid}/batches/{second}')
        assert response.status_code == 200
        assert response.get_json()['data']['totalQuantity'] == 2

        assert client.delete(f'/products/{pid}/batches/{second}').status_code == 404

    def test_huge_ids_are_404(self, client):
        assert client.get('/products/100000000000000000000').status_code == 404
        assert client.get('/products/100000000000000000000/batches').status_code == 404
        assert client.delete('/products/100000000000000000000').status_code == 404

    def test_delete_product(self, app, client, make_product):
        with app.app_context():
            unsold = make_product(name='Rye Bread', batches=[(2, 1, None), (4, 3, None)])
            sold = make_product(batches=[(3, 1, None)])
        _sell(client, (sold, 1))

        response = client.delete(f'/products/{unsold}')
        assert response.status_code == 200
        assert response.get_json()['message'] == "Product deleted successfully"
        assert client.get(f'/products/{unsold}').status_code == 404
        with app.app_context():
            assert Batch.query.filter_by(product_id=unsold).count() == 0

        response = client.delete(f'/products/{sold}')
        assert response.status_code == 409
        with app.app_context():
            assert batch_quantities(sold) == [2]

        assert client.delete(f'/products/{unsold}').status_code == 404

    def test_sales_history(self, app, client, make_product):
        with app.app_context():
            pid = make_product(batches=[(5, 1, "1.00")])
        _sell(client, (pid, 1))
        _sell(client, (pid, 2), paymentMethod='card')

        history = client.get(f'/products/{pid}/sales').get_json()['data']
        assert len(history) == 2
        assert {entry['paymentMethod'] for entry in history} == {'cash', 'card'}
        assert all(entry['saleCode'].startswith('SLD-') for entry in history)
        assert len(client.get(f'/products/{pid}/sales?limit=1').get_json()['data']) == 1


class TestCoreEndpoints:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json()['status'] == 'ok'
        assert client.head('/ping').status_code == 200

    def test_unknown_route_is_json(self, client):
        response = client.get('/no-such-thing')
        assert response.status_code == 404
        assert response.get_json()['success'] is False
