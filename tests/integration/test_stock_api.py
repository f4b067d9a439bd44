"""
Integration tests for the stock JSON API (Flask + SQLite).
"""

import pytest

from stockledger.models import StockMovement, StockSnapshot

ORG_A = 'org-a'
USER = 'user-1'


def _movement(client, product_id, movement_type, quantity, **extra):
    body = {
        'organizationId': ORG_A,
        'productId': product_id,
        'userId': USER,
        'type': movement_type,
        'quantity': quantity,
    }
    body.update(extra)
    return client.post('/api/stock/movements', json=body)


class TestRecordMovement:
    """POST /api/stock/movements"""

    def test_entry_creates_snapshot(self, client, product_org_a):
        response = _movement(client, product_org_a.id, 'ENTRY', 50)

        assert response.status_code == 201
        data = response.get_json()
        assert data['status'] == 'success'
        assert data['data']['movement']['type'] == 'ENTRY'
        assert data['data']['movement']['unitOfMeasure'] == 'kg'
        assert data['data']['movement']['productName'] == 'Flour'
        assert data['data']['snapshot']['currentQuantity'] == 50.0

    def test_example_walkthrough(self, client, session, product_org_a):
        pid = product_org_a.id
        assert _movement(client, pid, 'ENTRY', 50).status_code == 201
        assert _movement(client, pid, 'EXIT', 20).status_code == 201

        response = _movement(client, pid, 'EXIT', 31)
        assert response.status_code == 409
        body = response.get_json()
        assert body['code'] == 'INSUFFICIENT_STOCK'
        assert body['message'] == 'insufficient stock, available: 30'
        assert body['available'] == 30.0

        assert session.query(StockMovement).filter_by(product_id=pid).count() == 2
        snapshot = session.query(StockSnapshot).filter_by(product_id=pid).one()
        assert float(snapshot.current_quantity) == 30.0

        response = _movement(client, pid, 'EXIT', 30)
        assert response.status_code == 201
        assert response.get_json()['data']['snapshot']['currentQuantity'] == 0.0

    def test_exit_without_snapshot(self, client, product_org_a):
        response = _movement(client, product_org_a.id, 'EXIT', 1)
        assert response.status_code == 409
        assert response.get_json()['available'] == 0.0

    @pytest.mark.parametrize('quantity', [0, -3, 'abc', None, '0.0001'])
    def test_invalid_quantity(self, client, product_org_a, quantity):
        response = _movement(client, product_org_a.id, 'ENTRY', quantity)
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_QUANTITY'

    def test_invalid_type(self, client, product_org_a):
        response = _movement(client, product_org_a.id, 'TRANSFER', 1)
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_MOVEMENT_TYPE'

    def test_legacy_type_alias(self, client, product_org_a):
        response = _movement(client, product_org_a.id, 'ENTRADA', 2)
        assert response.status_code == 201
        assert response.get_json()['data']['movement']['type'] == 'ENTRY'

    def test_unknown_product(self, client, product_org_a):
        response = _movement(client, 987654, 'ENTRY', 1)
        assert response.status_code == 404
        assert response.get_json()['code'] == 'PRODUCT_NOT_FOUND'

    def test_inactive_product(self, client, inactive_product):
        response = _movement(client, inactive_product.id, 'ENTRY', 1)
        assert response.status_code == 404

    def test_unit_mismatch(self, client, product_org_a):
        _movement(client, product_org_a.id, 'ENTRY', 5)
        response = _movement(client, product_org_a.id, 'ENTRY', 5, unitOfMeasure='g')
        assert response.status_code == 400
        assert response.get_json()['code'] == 'INVALID_UNIT_OF_MEASURE'

    def test_occurred_at(self, client, product_org_a):
        response = _movement(client, product_org_a.id, 'ENTRY', 1,
                             occurredAt='2026-01-15T10:30:00Z')
        assert response.status_code == 201
        assert response.get_json()['data']['movement']['occurredAt'].startswith('2026-01-15T10:30:00')

    def test_invalid_occurred_at(self, client, product_org_a):
        response = _movement(client, product_org_a.id, 'ENTRY', 1, occurredAt='yesterday')
        assert response.status_code == 400

    def test_missing_organization(self, client, product_org_a):
        response = client.post('/api/stock/movements', json={
            'productId': product_org_a.id, 'userId': USER, 'type': 'ENTRY', 'quantity': 1
        })
        assert response.status_code == 400
        assert response.get_json()['message'] == 'organizationId is required'

    def test_missing_user(self, client, product_org_a):
        response = client.post('/api/stock/movements', json={
            'organizationId': ORG_A, 'productId': product_org_a.id, 'type': 'ENTRY', 'quantity': 1
        })
        assert response.status_code == 400
        assert response.get_json()['code'] == 'VALIDATION_ERROR'

    def test_body_must_be_json_object(self, client):
        response = client.post('/api/stock/movements?organizationId=org-a', json=[1, 2])
        assert response.status_code == 400


class TestQuickActions:
    """POST /api/stock/quick-entry and /api/stock/quick-exit"""

    def test_quick_entry(self, client, product_org_a):
        response = client.post('/api/stock/quick-entry', json={
            'organizationId': ORG_A, 'productId': product_org_a.id, 'userId': USER, 'quantity': '2.5'
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['message'] == 'Entry registered successfully'
        assert body['data']['movement']['observation'] == 'Quick entry - Flour'
        assert body['data']['snapshot']['currentQuantity'] == 2.5

    def test_quick_exit(self, client, product_org_a):
        client.post('/api/stock/quick-entry', json={
            'organizationId': ORG_A, 'productId': product_org_a.id, 'userId': USER, 'quantity': 5
        })
        response = client.post('/api/stock/quick-exit', json={
            'organizationId': ORG_A, 'productId': product_org_a.id, 'userId': USER,
            'quantity': 2, 'observation': 'Used in lunch service'
        })

        assert response.status_code == 201
        body = response.get_json()
        assert body['message'] == 'Exit registered successfully'
        assert body['data']['movement']['observation'] == 'Used in lunch service'
        assert body['data']['snapshot']['currentQuantity'] == 3.0

    def test_quick_exit_insufficient(self, client, product_org_a):
        response = client.post('/api/stock/quick-exit', json={
            'organizationId': ORG_A, 'productId': product_org_a.id, 'userId': USER, 'quantity': 1
        })
        assert response.status_code == 409


class TestQueries:
    """GET endpoints"""

    @pytest.fixture
    def stocked(self, client, product_org_a, session):
        from stockledger.models import Product
        milk = Product(organization_id=ORG_A, name='Milk', unit_of_measure='L', active=True)
        session.add(milk)
        session.commit()
        milk_id = milk.id

        _movement(client, product_org_a.id, 'ENTRY', 8, occurredAt='2026-02-10T09:00:00Z')
        _movement(client, product_org_a.id, 'EXIT', 3, occurredAt='2026-02-11T09:00:00Z')
        _movement(client, milk_id, 'ENTRY', 3, occurredAt='2026-02-12T09:00:00Z')
        _movement(client, milk_id, 'EXIT', 3, occurredAt='2026-02-13T09:00:00Z')
        return product_org_a.id, milk_id

    def test_list_movements(self, client, stocked):
        response = client.get('/api/stock/movements?organizationId=org-a')

        assert response.status_code == 200
        data = response.get_json()['data']
        assert data['total'] == 4
        assert data['page'] == 1
        assert data['pageSize'] == 20
        assert data['totalPages'] == 1
        assert [item['productName'] for item in data['items']] == ['Milk', 'Milk', 'Flour', 'Flour']

    def test_movement_filters(self, client, stocked):
        flour_id, _ = stocked
        response = client.get(
            f'/api/stock/movements?organizationId=org-a&productId={flour_id}&type=EXIT'
        )
        items = response.get_json()['data']['items']
        assert len(items) == 1
        assert items[0]['quantity'] == 3.0

        response = client.get(
            '/api/stock/movements?organizationId=org-a&dateFrom=2026-02-11&dateTo=2026-02-12'
        )
        assert response.get_json()['data']['total'] == 2

        response = client.get('/api/stock/movements?organizationId=org-a&productName=FLOUR')
        assert response.get_json()['data']['total'] == 2

    def test_movement_pagination(self, client, stocked):
        response = client.get('/api/stock/movements?organizationId=org-a&page=2&pageSize=3')
        data = response.get_json()['data']
        assert len(data['items']) == 1
        assert data['totalPages'] == 2

    def test_invalid_page_size(self, client, stocked):
        response = client.get('/api/stock/movements?organizationId=org-a&pageSize=500')
        assert response.status_code == 400

    def test_invalid_date(self, client, stocked):
        response = client.get('/api/stock/movements?organizationId=org-a&dateFrom=31/12/2026')
        assert response.status_code == 400

    def test_list_snapshots(self, client, stocked):
        response = client.get('/api/stock/snapshots?organizationId=org-a')
        assert response.get_json()['data']['total'] == 2

        response = client.get('/api/stock/snapshots?organizationId=org-a&zeroStock=true')
        items = response.get_json()['data']['items']
        assert [item['productName'] for item in items] == ['Milk']

        response = client.get('/api/stock/snapshots?organizationId=org-a&lowStock=true')
        items = response.get_json()['data']['items']
        assert [item['productName'] for item in items] == ['Flour']
        assert items[0]['currentQuantity'] == 5.0

        response = client.get('/api/stock/snapshots?organizationId=org-a&lowStock=true&threshold=5')
        assert response.get_json()['data']['total'] == 0

    def test_statistics(self, client, stocked):
        response = client.get('/api/stock/statistics?organizationId=org-a')

        assert response.status_code == 200
        stats = response.get_json()['data']
        assert stats['totalProducts'] == 2
        assert stats['productsInStock'] == 1
        assert stats['productsOutOfStock'] == 1
        assert stats['productsLowStock'] == 1
        assert stats['lowStockThreshold'] == 10.0
        assert 'lastUpdate' in stats

    def test_products_picker(self, client, stocked):
        response = client.get('/api/stock/products?organizationId=org-a&q=mil')

        items = response.get_json()['data']
        assert len(items) == 1
        assert items[0]['name'] == 'Milk'
        assert items[0]['currentQuantity'] == 0.0
        assert items[0]['unitOfMeasure'] == 'L'

    def test_name_search_is_literal(self, client, stocked, session):
        from stockledger.models import Product
        cream = Product(organization_id=ORG_A, name='Cream 35%', unit_of_measure='L', active=True)
        session.add(cream)
        session.commit()
        _movement(client, cream.id, 'ENTRY', 2)

        response = client.get('/api/stock/products?organizationId=org-a&q=%25')
        assert [item['name'] for item in response.get_json()['data']] == ['Cream 35%']

        response = client.get('/api/stock/products?organizationId=org-a&q=_')
        assert response.get_json()['data'] == []

        response = client.get('/api/stock/movements?organizationId=org-a&productName=%25')
        assert response.get_json()['data']['total'] == 1

        response = client.get('/api/stock/snapshots?organizationId=org-a&productName=M_lk')
        assert response.get_json()['data']['total'] == 0

    def test_organization_required(self, client):
        for path in ('movements', 'snapshots', 'statistics', 'products'):
            response = client.get(f'/api/stock/{path}')
            assert response.status_code == 400


class TestAppEndpoints:

    def test_health(self, client):
        response = client.get('/health')
        assert response.status_code == 200
        assert response.get_json() == {'status': 'ok'}

    def test_metrics(self, client, product_org_a):
        _movement(client, product_org_a.id, 'ENTRY', 1)
        response = client.get('/metrics')
        assert response.status_code == 200
        assert b'stock_movements_total' in response.data
        assert b'http_requests_total' in response.data

    def test_scrapes_are_not_counted(self, client, product_org_a):
        from stockledger.services.metrics_service import registry

        def requests_to(endpoint):
            return registry.get_sample_value(
                'http_requests_total',
                {'method': 'GET', 'endpoint': endpoint, 'http_status': '200'}
            ) or 0

        before = requests_to('stock.list_snapshots')
        client.get('/health')
        client.get('/metrics')
        client.get('/api/stock/snapshots?organizationId=org-a')

        assert requests_to('health') == 0
        assert requests_to('metrics.metrics') == 0
        assert requests_to('stock.list_snapshots') == before + 1

    def test_unknown_route(self, client):
        response = client.get('/api/stock/nothing-here')
        assert response.status_code == 404
        assert response.get_json()['status'] == 'error'
