"""
Item catalog API tests: CRUD, identifiers, listing and bulk import.
"""

import json

import pytest

from checkout_tracker.models import Item

from conftest import make_item, due_in


def _create(client, headers, **fields):
    payload = {"name": "Torque Wrench", "category": "Tools", "total_quantity": 5}
    payload.update(fields)
    return client.post('/api/items', headers=headers, json=payload)


# =============================================================================
# CREATE / UPDATE / DELETE
# =============================================================================

class TestItemCrud:

    def test_manager_creates_item(self, client, db_session, manager_headers):
        response = _create(
            client, manager_headers,
            sku="tw-001",
            location={"building": "B2", "shelf": "S4"},
            tags=["calibrated", " metric "],
            requires_approval=True,
        )

        assert response.status_code == 201
        item = response.json['item']
        assert item['sku'] == 'TW-001'
        assert item['total_quantity'] == 5
        assert item['available_quantity'] == 5
        assert item['reserved_quantity'] == 0
        assert item['qr_code'] == f"ITEM_{item['id']}"
        assert item['location']['building'] == 'B2'
        assert item['location']['shelf'] == 'S4'
        assert item['tags'] == ['calibrated', 'metric']
        assert item['requires_approval'] is True

    def test_available_capped_at_total(self, client, db_session, manager_headers):
        response = _create(client, manager_headers, total_quantity=3, available_quantity=8)
        assert response.json['item']['available_quantity'] == 3

    def test_missing_required_fields(self, client, db_session, manager_headers):
        response = client.post('/api/items', headers=manager_headers, json={"name": "Nameless"})

        assert response.status_code == 400
        fields = {e['field'] for e in response.json['errors']}
        assert fields == {'category', 'total_quantity'}

    @pytest.mark.parametrize("field,value", [
        ("total_quantity", -1),
        ("total_quantity", 2.5),
        ("max_checkout_days", 0),
        ("status", "borrowed"),
        ("unit", "furlong"),
        ("reserved_quantity", 3),
        ("org_id", 99),
    ])
    def test_invalid_fields_rejected(self, client, db_session, manager_headers, field, value):
        response = _create(client, manager_headers, **{field: value})
        assert response.status_code == 400

    def test_duplicate_sku_conflicts(self, client, db_session, manager_headers):
        assert _create(client, manager_headers, sku="DUP-1").status_code == 201

        response = _create(client, manager_headers, name="Other", sku="dup-1")
        assert response.status_code == 409
        assert response.json['field'] == 'sku'

    def test_update_item(self, client, db_session, manager_headers, item_a):
        response = client.put(f'/api/items/{item_a.id}', headers=manager_headers, json={
            "description": "18V brushless",
            "max_checkout_days": 14,
            "location": {"room": "Store 3"},
        })

        assert response.status_code == 200
        item = response.json['item']
        assert item['description'] == '18V brushless'
        assert item['max_checkout_days'] == 14
        assert item['location']['room'] == 'Store 3'
        assert item['name'] == 'Cordless Drill'

    def test_lowering_total_clamps_available(self, client, db_session, manager_headers, user_headers, item_a):
        client.post('/api/transactions/checkout', headers=user_headers, json={
            'items': [{'item_id': item_a.id, 'quantity': 4}],
            'expected_return_date': due_in().isoformat(),
            'purpose': 'Install',
        })

        response = client.put(f'/api/items/{item_a.id}', headers=manager_headers, json={"total_quantity": 6})
        assert response.status_code == 200
        assert response.json['item']['available_quantity'] == 2
        assert response.json['item']['reserved_quantity'] == 4

        response = client.put(f'/api/items/{item_a.id}', headers=manager_headers, json={"total_quantity": 3})
        assert response.status_code == 400

    def test_update_cannot_touch_reserved(self, client, db_session, manager_headers, item_a):
        response = client.put(f'/api/items/{item_a.id}', headers=manager_headers, json={"reserved_quantity": 5})
        assert response.status_code == 400

    def test_update_sku_conflict(self, client, db_session, org_a, manager_a, manager_headers, item_a):
        make_item(db_session, org_a, manager_a, name="Impact Driver", sku="IMP-1")

        response = client.put(f'/api/items/{item_a.id}', headers=manager_headers, json={"sku": "IMP-1"})
        assert response.status_code == 409

    def test_delete_unused_item(self, client, db_session, manager_headers, item_a):
        response = client.delete(f'/api/items/{item_a.id}', headers=manager_headers)

        assert response.status_code == 200
        assert db_session.query(Item).count() == 0

    def test_delete_refused_with_open_transaction(self, client, db_session, manager_headers, user_headers, item_a):
        client.post('/api/transactions/checkout', headers=user_headers, json={
            'items': [{'item_id': item_a.id, 'quantity': 1}],
            'expected_return_date': due_in().isoformat(),
            'purpose': 'Install',
        })

        response = client.delete(f'/api/items/{item_a.id}', headers=manager_headers)
        assert response.status_code == 400
        assert response.json['open_transactions'] == 1

    def test_delete_refused_with_history(self, client, db_session, manager_headers, user_headers, item_a):
        checkout = client.post('/api/transactions/checkout', headers=user_headers, json={
            'items': [{'item_id': item_a.id, 'quantity': 1}],
            'expected_return_date': due_in().isoformat(),
            'purpose': 'Install',
        })
        tx_id = checkout.json['transactions'][0]['id']
        client.post(f'/api/transactions/{tx_id}/return', headers=user_headers, json={'condition': 'good'})

        response = client.delete(f'/api/items/{item_a.id}', headers=manager_headers)
        assert response.status_code == 400
        assert 'retire' in response.json['error']

    def test_regular_user_cannot_manage(self, client, db_session, user_headers, item_a):
        assert _create(client, user_headers).status_code == 403
        assert client.put(f'/api/items/{item_a.id}', headers=user_headers, json={"name": "X"}).status_code == 403
        assert client.delete(f'/api/items/{item_a.id}', headers=user_headers).status_code == 403


# =============================================================================
# READ
# =============================================================================

class TestItemListing:

    @pytest.fixture
    def catalog(self, db_session, org_a, manager_a):
        return [
            make_item(db_session, org_a, manager_a, name="Angle Grinder", category="Tools", subcategory="Power", sku="AG-1"),
            make_item(db_session, org_a, manager_a, name="Bolt Cutter", category="Tools", subcategory="Hand"),
            make_item(db_session, org_a, manager_a, name="Camera", category="Electronics", is_checkoutable=False),
            make_item(db_session, org_a, manager_a, name="Drone", category="Electronics", status="retired"),
        ]

    def test_list_sorted_by_name(self, client, db_session, user_headers, catalog):
        response = client.get('/api/items', headers=user_headers)

        assert response.status_code == 200
        names = [i['name'] for i in response.json['items']]
        assert names == ['Angle Grinder', 'Bolt Cutter', 'Camera', 'Drone']
        assert response.json['pagination']['total_items'] == 4

    @pytest.mark.parametrize("query,expected", [
        ("search=grind", ["Angle Grinder"]),
        ("search=ag-1", ["Angle Grinder"]),
        ("category=Electronics", ["Camera", "Drone"]),
        ("subcategory=Hand", ["Bolt Cutter"]),
        ("status=retired", ["Drone"]),
        ("is_checkoutable=false", ["Camera"]),
        ("sort_by=name&sort_order=desc", ["Drone", "Camera", "Bolt Cutter", "Angle Grinder"]),
    ])
    def test_filters(self, client, db_session, user_headers, catalog, query, expected):
        response = client.get(f'/api/items?{query}', headers=user_headers)

        assert response.status_code == 200
        assert [i['name'] for i in response.json['items']] == expected

    def test_pagination(self, client, db_session, user_headers, catalog):
        response = client.get('/api/items?page=2&limit=3', headers=user_headers)

        assert [i['name'] for i in response.json['items']] == ['Drone']
        assert response.json['pagination'] == {
            'current_page': 2,
            'total_pages': 2,
            'total_items': 4,
            'items_per_page': 3,
        }

    @pytest.mark.parametrize("query", ["limit=101", "limit=0", "page=0", "sort_by=price", "status=borrowed"])
    def test_bad_query_params(self, client, db_session, user_headers, query):
        assert client.get(f'/api/items?{query}', headers=user_headers).status_code == 400

    def test_categories(self, client, db_session, user_headers, catalog):
        response = client.get('/api/items/categories', headers=user_headers)

        assert response.json == {
            'categories': ['Electronics', 'Tools'],
            'subcategories': ['Hand', 'Power'],
        }

    def test_get_item(self, client, db_session, user_headers, item_a):
        response = client.get(f'/api/items/{item_a.id}', headers=user_headers)

        assert response.status_code == 200
        assert response.json['item']['name'] == 'Cordless Drill'
        assert response.json['item']['is_available'] is True

    def test_get_missing_item(self, client, db_session, user_headers):
        assert client.get('/api/items/9999', headers=user_headers).status_code == 404

    def test_label_payload(self, client, db_session, user_headers, org_a, manager_a):
        item = make_item(db_session, org_a, manager_a, name="Multimeter", sku="MM-7", qr_code="QR-MM-7")

        response = client.get(f'/api/items/{item.id}/label', headers=user_headers)

        assert response.status_code == 200
        assert response.json['qr_code'] == 'QR-MM-7'
        assert json.loads(response.json['payload']) == {
            'id': item.id, 'name': 'Multimeter', 'sku': 'MM-7', 'type': 'item',
        }


# =============================================================================
# BULK IMPORT
# =============================================================================

class TestBulkImport:

    def test_rows_are_independent(self, client, db_session, manager_headers):
        response = client.post('/api/items/bulk-import', headers=manager_headers, json={'items': [
            {"name": "Ladder", "category": "Access", "total_quantity": 2, "sku": "LAD-1"},
            {"name": "Broken", "category": "Access"},
            {"name": "Ladder copy", "category": "Access", "total_quantity": 1, "sku": "LAD-1"},
            {"name": "Harness", "category": "Safety", "total_quantity": 6},
        ]})

        assert response.status_code == 200
        assert response.json['message'] == 'Bulk import completed: 2 successful, 2 failed'
        assert [i['name'] for i in response.json['successful']] == ['Ladder', 'Harness']
        assert [f['index'] for f in response.json['failed']] == [1, 2]
        assert 'sku' in response.json['failed'][1]['error']
        assert db_session.query(Item).count() == 2

    def test_requires_items_list(self, client, db_session, manager_headers):
        assert client.post('/api/items/bulk-import', headers=manager_headers, json={}).status_code == 400
        assert client.post('/api/items/bulk-import', headers=manager_headers, json={'items': []}).status_code == 400

    def test_requires_manage_items(self, client, db_session, user_headers):
        response = client.post('/api/items/bulk-import', headers=user_headers, json={'items': [
            {"name": "Ladder", "category": "Access", "total_quantity": 2},
        ]})
        assert response.status_code == 403
