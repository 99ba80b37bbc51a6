"""
Transaction API tests: the checkout/return/approve/extend endpoints and the
listings built on them.
"""

from datetime import timedelta

import pytest

from checkout_tracker.models import ItemTransaction
from checkout_tracker.time_utils import utcnow

from conftest import auth_headers, due_in, get_auth_token


def _checkout(client, headers, item, quantity=2, days=3, **extra):
    payload = {
        'items': [{'item_id': item.id, 'quantity': quantity}],
        'expected_return_date': due_in(days).isoformat() + 'Z',
        'purpose': 'Site survey',
    }
    payload.update(extra)
    return client.post('/api/transactions/checkout', headers=headers, json=payload)


def _item_stock(client, headers, item):
    item = client.get(f'/api/items/{item.id}', headers=headers).json['item']
    return item['total_quantity'], item['available_quantity'], item['reserved_quantity']


# =============================================================================
# CHECKOUT / RETURN
# =============================================================================

class TestCheckoutEndpoint:

    def test_checkout_and_return(self, client, db_session, user_headers, item_a):
        response = _checkout(client, user_headers, item_a, quantity=3, project='Bridge')

        assert response.status_code == 201
        assert response.json['requires_approval'] is False
        assert response.json['message'] == 'Items checked out successfully'
        tx = response.json['transactions'][0]
        assert tx['status'] == 'active'
        assert tx['reservation_state'] == 'confirmed'
        assert tx['project'] == 'Bridge'
        assert tx['item']['name'] == 'Cordless Drill'
        assert tx['is_overdue'] is False
        assert _item_stock(client, user_headers, item_a) == (10, 7, 3)

        response = client.post(f"/api/transactions/{tx['id']}/return", headers=user_headers, json={
            'condition': 'good',
            'notes': 'Cleaned',
        })
        assert response.status_code == 200
        assert response.json['transaction']['status'] == 'returned'
        assert response.json['transaction']['condition'] == {'checkout': 'good', 'return': 'good'}
        assert _item_stock(client, user_headers, item_a) == (10, 10, 0)

        response = client.post(f"/api/transactions/{tx['id']}/return", headers=user_headers, json={'condition': 'good'})
        assert response.status_code == 409
        assert response.json['status'] == 'returned'

    def test_insufficient_quantity_is_400(self, client, db_session, user_headers, item_a):
        response = _checkout(client, user_headers, item_a, quantity=12)

        assert response.status_code == 400
        assert response.json['available_quantity'] == 10
        assert response.json['requested_quantity'] == 12

    def test_unknown_item_is_404(self, client, db_session, user_headers):
        response = client.post('/api/transactions/checkout', headers=user_headers, json={
            'items': [{'item_id': 9999, 'quantity': 1}],
            'expected_return_date': due_in().isoformat(),
            'purpose': 'Site survey',
        })
        assert response.status_code == 404

    def test_empty_body_is_400(self, client, db_session, user_headers):
        response = client.post('/api/transactions/checkout', headers=user_headers, json={})

        assert response.status_code == 400
        assert response.json['errors'][0]['field'] == 'items'

    def test_other_user_cannot_return(self, client, db_session, user_headers, other_user_a, item_a):
        tx_id = _checkout(client, user_headers, item_a).json['transactions'][0]['id']
        other_headers = auth_headers(get_auth_token(client, other_user_a.username))

        response = client.post(f'/api/transactions/{tx_id}/return', headers=other_headers, json={'condition': 'good'})
        assert response.status_code == 403
        assert client.get(f'/api/transactions/{tx_id}', headers=other_headers).status_code == 403


# =============================================================================
# APPROVAL
# =============================================================================

class TestApprovalEndpoints:

    def test_pending_queue_and_approve(self, client, db_session, user_headers, manager_headers, gated_item_a):
        response = _checkout(client, user_headers, gated_item_a, quantity=2)
        assert response.status_code == 201
        assert response.json['requires_approval'] is True
        assert response.json['message'] == 'Checkout request submitted for approval'
        tx_id = response.json['transactions'][0]['id']

        queue = client.get('/api/transactions/pending-approval', headers=manager_headers)
        assert queue.status_code == 200
        assert [t['id'] for t in queue.json['transactions']] == [tx_id]

        response = client.post(f'/api/transactions/{tx_id}/approve', headers=manager_headers, json={
            'approved': True,
            'notes': 'Take the spare lens too',
        })
        assert response.status_code == 200
        assert response.json['message'] == 'Transaction approved successfully'
        assert response.json['transaction']['status'] == 'active'
        assert response.json['transaction']['approval']['notes'] == 'Take the spare lens too'
        assert _item_stock(client, manager_headers, gated_item_a) == (10, 8, 2)

        assert client.get('/api/transactions/pending-approval', headers=manager_headers).json['count'] == 0

    def test_reject_restores_stock(self, client, db_session, user_headers, manager_headers, gated_item_a):
        tx_id = _checkout(client, user_headers, gated_item_a, quantity=2).json['transactions'][0]['id']

        response = client.post(f'/api/transactions/{tx_id}/approve', headers=manager_headers, json={'approved': False})

        assert response.status_code == 200
        assert response.json['message'] == 'Transaction rejected successfully'
        assert response.json['transaction']['status'] == 'rejected'
        assert _item_stock(client, manager_headers, gated_item_a) == (10, 10, 0)

    def test_deciding_twice_is_409(self, client, db_session, user_headers, manager_headers, gated_item_a):
        tx_id = _checkout(client, user_headers, gated_item_a).json['transactions'][0]['id']
        client.post(f'/api/transactions/{tx_id}/approve', headers=manager_headers, json={'approved': True})

        response = client.post(f'/api/transactions/{tx_id}/approve', headers=manager_headers, json={'approved': False})
        assert response.status_code == 409

    def test_missing_decision_is_400(self, client, db_session, user_headers, manager_headers, gated_item_a):
        tx_id = _checkout(client, user_headers, gated_item_a).json['transactions'][0]['id']

        response = client.post(f'/api/transactions/{tx_id}/approve', headers=manager_headers, json={})
        assert response.status_code == 400

    def test_user_cannot_approve(self, client, db_session, user_headers, gated_item_a):
        tx_id = _checkout(client, user_headers, gated_item_a).json['transactions'][0]['id']

        assert client.post(f'/api/transactions/{tx_id}/approve', headers=user_headers, json={'approved': True}).status_code == 403
        assert client.get('/api/transactions/pending-approval', headers=user_headers).status_code == 403


# =============================================================================
# EXTENSIONS / PENALTIES
# =============================================================================

class TestExtensionAndPenaltyEndpoints:

    def test_extension_request(self, client, db_session, user_headers, item_a):
        tx = _checkout(client, user_headers, item_a, days=2).json['transactions'][0]

        response = client.post(f"/api/transactions/{tx['id']}/extend", headers=user_headers, json={
            'new_return_date': due_in(5).isoformat() + 'Z',
            'reason': 'Survey extended',
        })

        assert response.status_code == 200
        assert response.json['extension']['status'] == 'pending'
        assert response.json['transaction']['expected_return_date'] == tx['expected_return_date']
        assert len(response.json['transaction']['extensions']) == 1

    def test_extension_to_earlier_date_is_400(self, client, db_session, user_headers, item_a):
        tx_id = _checkout(client, user_headers, item_a, days=4).json['transactions'][0]['id']

        response = client.post(f'/api/transactions/{tx_id}/extend', headers=user_headers, json={
            'new_return_date': due_in(1).isoformat() + 'Z',
            'reason': 'Oops',
        })
        assert response.status_code == 400

    def test_penalty_lifecycle(self, client, db_session, user_headers, manager_headers, item_a):
        tx_id = _checkout(client, user_headers, item_a).json['transactions'][0]['id']

        response = client.post(f'/api/transactions/{tx_id}/penalties', headers=manager_headers, json={
            'type': 'damage_fee',
            'amount_cents': 2500,
            'description': 'Cracked housing',
        })
        assert response.status_code == 201
        penalty_id = response.json['penalty']['id']
        assert response.json['penalty']['paid'] is False

        response = client.post(f'/api/transactions/{tx_id}/penalties/{penalty_id}/pay', headers=manager_headers)
        assert response.status_code == 200
        assert response.json['penalty']['paid'] is True

        tx = client.get(f'/api/transactions/{tx_id}', headers=user_headers).json['transaction']
        assert tx['total_penalties_cents'] == 2500

    def test_user_cannot_apply_penalty(self, client, db_session, user_headers, item_a):
        tx_id = _checkout(client, user_headers, item_a).json['transactions'][0]['id']

        response = client.post(f'/api/transactions/{tx_id}/penalties', headers=user_headers, json={
            'type': 'late_fee', 'amount_cents': 100, 'description': 'Late',
        })
        assert response.status_code == 403


# =============================================================================
# LISTINGS
# =============================================================================

class TestTransactionListings:

    def test_users_only_see_their_own(self, client, db_session, user_a, other_user_a, user_headers, manager_headers, item_a):
        other_headers = auth_headers(get_auth_token(client, other_user_a.username))
        _checkout(client, user_headers, item_a, quantity=1)
        _checkout(client, other_headers, item_a, quantity=1)

        mine = client.get('/api/transactions', headers=user_headers).json
        assert mine['pagination']['total_items'] == 1
        assert mine['transactions'][0]['user_id'] == user_a.id

        # user_id is ignored for regular users
        spoofed = client.get(f'/api/transactions?user_id={other_user_a.id}', headers=user_headers).json
        assert [t['user_id'] for t in spoofed['transactions']] == [user_a.id]

        everyone = client.get('/api/transactions', headers=manager_headers).json
        assert everyone['pagination']['total_items'] == 2

        filtered = client.get(f'/api/transactions?user_id={other_user_a.id}', headers=manager_headers).json
        assert [t['user_id'] for t in filtered['transactions']] == [other_user_a.id]

    def test_status_filter_and_sort(self, client, db_session, user_headers, item_a, gated_item_a):
        _checkout(client, user_headers, item_a, days=5)
        _checkout(client, user_headers, gated_item_a, days=2)

        pending = client.get('/api/transactions?status=pending', headers=user_headers).json['transactions']
        assert [t['item_id'] for t in pending] == [gated_item_a.id]

        by_due = client.get(
            '/api/transactions?sort_by=expected_return_date&sort_order=asc', headers=user_headers
        ).json['transactions']
        assert [t['item_id'] for t in by_due] == [gated_item_a.id, item_a.id]

    @pytest.mark.parametrize("query", ["status=lost", "type=loan", "sort_by=quantity", "limit=1000"])
    def test_bad_filters(self, client, db_session, user_headers, query):
        assert client.get(f'/api/transactions?{query}', headers=user_headers).status_code == 400

    def test_overdue_listing(self, client, db_session, user_headers, manager_headers, item_a):
        late_id = _checkout(client, user_headers, item_a, quantity=1).json['transactions'][0]['id']
        _checkout(client, user_headers, item_a, quantity=1)

        tx = db_session.get(ItemTransaction, late_id)
        tx.expected_return_date = utcnow() - timedelta(hours=5)
        db_session.commit()

        response = client.get('/api/transactions/overdue', headers=manager_headers)
        assert response.status_code == 200
        assert response.json['count'] == 1
        overdue = response.json['transactions'][0]
        assert overdue['id'] == late_id
        assert overdue['is_overdue'] is True
        assert overdue['days_overdue'] == 1

        assert client.get('/api/transactions/overdue', headers=user_headers).status_code == 403
