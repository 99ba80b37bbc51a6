"""
Health endpoint and flask CLI command tests.
"""

from datetime import timedelta

from checkout_tracker.models import Item, ItemTransaction, Organization, User
from checkout_tracker.services import checkout_service
from checkout_tracker.time_utils import utcnow

from conftest import actor_for, due_in


class TestHealth:

    def test_health_reports_every_check(self, client, db_session, org_a):
        response = client.get('/health')

        assert response.status_code == 200
        assert response.json['status'] == 'healthy'
        assert set(response.json['checks']) == {'database', 'session_service', 'auth_service', 'notifications'}
        assert response.json['checks']['notifications']['details']['email_backend'] == 'memory'

    def test_missing_roles_degrade(self, client, db_session):
        db_session.add(Organization(name="Bare Org", code="BARE", is_active=True))
        db_session.commit()

        response = client.get('/health')

        assert response.status_code == 200
        assert response.json['status'] == 'degraded'
        assert response.json['checks']['auth_service']['details']['orgs_missing_roles'] == ['BARE']


# =============================================================================
# BOOTSTRAP
# =============================================================================

class TestSystemCommands:

    def test_init_is_idempotent(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['system', 'init', '--org', 'Depot', '--org-code', 'DEPOT'])
        assert result.exit_code == 0
        assert 'Created user: admin' in result.output

        result = runner.invoke(args=['system', 'init', '--org', 'Depot', '--org-code', 'DEPOT'])
        assert result.exit_code == 0
        assert "User 'admin' already exists" in result.output

        org = db_session.query(Organization).filter_by(code='DEPOT').one()
        assert sorted(u.username for u in db_session.query(User).filter_by(org_id=org.id)) == [
            'admin', 'manager', 'user',
        ]

    def test_orgs_create_and_list(self, app, db_session):
        runner = app.test_cli_runner()

        result = runner.invoke(args=['orgs', 'create', '--name', 'Field Ops', '--code', 'FOPS'])
        assert 'PASS Created organization: Field Ops' in result.output

        result = runner.invoke(args=['orgs', 'create', '--name', 'Again', '--code', 'FOPS'])
        assert "already exists" in result.output

        result = runner.invoke(args=['orgs', 'list'])
        assert 'Field Ops' in result.output

    def test_users_create(self, app, db_session, org_a):
        runner = app.test_cli_runner()

        result = runner.invoke(args=[
            'users', 'create', '--org-id', str(org_a.id), '--username', 'clerk',
            '--email', 'clerk@acme.test', '--password', 'Str0ng!Pass', '--role', 'manager',
        ])

        assert result.exit_code == 0
        assert "Created user: clerk" in result.output
        assert db_session.query(User).filter_by(username='clerk').one().org_id == org_a.id


# =============================================================================
# SCHEDULED JOBS
# =============================================================================

class TestScheduledCommands:

    def test_flag_overdue_and_reminders(self, app, db_session, user_a, item_a, outbox):
        tx = checkout_service.checkout(
            actor_for(user_a), [{'item_id': item_a.id, 'quantity': 1}], due_in().isoformat(), "Survey",
        ).transactions[0]
        tx.expected_return_date = utcnow() - timedelta(hours=2)
        db_session.commit()
        runner = app.test_cli_runner()

        result = runner.invoke(args=['transactions', 'flag-overdue'])
        assert 'Flagged 1 transaction(s) as overdue.' in result.output
        db_session.refresh(tx)
        assert tx.status == 'overdue'

        result = runner.invoke(args=['transactions', 'send-reminders'])
        assert result.exit_code == 0
        assert 'Queued 1 overdue alert(s)' in result.output

    def test_dispatch_command(self, app, db_session, user_a, item_a, outbox):
        checkout_service.checkout(
            actor_for(user_a), [{'item_id': item_a.id, 'quantity': 1}], due_in().isoformat(), "Survey",
        )

        result = app.test_cli_runner().invoke(args=['notifications', 'dispatch'])

        assert result.exit_code == 0
        assert 'Events: 1' in result.output
        assert 'Emails sent: 1' in result.output
        assert outbox[0].to == user_a.email


# =============================================================================
# CONSISTENCY
# =============================================================================

class TestAuditReservations:

    def test_clean_inventory_passes(self, app, db_session, user_a, item_a):
        checkout_service.checkout(
            actor_for(user_a), [{'item_id': item_a.id, 'quantity': 4}], due_in().isoformat(), "Survey",
        )

        result = app.test_cli_runner().invoke(args=['inventory', 'audit-reservations'])

        assert result.exit_code == 0
        assert 'PASS' in result.output

    def test_drift_is_reported(self, app, db_session, user_a, item_a):
        checkout_service.checkout(
            actor_for(user_a), [{'item_id': item_a.id, 'quantity': 4}], due_in().isoformat(), "Survey",
        )
        db_session.query(Item).filter_by(id=item_a.id).update({'reserved_quantity': 1})
        db_session.commit()

        result = app.test_cli_runner().invoke(args=['inventory', 'audit-reservations'])

        assert result.exit_code == 1
        assert f'item={item_a.id}' in result.output
        assert 'reserved_mismatch' in result.output
        assert 'held=4' in result.output
        assert db_session.query(ItemTransaction).count() == 1
