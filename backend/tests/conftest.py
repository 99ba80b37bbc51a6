"""
Pytest fixtures for checkout tracker backend tests.

Provides test database setup, two tenants with admin/manager/user
accounts, item factories and test client helpers.
"""

from datetime import timedelta

import pytest
from checkout_tracker import create_app
from checkout_tracker.extensions import db
from checkout_tracker.models import Organization, User, Role, UserRole, Item
from checkout_tracker.services.auth_service import hash_password, create_default_roles
from checkout_tracker.services import permission_service
from checkout_tracker.time_utils import utcnow


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'EMAIL_BACKEND': 'memory',
        'NOTIFICATIONS_DISPATCH_INLINE': True,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='session')
def password_hash(app):
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(PASSWORD)


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions["email_outbox"] = []

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def outbox(app, db_session):
    """Emails captured by the memory backend."""
    return app.extensions["email_outbox"]


def _make_org(session, name: str, code: str) -> Organization:
    org = Organization(name=name, code=code, is_active=True)
    session.add(org)
    session.commit()
    create_default_roles(org.id)
    permission_service.initialize_permissions()
    permission_service.assign_default_role_permissions(org.id)
    return org


def make_user(session, org: Organization, username: str, role_name: str, password_hash: str, name=None) -> User:
    user = User(
        org_id=org.id,
        username=username,
        email=f"{username}@{org.code.lower()}.test",
        name=name or username.replace("_", " ").title(),
        password_hash=password_hash,
    )
    session.add(user)
    session.flush()

    role = session.query(Role).filter_by(org_id=org.id, name=role_name).first()
    session.add(UserRole(user_id=user.id, role_id=role.id))
    session.commit()
    return user


def make_item(session, org: Organization, creator: User, **overrides) -> Item:
    fields = {
        "name": "Cordless Drill",
        "category": "Tools",
        "total_quantity": 10,
        "available_quantity": 10,
        "reserved_quantity": 0,
        "max_checkout_days": 7,
        "requires_approval": False,
    }
    fields.update(overrides)
    item = Item(org_id=org.id, created_by_user_id=creator.id, **fields)
    session.add(item)
    session.commit()
    return item


def actor_for(user: User):
    return permission_service.resolve_actor(user)


def due_in(days: float = 3):
    return utcnow() + timedelta(days=days)


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    return _make_org(db_session, "Org A - Acme Corp", "ACME")


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    return _make_org(db_session, "Org B - Beta Inc", "BETA")


@pytest.fixture(scope='function')
def admin_a(db_session, org_a, password_hash):
    return make_user(db_session, org_a, "admin_a", "admin", password_hash)


@pytest.fixture(scope='function')
def manager_a(db_session, org_a, password_hash):
    return make_user(db_session, org_a, "manager_a", "manager", password_hash)


@pytest.fixture(scope='function')
def user_a(db_session, org_a, password_hash):
    return make_user(db_session, org_a, "user_a", "user", password_hash)


@pytest.fixture(scope='function')
def other_user_a(db_session, org_a, password_hash):
    return make_user(db_session, org_a, "other_user_a", "user", password_hash)


@pytest.fixture(scope='function')
def admin_b(db_session, org_b, password_hash):
    return make_user(db_session, org_b, "admin_b", "admin", password_hash)


@pytest.fixture(scope='function')
def item_a(db_session, org_a, manager_a):
    """10 units, no approval needed."""
    return make_item(db_session, org_a, manager_a)


@pytest.fixture(scope='function')
def gated_item_a(db_session, org_a, manager_a):
    """10 units, every checkout needs approval."""
    return make_item(db_session, org_a, manager_a, name="Thermal Camera", category="Electronics", requires_approval=True)


def get_auth_token(client, username: str, password: str = PASSWORD) -> str:
    """Helper to get auth token for a user."""
    response = client.post('/api/auth/login', json={
        'username': username,
        'password': password
    })
    if response.status_code == 200:
        return response.json.get('token')
    return None


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}


@pytest.fixture(scope='function')
def user_headers(client, user_a):
    return auth_headers(get_auth_token(client, user_a.username))


@pytest.fixture(scope='function')
def manager_headers(client, manager_a):
    return auth_headers(get_auth_token(client, manager_a.username))


@pytest.fixture(scope='function')
def admin_headers(client, admin_a):
    return auth_headers(get_auth_token(client, admin_a.username))


@pytest.fixture(scope='function')
def admin_b_headers(client, admin_b):
    return auth_headers(get_auth_token(client, admin_b.username))
