"""
Pytest fixtures for tourledger backend tests.

Provides in-memory database setup, users with each role, catalog tours and
a test client.
"""

import pytest
from tourledger import create_app
from tourledger.extensions import db
from tourledger.models import IMPORT_ONLY_TOUR_NAME, Tour, User
from tourledger.services.auth_service import hash_password
from tourledger.services.sales_service import Actor


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'TX_RETRY_BACKOFF': 0,
        'IMPORT_DEFAULT_SUPERVISORS': [],
        'RESTORE_UNLIMITED_SOLD_ON_VOID': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(db_session, username, role, supervisor_name=None):
    user = User(
        username=username,
        password_hash=hash_password(PASSWORD),
        role=role,
        supervisor_name=supervisor_name,
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def admin_user(db_session):
    return _make_user(db_session, "admin", "admin")


@pytest.fixture(scope='function')
def support_user(db_session):
    return _make_user(db_session, "support", "support")


@pytest.fixture(scope='function')
def supervisor_user(db_session):
    return _make_user(db_session, "ana", "supervisor", supervisor_name="Ana")


@pytest.fixture(scope='function')
def other_supervisor_user(db_session):
    return _make_user(db_session, "luis", "supervisor", supervisor_name="Luis")


@pytest.fixture
def admin_actor(admin_user):
    return Actor(role="admin", user_id=admin_user.id)


@pytest.fixture
def supervisor_actor(supervisor_user):
    return Actor(role="supervisor", user_id=supervisor_user.id, supervisor_name="Ana")


def _make_tour(db_session, name, stock, price=700):
    tour = Tour(name=name, price=price, stock=stock, sold=0)
    db_session.add(tour)
    db_session.commit()
    return tour


@pytest.fixture
def tour_a(db_session):
    """Finite tour with 10 units."""
    return _make_tour(db_session, "Tour A", 10)


@pytest.fixture
def tour_b(db_session):
    """Finite tour with 5 units."""
    return _make_tour(db_session, "Tour B", 5)


@pytest.fixture
def unlimited_tour(db_session):
    return _make_tour(db_session, "Gotero de Ampollas", -1)


@pytest.fixture
def import_only_tour(db_session):
    return _make_tour(db_session, IMPORT_ONLY_TOUR_NAME, -1, price=0)


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


@pytest.fixture
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, admin_user.username))


@pytest.fixture
def supervisor_headers(client, supervisor_user):
    return auth_headers(get_auth_token(client, supervisor_user.username))


def reload(obj):
    """Re-read a row from the database (counters are changed by UPDATE statements)."""
    obj_id = obj.id
    db.session.expire_all()
    return db.session.get(type(obj), obj_id)
