"""
Pytest fixtures for bakery backend tests.

Provides the test app, a frozen clock, a per-test table wipe, seeded
employees and products, and auth header helpers.
"""

from datetime import datetime, timedelta

import pytest
from bakery import create_app
from bakery.config import TestingConfig
from bakery.extensions import db
from bakery.services import build_services
from bakery.services.auth_service import create_employee

PASSWORD = "Password123!"


class FrozenClock:
    """Clock that only moves when a test moves it."""

    def __init__(self, now: datetime):
        self._now = now

    def now(self) -> datetime:
        return self._now

    def advance(self, **kwargs) -> None:
        self._now += timedelta(**kwargs)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestingConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def clock(app):
    clock = FrozenClock(datetime(2026, 3, 2, 9, 0, 0))
    app.extensions["bakery_clock"] = clock
    yield clock
    app.extensions.pop("bakery_clock", None)


@pytest.fixture(scope='function')
def db_session(app, clock):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        app.extensions.pop("bakery_session_store", None)

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def services(app, db_session):
    """Service graph bound to the test's db session and frozen clock."""
    return build_services(app)


@pytest.fixture(scope='function')
def employees(services):
    """admin / manager / cashier / baker, all with PASSWORD."""
    created = {}
    for username, role in (
        ("admin", "admin"),
        ("manager", "manager"),
        ("cashier", "cashier"),
        ("baker", "baker"),
    ):
        created[username] = create_employee(
            services.gateway,
            services.auth.hasher,
            username=username,
            email=f"{username}@bakery.test",
            password=PASSWORD,
            role=role,
            first_name=username.capitalize(),
        )
    return created


@pytest.fixture(scope='function')
def products(services):
    """bread (stock 10, min 5), cake (stock 3, min 2), coffee (out of stock, min 4)."""
    category = services.catalog.create_category("Panes")
    return {
        "bread": services.catalog.create(
            code="PAN-001", name="Pan blanco", price="12.50", cost="6.00",
            current_stock=10, min_stock=5, category_id=category.id,
        ),
        "cake": services.catalog.create(
            code="PAS-001", name="Pastel de chocolate", price="250.00", cost="120.00",
            current_stock=3, min_stock=2,
        ),
        "coffee": services.catalog.create(
            code="BEB-001", name="Café americano", price="25.00", cost="8.00",
            current_stock=0, min_stock=4,
        ),
    }


def stock_of(services, product_id: int) -> int:
    """Fresh read of a product's stock (bypasses the identity map)."""
    services.gateway.session.expire_all()
    return services.ledger.current_stock(product_id)


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
def admin_headers(client, employees):
    return auth_headers(get_auth_token(client, "admin"))


@pytest.fixture(scope='function')
def manager_headers(client, employees):
    return auth_headers(get_auth_token(client, "manager"))


@pytest.fixture(scope='function')
def cashier_headers(client, employees):
    return auth_headers(get_auth_token(client, "cashier"))
