"""
Pytest fixtures for StockFlow backend tests.

Provides test database setup, users per role, catalog fixtures and the test client.
"""

import pytest

from stockflow import create_app
from stockflow.extensions import db
from stockflow.services import catalog_service, customer_service, settings_service
from stockflow.services.auth_service import create_user
from stockflow.services.stock_ledger_service import append_movement


PASSWORD = "Password123!"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'DB_RETRY_BACKOFF': 0,
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
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()


# =============================================================================
# USERS
# =============================================================================

@pytest.fixture(scope='function')
def admin_user(db_session):
    return create_user(username="admin", email="admin@stockflow.test", password=PASSWORD, role="admin")


@pytest.fixture(scope='function')
def manager_user(db_session):
    return create_user(username="manager", email="manager@stockflow.test", password=PASSWORD, role="manager")


@pytest.fixture(scope='function')
def staff_user(db_session):
    return create_user(username="staff", email="staff@stockflow.test", password=PASSWORD, role="staff")


@pytest.fixture(scope='function')
def admin_headers(client, admin_user):
    return auth_headers(get_auth_token(client, "admin", PASSWORD))


@pytest.fixture(scope='function')
def manager_headers(client, manager_user):
    return auth_headers(get_auth_token(client, "manager", PASSWORD))


@pytest.fixture(scope='function')
def staff_headers(client, staff_user):
    return auth_headers(get_auth_token(client, "staff", PASSWORD))


# =============================================================================
# CATALOG
# =============================================================================

@pytest.fixture(scope='function')
def warehouse(db_session):
    """Main warehouse, configured as default receiving and shipping location."""
    location = catalog_service.create_location(
        payload={"name": "Main Warehouse", "code": "MAIN", "type": "warehouse"}
    )
    settings_service.update_settings(
        values={
            settings_service.KEY_DEFAULT_RECEIVING_LOCATION: location.id,
            settings_service.KEY_DEFAULT_SHIPPING_LOCATION: location.id,
        },
        actor_user_id=None,
    )
    return location


@pytest.fixture(scope='function')
def store(db_session):
    return catalog_service.create_location(
        payload={"name": "Downtown Store", "code": "STORE-1", "type": "store", "capacity": 100}
    )


@pytest.fixture(scope='function')
def supplier(db_session):
    return catalog_service.create_supplier(
        payload={"name": "Acme Supplies", "code": "acme", "payment_terms": "net_30"}
    )


@pytest.fixture(scope='function')
def category(db_session):
    return catalog_service.create_category(payload={"name": "Hardware"})


@pytest.fixture(scope='function')
def widget(db_session, category, supplier):
    """Product priced 10.00 cost / 25.00 sell, no tax."""
    return catalog_service.create_product(payload={
        "sku": "WID-001",
        "name": "Widget",
        "cost_price": "10.00",
        "selling_price": "25.00",
        "minimum_stock": 5,
        "category_id": category.id,
        "supplier_id": supplier.id,
    })


@pytest.fixture(scope='function')
def gadget(db_session, category):
    """Product priced 4.00 cost / 9.50 sell with 10% tax."""
    return catalog_service.create_product(payload={
        "sku": "GAD-001",
        "name": "Gadget",
        "cost_price": "4.00",
        "selling_price": "9.50",
        "tax_rate": 10,
        "minimum_stock": 2,
        "category_id": category.id,
    })


@pytest.fixture(scope='function')
def customer(db_session):
    """net_30 customer with a 1,000.00 credit limit."""
    return customer_service.create_customer(payload={
        "name": "Jane Buyer",
        "email": "Jane@Example.com",
        "payment_terms": "net_30",
        "credit_limit": "1000.00",
    })


# =============================================================================
# HELPERS
# =============================================================================

def stock_in(product, location, quantity, reason="opening_stock", operator_id=None):
    """Put stock on hand through the ledger."""
    return append_movement(
        product_id=product.id,
        movement_type="in",
        reason=reason,
        quantity=quantity,
        location_to_id=location.id,
        operator_id=operator_id,
    )


def get_auth_token(client, username: str, password: str) -> str:
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
