"""
Pytest fixtures for bizdesk backend tests.

Provides an in-memory database, two independent businesses (tenants),
ledger contexts for service calls and an authenticated test client.
"""

import pytest

from bizdesk import create_app
from bizdesk.extensions import db
from bizdesk.models import Account
from bizdesk.services import auth_service, customer_service, inventory_service, session_service
from bizdesk.services.context import LedgerContext

TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'BCRYPT_ROUNDS': 4,
        'LEDGER_RETRY_BACKOFF': 0,
        'DEFAULT_TAX_RATE_BPS': 1600,
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


@pytest.fixture(scope='function')
def business(db_session):
    """Business A: 16% exclusive tax, owner, default Cash and Bank Account."""
    business, _owner = auth_service.register_business(
        "Acme Traders", "owner@acme.test", TEST_PASSWORD, "Acme Owner", tax_rate_bps=1600,
    )
    return business


@pytest.fixture(scope='function')
def owner(db_session, business):
    return auth_service.authenticate("owner@acme.test", TEST_PASSWORD)


@pytest.fixture(scope='function')
def ctx(business, owner):
    return LedgerContext(business_id=business.id, user_id=owner.id)


@pytest.fixture(scope='function')
def other_ctx(db_session):
    """Context for an unrelated business B."""
    business_b, owner_b = auth_service.register_business(
        "Beta Stores", "owner@beta.test", TEST_PASSWORD, tax_rate_bps=0,
    )
    return LedgerContext(business_id=business_b.id, user_id=owner_b.id)


@pytest.fixture(scope='function')
def cash_account(db_session, ctx):
    return db_session.query(Account).filter_by(business_id=ctx.business_id, name="Cash").one()


@pytest.fixture(scope='function')
def bank_account(db_session, ctx):
    return db_session.query(Account).filter_by(business_id=ctx.business_id, name="Bank Account").one()


@pytest.fixture(scope='function')
def product(ctx):
    """Widget: price 1000, cost 600, stock 10, reorder level 3."""
    return inventory_service.create_product(ctx, {
        "sku": "WID-001",
        "name": "Widget",
        "price_cents": 1000,
        "cost_cents": 600,
        "stock": 10,
        "reorder_level": 3,
    })


@pytest.fixture(scope='function')
def customer(ctx):
    """Customer with a 100.00 credit limit."""
    return customer_service.create_customer(ctx, {
        "name": "Jane Buyer",
        "email": "jane@example.test",
        "phone": "0700000001",
        "credit_limit_cents": 10000,
        "tags": ["wholesale"],
    })


@pytest.fixture(scope='function')
def token(owner):
    _session, raw = session_service.create_session(owner.id)
    return raw


@pytest.fixture(scope='function')
def headers(token):
    return auth_headers(token)


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
