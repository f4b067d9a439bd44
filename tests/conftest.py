import pytest
from decimal import Decimal

from stockledger import create_app
from stockledger.database import create_tables, get_session
from stockledger.models import Product
from stockledger.repositories import InMemoryDatabase
from stockledger.services.ledger_service import MovementLedger
from stockledger.services.query_service import StockQueryService
from stockledger.services.quick_action_service import QuickActionService

ORG_A = 'org-a'
ORG_B = 'org-b'
USER = 'user-1'


# ---------------------------------------------------------------------------
# In-memory stores (unit tests)
# ---------------------------------------------------------------------------

@pytest.fixture(scope='function')
def memory_db():
    """Fresh in-memory database with products in two organizations."""
    db = InMemoryDatabase(lock_timeout=2.0)
    db.add_product(1, ORG_A, 'Flour', unit_of_measure='kg', category='Dry goods')
    db.add_product(2, ORG_A, 'Milk', unit_of_measure='L')
    db.add_product(3, ORG_A, 'Old Sauce', active=False)
    db.add_product(10, ORG_B, 'Tomatoes', unit_of_measure='kg')
    return db


@pytest.fixture(scope='function')
def ledger(memory_db):
    """Ledger over the in-memory stores, no retry backoff."""
    return MovementLedger(memory_db.unit_of_work, max_retries=3, retry_backoff=0)


@pytest.fixture(scope='function')
def quick_actions(ledger):
    return QuickActionService(ledger)


@pytest.fixture(scope='function')
def query_service(memory_db):
    return StockQueryService(memory_db.unit_of_work, low_stock_threshold=Decimal('10'))


# ---------------------------------------------------------------------------
# Flask app over SQLite (integration tests)
# ---------------------------------------------------------------------------

@pytest.fixture(scope='function')
def app():
    """Create application instance for testing (fresh in-memory SQLite)."""
    app = create_app('config.TestConfig')
    with app.app_context():
        create_tables()
    return app


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session(app):
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


@pytest.fixture(scope='function')
def product_org_a(session):
    """Create test product for organization A."""
    product = Product(organization_id=ORG_A, name='Flour', unit_of_measure='kg', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def product_org_b(session):
    """Create test product for organization B."""
    product = Product(organization_id=ORG_B, name='Tomatoes', unit_of_measure='kg', active=True)
    session.add(product)
    session.commit()
    return product


@pytest.fixture(scope='function')
def inactive_product(session):
    product = Product(organization_id=ORG_A, name='Discontinued Jam', active=False)
    session.add(product)
    session.commit()
    return product
