"""
Pytest fixtures for Mercado backend tests.

Provides the app (file-backed SQLite per run), per-test table cleanup,
catalog/address fixtures and the Flask test client.
"""

import pytest

from mercado import create_app
from mercado.extensions import db
from mercado.models import Address
from mercado.services import catalog_service
from mercado.services.pricing_service import PricingPolicy


@pytest.fixture(scope='session')
def app(tmp_path_factory):
    """Create application for testing."""
    db_path = tmp_path_factory.mktemp("db") / "mercado_test.sqlite3"
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': f'sqlite:///{db_path}',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'DELIVERY_FEE_CENTS': 1000,
        'SERVICE_FEE_BPS': 200,
        'PROMO_CODES': {"PROMO10": 10},
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
    """Fresh data for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def policy():
    return PricingPolicy(delivery_fee_cents=1000, service_fee_bps=200, promo_codes={"PROMO10": 10})


@pytest.fixture
def milk(db_session):
    """Unit price 1000, tiers {3: 2000, 6: 3500}, no explicit cost, 100 in stock."""
    category = catalog_service.create_category("lacteos", "Lácteos", ["Leche"])
    return catalog_service.create_product(
        sku="7750001000011",
        name="Leche entera 1L",
        category=category,
        price_cents=1000,
        bundle_offers=[{"quantity": 3, "price_cents": 2000}, {"quantity": 6, "price_cents": 3500}],
        initial_stock=100,
    )


@pytest.fixture
def water(db_session):
    """Unit price 800, explicit cost 450, 50 in stock."""
    return catalog_service.create_product(
        sku="7750002000010",
        name="Agua sin gas 2L",
        price_cents=800,
        cost_cents=450,
        initial_stock=50,
    )


@pytest.fixture
def address(db_session):
    addr = Address(user_id="u-1", street="Av. Arce 2631", city="La Paz", reference="Edificio azul")
    db_session.add(addr)
    db_session.commit()
    return addr
