"""
Pytest fixtures for goldpos backend tests.

Provides the test app, a cleared database per test, and a priced catalog:
gold rates for 18K/21K/24K, a 14% VAT, and making charges for rings
(10% of gold value) and chains (50.00 per piece).
"""

import pytest

from goldpos import create_app
from goldpos.extensions import db
from goldpos.lookups import CHARGE_FIXED, CHARGE_PERCENTAGE
from goldpos.models import Branch, Customer, Supplier
from goldpos.services import catalog_service, pricing_service


RATE_18K = 300_000  # 3,000.00 per gram
RATE_21K = 350_000
RATE_24K = 400_000


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
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
def branch(db_session):
    branch = Branch(code="MAIN", name="Main Branch")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def other_branch(db_session):
    branch = Branch(code="MALL", name="Mall Kiosk")
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture(scope='function')
def supplier(db_session):
    supplier = Supplier(company_name="Cairo Gold Works", contact_phone="0100000000")
    db_session.add(supplier)
    db_session.commit()
    return supplier


@pytest.fixture(scope='function')
def customer(db_session):
    customer = Customer(full_name="Mona Adel", phone="0111111111")
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def vip_customer(db_session):
    """Customer with a 5% discount and waived making charges."""
    customer = Customer(
        full_name="Karim Fathy",
        default_discount_bps=500,
        making_charges_waived=True,
    )
    db_session.add(customer)
    db_session.commit()
    return customer


@pytest.fixture(scope='function')
def gold_rates(db_session):
    return {
        "18K": pricing_service.update_gold_rate("18K", RATE_18K, "admin"),
        "21K": pricing_service.update_gold_rate("21K", RATE_21K, "admin"),
        "24K": pricing_service.update_gold_rate("24K", RATE_24K, "admin"),
    }


@pytest.fixture(scope='function')
def vat(db_session):
    return pricing_service.update_tax_configuration("VAT", "Value Added Tax", CHARGE_PERCENTAGE, 1400, "admin")


@pytest.fixture(scope='function')
def making_charges(db_session):
    return {
        "RING": pricing_service.update_making_charge("RING", CHARGE_PERCENTAGE, 1000, "admin"),
        "CHAIN": pricing_service.update_making_charge("CHAIN", CHARGE_FIXED, 5_000, "admin"),
    }


@pytest.fixture(scope='function')
def pricing_tables(gold_rates, vat, making_charges):
    return {"gold_rates": gold_rates, "vat": vat, "making_charges": making_charges}


@pytest.fixture(scope='function')
def ring(db_session, pricing_tables, supplier):
    """21K ring, 10 g.

    Prices at 35,000.00 gold + 3,500.00 making + 5,390.00 VAT = 43,890.00.
    """
    return catalog_service.create_product(
        product_code="RNG-001",
        name="Plain 21K Band",
        category="RING",
        karat="21K",
        weight_mg=10_000,
        user="admin",
        supplier_id=supplier.id,
    )


@pytest.fixture(scope='function')
def chain(db_session, pricing_tables, supplier):
    """18K chain, 5 g.

    Prices at 15,000.00 gold + 50.00 making + 2,107.00 VAT = 17,157.00.
    """
    return catalog_service.create_product(
        product_code="CHN-001",
        name="Rope Chain 18K",
        category="CHAIN",
        karat="18K",
        weight_mg=5_000,
        user="admin",
        supplier_id=supplier.id,
    )
