"""
Pytest fixtures for RepairDesk backend tests.

Provides the test app (in-memory SQLite), a per-test table wipe, tenant
fixtures and a file-backed app for threaded concurrency tests.
"""

import os

import pytest

from repairdesk import create_app
from repairdesk.extensions import db
from repairdesk.models import Branch, CashRegister, Organization, ProductVariant, StockLevel
from repairdesk.services import stock_service


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'FOLIO_RETRY_DELAY_SECONDS': 0,
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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


@pytest.fixture
def file_app(tmp_path):
    """
    App backed by a temporary SQLite file, for tests that run workers in
    threads. Each worker must open its own app context.
    """
    app = create_app({
        **TEST_CONFIG,
        'SQLALCHEMY_DATABASE_URI': f"sqlite:///{os.path.join(tmp_path, 'concurrency.db')}",
        'FOLIO_MAX_ATTEMPTS': 20,
        'FOLIO_RETRY_DELAY_SECONDS': 0.01,
    })
    with app.app_context():
        db.create_all()

    yield app

    with app.app_context():
        db.session.remove()
        db.drop_all()
        db.engine.dispose()


def make_tenant(name, code, branch_code, timezone='UTC'):
    org = Organization(name=name, code=code, is_active=True)
    db.session.add(org)
    db.session.flush()
    branch = Branch(org_id=org.id, name=f'{name} {branch_code}', code=branch_code, timezone=timezone)
    db.session.add(branch)
    db.session.commit()
    return org, branch


@pytest.fixture
def org(db_session):
    org, _ = make_tenant('Fix It Norte', 'FIXN', 'MTY')
    return org


@pytest.fixture
def branch(db_session, org):
    return db_session.query(Branch).filter_by(org_id=org.id).one()


@pytest.fixture
def second_branch(db_session, org):
    branch = Branch(org_id=org.id, name='Fix It Norte GDL', code='GDL')
    db_session.add(branch)
    db_session.commit()
    return branch


@pytest.fixture
def other_org(db_session):
    """A second tenant: nothing of org must be reachable from here."""
    return make_tenant('Competitor', 'COMP', 'CDMX')


@pytest.fixture
def variant(db_session, org):
    variant = ProductVariant(org_id=org.id, sku='SCR-IP12-BLK', name='Screen iPhone 12 black', price_cents=120000)
    db_session.add(variant)
    db_session.commit()
    return variant


@pytest.fixture
def stocked_variant(db_session, org, branch, variant):
    """Variant with 10 units on hand at the branch."""
    stock_service.apply_movement(
        org_id=org.id,
        branch_id=branch.id,
        variant_id=variant.id,
        movement_type='IN',
        quantity=10,
        reason='Initial stock',
    )
    return variant


@pytest.fixture
def register(db_session, branch):
    register = CashRegister(branch_id=branch.id, code='CAJA-01', name='Front counter')
    db_session.add(register)
    db_session.commit()
    return register


@pytest.fixture
def stock_of(db_session):
    """Return (qty, reserved) of a branch/variant as currently stored."""
    def _stock_of(branch_id, variant_id):
        level = (
            db_session.query(StockLevel)
            .filter_by(branch_id=branch_id, variant_id=variant_id)
            .populate_existing()
            .first()
        )
        return (level.qty, level.reserved) if level else (0, 0)
    return _stock_of


@pytest.fixture
def file_tenant(file_app):
    """Org, branch and a variant with 10 units on hand inside file_app."""
    with file_app.app_context():
        org, branch = make_tenant('Concurrency Org', 'CONC', 'MTY')
        variant = ProductVariant(org_id=org.id, sku='BAT-01', name='Battery', price_cents=50000)
        db.session.add(variant)
        db.session.commit()
        stock_service.apply_movement(
            org_id=org.id,
            branch_id=branch.id,
            variant_id=variant.id,
            movement_type='IN',
            quantity=10,
        )
        ids = {'org_id': org.id, 'branch_id': branch.id, 'variant_id': variant.id}
        db.session.remove()
    return ids
