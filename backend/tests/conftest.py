"""
Pytest fixtures for matcycle backend tests.

Provides test database setup, seller/mat type fixtures, and test client.
"""

from datetime import timedelta

import pytest
from matcycle import create_app
from matcycle.extensions import db
from matcycle.models import MatType
from matcycle.services import code_service, cycle_service
from matcycle.time_utils import utcnow


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
def mat_types(db_session):
    """Create the MBW1 and MBW2 mat types."""
    small = MatType(code="MBW1", name="Mat 60x85")
    large = MatType(code="MBW2", name="Mat 85x150")
    db_session.add_all([small, large])
    db_session.commit()
    return {"MBW1": small, "MBW2": large}


@pytest.fixture(scope='function')
def seller(db_session):
    """Seller RIS with a registered prefix and no codes."""
    return code_service.create_seller("Rok Isk", email="rok@example.com", prefix="RIS")


@pytest.fixture(scope='function')
def other_seller(db_session):
    """Second seller (prefix MAR) for isolation checks."""
    return code_service.create_seller("Maja Ar", prefix="MAR")


@pytest.fixture(scope='function')
def make_cycle(db_session, seller, mat_types):
    """
    Factory: generate one code for the seller and scan it.

    make_cycle(days_ago=21) backdates test_start_date.
    """
    def _make(days_ago: int = 0, mat_type_code: str = "MBW2"):
        code = code_service.generate_codes(seller.id, 1)[0]
        return cycle_service.scan_code(
            code.code,
            salesperson_id=seller.id,
            mat_type_code=mat_type_code,
            test_start_date=utcnow() - timedelta(days=days_ago),
            performed_by="tester",
        )
    return _make


@pytest.fixture(scope='function')
def headers():
    """Gateway header identifying the acting operator."""
    return {'X-Actor-Id': 'operator-1'}
