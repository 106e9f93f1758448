"""
Pytest fixtures for pestcode backend tests.

Provides the test database, a pinned clock, a fake image renderer and
wired QR code services.
"""

from datetime import datetime

import pytest

from pestcode import create_app
from pestcode.extensions import db
from pestcode.models import Medicine, MedicineStock, QRCodeMaster
from pestcode.services.qr_image import ImageRenderError
from pestcode.services.qrcode_repository import QRCodeRepository
from pestcode.services.sequence_service import SequenceAllocator
from pestcode.services.generation_service import QRCodeGenerator
from pestcode.services.scan_service import ScanProcessor
from pestcode.services.master_service import MasterService


class FixedClock:
    """Callable clock; tests move it by assigning .now."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakeRenderer:
    """Renderer double: records calls, fails on the listed 1-based call numbers."""

    def __init__(self, fail_on=()):
        self.fail_on = set(fail_on)
        self.calls = []

    def __call__(self, data: str) -> str:
        self.calls.append(data)
        if len(self.calls) in self.fail_on:
            raise ImageRenderError("Failed to generate QR code image: renderer offline")
        return "data:image/png;base64,ZmFrZQ=="


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
def clock():
    """Mid-July 2025: codes issued now start with '2507'."""
    return FixedClock(datetime(2025, 7, 15, 9, 30))


@pytest.fixture(scope='function')
def renderer():
    return FakeRenderer()


@pytest.fixture(scope='function')
def repository(db_session):
    return QRCodeRepository(db.session)


@pytest.fixture(scope='function')
def allocator(repository, clock):
    return SequenceAllocator(repository, clock=clock, backoff_base=0)


@pytest.fixture(scope='function')
def generator(repository, allocator, renderer, clock):
    return QRCodeGenerator(repository, allocator, renderer, clock=clock)


@pytest.fixture(scope='function')
def scanner(repository, clock):
    return ScanProcessor(repository, clock=clock)


@pytest.fixture(scope='function')
def master_service(repository):
    return MasterService(repository)


@pytest.fixture(scope='function')
def medicine(db_session):
    """Fungicide with identity 1F111B."""
    med = Medicine(
        name="Fungisida 250 SC",
        category="Fungisida",
        unit="liter",
        funding_source_code="1",
        medicine_type_code="F",
        active_ingredient_code="111",
        producer_code="B",
    )
    db_session.add(med)
    db_session.commit()
    return med


@pytest.fixture(scope='function')
def stock(db_session, medicine):
    """Batch packed in cartons (package type K)."""
    s = MedicineStock(
        medicine_id=medicine.id,
        batch_number="B-2025-07",
        package_type_code="K",
        current_stock=50,
    )
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def unit_stock(db_session, medicine):
    """Batch without a package type: unit codes only."""
    s = MedicineStock(medicine_id=medicine.id, batch_number="B-LOOSE", current_stock=10)
    db_session.add(s)
    db_session.commit()
    return s


@pytest.fixture(scope='function')
def master(db_session, medicine):
    """ACTIVE master for 1F111B-K."""
    m = QRCodeMaster(
        funding_source_code="1", funding_source_name="APBN",
        medicine_type_code="F", medicine_type_name="Fungisida",
        active_ingredient_code="111", active_ingredient_name="Difenokonazol",
        producer_code="B", producer_name="PT Agro",
        package_type_code="K", package_type_name="Kardus",
        created_by="admin",
    )
    db_session.add(m)
    db_session.commit()
    return m
