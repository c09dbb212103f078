"""
Shared fixtures: in-memory SQLite database, seeded users/services/bookings,
and a TestClient wired to the test session.
"""
import os

# Must be set before labportal.lib.settings is imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import itertools
from decimal import Decimal

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from labportal.api.app import app
from labportal.lib.db import Base, get_db
from labportal.lib.jwt import create_access_token
from labportal.models import (
    BookingRequest,
    BookingServiceItem,
    BookingStatus,
    SampleStatus,
    SampleTracking,
    Service,
    ServicePricing,
    User,
    UserStatus,
    UserType,
    WorkspaceBooking,
)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def db_session(engine):
    TestingSessionLocal = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = TestingSessionLocal()
    yield session
    session.close()


def _user(db, email, user_type, first_name, last_name, status=UserStatus.ACTIVE):
    user = User(
        email=email,
        first_name=first_name,
        last_name=last_name,
        user_type=user_type,
        status=status,
    )
    db.add(user)
    db.commit()
    return user


@pytest.fixture
def admin(db_session):
    return _user(db_session, "admin@lab.example", UserType.LAB_ADMINISTRATOR, "Lab", "Admin")


@pytest.fixture
def second_admin(db_session):
    return _user(db_session, "ops@lab.example", UserType.LAB_ADMINISTRATOR, "Ops", "Admin")


@pytest.fixture
def inactive_admin(db_session):
    return _user(
        db_session,
        "former@lab.example",
        UserType.LAB_ADMINISTRATOR,
        "Former",
        "Admin",
        status=UserStatus.INACTIVE,
    )


@pytest.fixture
def customer(db_session):
    return _user(db_session, "aisha@utm.example", UserType.UTM_MEMBER, "Aisha", "Rahman")


@pytest.fixture
def other_customer(db_session):
    return _user(db_session, "ben@external.example", UserType.EXTERNAL_MEMBER, "Ben", "Tan")


@pytest.fixture
def analysis_service(db_session):
    """Sample-based service priced at 50.00 for UTM members."""
    service = Service(code="XRD", name="X-Ray Diffraction", requires_sample=True, is_active=True)
    service.pricing.append(ServicePricing(user_type=UserType.UTM_MEMBER, price=Decimal("50.00"), unit="sample"))
    service.pricing.append(ServicePricing(user_type=UserType.EXTERNAL_MEMBER, price=Decimal("120.00"), unit="sample"))
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def workspace_service(db_session):
    service = Service(code="WS-BENCH", name="Bench Workspace", requires_sample=False, is_active=True)
    service.pricing.append(ServicePricing(user_type=UserType.UTM_MEMBER, price=Decimal("300.00"), unit="month"))
    db_session.add(service)
    db_session.commit()
    return service


@pytest.fixture
def booking_factory(db_session, customer, analysis_service):
    """
    Build a booking with one service item.

    Defaults: approved, owned by `customer`, 2 x 50.00 of the analysis
    service, one pending sample.
    """
    counter = itertools.count(1)

    def _create(
        status=BookingStatus.APPROVED,
        sample_statuses=(SampleStatus.PENDING,),
        quantity=2,
        unit_price=Decimal("50.00"),
        owner=None,
        service=None,
        workspace_slots=(),
    ):
        n = next(counter)
        owner = owner or customer
        service = service or analysis_service
        reference = f"LAB-2026-{n:04d}"

        booking = BookingRequest(
            user_id=owner.id,
            reference_number=reference,
            status=status,
            total_amount=unit_price * quantity,
        )
        item = BookingServiceItem(
            service_id=service.id,
            quantity=quantity,
            duration_months=0,
            unit_price=unit_price,
            total_price=unit_price * quantity,
        )
        for i, sample_status in enumerate(sample_statuses, start=1):
            item.sample_tracking.append(
                SampleTracking(sample_identifier=f"{reference}-S{i}", status=sample_status)
            )
        booking.service_items.append(item)
        for start, end in workspace_slots:
            booking.workspace_bookings.append(WorkspaceBooking(start_date=start, end_date=end))

        db_session.add(booking)
        db_session.commit()
        return booking

    return _create


@pytest.fixture
def auth_headers():
    """Bearer header for a seeded user."""
    def _headers(user):
        token = create_access_token(str(user.id), user.user_type.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def client(db_session):
    """Test client whose requests share the test session."""
    def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
