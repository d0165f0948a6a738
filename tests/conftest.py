# tests/conftest.py

import pytest
from datetime import timedelta
from sqlalchemy.orm import sessionmaker

from slotbook.constants.booking import BookingStatus
from slotbook.crud import booking as booking_crud
from slotbook.db.session import build_engine
from slotbook.models import Base, Booking, Session as SessionModel
from slotbook.schemas.booking import ContactDetails
from slotbook.utils.clock import utcnow


# --- Test Database Setup ---
# One SQLite file per test. build_engine switches SQLite to BEGIN IMMEDIATE,
# so concurrent sessions serialize like they do under row locks.
@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'slotbook_test.db'}")
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


# --- Factories ---
def build_contact(name: str = "Jane Doe") -> ContactDetails:
    slug = name.lower().replace(" ", ".")
    return ContactDetails(name=name, email=f"{slug}@example.com", phone=None)


@pytest.fixture
def make_session(db_session):
    """Create a session; ``starts_in`` is relative to now."""

    def _make_session(
        max_capacity: int = 20,
        starts_in: timedelta = timedelta(days=7),
        duration: timedelta = timedelta(hours=2),
        price_amount: int = 1500,
        title: str = "Morning Padel",
    ) -> SessionModel:
        starts_at = utcnow() + starts_in
        session_obj = SessionModel(
            title=title,
            starts_at=starts_at,
            ends_at=starts_at + duration,
            max_capacity=max_capacity,
            occupied_seats=0,
            price_amount=price_amount,
            currency="EUR",
        )
        db_session.add(session_obj)
        db_session.commit()
        return session_obj

    return _make_session


@pytest.fixture
def seed_booking(db_session):
    """
    Insert a booking directly, charging its seats when it is confirmed so
    the occupancy counter stays consistent.
    """

    def _seed_booking(
        session_obj: SessionModel,
        owner_id: str,
        guest_count: int = 0,
        status: str = BookingStatus.CONFIRMED,
        **fields,
    ) -> Booking:
        contact = build_contact(owner_id.replace("_", " "))
        booking = Booking(
            session_id=session_obj.id,
            owner_id=owner_id,
            contact_name=contact.name,
            contact_email=contact.email,
            guest_count=guest_count,
            status=status,
            **fields,
        )
        db_session.add(booking)
        if status == BookingStatus.CONFIRMED:
            session_obj.occupied_seats += 1 + guest_count
        db_session.commit()
        return booking

    return _seed_booking


@pytest.fixture
def fill_session(seed_booking):
    """Fill a session completely with single-seat confirmed bookings."""

    def _fill_session(session_obj: SessionModel, prefix: str = "filler") -> list:
        return [
            seed_booking(session_obj, f"{prefix}_{i}")
            for i in range(session_obj.max_capacity - session_obj.occupied_seats)
        ]

    return _fill_session


def _assert_occupancy_invariant(db, session_id: str) -> None:
    """occupied_seats equals the seats of confirmed bookings and stays within capacity."""
    db.expire_all()
    session_obj = db.get(SessionModel, session_id)
    assert session_obj.occupied_seats == booking_crud.confirmed_seat_total(db, session_id=session_id)
    assert 0 <= session_obj.occupied_seats <= session_obj.max_capacity
    db.commit()


@pytest.fixture
def make_contact():
    return build_contact


@pytest.fixture
def assert_invariant(db_session):
    return lambda session_id: _assert_occupancy_invariant(db_session, session_id)
