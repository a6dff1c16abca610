from datetime import date, datetime, timezone
from zoneinfo import ZoneInfo

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from dental_api.database import Base, get_db
from dental_api.main import app
from dental_api.models import (
    Appointment,
    AppointmentStatus,
    AppointmentType,
    BusinessHours,
    DayOfWeek,
    Practitioner,
    PractitionerRole,
    Schedule,
)

EASTERN = ZoneInfo("America/New_York")

# A Monday in standard time, far enough ahead that bookings are never in the past
MONDAY = date(2030, 1, 7)


def utc(*args) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


def parse_instant(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00"))


@pytest.fixture
def db():
    """Fresh in-memory database per test."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSession = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    session = TestingSession()
    yield session
    session.close()
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    yield TestClient(app)
    app.dependency_overrides.clear()


class OfficeBuilder:
    """Writes office configuration rows straight into the test session."""

    def __init__(self, db):
        self.db = db

    def hours(self, day=DayOfWeek.MONDAY, start="09:00", end="17:00", is_open=True):
        row = BusinessHours(day_of_week=day, is_open=is_open, start_time=start, end_time=end)
        self.db.add(row)
        self.db.commit()
        return row

    def appointment_type(self, name="Cleaning", duration=30, roles=("DENTIST",), is_active=True):
        row = AppointmentType(
            name=name,
            duration_minutes=duration,
            allowed_roles=list(roles),
            is_active=is_active,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def practitioner(self, name="Alice", role=PractitionerRole.DENTIST, is_active=True):
        row = Practitioner(name=name, role=role, phone="555-0100", is_active=is_active)
        self.db.add(row)
        self.db.commit()
        return row

    def schedule(
        self,
        practitioner,
        day=DayOfWeek.MONDAY,
        start="09:00",
        end="17:00",
        break_start=None,
        break_end=None,
        is_available=True,
    ):
        row = Schedule(
            practitioner_id=practitioner.id,
            day_of_week=day,
            start_time=start,
            end_time=end,
            break_start=break_start,
            break_end=break_end,
            is_available=is_available,
        )
        self.db.add(row)
        self.db.commit()
        return row

    def booked(self, practitioner, appt_type, start, end, status=AppointmentStatus.SCHEDULED):
        """Store an appointment; ``start``/``end`` are aware datetimes."""
        row = Appointment(
            start_time=start.astimezone(timezone.utc).replace(tzinfo=None),
            end_time=end.astimezone(timezone.utc).replace(tzinfo=None),
            patient_name="Pat Patient",
            patient_email="pat@example.com",
            status=status,
            practitioner_id=practitioner.id,
            appointment_type_id=appt_type.id,
        )
        self.db.add(row)
        self.db.commit()
        return row


@pytest.fixture
def office(db):
    return OfficeBuilder(db)
