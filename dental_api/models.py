import enum
from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import relationship

from dental_api.database import Base


def utcnow():
    """Current time as naive UTC, the form every DateTime column holds."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PractitionerRole(str, enum.Enum):
    DENTIST = "DENTIST"
    HYGIENIST = "HYGIENIST"
    OFFICE_STAFF = "OFFICE_STAFF"


class DayOfWeek(str, enum.Enum):
    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def for_date(cls, day):
        # date.weekday() is 0 for Monday, matching declaration order
        return list(cls)[day.weekday()]


class AppointmentStatus(str, enum.Enum):
    PENDING = "PENDING"
    SCHEDULED = "SCHEDULED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


# Statuses that hold a practitioner's time
BLOCKING_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.SCHEDULED)


class AppointmentType(Base):
    __tablename__ = "appointment_types"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    duration_minutes = Column(Integer, nullable=False)
    allowed_roles = Column(JSON, nullable=False, default=list)
    is_active = Column(Boolean, nullable=False, default=True)

    appointments = relationship("Appointment", back_populates="appointment_type")


class Practitioner(Base):
    __tablename__ = "practitioners"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    role = Column(Enum(PractitionerRole), nullable=False)
    phone = Column(String, nullable=True)
    email = Column(String, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    schedules = relationship("Schedule", back_populates="practitioner")
    appointments = relationship("Appointment", back_populates="practitioner")


class Schedule(Base):
    """One weekday of a practitioner's week.

    Rows are never deleted: a superseded row gets ``effective_until`` set and
    the row with ``effective_until IS NULL`` is the current one.
    """

    __tablename__ = "schedules"

    id = Column(Integer, primary_key=True, index=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False, index=True)
    day_of_week = Column(Enum(DayOfWeek), nullable=False)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    is_available = Column(Boolean, nullable=False, default=True)
    break_start = Column(String(5), nullable=True)
    break_end = Column(String(5), nullable=True)
    effective_from = Column(DateTime, nullable=False, default=utcnow)
    effective_until = Column(DateTime, nullable=True)

    practitioner = relationship("Practitioner", back_populates="schedules")


class BusinessHours(Base):
    """Office-wide hours for one weekday, retired the same way as schedules."""

    __tablename__ = "business_hours"

    id = Column(Integer, primary_key=True, index=True)
    day_of_week = Column(Enum(DayOfWeek), nullable=False)
    is_open = Column(Boolean, nullable=False, default=True)
    start_time = Column(String(5), nullable=False)
    end_time = Column(String(5), nullable=False)
    effective_from = Column(DateTime, nullable=False, default=utcnow)
    effective_until = Column(DateTime, nullable=True)


class Appointment(Base):
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True, index=True)

    # Instants, stored as naive UTC
    start_time = Column(DateTime, nullable=False, index=True)
    end_time = Column(DateTime, nullable=False)

    patient_name = Column(String, nullable=False)
    patient_email = Column(String, nullable=False)
    patient_phone = Column(String, nullable=True)
    notes = Column(Text, nullable=True)

    status = Column(Enum(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    practitioner = relationship("Practitioner", back_populates="appointments")

    appointment_type_id = Column(Integer, ForeignKey("appointment_types.id"), nullable=False)
    appointment_type = relationship("AppointmentType", back_populates="appointments")


# One live booking per practitioner and start. Completed and cancelled rows
# stay in the table but no longer hold the slot.
_BLOCKING_SQL = text(
    "status IN ({})".format(", ".join(f"'{status.name}'" for status in BLOCKING_STATUSES))
)

Index(
    "uq_appointment_practitioner_start",
    Appointment.practitioner_id,
    Appointment.start_time,
    unique=True,
    sqlite_where=_BLOCKING_SQL,
    postgresql_where=_BLOCKING_SQL,
)
