"""Administrative settings: appointment types, practitioners, schedules and business hours.

Schedules and business hours are history tables. Saving a new week never
updates or deletes rows in place; the current rows are stamped with
``effective_until`` and the submitted rows are appended in the same commit.
"""

import logging
from typing import Dict, List

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dental_api.errors import DuplicateName, NotFound
from dental_api.models import AppointmentType, BusinessHours, DayOfWeek, Practitioner, Schedule, utcnow
from dental_api.schemas import (
    AppointmentTypeCreate,
    DayHours,
    PractitionerCreate,
    ScheduleEntry,
)

logger = logging.getLogger(__name__)

WEEKDAYS = (
    DayOfWeek.MONDAY,
    DayOfWeek.TUESDAY,
    DayOfWeek.WEDNESDAY,
    DayOfWeek.THURSDAY,
    DayOfWeek.FRIDAY,
)


# --- appointment types ---


def list_appointment_types(db: Session, active_only: bool = False) -> List[AppointmentType]:
    query = db.query(AppointmentType)
    if active_only:
        query = query.filter(AppointmentType.is_active.is_(True))
    return query.order_by(AppointmentType.name).all()


def create_appointment_type(db: Session, payload: AppointmentTypeCreate) -> AppointmentType:
    """Create a new appointment type. Name must be unique."""
    existing = db.query(AppointmentType).filter(AppointmentType.name == payload.name).first()
    if existing:
        raise DuplicateName("Appointment type with that name already exists")

    appt_type = AppointmentType(
        name=payload.name,
        description=payload.description,
        duration_minutes=payload.duration_minutes,
        allowed_roles=[role.value for role in payload.allowed_roles],
        is_active=True,
    )
    db.add(appt_type)
    try:
        db.commit()
    except IntegrityError:
        # Lost a race with another insert of the same name
        db.rollback()
        raise DuplicateName("Appointment type with that name already exists") from None
    db.refresh(appt_type)
    logger.info("Created appointment type %s (%d min)", appt_type.name, appt_type.duration_minutes)
    return appt_type


def set_appointment_type_active(db: Session, appointment_type_id: int, is_active: bool) -> AppointmentType:
    # Types are deactivated, never edited, once appointments reference them
    appt_type = db.query(AppointmentType).filter(AppointmentType.id == appointment_type_id).first()
    if not appt_type:
        raise NotFound("Appointment type not found")
    appt_type.is_active = is_active
    db.commit()
    db.refresh(appt_type)
    return appt_type


# --- practitioners ---


def list_practitioners(db: Session) -> List[Practitioner]:
    return db.query(Practitioner).order_by(Practitioner.name, Practitioner.id).all()


def get_practitioner(db: Session, practitioner_id: int) -> Practitioner:
    practitioner = db.query(Practitioner).filter(Practitioner.id == practitioner_id).first()
    if not practitioner:
        raise NotFound("Practitioner not found")
    return practitioner


def create_practitioner(db: Session, payload: PractitionerCreate) -> Practitioner:
    practitioner = Practitioner(
        name=payload.name,
        role=payload.role,
        phone=payload.phone,
        email=payload.email,
        is_active=True,
    )
    db.add(practitioner)
    db.commit()
    db.refresh(practitioner)
    logger.info("Created practitioner %s (%s)", practitioner.name, practitioner.role.value)
    return practitioner


def set_practitioner_active(db: Session, practitioner_id: int, is_active: bool) -> Practitioner:
    practitioner = get_practitioner(db, practitioner_id)
    practitioner.is_active = is_active
    db.commit()
    db.refresh(practitioner)
    return practitioner


# --- weekly schedules ---


def get_current_schedule(db: Session, practitioner_id: int) -> List[Schedule]:
    get_practitioner(db, practitioner_id)
    rows = (
        db.query(Schedule)
        .filter(Schedule.practitioner_id == practitioner_id, Schedule.effective_until.is_(None))
        .all()
    )
    order = list(DayOfWeek)
    return sorted(rows, key=lambda row: order.index(row.day_of_week))


def replace_schedule(db: Session, practitioner_id: int, entries: List[ScheduleEntry]) -> List[Schedule]:
    """Retire the practitioner's current week and append ``entries`` as the new one."""
    get_practitioner(db, practitioner_id)
    now = utcnow()

    retired = (
        db.query(Schedule)
        .filter(Schedule.practitioner_id == practitioner_id, Schedule.effective_until.is_(None))
        .update({Schedule.effective_until: now}, synchronize_session=False)
    )

    for entry in entries:
        db.add(
            Schedule(
                practitioner_id=practitioner_id,
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
                is_available=entry.is_available,
                break_start=entry.break_start,
                break_end=entry.break_end,
                effective_from=now,
            )
        )

    db.commit()
    logger.info(
        "Practitioner %d schedule replaced: %d retired, %d added", practitioner_id, retired, len(entries)
    )
    return get_current_schedule(db, practitioner_id)


# --- business hours ---


def get_business_hours(db: Session) -> Dict[DayOfWeek, BusinessHours]:
    rows = db.query(BusinessHours).filter(BusinessHours.effective_until.is_(None)).all()
    by_day = {row.day_of_week: row for row in rows}
    return {day: by_day[day] for day in DayOfWeek if day in by_day}


def replace_business_hours(db: Session, hours: Dict[DayOfWeek, DayHours]) -> Dict[DayOfWeek, BusinessHours]:
    """Retire the current record of every submitted day and append the new one.

    Days left out of ``hours`` keep their current record.
    """
    now = utcnow()
    for day, day_hours in hours.items():
        db.query(BusinessHours).filter(
            BusinessHours.day_of_week == day, BusinessHours.effective_until.is_(None)
        ).update({BusinessHours.effective_until: now}, synchronize_session=False)
        db.add(
            BusinessHours(
                day_of_week=day,
                is_open=day_hours.is_open,
                start_time=day_hours.start_time,
                end_time=day_hours.end_time,
                effective_from=now,
            )
        )

    db.commit()
    logger.info("Business hours saved for %s", ", ".join(day.value for day in hours))
    return get_business_hours(db)


def seed_default_business_hours(db: Session) -> bool:
    """Write Mon-Fri 09:00-17:00 and closed weekends if nothing is configured yet."""
    if db.query(BusinessHours).first() is not None:
        return False

    defaults = {day: DayHours(is_open=day in WEEKDAYS) for day in DayOfWeek}
    replace_business_hours(db, defaults)
    return True
