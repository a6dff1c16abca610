import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import List, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from dental_api.config import get_office_timezone
from dental_api.errors import InvalidStatusTransition, NotFound, SlotUnavailable
from dental_api.models import Appointment, AppointmentStatus, Practitioner
from dental_api.scheduler import (
    as_utc,
    blocking_appointments,
    get_active_appointment_type,
    get_available_slots,
    to_instant,
    to_naive_utc,
)
from dental_api.schemas import AdminAppointmentCreate, AppointmentUpdate, BookingRequest

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED)


def _active_practitioner(db: Session, practitioner_id: int) -> Practitioner:
    practitioner = db.query(Practitioner).filter(Practitioner.id == practitioner_id).first()
    if not practitioner or not practitioner.is_active:
        raise NotFound("Practitioner not found")
    return practitioner


def _insert(db: Session, appointment: Appointment) -> Appointment:
    db.add(appointment)
    try:
        db.commit()
    except IntegrityError:
        # Another booking took the same practitioner and start first
        db.rollback()
        raise SlotUnavailable("Slot not available") from None
    db.refresh(appointment)
    return appointment


def create_appointment(db: Session, req: BookingRequest, tz: Optional[ZoneInfo] = None) -> Appointment:
    """Book a slot offered by the availability endpoint.

    Availability is recomputed right before the insert; the partial unique
    (practitioner, start) index catches a booking that lands between the two.
    """
    tz = tz or get_office_timezone()
    appt_type = get_active_appointment_type(db, req.appointment_type_id)
    practitioner = _active_practitioner(db, req.practitioner_id)

    start = as_utc(req.start_time)
    if start < datetime.now(timezone.utc):
        raise SlotUnavailable("Cannot book appointments in the past")
    end = start + timedelta(minutes=appt_type.duration_minutes)
    office_day = start.astimezone(tz).date()

    slots = get_available_slots(db, office_day, appt_type.id, tz)
    offered = any(
        slot["practitioner_id"] == practitioner.id and slot["start_time"] == start
        for slot in slots
    )
    if not offered:
        raise SlotUnavailable("Slot not available")

    appointment = _insert(
        db,
        Appointment(
            start_time=to_naive_utc(start),
            end_time=to_naive_utc(end),
            patient_name=req.patient_name,
            patient_email=req.patient_email,
            patient_phone=req.patient_phone,
            notes=req.notes,
            status=AppointmentStatus.PENDING,
            practitioner_id=practitioner.id,
            appointment_type_id=appt_type.id,
        ),
    )
    logger.info("Booked appointment %d for %s at %s", appointment.id, practitioner.name, start.isoformat())
    return appointment


def create_admin_appointment(
    db: Session, req: AdminAppointmentCreate, tz: Optional[ZoneInfo] = None
) -> Appointment:
    """Front-desk entry. Skips schedule checks but never double-books."""
    tz = tz or get_office_timezone()
    appt_type = get_active_appointment_type(db, req.appointment_type_id)
    practitioner = _active_practitioner(db, req.practitioner_id)

    if req.start_time is not None:
        start = as_utc(req.start_time)
    else:
        start = to_instant(req.local_date, req.local_time, tz, strict=True)
    end = start + timedelta(minutes=appt_type.duration_minutes)

    if blocking_appointments(db, practitioner.id, (start, end)):
        raise SlotUnavailable(f"{practitioner.name} already has an appointment at that time")

    appointment = _insert(
        db,
        Appointment(
            start_time=to_naive_utc(start),
            end_time=to_naive_utc(end),
            patient_name=req.patient_name,
            patient_email=req.patient_email,
            patient_phone=req.patient_phone,
            notes=req.notes,
            status=req.status,
            practitioner_id=practitioner.id,
            appointment_type_id=appt_type.id,
        ),
    )
    logger.info("Admin created appointment %d (%s)", appointment.id, appointment.status.value)
    return appointment


def office_day_bounds(day: date, tz: ZoneInfo):
    """Naive-UTC bounds of one office-local civil day, for filtering stored instants."""
    day_start = datetime.combine(day, time.min, tzinfo=tz)
    day_end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return to_naive_utc(day_start), to_naive_utc(day_end)


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if not appointment:
        raise NotFound("Appointment not found")
    return appointment


def list_appointments(
    db: Session,
    day: Optional[date] = None,
    appointment_type_id: Optional[int] = None,
    status: Optional[AppointmentStatus] = None,
    tz: Optional[ZoneInfo] = None,
) -> List[Appointment]:
    """Appointments ordered by start. ``day`` is an office-local civil date."""
    query = db.query(Appointment)

    if day:
        day_start, day_end = office_day_bounds(day, tz or get_office_timezone())
        query = query.filter(Appointment.start_time >= day_start, Appointment.start_time < day_end)

    if appointment_type_id:
        query = query.filter(Appointment.appointment_type_id == appointment_type_id)

    if status:
        query = query.filter(Appointment.status == status)

    return query.order_by(Appointment.start_time, Appointment.id).all()


def update_appointment(db: Session, appointment_id: int, changes: AppointmentUpdate) -> Appointment:
    """Edit patient details and move the status along.

    COMPLETED and CANCELLED are final; every other move is allowed.
    """
    appointment = get_appointment(db, appointment_id)
    data = changes.model_dump(exclude_unset=True)

    new_status = data.get("status")
    if new_status is not None and new_status != appointment.status:
        if appointment.status in TERMINAL_STATUSES:
            raise InvalidStatusTransition(
                f"Cannot move a {appointment.status.value} appointment to {new_status.value}"
            )
        logger.info(
            "Appointment %d: %s -> %s", appointment.id, appointment.status.value, new_status.value
        )

    for key, value in data.items():
        setattr(appointment, key, value)

    db.commit()
    db.refresh(appointment)
    return appointment


def dashboard_summary(db: Session, today: Optional[date] = None, tz: Optional[ZoneInfo] = None) -> dict:
    """Active practitioner count and today's SCHEDULED appointments.

    ``today`` defaults to the current civil date in the office zone.
    """
    tz = tz or get_office_timezone()
    today = today or datetime.now(tz).date()
    day_start, day_end = office_day_bounds(today, tz)

    practitioners = db.query(Practitioner).filter(Practitioner.is_active.is_(True)).count()
    appointments = (
        db.query(Appointment)
        .filter(
            Appointment.status == AppointmentStatus.SCHEDULED,
            Appointment.start_time >= day_start,
            Appointment.start_time < day_end,
        )
        .count()
    )
    return {"day": today, "total_practitioners": practitioners, "today_appointments": appointments}
