"""
Available-slot computation.

The pipeline runs in four stages for one civil date and one appointment type:

1. ``resolve_inputs`` reads the appointment type, the day's business hours and
   every eligible practitioner with their current schedule entry and the
   appointments already holding their time.
2. ``effective_window`` intersects office hours with each practitioner's
   personal hours (wall-clock values).
3. ``filter_candidates`` steps through the window in appointment-sized
   increments and drops the ones that collide with a booking or sit inside the
   practitioner's break.
4. ``assemble_slots`` merges every practitioner's survivors into one list
   ordered by start instant, then practitioner name.

Wall-clock values become instants through ``to_instant`` before stage 3, so
stepping, conflict tests and the emitted slots all work on UTC datetimes.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, List, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from dental_api.config import get_office_timezone
from dental_api.errors import AmbiguousLocalTime, ConfigurationMissing, DataIntegrity, NotFound
from dental_api.models import (
    BLOCKING_STATUSES,
    Appointment,
    AppointmentType,
    BusinessHours,
    DayOfWeek,
    Practitioner,
    PractitionerRole,
    Schedule,
)

logger = logging.getLogger(__name__)

WALL_TIME = re.compile(r"^(\d{1,2}):(\d{2})$")

Window = Tuple[datetime, datetime]


@dataclass
class PractitionerDay:
    """An eligible practitioner with their schedule for the requested weekday."""

    practitioner: Practitioner
    schedule: Schedule
    appointments: List[Appointment] = field(default_factory=list)


@dataclass
class SlotInputs:
    appointment_type: AppointmentType
    day: date
    is_open: bool
    office_start: Optional[time] = None
    office_end: Optional[time] = None
    practitioners: List[PractitionerDay] = field(default_factory=list)


# --- time helpers ---


def parse_wall_time(value, field_name: str = "time") -> time:
    """Parse a stored ``HH:MM`` value, raising DataIntegrity on anything else."""
    match = WALL_TIME.match(value) if isinstance(value, str) else None
    if not match:
        raise DataIntegrity(f"Malformed {field_name}: {value!r}")
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        raise DataIntegrity(f"Malformed {field_name}: {value!r}")
    return time(hours, minutes)


def to_instant(day: date, wall: time, tz: ZoneInfo, strict: bool = False) -> datetime:
    """Convert an office wall-clock time on ``day`` into a UTC instant.

    A time repeated by a fall-back transition resolves to its first occurrence.
    A time skipped by a spring-forward transition is read with the offset in
    force before the jump, which places it just after the gap (02:30 becomes
    03:30 in America/New_York). With ``strict`` both cases raise
    AmbiguousLocalTime instead.
    """
    first = datetime.combine(day, wall, tzinfo=tz)
    second = first.replace(fold=1)
    if first.utcoffset() == second.utcoffset():
        return first.astimezone(timezone.utc)

    round_trip = first.astimezone(timezone.utc).astimezone(tz)
    skipped = round_trip.replace(tzinfo=None) != first.replace(tzinfo=None)
    kind = "does not exist" if skipped else "occurs twice"
    if strict:
        raise AmbiguousLocalTime(f"{day.isoformat()} {wall.strftime('%H:%M')} {kind} in {tz.key}")

    logger.warning("%s %s %s in %s, using earlier offset", day, wall, kind, tz.key)
    return first.astimezone(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """Attach UTC to a stored naive value, or convert an aware one."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def to_naive_utc(value: datetime) -> datetime:
    """Storage form of an instant: naive, in UTC."""
    return as_utc(value).replace(tzinfo=None)


def _allowed_roles(appointment_type: AppointmentType) -> List[PractitionerRole]:
    roles = []
    for raw in appointment_type.allowed_roles or []:
        try:
            roles.append(PractitionerRole(raw))
        except ValueError:
            raise DataIntegrity(
                f"Appointment type {appointment_type.id} has unknown role {raw!r}"
            ) from None
    return roles


# --- 1. inputs ---


def get_active_appointment_type(db: Session, appointment_type_id: int) -> AppointmentType:
    appt_type = db.query(AppointmentType).filter(AppointmentType.id == appointment_type_id).first()
    if not appt_type or not appt_type.is_active:
        raise NotFound("Appointment type not found")
    return appt_type


def current_business_hours(db: Session, day_of_week: DayOfWeek) -> BusinessHours:
    rows = (
        db.query(BusinessHours)
        .filter(BusinessHours.day_of_week == day_of_week, BusinessHours.effective_until.is_(None))
        .all()
    )
    if not rows:
        raise ConfigurationMissing(f"No business hours configured for {day_of_week.value}")
    if len(rows) > 1:
        raise DataIntegrity(f"{len(rows)} current business-hours records for {day_of_week.value}")
    return rows[0]


def current_schedule_entry(db: Session, practitioner_id: int, day_of_week: DayOfWeek) -> Optional[Schedule]:
    rows = (
        db.query(Schedule)
        .filter(
            Schedule.practitioner_id == practitioner_id,
            Schedule.day_of_week == day_of_week,
            Schedule.effective_until.is_(None),
        )
        .all()
    )
    if len(rows) > 1:
        raise DataIntegrity(
            f"Practitioner {practitioner_id} has {len(rows)} current schedules for {day_of_week.value}"
        )
    return rows[0] if rows else None


def blocking_appointments(db: Session, practitioner_id: int, window: Window) -> List[Appointment]:
    """PENDING and SCHEDULED appointments of a practitioner overlapping ``window``."""
    start, end = window
    return (
        db.query(Appointment)
        .filter(
            Appointment.practitioner_id == practitioner_id,
            Appointment.status.in_(BLOCKING_STATUSES),
            Appointment.start_time < to_naive_utc(end),
            Appointment.end_time > to_naive_utc(start),
        )
        .order_by(Appointment.start_time)
        .all()
    )


def resolve_inputs(db: Session, day: date, appointment_type_id: int, tz: ZoneInfo) -> SlotInputs:
    appt_type = get_active_appointment_type(db, appointment_type_id)
    day_of_week = DayOfWeek.for_date(day)

    hours = current_business_hours(db, day_of_week)
    if not hours.is_open:
        logger.info("Office closed on %s (%s)", day, day_of_week.value)
        return SlotInputs(appointment_type=appt_type, day=day, is_open=False)

    office_start = parse_wall_time(hours.start_time, "business hours start")
    office_end = parse_wall_time(hours.end_time, "business hours end")
    if office_start >= office_end:
        raise DataIntegrity(f"Business hours for {day_of_week.value} start at or after they end")

    inputs = SlotInputs(
        appointment_type=appt_type,
        day=day,
        is_open=True,
        office_start=office_start,
        office_end=office_end,
    )

    roles = _allowed_roles(appt_type)
    if not roles:
        return inputs

    practitioners = (
        db.query(Practitioner)
        .filter(Practitioner.is_active.is_(True), Practitioner.role.in_(roles))
        .order_by(Practitioner.name, Practitioner.id)
        .all()
    )
    logger.debug("Found %d practitioners for %s", len(practitioners), appt_type.name)

    office_window = (to_instant(day, office_start, tz), to_instant(day, office_end, tz))
    for practitioner in practitioners:
        schedule = current_schedule_entry(db, practitioner.id, day_of_week)
        if schedule is None:
            logger.debug("No schedule for %s on %s", practitioner.name, day_of_week.value)
            continue
        if not schedule.is_available:
            logger.debug("%s is unavailable on %s", practitioner.name, day_of_week.value)
            continue
        inputs.practitioners.append(
            PractitionerDay(
                practitioner=practitioner,
                schedule=schedule,
                appointments=blocking_appointments(db, practitioner.id, office_window),
            )
        )

    return inputs


# --- 2. window intersection ---


def effective_window(office: Tuple[time, time], schedule: Tuple[time, time]) -> Optional[Tuple[time, time]]:
    """Intersect office hours with a practitioner's hours; None when empty."""
    start = max(office[0], schedule[0])
    end = min(office[1], schedule[1])
    if start >= end:
        return None
    return start, end


# --- 3. conflict and break filter ---


def _overlaps(start: datetime, end: datetime, other: Window) -> bool:
    # Half-open intervals: touching ends are not a conflict
    return start < other[1] and end > other[0]


def filter_candidates(
    window_start: datetime,
    window_end: datetime,
    duration_minutes: int,
    booked: Iterable[Window],
    break_window: Optional[Window] = None,
) -> List[Window]:
    """Step through the window and keep the increments free to book.

    A trailing increment that would run past ``window_end`` is dropped. An
    increment is excluded if it overlaps a booking, or if it lies entirely
    inside the break; partial overlap with the break is allowed.
    """
    if duration_minutes <= 0:
        raise DataIntegrity(f"Appointment duration must be positive, got {duration_minutes}")

    step = timedelta(minutes=duration_minutes)
    booked = list(booked)
    free = []

    current = window_start
    while current + step <= window_end:
        slot_end = current + step

        conflict = any(_overlaps(current, slot_end, appt) for appt in booked)
        on_break = (
            break_window is not None
            and current >= break_window[0]
            and slot_end <= break_window[1]
        )

        if not conflict and not on_break:
            free.append((current, slot_end))

        current = slot_end

    return free


# --- 4. assembly ---


def _slot_sort_key(slot: dict):
    return slot["start_time"], slot["practitioner_name"], slot["practitioner_id"]


def assemble_slots(slots: Iterable[dict]) -> List[dict]:
    return sorted(slots, key=_slot_sort_key)


def _break_window(schedule: Schedule, day: date, tz: ZoneInfo) -> Optional[Window]:
    if schedule.break_start is None and schedule.break_end is None:
        return None
    if schedule.break_start is None or schedule.break_end is None:
        raise DataIntegrity(f"Schedule {schedule.id} has only one end of its break")

    break_start = parse_wall_time(schedule.break_start, "break start")
    break_end = parse_wall_time(schedule.break_end, "break end")
    if break_start >= break_end:
        raise DataIntegrity(f"Schedule {schedule.id} break starts at or after it ends")
    return to_instant(day, break_start, tz), to_instant(day, break_end, tz)


def practitioner_slots(entry: PractitionerDay, inputs: SlotInputs, tz: ZoneInfo) -> List[dict]:
    schedule = entry.schedule
    sched_start = parse_wall_time(schedule.start_time, "schedule start")
    sched_end = parse_wall_time(schedule.end_time, "schedule end")
    if sched_start >= sched_end:
        raise DataIntegrity(f"Schedule {schedule.id} starts at or after it ends")

    window = effective_window((inputs.office_start, inputs.office_end), (sched_start, sched_end))
    if window is None:
        logger.debug("Empty effective window for %s", entry.practitioner.name)
        return []

    booked = [(as_utc(a.start_time), as_utc(a.end_time)) for a in entry.appointments]
    free = filter_candidates(
        to_instant(inputs.day, window[0], tz),
        to_instant(inputs.day, window[1], tz),
        inputs.appointment_type.duration_minutes,
        booked,
        _break_window(schedule, inputs.day, tz),
    )

    return [
        {
            "start_time": start,
            "end_time": end,
            "practitioner_id": entry.practitioner.id,
            "practitioner_name": entry.practitioner.name,
        }
        for start, end in free
    ]


def get_available_slots(
    db: Session,
    day: date,
    appointment_type_id: int,
    tz: Optional[ZoneInfo] = None,
) -> List[dict]:
    """Bookable slots for ``appointment_type_id`` on the civil date ``day``.

    Returns an empty list for a closed day, a fully booked day or a type with
    no eligible practitioners.
    """
    tz = tz or get_office_timezone()
    inputs = resolve_inputs(db, day, appointment_type_id, tz)
    if not inputs.is_open:
        return []

    slots = []
    for entry in inputs.practitioners:
        slots.extend(practitioner_slots(entry, inputs, tz))

    slots = assemble_slots(slots)
    logger.info("Returning %d available slots for %s", len(slots), day)
    return slots
