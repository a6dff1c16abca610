import re
from datetime import date, datetime, time
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from dental_api.models import AppointmentStatus, DayOfWeek, PractitionerRole

HHMM = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")


def _check_hhmm(value):
    if value is None:
        return value
    if not HHMM.match(value):
        raise ValueError("time must be HH:MM (24-hour)")
    hours, minutes = value.split(":")
    return f"{int(hours):02d}:{minutes}"


def _minutes(value: str) -> int:
    hours, minutes = value.split(":")
    return int(hours) * 60 + int(minutes)


class TimeSlot(BaseModel):
    start_time: datetime
    end_time: datetime
    practitioner_id: int
    practitioner_name: str


# --- Appointment types ---


class AppointmentTypeCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    duration_minutes: int = Field(gt=0)
    allowed_roles: List[PractitionerRole] = Field(min_length=1)


class AppointmentTypeResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: Optional[str] = None
    duration_minutes: int
    allowed_roles: List[PractitionerRole]
    is_active: bool


class ActiveFlag(BaseModel):
    is_active: bool


# --- Practitioners ---


class PractitionerCreate(BaseModel):
    name: str = Field(min_length=1)
    role: PractitionerRole
    phone: Optional[str] = None
    email: Optional[str] = None


class PractitionerResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    role: PractitionerRole
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool


class ScheduleEntry(BaseModel):
    """One weekday of a practitioner's schedule, as submitted by the admin screen."""

    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    is_available: bool = True
    break_start: Optional[str] = None
    break_end: Optional[str] = None

    @field_validator("start_time", "end_time", "break_start", "break_end")
    @classmethod
    def check_hhmm(cls, value):
        return _check_hhmm(value)

    @model_validator(mode="after")
    def check_windows(self):
        if _minutes(self.start_time) >= _minutes(self.end_time):
            raise ValueError("start_time must be before end_time")
        if (self.break_start is None) != (self.break_end is None):
            raise ValueError("break_start and break_end must be given together")
        if self.break_start is not None and _minutes(self.break_start) >= _minutes(self.break_end):
            raise ValueError("break_start must be before break_end")
        return self


class ScheduleUpdate(BaseModel):
    schedule: List[ScheduleEntry]

    @field_validator("schedule")
    @classmethod
    def one_entry_per_day(cls, entries):
        days = [entry.day_of_week for entry in entries]
        if len(days) != len(set(days)):
            raise ValueError("at most one schedule entry per day_of_week")
        return entries


class ScheduleResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    practitioner_id: int
    day_of_week: DayOfWeek
    start_time: str
    end_time: str
    is_available: bool
    break_start: Optional[str] = None
    break_end: Optional[str] = None
    effective_from: datetime


# --- Business hours ---


class DayHours(BaseModel):
    is_open: bool = True
    start_time: str = "09:00"
    end_time: str = "17:00"

    @field_validator("start_time", "end_time")
    @classmethod
    def check_hhmm(cls, value):
        return _check_hhmm(value)

    @model_validator(mode="after")
    def check_window(self):
        if self.is_open and _minutes(self.start_time) >= _minutes(self.end_time):
            raise ValueError("start_time must be before end_time on an open day")
        return self


BusinessHoursMap = Dict[DayOfWeek, DayHours]


# --- Appointments ---


class BookingRequest(BaseModel):
    appointment_type_id: int
    practitioner_id: int
    start_time: datetime
    patient_name: str = Field(min_length=1)
    patient_email: str = Field(min_length=1)
    patient_phone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("start_time")
    @classmethod
    def require_offset(cls, value):
        # Slots are handed out as instants; a naive time cannot be placed
        if value.tzinfo is None:
            raise ValueError("start_time must include a UTC offset")
        return value


class AdminAppointmentCreate(BaseModel):
    """Front-desk booking, by instant or by office wall-clock date and time."""

    appointment_type_id: int
    practitioner_id: int
    start_time: Optional[datetime] = None
    local_date: Optional[date] = None
    local_time: Optional[time] = None
    patient_name: str = Field(min_length=1)
    patient_email: str = Field(min_length=1)
    patient_phone: Optional[str] = None
    notes: Optional[str] = None
    status: AppointmentStatus = AppointmentStatus.PENDING

    @model_validator(mode="after")
    def check_start(self):
        has_instant = self.start_time is not None
        has_local = self.local_date is not None and self.local_time is not None
        if has_instant == has_local:
            raise ValueError("give either start_time or local_date with local_time")
        if has_instant and self.start_time.tzinfo is None:
            raise ValueError("start_time must include a UTC offset")
        if self.status not in (AppointmentStatus.PENDING, AppointmentStatus.SCHEDULED):
            raise ValueError("new appointments must be PENDING or SCHEDULED")
        return self


class AppointmentUpdate(BaseModel):
    """Partial update. Fields left out are untouched; phone and notes may be sent as null to clear them."""

    patient_name: Optional[str] = Field(None, min_length=1)
    patient_email: Optional[str] = Field(None, min_length=1)
    patient_phone: Optional[str] = None
    notes: Optional[str] = None
    status: Optional[AppointmentStatus] = None

    @model_validator(mode="after")
    def check_required_not_cleared(self):
        for field in ("patient_name", "patient_email", "status"):
            if field in self.model_fields_set and getattr(self, field) is None:
                raise ValueError(f"{field} cannot be cleared")
        return self


class AppointmentResponse(BaseModel):
    id: int
    start_time: datetime
    end_time: datetime
    practitioner_id: int
    practitioner_name: str
    appointment_type_id: int
    appointment_type: str
    patient_name: str
    patient_email: str
    patient_phone: Optional[str] = None
    notes: Optional[str] = None
    status: AppointmentStatus


class DashboardSummary(BaseModel):
    day: date
    total_practitioners: int
    today_appointments: int
