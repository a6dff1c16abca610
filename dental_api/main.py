import logging
from contextlib import asynccontextmanager
from datetime import date, datetime
from typing import Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.orm import Session

from dental_api import booking, office_settings
from dental_api.config import LOG_LEVEL
from dental_api.database import Base, SessionLocal, engine, get_db
from dental_api.errors import DataIntegrity, SchedulingError
from dental_api.models import Appointment, AppointmentStatus, DayOfWeek
from dental_api.scheduler import as_utc, get_available_slots, parse_wall_time
from dental_api.schemas import (
    ActiveFlag,
    AdminAppointmentCreate,
    AppointmentResponse,
    AppointmentTypeCreate,
    AppointmentTypeResponse,
    AppointmentUpdate,
    BookingRequest,
    BusinessHoursMap,
    DashboardSummary,
    DayHours,
    PractitionerCreate,
    PractitionerResponse,
    ScheduleResponse,
    ScheduleUpdate,
    TimeSlot,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def init_database():
    # Create tables
    Base.metadata.create_all(bind=engine)
    db = SessionLocal()
    try:
        if office_settings.seed_default_business_hours(db):
            logger.info("Seeded default business hours")
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    init_database()
    yield


app = FastAPI(title="Dental Office Scheduling API", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_error_handler(request: Request, exc: SchedulingError):
    if isinstance(exc, DataIntegrity):
        logger.error("Data integrity error on %s: %s", request.url.path, exc.message)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__},
    )


def parse_date(value: str) -> date:
    """Accept YYYY-MM-DD, a quoted date, or a full ISO datetime (date part)."""
    # Clients sometimes send the date wrapped in quotes (%22...%22)
    raw = value.strip()
    if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in "\"'":
        raw = raw[1:-1]

    try:
        return datetime.strptime(raw, "%Y-%m-%d").date()
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(raw).date()
    except ValueError:
        raise HTTPException(status_code=422, detail="date must be YYYY-MM-DD or ISO format")


def appointment_response(appt: Appointment) -> AppointmentResponse:
    return AppointmentResponse(
        id=appt.id,
        start_time=as_utc(appt.start_time),
        end_time=as_utc(appt.end_time),
        practitioner_id=appt.practitioner_id,
        practitioner_name=appt.practitioner.name,
        appointment_type_id=appt.appointment_type_id,
        appointment_type=appt.appointment_type.name,
        patient_name=appt.patient_name,
        patient_email=appt.patient_email,
        patient_phone=appt.patient_phone,
        notes=appt.notes,
        status=appt.status,
    )


def business_hours_response(rows) -> Dict[DayOfWeek, DayHours]:
    hours = {}
    for day, row in rows.items():
        try:
            hours[day] = DayHours(is_open=row.is_open, start_time=row.start_time, end_time=row.end_time)
        except ValidationError:
            raise DataIntegrity(
                f"Stored business hours for {day.value} are invalid: {row.start_time!r}-{row.end_time!r}"
            ) from None
    return hours


def schedule_response(rows):
    for row in rows:
        label = f"{row.day_of_week.value} schedule"
        parse_wall_time(row.start_time, f"{label} start")
        parse_wall_time(row.end_time, f"{label} end")
        if row.break_start is not None or row.break_end is not None:
            parse_wall_time(row.break_start, f"{label} break start")
            parse_wall_time(row.break_end, f"{label} break end")
    return rows


# --- availability and booking ---


@app.get("/api/available-slots", response_model=List[TimeSlot])
def available_slots(date: str, appointment_type_id: int, db: Session = Depends(get_db)):
    return get_available_slots(db, parse_date(date), appointment_type_id)


@app.post("/api/appointments", response_model=AppointmentResponse, status_code=201)
def book(req: BookingRequest, db: Session = Depends(get_db)):
    return appointment_response(booking.create_appointment(db, req))


@app.get("/api/public/appointment-types", response_model=List[AppointmentTypeResponse])
def public_appointment_types(db: Session = Depends(get_db)):
    """Active appointment types, for the booking form."""
    return office_settings.list_appointment_types(db, active_only=True)


# --- admin appointments ---


@app.get("/api/admin/appointments", response_model=List[AppointmentResponse])
def list_appointments(
    date: Optional[str] = None,
    appointment_type_id: Optional[int] = None,
    status: Optional[AppointmentStatus] = None,
    db: Session = Depends(get_db),
):
    """Return appointments. Optional filters: office-local date, appointment type, status."""
    day = parse_date(date) if date else None
    appointments = booking.list_appointments(db, day, appointment_type_id, status)
    return [appointment_response(a) for a in appointments]


@app.post("/api/admin/appointments", response_model=AppointmentResponse, status_code=201)
def create_admin_appointment(req: AdminAppointmentCreate, db: Session = Depends(get_db)):
    return appointment_response(booking.create_admin_appointment(db, req))


@app.get("/api/admin/appointments/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
    return appointment_response(booking.get_appointment(db, appointment_id))


@app.patch("/api/admin/appointments/{appointment_id}", response_model=AppointmentResponse)
def update_appointment(appointment_id: int, changes: AppointmentUpdate, db: Session = Depends(get_db)):
    return appointment_response(booking.update_appointment(db, appointment_id, changes))


@app.get("/api/admin/dashboard", response_model=DashboardSummary)
def dashboard(db: Session = Depends(get_db)):
    """Active practitioners and today's scheduled appointments, in office-local time."""
    return booking.dashboard_summary(db)


# --- settings: appointment types ---


@app.get("/api/settings/appointment-types", response_model=List[AppointmentTypeResponse])
def list_appointment_types(db: Session = Depends(get_db)):
    """Return all appointment types, active or not."""
    return office_settings.list_appointment_types(db)


@app.post("/api/settings/appointment-types", response_model=AppointmentTypeResponse, status_code=201)
def create_appointment_type(payload: AppointmentTypeCreate, db: Session = Depends(get_db)):
    """Create a new appointment type. Name must be unique."""
    return office_settings.create_appointment_type(db, payload)


@app.patch("/api/settings/appointment-types/{appointment_type_id}", response_model=AppointmentTypeResponse)
def set_appointment_type_active(appointment_type_id: int, payload: ActiveFlag, db: Session = Depends(get_db)):
    return office_settings.set_appointment_type_active(db, appointment_type_id, payload.is_active)


# --- settings: practitioners and schedules ---


@app.get("/api/settings/practitioners", response_model=List[PractitionerResponse])
def list_practitioners(db: Session = Depends(get_db)):
    return office_settings.list_practitioners(db)


@app.post("/api/settings/practitioners", response_model=PractitionerResponse, status_code=201)
def create_practitioner(payload: PractitionerCreate, db: Session = Depends(get_db)):
    return office_settings.create_practitioner(db, payload)


@app.patch("/api/settings/practitioners/{practitioner_id}", response_model=PractitionerResponse)
def set_practitioner_active(practitioner_id: int, payload: ActiveFlag, db: Session = Depends(get_db)):
    return office_settings.set_practitioner_active(db, practitioner_id, payload.is_active)


@app.get("/api/settings/practitioners/{practitioner_id}/schedule", response_model=List[ScheduleResponse])
def get_schedule(practitioner_id: int, db: Session = Depends(get_db)):
    return schedule_response(office_settings.get_current_schedule(db, practitioner_id))


@app.post("/api/settings/practitioners/{practitioner_id}/schedule", response_model=List[ScheduleResponse])
def replace_schedule(practitioner_id: int, payload: ScheduleUpdate, db: Session = Depends(get_db)):
    return office_settings.replace_schedule(db, practitioner_id, payload.schedule)


# --- settings: business hours ---


@app.get("/api/settings/business-hours", response_model=BusinessHoursMap)
def get_business_hours(db: Session = Depends(get_db)):
    return business_hours_response(office_settings.get_business_hours(db))


@app.post("/api/settings/business-hours", response_model=BusinessHoursMap)
def replace_business_hours(payload: BusinessHoursMap, db: Session = Depends(get_db)):
    return business_hours_response(office_settings.replace_business_hours(db, payload))
