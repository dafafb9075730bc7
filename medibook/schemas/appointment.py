from datetime import date, datetime, time
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator
from pydantic.alias_generators import to_camel

from ..models.appointment import AppointmentStatus
from ..services.scheduling import parse_date, validate_time_slot, format_date, format_time
from ..core.config import settings

class CamelModel(BaseModel):
    """Accepts camelCase or snake_case input, serializes as camelCase."""
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

class AppointmentCreate(CamelModel):
    doctor_id: int = Field(..., gt=0)
    appointment_date: str
    appointment_time: str
    reason: Optional[str] = Field(None, min_length=3, max_length=500)
    notes: Optional[str] = Field(None, max_length=1000)

    @field_validator("appointment_date")
    @classmethod
    def date_format(cls, value: str) -> str:
        try:
            parse_date(value)
        except ValueError:
            raise ValueError("Appointment date must be in YYYY-MM-DD format")
        return value

    @field_validator("appointment_time")
    @classmethod
    def time_slot(cls, value: str) -> str:
        check = validate_time_slot(value, settings.working_hours)
        if not check:
            raise ValueError(check.reason)
        return value

class AppointmentCancel(CamelModel):
    reason: Optional[str] = Field(None, min_length=5, max_length=500)

class AppointmentStatusUpdate(CamelModel):
    status: AppointmentStatus
    notes: Optional[str] = Field(None, max_length=1000)

class PersonSummary(CamelModel):
    id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None

class DoctorSummary(PersonSummary):
    specialization: str

class AppointmentResponse(CamelModel):
    id: int
    patient_id: int
    doctor_id: int
    appointment_date: date
    appointment_time: time
    status: AppointmentStatus
    reason: Optional[str] = None
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    patient: Optional[PersonSummary] = None
    doctor: Optional[DoctorSummary] = None

    @field_serializer("appointment_date")
    def serialize_date(self, value: date) -> str:
        return format_date(value)

    @field_serializer("appointment_time")
    def serialize_time(self, value: time) -> str:
        return format_time(value)

class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    pages: int

class AppointmentList(CamelModel):
    items: List[AppointmentResponse]
    pagination: Pagination

class AvailabilityDoctor(CamelModel):
    id: int
    name: str
    specialization: str
    consultation_fee: Optional[float] = None

class AvailabilityResponse(CamelModel):
    available: bool
    slots: List[str]
    date: str
    doctor: AvailabilityDoctor
