from dataclasses import dataclass, field
from datetime import date, time
from typing import List, Optional, Set
import logging

from sqlalchemy.orm import Session

from ..models.appointment import Appointment, ACTIVE_STATUSES
from ..models.doctor import Doctor
from .scheduling import (
    WorkingHours, SlotCheck, DEFAULT_WORKING_HOURS,
    add_months, parse_date, parse_time, format_date, format_time
)

logger = logging.getLogger(__name__)

DOCTOR_NOT_FOUND = "Doctor not found"
DOCTOR_UNAVAILABLE = "Doctor is not accepting new appointments"

@dataclass
class AvailabilityResult:
    available: bool
    slots: List[str] = field(default_factory=list)
    date: Optional[str] = None
    reason: Optional[str] = None
    doctor: Optional[dict] = None

class AvailabilityService:
    """Read-only availability calculator and slot-conflict guard.

    Neither method raises for an expected business violation; both return
    a verdict with a human-readable reason.
    """

    def __init__(
        self,
        db: Session,
        working_hours: WorkingHours = DEFAULT_WORKING_HOURS,
        horizon_months: int = 3,
        today: Optional[date] = None,
    ):
        self.db = db
        self.working_hours = working_hours
        self.horizon_months = horizon_months
        self._today = today

    @property
    def today(self) -> date:
        return self._today or date.today()

    def get_doctor(self, doctor_id: int) -> Optional[Doctor]:
        return self.db.query(Doctor).filter(Doctor.id == doctor_id).first()

    def booked_times(self, doctor_id: int, day: date) -> Set[time]:
        """Times already held by a pending or confirmed appointment."""
        rows = self.db.query(Appointment.appointment_time).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.status.in_(ACTIVE_STATUSES)
        ).all()
        return {row[0].replace(second=0, microsecond=0) for row in rows}

    def is_booked(self, doctor_id: int, day: date, slot: time) -> bool:
        existing = self.db.query(Appointment.id).filter(
            Appointment.doctor_id == doctor_id,
            Appointment.appointment_date == day,
            Appointment.appointment_time == slot,
            Appointment.status.in_(ACTIVE_STATUSES)
        ).first()
        return existing is not None

    def compute_available_slots(self, doctor_id: int, day) -> AvailabilityResult:
        """Free slots of ``doctor_id`` on ``day``: the template minus bookings."""
        doctor = self.get_doctor(doctor_id)
        if not doctor:
            return AvailabilityResult(available=False, reason=DOCTOR_NOT_FOUND)

        if not doctor.is_available:
            return AvailabilityResult(
                available=False, reason=DOCTOR_UNAVAILABLE, doctor=doctor_summary(doctor)
            )

        try:
            requested = parse_date(day)
        except ValueError:
            return AvailabilityResult(available=False, reason="Date must be in YYYY-MM-DD format")

        if requested < self.today:
            return AvailabilityResult(available=False, reason="Date must be in the future")

        if not self.working_hours.is_working_day(requested):
            return AvailabilityResult(
                available=False,
                reason="Appointments are only available on weekdays"
            )

        booked = self.booked_times(doctor_id, requested)
        slots = [
            format_time(slot) for slot in self.working_hours.slots()
            if slot not in booked
        ]

        return AvailabilityResult(
            available=True,
            slots=slots,
            date=format_date(requested),
            doctor=doctor_summary(doctor)
        )

    def check_slot_availability(self, doctor_id: int, day, slot) -> SlotCheck:
        """Validate a booking request; the first failing rule wins."""
        doctor = self.get_doctor(doctor_id)
        if not doctor:
            return SlotCheck(False, DOCTOR_NOT_FOUND)

        if not doctor.is_available:
            return SlotCheck(False, DOCTOR_UNAVAILABLE)

        try:
            requested = parse_date(day)
        except ValueError:
            return SlotCheck(False, "Appointment date must be in YYYY-MM-DD format")

        if requested < self.today:
            return SlotCheck(False, "Appointment date must be in the future")

        if requested > add_months(self.today, self.horizon_months):
            return SlotCheck(
                False,
                f"Appointment date cannot be more than {self.horizon_months} months in the future"
            )

        if not self.working_hours.is_working_day(requested):
            return SlotCheck(
                False,
                f"Appointments are only available on weekdays ({self.working_hours.describe_days()})"
            )

        try:
            requested_time = parse_time(slot)
        except ValueError:
            return SlotCheck(False, "Appointment time must be in HH:MM:SS format")

        if not self.working_hours.covers(requested_time):
            return SlotCheck(
                False,
                f"Appointments are only available between {self.working_hours.describe_hours()}"
            )

        if self.is_booked(doctor_id, requested, requested_time):
            return SlotCheck(False, "Time slot is already booked")

        return SlotCheck(True, "Time slot is available")

def doctor_summary(doctor: Doctor) -> dict:
    fee = doctor.consultation_fee
    return {
        "id": doctor.id,
        "name": doctor.full_name,
        "specialization": doctor.specialization,
        "consultationFee": float(fee) if fee is not None else None,
    }
