from datetime import date, datetime, timedelta
from typing import Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..core.config import settings
from ..core.exceptions import ConflictError, NotFoundError
from ..core.pagination import PageParams, apply_sort, paginate
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.appointment import AppointmentCreate
from .availability_service import AvailabilityService, DOCTOR_NOT_FOUND
from .notification_service import NotificationService
from .scheduling import can_cancel_appointment, can_transition, parse_date, parse_time

logger = logging.getLogger(__name__)

SLOT_TAKEN = "Time slot is already booked"

SORT_COLUMNS = {
    "date": Appointment.appointment_date,
    "appointment_date": Appointment.appointment_date,
    "time": Appointment.appointment_time,
    "appointment_time": Appointment.appointment_time,
    "status": Appointment.status,
    "created_at": Appointment.created_at,
}

class AppointmentService:
    def __init__(
        self,
        db: Session,
        availability: Optional[AvailabilityService] = None,
        notifier: Optional[NotificationService] = None,
        now: Optional[datetime] = None,
    ):
        self.db = db
        self.availability = availability or AvailabilityService(
            db,
            working_hours=settings.working_hours,
            horizon_months=settings.BOOKING_HORIZON_MONTHS,
        )
        self.notifier = notifier or NotificationService()
        self._now = now

    @property
    def now(self) -> datetime:
        return self._now or datetime.now()

    # Booking
    def book(self, patient: Patient, data: AppointmentCreate) -> Appointment:
        """Create a pending appointment after the slot guard passes.

        The guard and the insert share one session transaction; the partial
        unique index on active slots turns a lost race into a conflict.
        """
        check = self.availability.check_slot_availability(
            data.doctor_id, data.appointment_date, data.appointment_time
        )
        if not check:
            logger.info(
                f"Booking rejected for patient {patient.id}, doctor {data.doctor_id} "
                f"at {data.appointment_date} {data.appointment_time}: {check.reason}"
            )
            if check.reason == DOCTOR_NOT_FOUND:
                raise NotFoundError(check.reason)
            raise ConflictError(check.reason)

        appointment = Appointment(
            patient_id=patient.id,
            doctor_id=data.doctor_id,
            appointment_date=parse_date(data.appointment_date),
            appointment_time=parse_time(data.appointment_time),
            status=AppointmentStatus.PENDING,
            reason=data.reason,
            notes=data.notes,
        )
        self.db.add(appointment)

        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"Concurrent booking lost for doctor {data.doctor_id} "
                f"at {data.appointment_date} {data.appointment_time}"
            )
            raise ConflictError(SLOT_TAKEN)

        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment.id} booked by patient {patient.id}")

        self.notifier.send_appointment_confirmation(appointment, patient, appointment.doctor)
        return appointment

    # Patient-side cancellation
    def cancel_by_patient(
        self,
        patient: Patient,
        appointment_id: int,
        reason: Optional[str] = None
    ) -> Appointment:
        appointment = self.get_for_patient(patient, appointment_id)

        window = timedelta(hours=settings.CANCELLATION_WINDOW_HOURS)
        check = can_cancel_appointment(appointment, now=self.now, window=window)
        if not check:
            logger.info(f"Cancellation of appointment {appointment.id} rejected: {check.reason}")
            raise ConflictError(check.reason)

        self._set_status(appointment, AppointmentStatus.CANCELLED, notes=reason)
        appointment.cancellation_reason = reason
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(f"Appointment {appointment.id} cancelled by patient {patient.id}")

        self.notifier.send_appointment_cancellation(
            appointment, patient, appointment.doctor, reason
        )
        return appointment

    # Doctor-side transitions
    def update_status_by_doctor(
        self,
        doctor: Doctor,
        appointment_id: int,
        status: AppointmentStatus,
        notes: Optional[str] = None
    ) -> Appointment:
        appointment = self.get_for_doctor(doctor, appointment_id)
        current = AppointmentStatus(appointment.status)
        target = AppointmentStatus(status)

        if not can_transition(current, target):
            raise ConflictError(
                f"Cannot change appointment status from {current.value} to {target.value}"
            )

        self._set_status(appointment, target, notes=notes)
        if target == AppointmentStatus.CANCELLED:
            appointment.cancellation_reason = notes
        self.db.commit()
        self.db.refresh(appointment)
        logger.info(
            f"Appointment {appointment.id} moved from {current.value} to {target.value} "
            f"by doctor {doctor.id}"
        )

        if target == AppointmentStatus.CONFIRMED:
            self.notifier.send_appointment_confirmation(appointment, appointment.patient, doctor)
        elif target == AppointmentStatus.CANCELLED:
            self.notifier.send_appointment_cancellation(
                appointment, appointment.patient, doctor, notes
            )
        return appointment

    def _set_status(self, appointment: Appointment, status: AppointmentStatus, notes: Optional[str] = None):
        appointment.status = status
        if notes is not None:
            appointment.notes = notes

    # Lookups
    def _base_query(self):
        return self.db.query(Appointment).options(
            joinedload(Appointment.doctor).joinedload(Doctor.user),
            joinedload(Appointment.patient).joinedload(Patient.user),
        )

    def get_for_patient(self, patient: Patient, appointment_id: int) -> Appointment:
        appointment = self._base_query().filter(
            Appointment.id == appointment_id,
            Appointment.patient_id == patient.id
        ).first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def get_for_doctor(self, doctor: Doctor, appointment_id: int) -> Appointment:
        appointment = self._base_query().filter(
            Appointment.id == appointment_id,
            Appointment.doctor_id == doctor.id
        ).first()
        if not appointment:
            raise NotFoundError("Appointment not found")
        return appointment

    def list_for_patient(self, patient: Patient, params: PageParams, **filters):
        query = self._base_query().filter(Appointment.patient_id == patient.id)
        return self._list(query, params, **filters)

    def list_for_doctor(self, doctor: Doctor, params: PageParams, **filters):
        query = self._base_query().filter(Appointment.doctor_id == doctor.id)
        return self._list(query, params, **filters)

    def list_all(self, params: PageParams, **filters):
        return self._list(self._base_query(), params, **filters)

    def _list(
        self,
        query,
        params: PageParams,
        status: Optional[AppointmentStatus] = None,
        on_date: Optional[date] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ):
        if status is not None:
            query = query.filter(Appointment.status == AppointmentStatus(status))
        if on_date is not None:
            query = query.filter(Appointment.appointment_date == on_date)
        if date_from is not None:
            query = query.filter(Appointment.appointment_date >= date_from)
        if date_to is not None:
            query = query.filter(Appointment.appointment_date <= date_to)

        query = apply_sort(query, params, SORT_COLUMNS, default="appointment_date")
        if params.sort_by in (None, "date", "appointment_date"):
            # Same-day appointments follow the same direction by time
            time_column = Appointment.appointment_time
            query = query.order_by(time_column.asc() if params.sort_order == "asc" else time_column.desc())
        return paginate(query, params)
