from datetime import date, timedelta
from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..models.appointment import Appointment, AppointmentStatus, ACTIVE_STATUSES
from ..models.patient import Patient
from ..schemas.profile import PatientUpdate

logger = logging.getLogger(__name__)

class PatientService:
    def __init__(self, db: Session):
        self.db = db

    def update_profile(self, patient: Patient, data: PatientUpdate) -> Patient:
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(patient, key, value)
        self.db.commit()
        self.db.refresh(patient)
        logger.info(f"Patient {patient.id} updated profile fields")
        return patient

    def get_stats(self, patient: Patient, today: Optional[date] = None) -> dict:
        today = today or date.today()
        base = self.db.query(Appointment).filter(Appointment.patient_id == patient.id)

        by_status = dict(
            self.db.query(Appointment.status, func.count(Appointment.id))
            .filter(Appointment.patient_id == patient.id)
            .group_by(Appointment.status)
            .all()
        )

        return {
            "total_appointments": sum(by_status.values()),
            "upcoming_appointments": base.filter(
                Appointment.appointment_date >= today,
                Appointment.status.in_(ACTIVE_STATUSES)
            ).count(),
            "completed_appointments": by_status.get(AppointmentStatus.COMPLETED, 0),
            "cancelled_appointments": by_status.get(AppointmentStatus.CANCELLED, 0),
            "recent_appointments": base.filter(
                Appointment.appointment_date >= today - timedelta(days=30)
            ).count(),
            "appointments_by_status": {
                AppointmentStatus(status).value: count for status, count in by_status.items()
            },
        }
