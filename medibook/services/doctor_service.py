from datetime import date, timedelta
from typing import Optional
import logging

from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import NotFoundError
from ..core.pagination import PageParams, apply_sort, paginate
from ..models.appointment import Appointment, AppointmentStatus, ACTIVE_STATUSES
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..schemas.profile import DoctorUpdate

logger = logging.getLogger(__name__)

DOCTOR_SORT_COLUMNS = {
    "name": Doctor.last_name,
    "last_name": Doctor.last_name,
    "specialization": Doctor.specialization,
    "experience": Doctor.years_of_experience,
    "years_of_experience": Doctor.years_of_experience,
    "fee": Doctor.consultation_fee,
    "consultation_fee": Doctor.consultation_fee,
    "created_at": Doctor.created_at,
}

PATIENT_SORT_COLUMNS = {
    "name": Patient.last_name,
    "last_name": Patient.last_name,
    "created_at": Patient.created_at,
}

class DoctorService:
    def __init__(self, db: Session):
        self.db = db

    def get_doctor(self, doctor_id: int) -> Doctor:
        doctor = self.db.query(Doctor).options(joinedload(Doctor.user)).filter(
            Doctor.id == doctor_id
        ).first()
        if not doctor:
            raise NotFoundError("Doctor not found")
        return doctor

    def list_doctors(
        self,
        params: PageParams,
        search: Optional[str] = None,
        specialization: Optional[str] = None,
        experience_min: Optional[int] = None,
        experience_max: Optional[int] = None,
        fee_min: Optional[float] = None,
        fee_max: Optional[float] = None,
    ):
        """Public doctor directory with free-text search and range filters."""
        query = self.db.query(Doctor).options(joinedload(Doctor.user))

        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Doctor.first_name.ilike(pattern),
                Doctor.last_name.ilike(pattern),
                Doctor.specialization.ilike(pattern),
            ))
        if specialization:
            query = query.filter(Doctor.specialization.ilike(f"%{specialization.strip()}%"))
        if experience_min is not None:
            query = query.filter(Doctor.years_of_experience >= experience_min)
        if experience_max is not None:
            query = query.filter(Doctor.years_of_experience <= experience_max)
        if fee_min is not None:
            query = query.filter(Doctor.consultation_fee >= fee_min)
        if fee_max is not None:
            query = query.filter(Doctor.consultation_fee <= fee_max)

        query = apply_sort(query, params, DOCTOR_SORT_COLUMNS, default="last_name")
        return paginate(query, params)

    def update_profile(self, doctor: Doctor, data: DoctorUpdate) -> Doctor:
        for key, value in data.model_dump(exclude_unset=True).items():
            setattr(doctor, key, value)
        self.db.commit()
        self.db.refresh(doctor)
        logger.info(f"Doctor {doctor.id} updated profile fields")
        return doctor

    def _patients_query(self, doctor: Doctor):
        return self.db.query(
            Patient,
            func.count(Appointment.id).label("appointment_count"),
            func.max(Appointment.appointment_date).label("last_appointment_date"),
        ).join(
            Appointment, Appointment.patient_id == Patient.id
        ).filter(
            Appointment.doctor_id == doctor.id
        ).group_by(Patient.id)

    def list_patients(self, doctor: Doctor, params: PageParams, search: Optional[str] = None):
        """Patients that have at least one appointment with ``doctor``."""
        query = self._patients_query(doctor)
        if search:
            pattern = f"%{search.strip()}%"
            query = query.filter(or_(
                Patient.first_name.ilike(pattern),
                Patient.last_name.ilike(pattern),
            ))
        query = apply_sort(query, params, PATIENT_SORT_COLUMNS, default="last_name")
        rows, pagination = paginate(query, params)
        return [_patient_row(row) for row in rows], pagination

    def get_patient(self, doctor: Doctor, patient_id: int) -> dict:
        row = self._patients_query(doctor).filter(Patient.id == patient_id).first()
        if not row:
            raise NotFoundError("Patient not found or not associated with this doctor")
        return _patient_row(row)

    def has_treated(self, doctor: Doctor, patient_id: int) -> bool:
        return self.db.query(Appointment.id).filter(
            Appointment.doctor_id == doctor.id,
            Appointment.patient_id == patient_id
        ).first() is not None

    def get_stats(self, doctor: Doctor, today: Optional[date] = None) -> dict:
        today = today or date.today()
        base = self.db.query(Appointment).filter(Appointment.doctor_id == doctor.id)

        by_status = dict(
            self.db.query(Appointment.status, func.count(Appointment.id))
            .filter(Appointment.doctor_id == doctor.id)
            .group_by(Appointment.status)
            .all()
        )

        return {
            "total_patients": base.with_entities(
                func.count(func.distinct(Appointment.patient_id))
            ).scalar() or 0,
            "today_appointments": base.filter(Appointment.appointment_date == today).count(),
            "upcoming_appointments": base.filter(
                Appointment.appointment_date >= today,
                Appointment.status.in_(ACTIVE_STATUSES)
            ).count(),
            "completed_appointments": by_status.get(AppointmentStatus.COMPLETED, 0),
            "recent_appointments": base.filter(
                Appointment.appointment_date >= today - timedelta(days=7)
            ).count(),
            "appointments_by_status": {
                AppointmentStatus(status).value: count for status, count in by_status.items()
            },
        }

def _patient_row(row) -> dict:
    patient, appointment_count, last_appointment_date = row
    return {
        "id": patient.id,
        "user_id": patient.user_id,
        "first_name": patient.first_name,
        "last_name": patient.last_name,
        "email": patient.email,
        "phone_number": patient.phone_number,
        "date_of_birth": patient.date_of_birth,
        "gender": patient.gender,
        "address": patient.address,
        "emergency_contact": patient.emergency_contact,
        "blood_group": patient.blood_group,
        "allergies": patient.allergies,
        "created_at": patient.created_at,
        "appointment_count": appointment_count,
        "last_appointment_date": last_appointment_date,
    }
