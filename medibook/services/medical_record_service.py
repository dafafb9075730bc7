from typing import List
import logging

from sqlalchemy.orm import Session, joinedload

from ..core.exceptions import ConflictError, NotFoundError
from ..models.appointment import Appointment, AppointmentStatus
from ..models.doctor import Doctor
from ..models.medical_record import MedicalRecord, Prescription
from ..models.patient import Patient
from ..schemas.profile import MedicalRecordCreate
from .scheduling import format_time

logger = logging.getLogger(__name__)

# A record documents a visit that the doctor has at least confirmed
RECORDABLE_STATUSES = (AppointmentStatus.CONFIRMED, AppointmentStatus.COMPLETED)

class MedicalRecordService:
    def __init__(self, db: Session):
        self.db = db

    def create_record(self, doctor: Doctor, data: MedicalRecordCreate) -> MedicalRecord:
        """Write a record and its prescriptions in one transaction."""
        appointment = self.db.query(Appointment).filter(
            Appointment.id == data.appointment_id,
            Appointment.doctor_id == doctor.id
        ).first()
        if not appointment:
            raise NotFoundError("Appointment not found or not associated with this doctor")

        if AppointmentStatus(appointment.status) not in RECORDABLE_STATUSES:
            raise ConflictError(
                "Medical records can only be created for confirmed or completed appointments"
            )

        record = MedicalRecord(
            appointment_id=appointment.id,
            doctor_id=doctor.id,
            patient_id=appointment.patient_id,
            diagnosis=data.diagnosis,
            symptoms=data.symptoms,
            prescriptions=[
                Prescription(**prescription.model_dump())
                for prescription in data.prescriptions
            ],
        )

        try:
            self.db.add(record)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.db.refresh(record)
        logger.info(
            f"Medical record {record.id} created by doctor {doctor.id} "
            f"for appointment {appointment.id}"
        )
        return record

    def _query(self):
        return self.db.query(MedicalRecord).options(
            joinedload(MedicalRecord.appointment),
            joinedload(MedicalRecord.doctor),
            joinedload(MedicalRecord.prescriptions),
        )

    def list_for_patient(self, patient_id: int) -> List[MedicalRecord]:
        return self._query().filter(
            MedicalRecord.patient_id == patient_id
        ).order_by(MedicalRecord.created_at.desc(), MedicalRecord.id.desc()).all()

    def get_for_patient(self, patient: Patient, record_id: int) -> MedicalRecord:
        record = self._query().filter(
            MedicalRecord.id == record_id,
            MedicalRecord.patient_id == patient.id
        ).first()
        if not record:
            raise NotFoundError("Medical record not found")
        return record

def record_to_dict(record: MedicalRecord) -> dict:
    appointment = record.appointment
    doctor = record.doctor
    return {
        "id": record.id,
        "appointment_id": record.appointment_id,
        "doctor_id": record.doctor_id,
        "patient_id": record.patient_id,
        "diagnosis": record.diagnosis,
        "symptoms": record.symptoms,
        "created_at": record.created_at,
        "appointment_date": appointment.appointment_date if appointment else None,
        "appointment_time": format_time(appointment.appointment_time) if appointment else None,
        "doctor_name": doctor.full_name if doctor else None,
        "specialization": doctor.specialization if doctor else None,
        "prescriptions": [
            {
                "id": p.id,
                "medication_name": p.medication_name,
                "dosage": p.dosage,
                "frequency": p.frequency,
                "duration": p.duration,
                "instructions": p.instructions,
            }
            for p in record.prescriptions
        ],
    }
