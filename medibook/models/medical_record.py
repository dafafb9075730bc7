from sqlalchemy import Column, Integer, String, ForeignKey, DateTime, Text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class MedicalRecord(Base):
    __tablename__ = "medical_records"

    id = Column(Integer, primary_key=True, index=True)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("patients.id"), nullable=False, index=True)

    diagnosis = Column(Text, nullable=False)
    symptoms = Column(Text, nullable=True)

    # Records are written once; there is no updated_at
    created_at = Column(DateTime, server_default=func.now())

    # Relationships
    appointment = relationship("Appointment", back_populates="medical_records")
    doctor = relationship("Doctor")
    patient = relationship("Patient")
    prescriptions = relationship(
        "Prescription",
        back_populates="medical_record",
        cascade="all, delete-orphan",
        order_by="Prescription.id",
    )

    def __repr__(self):
        return f"<MedicalRecord(id={self.id}, appointment_id={self.appointment_id}, patient_id={self.patient_id})>"

class Prescription(Base):
    __tablename__ = "prescriptions"

    id = Column(Integer, primary_key=True, index=True)
    medical_record_id = Column(Integer, ForeignKey("medical_records.id"), nullable=False, index=True)

    medication_name = Column(String(255), nullable=False)
    dosage = Column(String(100), nullable=False)
    frequency = Column(String(100), nullable=False)
    duration = Column(String(100), nullable=False)
    instructions = Column(Text, nullable=True)

    created_at = Column(DateTime, server_default=func.now())

    medical_record = relationship("MedicalRecord", back_populates="prescriptions")

    def __repr__(self):
        return f"<Prescription(id={self.id}, medication='{self.medication_name}')>"
