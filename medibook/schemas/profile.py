from datetime import date, datetime
from typing import Dict, List, Optional
from pydantic import Field, field_serializer

from .appointment import CamelModel, Pagination

class DoctorResponse(CamelModel):
    id: int
    user_id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    specialization: str
    license_number: str
    qualification: Optional[str] = None
    years_of_experience: Optional[int] = None
    consultation_fee: Optional[float] = None
    bio: Optional[str] = None
    is_available: bool = True
    created_at: Optional[datetime] = None

class DoctorUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    specialization: Optional[str] = Field(None, min_length=2, max_length=100)
    qualification: Optional[str] = Field(None, max_length=255)
    years_of_experience: Optional[int] = Field(None, ge=0, le=70)
    consultation_fee: Optional[float] = Field(None, ge=0)
    bio: Optional[str] = Field(None, max_length=2000)
    is_available: Optional[bool] = None

class DoctorList(CamelModel):
    items: List[DoctorResponse]
    pagination: Pagination

class PatientResponse(CamelModel):
    id: int
    user_id: int
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone_number: Optional[str] = None
    date_of_birth: Optional[date] = None
    gender: Optional[str] = None
    address: Optional[str] = None
    emergency_contact: Optional[str] = None
    blood_group: Optional[str] = None
    allergies: Optional[str] = None
    created_at: Optional[datetime] = None

class PatientUpdate(CamelModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(None, min_length=1, max_length=100)
    phone_number: Optional[str] = Field(None, max_length=20)
    date_of_birth: Optional[date] = None
    gender: Optional[str] = Field(None, max_length=20)
    address: Optional[str] = Field(None, max_length=255)
    emergency_contact: Optional[str] = Field(None, max_length=255)
    blood_group: Optional[str] = Field(None, max_length=10)
    allergies: Optional[str] = Field(None, max_length=255)

class DoctorPatientResponse(PatientResponse):
    appointment_count: int = 0
    last_appointment_date: Optional[date] = None

class DoctorPatientList(CamelModel):
    items: List[DoctorPatientResponse]
    pagination: Pagination

class DoctorStats(CamelModel):
    total_patients: int
    today_appointments: int
    upcoming_appointments: int
    completed_appointments: int
    recent_appointments: int
    appointments_by_status: Dict[str, int]

class PatientStats(CamelModel):
    total_appointments: int
    upcoming_appointments: int
    completed_appointments: int
    cancelled_appointments: int
    recent_appointments: int
    appointments_by_status: Dict[str, int]

class PrescriptionCreate(CamelModel):
    medication_name: str = Field(..., min_length=1, max_length=255)
    dosage: str = Field(..., min_length=1, max_length=100)
    frequency: str = Field(..., min_length=1, max_length=100)
    duration: str = Field(..., min_length=1, max_length=100)
    instructions: Optional[str] = Field(None, max_length=1000)

class PrescriptionResponse(PrescriptionCreate):
    id: int

class MedicalRecordCreate(CamelModel):
    appointment_id: int = Field(..., gt=0)
    diagnosis: str = Field(..., min_length=1, max_length=5000)
    symptoms: Optional[str] = Field(None, max_length=5000)
    prescriptions: List[PrescriptionCreate] = Field(..., min_length=1)

class MedicalRecordResponse(CamelModel):
    id: int
    appointment_id: int
    doctor_id: int
    patient_id: int
    diagnosis: str
    symptoms: Optional[str] = None
    created_at: Optional[datetime] = None
    appointment_date: Optional[date] = None
    appointment_time: Optional[str] = None
    doctor_name: Optional[str] = None
    specialization: Optional[str] = None
    prescriptions: List[PrescriptionResponse] = []

    @field_serializer("appointment_date")
    def serialize_date(self, value: Optional[date]) -> Optional[str]:
        return value.isoformat() if value else None
