from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...api.deps import get_current_doctor, get_appointment_service
from ...core.database import get_db
from ...core.exceptions import NotFoundError
from ...core.pagination import PageParams, page_params
from ...models.appointment import AppointmentStatus
from ...models.doctor import Doctor
from ...schemas.appointment import AppointmentList, AppointmentResponse, AppointmentStatusUpdate
from ...schemas.profile import (
    DoctorList, DoctorPatientList, DoctorPatientResponse, DoctorResponse, DoctorStats,
    DoctorUpdate, MedicalRecordCreate, MedicalRecordResponse
)
from ...services.appointment_service import AppointmentService
from ...services.doctor_service import DoctorService
from ...services.medical_record_service import MedicalRecordService, record_to_dict

router = APIRouter(prefix="/doctors", tags=["Doctors"])

# Doctor workspace
@router.get("/me/profile", response_model=DoctorResponse)
async def get_my_profile(doctor: Doctor = Depends(get_current_doctor)):
    return DoctorResponse.model_validate(doctor)

@router.put("/me/profile", response_model=DoctorResponse)
async def update_my_profile(
    data: DoctorUpdate,
    doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    return DoctorResponse.model_validate(DoctorService(db).update_profile(doctor, data))

@router.get("/me/stats", response_model=DoctorStats)
async def get_my_stats(
    doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    """Dashboard counters for the authenticated doctor."""
    return DoctorService(db).get_stats(doctor)

@router.get("/appointments", response_model=AppointmentList)
async def list_my_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    params: PageParams = Depends(page_params),
    doctor: Doctor = Depends(get_current_doctor),
    service: AppointmentService = Depends(get_appointment_service)
):
    items, pagination = service.list_for_doctor(
        doctor, params,
        status=status_filter, on_date=on_date, date_from=date_from, date_to=date_to
    )
    return {"items": items, "pagination": pagination}

@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_my_appointment(
    appointment_id: int,
    doctor: Doctor = Depends(get_current_doctor),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentResponse.model_validate(service.get_for_doctor(doctor, appointment_id))

@router.put("/appointments/{appointment_id}/status", response_model=AppointmentResponse)
async def update_appointment_status(
    appointment_id: int,
    data: AppointmentStatusUpdate,
    doctor: Doctor = Depends(get_current_doctor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Move an appointment along pending -> confirmed -> completed, or cancel it."""
    appointment = service.update_status_by_doctor(doctor, appointment_id, data.status, data.notes)
    return AppointmentResponse.model_validate(appointment)

@router.get("/patients", response_model=DoctorPatientList)
async def list_my_patients(
    search: Optional[str] = Query(None, max_length=100),
    params: PageParams = Depends(page_params),
    doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    items, pagination = DoctorService(db).list_patients(doctor, params, search=search)
    return {"items": items, "pagination": pagination}

@router.get("/patients/{patient_id}", response_model=DoctorPatientResponse)
async def get_my_patient(
    patient_id: int,
    doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    return DoctorService(db).get_patient(doctor, patient_id)

@router.get("/patients/{patient_id}/medical-records", response_model=List[MedicalRecordResponse])
async def get_patient_medical_records(
    patient_id: int,
    doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    if not DoctorService(db).has_treated(doctor, patient_id):
        raise NotFoundError("Patient not found or not associated with this doctor")

    records = MedicalRecordService(db).list_for_patient(patient_id)
    return [record_to_dict(record) for record in records]

@router.post("/medical-records", response_model=MedicalRecordResponse, status_code=status.HTTP_201_CREATED)
async def create_medical_record(
    data: MedicalRecordCreate,
    doctor: Doctor = Depends(get_current_doctor),
    db: Session = Depends(get_db)
):
    record = MedicalRecordService(db).create_record(doctor, data)
    return record_to_dict(record)

# Public directory
@router.get("", response_model=DoctorList)
async def list_doctors(
    specialization: Optional[str] = Query(None, max_length=100),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db)
):
    items, pagination = DoctorService(db).list_doctors(params, specialization=specialization)
    return {"items": items, "pagination": pagination}

@router.get("/search", response_model=DoctorList)
async def search_doctors(
    q: Optional[str] = Query(None, max_length=100),
    specialization: Optional[str] = Query(None, max_length=100),
    experience_min: Optional[int] = Query(None, ge=0, alias="experienceMin"),
    experience_max: Optional[int] = Query(None, ge=0, alias="experienceMax"),
    fee_min: Optional[float] = Query(None, ge=0, alias="feeMin"),
    fee_max: Optional[float] = Query(None, ge=0, alias="feeMax"),
    params: PageParams = Depends(page_params),
    db: Session = Depends(get_db)
):
    """Search by name or specialization with experience and fee ranges."""
    items, pagination = DoctorService(db).list_doctors(
        params,
        search=q,
        specialization=specialization,
        experience_min=experience_min,
        experience_max=experience_max,
        fee_min=fee_min,
        fee_max=fee_max,
    )
    return {"items": items, "pagination": pagination}

@router.get("/{doctor_id}", response_model=DoctorResponse)
async def get_doctor(doctor_id: int, db: Session = Depends(get_db)):
    return DoctorResponse.model_validate(DoctorService(db).get_doctor(doctor_id))
