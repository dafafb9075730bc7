from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from ...api.deps import (
    get_current_patient, get_appointment_service, get_availability_service
)
from ...core.database import get_db
from ...core.exceptions import BadRequestError, NotFoundError
from ...core.pagination import PageParams, page_params
from ...models.appointment import AppointmentStatus
from ...models.patient import Patient
from ...schemas.appointment import (
    AppointmentCancel, AppointmentCreate, AppointmentList, AppointmentResponse,
    AvailabilityResponse
)
from ...schemas.profile import (
    DoctorList, MedicalRecordResponse, PatientResponse, PatientStats, PatientUpdate
)
from ...services.appointment_service import AppointmentService
from ...services.availability_service import AvailabilityService, DOCTOR_NOT_FOUND
from ...services.doctor_service import DoctorService
from ...services.medical_record_service import MedicalRecordService, record_to_dict
from ...services.patient_service import PatientService

router = APIRouter(prefix="/patients", tags=["Patients"])

@router.get("/profile", response_model=PatientResponse)
async def get_profile(patient: Patient = Depends(get_current_patient)):
    """Profile of the authenticated patient."""
    return PatientResponse.model_validate(patient)

@router.put("/profile", response_model=PatientResponse)
async def update_profile(
    data: PatientUpdate,
    patient: Patient = Depends(get_current_patient),
    db: Session = Depends(get_db)
):
    return PatientResponse.model_validate(PatientService(db).update_profile(patient, data))

@router.get("/stats", response_model=PatientStats)
async def get_stats(
    patient: Patient = Depends(get_current_patient),
    db: Session = Depends(get_db)
):
    return PatientService(db).get_stats(patient)

# Appointments
@router.post("/appointments", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
async def book_appointment(
    data: AppointmentCreate,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Book a pending appointment; 409 carries the reason a slot was refused."""
    appointment = service.book(patient, data)
    return AppointmentResponse.model_validate(appointment)

@router.get("/appointments", response_model=AppointmentList)
async def list_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    params: PageParams = Depends(page_params),
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service)
):
    items, pagination = service.list_for_patient(
        patient, params,
        status=status_filter, on_date=on_date, date_from=date_from, date_to=date_to
    )
    return {"items": items, "pagination": pagination}

@router.get("/appointments/{appointment_id}", response_model=AppointmentResponse)
async def get_appointment(
    appointment_id: int,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentResponse.model_validate(service.get_for_patient(patient, appointment_id))

@router.put("/appointments/{appointment_id}/cancel", response_model=AppointmentResponse)
async def cancel_appointment(
    appointment_id: int,
    data: Optional[AppointmentCancel] = None,
    patient: Patient = Depends(get_current_patient),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel a pending appointment more than the cancellation window ahead."""
    reason = data.reason if data else None
    appointment = service.cancel_by_patient(patient, appointment_id, reason)
    return AppointmentResponse.model_validate(appointment)

# Doctors
@router.get("/doctors", response_model=DoctorList)
async def list_doctors(
    search: Optional[str] = Query(None, max_length=100),
    specialization: Optional[str] = Query(None, max_length=100),
    params: PageParams = Depends(page_params),
    _: Patient = Depends(get_current_patient),
    db: Session = Depends(get_db)
):
    items, pagination = DoctorService(db).list_doctors(
        params, search=search, specialization=specialization
    )
    return {"items": items, "pagination": pagination}

@router.get("/doctors/{doctor_id}/availability", response_model=AvailabilityResponse)
async def get_doctor_availability(
    doctor_id: int,
    day: str = Query(..., alias="date", description="YYYY-MM-DD"),
    _: Patient = Depends(get_current_patient),
    availability: AvailabilityService = Depends(get_availability_service)
):
    """Free slots for a doctor on one day."""
    result = availability.compute_available_slots(doctor_id, day)
    if not result.available:
        if result.reason == DOCTOR_NOT_FOUND:
            raise NotFoundError(result.reason)
        raise BadRequestError(result.reason)

    return {
        "available": result.available,
        "slots": result.slots,
        "date": result.date,
        "doctor": result.doctor,
    }

# Medical records
@router.get("/medical-records", response_model=List[MedicalRecordResponse])
async def list_medical_records(
    patient: Patient = Depends(get_current_patient),
    db: Session = Depends(get_db)
):
    records = MedicalRecordService(db).list_for_patient(patient.id)
    return [record_to_dict(record) for record in records]

@router.get("/medical-records/{record_id}", response_model=MedicalRecordResponse)
async def get_medical_record(
    record_id: int,
    patient: Patient = Depends(get_current_patient),
    db: Session = Depends(get_db)
):
    return record_to_dict(MedicalRecordService(db).get_for_patient(patient, record_id))
