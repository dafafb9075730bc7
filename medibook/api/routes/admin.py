from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ...api.deps import get_admin_user, get_appointment_service
from ...core.database import get_db
from ...core.pagination import PageParams, page_params
from ...core.security import UserRole
from ...models.appointment import AppointmentStatus
from ...models.user import User
from ...schemas.admin import AdminOverview, UserList, UserStatusUpdate
from ...schemas.appointment import AppointmentList
from ...schemas.auth import UserResponse
from ...services.admin_service import AdminService
from ...services.appointment_service import AppointmentService

router = APIRouter(prefix="/admin", tags=["Administration"])

@router.get("/users", response_model=UserList)
async def list_users(
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None, alias="isActive"),
    search: Optional[str] = Query(None, max_length=100),
    params: PageParams = Depends(page_params),
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    items, pagination = AdminService(db).list_users(
        params, role=role, is_active=is_active, search=search
    )
    return {"items": items, "pagination": pagination}

@router.patch("/users/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: int,
    data: UserStatusUpdate,
    admin: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    """Activate or deactivate a user account."""
    user = AdminService(db).set_user_active(admin, user_id, data.is_active)
    return UserResponse.model_validate(user)

@router.get("/appointments", response_model=AppointmentList)
async def list_all_appointments(
    status_filter: Optional[AppointmentStatus] = Query(None, alias="status"),
    on_date: Optional[date] = Query(None, alias="date"),
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    params: PageParams = Depends(page_params),
    _: User = Depends(get_admin_user),
    service: AppointmentService = Depends(get_appointment_service)
):
    items, pagination = service.list_all(
        params, status=status_filter, on_date=on_date, date_from=date_from, date_to=date_to
    )
    return {"items": items, "pagination": pagination}

@router.get("/overview", response_model=AdminOverview)
async def get_overview(
    _: User = Depends(get_admin_user),
    db: Session = Depends(get_db)
):
    return AdminService(db).get_overview()
