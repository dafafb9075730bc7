from datetime import date
from typing import Optional
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session

from ..core.exceptions import BadRequestError, NotFoundError
from ..core.pagination import PageParams, apply_sort, paginate
from ..core.security import UserRole
from ..models.appointment import Appointment, AppointmentStatus
from ..models.user import User, RefreshToken

logger = logging.getLogger(__name__)

USER_SORT_COLUMNS = {
    "email": User.email,
    "role": User.role,
    "created_at": User.created_at,
    "last_login": User.last_login,
}

class AdminService:
    def __init__(self, db: Session):
        self.db = db

    def list_users(
        self,
        params: PageParams,
        role: Optional[UserRole] = None,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ):
        query = self.db.query(User)
        if role is not None:
            query = query.filter(User.role == role)
        if is_active is not None:
            query = query.filter(User.is_active == is_active)
        if search:
            query = query.filter(User.email.ilike(f"%{search.strip()}%"))

        query = apply_sort(query, params, USER_SORT_COLUMNS, default="created_at")
        return paginate(query, params)

    def set_user_active(self, admin: User, user_id: int, is_active: bool) -> User:
        """Activate or deactivate an account; deactivation revokes its refresh tokens."""
        if admin.id == user_id and not is_active:
            raise BadRequestError("Administrators cannot deactivate their own account")

        user = self.db.query(User).filter(User.id == user_id).first()
        if not user:
            raise NotFoundError("User not found")

        user.is_active = is_active
        if not is_active:
            self.db.query(RefreshToken).filter(
                RefreshToken.user_id == user.id,
                RefreshToken.is_revoked == False
            ).update({"is_revoked": True})
        self.db.commit()
        self.db.refresh(user)

        logger.info(
            f"User {user.id} {'activated' if is_active else 'deactivated'} by admin {admin.id}"
        )
        return user

    def get_overview(self, today: Optional[date] = None) -> dict:
        today = today or date.today()

        users_by_role = dict(
            self.db.query(User.role, func.count(User.id)).group_by(User.role).all()
        )
        appointments_by_status = dict(
            self.db.query(Appointment.status, func.count(Appointment.id))
            .group_by(Appointment.status)
            .all()
        )

        return {
            "total_users": sum(users_by_role.values()),
            "active_users": self.db.query(User).filter(User.is_active == True).count(),
            "users_by_role": {
                UserRole(role).value: count for role, count in users_by_role.items()
            },
            "total_appointments": sum(appointments_by_status.values()),
            "today_appointments": self.db.query(Appointment).filter(
                Appointment.appointment_date == today
            ).count(),
            "appointments_by_status": {
                AppointmentStatus(status).value: count
                for status, count in appointments_by_status.items()
            },
        }
