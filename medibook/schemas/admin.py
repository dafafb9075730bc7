from typing import Dict, List
from pydantic import BaseModel

from .appointment import Pagination
from .auth import UserResponse

class UserList(BaseModel):
    items: List[UserResponse]
    pagination: Pagination

class UserStatusUpdate(BaseModel):
    is_active: bool

class AdminOverview(BaseModel):
    total_users: int
    active_users: int
    users_by_role: Dict[str, int]
    total_appointments: int
    today_appointments: int
    appointments_by_status: Dict[str, int]
