from fastapi import BackgroundTasks, Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional, List
import logging

from ..core.config import settings
from ..core.database import get_db, get_redis
from ..core.exceptions import AuthenticationError, AuthorizationError, NotFoundError
from ..core.security import security, verify_token, UserRole, TokenPayload
from ..models.user import User
from ..models.doctor import Doctor
from ..models.patient import Patient
from ..services.appointment_service import AppointmentService
from ..services.auth_service import AuthService
from ..services.availability_service import AvailabilityService
from ..services.notification_service import NotificationService

logger = logging.getLogger(__name__)

async def get_current_user_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise AuthenticationError("Not authenticated")

    token_payload = verify_token(credentials.credentials)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_user(
    token_payload: TokenPayload = Depends(get_current_user_token),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user from database."""
    if not token_payload.sub:
        raise AuthenticationError("Invalid token payload")

    user = db.query(User).filter(User.id == token_payload.sub).first()
    if not user:
        raise AuthenticationError("User not found")

    if not user.is_active:
        raise AuthenticationError("User account is deactivated")

    return user

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        current_user: User = Depends(get_current_user)
    ) -> User:
        if current_user.role not in allowed_roles:
            raise AuthorizationError(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return current_user

    return role_checker

async def get_admin_user(
    current_user: User = Depends(require_role([UserRole.ADMIN]))
) -> User:
    """Require admin role."""
    return current_user

async def get_current_doctor(
    current_user: User = Depends(require_role([UserRole.DOCTOR, UserRole.ADMIN])),
    db: Session = Depends(get_db)
) -> Doctor:
    """Doctor profile of the authenticated user."""
    doctor = db.query(Doctor).filter(Doctor.user_id == current_user.id).first()
    if not doctor:
        raise NotFoundError("Doctor profile not found")
    return doctor

async def get_current_patient(
    current_user: User = Depends(require_role([UserRole.PATIENT, UserRole.ADMIN])),
    db: Session = Depends(get_db)
) -> Patient:
    """Patient profile of the authenticated user."""
    patient = db.query(Patient).filter(Patient.user_id == current_user.id).first()
    if not patient:
        raise NotFoundError("Patient profile not found")
    return patient

# Service factories
def get_auth_service(db: Session = Depends(get_db)) -> AuthService:
    return AuthService(db)

def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(
        db,
        working_hours=settings.working_hours,
        horizon_months=settings.BOOKING_HORIZON_MONTHS,
    )

def get_appointment_service(
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    availability: AvailabilityService = Depends(get_availability_service),
) -> AppointmentService:
    return AppointmentService(
        db,
        availability=availability,
        notifier=NotificationService(background_tasks=background_tasks),
    )

# Rate limiting dependency
async def rate_limit_check(
    request: Request,
    redis_client = Depends(get_redis)
) -> None:
    """Fixed-window rate limiting for authentication endpoints."""
    client_ip = request.client.host if request.client else "unknown"
    key = f"rate_limit:{request.url.path}:{client_ip}"

    current_requests = redis_client.get(key)
    if current_requests is None:
        redis_client.setex(key, settings.RATE_LIMIT_WINDOW_SECONDS, 1)
        return

    if int(current_requests) >= settings.RATE_LIMIT_REQUESTS:
        logger.warning(f"Rate limit exceeded for {client_ip} on {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many requests. Please try again later."
        )
    redis_client.incr(key)
