from fastapi import APIRouter, Depends, status

from ...api.deps import get_auth_service, get_current_user, get_current_user_token, rate_limit_check
from ...core.security import TokenPayload
from ...models.user import User
from ...schemas.auth import (
    ChangePassword, RefreshTokenRequest, TokenResponse, UserLogin, UserRegister, UserResponse
)
from ...services.auth_service import AuthService

router = APIRouter(prefix="/auth", tags=["Authentication"])

@router.post(
    "/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit_check)],
)
async def register(
    user_data: UserRegister,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Create an account together with its doctor or patient profile."""
    return UserResponse.model_validate(auth_service.register_user(user_data))

@router.post("/login", response_model=TokenResponse)
async def login(
    login_data: UserLogin,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Exchange email and password for an access/refresh token pair."""
    return auth_service.authenticate_user(login_data)

@router.post("/refresh", response_model=TokenResponse)
async def refresh(
    refresh_data: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    """Rotate the refresh token; the presented one is revoked."""
    return auth_service.refresh_access_token(refresh_data.refresh_token)

@router.post("/logout")
async def logout(
    refresh_data: RefreshTokenRequest,
    auth_service: AuthService = Depends(get_auth_service)
):
    if auth_service.logout_user(refresh_data.refresh_token):
        return {"message": "Successfully logged out"}
    return {"message": "Logout completed"}

@router.get("/me", response_model=UserResponse)
async def me(current_user: User = Depends(get_current_user)):
    return UserResponse.model_validate(current_user)

@router.post("/change-password")
async def change_password(
    password_data: ChangePassword,
    current_user: User = Depends(get_current_user),
    auth_service: AuthService = Depends(get_auth_service)
):
    """Change the password and sign out every other session."""
    auth_service.change_password(
        current_user, password_data.current_password, password_data.new_password
    )
    return {"message": "Password changed successfully"}

@router.post("/verify-token")
async def verify_token(token_payload: TokenPayload = Depends(get_current_user_token)):
    return {
        "valid": True,
        "user_id": token_payload.sub,
        "email": token_payload.email,
        "role": token_payload.role,
        "expires": token_payload.exp
    }
