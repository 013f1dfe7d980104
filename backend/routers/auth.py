# routers/auth.py — Login for the admin API
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from auth import (
    AuthService, UserLogin, TokenResponse, ACCESS_TOKEN_EXPIRE_MINUTES,
    get_current_user, CurrentUser,
)
from database import get_db_session
from models import UserRole

router = APIRouter(prefix="/api/v1/auth", tags=["Authentication"])


def _build_token_response(user_obj) -> TokenResponse:
    role = user_obj.role.value if isinstance(user_obj.role, UserRole) else user_obj.role
    token_data = {
        "sub": user_obj.id,
        "email": user_obj.email,
        "organisation_id": user_obj.organisation_id,
        "role": role,
    }
    return TokenResponse(
        access_token=AuthService.create_access_token(token_data),
        expires_in=ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user={
            "id": user_obj.id,
            "email": user_obj.email,
            "display_name": user_obj.display_name or "",
            "organisation_id": user_obj.organisation_id,
            "role": role,
        },
    )


@router.post("/login", response_model=TokenResponse)
async def login(
    credentials: UserLogin,
    db: AsyncSession = Depends(get_db_session),
):
    """Authenticate and receive an access token"""
    user = await AuthService.authenticate_user(credentials.email, credentials.password, db)
    if not user:
        raise HTTPException(status_code=401, detail="Invalid credentials")
    return _build_token_response(user)


@router.get("/me")
async def get_current_user_info(user: CurrentUser = Depends(get_current_user)):
    return user.model_dump()
