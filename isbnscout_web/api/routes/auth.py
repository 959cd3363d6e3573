"""Signup, login and session routes."""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from isbnscout.service import ScoutService
from scout_shared.models import User

from ...logging_middleware import log_custom_event
from ..dependencies import bearer_token, current_user, get_service, rate_limit

router = APIRouter()


class SignupRequest(BaseModel):
    """Schema for creating an account."""

    username: str = Field(..., description="Display name, at least 3 characters")
    email: str = Field(..., description="Login email address")
    password: str = Field(..., description="Password, at least 8 characters")

    class Config:
        json_schema_extra = {
            "example": {"username": "bookhunter", "email": "reseller@example.com", "password": "correct-horse"}
        }


class LoginRequest(BaseModel):
    email: str = Field(..., description="Login email address")
    password: str = Field(..., description="Account password")


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., description="Password in use now")
    new_password: str = Field(..., description="Replacement, at least 8 characters")


@router.post("/signup")
async def signup(
    request: SignupRequest,
    _: None = Depends(rate_limit("signup")),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    """Create an account on a fresh trial and return a bearer token."""
    session = service.signup(request.username, request.email, request.password)
    log_custom_event("signup", user_id=session.user.id)
    return {"user": session.user.public_dict(), "token": session.token}


@router.post("/login")
async def login(
    request: LoginRequest,
    _: None = Depends(rate_limit("login")),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    session = service.auth.login(request.email, request.password)
    return {"user": session.user.public_dict(), "token": session.token}


@router.post("/logout")
async def logout(
    user: User = Depends(current_user),
    token: Optional[str] = Depends(bearer_token),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    service.auth.logout(token)
    return {"success": True, "message": "Logged out successfully"}


@router.get("/me")
async def me(user: User = Depends(current_user)) -> Dict[str, Any]:
    return {"user": user.public_dict()}


@router.post("/change-password")
async def change_password(
    request: ChangePasswordRequest,
    user: User = Depends(current_user),
    service: ScoutService = Depends(get_service),
) -> Dict[str, Any]:
    service.change_password(user, request.current_password, request.new_password)
    log_custom_event("password_changed", user_id=user.id)
    return {"success": True, "message": "Password updated"}
