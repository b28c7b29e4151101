"""
Account routes: registration, login, current user and password reset.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Depends

from auth import TokenSubject, authenticate, create_access_token, current_subject, hash_password
from config import Settings
from deps import get_settings, get_storage
from errors import ConflictError, NotFoundError, ValidationError
from schemas import (
    AuthResponse,
    ForgotPasswordRequest,
    LoginRequest,
    NewUser,
    RegisterRequest,
    ResetPasswordRequest,
    UserPublic,
)
from storage import Storage

logger = logging.getLogger(__name__)

auth_router = APIRouter(prefix="/api/auth", tags=["authentication"])

RESET_NOTICE = "If the email exists, a reset link will be sent"


@auth_router.post("/register", response_model=AuthResponse, status_code=201)
def register(
    payload: RegisterRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    if storage.get_user_by_email(payload.email):
        raise ConflictError("User already exists")

    user = storage.create_user(
        NewUser(
            email=payload.email,
            password_hash=hash_password(payload.password),
            name=payload.name,
            address=payload.address,
            phone=payload.phone,
            language=payload.language,
        )
    )
    logger.info(f"Registered user {user.id}")
    return AuthResponse(user=user.public(), token=create_access_token(user, settings))


@auth_router.post("/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
):
    user = authenticate(storage, payload.email, payload.password)
    return AuthResponse(user=user.public(), token=create_access_token(user, settings))


@auth_router.get("/me", response_model=UserPublic)
def me(subject: TokenSubject = Depends(current_subject), storage: Storage = Depends(get_storage)):
    user = storage.get_user(subject.id)
    if user is None:
        raise NotFoundError("User not found")
    return user.public()


@auth_router.post("/forgot-password")
def forgot_password(
    payload: ForgotPasswordRequest,
    storage: Storage = Depends(get_storage),
    settings: Settings = Depends(get_settings),
) -> Dict[str, str]:
    token = storage.create_password_reset_token(payload.email)
    if token:
        # no mail transport yet; the link is only written to the debug log
        logger.debug(f"Password reset link: {settings.FRONTEND_URL}/reset-password?token={token}")
    return {"message": RESET_NOTICE}


@auth_router.post("/reset-password")
def reset_password(payload: ResetPasswordRequest, storage: Storage = Depends(get_storage)) -> Dict[str, str]:
    if not storage.reset_password(payload.token, hash_password(payload.password)):
        raise ValidationError("Invalid or expired token")
    return {"message": "Password reset successfully"}
