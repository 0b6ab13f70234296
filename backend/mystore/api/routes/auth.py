"""Authentication and password recovery endpoints."""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from mystore.core.dependencies import get_current_user, get_db, get_mailer
from mystore.core.errors import ErrorKind, ServiceError
from mystore.models.user import User
from mystore.schemas.auth import ChangePasswordRequest, LoginRequest, MessageResponse, RecoveryRequest, TokenResponse
from mystore.schemas.user import UserRead
from mystore.services import auth as auth_service
from mystore.services.mailer import Mailer
from mystore.services.users import authenticate_user

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

RECOVERY_ACCEPTED_MESSAGE = "If the email exists, a recovery link will be sent."


@router.post("/login", response_model=TokenResponse)
async def login(payload: LoginRequest, session: AsyncSession = Depends(get_db)) -> TokenResponse:
    user = await authenticate_user(session, payload.email, payload.password)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    return auth_service.sign_token(user)


@router.post("/recovery", response_model=MessageResponse, status_code=status.HTTP_202_ACCEPTED)
async def recovery(
    payload: RecoveryRequest,
    session: AsyncSession = Depends(get_db),
    mailer: Mailer = Depends(get_mailer),
) -> MessageResponse:
    if not payload.email or not payload.email.strip():
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Email is required")

    try:
        await auth_service.send_recovery(session, mailer, payload.email)
    except ServiceError as exc:
        if exc.kind is not ErrorKind.NOT_FOUND:
            raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to send recovery email") from exc
        logger.info("Recovery requested for unknown email")

    return MessageResponse(message=RECOVERY_ACCEPTED_MESSAGE)


@router.post("/change-password", response_model=MessageResponse)
async def change_password(payload: ChangePasswordRequest, session: AsyncSession = Depends(get_db)) -> MessageResponse:
    if not payload.token:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token is required")
    if not payload.new_password:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="New password is required")

    result = await auth_service.change_password(session, payload.token, payload.new_password)
    return MessageResponse(**result)


@router.get("/me", response_model=UserRead)
async def get_current_user_info(current_user: User = Depends(get_current_user)) -> UserRead:
    return UserRead.model_validate(current_user)
