"""User CRUD endpoints."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from mystore.core.dependencies import get_db
from mystore.schemas.user import UserCreate, UserRead, UserSummary, UserUpdate
from mystore.services import users as user_service

router = APIRouter(prefix="/users", tags=["users"])


@router.get("", response_model=list[UserSummary])
async def list_users(session: AsyncSession = Depends(get_db)) -> list[UserSummary]:
    return await user_service.list_users(session)


@router.post("", response_model=UserRead, status_code=status.HTTP_201_CREATED)
async def create_user(payload: UserCreate, session: AsyncSession = Depends(get_db)) -> UserRead:
    user = await user_service.create_user(session, payload)
    await session.commit()
    return UserRead.model_validate(user)


@router.get("/{user_id}", response_model=UserRead)
async def get_user(user_id: int, session: AsyncSession = Depends(get_db)) -> UserRead:
    user = await user_service.get_user(session, user_id)
    return UserRead.model_validate(user)


@router.patch("/{user_id}", response_model=UserRead)
async def update_user(user_id: int, payload: UserUpdate, session: AsyncSession = Depends(get_db)) -> UserRead:
    user = await user_service.update_user(session, user_id, payload.model_dump(exclude_unset=True))
    await session.commit()
    return UserRead.model_validate(user)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(user_id: int, session: AsyncSession = Depends(get_db)) -> Response:
    await user_service.delete_user(session, user_id)
    await session.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)
