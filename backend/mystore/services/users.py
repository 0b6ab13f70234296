"""User service functions for CRUD and authentication."""
from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from mystore.core.errors import ServiceError
from mystore.core.security import PasswordHasher
from mystore.db.errors import storage_errors
from mystore.models.user import User
from mystore.schemas.user import UserCreate, UserSummary, normalize_email

PROTECTED_FIELDS = frozenset({"id", "created_at", "updated_at", "createdAt", "updatedAt"})


async def _find_by_email(session: AsyncSession, email: str) -> User | None:
    result = await session.execute(select(User).where(User.email == normalize_email(email)))
    return result.scalar_one_or_none()


async def _load_user(session: AsyncSession, user_id: int) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise ServiceError.not_found(f"User {user_id} not found")
    return user


async def get_user_by_email(session: AsyncSession, email: str) -> User:
    with storage_errors("fetching user"):
        user = await _find_by_email(session, email)
    if not user:
        raise ServiceError.not_found("User not found")
    return user


async def get_user(session: AsyncSession, user_id: int) -> User:
    with storage_errors("fetching user"):
        return await _load_user(session, user_id)


async def list_users(session: AsyncSession) -> list[UserSummary]:
    with storage_errors("fetching users"):
        result = await session.execute(
            select(User).options(selectinload(User.customer)).order_by(User.id)
        )
        users = result.scalars().all()
    return [
        UserSummary(
            id=user.id,
            email=user.email,
            role=user.role,
            name=user.customer.name if user.customer else None,
        )
        for user in users
    ]


async def create_user(session: AsyncSession, user_in: UserCreate) -> User:
    user = User(
        email=normalize_email(user_in.email),
        password_hash=PasswordHasher.hash(user_in.password),
        role=user_in.role,
    )
    with storage_errors("creating user"):
        session.add(user)
        await session.flush()
        await session.refresh(user)
    return user


async def update_user(session: AsyncSession, user_id: int, changes: dict[str, Any]) -> User:
    safe_changes = {key: value for key, value in changes.items() if key not in PROTECTED_FIELDS}
    with storage_errors("updating user"):
        user = await _load_user(session, user_id)
        for field, value in safe_changes.items():
            if value is None:
                raise ServiceError.validation(f"{field} cannot be null")
            if field == "password":
                user.password_hash = PasswordHasher.hash(value)
            elif field == "email":
                user.email = normalize_email(value)
            elif field == "role":
                user.role = value
            else:
                raise ServiceError.validation(f"Unknown user field: {field}")
        await session.flush()
        await session.refresh(user)
    return user


async def delete_user(session: AsyncSession, user_id: int) -> None:
    with storage_errors("deleting user"):
        user = await _load_user(session, user_id)
        await session.delete(user)
        await session.flush()


async def authenticate_user(session: AsyncSession, email: str, password: str) -> User | None:
    with storage_errors("authenticating user"):
        user = await _find_by_email(session, email)
    if not user:
        return None
    if not PasswordHasher.verify(password, user.password_hash):
        return None
    return user


async def users_exist(session: AsyncSession) -> bool:
    with storage_errors("fetching users"):
        result = await session.execute(select(User.id))
    return result.first() is not None
