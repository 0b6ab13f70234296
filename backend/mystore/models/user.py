"""Database model for application users."""
from __future__ import annotations

import enum
from datetime import datetime
from typing import TYPE_CHECKING, Optional

from sqlalchemy import DateTime, Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from mystore.db.base import Base, utcnow

if TYPE_CHECKING:
    from .customer import Customer
    from .recovery_token import RecoveryToken


class UserRole(str, enum.Enum):
    ADMIN = "admin"
    CUSTOMER = "customer"
    SELLER = "seller"


class User(Base):
    """Application user with hashed password and role."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column("password", String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        Enum(
            UserRole,
            name="user_role",
            native_enum=False,
            create_constraint=True,
            validate_strings=True,
            values_callable=lambda roles: [role.value for role in roles],
        ),
        default=UserRole.CUSTOMER,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    customer: Mapped[Optional["Customer"]] = relationship(
        "Customer", back_populates="user", uselist=False, passive_deletes=True
    )
    recovery_tokens: Mapped[list["RecoveryToken"]] = relationship(
        "RecoveryToken", back_populates="user", passive_deletes=True
    )
