"""Sample data generation run explicitly at startup."""
from __future__ import annotations

import logging

from faker import Faker
from sqlalchemy.ext.asyncio import AsyncSession

from mystore.core.security import PasswordHasher
from mystore.db.errors import storage_errors
from mystore.models.customer import Customer
from mystore.models.user import User, UserRole
from mystore.services.users import users_exist

logger = logging.getLogger(__name__)


async def seed_sample_users(session: AsyncSession, count: int, faker: Faker | None = None) -> int:
    """Insert ``count`` random users unless the table already has rows.

    Customers get a profile with a generated name. Returns the number of users
    created.
    """
    if count <= 0 or await users_exist(session):
        return 0

    faker = faker or Faker()
    roles = list(UserRole)
    with storage_errors("seeding users"):
        for _ in range(count):
            role = faker.random_element(roles)
            user = User(
                email=faker.unique.email().lower(),
                password_hash=PasswordHasher.hash(faker.password(length=12)),
                role=role,
            )
            if role is UserRole.CUSTOMER:
                user.customer = Customer(name=faker.first_name(), last_name=faker.last_name())
            session.add(user)
        await session.commit()

    logger.info("Seeded %d sample user(s)", count)
    return count
