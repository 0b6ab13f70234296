#!/usr/bin/env python3
"""Create tables and insert sample users into the configured database."""
from __future__ import annotations

import asyncio
import sys
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from mystore.core.config import get_settings
from mystore.db.base import Base
from mystore.db.session import engine, get_session
from mystore.services.seed import seed_sample_users

import mystore.models  # noqa: F401


async def main(count: int) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with get_session() as session:
        created = await seed_sample_users(session, count)
    await engine.dispose()
    print(f"Created {created} sample user(s)")


if __name__ == "__main__":
    count = int(sys.argv[1]) if len(sys.argv) > 1 else get_settings().sample_user_count
    asyncio.run(main(count))
