"""FastAPI application entrypoint."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from mystore.api import api_router
from mystore.api.errors import register_exception_handlers
from mystore.core.config import get_settings
from mystore.db.base import Base
from mystore.db.session import engine, get_session
from mystore.services.scheduler import get_scheduler, schedule_token_purge_job, start_scheduler
from mystore.services.seed import seed_sample_users

import mystore.models  # noqa: F401  registers tables on Base.metadata

settings = get_settings()
logging.getLogger("mystore").setLevel(settings.log_level.upper())


@asynccontextmanager
async def lifespan(_: FastAPI):
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    if settings.seed_sample_users:
        async with get_session() as session:
            await seed_sample_users(session, settings.sample_user_count)

    start_scheduler()
    schedule_token_purge_job()

    try:
        yield
    finally:
        scheduler = get_scheduler()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        await engine.dispose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)
app.include_router(api_router)
