"""API router aggregator."""
from fastapi import APIRouter

from mystore.api.routes import auth, system, users

api_router = APIRouter(prefix="/api")
api_router.include_router(auth.router)
api_router.include_router(users.router)
api_router.include_router(system.router)

__all__ = ["api_router"]
