from fastapi import APIRouter

from intake.api.v1.routers import (
    health,
    realtime,
    submissions,
    sync,
)

api_router = APIRouter()
api_router.include_router(health.router)
api_router.include_router(submissions.router)
api_router.include_router(sync.router)
api_router.include_router(realtime.router)

__all__ = ["api_router"]
