"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.queue import router as queue_router
from app.api.routes.logs import router as logs_router
from app.api.routes.filters import router as filters_router

router = APIRouter()

router.include_router(queue_router, prefix="/queue", tags=["queue"])
router.include_router(logs_router, prefix="/logs", tags=["logs"])
router.include_router(filters_router, prefix="/filters", tags=["filters"])
