"""
Main API router aggregator
"""
from fastapi import APIRouter

from app.api.v1.endpoints import (
    alerts_worker,
    health,
    voice,
)

api_router = APIRouter()

# Include routers
api_router.include_router(health.router, prefix="/health", tags=["Health"])
api_router.include_router(alerts_worker.router, prefix="/alerts-worker", tags=["Expiry Alerts"])
api_router.include_router(voice.router, prefix="/voice", tags=["Voice Reminders"])
