"""HTTP route aggregation. Mounted in main.py."""

from fastapi import APIRouter

from evobridge.api.health import router as health_router

api_router = APIRouter()
api_router.include_router(health_router, tags=["health"])
