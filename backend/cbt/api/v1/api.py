"""
API v1 router combining all v1 endpoints.
"""
from fastapi import APIRouter
from cbt.api.v1 import admin, health, sessions

api_router = APIRouter()

# Include all v1 routers
api_router.include_router(health.router, tags=["health"])
api_router.include_router(sessions.router, tags=["test-sessions"])
api_router.include_router(admin.router, prefix="/admin", tags=["admin"])
