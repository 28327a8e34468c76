"""API v1 router - includes all v1 endpoints."""

from fastapi import APIRouter

from secondfactor.api.v1.endpoints import health, mfa

api_router = APIRouter()

# Include all endpoint routers
api_router.include_router(health.router, prefix="", tags=["Health"])
api_router.include_router(mfa.router, prefix="/auth/mfa", tags=["MFA"])
