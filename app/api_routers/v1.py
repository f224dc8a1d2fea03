from fastapi import APIRouter

from app.features.audit.routes.audit import router as audit_router

api_router = APIRouter()

# Register all feature routes
api_router.include_router(audit_router)
