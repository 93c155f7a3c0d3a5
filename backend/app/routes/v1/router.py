"""API v1 router - aggregates all route modules."""

from fastapi import APIRouter

from app.routes.v1 import associations

api_router = APIRouter()

# Include REST API route modules
api_router.include_router(associations.router, prefix="/associations", tags=["associations"])
