"""Main API router that aggregates all route modules."""

from fastapi import APIRouter

from backend.app.api.routes import usfm

api_router = APIRouter()

api_router.include_router(usfm.router, prefix="/usfm", tags=["usfm-export"])
