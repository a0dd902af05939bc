"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from app.api.routes import tables, availability, bookings, waitlist

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(tables.router)
api_router.include_router(availability.router)
api_router.include_router(bookings.router)
api_router.include_router(waitlist.router)
