"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from gym_booking.api.routes import classes, reservations, staff

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(classes.router)
api_router.include_router(reservations.router)
api_router.include_router(staff.router)
