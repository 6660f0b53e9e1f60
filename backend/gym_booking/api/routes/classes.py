"""
Class schedule endpoints, plus joining a class and reading one's own status.
"""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from gym_booking.db.session import get_db
from gym_booking.schemas.class_session import (
    ClassSessionCreate,
    ClassSessionResponse,
    ClassSessionListResponse,
)
from gym_booking.schemas.reservation import ReservationResponse, ReservationStatusResponse
from gym_booking.services.class_service import create_class_session, get_class_session, list_class_sessions
from gym_booking.services.cache_service import get_cached_classes, set_cached_classes, invalidate_class_cache
from gym_booking.services.reservation_coordinator import join_class, get_reservation_status
from gym_booking.core.security import Principal, get_current_user_id, require_staff
from gym_booking.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/classes", tags=["Classes"])


@router.post("/", response_model=ClassSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_class_endpoint(
    class_data: ClassSessionCreate,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Schedule a class. Staff only."""
    class_session = await create_class_session(db, class_data)
    await db.commit()
    await invalidate_class_cache()
    return class_session


@router.get("/", response_model=ClassSessionListResponse)
async def list_classes_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """
    List classes with their headcount, soonest first.
    Cached in Redis; every reservation change invalidates the cache.
    """
    cached = await get_cached_classes(page, page_size, upcoming_only)
    if cached:
        cached["cached"] = True
        return ClassSessionListResponse(**cached)

    classes, total = await list_class_sessions(db, page, page_size, upcoming_only)

    response_data = {
        "classes": [ClassSessionResponse.model_validate(c).model_dump() for c in classes],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_classes(page, page_size, upcoming_only, response_data)

    return ClassSessionListResponse(**response_data)


@router.get("/{class_id}", response_model=ClassSessionResponse)
async def get_class_endpoint(
    class_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single class. Not cached (needs real-time headcount)."""
    return await get_class_session(db, class_id)


@router.post(
    "/{class_id}/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def join_class_endpoint(
    class_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve a seat, or join the waitlist if the class is full.
    The returned status tells which one happened.
    """
    return await join_class(db, class_id, user_id)


@router.get("/{class_id}/reservations/me", response_model=ReservationStatusResponse)
async def my_status_endpoint(
    class_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The caller's standing on this class and which booking button to show."""
    view = await get_reservation_status(db, class_id, user_id)
    return ReservationStatusResponse.model_validate(view)
