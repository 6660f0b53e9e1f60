"""
Staff attendance endpoints: walk-ins, roster and attendance marks.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from gym_booking.db.session import get_db
from gym_booking.schemas.class_session import ClassSessionResponse
from gym_booking.schemas.reservation import (
    AttendanceUpdate,
    ReservationResponse,
    RosterResponse,
    WalkInCreate,
)
from gym_booking.services.reservation_coordinator import list_roster, set_attendance, walk_in
from gym_booking.core.security import Principal, require_staff
from gym_booking.core.logging import get_logger

logger = get_logger(__name__)
router = APIRouter(prefix="/staff", tags=["Staff"])


@router.post(
    "/classes/{class_id}/walk-ins",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def walk_in_endpoint(
    class_id: int,
    payload: WalkInCreate,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    Add an on-site sign-up as a confirmed, attended reservation.
    Ignores capacity: the class may show more attendees than seats.
    """
    reservation = await walk_in(db, class_id, payload.user_id)
    logger.info("walk_in_recorded_by", staff_id=staff.user_id, reservation_id=reservation.id)
    return reservation


@router.get("/classes/{class_id}/roster", response_model=RosterResponse)
async def roster_endpoint(
    class_id: int,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Seat holders and waitlist of a class, in queue order."""
    roster = await list_roster(db, class_id)
    return RosterResponse(
        class_session=ClassSessionResponse.model_validate(roster.class_session),
        attendees=[ReservationResponse.model_validate(r) for r in roster.attendees],
        waitlist=[ReservationResponse.model_validate(r) for r in roster.waitlist],
    )


@router.patch("/reservations/{reservation_id}/attendance", response_model=ReservationResponse)
async def attendance_endpoint(
    reservation_id: int,
    payload: AttendanceUpdate,
    staff: Principal = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Mark a confirmed attendee as present or absent."""
    return await set_attendance(db, reservation_id, payload.attended)
