"""
Endpoints acting on the caller's own reservations.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from gym_booking.db.session import get_db
from gym_booking.schemas.reservation import (
    CancellationResponse,
    PendingPromotionResponse,
    ReservationResponse,
)
from gym_booking.services.reservation_coordinator import (
    accept_promotion,
    cancel_reservation,
    get_pending_promotion,
    list_user_reservations,
    promotion_deadline,
)
from gym_booking.core.security import get_current_user_id

router = APIRouter(prefix="/reservations", tags=["Reservations"])


@router.get("/", response_model=list[ReservationResponse])
async def list_my_reservations(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """All live reservations of the caller."""
    return await list_user_reservations(db, user_id)


@router.get("/pending", response_model=PendingPromotionResponse)
async def pending_promotion_endpoint(
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """The seat currently held for the caller, if any. Must be confirmed before it expires."""
    reservation = await get_pending_promotion(db, user_id)
    if reservation is None:
        return PendingPromotionResponse()
    return PendingPromotionResponse(
        reservation=ReservationResponse.model_validate(reservation),
        expires_at=promotion_deadline(reservation),
    )


@router.delete("/{reservation_id}", response_model=CancellationResponse)
async def cancel_reservation_endpoint(
    reservation_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a reservation. A freed seat is offered to the head of the waitlist."""
    result = await cancel_reservation(db, reservation_id, user_id)
    return CancellationResponse(
        message="Reservation cancelled successfully",
        reservation_id=result.reservation_id,
        class_id=result.class_id,
        released_status=result.released_status,
        promoted_reservation_id=result.promoted_reservation_id,
    )


@router.post("/{reservation_id}/accept", response_model=ReservationResponse)
async def accept_promotion_endpoint(
    reservation_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Confirm a seat held for the caller after a waitlist promotion."""
    return await accept_promotion(db, reservation_id, user_id)
