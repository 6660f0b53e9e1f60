"""
Pydantic schemas for reservation request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from gym_booking.schemas.class_session import ClassSessionResponse


class ReservationResponse(BaseModel):
    id: int
    class_id: int
    user_id: str
    status: str
    ordered_at: datetime
    promoted_at: Optional[datetime] = None
    is_walk_in: bool
    attended: bool

    model_config = {"from_attributes": True}


class PendingPromotionResponse(BaseModel):
    reservation: Optional[ReservationResponse] = None
    expires_at: Optional[datetime] = None


class ReservationStatusResponse(BaseModel):
    class_id: int
    status: str
    action: str
    reservation_id: Optional[int] = None
    waitlist_position: Optional[int] = None
    promotion_expires_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class CancellationResponse(BaseModel):
    message: str
    reservation_id: int
    class_id: int
    released_status: str
    promoted_reservation_id: Optional[int] = None

    model_config = {"from_attributes": True}


class WalkInCreate(BaseModel):
    user_id: str = Field(..., min_length=1, max_length=128)


class AttendanceUpdate(BaseModel):
    attended: bool


class RosterResponse(BaseModel):
    class_session: ClassSessionResponse
    attendees: list[ReservationResponse]
    waitlist: list[ReservationResponse]

    model_config = {"from_attributes": True}
