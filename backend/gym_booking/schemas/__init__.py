from gym_booking.schemas.class_session import (
    ClassSessionCreate, ClassSessionResponse, ClassSessionListResponse,
)
from gym_booking.schemas.reservation import (
    ReservationResponse, PendingPromotionResponse, ReservationStatusResponse,
    CancellationResponse, WalkInCreate, AttendanceUpdate, RosterResponse,
)

__all__ = [
    "ClassSessionCreate", "ClassSessionResponse", "ClassSessionListResponse",
    "ReservationResponse", "PendingPromotionResponse", "ReservationStatusResponse",
    "CancellationResponse", "WalkInCreate", "AttendanceUpdate", "RosterResponse",
]
