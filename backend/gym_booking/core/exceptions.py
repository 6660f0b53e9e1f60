"""
Reservation error taxonomy.

Every error a caller of the reservation coordinator can see derives from
ReservationError and carries a stable machine code plus the HTTP status the
API layer renders it with. All of them are recoverable at the caller.
"""

from typing import Any, Dict, Optional


class ReservationError(Exception):
    """Base exception for reservation operations"""

    def __init__(
        self,
        message: str,
        code: str,
        status_code: int = 400,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class ClassNotFound(ReservationError):
    def __init__(self, class_id: int):
        super().__init__(
            message=f"Class {class_id} not found",
            code="CLASS_NOT_FOUND",
            status_code=404,
            details={"class_id": class_id},
        )


class ReservationNotFound(ReservationError):
    def __init__(self, reservation_id: int):
        super().__init__(
            message=f"Reservation {reservation_id} not found",
            code="RESERVATION_NOT_FOUND",
            status_code=404,
            details={"reservation_id": reservation_id},
        )


class AlreadyReserved(ReservationError):
    """User already holds a live claim on the class"""

    def __init__(self, class_id: int, status: str):
        super().__init__(
            message="You already have a reservation for this class",
            code="ALREADY_RESERVED",
            status_code=409,
            details={"class_id": class_id, "status": status},
        )


class NotOwner(ReservationError):
    def __init__(self, reservation_id: int):
        super().__init__(
            message="This reservation belongs to another user",
            code="NOT_OWNER",
            status_code=403,
            details={"reservation_id": reservation_id},
        )


class NotPending(ReservationError):
    """AcceptPromotion on a reservation that holds no offered seat"""

    def __init__(self, reservation_id: int, status: str):
        super().__init__(
            message="Reservation has no pending seat offer",
            code="NOT_PENDING",
            status_code=409,
            details={"reservation_id": reservation_id, "status": status},
        )


class NotConfirmed(ReservationError):
    """Attendance can only be recorded for a confirmed seat"""

    def __init__(self, reservation_id: int, status: str):
        super().__init__(
            message="Reservation is not confirmed",
            code="NOT_CONFIRMED",
            status_code=409,
            details={"reservation_id": reservation_id, "status": status},
        )


class PromotionExpired(ReservationError):
    def __init__(self, reservation_id: int):
        super().__init__(
            message="The seat offer expired and was passed on",
            code="PROMOTION_EXPIRED",
            status_code=410,
            details={"reservation_id": reservation_id},
        )


class ServiceUnavailable(ReservationError):
    """Retry budget exhausted on version conflicts; safe to retry later"""

    def __init__(self, operation: str):
        super().__init__(
            message="The class is busy right now. Please try again.",
            code="UNAVAILABLE",
            status_code=503,
            details={"operation": operation},
        )


class StaffOnly(ReservationError):
    def __init__(self):
        super().__init__(
            message="Staff role required",
            code="STAFF_ONLY",
            status_code=403,
        )
