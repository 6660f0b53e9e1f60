"""
Reservation model: one user's claim on one class.

Key design decisions:
- Unique constraint on (class_id, user_id): at most one live claim per user
  per class. Cancelled reservations are deleted, so the constraint never
  blocks re-joining.
- `ordered_at` is assigned once at creation and orders the waitlist; the
  primary key breaks ties.
- `promoted_at` starts the response window of a seat hold.
"""

import enum

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from gym_booking.db.base import Base, TimestampMixin


class ReservationStatus(str, enum.Enum):
    CONFIRMED = "confirmed"
    WAITLIST = "waitlist"
    PENDING_CONFIRMATION = "pending_confirmation"


# Statuses that occupy a unit of ClassSession.occupied_count
SEAT_HOLDING_STATUSES = (
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.PENDING_CONFIRMATION.value,
)


class Reservation(Base, TimestampMixin):
    __tablename__ = "reservations"

    id = Column(Integer, primary_key=True, index=True)
    class_id = Column(
        Integer,
        ForeignKey("class_sessions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String(128), nullable=False, index=True)
    status = Column(String(24), nullable=False)
    ordered_at = Column(DateTime(timezone=True), nullable=False)
    promoted_at = Column(DateTime(timezone=True), nullable=True)
    is_walk_in = Column(Boolean, nullable=False, default=False)
    attended = Column(Boolean, nullable=False, default=False)

    class_session = relationship("ClassSession", back_populates="reservations", lazy="raise")

    __table_args__ = (
        UniqueConstraint("class_id", "user_id", name="uq_class_user_reservation"),
        CheckConstraint(
            "status IN ('confirmed', 'waitlist', 'pending_confirmation')",
            name="check_reservation_status",
        ),
        # Waitlist head lookup: WHERE class_id = ? AND status = 'waitlist' ORDER BY ordered_at, id
        Index("ix_reservations_class_status_order", "class_id", "status", "ordered_at", "id"),
    )

    @property
    def holds_seat(self) -> bool:
        return self.status in SEAT_HOLDING_STATUSES

    def __repr__(self) -> str:
        return f"<Reservation(id={self.id}, class={self.class_id}, user={self.user_id}, status={self.status})>"
