"""
ClassSession model: the capacity-bounded resource.

Key design decisions:
- `occupied_count` counts seats claimed or held (confirmed + pending_confirmation
  reservations). Queued users are never counted.
- No CHECK on occupied_count <= max_capacity: staff walk-ins may push a class
  over capacity. Join never does.
- `version` is bumped by every coordinator mutation of the class or of any of
  its reservations and is the optimistic lock for the whole class.
"""

from sqlalchemy import Column, Integer, String, DateTime, Index, CheckConstraint
from sqlalchemy.orm import relationship

from gym_booking.db.base import Base, TimestampMixin


class ClassSession(Base, TimestampMixin):
    __tablename__ = "class_sessions"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    coach_id = Column(String(128), nullable=True)
    starts_at = Column(DateTime(timezone=True), nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    max_capacity = Column(Integer, nullable=False)
    occupied_count = Column(Integer, nullable=False, default=0)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    reservations = relationship(
        "Reservation",
        back_populates="class_session",
        lazy="raise",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("max_capacity > 0", name="check_max_capacity_positive"),
        CheckConstraint("occupied_count >= 0", name="check_occupied_non_negative"),
        CheckConstraint("duration_minutes > 0", name="check_duration_positive"),
        Index("ix_class_sessions_starts_at", "starts_at"),
    )

    @property
    def is_full(self) -> bool:
        return self.occupied_count >= self.max_capacity

    @property
    def available_seats(self) -> int:
        return max(self.max_capacity - self.occupied_count, 0)

    def __repr__(self) -> str:
        return f"<ClassSession(id={self.id}, title={self.title}, occupied={self.occupied_count}/{self.max_capacity})>"
