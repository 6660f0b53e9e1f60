"""
Class schedule service: creating and reading class sessions.
Capacity counters are owned by the reservation coordinator and are never
written here after creation.
"""

from datetime import datetime, timezone
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from gym_booking.models.class_session import ClassSession
from gym_booking.schemas.class_session import ClassSessionCreate
from gym_booking.core.exceptions import ClassNotFound
from gym_booking.core.logging import get_logger

logger = get_logger(__name__)


async def create_class_session(db: AsyncSession, class_data: ClassSessionCreate) -> ClassSession:
    """Schedule a new class with every seat free."""
    starts_at = class_data.starts_at
    if starts_at.tzinfo is None:
        starts_at = starts_at.replace(tzinfo=timezone.utc)
    if starts_at <= datetime.now(timezone.utc):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Class must start in the future",
        )

    class_session = ClassSession(
        title=class_data.title,
        coach_id=class_data.coach_id,
        starts_at=starts_at,
        duration_minutes=class_data.duration_minutes,
        max_capacity=class_data.max_capacity,
        occupied_count=0,
        version=1,
    )
    db.add(class_session)
    await db.flush()
    await db.refresh(class_session)

    logger.info(
        "class_created",
        class_id=class_session.id,
        title=class_session.title,
        max_capacity=class_session.max_capacity,
    )
    return class_session


async def get_class_session(db: AsyncSession, class_id: int) -> ClassSession:
    """Get a single class by ID with its live headcount."""
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == class_id)
        .execution_options(populate_existing=True)
    )
    class_session = result.scalar_one_or_none()

    if not class_session:
        raise ClassNotFound(class_id)
    return class_session


async def list_class_sessions(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    upcoming_only: bool = True,
) -> tuple[list[ClassSession], int]:
    """
    List classes with pagination, soonest first.
    Uses the ix_class_sessions_starts_at index for date filtering.
    """
    query = select(ClassSession)

    if upcoming_only:
        query = query.where(ClassSession.starts_at >= datetime.now(timezone.utc))

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    classes_query = (
        query
        .order_by(ClassSession.starts_at.asc(), ClassSession.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    result = await db.execute(classes_query.execution_options(populate_existing=True))
    classes = list(result.scalars().all())

    return classes, total
