"""
Reservation coordinator: the only code path that changes a class's
occupied_count or a reservation's status.

CONCURRENCY STRATEGY: Per-class Optimistic Locking with Retry
=============================================================

Problem:
  A cancellation and a join race on a full class. Both read
  occupied_count == max_capacity - 1 after the cancel's delete, both decide
  "seat available", and the class is overbooked. Or two cancellations both
  see the same waitlist head and promote it twice.

Solution:
  Every operation is one transaction scoped to one class. It reads the
  ClassSession row first (remembering its version), only then the
  reservation rows it needs, and claims the class before writing anything
  else:

    UPDATE class_sessions SET occupied_count = :n, version = version + 1
    WHERE id = :class_id AND version = :seen_version

  Zero rows affected means another transaction changed the class (or one
  of its reservations, since every operation bumps the version) after our
  read. Roll back, back off, retry with fresh reads. After
  MAX_RETRY_ATTEMPTS the caller gets ServiceUnavailable.

  The class must be read before its reservations: a reservation read first
  could be deleted by a transaction that commits before our class read, and
  the claim would then succeed on a version that already includes that
  delete. Reservation writes are also guarded on the status we read
  (UPDATE/DELETE ... WHERE id = :id AND status = :seen_status); zero rows
  affected is treated as a version conflict.

  Inside one process a per-class asyncio.Lock serializes operations first,
  so local callers rarely pay for a conflict; the version check is what
  protects across processes.

SEAT HOLDS
==========

  Freeing a counted seat (confirmed or pending_confirmation) with a
  non-empty waitlist does NOT decrement occupied_count: the seat becomes a
  hold for the waitlist head (pending_confirmation), so no new join can
  snipe it. Only an empty waitlist returns the seat to the pool.

  A hold is answered by accept_promotion or released after
  PROMOTION_TIMEOUT_MINUTES, which cascades exactly like a cancellation.
"""

import asyncio
import random
import time
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.attributes import set_committed_value

from gym_booking.core.config import get_settings
from gym_booking.core.exceptions import (
    AlreadyReserved,
    ClassNotFound,
    NotConfirmed,
    NotOwner,
    NotPending,
    PromotionExpired,
    ReservationError,
    ReservationNotFound,
    ServiceUnavailable,
)
from gym_booking.core.logging import get_logger
from gym_booking.core.metrics import (
    record_operation,
    record_promotion,
    record_seat_released,
    record_version_conflict,
    reservation_latency,
)
from gym_booking.models.class_session import ClassSession
from gym_booking.models.reservation import (
    Reservation,
    ReservationStatus,
    SEAT_HOLDING_STATUSES,
)
from gym_booking.services.cache_service import invalidate_class_cache
from gym_booking.services.interfaces.notification import PROMOTION_EXPIRED, WAITLIST_SUCCESS
from gym_booking.services.notification_factory import get_notifier

logger = get_logger(__name__)

# Booking button actions
ACTION_RESERVE = "RESERVE"
ACTION_JOIN_QUEUE = "JOIN_QUEUE"
ACTION_CANCEL = "CANCEL"
ACTION_CONFIRM_SEAT = "CONFIRM_SEAT"

STATUS_NONE = "none"

# Entries vanish once no coroutine holds or waits on the lock
_class_locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()


class _VersionConflict(Exception):
    """The class or a reservation we read changed before our write."""


@dataclass
class _TxResult:
    value: object = None
    promoted: Optional[Reservation] = None
    expired: Optional[Reservation] = None
    error: Optional[ReservationError] = None


@dataclass(frozen=True)
class CancellationResult:
    reservation_id: int
    class_id: int
    released_status: str
    promoted_reservation_id: Optional[int] = None


@dataclass(frozen=True)
class ReservationStatusView:
    class_id: int
    status: str
    action: str
    reservation_id: Optional[int] = None
    waitlist_position: Optional[int] = None
    promotion_expires_at: Optional[datetime] = None


@dataclass(frozen=True)
class Roster:
    class_session: ClassSession
    attendees: list
    waitlist: list


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def promotion_deadline(reservation: Reservation) -> Optional[datetime]:
    """When an unanswered seat hold is released, or None if there is no hold."""
    if reservation.status != ReservationStatus.PENDING_CONFIRMATION or reservation.promoted_at is None:
        return None
    timeout = timedelta(minutes=get_settings().PROMOTION_TIMEOUT_MINUTES)
    return _as_utc(reservation.promoted_at) + timeout


def _hold_expired(reservation: Reservation, now: datetime) -> bool:
    deadline = promotion_deadline(reservation)
    return deadline is not None and deadline <= now


def _class_lock(class_id: int) -> asyncio.Lock:
    lock = _class_locks.get(class_id)
    if lock is None:
        lock = asyncio.Lock()
        _class_locks[class_id] = lock
    return lock


def _backoff_delay(attempt: int) -> float:
    base = get_settings().RETRY_BACKOFF_BASE_SECONDS
    return base * (2 ** (attempt - 1)) + random.uniform(0, base)


# --- Reads -------------------------------------------------------------------


async def _load_class(db: AsyncSession, class_id: int) -> ClassSession:
    result = await db.execute(
        select(ClassSession)
        .where(ClassSession.id == class_id)
        .execution_options(populate_existing=True)
    )
    class_session = result.scalar_one_or_none()
    if class_session is None:
        raise ClassNotFound(class_id)
    return class_session


async def _load_reservation(db: AsyncSession, reservation_id: int) -> Optional[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.id == reservation_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _find_reservation(db: AsyncSession, class_id: int, user_id: str) -> Optional[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(Reservation.class_id == class_id, Reservation.user_id == user_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _waitlist_head(db: AsyncSession, class_id: int) -> Optional[Reservation]:
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.class_id == class_id,
            Reservation.status == ReservationStatus.WAITLIST.value,
        )
        .order_by(Reservation.ordered_at.asc(), Reservation.id.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def _waitlist_position(db: AsyncSession, reservation: Reservation) -> int:
    ahead = await db.execute(
        select(func.count())
        .select_from(Reservation)
        .where(
            Reservation.class_id == reservation.class_id,
            Reservation.status == ReservationStatus.WAITLIST.value,
            or_(
                Reservation.ordered_at < reservation.ordered_at,
                and_(
                    Reservation.ordered_at == reservation.ordered_at,
                    Reservation.id < reservation.id,
                ),
            ),
        )
    )
    return ahead.scalar() + 1


# --- Writes ------------------------------------------------------------------


async def _claim_class(db: AsyncSession, class_session: ClassSession, occupied_count: int) -> None:
    """Write the new headcount if nobody changed the class since we read it."""
    result = await db.execute(
        update(ClassSession)
        .where(
            ClassSession.id == class_session.id,
            ClassSession.version == class_session.version,
        )
        .values(occupied_count=occupied_count, version=ClassSession.version + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise _VersionConflict()

    set_committed_value(class_session, "occupied_count", occupied_count)
    set_committed_value(class_session, "version", class_session.version + 1)


async def _update_reservation(db: AsyncSession, reservation: Reservation, **values) -> None:
    """Write to a reservation only if it still has the status we read."""
    result = await db.execute(
        update(Reservation)
        .where(
            Reservation.id == reservation.id,
            Reservation.status == reservation.status,
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise _VersionConflict()

    for key, value in values.items():
        set_committed_value(reservation, key, value)


async def _delete_reservation(db: AsyncSession, reservation: Reservation) -> None:
    """Delete a reservation only if it still has the status we read."""
    result = await db.execute(
        delete(Reservation)
        .where(
            Reservation.id == reservation.id,
            Reservation.status == reservation.status,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise _VersionConflict()

    # Keeps its loaded attributes for the after-commit notifications
    db.expunge(reservation)


async def _release_seat(db: AsyncSession, class_session: ClassSession, trigger: str) -> Optional[Reservation]:
    """
    Hand a freed counted seat to the waitlist head as a hold, or back to the
    pool when nobody is queued. Returns the promoted reservation, if any.
    """
    head = await _waitlist_head(db, class_session.id)
    if head is not None:
        # The seat stays counted: it is now held for the head of the queue
        await _claim_class(db, class_session, class_session.occupied_count)
        await _update_reservation(
            db,
            head,
            status=ReservationStatus.PENDING_CONFIRMATION.value,
            promoted_at=_utcnow(),
        )
        record_promotion(trigger)
        return head

    await _claim_class(db, class_session, max(class_session.occupied_count - 1, 0))
    record_seat_released(trigger)
    logger.info(
        "seat_released",
        class_id=class_session.id,
        trigger=trigger,
        occupied_count=class_session.occupied_count,
    )
    return None


# --- Transaction runner ------------------------------------------------------


async def _run_class_transaction(
    db: AsyncSession,
    operation: str,
    class_id: int,
    attempt_fn: Callable[[], Awaitable[_TxResult]],
) -> _TxResult:
    """
    Run attempt_fn as one transaction on the class, retrying on version
    conflicts. Side effects (notifications, cache) run only after commit.
    """
    settings = get_settings()
    start = time.perf_counter()
    try:
        for attempt in range(1, settings.MAX_RETRY_ATTEMPTS + 1):
            try:
                async with _class_lock(class_id):
                    outcome = await attempt_fn()
                    await db.commit()
            except _VersionConflict:
                await db.rollback()
                record_version_conflict(operation)
                logger.info(
                    "reservation_retry",
                    operation=operation,
                    class_id=class_id,
                    attempt=attempt,
                    reason="version_conflict",
                )
                if attempt < settings.MAX_RETRY_ATTEMPTS:
                    await asyncio.sleep(_backoff_delay(attempt))
                continue
            except ReservationError as e:
                await db.rollback()
                record_operation(operation, e.code.lower())
                raise
            except Exception:
                await db.rollback()
                record_operation(operation, "error")
                raise

            await _after_commit(outcome)
            if outcome.error is not None:
                record_operation(operation, outcome.error.code.lower())
                raise outcome.error
            return outcome

        record_operation(operation, "unavailable")
        logger.warning(
            "reservation_unavailable",
            operation=operation,
            class_id=class_id,
            attempts=settings.MAX_RETRY_ATTEMPTS,
        )
        raise ServiceUnavailable(operation)
    finally:
        reservation_latency.labels(operation=operation).observe(time.perf_counter() - start)


async def _after_commit(outcome: _TxResult) -> None:
    notifier = get_notifier()

    if outcome.expired is not None:
        expired = outcome.expired
        await notifier.notify(
            expired.user_id,
            PROMOTION_EXPIRED,
            "Seat offer expired",
            "You did not confirm your seat in time, so it was offered to the next person in line.",
            related_id=expired.class_id,
        )

    if outcome.promoted is not None:
        promoted = outcome.promoted
        logger.info(
            "waitlist_promoted",
            reservation_id=promoted.id,
            class_id=promoted.class_id,
            user_id=promoted.user_id,
        )
        await notifier.notify(
            promoted.user_id,
            WAITLIST_SUCCESS,
            "A seat opened up!",
            "A seat is being held for you. Confirm it before the offer expires.",
            related_id=promoted.class_id,
        )

    await invalidate_class_cache()


# --- Operations --------------------------------------------------------------


async def join_class(db: AsyncSession, class_id: int, user_id: str) -> Reservation:
    """
    Take a free seat, or join the waitlist when the class is full.
    The branch is decided inside the class transaction.
    """

    async def attempt() -> _TxResult:
        class_session = await _load_class(db, class_id)
        existing = await _find_reservation(db, class_id, user_id)
        if existing is not None:
            raise AlreadyReserved(class_id, existing.status)

        if class_session.occupied_count < class_session.max_capacity:
            await _claim_class(db, class_session, class_session.occupied_count + 1)
            status = ReservationStatus.CONFIRMED
        else:
            await _claim_class(db, class_session, class_session.occupied_count)
            status = ReservationStatus.WAITLIST

        reservation = Reservation(
            class_id=class_id,
            user_id=user_id,
            status=status.value,
            ordered_at=_utcnow(),
            is_walk_in=False,
            attended=False,
        )
        db.add(reservation)
        await db.flush()
        await db.refresh(reservation)
        return _TxResult(value=reservation)

    outcome = await _run_class_transaction(db, "join", class_id, attempt)
    reservation = outcome.value
    record_operation("join", reservation.status)
    logger.info(
        "reservation_confirmed" if reservation.status == ReservationStatus.CONFIRMED else "waitlist_joined",
        reservation_id=reservation.id,
        class_id=class_id,
        user_id=user_id,
    )
    return reservation


async def cancel_reservation(db: AsyncSession, reservation_id: int, user_id: str) -> CancellationResult:
    """
    Cancel the caller's reservation.

    A freed counted seat goes to the waitlist head as a hold; only an empty
    waitlist decrements occupied_count. Retrying a completed cancellation
    raises ReservationNotFound and changes nothing.
    """
    known = await _load_reservation(db, reservation_id)
    if known is None:
        record_operation("cancel", "reservation_not_found")
        raise ReservationNotFound(reservation_id)
    class_id = known.class_id

    async def attempt() -> _TxResult:
        class_session = await _load_class(db, class_id)
        reservation = await _load_reservation(db, reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        if reservation.user_id != user_id:
            raise NotOwner(reservation_id)

        released_status = reservation.status
        promoted = None
        if reservation.holds_seat:
            promoted = await _release_seat(db, class_session, "cancel")
        else:
            # Queued users were never counted; bump the version only
            await _claim_class(db, class_session, class_session.occupied_count)

        await _delete_reservation(db, reservation)
        result = CancellationResult(
            reservation_id=reservation_id,
            class_id=class_id,
            released_status=released_status,
            promoted_reservation_id=promoted.id if promoted is not None else None,
        )
        return _TxResult(value=result, promoted=promoted)

    outcome = await _run_class_transaction(db, "cancel", class_id, attempt)
    result = outcome.value
    record_operation("cancel", result.released_status)
    logger.info(
        "reservation_cancelled",
        reservation_id=reservation_id,
        class_id=class_id,
        user_id=user_id,
        released_status=result.released_status,
        promoted_reservation_id=result.promoted_reservation_id,
    )
    return result


async def accept_promotion(db: AsyncSession, reservation_id: int, user_id: str) -> Reservation:
    """
    Confirm a held seat. The seat was already counted at promotion time, so
    occupied_count does not change.

    A hold past its deadline is released (cascading to the next waitlist
    head) and PromotionExpired is raised.
    """
    known = await _load_reservation(db, reservation_id)
    if known is None:
        record_operation("accept", "reservation_not_found")
        raise ReservationNotFound(reservation_id)
    class_id = known.class_id

    async def attempt() -> _TxResult:
        class_session = await _load_class(db, class_id)
        reservation = await _load_reservation(db, reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        if reservation.user_id != user_id:
            raise NotOwner(reservation_id)
        if reservation.status != ReservationStatus.PENDING_CONFIRMATION:
            raise NotPending(reservation_id, reservation.status)

        if _hold_expired(reservation, _utcnow()):
            promoted = await _release_seat(db, class_session, "expiry")
            await _delete_reservation(db, reservation)
            logger.info("promotion_expired", reservation_id=reservation_id, class_id=class_id, user_id=user_id)
            return _TxResult(
                promoted=promoted,
                expired=reservation,
                error=PromotionExpired(reservation_id),
            )

        await _claim_class(db, class_session, class_session.occupied_count)
        await _update_reservation(db, reservation, status=ReservationStatus.CONFIRMED.value)
        await db.refresh(reservation)
        return _TxResult(value=reservation)

    outcome = await _run_class_transaction(db, "accept", class_id, attempt)
    record_operation("accept", "confirmed")
    logger.info("promotion_accepted", reservation_id=reservation_id, class_id=class_id, user_id=user_id)
    return outcome.value


async def walk_in(db: AsyncSession, class_id: int, user_id: str) -> Reservation:
    """
    Staff override: confirm an on-site sign-up regardless of capacity.
    occupied_count may end up above max_capacity; that is accepted for walk-ins.
    """

    async def attempt() -> _TxResult:
        class_session = await _load_class(db, class_id)
        existing = await _find_reservation(db, class_id, user_id)
        if existing is not None:
            raise AlreadyReserved(class_id, existing.status)

        await _claim_class(db, class_session, class_session.occupied_count + 1)
        reservation = Reservation(
            class_id=class_id,
            user_id=user_id,
            status=ReservationStatus.CONFIRMED.value,
            ordered_at=_utcnow(),
            is_walk_in=True,
            attended=True,
        )
        db.add(reservation)
        await db.flush()
        await db.refresh(reservation)
        return _TxResult(value=(reservation, class_session.occupied_count > class_session.max_capacity))

    outcome = await _run_class_transaction(db, "walk_in", class_id, attempt)
    reservation, over_capacity = outcome.value
    record_operation("walk_in", "confirmed")
    logger.info(
        "walk_in_added",
        reservation_id=reservation.id,
        class_id=class_id,
        user_id=user_id,
        over_capacity=over_capacity,
    )
    return reservation


async def expire_promotion(db: AsyncSession, reservation_id: int) -> bool:
    """
    Release an unanswered hold whose response window has passed, as if its
    owner had cancelled. Returns False (and changes nothing) when the
    reservation is gone, no longer pending, or still inside its window.
    """
    known = await _load_reservation(db, reservation_id)
    if known is None:
        return False
    class_id = known.class_id

    async def attempt() -> _TxResult:
        class_session = await _load_class(db, class_id)
        reservation = await _load_reservation(db, reservation_id)
        if reservation is None or not _hold_expired(reservation, _utcnow()):
            return _TxResult(value=False)

        promoted = await _release_seat(db, class_session, "expiry")
        await _delete_reservation(db, reservation)
        return _TxResult(value=True, promoted=promoted, expired=reservation)

    outcome = await _run_class_transaction(db, "expire", class_id, attempt)
    if outcome.value:
        record_operation("expire", "expired")
        logger.info(
            "promotion_expired",
            reservation_id=reservation_id,
            class_id=class_id,
            user_id=outcome.expired.user_id,
            promoted_reservation_id=outcome.promoted.id if outcome.promoted is not None else None,
        )
    return outcome.value


async def expire_stale_promotions(db: AsyncSession) -> int:
    """Release every hold past its deadline. Returns how many were released."""
    cutoff = _utcnow() - timedelta(minutes=get_settings().PROMOTION_TIMEOUT_MINUTES)
    result = await db.execute(
        select(Reservation.id)
        .where(
            Reservation.status == ReservationStatus.PENDING_CONFIRMATION.value,
            Reservation.promoted_at <= cutoff,
        )
        .order_by(Reservation.promoted_at.asc(), Reservation.id.asc())
    )
    stale_ids = list(result.scalars().all())
    await db.rollback()

    expired = 0
    for reservation_id in stale_ids:
        try:
            if await expire_promotion(db, reservation_id):
                expired += 1
        except ServiceUnavailable:
            # Left pending; the next sweep picks it up again
            logger.warning("promotion_expiry_deferred", reservation_id=reservation_id)
    return expired


async def set_attendance(db: AsyncSession, reservation_id: int, attended: bool) -> Reservation:
    """Staff marks whether a confirmed attendee showed up."""
    known = await _load_reservation(db, reservation_id)
    if known is None:
        record_operation("attendance", "reservation_not_found")
        raise ReservationNotFound(reservation_id)
    class_id = known.class_id

    async def attempt() -> _TxResult:
        class_session = await _load_class(db, class_id)
        reservation = await _load_reservation(db, reservation_id)
        if reservation is None:
            raise ReservationNotFound(reservation_id)
        if reservation.status != ReservationStatus.CONFIRMED:
            raise NotConfirmed(reservation_id, reservation.status)

        await _claim_class(db, class_session, class_session.occupied_count)
        await _update_reservation(db, reservation, attended=attended)
        await db.refresh(reservation)
        return _TxResult(value=reservation)

    outcome = await _run_class_transaction(db, "attendance", class_id, attempt)
    record_operation("attendance", "updated")
    return outcome.value


# --- Read views --------------------------------------------------------------


async def get_reservation_status(db: AsyncSession, class_id: int, user_id: str) -> ReservationStatusView:
    """The user's standing on a class and the booking button it maps to."""
    class_session = await _load_class(db, class_id)
    reservation = await _find_reservation(db, class_id, user_id)

    if reservation is None:
        action = ACTION_JOIN_QUEUE if class_session.is_full else ACTION_RESERVE
        return ReservationStatusView(class_id=class_id, status=STATUS_NONE, action=action)

    if reservation.status == ReservationStatus.PENDING_CONFIRMATION:
        return ReservationStatusView(
            class_id=class_id,
            status=reservation.status,
            action=ACTION_CONFIRM_SEAT,
            reservation_id=reservation.id,
            promotion_expires_at=promotion_deadline(reservation),
        )

    position = None
    if reservation.status == ReservationStatus.WAITLIST:
        position = await _waitlist_position(db, reservation)
    return ReservationStatusView(
        class_id=class_id,
        status=reservation.status,
        action=ACTION_CANCEL,
        reservation_id=reservation.id,
        waitlist_position=position,
    )


async def get_pending_promotion(db: AsyncSession, user_id: str) -> Optional[Reservation]:
    """The user's oldest seat hold across all classes, if any."""
    result = await db.execute(
        select(Reservation)
        .where(
            Reservation.user_id == user_id,
            Reservation.status == ReservationStatus.PENDING_CONFIRMATION.value,
        )
        .order_by(Reservation.promoted_at.asc(), Reservation.id.asc())
        .limit(1)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def list_user_reservations(db: AsyncSession, user_id: str) -> list[Reservation]:
    """All live reservations of a user, newest first."""
    result = await db.execute(
        select(Reservation)
        .where(Reservation.user_id == user_id)
        .order_by(Reservation.ordered_at.desc(), Reservation.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_roster(db: AsyncSession, class_id: int) -> Roster:
    """Seat holders (confirmed and held) and the ordered waitlist of a class."""
    class_session = await _load_class(db, class_id)
    result = await db.execute(
        select(Reservation)
        .where(Reservation.class_id == class_id)
        .order_by(Reservation.ordered_at.asc(), Reservation.id.asc())
        .execution_options(populate_existing=True)
    )
    reservations = list(result.scalars().all())
    return Roster(
        class_session=class_session,
        attendees=[r for r in reservations if r.status in SEAT_HOLDING_STATUSES],
        waitlist=[r for r in reservations if r.status == ReservationStatus.WAITLIST],
    )
