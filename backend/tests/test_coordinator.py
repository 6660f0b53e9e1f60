"""
Tests for the reservation coordinator: join, cancel, promotion, acceptance,
walk-ins and the read views that drive the booking button.
"""

import pytest

from gym_booking.core.exceptions import (
    AlreadyReserved,
    ClassNotFound,
    NotConfirmed,
    NotOwner,
    NotPending,
    PromotionExpired,
    ReservationNotFound,
)
from gym_booking.services.reservation_coordinator import (
    ACTION_CANCEL,
    ACTION_CONFIRM_SEAT,
    ACTION_JOIN_QUEUE,
    ACTION_RESERVE,
    STATUS_NONE,
    accept_promotion,
    cancel_reservation,
    get_pending_promotion,
    get_reservation_status,
    join_class,
    list_roster,
    list_user_reservations,
    set_attendance,
    walk_in,
)


# --- Join --------------------------------------------------------------------


@pytest.mark.asyncio
async def test_join_with_free_seat_confirms(db_session, make_class, assert_counter_matches):
    cls = await make_class(max_capacity=2)

    reservation = await join_class(db_session, cls.id, "alice")

    assert reservation.status == "confirmed"
    assert reservation.class_id == cls.id
    assert reservation.promoted_at is None
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 1


@pytest.mark.asyncio
async def test_join_full_class_queues_without_counting(db_session, make_class, assert_counter_matches):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")

    queued = await join_class(db_session, cls.id, "bob")

    assert queued.status == "waitlist"
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 1


@pytest.mark.asyncio
async def test_join_twice_is_rejected(db_session, make_class):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")
    await join_class(db_session, cls.id, "bob")

    with pytest.raises(AlreadyReserved):
        await join_class(db_session, cls.id, "alice")
    with pytest.raises(AlreadyReserved) as exc:
        await join_class(db_session, cls.id, "bob")
    assert exc.value.details["status"] == "waitlist"


@pytest.mark.asyncio
async def test_join_unknown_class(db_session):
    with pytest.raises(ClassNotFound):
        await join_class(db_session, 4242, "alice")


@pytest.mark.asyncio
async def test_join_bumps_class_version(db_session, make_class, fetch_class):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")
    await join_class(db_session, cls.id, "bob")

    assert (await fetch_class(cls.id)).version == 3


# --- Cancel ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_cancel_without_waitlist_frees_the_seat(db_session, make_class, assert_counter_matches):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")

    result = await cancel_reservation(db_session, alice.id, "alice")

    assert result.released_status == "confirmed"
    assert result.promoted_reservation_id is None
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 0

    # Joinable again
    again = await join_class(db_session, cls.id, "carol")
    assert again.status == "confirmed"


@pytest.mark.asyncio
async def test_cancel_with_waitlist_holds_seat_for_head(
    db_session, make_class, fetch_reservations, assert_counter_matches, notifier
):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")

    result = await cancel_reservation(db_session, alice.id, "alice")

    assert result.promoted_reservation_id == bob.id
    reservations = await fetch_reservations(cls.id)
    assert [(r.user_id, r.status) for r in reservations] == [("bob", "pending_confirmation")]
    assert reservations[0].promoted_at is not None
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 1

    assert notifier.for_user("bob") == [
        {"user_id": "bob", "type": "waitlist_success", "related_id": cls.id}
    ]


@pytest.mark.asyncio
async def test_held_seat_blocks_new_joins(db_session, make_class):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    await join_class(db_session, cls.id, "bob")
    await cancel_reservation(db_session, alice.id, "alice")

    sniper = await join_class(db_session, cls.id, "mallory")

    assert sniper.status == "waitlist"


@pytest.mark.asyncio
async def test_promotion_is_first_come_first_served(db_session, make_class, fetch_reservations):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    for user in ("bob", "carol", "dave"):
        await join_class(db_session, cls.id, user)

    await cancel_reservation(db_session, alice.id, "alice")

    statuses = {r.user_id: r.status for r in await fetch_reservations(cls.id)}
    assert statuses == {
        "bob": "pending_confirmation",
        "carol": "waitlist",
        "dave": "waitlist",
    }


@pytest.mark.asyncio
async def test_cancel_waitlist_entry_leaves_counter_alone(
    db_session, make_class, fetch_reservations, assert_counter_matches
):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    await join_class(db_session, cls.id, "carol")

    result = await cancel_reservation(db_session, bob.id, "bob")

    assert result.released_status == "waitlist"
    assert result.promoted_reservation_id is None
    statuses = {r.user_id: r.status for r in await fetch_reservations(cls.id)}
    assert statuses == {"alice": "confirmed", "carol": "waitlist"}
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 1


@pytest.mark.asyncio
async def test_cancel_pending_hold_cascades_to_next_head(
    db_session, make_class, fetch_reservations, assert_counter_matches
):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    carol = await join_class(db_session, cls.id, "carol")
    await cancel_reservation(db_session, alice.id, "alice")

    result = await cancel_reservation(db_session, bob.id, "bob")

    assert result.released_status == "pending_confirmation"
    assert result.promoted_reservation_id == carol.id
    statuses = {r.user_id: r.status for r in await fetch_reservations(cls.id)}
    assert statuses == {"carol": "pending_confirmation"}
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 1


@pytest.mark.asyncio
async def test_cancel_pending_hold_with_empty_waitlist_frees_seat(
    db_session, make_class, assert_counter_matches
):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    await cancel_reservation(db_session, alice.id, "alice")

    await cancel_reservation(db_session, bob.id, "bob")

    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 0


@pytest.mark.asyncio
async def test_no_seat_loss_on_full_class(db_session, make_class, fetch_reservations, assert_counter_matches):
    cls = await make_class(max_capacity=3)
    confirmed = [await join_class(db_session, cls.id, f"member-{i}") for i in range(3)]
    await join_class(db_session, cls.id, "queued-1")
    await join_class(db_session, cls.id, "queued-2")

    await cancel_reservation(db_session, confirmed[1].id, "member-1")

    pending = [r for r in await fetch_reservations(cls.id) if r.status == "pending_confirmation"]
    assert [r.user_id for r in pending] == ["queued-1"]
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 3


@pytest.mark.asyncio
async def test_cancel_someone_elses_reservation(db_session, make_class, fetch_reservations):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")

    with pytest.raises(NotOwner):
        await cancel_reservation(db_session, alice.id, "mallory")

    assert [r.user_id for r in await fetch_reservations(cls.id)] == ["alice"]


@pytest.mark.asyncio
async def test_retried_cancel_does_not_promote_twice(
    db_session, make_class, fetch_reservations, assert_counter_matches
):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    await join_class(db_session, cls.id, "bob")
    await join_class(db_session, cls.id, "carol")
    await cancel_reservation(db_session, alice.id, "alice")

    with pytest.raises(ReservationNotFound):
        await cancel_reservation(db_session, alice.id, "alice")

    statuses = {r.user_id: r.status for r in await fetch_reservations(cls.id)}
    assert statuses == {"bob": "pending_confirmation", "carol": "waitlist"}
    await assert_counter_matches(cls.id)


# --- AcceptPromotion ---------------------------------------------------------


@pytest.mark.asyncio
async def test_accept_promotion_confirms_without_counting_again(db_session, make_class, assert_counter_matches):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    await cancel_reservation(db_session, alice.id, "alice")

    accepted = await accept_promotion(db_session, bob.id, "bob")

    assert accepted.status == "confirmed"
    class_session = await assert_counter_matches(cls.id)
    assert class_session.occupied_count == 1


@pytest.mark.asyncio
async def test_accept_requires_pending_status(db_session, make_class):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")

    with pytest.raises(NotPending):
        await accept_promotion(db_session, alice.id, "alice")
    with pytest.raises(NotPending):
        await accept_promotion(db_session, bob.id, "bob")


@pytest.mark.asyncio
async def test_accept_requires_owner(db_session, make_class):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    await cancel_reservation(db_session, alice.id, "alice")

    with pytest.raises(NotOwner):
        await accept_promotion(db_session, bob.id, "alice")


@pytest.mark.asyncio
async def test_accept_unknown_reservation(db_session):
    with pytest.raises(ReservationNotFound):
        await accept_promotion(db_session, 999, "alice")


@pytest.mark.asyncio
async def test_accept_after_deadline_passes_seat_on(
    db_session, make_class, fetch_reservations, assert_counter_matches, age_promotion, notifier
):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    carol = await join_class(db_session, cls.id, "carol")
    await cancel_reservation(db_session, alice.id, "alice")
    await age_promotion(bob.id, minutes=31)

    with pytest.raises(PromotionExpired):
        await accept_promotion(db_session, bob.id, "bob")

    reservations = await fetch_reservations(cls.id)
    assert [(r.id, r.status) for r in reservations] == [(carol.id, "pending_confirmation")]
    await assert_counter_matches(cls.id)
    assert [n["type"] for n in notifier.for_user("bob")] == ["waitlist_success", "promotion_expired"]
    assert [n["type"] for n in notifier.for_user("carol")] == ["waitlist_success"]


@pytest.mark.asyncio
async def test_accept_inside_deadline_still_works(db_session, make_class, age_promotion):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")
    await cancel_reservation(db_session, alice.id, "alice")
    await age_promotion(bob.id, minutes=29)

    accepted = await accept_promotion(db_session, bob.id, "bob")

    assert accepted.status == "confirmed"


# --- WalkIn ------------------------------------------------------------------


@pytest.mark.asyncio
async def test_walk_in_ignores_capacity(db_session, make_class, assert_counter_matches):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")

    reservation = await walk_in(db_session, cls.id, "walker")

    assert reservation.status == "confirmed"
    assert reservation.is_walk_in is True
    assert reservation.attended is True
    class_session = await assert_counter_matches(cls.id, allow_over_capacity=True)
    assert class_session.occupied_count == 2


@pytest.mark.asyncio
async def test_walk_in_for_someone_already_listed(db_session, make_class):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")

    with pytest.raises(AlreadyReserved):
        await walk_in(db_session, cls.id, "alice")


@pytest.mark.asyncio
async def test_walk_in_unknown_class(db_session):
    with pytest.raises(ClassNotFound):
        await walk_in(db_session, 77, "walker")


@pytest.mark.asyncio
async def test_cancel_on_over_capacity_class_still_promotes(
    db_session, make_class, fetch_reservations, assert_counter_matches
):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")
    await walk_in(db_session, cls.id, "walker")
    await join_class(db_session, cls.id, "bob")

    await cancel_reservation(db_session, alice.id, "alice")

    statuses = {r.user_id: r.status for r in await fetch_reservations(cls.id)}
    assert statuses["bob"] == "pending_confirmation"
    await assert_counter_matches(cls.id, allow_over_capacity=True)


# --- Read views --------------------------------------------------------------


@pytest.mark.asyncio
async def test_status_view_drives_booking_button(db_session, make_class):
    cls = await make_class(max_capacity=1)

    view = await get_reservation_status(db_session, cls.id, "alice")
    assert (view.status, view.action) == (STATUS_NONE, ACTION_RESERVE)

    alice = await join_class(db_session, cls.id, "alice")
    view = await get_reservation_status(db_session, cls.id, "alice")
    assert (view.status, view.action, view.reservation_id) == ("confirmed", ACTION_CANCEL, alice.id)

    view = await get_reservation_status(db_session, cls.id, "bob")
    assert (view.status, view.action) == (STATUS_NONE, ACTION_JOIN_QUEUE)

    await join_class(db_session, cls.id, "bob")
    await join_class(db_session, cls.id, "carol")
    view = await get_reservation_status(db_session, cls.id, "carol")
    assert (view.status, view.action, view.waitlist_position) == ("waitlist", ACTION_CANCEL, 2)

    await cancel_reservation(db_session, alice.id, "alice")
    view = await get_reservation_status(db_session, cls.id, "bob")
    assert (view.status, view.action) == ("pending_confirmation", ACTION_CONFIRM_SEAT)
    assert view.promotion_expires_at is not None
    view = await get_reservation_status(db_session, cls.id, "carol")
    assert view.waitlist_position == 1


@pytest.mark.asyncio
async def test_status_for_unknown_class(db_session):
    with pytest.raises(ClassNotFound):
        await get_reservation_status(db_session, 31337, "alice")


@pytest.mark.asyncio
async def test_pending_promotion_spans_classes(db_session, make_class):
    yoga = await make_class(max_capacity=1, title="Yoga")
    hiit = await make_class(max_capacity=1, title="HIIT")
    assert await get_pending_promotion(db_session, "bob") is None

    alice = await join_class(db_session, yoga.id, "alice")
    await join_class(db_session, hiit.id, "carol")
    bob_yoga = await join_class(db_session, yoga.id, "bob")
    await join_class(db_session, hiit.id, "bob")
    await cancel_reservation(db_session, alice.id, "alice")

    pending = await get_pending_promotion(db_session, "bob")
    assert pending is not None
    assert pending.id == bob_yoga.id
    assert pending.status == "pending_confirmation"


@pytest.mark.asyncio
async def test_list_user_reservations(db_session, make_class):
    yoga = await make_class(max_capacity=1, title="Yoga")
    hiit = await make_class(max_capacity=1, title="HIIT")
    await join_class(db_session, yoga.id, "alice")
    await join_class(db_session, hiit.id, "alice")
    await join_class(db_session, hiit.id, "bob")

    reservations = await list_user_reservations(db_session, "alice")

    assert {r.class_id for r in reservations} == {yoga.id, hiit.id}
    assert all(r.user_id == "alice" for r in reservations)


@pytest.mark.asyncio
async def test_roster_splits_seat_holders_and_queue(db_session, make_class):
    cls = await make_class(max_capacity=2)
    alice = await join_class(db_session, cls.id, "alice")
    await join_class(db_session, cls.id, "bob")
    await join_class(db_session, cls.id, "carol")
    await join_class(db_session, cls.id, "dave")
    await cancel_reservation(db_session, alice.id, "alice")

    roster = await list_roster(db_session, cls.id)

    assert roster.class_session.id == cls.id
    assert [(r.user_id, r.status) for r in roster.attendees] == [
        ("bob", "confirmed"),
        ("carol", "pending_confirmation"),
    ]
    assert [r.user_id for r in roster.waitlist] == ["dave"]


# --- Attendance --------------------------------------------------------------


@pytest.mark.asyncio
async def test_mark_attendance(db_session, make_class):
    cls = await make_class(max_capacity=1)
    alice = await join_class(db_session, cls.id, "alice")

    marked = await set_attendance(db_session, alice.id, True)
    assert marked.attended is True

    unmarked = await set_attendance(db_session, alice.id, False)
    assert unmarked.attended is False


@pytest.mark.asyncio
async def test_attendance_only_for_confirmed(db_session, make_class):
    cls = await make_class(max_capacity=1)
    await join_class(db_session, cls.id, "alice")
    bob = await join_class(db_session, cls.id, "bob")

    with pytest.raises(NotConfirmed):
        await set_attendance(db_session, bob.id, True)
    with pytest.raises(ReservationNotFound):
        await set_attendance(db_session, 9999, True)
