from datetime import datetime

import anyio
import pytest
from sqlalchemy.exc import SQLAlchemyError

from campus_bookings import ledger
from campus_bookings.db import Session
from campus_bookings.errors import (Forbidden, InvalidServiceType, InvalidTransition, ListingNotFound,
                                    NotFound, StorageError, ValidationError)
from campus_bookings.models import Booking, BookingStatus, PaymentStatus, ServiceType
from conftest import OTHER_OWNER, OTHER_STUDENT, OWNER, STUDENT, make_listing

pytestmark = pytest.mark.anyio

HOSTEL_DETAILS = {"checkInDate": "2026-07-01", "duration": "3 months"}


async def _hostel_booking(session, **details):
    listing = await make_listing(session, ServiceType.HOSTEL)
    booking = await ledger.create_booking(session, STUDENT, "hostel", listing.id,
                                          {**HOSTEL_DETAILS, **details})
    return listing, booking


async def test_create_booking_starts_pending_and_unpaid(session):
    listing, booking = await _hostel_booking(session, additionalRequirements="  ground floor  ")

    assert booking.status == BookingStatus.PENDING.value
    assert booking.payment_status == PaymentStatus.UNPAID.value
    assert booking.owner_id == OWNER
    assert booking.student_id == STUDENT
    assert booking.service_id == listing.id
    assert booking.booking_details == {
        "checkInDate": "2026-07-01",
        "duration": "3 months",
        "additionalRequirements": "ground floor",
    }
    assert booking.created_at is not None
    assert booking.updated_at is not None


@pytest.mark.parametrize("service_type, details, missing", [
    ("hostel", {"duration": "1 month"}, "checkInDate"),
    ("hostel", {"checkInDate": "2026-07-01"}, "duration"),
    ("hostel", {"checkInDate": "2026-07-01", "duration": "  "}, "duration"),
    ("mess", {"duration": "1 month"}, "startDate"),
    ("mess", {"startDate": "2026-07-01"}, "duration"),
    ("gym", {}, "duration"),
])
async def test_create_booking_requires_type_specific_fields(session, service_type, details, missing):
    listing = await make_listing(session, service_type)

    with pytest.raises(ValidationError) as exc_info:
        await ledger.create_booking(session, STUDENT, service_type, listing.id, details)

    assert exc_info.value.field == missing


async def test_gym_booking_needs_only_duration(session):
    listing = await make_listing(session, ServiceType.GYM, price=800)

    booking = await ledger.create_booking(session, STUDENT, "gym", listing.id,
                                          {"duration": "6 months", "checkInDate": "2026-07-01"})

    assert booking.booking_details == {"duration": "6 months"}


async def test_create_booking_accepts_javascript_timestamps(session):
    listing = await make_listing(session, ServiceType.MESS, price=3000)

    booking = await ledger.create_booking(session, STUDENT, "mess", listing.id,
                                          {"startDate": "2026-08-01T00:00:00.000Z", "duration": "1 month"})

    assert booking.booking_details["startDate"] == "2026-08-01"


async def test_create_booking_rejects_malformed_date(session):
    listing = await make_listing(session, ServiceType.HOSTEL)

    with pytest.raises(ValidationError) as exc_info:
        await ledger.create_booking(session, STUDENT, "hostel", listing.id,
                                    {"checkInDate": "next tuesday", "duration": "1 month"})

    assert exc_info.value.field == "checkInDate"


async def test_create_booking_rejects_unknown_service_type(session):
    with pytest.raises(InvalidServiceType):
        await ledger.create_booking(session, STUDENT, "library", "anything", HOSTEL_DETAILS)


async def test_create_booking_requires_existing_listing(session):
    with pytest.raises(ListingNotFound):
        await ledger.create_booking(session, STUDENT, "hostel", "missing", HOSTEL_DETAILS)


async def test_service_type_selects_listing_table(session):
    mess = await make_listing(session, ServiceType.MESS)

    with pytest.raises(ListingNotFound):
        await ledger.create_booking(session, STUDENT, "hostel", mess.id, HOSTEL_DETAILS)


async def test_owner_is_captured_at_creation(session):
    listing, booking = await _hostel_booking(session)

    listing.owner_id = OTHER_OWNER
    await session.commit()
    await session.refresh(booking)

    assert booking.owner_id == OWNER
    with pytest.raises(Forbidden):
        await ledger.update_booking_status(session, OTHER_OWNER, booking.id, "accepted")


async def test_owner_accepts_pending_booking(session):
    _, booking = await _hostel_booking(session)
    created_update = booking.updated_at

    accepted = await ledger.update_booking_status(session, OWNER, booking.id, "accepted")

    assert accepted.status == BookingStatus.ACCEPTED.value
    assert accepted.updated_at >= created_update
    assert accepted.payment_status == PaymentStatus.UNPAID.value


@pytest.mark.parametrize("actor", [STUDENT, OTHER_OWNER, OTHER_STUDENT])
async def test_only_owner_may_decide(session, actor):
    _, booking = await _hostel_booking(session)

    with pytest.raises(Forbidden):
        await ledger.update_booking_status(session, actor, booking.id, "accepted")

    await session.refresh(booking)
    assert booking.status == BookingStatus.PENDING.value


async def test_update_unknown_booking(session):
    with pytest.raises(NotFound):
        await ledger.update_booking_status(session, OWNER, "missing", "accepted")


@pytest.mark.parametrize("target", ["cancelled", "pending", "archived"])
async def test_owner_can_only_accept_or_reject(session, target):
    _, booking = await _hostel_booking(session)

    with pytest.raises(ValidationError):
        await ledger.update_booking_status(session, OWNER, booking.id, target)


async def test_decided_booking_cannot_be_decided_again(session):
    _, booking = await _hostel_booking(session)
    await ledger.update_booking_status(session, OWNER, booking.id, "rejected")

    with pytest.raises(InvalidTransition):
        await ledger.update_booking_status(session, OWNER, booking.id, "accepted")


async def test_second_of_two_racing_decisions_fails(session):
    _, booking = await _hostel_booking(session)

    async with Session() as first, Session() as second:
        # Both requests read the booking while it is still pending.
        assert (await first.get(Booking, booking.id)).status == "pending"
        assert (await second.get(Booking, booking.id)).status == "pending"

        await ledger.update_booking_status(first, OWNER, booking.id, "accepted")
        with pytest.raises(InvalidTransition) as exc_info:
            await ledger.update_booking_status(second, OWNER, booking.id, "rejected")

    assert exc_info.value.current == "accepted"
    await session.refresh(booking)
    assert booking.status == BookingStatus.ACCEPTED.value


async def test_concurrent_decisions_only_one_succeeds(session):
    _, booking = await _hostel_booking(session)
    outcomes = {}

    async def decide(target):
        async with Session() as request_session:
            try:
                await ledger.update_booking_status(request_session, OWNER, booking.id, target)
                outcomes[target] = "ok"
            except InvalidTransition:
                outcomes[target] = "conflict"

    async with anyio.create_task_group() as tg:
        tg.start_soon(decide, "accepted")
        tg.start_soon(decide, "rejected")

    assert sorted(outcomes.values()) == ["conflict", "ok"]
    winner = next(target for target, outcome in outcomes.items() if outcome == "ok")
    await session.refresh(booking)
    assert booking.status == winner


async def test_student_cancels_pending_booking(session):
    _, booking = await _hostel_booking(session)

    cancelled = await ledger.cancel_booking(session, STUDENT, booking.id)

    assert cancelled.status == BookingStatus.CANCELLED.value


async def test_only_student_may_cancel(session):
    _, booking = await _hostel_booking(session)

    with pytest.raises(Forbidden):
        await ledger.cancel_booking(session, OWNER, booking.id)


@pytest.mark.parametrize("terminal", ["accepted", "rejected", "cancelled"])
async def test_cancel_terminal_booking_fails(session, terminal):
    _, booking = await _hostel_booking(session)
    booking.status = terminal
    await session.commit()

    with pytest.raises(InvalidTransition):
        await ledger.cancel_booking(session, STUDENT, booking.id)


async def test_owner_listing_is_newest_first_with_snapshots(session):
    hostel = await make_listing(session, ServiceType.HOSTEL, room_type="double", address="North Campus",
                                images=[{"url": "https://img.test/1.jpg"}])
    mess = await make_listing(session, ServiceType.MESS, price=3000, mess_type="veg")
    older = await ledger.create_booking(session, STUDENT, "hostel", hostel.id, HOSTEL_DETAILS)
    newer = await ledger.create_booking(session, OTHER_STUDENT, "mess", mess.id,
                                        {"startDate": "2026-07-01", "duration": "1 month"})
    older.created_at = datetime(2026, 1, 1)
    newer.created_at = datetime(2026, 2, 1)
    await session.commit()

    views = await ledger.list_bookings_for_owner(session, OWNER)

    assert [view.id for view in views] == [newer.id, older.id]
    assert views[0].service_details.type_label == "veg"
    assert views[1].service_details.name == "Test hostel"
    assert views[1].service_details.address == "North Campus"
    assert views[1].service_details.images == [{"url": "https://img.test/1.jpg"}]


async def test_owner_listing_filters_by_status(session):
    listing, booking = await _hostel_booking(session)
    other = await ledger.create_booking(session, OTHER_STUDENT, "hostel", listing.id, HOSTEL_DETAILS)
    await ledger.update_booking_status(session, OWNER, other.id, "accepted")

    pending = await ledger.list_bookings_for_owner(session, OWNER, "pending")
    accepted = await ledger.list_bookings_for_owner(session, OWNER, "accepted")

    assert [view.id for view in pending] == [booking.id]
    assert [view.id for view in accepted] == [other.id]
    assert await ledger.list_bookings_for_owner(session, OTHER_OWNER) == []
    with pytest.raises(ValidationError):
        await ledger.list_bookings_for_owner(session, OWNER, "archived")


async def test_customers_are_accepted_bookings(session):
    listing, booking = await _hostel_booking(session)
    await ledger.create_booking(session, OTHER_STUDENT, "hostel", listing.id, HOSTEL_DETAILS)
    await ledger.update_booking_status(session, OWNER, booking.id, "accepted")

    customers = await ledger.list_customers_for_owner(session, OWNER)

    assert [view.student for view in customers] == [STUDENT]


async def test_student_listing(session):
    _, booking = await _hostel_booking(session)
    gym = await make_listing(session, ServiceType.GYM, owner_id=OTHER_OWNER, price=800)
    await ledger.create_booking(session, OTHER_STUDENT, "gym", gym.id, {"duration": "1 month"})

    views = await ledger.list_bookings_for_student(session, STUDENT)

    assert [view.id for view in views] == [booking.id]


async def test_deleted_listing_reads_as_empty_snapshot(session):
    listing, booking = await _hostel_booking(session)
    await session.delete(listing)
    await session.commit()

    views = await ledger.list_bookings_for_student(session, STUDENT)

    assert views[0].id == booking.id
    assert views[0].service_details is None


async def test_pending_booking_ids(session):
    listing, booking = await _hostel_booking(session)
    decided = await ledger.create_booking(session, OTHER_STUDENT, "hostel", listing.id, HOSTEL_DETAILS)
    await ledger.update_booking_status(session, OWNER, decided.id, "rejected")

    assert await ledger.pending_booking_ids(session, OWNER) == [booking.id]


async def test_booking_visible_to_its_parties_only(session):
    _, booking = await _hostel_booking(session)

    assert (await ledger.get_booking(session, STUDENT, booking.id)).id == booking.id
    assert (await ledger.get_booking(session, OWNER, booking.id)).service_details is not None
    with pytest.raises(Forbidden):
        await ledger.get_booking(session, OTHER_STUDENT, booking.id)
    with pytest.raises(NotFound):
        await ledger.get_booking(session, STUDENT, "missing")


async def test_payment_status_is_independent_of_status(session):
    _, booking = await _hostel_booking(session)

    paid = await ledger.set_payment_status(session, OWNER, booking.id, "paid")

    assert paid.payment_status == PaymentStatus.PAID.value
    assert paid.status == BookingStatus.PENDING.value
    with pytest.raises(Forbidden):
        await ledger.set_payment_status(session, STUDENT, booking.id, "unpaid")
    with pytest.raises(ValidationError):
        await ledger.set_payment_status(session, OWNER, booking.id, "refunded")


async def test_storage_failures_surface_as_storage_error(session, monkeypatch):
    listing = await make_listing(session, ServiceType.HOSTEL)

    async def broken_commit():
        raise SQLAlchemyError("disk I/O error")

    monkeypatch.setattr(session, "commit", broken_commit)
    with pytest.raises(StorageError):
        await ledger.create_booking(session, STUDENT, "hostel", listing.id, HOSTEL_DETAILS)
