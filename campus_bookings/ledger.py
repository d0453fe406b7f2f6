"""
This module contains the booking ledger: creating bookings and moving them through their lifecycle.

    pending -> accepted | rejected   (listing owner only)
    pending -> cancelled             (requesting student only)

Accepted, rejected and cancelled bookings are terminal. Every status change is
a conditional UPDATE on `status = 'pending'`, so two concurrent decisions on
the same booking cannot both succeed, even across server processes.
"""
import functools
import logging
from datetime import date, datetime
from typing import Any, Optional

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from .errors import Forbidden, InvalidTransition, NotFound, StorageError, ValidationError
from .listings import ListingRef, get_listing, parse_service_type, resolve_snapshot
from .models import Booking, BookingStatus, BookingView, PaymentStatus, ServiceType, utcnow

logger = logging.getLogger(__name__)

REQUIRED_DETAILS: dict[ServiceType, tuple[str, ...]] = {
    ServiceType.HOSTEL: ("checkInDate", "duration"),
    ServiceType.MESS: ("startDate", "duration"),
    ServiceType.GYM: ("duration",),
}
OPTIONAL_DETAILS = ("additionalRequirements",)
DATE_DETAILS = ("checkInDate", "startDate")

OWNER_DECISIONS = (BookingStatus.ACCEPTED, BookingStatus.REJECTED)


def storage_errors(func):
    """
    Re-raises persistence failures of a ledger operation as `StorageError`.
    """
    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        try:
            return await func(*args, **kwargs)
        except SQLAlchemyError as exc:
            logger.exception(f"Storage failure in {func.__name__}")
            raise StorageError() from exc
    return wrapper


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_date(field: str, value) -> str:
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        text = value.strip()
        try:
            return date.fromisoformat(text).isoformat()
        except ValueError:
            pass
        try:
            return datetime.fromisoformat(text).date().isoformat()
        except ValueError:
            pass
    raise ValidationError(field, f"{field} must be a valid date")


def validate_booking_details(service_type: ServiceType, details: Any) -> dict[str, Any]:
    """
    Checks booking details against the field requirements of the service type.

    Args:
        service_type (ServiceType): The kind of listing being booked.
        details (dict): Raw details as submitted by the student.

    Returns:
        dict: The normalised details. Dates are ISO strings and keys that do not
        apply to the service type are dropped.

    Raises:
        ValidationError: Naming the first missing or malformed field.
    """
    if details is None:
        details = {}
    if not isinstance(details, dict):
        raise ValidationError("bookingDetails", "bookingDetails must be an object")

    cleaned: dict[str, Any] = {}
    for field in REQUIRED_DETAILS[service_type]:
        value = details.get(field)
        if _is_blank(value):
            raise ValidationError(field, f"{field} is required for {service_type.value} bookings")
        if field in DATE_DETAILS:
            cleaned[field] = _parse_date(field, value)
        else:
            cleaned[field] = str(value).strip()

    for field in OPTIONAL_DETAILS:
        value = details.get(field)
        if not _is_blank(value):
            cleaned[field] = str(value).strip()
    return cleaned


def _parse_status(value) -> BookingStatus:
    try:
        return BookingStatus(value)
    except ValueError:
        raise ValidationError("status", f"Invalid booking status: {value!r}") from None


async def _load(session: AsyncSession, booking_id: str) -> Booking:
    booking = await session.get(Booking, booking_id)
    if booking is None:
        raise NotFound()
    return booking


async def _view(session: AsyncSession, booking: Booking) -> BookingView:
    listing = await resolve_snapshot(session, ListingRef(booking.service_type, booking.service_id))
    return BookingView.from_booking(booking, listing)


async def _transition(session: AsyncSession, booking: Booking, target: BookingStatus) -> Booking:
    """
    Moves a pending booking to `target` with a compare-and-set on its status.
    """
    if booking.status != BookingStatus.PENDING.value:
        logger.warning(f"Rejected transition of booking {booking.id} from {booking.status} to {target.value}.")
        raise InvalidTransition(booking.status, target.value)

    result = await session.execute(
        update(Booking)
        .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING.value)
        .values(status=target.value, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await session.rollback()
        await session.refresh(booking)
        logger.warning(f"Booking {booking.id} changed to {booking.status} before it could become {target.value}.")
        raise InvalidTransition(booking.status, target.value)

    await session.commit()
    await session.refresh(booking)
    logger.info(f"Booking {booking.id} is now {booking.status}.")
    return booking


@storage_errors
async def create_booking(session: AsyncSession, student_id: str, service_type, service_id: str,
                         booking_details: Optional[dict]) -> Booking:
    """
    Creates a pending, unpaid booking for a listing.

    The booking's owner is the listing's owner at this moment; later changes to
    the listing's ownership do not touch existing bookings.

    Raises:
        InvalidServiceType: If the service type is unknown.
        ListingNotFound: If the listing does not exist.
        ValidationError: If a required booking detail is missing.
    """
    service_type = parse_service_type(service_type)
    listing = await get_listing(session, ListingRef(service_type, service_id))
    details = validate_booking_details(service_type, booking_details)

    booking = Booking(
        student_id=student_id,
        owner_id=listing.owner_id,
        service_type=service_type.value,
        service_id=service_id,
        booking_details=details,
        status=BookingStatus.PENDING.value,
        payment_status=PaymentStatus.UNPAID.value,
    )
    session.add(booking)
    await session.commit()
    await session.refresh(booking)
    logger.info(f"Booking {booking.id} created by student {student_id} for {service_type.value} {service_id}.")
    return booking


@storage_errors
async def get_booking(session: AsyncSession, actor_id: str, booking_id: str) -> BookingView:
    booking = await _load(session, booking_id)
    if actor_id not in (booking.student_id, booking.owner_id):
        raise Forbidden()
    return await _view(session, booking)


async def _list(session: AsyncSession, *criteria) -> list[BookingView]:
    result = await session.execute(
        select(Booking).where(*criteria).order_by(Booking.created_at.desc())
    )
    return [await _view(session, booking) for booking in result.scalars().all()]


@storage_errors
async def list_bookings_for_owner(session: AsyncSession, owner_id: str,
                                  status: Optional[str] = None) -> list[BookingView]:
    """
    Lists the bookings of an owner's listings, newest first, optionally filtered by status.
    """
    criteria = [Booking.owner_id == owner_id]
    if status:
        criteria.append(Booking.status == _parse_status(status).value)
    return await _list(session, *criteria)


@storage_errors
async def list_bookings_for_student(session: AsyncSession, student_id: str) -> list[BookingView]:
    return await _list(session, Booking.student_id == student_id)


@storage_errors
async def list_customers_for_owner(session: AsyncSession, owner_id: str) -> list[BookingView]:
    """
    Lists the accepted bookings of an owner, i.e. their current customers.
    """
    return await _list(session, Booking.owner_id == owner_id,
                       Booking.status == BookingStatus.ACCEPTED.value)


@storage_errors
async def pending_booking_ids(session: AsyncSession, owner_id: str) -> list[str]:
    result = await session.execute(
        select(Booking.id)
        .where(Booking.owner_id == owner_id, Booking.status == BookingStatus.PENDING.value)
        .order_by(Booking.created_at)
    )
    return list(result.scalars().all())


@storage_errors
async def update_booking_status(session: AsyncSession, actor_id: str, booking_id: str, target) -> Booking:
    """
    Accepts or rejects a pending booking on behalf of its owner.

    Raises:
        ValidationError: If the target status is not accepted or rejected.
        NotFound: If the booking does not exist.
        Forbidden: If the actor is not the booking's owner.
        InvalidTransition: If the booking is no longer pending.
    """
    target = _parse_status(target)
    if target not in OWNER_DECISIONS:
        raise ValidationError("status", "Status must be either accepted or rejected")

    booking = await _load(session, booking_id)
    if booking.owner_id != actor_id:
        raise Forbidden("Not authorized to update this booking")
    return await _transition(session, booking, target)


@storage_errors
async def cancel_booking(session: AsyncSession, actor_id: str, booking_id: str) -> Booking:
    """
    Cancels a pending booking on behalf of the student who made it.
    """
    booking = await _load(session, booking_id)
    if booking.student_id != actor_id:
        raise Forbidden("Not authorized to cancel this booking")
    return await _transition(session, booking, BookingStatus.CANCELLED)


@storage_errors
async def set_payment_status(session: AsyncSession, actor_id: str, booking_id: str, payment_status) -> Booking:
    """
    Records whether the student has paid. Only the booking's owner may do this.

    The payment flag is independent of the booking status.
    """
    try:
        payment_status = PaymentStatus(payment_status)
    except ValueError:
        raise ValidationError("paymentStatus", f"Invalid payment status: {payment_status!r}") from None

    booking = await _load(session, booking_id)
    if booking.owner_id != actor_id:
        raise Forbidden("Not authorized to update this booking")

    booking.payment_status = payment_status.value
    booking.updated_at = utcnow()
    await session.commit()
    await session.refresh(booking)
    logger.info(f"Booking {booking.id} payment status set to {booking.payment_status}.")
    return booking
