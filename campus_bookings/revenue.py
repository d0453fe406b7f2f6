"""
This module contains the revenue aggregator for owner dashboards.

Revenue is recomputed on every call from the owner's accepted and paid
bookings. Listing prices are read at report time, so a price change also
changes the revenue reported for older bookings.
"""
import logging
import re
from collections import defaultdict
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings
from .ledger import storage_errors
from .listings import ListingRef, resolve_listing
from .models import (Booking, BookingStatus, MonthlyRevenue, PaymentStatus, RevenueSummary,
                     StudentSummary, Transaction, User)

logger = logging.getLogger(__name__)

_LEADING_INTEGER = re.compile(r"^\s*(\d+)")


def parse_duration_months(label: Optional[str]) -> int:
    """
    Converts a duration label into a number of months.

    "1 year" is 12 months, "3 months" is 3. Labels without a positive leading
    integer count as one month.
    """
    match = _LEADING_INTEGER.match(str(label or ""))
    if not match or int(match.group(1)) == 0:
        return 1
    count = int(match.group(1))
    if "year" in str(label).lower():
        return count * 12
    return count


async def _student_summary(session: AsyncSession, student_id: str, cache: dict) -> StudentSummary:
    if student_id not in cache:
        user = await session.get(User, student_id)
        cache[student_id] = StudentSummary(
            id=student_id,
            username=user.username if user else None,
            email=user.email if user else None,
        )
    return cache[student_id]


@storage_errors
async def compute_revenue_summary(session: AsyncSession, owner_id: str,
                                  limit: Optional[int] = None) -> RevenueSummary:
    """
    Aggregates the accepted and paid bookings of an owner.

    Args:
        session (AsyncSession): The database session.
        owner_id (str): The owner to report on.
        limit (int): Maximum number of recent transactions to return. Defaults
            to the `recent_transactions_limit` setting; 0 keeps all of them.

    Returns:
        RevenueSummary: All-zero aggregates when the owner has no paid bookings.
    """
    if limit is None:
        limit = settings.recent_transactions_limit

    result = await session.execute(
        select(Booking)
        .where(
            Booking.owner_id == owner_id,
            Booking.status == BookingStatus.ACCEPTED.value,
            Booking.payment_status == PaymentStatus.PAID.value,
        )
        .order_by(Booking.created_at.desc())
    )
    bookings = result.scalars().all()

    summary = RevenueSummary()
    monthly: dict[str, int] = defaultdict(int)
    students: dict[str, StudentSummary] = {}

    for booking in bookings:
        listing = await resolve_listing(session, ListingRef(booking.service_type, booking.service_id))
        if listing is None:
            logger.warning(f"Listing for paid booking {booking.id} no longer exists; counting it at price 0.")
        monthly_price = (listing.price or 0) if listing else 0
        duration_label = (booking.booking_details or {}).get("duration")
        months = parse_duration_months(duration_label)
        amount = monthly_price * months

        summary.total_revenue += amount
        summary.service_type_revenue[booking.service_type] += amount
        monthly[f"{booking.created_at:%Y-%m}"] += amount
        summary.recent_transactions.append(Transaction(
            booking_id=booking.id,
            amount=amount,
            monthly_price=monthly_price,
            duration=months,
            original_duration=duration_label,
            service_name=listing.name if listing else "Unknown service",
            service_type=booking.service_type,
            student=await _student_summary(session, booking.student_id, students),
            date=booking.created_at,
        ))

    summary.paid_bookings_count = len(bookings)
    summary.monthly_data = [MonthlyRevenue(month=month, revenue=revenue)
                            for month, revenue in sorted(monthly.items())]
    if limit:
        summary.recent_transactions = summary.recent_transactions[:limit]

    logger.info(f"Revenue for owner {owner_id}: {summary.total_revenue} from {summary.paid_bookings_count} bookings.")
    return summary
