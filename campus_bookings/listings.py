"""
This module resolves the listing a booking refers to.

A booking points at its listing with a `(service_type, service_id)` pair; the
service type selects which listing table the id lives in.
"""
import logging
from typing import NamedTuple, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from .errors import InvalidServiceType, ListingNotFound
from .models import Gym, Hostel, ListingMixin, ListingSnapshot, Mess, ServiceType

logger = logging.getLogger(__name__)

LISTING_MODELS: dict[ServiceType, type[ListingMixin]] = {
    ServiceType.HOSTEL: Hostel,
    ServiceType.MESS: Mess,
    ServiceType.GYM: Gym,
}


class ListingRef(NamedTuple):
    service_type: ServiceType
    service_id: str


def parse_service_type(value) -> ServiceType:
    """
    Converts a raw service type into a `ServiceType`.

    Raises:
        InvalidServiceType: If the value is not hostel, mess or gym.
    """
    try:
        return ServiceType(value)
    except ValueError:
        raise InvalidServiceType(value) from None


async def resolve_listing(session: AsyncSession, ref: ListingRef) -> Optional[ListingMixin]:
    """
    Loads the listing a reference points at, or None if it no longer exists.
    """
    model = LISTING_MODELS[ServiceType(ref.service_type)]
    return await session.get(model, ref.service_id)


async def get_listing(session: AsyncSession, ref: ListingRef) -> ListingMixin:
    listing = await resolve_listing(session, ref)
    if listing is None:
        raise ListingNotFound(ServiceType(ref.service_type).value, ref.service_id)
    return listing


def snapshot(listing: Optional[ListingMixin]) -> Optional[ListingSnapshot]:
    if listing is None:
        return None
    return ListingSnapshot(
        id=listing.id,
        name=listing.name,
        type_label=listing.type_label,
        price=listing.price or 0,
        capacity=listing.capacity,
        images=list(listing.images or []),
        address=listing.address,
    )


async def resolve_snapshot(session: AsyncSession, ref: ListingRef) -> Optional[ListingSnapshot]:
    """
    Snapshot of the referenced listing for read paths; a vanished listing yields None.
    """
    listing = await resolve_listing(session, ref)
    if listing is None:
        logger.warning(f"Listing {ServiceType(ref.service_type).value}/{ref.service_id} not found while attaching snapshot.")
    return snapshot(listing)
