"""
This module contains the data models for the booking service.
"""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from sqlalchemy import JSON, Column, DateTime, Integer, String, Text

from .db import Base


class ServiceType(str, Enum):
    HOSTEL = "hostel"
    MESS = "mess"
    GYM = "gym"


class BookingStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    UNPAID = "unpaid"
    PAID = "paid"


class Role(str, Enum):
    STUDENT = "student"
    HOSTEL_OWNER = "hostelOwner"
    MESS_OWNER = "messOwner"
    GYM_OWNER = "gymOwner"


OWNER_ROLES = (Role.HOSTEL_OWNER, Role.MESS_OWNER, Role.GYM_OWNER)


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Read model of an identity known to the identity provider.

    Only used to attach a student summary to revenue transactions.
    """
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    username = Column(String(100), nullable=False)
    email = Column(String(255), nullable=False)
    roles = Column(JSON, nullable=False, default=list)


class ListingMixin:
    """
    Columns shared by every listing table.

    Attributes:
        owner_id (str): The identity that owns the listing.
        name (str): Display name of the listing.
        price (int): Monthly price in whole rupees.
        capacity (int): Number of places offered.
        images (list): Stored image descriptors, each with a `url`.
        address (str): Postal address of the listing.
    """
    id = Column(String(32), primary_key=True, default=new_id)
    owner_id = Column(String(32), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Integer, nullable=False, default=0)
    capacity = Column(Integer)
    images = Column(JSON, nullable=False, default=list)
    address = Column(Text)
    created_at = Column(DateTime(timezone=True), default=utcnow)

    # column holding the per-type label, e.g. room type for hostels
    label_column = None

    @property
    def type_label(self) -> Optional[str]:
        return getattr(self, self.label_column) if self.label_column else None


class Hostel(ListingMixin, Base):
    __tablename__ = "hostels"
    label_column = "room_type"

    room_type = Column(String(50))
    gender = Column(String(20))


class Mess(ListingMixin, Base):
    __tablename__ = "messes"
    label_column = "mess_type"

    mess_type = Column(String(20))


class Gym(ListingMixin, Base):
    __tablename__ = "gyms"
    label_column = "gym_type"

    gym_type = Column(String(50))


class Booking(Base):
    """
    Represents a booking in the database.

    Attributes:
        id (str): Opaque identifier generated at creation.
        student_id (str): The identity that requested the booking.
        owner_id (str): Owner of the listing when the booking was created.
        service_type (str): One of hostel, mess or gym; selects the listing table.
        service_id (str): Id of the listing inside the table chosen by `service_type`.
        booking_details (dict): Type specific details (dates, duration, requirements).
        status (str): pending, accepted, rejected or cancelled.
        payment_status (str): unpaid or paid, independent of `status`.
    """
    __tablename__ = "bookings"

    id = Column(String(32), primary_key=True, default=new_id)
    student_id = Column(String(32), nullable=False, index=True)
    owner_id = Column(String(32), nullable=False, index=True)
    service_type = Column(String(10), nullable=False)
    service_id = Column(String(32), nullable=False)
    booking_details = Column(JSON, nullable=False, default=dict)
    status = Column(String(10), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String(10), nullable=False, default=PaymentStatus.UNPAID.value)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, type={self.service_type}, status={self.status})>"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class BookingCommand(CamelModel):
    """
    Represents the command for creating a booking.

    Attributes:
        service_type (str): The kind of listing being booked. Checked by the ledger.
        service_id (str): The listing id.
        booking_details (dict): Type specific details, validated by the ledger.
    """
    service_type: str = Field(..., description="hostel, mess or gym")
    service_id: str = Field(..., min_length=1, description="Id of the listing being booked")
    booking_details: dict[str, Any] = Field(default_factory=dict)


class StatusUpdateCommand(BaseModel):
    status: Literal["accepted", "rejected"]


class PaymentUpdateCommand(CamelModel):
    payment_status: PaymentStatus


class ListingSnapshot(CamelModel):
    """Read-only copy of the listing fields attached to a booking at read time."""
    id: str
    name: str
    type_label: Optional[str] = None
    price: int
    capacity: Optional[int] = None
    images: list[dict[str, Any]] = Field(default_factory=list)
    address: Optional[str] = None


class BookingView(CamelModel):
    id: str
    student: str
    owner: str
    service_type: ServiceType
    service_id: str
    booking_details: dict[str, Any]
    status: BookingStatus
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime
    service_details: Optional[ListingSnapshot] = None

    @classmethod
    def from_booking(cls, booking: Booking, listing: Optional[ListingSnapshot] = None) -> "BookingView":
        return cls(
            id=booking.id,
            student=booking.student_id,
            owner=booking.owner_id,
            service_type=booking.service_type,
            service_id=booking.service_id,
            booking_details=booking.booking_details or {},
            status=booking.status,
            payment_status=booking.payment_status,
            created_at=booking.created_at,
            updated_at=booking.updated_at,
            service_details=listing,
        )


class StudentSummary(CamelModel):
    id: str
    username: Optional[str] = None
    email: Optional[str] = None


class Transaction(CamelModel):
    booking_id: str
    amount: int
    monthly_price: int
    duration: int
    original_duration: Optional[str] = None
    service_name: str
    service_type: ServiceType
    student: StudentSummary
    date: datetime


class MonthlyRevenue(CamelModel):
    month: str
    revenue: int


class RevenueSummary(CamelModel):
    total_revenue: int = 0
    paid_bookings_count: int = 0
    service_type_revenue: dict[str, int] = Field(
        default_factory=lambda: {service_type.value: 0 for service_type in ServiceType})
    monthly_data: list[MonthlyRevenue] = Field(default_factory=list)
    recent_transactions: list[Transaction] = Field(default_factory=list)
