"""
This module contains the error kinds raised by the booking ledger and the revenue aggregator.

Every error carries a stable `kind`, a human readable `message` and the HTTP
status the API layer answers with.
"""
from fastapi import status


class BookingError(Exception):
    """Base class for every error surfaced to callers."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    @property
    def kind(self) -> str:
        return self.__class__.__name__

    def to_dict(self) -> dict:
        return {"success": False, "kind": self.kind, "error": self.message}


class InvalidServiceType(BookingError):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, service_type):
        self.service_type = service_type
        super().__init__(f"Invalid service type: {service_type!r}")


class ListingNotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, service_type, service_id):
        self.service_type = service_type
        self.service_id = service_id
        super().__init__(f"{str(service_type).capitalize()} listing {service_id} not found")


class ValidationError(BookingError):
    """Raised when a booking detail field is missing or malformed."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, field: str, message: str | None = None):
        self.field = field
        super().__init__(message or f"{field} is required")

    def to_dict(self) -> dict:
        return {**super().to_dict(), "field": self.field}


class NotFound(BookingError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Booking not found"):
        super().__init__(message)


class Unauthorized(BookingError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class Forbidden(BookingError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not authorized to access this booking"):
        super().__init__(message)


class InvalidTransition(BookingError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(f"Cannot change booking status from {current} to {target}")


class StorageError(BookingError):
    """Wraps persistence failures and unexpected errors at the boundary."""

    def __init__(self, message: str = "Server error. Please try again later."):
        super().__init__(message)
