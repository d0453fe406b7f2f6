"""
This module contains the main FastAPI application for the campus bookings service.
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

from celery.result import AsyncResult
from fastapi import Depends, FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from . import ledger
from .auth import Identity, get_current_identity, require_roles
from .config import settings
from .db import create_db_and_tables, get_db_session
from .errors import BookingError, Forbidden, StorageError
from .models import (OWNER_ROLES, BookingCommand, BookingView, PaymentUpdateCommand, Role,
                     StatusUpdateCommand)
from .revenue import compute_revenue_summary
from .worker import app as celery_app
from .worker import build_revenue_summary

logging.basicConfig(level=settings.log_level)
logger = logging.getLogger(__name__)

student_only = require_roles(Role.STUDENT)
owner_only = require_roles(*OWNER_ROLES)


@asynccontextmanager
async def lifespan(api_app: FastAPI):
    """
    Asynchronous context manager for the lifespan of the FastAPI application.
    It creates the database and tables on startup.

    Args:
        api_app (FastAPI): The FastAPI application instance.
    """
    await create_db_and_tables()
    yield

app = FastAPI(title="Campus Bookings", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_error_handler(request: Request, exc: BookingError):
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unexpected error on {request.method} {request.url.path}")
    error = StorageError()
    return JSONResponse(status_code=error.status_code, content=error.to_dict())


def _one(booking) -> dict:
    if not isinstance(booking, BookingView):
        booking = BookingView.from_booking(booking)
    return {"success": True, "data": booking.model_dump(mode="json", by_alias=True)}


def _many(bookings: list[BookingView]) -> dict:
    return {
        "success": True,
        "count": len(bookings),
        "data": [booking.model_dump(mode="json", by_alias=True) for booking in bookings],
    }


@app.post("/bookings", status_code=201)
async def create_booking(booking_cmd: BookingCommand, identity: Identity = Depends(student_only),
                         db: AsyncSession = Depends(get_db_session)):
    """
    Creates a pending booking for the calling student.

    Args:
        booking_cmd (BookingCommand): The listing reference and booking details.
        identity (Identity): The calling student.
        db (AsyncSession): The database session.
    """
    booking = await ledger.create_booking(db, identity.id, booking_cmd.service_type,
                                          booking_cmd.service_id, booking_cmd.booking_details)
    return _one(booking)


@app.get("/bookings/owner")
async def owner_bookings(status: Optional[str] = None, identity: Identity = Depends(owner_only),
                         db: AsyncSession = Depends(get_db_session)):
    """
    Lists the bookings made against the caller's listings, newest first.

    Args:
        status (str): Optional status filter, e.g. `pending`.
    """
    return _many(await ledger.list_bookings_for_owner(db, identity.id, status))


@app.get("/bookings/student")
async def student_bookings(identity: Identity = Depends(student_only),
                           db: AsyncSession = Depends(get_db_session)):
    return _many(await ledger.list_bookings_for_student(db, identity.id))


@app.get("/bookings/customers")
async def owner_customers(identity: Identity = Depends(owner_only),
                          db: AsyncSession = Depends(get_db_session)):
    """
    Lists the caller's accepted bookings.
    """
    return _many(await ledger.list_customers_for_owner(db, identity.id))


@app.get("/bookings/pending")
async def pending_bookings(identity: Identity = Depends(owner_only),
                           db: AsyncSession = Depends(get_db_session)):
    booking_ids = await ledger.pending_booking_ids(db, identity.id)
    return {"success": True, "count": len(booking_ids), "data": booking_ids}


@app.get("/bookings/revenue")
async def revenue(identity: Identity = Depends(owner_only), db: AsyncSession = Depends(get_db_session)):
    """
    Computes the caller's revenue summary from accepted and paid bookings.
    """
    summary = await compute_revenue_summary(db, identity.id)
    return {"success": True, "data": summary.model_dump(mode="json", by_alias=True)}


@app.post("/bookings/revenue/report", status_code=202)
async def request_revenue_report(identity: Identity = Depends(owner_only)):
    """
    Queues a revenue summary on the Celery worker.

    Returns:
        dict: The id of the task that will hold the report.
    """
    task = build_revenue_summary.delay(identity.id)
    return {"success": True, "data": {"taskId": task.id}}


@app.get("/bookings/revenue/report/{task_id}")
async def revenue_report(task_id: str, identity: Identity = Depends(owner_only)):
    """
    Returns the state of a queued revenue summary, and the summary once it is built.

    Raises:
        Forbidden: If the report was built for another owner.
    """
    result = AsyncResult(task_id, app=celery_app)
    data = {"taskId": task_id, "state": result.state, "report": None}
    if result.successful():
        payload = result.result or {}
        if payload.get("owner") != identity.id:
            raise Forbidden("Not authorized to view this revenue report")
        data["report"] = payload.get("summary")
    return {"success": True, "data": data}


@app.get("/bookings/{booking_id}")
async def get_booking(booking_id: str, identity: Identity = Depends(get_current_identity),
                      db: AsyncSession = Depends(get_db_session)):
    """
    Retrieves a booking by its ID.

    Args:
        booking_id (str): The ID of the booking to retrieve.
        identity (Identity): The caller; must be the booking's student or owner.
        db (AsyncSession): The database session.
    """
    return _one(await ledger.get_booking(db, identity.id, booking_id))


@app.put("/bookings/{booking_id}/status")
async def update_booking_status(booking_id: str, status_cmd: StatusUpdateCommand,
                                identity: Identity = Depends(owner_only),
                                db: AsyncSession = Depends(get_db_session)):
    """
    Accepts or rejects a pending booking.
    """
    booking = await ledger.update_booking_status(db, identity.id, booking_id, status_cmd.status)
    return _one(booking)


@app.put("/bookings/{booking_id}/cancel")
async def cancel_booking(booking_id: str, identity: Identity = Depends(student_only),
                         db: AsyncSession = Depends(get_db_session)):
    return _one(await ledger.cancel_booking(db, identity.id, booking_id))


@app.put("/bookings/{booking_id}/payment")
async def update_payment_status(booking_id: str, payment_cmd: PaymentUpdateCommand,
                                identity: Identity = Depends(owner_only),
                                db: AsyncSession = Depends(get_db_session)):
    """
    Records the payment status of a booking.
    """
    booking = await ledger.set_payment_status(db, identity.id, booking_id, payment_cmd.payment_status)
    return _one(booking)
