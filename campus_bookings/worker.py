"""
This module contains the Celery worker and tasks for the booking service.
"""
import logging

import anyio
from celery import Celery, Task

from .config import settings
from .db import Session
from .errors import StorageError
from .revenue import compute_revenue_summary

# Configure logging
logger = logging.getLogger(__name__)

app = Celery('campus_bookings',
             broker=settings.celery_broker_url,
             backend=settings.celery_result_backend,
             include=["campus_bookings.worker"])


class BaseTaskWithRetry(Task):
    """
    Base task with automatic retry mechanism.
    """
    autoretry_for = (StorageError,)
    retry_kwargs = {'max_retries': 5}
    retry_backoff = True


async def _build_revenue_summary(owner_id):
    """
    Helper function to compute the revenue summary of an owner.

    Args:
        owner_id (str): The owner to report on.
    """
    async with Session() as session:
        summary = await compute_revenue_summary(session, owner_id)
        return {"owner": owner_id, "summary": summary.model_dump(mode="json", by_alias=True)}


@app.task(bind=True, base=BaseTaskWithRetry)
def build_revenue_summary(self, owner_id):
    """
    Celery task that builds the revenue summary for an owner's dashboard.

    Args:
        owner_id (str): The owner to report on.

    Returns:
        dict: The requesting owner and the revenue summary in its JSON form.
    """
    logger.info(f"{type(self)} -- Building revenue summary for owner: {owner_id}")
    return anyio.run(_build_revenue_summary, owner_id)

