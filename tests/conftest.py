import os
import tempfile

# Settings are read at import time; point them at throwaway stores first.
_db_dir = tempfile.mkdtemp(prefix="campus-bookings-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_db_dir}/test.db"
os.environ["CELERY_BROKER_URL"] = "memory://"
os.environ["CELERY_RESULT_BACKEND"] = "cache+memory://"
os.environ["JWT_SECRET"] = "test-secret"

import jwt
import pytest
from httpx import ASGITransport, AsyncClient

from campus_bookings.config import settings
from campus_bookings.db import Session, create_db_and_tables, drop_db_and_tables
from campus_bookings.listings import LISTING_MODELS
from campus_bookings.models import ServiceType, User

STUDENT = "student-1"
OTHER_STUDENT = "student-2"
OWNER = "owner-1"
OTHER_OWNER = "owner-2"


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
async def session(anyio_backend):
    await drop_db_and_tables()
    await create_db_and_tables()
    async with Session() as session:
        yield session


@pytest.fixture
async def client(session):
    from campus_bookings.main import app

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client


async def make_listing(session, service_type=ServiceType.HOSTEL, owner_id=OWNER, price=5000, **fields):
    model = LISTING_MODELS[ServiceType(service_type)]
    fields.setdefault("name", f"Test {ServiceType(service_type).value}")
    listing = model(owner_id=owner_id, price=price, **fields)
    session.add(listing)
    await session.commit()
    return listing


async def make_user(session, user_id, username, roles=("student",)):
    user = User(id=user_id, username=username, email=f"{username}@campus.test", roles=list(roles))
    session.add(user)
    await session.commit()
    return user


def token_for(user_id, *roles):
    return jwt.encode({"sub": user_id, "roles": list(roles)}, settings.jwt_secret,
                      algorithm=settings.jwt_algorithm)


def auth(user_id, *roles):
    return {"Authorization": f"Bearer {token_for(user_id, *roles)}"}
