"""
Pytest configuration and fixtures.

The environment is set before anything from boxoffice is imported: config
is read once at import time.
"""
import os
import tempfile
from datetime import date, time, timedelta
from typing import Any, AsyncGenerator

_tmp = tempfile.mkdtemp(prefix="boxoffice-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{_tmp}/test.db"
os.environ["PAYMENT_PROVIDER"] = "mock"
os.environ["MOCK_SECRET"] = "test-mock-secret"
os.environ["MOCK_WEBHOOK_URL"] = "http://test/api/webhook/payments"
os.environ["SESSION_SECRET"] = "test-session-secret"
os.environ["EVENTS_BACKEND"] = "sql"
os.environ["SEED_DEMO_DATA"] = "0"
os.environ["MAIL_HOST"] = ""
os.environ["LOG_LEVEL"] = "WARNING"

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import select  # noqa: E402

from boxoffice.auth import hash_password  # noqa: E402
from boxoffice.helpers import now_ts  # noqa: E402
from boxoffice.model.db import SessionAsync, engine  # noqa: E402
from boxoffice.model.orm import (  # noqa: E402
    AdminUser,
    Base,
    ExchangeCode,
    Order,
    Performance,
    ORDER_PENDING,
    ROLE_ADMIN,
    SALE_ON_SALE,
)
from boxoffice.server import app  # noqa: E402

ADMIN_EMAIL = "admin@example.com"
ADMIN_PASSWORD = "correct horse"


async def save(*objs):
    """Persist objects in their own session and return them."""
    async with SessionAsync() as s:
        async with s.begin():
            s.add_all(objs)
    return objs[0] if len(objs) == 1 else objs


async def fetch_all(model, *criteria):
    async with SessionAsync() as s:
        q = select(model)
        if criteria:
            q = q.where(*criteria)
        rows = await s.execute(q.order_by(model.id))
        return list(rows.scalars())


async def fetch_one(model, *criteria):
    rows = await fetch_all(model, *criteria)
    assert len(rows) == 1, rows
    return rows[0]


def make_performance(**kw) -> Performance:
    fields = dict(
        title="easel LIVE vol.2",
        volume="vol.2",
        performance_date=date.today() + timedelta(days=30),
        performance_time=time(18, 0),
        doors_open_time=time(17, 30),
        venue_name="Demo Theater",
        general_price=4500,
        reserved_price=5500,
        general_capacity=100,
        reserved_capacity=30,
        general_sold=0,
        reserved_sold=0,
        sale_status=SALE_ON_SALE,
        created_at=now_ts(),
    )
    fields.update(kw)
    return Performance(**fields)


def make_order(session_id: str, **kw) -> Order:
    fields = dict(
        payment_session_id=session_id,
        performance_date="2030-01-01",
        performance_label="easel LIVE vol.2",
        general_quantity=2,
        reserved_quantity=1,
        general_price=4500,
        reserved_price=5500,
        discounted_general_count=0,
        discount_amount=0,
        total_amount=2 * 4500 + 5500,
        currency="jpy",
        customer_name="Hanako Suzuki",
        customer_email="hanako@example.com",
        status=ORDER_PENDING,
        created_at=now_ts(),
    )
    fields.update(kw)
    return Order(**fields)


@pytest_asyncio.fixture(autouse=True)
async def schema() -> AsyncGenerator[None, Any]:
    """Fresh tables for every test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    yield
    await engine.dispose()


@pytest_asyncio.fixture
async def db():
    async with SessionAsync() as session:
        yield session


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, Any]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        # mockpay delivers its webhooks back into the app under test
        app.state.http = ac
        yield ac
        app.state.http = None


@pytest_asyncio.fixture
async def admin_user() -> AdminUser:
    return await save(AdminUser(
        email=ADMIN_EMAIL,
        password_hash=hash_password(ADMIN_PASSWORD, rounds=4),
        name="Admin",
        role=ROLE_ADMIN,
        created_at=now_ts(),
    ))


@pytest_asyncio.fixture
async def admin_client(client: AsyncClient, admin_user) -> AsyncClient:
    resp = await client.post(
        "/api/auth/login",
        json={"email": ADMIN_EMAIL, "password": ADMIN_PASSWORD},
    )
    assert resp.status_code == 200, resp.text
    return client


@pytest_asyncio.fixture
async def performance() -> Performance:
    return await save(make_performance())


@pytest_asyncio.fixture
async def exchange_codes():
    ts = now_ts()
    return await save(*[
        ExchangeCode(code=c, performer_name="Taro Yamada",
                     is_used=False, created_at=ts)
        for c in ("TEST001", "TEST002", "TEST003")
    ])


@pytest.fixture
def checkout_payload() -> dict:
    return {
        "performance_date": "2030-01-01",
        "performance_label": "easel LIVE vol.2",
        "general_quantity": 2,
        "reserved_quantity": 1,
        "discounted_general_count": 0,
        "exchange_codes": [],
        "customer_name": "Hanako Suzuki",
        "customer_email": "hanako@example.com",
        "customer_phone": "090-0000-0000",
    }
