from datetime import date, time, timedelta

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from . import config
from .auth import hash_password
from .helpers import now_ts
from .model.orm import (
    AdminUser,
    ExchangeCode,
    News,
    Performance,
    ROLE_SUPER_ADMIN,
    SALE_ON_SALE,
)

logger = structlog.get_logger(__name__)

DAY = 24 * 3600

DEMO_EXCHANGE_CODES = [
    ("TEST001", "Taro Yamada"),
    ("TEST002", "Taro Yamada"),
    ("TEST003", "Hanako Suzuki"),
    ("ABC123", "Ichiro Sato"),
    ("XYZ789", "Misaki Tanaka"),
]


async def _empty(db: AsyncSession, model) -> bool:
    count = (await db.execute(select(func.count()).select_from(model)))
    return count.scalar_one() == 0


def _demo_news(ts: float):
    return [
        News(
            title="easel LIVE vol.2: tickets on sale",
            content=(
                "Thank you for supporting easel.\n\n"
                "Tickets for easel LIVE vol.2 are now on sale.\n"
                "General admission 4,500 JPY, reserved seats 5,500 JPY."
            ),
            published_at=ts - 1 * DAY,
            category="performance",
        ),
        News(
            title="New member joins easel",
            content="A new member has joined easel. See the ABOUT page.",
            published_at=ts - 7 * DAY,
            category="info",
        ),
        News(
            title="Official site launched",
            content="News, performances and goods, all in one place.",
            published_at=ts - 14 * DAY,
            category="info",
        ),
    ]


def _demo_performances(ts: float):
    first = date.today() + timedelta(days=30)
    shows = [
        (first, time(14, 0), time(13, 30), "New year special"),
        (first, time(18, 0), time(17, 30), "New year special (evening)"),
        (first + timedelta(days=1), time(14, 0), time(13, 30),
         "New year special (final day)"),
    ]
    return [
        Performance(
            title="easel LIVE vol.2",
            volume="vol.2",
            performance_date=day,
            performance_time=starts,
            doors_open_time=doors,
            venue_name="Demo Theater",
            venue_address="1-2-3 Demo, Tokyo",
            general_price=config.GENERAL_PRICE,
            reserved_price=config.RESERVED_PRICE,
            general_capacity=100,
            reserved_capacity=30,
            general_sold=0,
            reserved_sold=0,
            sale_status=SALE_ON_SALE,
            sale_start_at=ts - 7 * DAY,
            description=description,
            created_at=ts,
        )
        for day, starts, doors, description in shows
    ]


async def seed_demo_data(SessionAsync: async_sessionmaker) -> None:
    ts = now_ts()
    async with SessionAsync() as db:
        async with db.begin():
            if await _empty(db, AdminUser):
                db.add(AdminUser(
                    email=config.ADMIN_EMAIL.strip().lower(),
                    password_hash=hash_password(config.ADMIN_PASSWORD),
                    name="Administrator",
                    role=ROLE_SUPER_ADMIN,
                    created_at=ts,
                ))
                logger.info("seeded_admin", email=config.ADMIN_EMAIL)

            if await _empty(db, News):
                db.add_all(_demo_news(ts))
                logger.info("seeded_news")

            if await _empty(db, ExchangeCode):
                db.add_all([
                    ExchangeCode(
                        code=code, performer_name=name,
                        is_used=False, created_at=ts,
                    )
                    for code, name in DEMO_EXCHANGE_CODES
                ])
                logger.info(
                    "seeded_exchange_codes",
                    codes=[c for c, _ in DEMO_EXCHANGE_CODES],
                )

            if await _empty(db, Performance):
                db.add_all(_demo_performances(ts))
                logger.info("seeded_performances")
