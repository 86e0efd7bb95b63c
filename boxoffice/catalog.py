from datetime import date, time
from typing import Any, Dict

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import ORJSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import require_admin
from .checkout import check_exchange_codes
from .helpers import normalize_code, now_ts, parse_ts, random_code
from .model.db import get_db
from .model.orm import (
    ExchangeCode,
    News,
    Performance,
    SALE_NOT_ON_SALE,
    SALE_STATUSES,
)
from .model.views import (
    availability_view,
    exchange_code_view,
    news_view,
    performance_view,
)

logger = structlog.get_logger(__name__)

MAX_BATCH_CODES = 50


def _bad(detail: str) -> HTTPException:
    return HTTPException(status_code=400, detail=detail)


# ----------------------------
# News
# ----------------------------
news_router = APIRouter(prefix="/api/news", tags=["news"])


def _apply_news(n: News, payload: Dict[str, Any]) -> None:
    if "title" in payload:
        title = str(payload.get("title") or "").strip()
        if not title:
            raise _bad("title is required")
        n.title = title
    if "content" in payload:
        n.content = payload.get("content")
    if "category" in payload:
        n.category = payload.get("category")
    if payload.get("published_at") is not None:
        try:
            n.published_at = parse_ts(payload["published_at"])
        except ValueError:
            raise _bad("invalid published_at")


@news_router.get("")
async def list_news(db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(News).order_by(News.published_at.desc(), News.id.desc())
    )
    return [news_view(n) for n in rows.scalars()]


@news_router.get("/{news_id}")
async def get_news(news_id: int, db: AsyncSession = Depends(get_db)):
    n = await db.get(News, news_id)
    if n is None:
        raise HTTPException(404, detail="news not found")
    return news_view(n)


@news_router.post(
    "", status_code=201, dependencies=[Depends(require_admin)]
)
async def create_news(payload: dict, db: AsyncSession = Depends(get_db)):
    if "title" not in payload:
        raise _bad("title is required")
    n = News(published_at=now_ts())
    _apply_news(n, payload)
    async with db.begin():
        db.add(n)
    return news_view(n)


@news_router.put("/{news_id}", dependencies=[Depends(require_admin)])
async def update_news(
    news_id: int, payload: dict, db: AsyncSession = Depends(get_db)
):
    async with db.begin():
        n = await db.get(News, news_id)
        if n is None:
            raise HTTPException(404, detail="news not found")
        _apply_news(n, payload)
    return news_view(n)


@news_router.delete(
    "/{news_id}", status_code=204, dependencies=[Depends(require_admin)]
)
async def delete_news(news_id: int, db: AsyncSession = Depends(get_db)):
    async with db.begin():
        n = await db.get(News, news_id)
        if n is None:
            raise HTTPException(404, detail="news not found")
        await db.delete(n)
    return Response(status_code=204)


# ----------------------------
# Performances
# ----------------------------
performances_router = APIRouter(
    prefix="/api/performances", tags=["performances"]
)

_REQUIRED_PERFORMANCE_FIELDS = (
    "title", "performance_date", "performance_time", "venue_name",
    "general_price", "reserved_price",
)


def _parse_date(value: Any, name: str) -> date:
    try:
        return date.fromisoformat(str(value))
    except ValueError:
        raise _bad(f"invalid {name}")


def _parse_time(value: Any, name: str) -> time | None:
    if value in (None, ""):
        return None
    try:
        return time.fromisoformat(str(value))
    except ValueError:
        raise _bad(f"invalid {name}")


def _parse_amount(value: Any, name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise _bad(f"{name} must be a non-negative integer")
    return value


def _apply_performance(p: Performance, payload: Dict[str, Any]) -> None:
    for name in ("title", "venue_name"):
        if name in payload:
            value = str(payload.get(name) or "").strip()
            if not value:
                raise _bad(f"{name} is required")
            setattr(p, name, value)
    for name in ("volume", "venue_address", "venue_access",
                 "flyer_image_url", "description"):
        if name in payload:
            setattr(p, name, payload.get(name))

    if "performance_date" in payload:
        p.performance_date = _parse_date(
            payload["performance_date"], "performance_date"
        )
    if "performance_time" in payload:
        t = _parse_time(payload["performance_time"], "performance_time")
        if t is None:
            raise _bad("performance_time is required")
        p.performance_time = t
    if "doors_open_time" in payload:
        p.doors_open_time = _parse_time(
            payload["doors_open_time"], "doors_open_time"
        )

    for name in ("general_price", "reserved_price", "general_capacity",
                 "reserved_capacity"):
        if name in payload:
            setattr(p, name, _parse_amount(payload[name], name))

    if "sale_status" in payload:
        p.sale_status = _sale_status(payload["sale_status"])
    for name in ("sale_start_at", "sale_end_at"):
        if name in payload:
            try:
                setattr(p, name, parse_ts(payload[name]))
            except ValueError:
                raise _bad(f"invalid {name}")


def _sale_status(value: Any) -> str:
    status = str(value or "").strip().upper()
    if status not in SALE_STATUSES:
        raise _bad(f"invalid sale_status: {value}")
    return status


async def _get_performance(db: AsyncSession, performance_id: int):
    p = await db.get(Performance, performance_id)
    if p is None:
        raise HTTPException(404, detail="performance not found")
    return p


@performances_router.get("")
async def list_performances(db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Performance).order_by(
            Performance.performance_date, Performance.performance_time
        )
    )
    return [performance_view(p) for p in rows.scalars()]


@performances_router.get("/on-sale")
async def list_on_sale(db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Performance).order_by(Performance.performance_date)
    )
    return [performance_view(p) for p in rows.scalars() if p.is_on_sale()]


@performances_router.get("/upcoming")
async def list_upcoming(db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(Performance)
        .where(Performance.performance_date >= date.today())
        .order_by(Performance.performance_date)
    )
    return [performance_view(p) for p in rows.scalars()]


@performances_router.get("/volume/{volume}")
async def get_by_volume(volume: str, db: AsyncSession = Depends(get_db)):
    p = (await db.execute(
        select(Performance).where(Performance.volume == volume)
    )).scalars().first()
    if p is None:
        raise HTTPException(404, detail="performance not found")
    return performance_view(p)


@performances_router.get("/{performance_id}")
async def get_performance(
    performance_id: int, db: AsyncSession = Depends(get_db)
):
    return performance_view(await _get_performance(db, performance_id))


@performances_router.get("/{performance_id}/availability")
async def get_availability(
    performance_id: int, db: AsyncSession = Depends(get_db)
):
    return availability_view(await _get_performance(db, performance_id))


@performances_router.post(
    "", status_code=201, dependencies=[Depends(require_admin)]
)
async def create_performance(
    payload: dict, db: AsyncSession = Depends(get_db)
):
    missing = [f for f in _REQUIRED_PERFORMANCE_FIELDS if f not in payload]
    if missing:
        raise _bad("missing fields: " + ", ".join(missing))
    p = Performance(
        general_capacity=0, reserved_capacity=0,
        general_sold=0, reserved_sold=0,
        sale_status=SALE_NOT_ON_SALE, created_at=now_ts(),
    )
    _apply_performance(p, payload)
    async with db.begin():
        db.add(p)
    logger.info("performance_created", performance_id=p.id)
    return performance_view(p)


@performances_router.put(
    "/{performance_id}", dependencies=[Depends(require_admin)]
)
async def update_performance(
    performance_id: int, payload: dict, db: AsyncSession = Depends(get_db)
):
    async with db.begin():
        p = await _get_performance(db, performance_id)
        _apply_performance(p, payload)
    await db.refresh(p)
    return performance_view(p)


@performances_router.put(
    "/{performance_id}/sale-status", dependencies=[Depends(require_admin)]
)
async def update_sale_status(
    performance_id: int, payload: dict, db: AsyncSession = Depends(get_db)
):
    status = _sale_status(payload.get("sale_status"))
    async with db.begin():
        p = await _get_performance(db, performance_id)
        p.sale_status = status
    await db.refresh(p)
    logger.info(
        "performance_sale_status", performance_id=p.id, sale_status=status
    )
    return performance_view(p)


@performances_router.delete(
    "/{performance_id}", status_code=204,
    dependencies=[Depends(require_admin)],
)
async def delete_performance(
    performance_id: int, db: AsyncSession = Depends(get_db)
):
    async with db.begin():
        p = await _get_performance(db, performance_id)
        await db.delete(p)
    return Response(status_code=204)


# ----------------------------
# Exchange codes
# ----------------------------
exchange_codes_router = APIRouter(
    prefix="/api/exchange-codes", tags=["exchange-codes"]
)


@exchange_codes_router.get("", dependencies=[Depends(require_admin)])
async def list_codes(db: AsyncSession = Depends(get_db)):
    rows = await db.execute(
        select(ExchangeCode).order_by(
            ExchangeCode.is_used.asc(),
            ExchangeCode.created_at.desc(),
            ExchangeCode.id.desc(),
        )
    )
    return [exchange_code_view(c) for c in rows.scalars()]


@exchange_codes_router.post(
    "", status_code=201, dependencies=[Depends(require_admin)]
)
async def create_code(payload: dict, db: AsyncSession = Depends(get_db)):
    code = normalize_code(payload.get("code"))
    if not code:
        raise _bad("code is required")
    async with db.begin():
        exists = (await db.execute(
            select(ExchangeCode.id).where(ExchangeCode.code == code)
        )).first()
        if exists:
            raise _bad(f"code already exists: {code}")
        c = ExchangeCode(
            code=code,
            performer_name=payload.get("performer_name"),
            is_used=False,
            created_at=now_ts(),
        )
        db.add(c)
    return exchange_code_view(c)


@exchange_codes_router.post(
    "/batch", status_code=201, dependencies=[Depends(require_admin)]
)
async def create_codes_batch(
    payload: dict, db: AsyncSession = Depends(get_db)
):
    count = payload.get("count", 1)
    if isinstance(count, bool) or not isinstance(count, int) or count < 1:
        raise _bad("count must be a positive integer")
    count = min(count, MAX_BATCH_CODES)
    performer_name = payload.get("performer_name")

    async with db.begin():
        existing = set((await db.execute(
            select(ExchangeCode.code)
        )).scalars())
        created = []
        ts = now_ts()
        while len(created) < count:
            code = random_code()
            if code in existing:
                continue
            existing.add(code)
            created.append(ExchangeCode(
                code=code, performer_name=performer_name,
                is_used=False, created_at=ts,
            ))
        db.add_all(created)

    logger.info("exchange_codes_created", count=len(created))
    return {
        "count": len(created),
        "codes": [exchange_code_view(c) for c in created],
    }


@exchange_codes_router.post("/validate")
async def validate_code(payload: dict, db: AsyncSession = Depends(get_db)):
    code = normalize_code(payload.get("code"))
    if not code:
        return ORJSONResponse(
            status_code=400,
            content={"valid": False, "message": "code is required"},
        )
    code, row, reason = (await check_exchange_codes(db, [code]))[0]
    if reason is not None:
        return {"valid": False, "code": code, "message": reason}
    return {
        "valid": True,
        "code": code,
        "message": "valid code",
        "performer_name": row.performer_name,
    }


@exchange_codes_router.post("/validate-batch")
async def validate_codes(payload: dict, db: AsyncSession = Depends(get_db)):
    codes = payload.get("codes") or []
    if not isinstance(codes, list):
        raise _bad("codes must be a list")
    checked = await check_exchange_codes(
        db, [c if isinstance(c, str) else "" for c in codes]
    )
    results = []
    for code, row, reason in checked:
        item = {
            "code": code,
            "valid": reason is None,
            "message": reason or "valid code",
        }
        if reason is None:
            item["performer_name"] = row.performer_name
        results.append(item)
    return {
        "valid_count": sum(1 for r in results if r["valid"]),
        "results": results,
    }
