from datetime import date, datetime, time
from typing import Optional, Tuple

import structlog
from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import require_admin
from .helpers import now_ts
from .model.db import get_db
from .model.orm import Order, Ticket, ORDER_PAID, TICKET_GENERAL
from .model.views import ticket_view
from .qr import png_data_uri, qr_png

logger = structlog.get_logger(__name__)


# ----------------------------
# Ticket validity
# ----------------------------
async def _lookup(
    db: AsyncSession, code: str
) -> Tuple[Optional[Ticket], Optional[Order]]:
    row = (await db.execute(
        select(Ticket, Order)
        .join(Order, Order.id == Ticket.order_id)
        .where(Ticket.ticket_code == code)
    )).first()
    if row is None:
        return None, None
    return row[0], row[1]


def _invalid_reason(ticket: Optional[Ticket], order: Optional[Order]):
    if ticket is None:
        return "ticket not found"
    if ticket.is_used:
        return "ticket already used"
    if order is None or order.status != ORDER_PAID:
        return "order is not paid"
    return None


def _ticket_code(payload: dict) -> str:
    code = str(payload.get("ticket_code") or "").strip()
    if not code:
        raise HTTPException(400, detail="ticket_code is required")
    return code


def _invalid(reason: str, ticket: Optional[Ticket]) -> dict:
    out = {"valid": False, "message": reason}
    if ticket is not None:
        out["ticket"] = ticket_view(ticket)
    return out


router = APIRouter(
    prefix="/api/tickets", tags=["tickets"],
    dependencies=[Depends(require_admin)],
)


@router.post("/verify")
async def verify_ticket(payload: dict, db: AsyncSession = Depends(get_db)):
    code = _ticket_code(payload)
    ticket, order = await _lookup(db, code)
    reason = _invalid_reason(ticket, order)
    if reason is not None:
        return _invalid(reason, ticket)
    return {"valid": True, "message": "valid ticket",
            "ticket": ticket_view(ticket)}


@router.post("/check-in")
async def check_in(payload: dict, db: AsyncSession = Depends(get_db)):
    code = _ticket_code(payload)
    async with db.begin():
        ticket, order = await _lookup(db, code)
        reason = _invalid_reason(ticket, order)
        if reason is not None:
            return _invalid(reason, ticket)
        ts = now_ts()
        res = await db.execute(
            update(Ticket)
            .where(Ticket.id == ticket.id, Ticket.is_used.is_(False))
            .values(is_used=True, used_at=ts)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            # scanned twice at the same moment
            return _invalid("ticket already used", ticket)
        await db.refresh(ticket)

    logger.info("ticket_checked_in", ticket_id=ticket.id, order_id=order.id)
    return {"valid": True, "message": "checked in",
            "ticket": ticket_view(ticket)}


async def _count(db: AsyncSession, *criteria) -> int:
    q = select(func.count(Ticket.id))
    if criteria:
        q = q.where(*criteria)
    return int((await db.execute(q)).scalar_one())


@router.get("/stats")
async def ticket_stats(db: AsyncSession = Depends(get_db)):
    total = await _count(db)
    used = await _count(db, Ticket.is_used.is_(True))
    general = await _count(db, Ticket.ticket_type == TICKET_GENERAL)
    general_used = await _count(
        db, Ticket.ticket_type == TICKET_GENERAL, Ticket.is_used.is_(True)
    )
    return {
        "total_tickets": total,
        "used_tickets": used,
        "unused_tickets": total - used,
        "general_total": general,
        "general_used": general_used,
        "reserved_total": total - general,
        "reserved_used": used - general_used,
    }


@router.get("/stats/today")
async def ticket_stats_today(db: AsyncSession = Depends(get_db)):
    since = datetime.combine(date.today(), time.min).timestamp()
    checked_in = await _count(
        db, Ticket.is_used.is_(True), Ticket.used_at >= since
    )
    general = await _count(
        db, Ticket.is_used.is_(True), Ticket.used_at >= since,
        Ticket.ticket_type == TICKET_GENERAL,
    )
    return {
        "date": date.today().isoformat(),
        "total_checked_in": checked_in,
        "general_checked_in": general,
        "reserved_checked_in": checked_in - general,
    }


# ----------------------------
# QR codes
# ----------------------------
qr_router = APIRouter(prefix="/api/qrcode", tags=["qrcode"])


async def _ticket_or_404(db: AsyncSession, code: str) -> Ticket:
    ticket = (await db.execute(
        select(Ticket).where(Ticket.ticket_code == code)
    )).scalar_one_or_none()
    if ticket is None:
        raise HTTPException(404, detail="ticket not found")
    return ticket


@qr_router.get("/ticket/{ticket_code}")
async def ticket_qr(ticket_code: str, db: AsyncSession = Depends(get_db)):
    ticket = await _ticket_or_404(db, ticket_code)
    return Response(qr_png(ticket.ticket_code), media_type="image/png")


@qr_router.get("/ticket/{ticket_code}/base64")
async def ticket_qr_base64(
    ticket_code: str, db: AsyncSession = Depends(get_db)
):
    ticket = await _ticket_or_404(db, ticket_code)
    return {
        "ticket_code": ticket.ticket_code,
        "ticket_type": ticket.ticket_type,
        "is_used": bool(ticket.is_used),
        "qr_code": png_data_uri(qr_png(ticket.ticket_code)),
    }


@qr_router.get("/generate")
async def generate_qr(text: str, size: int = 10):
    if not text.strip():
        raise HTTPException(400, detail="text is required")
    return Response(
        qr_png(text, scale=max(1, min(size, 40))), media_type="image/png"
    )
