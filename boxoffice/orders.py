from typing import List

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from .auth import require_admin
from .fulfillment import (
    InvalidTransition,
    OrderNotFound,
    Outcome,
    cancel_order,
    fulfill_order_by_id,
    refund_order,
)
from .mailer import send_confirmation
from .model.db import get_db
from .model.orm import (
    Order,
    Ticket,
    ORDER_CANCELLED,
    ORDER_PAID,
    ORDER_REFUNDED,
    ORDER_STATUSES,
)
from .model.views import order_view, ticket_view

logger = structlog.get_logger(__name__)

router = APIRouter(
    prefix="/api/orders", tags=["orders"],
    dependencies=[Depends(require_admin)],
)


async def _get_order(db: AsyncSession, order_id: int) -> Order:
    order = await db.get(Order, order_id)
    if order is None:
        raise HTTPException(404, detail="order not found")
    return order


async def _tickets_for(db: AsyncSession, order_id: int) -> List[Ticket]:
    rows = await db.execute(
        select(Ticket).where(Ticket.order_id == order_id).order_by(Ticket.id)
    )
    return list(rows.scalars())


async def _list(db: AsyncSession, *criteria):
    q = select(Order)
    if criteria:
        q = q.where(*criteria)
    rows = await db.execute(
        q.order_by(Order.created_at.desc(), Order.id.desc())
    )
    return [order_view(o) for o in rows.scalars()]


@router.get("")
async def list_orders(db: AsyncSession = Depends(get_db)):
    return await _list(db)


@router.get("/stats")
async def order_stats(db: AsyncSession = Depends(get_db)):
    row = (await db.execute(
        select(
            func.count(Order.id),
            func.coalesce(func.sum(Order.total_amount), 0),
            func.coalesce(func.sum(Order.general_quantity), 0),
            func.coalesce(func.sum(Order.reserved_quantity), 0),
            func.coalesce(func.sum(Order.discounted_general_count), 0),
        ).where(Order.status == ORDER_PAID)
    )).one()
    orders, revenue, general, reserved, discounted = (int(v) for v in row)
    return {
        "total_orders": orders,
        "total_revenue": revenue,
        "total_tickets": general + reserved,
        "total_general_tickets": general,
        "total_reserved_tickets": reserved,
        "total_discounted_tickets": discounted,
    }


@router.get("/session/{session_id}")
async def get_order_by_session(
    session_id: str, db: AsyncSession = Depends(get_db)
):
    order = (await db.execute(
        select(Order).where(Order.payment_session_id == session_id)
    )).scalar_one_or_none()
    if order is None:
        raise HTTPException(404, detail="order not found")
    return order_view(order)


@router.get("/status/{status}")
async def list_by_status(status: str, db: AsyncSession = Depends(get_db)):
    status = status.upper()
    if status not in ORDER_STATUSES:
        raise HTTPException(400, detail=f"invalid status: {status}")
    return await _list(db, Order.status == status)


@router.get("/performance/{performance_date}")
async def list_by_performance(
    performance_date: str, db: AsyncSession = Depends(get_db)
):
    return await _list(db, Order.performance_date == performance_date)


@router.get("/{order_id}")
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return order_view(await _get_order(db, order_id))


@router.get("/{order_id}/tickets")
async def get_order_tickets(
    order_id: int, db: AsyncSession = Depends(get_db)
):
    await _get_order(db, order_id)
    return [ticket_view(t) for t in await _tickets_for(db, order_id)]


@router.put("/{order_id}/status")
async def update_order_status(
    order_id: int, payload: dict, background: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    target = str(payload.get("status") or "").strip().upper()
    try:
        if target == ORDER_PAID:
            result = await fulfill_order_by_id(
                db, order_id, payload.get("payment_intent_id")
            )
            order = result.order
            if result.outcome is Outcome.FULFILLED:
                background.add_task(
                    send_confirmation, result.order, result.tickets
                )
        elif target == ORDER_CANCELLED:
            order = await cancel_order(db, order_id)
        elif target == ORDER_REFUNDED:
            order = await refund_order(db, order_id)
        else:
            raise HTTPException(400, detail=f"invalid status: {target}")
    except OrderNotFound:
        raise HTTPException(404, detail="order not found")
    except InvalidTransition as e:
        raise HTTPException(409, detail=str(e))
    return {"ok": True, "order": order_view(order)}


@router.post("/{order_id}/resend-confirmation")
async def resend_confirmation(
    order_id: int, background: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
):
    order = await _get_order(db, order_id)
    if order.status != ORDER_PAID:
        raise HTTPException(409, detail="order is not paid")
    tickets = await _tickets_for(db, order_id)
    background.add_task(send_confirmation, order, tickets)
    logger.info("confirmation_email_queued", order_id=order_id)
    return {"ok": True, "queued": True}
