"""
Order state transitions.

    PENDING -> PAID        payment confirmed (webhook or admin)
    PENDING -> CANCELLED   checkout session expired, or admin
    PAID    -> REFUNDED    admin only

Reaching PAID marks the order's exchange codes used, issues one ticket per
seat and bumps the performance's sold counters, all in the transaction that
flips the status. The flip is a conditional UPDATE, so of two concurrent
deliveries for the same session only one issues tickets.
"""
import enum
import uuid
from dataclasses import dataclass, field
from typing import List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .helpers import now_ts
from .model.orm import (
    ExchangeCode,
    Order,
    Performance,
    Ticket,
    ORDER_CANCELLED,
    ORDER_PAID,
    ORDER_PENDING,
    ORDER_REFUNDED,
    TICKET_GENERAL,
    TICKET_RESERVED,
)

logger = structlog.get_logger(__name__)


class Outcome(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    ALREADY_PAID = "ALREADY_PAID"
    NOT_PENDING = "NOT_PENDING"
    FULFILLED = "FULFILLED"


@dataclass
class FulfillmentResult:
    outcome: Outcome
    order: Optional[Order] = None
    tickets: List[Ticket] = field(default_factory=list)


class OrderNotFound(Exception):
    pass


class InvalidTransition(Exception):
    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"cannot change order from {current} to {target}")
        self.current = current
        self.target = target


async def _locked_order(db: AsyncSession, *criteria) -> Optional[Order]:
    result = await db.execute(
        select(Order).where(*criteria).with_for_update()
    )
    return result.scalar_one_or_none()


# ----------------------------
# PENDING -> PAID
# ----------------------------
async def _mark_codes_used(db: AsyncSession, order: Order, ts: float) -> None:
    for code in order.exchange_code_list():
        res = await db.execute(
            update(ExchangeCode)
            .where(ExchangeCode.code == code, ExchangeCode.is_used.is_(False))
            .values(is_used=True, used_at=ts, order_id=order.id)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            logger.warning(
                "exchange_code_not_marked", order_id=order.id, code=code
            )


def _issue_tickets(order: Order, ts: float) -> List[Ticket]:
    tickets = []
    for i in range(order.general_quantity or 0):
        tickets.append(Ticket(
            order_id=order.id,
            ticket_code=str(uuid.uuid4()),
            ticket_type=TICKET_GENERAL,
            is_exchanged=i < (order.discounted_general_count or 0),
            is_used=False,
            created_at=ts,
        ))
    for _ in range(order.reserved_quantity or 0):
        tickets.append(Ticket(
            order_id=order.id,
            ticket_code=str(uuid.uuid4()),
            ticket_type=TICKET_RESERVED,
            is_exchanged=False,
            is_used=False,
            created_at=ts,
        ))
    return tickets


async def _mark_paid(
    db: AsyncSession, order: Order, payment_ref: Optional[str]
) -> FulfillmentResult:
    if order.status == ORDER_PAID:
        return FulfillmentResult(Outcome.ALREADY_PAID, order)
    if order.status != ORDER_PENDING:
        logger.warning(
            "payment_for_inactive_order",
            order_id=order.id, status=order.status,
        )
        return FulfillmentResult(Outcome.NOT_PENDING, order)

    ts = now_ts()
    values = {"status": ORDER_PAID, "paid_at": ts}
    if payment_ref:
        values["payment_intent_id"] = payment_ref
    res = await db.execute(
        update(Order)
        .where(Order.id == order.id, Order.status == ORDER_PENDING)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if res.rowcount == 0:
        # another writer changed the status first
        await db.refresh(order)
        if order.status == ORDER_PAID:
            return FulfillmentResult(Outcome.ALREADY_PAID, order)
        return FulfillmentResult(Outcome.NOT_PENDING, order)

    await _mark_codes_used(db, order, ts)

    tickets = _issue_tickets(order, ts)
    db.add_all(tickets)

    if order.performance_id is not None:
        await db.execute(
            update(Performance)
            .where(Performance.id == order.performance_id)
            .values(
                general_sold=Performance.general_sold + order.general_quantity,
                reserved_sold=(
                    Performance.reserved_sold + order.reserved_quantity
                ),
            )
            .execution_options(synchronize_session=False)
        )

    await db.flush()
    await db.refresh(order)
    return FulfillmentResult(Outcome.FULFILLED, order, tickets)


async def fulfill_order(
    db: AsyncSession, session_id: str, payment_ref: Optional[str] = None
) -> FulfillmentResult:
    async with db.begin():
        order = await _locked_order(db, Order.payment_session_id == session_id)
        if order is None:
            logger.warning("payment_for_unknown_session", session_id=session_id)
            return FulfillmentResult(Outcome.NOT_FOUND)
        result = await _mark_paid(db, order, payment_ref)

    if result.outcome is Outcome.FULFILLED:
        logger.info(
            "order_paid",
            order_id=order.id, session_id=session_id,
            tickets=len(result.tickets),
        )
    return result


async def fulfill_order_by_id(
    db: AsyncSession, order_id: int, payment_ref: Optional[str] = None
) -> FulfillmentResult:
    async with db.begin():
        order = await _locked_order(db, Order.id == order_id)
        if order is None:
            raise OrderNotFound(order_id)
        result = await _mark_paid(db, order, payment_ref)

    if result.outcome is Outcome.NOT_PENDING:
        raise InvalidTransition(order.status, ORDER_PAID)
    if result.outcome is Outcome.FULFILLED:
        logger.info(
            "order_marked_paid", order_id=order.id,
            tickets=len(result.tickets),
        )
    return result


# ----------------------------
# Cancellation & refund
# ----------------------------
async def cancel_order_for_session(db: AsyncSession, session_id: str) -> bool:
    """PENDING -> CANCELLED on session expiry; anything else is left as is."""
    async with db.begin():
        res = await db.execute(
            update(Order)
            .where(
                Order.payment_session_id == session_id,
                Order.status == ORDER_PENDING,
            )
            .values(status=ORDER_CANCELLED, cancelled_at=now_ts())
            .execution_options(synchronize_session=False)
        )
    changed = res.rowcount > 0
    logger.info(
        "checkout_session_expired", session_id=session_id, cancelled=changed
    )
    return changed


# target -> (required source status, timestamp column)
_ADMIN_TRANSITIONS = {
    ORDER_CANCELLED: (ORDER_PENDING, "cancelled_at"),
    ORDER_REFUNDED: (ORDER_PAID, "refunded_at"),
}


async def _admin_transition(
    db: AsyncSession, order_id: int, target: str
) -> Order:
    source, stamp = _ADMIN_TRANSITIONS[target]
    async with db.begin():
        order = await _locked_order(db, Order.id == order_id)
        if order is None:
            raise OrderNotFound(order_id)
        if order.status != source:
            raise InvalidTransition(order.status, target)
        res = await db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == source)
            .values({"status": target, stamp: now_ts()})
            .execution_options(synchronize_session=False)
        )
        if res.rowcount == 0:
            raise InvalidTransition(order.status, target)
        await db.refresh(order)

    logger.info("order_status_changed", order_id=order_id, status=target)
    return order


async def cancel_order(db: AsyncSession, order_id: int) -> Order:
    return await _admin_transition(db, order_id, ORDER_CANCELLED)


async def refund_order(db: AsyncSession, order_id: int) -> Order:
    return await _admin_transition(db, order_id, ORDER_REFUNDED)
