"""
Order state transitions driven by payment confirmation and by admins.
"""
import asyncio

import pytest
from sqlalchemy import select

from boxoffice.fulfillment import (
    _mark_paid,
    InvalidTransition,
    OrderNotFound,
    Outcome,
    cancel_order,
    cancel_order_for_session,
    fulfill_order,
    fulfill_order_by_id,
    refund_order,
)
from boxoffice.model.db import SessionAsync
from boxoffice.model.orm import (
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

from conftest import fetch_all, fetch_one, make_order, save


class TestFulfillOrder:

    async def test_pending_order_becomes_paid(self, db) -> None:
        order = await save(make_order("cs_1"))

        result = await fulfill_order(db, "cs_1", "pi_1")

        assert result.outcome is Outcome.FULFILLED
        assert result.order.status == ORDER_PAID
        stored = await fetch_one(Order, Order.id == order.id)
        assert stored.status == ORDER_PAID
        assert stored.payment_intent_id == "pi_1"
        assert stored.paid_at is not None

    async def test_ticket_count_matches_quantities(self, db) -> None:
        order = await save(make_order(
            "cs_2", general_quantity=3, reserved_quantity=2
        ))

        result = await fulfill_order(db, "cs_2", "pi_2")

        tickets = await fetch_all(Ticket, Ticket.order_id == order.id)
        assert len(tickets) == 5 == len(result.tickets)
        assert [t.ticket_type for t in tickets] == [TICKET_GENERAL] * 3 + [
            TICKET_RESERVED
        ] * 2
        assert len({t.ticket_code for t in tickets}) == 5
        assert not any(t.is_used for t in tickets)

    async def test_redelivery_issues_tickets_once(self, db) -> None:
        order = await save(make_order("cs_3"))

        first = await fulfill_order(db, "cs_3", "pi_3")
        second = await fulfill_order(db, "cs_3", "pi_3")

        assert first.outcome is Outcome.FULFILLED
        assert second.outcome is Outcome.ALREADY_PAID
        assert second.tickets == []
        tickets = await fetch_all(Ticket, Ticket.order_id == order.id)
        assert len(tickets) == order.ticket_quantity

    async def test_unknown_session(self, db) -> None:
        result = await fulfill_order(db, "cs_missing", "pi_x")
        assert result.outcome is Outcome.NOT_FOUND
        assert result.order is None
        assert await fetch_all(Ticket) == []

    @pytest.mark.parametrize("status", [ORDER_CANCELLED, ORDER_REFUNDED])
    async def test_inactive_order_is_not_resurrected(self, db, status):
        await save(make_order("cs_4", status=status))

        result = await fulfill_order(db, "cs_4", "pi_4")

        assert result.outcome is Outcome.NOT_PENDING
        stored = await fetch_one(Order, Order.payment_session_id == "cs_4")
        assert stored.status == status
        assert await fetch_all(Ticket) == []

    async def test_exchange_codes_marked_used(self, db) -> None:
        await save(
            ExchangeCode(code="TEST001", is_used=False, created_at=0.0),
            ExchangeCode(code="TEST002", is_used=False, created_at=0.0),
        )
        order = await save(make_order(
            "cs_5", general_quantity=3, reserved_quantity=0,
            discounted_general_count=2, discount_amount=9000,
            total_amount=4500, exchange_codes=" test001,TEST002,,",
        ))

        result = await fulfill_order(db, "cs_5", "pi_5")

        codes = await fetch_all(ExchangeCode)
        assert all(c.is_used for c in codes)
        assert {c.order_id for c in codes} == {order.id}
        flags = [t.is_exchanged for t in result.tickets]
        assert flags == [True, True, False]

    async def test_code_is_used_at_most_once(self, db) -> None:
        await save(ExchangeCode(code="SHARED", is_used=False, created_at=0.0))
        first = await save(make_order(
            "cs_6a", general_quantity=2, reserved_quantity=0,
            discounted_general_count=1, exchange_codes="SHARED",
            total_amount=4500,
        ))
        await save(make_order(
            "cs_6b", general_quantity=2, reserved_quantity=0,
            discounted_general_count=1, exchange_codes="SHARED",
            total_amount=4500,
        ))

        await fulfill_order(db, "cs_6a", "pi_6a")
        used_at = (await fetch_one(ExchangeCode)).used_at
        await fulfill_order(db, "cs_6b", "pi_6b")

        code = await fetch_one(ExchangeCode)
        assert code.is_used
        assert code.order_id == first.id
        assert code.used_at == used_at

    async def test_performance_counters(self, db, performance) -> None:
        await save(make_order(
            "cs_7", performance_id=performance.id,
            general_quantity=2, reserved_quantity=1,
        ))

        await fulfill_order(db, "cs_7", "pi_7")

        perf = await fetch_one(Performance)
        assert perf.general_sold == 2
        assert perf.reserved_sold == 1
        assert perf.general_remaining == 98

    async def test_concurrent_deliveries_issue_tickets_once(self) -> None:
        order = await save(make_order("cs_race"))

        async def deliver():
            async with SessionAsync() as session:
                return await fulfill_order(session, "cs_race", "pi_race")

        results = await asyncio.gather(*(deliver() for _ in range(5)))

        outcomes = [r.outcome for r in results]
        assert outcomes.count(Outcome.FULFILLED) == 1
        assert outcomes.count(Outcome.ALREADY_PAID) == 4
        assert all(r.order.status == ORDER_PAID for r in results)
        tickets = await fetch_all(Ticket, Ticket.order_id == order.id)
        assert len(tickets) == order.general_quantity + order.reserved_quantity

    @pytest.mark.parametrize("winner, outcome", [
        ("paid", Outcome.ALREADY_PAID),
        ("cancelled", Outcome.NOT_PENDING),
    ])
    async def test_lost_status_race_reports_current_status(
        self, db, winner, outcome
    ) -> None:
        await save(make_order("cs_lost"))
        async with db.begin():
            stale = (await db.execute(
                select(Order).where(Order.payment_session_id == "cs_lost")
            )).scalar_one()
            # another writer moves the order on while we hold a PENDING copy
            async with SessionAsync() as other:
                if winner == "paid":
                    await fulfill_order(other, "cs_lost", "pi_other")
                else:
                    await cancel_order_for_session(other, "cs_lost")
            result = await _mark_paid(db, stale, "pi_late")

        assert result.outcome is outcome
        assert result.order.status != ORDER_PENDING
        assert len(await fetch_all(Ticket)) == (3 if winner == "paid" else 0)


class TestSessionExpiry:

    async def test_pending_is_cancelled(self, db) -> None:
        await save(make_order("cs_exp"))
        assert await cancel_order_for_session(db, "cs_exp") is True
        stored = await fetch_one(Order)
        assert stored.status == ORDER_CANCELLED
        assert stored.cancelled_at is not None

    async def test_paid_is_left_alone(self, db) -> None:
        await save(make_order("cs_paid", status=ORDER_PAID))
        assert await cancel_order_for_session(db, "cs_paid") is False
        assert (await fetch_one(Order)).status == ORDER_PAID


class TestAdminTransitions:

    async def test_mark_paid_by_id(self, db) -> None:
        order = await save(make_order("cs_a1"))
        result = await fulfill_order_by_id(db, order.id, "pi_manual")
        assert result.outcome is Outcome.FULFILLED
        assert len(result.tickets) == 3

    async def test_mark_paid_cancelled_order(self, db) -> None:
        order = await save(make_order("cs_a2", status=ORDER_CANCELLED))
        with pytest.raises(InvalidTransition):
            await fulfill_order_by_id(db, order.id)

    async def test_cancel_then_refund_is_invalid(self, db) -> None:
        order = await save(make_order("cs_a3"))
        cancelled = await cancel_order(db, order.id)
        assert cancelled.status == ORDER_CANCELLED
        with pytest.raises(InvalidTransition) as exc:
            await refund_order(db, order.id)
        assert exc.value.current == ORDER_CANCELLED

    async def test_refund_paid_order(self, db) -> None:
        order = await save(make_order("cs_a4"))
        await fulfill_order(db, "cs_a4")
        refunded = await refund_order(db, order.id)
        assert refunded.status == ORDER_REFUNDED
        assert refunded.refunded_at is not None

    async def test_refund_pending_is_invalid(self, db) -> None:
        order = await save(make_order("cs_a5"))
        with pytest.raises(InvalidTransition):
            await refund_order(db, order.id)
        assert (await fetch_one(Order)).status == ORDER_PENDING

    async def test_missing_order(self, db) -> None:
        with pytest.raises(OrderNotFound):
            await cancel_order(db, 12345)
