"""
Confirmation email rendering and delivery.
"""
from unittest.mock import AsyncMock

import aiosmtplib
import pytest

from boxoffice import mailer as mailer_mod
from boxoffice.mailer import Mailer, send_confirmation
from boxoffice.model.orm import Ticket, TICKET_GENERAL, TICKET_RESERVED

from conftest import make_order


@pytest.fixture
def order():
    o = make_order(
        "cs_mail", discounted_general_count=1, discount_amount=4500,
        total_amount=4500 + 5500,
    )
    o.id = 7
    return o


@pytest.fixture
def tickets():
    return [
        Ticket(ticket_code="g-1", ticket_type=TICKET_GENERAL,
               is_exchanged=True),
        Ticket(ticket_code="g-2", ticket_type=TICKET_GENERAL,
               is_exchanged=False),
        Ticket(ticket_code="r-1", ticket_type=TICKET_RESERVED,
               is_exchanged=False),
    ]


def smtp_mailer(**kw) -> Mailer:
    fields = dict(
        host="smtp.example.com", port=587, sender="tickets@example.com",
        sender_name="easel", frontend_url="https://tickets.example.com/",
    )
    fields.update(kw)
    return Mailer(**fields)


def test_render(order, tickets) -> None:
    subject, body = smtp_mailer().render_confirmation(order, tickets)

    assert subject == "[easel] Your tickets for easel LIVE vol.2"
    assert "Dear Hanako Suzuki" in body
    assert "Order number : 7" in body
    assert "Exchange codes applied: 1 (-4500 JPY)" in body
    assert ": 10000 JPY" in body
    assert "g-1 (exchange code)" in body
    assert "https://tickets.example.com/ticket/r-1" in body
    assert body.index("General admission") < body.index("Reserved seats")


def test_message_headers(order, tickets) -> None:
    msg = smtp_mailer().build_message(order, tickets)
    assert msg["To"] == "hanako@example.com"
    assert msg["From"] == "easel <tickets@example.com>"


async def test_send(monkeypatch, order, tickets) -> None:
    send = AsyncMock()
    monkeypatch.setattr(aiosmtplib, "send", send)

    assert await smtp_mailer(username="u", password="p").send_confirmation(
        order, tickets
    ) is True

    send.assert_awaited_once()
    kw = send.await_args.kwargs
    assert kw["hostname"] == "smtp.example.com"
    assert kw["username"] == "u"
    assert kw["start_tls"] is True


async def test_unconfigured_is_skipped(monkeypatch, order, tickets) -> None:
    send = AsyncMock()
    monkeypatch.setattr(aiosmtplib, "send", send)
    assert await smtp_mailer(host="").send_confirmation(
        order, tickets
    ) is False
    send.assert_not_awaited()


async def test_delivery_errors_are_logged_not_raised(
    monkeypatch, order, tickets
) -> None:
    monkeypatch.setattr(
        aiosmtplib, "send",
        AsyncMock(side_effect=aiosmtplib.SMTPConnectError("refused")),
    )
    await send_confirmation(order, tickets, mailer=smtp_mailer())


def test_default_mailer_follows_config() -> None:
    assert mailer_mod.get_mailer() is mailer_mod.get_mailer()
    assert mailer_mod.get_mailer().enabled is False
