from email.message import EmailMessage
from email.utils import formataddr
from typing import List, Optional, Tuple

import aiosmtplib
import structlog
from jinja2 import DictLoader, Environment

from . import config
from .model.orm import Order, Ticket, TICKET_GENERAL, TICKET_RESERVED

logger = structlog.get_logger(__name__)


CONFIRMATION_SUBJECT = "[{{ sender_name }}] Your tickets for {{ label }}"

CONFIRMATION_BODY = """\
Dear {{ order.customer_name }},

Thank you for your purchase. Your payment has been received.

Order number : {{ order.id }}
Performance  : {{ label }}
Date         : {{ order.performance_date }}
{% if order.general_quantity %}General      : {{ order.general_quantity }} x {{ order.general_price }} {{ currency }}
{% endif %}{% if order.reserved_quantity %}Reserved     : {{ order.reserved_quantity }} x {{ order.reserved_price }} {{ currency }}
{% endif %}{% if order.discounted_general_count %}Exchange codes applied: {{ order.discounted_general_count }} (-{{ order.discount_amount }} {{ currency }})
{% endif %}Total        : {{ order.total_amount }} {{ currency }}
{% for title, group in sections %}
{{ title }}
{% for t in group %}  - {{ t.ticket_code }}{% if t.is_exchanged %} (exchange code){% endif %}
    {{ frontend_url }}/ticket/{{ t.ticket_code }}
{% endfor %}{% endfor %}
Please show the QR code of each ticket at the entrance.

{{ sender_name }}
"""

_templates = Environment(
    loader=DictLoader({
        "confirmation_subject.txt": CONFIRMATION_SUBJECT,
        "confirmation_body.txt": CONFIRMATION_BODY,
    }),
    autoescape=False,
    keep_trailing_newline=True,
)


class Mailer:
    def __init__(
        self, *, host: str, port: int, username: str = "",
        password: str = "", sender: str = "", sender_name: str = "",
        starttls: bool = True, frontend_url: str = "",
    ) -> None:
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.sender = sender
        self.sender_name = sender_name
        self.starttls = starttls
        self.frontend_url = frontend_url.rstrip("/")

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.sender)

    def render_confirmation(
        self, order: Order, tickets: List[Ticket]
    ) -> Tuple[str, str]:
        sections = [
            (title, [t for t in tickets if t.ticket_type == kind])
            for title, kind in (
                ("General admission", TICKET_GENERAL),
                ("Reserved seats", TICKET_RESERVED),
            )
        ]
        ctx = {
            "order": order,
            "label": order.performance_label or order.performance_date,
            "currency": (order.currency or "").upper(),
            "sections": [(title, g) for title, g in sections if g],
            "sender_name": self.sender_name,
            "frontend_url": self.frontend_url,
        }
        subject = _templates.get_template(
            "confirmation_subject.txt"
        ).render(ctx)
        body = _templates.get_template("confirmation_body.txt").render(ctx)
        return subject.strip(), body

    def build_message(
        self, order: Order, tickets: List[Ticket]
    ) -> EmailMessage:
        subject, body = self.render_confirmation(order, tickets)
        msg = EmailMessage()
        msg["From"] = formataddr((self.sender_name, self.sender))
        msg["To"] = order.customer_email
        msg["Subject"] = subject
        msg.set_content(body)
        return msg

    async def send_confirmation(
        self, order: Order, tickets: List[Ticket]
    ) -> bool:
        if not self.enabled:
            logger.warning(
                "mail_not_configured", order_id=order.id,
            )
            return False
        if not order.customer_email:
            logger.warning("order_without_email", order_id=order.id)
            return False

        await aiosmtplib.send(
            self.build_message(order, tickets),
            hostname=self.host,
            port=self.port,
            username=self.username or None,
            password=self.password or None,
            start_tls=self.starttls,
        )
        logger.info(
            "confirmation_email_sent",
            order_id=order.id, to=order.customer_email,
        )
        return True


_mailer: Optional[Mailer] = None


def get_mailer() -> Mailer:
    global _mailer
    if _mailer is None:
        _mailer = Mailer(
            host=config.MAIL_HOST,
            port=config.MAIL_PORT,
            username=config.MAIL_USERNAME,
            password=config.MAIL_PASSWORD,
            sender=config.MAIL_FROM,
            sender_name=config.MAIL_FROM_NAME,
            starttls=config.MAIL_STARTTLS,
            frontend_url=config.FRONTEND_URL,
        )
    return _mailer


async def send_confirmation(
    order: Order, tickets: List[Ticket], mailer: Optional[Mailer] = None
) -> None:
    """Background task; delivery problems never reach the payment flow."""
    mailer = mailer or get_mailer()
    try:
        await mailer.send_confirmation(order, tickets)
    except Exception:
        logger.exception("confirmation_email_failed", order_id=order.id)
