from .orm import (
    Base,
    Performance,
    Order,
    Ticket,
    ExchangeCode,
    News,
    AdminUser,
    WebhookEventSeen,
)

__all__ = [
    "Base",
    "Performance",
    "Order",
    "Ticket",
    "ExchangeCode",
    "News",
    "AdminUser",
    "WebhookEventSeen",
]
