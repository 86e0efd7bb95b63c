from datetime import date
from typing import List

from sqlalchemy.orm import declarative_base
from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Time,
)

from ..helpers import now_ts, normalize_code


Base = declarative_base()


# ----------------------------
# Status values
# ----------------------------
ORDER_PENDING = "PENDING"
ORDER_PAID = "PAID"
ORDER_CANCELLED = "CANCELLED"
ORDER_REFUNDED = "REFUNDED"
ORDER_STATUSES = (ORDER_PENDING, ORDER_PAID, ORDER_CANCELLED, ORDER_REFUNDED)

TICKET_GENERAL = "GENERAL"
TICKET_RESERVED = "RESERVED"

SALE_NOT_ON_SALE = "NOT_ON_SALE"
SALE_ON_SALE = "ON_SALE"
SALE_SOLD_OUT = "SOLD_OUT"
SALE_ENDED = "ENDED"
SALE_STATUSES = (SALE_NOT_ON_SALE, SALE_ON_SALE, SALE_SOLD_OUT, SALE_ENDED)

ROLE_ADMIN = "ADMIN"
ROLE_SUPER_ADMIN = "SUPER_ADMIN"


# ----------------------------
# ORM models
# ----------------------------
class Performance(Base):
    __tablename__ = "performances"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    volume = Column(String(50), nullable=True)  # vol.1, vol.2, ...
    performance_date = Column(Date, nullable=False)
    performance_time = Column(Time, nullable=False)
    doors_open_time = Column(Time, nullable=True)

    venue_name = Column(String, nullable=False)
    venue_address = Column(String, nullable=True)
    venue_access = Column(String, nullable=True)

    general_price = Column(Integer, nullable=False)
    reserved_price = Column(Integer, nullable=False)

    general_capacity = Column(Integer, nullable=False, default=0)
    reserved_capacity = Column(Integer, nullable=False, default=0)
    general_sold = Column(Integer, nullable=False, default=0)
    reserved_sold = Column(Integer, nullable=False, default=0)

    # NOT_ON_SALE | ON_SALE | SOLD_OUT | ENDED
    sale_status = Column(String, nullable=False, default=SALE_NOT_ON_SALE)
    sale_start_at = Column(Float, nullable=True)
    sale_end_at = Column(Float, nullable=True)

    flyer_image_url = Column(String, nullable=True)
    description = Column(Text, nullable=True)

    created_at = Column(Float, nullable=False, default=now_ts)
    updated_at = Column(Float, nullable=True, onupdate=now_ts)

    @property
    def general_remaining(self) -> int:
        return (self.general_capacity or 0) - (self.general_sold or 0)

    @property
    def reserved_remaining(self) -> int:
        return (self.reserved_capacity or 0) - (self.reserved_sold or 0)

    def is_on_sale(self, at: float | None = None) -> bool:
        if self.sale_status != SALE_ON_SALE:
            return False
        at = now_ts() if at is None else at
        if self.sale_start_at is not None and at < self.sale_start_at:
            return False
        if self.sale_end_at is not None and at > self.sale_end_at:
            return False
        return True

    def is_sold_out(self) -> bool:
        return self.general_remaining <= 0 and self.reserved_remaining <= 0

    def is_upcoming(self, today: date | None = None) -> bool:
        return self.performance_date >= (today or date.today())


class Order(Base):
    __tablename__ = "orders"
    id = Column(Integer, primary_key=True, autoincrement=True)
    payment_session_id = Column(String, nullable=False, unique=True)
    payment_intent_id = Column(String, nullable=True)

    performance_id = Column(
        Integer, ForeignKey("performances.id", ondelete="SET NULL"),
        nullable=True
    )
    performance_date = Column(String, nullable=False)
    performance_label = Column(String, nullable=True)

    general_quantity = Column(Integer, nullable=False, default=0)
    reserved_quantity = Column(Integer, nullable=False, default=0)
    # price schedule in effect at checkout time
    general_price = Column(Integer, nullable=False)
    reserved_price = Column(Integer, nullable=False)

    discounted_general_count = Column(Integer, nullable=False, default=0)
    discount_amount = Column(Integer, nullable=False, default=0)
    exchange_codes = Column(String(500), nullable=True)  # comma separated

    total_amount = Column(Integer, nullable=False)
    currency = Column(String, nullable=False, default="jpy")

    customer_name = Column(String, nullable=False)
    customer_email = Column(String, nullable=False)
    customer_phone = Column(String, nullable=True)

    # PENDING | PAID | CANCELLED | REFUNDED
    status = Column(String, nullable=False, default=ORDER_PENDING)
    created_at = Column(Float, nullable=False, default=now_ts)
    paid_at = Column(Float, nullable=True)
    cancelled_at = Column(Float, nullable=True)
    refunded_at = Column(Float, nullable=True)

    __table_args__ = (
        Index("idx_orders_status", "status"),
        Index("idx_orders_performance_date", "performance_date"),
    )

    @property
    def ticket_quantity(self) -> int:
        return (self.general_quantity or 0) + (self.reserved_quantity or 0)

    def exchange_code_list(self) -> List[str]:
        if not self.exchange_codes:
            return []
        codes = (normalize_code(c) for c in self.exchange_codes.split(","))
        return [c for c in codes if c]

    def set_exchange_code_list(self, codes: List[str]) -> None:
        self.exchange_codes = ",".join(codes) if codes else None


class Ticket(Base):
    __tablename__ = "tickets"
    id = Column(Integer, primary_key=True, autoincrement=True)
    order_id = Column(
        Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False
    )
    ticket_code = Column(String(36), nullable=False, unique=True)
    # GENERAL | RESERVED
    ticket_type = Column(String(20), nullable=False)
    # issued against an exchange code (zero cost)
    is_exchanged = Column(Boolean, nullable=False, default=False)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)

    __table_args__ = (
        Index("idx_ticket_order", "order_id"),
        Index("idx_ticket_type", "ticket_type"),
    )


class ExchangeCode(Base):
    __tablename__ = "exchange_codes"
    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=False, unique=True)
    performer_name = Column(String(100), nullable=True)
    is_used = Column(Boolean, nullable=False, default=False)
    used_at = Column(Float, nullable=True)
    order_id = Column(Integer, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)


class News(Base):
    __tablename__ = "news"
    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String, nullable=False)
    content = Column(Text, nullable=True)
    published_at = Column(Float, nullable=False, default=now_ts)
    category = Column(String, nullable=True)


class AdminUser(Base):
    __tablename__ = "admin_users"
    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String, nullable=False, unique=True)
    password_hash = Column(String, nullable=False)
    name = Column(String, nullable=False)
    # ADMIN | SUPER_ADMIN
    role = Column(String, nullable=False, default=ROLE_ADMIN)
    last_login_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False, default=now_ts)


class WebhookEventSeen(Base):
    __tablename__ = "webhook_events_seen"
    event_id = Column(String, primary_key=True)
    created_at = Column(Float, nullable=False, default=now_ts)
