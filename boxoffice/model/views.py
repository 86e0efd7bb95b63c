from typing import Any, Dict, Optional

from ..helpers import to_iso
from .orm import AdminUser, ExchangeCode, News, Order, Performance, Ticket


# ----------------------------
# JSON views
# ----------------------------
def _time(t) -> Optional[str]:
    return t.strftime("%H:%M") if t is not None else None


def performance_view(p: Performance) -> Dict[str, Any]:
    return {
        "id": p.id,
        "title": p.title,
        "volume": p.volume,
        "performance_date": p.performance_date.isoformat(),
        "performance_time": _time(p.performance_time),
        "doors_open_time": _time(p.doors_open_time),
        "venue_name": p.venue_name,
        "venue_address": p.venue_address,
        "venue_access": p.venue_access,
        "general_price": p.general_price,
        "reserved_price": p.reserved_price,
        "general_capacity": p.general_capacity,
        "reserved_capacity": p.reserved_capacity,
        "general_sold": p.general_sold,
        "reserved_sold": p.reserved_sold,
        "general_remaining": p.general_remaining,
        "reserved_remaining": p.reserved_remaining,
        "sale_status": p.sale_status,
        "sale_start_at": to_iso(p.sale_start_at),
        "sale_end_at": to_iso(p.sale_end_at),
        "is_on_sale": p.is_on_sale(),
        "is_sold_out": p.is_sold_out(),
        "flyer_image_url": p.flyer_image_url,
        "description": p.description,
        "created_at": to_iso(p.created_at),
        "updated_at": to_iso(p.updated_at),
    }


def availability_view(p: Performance) -> Dict[str, Any]:
    return {
        "performance_id": p.id,
        "general_remaining": p.general_remaining,
        "reserved_remaining": p.reserved_remaining,
        "is_on_sale": p.is_on_sale(),
        "is_sold_out": p.is_sold_out(),
    }


def order_view(o: Order) -> Dict[str, Any]:
    return {
        "id": o.id,
        "payment_session_id": o.payment_session_id,
        "payment_intent_id": o.payment_intent_id,
        "performance_id": o.performance_id,
        "performance_date": o.performance_date,
        "performance_label": o.performance_label,
        "general_quantity": o.general_quantity,
        "reserved_quantity": o.reserved_quantity,
        "general_price": o.general_price,
        "reserved_price": o.reserved_price,
        "discounted_general_count": o.discounted_general_count,
        "discount_amount": o.discount_amount,
        "exchange_codes": o.exchange_code_list(),
        "total_amount": o.total_amount,
        "currency": o.currency,
        "customer_name": o.customer_name,
        "customer_email": o.customer_email,
        "customer_phone": o.customer_phone,
        "status": o.status,
        "created_at": to_iso(o.created_at),
        "paid_at": to_iso(o.paid_at),
        "cancelled_at": to_iso(o.cancelled_at),
        "refunded_at": to_iso(o.refunded_at),
    }


def ticket_view(t: Ticket) -> Dict[str, Any]:
    return {
        "id": t.id,
        "order_id": t.order_id,
        "ticket_code": t.ticket_code,
        "ticket_type": t.ticket_type,
        "is_exchanged": bool(t.is_exchanged),
        "is_used": bool(t.is_used),
        "used_at": to_iso(t.used_at),
        "created_at": to_iso(t.created_at),
    }


def exchange_code_view(c: ExchangeCode) -> Dict[str, Any]:
    return {
        "id": c.id,
        "code": c.code,
        "performer_name": c.performer_name,
        "is_used": bool(c.is_used),
        "used_at": to_iso(c.used_at),
        "order_id": c.order_id,
        "created_at": to_iso(c.created_at),
    }


def news_view(n: News) -> Dict[str, Any]:
    return {
        "id": n.id,
        "title": n.title,
        "content": n.content,
        "published_at": to_iso(n.published_at),
        "category": n.category,
    }


def admin_view(u: AdminUser) -> Dict[str, Any]:
    # never expose password_hash
    return {
        "id": u.id,
        "email": u.email,
        "name": u.name,
        "role": u.role,
        "last_login_at": to_iso(u.last_login_at),
    }
