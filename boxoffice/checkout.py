"""
Checkout initiation: validate a purchase, price it, open a hosted payment
session and persist the PENDING order keyed by that session's id.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import config
from .helpers import is_valid_email, normalize_code, now_ts
from .model.orm import ExchangeCode, Order, Performance, ORDER_PENDING
from .payments import LineItem, PaymentAdapter

logger = structlog.get_logger(__name__)


class CheckoutError(Exception):
    def __init__(self, detail: str, status_code: int = 400) -> None:
        super().__init__(detail)
        self.detail = detail
        self.status_code = status_code


@dataclass
class CheckoutRequest:
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None
    performance_id: Optional[int] = None
    performance_date: Optional[str] = None
    performance_label: Optional[str] = None
    general_quantity: int = 0
    reserved_quantity: int = 0
    discounted_general_count: int = 0
    exchange_codes: List[str] = field(default_factory=list)

    @property
    def ticket_quantity(self) -> int:
        return self.general_quantity + self.reserved_quantity


# ----------------------------
# Parsing & validation
# ----------------------------
def _text(payload: dict, name: str) -> Optional[str]:
    value = payload.get(name)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def _count(payload: dict, name: str) -> int:
    value = payload.get(name, 0)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise CheckoutError(f"{name} must be an integer")
    if value < 0:
        raise CheckoutError(f"{name} must not be negative")
    return value


def parse_request(payload: Dict[str, Any]) -> CheckoutRequest:
    if not isinstance(payload, dict):
        raise CheckoutError("request body must be a JSON object")

    performance_id = payload.get("performance_id")
    if performance_id is not None and (
        isinstance(performance_id, bool) or not isinstance(performance_id, int)
    ):
        raise CheckoutError("performance_id must be an integer")

    performance_date = _text(payload, "performance_date")
    if performance_id is None and not performance_date:
        raise CheckoutError("performance_date is required")

    customer_name = _text(payload, "customer_name")
    if not customer_name:
        raise CheckoutError("customer_name is required")

    customer_email = _text(payload, "customer_email")
    if not is_valid_email(customer_email):
        raise CheckoutError(
            "customer_email is required and must be a valid email address"
        )

    raw_codes = payload.get("exchange_codes") or []
    if not isinstance(raw_codes, list):
        raise CheckoutError("exchange_codes must be a list")
    if not all(isinstance(c, str) for c in raw_codes):
        raise CheckoutError("exchange_codes must be strings")
    codes = [normalize_code(c) for c in raw_codes]
    codes = [c for c in codes if c]

    req = CheckoutRequest(
        customer_name=customer_name,
        customer_email=customer_email,
        customer_phone=_text(payload, "customer_phone"),
        performance_id=performance_id,
        performance_date=performance_date,
        performance_label=_text(payload, "performance_label"),
        general_quantity=_count(payload, "general_quantity"),
        reserved_quantity=_count(payload, "reserved_quantity"),
        discounted_general_count=_count(payload, "discounted_general_count"),
        exchange_codes=codes,
    )

    if req.ticket_quantity <= 0:
        raise CheckoutError("at least one ticket is required")
    if req.ticket_quantity > config.MAX_TICKETS_PER_ORDER:
        raise CheckoutError(
            f"at most {config.MAX_TICKETS_PER_ORDER} tickets per order"
        )
    if req.discounted_general_count > req.general_quantity:
        raise CheckoutError(
            "discounted_general_count cannot exceed general_quantity"
        )
    if len(set(codes)) != len(codes):
        raise CheckoutError("duplicate exchange code in request")
    if len(codes) != req.discounted_general_count:
        raise CheckoutError(
            "number of exchange codes must match discounted_general_count"
        )
    return req


def price_order(
    general_quantity: int, reserved_quantity: int,
    discounted_general_count: int, general_price: int, reserved_price: int
) -> Tuple[int, int]:
    """Return (total_amount, discount_amount)."""
    chargeable = general_quantity - discounted_general_count
    total = chargeable * general_price + reserved_quantity * reserved_price
    return total, discounted_general_count * general_price


# ----------------------------
# Exchange codes
# ----------------------------
async def check_exchange_codes(
    db: AsyncSession, codes: List[str]
) -> List[Tuple[str, Optional[ExchangeCode], Optional[str]]]:
    """(code, row, reason) per normalized code; reason None means usable."""
    wanted = [normalize_code(c) for c in codes]
    found = {}
    lookup = [c for c in wanted if c]
    if lookup:
        rows = await db.execute(
            select(ExchangeCode).where(ExchangeCode.code.in_(lookup))
        )
        found = {row.code: row for row in rows.scalars()}

    out = []
    seen = set()
    for code in wanted:
        row = found.get(code)
        if not code:
            reason = "empty code"
        elif code in seen:
            reason = "duplicate code"
        elif row is None:
            reason = "invalid code"
        elif row.is_used:
            reason = "code already used"
        else:
            reason = None
        seen.add(code)
        out.append((code, row, reason))
    return out


async def _verify_codes(db: AsyncSession, codes: List[str]) -> None:
    for code, _, reason in await check_exchange_codes(db, codes):
        if reason is not None:
            raise CheckoutError(f"exchange code {code}: {reason}")


# ----------------------------
# Checkout
# ----------------------------
async def _load_performance(
    db: AsyncSession, req: CheckoutRequest
) -> Optional[Performance]:
    if req.performance_id is None:
        return None
    perf = await db.get(Performance, req.performance_id)
    if perf is None:
        raise CheckoutError("performance not found", status_code=404)
    if not perf.is_on_sale():
        raise CheckoutError("tickets for this performance are not on sale")
    if req.general_quantity > perf.general_remaining:
        raise CheckoutError("not enough general seats remaining")
    if req.reserved_quantity > perf.reserved_remaining:
        raise CheckoutError("not enough reserved seats remaining")
    return perf


def _line_items(
    req: CheckoutRequest, label: str, general_price: int, reserved_price: int
) -> List[LineItem]:
    items: List[LineItem] = []
    chargeable = req.general_quantity - req.discounted_general_count
    if chargeable > 0:
        items.append({
            "name": f"{label} ticket (general)",
            "unit_amount": general_price,
            "quantity": chargeable,
        })
    if req.reserved_quantity > 0:
        items.append({
            "name": f"{label} ticket (reserved)",
            "unit_amount": reserved_price,
            "quantity": req.reserved_quantity,
        })
    return items


async def start_checkout(
    db: AsyncSession, adapter: PaymentAdapter, payload: Dict[str, Any]
) -> Dict[str, Any]:
    req = parse_request(payload)

    async with db.begin():
        perf = await _load_performance(db, req)
        await _verify_codes(db, req.exchange_codes)

    if perf is not None:
        general_price, reserved_price = perf.general_price, perf.reserved_price
        performance_date = perf.performance_date.isoformat()
        label = req.performance_label or " ".join(
            p for p in (perf.title, perf.volume) if p
        )
    else:
        general_price, reserved_price = (
            config.GENERAL_PRICE, config.RESERVED_PRICE
        )
        performance_date = req.performance_date
        label = req.performance_label or performance_date

    total, discount = price_order(
        req.general_quantity, req.reserved_quantity,
        req.discounted_general_count, general_price, reserved_price,
    )
    if total <= 0:
        # the provider cannot charge zero
        raise CheckoutError("order total must be greater than zero")

    # may raise PaymentProviderError
    session = await adapter.create_session(
        line_items=_line_items(req, label, general_price, reserved_price),
        currency=config.CURRENCY,
        customer_email=req.customer_email,
        metadata={
            "performance_date": performance_date,
            "general_quantity": req.general_quantity,
            "reserved_quantity": req.reserved_quantity,
            "discounted_general_count": req.discounted_general_count,
        },
    )
    psid = session["payment_session_id"]

    order = Order(
        payment_session_id=psid,
        performance_id=perf.id if perf is not None else None,
        performance_date=performance_date,
        performance_label=label,
        general_quantity=req.general_quantity,
        reserved_quantity=req.reserved_quantity,
        general_price=general_price,
        reserved_price=reserved_price,
        discounted_general_count=req.discounted_general_count,
        discount_amount=discount,
        total_amount=total,
        currency=config.CURRENCY,
        customer_name=req.customer_name,
        customer_email=req.customer_email,
        customer_phone=req.customer_phone,
        status=ORDER_PENDING,
        created_at=now_ts(),
    )
    order.set_exchange_code_list(req.exchange_codes)
    async with db.begin():
        db.add(order)

    logger.info(
        "checkout_created",
        order_id=order.id, session_id=psid, amount=total,
        general=req.general_quantity, reserved=req.reserved_quantity,
        discounted=req.discounted_general_count,
    )
    return {
        "order_id": order.id,
        "session_id": psid,
        "checkout_url": session["redirect_url"],
        "amount": total,
        "currency": config.CURRENCY,
    }
