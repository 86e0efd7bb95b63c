from __future__ import annotations

import json

import httpx
import redis.asyncio as redis
import structlog
from fastapi import BackgroundTasks, Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.middleware.sessions import SessionMiddleware

from . import config
from .auth import router as auth_router
from .catalog import exchange_codes_router, news_router, performances_router
from .checkout import CheckoutError, start_checkout
from .fulfillment import Outcome, cancel_order_for_session, fulfill_order
from .helpers import to_iso
from .infra.logs import setup_logging
from .mailer import send_confirmation
from .model.db import SessionAsync, create_all, engine, get_db
from .model.orm import Order, Ticket, ORDER_PENDING
from .model.webhookevents import (
    BACKEND as EVENTS_BACKEND,
    WebhookEventStore,
    new_store,
)
from .orders import router as orders_router
from .payments import (
    MockPay,
    PaymentAdapter,
    PaymentProviderError,
    WebhookVerificationError,
    get_adapter,
)
from .seed import seed_demo_data
from .tickets import qr_router, router as tickets_router

setup_logging()
logger = structlog.get_logger(__name__)

adapter: PaymentAdapter = get_adapter()

app = FastAPI(
    title="boxoffice",
    default_response_class=ORJSONResponse,
)
app.add_middleware(SessionMiddleware, secret_key=config.SESSION_SECRET)
app.add_middleware(
    CORSMiddleware,
    allow_origins=[config.FRONTEND_URL],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(auth_router)
app.include_router(news_router)
app.include_router(performances_router)
app.include_router(exchange_codes_router)
app.include_router(orders_router)
app.include_router(tickets_router)
app.include_router(qr_router)


async def webhook_events() -> WebhookEventStore:
    if EVENTS_BACKEND == "redis":
        yield new_store(r=app.state.redis)
    else:
        async with SessionAsync() as session:
            yield new_store(db=session)


# ---
# startup / shutdown
# ---
@app.on_event("startup")
async def _say_hello():
    logger.info(
        "boxoffice_starting",
        payment_provider=adapter.name,
        events_backend=EVENTS_BACKEND,
        database=engine.url.render_as_string(hide_password=True),
    )


@app.on_event("startup")
async def _db_init():
    await create_all()
    if config.SEED_DEMO_DATA:
        await seed_demo_data(SessionAsync)


@app.on_event("startup")
async def _http_client_start():
    app.state.http = httpx.AsyncClient(
        timeout=5.0,
        limits=httpx.Limits(max_connections=64, max_keepalive_connections=64),
    )


@app.on_event("startup")
async def _redis_start():
    if EVENTS_BACKEND == "redis":
        app.state.redis = redis.from_url(
            config.REDIS_URL,
            decode_responses=True,
            socket_timeout=2.0,
            socket_connect_timeout=2.0,
            retry_on_timeout=True,
        )


@app.on_event("shutdown")
async def _http_client_stop():
    http = getattr(app.state, "http", None)
    if http is not None:
        await http.aclose()
        app.state.http = None


@app.on_event("shutdown")
async def _redis_stop():
    r = getattr(app.state, "redis", None)
    if r is not None:
        await r.aclose()
        app.state.redis = None


@app.get("/api/health")
async def health():
    return {"ok": True, "payment_provider": adapter.name}


# ----------------------------
# Checkout
# ----------------------------
@app.post("/api/payment/checkout")
async def create_checkout(payload: dict, db: AsyncSession = Depends(get_db)):
    try:
        return await start_checkout(db, adapter, payload)
    except CheckoutError as e:
        raise HTTPException(e.status_code, detail=e.detail)
    except PaymentProviderError as e:
        raise HTTPException(502, detail=f"payment provider error: {e}")


# ----------------------------
# API: Order status (polled by success page)
# ----------------------------
@app.get("/api/payment/session/{session_id}")
async def get_session_order(
    session_id: str, db: AsyncSession = Depends(get_db)
):
    order = (await db.execute(
        select(Order).where(Order.payment_session_id == session_id)
    )).scalar_one_or_none()
    if order is None:
        raise HTTPException(404, detail="order not found")
    tickets = (await db.execute(
        select(Ticket).where(Ticket.order_id == order.id).order_by(Ticket.id)
    )).scalars().all()
    return {
        "order_id": order.id,
        "status": order.status,
        "performance_date": order.performance_date,
        "performance_label": order.performance_label,
        "general_quantity": order.general_quantity,
        "reserved_quantity": order.reserved_quantity,
        "total_amount": order.total_amount,
        "currency": order.currency,
        "paid_at": to_iso(order.paid_at),
        "tickets": [
            {"ticket_code": t.ticket_code, "ticket_type": t.ticket_type}
            for t in tickets
        ],
    }


# ----------------------------
# Webhook endpoint (shared for Mock/Stripe)
# ----------------------------
@app.post("/api/webhook/payments")
@app.post("/api/webhook/stripe")
async def payments_webhook(
    request: Request,
    background: BackgroundTasks,
    db: AsyncSession = Depends(get_db),
    events: WebhookEventStore = Depends(webhook_events),
):
    payload = await request.body()
    headers = dict(request.headers)

    try:
        event = adapter.verify_webhook(payload, headers)
    except WebhookVerificationError as e:
        logger.warning("webhook_signature_invalid", error=str(e))
        raise HTTPException(400, detail=str(e))

    kind = adapter.event_kind(event)
    psid, payment_ref, evt_id = adapter.event_ids(event)
    log = logger.bind(event_id=evt_id, kind=kind, session_id=psid)
    if kind in ("completed", "expired") and not psid:
        raise HTTPException(400, detail="missing payment session id")

    if await events.is_event_seen(evt_id):
        log.info("webhook_duplicate")
        return {"ok": True, "idempotent": True}

    out = {"ok": True, "kind": kind}
    if kind == "completed":
        result = await fulfill_order(db, psid, payment_ref)
        if result.outcome is Outcome.FULFILLED:
            background.add_task(
                send_confirmation, result.order, result.tickets
            )
        out["outcome"] = result.outcome.value
        if result.order is not None:
            out["order_status"] = result.order.status
    elif kind == "expired":
        out["cancelled"] = await cancel_order_for_session(db, psid)
    elif kind == "failed":
        log.warning("payment_failed", payment_ref=payment_ref)
    else:
        log.info("webhook_ignored", event_type=event.get("type"))

    await events.mark_event_seen(evt_id)
    return out


# ----------------------------
# MockPay (development provider)
# ----------------------------
if isinstance(adapter, MockPay):

    @app.get("/mockpay/{session_id}")
    async def mockpay_screen(
        session_id: str, db: AsyncSession = Depends(get_db)
    ):
        order = (await db.execute(
            select(Order).where(Order.payment_session_id == session_id)
        )).scalar_one_or_none()
        if order is None:
            raise HTTPException(404, "payment session not found")
        return {
            "session_id": session_id,
            "order_id": order.id,
            "status": order.status,
            "customer_email": order.customer_email,
            "amount": order.total_amount,
            "currency": order.currency,
            "pending": order.status == ORDER_PENDING,
            "webhook_url": config.MOCK_WEBHOOK_URL,
            "kinds": ["completed", "expired", "failed"],
        }

    @app.post("/mockpay/{session_id}/emit")
    async def mockpay_emit(
        session_id: str, payload: dict, db: AsyncSession = Depends(get_db)
    ):
        kind = payload.get("kind")
        if kind not in {"completed", "expired", "failed"}:
            raise HTTPException(400, detail="invalid kind")

        order = (await db.execute(
            select(Order.id).where(Order.payment_session_id == session_id)
        )).first()
        if order is None:
            raise HTTPException(404, "payment session not found")

        event = adapter.build_event(session_id, kind)
        body = json.dumps(event).encode()

        client_http: httpx.AsyncClient = app.state.http
        delivered = False
        try:
            resp = await client_http.post(
                config.MOCK_WEBHOOK_URL,
                content=body,
                headers={
                    "x-mockpay-signature": adapter.sign(body),
                    "content-type": "application/json",
                },
            )
            delivered = resp.status_code < 300
        except httpx.HTTPError as e:
            # the payer can press the button again
            logger.warning(
                "mockpay_delivery_failed",
                session_id=session_id, error=str(e),
            )
        return {
            "ok": True,
            "event_id": event["id"],
            "type": event["type"],
            "delivered": delivered,
        }
