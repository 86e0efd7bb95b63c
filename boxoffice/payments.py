from abc import ABC, abstractmethod
from typing import List, Optional, Tuple, TypedDict
import base64
import hashlib
import hmac
import json
import uuid

import stripe
import structlog
from starlette.concurrency import run_in_threadpool

from . import config
from .helpers import now_ts

logger = structlog.get_logger(__name__)


class PaymentProviderError(Exception):
    """The provider refused or failed to create a checkout session."""


class WebhookVerificationError(Exception):
    """Signature mismatch or unparsable webhook body."""


# provider event types, Stripe naming
EVT_COMPLETED = "checkout.session.completed"
EVT_EXPIRED = "checkout.session.expired"
EVT_FAILED = "payment_intent.payment_failed"

_KINDS = {
    EVT_COMPLETED: "completed",
    EVT_EXPIRED: "expired",
    EVT_FAILED: "failed",
}


# ----------------------------
# Payment Adapter Interface
# ----------------------------
class CreateSessionResult(TypedDict):
    payment_session_id: str
    redirect_url: str


class LineItem(TypedDict):
    name: str
    unit_amount: int
    quantity: int


class PaymentAdapter(ABC):
    name: str = ""

    @abstractmethod
    async def create_session(
        self, *, line_items: List[LineItem], currency: str,
        customer_email: str, metadata: dict
    ) -> CreateSessionResult: ...

    @abstractmethod
    def verify_webhook(self, payload: bytes, headers: dict) -> dict: ...

    # "completed" | "expired" | "failed" | raw type for anything else
    def event_kind(self, event: dict) -> str:
        evt_type = event.get("type") or ""
        return _KINDS.get(evt_type, evt_type)

    # (payment_session_id, payment_ref, event_id)
    def event_ids(
        self, event: dict
    ) -> Tuple[str, Optional[str], Optional[str]]:
        obj = (event.get("data") or {}).get("object") or {}
        if (event.get("type") or "").startswith("checkout.session."):
            psid = obj.get("id") or ""
            payment_ref = obj.get("payment_intent")
        else:
            psid = (obj.get("metadata") or {}).get("session_id") or ""
            payment_ref = obj.get("id")
        return psid, payment_ref, event.get("id")


def _event_object(event) -> dict:
    # signed but not an event envelope
    if not isinstance(event, dict):
        raise WebhookVerificationError("Invalid JSON")
    return event


# ----------------------------
# MockPay implementation
# ----------------------------
def mock_signature(payload: bytes, secret: str | None = None) -> str:
    key = (secret or config.MOCK_SECRET).encode()
    mac = hmac.new(key, payload, hashlib.sha256).digest()
    return base64.b64encode(mac).decode()


class MockPay(PaymentAdapter):
    name = "mock"

    def __init__(self, secret: str | None = None) -> None:
        self.secret = secret or config.MOCK_SECRET

    async def create_session(
        self, *, line_items: List[LineItem], currency: str,
        customer_email: str, metadata: dict
    ) -> CreateSessionResult:
        psid = f"mock_cs_{uuid.uuid4().hex}"
        return {
            "payment_session_id": psid,
            "redirect_url": f"/mockpay/{psid}",
        }

    def build_event(self, psid: str, kind: str) -> dict:
        payment_ref = f"mock_pi_{uuid.uuid4().hex}"
        if kind == "failed":
            evt_type = EVT_FAILED
            obj = {
                "object": "payment_intent",
                "id": payment_ref,
                "metadata": {"session_id": psid},
            }
        else:
            evt_type = EVT_COMPLETED if kind == "completed" else EVT_EXPIRED
            obj = {
                "object": "checkout.session",
                "id": psid,
                "payment_intent": payment_ref if kind == "completed" else None,
            }
        return {
            "id": f"evt_{uuid.uuid4().hex}",
            "type": evt_type,
            "created": int(now_ts()),
            "data": {"object": obj},
        }

    def sign(self, payload: bytes) -> str:
        return mock_signature(payload, self.secret)

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("x-mockpay-signature")
        expected = self.sign(payload)
        if not sig or not hmac.compare_digest(expected, sig):
            raise WebhookVerificationError("Invalid signature")
        try:
            return _event_object(json.loads(payload.decode()))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise WebhookVerificationError("Invalid JSON")


# ----------------------------
# Stripe Checkout implementation
# ----------------------------
class StripeCheckout(PaymentAdapter):
    name = "stripe"

    def __init__(self, api_key: str | None = None,
                 webhook_secret: str | None = None,
                 frontend_url: str | None = None) -> None:
        self.api_key = api_key or config.STRIPE_API_KEY
        self.webhook_secret = webhook_secret or config.STRIPE_WEBHOOK_SECRET
        self.frontend_url = (frontend_url or config.FRONTEND_URL).rstrip("/")

    async def create_session(
        self, *, line_items: List[LineItem], currency: str,
        customer_email: str, metadata: dict
    ) -> CreateSessionResult:
        params = dict(
            mode="payment",
            line_items=[
                {
                    "quantity": item["quantity"],
                    "price_data": {
                        "currency": currency,
                        "unit_amount": item["unit_amount"],
                        "product_data": {"name": item["name"]},
                    },
                }
                for item in line_items
            ],
            customer_email=customer_email,
            metadata={k: str(v) for k, v in metadata.items()},
            success_url=(
                f"{self.frontend_url}/ticket/success"
                "?session_id={CHECKOUT_SESSION_ID}"
            ),
            cancel_url=f"{self.frontend_url}/ticket/cancel",
        )
        try:
            # the stripe client is blocking
            session = await run_in_threadpool(
                stripe.checkout.Session.create, api_key=self.api_key,
                **params
            )
        except stripe.StripeError as e:
            logger.error(
                "stripe_checkout_session_failed",
                error=str(e), error_type=type(e).__name__,
            )
            raise PaymentProviderError(str(e)) from e

        logger.info("stripe_checkout_session_created", session_id=session.id)
        return {"payment_session_id": session.id, "redirect_url": session.url}

    def verify_webhook(self, payload: bytes, headers: dict) -> dict:
        sig = headers.get("stripe-signature")
        if not sig:
            raise WebhookVerificationError("Missing Stripe-Signature header")
        try:
            body = payload.decode("utf-8")
            stripe.WebhookSignature.verify_header(
                body, sig, self.webhook_secret, tolerance=300
            )
            return _event_object(json.loads(body))
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(
                f"Invalid signature: {e.user_message or e}"
            ) from e
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise WebhookVerificationError("Invalid JSON")


def get_adapter(provider: str | None = None) -> PaymentAdapter:
    provider = (provider or config.PAYMENT_PROVIDER).lower()
    if provider == "stripe":
        return StripeCheckout()
    if provider == "mock":
        return MockPay()
    raise RuntimeError(f"unknown PAYMENT_PROVIDER: {provider}")
