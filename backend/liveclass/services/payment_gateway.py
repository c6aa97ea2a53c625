from __future__ import annotations

import hashlib
import hmac
import logging
from typing import Any, Mapping, Protocol

import razorpay
from razorpay.errors import BadRequestError, GatewayError, ServerError
from starlette.concurrency import run_in_threadpool

from .errors import ConfigurationError, PaymentGatewayError, ValidationError

logger = logging.getLogger(__name__)


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    message = f"{order_id}|{payment_id}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> bool:
    """
    Check a payment callback's HMAC-SHA256 signature over ``order_id|payment_id``.

    Never raises: empty inputs, non-ASCII signatures and mismatches all return False.
    """
    if not order_id or not payment_id or not signature or not secret:
        return False
    try:
        supplied = signature.encode("ascii")
    except UnicodeEncodeError:
        return False
    expected = compute_signature(order_id, payment_id, secret).encode("ascii")
    return hmac.compare_digest(expected, supplied)


class PaymentGateway(Protocol):
    key_id: str | None

    async def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, Any],
    ) -> dict[str, Any]: ...

    async def fetch_order(self, order_id: str) -> dict[str, Any]: ...

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool: ...


class RazorpayGateway:
    """Razorpay orders API plus callback verification with the account's key secret."""

    def __init__(self, key_id: str | None, key_secret: str | None) -> None:
        self.key_id = key_id
        self._key_secret = key_secret
        self._client: razorpay.Client | None = None

    def __repr__(self) -> str:
        return f"RazorpayGateway(key_id={self.key_id!r})"

    def _get_client(self) -> razorpay.Client:
        if not self.key_id or not self._key_secret:
            raise ConfigurationError("Razorpay credentials are missing")
        if self._client is None:
            self._client = razorpay.Client(auth=(self.key_id, self._key_secret))
        return self._client

    async def create_order(
        self,
        *,
        amount_minor: int,
        currency: str,
        receipt: str,
        notes: Mapping[str, Any],
    ) -> dict[str, Any]:
        client = self._get_client()
        data = {
            "amount": amount_minor,
            "currency": currency,
            "receipt": receipt,
            "notes": {key: "" if value is None else str(value) for key, value in notes.items()},
        }

        def _create() -> dict[str, Any]:
            return client.order.create(data=data)

        try:
            order = await run_in_threadpool(_create)
        except BadRequestError as exc:
            logger.warning("Razorpay rejected order receipt=%s: %s", receipt, exc)
            raise PaymentGatewayError("Payment provider rejected the order") from exc
        except (ServerError, GatewayError, OSError) as exc:
            logger.warning("Razorpay order request failed receipt=%s: %s", receipt, exc)
            raise PaymentGatewayError("Payment provider unavailable") from exc

        if not isinstance(order, dict) or not order.get("id"):
            raise PaymentGatewayError("Payment provider returned no order id")
        logger.info(
            "Created payment order",
            extra={"order_id": order["id"], "receipt": receipt, "amount_minor": amount_minor},
        )
        return order

    async def fetch_order(self, order_id: str) -> dict[str, Any]:
        """Read an order back from Razorpay; its notes and amount bind a payment to what it paid for."""
        client = self._get_client()

        def _fetch() -> dict[str, Any]:
            return client.order.fetch(order_id)

        try:
            order = await run_in_threadpool(_fetch)
        except BadRequestError as exc:
            logger.warning("Razorpay could not find order %s: %s", order_id, exc)
            raise ValidationError("Unknown payment order") from exc
        except (ServerError, GatewayError, OSError) as exc:
            logger.warning("Razorpay order lookup failed order_id=%s: %s", order_id, exc)
            raise PaymentGatewayError("Payment provider unavailable") from exc

        if not isinstance(order, dict) or order.get("id") != order_id:
            raise PaymentGatewayError("Payment provider returned a different order")
        return order

    def verify(self, order_id: str, payment_id: str, signature: str) -> bool:
        if not self._key_secret:
            raise ConfigurationError("Razorpay credentials are missing")
        return verify_signature(order_id, payment_id, signature, self._key_secret)


__all__ = [
    "PaymentGateway",
    "RazorpayGateway",
    "compute_signature",
    "verify_signature",
]
