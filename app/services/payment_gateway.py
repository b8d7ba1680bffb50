"""Payment provider charge interface.

The renewal engine charges a stored billing credential (an opaque token
issued by the provider at checkout) through the ``PaymentGateway``
protocol.  ``TossPaymentGateway`` talks to the real provider over HTTP;
tests pass their own object with the same ``charge`` signature.

A charge returns a ChargeResult in every non-programming-error case:
declines, timeouts and network errors are all *failed charges*, never
exceptions.  The engine decides what a failure means for the
subscription.  Calls are not retried in-process: the next daily pass is
the retry, and the Idempotency-Key header makes a duplicate call inside
the same day harmless on the provider's side.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

import httpx

from app.core.config import SETTINGS, Settings
from app.core.metrics import PAYMENT_CHARGE_DURATION
from app.services.billing_errors import PaymentConfigurationError

logger = logging.getLogger(__name__)

FAILURE_TIMEOUT = "TIMEOUT"
FAILURE_TRANSPORT = "TRANSPORT_ERROR"
FAILURE_DECLINED = "PAYMENT_DECLINED"


@dataclass(frozen=True, slots=True)
class ChargeResult:
    succeeded: bool
    provider_reference: str | None = None
    payment_method: str | None = None
    failure_reason: str | None = None

    @staticmethod
    def ok(provider_reference: str | None, payment_method: str | None = None) -> ChargeResult:
        return ChargeResult(True, provider_reference, payment_method)

    @staticmethod
    def failed(reason: str) -> ChargeResult:
        return ChargeResult(False, failure_reason=reason)


@runtime_checkable
class PaymentGateway(Protocol):
    async def charge(
        self,
        credential: str,
        amount: int,
        idempotency_reference: str,
        *,
        customer_key: str,
        order_name: str,
    ) -> ChargeResult:
        """Charge ``amount`` against a stored billing credential."""
        ...


class TossPaymentGateway:
    """Billing-key charges against the Toss Payments REST API."""

    def __init__(
        self,
        secret_key: str,
        *,
        base_url: str = "https://api.tosspayments.com",
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not secret_key:
            raise PaymentConfigurationError("payment provider secret key is not configured")
        token = base64.b64encode(f"{secret_key}:".encode()).decode()
        self._auth_header = f"Basic {token}"
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout_seconds
        self._transport = transport

    async def charge(
        self,
        credential: str,
        amount: int,
        idempotency_reference: str,
        *,
        customer_key: str,
        order_name: str,
    ) -> ChargeResult:
        started = time.perf_counter()
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    f"{self._base_url}/v1/billing/{credential}",
                    headers={
                        "Authorization": self._auth_header,
                        "Idempotency-Key": idempotency_reference,
                    },
                    json={
                        "customerKey": customer_key,
                        "amount": amount,
                        "orderId": idempotency_reference,
                        "orderName": order_name,
                    },
                )
        except httpx.TimeoutException:
            logger.warning("Payment provider timed out for order %s", idempotency_reference)
            return ChargeResult.failed(FAILURE_TIMEOUT)
        except httpx.RequestError as exc:
            logger.warning(
                "Payment provider unreachable for order %s: %s",
                idempotency_reference,
                exc,
            )
            return ChargeResult.failed(FAILURE_TRANSPORT)
        finally:
            PAYMENT_CHARGE_DURATION.observe(time.perf_counter() - started)

        if response.is_success:
            body = _json_or_empty(response)
            return ChargeResult.ok(body.get("paymentKey"), _method_summary(body))

        body = _json_or_empty(response)
        reason = body.get("message") or body.get("code") or FAILURE_DECLINED
        logger.info(
            "Payment provider declined order %s: %s %s",
            idempotency_reference,
            response.status_code,
            reason,
        )
        return ChargeResult.failed(str(reason))


def _json_or_empty(response: httpx.Response) -> dict:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _method_summary(body: dict) -> str:
    """'card *1234' style summary; the full card number is never stored."""
    method = body.get("method") or "card"
    number = (body.get("card") or {}).get("number") or ""
    last4 = number[-4:]
    return f"{method} *{last4}" if last4 else method


def build_gateway(settings: Settings = SETTINGS) -> TossPaymentGateway:
    """Gateway from settings; raises PaymentConfigurationError without a key."""
    return TossPaymentGateway(
        settings.payment_secret_key or "",
        base_url=settings.payment_api_base_url,
        timeout_seconds=settings.payment_timeout_seconds,
    )
