"""
Payment gateway capability.

The core treats payment capture and refund as an opaque external capability: it
calls it, waits for the result, and only then changes state. Protocol details
(card networks, intents, webhooks) live behind this interface.

`ManualPaymentGateway` covers cash-on-delivery, in-store and manually processed
payments: it succeeds immediately and hands back a reference such as
"MANUAL_CAPTURE_<order id>". Gateways must treat the idempotency key as the
deduplication key, so retrying a capture for the same order never charges twice.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Protocol, Tuple
from uuid import UUID


class PaymentGatewayError(Exception):
    """The gateway declined, failed, or timed out."""


@dataclass(frozen=True, slots=True)
class PaymentResult:
    reference: str
    amount: Decimal


class PaymentGateway(Protocol):
    def capture(self, *, order_id: UUID, amount: Decimal, currency: str, idempotency_key: str) -> PaymentResult:
        """Raises PaymentGatewayError on decline, failure or timeout."""
        ...

    def refund(
        self, *, order_id: UUID, payment_reference: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentResult:
        """Raises PaymentGatewayError if the reversal failed."""
        ...


class ManualPaymentGateway:
    """Records captures and refunds locally; used for POS/manual payments and tests."""

    def __init__(self) -> None:
        self._captures: Dict[str, PaymentResult] = {}
        self._refunds: Dict[str, PaymentResult] = {}

    def capture(self, *, order_id: UUID, amount: Decimal, currency: str, idempotency_key: str) -> PaymentResult:
        existing = self._captures.get(idempotency_key)
        if existing is not None:
            return existing
        result = PaymentResult(reference=f"MANUAL_CAPTURE_{order_id}", amount=amount)
        self._captures[idempotency_key] = result
        return result

    def refund(
        self, *, order_id: UUID, payment_reference: str, amount: Decimal, currency: str, idempotency_key: str
    ) -> PaymentResult:
        existing = self._refunds.get(idempotency_key)
        if existing is not None:
            return existing
        result = PaymentResult(reference=f"MANUAL_REFUND_{idempotency_key}", amount=amount)
        self._refunds[idempotency_key] = result
        return result

    @property
    def captures(self) -> Tuple[PaymentResult, ...]:
        return tuple(self._captures.values())

    @property
    def refunds(self) -> Tuple[PaymentResult, ...]:
        return tuple(self._refunds.values())


__all__ = ["PaymentGateway", "PaymentGatewayError", "PaymentResult", "ManualPaymentGateway"]
