"""
Domain: refunds against an order.

Rules implemented here:
- A refund is only allowed while the order is in a refundable state
  (completed or cancelled).
- amount > 0, and amount + everything already refunded <= order.total.

The money reversal itself happens in an external payment gateway; a Refund
record exists only for reversals that succeeded.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from .errors import OrderNotRefundable, RefundExceedsOrderTotal
from .money import sum_money, to_money
from .order import Order
from .time import require_utc_timestamp


class RefundStatus(str, Enum):
    # Held against the order's balance while the gateway call is in flight.
    PENDING = "pending"
    SUCCEEDED = "succeeded"


@dataclass(frozen=True, slots=True)
class Refund:
    refund_id: UUID
    order_id: UUID
    amount: Decimal
    reason: str
    actor: str
    created_at: datetime
    status: RefundStatus = RefundStatus.SUCCEEDED
    payment_reference: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.amount <= 0:
            raise ValueError("amount must be > 0")

    def succeeded(self, payment_reference: str) -> "Refund":
        return replace(self, status=RefundStatus.SUCCEEDED, payment_reference=payment_reference)


def refunded_total(refunds: Iterable[Refund]) -> Decimal:
    return sum_money(r.amount for r in refunds)


def validate_refund(order: Order, previous_refunds: Iterable[Refund], amount: Decimal) -> Decimal:
    """
    Check a refund request against the order and return the normalized amount.

    Raises:
        OrderNotRefundable: if the order is not completed or cancelled.
        RefundExceedsOrderTotal: if the cumulative refund would exceed order.total.
        ValueError: if amount is not positive.
    """

    if not order.is_refundable:
        raise OrderNotRefundable(order.order_id, order.status.value)

    amount = to_money(amount)
    if amount <= 0:
        raise ValueError("Refund amount must be > 0")

    already = refunded_total(previous_refunds)
    if already + amount > order.total:
        raise RefundExceedsOrderTotal(order.order_id, amount, already, order.total)
    return amount
