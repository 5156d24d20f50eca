"""
Refund processor.

Handles:
- Refund eligibility (order completed or cancelled, amount > 0)
- The cumulative bound: refunds for an order never exceed its total, even when
  two refunds race (the amount is held as a pending row before the gateway call)
- Calling the payment gateway and recording the refund only if it succeeded
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import List, Optional
from uuid import UUID, uuid4

from domain.errors import OrderNotFound, OrderNotRefundable, PaymentRefundFailed
from domain.events import RefundRecorded
from domain.order import Order
from domain.refund import Refund, RefundStatus, refunded_total, validate_refund
from domain.time import Clock, utc_now
from repositories.base import OrderRepository, RefundRepository
from services.concurrency import retry_on_conflict
from services.event_bus import EventBus
from services.payment_gateway import PaymentGateway, PaymentGatewayError
from services.settings import LifecycleSettings

logger = logging.getLogger(__name__)


class RefundProcessor:
    def __init__(
        self,
        orders: OrderRepository,
        refunds: RefundRepository,
        gateway: PaymentGateway,
        events: EventBus,
        settings: Optional[LifecycleSettings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._orders = orders
        self._refunds = refunds
        self._gateway = gateway
        self._events = events
        self._settings = settings or LifecycleSettings()
        self._clock = clock

    def refund(self, order_id: UUID, amount: Decimal, reason: str, actor: str) -> Refund:
        """
        Refund part or all of an order.

        Args:
            order_id: Order to refund
            amount: Amount to return to the customer
            reason: Free-text reason (kept on the refund record)
            actor: Staff member issuing the refund

        Returns:
            The recorded Refund, with the gateway's payment reference

        Raises:
            OrderNotFound: if the order does not exist
            OrderNotRefundable: if the order is not completed or cancelled, or
                was never paid
            RefundExceedsOrderTotal: if the refund would exceed the order total
            PaymentRefundFailed: if the gateway did not reverse the payment
            ValueError: if amount is not positive
        """

        order = self._get_order(order_id)
        amount = validate_refund(order, self._refunds.list_refunds(order_id), amount)
        if order.payment_reference is None:
            raise OrderNotRefundable(order.order_id, f"{order.status.value}, never paid")

        request = Refund(
            refund_id=uuid4(),
            order_id=order.order_id,
            amount=amount,
            reason=reason,
            actor=actor,
            created_at=self._clock(),
            status=RefundStatus.PENDING,
        )
        # The repository re-checks the bound while holding the order's lock.
        pending = retry_on_conflict(
            lambda: self._refunds.reserve_refund(request, order_total=order.total),
            description=f"refund reservation for order {order_id}",
        )

        try:
            result = self._gateway.refund(
                order_id=order.order_id,
                payment_reference=order.payment_reference,
                amount=amount,
                currency=self._settings.currency,
                idempotency_key=f"refund:{pending.refund_id}",
            )
        except PaymentGatewayError as e:
            logger.warning("Refund of %s for order %s failed at the gateway: %s", amount, order_id, e)
            self._refunds.discard_refund(pending.refund_id)
            raise PaymentRefundFailed(f"Refund for order {order_id} failed: {e}") from e

        try:
            refund = self._refunds.confirm_refund(pending.refund_id, result.reference)
        except Exception:
            logger.exception(
                "Refund %s for order %s succeeded at the gateway (reference %s) but was not recorded",
                pending.refund_id,
                order_id,
                result.reference,
            )
            raise

        total = self.refunded_total(order_id)
        logger.info("Refunded %s for order %s by %s (total refunded %s)", amount, order_id, actor, total)
        self._events.publish(
            RefundRecorded(
                refund_id=refund.refund_id,
                order_id=order_id,
                amount=refund.amount,
                refunded_total=total,
                occurred_at=refund.created_at,
            )
        )
        return refund

    def list_refunds(self, order_id: UUID) -> List[Refund]:
        self._get_order(order_id)
        return self._refunds.list_refunds(order_id)

    def refunded_total(self, order_id: UUID) -> Decimal:
        return refunded_total(self._refunds.list_refunds(order_id))

    def _get_order(self, order_id: UUID) -> Order:
        order = self._orders.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order


__all__ = ["RefundProcessor"]
