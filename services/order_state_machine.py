"""
Order state machine.

The single authority for order status changes. Every transition is validated
against domain.order.ALLOWED_TRANSITIONS and persisted with a version check;
side effects run only for the edges that have them:

    pending -> paid        reserve stock, redeem discount, capture payment
    pending -> cancelled   none
    paid    -> cancelled   restock every line ("returned"); the discount is
                           released only when release_discount_on_cancel is set
    paid -> preparing -> shipped -> completed
                           none (a tracking number may be attached on ship)

A version conflict reloads the order and retries the transition once.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional
from uuid import UUID

from domain.errors import (
    ConcurrencyConflict,
    IllegalTransition,
    OrderLifecycleError,
    OrderNotFound,
    PaymentCaptureFailed,
)
from domain.events import OrderStatusChanged
from domain.order import Order, OrderStatus
from domain.time import Clock, utc_now
from repositories.base import OrderRepository
from services.catalog_guard_service import ProductCatalogGuard
from services.discount_service import DiscountEngine
from services.event_bus import EventBus
from services.payment_gateway import PaymentGateway, PaymentGatewayError
from services.settings import LifecycleSettings

logger = logging.getLogger(__name__)


class OrderStateMachine:
    def __init__(
        self,
        orders: OrderRepository,
        guard: ProductCatalogGuard,
        discounts: DiscountEngine,
        gateway: PaymentGateway,
        events: EventBus,
        settings: Optional[LifecycleSettings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._orders = orders
        self._guard = guard
        self._discounts = discounts
        self._gateway = gateway
        self._events = events
        self._settings = settings or LifecycleSettings()
        self._clock = clock

    def get(self, order_id: UUID) -> Order:
        order = self._orders.get_order(order_id)
        if order is None:
            raise OrderNotFound(order_id)
        return order

    # ------------------------------------------------------------------
    # pending -> paid
    # ------------------------------------------------------------------

    def confirm_payment(self, order_id: UUID, actor: str = "checkout") -> Order:
        """
        Reserve stock, redeem the discount, capture payment and mark the order paid.

        Safe to retry: stock reservation, discount redemption and the payment
        capture are all keyed on the order id. A confirmation of an order that
        is already paid returns it unchanged.

        Raises:
            OutOfStock: a line item could not be reserved (nothing is held)
            DiscountExhausted / DiscountNotFound: the code ran out of uses or
                was deleted since checkout (stock is released)
            PaymentCaptureFailed: the gateway declined or failed (stock and
                discount are released; the order stays pending). If another
                confirmation paid the order meanwhile, that order is returned
                and nothing is released.
            IllegalTransition: the order is neither pending nor paid
        """

        order = self.get(order_id)
        if order.status is OrderStatus.PAID:
            return order
        if order.status is not OrderStatus.PENDING:
            raise IllegalTransition(order.order_id, order.status.value, OrderStatus.PAID.value)

        self._guard.reserve_for_order(order, actor=actor)

        if order.discount_id is not None:
            try:
                self._discounts.redeem(order.discount_id, order.order_id)
            except OrderLifecycleError:
                logger.warning("Order %s: discount %s could not be redeemed", order.order_id, order.discount_code)
                self._guard.release_reservation(order, actor=actor)
                raise

        try:
            payment = self._gateway.capture(
                order_id=order.order_id,
                amount=order.total,
                currency=self._settings.currency,
                idempotency_key=str(order.order_id),
            )
        except PaymentGatewayError as e:
            # A retry of this checkout may have captured and paid while this
            # attempt was in flight; the holds now belong to the paid order.
            current = self.get(order.order_id)
            if current.status is OrderStatus.PAID:
                logger.warning(
                    "Order %s: capture attempt failed (%s) but the order is already paid as %s",
                    order.order_id,
                    e,
                    current.payment_reference,
                )
                return current
            logger.warning("Order %s: payment capture failed: %s", order.order_id, e)
            self._release_checkout(order, actor)
            raise PaymentCaptureFailed(f"Payment capture failed for order {order.order_id}: {e}") from e

        try:
            return self._transition(order, OrderStatus.PAID, payment_reference=payment.reference)
        except IllegalTransition as e:
            # Someone else moved the order while payment was in flight.
            current = self.get(order.order_id)
            if current.status is OrderStatus.PAID:
                return current
            logger.error(
                "Order %s became %s during payment; payment %s needs manual reversal",
                order.order_id,
                current.status.value,
                payment.reference,
            )
            if e.from_status == OrderStatus.CANCELLED.value:
                self._release_checkout(order, actor)
            raise

    def _release_checkout(self, order: Order, actor: str) -> None:
        if order.discount_id is not None:
            self._discounts.release(order.discount_id, order.order_id)
        self._guard.release_reservation(order, actor=actor)

    # ------------------------------------------------------------------
    # Staff transitions and cancellation
    # ------------------------------------------------------------------

    def advance(
        self,
        order_id: UUID,
        next_status: OrderStatus,
        *,
        tracking_number: Optional[str] = None,
        actor: str = "staff",
    ) -> Order:
        """
        Move an order one step along the fulfilment path.

        `paid` goes through confirm_payment and `cancelled` through cancel so
        their side effects always run.

        Raises:
            IllegalTransition: if the edge is not allowed from the current status
            ValueError: if a tracking number is given for a status other than shipped
        """

        if tracking_number is not None and next_status is not OrderStatus.SHIPPED:
            raise ValueError("tracking_number can only be attached when shipping an order")
        if next_status is OrderStatus.PAID:
            return self.confirm_payment(order_id, actor=actor)
        if next_status is OrderStatus.CANCELLED:
            return self.cancel(order_id, actor=actor)

        order = self.get(order_id)
        return self._transition(order, next_status, tracking_number=tracking_number)

    def cancel(self, order_id: UUID, actor: str = "system") -> Order:
        """
        Cancel a pending or paid order.

        A paid order's units are returned to stock after the status change is
        persisted. Restocking is keyed on the order, so it never runs twice.

        Raises:
            IllegalTransition: if the order is preparing, shipped or terminal
        """

        cancelled = self._transition(self.get(order_id), OrderStatus.CANCELLED)

        if cancelled.paid_at is not None:
            self._guard.restock_order(cancelled, actor=actor)
            if self._settings.release_discount_on_cancel and cancelled.discount_id is not None:
                self._discounts.release(cancelled.discount_id, cancelled.order_id)
        return cancelled

    def is_return_eligible(self, order_id: UUID, at: Optional[datetime] = None) -> bool:
        order = self.get(order_id)
        return order.is_return_eligible(at or self._clock(), self._settings.return_window_days)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def _transition(
        self,
        order: Order,
        to_status: OrderStatus,
        *,
        tracking_number: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> Order:
        def attempt(current: Order) -> Order:
            updated = current.transition_to(
                to_status,
                self._clock(),
                tracking_number=tracking_number,
                payment_reference=payment_reference,
            )
            self._orders.update_order(updated, expected_version=current.version)
            return updated

        try:
            updated = attempt(order)
        except ConcurrencyConflict:
            logger.info("Order %s changed concurrently; reloading before retrying %s", order.order_id, to_status.value)
            order = self.get(order.order_id)
            updated = attempt(order)

        logger.info("Order %s: %s -> %s", order.order_id, order.status.value, updated.status.value)
        self._events.publish(
            OrderStatusChanged(
                order_id=updated.order_id,
                user_id=updated.user_id,
                from_status=order.status.value,
                to_status=updated.status.value,
                occurred_at=updated.updated_at or self._clock(),
            )
        )
        return updated


__all__ = ["OrderStateMachine"]
