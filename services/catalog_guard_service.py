"""
Product catalog guard.

Turns an order's line items into stock ledger entries when the order is paid,
and reverses them when it is not.

Handles:
- All-or-nothing reservation (every line is reserved, or none is)
- Idempotent retries: the order's net ledger position per product is read
  first and only the missing quantity is reserved
- Compensation for a checkout that never reached `paid` (reason "correction")
- Restocking a cancelled paid order (reason "returned")
"""

from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence
from uuid import UUID

from domain.errors import InsufficientStock, OrderLifecycleError, OutOfStock
from domain.order import Order
from domain.stock import AdjustmentReason, StockAdjustment, order_net_delta
from services.stock_ledger_service import StockLedger

logger = logging.getLogger(__name__)


def _reservation_key(order_id: UUID, product_id: UUID, attempt: int) -> str:
    return f"order:{order_id}:reserve:{product_id}:{attempt}"


def _release_key(order_id: UUID, product_id: UUID, attempt: int) -> str:
    return f"order:{order_id}:release:{product_id}:{attempt}"


def _cancel_key(order_id: UUID, product_id: UUID) -> str:
    return f"order:{order_id}:cancel:{product_id}"


def _count_entries(adjustments: Sequence[StockAdjustment], product_id: UUID, *, outgoing: bool) -> int:
    """Number of earlier reserve (outgoing) or release entries for one product."""

    return sum(
        1
        for a in adjustments
        if a.product_id == product_id and (a.quantity_delta < 0) == outgoing
    )


class ProductCatalogGuard:
    def __init__(self, ledger: StockLedger) -> None:
        self._ledger = ledger

    def held_quantities(self, order: Order) -> Dict[UUID, int]:
        """Units currently taken out of stock for this order, per product."""

        adjustments = self._ledger.adjustments_for_order(order.order_id)
        return {
            product_id: -order_net_delta(adjustments, order.order_id, product_id)
            for product_id in order.quantities_by_product
        }

    def reserve_for_order(self, order: Order, actor: str = "checkout") -> List[StockAdjustment]:
        """
        Take every line item of `order` out of stock.

        Line items for the same product are merged. On the first line that
        cannot be fulfilled, everything held for the order is put back and
        OutOfStock is raised for that product.

        Args:
            order: Order being paid
            actor: Who triggered the reservation (recorded on each entry)

        Returns:
            Adjustments recorded by this call (empty on an idempotent retry)

        Raises:
            OutOfStock: naming the first product that could not be reserved
            ProductNotFound: if a line item's product no longer exists
        """

        existing = self._ledger.adjustments_for_order(order.order_id)
        recorded: List[StockAdjustment] = []

        for product_id, quantity in order.quantities_by_product.items():
            held = -order_net_delta(existing, order.order_id, product_id)
            missing = quantity - held
            if missing <= 0:
                continue

            key = _reservation_key(
                order.order_id, product_id, _count_entries(existing, product_id, outgoing=True)
            )
            try:
                adjustment = self._ledger.record_adjustment(
                    product_id,
                    -missing,
                    AdjustmentReason.SALE,
                    f"Order {order.order_id}",
                    actor,
                    order_id=order.order_id,
                    idempotency_key=key,
                )
            except InsufficientStock as e:
                logger.warning(
                    "Order %s: cannot reserve %d of product %s (available %d); rolling back",
                    order.order_id,
                    missing,
                    product_id,
                    e.current_stock,
                )
                self.release_reservation(order, actor=actor)
                raise OutOfStock(product_id, missing, e.current_stock) from e
            except OrderLifecycleError:
                logger.warning("Order %s: reservation of product %s failed; rolling back", order.order_id, product_id)
                self.release_reservation(order, actor=actor)
                raise

            recorded.append(adjustment)

        if recorded:
            logger.info("Order %s: reserved stock for %d product(s)", order.order_id, len(recorded))
        return recorded

    def release_reservation(self, order: Order, actor: str = "checkout") -> List[StockAdjustment]:
        """
        Put back everything held for an order whose checkout did not complete.
        """

        return self._put_back(order, AdjustmentReason.CORRECTION, actor, cancelling=False)

    def restock_order(self, order: Order, actor: str = "system") -> List[StockAdjustment]:
        """
        Return a cancelled paid order's units to stock.
        """

        return self._put_back(order, AdjustmentReason.RETURNED, actor, cancelling=True)

    def _put_back(
        self, order: Order, reason: AdjustmentReason, actor: str, *, cancelling: bool
    ) -> List[StockAdjustment]:
        existing = self._ledger.adjustments_for_order(order.order_id)
        recorded: List[StockAdjustment] = []
        first_error: Optional[OrderLifecycleError] = None

        for product_id in order.quantities_by_product:
            held = -order_net_delta(existing, order.order_id, product_id)
            if held <= 0:
                continue

            if cancelling:
                key = _cancel_key(order.order_id, product_id)
                note = f"Order {order.order_id} cancelled"
            else:
                key = _release_key(
                    order.order_id, product_id, _count_entries(existing, product_id, outgoing=False)
                )
                note = f"Order {order.order_id} checkout not completed"

            try:
                recorded.append(
                    self._ledger.record_adjustment(
                        product_id, held, reason, note, actor, order_id=order.order_id, idempotency_key=key
                    )
                )
            except OrderLifecycleError as e:
                # Keep putting back the remaining products before surfacing the failure.
                logger.error(
                    "Order %s: could not return %d of product %s to stock: %s",
                    order.order_id,
                    held,
                    product_id,
                    e.message,
                )
                if first_error is None:
                    first_error = e

        if first_error is not None:
            raise first_error
        if recorded:
            logger.info("Order %s: returned %d product(s) to stock (%s)", order.order_id, len(recorded), reason.value)
        return recorded


__all__ = ["ProductCatalogGuard"]
