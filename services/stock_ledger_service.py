"""
Stock ledger service.

The append-only record of quantity changes per product. Current stock is the
fold of a product's adjustments; the cached `stock_quantity` on the product is
written in the same atomic step as each adjustment and can be reconciled with
`audit`.

Handles:
- Recording adjustments (rejecting any that would make stock negative)
- Retrying once on transient lock conflicts
- Emitting stock-changed and low-stock events after each successful write
- History, low-stock listing and bulk adjustments for the back office
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List, Optional, Sequence
from uuid import UUID, uuid4

from domain.errors import OrderLifecycleError, ProductNotFound
from domain.events import LowStockAlert, StockChanged
from domain.product import Product
from domain.stock import AdjustmentReason, StockAdjustment, fold_stock
from domain.time import Clock, utc_now
from repositories.base import StockRepository
from services.concurrency import retry_on_conflict
from services.event_bus import EventBus

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class StockAudit:
    """Reconciliation of a product's cached stock against its ledger."""

    product_id: UUID
    cached_stock: int
    ledger_stock: int
    adjustment_count: int

    @property
    def is_consistent(self) -> bool:
        return self.cached_stock == self.ledger_stock


@dataclass(frozen=True, slots=True)
class BulkAdjustmentItem:
    product_id: UUID
    delta: int
    reason: AdjustmentReason = AdjustmentReason.CORRECTION
    note: str = ""


@dataclass(frozen=True, slots=True)
class BulkAdjustmentResult:
    """
    Outcome for one item of a bulk adjustment.

    success: True if the adjustment was recorded
    adjustment: the recorded adjustment (None on failure)
    error_code / error_message: populated on failure
    """

    product_id: UUID
    success: bool
    adjustment: Optional[StockAdjustment] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None


class StockLedger:
    def __init__(self, repository: StockRepository, events: EventBus, clock: Clock = utc_now) -> None:
        self._repository = repository
        self._events = events
        self._clock = clock

    def record_adjustment(
        self,
        product_id: UUID,
        delta: int,
        reason: AdjustmentReason,
        note: str = "",
        actor: str = "system",
        *,
        order_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
    ) -> StockAdjustment:
        """
        Append one adjustment to a product's ledger.

        Raises:
            InsufficientStock: if the adjustment would make stock negative.
            ProductNotFound: if the product does not exist.
            ValueError: if delta is zero.
        """

        if delta == 0:
            raise ValueError("delta must be non-zero")

        created_at = self._clock()
        adjustment_id = uuid4()

        def apply() -> tuple[StockAdjustment, Product]:
            return self._repository.apply_adjustment(
                product_id=product_id,
                delta=delta,
                reason=reason,
                note=note,
                actor=actor,
                created_at=created_at,
                order_id=order_id,
                idempotency_key=idempotency_key,
                adjustment_id=adjustment_id,
            )

        adjustment, product = retry_on_conflict(apply, description=f"stock adjustment for {product_id}")

        if adjustment.adjustment_id != adjustment_id:
            # Idempotent replay of an earlier write; nothing new happened.
            logger.debug("Stock adjustment %s already recorded (key=%s)", adjustment.adjustment_id, idempotency_key)
            return adjustment

        logger.info(
            "Stock for %s changed %+d (%s): %d -> %d",
            product_id,
            delta,
            reason.value,
            adjustment.previous_quantity,
            adjustment.new_quantity,
        )
        self._publish(product, adjustment)
        return adjustment

    def product(self, product_id: UUID) -> Product:
        product = self._repository.get_product(product_id)
        if product is None:
            raise ProductNotFound(product_id)
        return product

    def current_stock(self, product_id: UUID) -> int:
        """Stock derived from the ledger (not from the cached column)."""

        self.product(product_id)
        return fold_stock(self._repository.list_adjustments(product_id=product_id))

    def history(self, product_id: Optional[UUID] = None, limit: int = 200) -> List[StockAdjustment]:
        """Most recent adjustments first."""

        adjustments = self._repository.list_adjustments(product_id=product_id, limit=limit)
        return list(reversed(adjustments))

    def adjustments_for_order(self, order_id: UUID) -> List[StockAdjustment]:
        return self._repository.list_adjustments(order_id=order_id)

    def low_stock_products(self) -> List[Product]:
        return self._repository.list_low_stock()

    def audit(self, product_id: UUID) -> StockAudit:
        product = self.product(product_id)
        adjustments = self._repository.list_adjustments(product_id=product_id)
        audit = StockAudit(
            product_id=product_id,
            cached_stock=product.stock_quantity,
            ledger_stock=fold_stock(adjustments),
            adjustment_count=len(adjustments),
        )
        if not audit.is_consistent:
            logger.error(
                "Stock drift for %s: cached=%d ledger=%d", product_id, audit.cached_stock, audit.ledger_stock
            )
        return audit

    def bulk_adjust(self, items: Sequence[BulkAdjustmentItem], actor: str = "system") -> List[BulkAdjustmentResult]:
        """
        Apply independent adjustments; one failing item does not affect the others.
        """

        results: List[BulkAdjustmentResult] = []
        for item in items:
            try:
                adjustment = self.record_adjustment(item.product_id, item.delta, item.reason, item.note, actor)
            except OrderLifecycleError as e:
                logger.warning("Bulk adjustment for %s rejected: %s", item.product_id, e.message)
                results.append(
                    BulkAdjustmentResult(
                        product_id=item.product_id, success=False, error_code=e.code, error_message=e.message
                    )
                )
            except ValueError as e:
                results.append(
                    BulkAdjustmentResult(
                        product_id=item.product_id, success=False, error_code="invalid_adjustment", error_message=str(e)
                    )
                )
            else:
                results.append(BulkAdjustmentResult(product_id=item.product_id, success=True, adjustment=adjustment))
        return results

    def _publish(self, product: Product, adjustment: StockAdjustment) -> None:
        occurred_at: datetime = adjustment.created_at
        self._events.publish(
            StockChanged(
                product_id=product.product_id,
                product_name=product.name,
                previous_stock=adjustment.previous_quantity,
                stock_quantity=adjustment.new_quantity,
                adjustment=adjustment.quantity_delta,
                reason=adjustment.reason.value,
                occurred_at=occurred_at,
            )
        )
        if adjustment.new_quantity <= product.low_stock_threshold:
            logger.warning(
                "Low stock for %s (%s): %d left, threshold %d",
                product.product_id,
                product.name,
                adjustment.new_quantity,
                product.low_stock_threshold,
            )
            self._events.publish(
                LowStockAlert(
                    product_id=product.product_id,
                    product_name=product.name,
                    stock_quantity=adjustment.new_quantity,
                    low_stock_threshold=product.low_stock_threshold,
                    occurred_at=occurred_at,
                )
            )


__all__ = [
    "StockLedger",
    "StockAudit",
    "BulkAdjustmentItem",
    "BulkAdjustmentResult",
]
