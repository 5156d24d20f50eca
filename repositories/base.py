"""
Persistence interface for the order lifecycle core.

Services depend only on these protocols. Two implementations exist:
- the Supabase adapters (`*_repository.py`), which delegate every atomic
  operation to a PostgreSQL function (see db/migrations/), and
- `repositories.memory.InMemoryStore`, used by tests and local runs.

Contract shared by both implementations:
- `apply_adjustment` performs "read current stock, validate non-negative,
  append adjustment, update cached stock" as one serialized step per product.
- `redeem` increments used_count only if the cap allows it, in one step per
  discount, and at most once per order.
- `update_order` succeeds only if the stored version equals `expected_version`.
- `reserve_refund` checks the cumulative bound and inserts in one step per order.
- A transient lock conflict is reported as ConcurrencyConflict.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Protocol, Tuple
from uuid import UUID

from domain.discount import Discount, DiscountRedemption
from domain.order import Order
from domain.product import Product
from domain.refund import Refund
from domain.stock import AdjustmentReason, StockAdjustment


class ProductRepository(Protocol):
    def get_product(self, product_id: UUID) -> Optional[Product]: ...

    def list_products(self) -> List[Product]: ...

    def list_low_stock(self) -> List[Product]: ...


class StockRepository(ProductRepository, Protocol):
    def apply_adjustment(
        self,
        *,
        product_id: UUID,
        delta: int,
        reason: AdjustmentReason,
        note: str,
        actor: str,
        created_at: datetime,
        order_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
        adjustment_id: Optional[UUID] = None,
    ) -> Tuple[StockAdjustment, Product]:
        """
        Atomically append an adjustment and return it with the updated product.

        A repeated idempotency_key returns the stored adjustment unchanged, so
        callers can tell a replay by comparing `adjustment_id`.

        Raises:
            ProductNotFound, InsufficientStock, ConcurrencyConflict
        """
        ...

    def list_adjustments(
        self,
        *,
        product_id: Optional[UUID] = None,
        order_id: Optional[UUID] = None,
        limit: Optional[int] = None,
    ) -> List[StockAdjustment]:
        """Adjustments oldest first; `limit` keeps the most recent ones."""
        ...


class OrderRepository(Protocol):
    def insert_order(self, order: Order) -> None: ...

    def get_order(self, order_id: UUID) -> Optional[Order]: ...

    def update_order(self, order: Order, *, expected_version: int) -> None:
        """
        Raises:
            OrderNotFound, ConcurrencyConflict
        """
        ...


class DiscountRepository(Protocol):
    def insert_discount(self, discount: Discount) -> None:
        """Raises ValueError if the code already exists."""
        ...

    def get_discount(self, discount_id: UUID) -> Optional[Discount]: ...

    def get_discount_by_code(self, code: str) -> Optional[Discount]: ...

    def list_discounts(self) -> List[Discount]: ...

    def delete_discount(self, discount_id: UUID) -> bool: ...

    def redeem(self, discount_id: UUID, order_id: UUID, redeemed_at: datetime) -> Discount:
        """
        Consume one use for `order_id`. Idempotent per order.

        Raises:
            DiscountNotFound, DiscountExhausted, ConcurrencyConflict
        """
        ...

    def release(self, discount_id: UUID, order_id: UUID) -> bool:
        """Undo the redemption made for `order_id`; False if there was none."""
        ...

    def get_redemption(self, order_id: UUID) -> Optional[DiscountRedemption]: ...


class RefundRepository(Protocol):
    def reserve_refund(self, refund: Refund, *, order_total: Decimal) -> Refund:
        """
        Insert a pending refund if the cumulative bound allows it.

        Raises:
            RefundExceedsOrderTotal, ConcurrencyConflict
        """
        ...

    def confirm_refund(self, refund_id: UUID, payment_reference: str) -> Refund: ...

    def discard_refund(self, refund_id: UUID) -> None: ...

    def list_refunds(self, order_id: UUID) -> List[Refund]:
        """Succeeded refunds only, oldest first."""
        ...


__all__ = [
    "ProductRepository",
    "StockRepository",
    "OrderRepository",
    "DiscountRepository",
    "RefundRepository",
]
