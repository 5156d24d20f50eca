"""
In-memory store implementing every repository protocol.

Used by the test suite and for local runs without Supabase. It gives the same
serialization guarantees as the PostgreSQL functions:
- one lock per product id around read-validate-append of stock,
- one lock per discount id around the guarded used_count increment,
- one lock per order id around version-checked updates and refund reservation.

Entities are frozen dataclasses, so stored values are never mutated; every
write replaces the stored object.
"""

from __future__ import annotations

import threading
from collections import defaultdict
from datetime import datetime
from decimal import Decimal
from typing import DefaultDict, Dict, Hashable, List, Optional, Tuple
from uuid import UUID

from domain.discount import Discount, DiscountRedemption, normalize_code
from domain.errors import (
    ConcurrencyConflict,
    DiscountNotFound,
    OrderNotFound,
    ProductNotFound,
    RefundExceedsOrderTotal,
)
from domain.order import Order
from domain.product import Product
from domain.refund import Refund, RefundStatus
from domain.stock import AdjustmentReason, StockAdjustment, StockLedger
from domain.time import require_utc_timestamp


class _KeyedLocks:
    """A lock per key, created on first use."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, threading.Lock] = {}

    def __call__(self, key: Hashable) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = threading.Lock()
                self._locks[key] = lock
            return lock


class InMemoryStore:
    """Thread-safe in-memory persistence for products, orders, discounts and refunds."""

    def __init__(self) -> None:
        self._products: Dict[UUID, Product] = {}
        self._ledgers: Dict[UUID, StockLedger] = {}
        self._adjustment_keys: Dict[str, StockAdjustment] = {}
        self._orders: Dict[UUID, Order] = {}
        self._discounts: Dict[UUID, Discount] = {}
        self._redemptions: Dict[UUID, DiscountRedemption] = {}
        self._refunds: DefaultDict[UUID, List[Refund]] = defaultdict(list)

        self._product_locks = _KeyedLocks()
        self._discount_locks = _KeyedLocks()
        self._order_locks = _KeyedLocks()
        self._catalog_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Products and stock
    # ------------------------------------------------------------------

    def add_product(self, product: Product, *, actor: str = "catalog", created_at: Optional[datetime] = None) -> Product:
        """
        Register a catalog product.

        A non-zero opening stock is recorded as a restock adjustment so the
        cached stock always equals the fold of the ledger.
        """

        opened_at = created_at or product.updated_at
        if product.stock_quantity > 0 and opened_at is None:
            raise ValueError("created_at is required to record an opening stock balance")

        with self._catalog_lock:
            if product.product_id in self._products:
                raise ValueError(f"Product already exists: {product.product_id}")
            ledger = StockLedger.empty(product.product_id)
            stored = product
            if product.stock_quantity > 0:
                ledger, _ = ledger.apply(
                    delta=product.stock_quantity,
                    reason=AdjustmentReason.RESTOCK,
                    note="Opening balance",
                    actor=actor,
                    created_at=opened_at,
                )
                stored = product.with_stock(ledger.current_stock, opened_at)
            self._products[product.product_id] = stored
            self._ledgers[product.product_id] = ledger
            return stored

    def get_product(self, product_id: UUID) -> Optional[Product]:
        return self._products.get(product_id)

    def list_products(self) -> List[Product]:
        return sorted(self._products.values(), key=lambda p: (p.stock_quantity, p.name))

    def list_low_stock(self) -> List[Product]:
        return [p for p in self.list_products() if p.is_low_stock]

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
        require_utc_timestamp("created_at", created_at)

        with self._product_locks(product_id):
            product = self._products.get(product_id)
            if product is None:
                raise ProductNotFound(product_id)

            if idempotency_key is not None and idempotency_key in self._adjustment_keys:
                return self._adjustment_keys[idempotency_key], product

            ledger = self._ledgers[product_id]
            # Raises InsufficientStock and leaves the stored ledger untouched.
            new_ledger, adjustment = ledger.apply(
                delta=delta,
                reason=reason,
                note=note,
                actor=actor,
                created_at=created_at,
                order_id=order_id,
                idempotency_key=idempotency_key,
                adjustment_id=adjustment_id,
            )
            updated = product.with_stock(new_ledger.current_stock, created_at)

            self._ledgers[product_id] = new_ledger
            self._products[product_id] = updated
            if idempotency_key is not None:
                self._adjustment_keys[idempotency_key] = adjustment
            return adjustment, updated

    def list_adjustments(
        self,
        *,
        product_id: Optional[UUID] = None,
        order_id: Optional[UUID] = None,
        limit: Optional[int] = None,
    ) -> List[StockAdjustment]:
        if product_id is not None:
            ledger = self._ledgers.get(product_id)
            adjustments = list(ledger.adjustments) if ledger else []
        else:
            adjustments = [a for ledger in list(self._ledgers.values()) for a in ledger.adjustments]
            adjustments.sort(key=lambda a: a.created_at)

        if order_id is not None:
            adjustments = [a for a in adjustments if a.order_id == order_id]
        if limit is not None:
            adjustments = adjustments[-limit:] if limit > 0 else []
        return adjustments

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def insert_order(self, order: Order) -> None:
        with self._order_locks(order.order_id):
            if order.order_id in self._orders:
                raise ValueError(f"Order already exists: {order.order_id}")
            self._orders[order.order_id] = order

    def get_order(self, order_id: UUID) -> Optional[Order]:
        return self._orders.get(order_id)

    def update_order(self, order: Order, *, expected_version: int) -> None:
        with self._order_locks(order.order_id):
            stored = self._orders.get(order.order_id)
            if stored is None:
                raise OrderNotFound(order.order_id)
            if stored.version != expected_version:
                raise ConcurrencyConflict(
                    f"Order {order.order_id} was modified concurrently "
                    f"(expected version {expected_version}, found {stored.version})"
                )
            self._orders[order.order_id] = order

    # ------------------------------------------------------------------
    # Discounts
    # ------------------------------------------------------------------

    def insert_discount(self, discount: Discount) -> None:
        with self._catalog_lock:
            if any(d.code == discount.code for d in self._discounts.values()):
                raise ValueError(f"Discount code already exists: {discount.code}")
            self._discounts[discount.discount_id] = discount

    def get_discount(self, discount_id: UUID) -> Optional[Discount]:
        return self._discounts.get(discount_id)

    def get_discount_by_code(self, code: str) -> Optional[Discount]:
        wanted = normalize_code(code)
        for discount in self._discounts.values():
            if discount.code == wanted:
                return discount
        return None

    def list_discounts(self) -> List[Discount]:
        return sorted(self._discounts.values(), key=lambda d: d.code)

    def delete_discount(self, discount_id: UUID) -> bool:
        with self._catalog_lock:
            return self._discounts.pop(discount_id, None) is not None

    def redeem(self, discount_id: UUID, order_id: UUID, redeemed_at: datetime) -> Discount:
        with self._discount_locks(discount_id):
            discount = self._discounts.get(discount_id)
            if discount is None:
                raise DiscountNotFound(discount_id)

            existing = self._redemptions.get(order_id)
            if existing is not None and existing.discount_id == discount_id:
                return discount

            # Raises DiscountExhausted when the cap is reached.
            updated = discount.redeemed()
            self._discounts[discount_id] = updated
            self._redemptions[order_id] = DiscountRedemption(
                discount_id=discount_id, order_id=order_id, redeemed_at=redeemed_at
            )
            return updated

    def release(self, discount_id: UUID, order_id: UUID) -> bool:
        with self._discount_locks(discount_id):
            redemption = self._redemptions.get(order_id)
            if redemption is None or redemption.discount_id != discount_id:
                return False
            discount = self._discounts.get(discount_id)
            del self._redemptions[order_id]
            if discount is not None:
                self._discounts[discount_id] = discount.released()
            return True

    def get_redemption(self, order_id: UUID) -> Optional[DiscountRedemption]:
        return self._redemptions.get(order_id)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def reserve_refund(self, refund: Refund, *, order_total: Decimal) -> Refund:
        with self._order_locks(refund.order_id):
            held = sum((r.amount for r in self._refunds[refund.order_id]), Decimal("0.00"))
            if held + refund.amount > order_total:
                already = sum(
                    (r.amount for r in self._refunds[refund.order_id] if r.status is RefundStatus.SUCCEEDED),
                    Decimal("0.00"),
                )
                raise RefundExceedsOrderTotal(refund.order_id, refund.amount, already, order_total)
            pending = Refund(
                refund_id=refund.refund_id,
                order_id=refund.order_id,
                amount=refund.amount,
                reason=refund.reason,
                actor=refund.actor,
                created_at=refund.created_at,
                status=RefundStatus.PENDING,
            )
            self._refunds[refund.order_id].append(pending)
            return pending

    def confirm_refund(self, refund_id: UUID, payment_reference: str) -> Refund:
        order_id = self._order_for_refund(refund_id)
        with self._order_locks(order_id):
            refunds = self._refunds[order_id]
            index = self._index_of(refunds, refund_id)
            confirmed = refunds[index].succeeded(payment_reference)
            refunds[index] = confirmed
            return confirmed

    def discard_refund(self, refund_id: UUID) -> None:
        order_id = self._order_for_refund(refund_id)
        with self._order_locks(order_id):
            refunds = self._refunds[order_id]
            index = self._index_of(refunds, refund_id)
            if refunds[index].status is RefundStatus.SUCCEEDED:
                raise ValueError(f"Refund {refund_id} already succeeded and cannot be discarded")
            del refunds[index]

    def list_refunds(self, order_id: UUID) -> List[Refund]:
        return [r for r in self._refunds.get(order_id, []) if r.status is RefundStatus.SUCCEEDED]

    def _order_for_refund(self, refund_id: UUID) -> UUID:
        for order_id, refunds in list(self._refunds.items()):
            if any(r.refund_id == refund_id for r in list(refunds)):
                return order_id
        raise KeyError(f"Refund not found: {refund_id}")

    @staticmethod
    def _index_of(refunds: List[Refund], refund_id: UUID) -> int:
        for index, refund in enumerate(refunds):
            if refund.refund_id == refund_id:
                return index
        raise KeyError(f"Refund not found: {refund_id}")


__all__ = ["InMemoryStore"]
