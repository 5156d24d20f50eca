"""
Domain: stock adjustments and the stock ledger.

Rules implemented here:
- A StockAdjustment is an immutable, signed quantity change for one product.
  Corrections are new adjustments, never edits.
- A product's stock is the fold (running sum) of its adjustments, in order.
- The running sum must never go below zero; an adjustment that would make it
  negative is rejected and the ledger is left unchanged.

This module contains only pure domain entities/value objects: no I/O, no locking.
Serialization of concurrent writers is the repository's job.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Iterable, Optional, Tuple
from uuid import UUID, uuid4

from .errors import InsufficientStock
from .time import require_utc_timestamp


class AdjustmentReason(str, Enum):
    RESTOCK = "restock"
    DAMAGED = "damaged"
    RETURNED = "returned"
    CORRECTION = "correction"
    SHRINKAGE = "shrinkage"
    TRANSFER = "transfer"
    EXPIRED = "expired"
    SALE = "sale"
    OTHER = "other"


@dataclass(frozen=True, slots=True)
class StockAdjustment:
    """
    Immutable record of a single stock change.

    previous_quantity / new_quantity are audit columns captured at write time;
    they must agree with the fold of all earlier adjustments.
    """

    adjustment_id: UUID
    product_id: UUID
    quantity_delta: int
    reason: AdjustmentReason
    note: str
    actor: str
    created_at: datetime
    previous_quantity: int
    new_quantity: int
    order_id: Optional[UUID] = None
    idempotency_key: Optional[str] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        if self.quantity_delta == 0:
            raise ValueError("quantity_delta must be non-zero")
        if self.previous_quantity + self.quantity_delta != self.new_quantity:
            raise ValueError("new_quantity must equal previous_quantity + quantity_delta")
        if self.new_quantity < 0:
            raise ValueError("new_quantity must be >= 0")


@dataclass(frozen=True, slots=True)
class StockLedger:
    """
    In-memory domain representation of one product's adjustment history.

    `apply` is the only way to grow the ledger. It validates non-negativity and
    returns a new ledger together with the recorded adjustment; the receiver is
    never modified.
    """

    product_id: UUID
    adjustments: Tuple[StockAdjustment, ...] = field(default_factory=tuple)

    @staticmethod
    def empty(product_id: UUID) -> "StockLedger":
        return StockLedger(product_id=product_id, adjustments=())

    @staticmethod
    def from_history(product_id: UUID, adjustments: Iterable[StockAdjustment]) -> "StockLedger":
        ordered = tuple(sorted(adjustments, key=lambda a: a.created_at))
        for adjustment in ordered:
            if adjustment.product_id != product_id:
                raise ValueError("All adjustments must belong to the ledger's product")
        return StockLedger(product_id=product_id, adjustments=ordered)

    @property
    def current_stock(self) -> int:
        return fold_stock(self.adjustments)

    def apply(
        self,
        *,
        delta: int,
        reason: AdjustmentReason,
        note: str,
        actor: str,
        created_at: datetime,
        order_id: Optional[UUID] = None,
        idempotency_key: Optional[str] = None,
        adjustment_id: Optional[UUID] = None,
    ) -> tuple["StockLedger", StockAdjustment]:
        """
        Append an adjustment.

        Raises:
            InsufficientStock: if the result would be negative.
            ValueError: if delta is zero.
        """

        if delta == 0:
            raise ValueError("delta must be non-zero")

        current = self.current_stock
        if current + delta < 0:
            raise InsufficientStock(self.product_id, current, delta)

        adjustment = StockAdjustment(
            adjustment_id=adjustment_id or uuid4(),
            product_id=self.product_id,
            quantity_delta=delta,
            reason=reason,
            note=note,
            actor=actor,
            created_at=created_at,
            previous_quantity=current,
            new_quantity=current + delta,
            order_id=order_id,
            idempotency_key=idempotency_key,
        )
        return StockLedger(self.product_id, self.adjustments + (adjustment,)), adjustment


def fold_stock(adjustments: Iterable[StockAdjustment]) -> int:
    """Sum of deltas; this is the ground truth for a product's stock level."""

    return sum(a.quantity_delta for a in adjustments)


def order_net_delta(adjustments: Iterable[StockAdjustment], order_id: UUID, product_id: UUID) -> int:
    """Net stock movement recorded against one order for one product."""

    return sum(
        a.quantity_delta
        for a in adjustments
        if a.order_id == order_id and a.product_id == product_id
    )
