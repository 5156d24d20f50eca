"""
Domain events emitted by the core.

Presentation layers (dashboard sockets, toasts, notification feeds) subscribe to
these through services.event_bus. Each event has a stable `name` matching the
channel the storefront listens on.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import ClassVar, Optional
from uuid import UUID


@dataclass(frozen=True, slots=True)
class DomainEvent:
    name: ClassVar[str] = "event"


@dataclass(frozen=True, slots=True)
class StockChanged(DomainEvent):
    name: ClassVar[str] = "inventory:updated"

    product_id: UUID
    product_name: str
    previous_stock: int
    stock_quantity: int
    adjustment: int
    reason: str
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class LowStockAlert(DomainEvent):
    name: ClassVar[str] = "inventory:low-stock"

    product_id: UUID
    product_name: str
    stock_quantity: int
    low_stock_threshold: int
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class OrderCreated(DomainEvent):
    name: ClassVar[str] = "order:new"

    order_id: UUID
    user_id: Optional[UUID]
    total: Decimal
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class OrderStatusChanged(DomainEvent):
    name: ClassVar[str] = "order:updated"

    order_id: UUID
    user_id: Optional[UUID]
    from_status: str
    to_status: str
    occurred_at: datetime


@dataclass(frozen=True, slots=True)
class RefundRecorded(DomainEvent):
    name: ClassVar[str] = "refund:recorded"

    refund_id: UUID
    order_id: UUID
    amount: Decimal
    refunded_total: Decimal
    occurred_at: datetime
