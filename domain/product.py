"""
Domain: Product (catalog item with a stock level).

Rules implemented here:
- price is a non-negative Decimal.
- stock_quantity and low_stock_threshold are integers >= 0.
- Once live, stock_quantity changes only through StockAdjustment events; this
  entity exposes `with_stock` for the ledger to return an updated copy and never
  mutates in place.

Catalog management (names, images, categories) is an external collaborator.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from .money import require_non_negative
from .time import require_optional_utc_timestamp


class StockStatus(str, Enum):
    IN_STOCK = "in_stock"
    LOW_STOCK = "low_stock"
    OUT_OF_STOCK = "out_of_stock"


@dataclass(frozen=True, slots=True)
class Product:
    product_id: UUID
    name: str
    price: Decimal
    stock_quantity: int
    low_stock_threshold: int
    sku: Optional[str] = None
    updated_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_non_negative("price", self.price)
        if self.stock_quantity < 0:
            raise ValueError("stock_quantity must be >= 0")
        if self.low_stock_threshold < 0:
            raise ValueError("low_stock_threshold must be >= 0")
        require_optional_utc_timestamp("updated_at", self.updated_at)

    @property
    def is_low_stock(self) -> bool:
        return self.stock_quantity <= self.low_stock_threshold

    @property
    def stock_status(self) -> StockStatus:
        if self.stock_quantity == 0:
            return StockStatus.OUT_OF_STOCK
        if self.is_low_stock:
            return StockStatus.LOW_STOCK
        return StockStatus.IN_STOCK

    def with_stock(self, stock_quantity: int, updated_at: datetime) -> "Product":
        return replace(self, stock_quantity=stock_quantity, updated_at=updated_at)
