"""
Stock repository (persistence) backed by Supabase.

Reads products and stock adjustments through PostgREST and performs every stock
write through the `apply_stock_adjustment` PostgreSQL function, which:
- locks the product row (SELECT ... FOR UPDATE),
- returns the stored adjustment if the idempotency key was already used,
- rejects the change if stock would go negative,
- inserts the adjustment and updates products.stock_quantity,
all in one transaction.

No business rules beyond that live here.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, List, Mapping, Optional, Tuple
from uuid import UUID

from domain.errors import InsufficientStock, ProductNotFound
from domain.product import Product
from domain.stock import AdjustmentReason, StockAdjustment
from repositories.client import get_supabase
from repositories.serialization import (
    call_rpc,
    parse_decimal,
    parse_optional_datetime,
    parse_utc_datetime,
    rows_or_raise,
    to_iso_utc,
)

# Supabase table names. Keep these aligned with db/migrations/.
_PRODUCTS_TABLE: str = "products"
_ADJUSTMENTS_TABLE: str = "stock_adjustments"

# Default PostgREST max-rows; a page must not be larger than the server cap.
DEFAULT_PAGE_SIZE: int = 1000


def _row_to_product(row: Mapping[str, Any]) -> Product:
    """Convert a Supabase row into a Product."""

    return Product(
        product_id=UUID(str(row["id"])),
        name=str(row["name"]),
        price=parse_decimal(row["price"]),
        stock_quantity=int(row["stock_quantity"]),
        low_stock_threshold=int(row["low_stock_threshold"]),
        sku=row.get("sku"),
        updated_at=parse_optional_datetime(row.get("updated_at")),
    )


def _row_to_adjustment(row: Mapping[str, Any]) -> StockAdjustment:
    """Convert a Supabase row into a StockAdjustment."""

    order_id = row.get("order_id")
    return StockAdjustment(
        adjustment_id=UUID(str(row["id"])),
        product_id=UUID(str(row["product_id"])),
        quantity_delta=int(row["quantity"]),
        reason=AdjustmentReason(str(row["reason"])),
        note=str(row.get("note") or ""),
        actor=str(row.get("adjusted_by") or ""),
        created_at=parse_utc_datetime(row["created_at"]),
        previous_quantity=int(row["previous_quantity"]),
        new_quantity=int(row["new_quantity"]),
        order_id=UUID(str(order_id)) if order_id else None,
        idempotency_key=row.get("idempotency_key"),
    )


class SupabaseStockRepository:
    """StockRepository implementation over the products / stock_adjustments tables."""

    def __init__(self, client: Any = None, page_size: int = DEFAULT_PAGE_SIZE) -> None:
        if page_size <= 0:
            raise ValueError("page_size must be > 0")
        self._client = client
        self._page_size = page_size

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def get_product(self, product_id: UUID) -> Optional[Product]:
        response = (
            self.client.table(_PRODUCTS_TABLE)
            .select("*")
            .eq("id", str(product_id))
            .limit(1)
            .execute()
        )
        rows = rows_or_raise(response, "get product")
        return _row_to_product(rows[0]) if rows else None

    def list_products(self) -> List[Product]:
        response = (
            self.client.table(_PRODUCTS_TABLE)
            .select("*")
            .order("stock_quantity")
            .order("name")
            .execute()
        )
        return [_row_to_product(row) for row in rows_or_raise(response, "list products")]

    def list_low_stock(self) -> List[Product]:
        # PostgREST cannot compare two columns, so the filter runs here.
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
        result = call_rpc(
            self.client,
            "apply_stock_adjustment",
            {
                "p_product_id": str(product_id),
                "p_quantity": delta,
                "p_reason": reason.value,
                "p_note": note,
                "p_adjusted_by": actor,
                "p_created_at": to_iso_utc(created_at, name="created_at"),
                "p_order_id": str(order_id) if order_id else None,
                "p_idempotency_key": idempotency_key,
                "p_adjustment_id": str(adjustment_id) if adjustment_id else None,
            },
        )

        if not result.get("success"):
            error_code = result.get("error")
            if error_code == "PRODUCT_NOT_FOUND":
                raise ProductNotFound(product_id)
            if error_code == "INSUFFICIENT_STOCK":
                raise InsufficientStock(product_id, int(result.get("current_stock", 0)), delta)
            raise RuntimeError(f"Failed to apply stock adjustment: {result.get('message') or error_code}")

        return _row_to_adjustment(result["adjustment"]), _row_to_product(result["product"])

    def list_adjustments(
        self,
        *,
        product_id: Optional[UUID] = None,
        order_id: Optional[UUID] = None,
        limit: Optional[int] = None,
    ) -> List[StockAdjustment]:
        """
        Return adjustments oldest first.

        PostgREST caps every response at the server's max-rows, so the rows are
        read in pages of `page_size` until a short page comes back. With `limit`
        only the newest `limit` rows are read.
        """

        def query(descending: bool) -> Any:
            q = self.client.table(_ADJUSTMENTS_TABLE).select("*")
            if product_id is not None:
                q = q.eq("product_id", str(product_id))
            if order_id is not None:
                q = q.eq("order_id", str(order_id))
            return q.order("seq", desc=descending)

        # Ascending seq keeps page boundaries stable while new rows are appended.
        descending = limit is not None
        rows: List[Mapping[str, Any]] = []
        while limit is None or len(rows) < limit:
            size = self._page_size if limit is None else min(self._page_size, limit - len(rows))
            start = len(rows)
            page = rows_or_raise(
                query(descending).range(start, start + size - 1).execute(),
                "list stock adjustments",
            )
            rows.extend(page)
            if len(page) < size:
                break

        if descending:
            rows.reverse()
        return [_row_to_adjustment(row) for row in rows]


__all__ = ["SupabaseStockRepository"]
