"""
Order repository (persistence) backed by Supabase.

Provides persistence for Order and its line items (orders / order_items). It
enforces only the optimistic version check on updates; legality of status
changes is decided by the domain and the state machine service.
"""

from __future__ import annotations

from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from domain.errors import ConcurrencyConflict, OrderNotFound
from domain.order import GuestInfo, LineItem, Order, OrderStatus
from domain.shipping import ShippingInfo, ShippingMethod
from repositories.client import get_supabase
from repositories.serialization import (
    call_rpc,
    optional_iso_utc,
    parse_decimal,
    parse_optional_datetime,
    parse_utc_datetime,
    rows_or_raise,
    to_iso_utc,
)

_ORDERS_TABLE: str = "orders"
_ORDER_ITEMS_TABLE: str = "order_items"


def _shipping_to_json(shipping: ShippingInfo) -> Dict[str, Any]:
    return {
        "recipient_name": shipping.recipient_name,
        "address_line": shipping.address_line,
        "city": shipping.city,
        "province": shipping.province,
        "postal_code": shipping.postal_code,
        "phone": shipping.phone,
    }


def _order_to_row(order: Order) -> Dict[str, Any]:
    """Serialize the mutable and immutable columns of an order row."""

    return {
        "id": str(order.order_id),
        "user_id": str(order.user_id) if order.user_id else None,
        "guest_name": order.guest.name if order.guest else None,
        "guest_email": order.guest.email if order.guest else None,
        "subtotal": str(order.subtotal),
        "discount_amount": str(order.discount_amount),
        "discount_id": str(order.discount_id) if order.discount_id else None,
        "promo_code_used": order.discount_code,
        "shipping_method": order.shipping.method.value,
        "shipping_address": _shipping_to_json(order.shipping),
        "shipping_fee": str(order.shipping_fee),
        "tax": str(order.tax),
        "total_amount": str(order.total),
        "status": order.status.value,
        "tracking_number": order.tracking_number,
        "payment_reference": order.payment_reference,
        "version": order.version,
        "created_at": to_iso_utc(order.created_at, name="created_at"),
        "updated_at": optional_iso_utc(order.updated_at, name="updated_at"),
        "paid_at": optional_iso_utc(order.paid_at, name="paid_at"),
        "completed_at": optional_iso_utc(order.completed_at, name="completed_at"),
        "cancelled_at": optional_iso_utc(order.cancelled_at, name="cancelled_at"),
    }


def _row_to_line_item(row: Mapping[str, Any]) -> LineItem:
    return LineItem(
        product_id=UUID(str(row["product_id"])),
        product_name=str(row["product_name"]),
        quantity=int(row["quantity"]),
        unit_price=parse_decimal(row["product_price"]),
    )


def _row_to_order(row: Mapping[str, Any], items: List[LineItem]) -> Order:
    """Convert an orders row plus its order_items rows into an Order."""

    address = row.get("shipping_address") or {}
    guest = None
    if row.get("guest_email"):
        guest = GuestInfo(name=str(row.get("guest_name") or ""), email=str(row["guest_email"]))

    return Order(
        order_id=UUID(str(row["id"])),
        line_items=tuple(items),
        subtotal=parse_decimal(row["subtotal"]),
        discount_amount=parse_decimal(row["discount_amount"]),
        shipping_fee=parse_decimal(row["shipping_fee"]),
        tax=parse_decimal(row["tax"]),
        total=parse_decimal(row["total_amount"]),
        status=OrderStatus(str(row["status"])),
        shipping=ShippingInfo(method=ShippingMethod(str(row["shipping_method"])), **address),
        created_at=parse_utc_datetime(row["created_at"]),
        user_id=UUID(str(row["user_id"])) if row.get("user_id") else None,
        guest=guest,
        discount_id=UUID(str(row["discount_id"])) if row.get("discount_id") else None,
        discount_code=row.get("promo_code_used"),
        tracking_number=row.get("tracking_number"),
        payment_reference=row.get("payment_reference"),
        version=int(row["version"]),
        updated_at=parse_optional_datetime(row.get("updated_at")),
        paid_at=parse_optional_datetime(row.get("paid_at")),
        completed_at=parse_optional_datetime(row.get("completed_at")),
        cancelled_at=parse_optional_datetime(row.get("cancelled_at")),
    )


class SupabaseOrderRepository:
    """OrderRepository implementation over the orders / order_items tables."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def insert_order(self, order: Order) -> None:
        """Insert the order and its items in one transaction (create_order_with_items)."""

        items = [
            {
                "product_id": str(item.product_id),
                "product_name": item.product_name,
                "product_price": str(item.unit_price),
                "quantity": item.quantity,
            }
            for item in order.line_items
        ]
        result = call_rpc(
            self.client,
            "create_order_with_items",
            {"p_order": _order_to_row(order), "p_items": items},
        )
        if not result.get("success"):
            raise RuntimeError(f"Failed to create order: {result.get('message') or result.get('error')}")

    def get_order(self, order_id: UUID) -> Optional[Order]:
        response = (
            self.client.table(_ORDERS_TABLE)
            .select("*")
            .eq("id", str(order_id))
            .limit(1)
            .execute()
        )
        rows = rows_or_raise(response, "get order")
        if not rows:
            return None

        items_response = (
            self.client.table(_ORDER_ITEMS_TABLE)
            .select("*")
            .eq("order_id", str(order_id))
            .order("id")
            .execute()
        )
        items = [_row_to_line_item(r) for r in rows_or_raise(items_response, "get order items")]
        return _row_to_order(rows[0], items)

    def update_order(self, order: Order, *, expected_version: int) -> None:
        """
        Persist the order's mutable columns.

        Requirements:
        - Must only update if the stored version equals expected_version.
        """

        row = _order_to_row(order)
        payload = {
            key: row[key]
            for key in (
                "status",
                "tracking_number",
                "payment_reference",
                "version",
                "updated_at",
                "paid_at",
                "completed_at",
                "cancelled_at",
            )
        }
        response = (
            self.client.table(_ORDERS_TABLE)
            .update(payload)
            .eq("id", str(order.order_id))
            .eq("version", expected_version)
            .execute()
        )
        updated_rows = rows_or_raise(response, "update order")
        if updated_rows:
            return

        # Either no order exists, or someone else moved it first.
        if self.get_order(order.order_id) is None:
            raise OrderNotFound(order.order_id)
        raise ConcurrencyConflict(
            f"Order {order.order_id} was modified concurrently (expected version {expected_version})"
        )


__all__ = ["SupabaseOrderRepository"]
