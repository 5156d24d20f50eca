"""
Discount repository (persistence) backed by Supabase.

Plain CRUD goes through PostgREST. Redemption and release go through the
`redeem_discount` / `release_discount_redemption` PostgreSQL functions, which
increment or decrement used_count in a single guarded statement
(`used_count < max_uses OR max_uses = 0`) and record one redemption per order.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from domain.discount import Discount, DiscountRedemption, DiscountType, normalize_code
from domain.errors import DiscountExhausted, DiscountNotFound
from repositories.client import get_supabase
from repositories.serialization import (
    call_rpc,
    optional_iso_utc,
    parse_decimal,
    parse_optional_datetime,
    parse_optional_decimal,
    parse_utc_datetime,
    rows_or_raise,
    to_iso_utc,
)

_DISCOUNTS_TABLE: str = "discounts"
_REDEMPTIONS_TABLE: str = "discount_redemptions"


def _row_to_discount(row: Mapping[str, Any]) -> Discount:
    """Convert a Supabase row into a Discount."""

    return Discount(
        discount_id=UUID(str(row["id"])),
        code=normalize_code(str(row["code"])),
        discount_type=DiscountType(str(row["type"])),
        value=parse_decimal(row["value"]),
        min_purchase=parse_optional_decimal(row.get("min_purchase")),
        max_uses=int(row.get("max_uses") or 0),
        used_count=int(row.get("used_count") or 0),
        starts_at=parse_optional_datetime(row.get("starts_at")),
        expires_at=parse_optional_datetime(row.get("expires_at")),
        is_active=bool(row.get("is_active", True)),
        description=str(row.get("description") or ""),
        created_at=parse_optional_datetime(row.get("created_at")),
    )


def _discount_to_row(discount: Discount) -> Dict[str, Any]:
    return {
        "id": str(discount.discount_id),
        "code": discount.code,
        "type": discount.discount_type.value,
        "value": str(discount.value),
        "min_purchase": str(discount.min_purchase) if discount.min_purchase is not None else None,
        "max_uses": discount.max_uses,
        "used_count": discount.used_count,
        "starts_at": optional_iso_utc(discount.starts_at, name="starts_at"),
        "expires_at": optional_iso_utc(discount.expires_at, name="expires_at"),
        "is_active": discount.is_active,
        "description": discount.description,
        "created_at": optional_iso_utc(discount.created_at, name="created_at"),
    }


class SupabaseDiscountRepository:
    """DiscountRepository implementation over discounts / discount_redemptions."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def insert_discount(self, discount: Discount) -> None:
        response = self.client.table(_DISCOUNTS_TABLE).insert(_discount_to_row(discount)).execute()
        error = getattr(response, "error", None)
        if error:
            # Unique index on upper(code).
            if str(getattr(error, "code", None)) == "23505":
                raise ValueError(f"Discount code already exists: {discount.code}") from None
            raise RuntimeError(f"Failed to create discount: {error}")

    def get_discount(self, discount_id: UUID) -> Optional[Discount]:
        response = (
            self.client.table(_DISCOUNTS_TABLE)
            .select("*")
            .eq("id", str(discount_id))
            .limit(1)
            .execute()
        )
        rows = rows_or_raise(response, "get discount")
        return _row_to_discount(rows[0]) if rows else None

    def get_discount_by_code(self, code: str) -> Optional[Discount]:
        response = (
            self.client.table(_DISCOUNTS_TABLE)
            .select("*")
            .eq("code", normalize_code(code))
            .limit(1)
            .execute()
        )
        rows = rows_or_raise(response, "get discount by code")
        return _row_to_discount(rows[0]) if rows else None

    def list_discounts(self) -> List[Discount]:
        response = self.client.table(_DISCOUNTS_TABLE).select("*").order("code").execute()
        return [_row_to_discount(row) for row in rows_or_raise(response, "list discounts")]

    def delete_discount(self, discount_id: UUID) -> bool:
        response = self.client.table(_DISCOUNTS_TABLE).delete().eq("id", str(discount_id)).execute()
        return bool(rows_or_raise(response, "delete discount"))

    def redeem(self, discount_id: UUID, order_id: UUID, redeemed_at: datetime) -> Discount:
        result = call_rpc(
            self.client,
            "redeem_discount",
            {
                "p_discount_id": str(discount_id),
                "p_order_id": str(order_id),
                "p_redeemed_at": to_iso_utc(redeemed_at, name="redeemed_at"),
            },
        )
        if not result.get("success"):
            error_code = result.get("error")
            if error_code == "DISCOUNT_NOT_FOUND":
                raise DiscountNotFound(discount_id)
            if error_code == "DISCOUNT_EXHAUSTED":
                raise DiscountExhausted(str(result.get("code", discount_id)), int(result.get("max_uses", 0)))
            raise RuntimeError(f"Failed to redeem discount: {result.get('message') or error_code}")
        return _row_to_discount(result["discount"])

    def release(self, discount_id: UUID, order_id: UUID) -> bool:
        result = call_rpc(
            self.client,
            "release_discount_redemption",
            {"p_discount_id": str(discount_id), "p_order_id": str(order_id)},
        )
        if not result.get("success"):
            raise RuntimeError(f"Failed to release discount: {result.get('message') or result.get('error')}")
        return bool(result.get("released"))

    def get_redemption(self, order_id: UUID) -> Optional[DiscountRedemption]:
        response = (
            self.client.table(_REDEMPTIONS_TABLE)
            .select("*")
            .eq("order_id", str(order_id))
            .limit(1)
            .execute()
        )
        rows = rows_or_raise(response, "get discount redemption")
        if not rows:
            return None
        row = rows[0]
        return DiscountRedemption(
            discount_id=UUID(str(row["discount_id"])),
            order_id=UUID(str(row["order_id"])),
            redeemed_at=parse_utc_datetime(row["redeemed_at"]),
        )


__all__ = ["SupabaseDiscountRepository"]
