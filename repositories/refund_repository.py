"""
Refund repository (persistence) backed by Supabase.

`reserve_refund` calls the `reserve_refund` PostgreSQL function, which locks the
order row, sums pending and succeeded refunds, and inserts a pending refund only
if the new total stays within the order total. Confirming and discarding are
conditional updates/deletes on the pending row.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any, List, Mapping
from uuid import UUID

from domain.errors import RefundExceedsOrderTotal
from domain.refund import Refund, RefundStatus
from repositories.client import get_supabase
from repositories.serialization import (
    call_rpc,
    parse_decimal,
    parse_utc_datetime,
    rows_or_raise,
    to_iso_utc,
)

_REFUNDS_TABLE: str = "refunds"


def _row_to_refund(row: Mapping[str, Any]) -> Refund:
    """Convert a Supabase row into a Refund."""

    return Refund(
        refund_id=UUID(str(row["id"])),
        order_id=UUID(str(row["order_id"])),
        amount=parse_decimal(row["amount"]),
        reason=str(row.get("reason") or ""),
        actor=str(row.get("processed_by") or ""),
        created_at=parse_utc_datetime(row["created_at"]),
        status=RefundStatus(str(row["status"])),
        payment_reference=row.get("payment_reference"),
    )


class SupabaseRefundRepository:
    """RefundRepository implementation over the refunds table."""

    def __init__(self, client: Any = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = get_supabase()
        return self._client

    def reserve_refund(self, refund: Refund, *, order_total: Decimal) -> Refund:
        result = call_rpc(
            self.client,
            "reserve_refund",
            {
                "p_refund_id": str(refund.refund_id),
                "p_order_id": str(refund.order_id),
                "p_amount": str(refund.amount),
                "p_reason": refund.reason,
                "p_processed_by": refund.actor,
                "p_created_at": to_iso_utc(refund.created_at, name="created_at"),
            },
        )
        if not result.get("success"):
            if result.get("error") == "REFUND_EXCEEDS_TOTAL":
                raise RefundExceedsOrderTotal(
                    refund.order_id,
                    refund.amount,
                    parse_decimal(result.get("already_refunded", "0")),
                    order_total,
                )
            raise RuntimeError(f"Failed to reserve refund: {result.get('message') or result.get('error')}")
        return _row_to_refund(result["refund"])

    def confirm_refund(self, refund_id: UUID, payment_reference: str) -> Refund:
        response = (
            self.client.table(_REFUNDS_TABLE)
            .update({"status": RefundStatus.SUCCEEDED.value, "payment_reference": payment_reference})
            .eq("id", str(refund_id))
            .eq("status", RefundStatus.PENDING.value)
            .execute()
        )
        rows = rows_or_raise(response, "confirm refund")
        if not rows:
            raise ValueError(f"Refund not found or not pending: {refund_id}")
        return _row_to_refund(rows[0])

    def discard_refund(self, refund_id: UUID) -> None:
        response = (
            self.client.table(_REFUNDS_TABLE)
            .delete()
            .eq("id", str(refund_id))
            .eq("status", RefundStatus.PENDING.value)
            .execute()
        )
        rows_or_raise(response, "discard refund")

    def list_refunds(self, order_id: UUID) -> List[Refund]:
        response = (
            self.client.table(_REFUNDS_TABLE)
            .select("*")
            .eq("order_id", str(order_id))
            .eq("status", RefundStatus.SUCCEEDED.value)
            .order("created_at")
            .execute()
        )
        return [_row_to_refund(row) for row in rows_or_raise(response, "list refunds")]


__all__ = ["SupabaseRefundRepository"]
