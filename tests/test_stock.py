"""
Tests for `domain/stock.py` and `domain/product.py`.

Covers contract rules:
- A product's stock is the fold of its adjustments, in order.
- An adjustment that would make stock negative is rejected and the ledger is unchanged.
- Adjustments are immutable; applying returns a new ledger and leaves the old one intact.
- previous_quantity / new_quantity agree with the fold at write time.
- Stock status classification (in stock / low / out).
"""

from __future__ import annotations

from dataclasses import FrozenInstanceError
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from domain.errors import InsufficientStock
from domain.product import Product, StockStatus
from domain.stock import AdjustmentReason, StockAdjustment, StockLedger, fold_stock, order_net_delta

PRODUCT_ID = UUID("00000000-0000-0000-0000-000000000101")
ORDER_ID = UUID("00000000-0000-0000-0000-000000000201")
T0 = datetime(2025, 1, 1, 0, 0, 0, tzinfo=timezone.utc)


def _apply(ledger: StockLedger, delta: int, reason: AdjustmentReason = AdjustmentReason.RESTOCK, **kwargs):
    return ledger.apply(delta=delta, reason=reason, note="", actor="tester", created_at=T0, **kwargs)


def test_current_stock_is_fold_of_adjustments() -> None:
    """Verify stock equals the running sum of deltas."""

    ledger = StockLedger.empty(PRODUCT_ID)
    ledger, _ = _apply(ledger, 5)
    ledger, _ = _apply(ledger, -3, AdjustmentReason.SALE)
    ledger, _ = _apply(ledger, 10)

    assert ledger.current_stock == 12
    assert fold_stock(ledger.adjustments) == 12
    assert [a.new_quantity for a in ledger.adjustments] == [5, 2, 12]
    assert [a.previous_quantity for a in ledger.adjustments] == [0, 5, 2]


def test_adjustment_below_zero_is_rejected_and_ledger_unchanged() -> None:
    """Verify a negative result raises InsufficientStock and leaves the ledger as it was."""

    ledger, _ = _apply(StockLedger.empty(PRODUCT_ID), 3)

    with pytest.raises(InsufficientStock) as excinfo:
        _apply(ledger, -4, AdjustmentReason.SALE)

    assert excinfo.value.current_stock == 3
    assert excinfo.value.delta == -4
    assert ledger.current_stock == 3
    assert len(ledger.adjustments) == 1


def test_stock_can_reach_exactly_zero() -> None:
    ledger, _ = _apply(StockLedger.empty(PRODUCT_ID), 2)
    ledger, adjustment = _apply(ledger, -2, AdjustmentReason.SALE)

    assert ledger.current_stock == 0
    assert adjustment.new_quantity == 0


def test_zero_delta_is_rejected() -> None:
    with pytest.raises(ValueError):
        _apply(StockLedger.empty(PRODUCT_ID), 0)


def test_apply_returns_new_ledger_and_keeps_original() -> None:
    """Verify the ledger is never modified in place."""

    original = StockLedger.empty(PRODUCT_ID)
    updated, adjustment = _apply(original, 4)

    assert original.adjustments == ()
    assert updated.adjustments == (adjustment,)
    with pytest.raises(FrozenInstanceError):
        adjustment.quantity_delta = 10  # type: ignore[misc]


def test_apply_uses_given_adjustment_id() -> None:
    adjustment_id = UUID("00000000-0000-0000-0000-0000000000aa")
    _, adjustment = _apply(StockLedger.empty(PRODUCT_ID), 1, adjustment_id=adjustment_id)
    assert adjustment.adjustment_id == adjustment_id


def test_adjustment_audit_columns_must_agree() -> None:
    """Verify previous + delta must equal new."""

    with pytest.raises(ValueError):
        StockAdjustment(
            adjustment_id=UUID("00000000-0000-0000-0000-0000000000ab"),
            product_id=PRODUCT_ID,
            quantity_delta=2,
            reason=AdjustmentReason.RESTOCK,
            note="",
            actor="tester",
            created_at=T0,
            previous_quantity=1,
            new_quantity=4,
        )


def test_adjustment_requires_utc_timestamp() -> None:
    with pytest.raises(ValueError):
        StockLedger.empty(PRODUCT_ID).apply(
            delta=1,
            reason=AdjustmentReason.RESTOCK,
            note="",
            actor="tester",
            created_at=datetime(2025, 1, 1, 8, 0, 0, tzinfo=timezone(timedelta(hours=8))),
        )


def test_from_history_orders_by_created_at_and_checks_product() -> None:
    ledger, first = _apply(StockLedger.empty(PRODUCT_ID), 5)
    later = StockLedger.empty(PRODUCT_ID).apply(
        delta=5,
        reason=AdjustmentReason.RESTOCK,
        note="",
        actor="tester",
        created_at=T0 + timedelta(hours=1),
    )[1]

    rebuilt = StockLedger.from_history(PRODUCT_ID, [later, first])
    assert rebuilt.adjustments == (first, later)

    with pytest.raises(ValueError):
        StockLedger.from_history(UUID("00000000-0000-0000-0000-000000000999"), [first])


def test_order_net_delta_counts_only_that_order_and_product() -> None:
    ledger, _ = _apply(StockLedger.empty(PRODUCT_ID), 10)
    ledger, _ = _apply(ledger, -4, AdjustmentReason.SALE, order_id=ORDER_ID)
    ledger, _ = _apply(ledger, -1, AdjustmentReason.SALE, order_id=UUID("00000000-0000-0000-0000-000000000202"))
    ledger, _ = _apply(ledger, 4, AdjustmentReason.CORRECTION, order_id=ORDER_ID)
    ledger, _ = _apply(ledger, -4, AdjustmentReason.SALE, order_id=ORDER_ID)

    assert order_net_delta(ledger.adjustments, ORDER_ID, PRODUCT_ID) == -4


@pytest.mark.parametrize(
    "stock,threshold,expected",
    [
        (0, 2, StockStatus.OUT_OF_STOCK),
        (2, 2, StockStatus.LOW_STOCK),
        (3, 2, StockStatus.IN_STOCK),
    ],
)
def test_product_stock_status(stock: int, threshold: int, expected: StockStatus) -> None:
    product = Product(
        product_id=PRODUCT_ID,
        name="Chain Kit",
        price=Decimal("1200.00"),
        stock_quantity=stock,
        low_stock_threshold=threshold,
    )
    assert product.stock_status is expected
    assert product.is_low_stock is (stock <= threshold)


def test_product_rejects_negative_values() -> None:
    with pytest.raises(ValueError):
        Product(product_id=PRODUCT_ID, name="X", price=Decimal("-1"), stock_quantity=0, low_stock_threshold=0)
    with pytest.raises(ValueError):
        Product(product_id=PRODUCT_ID, name="X", price=Decimal("1"), stock_quantity=-1, low_stock_threshold=0)
