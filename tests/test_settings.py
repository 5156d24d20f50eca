"""
Tests for `services/settings.py` and `services/event_bus.py`.
"""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

import pytest

from domain.events import DomainEvent, LowStockAlert, StockChanged
from services.event_bus import EventBus
from services.settings import LifecycleSettings


def test_from_env_defaults() -> None:
    settings = LifecycleSettings.from_env({})

    assert settings == LifecycleSettings()
    assert settings.return_window_days == 7
    assert settings.release_discount_on_cancel is False
    assert settings.shipping_rates.standard_fee == Decimal("150.00")


def test_from_env_reads_values() -> None:
    settings = LifecycleSettings.from_env(
        {
            "CURRENCY": "php",
            "RETURN_WINDOW_DAYS": "14",
            "RELEASE_DISCOUNT_ON_CANCEL": "yes",
            "TAX_RATE": "0.12",
            "EXPRESS_SHIPPING_FEE": "350",
            "FREE_SHIPPING_THRESHOLD": "",
            "ADJUSTMENT_HISTORY_LIMIT": "50",
        }
    )

    assert settings.currency == "PHP"
    assert settings.return_window_days == 14
    assert settings.release_discount_on_cancel is True
    assert settings.tax_rate == Decimal("0.12")
    assert settings.shipping_rates.express_fee == Decimal("350")
    assert settings.shipping_rates.free_shipping_threshold == Decimal("2500.00")
    assert settings.adjustment_history_limit == 50


@pytest.mark.parametrize(
    "env",
    [
        {"RETURN_WINDOW_DAYS": "seven"},
        {"RETURN_WINDOW_DAYS": "-1"},
        {"RELEASE_DISCOUNT_ON_CANCEL": "maybe"},
        {"TAX_RATE": "twelve"},
        {"TAX_RATE": "1.5"},
        {"STANDARD_SHIPPING_FEE": "-10"},
    ],
)
def test_from_env_rejects_malformed_values(env) -> None:
    with pytest.raises(ValueError):
        LifecycleSettings.from_env(env)


def _stock_changed() -> StockChanged:
    return StockChanged(
        product_id=UUID(int=1),
        product_name="Chain Kit",
        previous_stock=3,
        stock_quantity=2,
        adjustment=-1,
        reason="sale",
        occurred_at=datetime(2025, 3, 1, tzinfo=timezone.utc),
    )


def test_event_bus_dispatches_by_type() -> None:
    bus = EventBus()
    everything, stock_only, low_only = [], [], []
    bus.subscribe(DomainEvent, everything.append)
    bus.subscribe(StockChanged, stock_only.append)
    bus.subscribe(LowStockAlert, low_only.append)

    event = _stock_changed()
    bus.publish(event)

    assert everything == [event]
    assert stock_only == [event]
    assert low_only == []
    assert event.name == "inventory:updated"


def test_failing_subscriber_does_not_stop_others() -> None:
    bus = EventBus()
    received = []

    def broken(event: DomainEvent) -> None:
        raise RuntimeError("socket closed")

    bus.subscribe(StockChanged, broken)
    bus.subscribe(StockChanged, received.append)
    bus.publish(_stock_changed())

    assert len(received) == 1

    bus.unsubscribe(StockChanged, received.append)
    bus.publish(_stock_changed())
    assert len(received) == 1
