"""
Runtime settings for the order lifecycle services.

Values come from environment variables (a `.env` file at the project root is
loaded first, the same way repositories/client.py loads Supabase credentials).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Mapping, Optional

from dotenv import load_dotenv

from domain.shipping import ShippingRates

env_path = Path(__file__).parent.parent / ".env"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _env_bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    raw = env.get(name)
    if raw is None:
        return default
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    raise ValueError(f"{name} must be a boolean (true/false), got '{raw}'")


def _env_int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got '{raw}'") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


def _env_decimal(env: Mapping[str, str], name: str, default: Optional[Decimal]) -> Optional[Decimal]:
    raw = env.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = Decimal(raw)
    except InvalidOperation:
        raise ValueError(f"{name} must be a decimal number, got '{raw}'") from None
    if value < 0:
        raise ValueError(f"{name} must be >= 0")
    return value


@dataclass(frozen=True, slots=True)
class LifecycleSettings:
    currency: str = "PHP"
    # Change-of-mind returns: 7 days from delivery.
    return_window_days: int = 7
    release_discount_on_cancel: bool = False
    tax_rate: Decimal = Decimal("0")
    shipping_rates: ShippingRates = field(default_factory=ShippingRates)
    adjustment_history_limit: int = 200

    @staticmethod
    def from_env(env: Optional[Mapping[str, str]] = None) -> "LifecycleSettings":
        """
        Build settings from environment variables.

        Raises:
            ValueError: if a variable is present but malformed.
        """

        if env is None:
            load_dotenv(dotenv_path=env_path)
            env = os.environ

        defaults = LifecycleSettings()
        rates = defaults.shipping_rates
        tax_rate = _env_decimal(env, "TAX_RATE", defaults.tax_rate)
        if tax_rate is not None and tax_rate > 1:
            raise ValueError("TAX_RATE must be a fraction between 0 and 1")

        return LifecycleSettings(
            currency=(env.get("CURRENCY") or defaults.currency).upper(),
            return_window_days=_env_int(env, "RETURN_WINDOW_DAYS", defaults.return_window_days),
            release_discount_on_cancel=_env_bool(
                env, "RELEASE_DISCOUNT_ON_CANCEL", defaults.release_discount_on_cancel
            ),
            tax_rate=tax_rate if tax_rate is not None else defaults.tax_rate,
            shipping_rates=ShippingRates(
                standard_fee=_env_decimal(env, "STANDARD_SHIPPING_FEE", rates.standard_fee) or Decimal("0"),
                express_fee=_env_decimal(env, "EXPRESS_SHIPPING_FEE", rates.express_fee) or Decimal("0"),
                free_shipping_threshold=_env_decimal(env, "FREE_SHIPPING_THRESHOLD", rates.free_shipping_threshold),
            ),
            adjustment_history_limit=_env_int(
                env, "ADJUSTMENT_HISTORY_LIMIT", defaults.adjustment_history_limit
            ),
        )


__all__ = ["LifecycleSettings"]
