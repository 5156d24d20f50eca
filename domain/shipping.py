"""
Domain: shipping methods and fees.

Fee rules follow the storefront checkout:
- standard: flat fee, free once the subtotal reaches the free-shipping threshold
- express: flat fee, never free
- pickup: always free
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from .money import ZERO, to_money


class ShippingMethod(str, Enum):
    STANDARD = "standard"
    EXPRESS = "express"
    PICKUP = "pickup"


@dataclass(frozen=True, slots=True)
class ShippingRates:
    standard_fee: Decimal = Decimal("150.00")
    express_fee: Decimal = Decimal("300.00")
    free_shipping_threshold: Optional[Decimal] = Decimal("2500.00")

    def fee_for(self, method: ShippingMethod, subtotal: Decimal) -> Decimal:
        if method is ShippingMethod.PICKUP:
            return ZERO
        if method is ShippingMethod.EXPRESS:
            return to_money(self.express_fee)
        if self.free_shipping_threshold is not None and subtotal >= self.free_shipping_threshold:
            return ZERO
        return to_money(self.standard_fee)


@dataclass(frozen=True, slots=True)
class ShippingInfo:
    """Where and how an order ships. Address fields are free text."""

    method: ShippingMethod = ShippingMethod.STANDARD
    recipient_name: str = ""
    address_line: str = ""
    city: str = ""
    province: str = ""
    postal_code: str = ""
    phone: str = ""

    def __post_init__(self) -> None:
        if self.method is not ShippingMethod.PICKUP and not self.address_line.strip():
            raise ValueError("address_line is required unless the order is picked up in store")
