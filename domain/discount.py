"""
Domain: discount codes.

Rules implemented here:
- Codes are unique and case-insensitive; they are stored upper-cased.
- Percentage discounts take value% of the subtotal, clamped to the subtotal.
- Fixed discounts take min(value, subtotal).
- Validity is checked in a fixed order so the first failing check always wins:
  is_active -> date window -> max_uses vs used_count -> min_purchase vs subtotal.
- used_count <= max_uses whenever max_uses > 0 (0 means unlimited).

Redemption (the used_count increment) is a persistence operation guarded by the
repository; this module only decides whether a code *could* be redeemed.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID

from .errors import DiscountExhausted, DiscountExpired, DiscountInvalid, MinPurchaseNotMet
from .money import ZERO, to_money
from .time import require_optional_utc_timestamp, require_utc_timestamp


class DiscountType(str, Enum):
    PERCENTAGE = "percentage"
    FIXED = "fixed"


def normalize_code(code: str) -> str:
    return code.strip().upper()


@dataclass(frozen=True, slots=True)
class Discount:
    discount_id: UUID
    code: str
    discount_type: DiscountType
    value: Decimal
    min_purchase: Optional[Decimal] = None
    max_uses: int = 0  # 0 = unlimited
    used_count: int = 0
    starts_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    description: str = ""
    created_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        if not self.code or normalize_code(self.code) != self.code:
            raise ValueError("code must be non-empty and normalized (upper case, no surrounding spaces)")
        if self.value <= 0:
            raise ValueError("value must be > 0")
        if self.discount_type is DiscountType.PERCENTAGE and self.value > 100:
            raise ValueError("percentage value must be <= 100")
        if self.min_purchase is not None and self.min_purchase < 0:
            raise ValueError("min_purchase must be >= 0")
        if self.max_uses < 0:
            raise ValueError("max_uses must be >= 0")
        if self.used_count < 0:
            raise ValueError("used_count must be >= 0")
        if self.max_uses > 0 and self.used_count > self.max_uses:
            raise ValueError("used_count must not exceed max_uses")
        require_optional_utc_timestamp("starts_at", self.starts_at)
        require_optional_utc_timestamp("expires_at", self.expires_at)
        require_optional_utc_timestamp("created_at", self.created_at)
        if self.starts_at is not None and self.expires_at is not None and self.expires_at <= self.starts_at:
            raise ValueError("expires_at must be after starts_at")

    @property
    def is_unlimited(self) -> bool:
        return self.max_uses == 0

    @property
    def remaining_uses(self) -> Optional[int]:
        if self.is_unlimited:
            return None
        return self.max_uses - self.used_count

    def is_within_window(self, at: datetime) -> bool:
        if self.starts_at is not None and at < self.starts_at:
            return False
        if self.expires_at is not None and at >= self.expires_at:
            return False
        return True

    def validate_for(self, subtotal: Decimal, at: datetime) -> None:
        """
        Raise the first failing validity check for this subtotal at `at`.

        Raises:
            DiscountInvalid, DiscountExpired, DiscountExhausted, MinPurchaseNotMet
        """

        require_utc_timestamp("at", at)

        if not self.is_active:
            raise DiscountInvalid(self.code, "Discount code is inactive")
        if not self.is_within_window(at):
            if self.starts_at is not None and at < self.starts_at:
                raise DiscountExpired(self.code, "Discount code is not active yet")
            raise DiscountExpired(self.code)
        if not self.is_unlimited and self.used_count >= self.max_uses:
            raise DiscountExhausted(self.code, self.max_uses)
        if self.min_purchase is not None and subtotal < self.min_purchase:
            raise MinPurchaseNotMet(self.code, self.min_purchase, subtotal)

    def amount_for(self, subtotal: Decimal) -> Decimal:
        """Discount amount for a subtotal, never more than the subtotal itself."""

        if subtotal <= 0:
            return ZERO
        if self.discount_type is DiscountType.PERCENTAGE:
            amount = to_money(subtotal * self.value / Decimal(100))
        else:
            amount = to_money(self.value)
        return min(amount, to_money(subtotal))

    def redeemed(self) -> "Discount":
        """Return a copy with one more use; enforces the usage cap."""

        if not self.is_unlimited and self.used_count >= self.max_uses:
            raise DiscountExhausted(self.code, self.max_uses)
        return replace(self, used_count=self.used_count + 1)

    def released(self) -> "Discount":
        if self.used_count == 0:
            raise ValueError("Discount has no redemptions to release")
        return replace(self, used_count=self.used_count - 1)


@dataclass(frozen=True, slots=True)
class DiscountQuote:
    """Result of pricing an order subtotal against a discount code."""

    discount_id: UUID
    code: str
    discount_amount: Decimal


@dataclass(frozen=True, slots=True)
class DiscountRedemption:
    discount_id: UUID
    order_id: UUID
    redeemed_at: datetime

    def __post_init__(self) -> None:
        require_utc_timestamp("redeemed_at", self.redeemed_at)
