"""
Discount engine.

Handles:
- Pricing a subtotal against a code (validity checks in a fixed order)
- Redeeming a code for an order exactly once (guarded increment in the repository)
- Releasing the redemption of a checkout that never completed
- Back-office create / delete / list of codes
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID, uuid4

from domain.discount import Discount, DiscountQuote, DiscountType, normalize_code
from domain.errors import DiscountInvalid, DiscountNotFound
from domain.money import to_money
from domain.time import Clock, utc_now
from repositories.base import DiscountRepository
from services.concurrency import retry_on_conflict

logger = logging.getLogger(__name__)


class DiscountEngine:
    def __init__(self, repository: DiscountRepository, clock: Clock = utc_now) -> None:
        self._repository = repository
        self._clock = clock

    def get_by_code(self, code: str) -> Optional[Discount]:
        return self._repository.get_discount_by_code(normalize_code(code))

    def price(self, subtotal: Decimal, code: str, at: Optional[datetime] = None) -> DiscountQuote:
        """
        Price `subtotal` against `code`.

        Args:
            subtotal: Order subtotal before discount
            code: Discount code as typed by the customer (case-insensitive)
            at: Evaluation time (defaults to now)

        Returns:
            DiscountQuote with the discount amount, clamped to the subtotal

        Raises:
            DiscountInvalid: unknown or inactive code
            DiscountExpired: outside the code's date window
            DiscountExhausted: usage limit reached
            MinPurchaseNotMet: subtotal below the code's minimum purchase
        """

        normalized = normalize_code(code)
        if not normalized:
            raise DiscountInvalid(code)

        discount = self._repository.get_discount_by_code(normalized)
        if discount is None:
            raise DiscountInvalid(normalized)

        subtotal = to_money(subtotal)
        discount.validate_for(subtotal, at or self._clock())
        return DiscountQuote(
            discount_id=discount.discount_id,
            code=discount.code,
            discount_amount=discount.amount_for(subtotal),
        )

    def redeem(self, discount_id: UUID, order_id: UUID) -> Discount:
        """
        Consume one use of a discount for an order.

        Retrying for the same order does not consume a second use.

        Raises:
            DiscountNotFound: if the discount was deleted
            DiscountExhausted: if the usage limit was reached first by other orders
        """

        redeemed_at = self._clock()
        discount = retry_on_conflict(
            lambda: self._repository.redeem(discount_id, order_id, redeemed_at),
            description=f"discount redemption for order {order_id}",
        )
        logger.info(
            "Discount %s redeemed for order %s (%d/%s uses)",
            discount.code,
            order_id,
            discount.used_count,
            discount.max_uses or "unlimited",
        )
        return discount

    def release(self, discount_id: UUID, order_id: UUID) -> bool:
        """Undo the redemption made for `order_id`; False if there was none."""

        released = retry_on_conflict(
            lambda: self._repository.release(discount_id, order_id),
            description=f"discount release for order {order_id}",
        )
        if released:
            logger.info("Discount %s redemption released for order %s", discount_id, order_id)
        return released

    def create_discount(
        self,
        code: str,
        discount_type: DiscountType,
        value: Decimal,
        *,
        min_purchase: Optional[Decimal] = None,
        max_uses: int = 0,
        starts_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
        description: str = "",
    ) -> Discount:
        """
        Create a discount code.

        Raises:
            ValueError: if the code is empty or already exists, value <= 0,
                a percentage exceeds 100, or expires_at is not after starts_at.
        """

        discount = Discount(
            discount_id=uuid4(),
            code=normalize_code(code),
            discount_type=discount_type,
            value=to_money(value),
            min_purchase=to_money(min_purchase) if min_purchase is not None else None,
            max_uses=max_uses,
            used_count=0,
            starts_at=starts_at,
            expires_at=expires_at,
            is_active=is_active,
            description=description,
            created_at=self._clock(),
        )
        self._repository.insert_discount(discount)
        logger.info("Discount %s created (%s %s)", discount.code, discount.discount_type.value, discount.value)
        return discount

    def delete_discount(self, discount_id: UUID) -> None:
        """
        Raises:
            DiscountNotFound: if no discount has this id
        """

        if not self._repository.delete_discount(discount_id):
            raise DiscountNotFound(discount_id)
        logger.info("Discount %s deleted", discount_id)

    def list_discounts(self) -> List[Discount]:
        return self._repository.list_discounts()


__all__ = ["DiscountEngine"]
