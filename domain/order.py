"""
Domain: Order entity and its status transition table.

Rules implemented here:
- total = subtotal - discount_amount + shipping_fee + tax, and total >= 0.
- A discount_amount is always recorded with the discount_code that priced it.
- Line item unit prices are captured at order creation and never re-read from
  the catalog afterwards.
- Status moves only along ALLOWED_TRANSITIONS:

      pending -> paid -> preparing -> shipped -> completed
      pending -> cancelled
      paid    -> cancelled

  `completed` and `cancelled` are terminal. Anything else is an IllegalTransition
  and leaves the order untouched.
- Every transition bumps `version`, which repositories use as an optimistic
  concurrency check.

Side effects of transitions (stock, discounts) are orchestrated by
services.order_state_machine; this module is pure.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple
from uuid import UUID, uuid4

from .errors import IllegalTransition
from .money import ZERO, require_non_negative, sum_money, to_money
from .shipping import ShippingInfo
from .time import require_optional_utc_timestamp, require_utc_timestamp


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    PREPARING = "preparing"
    SHIPPED = "shipped"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


ALLOWED_TRANSITIONS: Dict[OrderStatus, FrozenSet[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.PREPARING, OrderStatus.CANCELLED}),
    OrderStatus.PREPARING: frozenset({OrderStatus.SHIPPED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.COMPLETED}),
    OrderStatus.COMPLETED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

TERMINAL_STATES: FrozenSet[OrderStatus] = frozenset(
    status for status, targets in ALLOWED_TRANSITIONS.items() if not targets
)

# Refunds are only issued once an order can no longer move.
REFUNDABLE_STATES: FrozenSet[OrderStatus] = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})


def can_transition(from_status: OrderStatus, to_status: OrderStatus) -> bool:
    return to_status in ALLOWED_TRANSITIONS.get(from_status, frozenset())


@dataclass(frozen=True, slots=True)
class LineItem:
    """A purchased product, quantity and the unit price frozen at checkout."""

    product_id: UUID
    product_name: str
    quantity: int
    unit_price: Decimal

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")
        require_non_negative("unit_price", self.unit_price)

    @property
    def line_total(self) -> Decimal:
        return to_money(self.unit_price * self.quantity)


@dataclass(frozen=True, slots=True)
class LineItemRequest:
    """What a customer asks for at checkout; priced against the catalog later."""

    product_id: UUID
    quantity: int

    def __post_init__(self) -> None:
        if self.quantity <= 0:
            raise ValueError("quantity must be > 0")


@dataclass(frozen=True, slots=True)
class GuestInfo:
    name: str
    email: str


def merge_quantities(items: Iterable[LineItem]) -> Dict[UUID, int]:
    """Total quantity per product across (possibly repeated) line items."""

    merged: Dict[UUID, int] = {}
    for item in items:
        merged[item.product_id] = merged.get(item.product_id, 0) + item.quantity
    return merged


@dataclass(frozen=True, slots=True)
class Order:
    order_id: UUID
    line_items: Tuple[LineItem, ...]
    subtotal: Decimal
    discount_amount: Decimal
    shipping_fee: Decimal
    tax: Decimal
    total: Decimal
    status: OrderStatus
    shipping: ShippingInfo
    created_at: datetime
    user_id: Optional[UUID] = None
    guest: Optional[GuestInfo] = None
    discount_id: Optional[UUID] = None
    discount_code: Optional[str] = None
    tracking_number: Optional[str] = None
    payment_reference: Optional[str] = None
    version: int = 1
    updated_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None

    def __post_init__(self) -> None:
        require_utc_timestamp("created_at", self.created_at)
        for name in ("updated_at", "paid_at", "completed_at", "cancelled_at"):
            require_optional_utc_timestamp(name, getattr(self, name))

        if not self.line_items:
            raise ValueError("Order must have at least one line item")
        for name in ("subtotal", "discount_amount", "shipping_fee", "tax"):
            require_non_negative(name, getattr(self, name))

        if self.subtotal != sum_money(item.line_total for item in self.line_items):
            raise ValueError("subtotal must equal the sum of line totals")
        if self.discount_amount > self.subtotal:
            raise ValueError("discount_amount must not exceed subtotal")
        expected = to_money(self.subtotal - self.discount_amount + self.shipping_fee + self.tax)
        if self.total != expected:
            raise ValueError("total must equal subtotal - discount_amount + shipping_fee + tax")
        if self.total < 0:
            raise ValueError("total must be >= 0")
        # The code is the snapshot; discount_id may be gone once the discount is deleted.
        if self.discount_amount > 0 and not self.discount_code:
            raise ValueError("discount_amount requires a discount_code")

    @staticmethod
    def create(
        *,
        line_items: Iterable[LineItem],
        shipping: ShippingInfo,
        shipping_fee: Decimal,
        tax_rate: Decimal,
        created_at: datetime,
        discount_id: Optional[UUID] = None,
        discount_code: Optional[str] = None,
        discount_amount: Decimal = ZERO,
        user_id: Optional[UUID] = None,
        guest: Optional[GuestInfo] = None,
        order_id: Optional[UUID] = None,
    ) -> "Order":
        """Build a new pending order, computing subtotal, tax and total."""

        items = tuple(line_items)
        subtotal = sum_money(item.line_total for item in items)
        discount_amount = to_money(discount_amount)
        tax = to_money((subtotal - discount_amount) * tax_rate)
        shipping_fee = to_money(shipping_fee)
        total = to_money(subtotal - discount_amount + shipping_fee + tax)

        return Order(
            order_id=order_id or uuid4(),
            line_items=items,
            subtotal=subtotal,
            discount_amount=discount_amount,
            shipping_fee=shipping_fee,
            tax=tax,
            total=total,
            status=OrderStatus.PENDING,
            shipping=shipping,
            created_at=created_at,
            user_id=user_id,
            guest=guest,
            discount_id=discount_id,
            discount_code=discount_code,
            updated_at=created_at,
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATES

    @property
    def is_refundable(self) -> bool:
        return self.status in REFUNDABLE_STATES

    @property
    def quantities_by_product(self) -> Dict[UUID, int]:
        return merge_quantities(self.line_items)

    def transition_to(
        self,
        to_status: OrderStatus,
        at: datetime,
        *,
        tracking_number: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> "Order":
        """
        Return a copy of this order in `to_status`.

        Raises:
            IllegalTransition: if the edge is not in ALLOWED_TRANSITIONS.
        """

        require_utc_timestamp("at", at)
        if not can_transition(self.status, to_status):
            raise IllegalTransition(self.order_id, self.status.value, to_status.value)

        changes: dict = {"status": to_status, "updated_at": at, "version": self.version + 1}
        if to_status is OrderStatus.PAID:
            changes["paid_at"] = at
            if payment_reference is not None:
                changes["payment_reference"] = payment_reference
        elif to_status is OrderStatus.SHIPPED:
            if tracking_number is not None:
                changes["tracking_number"] = tracking_number
        elif to_status is OrderStatus.COMPLETED:
            changes["completed_at"] = at
        elif to_status is OrderStatus.CANCELLED:
            changes["cancelled_at"] = at
        return replace(self, **changes)

    def is_return_eligible(self, at: datetime, window_days: int) -> bool:
        """True while a completed order is inside its return window."""

        if self.status is not OrderStatus.COMPLETED or self.completed_at is None:
            return False
        return at <= self.completed_at + timedelta(days=window_days)
