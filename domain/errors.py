"""
Domain: error taxonomy for the order lifecycle and inventory ledger.

Every business failure is a recoverable, caller-visible error. Each carries a
stable `code` (used as the `error` field of API error responses) and an HTTP
status hint so the API boundary can render a specific message instead of a 500.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID


class OrderLifecycleError(Exception):
    """Base class for all business errors raised by the core."""

    code: str = "order_lifecycle_error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(message)


# ----------------------------------------------------------------------------
# Lookup failures
# ----------------------------------------------------------------------------

class ProductNotFound(OrderLifecycleError):
    code = "product_not_found"
    status_code = 404

    def __init__(self, product_id: UUID) -> None:
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class OrderNotFound(OrderLifecycleError):
    code = "order_not_found"
    status_code = 404

    def __init__(self, order_id: UUID) -> None:
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class DiscountNotFound(OrderLifecycleError):
    code = "discount_not_found"
    status_code = 404

    def __init__(self, discount_id: UUID) -> None:
        self.discount_id = discount_id
        super().__init__(f"Discount not found: {discount_id}")


# ----------------------------------------------------------------------------
# Stock
# ----------------------------------------------------------------------------

class InsufficientStock(OrderLifecycleError):
    """An adjustment would drive a product's stock below zero."""

    code = "insufficient_stock"
    status_code = 409

    def __init__(self, product_id: UUID, current_stock: int, delta: int) -> None:
        self.product_id = product_id
        self.current_stock = current_stock
        self.delta = delta
        super().__init__(
            f"Insufficient stock for product {product_id}. "
            f"Current: {current_stock}, requested change: {delta}"
        )


class OutOfStock(OrderLifecycleError):
    """A reservation for an order could not be fulfilled for one line item."""

    code = "out_of_stock"
    status_code = 409

    def __init__(self, product_id: UUID, requested: int, available: Optional[int] = None) -> None:
        self.product_id = product_id
        self.requested = requested
        self.available = available
        detail = f"Requested: {requested}"
        if available is not None:
            detail += f", Available: {available}"
        super().__init__(f"Product {product_id} is out of stock. {detail}")


# ----------------------------------------------------------------------------
# Order state
# ----------------------------------------------------------------------------

class IllegalTransition(OrderLifecycleError):
    code = "illegal_transition"
    status_code = 409

    def __init__(self, order_id: UUID, from_status: str, to_status: str) -> None:
        self.order_id = order_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Order {order_id} cannot transition from '{from_status}' to '{to_status}'"
        )


# ----------------------------------------------------------------------------
# Discounts
# ----------------------------------------------------------------------------

class DiscountInvalid(OrderLifecycleError):
    code = "discount_invalid"

    def __init__(self, code: str, reason: str = "Discount code is not valid") -> None:
        self.discount_code = code
        super().__init__(f"{reason}: {code}")


class DiscountExpired(OrderLifecycleError):
    code = "discount_expired"

    def __init__(self, code: str, reason: str = "Discount code has expired") -> None:
        self.discount_code = code
        super().__init__(f"{reason}: {code}")


class DiscountExhausted(OrderLifecycleError):
    code = "discount_exhausted"
    status_code = 409

    def __init__(self, code: str, max_uses: int) -> None:
        self.discount_code = code
        self.max_uses = max_uses
        super().__init__(f"Discount code {code} has reached its usage limit ({max_uses})")


class MinPurchaseNotMet(OrderLifecycleError):
    code = "min_purchase_not_met"

    def __init__(self, code: str, min_purchase: Decimal, subtotal: Decimal) -> None:
        self.discount_code = code
        self.min_purchase = min_purchase
        self.subtotal = subtotal
        super().__init__(
            f"Discount code {code} requires a minimum purchase of {min_purchase} "
            f"(order subtotal: {subtotal})"
        )


# ----------------------------------------------------------------------------
# Refunds and payments
# ----------------------------------------------------------------------------

class RefundExceedsOrderTotal(OrderLifecycleError):
    code = "refund_exceeds_order_total"
    status_code = 409

    def __init__(self, order_id: UUID, requested: Decimal, already_refunded: Decimal, total: Decimal) -> None:
        self.order_id = order_id
        self.requested = requested
        self.already_refunded = already_refunded
        self.total = total
        super().__init__(
            f"Refund of {requested} for order {order_id} exceeds the refundable balance "
            f"(total: {total}, already refunded: {already_refunded})"
        )


class OrderNotRefundable(OrderLifecycleError):
    code = "order_not_refundable"
    status_code = 409

    def __init__(self, order_id: UUID, status: str) -> None:
        self.order_id = order_id
        self.status = status
        super().__init__(f"Order {order_id} cannot be refunded while '{status}'")


class PaymentCaptureFailed(OrderLifecycleError):
    code = "payment_capture_failed"
    status_code = 402


class PaymentRefundFailed(OrderLifecycleError):
    code = "payment_refund_failed"
    status_code = 502


# ----------------------------------------------------------------------------
# Internal, transient
# ----------------------------------------------------------------------------

class ConcurrencyConflict(OrderLifecycleError):
    """
    A lock or version conflict detected at write time.

    Not a business error: services retry once with the same input before
    surfacing whatever business error the retry produces.
    """

    code = "concurrency_conflict"
    status_code = 409


__all__ = [
    "OrderLifecycleError",
    "ProductNotFound",
    "OrderNotFound",
    "DiscountNotFound",
    "InsufficientStock",
    "OutOfStock",
    "IllegalTransition",
    "DiscountInvalid",
    "DiscountExpired",
    "DiscountExhausted",
    "MinPurchaseNotMet",
    "RefundExceedsOrderTotal",
    "OrderNotRefundable",
    "PaymentCaptureFailed",
    "PaymentRefundFailed",
    "ConcurrencyConflict",
]
