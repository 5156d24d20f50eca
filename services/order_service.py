"""
Order service (application facade).

The entry point used by the HTTP layer and back-office scripts. Wires the
stock ledger, catalog guard, discount engine, order state machine and refund
processor together and exposes the store's operations:

- checkout: create_order, quote_discount, confirm_payment
- fulfilment: advance_status, cancel_order, is_return_eligible
- inventory: adjust_stock, bulk_adjust_stock, current_stock, stock_history,
  low_stock_products
- money: refund_order, list_refunds
- discounts: create_discount, delete_discount, list_discounts
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, List, Optional, Sequence
from uuid import UUID

from domain.discount import Discount, DiscountQuote, DiscountType
from domain.errors import OutOfStock
from domain.events import OrderCreated
from domain.money import ZERO, sum_money
from domain.order import GuestInfo, LineItem, LineItemRequest, Order, OrderStatus
from domain.product import Product
from domain.refund import Refund
from domain.shipping import ShippingInfo
from domain.stock import AdjustmentReason, StockAdjustment
from domain.time import Clock, utc_now
from repositories.base import DiscountRepository, OrderRepository, RefundRepository, StockRepository
from services.catalog_guard_service import ProductCatalogGuard
from services.discount_service import DiscountEngine
from services.event_bus import EventBus
from services.order_state_machine import OrderStateMachine
from services.payment_gateway import ManualPaymentGateway, PaymentGateway
from services.refund_service import RefundProcessor
from services.settings import LifecycleSettings
from services.stock_ledger_service import BulkAdjustmentItem, BulkAdjustmentResult, StockAudit, StockLedger

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class OrderRepositories:
    """The persistence ports the service graph needs."""

    stock: StockRepository
    orders: OrderRepository
    discounts: DiscountRepository
    refunds: RefundRepository

    @staticmethod
    def from_store(store: Any) -> "OrderRepositories":
        """Use one object (e.g. InMemoryStore) for every port."""
        return OrderRepositories(stock=store, orders=store, discounts=store, refunds=store)


class OrderService:
    def __init__(
        self,
        repositories: OrderRepositories,
        gateway: Optional[PaymentGateway] = None,
        settings: Optional[LifecycleSettings] = None,
        events: Optional[EventBus] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.settings = settings or LifecycleSettings()
        self.events = events or EventBus()
        self.gateway = gateway or ManualPaymentGateway()
        self._repositories = repositories
        self._clock = clock

        self.ledger = StockLedger(repositories.stock, self.events, clock)
        self.guard = ProductCatalogGuard(self.ledger)
        self.discounts = DiscountEngine(repositories.discounts, clock)
        self.state_machine = OrderStateMachine(
            repositories.orders, self.guard, self.discounts, self.gateway, self.events, self.settings, clock
        )
        self.refunds = RefundProcessor(
            repositories.orders, repositories.refunds, self.gateway, self.events, self.settings, clock
        )

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def create_order(
        self,
        line_items: Sequence[LineItemRequest],
        shipping_info: ShippingInfo,
        discount_code: Optional[str] = None,
        *,
        user_id: Optional[UUID] = None,
        guest: Optional[GuestInfo] = None,
    ) -> Order:
        """
        Create a pending order priced from the current catalog.

        Stock is only checked here, not taken; it is reserved when payment
        is confirmed.

        Raises:
            ProductNotFound: if a line item references an unknown product
            OutOfStock: if a product does not currently have enough stock
            DiscountInvalid / DiscountExpired / DiscountExhausted / MinPurchaseNotMet
            ValueError: if there are no line items, or neither user_id nor guest is given
        """

        if not line_items:
            raise ValueError("An order needs at least one line item")
        if user_id is None and guest is None:
            raise ValueError("An order needs either a user_id or guest details")

        priced: List[LineItem] = []
        requested: dict = {}
        for request in line_items:
            product = self.ledger.product(request.product_id)
            priced.append(
                LineItem(
                    product_id=product.product_id,
                    product_name=product.name,
                    quantity=request.quantity,
                    unit_price=product.price,
                )
            )
            requested[product.product_id] = requested.get(product.product_id, 0) + request.quantity
            if product.stock_quantity < requested[product.product_id]:
                raise OutOfStock(product.product_id, requested[product.product_id], product.stock_quantity)

        subtotal = sum_money(item.line_total for item in priced)
        quote: Optional[DiscountQuote] = None
        if discount_code:
            quote = self.discounts.price(subtotal, discount_code)

        order = Order.create(
            line_items=priced,
            shipping=shipping_info,
            shipping_fee=self.settings.shipping_rates.fee_for(shipping_info.method, subtotal),
            tax_rate=self.settings.tax_rate,
            created_at=self._clock(),
            discount_id=quote.discount_id if quote else None,
            discount_code=quote.code if quote else None,
            discount_amount=quote.discount_amount if quote else ZERO,
            user_id=user_id,
            guest=guest,
        )
        self._repositories.orders.insert_order(order)

        logger.info("Order %s created: %d line(s), total %s", order.order_id, len(priced), order.total)
        self.events.publish(
            OrderCreated(order_id=order.order_id, user_id=order.user_id, total=order.total, occurred_at=order.created_at)
        )
        return order

    def quote_discount(self, subtotal: Decimal, code: str) -> DiscountQuote:
        return self.discounts.price(subtotal, code)

    def confirm_payment(self, order_id: UUID, actor: str = "checkout") -> Order:
        return self.state_machine.confirm_payment(order_id, actor=actor)

    # ------------------------------------------------------------------
    # Fulfilment
    # ------------------------------------------------------------------

    def get_order(self, order_id: UUID) -> Order:
        return self.state_machine.get(order_id)

    def advance_status(
        self, order_id: UUID, next_status: OrderStatus, tracking_number: Optional[str] = None, actor: str = "staff"
    ) -> Order:
        return self.state_machine.advance(order_id, next_status, tracking_number=tracking_number, actor=actor)

    def cancel_order(self, order_id: UUID, actor: str = "system") -> Order:
        return self.state_machine.cancel(order_id, actor=actor)

    def is_return_eligible(self, order_id: UUID, at: Optional[datetime] = None) -> bool:
        return self.state_machine.is_return_eligible(order_id, at)

    # ------------------------------------------------------------------
    # Inventory
    # ------------------------------------------------------------------

    def adjust_stock(
        self, product_id: UUID, delta: int, reason: AdjustmentReason, note: str = "", actor: str = "staff"
    ) -> StockAdjustment:
        return self.ledger.record_adjustment(product_id, delta, reason, note, actor)

    def bulk_adjust_stock(self, items: Sequence[BulkAdjustmentItem], actor: str = "staff") -> List[BulkAdjustmentResult]:
        return self.ledger.bulk_adjust(items, actor)

    def current_stock(self, product_id: UUID) -> int:
        return self.ledger.current_stock(product_id)

    def stock_history(self, product_id: Optional[UUID] = None, limit: Optional[int] = None) -> List[StockAdjustment]:
        return self.ledger.history(product_id, limit or self.settings.adjustment_history_limit)

    def low_stock_products(self) -> List[Product]:
        return self.ledger.low_stock_products()

    def audit_stock(self, product_id: UUID) -> StockAudit:
        return self.ledger.audit(product_id)

    # ------------------------------------------------------------------
    # Refunds
    # ------------------------------------------------------------------

    def refund_order(self, order_id: UUID, amount: Decimal, reason: str, actor: str) -> Refund:
        return self.refunds.refund(order_id, amount, reason, actor)

    def list_refunds(self, order_id: UUID) -> List[Refund]:
        return self.refunds.list_refunds(order_id)

    # ------------------------------------------------------------------
    # Discounts
    # ------------------------------------------------------------------

    def create_discount(
        self,
        code: str,
        discount_type: DiscountType,
        value: Decimal,
        **options: Any,
    ) -> Discount:
        return self.discounts.create_discount(code, discount_type, value, **options)

    def delete_discount(self, discount_id: UUID) -> None:
        self.discounts.delete_discount(discount_id)

    def list_discounts(self) -> List[Discount]:
        return self.discounts.list_discounts()


def build_supabase_order_service(
    gateway: Optional[PaymentGateway] = None,
    settings: Optional[LifecycleSettings] = None,
    events: Optional[EventBus] = None,
) -> OrderService:
    """Service graph over the Supabase repositories (credentials read lazily)."""

    from repositories.discount_repository import SupabaseDiscountRepository
    from repositories.order_repository import SupabaseOrderRepository
    from repositories.refund_repository import SupabaseRefundRepository
    from repositories.stock_repository import SupabaseStockRepository

    repositories = OrderRepositories(
        stock=SupabaseStockRepository(),
        orders=SupabaseOrderRepository(),
        discounts=SupabaseDiscountRepository(),
        refunds=SupabaseRefundRepository(),
    )
    return OrderService(repositories, gateway=gateway, settings=settings or LifecycleSettings.from_env(), events=events)


__all__ = ["OrderService", "OrderRepositories", "build_supabase_order_service"]
