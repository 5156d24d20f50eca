"""
Tests for `services/order_state_machine.py` and `services/catalog_guard_service.py`
through the OrderService facade.

Covers contract rules:
- Stock is reserved when an order is paid, all-or-nothing across line items.
- Confirming payment is idempotent: no double reservation, no double capture.
- A failed capture leaves the order pending with stock and discount released,
  unless a retry already paid the order.
- Cancelling a paid order restocks every line with reason "returned", once.
- The discount use is kept on cancel unless release_discount_on_cancel is set.
- Only table edges are accepted; a version conflict is retried once.
- Returns are eligible for 7 days after completion.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Optional
from uuid import UUID

import pytest

from domain.discount import DiscountType
from domain.errors import (
    ConcurrencyConflict,
    IllegalTransition,
    OutOfStock,
    PaymentCaptureFailed,
)
from domain.events import LowStockAlert, OrderCreated, OrderStatusChanged, StockChanged
from domain.order import GuestInfo, LineItemRequest, OrderStatus
from domain.product import Product
from domain.stock import AdjustmentReason
from repositories.memory import InMemoryStore
from services.event_bus import EventBus
from services.order_service import OrderRepositories, OrderService
from services.payment_gateway import ManualPaymentGateway, PaymentGatewayError, PaymentResult
from services.settings import LifecycleSettings


class FlakyGateway(ManualPaymentGateway):
    """Declines the first `failures` captures, then behaves like the manual gateway."""

    def __init__(self, failures: int = 1) -> None:
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def capture(self, *, order_id, amount, currency, idempotency_key) -> PaymentResult:
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise PaymentGatewayError("card declined")
        return super().capture(order_id=order_id, amount=amount, currency=currency, idempotency_key=idempotency_key)


class ConflictOnceStore(InMemoryStore):
    """Fails the next `conflicts` order updates with a version conflict."""

    def __init__(self, conflicts: int = 1) -> None:
        super().__init__()
        self.conflicts = conflicts

    def update_order(self, order, *, expected_version: int) -> None:
        if self.conflicts > 0:
            self.conflicts -= 1
            raise ConcurrencyConflict(f"Order {order.order_id} was modified concurrently")
        super().update_order(order, expected_version=expected_version)


def _build(store: InMemoryStore, clock, gateway=None, settings: Optional[LifecycleSettings] = None) -> OrderService:
    return OrderService(
        OrderRepositories.from_store(store), gateway=gateway, settings=settings, events=EventBus(), clock=clock
    )


def _add_product(store: InMemoryStore, clock, name: str = "Chain Kit", stock: int = 10) -> Product:
    return store.add_product(
        Product(
            product_id=UUID(int=len(store.list_products()) + 1),
            name=name,
            price=Decimal("100.00"),
            stock_quantity=stock,
            low_stock_threshold=2,
            updated_at=clock(),
        )
    )


def _order(service: OrderService, shipping, customer_id, *lines, discount_code=None):
    return service.create_order(
        [LineItemRequest(product_id=p.product_id, quantity=q) for p, q in lines],
        shipping,
        discount_code,
        user_id=customer_id,
    )


def test_paid_order_reserves_stock_and_second_order_is_out_of_stock(
    service, make_product, shipping, customer_id, recorder
) -> None:
    """Stock 5, threshold 2: pay 4, a competing order for 2 fails, cancel restores 5."""

    product = make_product(name="Brake Pad Set", stock=5, threshold=2)
    first = _order(service, shipping, customer_id, (product, 4))
    second = _order(service, shipping, customer_id, (product, 2))

    paid = service.confirm_payment(first.order_id)
    assert paid.status is OrderStatus.PAID
    assert service.current_stock(product.product_id) == 1
    assert len(recorder.of_type(LowStockAlert)) == 1

    with pytest.raises(OutOfStock) as excinfo:
        service.confirm_payment(second.order_id)
    assert excinfo.value.product_id == product.product_id
    assert excinfo.value.available == 1
    assert service.get_order(second.order_id).status is OrderStatus.PENDING
    assert service.current_stock(product.product_id) == 1

    cancelled = service.cancel_order(first.order_id)
    assert cancelled.status is OrderStatus.CANCELLED
    assert service.current_stock(product.product_id) == 5
    assert service.stock_history(product.product_id)[0].reason is AdjustmentReason.RETURNED
    assert service.audit_stock(product.product_id).is_consistent


def test_create_order_prices_from_catalog_and_publishes(service, make_product, shipping, customer_id, recorder) -> None:
    product = make_product(price="350.00", stock=10)

    order = _order(service, shipping, customer_id, (product, 2))

    assert order.status is OrderStatus.PENDING
    assert order.line_items[0].unit_price == Decimal("350.00")
    assert order.subtotal == Decimal("700.00")
    assert order.shipping_fee == Decimal("150.00")
    assert order.total == Decimal("850.00")
    # Creating an order only checks stock.
    assert service.current_stock(product.product_id) == 10
    assert [type(e) for e in recorder.events] == [OrderCreated]


def test_create_order_rejects_quantity_above_stock(service, make_product, shipping, customer_id) -> None:
    product = make_product(stock=3)
    with pytest.raises(OutOfStock):
        _order(service, shipping, customer_id, (product, 2), (product, 2))


def test_create_order_requires_user_or_guest(service, make_product, pickup) -> None:
    product = make_product()
    with pytest.raises(ValueError):
        service.create_order([LineItemRequest(product_id=product.product_id, quantity=1)], pickup)

    order = service.create_order(
        [LineItemRequest(product_id=product.product_id, quantity=1)],
        pickup,
        guest=GuestInfo(name="Maria Santos", email="maria@example.com"),
    )
    assert order.user_id is None
    assert order.shipping_fee == Decimal("0.00")


def test_reservation_is_all_or_nothing(service, make_product, shipping, customer_id) -> None:
    chain = make_product(name="Chain Kit", stock=10)
    sprocket = make_product(name="Sprocket", stock=10)
    order = _order(service, shipping, customer_id, (chain, 3), (sprocket, 5))

    # Stock drops after checkout but before payment.
    service.adjust_stock(sprocket.product_id, -8, AdjustmentReason.DAMAGED)

    with pytest.raises(OutOfStock) as excinfo:
        service.confirm_payment(order.order_id)

    assert excinfo.value.product_id == sprocket.product_id
    assert service.current_stock(chain.product_id) == 10
    assert service.current_stock(sprocket.product_id) == 2
    assert service.guard.held_quantities(order) == {chain.product_id: 0, sprocket.product_id: 0}
    assert service.get_order(order.order_id).status is OrderStatus.PENDING

    # Once restocked, the same order can be paid.
    service.adjust_stock(sprocket.product_id, 10, AdjustmentReason.RESTOCK)
    service.confirm_payment(order.order_id)
    assert service.current_stock(chain.product_id) == 7
    assert service.current_stock(sprocket.product_id) == 7


def test_confirm_payment_is_idempotent(service, make_product, shipping, customer_id, gateway) -> None:
    product = make_product(stock=10)
    order = _order(service, shipping, customer_id, (product, 3))

    first = service.confirm_payment(order.order_id)
    again = service.confirm_payment(order.order_id)

    assert again == first
    assert first.payment_reference == f"MANUAL_CAPTURE_{order.order_id}"
    assert len(gateway.captures) == 1
    assert service.current_stock(product.product_id) == 7


def test_confirm_payment_after_partial_reservation_takes_only_the_rest(
    service, make_product, shipping, customer_id
) -> None:
    product = make_product(stock=10)
    order = _order(service, shipping, customer_id, (product, 4))

    # A previous attempt reserved stock and then died before the status change.
    service.guard.reserve_for_order(order)
    assert service.current_stock(product.product_id) == 6

    service.confirm_payment(order.order_id)
    assert service.current_stock(product.product_id) == 6
    assert service.guard.held_quantities(order) == {product.product_id: 4}


def test_failed_capture_releases_stock_and_discount(store, clock, shipping, customer_id) -> None:
    gateway = FlakyGateway(failures=1)
    service = _build(store, clock, gateway=gateway)
    product = _add_product(store, clock, stock=10)
    service.create_discount("SAVE10", DiscountType.PERCENTAGE, Decimal("10"), max_uses=1)
    order = _order(service, shipping, customer_id, (product, 10), discount_code="SAVE10")

    with pytest.raises(PaymentCaptureFailed):
        service.confirm_payment(order.order_id)

    assert service.get_order(order.order_id).status is OrderStatus.PENDING
    assert service.current_stock(product.product_id) == 10
    assert service.discounts.get_by_code("SAVE10").used_count == 0
    assert [a.reason for a in service.stock_history(product.product_id)][:2] == [
        AdjustmentReason.CORRECTION,
        AdjustmentReason.SALE,
    ]

    paid = service.confirm_payment(order.order_id)
    assert paid.status is OrderStatus.PAID
    assert gateway.attempts == 2
    assert service.current_stock(product.product_id) == 0
    assert service.discounts.get_by_code("SAVE10").used_count == 1


def test_order_cancelled_during_capture_gives_everything_back(store, clock, shipping, customer_id) -> None:
    service: Optional[OrderService] = None

    class CancellingGateway(ManualPaymentGateway):
        def capture(self, *, order_id, amount, currency, idempotency_key) -> PaymentResult:
            service.cancel_order(order_id, actor="customer")
            return super().capture(
                order_id=order_id, amount=amount, currency=currency, idempotency_key=idempotency_key
            )

    service = _build(store, clock, gateway=CancellingGateway())
    product = _add_product(store, clock, stock=5)
    order = _order(service, shipping, customer_id, (product, 2))

    with pytest.raises(IllegalTransition):
        service.confirm_payment(order.order_id)

    assert service.get_order(order.order_id).status is OrderStatus.CANCELLED
    assert service.current_stock(product.product_id) == 5


def test_failed_capture_after_retry_paid_keeps_holds(store, clock, shipping, customer_id) -> None:
    service: Optional[OrderService] = None

    class RetryDuringCaptureGateway(ManualPaymentGateway):
        """The first capture triggers a checkout retry, then times out."""

        def __init__(self) -> None:
            super().__init__()
            self.calls = 0

        def capture(self, *, order_id, amount, currency, idempotency_key) -> PaymentResult:
            self.calls += 1
            if self.calls == 1:
                service.confirm_payment(order_id)
                raise PaymentGatewayError("timeout")
            return super().capture(
                order_id=order_id, amount=amount, currency=currency, idempotency_key=idempotency_key
            )

    gateway = RetryDuringCaptureGateway()
    service = _build(store, clock, gateway=gateway)
    product = _add_product(store, clock, stock=5)
    service.create_discount("ONCE", DiscountType.FIXED, Decimal("50"), max_uses=1)
    order = _order(service, shipping, customer_id, (product, 4), discount_code="once")

    result = service.confirm_payment(order.order_id)

    assert result.status is OrderStatus.PAID
    assert result.payment_reference == f"MANUAL_CAPTURE_{order.order_id}"
    assert service.get_order(order.order_id).status is OrderStatus.PAID
    assert service.current_stock(product.product_id) == 1
    assert service.discounts.get_by_code("ONCE").used_count == 1
    assert len(gateway.captures) == 1


def test_cancel_pending_order_touches_no_stock(service, make_product, shipping, customer_id) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 2))

    cancelled = service.cancel_order(order.order_id)

    assert cancelled.status is OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None
    assert len(service.stock_history(product.product_id)) == 1


def test_cancel_paid_order_restocks_once(service, make_product, shipping, customer_id) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 2), (product, 1))
    service.confirm_payment(order.order_id)
    service.cancel_order(order.order_id)

    with pytest.raises(IllegalTransition):
        service.cancel_order(order.order_id)

    assert service.current_stock(product.product_id) == 5
    returned = [a for a in service.stock_history(product.product_id) if a.reason is AdjustmentReason.RETURNED]
    assert len(returned) == 1
    assert returned[0].quantity_delta == 3
    assert returned[0].order_id == order.order_id


def test_cancel_keeps_discount_use_by_default(service, make_product, shipping, customer_id) -> None:
    product = make_product(stock=20)
    service.create_discount("save10", DiscountType.PERCENTAGE, Decimal("10"), min_purchase=Decimal("500"))
    order = _order(service, shipping, customer_id, (product, 10), discount_code="save10")
    assert order.discount_amount == Decimal("100.00")

    service.confirm_payment(order.order_id)
    service.cancel_order(order.order_id)

    assert service.discounts.get_by_code("SAVE10").used_count == 1


def test_cancel_releases_discount_when_configured(store, clock, shipping, customer_id) -> None:
    service = _build(store, clock, settings=LifecycleSettings(release_discount_on_cancel=True))
    product = _add_product(store, clock, stock=20)
    service.create_discount("SAVE10", DiscountType.PERCENTAGE, Decimal("10"))
    order = _order(service, shipping, customer_id, (product, 10), discount_code="SAVE10")

    service.confirm_payment(order.order_id)
    service.cancel_order(order.order_id)

    assert service.discounts.get_by_code("SAVE10").used_count == 0


def test_fulfilment_path_and_tracking_number(service, make_product, shipping, customer_id, recorder) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 1))

    service.advance_status(order.order_id, OrderStatus.PAID)
    with pytest.raises(IllegalTransition):
        service.advance_status(order.order_id, OrderStatus.SHIPPED)
    service.advance_status(order.order_id, OrderStatus.PREPARING)
    with pytest.raises(ValueError):
        service.advance_status(order.order_id, OrderStatus.COMPLETED, tracking_number="LBC-1")
    shipped = service.advance_status(order.order_id, OrderStatus.SHIPPED, tracking_number="LBC-1")
    completed = service.advance_status(order.order_id, OrderStatus.COMPLETED)

    assert shipped.tracking_number == "LBC-1"
    assert completed.version == 5
    assert service.current_stock(product.product_id) == 4
    transitions = [(e.from_status, e.to_status) for e in recorder.of_type(OrderStatusChanged)]
    assert transitions == [
        ("pending", "paid"),
        ("paid", "preparing"),
        ("preparing", "shipped"),
        ("shipped", "completed"),
    ]


@pytest.mark.parametrize("status", [OrderStatus.PREPARING, OrderStatus.SHIPPED, OrderStatus.COMPLETED])
def test_cannot_cancel_after_preparation_starts(service, make_product, shipping, customer_id, status) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 1))
    service.confirm_payment(order.order_id)
    for step in (OrderStatus.PREPARING, OrderStatus.SHIPPED, OrderStatus.COMPLETED):
        service.advance_status(order.order_id, step)
        if step is status:
            break

    with pytest.raises(IllegalTransition):
        service.cancel_order(order.order_id)
    assert service.get_order(order.order_id).status is status
    assert service.current_stock(product.product_id) == 4


def test_cannot_pay_cancelled_order(service, make_product, shipping, customer_id, gateway) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 1))
    service.cancel_order(order.order_id)

    with pytest.raises(IllegalTransition):
        service.confirm_payment(order.order_id)
    assert gateway.captures == ()
    assert service.current_stock(product.product_id) == 5


def test_version_conflict_is_retried_once(clock, shipping, customer_id) -> None:
    store = ConflictOnceStore(conflicts=0)
    service = _build(store, clock)
    product = _add_product(store, clock, stock=5)
    order = _order(service, shipping, customer_id, (product, 1))
    service.confirm_payment(order.order_id)

    store.conflicts = 1
    preparing = service.advance_status(order.order_id, OrderStatus.PREPARING)
    assert preparing.status is OrderStatus.PREPARING

    store.conflicts = 2
    with pytest.raises(ConcurrencyConflict):
        service.advance_status(order.order_id, OrderStatus.SHIPPED)
    assert service.get_order(order.order_id).status is OrderStatus.PREPARING


def test_return_window(service, make_product, shipping, customer_id, clock) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 1))
    for step in (OrderStatus.PAID, OrderStatus.PREPARING, OrderStatus.SHIPPED):
        service.advance_status(order.order_id, step)
    assert service.is_return_eligible(order.order_id) is False

    service.advance_status(order.order_id, OrderStatus.COMPLETED)
    clock.advance(days=7)
    assert service.is_return_eligible(order.order_id) is True
    clock.advance(seconds=1)
    assert service.is_return_eligible(order.order_id) is False


def test_paid_event_follows_stock_events(service, make_product, shipping, customer_id, recorder) -> None:
    product = make_product(stock=5)
    order = _order(service, shipping, customer_id, (product, 1))
    recorder.clear()

    service.confirm_payment(order.order_id)

    assert [type(e) for e in recorder.events] == [StockChanged, OrderStatusChanged]
