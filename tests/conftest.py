"""
Pytest configuration and shared fixtures.

This file adds the parent directory to the Python path so that tests
can import from the domain, repositories, services and api modules, and
provides an in-memory service graph driven by a fixed clock.
"""

import sys
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path
from typing import Callable, List, Optional, Type
from uuid import UUID, uuid4

import pytest

# Add the project root to the Python path
# so tests can import domain, repositories, etc.
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from domain.events import DomainEvent  # noqa: E402
from domain.product import Product  # noqa: E402
from domain.shipping import ShippingInfo, ShippingMethod  # noqa: E402
from repositories.memory import InMemoryStore  # noqa: E402
from services.event_bus import EventBus  # noqa: E402
from services.order_service import OrderRepositories, OrderService  # noqa: E402
from services.payment_gateway import ManualPaymentGateway  # noqa: E402
from services.settings import LifecycleSettings  # noqa: E402

START = datetime(2025, 3, 1, 9, 0, 0, tzinfo=timezone.utc)


class FixedClock:
    """Clock that only moves when a test advances it."""

    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class EventRecorder:
    """Subscriber that keeps every published event in order."""

    def __init__(self) -> None:
        self.events: List[DomainEvent] = []

    def __call__(self, event: DomainEvent) -> None:
        self.events.append(event)

    def of_type(self, event_type: Type[DomainEvent]) -> List[DomainEvent]:
        return [e for e in self.events if isinstance(e, event_type)]

    def clear(self) -> None:
        self.events.clear()


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock()


@pytest.fixture
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture
def events() -> EventBus:
    return EventBus()


@pytest.fixture
def recorder(events: EventBus) -> EventRecorder:
    recorder = EventRecorder()
    events.subscribe(DomainEvent, recorder)
    return recorder


@pytest.fixture
def settings() -> LifecycleSettings:
    return LifecycleSettings()


@pytest.fixture
def gateway() -> ManualPaymentGateway:
    return ManualPaymentGateway()


@pytest.fixture
def service(store, gateway, settings, events, clock) -> OrderService:
    return OrderService(
        OrderRepositories.from_store(store),
        gateway=gateway,
        settings=settings,
        events=events,
        clock=clock,
    )


@pytest.fixture
def make_product(store: InMemoryStore, clock: FixedClock) -> Callable[..., Product]:
    def _make(
        name: str = "Brake Pad Set",
        price: str = "100.00",
        stock: int = 10,
        threshold: int = 2,
        product_id: Optional[UUID] = None,
    ) -> Product:
        return store.add_product(
            Product(
                product_id=product_id or uuid4(),
                name=name,
                price=Decimal(price),
                stock_quantity=stock,
                low_stock_threshold=threshold,
                updated_at=clock(),
            )
        )

    return _make


@pytest.fixture
def shipping() -> ShippingInfo:
    return ShippingInfo(
        method=ShippingMethod.STANDARD,
        recipient_name="Juan Dela Cruz",
        address_line="123 Rizal St.",
        city="Quezon City",
        province="Metro Manila",
        postal_code="1100",
        phone="09171234567",
    )


@pytest.fixture
def pickup() -> ShippingInfo:
    return ShippingInfo(method=ShippingMethod.PICKUP, recipient_name="Juan Dela Cruz")


@pytest.fixture
def customer_id() -> UUID:
    return UUID("00000000-0000-0000-0000-0000000000c1")
