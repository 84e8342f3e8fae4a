from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from src.fulfillment.models.domain import (
    CatalogItem,
    Coordinate,
    Coupon,
    Courier,
    Customer,
    ItemOption,
    Order,
    OrderStatus,
    Restaurant,
)
from src.fulfillment.persistence import memory
from src.fulfillment.services.cart import CartStore
from src.fulfillment.services.dispatch import DispatchEngine, EventBus
from src.fulfillment.services.pricing import CouponLedger
from src.fulfillment.services.stats import StatsAggregator

START = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now: datetime = START) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class SequentialIds:
    def __init__(self, prefix: str) -> None:
        self.prefix = prefix
        self.counter = 0

    def __call__(self) -> str:
        self.counter += 1
        return f"{self.prefix}{self.counter}"


def point(latitude: float, longitude: float = 0.0) -> Coordinate:
    return Coordinate(longitude=longitude, latitude=latitude)


@dataclass
class World:
    clock: FakeClock
    catalog: memory.InMemoryCatalog
    restaurants: memory.InMemoryRestaurants
    customers: memory.InMemoryCustomers
    coupons: memory.InMemoryCoupons
    orders: memory.InMemoryOrders
    couriers: memory.InMemoryCouriers
    carts: memory.InMemoryCarts
    assignments: memory.InMemoryAssignments
    events: EventBus


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def world(clock: FakeClock) -> World:
    catalog = memory.InMemoryCatalog()
    catalog.add(
        CatalogItem(
            item_id="burger",
            restaurant_id="R1",
            name="Burger",
            price=100,
            options={"large": ItemOption(option_id="large", name="Large", surcharge=10)},
        ),
        CatalogItem(item_id="fries", restaurant_id="R1", name="Fries", price=50),
        CatalogItem(item_id="sushi", restaurant_id="R2", name="Sushi", price=30),
        CatalogItem(item_id="ghost", restaurant_id="R-unlocated", name="Ghost", price=10),
    )

    restaurants = memory.InMemoryRestaurants()
    restaurants.add(
        Restaurant(restaurant_id="R1", name="Grill", location=point(0.0)),
        Restaurant(restaurant_id="R2", name="Sushi Bar", location=point(0.01)),
        Restaurant(restaurant_id="R-unlocated", name="Ghost Kitchen", location=None),
    )

    customers = memory.InMemoryCustomers()
    customers.add(
        # ~11.12 km from R1
        Customer(customer_id="C-far", name="Far", location=point(0.1)),
        # ~3.34 km from R1
        Customer(customer_id="C-near", name="Near", location=point(0.03)),
        Customer(customer_id="C-home", name="Same Block", location=point(0.0)),
        Customer(customer_id="C-nowhere", name="Unlocated", location=None),
    )

    coupons = memory.InMemoryCoupons()
    coupons.add(
        Coupon(coupon_id="SAVE10", code="SAVE10", discount_percentage=10, max_discount_amount=40, min_cart_amount=300),
        Coupon(
            coupon_id="OLD",
            code="OLD",
            discount_percentage=50,
            expires_at=START - timedelta(days=1),
        ),
        Coupon(coupon_id="OFF", code="OFF", discount_percentage=50, is_active=False),
        Coupon(coupon_id="FREE", code="FREE", discount_percentage=150),
    )

    orders = memory.InMemoryOrders()
    orders.add(
        Order(order_id="O1", customer_id="C-near", restaurant_id="R1", total_amount=120),
        Order(order_id="O2", customer_id="C-far", restaurant_id="R1", total_amount=80),
        Order(order_id="O-cancelled", customer_id="C-near", restaurant_id="R1", total_amount=10, status=OrderStatus.CANCELLED),
        Order(order_id="O-nowhere", customer_id="C-nowhere", restaurant_id="R1", total_amount=10),
    )

    couriers = memory.InMemoryCouriers()
    couriers.add(
        Courier(courier_id="K-close", full_name="Close", location=point(0.02)),  # ~2.2 km
        Courier(courier_id="K-mid", full_name="Mid", location=point(0.05)),  # ~5.6 km
        Courier(courier_id="K-far", full_name="Far", location=point(0.1)),  # ~11.1 km
        Courier(courier_id="K-off", full_name="Off Duty", location=point(0.01), is_active=False),
        Courier(courier_id="K-new", full_name="Never Located", location=None),
    )

    return World(
        clock=clock,
        catalog=catalog,
        restaurants=restaurants,
        customers=customers,
        coupons=coupons,
        orders=orders,
        couriers=couriers,
        carts=memory.InMemoryCarts(),
        assignments=memory.InMemoryAssignments(),
        events=EventBus(),
    )


@pytest.fixture
def cart_store(world: World) -> CartStore:
    return CartStore(
        carts=world.carts,
        catalog=world.catalog,
        restaurants=world.restaurants,
        customers=world.customers,
        coupons=CouponLedger(world.coupons),
        clock=world.clock,
        id_factory=SequentialIds("cart-"),
    )


@pytest.fixture
def dispatch(world: World) -> DispatchEngine:
    return DispatchEngine(
        orders=world.orders,
        restaurants=world.restaurants,
        customers=world.customers,
        couriers=world.couriers,
        assignments=world.assignments,
        events=world.events,
        clock=world.clock,
        id_factory=SequentialIds("A"),
    )


@pytest.fixture
def stats(world: World) -> StatsAggregator:
    return StatsAggregator(world.assignments, clock=world.clock)
