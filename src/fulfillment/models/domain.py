"""Domain models for carts, couriers and delivery assignments."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


@dataclass(frozen=True, slots=True)
class Coordinate:
    """WGS-84 point stored as (longitude, latitude), the GeoJSON order."""

    longitude: float
    latitude: float


@dataclass(slots=True)
class ItemOption:
    option_id: str
    name: str
    surcharge: float = 0.0


@dataclass(slots=True)
class CatalogItem:
    """A menu item sold by one restaurant."""

    item_id: str
    restaurant_id: str
    name: str
    price: float
    image: Optional[str] = None
    options: dict[str, ItemOption] = field(default_factory=dict)


@dataclass(slots=True)
class Restaurant:
    restaurant_id: str
    name: str
    location: Optional[Coordinate]
    address: Optional[str] = None


@dataclass(slots=True)
class Customer:
    customer_id: str
    name: str
    location: Optional[Coordinate]
    phone: Optional[str] = None
    address: Optional[dict] = None


@dataclass(slots=True)
class Courier:
    """Delivery agent. Location is overwritten on every tracking update."""

    courier_id: str
    full_name: str
    location: Optional[Coordinate]
    is_active: bool = True
    mobile_number: Optional[str] = None
    vehicle_type: Optional[str] = None


@dataclass(slots=True)
class Coupon:
    coupon_id: str
    code: str
    discount_percentage: float
    max_discount_amount: Optional[float] = None
    min_cart_amount: float = 0.0
    expires_at: Optional[datetime] = None
    is_active: bool = True


@dataclass(slots=True)
class CartLine:
    """One catalog item + chosen option inside a cart, with price snapshots."""

    item_id: str
    option_id: Optional[str]
    quantity: int
    unit_price: float
    option_surcharge: float
    name: str
    image: Optional[str] = None

    @property
    def key(self) -> tuple[str, Optional[str]]:
        return (self.item_id, self.option_id)

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity + self.option_surcharge


@dataclass(slots=True)
class Totals:
    subtotal: float
    delivery_fee: float
    coupon_discount: float
    final_amount: float
    total_item_count: int
    applied_coupon_id: Optional[str]
    distance_km: Optional[float] = None
    delivery_eta: Optional[str] = None


@dataclass(slots=True)
class Cart:
    cart_id: str
    customer_id: str
    lines: list[CartLine] = field(default_factory=list)
    restaurant_id: Optional[str] = None
    subtotal: float = 0.0
    delivery_fee: float = 0.0
    coupon_discount: float = 0.0
    final_amount: float = 0.0
    total_item_count: int = 0
    applied_coupon_id: Optional[str] = None
    distance_km: Optional[float] = None
    delivery_eta: Optional[str] = None
    version: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def apply_totals(self, totals: Totals) -> None:
        self.subtotal = totals.subtotal
        self.delivery_fee = totals.delivery_fee
        self.coupon_discount = totals.coupon_discount
        self.final_amount = totals.final_amount
        self.total_item_count = totals.total_item_count
        self.applied_coupon_id = totals.applied_coupon_id
        self.distance_km = totals.distance_km
        self.delivery_eta = totals.delivery_eta


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    ONGOING = "ongoing"
    CANCELLED = "cancelled"
    SHIPPED = "shipped"
    DELIVERED = "delivered"


@dataclass(slots=True)
class Order:
    order_id: str
    customer_id: str
    restaurant_id: str
    total_amount: float
    status: OrderStatus = OrderStatus.CONFIRMED
    items: list[dict] = field(default_factory=list)
    placed_at: Optional[datetime] = None


class AssignmentStatus(str, Enum):
    PENDING = "Pending"
    ACCEPTED = "Accepted"
    PICKED = "Picked"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


CLAIMED_STATUSES = frozenset({AssignmentStatus.ACCEPTED, AssignmentStatus.PICKED, AssignmentStatus.DELIVERED})
ACTIVE_STATUSES = frozenset({AssignmentStatus.ACCEPTED, AssignmentStatus.PICKED})


class ChatSender(str, Enum):
    CUSTOMER = "Customer"
    COURIER = "Courier"


@dataclass(slots=True)
class ChatMessage:
    sender: ChatSender
    text: str
    timestamp: datetime


@dataclass(slots=True)
class Assignment:
    """Join record between one order and one candidate courier."""

    assignment_id: str
    order_id: str
    courier_id: str
    restaurant_id: str
    customer_id: str
    restaurant_location: Coordinate
    customer_location: Coordinate
    pickup_distance_km: float
    drop_distance_km: float
    status: AssignmentStatus = AssignmentStatus.PENDING
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    picked_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    snapshot: Optional[dict] = None
    chat: list[ChatMessage] = field(default_factory=list)

    @property
    def is_claimed(self) -> bool:
        return self.status in CLAIMED_STATUSES

    @property
    def chat_active(self) -> bool:
        return self.status in ACTIVE_STATUSES


@dataclass(slots=True)
class DailyStats:
    day: str
    created: int
    cancelled: int
    completed: int
