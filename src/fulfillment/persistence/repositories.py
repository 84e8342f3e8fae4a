"""Storage contracts used by the pricing, cart and dispatch services.

Reference data (catalog, restaurants, customers, coupons, orders) is owned by
other services and is read-only here. Couriers, carts and assignments are
written by the engine.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

from ..models.domain import (
    Assignment,
    AssignmentStatus,
    Cart,
    CatalogItem,
    ChatMessage,
    Coordinate,
    Coupon,
    Courier,
    Customer,
    Order,
    Restaurant,
)


class CatalogDirectory(ABC):
    @abstractmethod
    def get(self, item_id: str) -> Optional[CatalogItem]:
        raise NotImplementedError


class RestaurantDirectory(ABC):
    @abstractmethod
    def get(self, restaurant_id: str) -> Optional[Restaurant]:
        raise NotImplementedError


class CustomerDirectory(ABC):
    @abstractmethod
    def get(self, customer_id: str) -> Optional[Customer]:
        raise NotImplementedError


class CouponDirectory(ABC):
    @abstractmethod
    def get(self, coupon_id: str) -> Optional[Coupon]:
        raise NotImplementedError


class OrderDirectory(ABC):
    @abstractmethod
    def get(self, order_id: str) -> Optional[Order]:
        raise NotImplementedError


class CourierRepository(ABC):
    @abstractmethod
    def get(self, courier_id: str) -> Optional[Courier]:
        raise NotImplementedError

    @abstractmethod
    def list_located(self) -> list[Courier]:
        """Couriers that have reported at least one location."""
        raise NotImplementedError

    @abstractmethod
    def update_location(self, courier_id: str, location: Coordinate) -> Optional[Courier]:
        """Overwrite the stored location. Returns None for an unknown courier."""
        raise NotImplementedError


class CartRepository(ABC):
    @abstractmethod
    def get(self, cart_id: str) -> Optional[Cart]:
        raise NotImplementedError

    @abstractmethod
    def get_by_customer(self, customer_id: str) -> Optional[Cart]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> list[Cart]:
        raise NotImplementedError

    @abstractmethod
    def save(self, cart: Cart, expected_version: Optional[int]) -> Cart:
        """Compare-and-swap write of the whole cart.

        ``expected_version`` is None for a cart that has never been stored.
        Raises VersionConflict when another writer got there first.
        """
        raise NotImplementedError

    @abstractmethod
    def delete(self, cart_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def delete_by_customer(self, customer_id: str) -> bool:
        raise NotImplementedError


class AssignmentRepository(ABC):
    @abstractmethod
    def add_many(self, assignments: Sequence[Assignment]) -> list[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def get(self, assignment_id: str) -> Optional[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def list_for_order(self, order_id: str, statuses: Iterable[AssignmentStatus] | None = None) -> list[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def list_for_courier(self, courier_id: str, statuses: Iterable[AssignmentStatus] | None = None) -> list[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def claimed_assignment_id(self, order_id: str) -> Optional[str]:
        """Id of the assignment that claimed the order, if any ever did."""
        raise NotImplementedError

    @abstractmethod
    def claim(self, assignment_id: str, changes: dict[str, Any]) -> Optional[Assignment]:
        """Atomically move a Pending assignment to Accepted.

        Succeeds only while the assignment is still Pending and no assignment
        for the same order has claimed it before. Returns None otherwise.
        """
        raise NotImplementedError

    @abstractmethod
    def transition(
        self,
        assignment_id: str,
        expected_status: AssignmentStatus,
        changes: dict[str, Any],
    ) -> Optional[Assignment]:
        """Apply ``changes`` only if the stored status still equals ``expected_status``."""
        raise NotImplementedError

    @abstractmethod
    def append_chat(
        self,
        assignment_id: str,
        message: ChatMessage,
        allowed_statuses: Iterable[AssignmentStatus],
    ) -> Optional[Assignment]:
        raise NotImplementedError

    @abstractmethod
    def count_created_between(self, start: datetime, end: datetime) -> int:
        raise NotImplementedError

    @abstractmethod
    def count_status_between(self, status: AssignmentStatus, field: str, start: datetime, end: datetime) -> int:
        """Count assignments in ``status`` whose timestamp ``field`` falls in [start, end)."""
        raise NotImplementedError
