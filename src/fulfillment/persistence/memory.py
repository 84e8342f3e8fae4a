"""In-process document store used by default and in tests.

Every read returns a deep copy and every write stores one, so callers never
share mutable state with the store.
"""

from __future__ import annotations

import copy
from datetime import datetime, timezone
from threading import RLock
from typing import Any, Generic, Iterable, Optional, Sequence, TypeVar

from ..errors import VersionConflict
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
from .repositories import (
    AssignmentRepository,
    CartRepository,
    CatalogDirectory,
    CouponDirectory,
    CourierRepository,
    CustomerDirectory,
    OrderDirectory,
    RestaurantDirectory,
)

T = TypeVar("T")

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


class _Table(Generic[T]):
    """Dict keyed by id, guarded by a re-entrant lock."""

    def __init__(self, id_attr: str) -> None:
        self.id_attr = id_attr
        self._rows: dict[str, T] = {}
        self._lock = RLock()

    def add(self, *records: T) -> None:
        with self._lock:
            for record in records:
                self._rows[getattr(record, self.id_attr)] = copy.deepcopy(record)

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            record = self._rows.get(key)
            return copy.deepcopy(record) if record is not None else None


class InMemoryCatalog(_Table[CatalogItem], CatalogDirectory):
    def __init__(self) -> None:
        super().__init__("item_id")


class InMemoryRestaurants(_Table[Restaurant], RestaurantDirectory):
    def __init__(self) -> None:
        super().__init__("restaurant_id")


class InMemoryCustomers(_Table[Customer], CustomerDirectory):
    def __init__(self) -> None:
        super().__init__("customer_id")


class InMemoryCoupons(_Table[Coupon], CouponDirectory):
    def __init__(self) -> None:
        super().__init__("coupon_id")


class InMemoryOrders(_Table[Order], OrderDirectory):
    def __init__(self) -> None:
        super().__init__("order_id")


class InMemoryCouriers(_Table[Courier], CourierRepository):
    def __init__(self) -> None:
        super().__init__("courier_id")

    def list_located(self) -> list[Courier]:
        with self._lock:
            return [copy.deepcopy(courier) for courier in self._rows.values() if courier.location is not None]

    def update_location(self, courier_id: str, location: Coordinate) -> Optional[Courier]:
        with self._lock:
            courier = self._rows.get(courier_id)
            if courier is None:
                return None
            courier.location = location
            return copy.deepcopy(courier)


class InMemoryCarts(CartRepository):
    def __init__(self) -> None:
        self._by_id: dict[str, Cart] = {}
        self._lock = RLock()

    def _find_by_customer(self, customer_id: str) -> Optional[Cart]:
        return next((cart for cart in self._by_id.values() if cart.customer_id == customer_id), None)

    def get(self, cart_id: str) -> Optional[Cart]:
        with self._lock:
            cart = self._by_id.get(cart_id)
            return copy.deepcopy(cart) if cart is not None else None

    def get_by_customer(self, customer_id: str) -> Optional[Cart]:
        with self._lock:
            cart = self._find_by_customer(customer_id)
            return copy.deepcopy(cart) if cart is not None else None

    def list_all(self) -> list[Cart]:
        with self._lock:
            return [copy.deepcopy(cart) for cart in self._by_id.values()]

    def save(self, cart: Cart, expected_version: Optional[int]) -> Cart:
        with self._lock:
            current = self._find_by_customer(cart.customer_id)
            if expected_version is None:
                if current is not None:
                    raise VersionConflict(f"Cart for customer {cart.customer_id} already exists")
            elif current is None or current.version != expected_version or current.cart_id != cart.cart_id:
                raise VersionConflict(f"Cart {cart.cart_id} changed since version {expected_version}")
            stored = copy.deepcopy(cart)
            stored.version = 0 if expected_version is None else expected_version + 1
            self._by_id[stored.cart_id] = stored
            return copy.deepcopy(stored)

    def delete(self, cart_id: str) -> bool:
        with self._lock:
            return self._by_id.pop(cart_id, None) is not None

    def delete_by_customer(self, customer_id: str) -> bool:
        with self._lock:
            cart = self._find_by_customer(customer_id)
            if cart is None:
                return False
            del self._by_id[cart.cart_id]
            return True


def _apply(record: Assignment, changes: dict[str, Any]) -> None:
    for key, value in changes.items():
        setattr(record, key, value)


def _within(moment: Optional[datetime], start: datetime, end: datetime) -> bool:
    return moment is not None and start <= moment < end


class InMemoryAssignments(AssignmentRepository):
    def __init__(self) -> None:
        self._rows: dict[str, Assignment] = {}
        # order_id -> assignment_id of the one assignment that ever claimed it
        self._claims: dict[str, str] = {}
        self._lock = RLock()

    def add_many(self, assignments: Sequence[Assignment]) -> list[Assignment]:
        with self._lock:
            for assignment in assignments:
                self._rows[assignment.assignment_id] = copy.deepcopy(assignment)
            return [copy.deepcopy(assignment) for assignment in assignments]

    def get(self, assignment_id: str) -> Optional[Assignment]:
        with self._lock:
            record = self._rows.get(assignment_id)
            return copy.deepcopy(record) if record is not None else None

    def _select(self, attr: str, value: str, statuses: Iterable[AssignmentStatus] | None) -> list[Assignment]:
        wanted = set(statuses) if statuses is not None else None
        with self._lock:
            rows = [
                copy.deepcopy(row)
                for row in self._rows.values()
                if getattr(row, attr) == value and (wanted is None or row.status in wanted)
            ]
        rows.sort(key=lambda row: (row.created_at or _EPOCH, row.assignment_id))
        return rows

    def list_for_order(self, order_id: str, statuses: Iterable[AssignmentStatus] | None = None) -> list[Assignment]:
        return self._select("order_id", order_id, statuses)

    def list_for_courier(self, courier_id: str, statuses: Iterable[AssignmentStatus] | None = None) -> list[Assignment]:
        return self._select("courier_id", courier_id, statuses)

    def claimed_assignment_id(self, order_id: str) -> Optional[str]:
        with self._lock:
            return self._claims.get(order_id)

    def claim(self, assignment_id: str, changes: dict[str, Any]) -> Optional[Assignment]:
        with self._lock:
            record = self._rows.get(assignment_id)
            if record is None or record.status != AssignmentStatus.PENDING:
                return None
            if record.order_id in self._claims:
                return None
            self._claims[record.order_id] = assignment_id
            _apply(record, {**changes, "status": AssignmentStatus.ACCEPTED})
            return copy.deepcopy(record)

    def transition(
        self,
        assignment_id: str,
        expected_status: AssignmentStatus,
        changes: dict[str, Any],
    ) -> Optional[Assignment]:
        with self._lock:
            record = self._rows.get(assignment_id)
            if record is None or record.status != expected_status:
                return None
            _apply(record, changes)
            return copy.deepcopy(record)

    def append_chat(
        self,
        assignment_id: str,
        message: ChatMessage,
        allowed_statuses: Iterable[AssignmentStatus],
    ) -> Optional[Assignment]:
        with self._lock:
            record = self._rows.get(assignment_id)
            if record is None or record.status not in set(allowed_statuses):
                return None
            record.chat.append(copy.deepcopy(message))
            return copy.deepcopy(record)

    def count_created_between(self, start: datetime, end: datetime) -> int:
        with self._lock:
            return sum(1 for row in self._rows.values() if _within(row.created_at, start, end))

    def count_status_between(self, status: AssignmentStatus, field: str, start: datetime, end: datetime) -> int:
        with self._lock:
            return sum(
                1 for row in self._rows.values() if row.status == status and _within(getattr(row, field), start, end)
            )
