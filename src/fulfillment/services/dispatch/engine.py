"""Courier discovery, assignment broadcast and the delivery lifecycle."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

from ...errors import InvalidInput, InvalidState, LocationMissing, NotFound
from ...models.domain import (
    ACTIVE_STATUSES,
    CLAIMED_STATUSES,
    Assignment,
    AssignmentStatus,
    ChatMessage,
    ChatSender,
    Courier,
    Customer,
    Order,
    OrderStatus,
    Restaurant,
)
from ...persistence.repositories import (
    AssignmentRepository,
    CourierRepository,
    CustomerDirectory,
    OrderDirectory,
    RestaurantDirectory,
)
from ...utils.locks import KeyedLocks
from ...utils.serialization import to_jsonable, utc_now
from ..geospatial import distance_km, validate_coordinate
from .events import ASSIGNMENT_CHAT_MESSAGE, ASSIGNMENT_CREATED, ASSIGNMENT_STATUS_CHANGED, EventBus
from .state_machine import ensure_transition, transition_changes

logger = logging.getLogger(__name__)

DEFAULT_DISPATCH_RADIUS_KM = 8.0

UNDISPATCHABLE_ORDER_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.DELIVERED})
TRACKABLE_STATUSES = frozenset({AssignmentStatus.ACCEPTED, AssignmentStatus.PICKED, AssignmentStatus.DELIVERED})
COURIER_STATUS_UPDATES = frozenset({AssignmentStatus.PICKED, AssignmentStatus.DELIVERED})


class DispatchOutcome(str, Enum):
    CREATED = "created"
    NO_COURIERS = "no_couriers"
    ALREADY_CLAIMED = "already_claimed"
    ALREADY_BROADCAST = "already_broadcast"


@dataclass(slots=True)
class DispatchResult:
    outcome: DispatchOutcome
    assignments: list[Assignment]


class DispatchEngine:
    """Matches confirmed orders to nearby couriers and drives each assignment's lifecycle."""

    def __init__(
        self,
        *,
        orders: OrderDirectory,
        restaurants: RestaurantDirectory,
        customers: CustomerDirectory,
        couriers: CourierRepository,
        assignments: AssignmentRepository,
        events: EventBus | None = None,
        radius_km: float = DEFAULT_DISPATCH_RADIUS_KM,
        distance_precision: int = 2,
        lock_timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.orders = orders
        self.restaurants = restaurants
        self.customers = customers
        self.couriers = couriers
        self.assignments = assignments
        self.events = events or EventBus()
        self.radius_km = radius_km
        self.distance_precision = distance_precision
        self.clock = clock
        self.id_factory = id_factory
        self._order_locks = KeyedLocks("order", timeout=lock_timeout)
        self._courier_locks = KeyedLocks("courier", timeout=lock_timeout)

    # -------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------
    def _require_order(self, order_id: str) -> Order:
        order = self.orders.get(order_id)
        if order is None:
            raise NotFound("Order not found.", order_id=order_id)
        return order

    def _require_assignment(self, assignment_id: str) -> Assignment:
        assignment = self.assignments.get(assignment_id)
        if assignment is None:
            raise NotFound("Assignment not found.", assignment_id=assignment_id)
        return assignment

    def _resolve_parties(self, order: Order) -> tuple[Restaurant, Customer]:
        restaurant = self.restaurants.get(order.restaurant_id)
        if restaurant is None:
            raise NotFound("Restaurant not found.", restaurant_id=order.restaurant_id)
        customer = self.customers.get(order.customer_id)
        if customer is None:
            raise NotFound("Customer not found.", customer_id=order.customer_id)
        if restaurant.location is None:
            raise LocationMissing("Restaurant has no location.", restaurant_id=restaurant.restaurant_id)
        if customer.location is None:
            raise LocationMissing("Customer has no location.", customer_id=customer.customer_id)
        return restaurant, customer

    def _round(self, distance: float) -> float:
        return round(distance, self.distance_precision)

    def get_assignment(self, assignment_id: str) -> Assignment:
        return self._require_assignment(assignment_id)

    def assignments_for_order(self, order_id: str) -> list[Assignment]:
        """All assignments for an order; Pending siblings are dropped once the order is claimed."""

        assignments = self.assignments.list_for_order(order_id)
        if self.assignments.claimed_assignment_id(order_id) is None:
            return assignments
        return [assignment for assignment in assignments if assignment.status != AssignmentStatus.PENDING]

    def pending_offers(self, courier_id: str) -> list[Assignment]:
        """Pending assignments a courier can still accept."""

        pending = self.assignments.list_for_courier(courier_id, {AssignmentStatus.PENDING})
        return [item for item in pending if self.assignments.claimed_assignment_id(item.order_id) is None]

    # -------------------------------------------------------------------
    # Broadcast
    # -------------------------------------------------------------------
    def assign(self, order_id: str) -> DispatchResult:
        """Create one Pending assignment per active courier within the dispatch radius.

        Repeated calls never duplicate work: a claimed order returns its claimed
        assignment and an order already broadcast returns its Pending set.
        """

        with self._order_locks.hold(order_id):
            order = self._require_order(order_id)
            restaurant, customer = self._resolve_parties(order)
            if order.status in UNDISPATCHABLE_ORDER_STATUSES:
                raise InvalidState(f"Order is {order.status.value} and cannot be dispatched.", order_id=order_id)

            claimed = self.assignments.list_for_order(order_id, CLAIMED_STATUSES)
            if claimed:
                logger.info("Order %s already claimed by courier %s", order_id, claimed[0].courier_id)
                return DispatchResult(DispatchOutcome.ALREADY_CLAIMED, claimed[:1])
            if self.assignments.claimed_assignment_id(order_id) is not None:
                raise InvalidState("Order's accepted delivery was cancelled; it cannot be re-dispatched.", order_id=order_id)

            pending = self.assignments.list_for_order(order_id, {AssignmentStatus.PENDING})
            if pending:
                logger.info("Order %s already broadcast to %d courier(s)", order_id, len(pending))
                return DispatchResult(DispatchOutcome.ALREADY_BROADCAST, pending)

            drop_distance = self._round(distance_km(restaurant.location, customer.location))
            now = self.clock()
            candidates: list[Assignment] = []
            for courier in self.couriers.list_located():
                if not courier.is_active:
                    continue
                pickup_distance = self._round(distance_km(courier.location, restaurant.location))
                if pickup_distance > self.radius_km:
                    continue
                candidates.append(
                    Assignment(
                        assignment_id=self.id_factory(),
                        order_id=order.order_id,
                        courier_id=courier.courier_id,
                        restaurant_id=restaurant.restaurant_id,
                        customer_id=customer.customer_id,
                        restaurant_location=restaurant.location,
                        customer_location=customer.location,
                        pickup_distance_km=pickup_distance,
                        drop_distance_km=drop_distance,
                        created_at=now,
                        updated_at=now,
                    )
                )

            if not candidates:
                logger.info("No couriers within %.1f km of restaurant %s for order %s", self.radius_km, restaurant.restaurant_id, order_id)
                return DispatchResult(DispatchOutcome.NO_COURIERS, [])

            created = self.assignments.add_many(candidates)
            logger.info("Order %s broadcast to %d courier(s)", order_id, len(created))

        for assignment in created:
            self.events.publish(ASSIGNMENT_CREATED, assignment)
        return DispatchResult(DispatchOutcome.CREATED, created)

    # -------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------
    def _snapshot(self, assignment: Assignment) -> dict:
        order = self._require_order(assignment.order_id)
        restaurant = self.restaurants.get(assignment.restaurant_id)
        customer = self.customers.get(assignment.customer_id)
        return {
            "order": to_jsonable(order),
            "customer": to_jsonable(customer) if customer is not None else None,
            "restaurant": to_jsonable(restaurant) if restaurant is not None else None,
        }

    def accept(self, assignment_id: str) -> Assignment:
        """Claim the order for the assignment's courier. First acceptor wins."""

        assignment = self._require_assignment(assignment_id)
        # Lock order: order first, then courier.
        with self._order_locks.hold(assignment.order_id), self._courier_locks.hold(assignment.courier_id):
            assignment = self._require_assignment(assignment_id)
            if assignment.status != AssignmentStatus.PENDING:
                raise InvalidState(f"Order already {assignment.status.value}.", assignment_id=assignment_id)
            if self.assignments.claimed_assignment_id(assignment.order_id) is not None:
                raise InvalidState("Order already accepted by another courier.", order_id=assignment.order_id)
            if self.assignments.list_for_courier(assignment.courier_id, ACTIVE_STATUSES):
                raise InvalidState("Courier already has an active delivery.", courier_id=assignment.courier_id)

            now = self.clock()
            changes = transition_changes(AssignmentStatus.ACCEPTED, now)
            changes["snapshot"] = {**self._snapshot(assignment), "captured_at": now.isoformat()}
            accepted = self.assignments.claim(assignment_id, changes)
            if accepted is None:
                logger.info("Courier %s lost the race for order %s", assignment.courier_id, assignment.order_id)
                raise InvalidState("Order already accepted by another courier.", order_id=assignment.order_id)

        logger.info("Order %s accepted by courier %s", accepted.order_id, accepted.courier_id)
        self.events.publish(ASSIGNMENT_STATUS_CHANGED, accepted)
        return accepted

    def _move(self, assignment: Assignment, target: AssignmentStatus, extra: dict | None = None) -> Assignment:
        ensure_transition(assignment.status, target)
        changes = transition_changes(target, self.clock())
        if extra:
            changes.update(extra)
        updated = self.assignments.transition(assignment.assignment_id, assignment.status, changes)
        if updated is None:
            raise InvalidState("Assignment changed concurrently; reload and retry.", assignment_id=assignment.assignment_id)
        logger.info("Assignment %s moved %s -> %s", assignment.assignment_id, assignment.status.value, target.value)
        self.events.publish(ASSIGNMENT_STATUS_CHANGED, updated)
        return updated

    def cancel(self, assignment_id: str) -> Assignment:
        return self._move(self._require_assignment(assignment_id), AssignmentStatus.CANCELLED)

    def update_status(self, assignment_id: str, new_status: AssignmentStatus | str) -> Assignment:
        """Courier-driven forward move: Accepted -> Picked -> Delivered."""

        target = _coerce_status(new_status)
        if target not in COURIER_STATUS_UPDATES:
            raise InvalidInput("Status must be one of: Picked, Delivered.", status=target.value)
        return self._move(self._require_assignment(assignment_id), target)

    def update_courier_location(self, courier_id: str, longitude: float, latitude: float) -> Courier:
        """Store a courier's position without touching any assignment."""

        location = validate_coordinate(longitude, latitude)
        with self._courier_locks.hold(courier_id):
            courier = self.couriers.update_location(courier_id, location)
        if courier is None:
            raise NotFound("Courier not found.", courier_id=courier_id)
        logger.debug("Courier %s moved to %s", courier_id, location)
        return courier

    def update_courier_position_and_track(
        self,
        courier_id: str,
        longitude: float,
        latitude: float,
        status: AssignmentStatus | str | None = None,
    ) -> Optional[Assignment]:
        """Store the courier's new position and refresh the live distances of its active delivery.

        Returns None when the courier has no Accepted or Picked assignment.
        """

        location = validate_coordinate(longitude, latitude)
        target = _coerce_status(status) if status is not None else None
        if target is not None and target not in TRACKABLE_STATUSES:
            raise InvalidInput("Status must be one of: Accepted, Picked, Delivered.", status=target.value)

        with self._courier_locks.hold(courier_id):
            if self.couriers.update_location(courier_id, location) is None:
                raise NotFound("Courier not found.", courier_id=courier_id)

            active = self.assignments.list_for_courier(courier_id, ACTIVE_STATUSES)
            if not active:
                logger.debug("Courier %s has no active delivery", courier_id)
                return None
            assignment = active[-1]

            distances = {
                "pickup_distance_km": self._round(distance_km(location, assignment.restaurant_location)),
                "drop_distance_km": self._round(distance_km(assignment.restaurant_location, assignment.customer_location)),
            }
            if target is not None and target != assignment.status:
                return self._move(assignment, target, distances)

            updated = self.assignments.transition(
                assignment.assignment_id,
                assignment.status,
                {**distances, "updated_at": self.clock()},
            )
            if updated is None:
                raise InvalidState("Assignment changed concurrently; reload and retry.", assignment_id=assignment.assignment_id)
            return updated

    # -------------------------------------------------------------------
    # Chat
    # -------------------------------------------------------------------
    def post_message(self, assignment_id: str, sender: ChatSender | str, text: str) -> Assignment:
        try:
            sender = ChatSender(sender)
        except ValueError as exc:
            raise InvalidInput("Sender must be Customer or Courier.", sender=sender) from exc
        text = (text or "").strip()
        if not text:
            raise InvalidInput("Message text is required.")

        assignment = self._require_assignment(assignment_id)
        if not assignment.chat_active:
            raise InvalidState("Chat is only open while a delivery is in progress.", status=assignment.status.value)
        message = ChatMessage(sender=sender, text=text, timestamp=self.clock())
        updated = self.assignments.append_chat(assignment_id, message, ACTIVE_STATUSES)
        if updated is None:
            raise InvalidState("Chat is only open while a delivery is in progress.", assignment_id=assignment_id)
        self.events.publish(ASSIGNMENT_CHAT_MESSAGE, updated)
        return updated

    def chat(self, assignment_id: str) -> list[ChatMessage]:
        return self._require_assignment(assignment_id).chat


def _coerce_status(value: AssignmentStatus | str) -> AssignmentStatus:
    try:
        return AssignmentStatus(value)
    except ValueError as exc:
        raise InvalidInput(f"Unknown assignment status '{value}'.") from exc
