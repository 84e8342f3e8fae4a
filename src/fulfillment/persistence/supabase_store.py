"""Supabase-backed repositories.

Expected tables (all ids are text):

    catalog_items(item_id, restaurant_id, name, price, image, options jsonb)
    restaurants(restaurant_id, name, longitude, latitude, address)
    customers(customer_id, name, longitude, latitude, phone, address jsonb)
    coupons(coupon_id, code, discount_percentage, max_discount_amount,
            min_cart_amount, expires_at, is_active)
    orders(order_id, customer_id, restaurant_id, total_amount, status, items jsonb, placed_at)
    couriers(courier_id, full_name, longitude, latitude, is_active, mobile_number, vehicle_type)
    carts(cart_id, customer_id unique, lines jsonb, restaurant_id, subtotal, delivery_fee,
          coupon_discount, final_amount, total_item_count, applied_coupon_id,
          distance_km, delivery_eta, version, created_at, updated_at)
    delivery_assignments(assignment_id, order_id, courier_id, restaurant_id, customer_id,
          restaurant_location jsonb, customer_location jsonb, pickup_distance_km,
          drop_distance_km, status, created_at, updated_at, accepted_at, picked_at,
          delivered_at, cancelled_at, snapshot jsonb)
    assignment_claims(order_id primary key, assignment_id, claimed_at)
    assignment_messages(assignment_id, sender, text, sent_at)
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence

import httpx
from postgrest.exceptions import APIError
from supabase import Client

from ..errors import FulfillmentError, Unavailable, VersionConflict
from ..models.domain import (
    Assignment,
    AssignmentStatus,
    Cart,
    CartLine,
    CatalogItem,
    ChatMessage,
    ChatSender,
    Coordinate,
    Coupon,
    Courier,
    Customer,
    ItemOption,
    Order,
    OrderStatus,
    Restaurant,
)
from ..utils.serialization import parse_datetime, to_jsonable
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

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"


def _execute(query: Any, action: str) -> Any:
    """Run a PostgREST query, translating transport failures into ``Unavailable``.

    Unique-key violations are re-raised untouched so callers can treat them as
    a lost race.
    """

    try:
        return query.execute()
    except httpx.TimeoutException as exc:
        logger.warning("Supabase timed out while trying to %s", action)
        raise Unavailable(f"Store timed out while trying to {action}.") from exc
    except httpx.TransportError as exc:
        logger.warning("Supabase unreachable while trying to %s: %s", action, exc)
        raise Unavailable(f"Store unreachable while trying to {action}.") from exc
    except APIError as exc:
        if exc.code == UNIQUE_VIOLATION:
            raise
        logger.error("Supabase rejected %s: %s", action, exc.message)
        raise Unavailable(f"Store failed to {action}.", code=exc.code) from exc


def _point(row: dict, prefix: str = "") -> Optional[Coordinate]:
    longitude = row.get(f"{prefix}longitude")
    latitude = row.get(f"{prefix}latitude")
    if longitude is None or latitude is None:
        return None
    return Coordinate(longitude=float(longitude), latitude=float(latitude))


def _point_from_json(value: Optional[dict]) -> Optional[Coordinate]:
    if not value:
        return None
    return _point(value)


def _iso(moment: Optional[datetime]) -> Optional[str]:
    return moment.isoformat() if moment is not None else None


class _SupabaseTable:
    table: str
    key: str

    def __init__(self, client: Client) -> None:
        self.client = client

    def _query(self):
        return self.client.table(self.table)

    def _fetch_row(self, value: str) -> Optional[dict]:
        response = _execute(
            self._query().select("*").eq(self.key, value).limit(1),
            f"read {self.table} {value}",
        )
        rows = response.data or []
        return rows[0] if rows else None

    def get(self, value: str):
        row = self._fetch_row(value)
        return self._to_record(row) if row is not None else None

    def _to_record(self, row: dict):
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Reference data
# ---------------------------------------------------------------------------
class SupabaseCatalog(_SupabaseTable, CatalogDirectory):
    table = "catalog_items"
    key = "item_id"

    def _to_record(self, row: dict) -> CatalogItem:
        options = {
            str(option["option_id"]): ItemOption(
                option_id=str(option["option_id"]),
                name=option.get("name") or "",
                surcharge=float(option.get("surcharge") or 0),
            )
            for option in row.get("options") or []
        }
        return CatalogItem(
            item_id=row["item_id"],
            restaurant_id=row["restaurant_id"],
            name=row.get("name") or "",
            price=float(row["price"]),
            image=row.get("image"),
            options=options,
        )


class SupabaseRestaurants(_SupabaseTable, RestaurantDirectory):
    table = "restaurants"
    key = "restaurant_id"

    def _to_record(self, row: dict) -> Restaurant:
        return Restaurant(
            restaurant_id=row["restaurant_id"],
            name=row.get("name") or "",
            location=_point(row),
            address=row.get("address"),
        )


class SupabaseCustomers(_SupabaseTable, CustomerDirectory):
    table = "customers"
    key = "customer_id"

    def _to_record(self, row: dict) -> Customer:
        return Customer(
            customer_id=row["customer_id"],
            name=row.get("name") or "",
            location=_point(row),
            phone=row.get("phone"),
            address=row.get("address"),
        )


class SupabaseCoupons(_SupabaseTable, CouponDirectory):
    table = "coupons"
    key = "coupon_id"

    def _to_record(self, row: dict) -> Coupon:
        max_discount = row.get("max_discount_amount")
        return Coupon(
            coupon_id=row["coupon_id"],
            code=row.get("code") or "",
            discount_percentage=float(row.get("discount_percentage") or 0),
            max_discount_amount=float(max_discount) if max_discount is not None else None,
            min_cart_amount=float(row.get("min_cart_amount") or 0),
            expires_at=parse_datetime(row.get("expires_at")),
            is_active=bool(row.get("is_active", True)),
        )


class SupabaseOrders(_SupabaseTable, OrderDirectory):
    table = "orders"
    key = "order_id"

    def _to_record(self, row: dict) -> Order:
        return Order(
            order_id=row["order_id"],
            customer_id=row["customer_id"],
            restaurant_id=row["restaurant_id"],
            total_amount=float(row.get("total_amount") or 0),
            status=OrderStatus(row.get("status") or OrderStatus.CONFIRMED.value),
            items=row.get("items") or [],
            placed_at=parse_datetime(row.get("placed_at")),
        )


class SupabaseCouriers(_SupabaseTable, CourierRepository):
    table = "couriers"
    key = "courier_id"

    def _to_record(self, row: dict) -> Courier:
        return Courier(
            courier_id=row["courier_id"],
            full_name=row.get("full_name") or "",
            location=_point(row),
            is_active=bool(row.get("is_active", True)),
            mobile_number=row.get("mobile_number"),
            vehicle_type=row.get("vehicle_type"),
        )

    def list_located(self) -> list[Courier]:
        response = _execute(
            self._query().select("*").not_.is_("latitude", "null").not_.is_("longitude", "null"),
            "list located couriers",
        )
        return [self._to_record(row) for row in response.data or []]

    def update_location(self, courier_id: str, location: Coordinate) -> Optional[Courier]:
        response = _execute(
            self._query()
            .update({"longitude": location.longitude, "latitude": location.latitude})
            .eq("courier_id", courier_id),
            f"update location of courier {courier_id}",
        )
        rows = response.data or []
        return self._to_record(rows[0]) if rows else None


# ---------------------------------------------------------------------------
# Carts
# ---------------------------------------------------------------------------
def cart_to_row(cart: Cart) -> dict:
    return {
        "cart_id": cart.cart_id,
        "customer_id": cart.customer_id,
        "lines": to_jsonable(cart.lines),
        "restaurant_id": cart.restaurant_id,
        "subtotal": cart.subtotal,
        "delivery_fee": cart.delivery_fee,
        "coupon_discount": cart.coupon_discount,
        "final_amount": cart.final_amount,
        "total_item_count": cart.total_item_count,
        "applied_coupon_id": cart.applied_coupon_id,
        "distance_km": cart.distance_km,
        "delivery_eta": cart.delivery_eta,
        "version": cart.version,
        "created_at": _iso(cart.created_at),
        "updated_at": _iso(cart.updated_at),
    }


def cart_from_row(row: dict) -> Cart:
    lines = [
        CartLine(
            item_id=line["item_id"],
            option_id=line.get("option_id"),
            quantity=int(line["quantity"]),
            unit_price=float(line["unit_price"]),
            option_surcharge=float(line.get("option_surcharge") or 0),
            name=line.get("name") or "",
            image=line.get("image"),
        )
        for line in row.get("lines") or []
    ]
    return Cart(
        cart_id=row["cart_id"],
        customer_id=row["customer_id"],
        lines=lines,
        restaurant_id=row.get("restaurant_id"),
        subtotal=float(row.get("subtotal") or 0),
        delivery_fee=float(row.get("delivery_fee") or 0),
        coupon_discount=float(row.get("coupon_discount") or 0),
        final_amount=float(row.get("final_amount") or 0),
        total_item_count=int(row.get("total_item_count") or 0),
        applied_coupon_id=row.get("applied_coupon_id"),
        distance_km=row.get("distance_km"),
        delivery_eta=row.get("delivery_eta"),
        version=int(row.get("version") or 0),
        created_at=parse_datetime(row.get("created_at")),
        updated_at=parse_datetime(row.get("updated_at")),
    )


class SupabaseCarts(_SupabaseTable, CartRepository):
    table = "carts"
    key = "cart_id"

    def _to_record(self, row: dict) -> Cart:
        return cart_from_row(row)

    def get_by_customer(self, customer_id: str) -> Optional[Cart]:
        response = _execute(
            self._query().select("*").eq("customer_id", customer_id).limit(1),
            f"read cart of customer {customer_id}",
        )
        rows = response.data or []
        return cart_from_row(rows[0]) if rows else None

    def list_all(self) -> list[Cart]:
        response = _execute(self._query().select("*").order("created_at"), "list carts")
        return [cart_from_row(row) for row in response.data or []]

    def save(self, cart: Cart, expected_version: Optional[int]) -> Cart:
        row = cart_to_row(cart)
        if expected_version is None:
            row["version"] = 0
            try:
                response = _execute(self._query().insert(row), f"create cart {cart.cart_id}")
            except APIError as exc:
                raise VersionConflict(f"Cart for customer {cart.customer_id} already exists") from exc
        else:
            row["version"] = expected_version + 1
            response = _execute(
                self._query().update(row).eq("cart_id", cart.cart_id).eq("version", expected_version),
                f"update cart {cart.cart_id}",
            )
        rows = response.data or []
        if not rows:
            raise VersionConflict(f"Cart {cart.cart_id} changed since version {expected_version}")
        return cart_from_row(rows[0])

    def delete(self, cart_id: str) -> bool:
        response = _execute(self._query().delete().eq("cart_id", cart_id), f"delete cart {cart_id}")
        return bool(response.data)

    def delete_by_customer(self, customer_id: str) -> bool:
        response = _execute(
            self._query().delete().eq("customer_id", customer_id),
            f"delete cart of customer {customer_id}",
        )
        return bool(response.data)


# ---------------------------------------------------------------------------
# Assignments
# ---------------------------------------------------------------------------
_TIMESTAMP_FIELDS = ("created_at", "updated_at", "accepted_at", "picked_at", "delivered_at", "cancelled_at")


def assignment_to_row(assignment: Assignment) -> dict:
    row = {
        "assignment_id": assignment.assignment_id,
        "order_id": assignment.order_id,
        "courier_id": assignment.courier_id,
        "restaurant_id": assignment.restaurant_id,
        "customer_id": assignment.customer_id,
        "restaurant_location": to_jsonable(assignment.restaurant_location),
        "customer_location": to_jsonable(assignment.customer_location),
        "pickup_distance_km": assignment.pickup_distance_km,
        "drop_distance_km": assignment.drop_distance_km,
        "status": assignment.status.value,
        "snapshot": assignment.snapshot,
    }
    for name in _TIMESTAMP_FIELDS:
        row[name] = _iso(getattr(assignment, name))
    return row


def _changes_to_row(changes: dict[str, Any]) -> dict:
    row: dict[str, Any] = {}
    for key, value in changes.items():
        if isinstance(value, datetime):
            row[key] = value.isoformat()
        else:
            row[key] = to_jsonable(value)
    return row


def assignment_from_row(row: dict, chat: Sequence[ChatMessage] = ()) -> Assignment:
    return Assignment(
        assignment_id=row["assignment_id"],
        order_id=row["order_id"],
        courier_id=row["courier_id"],
        restaurant_id=row["restaurant_id"],
        customer_id=row["customer_id"],
        restaurant_location=_point_from_json(row.get("restaurant_location")),
        customer_location=_point_from_json(row.get("customer_location")),
        pickup_distance_km=float(row.get("pickup_distance_km") or 0),
        drop_distance_km=float(row.get("drop_distance_km") or 0),
        status=AssignmentStatus(row["status"]),
        snapshot=row.get("snapshot"),
        chat=list(chat),
        **{name: parse_datetime(row.get(name)) for name in _TIMESTAMP_FIELDS},
    )


class SupabaseAssignments(_SupabaseTable, AssignmentRepository):
    table = "delivery_assignments"
    key = "assignment_id"
    claims_table = "assignment_claims"
    messages_table = "assignment_messages"

    def _to_record(self, row: dict) -> Assignment:
        return assignment_from_row(row, self._messages(row["assignment_id"]))

    def _messages(self, assignment_id: str) -> list[ChatMessage]:
        response = _execute(
            self.client.table(self.messages_table).select("*").eq("assignment_id", assignment_id).order("sent_at"),
            f"read chat of assignment {assignment_id}",
        )
        return [
            ChatMessage(sender=ChatSender(row["sender"]), text=row["text"], timestamp=parse_datetime(row["sent_at"]))
            for row in response.data or []
        ]

    def add_many(self, assignments: Sequence[Assignment]) -> list[Assignment]:
        if not assignments:
            return []
        response = _execute(
            self._query().insert([assignment_to_row(item) for item in assignments]),
            f"create {len(assignments)} assignment(s)",
        )
        return [assignment_from_row(row) for row in response.data or []]

    def _select(self, column: str, value: str, statuses: Iterable[AssignmentStatus] | None) -> list[Assignment]:
        query = self._query().select("*").eq(column, value)
        if statuses is not None:
            query = query.in_("status", [status.value for status in statuses])
        response = _execute(query.order("created_at").order("assignment_id"), f"list assignments by {column}")
        return [assignment_from_row(row) for row in response.data or []]

    def list_for_order(self, order_id: str, statuses: Iterable[AssignmentStatus] | None = None) -> list[Assignment]:
        return self._select("order_id", order_id, statuses)

    def list_for_courier(self, courier_id: str, statuses: Iterable[AssignmentStatus] | None = None) -> list[Assignment]:
        return self._select("courier_id", courier_id, statuses)

    def claimed_assignment_id(self, order_id: str) -> Optional[str]:
        response = _execute(
            self.client.table(self.claims_table).select("assignment_id").eq("order_id", order_id).limit(1),
            f"read claim of order {order_id}",
        )
        rows = response.data or []
        return rows[0]["assignment_id"] if rows else None

    def claim(self, assignment_id: str, changes: dict[str, Any]) -> Optional[Assignment]:
        current = self._fetch_row(assignment_id)
        if current is None or current["status"] != AssignmentStatus.PENDING.value:
            return None

        claim_row = {
            "order_id": current["order_id"],
            "assignment_id": assignment_id,
            "claimed_at": _iso(changes.get("accepted_at")),
        }
        try:
            _execute(self.client.table(self.claims_table).insert(claim_row), f"claim order {current['order_id']}")
        except APIError:
            logger.info("Order %s was claimed by another assignment first", current["order_id"])
            return None

        row = _changes_to_row({**changes, "status": AssignmentStatus.ACCEPTED})
        try:
            response = _execute(
                self._query().update(row).eq("assignment_id", assignment_id).eq("status", AssignmentStatus.PENDING.value),
                f"accept assignment {assignment_id}",
            )
        except FulfillmentError:
            self._release_claim(assignment_id)
            raise
        rows = response.data or []
        if not rows:
            # The assignment left Pending between the read and the update; release the order.
            self._release_claim(assignment_id)
            return None
        return self._to_record(rows[0])

    def _release_claim(self, assignment_id: str) -> None:
        try:
            _execute(
                self.client.table(self.claims_table).delete().eq("assignment_id", assignment_id),
                f"release claim of assignment {assignment_id}",
            )
        except FulfillmentError:
            logger.error("Claim of assignment %s could not be released; its order stays claimed", assignment_id)
            raise

    def transition(
        self,
        assignment_id: str,
        expected_status: AssignmentStatus,
        changes: dict[str, Any],
    ) -> Optional[Assignment]:
        response = _execute(
            self._query()
            .update(_changes_to_row(changes))
            .eq("assignment_id", assignment_id)
            .eq("status", expected_status.value),
            f"update assignment {assignment_id}",
        )
        rows = response.data or []
        return self._to_record(rows[0]) if rows else None

    def append_chat(
        self,
        assignment_id: str,
        message: ChatMessage,
        allowed_statuses: Iterable[AssignmentStatus],
    ) -> Optional[Assignment]:
        current = self._fetch_row(assignment_id)
        if current is None or AssignmentStatus(current["status"]) not in set(allowed_statuses):
            return None
        _execute(
            self.client.table(self.messages_table).insert(
                {
                    "assignment_id": assignment_id,
                    "sender": message.sender.value,
                    "text": message.text,
                    "sent_at": message.timestamp.isoformat(),
                }
            ),
            f"post chat message on assignment {assignment_id}",
        )
        return self._to_record(current)

    def _count(self, query: Any, action: str) -> int:
        response = _execute(query, action)
        return int(response.count or 0)

    def count_created_between(self, start: datetime, end: datetime) -> int:
        return self._count(
            self._query()
            .select("assignment_id", count="exact")
            .gte("created_at", start.isoformat())
            .lt("created_at", end.isoformat()),
            "count created assignments",
        )

    def count_status_between(self, status: AssignmentStatus, field: str, start: datetime, end: datetime) -> int:
        return self._count(
            self._query()
            .select("assignment_id", count="exact")
            .eq("status", status.value)
            .gte(field, start.isoformat())
            .lt(field, end.isoformat()),
            f"count {status.value} assignments",
        )
