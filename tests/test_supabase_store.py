from datetime import datetime, timezone
from types import SimpleNamespace

import httpx
import pytest
from postgrest.exceptions import APIError

from src.fulfillment.errors import Unavailable, VersionConflict
from src.fulfillment.models.domain import (
    Assignment,
    AssignmentStatus,
    Cart,
    CartLine,
    Coordinate,
)
from src.fulfillment.persistence.supabase_store import (
    SupabaseAssignments,
    SupabaseCarts,
    SupabaseCatalog,
    SupabaseCouriers,
    _execute,
    assignment_from_row,
    assignment_to_row,
    cart_to_row,
)

NOW = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)


def _api_error(code: str) -> APIError:
    return APIError({"message": f"error {code}", "code": code, "hint": None, "details": None})


def _response(data=None, count=None):
    return SimpleNamespace(data=data, count=count)


class FakeQuery:
    """Chainable stand-in for a PostgREST request builder."""

    def __init__(self, client: "FakeClient", table: str) -> None:
        self.client = client
        self.table = table
        self.calls: list[tuple] = []

    def __getattr__(self, name: str):
        def _record(*args, **kwargs):
            self.calls.append((name, args, kwargs))
            return self

        return _record

    @property
    def not_(self) -> "FakeQuery":
        self.calls.append(("not_", (), {}))
        return self

    def execute(self):
        self.client.executed.append(self)
        outcome = self.client.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class FakeClient:
    def __init__(self, *outcomes) -> None:
        self.outcomes = list(outcomes)
        self.executed: list[FakeQuery] = []

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)


def _cart(version: int = 0) -> Cart:
    return Cart(
        cart_id="cart-1",
        customer_id="C1",
        lines=[CartLine(item_id="burger", option_id=None, quantity=2, unit_price=100, option_surcharge=0, name="Burger")],
        restaurant_id="R1",
        subtotal=200,
        delivery_fee=20,
        final_amount=220,
        total_item_count=2,
        version=version,
        created_at=NOW,
        updated_at=NOW,
    )


def _assignment(status: AssignmentStatus = AssignmentStatus.PENDING) -> Assignment:
    return Assignment(
        assignment_id="A1",
        order_id="O1",
        courier_id="K1",
        restaurant_id="R1",
        customer_id="C1",
        restaurant_location=Coordinate(longitude=46.7, latitude=24.7),
        customer_location=Coordinate(longitude=46.71, latitude=24.72),
        pickup_distance_km=1.25,
        drop_distance_km=2.4,
        status=status,
        created_at=NOW,
        updated_at=NOW,
    )


@pytest.mark.parametrize(
    "failure",
    [
        httpx.ReadTimeout("slow"),
        httpx.ConnectError("refused"),
        _api_error("42P01"),
    ],
)
def test_store_failures_become_unavailable(failure: Exception) -> None:
    client = FakeClient(failure)

    with pytest.raises(Unavailable) as excinfo:
        _execute(client.table("carts").select("*"), "read carts")

    assert excinfo.value.retryable


def test_unique_violation_is_passed_through() -> None:
    client = FakeClient(_api_error("23505"))

    with pytest.raises(APIError):
        _execute(client.table("assignment_claims").insert({}), "claim order")


def test_catalog_row_mapping() -> None:
    row = {
        "item_id": "burger",
        "restaurant_id": "R1",
        "name": "Burger",
        "price": "100.0",
        "options": [{"option_id": "large", "name": "Large", "surcharge": 10}],
    }
    catalog = SupabaseCatalog(FakeClient(_response([row])))

    item = catalog.get("burger")

    assert item.price == 100.0
    assert item.options["large"].surcharge == 10.0


def test_missing_rows_read_as_none() -> None:
    catalog = SupabaseCatalog(FakeClient(_response([])))
    assert catalog.get("nothing") is None


def test_courier_listing_skips_unlocated_rows() -> None:
    client = FakeClient(_response([{"courier_id": "K1", "full_name": "K", "longitude": 46.7, "latitude": 24.7}]))

    couriers = SupabaseCouriers(client).list_located()

    assert couriers[0].location == Coordinate(longitude=46.7, latitude=24.7)
    assert client.executed[0].calls.count(("not_", (), {})) == 2


def test_cart_insert_conflict_becomes_version_conflict() -> None:
    carts = SupabaseCarts(FakeClient(_api_error("23505")))

    with pytest.raises(VersionConflict):
        carts.save(_cart(), expected_version=None)


def test_cart_update_is_conditional_on_version() -> None:
    stored_row = {**cart_to_row(_cart()), "version": 4}
    client = FakeClient(_response([stored_row]))

    saved = SupabaseCarts(client).save(_cart(version=3), expected_version=3)

    assert saved.version == 4
    assert saved.lines[0].quantity == 2
    calls = client.executed[0].calls
    assert ("eq", ("version", 3), {}) in calls
    update_payload = next(args[0] for name, args, _ in calls if name == "update")
    assert update_payload["version"] == 4


def test_cart_update_without_match_is_a_conflict() -> None:
    carts = SupabaseCarts(FakeClient(_response([])))

    with pytest.raises(VersionConflict):
        carts.save(_cart(version=3), expected_version=3)


def test_assignment_row_mapping() -> None:
    assignment = _assignment(AssignmentStatus.ACCEPTED)
    row = assignment_to_row(assignment)

    assert row["status"] == "Accepted"
    assert row["restaurant_location"] == {"longitude": 46.7, "latitude": 24.7}
    assert row["created_at"] == NOW.isoformat()

    restored = assignment_from_row(row)
    assert restored.customer_location == assignment.customer_location
    assert restored.created_at == NOW
    assert restored.accepted_at is None


def test_claim_lost_race_returns_none() -> None:
    pending_row = assignment_to_row(_assignment())
    client = FakeClient(_response([pending_row]), _api_error("23505"))

    assert SupabaseAssignments(client).claim("A1", {"accepted_at": NOW}) is None
    assert [query.table for query in client.executed] == ["delivery_assignments", "assignment_claims"]


def test_claim_success_updates_pending_row() -> None:
    pending_row = assignment_to_row(_assignment())
    accepted_row = {**pending_row, "status": "Accepted", "accepted_at": NOW.isoformat()}
    client = FakeClient(
        _response([pending_row]),
        _response([{"order_id": "O1"}]),
        _response([accepted_row]),
        _response([]),
    )

    claimed = SupabaseAssignments(client).claim("A1", {"accepted_at": NOW, "updated_at": NOW})

    assert claimed.status == AssignmentStatus.ACCEPTED
    assert claimed.accepted_at == NOW
    update_calls = client.executed[2].calls
    assert ("eq", ("status", "Pending"), {}) in update_calls


def test_claim_is_released_when_assignment_moved_on() -> None:
    pending_row = assignment_to_row(_assignment())
    client = FakeClient(
        _response([pending_row]),
        _response([{"order_id": "O1"}]),
        _response([]),
        _response([{"order_id": "O1"}]),
    )

    assert SupabaseAssignments(client).claim("A1", {"accepted_at": NOW}) is None
    release = client.executed[3]
    assert release.table == "assignment_claims"
    assert release.calls[0][0] == "delete"


def test_claim_is_released_when_accept_update_times_out() -> None:
    pending_row = assignment_to_row(_assignment())
    client = FakeClient(
        _response([pending_row]),
        _response([{"order_id": "O1"}]),
        httpx.ReadTimeout("slow"),
        _response([{"order_id": "O1"}]),
    )

    with pytest.raises(Unavailable):
        SupabaseAssignments(client).claim("A1", {"accepted_at": NOW})

    executed = [(query.table, query.calls[0][0]) for query in client.executed]
    assert executed[-1] == ("assignment_claims", "delete")
    assert ("eq", ("assignment_id", "A1"), {}) in client.executed[-1].calls
    assert client.outcomes == []


def test_counts_read_exact_count() -> None:
    client = FakeClient(_response([], count=7))

    total = SupabaseAssignments(client).count_status_between(
        AssignmentStatus.DELIVERED,
        "delivered_at",
        NOW,
        NOW.replace(day=2),
    )

    assert total == 7
    calls = client.executed[0].calls
    assert ("select", ("assignment_id",), {"count": "exact"}) in calls
    assert ("eq", ("status", "Delivered"), {}) in calls
