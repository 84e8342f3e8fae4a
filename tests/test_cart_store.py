import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.fulfillment.errors import InvalidInput, InvalidState, LocationMissing, MixedRestaurant, NotFound, Unavailable, VersionConflict
from src.fulfillment.persistence.memory import InMemoryCarts
from src.fulfillment.services.cart import CartStore, LineChange
from src.fulfillment.services.pricing import CouponLedger


def _add(store: CartStore, customer_id: str, item_id: str, quantity: int, option_id: str | None = None, coupon_id=None):
    return store.add_or_update_lines(customer_id, [LineChange(item_id=item_id, quantity=quantity, option_id=option_id)], coupon_id)


def test_first_add_creates_priced_cart(cart_store: CartStore) -> None:
    cart = _add(cart_store, "C-far", "burger", 2)

    assert cart.cart_id == "cart-1"
    assert cart.restaurant_id == "R1"
    assert cart.version == 0
    assert cart.subtotal == 200
    assert cart.distance_km == pytest.approx(11.12)
    assert cart.delivery_fee == 34
    assert cart.coupon_discount == 0
    assert cart.final_amount == 234
    assert cart.delivery_eta == "60 mins"
    assert cart.total_item_count == 2


def test_matching_lines_accumulate_quantity(cart_store: CartStore) -> None:
    _add(cart_store, "C-home", "burger", 2)
    cart = _add(cart_store, "C-home", "burger", 3)

    assert len(cart.lines) == 1
    assert cart.lines[0].quantity == 5
    assert cart.subtotal == 500
    assert cart.version == 1


def test_options_make_distinct_lines(cart_store: CartStore) -> None:
    cart = cart_store.add_or_update_lines(
        "C-home",
        [
            LineChange(item_id="burger", quantity=1, option_id="large"),
            LineChange(item_id="burger", quantity=1),
        ],
    )

    assert {line.key for line in cart.lines} == {("burger", None), ("burger", "large")}
    assert cart.subtotal == 210


def test_line_dropping_to_zero_is_removed(cart_store: CartStore) -> None:
    _add(cart_store, "C-home", "burger", 2)
    _add(cart_store, "C-home", "fries", 1)
    cart = _add(cart_store, "C-home", "burger", -5)

    assert [line.item_id for line in cart.lines] == ["fries"]
    assert cart.restaurant_id == "R1"

    cart = _add(cart_store, "C-home", "fries", -1)
    assert cart.lines == []
    assert cart.restaurant_id is None
    assert cart.delivery_fee == 0
    assert cart.final_amount == 0


def test_new_line_with_non_positive_quantity_is_ignored(cart_store: CartStore) -> None:
    cart = _add(cart_store, "C-home", "fries", 0)
    assert cart.lines == []

    cart = _add(cart_store, "C-home", "fries", -2)
    assert cart.lines == []
    assert cart.total_item_count == 0


def test_empty_cart_frees_restaurant_pin(cart_store: CartStore) -> None:
    _add(cart_store, "C-home", "burger", 1)
    _add(cart_store, "C-home", "burger", -1)
    cart = _add(cart_store, "C-home", "sushi", 1)

    assert cart.restaurant_id == "R2"


def test_unknown_item_or_option_is_not_found(cart_store: CartStore, world) -> None:
    with pytest.raises(NotFound):
        _add(cart_store, "C-home", "pizza", 1)
    with pytest.raises(NotFound):
        _add(cart_store, "C-home", "burger", 1, option_id="xxl")

    assert world.carts.get_by_customer("C-home") is None


def test_unknown_customer_is_not_found(cart_store: CartStore) -> None:
    with pytest.raises(NotFound):
        _add(cart_store, "C-ghost", "burger", 1)


def test_blank_ids_and_bad_quantities_are_invalid(cart_store: CartStore) -> None:
    with pytest.raises(InvalidInput):
        _add(cart_store, " ", "burger", 1)
    with pytest.raises(InvalidInput):
        _add(cart_store, "C-home", "", 1)
    with pytest.raises(InvalidInput):
        _add(cart_store, "C-home", "burger", 1.5)


def test_missing_locations_fail_without_persisting(cart_store: CartStore, world) -> None:
    with pytest.raises(LocationMissing):
        _add(cart_store, "C-nowhere", "burger", 1)
    with pytest.raises(LocationMissing):
        _add(cart_store, "C-home", "ghost", 1)

    assert world.carts.list_all() == []


def test_items_from_another_restaurant_are_rejected(cart_store: CartStore, world) -> None:
    _add(cart_store, "C-home", "burger", 1)

    with pytest.raises(MixedRestaurant) as excinfo:
        _add(cart_store, "C-home", "sushi", 1)

    assert isinstance(excinfo.value, InvalidState)
    stored = world.carts.get_by_customer("C-home")
    assert [line.item_id for line in stored.lines] == ["burger"]
    assert stored.version == 0


def test_mixed_carts_keep_first_restaurant_when_allowed(world, clock) -> None:
    store = CartStore(
        carts=world.carts,
        catalog=world.catalog,
        restaurants=world.restaurants,
        customers=world.customers,
        coupons=CouponLedger(world.coupons),
        allow_mixed_restaurants=True,
        clock=clock,
    )
    _add(store, "C-home", "burger", 1)
    cart = _add(store, "C-home", "sushi", 2)

    assert cart.restaurant_id == "R1"
    assert cart.subtotal == 160
    assert cart.delivery_fee == 20


def test_coupon_applies_and_clears_with_subtotal(cart_store: CartStore) -> None:
    cart = _add(cart_store, "C-home", "burger", 5, coupon_id="SAVE10")

    assert cart.coupon_discount == 40
    assert cart.applied_coupon_id == "SAVE10"
    assert cart.final_amount == 480

    cart = _add(cart_store, "C-home", "burger", -3)
    assert cart.subtotal == 200
    assert cart.coupon_discount == 0
    assert cart.applied_coupon_id is None

    cart = _add(cart_store, "C-home", "burger", 3)
    assert cart.coupon_discount == 0


def test_unknown_coupon_is_not_found(cart_store: CartStore) -> None:
    with pytest.raises(NotFound):
        _add(cart_store, "C-home", "burger", 1, coupon_id="NOPE")


def test_ineligible_coupon_is_dropped_silently(cart_store: CartStore) -> None:
    _add(cart_store, "C-home", "burger", 5)

    for coupon_id in ("OLD", "OFF"):
        cart = cart_store.apply_coupon("C-home", coupon_id)
        assert cart.applied_coupon_id is None
        assert cart.coupon_discount == 0


def test_apply_and_remove_coupon(cart_store: CartStore) -> None:
    _add(cart_store, "C-home", "burger", 3)

    cart = cart_store.apply_coupon("C-home", "SAVE10")
    assert cart.coupon_discount == 30

    cart = cart_store.remove_coupon("C-home")
    assert cart.applied_coupon_id is None
    assert cart.final_amount == 320


def test_coupon_operations_need_a_cart(cart_store: CartStore) -> None:
    with pytest.raises(NotFound):
        cart_store.apply_coupon("C-home", "SAVE10")
    with pytest.raises(NotFound):
        cart_store.remove_coupon("C-home")


def test_oversized_discount_floors_final_amount(cart_store: CartStore) -> None:
    cart = _add(cart_store, "C-home", "fries", 1, coupon_id="FREE")

    assert cart.coupon_discount == 70
    assert cart.final_amount == 0


def test_remove_line(cart_store: CartStore) -> None:
    _add(cart_store, "C-home", "burger", 2, option_id="large")
    _add(cart_store, "C-home", "fries", 1)

    cart = cart_store.remove_line("C-home", "burger", "large")
    assert [line.key for line in cart.lines] == [("fries", None)]

    with pytest.raises(NotFound):
        cart_store.remove_line("C-home", "burger", "large")


def test_reads_and_deletes(cart_store: CartStore) -> None:
    first = _add(cart_store, "C-home", "burger", 1)
    second = _add(cart_store, "C-near", "fries", 1)

    assert cart_store.get("C-home").cart_id == first.cart_id
    assert {cart.cart_id for cart in cart_store.list_all()} == {first.cart_id, second.cart_id}

    cart_store.delete_by_customer("C-home")
    with pytest.raises(NotFound):
        cart_store.get("C-home")
    with pytest.raises(NotFound):
        cart_store.delete_by_customer("C-home")

    cart_store.delete_by_id(second.cart_id)
    with pytest.raises(NotFound):
        cart_store.delete_by_id(second.cart_id)
    assert cart_store.list_all() == []


class GatedCarts(InMemoryCarts):
    """Parks writes until released so a mutation can be caught mid-flight."""

    def __init__(self) -> None:
        super().__init__()
        self.gate = threading.Event()
        self.writing = threading.Event()
        self.hold_writes = False

    def save(self, cart, expected_version):
        if self.hold_writes:
            self.writing.set()
            self.gate.wait(timeout=5)
        return super().save(cart, expected_version)


def test_delete_by_id_waits_for_customer_mutation(world) -> None:
    carts = GatedCarts()
    store = CartStore(
        carts=carts,
        catalog=world.catalog,
        restaurants=world.restaurants,
        customers=world.customers,
        coupons=CouponLedger(world.coupons),
        lock_timeout=0.05,
        clock=world.clock,
    )
    cart_id = _add(store, "C-home", "burger", 1).cart_id

    carts.hold_writes = True
    writer = threading.Thread(target=_add, args=(store, "C-home", "burger", 1))
    writer.start()
    assert carts.writing.wait(timeout=5)
    try:
        with pytest.raises(Unavailable):
            store.delete_by_id(cart_id)
    finally:
        carts.gate.set()
        writer.join()

    assert store.get("C-home").lines[0].quantity == 2
    store.delete_by_id(cart_id)
    assert carts.get(cart_id) is None


class FlakyCarts(InMemoryCarts):
    def __init__(self, conflicts: int) -> None:
        super().__init__()
        self.conflicts = conflicts
        self.attempts = 0

    def save(self, cart, expected_version):
        self.attempts += 1
        if self.conflicts > 0:
            self.conflicts -= 1
            raise VersionConflict("simulated concurrent writer")
        return super().save(cart, expected_version)


def _store_with(world, carts, max_retries: int = 3) -> CartStore:
    return CartStore(
        carts=carts,
        catalog=world.catalog,
        restaurants=world.restaurants,
        customers=world.customers,
        coupons=CouponLedger(world.coupons),
        max_retries=max_retries,
        clock=world.clock,
    )


def test_version_conflicts_are_retried(world) -> None:
    carts = FlakyCarts(conflicts=2)
    cart = _add(_store_with(world, carts), "C-home", "burger", 1)

    assert carts.attempts == 3
    assert cart.total_item_count == 1


def test_persistent_conflicts_surface_as_unavailable(world) -> None:
    carts = FlakyCarts(conflicts=10)

    with pytest.raises(Unavailable) as excinfo:
        _add(_store_with(world, carts, max_retries=2), "C-home", "burger", 1)

    assert excinfo.value.retryable
    assert carts.attempts == 3
    assert carts.get_by_customer("C-home") is None


def test_concurrent_adds_are_not_lost(cart_store: CartStore) -> None:
    with ThreadPoolExecutor(max_workers=8) as pool:
        list(pool.map(lambda _: _add(cart_store, "C-home", "burger", 1), range(20)))

    cart = cart_store.get("C-home")
    assert cart.lines[0].quantity == 20
    assert cart.subtotal == 2000
    assert cart.version == 19


def test_totals_identity_after_every_mutation(cart_store: CartStore) -> None:
    steps = [("burger", 4, None, "SAVE10"), ("fries", 2, None, None), ("burger", -4, None, None), ("burger", 1, "large", None)]
    for item_id, quantity, option_id, coupon_id in steps:
        cart = _add(cart_store, "C-far", item_id, quantity, option_id=option_id, coupon_id=coupon_id)
        assert cart.final_amount == cart.subtotal + cart.delivery_fee - cart.coupon_discount
        assert cart.final_amount >= 0
