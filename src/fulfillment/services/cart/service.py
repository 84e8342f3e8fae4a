"""Cart storage: merges line changes and re-prices the whole cart on every mutation."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Optional, Sequence

from ...errors import InvalidInput, LocationMissing, MixedRestaurant, NotFound, Unavailable, VersionConflict
from ...models.domain import Cart, CartLine, CatalogItem, Customer, ItemOption
from ...persistence.repositories import CartRepository, CatalogDirectory, CustomerDirectory, RestaurantDirectory
from ...utils.locks import KeyedLocks
from ...utils.serialization import utc_now
from ..pricing import DEFAULT_TARIFF, CouponLedger, TariffPolicy, compute_totals

logger = logging.getLogger(__name__)

_KEEP = object()


@dataclass(slots=True)
class LineChange:
    """Requested change for one (item, option) line. Negative quantities decrement."""

    item_id: str
    quantity: int
    option_id: Optional[str] = None


@dataclass(slots=True)
class _ResolvedChange:
    change: LineChange
    item: CatalogItem
    option: Optional[ItemOption]


class CartStore:
    """Owns the single active cart of each customer."""

    def __init__(
        self,
        *,
        carts: CartRepository,
        catalog: CatalogDirectory,
        restaurants: RestaurantDirectory,
        customers: CustomerDirectory,
        coupons: CouponLedger,
        tariff: TariffPolicy = DEFAULT_TARIFF,
        allow_mixed_restaurants: bool = False,
        max_retries: int = 3,
        lock_timeout: float = 5.0,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = lambda: uuid.uuid4().hex,
    ) -> None:
        self.carts = carts
        self.catalog = catalog
        self.restaurants = restaurants
        self.customers = customers
        self.coupons = coupons
        self.tariff = tariff
        self.allow_mixed_restaurants = allow_mixed_restaurants
        self.max_retries = max_retries
        self.clock = clock
        self.id_factory = id_factory
        self._locks = KeyedLocks("cart", timeout=lock_timeout)

    # -------------------------------------------------------------------
    # Reads and deletes
    # -------------------------------------------------------------------
    def get(self, customer_id: str) -> Cart:
        cart = self.carts.get_by_customer(customer_id)
        if cart is None:
            raise NotFound("Cart not found.", customer_id=customer_id)
        return cart

    def list_all(self) -> list[Cart]:
        return self.carts.list_all()

    def delete_by_customer(self, customer_id: str) -> None:
        with self._locks.hold(customer_id):
            if not self.carts.delete_by_customer(customer_id):
                raise NotFound("Cart not found.", customer_id=customer_id)

    def delete_by_id(self, cart_id: str) -> None:
        cart = self.carts.get(cart_id)
        if cart is None:
            raise NotFound("Cart not found.", cart_id=cart_id)
        with self._locks.hold(cart.customer_id):
            if not self.carts.delete(cart_id):
                raise NotFound("Cart not found.", cart_id=cart_id)

    # -------------------------------------------------------------------
    # Mutations
    # -------------------------------------------------------------------
    def add_or_update_lines(
        self,
        customer_id: str,
        lines: Sequence[LineChange],
        coupon_id: Optional[str] = None,
    ) -> Cart:
        """Merge ``lines`` into the customer's cart, creating it on first use.

        Quantities are added to matching (item, option) lines; a line whose
        quantity drops to zero or below is removed, and a new line with a
        non-positive quantity is ignored. Passing ``coupon_id`` replaces the
        cart's coupon; otherwise the current coupon is re-evaluated.
        """

        _require_id(customer_id, "customer_id")
        resolved = [self._resolve(change) for change in lines]
        coupon_override = self._require_coupon(coupon_id) if coupon_id else _KEEP
        return self._mutate(customer_id, lambda cart: self._merge(cart, resolved), coupon_override, create=True)

    def remove_line(self, customer_id: str, item_id: str, option_id: Optional[str] = None) -> Cart:
        def _remove(cart: Cart) -> None:
            line = next((line for line in cart.lines if line.key == (item_id, option_id)), None)
            if line is None:
                raise NotFound("Item not in cart.", item_id=item_id, option_id=option_id)
            cart.lines.remove(line)
            if not cart.lines:
                cart.restaurant_id = None

        return self._mutate(customer_id, _remove, _KEEP, create=False)

    def apply_coupon(self, customer_id: str, coupon_id: str) -> Cart:
        """Attach a coupon. An ineligible coupon is dropped silently by pricing."""

        _require_id(coupon_id, "coupon_id")
        return self._mutate(customer_id, lambda cart: None, self._require_coupon(coupon_id), create=False)

    def remove_coupon(self, customer_id: str) -> Cart:
        return self._mutate(customer_id, lambda cart: None, None, create=False)

    # -------------------------------------------------------------------
    # Internals
    # -------------------------------------------------------------------
    def _require_coupon(self, coupon_id: str) -> str:
        if self.coupons.lookup(coupon_id) is None:
            raise NotFound("Coupon not found.", coupon_id=coupon_id)
        return coupon_id

    def _resolve(self, change: LineChange) -> _ResolvedChange:
        _require_id(change.item_id, "item_id")
        if isinstance(change.quantity, bool) or not isinstance(change.quantity, int):
            raise InvalidInput("Quantity must be an integer.", item_id=change.item_id)
        item = self.catalog.get(change.item_id)
        if item is None:
            raise NotFound("Item not found.", item_id=change.item_id)
        option = None
        if change.option_id is not None:
            option = item.options.get(change.option_id)
            if option is None:
                raise NotFound("Item option not found.", item_id=change.item_id, option_id=change.option_id)
        return _ResolvedChange(change=change, item=item, option=option)

    def _merge(self, cart: Cart, resolved: Iterable[_ResolvedChange]) -> None:
        for entry in resolved:
            key = (entry.item.item_id, entry.change.option_id)
            existing = next((line for line in cart.lines if line.key == key), None)
            if existing is not None:
                existing.quantity += entry.change.quantity
                if existing.quantity <= 0:
                    cart.lines.remove(existing)
                continue
            if entry.change.quantity <= 0:
                continue

            if not cart.lines or cart.restaurant_id is None:
                cart.restaurant_id = entry.item.restaurant_id
            elif cart.restaurant_id != entry.item.restaurant_id and not self.allow_mixed_restaurants:
                raise MixedRestaurant(
                    "Cart already holds items from another restaurant.",
                    cart_restaurant_id=cart.restaurant_id,
                    item_restaurant_id=entry.item.restaurant_id,
                )

            cart.lines.append(
                CartLine(
                    item_id=entry.item.item_id,
                    option_id=entry.change.option_id,
                    quantity=entry.change.quantity,
                    unit_price=entry.item.price,
                    option_surcharge=entry.option.surcharge if entry.option else 0.0,
                    name=entry.item.name,
                    image=entry.item.image,
                )
            )
        if not cart.lines:
            cart.restaurant_id = None

    def _reprice(self, cart: Cart, customer: Customer, now: datetime) -> None:
        if customer.location is None:
            raise LocationMissing("Customer has no location.", customer_id=customer.customer_id)
        restaurant_location = None
        if cart.restaurant_id is not None:
            restaurant = self.restaurants.get(cart.restaurant_id)
            if restaurant is None:
                raise NotFound("Restaurant not found.", restaurant_id=cart.restaurant_id)
            if restaurant.location is None:
                raise LocationMissing("Restaurant has no location.", restaurant_id=cart.restaurant_id)
            restaurant_location = restaurant.location

        coupon = self.coupons.lookup(cart.applied_coupon_id)
        totals = compute_totals(
            cart.lines,
            restaurant_location,
            customer.location,
            coupon,
            tariff=self.tariff,
            now=now,
        )
        if cart.applied_coupon_id and totals.applied_coupon_id is None:
            logger.info("Coupon %s no longer applies to cart of customer %s", cart.applied_coupon_id, cart.customer_id)
        cart.apply_totals(totals)

    def _mutate(self, customer_id: str, change: Callable[[Cart], None], coupon_id: object, *, create: bool) -> Cart:
        with self._locks.hold(customer_id):
            customer = self.customers.get(customer_id)
            if customer is None:
                raise NotFound("Customer not found.", customer_id=customer_id)

            for attempt in range(self.max_retries + 1):
                now = self.clock()
                stored = self.carts.get_by_customer(customer_id)
                if stored is None and not create:
                    raise NotFound("Cart not found.", customer_id=customer_id)
                cart = stored or Cart(cart_id=self.id_factory(), customer_id=customer_id, created_at=now)
                expected_version = stored.version if stored is not None else None

                change(cart)
                if coupon_id is not _KEEP:
                    cart.applied_coupon_id = coupon_id
                self._reprice(cart, customer, now)
                cart.updated_at = now
                try:
                    return self.carts.save(cart, expected_version)
                except VersionConflict as exc:
                    logger.warning("Cart write conflict for customer %s (attempt %d): %s", customer_id, attempt + 1, exc)

            raise Unavailable("Cart is being modified concurrently; retry later.", customer_id=customer_id)


def _require_id(value: Optional[str], name: str) -> None:
    if not isinstance(value, str) or not value.strip():
        raise InvalidInput(f"{name} is required.")
