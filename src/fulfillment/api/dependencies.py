"""Wiring of repositories and services for the HTTP layer."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from fastapi import Request

from ..config import Settings
from ..persistence import memory
from ..persistence.repositories import (
    AssignmentRepository,
    CartRepository,
    CatalogDirectory,
    CouponDirectory,
    CourierRepository,
    CustomerDirectory,
    OrderDirectory,
    RestaurantDirectory,
)
from ..services.cart import CartStore
from ..services.dispatch import DispatchEngine, EventBus
from ..services.pricing import CouponLedger, TariffPolicy
from ..services.stats import StatsAggregator

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ServiceContainer:
    catalog: CatalogDirectory
    restaurants: RestaurantDirectory
    customers: CustomerDirectory
    coupons: CouponDirectory
    orders: OrderDirectory
    couriers: CourierRepository
    carts: CartRepository
    assignments: AssignmentRepository
    events: EventBus
    cart_store: CartStore
    dispatch: DispatchEngine
    stats: StatsAggregator


def _memory_repositories() -> dict:
    return {
        "catalog": memory.InMemoryCatalog(),
        "restaurants": memory.InMemoryRestaurants(),
        "customers": memory.InMemoryCustomers(),
        "coupons": memory.InMemoryCoupons(),
        "orders": memory.InMemoryOrders(),
        "couriers": memory.InMemoryCouriers(),
        "carts": memory.InMemoryCarts(),
        "assignments": memory.InMemoryAssignments(),
    }


def _supabase_repositories() -> dict:
    from ..db.supabase import get_supabase_client
    from ..persistence import supabase_store

    client = get_supabase_client()
    if client is None:
        raise RuntimeError("storage_backend is 'supabase' but FF_SUPABASE_URL / FF_SUPABASE_KEY are not set.")
    return {
        "catalog": supabase_store.SupabaseCatalog(client),
        "restaurants": supabase_store.SupabaseRestaurants(client),
        "customers": supabase_store.SupabaseCustomers(client),
        "coupons": supabase_store.SupabaseCoupons(client),
        "orders": supabase_store.SupabaseOrders(client),
        "couriers": supabase_store.SupabaseCouriers(client),
        "carts": supabase_store.SupabaseCarts(client),
        "assignments": supabase_store.SupabaseAssignments(client),
    }


def build_container(settings: Settings) -> ServiceContainer:
    if settings.storage_backend == "supabase":
        repositories = _supabase_repositories()
    else:
        repositories = _memory_repositories()
    logger.info("Using %s storage backend", settings.storage_backend)

    events = EventBus()
    cart_store = CartStore(
        carts=repositories["carts"],
        catalog=repositories["catalog"],
        restaurants=repositories["restaurants"],
        customers=repositories["customers"],
        coupons=CouponLedger(repositories["coupons"]),
        tariff=TariffPolicy.from_settings(settings),
        allow_mixed_restaurants=settings.allow_mixed_restaurant_carts,
        max_retries=settings.cart_save_max_retries,
        lock_timeout=settings.lock_timeout_seconds,
    )
    dispatch = DispatchEngine(
        orders=repositories["orders"],
        restaurants=repositories["restaurants"],
        customers=repositories["customers"],
        couriers=repositories["couriers"],
        assignments=repositories["assignments"],
        events=events,
        radius_km=settings.dispatch_radius_km,
        distance_precision=settings.distance_precision,
        lock_timeout=settings.lock_timeout_seconds,
    )
    return ServiceContainer(
        **repositories,
        events=events,
        cart_store=cart_store,
        dispatch=dispatch,
        stats=StatsAggregator(repositories["assignments"]),
    )


def get_container(request: Request) -> ServiceContainer:
    return request.app.state.container


def get_cart_store(request: Request) -> CartStore:
    return get_container(request).cart_store


def get_dispatch(request: Request) -> DispatchEngine:
    return get_container(request).dispatch


def get_stats(request: Request) -> StatsAggregator:
    return get_container(request).stats
