"""Error taxonomy shared by pricing, carts and dispatch."""

from __future__ import annotations


class FulfillmentError(Exception):
    """Base class for every error the engine reports to callers."""

    code = "fulfillment_error"
    retryable = False

    def __init__(self, message: str, **context: object) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"code": self.code, "message": self.message, "retryable": self.retryable}
        if self.context:
            payload["context"] = {key: str(value) for key, value in self.context.items()}
        return payload


class NotFound(FulfillmentError):
    code = "not_found"


class InvalidInput(FulfillmentError):
    code = "invalid_input"


class LocationMissing(FulfillmentError):
    """Customer or restaurant has no usable coordinate."""

    code = "location_missing"


class InvalidState(FulfillmentError):
    code = "invalid_state"


class MixedRestaurant(InvalidState):
    """A cart already pinned to one restaurant received an item from another."""

    code = "mixed_restaurant"


class Unavailable(FulfillmentError):
    """Downstream store or lock did not answer in time; safe to retry."""

    code = "unavailable"
    retryable = True


class VersionConflict(Exception):
    """Optimistic write lost against a concurrent writer. Never leaves the cart service."""
