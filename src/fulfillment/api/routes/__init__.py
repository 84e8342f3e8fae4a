"""Route group exports."""

from . import cart, delivery, health

__all__ = ["cart", "delivery", "health"]
