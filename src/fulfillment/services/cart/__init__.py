"""Customer cart service."""

from .service import CartStore, LineChange

__all__ = ["CartStore", "LineChange"]
