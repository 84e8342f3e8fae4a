"""Delivery dispatch: courier discovery, assignment lifecycle and events."""

from .engine import DispatchEngine, DispatchOutcome, DispatchResult
from .events import EventBus

__all__ = ["DispatchEngine", "DispatchOutcome", "DispatchResult", "EventBus"]
