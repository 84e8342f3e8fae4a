"""Delivery statistics schemas."""

from __future__ import annotations

from pydantic import BaseModel


class DailyStatsResponse(BaseModel):
    day: str
    created: int
    cancelled: int
    completed: int
