"""Delivery dispatch API schemas."""

from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field

from ..models.domain import Assignment, ChatMessage, Courier
from ..utils.serialization import to_jsonable


class AssignOrderRequest(BaseModel):
    order_id: str = Field(min_length=1)


class AssignmentActionRequest(BaseModel):
    assignment_id: str = Field(min_length=1)


class StatusUpdateRequest(BaseModel):
    assignment_id: str = Field(min_length=1)
    status: str = Field(description="Picked or Delivered.")


class TrackDeliveryRequest(BaseModel):
    courier_id: str = Field(min_length=1)
    longitude: float
    latitude: float
    status: str | None = Field(default=None, description="Optional Accepted, Picked or Delivered.")


class ChatMessageRequest(BaseModel):
    sender: str = Field(description="Customer or Courier.")
    text: str = Field(min_length=1, max_length=2000)


class CoordinateModel(BaseModel):
    longitude: float
    latitude: float


class ChatMessageModel(BaseModel):
    sender: str
    text: str
    timestamp: str

    @classmethod
    def from_domain(cls, message: ChatMessage) -> "ChatMessageModel":
        return cls(**to_jsonable(message))


class AssignmentModel(BaseModel):
    assignment_id: str
    order_id: str
    courier_id: str
    restaurant_id: str
    customer_id: str
    restaurant_location: CoordinateModel
    customer_location: CoordinateModel
    pickup_distance_km: float
    drop_distance_km: float
    status: str
    chat_active: bool
    created_at: str | None = None
    updated_at: str | None = None
    accepted_at: str | None = None
    picked_at: str | None = None
    delivered_at: str | None = None
    cancelled_at: str | None = None
    snapshot: dict | None = None
    chat: List[ChatMessageModel] = Field(default_factory=list)

    @classmethod
    def from_domain(cls, assignment: Assignment) -> "AssignmentModel":
        return cls(**to_jsonable(assignment), chat_active=assignment.chat_active)


class DispatchResponse(BaseModel):
    order_id: str
    outcome: str
    message: str
    assignments: List[AssignmentModel]


class TrackDeliveryResponse(BaseModel):
    courier_id: str
    message: str
    assignment: AssignmentModel | None = None


class CourierLocationRequest(BaseModel):
    longitude: float
    latitude: float


class CourierLocationResponse(BaseModel):
    courier_id: str
    full_name: str
    is_active: bool
    location: CoordinateModel

    @classmethod
    def from_domain(cls, courier: Courier) -> "CourierLocationResponse":
        return cls(
            courier_id=courier.courier_id,
            full_name=courier.full_name,
            is_active=courier.is_active,
            location=CoordinateModel(**to_jsonable(courier.location)),
        )
