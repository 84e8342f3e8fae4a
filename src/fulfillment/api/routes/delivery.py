"""Delivery dispatch and tracking endpoints."""

from __future__ import annotations

from datetime import date
from typing import List

from fastapi import APIRouter, Depends, Query, status

from ...errors import FulfillmentError
from ...schemas.delivery import (
    AssignmentActionRequest,
    AssignmentModel,
    AssignOrderRequest,
    ChatMessageModel,
    ChatMessageRequest,
    CourierLocationRequest,
    CourierLocationResponse,
    DispatchResponse,
    StatusUpdateRequest,
    TrackDeliveryRequest,
    TrackDeliveryResponse,
)
from ...schemas.stats import DailyStatsResponse
from ...services.dispatch import DispatchEngine, DispatchOutcome
from ...services.stats import StatsAggregator
from ..dependencies import get_dispatch, get_stats
from ..errors import to_http_exception

router = APIRouter(prefix="/delivery", tags=["delivery"])

_OUTCOME_MESSAGES = {
    DispatchOutcome.CREATED: "Order broadcast to nearby couriers.",
    DispatchOutcome.NO_COURIERS: "No couriers available nearby.",
    DispatchOutcome.ALREADY_CLAIMED: "Order already accepted by a courier.",
    DispatchOutcome.ALREADY_BROADCAST: "Order already broadcast; awaiting acceptance.",
}


@router.post("/assign-order", response_model=DispatchResponse, status_code=status.HTTP_200_OK)
def assign_order(payload: AssignOrderRequest, engine: DispatchEngine = Depends(get_dispatch)) -> DispatchResponse:
    try:
        result = engine.assign(payload.order_id)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return DispatchResponse(
        order_id=payload.order_id,
        outcome=result.outcome.value,
        message=_OUTCOME_MESSAGES[result.outcome],
        assignments=[AssignmentModel.from_domain(item) for item in result.assignments],
    )


@router.post("/accept-order", response_model=AssignmentModel, status_code=status.HTTP_200_OK)
def accept_order(payload: AssignmentActionRequest, engine: DispatchEngine = Depends(get_dispatch)) -> AssignmentModel:
    try:
        return AssignmentModel.from_domain(engine.accept(payload.assignment_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.post("/cancel", response_model=AssignmentModel, status_code=status.HTTP_200_OK)
def cancel_assignment(payload: AssignmentActionRequest, engine: DispatchEngine = Depends(get_dispatch)) -> AssignmentModel:
    try:
        return AssignmentModel.from_domain(engine.cancel(payload.assignment_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.put("/track-delivery", response_model=TrackDeliveryResponse, status_code=status.HTTP_200_OK)
def track_delivery(payload: TrackDeliveryRequest, engine: DispatchEngine = Depends(get_dispatch)) -> TrackDeliveryResponse:
    try:
        assignment = engine.update_courier_position_and_track(
            payload.courier_id,
            payload.longitude,
            payload.latitude,
            status=payload.status,
        )
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    if assignment is None:
        return TrackDeliveryResponse(courier_id=payload.courier_id, message="Location updated; no active delivery.")
    return TrackDeliveryResponse(
        courier_id=payload.courier_id,
        message="Location and delivery updated.",
        assignment=AssignmentModel.from_domain(assignment),
    )


@router.put("/couriers/{courier_id}/location", response_model=CourierLocationResponse, status_code=status.HTTP_200_OK)
def update_courier_location(
    courier_id: str,
    payload: CourierLocationRequest,
    engine: DispatchEngine = Depends(get_dispatch),
) -> CourierLocationResponse:
    try:
        courier = engine.update_courier_location(courier_id, payload.longitude, payload.latitude)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return CourierLocationResponse.from_domain(courier)


@router.post("/update-status",response_model=AssignmentModel, status_code=status.HTTP_200_OK)
def update_status(payload: StatusUpdateRequest, engine: DispatchEngine = Depends(get_dispatch)) -> AssignmentModel:
    try:
        return AssignmentModel.from_domain(engine.update_status(payload.assignment_id, payload.status))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.get("/assignments/{assignment_id}", response_model=AssignmentModel, status_code=status.HTTP_200_OK)
def get_assignment(assignment_id: str, engine: DispatchEngine = Depends(get_dispatch)) -> AssignmentModel:
    try:
        return AssignmentModel.from_domain(engine.get_assignment(assignment_id))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.get("/orders/{order_id}/assignments", response_model=List[AssignmentModel], status_code=status.HTTP_200_OK)
def list_order_assignments(order_id: str, engine: DispatchEngine = Depends(get_dispatch)) -> List[AssignmentModel]:
    try:
        return [AssignmentModel.from_domain(item) for item in engine.assignments_for_order(order_id)]
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.get("/couriers/{courier_id}/offers", response_model=List[AssignmentModel], status_code=status.HTTP_200_OK)
def list_courier_offers(courier_id: str, engine: DispatchEngine = Depends(get_dispatch)) -> List[AssignmentModel]:
    try:
        return [AssignmentModel.from_domain(item) for item in engine.pending_offers(courier_id)]
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.get("/assignments/{assignment_id}/chat", response_model=List[ChatMessageModel], status_code=status.HTTP_200_OK)
def get_chat(assignment_id: str, engine: DispatchEngine = Depends(get_dispatch)) -> List[ChatMessageModel]:
    try:
        return [ChatMessageModel.from_domain(message) for message in engine.chat(assignment_id)]
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.post("/assignments/{assignment_id}/chat", response_model=AssignmentModel, status_code=status.HTTP_201_CREATED)
def post_chat_message(
    assignment_id: str,
    payload: ChatMessageRequest,
    engine: DispatchEngine = Depends(get_dispatch),
) -> AssignmentModel:
    try:
        return AssignmentModel.from_domain(engine.post_message(assignment_id, payload.sender, payload.text))
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc


@router.get("/daily-stats", response_model=DailyStatsResponse, status_code=status.HTTP_200_OK)
def daily_stats(
    day: date | None = Query(default=None, description="UTC day (YYYY-MM-DD); defaults to today."),
    stats: StatsAggregator = Depends(get_stats),
) -> DailyStatsResponse:
    try:
        result = stats.daily_stats(day)
    except FulfillmentError as exc:
        raise to_http_exception(exc) from exc
    return DailyStatsResponse(day=result.day, created=result.created, cancelled=result.cancelled, completed=result.completed)
