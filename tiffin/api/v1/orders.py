"""
Order lifecycle routes
"""

from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query

from ..deps import get_admin_actor, get_order_service
from ...core.error_handler import create_paginated_response, create_success_response
from ...core.security import get_current_actor
from ...models.base import PaginationParams
from ...models.order import MealType, OrderStatus
from ...models.user import Actor
from ...schemas.common import ERROR_RESPONSES, ApiResponse, BulkResultResponse
from ...schemas.order import (
    BulkConfirmDeliveryRequest,
    BulkOrderStatusUpdateRequest,
    CancelOrderRequest,
    ConfirmDeliveryRequest,
    OrderStatusUpdateRequest,
    SkipOrderRequest,
)
from ...services import OrderService

router = APIRouter(responses=ERROR_RESPONSES)
admin_router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/orders")
def list_orders(
    status: Optional[OrderStatus] = Query(None),
    meal_type: Optional[MealType] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    vendor_id: Optional[int] = Query(None, description="Admin only filter"),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_current_actor),
    service: OrderService = Depends(get_order_service),
):
    """Orders visible to the caller"""
    result = service.list_orders(
        actor,
        status=status.value if status else None,
        meal_type=meal_type.value if meal_type else None,
        start_date=start_date,
        end_date=end_date,
        vendor_id=vendor_id,
        pagination=PaginationParams(page=page, size=size),
    )
    return create_paginated_response(
        [o.model_dump(mode="json") for o in result.items], result.total, result.page, result.size
    )


@router.patch("/orders/bulk-status", response_model=ApiResponse[BulkResultResponse])
def bulk_update_order_status(
    req: BulkOrderStatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: OrderService = Depends(get_order_service),
):
    result = service.bulk_update_order_status(req.order_ids, req.status.value, actor, req.notes)
    return create_success_response(
        result.to_dict(), f"{len(result.success)} updated, {len(result.failed)} failed"
    )


@router.get("/orders/{order_id}")
def get_order(
    order_id: int,
    actor: Actor = Depends(get_current_actor),
    service: OrderService = Depends(get_order_service),
):
    return create_success_response(service.get_order(order_id, actor))


@router.patch("/orders/{order_id}/status")
def update_order_status(
    order_id: int,
    req: OrderStatusUpdateRequest,
    actor: Actor = Depends(get_current_actor),
    service: OrderService = Depends(get_order_service),
):
    order = service.update_order_status(order_id, req.status.value, actor, req.notes)
    return create_success_response(order.model_dump(mode="json"), "Order status updated")


@router.post("/orders/{order_id}/skip")
def skip_order(
    order_id: int,
    req: SkipOrderRequest,
    actor: Actor = Depends(get_current_actor),
    service: OrderService = Depends(get_order_service),
):
    order = service.skip_order(order_id, actor, req.reason)
    return create_success_response(order.model_dump(mode="json"), "Meal skipped")


@router.post("/orders/{order_id}/cancel")
def cancel_order(
    order_id: int,
    req: CancelOrderRequest,
    actor: Actor = Depends(get_current_actor),
    service: OrderService = Depends(get_order_service),
):
    order = service.cancel_order(order_id, actor, req.reason)
    return create_success_response(order.model_dump(mode="json"), "Order cancelled")


@admin_router.post("/orders/bulk-confirm-delivery", response_model=ApiResponse[BulkResultResponse])
def bulk_confirm_delivery(
    req: BulkConfirmDeliveryRequest,
    actor: Actor = Depends(get_admin_actor),
    service: OrderService = Depends(get_order_service),
):
    result = service.bulk_confirm_delivery(req.order_ids, actor, req.notes)
    return create_success_response(
        result.to_dict(), f"{len(result.success)} confirmed, {len(result.failed)} failed"
    )


@admin_router.post("/orders/{order_id}/confirm-delivery")
def confirm_delivery(
    order_id: int,
    req: ConfirmDeliveryRequest,
    actor: Actor = Depends(get_admin_actor),
    service: OrderService = Depends(get_order_service),
):
    order = service.confirm_delivery(order_id, actor, req.notes)
    return create_success_response(order.model_dump(mode="json"), "Delivery confirmed")
