"""
Admin daily meal and order creation log routes
"""

from dataclasses import asdict
from datetime import date
from typing import Optional
from fastapi import APIRouter, Depends, Query

from ..deps import (
    get_admin_actor,
    get_daily_meal_service,
    get_order_creation_log_service,
    get_order_generation_service,
)
from ...core.error_handler import create_paginated_response, create_success_response
from ...models.base import PaginationParams
from ...models.order_creation_log import LogStatus
from ...models.user import Actor
from ...schemas.common import ERROR_RESPONSES
from ...schemas.daily_meal import RefreshOrdersRequest, SetTodayMealRequest
from ...services import (
    DailyMealService,
    GenerationResult,
    OrderCreationLogService,
    OrderGenerationService,
)

router = APIRouter(responses=ERROR_RESPONSES)


def _generation_summary(result: GenerationResult) -> dict:
    return {
        "log_id": result.log_id,
        "total_users_found": result.total_users_found,
        "created": [c.model_dump(mode="json") for c in result.created],
        "skipped_existing": [asdict(s) for s in result.skipped_existing],
        "failures": [f.model_dump(mode="json") for f in result.failures],
    }


@router.post("/daily-meals/set-today")
def set_today_meal(
    req: SetTodayMealRequest,
    actor: Actor = Depends(get_admin_actor),
    service: DailyMealService = Depends(get_daily_meal_service),
):
    """Set today's menus for a plan's category and generate orders"""
    result = service.set_today_meal(req.plan_id, req.lunch_menu_ids, req.dinner_menu_ids,
                                    actor.user_id, req.notes)
    data = {
        "daily_meal": result.daily_meal.model_dump(mode="json"),
        "generation": _generation_summary(result.generation) if result.generation else None,
        "generation_error": result.generation_error,
    }
    if result.generation is None:
        message = "Daily meal set; order generation failed, use refresh to retry"
    else:
        message = (f"Daily meal set. {len(result.generation.created)} orders created, "
                   f"{len(result.generation.failures)} failed.")
    return create_success_response(data, message)


@router.post("/daily-meals/refresh")
def refresh_orders(
    req: RefreshOrdersRequest,
    actor: Actor = Depends(get_admin_actor),
    service: DailyMealService = Depends(get_daily_meal_service),
):
    result = service.refresh_orders(req.plan_id, actor.user_id)
    return create_success_response(
        _generation_summary(result),
        f"{len(result.created)} orders created, {len(result.skipped_existing)} already existed"
    )


@router.get("/daily-meals")
def list_daily_meals(
    meal_date: Optional[date] = Query(None, description="Defaults to today"),
    vendor_category: Optional[str] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_admin_actor),
    service: DailyMealService = Depends(get_daily_meal_service),
):
    result = service.get_meals(meal_date, vendor_category, PaginationParams(page=page, size=size))
    return create_paginated_response(
        [m.model_dump(mode="json") for m in result.items], result.total, result.page, result.size
    )


@router.get("/daily-meals/plans/{plan_id}/menus")
def get_available_menus(
    plan_id: int,
    actor: Actor = Depends(get_admin_actor),
    service: DailyMealService = Depends(get_daily_meal_service),
):
    menus = service.get_available_menus(plan_id)
    return create_success_response({
        "plan_id": plan_id,
        "menus": [m.model_dump(mode="json") for m in menus],
        "total": len(menus),
    })


@router.get("/order-creation-logs")
def get_order_creation_logs(
    status: Optional[LogStatus] = Query(None),
    plan_id: Optional[int] = Query(None),
    vendor_category: Optional[str] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    actor: Actor = Depends(get_admin_actor),
    service: OrderCreationLogService = Depends(get_order_creation_log_service),
):
    result = service.get_logs(
        status=status.value if status else None,
        plan_id=plan_id,
        vendor_category=vendor_category,
        start_date=start_date,
        end_date=end_date,
        pagination=PaginationParams(page=page, size=size),
    )
    return create_paginated_response(
        [log.model_dump(mode="json") for log in result.items], result.total, result.page, result.size
    )


@router.post("/order-creation-logs/{log_id}/retry/{index}")
def retry_failed_order(
    log_id: int,
    index: int,
    actor: Actor = Depends(get_admin_actor),
    service: OrderGenerationService = Depends(get_order_generation_service),
):
    """Retry one failed item; the outcome is reported in the body either way"""
    result = service.retry_failed_order(log_id, index, actor.user_id)
    return {
        "success": result.success,
        "message": result.message,
        "data": result.order.model_dump(mode="json") if result.order else None,
    }
