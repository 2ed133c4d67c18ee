"""
Route dependencies.

Routes reach services only through these providers so tests can swap them
with app.dependency_overrides.
"""

from fastapi import Depends

from ..core.exceptions import PermissionDeniedError
from ..core.security import get_current_actor
from ..models.user import Actor
from ..services import (
    DailyMealService,
    OrderCreationLogService,
    OrderGenerationService,
    OrderService,
    SubscriptionService,
    daily_meal_service,
    order_creation_log_service,
    order_generation_service,
    order_service,
    subscription_service,
)


def get_order_service() -> OrderService:
    return order_service


def get_daily_meal_service() -> DailyMealService:
    return daily_meal_service


def get_order_generation_service() -> OrderGenerationService:
    return order_generation_service


def get_order_creation_log_service() -> OrderCreationLogService:
    return order_creation_log_service


def get_subscription_service() -> SubscriptionService:
    return subscription_service


async def get_admin_actor(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise PermissionDeniedError("Admin access required")
    return actor
