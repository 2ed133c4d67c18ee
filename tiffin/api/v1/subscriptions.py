"""
Subscription routes
"""

from fastapi import APIRouter, Depends

from ..deps import get_admin_actor, get_subscription_service
from ...core.error_handler import create_success_response
from ...core.exceptions import PermissionDeniedError
from ...core.security import get_current_actor
from ...models.user import Actor, Role
from ...schemas.common import ERROR_RESPONSES
from ...schemas.daily_meal import ExpireSubscriptionsRequest
from ...services import SubscriptionService

router = APIRouter(responses=ERROR_RESPONSES)
admin_router = APIRouter(responses=ERROR_RESPONSES)


@router.get("/subscriptions/{subscription_id}")
def get_subscription(
    subscription_id: int,
    actor: Actor = Depends(get_current_actor),
    service: SubscriptionService = Depends(get_subscription_service),
):
    """Subscription with its credit and skip balance"""
    sub = service.get_subscription(subscription_id)
    if actor.role == Role.USER and sub.user_id != actor.user_id:
        raise PermissionDeniedError("You can only view your own subscriptions")
    data = sub.model_dump(mode="json")
    data["skip_info"] = service.get_skip_info(subscription_id).model_dump()
    return create_success_response(data)


@admin_router.post("/subscriptions/expire")
def expire_subscriptions(
    req: ExpireSubscriptionsRequest,
    actor: Actor = Depends(get_admin_actor),
    service: SubscriptionService = Depends(get_subscription_service),
):
    expired = service.expire_due_subscriptions(req.as_of)
    return create_success_response({"expired": expired}, f"{len(expired)} subscription(s) expired")
