"""
Business logic services.
Service layer for the subscription ledger, daily meals, order generation and
the order lifecycle.
"""

from .notification_service import PushNotificationSender, push_sender
from .subscription_service import SubscriptionService
from .order_creation_log_service import OrderCreationLogService
from .order_service import BulkResult, OrderService
from .order_generation_service import GenerationResult, OrderGenerationService, RetryResult
from .daily_meal_service import DailyMealService, SetMealResult

# Global service instances wired to the global database and clock
subscription_service = SubscriptionService()
order_creation_log_service = OrderCreationLogService()
order_service = OrderService(subscriptions=subscription_service, notifier=push_sender)
order_generation_service = OrderGenerationService(subscriptions=subscription_service,
                                                  logs=order_creation_log_service)
daily_meal_service = DailyMealService(subscriptions=subscription_service,
                                      generator=order_generation_service)

__all__ = [
    "BulkResult",
    "DailyMealService",
    "GenerationResult",
    "OrderCreationLogService",
    "OrderGenerationService",
    "OrderService",
    "PushNotificationSender",
    "RetryResult",
    "SetMealResult",
    "SubscriptionService",
    "daily_meal_service",
    "order_creation_log_service",
    "order_generation_service",
    "order_service",
    "push_sender",
    "subscription_service",
]
