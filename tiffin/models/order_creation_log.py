"""
Order creation log models

One entry per generation batch. failed_orders is the worklist an admin
retries from; successful_orders records what the batch created.
"""

from pydantic import BaseModel, Field
from datetime import datetime
from typing import Any, Dict, List, Optional
from enum import Enum
from .base import BaseEntity
from .order import MealType
from ..core.database import load_json


class LogStatus(str, Enum):
    PROCESSING = "processing"
    COMPLETED = "completed"
    PARTIAL_SUCCESS = "partial_success"
    FAILED = "failed"


class SuccessfulOrderItem(BaseModel):
    user_id: int
    user_subscription_id: int
    order_id: int
    meal_type: MealType


class FailedOrderItem(BaseModel):
    user_id: Optional[int] = None
    user_subscription_id: int
    meal_type: Optional[MealType] = None
    error_reason: str
    error_details: Dict[str, Any] = Field(default_factory=dict)
    can_retry: bool = True


class OrderCreationLog(BaseEntity):
    """A generation batch and its outcome"""
    log_id: int
    daily_meal_id: int
    plan_id: Optional[int] = None
    vendor_category: Optional[str] = None
    trigger_date: datetime
    triggered_by: Optional[int] = None
    total_users_found: int = 0
    total_orders_created: int = 0
    total_orders_failed: int = 0
    total_skipped_existing: int = 0
    successful_orders: List[SuccessfulOrderItem] = Field(default_factory=list)
    failed_orders: List[FailedOrderItem] = Field(default_factory=list)
    status: LogStatus
    completed_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "OrderCreationLog":
        data = dict(row)
        data["successful_orders"] = load_json(row.get("successful_orders"), [])
        data["failed_orders"] = load_json(row.get("failed_orders"), [])
        return cls(**data)
