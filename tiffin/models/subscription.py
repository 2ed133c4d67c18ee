"""
Subscription ledger models
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional
from enum import Enum
from .base import BaseEntity, TimestampMixin
from .order import DeliveryAddress, MealType


class SubscriptionStatus(str, Enum):
    """Subscription instance status"""
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


# Allowed status moves; nothing ever returns to active
SUBSCRIPTION_TRANSITIONS = {
    SubscriptionStatus.PENDING: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELLED},
    SubscriptionStatus.ACTIVE: {SubscriptionStatus.EXPIRED, SubscriptionStatus.CANCELLED},
    SubscriptionStatus.EXPIRED: set(),
    SubscriptionStatus.CANCELLED: set(),
}


class MealSlotTiming(BaseModel):
    enabled: bool = False
    time: Optional[str] = Field(None, description="Delivery time HH:MM")


class MealTiming(BaseModel):
    """Lunch/dinner enablement and delivery times"""
    lunch: MealSlotTiming = Field(default_factory=MealSlotTiming)
    dinner: MealSlotTiming = Field(default_factory=MealSlotTiming)

    def enabled_meal_types(self) -> List[MealType]:
        types = []
        if self.lunch.enabled:
            types.append(MealType.LUNCH)
        if self.dinner.enabled:
            types.append(MealType.DINNER)
        return types

    def time_for(self, meal_type: MealType) -> Optional[str]:
        slot = self.lunch if meal_type == MealType.LUNCH else self.dinner
        return slot.time


class SubscriptionPlan(BaseEntity):
    """Purchasable plan"""
    plan_id: int
    plan_name: str
    vendor_category: str
    meals_per_plan: int
    skip_allowance: int = 0
    duration_days: int
    lunch_available: bool = True
    dinner_available: bool = True
    is_active: bool = True


class UserSubscription(BaseEntity, TimestampMixin):
    """A user's purchased plan instance"""
    id: int
    user_id: int
    plan_id: int
    vendor_category: str
    status: SubscriptionStatus
    start_date: date
    end_date: date
    meal_timing: MealTiming = Field(default_factory=MealTiming)
    credits_total: int
    credits_used: int = 0
    skip_allowance: int = 0
    skips_used: int = 0
    delivery_address: Optional[DeliveryAddress] = None
    vendor_id: Optional[int] = None
    vendor_type: Optional[str] = None
    cancel_reason: Optional[str] = None
    cancelled_at: Optional[datetime] = None

    @property
    def remaining_credits(self) -> int:
        return max(0, self.credits_total - self.credits_used)

    @property
    def skip_credit_available(self) -> int:
        return max(0, self.skip_allowance - self.skips_used)

    def is_active_on(self, day: date) -> bool:
        return self.status == SubscriptionStatus.ACTIVE and self.start_date <= day <= self.end_date


class SkipInfo(BaseModel):
    """Skip allowance summary shown to the user"""
    subscription_id: int
    skip_allowance: int
    skips_used: int
    skip_credit_available: int
    credits_total: int
    credits_used: int
    remaining_credits: int
