"""
Order models
"""

from pydantic import BaseModel, Field
from datetime import date, datetime
from typing import List, Optional
from enum import Enum
from .base import BaseEntity, TimestampMixin


class OrderStatus(str, Enum):
    """Order lifecycle status"""
    UPCOMING = "upcoming"
    PREPARING = "preparing"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    SKIPPED = "skipped"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.SKIPPED, OrderStatus.CANCELLED})


class MealType(str, Enum):
    LUNCH = "lunch"
    DINNER = "dinner"


class DeliveryAddress(BaseModel):
    """Delivery address snapshot"""
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: Optional[str] = None
    landmark: Optional[str] = None
    coordinates: List[float] = Field(default_factory=lambda: [0.0, 0.0])

    def missing_fields(self) -> List[str]:
        """Required fields that are empty"""
        return [name for name in ("street", "city", "zip_code") if not getattr(self, name)]


class SkipDetails(BaseModel):
    reason: Optional[str] = None
    skipped_by: Optional[int] = None
    skipped_at: Optional[datetime] = None


class CancellationDetails(BaseModel):
    reason: Optional[str] = None
    cancelled_by: Optional[int] = None
    cancelled_at: Optional[datetime] = None


class DeliveryConfirmation(BaseModel):
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[int] = None
    notes: Optional[str] = None


class Order(BaseEntity, TimestampMixin):
    """A single delivery of one meal slot for one subscription on one day"""
    order_id: int = Field(..., description="Order ID")
    order_number: str = Field(..., description="Human readable order number")
    user_id: int
    user_subscription_id: int
    daily_meal_id: int
    vendor_id: int
    vendor_type: Optional[str] = None
    meal_type: MealType
    selected_menus: List[int] = Field(default_factory=list)
    delivery_date: date
    delivery_time: str = Field(..., description="HH:MM in business time")
    delivery_address: Optional[DeliveryAddress] = None
    status: OrderStatus
    skip_details: Optional[SkipDetails] = None
    cancellation_details: Optional[CancellationDetails] = None
    delivery_confirmation: Optional[DeliveryConfirmation] = None
