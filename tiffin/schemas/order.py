"""
Order request/response schemas
"""

from pydantic import BaseModel, Field
from typing import List, Optional
from ..models.order import OrderStatus


class OrderStatusUpdateRequest(BaseModel):
    """Operator status update"""
    status: OrderStatus = Field(..., description="Target status")
    notes: Optional[str] = Field(None, max_length=500)


class BulkOrderStatusUpdateRequest(BaseModel):
    order_ids: List[int] = Field(..., min_length=1, max_length=500, description="Orders to update")
    status: OrderStatus = Field(..., description="Target status")
    notes: Optional[str] = Field(None, max_length=500)


class ConfirmDeliveryRequest(BaseModel):
    notes: Optional[str] = Field(None, max_length=500, description="Delivery notes")


class BulkConfirmDeliveryRequest(BaseModel):
    order_ids: List[int] = Field(..., min_length=1, max_length=500)
    notes: Optional[str] = Field(None, max_length=500)


class SkipOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Why the meal is skipped")


class CancelOrderRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500, description="Why the order is cancelled")
