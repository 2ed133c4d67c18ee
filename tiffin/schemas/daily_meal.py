"""
Daily meal and order creation log request schemas
"""

from pydantic import BaseModel, Field
from datetime import date
from typing import List, Optional


class SetTodayMealRequest(BaseModel):
    """Select today's menus for a plan's vendor category"""
    plan_id: int = Field(..., description="Plan whose vendor category the meal is for")
    lunch_menu_ids: List[int] = Field(default_factory=list)
    dinner_menu_ids: List[int] = Field(default_factory=list)
    notes: Optional[str] = Field(None, max_length=500)


class RefreshOrdersRequest(BaseModel):
    plan_id: int = Field(..., description="Plan whose vendor category to regenerate")


class ExpireSubscriptionsRequest(BaseModel):
    as_of: Optional[date] = Field(None, description="Business date; defaults to today")
