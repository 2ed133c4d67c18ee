"""
Daily meal selection model
"""

from pydantic import Field
from datetime import date, datetime
from typing import Any, Dict, List, Optional
from .base import BaseEntity
from .order import MealType
from ..core.database import load_json


class DailyMeal(BaseEntity):
    """Menus chosen for one vendor category on one calendar day"""
    daily_meal_id: int
    plan_id: Optional[int] = None
    vendor_category: str
    meal_date: date
    lunch_menus: List[int] = Field(default_factory=list)
    dinner_menus: List[int] = Field(default_factory=list)
    notes: Optional[str] = None
    created_by: Optional[int] = None
    created_at: Optional[datetime] = None

    def menus_for(self, meal_type: MealType) -> List[int]:
        return self.lunch_menus if meal_type == MealType.LUNCH else self.dinner_menus

    def offered_meal_types(self) -> List[MealType]:
        """Meal types that have at least one menu selected"""
        return [t for t in (MealType.LUNCH, MealType.DINNER) if self.menus_for(t)]

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "DailyMeal":
        data = dict(row)
        data["lunch_menus"] = load_json(row.get("lunch_menus"), [])
        data["dinner_menus"] = load_json(row.get("dinner_menus"), [])
        return cls(**data)


class Menu(BaseEntity):
    menu_id: int
    title: str
    vendor_category: str
    is_active: bool = True
    is_available: bool = True
