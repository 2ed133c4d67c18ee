"""
Daily meal service

An admin picks the menus of the day for a plan's vendor category. Setting a
selection is create-once per category and day and immediately triggers order
generation; refresh re-runs generation for the existing selection.
"""

import json
import logging
from dataclasses import dataclass
from datetime import date
from typing import List, Optional

from ..core.clock import BusinessClock, business_clock
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import (
    DailyMealAlreadySetError,
    DailyMealNotFoundError,
    DuplicateResourceError,
    ValidationError,
)
from ..models.base import PaginatedResponse, PaginationParams
from ..models.daily_meal import DailyMeal, Menu
from ..models.subscription import SubscriptionPlan
from .order_generation_service import GenerationResult, OrderGenerationService
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)


@dataclass
class SetMealResult:
    daily_meal: DailyMeal
    generation: Optional[GenerationResult] = None
    generation_error: Optional[str] = None


class DailyMealService:
    """Daily meal selection and generation trigger"""

    def __init__(self, db: DatabaseManager = None, clock: BusinessClock = None,
                 subscriptions: SubscriptionService = None,
                 generator: OrderGenerationService = None):
        self.db = db or db_manager
        self.clock = clock or business_clock
        self.subscriptions = subscriptions or SubscriptionService(self.db, self.clock)
        self.generator = generator or OrderGenerationService(self.db, self.clock, self.subscriptions)

    def _validate_menus(self, plan: SubscriptionPlan, menu_ids: List[int]):
        unique_ids = sorted(set(menu_ids))
        placeholders = ",".join("?" for _ in unique_ids)
        rows = self.db.fetch_all(
            f"""SELECT menu_id FROM menus
                WHERE menu_id IN ({placeholders})
                  AND vendor_category = ? AND is_active = TRUE AND is_available = TRUE""",
            unique_ids + [plan.vendor_category]
        )
        valid = {r["menu_id"] for r in rows}
        invalid = [m for m in unique_ids if m not in valid]
        if invalid:
            raise ValidationError("Some menus are invalid or not available", details={"menu_ids": invalid})

    def set_today_meal(self, plan_id: int, lunch_menu_ids: List[int], dinner_menu_ids: List[int],
                       actor_id: Optional[int] = None, notes: Optional[str] = None) -> SetMealResult:
        """
        Store today's selection for the plan's vendor category and generate orders.

        A generation failure is logged and reported but does not undo the
        selection; refresh_orders re-runs it.

        Raises:
            PlanNotFoundError: unknown plan
            ValidationError: no menus, or a menu is inactive, unavailable or
                from another category
            DailyMealAlreadySetError: a selection already exists for today
        """
        plan = self.subscriptions.get_plan(plan_id)
        lunch_menu_ids = list(dict.fromkeys(lunch_menu_ids or []))
        dinner_menu_ids = list(dict.fromkeys(dinner_menu_ids or []))
        if not lunch_menu_ids and not dinner_menu_ids:
            raise ValidationError("At least one lunch or dinner menu is required")
        self._validate_menus(plan, lunch_menu_ids + dinner_menu_ids)

        today = self.clock.today()
        already_set = DailyMealAlreadySetError(
            f"Daily meal already set for {plan.vendor_category} on {today.isoformat()}. "
            "Cannot set meal again for the same day.",
            details={"vendor_category": plan.vendor_category, "meal_date": today.isoformat()}
        )
        if self._find(plan.vendor_category, today) is not None:
            raise already_set

        try:
            rows = self.db.execute(
                """INSERT INTO daily_meals(plan_id, vendor_category, meal_date, lunch_menus, dinner_menus,
                                           notes, created_by)
                   VALUES (?,?,?,?,?,?,?)
                   RETURNING daily_meal_id""",
                [plan_id, plan.vendor_category, today, json.dumps(lunch_menu_ids),
                 json.dumps(dinner_menu_ids), notes, actor_id]
            )
        except DuplicateResourceError:
            raise already_set
        daily_meal = self.get_meal(rows[0][0])
        self.db.log_action(
            "daily_meal_set",
            {"daily_meal_id": daily_meal.daily_meal_id, "plan_id": plan_id,
             "vendor_category": plan.vendor_category, "meal_date": today,
             "lunch_menus": lunch_menu_ids, "dinner_menus": dinner_menu_ids},
            actor_id=actor_id
        )
        logger.info("Daily meal %s set for %s on %s", daily_meal.daily_meal_id, plan.vendor_category, today)

        try:
            generation = self.generator.generate_orders(daily_meal, actor_id)
        except Exception as e:
            # the selection stays stored; the failed log records the abort
            message = getattr(e, "message", str(e))
            logger.error("Order generation for daily meal %s failed: %s", daily_meal.daily_meal_id, message)
            return SetMealResult(daily_meal=daily_meal, generation_error=message)
        return SetMealResult(daily_meal=daily_meal, generation=generation)

    def refresh_orders(self, plan_id: int, actor_id: Optional[int] = None) -> GenerationResult:
        """
        Re-run generation for today's selection of the plan's category.

        Existing orders are left alone, so this only fills gaps.

        Raises:
            PlanNotFoundError: unknown plan
            DailyMealNotFoundError: nothing has been set for today
        """
        plan = self.subscriptions.get_plan(plan_id)
        today = self.clock.today()
        daily_meal = self._find(plan.vendor_category, today)
        if daily_meal is None:
            raise DailyMealNotFoundError(
                message=f"No daily meal set for {plan.vendor_category} on {today.isoformat()}"
            )
        return self.generator.generate_orders(daily_meal, actor_id)

    def _find(self, vendor_category: str, meal_date: date) -> Optional[DailyMeal]:
        row = self.db.fetch_one(
            "SELECT * FROM daily_meals WHERE vendor_category = ? AND meal_date = ?",
            [vendor_category, meal_date]
        )
        return DailyMeal.from_row(row) if row else None

    def get_meal(self, daily_meal_id: int) -> DailyMeal:
        row = self.db.fetch_one("SELECT * FROM daily_meals WHERE daily_meal_id = ?", [daily_meal_id])
        if not row:
            raise DailyMealNotFoundError(daily_meal_id)
        return DailyMeal.from_row(row)

    def get_meals(self, meal_date: Optional[date] = None, vendor_category: Optional[str] = None,
                  pagination: Optional[PaginationParams] = None) -> PaginatedResponse:
        """Selections for a day (today by default)"""
        pagination = pagination or PaginationParams()
        clauses, params = ["meal_date = ?"], [meal_date or self.clock.today()]
        if vendor_category:
            clauses.append("vendor_category = ?")
            params.append(vendor_category)
        where = " AND ".join(clauses)
        total = self.db.fetch_one(f"SELECT COUNT(*) AS n FROM daily_meals WHERE {where}", params)["n"]
        rows = self.db.fetch_all(
            f"""SELECT * FROM daily_meals WHERE {where}
                ORDER BY vendor_category LIMIT ? OFFSET ?""",
            params + list(pagination.limit_offset())
        )
        return PaginatedResponse.create([DailyMeal.from_row(r) for r in rows], total, pagination)

    def get_available_menus(self, plan_id: int) -> List[Menu]:
        plan = self.subscriptions.get_plan(plan_id)
        rows = self.db.fetch_all(
            """SELECT menu_id, title, vendor_category, is_active, is_available FROM menus
               WHERE vendor_category = ? AND is_active = TRUE AND is_available = TRUE
               ORDER BY title""",
            [plan.vendor_category]
        )
        return [Menu(**r) for r in rows]
