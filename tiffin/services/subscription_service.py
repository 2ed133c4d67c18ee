"""
Subscription ledger service

Owns subscription instances: creation from a plan, status changes, vendor
assignment and the credit/skip counters.

Business rules:
- status only moves forward: pending -> active, pending|active -> cancelled,
  active -> expired
- credits_used never exceeds credits_total
- counters change only through apply_ledger_delta, inside the caller's
  transaction
"""

import json
import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from ..core.clock import BusinessClock, business_clock, parse_hhmm
from ..core.database import DatabaseManager, db_manager, load_json
from ..core.exceptions import (
    InsufficientCreditsError,
    PlanNotFoundError,
    SubscriptionNotFoundError,
    SubscriptionStatusError,
    ValidationError,
)
from ..core.state_machine import LedgerDelta
from ..models.order import DeliveryAddress
from ..models.subscription import (
    MealSlotTiming,
    MealTiming,
    SkipInfo,
    SUBSCRIPTION_TRANSITIONS,
    SubscriptionPlan,
    SubscriptionStatus,
    UserSubscription,
)
from ..models.user import Vendor

logger = logging.getLogger(__name__)

SUBSCRIPTION_COLUMNS = """
    id, user_id, plan_id, vendor_category, status, start_date, end_date,
    lunch_enabled, lunch_time, dinner_enabled, dinner_time,
    credits_total, credits_used, skip_allowance, skips_used,
    delivery_address, vendor_id, vendor_type, cancel_reason, cancelled_at,
    created_at, updated_at
"""


def subscription_from_row(row: Dict[str, Any]) -> UserSubscription:
    """Build the model from a user_subscriptions row"""
    address = load_json(row.get("delivery_address"))
    return UserSubscription(
        id=row["id"],
        user_id=row["user_id"],
        plan_id=row["plan_id"],
        vendor_category=row["vendor_category"],
        status=row["status"],
        start_date=row["start_date"],
        end_date=row["end_date"],
        meal_timing=MealTiming(
            lunch=MealSlotTiming(enabled=bool(row["lunch_enabled"]), time=row["lunch_time"]),
            dinner=MealSlotTiming(enabled=bool(row["dinner_enabled"]), time=row["dinner_time"]),
        ),
        credits_total=row["credits_total"],
        credits_used=row["credits_used"] or 0,
        skip_allowance=row["skip_allowance"] or 0,
        skips_used=row["skips_used"] or 0,
        delivery_address=DeliveryAddress(**address) if address else None,
        vendor_id=row["vendor_id"],
        vendor_type=row["vendor_type"],
        cancel_reason=row["cancel_reason"],
        cancelled_at=row["cancelled_at"],
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


class SubscriptionService:
    """Subscription ledger operations"""

    def __init__(self, db: DatabaseManager = None, clock: BusinessClock = None):
        self.db = db or db_manager
        self.clock = clock or business_clock

    # Plans

    def get_plan(self, plan_id: int, conn=None) -> SubscriptionPlan:
        row = self.db.fetch_one(
            "SELECT * FROM subscription_plans WHERE plan_id = ?", [plan_id], conn
        )
        if not row:
            raise PlanNotFoundError(plan_id)
        return SubscriptionPlan(**row)

    # Instances

    def create_subscription(self, user_id: int, plan_id: int, start_date: date,
                            delivery_address: Optional[DeliveryAddress] = None,
                            meal_timing: Optional[MealTiming] = None) -> UserSubscription:
        """
        Create a pending subscription instance from a plan.

        Credits and skip allowance are copied from the plan so later plan edits
        do not change what the user bought.

        Raises:
            PlanNotFoundError: plan does not exist
            ValidationError: plan inactive, or an enabled meal slot has no valid time
        """
        plan = self.get_plan(plan_id)
        if not plan.is_active:
            raise ValidationError("Subscription plan is not active", details={"plan_id": plan_id})

        meal_timing = meal_timing or MealTiming()
        for meal_type, slot, available in (
            ("lunch", meal_timing.lunch, plan.lunch_available),
            ("dinner", meal_timing.dinner, plan.dinner_available),
        ):
            if not slot.enabled:
                continue
            if not available:
                raise ValidationError(f"Plan does not offer {meal_type}")
            parse_hhmm(slot.time)

        end_date = start_date + timedelta(days=plan.duration_days - 1)
        rows = self.db.execute(
            """INSERT INTO user_subscriptions(
                   user_id, plan_id, vendor_category, status, start_date, end_date,
                   lunch_enabled, lunch_time, dinner_enabled, dinner_time,
                   credits_total, credits_used, skip_allowance, skips_used, delivery_address)
               VALUES (?,?,?,?,?,?,?,?,?,?,?,0,?,0,?)
               RETURNING id""",
            [
                user_id, plan_id, plan.vendor_category, SubscriptionStatus.PENDING.value,
                start_date, end_date,
                meal_timing.lunch.enabled, meal_timing.lunch.time,
                meal_timing.dinner.enabled, meal_timing.dinner.time,
                plan.meals_per_plan, plan.skip_allowance,
                json.dumps(delivery_address.model_dump()) if delivery_address else None,
            ]
        )
        subscription_id = rows[0][0]
        logger.info("Created subscription %s for user %s on plan %s", subscription_id, user_id, plan_id)
        return self.get_subscription(subscription_id)

    def get_subscription(self, subscription_id: int, conn=None) -> UserSubscription:
        row = self.db.fetch_one(
            f"SELECT {SUBSCRIPTION_COLUMNS} FROM user_subscriptions WHERE id = ?",
            [subscription_id], conn
        )
        if not row:
            raise SubscriptionNotFoundError(subscription_id)
        return subscription_from_row(row)

    def get_skip_info(self, subscription_id: int) -> SkipInfo:
        sub = self.get_subscription(subscription_id)
        return SkipInfo(
            subscription_id=sub.id,
            skip_allowance=sub.skip_allowance,
            skips_used=sub.skips_used,
            skip_credit_available=sub.skip_credit_available,
            credits_total=sub.credits_total,
            credits_used=sub.credits_used,
            remaining_credits=sub.remaining_credits,
        )

    def find_active_for_category(self, vendor_category: str, on_date: date) -> List[Dict[str, Any]]:
        """
        Rows of active subscriptions in a vendor category whose date range
        covers on_date. Left undecoded so one malformed row fails only itself;
        decode each with subscription_from_row.
        """
        rows = self.db.fetch_all(
            f"""SELECT {SUBSCRIPTION_COLUMNS} FROM user_subscriptions
                WHERE vendor_category = ? AND status = ?
                  AND start_date <= ? AND end_date >= ?
                ORDER BY id""",
            [vendor_category, SubscriptionStatus.ACTIVE.value, on_date, on_date]
        )
        return rows

    # Status

    def activate(self, subscription_id: int) -> UserSubscription:
        return self._change_status(subscription_id, SubscriptionStatus.ACTIVE)

    def cancel(self, subscription_id: int, reason: Optional[str] = None) -> UserSubscription:
        return self._change_status(subscription_id, SubscriptionStatus.CANCELLED, reason=reason)

    def _change_status(self, subscription_id: int, target: SubscriptionStatus,
                       reason: Optional[str] = None) -> UserSubscription:
        with self.db.transaction() as conn:
            current = self.get_subscription(subscription_id, conn)
            current_status = SubscriptionStatus(current.status)
            if target not in SUBSCRIPTION_TRANSITIONS[current_status]:
                raise SubscriptionStatusError(
                    f"Cannot change subscription from {current_status.value} to {target.value}",
                    details={"subscription_id": subscription_id, "current_status": current_status.value}
                )

            if target == SubscriptionStatus.CANCELLED:
                self.db.execute(
                    """UPDATE user_subscriptions
                       SET status = ?, cancel_reason = ?, cancelled_at = ?, updated_at = ?
                       WHERE id = ?""",
                    [target.value, reason, self.clock.local_now(), self.clock.local_now(), subscription_id],
                    conn
                )
            else:
                self.db.execute(
                    "UPDATE user_subscriptions SET status = ?, updated_at = ? WHERE id = ?",
                    [target.value, self.clock.local_now(), subscription_id],
                    conn
                )
            self.db.log_action(
                "subscription_status",
                {"subscription_id": subscription_id, "from": current_status.value, "to": target.value,
                 "reason": reason},
                user_id=current.user_id, conn=conn
            )
        return self.get_subscription(subscription_id)

    def assign_vendor(self, subscription_id: int, vendor_id: int) -> UserSubscription:
        row = self.db.fetch_one("SELECT * FROM vendors WHERE vendor_id = ?", [vendor_id])
        vendor = Vendor(**row) if row else None
        if vendor is None or not vendor.is_active:
            raise ValidationError("Vendor not found or inactive", details={"vendor_id": vendor_id})
        self.get_subscription(subscription_id)
        self.db.execute(
            "UPDATE user_subscriptions SET vendor_id = ?, vendor_type = ?, updated_at = ? WHERE id = ?",
            [vendor_id, vendor.vendor_type, self.clock.local_now(), subscription_id]
        )
        return self.get_subscription(subscription_id)

    def expire_due_subscriptions(self, today: Optional[date] = None) -> List[int]:
        """
        Mark active subscriptions whose end_date has passed as expired.

        Returns:
            list[int]: ids that were expired by this sweep
        """
        today = today or self.clock.today()
        with self.db.transaction() as conn:
            rows = self.db.execute(
                """UPDATE user_subscriptions SET status = ?, updated_at = ?
                   WHERE status = ? AND end_date < ?
                   RETURNING id""",
                [SubscriptionStatus.EXPIRED.value, self.clock.local_now(),
                 SubscriptionStatus.ACTIVE.value, today],
                conn
            )
            expired = sorted(r[0] for r in rows)
            if expired:
                self.db.log_action("subscriptions_expired", {"ids": expired, "as_of": today}, conn=conn)
        if expired:
            logger.info("Expired %d subscription(s) as of %s", len(expired), today)
        return expired

    # Counters

    def apply_ledger_delta(self, conn, subscription_id: int, delta: LedgerDelta,
                           order_id: Optional[int] = None, action: Optional[str] = None) -> UserSubscription:
        """
        Apply a transition's counter change inside the caller's transaction.

        credits_used is clamped at credits_total. A skip with no skip credit
        left is rejected.

        Raises:
            SubscriptionNotFoundError: subscription does not exist
            InsufficientCreditsError: skip requested with no skip credit left
        """
        sub = self.get_subscription(subscription_id, conn)
        if delta.is_empty:
            return sub

        if delta.skips_used and sub.skips_used + delta.skips_used > sub.skip_allowance:
            raise InsufficientCreditsError(
                "No skip credits available for this subscription",
                details={"subscription_id": subscription_id, "skip_allowance": sub.skip_allowance,
                         "skips_used": sub.skips_used}
            )

        credits_used = min(sub.credits_total, sub.credits_used + delta.credits_used)
        skips_used = sub.skips_used + delta.skips_used
        self.db.execute(
            "UPDATE user_subscriptions SET credits_used = ?, skips_used = ?, updated_at = ? WHERE id = ?",
            [credits_used, skips_used, self.clock.local_now(), subscription_id],
            conn
        )
        if action:
            self.db.execute(
                """INSERT INTO credit_ledger(user_subscription_id, order_id, action, credits_delta, skips_delta)
                   VALUES (?,?,?,?,?)""",
                [subscription_id, order_id, action, credits_used - sub.credits_used, delta.skips_used],
                conn
            )
        return sub.model_copy(update={"credits_used": credits_used, "skips_used": skips_used})
