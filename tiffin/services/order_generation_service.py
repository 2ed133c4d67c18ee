"""
Order generation service

Creates one order per eligible subscription per meal slot for a daily meal.

Business rules:
- eligible: same vendor category, status active, meal_date within
  [start_date, end_date]
- meal slots: enabled on the subscription and present in the daily meal
- (user_subscription_id, delivery_date, meal_type) identifies an order; an
  existing order, including a skipped or cancelled one, is never duplicated
- one unit failing never stops the others; every failure lands in the
  creation log
- generation never touches subscription credits
"""

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from typing import List, Optional, Tuple

from ..config.settings import settings
from ..core.clock import BusinessClock, business_clock, is_valid_hhmm
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import (
    BaseApplicationError,
    DailyMealNotFoundError,
    DuplicateResourceError,
    ValidationError,
)
from ..core.fanout import run_bounded
from ..models.daily_meal import DailyMeal
from ..models.order import MealType, Order, OrderStatus
from ..models.order_creation_log import FailedOrderItem, SuccessfulOrderItem
from ..models.subscription import UserSubscription
from .order_creation_log_service import OrderCreationLogService
from .order_service import order_from_row
from .subscription_service import SubscriptionService, subscription_from_row

logger = logging.getLogger(__name__)

CREATED = "created"
EXISTS = "exists"

# Failure reasons recorded in the creation log
INSUFFICIENT_CREDITS = "INSUFFICIENT_CREDITS"
ORDER_CREATION_FAILED = "ORDER_CREATION_FAILED"
TIMED_OUT = "TIMED_OUT"


@dataclass
class ExistingOrderItem:
    user_subscription_id: int
    meal_type: str
    order_id: int


@dataclass
class GenerationResult:
    log_id: int
    total_users_found: int = 0
    created: List[SuccessfulOrderItem] = field(default_factory=list)
    skipped_existing: List[ExistingOrderItem] = field(default_factory=list)
    failures: List[FailedOrderItem] = field(default_factory=list)


@dataclass
class RetryResult:
    success: bool
    message: str
    order: Optional[Order] = None


def order_number_for(delivery_date: date, sequence: int) -> str:
    return f"TFX-{delivery_date.strftime('%Y%m%d')}-{sequence:04d}"


class OrderGenerationService:
    """Fan-out order creation for a daily meal"""

    def __init__(self, db: DatabaseManager = None, clock: BusinessClock = None,
                 subscriptions: SubscriptionService = None,
                 logs: OrderCreationLogService = None,
                 max_workers: Optional[int] = None, unit_timeout: Optional[float] = None):
        self.db = db or db_manager
        self.clock = clock or business_clock
        self.subscriptions = subscriptions or SubscriptionService(self.db, self.clock)
        self.logs = logs or OrderCreationLogService(self.db, self.clock)
        self.max_workers = max_workers or settings.generation_max_workers
        self.unit_timeout = unit_timeout if unit_timeout is not None else settings.store_timeout_seconds

    def generate_orders(self, daily_meal: DailyMeal, actor_id: Optional[int] = None) -> GenerationResult:
        """
        Create orders for every eligible subscription of a daily meal.

        Args:
            daily_meal: the selection; its meal_date is the delivery date
            actor_id: who triggered the batch

        Returns:
            GenerationResult: created, skipped and failed units plus the log id

        Raises:
            DatabaseError: eligible subscriptions could not be read or the log
                could not be finalised; the log entry is marked failed
        """
        log_id = self.logs.start_log(daily_meal, actor_id)
        logger.info("Generating orders for daily meal %s (%s, %s), log %s",
                    daily_meal.daily_meal_id, daily_meal.vendor_category, daily_meal.meal_date, log_id)

        try:
            result = self._run_batch(daily_meal, log_id)
        except Exception as e:
            logger.exception("Order generation for log %s aborted", log_id)
            self.logs.mark_failed(log_id, getattr(e, "message", str(e)))
            raise

        self.db.log_action(
            "orders_generated",
            {"log_id": log_id, "daily_meal_id": daily_meal.daily_meal_id,
             "created": len(result.created), "skipped_existing": len(result.skipped_existing),
             "failed": len(result.failures)},
            actor_id=actor_id
        )
        logger.info("Log %s: %d created, %d existing, %d failed", log_id,
                    len(result.created), len(result.skipped_existing), len(result.failures))
        return result

    def _run_batch(self, daily_meal: DailyMeal, log_id: int) -> GenerationResult:
        rows = self.subscriptions.find_active_for_category(daily_meal.vendor_category, daily_meal.meal_date)
        result = GenerationResult(log_id=log_id, total_users_found=len(rows))
        offered = daily_meal.offered_meal_types()
        units: List[Tuple[UserSubscription, MealType]] = []

        for row in rows:
            try:
                sub = subscription_from_row(row)
            except (TypeError, ValueError) as e:
                # malformed stored data fails this subscription only
                logger.warning("Subscription %s could not be read: %s", row["id"], e)
                result.failures.append(FailedOrderItem(
                    user_id=row.get("user_id"),
                    user_subscription_id=row["id"],
                    error_reason=ORDER_CREATION_FAILED,
                    error_details={"message": f"Invalid subscription data: {e}"},
                    can_retry=False,
                ))
                continue

            due = [t for t in sub.meal_timing.enabled_meal_types() if t in offered]
            if not due:
                continue
            if sub.remaining_credits < len(due):
                for meal_type in due:
                    result.failures.append(FailedOrderItem(
                        user_id=sub.user_id,
                        user_subscription_id=sub.id,
                        meal_type=meal_type,
                        error_reason=INSUFFICIENT_CREDITS,
                        error_details={"message": f"Credits available: {sub.remaining_credits}, "
                                                  f"required: {len(due)}"},
                        can_retry=False,
                    ))
                continue
            units.extend((sub, meal_type) for meal_type in due)

        outcomes = run_bounded(
            units,
            lambda unit: self._create_single_order(daily_meal, unit[0], unit[1]),
            max_workers=self.max_workers,
            timeout=self.unit_timeout,
        )

        for outcome in outcomes:
            sub, meal_type = outcome.unit
            if outcome.ok:
                kind, order_id = outcome.result
                if kind == CREATED:
                    result.created.append(SuccessfulOrderItem(
                        user_id=sub.user_id, user_subscription_id=sub.id,
                        order_id=order_id, meal_type=meal_type))
                else:
                    result.skipped_existing.append(ExistingOrderItem(sub.id, meal_type.value, order_id))
                continue

            if outcome.timed_out:
                reason, message = TIMED_OUT, f"Order creation timed out after {self.unit_timeout}s"
            else:
                reason, message = ORDER_CREATION_FAILED, getattr(outcome.error, "message", str(outcome.error))
            logger.warning("Order for subscription %s (%s) failed: %s", sub.id, meal_type.value, message)
            result.failures.append(FailedOrderItem(
                user_id=sub.user_id,
                user_subscription_id=sub.id,
                meal_type=meal_type,
                error_reason=reason,
                error_details={"message": message},
                can_retry=True,
            ))

        self.logs.finalize_log(log_id, len(rows), result.created, result.failures,
                               len(result.skipped_existing))
        return result

    def _create_single_order(self, daily_meal: DailyMeal, sub: UserSubscription,
                             meal_type: MealType) -> Tuple[str, int]:
        """
        Create the order for one (subscription, meal type), or find it.

        Returns:
            tuple: (CREATED or EXISTS, order_id)

        Raises:
            ValidationError: the subscription cannot produce a deliverable order
        """
        meal_type = MealType(meal_type)
        delivery_date = daily_meal.meal_date
        try:
            with self.db.transaction() as conn:
                existing = self._find_existing(delivery_date, sub.id, meal_type, conn)
                if existing is not None:
                    return EXISTS, existing

                menus = daily_meal.menus_for(meal_type)
                delivery_time = sub.meal_timing.time_for(meal_type)
                address = self._validated_address(sub)
                if not sub.vendor_id:
                    raise ValidationError("No vendor assigned to subscription")
                if not is_valid_hhmm(delivery_time):
                    raise ValidationError(f"Delivery time must be in HH:MM format, got: {delivery_time!r}")
                if not menus:
                    raise ValidationError(f"No {meal_type.value} menu set for {delivery_date}")

                count = self.db.fetch_one(
                    "SELECT COUNT(*) AS n FROM orders WHERE delivery_date = ?", [delivery_date], conn
                )["n"]
                rows = self.db.execute(
                    """INSERT INTO orders(
                           order_number, user_id, user_subscription_id, daily_meal_id, vendor_id,
                           vendor_type, meal_type, selected_menus, delivery_date, delivery_time,
                           delivery_address, status, created_at, updated_at)
                       VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                       RETURNING order_id""",
                    [order_number_for(delivery_date, count + 1), sub.user_id, sub.id,
                     daily_meal.daily_meal_id, sub.vendor_id, sub.vendor_type, meal_type.value,
                     json.dumps(menus), delivery_date, delivery_time, json.dumps(address),
                     OrderStatus.UPCOMING.value, self.clock.local_now(), self.clock.local_now()],
                    conn
                )
                order_id = rows[0][0]
                self.db.execute(
                    "INSERT INTO order_status_history(order_id, status, updated_by, notes) VALUES (?,?,?,?)",
                    [order_id, OrderStatus.UPCOMING.value, None, "Order created"],
                    conn
                )
                return CREATED, order_id
        except DuplicateResourceError:
            # a concurrent unit inserted the same key first
            existing = self._find_existing(delivery_date, sub.id, meal_type)
            if existing is None:
                raise
            return EXISTS, existing

    def _find_existing(self, delivery_date: date, subscription_id: int, meal_type: MealType,
                       conn=None) -> Optional[int]:
        row = self.db.fetch_one(
            """SELECT order_id FROM orders
               WHERE user_subscription_id = ? AND delivery_date = ? AND meal_type = ?""",
            [subscription_id, delivery_date, MealType(meal_type).value], conn
        )
        return row["order_id"] if row else None

    @staticmethod
    def _validated_address(sub: UserSubscription) -> dict:
        if sub.delivery_address is None:
            raise ValidationError("Delivery address is required")
        missing = sub.delivery_address.missing_fields()
        if missing:
            raise ValidationError(f"Delivery address is missing: {', '.join(missing)}",
                                  details={"missing": missing})
        address = sub.delivery_address.model_dump()
        if not address.get("country"):
            address["country"] = settings.default_country
        if not address.get("coordinates"):
            address["coordinates"] = [0.0, 0.0]
        return address

    def _load_daily_meal(self, daily_meal_id: int) -> DailyMeal:
        row = self.db.fetch_one("SELECT * FROM daily_meals WHERE daily_meal_id = ?", [daily_meal_id])
        if not row:
            raise DailyMealNotFoundError(daily_meal_id)
        return DailyMeal.from_row(row)

    def retry_failed_order(self, log_id: int, failed_index: int, actor_id: Optional[int] = None) -> RetryResult:
        """
        Re-run one failed item of a log through the same unit of work.

        Failures are reported in the result, never raised. On success, or when
        the order turns out to exist already, the item leaves failed_orders.
        """
        try:
            log = self.logs.get_log(log_id)
            if failed_index < 0 or failed_index >= len(log.failed_orders):
                return RetryResult(False, "Invalid failed order index")

            item = log.failed_orders[failed_index]
            if not item.can_retry:
                return RetryResult(False, "This order cannot be retried")
            if item.meal_type is None:
                return RetryResult(False, "Failed item has no meal type")

            daily_meal = self._load_daily_meal(log.daily_meal_id)
            sub = self.subscriptions.get_subscription(item.user_subscription_id)
            if not sub.is_active_on(daily_meal.meal_date):
                return RetryResult(False, "Subscription is not active for this meal date")

            kind, order_id = self._create_single_order(daily_meal, sub, item.meal_type)
        except BaseApplicationError as e:
            logger.warning("Retry of log %s item %s failed: %s", log_id, failed_index, e.message)
            self.db.log_action(
                "order_creation_retry",
                {"log_id": log_id, "index": failed_index, "success": False, "reason": e.message},
                actor_id=actor_id
            )
            return RetryResult(False, e.message)

        with self.db.transaction() as conn:
            # concurrent retries may have edited the list; match by key, not index
            current = self.logs.get_log(log_id, conn)
            remaining = [
                f for f in current.failed_orders
                if not (f.user_subscription_id == item.user_subscription_id and f.meal_type == item.meal_type)
            ]
            if len(remaining) != len(current.failed_orders):
                successful = list(current.successful_orders)
                created = current.total_orders_created
                if kind == CREATED:
                    successful.append(SuccessfulOrderItem(
                        user_id=sub.user_id, user_subscription_id=sub.id,
                        order_id=order_id, meal_type=item.meal_type))
                    created += 1
                self.logs.save_retry_outcome(conn, current.model_copy(update={
                    "failed_orders": remaining,
                    "successful_orders": successful,
                    "total_orders_created": created,
                }))
            self.db.log_action(
                "order_creation_retry",
                {"log_id": log_id, "index": failed_index, "success": True, "order_id": order_id,
                 "outcome": kind},
                user_id=sub.user_id, actor_id=actor_id, conn=conn
            )

        order = order_from_row(self.db.fetch_one("SELECT * FROM orders WHERE order_id = ?", [order_id]))
        message = "Order retry successful" if kind == CREATED else "Order already exists"
        return RetryResult(True, message, order)
