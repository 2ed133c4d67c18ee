"""
Order lifecycle service

Persists the transitions decided by core.state_machine. Each transition is
one store transaction: the status compare-and-swap, the subscription counter
change, the history row, the credit ledger row and the audit log commit
together or not at all.

Business rules:
- admins and vendors move orders through preparing and out_for_delivery;
  vendors only for orders assigned to them
- only admins confirm delivery; it uses one credit
- users skip or cancel their own upcoming orders, strictly more than the
  cutoff before delivery; a skip uses one skip credit, a cancel one meal credit
- delivered, skipped and cancelled orders never change again
"""

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from ..config.settings import settings
from ..core.clock import BusinessClock, business_clock
from ..core.database import DatabaseManager, db_manager, load_json
from ..core.exceptions import (
    BaseApplicationError,
    InsufficientCreditsError,
    InvalidTransitionError,
    OrderNotFoundError,
    PermissionDeniedError,
    ValidationError,
)
from ..core.fanout import run_bounded
from ..core.state_machine import (
    STATUS_LABELS,
    TransitionRule,
    check_action_window,
    resolve_transition,
    within_action_window,
)
from ..models.base import PaginatedResponse, PaginationParams
from ..models.order import (
    CancellationDetails,
    DeliveryAddress,
    DeliveryConfirmation,
    Order,
    OrderStatus,
    SkipDetails,
)
from ..models.user import Actor, Role
from .notification_service import PushNotificationSender, push_sender
from .subscription_service import SubscriptionService

logger = logging.getLogger(__name__)

# Statuses a vendor or admin may set through update_order_status
OPERATOR_TARGETS = {OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED}

LEDGER_ACTIONS = {
    OrderStatus.DELIVERED: "deliver",
    OrderStatus.SKIPPED: "skip",
    OrderStatus.CANCELLED: "cancel",
}

NOTIFICATIONS = {
    OrderStatus.PREPARING: ("Order is being prepared", "Your {meal} for {day} is being prepared."),
    OrderStatus.OUT_FOR_DELIVERY: ("Order out for delivery", "Your {meal} for {day} is on its way."),
    OrderStatus.DELIVERED: ("Order delivered", "Your {meal} for {day} has been delivered. Enjoy!"),
}


def order_from_row(row: Dict[str, Any]) -> Order:
    """Build the model from an orders row"""
    address = load_json(row.get("delivery_address"))
    skip = cancellation = confirmation = None
    if row.get("skipped_at") or row.get("skip_reason"):
        skip = SkipDetails(reason=row["skip_reason"], skipped_by=row["skipped_by"],
                           skipped_at=row["skipped_at"])
    if row.get("cancelled_at") or row.get("cancel_reason"):
        cancellation = CancellationDetails(reason=row["cancel_reason"], cancelled_by=row["cancelled_by"],
                                           cancelled_at=row["cancelled_at"])
    if row.get("delivery_confirmed_at"):
        confirmation = DeliveryConfirmation(confirmed_at=row["delivery_confirmed_at"],
                                            confirmed_by=row["delivery_confirmed_by"],
                                            notes=row["delivery_notes"])
    return Order(
        order_id=row["order_id"],
        order_number=row["order_number"],
        user_id=row["user_id"],
        user_subscription_id=row["user_subscription_id"],
        daily_meal_id=row["daily_meal_id"],
        vendor_id=row["vendor_id"],
        vendor_type=row["vendor_type"],
        meal_type=row["meal_type"],
        selected_menus=load_json(row.get("selected_menus"), []),
        delivery_date=row["delivery_date"],
        delivery_time=row["delivery_time"],
        delivery_address=DeliveryAddress(**address) if address else None,
        status=row["status"],
        skip_details=skip,
        cancellation_details=cancellation,
        delivery_confirmation=confirmation,
        created_at=row["created_at"],
        updated_at=row["updated_at"],
    )


@dataclass
class BulkResult:
    success: List[int] = field(default_factory=list)
    failed: List[Dict[str, Any]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "failed": self.failed}


class OrderService:
    """Order lifecycle operations"""

    def __init__(self, db: DatabaseManager = None, clock: BusinessClock = None,
                 subscriptions: SubscriptionService = None,
                 notifier: PushNotificationSender = None,
                 cutoff: Optional[timedelta] = None, max_workers: Optional[int] = None,
                 unit_timeout: Optional[float] = None):
        self.db = db or db_manager
        self.clock = clock or business_clock
        self.subscriptions = subscriptions or SubscriptionService(self.db, self.clock)
        self.notifier = notifier or push_sender
        self.cutoff = cutoff if cutoff is not None else timedelta(minutes=settings.action_cutoff_minutes)
        self.max_workers = max_workers or settings.generation_max_workers
        self.unit_timeout = unit_timeout if unit_timeout is not None else settings.store_timeout_seconds

    # Reads

    def _load(self, order_id: int, conn=None) -> Order:
        row = self.db.fetch_one("SELECT * FROM orders WHERE order_id = ?", [order_id], conn)
        if not row:
            raise OrderNotFoundError(order_id)
        return order_from_row(row)

    def _check_access(self, order: Order, actor: Actor):
        if actor.role == Role.USER and order.user_id != actor.user_id:
            raise PermissionDeniedError("You can only access your own orders")
        if actor.role == Role.VENDOR and order.vendor_id != actor.vendor_id:
            raise PermissionDeniedError("Order is not assigned to this vendor")

    def get_order(self, order_id: int, actor: Actor) -> Dict[str, Any]:
        """
        Fetch one order the actor may see.

        The user view adds can_skip/can_cancel computed against the cutoff.
        """
        order = self._load(order_id)
        self._check_access(order, actor)
        data = order.model_dump(mode="json")
        if actor.role == Role.USER:
            actionable = (
                order.status == OrderStatus.UPCOMING
                and within_action_window(self.clock.now(), order.delivery_date, order.delivery_time, self.cutoff)
            )
            skips_left = self.subscriptions.get_subscription(order.user_subscription_id).skip_credit_available
            data["can_skip"] = actionable and skips_left > 0
            data["can_cancel"] = actionable
        return data

    def list_orders(self, actor: Actor, status: Optional[str] = None,
                    start_date: Optional[date] = None, end_date: Optional[date] = None,
                    vendor_id: Optional[int] = None, meal_type: Optional[str] = None,
                    pagination: Optional[PaginationParams] = None) -> PaginatedResponse:
        """Users see their own orders, vendors their assigned ones, admins all"""
        pagination = pagination or PaginationParams()
        clauses, params = [], []
        if actor.role == Role.USER:
            clauses.append("user_id = ?")
            params.append(actor.user_id)
        elif actor.role == Role.VENDOR:
            clauses.append("vendor_id = ?")
            params.append(actor.vendor_id)
        elif vendor_id is not None:
            clauses.append("vendor_id = ?")
            params.append(vendor_id)
        if status:
            clauses.append("status = ?")
            params.append(status)
        if meal_type:
            clauses.append("meal_type = ?")
            params.append(meal_type)
        if start_date:
            clauses.append("delivery_date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("delivery_date <= ?")
            params.append(end_date)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = self.db.fetch_one(f"SELECT COUNT(*) AS n FROM orders {where}", params)["n"]
        rows = self.db.fetch_all(
            f"""SELECT * FROM orders {where}
                ORDER BY delivery_date DESC, delivery_time, order_id
                LIMIT ? OFFSET ?""",
            params + list(pagination.limit_offset())
        )
        return PaginatedResponse.create([order_from_row(r) for r in rows], total, pagination)

    # Transitions

    def _apply_transition(self, order_id: int, target: OrderStatus, actor: Actor,
                          notes: Optional[str] = None, reason: Optional[str] = None,
                          enforce_cutoff: bool = False) -> Order:
        """
        Validate and persist one transition in a single transaction.

        Raises:
            OrderNotFoundError, PermissionDeniedError, TerminalStateError,
            InvalidTransitionError, CutoffWindowError, InsufficientCreditsError
        """
        now_local = self.clock.local_now()
        with self.db.transaction() as conn:
            order = self._load(order_id, conn)
            self._check_access(order, actor)
            rule: TransitionRule = resolve_transition(order.status, target, actor.role)

            if enforce_cutoff:
                check_action_window(self.clock.now(), order.delivery_date, order.delivery_time,
                                    self.cutoff, action=rule.capability.value)

            if rule.target == OrderStatus.SKIPPED:
                sub = self.subscriptions.get_subscription(order.user_subscription_id, conn)
                if sub.skip_credit_available <= 0:
                    raise InsufficientCreditsError(
                        "No skip credits available",
                        details={"skip_allowance": sub.skip_allowance, "skips_used": sub.skips_used}
                    )

            assignments = ["status = ?", "updated_at = ?"]
            values: List[Any] = [rule.target.value, now_local]
            if rule.target == OrderStatus.SKIPPED:
                assignments += ["skip_reason = ?", "skipped_by = ?", "skipped_at = ?"]
                values += [reason, actor.user_id, now_local]
            elif rule.target == OrderStatus.CANCELLED:
                assignments += ["cancel_reason = ?", "cancelled_by = ?", "cancelled_at = ?"]
                values += [reason, actor.user_id, now_local]
            elif rule.target == OrderStatus.DELIVERED:
                assignments += ["delivery_confirmed_at = ?", "delivery_confirmed_by = ?", "delivery_notes = ?"]
                values += [now_local, actor.user_id, notes]

            # compare-and-swap on the source status
            swapped = self.db.execute(
                f"UPDATE orders SET {', '.join(assignments)} WHERE order_id = ? AND status = ? RETURNING order_id",
                values + [order_id, rule.source.value],
                conn
            )
            if not swapped:
                raise InvalidTransitionError(
                    "Order status changed concurrently, please retry",
                    details={"order_id": order_id}
                )

            if not rule.delta.is_empty:
                self.subscriptions.apply_ledger_delta(
                    conn, order.user_subscription_id, rule.delta,
                    order_id=order_id, action=LEDGER_ACTIONS.get(rule.target)
                )

            self.db.execute(
                "INSERT INTO order_status_history(order_id, status, updated_by, notes) VALUES (?,?,?,?)",
                [order_id, rule.target.value, actor.user_id, notes or reason],
                conn
            )
            self.db.log_action(
                f"order_{rule.target.value}",
                {"order_id": order_id, "from": rule.source.value, "to": rule.target.value,
                 "role": Role(actor.role).value, "notes": notes, "reason": reason},
                user_id=order.user_id, actor_id=actor.user_id, conn=conn
            )

        updated = self._load(order_id)
        logger.info("Order %s: %s -> %s by %s %s", order_id, rule.source.value, rule.target.value,
                    Role(actor.role).value, actor.user_id)
        self._notify(updated)
        return updated

    def _notify(self, order: Order):
        template = NOTIFICATIONS.get(OrderStatus(order.status))
        if not template:
            return
        title, body = template
        self.notifier.notify_user(
            order.user_id, title,
            body.format(meal=order.meal_type, day=order.delivery_date.isoformat()),
            db=self.db
        )

    def update_order_status(self, order_id: int, status: str, actor: Actor,
                            notes: Optional[str] = None) -> Order:
        """
        Operator status update (admin or vendor).

        Skipping and cancelling have their own operations. Delivered goes
        through confirm_delivery.
        """
        if actor.role not in (Role.ADMIN, Role.VENDOR):
            raise PermissionDeniedError("Only admins and vendors can update order status")
        try:
            target = OrderStatus(status)
        except ValueError:
            raise ValidationError(f"Unknown order status: {status!r}")
        if target in (OrderStatus.SKIPPED, OrderStatus.CANCELLED):
            raise InvalidTransitionError(
                f"Use the {'skip' if target == OrderStatus.SKIPPED else 'cancel'} operation to mark an order "
                f"{STATUS_LABELS[target]}"
            )
        if target not in OPERATOR_TARGETS:
            raise InvalidTransitionError(f"Cannot change order status to {STATUS_LABELS[target]}")
        if target == OrderStatus.DELIVERED:
            return self.confirm_delivery(order_id, actor, notes)
        return self._apply_transition(order_id, target, actor, notes=notes)

    def confirm_delivery(self, order_id: int, actor: Actor, notes: Optional[str] = None) -> Order:
        """Admin confirms an out-for-delivery order; uses one credit"""
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can confirm delivery")
        return self._apply_transition(order_id, OrderStatus.DELIVERED, actor, notes=notes)

    def skip_order(self, order_id: int, actor: Actor, reason: Optional[str] = None) -> Order:
        """User skips an upcoming order before the cutoff; uses one skip credit"""
        return self._apply_transition(order_id, OrderStatus.SKIPPED, actor, reason=reason,
                                      enforce_cutoff=True)

    def cancel_order(self, order_id: int, actor: Actor, reason: Optional[str] = None) -> Order:
        """User cancels an upcoming order before the cutoff; uses one meal credit"""
        return self._apply_transition(order_id, OrderStatus.CANCELLED, actor, reason=reason,
                                      enforce_cutoff=True)

    # Bulk

    def _run_bulk(self, order_ids: List[int], operation) -> BulkResult:
        result = BulkResult()
        # duplicates would race against themselves
        unique_ids = list(dict.fromkeys(order_ids))
        outcomes = run_bounded(unique_ids, operation, max_workers=self.max_workers, timeout=self.unit_timeout)
        for outcome in outcomes:
            if outcome.ok:
                result.success.append(outcome.unit)
            elif outcome.timed_out:
                result.failed.append({"order_id": outcome.unit, "reason": "Operation timed out"})
            else:
                error = outcome.error
                reason = error.message if isinstance(error, BaseApplicationError) else str(error)
                result.failed.append({"order_id": outcome.unit, "reason": reason})
        return result

    def bulk_update_order_status(self, order_ids: List[int], status: str, actor: Actor,
                                 notes: Optional[str] = None) -> BulkResult:
        """Apply update_order_status to each id independently"""
        result = self._run_bulk(order_ids, lambda oid: self.update_order_status(oid, status, actor, notes))
        logger.info("Bulk status %s: %d ok, %d failed", status, len(result.success), len(result.failed))
        return result

    def bulk_confirm_delivery(self, order_ids: List[int], actor: Actor,
                              notes: Optional[str] = None) -> BulkResult:
        """Apply confirm_delivery to each id independently"""
        if not actor.is_admin:
            raise PermissionDeniedError("Only admins can confirm delivery")
        result = self._run_bulk(order_ids, lambda oid: self.confirm_delivery(oid, actor, notes))
        logger.info("Bulk confirm delivery: %d ok, %d failed", len(result.success), len(result.failed))
        return result
