"""
Order lifecycle rules.

Pure functions only: no store access. OrderService asks resolve_transition
which rule applies and then persists rule.target and rule.delta in one
transaction.

    upcoming -> preparing -> out_for_delivery -> delivered
    upcoming -> skipped
    upcoming -> cancelled

delivered, skipped and cancelled are terminal.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Dict, FrozenSet, Optional, Tuple

from .clock import parse_hhmm
from .exceptions import (
    CutoffWindowError,
    InvalidTransitionError,
    PermissionDeniedError,
    TerminalStateError,
)
from ..models.order import OrderStatus, TERMINAL_STATUSES
from ..models.user import Role


class Capability(str, Enum):
    PREPARE = "prepare"
    DISPATCH = "dispatch"
    CONFIRM_DELIVERY = "confirm_delivery"
    SKIP = "skip"
    CANCEL = "cancel"


@dataclass(frozen=True)
class LedgerDelta:
    """Change to a subscription's counters caused by one transition"""
    credits_used: int = 0
    skips_used: int = 0

    @property
    def is_empty(self) -> bool:
        return self.credits_used == 0 and self.skips_used == 0


NO_DELTA = LedgerDelta()


@dataclass(frozen=True)
class TransitionRule:
    source: OrderStatus
    target: OrderStatus
    capability: Capability
    delta: LedgerDelta = NO_DELTA


TRANSITION_TABLE: Tuple[TransitionRule, ...] = (
    TransitionRule(OrderStatus.UPCOMING, OrderStatus.PREPARING, Capability.PREPARE),
    TransitionRule(OrderStatus.PREPARING, OrderStatus.OUT_FOR_DELIVERY, Capability.DISPATCH),
    TransitionRule(OrderStatus.OUT_FOR_DELIVERY, OrderStatus.DELIVERED, Capability.CONFIRM_DELIVERY,
                   LedgerDelta(credits_used=1)),
    TransitionRule(OrderStatus.UPCOMING, OrderStatus.SKIPPED, Capability.SKIP,
                   LedgerDelta(skips_used=1)),
    TransitionRule(OrderStatus.UPCOMING, OrderStatus.CANCELLED, Capability.CANCEL,
                   LedgerDelta(credits_used=1)),
)

# Each target status is reachable through exactly one rule
RULES_BY_TARGET: Dict[OrderStatus, TransitionRule] = {rule.target: rule for rule in TRANSITION_TABLE}

ROLE_CAPABILITIES: Dict[Role, FrozenSet[Capability]] = {
    Role.ADMIN: frozenset({Capability.PREPARE, Capability.DISPATCH, Capability.CONFIRM_DELIVERY}),
    Role.VENDOR: frozenset({Capability.PREPARE, Capability.DISPATCH}),
    Role.USER: frozenset({Capability.SKIP, Capability.CANCEL}),
}

STATUS_LABELS = {
    OrderStatus.UPCOMING: "upcoming",
    OrderStatus.PREPARING: "preparing",
    OrderStatus.OUT_FOR_DELIVERY: "out for delivery",
    OrderStatus.DELIVERED: "delivered",
    OrderStatus.SKIPPED: "skipped",
    OrderStatus.CANCELLED: "cancelled",
}


def can_perform(role, capability: Capability) -> bool:
    return capability in ROLE_CAPABILITIES.get(Role(role), frozenset())


def resolve_transition(current, target, role) -> TransitionRule:
    """
    Find the rule that moves an order from current to target for role.

    Checks run in a fixed order so the caller always gets the most specific
    reason: terminal source, unknown target, role capability, source mismatch.

    Raises:
        TerminalStateError: current is delivered, skipped or cancelled
        InvalidTransitionError: no rule reaches target from current
        PermissionDeniedError: role lacks the rule's capability
    """
    current = OrderStatus(current)
    target = OrderStatus(target)
    role = Role(role)

    if current in TERMINAL_STATUSES:
        raise TerminalStateError(
            f"Order is already {STATUS_LABELS[current]} and cannot be changed",
            details={"current_status": current.value, "target_status": target.value},
        )

    rule = RULES_BY_TARGET.get(target)
    if rule is None:
        raise InvalidTransitionError(
            f"Cannot change order status to {STATUS_LABELS[target]}",
            details={"current_status": current.value, "target_status": target.value},
        )

    if not can_perform(role, rule.capability):
        raise PermissionDeniedError(
            f"Role '{role.value}' may not mark an order {STATUS_LABELS[target]}",
            details={"role": role.value, "target_status": target.value},
        )

    if rule.source != current:
        raise InvalidTransitionError(
            f"Cannot change order status from {STATUS_LABELS[current]} to {STATUS_LABELS[target]}",
            details={"current_status": current.value, "target_status": target.value},
        )

    return rule


def time_until_delivery(now: datetime, delivery_date: date, delivery_time: str) -> timedelta:
    """Remaining time before delivery, in now's time zone"""
    delivery_at = datetime.combine(delivery_date, parse_hhmm(delivery_time), tzinfo=now.tzinfo)
    return delivery_at - now


def within_action_window(now: datetime, delivery_date: date, delivery_time: str,
                         cutoff: timedelta) -> bool:
    return time_until_delivery(now, delivery_date, delivery_time) > cutoff


def check_action_window(now: datetime, delivery_date: date, delivery_time: str,
                        cutoff: timedelta, action: Optional[str] = None) -> None:
    """
    Raise CutoffWindowError unless strictly more than cutoff remains.

    Exactly cutoff remaining is already too late.
    """
    if within_action_window(now, delivery_date, delivery_time, cutoff):
        return
    raise CutoffWindowError(
        f"Must {action or 'act'} at least {_format_cutoff(cutoff)} before delivery time ({delivery_time})",
        details={
            "delivery_date": delivery_date.isoformat(),
            "delivery_time": delivery_time,
            "cutoff_minutes": int(cutoff.total_seconds() // 60),
        },
    )


def _format_cutoff(cutoff: timedelta) -> str:
    minutes = int(cutoff.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"
