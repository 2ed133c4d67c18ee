"""
Custom exception classes.

Every error the services raise derives from BaseApplicationError and carries
an error_code that core.error_handler maps to an HTTP status.
"""

from typing import Any, Dict, Optional


class BaseApplicationError(Exception):
    """Base application error"""

    default_code = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.error_code = error_code or self.default_code
        self.details = details or {}
        super().__init__(self.message)


class DatabaseError(BaseApplicationError):
    """Store read/write failed"""
    default_code = "DATABASE_ERROR"


class ConcurrencyError(BaseApplicationError):
    """Concurrent write conflict"""
    default_code = "CONCURRENCY_CONFLICT"


class DuplicateResourceError(BaseApplicationError):
    """Unique constraint violation in the store"""
    default_code = "DUPLICATE_RESOURCE"


class AuthenticationError(BaseApplicationError):
    """Missing or invalid credentials"""
    default_code = "AUTHENTICATION_REQUIRED"


class ValidationError(BaseApplicationError):
    """Malformed input, rejected before any state change"""
    default_code = "VALIDATION_ERROR"


# Not found

class NotFoundError(BaseApplicationError):
    """Referenced resource does not exist"""
    default_code = "RESOURCE_NOT_FOUND"
    resource = "Resource"

    def __init__(self, resource_id: Any = None, message: Optional[str] = None):
        message = message or f"{self.resource} not found"
        details = {"id": resource_id} if resource_id is not None else None
        super().__init__(message, details=details)


class OrderNotFoundError(NotFoundError):
    default_code = "ORDER_NOT_FOUND"
    resource = "Order"


class SubscriptionNotFoundError(NotFoundError):
    default_code = "SUBSCRIPTION_NOT_FOUND"
    resource = "Subscription"


class PlanNotFoundError(NotFoundError):
    default_code = "PLAN_NOT_FOUND"
    resource = "Subscription plan"


class DailyMealNotFoundError(NotFoundError):
    default_code = "DAILY_MEAL_NOT_FOUND"
    resource = "Daily meal"


class LogNotFoundError(NotFoundError):
    default_code = "LOG_NOT_FOUND"
    resource = "Order creation log"


class UserNotFoundError(NotFoundError):
    default_code = "USER_NOT_FOUND"
    resource = "User"


# Policy violations

class PolicyViolationError(BaseApplicationError):
    """A business rule rejected the operation"""
    default_code = "BUSINESS_RULE_VIOLATION"


class PermissionDeniedError(PolicyViolationError):
    """The actor's role does not allow the operation"""
    default_code = "PERMISSION_DENIED"


class TerminalStateError(PolicyViolationError):
    """Order is delivered, skipped or cancelled"""
    default_code = "ORDER_TERMINAL"


class InvalidTransitionError(PolicyViolationError):
    """Status change not in the transition table"""
    default_code = "INVALID_STATUS_TRANSITION"


class CutoffWindowError(PolicyViolationError):
    """Too close to delivery time for a user action"""
    default_code = "CUTOFF_WINDOW_PASSED"


class InsufficientCreditsError(PolicyViolationError):
    """No skip or meal credit left"""
    default_code = "INSUFFICIENT_CREDITS"


class SubscriptionStatusError(PolicyViolationError):
    """Subscription status change not allowed"""
    default_code = "SUBSCRIPTION_STATUS_INVALID"


class DailyMealAlreadySetError(PolicyViolationError):
    """A selection already exists for this category and day"""
    default_code = "DAILY_MEAL_ALREADY_SET"
