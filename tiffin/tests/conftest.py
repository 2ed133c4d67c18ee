"""
Test fixtures.

Every test gets its own in-memory DuckDB, a clock pinned to a known business
time and a notifier that records instead of sending.
"""

import json
from datetime import date, datetime, timedelta
from typing import Dict, List, Optional

import pytest

from tiffin.core.clock import BusinessClock
from tiffin.core.database import DatabaseManager
from tiffin.models.user import Actor, Role
from tiffin.services.daily_meal_service import DailyMealService
from tiffin.services.notification_service import PushNotificationSender
from tiffin.services.order_creation_log_service import OrderCreationLogService
from tiffin.services.order_generation_service import OrderGenerationService
from tiffin.services.order_service import OrderService
from tiffin.services.subscription_service import SubscriptionService


TODAY = date(2024, 1, 15)
DEFAULT_ADDRESS = {"street": "12 MG Road", "city": "Bengaluru", "zip_code": "560001"}


class FixedClock(BusinessClock):
    """Business clock frozen at a settable local time"""

    def __init__(self, local: datetime):
        super().__init__("Asia/Kolkata")
        self.set(local)

    def set(self, local: datetime):
        self._now = local.replace(tzinfo=self.tz)

    def now(self) -> datetime:
        return self._now


class RecordingNotifier(PushNotificationSender):
    def __init__(self):
        super().__init__(endpoint="")
        self.sent: List[Dict] = []

    def notify_user(self, user_id, title, body, db=None):
        self.sent.append({"user_id": user_id, "title": title, "body": body})


class Seeder:
    """Inserts catalogue and subscription rows directly"""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def user(self, role: str = "user", name: Optional[str] = None, push_tokens=None) -> int:
        rows = self.db.execute(
            "INSERT INTO users(name, role, push_tokens) VALUES (?,?,?) RETURNING id",
            [name or role, role, json.dumps(push_tokens or [])]
        )
        return rows[0][0]

    def vendor(self, user_id: Optional[int] = None, vendor_type: str = "home_chef") -> int:
        user_id = user_id or self.user("vendor")
        rows = self.db.execute(
            "INSERT INTO vendors(user_id, business_name, vendor_type) VALUES (?,?,?) RETURNING vendor_id",
            [user_id, f"Kitchen {user_id}", vendor_type]
        )
        return rows[0][0]

    def plan(self, vendor_category: str = "home_chef", meals: int = 10, skips: int = 2,
             days: int = 30) -> int:
        rows = self.db.execute(
            """INSERT INTO subscription_plans(plan_name, vendor_category, meals_per_plan, skip_allowance,
                                              duration_days)
               VALUES (?,?,?,?,?) RETURNING plan_id""",
            [f"{vendor_category} {meals}", vendor_category, meals, skips, days]
        )
        return rows[0][0]

    def menu(self, vendor_category: str = "home_chef", title: str = "Thali",
             is_active: bool = True, is_available: bool = True) -> int:
        rows = self.db.execute(
            """INSERT INTO menus(title, vendor_category, is_active, is_available)
               VALUES (?,?,?,?) RETURNING menu_id""",
            [title, vendor_category, is_active, is_available]
        )
        return rows[0][0]

    def subscription(self, user_id: Optional[int] = None, plan_id: Optional[int] = None,
                     vendor_id: Optional[int] = None, vendor_category: str = "home_chef",
                     status: str = "active", credits_total: int = 10, credits_used: int = 0,
                     skip_allowance: int = 2, skips_used: int = 0,
                     start_date: date = TODAY - timedelta(days=5), end_date: date = TODAY + timedelta(days=25),
                     lunch: Optional[str] = "13:00", dinner: Optional[str] = "20:00",
                     address: Optional[dict] = DEFAULT_ADDRESS) -> int:
        user_id = user_id or self.user("user")
        plan_id = plan_id or self.plan(vendor_category)
        rows = self.db.execute(
            """INSERT INTO user_subscriptions(
                   user_id, plan_id, vendor_category, status, start_date, end_date,
                   lunch_enabled, lunch_time, dinner_enabled, dinner_time,
                   credits_total, credits_used, skip_allowance, skips_used,
                   delivery_address, vendor_id, vendor_type)
               VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
               RETURNING id""",
            [user_id, plan_id, vendor_category, status, start_date, end_date,
             lunch is not None, lunch, dinner is not None, dinner,
             credits_total, credits_used, skip_allowance, skips_used,
             json.dumps(address) if address else None, vendor_id, "home_chef" if vendor_id else None]
        )
        return rows[0][0]

    def order(self, subscription_id: int, delivery_date: date = TODAY, meal_type: str = "lunch",
              status: str = "upcoming", delivery_time: str = "13:00") -> int:
        sub = self.db.fetch_one("SELECT * FROM user_subscriptions WHERE id = ?", [subscription_id])
        number = self.db.fetch_one("SELECT COUNT(*) AS n FROM orders")["n"] + 1
        rows = self.db.execute(
            """INSERT INTO orders(order_number, user_id, user_subscription_id, daily_meal_id, vendor_id,
                                  vendor_type, meal_type, selected_menus, delivery_date, delivery_time,
                                  delivery_address, status)
               VALUES (?,?,?,?,?,?,?,?,?,?,?,?) RETURNING order_id""",
            [f"TFX-{delivery_date.strftime('%Y%m%d')}-{number:04d}", sub["user_id"], subscription_id, 0,
             sub["vendor_id"] or 0, sub["vendor_type"], meal_type, "[1]", delivery_date, delivery_time,
             sub["delivery_address"], status]
        )
        return rows[0][0]

    def daily_meal(self, vendor_category: str = "home_chef", meal_date: date = TODAY,
                   lunch_menus=(1,), dinner_menus=(2,), plan_id: Optional[int] = None) -> int:
        rows = self.db.execute(
            """INSERT INTO daily_meals(plan_id, vendor_category, meal_date, lunch_menus, dinner_menus)
               VALUES (?,?,?,?,?) RETURNING daily_meal_id""",
            [plan_id, vendor_category, meal_date, json.dumps(list(lunch_menus)), json.dumps(list(dinner_menus))]
        )
        return rows[0][0]


@pytest.fixture
def test_db():
    db = DatabaseManager(":memory:")
    db.init_database()
    yield db
    db.close()


@pytest.fixture
def clock():
    return FixedClock(datetime(2024, 1, 15, 8, 0))


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def seed(test_db):
    return Seeder(test_db)


@pytest.fixture
def subscription_service(test_db, clock):
    return SubscriptionService(test_db, clock)


@pytest.fixture
def log_service(test_db, clock):
    return OrderCreationLogService(test_db, clock)


@pytest.fixture
def generation_service(test_db, clock, subscription_service, log_service):
    return OrderGenerationService(test_db, clock, subscription_service, log_service,
                                  max_workers=4, unit_timeout=10)


@pytest.fixture
def order_service(test_db, clock, subscription_service, notifier):
    return OrderService(test_db, clock, subscription_service, notifier, max_workers=4, unit_timeout=10)


@pytest.fixture
def daily_meal_service(test_db, clock, subscription_service, generation_service):
    return DailyMealService(test_db, clock, subscription_service, generation_service)


@pytest.fixture
def admin(seed):
    return Actor(user_id=seed.user("admin"), role=Role.ADMIN)


@pytest.fixture
def vendor_actor(seed):
    user_id = seed.user("vendor")
    return Actor(user_id=user_id, role=Role.VENDOR, vendor_id=seed.vendor(user_id))


@pytest.fixture
def as_user():
    """Actor factory for a plain user"""
    def make(user_id: int) -> Actor:
        return Actor(user_id=user_id, role=Role.USER)
    return make
