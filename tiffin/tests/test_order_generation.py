"""
Order generation engine tests
"""

import json
from concurrent.futures import ThreadPoolExecutor
from datetime import date

import pytest

from tiffin.models.daily_meal import DailyMeal
from tiffin.models.order_creation_log import LogStatus
from tiffin.services.order_generation_service import INSUFFICIENT_CREDITS, ORDER_CREATION_FAILED


def load_meal(db, daily_meal_id):
    return DailyMeal.from_row(db.fetch_one("SELECT * FROM daily_meals WHERE daily_meal_id = ?", [daily_meal_id]))


def count_orders(db):
    return db.fetch_one("SELECT COUNT(*) AS n FROM orders")["n"]


class TestGenerateOrders:
    """generate_orders"""

    def test_creates_one_order_per_enabled_slot(self, test_db, seed, generation_service):
        vendor_id = seed.vendor()
        sub_id = seed.subscription(vendor_id=vendor_id)
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal, actor_id=1)

        assert len(result.created) == 2
        assert result.failures == []
        rows = test_db.fetch_all("SELECT * FROM orders ORDER BY meal_type")
        assert [r["meal_type"] for r in rows] == ["dinner", "lunch"]
        assert all(r["status"] == "upcoming" for r in rows)
        assert all(r["user_subscription_id"] == sub_id for r in rows)
        assert all(r["delivery_date"] == date(2024, 1, 15) for r in rows)
        assert {r["delivery_time"] for r in rows} == {"13:00", "20:00"}

    def test_order_number_format(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=seed.vendor(), dinner=None)
        meal = load_meal(test_db, seed.daily_meal())

        generation_service.generate_orders(meal)

        row = test_db.fetch_one("SELECT order_number FROM orders")
        assert row["order_number"] == "TFX-20240115-0001"

    def test_only_slots_present_in_daily_meal(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=seed.vendor())
        meal = load_meal(test_db, seed.daily_meal(dinner_menus=()))

        result = generation_service.generate_orders(meal)

        assert [c.meal_type.value for c in result.created] == ["lunch"]

    def test_ignores_ineligible_subscriptions(self, test_db, seed, generation_service):
        vendor_id = seed.vendor()
        seed.subscription(vendor_id=vendor_id, status="pending")
        seed.subscription(vendor_id=vendor_id, status="cancelled")
        seed.subscription(vendor_id=vendor_id, vendor_category="food_vendor")
        seed.subscription(vendor_id=vendor_id, start_date=date(2024, 1, 16), end_date=date(2024, 2, 16))
        seed.subscription(vendor_id=vendor_id, start_date=date(2023, 12, 1), end_date=date(2024, 1, 14))
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert result.total_users_found == 0
        assert count_orders(test_db) == 0

    def test_idempotent_on_rerun(self, test_db, seed, generation_service):
        vendor_id = seed.vendor()
        for _ in range(3):
            seed.subscription(vendor_id=vendor_id)
        meal = load_meal(test_db, seed.daily_meal())

        first = generation_service.generate_orders(meal)
        second = generation_service.generate_orders(meal)

        assert len(first.created) == 6
        assert second.created == []
        assert len(second.skipped_existing) == 6
        assert count_orders(test_db) == 6
        assert {s.order_id for s in second.skipped_existing} == {c.order_id for c in first.created}

    def test_skipped_order_is_not_regenerated(self, test_db, seed, generation_service):
        sub_id = seed.subscription(vendor_id=seed.vendor(), dinner=None)
        seed.order(sub_id, status="skipped")
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert result.created == []
        assert len(result.skipped_existing) == 1
        assert count_orders(test_db) == 1

    def test_partial_failure_is_isolated(self, test_db, seed, generation_service):
        vendor_id = seed.vendor()
        good_ids = [seed.subscription(vendor_id=vendor_id, dinner=None) for _ in range(2)]
        bad_id = seed.subscription(vendor_id=vendor_id, dinner=None,
                                   address={"street": "", "city": "Pune", "zip_code": "411001"})
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert sorted(c.user_subscription_id for c in result.created) == sorted(good_ids)
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.user_subscription_id == bad_id
        assert failure.error_reason == ORDER_CREATION_FAILED
        assert failure.can_retry is True
        assert "street" in failure.error_details["message"]

        log = test_db.fetch_one("SELECT * FROM order_creation_logs WHERE log_id = ?", [result.log_id])
        assert log["status"] == LogStatus.PARTIAL_SUCCESS.value
        assert log["total_orders_created"] == 2
        assert log["total_orders_failed"] == 1
        assert len(json.loads(log["failed_orders"])) == 1

    def test_malformed_subscription_row_is_isolated(self, test_db, seed, generation_service):
        vendor_id = seed.vendor()
        good_ids = [seed.subscription(vendor_id=vendor_id) for _ in range(3)]
        bad_id = seed.subscription(vendor_id=vendor_id,
                                   address={"street": 5, "city": "Pune", "zip_code": "411001"})
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert len(result.created) == 6
        assert {c.user_subscription_id for c in result.created} == set(good_ids)
        assert len(result.failures) == 1
        failure = result.failures[0]
        assert failure.user_subscription_id == bad_id
        assert failure.error_reason == ORDER_CREATION_FAILED
        assert failure.meal_type is None
        assert count_orders(test_db) == 6

        log = test_db.fetch_one("SELECT * FROM order_creation_logs WHERE log_id = ?", [result.log_id])
        assert log["status"] == LogStatus.PARTIAL_SUCCESS.value
        assert log["total_users_found"] == 4
        assert log["total_orders_failed"] == 1

    def test_engine_failure_marks_log_failed(self, monkeypatch, test_db, seed, generation_service):
        def broken_query(vendor_category, on_date):
            raise RuntimeError("store went away")

        monkeypatch.setattr(generation_service.subscriptions, "find_active_for_category", broken_query)
        meal = load_meal(test_db, seed.daily_meal())

        with pytest.raises(RuntimeError):
            generation_service.generate_orders(meal)

        log = test_db.fetch_one("SELECT * FROM order_creation_logs ORDER BY log_id DESC LIMIT 1")
        assert log["status"] == LogStatus.FAILED.value
        assert log["completed_at"] is not None

    def test_concurrent_runs_create_each_key_once(self, test_db, seed, generation_service):
        vendor_id = seed.vendor()
        sub_ids = [seed.subscription(vendor_id=vendor_id) for _ in range(10)]
        meal = load_meal(test_db, seed.daily_meal())

        with ThreadPoolExecutor(max_workers=3) as pool:
            results = list(pool.map(lambda _: generation_service.generate_orders(meal), range(3)))

        assert count_orders(test_db) == 20
        assert sum(len(r.created) for r in results) == 20
        assert all(r.failures == [] for r in results)
        keys = test_db.fetch_all(
            "SELECT user_subscription_id, meal_type, COUNT(*) AS n FROM orders GROUP BY 1, 2"
        )
        assert len(keys) == 20
        assert {k["user_subscription_id"] for k in keys} == set(sub_ids)
        assert all(k["n"] == 1 for k in keys)
        numbers = test_db.fetch_all("SELECT DISTINCT order_number FROM orders")
        assert len(numbers) == 20

    def test_missing_vendor_fails_unit(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=None, dinner=None)
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert result.created == []
        assert "vendor" in result.failures[0].error_details["message"].lower()

    def test_malformed_delivery_time_fails_unit(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=seed.vendor(), lunch="1pm", dinner=None)
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert len(result.failures) == 1
        assert "HH:MM" in result.failures[0].error_details["message"]

    def test_insufficient_credits_not_retryable(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=seed.vendor(), credits_total=10, credits_used=9)
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        assert result.created == []
        assert len(result.failures) == 2
        assert all(f.error_reason == INSUFFICIENT_CREDITS for f in result.failures)
        assert all(f.can_retry is False for f in result.failures)

    def test_country_defaults_to_india(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=seed.vendor(), dinner=None)
        meal = load_meal(test_db, seed.daily_meal())

        generation_service.generate_orders(meal)

        address = json.loads(test_db.fetch_one("SELECT delivery_address FROM orders")["delivery_address"])
        assert address["country"] == "India"

    def test_does_not_touch_credits(self, test_db, seed, generation_service):
        sub_id = seed.subscription(vendor_id=seed.vendor())
        meal = load_meal(test_db, seed.daily_meal())

        generation_service.generate_orders(meal)

        sub = test_db.fetch_one("SELECT credits_used, skips_used FROM user_subscriptions WHERE id = ?", [sub_id])
        assert sub["credits_used"] == 0
        assert sub["skips_used"] == 0

    def test_empty_batch_completes(self, test_db, seed, generation_service):
        meal = load_meal(test_db, seed.daily_meal())

        result = generation_service.generate_orders(meal)

        log = test_db.fetch_one("SELECT * FROM order_creation_logs WHERE log_id = ?", [result.log_id])
        assert log["status"] == LogStatus.COMPLETED.value
        assert log["completed_at"] is not None


class TestRetryFailedOrder:
    """retry_failed_order"""

    def _failed_batch(self, test_db, seed, generation_service):
        bad_id = seed.subscription(vendor_id=seed.vendor(), dinner=None,
                                   address={"street": "", "city": "Pune", "zip_code": "411001"})
        meal = load_meal(test_db, seed.daily_meal())
        return bad_id, generation_service.generate_orders(meal)

    def test_retry_after_fix_succeeds(self, test_db, seed, generation_service, log_service):
        bad_id, result = self._failed_batch(test_db, seed, generation_service)
        test_db.execute(
            "UPDATE user_subscriptions SET delivery_address = ? WHERE id = ?",
            [json.dumps({"street": "1 FC Road", "city": "Pune", "zip_code": "411001"}), bad_id]
        )

        retry = generation_service.retry_failed_order(result.log_id, 0, actor_id=1)

        assert retry.success is True
        assert retry.order.user_subscription_id == bad_id
        log = log_service.get_log(result.log_id)
        assert log.failed_orders == []
        assert log.total_orders_created == 1
        assert log.status == LogStatus.COMPLETED.value

    def test_retry_still_failing_keeps_item(self, test_db, seed, generation_service, log_service):
        _, result = self._failed_batch(test_db, seed, generation_service)

        retry = generation_service.retry_failed_order(result.log_id, 0)

        assert retry.success is False
        assert "street" in retry.message
        assert len(log_service.get_log(result.log_id).failed_orders) == 1

    def test_retry_when_order_already_exists(self, test_db, seed, generation_service, log_service):
        bad_id, result = self._failed_batch(test_db, seed, generation_service)
        seed.order(bad_id)

        retry = generation_service.retry_failed_order(result.log_id, 0)

        assert retry.success is True
        assert retry.message == "Order already exists"
        assert count_orders(test_db) == 1
        assert log_service.get_log(result.log_id).failed_orders == []

    def test_invalid_index(self, test_db, seed, generation_service):
        _, result = self._failed_batch(test_db, seed, generation_service)

        retry = generation_service.retry_failed_order(result.log_id, 5)

        assert retry.success is False
        assert retry.message == "Invalid failed order index"

    def test_unknown_log(self, generation_service):
        retry = generation_service.retry_failed_order(999, 0)

        assert retry.success is False
        assert "not found" in retry.message

    def test_non_retryable_item(self, test_db, seed, generation_service):
        seed.subscription(vendor_id=seed.vendor(), credits_used=10)
        meal = load_meal(test_db, seed.daily_meal())
        result = generation_service.generate_orders(meal)

        retry = generation_service.retry_failed_order(result.log_id, 0)

        assert retry.success is False
        assert retry.message == "This order cannot be retried"

    def test_retry_is_audited(self, test_db, seed, generation_service):
        _, result = self._failed_batch(test_db, seed, generation_service)

        generation_service.retry_failed_order(result.log_id, 0, actor_id=7)

        row = test_db.fetch_one("SELECT * FROM logs WHERE action = 'order_creation_retry'")
        assert row["actor_id"] == 7
