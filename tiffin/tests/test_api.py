"""
HTTP surface tests.

Routes run against the per-test store through dependency overrides; the
lifespan is not entered so the global store is never opened.
"""

from datetime import date, datetime

import pytest
from fastapi.testclient import TestClient

from tiffin import app as app_module
from tiffin.api import deps
from tiffin.app import create_app
from tiffin.core.security import (
    SecurityManager,
    create_access_token,
    get_current_actor,
    load_actor,
    security_manager,
)
from tiffin.core.exceptions import AuthenticationError, PermissionDeniedError
from tiffin.models.daily_meal import DailyMeal
from tiffin.models.user import Role


@pytest.fixture
def current(admin):
    """Mutable holder for the caller the app sees"""
    return {"actor": admin}


@pytest.fixture
def client(monkeypatch, test_db, current, order_service, daily_meal_service, generation_service,
           log_service, subscription_service):
    monkeypatch.setattr(app_module, "db_manager", test_db)
    app = create_app()
    app.dependency_overrides[get_current_actor] = lambda: current["actor"]
    app.dependency_overrides[deps.get_order_service] = lambda: order_service
    app.dependency_overrides[deps.get_daily_meal_service] = lambda: daily_meal_service
    app.dependency_overrides[deps.get_order_generation_service] = lambda: generation_service
    app.dependency_overrides[deps.get_order_creation_log_service] = lambda: log_service
    app.dependency_overrides[deps.get_subscription_service] = lambda: subscription_service
    return TestClient(app)


class TestOrderRoutes:

    def test_skip_inside_cutoff_is_400(self, client, current, seed, test_db, clock, as_user):
        sub_id = seed.subscription(vendor_id=seed.vendor())
        order_id = seed.order(sub_id)
        user_id = test_db.fetch_one("SELECT user_id FROM orders WHERE order_id = ?", [order_id])["user_id"]
        current["actor"] = as_user(user_id)
        clock.set(datetime(2024, 1, 15, 11, 30))

        response = client.post(f"/api/v1/orders/{order_id}/skip", json={"reason": "late"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error_code"] == "CUTOFF_WINDOW_PASSED"
        assert body["details"]["delivery_time"] == "13:00"

    def test_skip_in_time(self, client, current, seed, test_db, as_user):
        order_id = seed.order(seed.subscription(vendor_id=seed.vendor()))
        user_id = test_db.fetch_one("SELECT user_id FROM orders WHERE order_id = ?", [order_id])["user_id"]
        current["actor"] = as_user(user_id)

        response = client.post(f"/api/v1/orders/{order_id}/skip", json={})

        assert response.status_code == 200
        assert response.json()["data"]["status"] == "skipped"

    def test_vendor_confirm_delivery_forbidden(self, client, current, seed, vendor_actor):
        order_id = seed.order(seed.subscription(vendor_id=vendor_actor.vendor_id), status="out_for_delivery")
        current["actor"] = vendor_actor

        response = client.post(f"/api/v1/admin/orders/{order_id}/confirm-delivery", json={})

        assert response.status_code == 403
        assert response.json()["error_code"] == "PERMISSION_DENIED"

    def test_unknown_order_is_404(self, client):
        response = client.get("/api/v1/orders/4040")

        assert response.status_code == 404
        assert response.json()["error_code"] == "ORDER_NOT_FOUND"

    def test_terminal_order_is_400(self, client, seed):
        order_id = seed.order(seed.subscription(vendor_id=seed.vendor()), status="delivered")

        response = client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "preparing"})

        assert response.status_code == 400
        assert response.json()["error_code"] == "ORDER_TERMINAL"

    def test_bad_status_value_is_422(self, client, seed):
        order_id = seed.order(seed.subscription(vendor_id=seed.vendor()))

        response = client.patch(f"/api/v1/orders/{order_id}/status", json={"status": "eaten"})

        assert response.status_code == 422
        assert response.json()["error_code"] == "VALIDATION_ERROR"

    def test_bulk_confirm_reports_each_order(self, client, seed):
        sub_id = seed.subscription(vendor_id=seed.vendor())
        ready = seed.order(sub_id, status="out_for_delivery")
        waiting = seed.order(sub_id, meal_type="dinner")

        response = client.post("/api/v1/admin/orders/bulk-confirm-delivery",
                               json={"order_ids": [ready, waiting]})

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["success"] == [ready]
        assert [f["order_id"] for f in data["failed"]] == [waiting]

    def test_list_orders_paginated(self, client, seed):
        sub_id = seed.subscription(vendor_id=seed.vendor())
        seed.order(sub_id)
        seed.order(sub_id, meal_type="dinner")

        response = client.get("/api/v1/orders", params={"size": 1})

        body = response.json()
        assert len(body["data"]["items"]) == 1
        assert body["data"]["pagination"]["total"] == 2
        assert body["data"]["pagination"]["total_pages"] == 2


class TestAdminRoutes:

    def test_set_today_then_conflict(self, client, seed):
        plan_id = seed.plan()
        menu_id = seed.menu()
        seed.subscription(vendor_id=seed.vendor(), plan_id=plan_id, dinner=None)
        payload = {"plan_id": plan_id, "lunch_menu_ids": [menu_id], "dinner_menu_ids": []}

        first = client.post("/api/v1/admin/daily-meals/set-today", json=payload)
        second = client.post("/api/v1/admin/daily-meals/set-today", json=payload)

        assert first.status_code == 200
        assert len(first.json()["data"]["generation"]["created"]) == 1
        assert second.status_code == 409
        assert second.json()["error_code"] == "DAILY_MEAL_ALREADY_SET"

    def test_set_today_requires_admin(self, client, current, seed, as_user):
        current["actor"] = as_user(seed.user())

        response = client.post("/api/v1/admin/daily-meals/set-today",
                               json={"plan_id": 1, "lunch_menu_ids": [1], "dinner_menu_ids": []})

        assert response.status_code == 403

    def test_retry_reports_outcome_in_body(self, client, seed, test_db, generation_service):
        seed.subscription(vendor_id=None, dinner=None)
        meal_id = seed.daily_meal()
        meal = DailyMeal.from_row(test_db.fetch_one("SELECT * FROM daily_meals WHERE daily_meal_id = ?",
                                                    [meal_id]))
        log_id = generation_service.generate_orders(meal).log_id

        response = client.post(f"/api/v1/admin/order-creation-logs/{log_id}/retry/3")

        assert response.status_code == 200
        assert response.json() == {"success": False, "message": "Invalid failed order index", "data": None}

    def test_expire_subscriptions(self, client, seed):
        lapsed = seed.subscription(start_date=date(2023, 12, 1), end_date=date(2024, 1, 10))

        response = client.post("/api/v1/admin/subscriptions/expire", json={})

        assert response.json()["data"]["expired"] == [lapsed]


class TestHealth:

    def test_health_uses_store(self, client):
        response = client.get("/health")

        assert response.json()["status"] == "healthy"


class TestAuthentication:

    def test_token_round_trip(self):
        manager = SecurityManager(secret_key="test-secret-0123456789abcdef-0123456789")
        token = manager.create_jwt_token(42)

        assert manager.get_user_id_from_token(token) == 42

    def test_access_token_uses_configured_secret(self):
        assert security_manager.get_user_id_from_token(create_access_token(5)) == 5

    def test_wrong_secret_rejected(self):
        token = SecurityManager(secret_key="a" * 32).create_jwt_token(1)

        with pytest.raises(AuthenticationError):
            SecurityManager(secret_key="b" * 32).get_user_id_from_token(token)

    def test_load_actor_reads_role_and_vendor(self, test_db, seed):
        user_id = seed.user("vendor")
        vendor_id = seed.vendor(user_id)

        actor = load_actor(user_id, test_db)

        assert actor.role == Role.VENDOR
        assert actor.vendor_id == vendor_id

    def test_vendor_without_profile_denied(self, test_db, seed):
        with pytest.raises(PermissionDeniedError):
            load_actor(seed.user("vendor"), test_db)

    def test_missing_header_is_401(self, monkeypatch, test_db):
        monkeypatch.setattr(app_module, "db_manager", test_db)
        response = TestClient(create_app()).get("/api/v1/orders")

        assert response.status_code == 401
        assert response.json()["error_code"] == "AUTHENTICATION_REQUIRED"
