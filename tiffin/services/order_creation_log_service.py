"""
Order creation log service

Append-only record of generation batches. A batch writes its log row when it
starts (status processing) and finalises it once every unit has reported.
Retries edit failed_orders in place; rows are never deleted.
"""

import json
import logging
from datetime import date, timedelta
from typing import List, Optional

from ..core.clock import BusinessClock, business_clock
from ..core.database import DatabaseManager, db_manager
from ..core.exceptions import LogNotFoundError
from ..models.base import PaginatedResponse, PaginationParams
from ..models.daily_meal import DailyMeal
from ..models.order_creation_log import (
    FailedOrderItem,
    LogStatus,
    OrderCreationLog,
    SuccessfulOrderItem,
)

logger = logging.getLogger(__name__)


def _dump_items(items) -> str:
    return json.dumps([item.model_dump(mode="json") for item in items])


def final_status(failed_count: int) -> LogStatus:
    return LogStatus.COMPLETED if failed_count == 0 else LogStatus.PARTIAL_SUCCESS


class OrderCreationLogService:
    """Read and write order creation log entries"""

    def __init__(self, db: DatabaseManager = None, clock: BusinessClock = None):
        self.db = db or db_manager
        self.clock = clock or business_clock

    def start_log(self, daily_meal: DailyMeal, triggered_by: Optional[int]) -> int:
        rows = self.db.execute(
            """INSERT INTO order_creation_logs(
                   daily_meal_id, plan_id, vendor_category, trigger_date, triggered_by,
                   successful_orders, failed_orders, status)
               VALUES (?,?,?,?,?,?,?,?)
               RETURNING log_id""",
            [daily_meal.daily_meal_id, daily_meal.plan_id, daily_meal.vendor_category,
             self.clock.local_now(), triggered_by, "[]", "[]", LogStatus.PROCESSING.value]
        )
        return rows[0][0]

    def finalize_log(self, log_id: int, total_users_found: int,
                     successful: List[SuccessfulOrderItem], failed: List[FailedOrderItem],
                     skipped_existing: int) -> OrderCreationLog:
        self.db.execute(
            """UPDATE order_creation_logs
               SET total_users_found = ?, total_orders_created = ?, total_orders_failed = ?,
                   total_skipped_existing = ?, successful_orders = ?, failed_orders = ?,
                   status = ?, completed_at = ?
               WHERE log_id = ?""",
            [total_users_found, len(successful), len(failed), skipped_existing,
             _dump_items(successful), _dump_items(failed),
             final_status(len(failed)).value, self.clock.local_now(), log_id]
        )
        return self.get_log(log_id)

    def mark_failed(self, log_id: int, reason: str):
        """Engine-level failure: the batch never got to its units"""
        self.db.execute(
            "UPDATE order_creation_logs SET status = ?, completed_at = ? WHERE log_id = ?",
            [LogStatus.FAILED.value, self.clock.local_now(), log_id]
        )
        self.db.log_action("order_creation_failed", {"log_id": log_id, "reason": reason})

    def save_retry_outcome(self, conn, log: OrderCreationLog) -> None:
        """Persist a log whose item lists were edited by a retry"""
        self.db.execute(
            """UPDATE order_creation_logs
               SET total_orders_created = ?, total_orders_failed = ?,
                   successful_orders = ?, failed_orders = ?, status = ?
               WHERE log_id = ?""",
            [log.total_orders_created, len(log.failed_orders),
             _dump_items(log.successful_orders), _dump_items(log.failed_orders),
             final_status(len(log.failed_orders)).value, log.log_id],
            conn
        )

    def get_log(self, log_id: int, conn=None) -> OrderCreationLog:
        row = self.db.fetch_one("SELECT * FROM order_creation_logs WHERE log_id = ?", [log_id], conn)
        if not row:
            raise LogNotFoundError(log_id)
        return OrderCreationLog.from_row(row)

    def get_logs(self, status: Optional[str] = None, plan_id: Optional[int] = None,
                 vendor_category: Optional[str] = None, start_date: Optional[date] = None,
                 end_date: Optional[date] = None,
                 pagination: Optional[PaginationParams] = None) -> PaginatedResponse:
        """
        List logs newest first.

        start_date/end_date bound trigger_date by whole business days.
        """
        pagination = pagination or PaginationParams()
        clauses, params = [], []
        if status:
            clauses.append("status = ?")
            params.append(status)
        if plan_id is not None:
            clauses.append("plan_id = ?")
            params.append(plan_id)
        if vendor_category:
            clauses.append("vendor_category = ?")
            params.append(vendor_category)
        if start_date:
            clauses.append("trigger_date >= ?")
            params.append(start_date)
        if end_date:
            clauses.append("trigger_date < ?")
            params.append(end_date + timedelta(days=1))
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""

        total = self.db.fetch_one(f"SELECT COUNT(*) AS n FROM order_creation_logs {where}", params)["n"]
        rows = self.db.fetch_all(
            f"""SELECT * FROM order_creation_logs {where}
                ORDER BY trigger_date DESC, log_id DESC
                LIMIT ? OFFSET ?""",
            params + list(pagination.limit_offset())
        )
        items = [OrderCreationLog.from_row(r) for r in rows]
        return PaginatedResponse.create(items, total, pagination)
