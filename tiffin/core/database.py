"""
Database connection and schema management.

A single DuckDB connection guarded by a re-entrant lock. All multi-statement
writes go through transaction(), which joins an already open transaction on
the same thread instead of nesting BEGINs.

Tables:
- users / vendors: actors and their push tokens
- subscription_plans / menus: catalogue data the daily meal is built from
- user_subscriptions: the subscription ledger (credits, skips, status)
- daily_meals: one menu selection per vendor category per day
- orders / order_status_history: generated orders and their transitions
- credit_ledger: one row per credit-consuming transition
- order_creation_logs: one row per generation batch
- logs: audit trail
"""

import json
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional

import duckdb

from .exceptions import BaseApplicationError, ConcurrencyError, DatabaseError, DuplicateResourceError
from ..config.settings import settings


SCHEMA_SQL = r"""
CREATE SEQUENCE IF NOT EXISTS users_id_seq;
CREATE TABLE IF NOT EXISTS users (
  id INTEGER DEFAULT nextval('users_id_seq') PRIMARY KEY,
  name TEXT,
  role TEXT CHECK(role IN ('user','vendor','admin')) NOT NULL,
  push_tokens JSON,
  created_at TIMESTAMP DEFAULT now()
);

CREATE SEQUENCE IF NOT EXISTS vendors_id_seq;
CREATE TABLE IF NOT EXISTS vendors (
  vendor_id INTEGER DEFAULT nextval('vendors_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  business_name TEXT,
  vendor_type TEXT CHECK(vendor_type IN ('home_chef','food_vendor')) NOT NULL,
  is_active BOOLEAN DEFAULT TRUE
);

CREATE SEQUENCE IF NOT EXISTS plans_id_seq;
CREATE TABLE IF NOT EXISTS subscription_plans (
  plan_id INTEGER DEFAULT nextval('plans_id_seq') PRIMARY KEY,
  plan_name TEXT NOT NULL,
  vendor_category TEXT NOT NULL,
  meals_per_plan INTEGER NOT NULL,
  skip_allowance INTEGER DEFAULT 0,
  duration_days INTEGER NOT NULL,
  lunch_available BOOLEAN DEFAULT TRUE,
  dinner_available BOOLEAN DEFAULT TRUE,
  is_active BOOLEAN DEFAULT TRUE
);

CREATE SEQUENCE IF NOT EXISTS menus_id_seq;
CREATE TABLE IF NOT EXISTS menus (
  menu_id INTEGER DEFAULT nextval('menus_id_seq') PRIMARY KEY,
  title TEXT NOT NULL,
  vendor_category TEXT NOT NULL,
  is_active BOOLEAN DEFAULT TRUE,
  is_available BOOLEAN DEFAULT TRUE
);

CREATE SEQUENCE IF NOT EXISTS user_subscriptions_id_seq;
CREATE TABLE IF NOT EXISTS user_subscriptions (
  id INTEGER DEFAULT nextval('user_subscriptions_id_seq') PRIMARY KEY,
  user_id INTEGER NOT NULL,
  plan_id INTEGER NOT NULL,
  vendor_category TEXT NOT NULL,
  status TEXT CHECK(status IN ('pending','active','expired','cancelled')) NOT NULL,
  start_date DATE NOT NULL,
  end_date DATE NOT NULL,
  lunch_enabled BOOLEAN DEFAULT FALSE,
  lunch_time TEXT,
  dinner_enabled BOOLEAN DEFAULT FALSE,
  dinner_time TEXT,
  credits_total INTEGER NOT NULL,
  credits_used INTEGER DEFAULT 0,
  skip_allowance INTEGER DEFAULT 0,
  skips_used INTEGER DEFAULT 0,
  delivery_address JSON,
  vendor_id INTEGER,
  vendor_type TEXT,
  cancel_reason TEXT,
  cancelled_at TIMESTAMP,
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now(),
  CHECK (credits_used >= 0 AND credits_used <= credits_total),
  CHECK (skips_used >= 0 AND skips_used <= skip_allowance),
  CHECK (end_date >= start_date)
);

CREATE SEQUENCE IF NOT EXISTS daily_meals_id_seq;
CREATE TABLE IF NOT EXISTS daily_meals (
  daily_meal_id INTEGER DEFAULT nextval('daily_meals_id_seq') PRIMARY KEY,
  plan_id INTEGER,
  vendor_category TEXT NOT NULL,
  meal_date DATE NOT NULL,
  lunch_menus JSON,
  dinner_menus JSON,
  notes TEXT,
  created_by INTEGER,
  created_at TIMESTAMP DEFAULT now(),
  UNIQUE (vendor_category, meal_date)
);

CREATE SEQUENCE IF NOT EXISTS orders_id_seq;
CREATE TABLE IF NOT EXISTS orders (
  order_id INTEGER DEFAULT nextval('orders_id_seq') PRIMARY KEY,
  order_number TEXT NOT NULL,
  user_id INTEGER NOT NULL,
  user_subscription_id INTEGER NOT NULL,
  daily_meal_id INTEGER NOT NULL,
  vendor_id INTEGER NOT NULL,
  vendor_type TEXT,
  meal_type TEXT CHECK(meal_type IN ('lunch','dinner')) NOT NULL,
  selected_menus JSON,
  delivery_date DATE NOT NULL,
  delivery_time TEXT NOT NULL,
  delivery_address JSON,
  status TEXT CHECK(status IN ('upcoming','preparing','out_for_delivery','delivered','skipped','cancelled')) NOT NULL,
  skip_reason TEXT,
  skipped_by INTEGER,
  skipped_at TIMESTAMP,
  cancel_reason TEXT,
  cancelled_by INTEGER,
  cancelled_at TIMESTAMP,
  delivery_confirmed_at TIMESTAMP,
  delivery_confirmed_by INTEGER,
  delivery_notes TEXT,
  created_at TIMESTAMP DEFAULT now(),
  updated_at TIMESTAMP DEFAULT now(),
  UNIQUE (user_subscription_id, delivery_date, meal_type)
);

CREATE SEQUENCE IF NOT EXISTS order_history_id_seq;
CREATE TABLE IF NOT EXISTS order_status_history (
  history_id INTEGER DEFAULT nextval('order_history_id_seq') PRIMARY KEY,
  order_id INTEGER NOT NULL,
  status TEXT NOT NULL,
  updated_by INTEGER,
  notes TEXT,
  created_at TIMESTAMP DEFAULT now()
);

CREATE SEQUENCE IF NOT EXISTS credit_ledger_id_seq;
CREATE TABLE IF NOT EXISTS credit_ledger (
  ledger_id INTEGER DEFAULT nextval('credit_ledger_id_seq') PRIMARY KEY,
  user_subscription_id INTEGER NOT NULL,
  order_id INTEGER,
  action TEXT CHECK(action IN ('skip','cancel','deliver')) NOT NULL,
  credits_delta INTEGER DEFAULT 0,
  skips_delta INTEGER DEFAULT 0,
  created_at TIMESTAMP DEFAULT now()
);

CREATE SEQUENCE IF NOT EXISTS creation_logs_id_seq;
CREATE TABLE IF NOT EXISTS order_creation_logs (
  log_id INTEGER DEFAULT nextval('creation_logs_id_seq') PRIMARY KEY,
  daily_meal_id INTEGER NOT NULL,
  plan_id INTEGER,
  vendor_category TEXT,
  trigger_date TIMESTAMP NOT NULL,
  triggered_by INTEGER,
  total_users_found INTEGER DEFAULT 0,
  total_orders_created INTEGER DEFAULT 0,
  total_orders_failed INTEGER DEFAULT 0,
  total_skipped_existing INTEGER DEFAULT 0,
  successful_orders JSON,
  failed_orders JSON,
  status TEXT CHECK(status IN ('processing','completed','partial_success','failed')) NOT NULL,
  completed_at TIMESTAMP
);

CREATE SEQUENCE IF NOT EXISTS logs_id_seq;
CREATE TABLE IF NOT EXISTS logs (
  log_id INTEGER DEFAULT nextval('logs_id_seq') PRIMARY KEY,
  user_id INTEGER,
  actor_id INTEGER,
  action TEXT,
  detail_json JSON,
  created_at TIMESTAMP DEFAULT now()
);

CREATE INDEX IF NOT EXISTS idx_user_subscriptions_user ON user_subscriptions(user_id);
CREATE INDEX IF NOT EXISTS idx_orders_user ON orders(user_id);
CREATE INDEX IF NOT EXISTS idx_orders_vendor ON orders(vendor_id);
CREATE INDEX IF NOT EXISTS idx_logs_actor ON logs(actor_id);
"""


def _path_from_url(database_url: str) -> str:
    if database_url.startswith("duckdb://"):
        return database_url[len("duckdb://"):]
    return database_url


class DatabaseManager:
    """Owns the DuckDB connection and wraps every access in a lock"""

    def __init__(self, db_path: Optional[str] = None):
        self._connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()
        self._local = threading.local()
        self.db_path = db_path or _path_from_url(settings.database_url)

    @property
    def connection(self) -> duckdb.DuckDBPyConnection:
        with self._lock:
            if self._connection is None:
                if self.db_path != ":memory:":
                    Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
                self._connection = duckdb.connect(self.db_path)
                self._init_schema()
            return self._connection

    def get_connection(self) -> duckdb.DuckDBPyConnection:
        return self.connection

    def _init_schema(self):
        try:
            self._connection.execute(SCHEMA_SQL)
        except duckdb.Error as e:
            raise DatabaseError(f"Failed to initialize schema: {e}")

    def init_database(self):
        """Open the connection and create missing tables"""
        self.get_connection()

    def close(self):
        with self._lock:
            if self._connection is not None:
                self._connection.close()
                self._connection = None

    @property
    def in_transaction(self) -> bool:
        return getattr(self._local, "depth", 0) > 0

    @contextmanager
    def transaction(self) -> Generator[duckdb.DuckDBPyConnection, None, None]:
        """
        Transaction context manager.

        Holds the connection lock for the whole block. A nested call on the
        same thread joins the outer transaction; only the outermost block
        commits or rolls back.

        Raises:
            DuplicateResourceError: a UNIQUE constraint was violated
            ConcurrencyError: the store reported a write conflict
            DatabaseError: any other store failure
        """
        with self._lock:
            conn = self.connection
            if self.in_transaction:
                self._local.depth += 1
                try:
                    yield conn
                finally:
                    self._local.depth -= 1
                return

            self._local.depth = 1
            try:
                conn.execute("BEGIN TRANSACTION")
                yield conn
                conn.execute("COMMIT")
            except Exception as e:
                try:
                    conn.execute("ROLLBACK")
                except duckdb.Error:
                    pass  # already aborted by DuckDB
                translated = self._translate_error(e)
                if translated is e:
                    raise
                raise translated from e
            finally:
                self._local.depth = 0

    @staticmethod
    def _translate_error(error: Exception) -> Exception:
        if isinstance(error, BaseApplicationError):
            return error
        if isinstance(error, duckdb.ConstraintException):
            message = str(error)
            if "unique" in message.lower() or "duplicate" in message.lower():
                return DuplicateResourceError(message)
            return DatabaseError(f"Constraint violated: {message}")
        if isinstance(error, duckdb.TransactionException):
            return ConcurrencyError("System busy, please retry")
        if isinstance(error, duckdb.Error):
            return DatabaseError(f"Database operation failed: {error}")
        return error

    def fetch_all(self, query: str, params: Optional[list] = None,
                  conn: Optional[duckdb.DuckDBPyConnection] = None) -> List[Dict[str, Any]]:
        """Run a query and return rows as dicts keyed by column name"""
        with self._lock:
            con = conn or self.connection
            try:
                cursor = con.execute(query, params or [])
                columns = [d[0] for d in cursor.description]
                return [dict(zip(columns, row)) for row in cursor.fetchall()]
            except duckdb.Error as e:
                raise self._translate_error(e) from e

    def fetch_one(self, query: str, params: Optional[list] = None,
                  conn: Optional[duckdb.DuckDBPyConnection] = None) -> Optional[Dict[str, Any]]:
        rows = self.fetch_all(query, params, conn)
        return rows[0] if rows else None

    def execute(self, query: str, params: Optional[list] = None,
                conn: Optional[duckdb.DuckDBPyConnection] = None) -> list:
        """Run a statement and return raw result tuples (e.g. RETURNING)"""
        with self._lock:
            con = conn or self.connection
            try:
                cursor = con.execute(query, params or [])
                return cursor.fetchall() if cursor.description else []
            except duckdb.Error as e:
                raise self._translate_error(e) from e

    def log_action(self, action: str, detail: Dict[str, Any], user_id: Optional[int] = None,
                   actor_id: Optional[int] = None, conn: Optional[duckdb.DuckDBPyConnection] = None):
        """Append a row to the audit trail"""
        self.execute(
            "INSERT INTO logs(user_id, actor_id, action, detail_json) VALUES (?,?,?,?)",
            [user_id, actor_id, action, json.dumps(detail, default=str)],
            conn
        )


def load_json(value: Any, default: Any = None) -> Any:
    """Decode a JSON column, which DuckDB returns as text"""
    if value is None:
        return default
    if isinstance(value, str):
        return json.loads(value) if value else default
    return value


# Global database manager
db_manager = DatabaseManager()
