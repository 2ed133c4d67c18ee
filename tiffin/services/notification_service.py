"""
Push notification sender.

Delivery is best effort: send() hands the request to a background executor
and returns immediately. Failures are logged and never reach the caller.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import requests

from ..config.settings import settings
from ..core.database import DatabaseManager, db_manager, load_json

logger = logging.getLogger(__name__)


class PushNotificationSender:
    """Posts {tokens, notification} to the configured push gateway"""

    def __init__(self, endpoint: Optional[str] = None, server_key: Optional[str] = None,
                 timeout: Optional[float] = None, executor: Optional[ThreadPoolExecutor] = None):
        self.endpoint = endpoint if endpoint is not None else settings.push_endpoint
        self.server_key = server_key if server_key is not None else settings.push_server_key
        self.timeout = timeout or settings.push_timeout_seconds
        self._executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="tiffin-push")

    def send(self, tokens: List[str], message: Dict[str, str]) -> None:
        tokens = [t for t in tokens or [] if t]
        if not tokens:
            logger.debug("No push tokens, skipping notification %r", message.get("title"))
            return
        if not self.endpoint:
            logger.info("Push endpoint not configured, dropping notification %r", message.get("title"))
            return
        try:
            self._executor.submit(self._deliver, tokens, message)
        except RuntimeError as e:
            logger.warning("Push executor unavailable: %s", e)

    def _deliver(self, tokens: List[str], message: Dict[str, str]) -> bool:
        headers = {}
        if self.server_key:
            headers["Authorization"] = f"key={self.server_key}"
        payload = {
            "registration_ids": tokens,
            "notification": {"title": message.get("title"), "body": message.get("body")},
        }
        try:
            response = requests.post(self.endpoint, json=payload, headers=headers, timeout=self.timeout)
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.error("Failed to send push notification to %d device(s): %s", len(tokens), e)
            return False

    def notify_user(self, user_id: int, title: str, body: str, db: DatabaseManager = None) -> None:
        """Look up a user's device tokens and send; never raises"""
        try:
            row = (db or db_manager).fetch_one("SELECT push_tokens FROM users WHERE id = ?", [user_id])
            tokens = load_json(row["push_tokens"], []) if row else []
            self.send(tokens, {"title": title, "body": body})
        except Exception as e:
            logger.error("Notification for user %s failed: %s", user_id, e)

    def shutdown(self):
        self._executor.shutdown(wait=False)


# Global sender
push_sender = PushNotificationSender()
