"""
Telegram operator alerts.

Alerts are best-effort: a failed send is logged and never interrupts the
monitor. Error alerts with the same leading text are sent at most once per
cooldown window.
"""

import asyncio
import logging
import time
from typing import Dict, Optional

import requests

logger = logging.getLogger("Notifier")

ALERT_COOLDOWN = 300  # 5 minutes
TELEGRAM_API = "https://api.telegram.org"


class TelegramNotifier:
    def __init__(self, bot_token: str = "", chat_id: str = "", cooldown: float = ALERT_COOLDOWN):
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.cooldown = cooldown
        self._last_errors: Dict[str, float] = {}

    @property
    def enabled(self) -> bool:
        return bool(self.bot_token and self.chat_id)

    def _suppressed(self, msg: str, now: Optional[float] = None) -> bool:
        key = msg[:100]
        now = time.time() if now is None else now
        last = self._last_errors.get(key)
        if last is not None and now - last < self.cooldown:
            return True
        self._last_errors[key] = now
        return False

    def send(self, msg: str, is_error: bool = False) -> bool:
        """Send an HTML-formatted message. Returns True when Telegram accepted it."""
        if not self.enabled:
            return False
        if is_error and self._suppressed(msg):
            logger.debug("Duplicate error alert suppressed")
            return False
        try:
            response = requests.post(
                f"{TELEGRAM_API}/bot{self.bot_token}/sendMessage",
                json={"chat_id": self.chat_id, "text": msg, "parse_mode": "HTML"},
                timeout=10,
            )
            response.raise_for_status()
            return True
        except requests.RequestException as e:
            logger.warning(f"⚠️ Telegram alert failed: {e}")
            return False

    async def send_async(self, msg: str, is_error: bool = False) -> bool:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self.send, msg, is_error)
