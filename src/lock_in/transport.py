"""Delivery of one-time codes to an accountability partner."""

from typing import Protocol

import httpx
from loguru import logger

from lock_in.settings import settings


class Transport(Protocol):
    def send(self, code: str, destination: str) -> bool: ...


class WebhookTransport:
    """Posts the code to a webhook which relays it (SMS gateway, chat bot, mail)."""

    def __init__(self, url: str | None = None, timeout: float = 10.0):
        self.url = url or settings.partner_webhook_url
        self.timeout = timeout

    def _format_message(self, code: str, destination: str) -> dict:
        return {
            "destination": destination,
            "code": code,
            "text": (
                f"Your partner asked to end their focus session early. "
                f"Unlock code: {code} (valid for {settings.otc_validity_minutes} minutes)"
            ),
        }

    def send(self, code: str, destination: str) -> bool:
        """Returns True if the webhook accepted the message."""
        if not self.url:
            logger.warning("No partner webhook configured, cannot deliver unlock code")
            return False

        try:
            with httpx.Client(timeout=self.timeout) as client:
                resp = client.post(self.url, json=self._format_message(code, destination))
            if resp.is_success:
                logger.debug(f"Unlock code delivered to {destination}")
                return True
            logger.warning(f"Partner webhook failed: {resp.status_code} - {resp.text}")
            return False
        except httpx.TimeoutException:
            logger.warning("Partner webhook timeout")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Partner webhook error: {e}")
            return False
