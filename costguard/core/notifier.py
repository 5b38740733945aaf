"""Webhook notification sent when a budget trips.

Works with Slack/Discord-style incoming webhooks and custom endpoints: a single
JSON POST of {"text", "timestamp", "cost", "limit"}. Delivery failures are logged
and never raised; nothing is retried.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


def build_payload(message: str, cost: Optional[float], limit: float) -> Dict[str, Any]:
    """Notification body: text, ISO-8601 timestamp, cost and limit."""
    return {
        "text": message,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cost": cost,
        "limit": limit,
    }


class WebhookNotifier:
    """Posts trip notifications to a webhook URL."""

    def __init__(
        self,
        url: str,
        timeout: float = 5.0,
        transport: Optional[httpx.BaseTransport] = None,
        async_transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            url: Webhook target.
            timeout: Request timeout in seconds.
            transport: Optional sync httpx transport (tests use httpx.MockTransport).
            async_transport: Optional async httpx transport.
        """
        self.url = url
        self._timeout = timeout
        self._transport = transport
        self._async_transport = async_transport

    def send(self, message: str, cost: Optional[float], limit: float) -> bool:
        """POST the notification. Returns True if delivered."""
        payload = build_payload(message, cost, limit)
        try:
            with httpx.Client(timeout=self._timeout, transport=self._transport) as client:
                response = client.post(self.url, json=payload)
                response.raise_for_status()
            return True
        except Exception as e:
            logger.warning("Webhook notification to %s failed: %s", self.url, e)
            return False

    async def send_async(self, message: str, cost: Optional[float], limit: float) -> bool:
        """Async variant of send()."""
        payload = build_payload(message, cost, limit)
        try:
            async with httpx.AsyncClient(
                timeout=self._timeout, transport=self._async_transport
            ) as client:
                response = await client.post(self.url, json=payload)
                response.raise_for_status()
            return True
        except Exception as e:
            logger.warning("Webhook notification to %s failed: %s", self.url, e)
            return False
