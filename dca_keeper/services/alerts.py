"""
Webhook Alerts

Posts operator alerts (quarantined accounts, paused loop, optionally settled
trades) as JSON to a webhook. Delivery failures are logged and dropped.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import httpx

logger = logging.getLogger(__name__)


class WebhookAlerter:
    """
    Fire-and-forget webhook client.

    Example usage:
        alerter = WebhookAlerter("https://hooks.example.com/keeper")
        await alerter.account_quarantined("0x...", "slippage", "ESlippageExceeded", 10)
    """

    def __init__(
        self,
        url: str = "",
        alert_on_success: bool = False,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.url = url
        self.alert_on_success = alert_on_success
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.sent = 0
        self.failed = 0

    @property
    def enabled(self) -> bool:
        return bool(self.url)

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def send(self, event: str, payload: Dict[str, Any]) -> bool:
        """POST one alert. Returns False when disabled or delivery failed."""
        if not self.enabled:
            return False
        body = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        try:
            client = await self._get_client()
            response = await client.post(self.url, json=body)
            response.raise_for_status()
        except httpx.HTTPError as e:
            self.failed += 1
            logger.warning("Alert %s not delivered: %s", event, e)
            return False
        self.sent += 1
        return True

    async def account_quarantined(self, dca_id: str, category: str, error: str, cycles: int) -> bool:
        return await self.send(
            "account_quarantined",
            {"dcaId": dca_id, "category": category, "error": error, "quarantineCycles": cycles},
        )

    async def keeper_paused(self, reason: str, backoff_seconds: float, consecutive_errors: int) -> bool:
        return await self.send(
            "keeper_paused",
            {"reason": reason, "backoffSeconds": backoff_seconds, "consecutiveErrors": consecutive_errors},
        )

    async def trade_settled(self, dca_id: str, receipt: Any) -> bool:
        if not self.alert_on_success:
            return False
        return await self.send("trade_settled", {"dcaId": dca_id, "receipt": receipt.to_dict()})
