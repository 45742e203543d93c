"""
Order confirmation emails.

Sending is fire-and-forget: notify() schedules delivery on the running loop
and returns immediately. A failed delivery is logged and never reaches the
shopper or blocks the order.
"""

from __future__ import annotations
import asyncio
import logging
from typing import Any

import httpx

from config import settings

logger = logging.getLogger(__name__)


class Notifier:
    def __init__(self) -> None:
        self._pending: set[asyncio.Task] = set()

    def notify(self, to_email: str | None, to_name: str | None, order_id: str, **fields: Any) -> None:
        if not to_email:
            logger.info("No recipient for order %s, skipping confirmation", order_id)
            return
        params = {"to_email": to_email, "to_name": to_name or to_email, "order_id": order_id, **fields}
        task = asyncio.create_task(self.send(params))
        self._pending.add(task)
        task.add_done_callback(self._finished)

    def _finished(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Failed to send order confirmation", exc_info=exc)

    async def drain(self) -> None:
        """Wait for deliveries still in flight (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def send(self, params: dict[str, Any]) -> None:
        raise NotImplementedError


class EmailNotifier(Notifier):
    def __init__(self, api_url: str | None = None) -> None:
        super().__init__()
        self.api_url = api_url or settings.EMAIL_API_URL

    @property
    def configured(self) -> bool:
        return bool(settings.EMAIL_SERVICE_ID and settings.EMAIL_TEMPLATE_ID and settings.EMAIL_USER_ID)

    async def send(self, params: dict[str, Any]) -> None:
        if not self.configured:
            logger.info("Mail not configured, dropping confirmation for order %s", params.get("order_id"))
            return
        payload = {
            "service_id": settings.EMAIL_SERVICE_ID,
            "template_id": settings.EMAIL_TEMPLATE_ID,
            "user_id": settings.EMAIL_USER_ID,
            "template_params": params,
        }
        async with httpx.AsyncClient(timeout=settings.EMAIL_TIMEOUT) as client:
            response = await client.post(self.api_url, json=payload)
            response.raise_for_status()
        logger.info("Sent confirmation for order %s", params.get("order_id"))
