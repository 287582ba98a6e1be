from __future__ import annotations

import httpx
from loguru import logger

from libs.core.domain.entities import Alert


class WebhookAlertNotifier:
    """POSTs each emitted alert as JSON to a single webhook URL."""

    def __init__(
        self,
        url: str,
        timeout_sec: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._url = url
        self._timeout = httpx.Timeout(timeout_sec)
        self._transport = transport

    async def notify(self, alert: Alert) -> None:
        body = {
            "alert_id": alert.alert_id,
            "job_id": alert.job_id,
            "stream_id": alert.stream_id,
            "alert_type": alert.alert_type,
            "severity": alert.severity.value,
            "message": alert.message,
            "created_at": alert.created_at,
            "result_id": alert.result_id,
        }
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            response = await client.post(self._url, json=body)
            response.raise_for_status()
        logger.info(f"[ALERT] webhook delivered for {alert.alert_id}")
