"""
Notification Sinks

Deliver SecurityAlerts to operators. Delivery is best-effort: callers
fire and forget, and a failing sink never affects the analysis result.

- LoggingNotificationSink: writes alerts to the risk_engine.alerts logger
- WebhookNotificationSink: POSTs alerts as JSON (httpx)
- FanOutNotificationSink: sends to several sinks, isolating failures
"""

import asyncio
import logging
from typing import Optional

import httpx

from ..metrics import metrics
from ..schemas import RiskLevel, SecurityAlert
from .base import NotificationSink

logger = logging.getLogger("risk_engine.alerts")

MAX_RETRIES = 3
RETRY_BASE_DELAY = 0.2


class LoggingNotificationSink(NotificationSink):
    """Write alerts to the log; critical alerts at ERROR, others at WARNING."""

    async def notify(self, alert: SecurityAlert) -> None:
        level = logging.ERROR if alert.severity == RiskLevel.CRITICAL else logging.WARNING
        logger.log(
            level,
            "[%s] %s transaction=%s user=%s score=%s",
            alert.alert_type,
            alert.message,
            alert.transaction_id,
            alert.user_id,
            alert.risk_score,
        )


class WebhookNotificationSink(NotificationSink):
    """
    POST alerts to an operator webhook.

    Retries transient failures (timeouts, connection errors) with
    exponential backoff; anything else is raised to the caller.
    """

    def __init__(
        self,
        url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 5.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url
        self.headers = {"Authorization": f"Bearer {token}"} if token else {}
        self.client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def notify(self, alert: SecurityAlert) -> None:
        payload = alert.model_dump(mode="json")
        last_error: Optional[Exception] = None

        for attempt in range(MAX_RETRIES):
            try:
                response = await self.client.post(self.url, json=payload, headers=self.headers)
                response.raise_for_status()
                return
            except (httpx.TimeoutException, httpx.ConnectError) as e:
                last_error = e
                await asyncio.sleep(RETRY_BASE_DELAY * (2 ** attempt))

        raise RuntimeError(f"Webhook delivery failed after {MAX_RETRIES} attempts: {last_error}")

    async def close(self) -> None:
        await self.client.aclose()


class FanOutNotificationSink(NotificationSink):
    """Deliver to every sink; one failing sink does not stop the others."""

    def __init__(self, sinks: list[NotificationSink]):
        self.sinks = sinks

    async def notify(self, alert: SecurityAlert) -> None:
        results = await asyncio.gather(
            *(sink.notify(alert) for sink in self.sinks),
            return_exceptions=True,
        )
        for sink, result in zip(self.sinks, results):
            if isinstance(result, Exception):
                metrics.notifications_failed.inc()
                logger.warning(
                    "Notification via %s failed for alert %s: %s",
                    sink.__class__.__name__, alert.id, result,
                )
