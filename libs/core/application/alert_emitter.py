from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from uuid import uuid4

from loguru import logger

from libs.core.application.contracts import AlertNotifier, AlertRepository
from libs.core.application.outcome_channel import JobOutcome, OutcomeChannel
from libs.core.domain.entities import (
    Alert,
    AlertSeverity,
    ConcernLevel,
    JobStatus,
)

SEVERITY_BY_CONCERN: dict[ConcernLevel, AlertSeverity | None] = {
    ConcernLevel.NONE: None,
    ConcernLevel.LOW: AlertSeverity.INFO,
    ConcernLevel.MEDIUM: AlertSeverity.WARNING,
    ConcernLevel.HIGH: AlertSeverity.URGENT,
    ConcernLevel.CRITICAL: AlertSeverity.CRITICAL,
}

SYSTEM_FAILURE_SEVERITY = AlertSeverity.WARNING


def severity_for(concern: ConcernLevel) -> AlertSeverity | None:
    return SEVERITY_BY_CONCERN[concern]


class AlertEmitter:
    """Translates terminal outcomes into alert records.

    No retries or suppression here; dedupe, quiet hours and escalation timing
    belong to the notification side.
    """

    def __init__(
        self,
        alert_repository: AlertRepository,
        notifier: AlertNotifier | None = None,
        min_concern: ConcernLevel = ConcernLevel.LOW,
    ) -> None:
        self._alerts = alert_repository
        self._notifier = notifier
        self._min_concern = max(min_concern, ConcernLevel.LOW)
        self._consumer_task: asyncio.Task | None = None
        self._queue: asyncio.Queue[JobOutcome | None] | None = None

    def build_alerts(self, outcome: JobOutcome) -> list[Alert]:
        if outcome.status == JobStatus.FAILED:
            return [
                Alert(
                    alert_id=str(uuid4()),
                    job_id=outcome.job_id,
                    stream_id=outcome.stream_id,
                    alert_type="system",
                    severity=SYSTEM_FAILURE_SEVERITY,
                    message=f"Analysis failed after retries: {outcome.error}",
                    created_at=_utc_now_iso(),
                )
            ]

        result = outcome.result
        if result is None or result.concern_level < self._min_concern:
            return []
        severity = severity_for(result.concern_level)
        if severity is None:
            return []
        return [
            Alert(
                alert_id=str(uuid4()),
                job_id=outcome.job_id,
                stream_id=outcome.stream_id,
                alert_type="concern",
                severity=severity,
                message=result.description,
                created_at=_utc_now_iso(),
                result_id=result.result_id,
            )
        ]

    async def emit(self, outcome: JobOutcome) -> list[Alert]:
        alerts = self.build_alerts(outcome)
        for alert in alerts:
            await asyncio.to_thread(self._alerts.add, alert)
            logger.info(
                f"[ALERT] {alert.severity.value} {alert.alert_type} alert "
                f"{alert.alert_id} for job {alert.job_id}"
            )
            if self._notifier is None:
                continue
            try:
                await self._notifier.notify(alert)
            except Exception as error:
                logger.error(f"[ALERT] notifier failed for {alert.alert_id}: {error}")
        return alerts

    def start(self, channel: OutcomeChannel) -> None:
        if self._consumer_task is not None:
            return
        self._queue = channel.subscribe()
        self._consumer_task = asyncio.create_task(
            self._consume(self._queue), name="alert-emitter"
        )

    async def stop(self, channel: OutcomeChannel) -> None:
        """Drain outcomes published before shutdown, then unsubscribe."""
        if self._consumer_task is not None and self._queue is not None:
            self._queue.put_nowait(None)
            await self._consumer_task
            self._consumer_task = None
        if self._queue is not None:
            channel.unsubscribe(self._queue)
            self._queue = None

    async def _consume(self, queue: asyncio.Queue[JobOutcome | None]) -> None:
        while True:
            outcome = await queue.get()
            if outcome is None:
                return
            try:
                await self.emit(outcome)
            except Exception:
                logger.exception(
                    f"[ALERT] could not store alerts for job {outcome.job_id}"
                )


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
