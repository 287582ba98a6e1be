"""In-memory job and alert storage for tests and single-process runs."""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field, replace

from libs.core.application.contracts import AcknowledgeDecision
from libs.core.domain.entities import (
    Alert,
    AnalysisJob,
    AnalysisResult,
    JobPriority,
    JobStatus,
)


@dataclass
class InMemoryDatabase:
    """Shared state guarded by a single lock."""

    jobs: dict[str, AnalysisJob] = field(default_factory=dict)
    alerts: dict[str, Alert] = field(default_factory=dict)
    lock: threading.RLock = field(default_factory=threading.RLock)
    sequence: itertools.count = field(default_factory=lambda: itertools.count(1))

    def clear(self) -> None:
        with self.lock:
            self.jobs.clear()
            self.alerts.clear()
            self.sequence = itertools.count(1)


class InMemoryJobRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def add(self, job: AnalysisJob) -> AnalysisJob:
        with self._db.lock:
            stored = replace(job, sequence=next(self._db.sequence))
            self._db.jobs[stored.job_id] = stored
            return replace(stored)

    def get(self, job_id: str) -> AnalysisJob | None:
        with self._db.lock:
            job = self._db.jobs.get(job_id)
            return replace(job) if job is not None else None

    def claim_next(self, started_at: str) -> AnalysisJob | None:
        with self._db.lock:
            pending = [
                job for job in self._db.jobs.values() if job.status == JobStatus.PENDING
            ]
            if not pending:
                return None
            job = min(pending, key=lambda item: (-item.priority, item.sequence))
            job.transition(JobStatus.PROCESSING)
            job.started_at = started_at
            return replace(job)

    def complete(
        self,
        job_id: str,
        result: AnalysisResult,
        completed_at: str,
    ) -> bool:
        with self._db.lock:
            job = self._db.jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return False
            job.transition(JobStatus.COMPLETED)
            job.result = result
            job.completed_at = completed_at
            return True

    def record_failure(
        self,
        job_id: str,
        error: str,
        completed_at: str,
    ) -> AnalysisJob | None:
        with self._db.lock:
            job = self._db.jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return None
            job.attempts = min(job.attempts + 1, job.max_attempts)
            job.last_error = error
            if job.attempts >= job.max_attempts:
                job.transition(JobStatus.FAILED)
                job.completed_at = completed_at
            else:
                job.transition(JobStatus.PENDING)
            return replace(job)

    def release(self, job_id: str) -> bool:
        with self._db.lock:
            job = self._db.jobs.get(job_id)
            if job is None or job.status != JobStatus.PROCESSING:
                return False
            job.transition(JobStatus.PENDING)
            return True

    def requeue_interrupted(self) -> list[str]:
        with self._db.lock:
            interrupted = [
                job
                for job in self._db.jobs.values()
                if job.status == JobStatus.PROCESSING
            ]
            for job in interrupted:
                job.transition(JobStatus.PENDING)
            return [job.job_id for job in interrupted]

    def cancel(self, job_id: str, completed_at: str) -> AnalysisJob | None:
        with self._db.lock:
            job = self._db.jobs.get(job_id)
            if job is None or job.status != JobStatus.PENDING:
                return None
            job.transition(JobStatus.CANCELLED)
            job.completed_at = completed_at
            return replace(job)

    def count_by_status(self) -> dict[JobStatus, int]:
        with self._db.lock:
            counts = {status: 0 for status in JobStatus}
            for job in self._db.jobs.values():
                counts[job.status] += 1
            return counts

    def count_pending_by_priority(self) -> dict[JobPriority, int]:
        with self._db.lock:
            counts = {priority: 0 for priority in JobPriority}
            for job in self._db.jobs.values():
                if job.status == JobStatus.PENDING:
                    counts[job.priority] += 1
            return counts


class InMemoryAlertRepository:
    def __init__(self, db: InMemoryDatabase) -> None:
        self._db = db

    def add(self, alert: Alert) -> None:
        with self._db.lock:
            self._db.alerts[alert.alert_id] = replace(alert)

    def get(self, alert_id: str) -> Alert | None:
        with self._db.lock:
            alert = self._db.alerts.get(alert_id)
            return replace(alert) if alert is not None else None

    def list(
        self,
        stream_id: str | None = None,
        severity: str | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]:
        with self._db.lock:
            alerts = [
                replace(alert)
                for alert in sorted(
                    self._db.alerts.values(), key=lambda item: item.created_at
                )
            ]
        if stream_id is not None:
            alerts = [alert for alert in alerts if alert.stream_id == stream_id]
        if severity is not None:
            alerts = [alert for alert in alerts if alert.severity.value == severity]
        if acknowledged is not None:
            alerts = [alert for alert in alerts if alert.acknowledged == acknowledged]
        return alerts

    def acknowledge(
        self,
        alert_id: str,
        decision: AcknowledgeDecision,
    ) -> Alert | None:
        with self._db.lock:
            alert = self._db.alerts.get(alert_id)
            if alert is None:
                return None
            if alert.acknowledged:
                raise ValueError("Alert already acknowledged")
            alert.acknowledged = True
            alert.acknowledged_by = decision["acknowledged_by"]
            alert.acknowledged_at = decision["acknowledged_at"]
            return replace(alert)
