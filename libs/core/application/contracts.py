from enum import Enum
from typing import Protocol, TypedDict

from libs.core.domain.entities import (
    Alert,
    AnalysisJob,
    AnalysisResult,
    JobPriority,
    JobStatus,
)


class ModelTier(str, Enum):
    TRIAGE = "triage"
    DETAILED = "detailed"


class InferenceUnavailableError(RuntimeError):
    """Inference backend unreachable or returned an unusable response."""


class AcknowledgeDecision(TypedDict):
    """Acknowledgement payload passed to alert repositories."""

    acknowledged_by: str | None
    acknowledged_at: str


class JobRepository(Protocol):
    """Durable analysis job store with an atomic claim."""

    def add(self, job: AnalysisJob) -> AnalysisJob: ...

    def get(self, job_id: str) -> AnalysisJob | None: ...

    def claim_next(self, started_at: str) -> AnalysisJob | None: ...

    def complete(
        self,
        job_id: str,
        result: AnalysisResult,
        completed_at: str,
    ) -> bool: ...

    def record_failure(
        self,
        job_id: str,
        error: str,
        completed_at: str,
    ) -> AnalysisJob | None: ...

    def release(self, job_id: str) -> bool: ...

    def requeue_interrupted(self) -> list[str]: ...

    def cancel(self, job_id: str, completed_at: str) -> AnalysisJob | None: ...

    def count_by_status(self) -> dict[JobStatus, int]: ...

    def count_pending_by_priority(self) -> dict[JobPriority, int]: ...


class AlertRepository(Protocol):
    """Alert persistence contract."""

    def add(self, alert: Alert) -> None: ...

    def get(self, alert_id: str) -> Alert | None: ...

    def list(
        self,
        stream_id: str | None = None,
        severity: str | None = None,
        acknowledged: bool | None = None,
    ) -> list[Alert]: ...

    def acknowledge(
        self,
        alert_id: str,
        decision: AcknowledgeDecision,
    ) -> Alert | None: ...


class InferenceBackend(Protocol):
    """Local request/response vision model boundary."""

    async def generate(self, tier: ModelTier, prompt: str, image_b64: str) -> str: ...

    async def is_healthy(self) -> bool: ...


class CloudFallback(Protocol):
    """Remote vision model used when local tiers are inconclusive."""

    def is_available(self) -> bool: ...

    async def analyze(self, image_b64: str, prompt: str) -> str: ...


class FrameLoader(Protocol):
    """Resolves a frame reference into base64 image data."""

    def load(self, frame_ref: str) -> str: ...


class AlertNotifier(Protocol):
    """Notification collaborator that receives emitted alerts."""

    async def notify(self, alert: Alert) -> None: ...
