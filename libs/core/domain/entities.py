from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Optional, Union


class ConcernLevel(str, Enum):
    """Shared concern taxonomy ordered none < low < medium < high < critical."""

    NONE = "none"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _CONCERN_RANK[self]

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, ConcernLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, ConcernLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, ConcernLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, ConcernLevel):
            return NotImplemented
        return self.rank >= other.rank


_CONCERN_RANK = {
    ConcernLevel.NONE: 0,
    ConcernLevel.LOW: 1,
    ConcernLevel.MEDIUM: 2,
    ConcernLevel.HIGH: 3,
    ConcernLevel.CRITICAL: 4,
}


class Scenario(str, Enum):
    PET = "pet"
    BABY = "baby"
    ELDERLY = "elderly"


class Trigger(str, Enum):
    MOTION = "motion"
    AUDIO = "audio"
    SCHEDULED = "scheduled"


class JobPriority(IntEnum):
    """Higher value is dequeued first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    URGENT = 3


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


TERMINAL_STATUSES = frozenset(
    {JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.CANCELLED}
)

_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.CANCELLED},
    JobStatus.PROCESSING: {
        JobStatus.PENDING,
        JobStatus.COMPLETED,
        JobStatus.FAILED,
    },
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
    JobStatus.CANCELLED: set(),
}


class InvalidJobTransition(ValueError):
    """Raised when a job status change would break monotonic progress."""


class AnalysisPath(str, Enum):
    TRIAGE = "triage"
    DETAILED = "detailed"
    CLOUD_FALLBACK = "cloud-fallback"
    AUDIO_SPECTRAL = "audio-spectral"


class AlertSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    URGENT = "urgent"
    CRITICAL = "critical"


@dataclass(frozen=True)
class FramePayload:
    """Reference to a frame: local path, data URL or raw base64 image."""

    frame_ref: str
    kind: str = "frame"


@dataclass(frozen=True)
class AudioPayload:
    """Audio sample window captured around a trigger."""

    samples: tuple[float, ...]
    sample_rate: int
    rms_level: float
    kind: str = "audio"


JobPayload = Union[FramePayload, AudioPayload]


@dataclass(frozen=True)
class AudioFinding:
    """One acoustic event finding for a sample window."""

    detected: bool
    event_type: str
    confidence: float
    concern_level: ConcernLevel
    matched_frequencies: tuple[float, ...] = ()
    details: str = ""


@dataclass
class AnalysisResult:
    """Outcome of processing one analysis job."""

    result_id: str
    job_id: str
    stream_id: str
    scenario: Scenario
    concern_level: ConcernLevel
    description: str
    model_used: str
    analysis_path: AnalysisPath
    inference_ms: int
    used_fallback: bool
    created_at: str
    triage_response: Optional[str] = None
    detailed_response: Optional[str] = None
    findings: list[AudioFinding] = field(default_factory=list)


@dataclass
class AnalysisJob:
    """Unit of work owned by the analysis queue while non-terminal."""

    job_id: str
    stream_id: str
    payload: JobPayload
    scenario: Scenario
    trigger: Trigger
    magnitude: float
    priority: JobPriority
    status: JobStatus
    max_attempts: int
    created_at: str
    attempts: int = 0
    sequence: int = 0
    last_error: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None
    result: Optional[AnalysisResult] = None

    def transition(self, status: JobStatus) -> None:
        if status not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidJobTransition(
                f"Job {self.job_id} cannot move from {self.status.value} "
                f"to {status.value}"
            )
        self.status = status

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


@dataclass
class Alert:
    """Alert record derived from a concern-bearing or failed job."""

    alert_id: str
    job_id: str
    stream_id: str
    alert_type: str
    severity: AlertSeverity
    message: str
    created_at: str
    result_id: Optional[str] = None
    acknowledged: bool = False
    acknowledged_by: Optional[str] = None
    acknowledged_at: Optional[str] = None
