"""Priority analysis queue with a bounded asyncio worker pool.

Jobs are claimed from the job store strictly by priority, then by arrival
order. At most ``concurrency`` jobs run at once; a freed slot wakes the
dispatcher immediately. Failures are re-queued with their original priority
until ``max_attempts`` is reached. ``stop()`` cancels in-flight work and hands
those jobs back to ``pending`` so the next ``start()`` resumes them.

Store calls run in worker threads so a slow database never stalls the event
loop. A failing store call is logged and retried on the next poll rather than
ending the dispatcher.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from uuid import uuid4

from loguru import logger

from libs.core.application.audio_analyzer import AudioAnalyzer, summarize_findings
from libs.core.application.contracts import JobRepository
from libs.core.application.frame_analyzer import FrameAnalyzer
from libs.core.application.outcome_channel import JobOutcome, OutcomeChannel
from libs.core.application.profiles import ScenarioProfile, get_profile
from libs.core.domain.entities import (
    AnalysisJob,
    AnalysisPath,
    AnalysisResult,
    AudioPayload,
    FramePayload,
    JobPayload,
    JobPriority,
    JobStatus,
    Scenario,
    Trigger,
)

DEFAULT_CONCURRENCY = 2
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_POLL_INTERVAL_SEC = 0.5

SCENARIO_PRIORITY: dict[Scenario, JobPriority] = {
    Scenario.BABY: JobPriority.HIGH,
    Scenario.ELDERLY: JobPriority.HIGH,
    Scenario.PET: JobPriority.NORMAL,
}


@dataclass
class JobSubmission:
    """Job request received from the stream-ingest side."""

    stream_id: str
    scenario: Scenario
    payload: JobPayload
    trigger: Trigger = Trigger.MOTION
    magnitude: float = 0.0
    priority: JobPriority | None = None


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    cancelled: int = 0
    by_priority: dict[str, int] = field(
        default_factory=lambda: {priority.name.lower(): 0 for priority in JobPriority}
    )


def derive_priority(
    scenario: Scenario,
    trigger: Trigger,
    magnitude: float,
    profile: ScenarioProfile | None = None,
) -> JobPriority:
    profile = profile or get_profile(scenario)
    base = SCENARIO_PRIORITY[scenario]

    if trigger == Trigger.SCHEDULED:
        return JobPriority(max(JobPriority.LOW, base - 1))

    threshold = (
        profile.motion_boost_threshold
        if trigger == Trigger.MOTION
        else profile.audio_boost_threshold
    )
    if magnitude >= threshold:
        return JobPriority(min(JobPriority.URGENT, base + 1))
    return base


class AnalysisQueue:
    """Application service that owns analysis jobs while they are live."""

    def __init__(
        self,
        job_repository: JobRepository,
        frame_analyzer: FrameAnalyzer,
        audio_analyzer: AudioAnalyzer,
        outcome_channel: OutcomeChannel,
        concurrency: int = DEFAULT_CONCURRENCY,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        poll_interval_sec: float = DEFAULT_POLL_INTERVAL_SEC,
    ) -> None:
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self._jobs = job_repository
        self._frames = frame_analyzer
        self._audio = audio_analyzer
        self._channel = outcome_channel
        self._concurrency = concurrency
        self._max_attempts = max_attempts
        self._poll_interval = poll_interval_sec

        self._running = False
        self._active: dict[str, asyncio.Task] = {}
        self._settling: set[asyncio.Task] = set()
        self._dispatcher: asyncio.Task | None = None
        self._wake: asyncio.Event | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def active_count(self) -> int:
        return len(self._active)

    @property
    def concurrency(self) -> int:
        return self._concurrency

    def enqueue(self, submission: JobSubmission) -> str:
        _validate_payload(submission.payload)
        priority = submission.priority
        if priority is None:
            priority = derive_priority(
                scenario=submission.scenario,
                trigger=submission.trigger,
                magnitude=submission.magnitude,
            )

        job = AnalysisJob(
            job_id=str(uuid4()),
            stream_id=submission.stream_id,
            payload=submission.payload,
            scenario=submission.scenario,
            trigger=submission.trigger,
            magnitude=submission.magnitude,
            priority=priority,
            status=JobStatus.PENDING,
            max_attempts=self._max_attempts,
            created_at=_utc_now_iso(),
        )
        self._jobs.add(job)
        logger.info(
            f"[QUEUE] Job {job.job_id} queued priority={priority.name.lower()} "
            f"scenario={job.scenario.value} trigger={job.trigger.value}"
        )
        self._notify()
        return job.job_id

    def get_job(self, job_id: str) -> AnalysisJob | None:
        return self._jobs.get(job_id)

    def cancel(self, job_id: str) -> AnalysisJob | None:
        if self._jobs.get(job_id) is None:
            return None
        job = self._jobs.cancel(job_id, completed_at=_utc_now_iso())
        if job is None:
            raise ValueError("Only pending jobs can be cancelled")
        logger.info(f"[QUEUE] Job {job_id} cancelled")
        return job

    def get_stats(self) -> QueueStats:
        counts = self._jobs.count_by_status()
        stats = QueueStats(
            pending=counts.get(JobStatus.PENDING, 0),
            processing=counts.get(JobStatus.PROCESSING, 0),
            completed=counts.get(JobStatus.COMPLETED, 0),
            failed=counts.get(JobStatus.FAILED, 0),
            cancelled=counts.get(JobStatus.CANCELLED, 0),
        )
        for priority, count in self._jobs.count_pending_by_priority().items():
            stats.by_priority[priority.name.lower()] = count
        return stats

    async def start(self) -> None:
        if self._running:
            return
        recovered = await asyncio.to_thread(self._jobs.requeue_interrupted)
        if recovered:
            logger.info(f"[QUEUE] Resumed {len(recovered)} interrupted job(s)")

        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._running = True
        self._dispatcher = asyncio.create_task(
            self._dispatch_loop(), name="analysis-queue-dispatcher"
        )
        logger.info(
            f"[QUEUE] Started concurrency={self._concurrency} "
            f"max_attempts={self._max_attempts}"
        )

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        if self._wake is not None:
            self._wake.set()

        if self._dispatcher is not None:
            self._dispatcher.cancel()
            try:
                await self._dispatcher
            except asyncio.CancelledError:
                pass
            self._dispatcher = None

        in_flight = list(self._active.values())
        for task in in_flight:
            task.cancel()
        await asyncio.gather(*in_flight, return_exceptions=True)
        # results that were already being written are allowed to land
        await asyncio.gather(*list(self._settling), return_exceptions=True)
        self._active.clear()
        self._wake = None
        self._loop = None
        logger.info(f"[QUEUE] Stopped, {len(in_flight)} in-flight job(s) released")

    async def _dispatch_loop(self) -> None:
        assert self._wake is not None
        while self._running:
            self._wake.clear()
            try:
                await self._fill_slots()
            except Exception:
                logger.exception("[QUEUE] Claiming from the job store failed")
            try:
                await asyncio.wait_for(self._wake.wait(), timeout=self._poll_interval)
            except asyncio.TimeoutError:
                pass

    async def _fill_slots(self) -> None:
        while self._running and len(self._active) < self._concurrency:
            job = await self._claim()
            if job is None:
                return
            task = asyncio.create_task(
                self._run_job(job), name=f"analysis-job-{job.job_id}"
            )
            self._active[job.job_id] = task
            task.add_done_callback(
                lambda _task, job_id=job.job_id: self._on_slot_freed(job_id)
            )

    async def _claim(self) -> AnalysisJob | None:
        claim = asyncio.ensure_future(
            asyncio.to_thread(self._jobs.claim_next, started_at=_utc_now_iso())
        )
        try:
            return await asyncio.shield(claim)
        except asyncio.CancelledError:
            # stop() arrived mid-claim, hand the job straight back
            job = await claim
            if job is not None:
                await self._release(job)
            raise

    def _on_slot_freed(self, job_id: str) -> None:
        self._active.pop(job_id, None)
        self._notify()

    def _notify(self) -> None:
        if self._wake is None or self._loop is None:
            return
        try:
            running_loop = asyncio.get_running_loop()
        except RuntimeError:
            running_loop = None
        if running_loop is self._loop:
            self._wake.set()
        else:
            self._loop.call_soon_threadsafe(self._wake.set)

    async def _run_job(self, job: AnalysisJob) -> None:
        logger.info(
            f"[QUEUE] Processing job {job.job_id} "
            f"(attempt {job.attempts + 1}/{job.max_attempts})"
        )
        try:
            result = await self._process(job)
        except asyncio.CancelledError:
            await self._release(job)
            raise
        except Exception as error:
            settle = self._record_failure(job, error)
        else:
            settle = self._record_completion(job, result)

        task = asyncio.ensure_future(settle)
        self._settling.add(task)
        task.add_done_callback(self._settling.discard)
        await asyncio.shield(task)

    async def _release(self, job: AnalysisJob) -> None:
        try:
            released = await asyncio.to_thread(self._jobs.release, job.job_id)
        except Exception:
            logger.exception(f"[QUEUE] Could not release job {job.job_id}")
            return
        if released:
            logger.info(f"[QUEUE] Job {job.job_id} returned to pending")

    async def _record_completion(self, job: AnalysisJob, result: AnalysisResult) -> None:
        try:
            completed = await asyncio.to_thread(
                self._jobs.complete, job.job_id, result, completed_at=_utc_now_iso()
            )
        except Exception as error:
            logger.exception(f"[QUEUE] Could not store result for job {job.job_id}")
            await self._record_failure(job, error)
            return

        if not completed:
            logger.warning(f"[QUEUE] Job {job.job_id} no longer claimed, result dropped")
            return
        logger.info(
            f"[QUEUE] Job {job.job_id} completed concern={result.concern_level.value} "
            f"path={result.analysis_path.value}"
        )
        self._channel.publish(
            JobOutcome(
                job_id=job.job_id,
                stream_id=job.stream_id,
                status=JobStatus.COMPLETED,
                result=result,
            )
        )

    async def _record_failure(self, job: AnalysisJob, error: Exception) -> None:
        message = f"{type(error).__name__}: {error}"
        try:
            updated = await asyncio.to_thread(
                self._jobs.record_failure,
                job.job_id,
                message,
                completed_at=_utc_now_iso(),
            )
        except Exception:
            # left in processing, the next start() resumes it
            logger.exception(f"[QUEUE] Could not record failure for job {job.job_id}")
            return

        if updated is None:
            return
        if updated.status == JobStatus.FAILED:
            logger.error(
                f"[QUEUE] Job {job.job_id} failed after {updated.attempts} "
                f"attempts: {message}"
            )
            self._channel.publish(
                JobOutcome(
                    job_id=job.job_id,
                    stream_id=job.stream_id,
                    status=JobStatus.FAILED,
                    error=message,
                )
            )
            return
        logger.warning(
            f"[QUEUE] Job {job.job_id} will retry "
            f"(attempt {updated.attempts}/{updated.max_attempts}): {message}"
        )

    async def _process(self, job: AnalysisJob) -> AnalysisResult:
        payload = job.payload
        if isinstance(payload, FramePayload):
            return await self._frames.analyze(
                payload.frame_ref,
                job.scenario,
                stream_id=job.stream_id,
                job_id=job.job_id,
            )

        started = time.monotonic()
        findings = self._audio.analyze(
            payload.samples,
            payload.sample_rate,
            payload.rms_level,
            job.scenario,
        )
        concern, description = summarize_findings(findings)
        return AnalysisResult(
            result_id=str(uuid4()),
            job_id=job.job_id,
            stream_id=job.stream_id,
            scenario=job.scenario,
            concern_level=concern,
            description=description,
            model_used="spectral-analyzer",
            analysis_path=AnalysisPath.AUDIO_SPECTRAL,
            inference_ms=int((time.monotonic() - started) * 1000),
            used_fallback=False,
            created_at=_utc_now_iso(),
            findings=findings,
        )


def _validate_payload(payload: JobPayload) -> None:
    if isinstance(payload, FramePayload):
        if not payload.frame_ref:
            raise ValueError("frame_ref must not be empty")
        return
    if isinstance(payload, AudioPayload):
        if not payload.samples:
            raise ValueError("audio payload has no samples")
        if payload.sample_rate <= 0:
            raise ValueError("sample_rate must be positive")
        return
    raise ValueError(f"unsupported payload: {type(payload).__name__}")


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
