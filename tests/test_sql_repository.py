"""SQLAlchemy job store tests against a temporary SQLite file."""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from libs.core.domain.entities import (
    Alert,
    AlertSeverity,
    AnalysisJob,
    AnalysisPath,
    AnalysisResult,
    AudioFinding,
    AudioPayload,
    ConcernLevel,
    FramePayload,
    JobPriority,
    JobStatus,
    Scenario,
    Trigger,
)
from libs.infra.sql.repositories import (
    SqlAlertRepository,
    SqlJobRepository,
    build_session_factory,
    create_sql_engine,
    init_models,
)

NOW = "2024-05-01T12:00:00+00:00"


@pytest.fixture
def session_factory(tmp_path):
    engine = create_sql_engine(f"sqlite:///{tmp_path / 'jobs.db'}")
    init_models(engine)
    yield build_session_factory(engine)
    engine.dispose()


def _job(
    ref: str,
    priority: JobPriority = JobPriority.NORMAL,
    max_attempts: int = 3,
) -> AnalysisJob:
    return AnalysisJob(
        job_id=str(uuid4()),
        stream_id="cam-1",
        payload=FramePayload(frame_ref=ref),
        scenario=Scenario.PET,
        trigger=Trigger.MOTION,
        magnitude=0.2,
        priority=priority,
        status=JobStatus.PENDING,
        max_attempts=max_attempts,
        created_at=datetime.now(timezone.utc).isoformat(),
    )


def _result(job_id: str) -> AnalysisResult:
    return AnalysisResult(
        result_id=str(uuid4()),
        job_id=job_id,
        stream_id="cam-1",
        scenario=Scenario.BABY,
        concern_level=ConcernLevel.HIGH,
        description="Crying detected (100% confidence)",
        model_used="spectral-analyzer",
        analysis_path=AnalysisPath.AUDIO_SPECTRAL,
        inference_ms=3,
        used_fallback=False,
        created_at=NOW,
        findings=[
            AudioFinding(
                detected=True,
                event_type="cry",
                confidence=1.0,
                concern_level=ConcernLevel.HIGH,
                matched_frequencies=(300.0, 450.0),
                details="Crying detected (100% confidence)",
            )
        ],
    )


def test_claim_follows_priority_then_arrival(session_factory) -> None:
    repository = SqlJobRepository(session_factory)
    first_normal = repository.add(_job("normal-1"))
    repository.add(_job("low", priority=JobPriority.LOW))
    urgent = repository.add(_job("urgent", priority=JobPriority.URGENT))
    second_normal = repository.add(_job("normal-2"))

    claimed = [repository.claim_next(started_at=NOW) for _ in range(4)]

    assert [job.job_id for job in claimed[:3]] == [
        urgent.job_id,
        first_normal.job_id,
        second_normal.job_id,
    ]
    assert claimed[3].payload == FramePayload(frame_ref="low")
    assert all(job.status == JobStatus.PROCESSING for job in claimed)
    assert repository.claim_next(started_at=NOW) is None


def test_complete_is_guarded_by_processing_state(session_factory) -> None:
    repository = SqlJobRepository(session_factory)
    job = repository.add(_job("frame"))

    assert repository.complete(job.job_id, _result(job.job_id), NOW) is False
    repository.claim_next(started_at=NOW)
    assert repository.complete(job.job_id, _result(job.job_id), NOW) is True
    assert repository.complete(job.job_id, _result(job.job_id), NOW) is False

    stored = repository.get(job.job_id)
    assert stored.status == JobStatus.COMPLETED
    assert stored.result.concern_level == ConcernLevel.HIGH
    assert stored.result.findings[0].matched_frequencies == (300.0, 450.0)


def test_record_failure_requeues_until_exhausted(session_factory) -> None:
    repository = SqlJobRepository(session_factory)
    job = repository.add(_job("broken", max_attempts=2))

    repository.claim_next(started_at=NOW)
    retried = repository.record_failure(job.job_id, "RuntimeError: boom", NOW)
    repository.claim_next(started_at=NOW)
    failed = repository.record_failure(job.job_id, "RuntimeError: boom", NOW)

    assert retried.status == JobStatus.PENDING
    assert retried.attempts == 1
    assert failed.status == JobStatus.FAILED
    assert failed.attempts == 2
    assert failed.completed_at == NOW
    assert repository.record_failure(job.job_id, "again", NOW) is None


def test_interrupted_jobs_requeued(session_factory) -> None:
    repository = SqlJobRepository(session_factory)
    job = repository.add(_job("orphan"))
    repository.claim_next(started_at=NOW)

    # a fresh repository models a restarted process on the same database
    restarted = SqlJobRepository(session_factory)

    assert restarted.requeue_interrupted() == [job.job_id]
    assert restarted.get(job.job_id).status == JobStatus.PENDING
    assert restarted.get(job.job_id).attempts == 0


def test_release_and_cancel(session_factory) -> None:
    repository = SqlJobRepository(session_factory)
    running = repository.add(_job("running"))
    waiting = repository.add(_job("waiting", priority=JobPriority.LOW))
    repository.claim_next(started_at=NOW)

    assert repository.cancel(running.job_id, NOW) is None
    assert repository.release(running.job_id) is True
    assert repository.release(running.job_id) is False
    cancelled = repository.cancel(waiting.job_id, NOW)

    assert cancelled.status == JobStatus.CANCELLED
    counts = repository.count_by_status()
    assert counts[JobStatus.PENDING] == 1
    assert counts[JobStatus.CANCELLED] == 1
    assert repository.count_pending_by_priority()[JobPriority.NORMAL] == 1


def test_audio_payload_round_trip(session_factory) -> None:
    repository = SqlJobRepository(session_factory)
    job = _job("unused")
    job.payload = AudioPayload(samples=(0.1, -0.2, 0.3), sample_rate=16000, rms_level=0.2)

    stored = repository.get(repository.add(job).job_id)

    assert stored.payload == job.payload


def test_alert_filters_and_acknowledge(session_factory) -> None:
    repository = SqlAlertRepository(session_factory)
    for index, severity in enumerate([AlertSeverity.URGENT, AlertSeverity.INFO]):
        repository.add(
            Alert(
                alert_id=f"alert-{index}",
                job_id=f"job-{index}",
                stream_id="cam-1" if index == 0 else "cam-2",
                alert_type="concern",
                severity=severity,
                message="I see something",
                created_at=f"2024-05-01T12:00:0{index}+00:00",
            )
        )

    decision = {"acknowledged_by": "carer", "acknowledged_at": NOW}
    acknowledged = repository.acknowledge("alert-0", decision)

    assert acknowledged.acknowledged is True
    assert [alert.alert_id for alert in repository.list(stream_id="cam-2")] == ["alert-1"]
    assert [alert.alert_id for alert in repository.list(severity="urgent")] == ["alert-0"]
    assert [alert.alert_id for alert in repository.list(acknowledged=False)] == ["alert-1"]
    with pytest.raises(ValueError):
        repository.acknowledge("alert-0", decision)
    assert repository.acknowledge("missing", decision) is None
