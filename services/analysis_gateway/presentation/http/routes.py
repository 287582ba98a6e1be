from dataclasses import asdict
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from libs.core.application.alert_emitter import severity_for
from libs.core.application.analysis_queue import JobSubmission
from libs.core.application.audio_analyzer import summarize_findings
from libs.core.domain.codec import finding_to_dict, payload_to_dict, result_to_dict
from libs.core.domain.entities import (
    Alert,
    AnalysisJob,
    AudioPayload,
    FramePayload,
    JobPayload,
    JobPriority,
    Scenario,
    Trigger,
)
from services.analysis_gateway.dependencies import (
    get_alert_repository,
    get_analysis_queue,
    get_app_settings,
    get_audio_analyzer,
    get_frame_analyzer,
    get_inference_backend,
)

router = APIRouter()

PriorityName = Literal["low", "normal", "high", "urgent"]


class JobRequest(BaseModel):
    stream_id: str = Field(min_length=1)
    scenario: Scenario
    trigger: Trigger = Trigger.MOTION
    magnitude: float = Field(default=0.0, ge=0.0, le=1.0)
    priority: PriorityName | None = None


class FrameJobRequest(JobRequest):
    frame_ref: str = Field(min_length=1)


class AudioWindow(BaseModel):
    samples: list[float] = Field(min_length=1)
    sample_rate: int = Field(gt=0)
    rms_level: float = Field(ge=0.0)


class AudioJobRequest(JobRequest, AudioWindow):
    pass


class AudioAnalyzeRequest(AudioWindow):
    scenario: Scenario


class AcknowledgeRequest(BaseModel):
    acknowledged_by: str | None = None


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready")
async def ready() -> JSONResponse:
    queue_running = get_analysis_queue().running
    backend_healthy = await get_inference_backend().is_healthy()
    body = {
        "status": "ready" if queue_running and backend_healthy else "not_ready",
        "queue_running": queue_running,
        "inference_backend": "ok" if backend_healthy else "unavailable",
    }
    return JSONResponse(status_code=200 if body["status"] == "ready" else 503, content=body)


@router.get("/version")
def version() -> dict[str, str]:
    return {"version": get_app_settings().SERVICE_VERSION}


@router.post("/v1/jobs/frame")
def submit_frame_job(payload: FrameJobRequest) -> dict[str, object]:
    return _submit(payload, FramePayload(frame_ref=payload.frame_ref))


@router.post("/v1/jobs/audio")
def submit_audio_job(payload: AudioJobRequest) -> dict[str, object]:
    return _submit(
        payload,
        AudioPayload(
            samples=tuple(payload.samples),
            sample_rate=payload.sample_rate,
            rms_level=payload.rms_level,
        ),
    )


@router.get("/v1/jobs/{job_id}")
def get_job(job_id: str) -> dict[str, object]:
    job = get_analysis_queue().get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_to_dict(job)


@router.post("/v1/jobs/{job_id}/cancel")
def cancel_job(job_id: str) -> dict[str, object]:
    try:
        job = get_analysis_queue().cancel(job_id)
    except ValueError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return _job_to_dict(job)


@router.get("/v1/queue/stats")
def get_queue_stats() -> dict[str, object]:
    queue = get_analysis_queue()
    return {
        **asdict(queue.get_stats()),
        "running": queue.running,
        "active": queue.active_count,
        "concurrency": queue.concurrency,
        "frame_analyzer": get_frame_analyzer().get_stats(),
        "audio_analyzer": get_audio_analyzer().get_stats(),
    }


@router.post("/v1/audio/analyze")
def analyze_audio(payload: AudioAnalyzeRequest) -> dict[str, object]:
    findings = get_audio_analyzer().analyze(
        payload.samples,
        payload.sample_rate,
        payload.rms_level,
        payload.scenario,
    )
    concern, description = summarize_findings(findings)
    severity = severity_for(concern)
    return {
        "scenario": payload.scenario.value,
        "concern_level": concern.value,
        "severity": severity.value if severity is not None else None,
        "description": description,
        "findings": [finding_to_dict(finding) for finding in findings],
    }


@router.get("/v1/alerts")
def get_alerts(
    stream_id: str | None = None,
    severity: str | None = None,
    acknowledged: bool | None = None,
) -> list[dict[str, object]]:
    alerts = get_alert_repository().list(
        stream_id=stream_id,
        severity=severity,
        acknowledged=acknowledged,
    )
    return [_alert_to_dict(alert) for alert in alerts]


@router.get("/v1/alerts/{alert_id}")
def get_alert_details(alert_id: str) -> dict[str, object]:
    alert = get_alert_repository().get(alert_id)
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return _alert_to_dict(alert)


@router.post("/v1/alerts/{alert_id}/acknowledge")
def acknowledge_alert(alert_id: str, payload: AcknowledgeRequest) -> dict[str, object]:
    try:
        alert = get_alert_repository().acknowledge(
            alert_id,
            decision={
                "acknowledged_by": payload.acknowledged_by,
                "acknowledged_at": datetime.now(timezone.utc).isoformat(),
            },
        )
    except ValueError as error:
        raise HTTPException(status_code=409, detail=str(error)) from error
    if alert is None:
        raise HTTPException(status_code=404, detail="Alert not found")
    return _alert_to_dict(alert)


def _submit(request: JobRequest, job_payload: JobPayload) -> dict[str, object]:
    queue = get_analysis_queue()
    try:
        job_id = queue.enqueue(
            JobSubmission(
                stream_id=request.stream_id,
                scenario=request.scenario,
                payload=job_payload,
                trigger=request.trigger,
                magnitude=request.magnitude,
                priority=(
                    JobPriority[request.priority.upper()]
                    if request.priority is not None
                    else None
                ),
            )
        )
    except ValueError as error:
        raise HTTPException(status_code=400, detail=str(error)) from error
    job = queue.get_job(job_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Job not found")
    return {
        "job_id": job.job_id,
        "status": job.status.value,
        "priority": job.priority.name.lower(),
    }


def _job_to_dict(job: AnalysisJob) -> dict[str, object]:
    payload = payload_to_dict(job.payload)
    if "samples" in payload:
        payload["samples"] = len(payload["samples"])
    return {
        "job_id": job.job_id,
        "stream_id": job.stream_id,
        "scenario": job.scenario.value,
        "trigger": job.trigger.value,
        "magnitude": job.magnitude,
        "priority": job.priority.name.lower(),
        "status": job.status.value,
        "attempts": job.attempts,
        "max_attempts": job.max_attempts,
        "last_error": job.last_error,
        "created_at": job.created_at,
        "started_at": job.started_at,
        "completed_at": job.completed_at,
        "payload": payload,
        "result": result_to_dict(job.result) if job.result is not None else None,
    }


def _alert_to_dict(alert: Alert) -> dict[str, object]:
    return {
        "alert_id": alert.alert_id,
        "job_id": alert.job_id,
        "stream_id": alert.stream_id,
        "result_id": alert.result_id,
        "alert_type": alert.alert_type,
        "severity": alert.severity.value,
        "message": alert.message,
        "created_at": alert.created_at,
        "acknowledged": alert.acknowledged,
        "acknowledged_by": alert.acknowledged_by,
        "acknowledged_at": alert.acknowledged_at,
    }
