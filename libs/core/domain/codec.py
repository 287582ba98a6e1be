"""Plain-dict conversion for job payloads, results and audio findings."""

from __future__ import annotations

from typing import Any

from libs.core.domain.entities import (
    AnalysisPath,
    AnalysisResult,
    AudioFinding,
    AudioPayload,
    ConcernLevel,
    FramePayload,
    JobPayload,
    Scenario,
)


def payload_to_dict(payload: JobPayload) -> dict[str, Any]:
    if isinstance(payload, FramePayload):
        return {"kind": payload.kind, "frame_ref": payload.frame_ref}
    return {
        "kind": payload.kind,
        "samples": list(payload.samples),
        "sample_rate": payload.sample_rate,
        "rms_level": payload.rms_level,
    }


def payload_from_dict(data: dict[str, Any]) -> JobPayload:
    kind = data.get("kind")
    if kind == "frame":
        return FramePayload(frame_ref=str(data["frame_ref"]))
    if kind == "audio":
        return AudioPayload(
            samples=tuple(float(value) for value in data["samples"]),
            sample_rate=int(data["sample_rate"]),
            rms_level=float(data["rms_level"]),
        )
    raise ValueError(f"Unknown payload kind: {kind}")


def finding_to_dict(finding: AudioFinding) -> dict[str, Any]:
    return {
        "detected": finding.detected,
        "event_type": finding.event_type,
        "confidence": finding.confidence,
        "concern_level": finding.concern_level.value,
        "matched_frequencies": list(finding.matched_frequencies),
        "details": finding.details,
    }


def finding_from_dict(data: dict[str, Any]) -> AudioFinding:
    return AudioFinding(
        detected=bool(data["detected"]),
        event_type=str(data["event_type"]),
        confidence=float(data["confidence"]),
        concern_level=ConcernLevel(data["concern_level"]),
        matched_frequencies=tuple(data.get("matched_frequencies", ())),
        details=str(data.get("details", "")),
    )


def result_to_dict(result: AnalysisResult) -> dict[str, Any]:
    return {
        "result_id": result.result_id,
        "job_id": result.job_id,
        "stream_id": result.stream_id,
        "scenario": result.scenario.value,
        "concern_level": result.concern_level.value,
        "description": result.description,
        "model_used": result.model_used,
        "analysis_path": result.analysis_path.value,
        "inference_ms": result.inference_ms,
        "used_fallback": result.used_fallback,
        "created_at": result.created_at,
        "triage_response": result.triage_response,
        "detailed_response": result.detailed_response,
        "findings": [finding_to_dict(finding) for finding in result.findings],
    }


def result_from_dict(data: dict[str, Any]) -> AnalysisResult:
    return AnalysisResult(
        result_id=data["result_id"],
        job_id=data["job_id"],
        stream_id=data["stream_id"],
        scenario=Scenario(data["scenario"]),
        concern_level=ConcernLevel(data["concern_level"]),
        description=data["description"],
        model_used=data["model_used"],
        analysis_path=AnalysisPath(data["analysis_path"]),
        inference_ms=int(data["inference_ms"]),
        used_fallback=bool(data["used_fallback"]),
        created_at=data["created_at"],
        triage_response=data.get("triage_response"),
        detailed_response=data.get("detailed_response"),
        findings=[finding_from_dict(item) for item in data.get("findings", [])],
    )
