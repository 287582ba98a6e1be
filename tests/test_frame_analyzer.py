"""Vision cascade tests with stub backends."""

import asyncio

import pytest

from libs.core.application.contracts import InferenceUnavailableError, ModelTier
from libs.core.application.frame_analyzer import CascadeTimeouts, FrameAnalyzer
from libs.core.domain.entities import AnalysisPath, ConcernLevel, Scenario


class StubBackend:
    def __init__(
        self,
        triage: str | Exception = "NO CONCERN - Pet is fine",
        detailed: str | Exception = "NO CONCERN",
        triage_delay: float = 0.0,
    ) -> None:
        self._responses = {ModelTier.TRIAGE: triage, ModelTier.DETAILED: detailed}
        self._triage_delay = triage_delay
        self.calls: list[ModelTier] = []

    async def generate(self, tier: ModelTier, prompt: str, image_b64: str) -> str:
        self.calls.append(tier)
        if tier == ModelTier.TRIAGE and self._triage_delay:
            await asyncio.sleep(self._triage_delay)
        response = self._responses[tier]
        if isinstance(response, Exception):
            raise response
        return response

    async def is_healthy(self) -> bool:
        return True


class StubCloud:
    def __init__(self, response: str | Exception) -> None:
        self._response = response
        self.calls = 0

    def is_available(self) -> bool:
        return True

    async def analyze(self, image_b64: str, prompt: str) -> str:
        self.calls += 1
        if isinstance(self._response, Exception):
            raise self._response
        return self._response


class StubFrames:
    def load(self, frame_ref: str) -> str:
        if frame_ref == "missing.jpg":
            raise FileNotFoundError(frame_ref)
        return "aW1hZ2U="


def _analyzer(backend: StubBackend, cloud: StubCloud | None = None) -> FrameAnalyzer:
    return FrameAnalyzer(
        backend=backend,
        frame_loader=StubFrames(),
        cloud=cloud,
        timeouts=CascadeTimeouts(triage=0.05, detailed=0.05, fallback=0.05),
    )


def test_no_concern_stops_at_triage() -> None:
    backend = StubBackend(triage="NO CONCERN - Pet is fine")

    result = asyncio.run(_analyzer(backend).analyze("frame.jpg", Scenario.PET))

    assert result.concern_level == ConcernLevel.NONE
    assert result.analysis_path == AnalysisPath.TRIAGE
    assert result.description == "No concerns detected"
    assert backend.calls == [ModelTier.TRIAGE]


def test_low_triage_with_clear_detailed_stays_low() -> None:
    backend = StubBackend(
        triage="LOW CONCERN - Pet not in frame",
        detailed="NO CONCERN\nI see a dog asleep on the sofa.",
    )

    result = asyncio.run(_analyzer(backend).analyze("frame.jpg", Scenario.PET))

    assert result.concern_level == ConcernLevel.LOW
    assert result.analysis_path == AnalysisPath.DETAILED
    assert result.description == "I see a dog asleep on the sofa."
    assert result.used_fallback is False


def test_detailed_concern_wins() -> None:
    backend = StubBackend(
        triage="MEDIUM CONCERN - check",
        detailed="HIGH CONCERN\nI see the baby standing at the crib rail.",
    )

    result = asyncio.run(
        _analyzer(backend).analyze(
            "frame.jpg", Scenario.BABY, stream_id="nursery", job_id="job-1"
        )
    )

    assert result.concern_level == ConcernLevel.HIGH
    assert result.analysis_path == AnalysisPath.DETAILED
    assert result.stream_id == "nursery"
    assert result.job_id == "job-1"
    assert result.triage_response == "MEDIUM CONCERN - check"


def test_conflict_resolved_by_cloud_fallback() -> None:
    backend = StubBackend(triage="MEDIUM CONCERN", detailed="NO CONCERN")
    cloud = StubCloud("CRITICAL\nI see smoke near the stove.")

    result = asyncio.run(_analyzer(backend, cloud).analyze("frame.jpg", Scenario.PET))

    assert result.concern_level == ConcernLevel.CRITICAL
    assert result.analysis_path == AnalysisPath.CLOUD_FALLBACK
    assert result.used_fallback is True
    assert cloud.calls == 1


def test_cloud_cannot_lower_triage_concern() -> None:
    backend = StubBackend(triage="HIGH CONCERN", detailed="NO CONCERN")
    cloud = StubCloud("NO CONCERN - the room is empty")

    result = asyncio.run(_analyzer(backend, cloud).analyze("frame.jpg", Scenario.ELDERLY))

    assert result.concern_level == ConcernLevel.HIGH
    assert result.used_fallback is True


def test_conflict_without_cloud_keeps_triage_level() -> None:
    backend = StubBackend(triage="HIGH CONCERN", detailed="NO CONCERN")

    result = asyncio.run(_analyzer(backend).analyze("frame.jpg", Scenario.PET))

    assert result.concern_level == ConcernLevel.HIGH
    assert result.analysis_path == AnalysisPath.DETAILED
    assert result.used_fallback is False


def test_failed_cloud_falls_back_to_triage_level() -> None:
    backend = StubBackend(triage="MEDIUM CONCERN", detailed="NO CONCERN")
    cloud = StubCloud(InferenceUnavailableError("all providers down"))

    result = asyncio.run(_analyzer(backend, cloud).analyze("frame.jpg", Scenario.PET))

    assert result.concern_level == ConcernLevel.MEDIUM
    assert result.used_fallback is False


def test_triage_timeout_becomes_error_text() -> None:
    backend = StubBackend(
        triage="NO CONCERN",
        detailed="NO CONCERN",
        triage_delay=1.0,
    )

    result = asyncio.run(_analyzer(backend).analyze("frame.jpg", Scenario.PET))

    assert result.triage_response == "ERROR: triage failed"
    assert result.concern_level == ConcernLevel.LOW
    assert backend.calls == [ModelTier.TRIAGE, ModelTier.DETAILED]


def test_backend_errors_do_not_raise() -> None:
    backend = StubBackend(
        triage=InferenceUnavailableError("connection refused"),
        detailed=InferenceUnavailableError("connection refused"),
    )

    result = asyncio.run(_analyzer(backend).analyze("frame.jpg", Scenario.BABY))

    assert result.concern_level == ConcernLevel.LOW
    assert result.detailed_response == "ERROR: detailed failed"


def test_unreadable_frame_raises() -> None:
    with pytest.raises(InferenceUnavailableError):
        asyncio.run(_analyzer(StubBackend()).analyze("missing.jpg", Scenario.PET))


def test_stats_track_fallback_usage() -> None:
    backend = StubBackend(triage="MEDIUM CONCERN", detailed="NO CONCERN")
    analyzer = _analyzer(backend, StubCloud("MEDIUM"))

    asyncio.run(analyzer.analyze("frame.jpg", Scenario.PET))
    stats = analyzer.get_stats()

    assert stats["analysis_count"] == 1
    assert stats["fallback_count"] == 1
    assert stats["fallback_enabled"] is True
