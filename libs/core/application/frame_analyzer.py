from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import uuid4

from loguru import logger

from libs.core.application.concern_parser import (
    error_response,
    extract_description,
    parse_concern_level,
)
from libs.core.application.contracts import (
    CloudFallback,
    FrameLoader,
    InferenceBackend,
    InferenceUnavailableError,
    ModelTier,
)
from libs.core.application.profiles import get_profile
from libs.core.domain.entities import (
    AnalysisPath,
    AnalysisResult,
    ConcernLevel,
    Scenario,
)

DEFAULT_TRIAGE_TIMEOUT_SEC = 30.0
DEFAULT_DETAILED_TIMEOUT_SEC = 120.0
DEFAULT_FALLBACK_TIMEOUT_SEC = 30.0


@dataclass(frozen=True)
class CascadeTimeouts:
    """Per-tier wall-clock budgets in seconds."""

    triage: float = DEFAULT_TRIAGE_TIMEOUT_SEC
    detailed: float = DEFAULT_DETAILED_TIMEOUT_SEC
    fallback: float = DEFAULT_FALLBACK_TIMEOUT_SEC


@dataclass
class _TierResponse:
    text: str
    concern: ConcernLevel


class FrameAnalyzer:
    """Two-tier vision cascade: fast triage, detailed analysis, cloud fallback."""

    def __init__(
        self,
        backend: InferenceBackend,
        frame_loader: FrameLoader,
        cloud: CloudFallback | None = None,
        timeouts: CascadeTimeouts | None = None,
        triage_model: str = "moondream",
        detailed_model: str = "llava:7b",
    ) -> None:
        self._backend = backend
        self._frames = frame_loader
        self._cloud = cloud
        self._timeouts = timeouts or CascadeTimeouts()
        self._triage_model = triage_model
        self._detailed_model = detailed_model
        self._analysis_count = 0
        self._fallback_count = 0

    @property
    def fallback_enabled(self) -> bool:
        return self._cloud is not None and self._cloud.is_available()

    async def analyze(
        self,
        frame_ref: str,
        scenario: Scenario,
        stream_id: str = "",
        job_id: str = "",
    ) -> AnalysisResult:
        """Run the cascade for one frame.

        "No concern" is a normal NONE result. Tier failures and timeouts are
        folded into conservative text; only an unreadable frame reference
        raises, and the scheduler retries the job.
        """
        self._analysis_count += 1
        started = time.monotonic()
        profile = get_profile(scenario)
        try:
            image_b64 = self._frames.load(frame_ref)
        except (OSError, ValueError) as error:
            raise InferenceUnavailableError(
                f"Frame {frame_ref[:64]} is unreadable: {error}"
            ) from error

        def build(
            concern: ConcernLevel,
            description: str,
            path: AnalysisPath,
            model_used: str,
            triage_text: str,
            detailed_text: str | None = None,
            used_fallback: bool = False,
        ) -> AnalysisResult:
            return AnalysisResult(
                result_id=str(uuid4()),
                job_id=job_id,
                stream_id=stream_id,
                scenario=scenario,
                concern_level=concern,
                description=description,
                model_used=model_used,
                analysis_path=path,
                inference_ms=int((time.monotonic() - started) * 1000),
                used_fallback=used_fallback,
                created_at=_utc_now_iso(),
                triage_response=triage_text,
                detailed_response=detailed_text,
            )

        triage = await self._call_tier(
            ModelTier.TRIAGE, profile.triage_prompt, image_b64
        )
        if triage.concern == ConcernLevel.NONE:
            return build(
                ConcernLevel.NONE,
                "No concerns detected",
                AnalysisPath.TRIAGE,
                f"{self._triage_model} (triage)",
                triage.text,
            )

        detailed = await self._call_tier(
            ModelTier.DETAILED, profile.detailed_prompt, image_b64
        )
        detailed_label = f"{self._detailed_model} (detailed)"

        if detailed.concern != ConcernLevel.NONE:
            return build(
                detailed.concern,
                extract_description(detailed.text),
                AnalysisPath.DETAILED,
                detailed_label,
                triage.text,
                detailed.text,
            )
        if triage.concern == ConcernLevel.LOW:
            return build(
                ConcernLevel.LOW,
                extract_description(detailed.text),
                AnalysisPath.DETAILED,
                detailed_label,
                triage.text,
                detailed.text,
            )

        if self.fallback_enabled:
            cloud_text = await self._call_cloud(profile.detailed_prompt, image_b64)
            if cloud_text is not None:
                cloud_concern = parse_concern_level(cloud_text)
                return build(
                    max(cloud_concern, triage.concern),
                    extract_description(cloud_text),
                    AnalysisPath.CLOUD_FALLBACK,
                    "cloud-fallback",
                    triage.text,
                    cloud_text,
                    used_fallback=True,
                )

        return build(
            triage.concern,
            extract_description(detailed.text or triage.text),
            AnalysisPath.DETAILED,
            detailed_label,
            triage.text,
            detailed.text,
        )

    def get_stats(self) -> dict[str, float]:
        return {
            "analysis_count": self._analysis_count,
            "fallback_count": self._fallback_count,
            "fallback_rate": (
                self._fallback_count / self._analysis_count
                if self._analysis_count
                else 0.0
            ),
            "fallback_enabled": self.fallback_enabled,
        }

    async def _call_tier(
        self,
        tier: ModelTier,
        prompt: str,
        image_b64: str,
    ) -> _TierResponse:
        budget = (
            self._timeouts.triage
            if tier == ModelTier.TRIAGE
            else self._timeouts.detailed
        )
        try:
            text = await asyncio.wait_for(
                self._backend.generate(tier, prompt, image_b64),
                timeout=budget,
            )
        except asyncio.TimeoutError:
            logger.warning(f"[CASCADE] {tier.value} timed out after {budget}s")
            text = error_response(tier.value)
        except Exception as error:
            logger.error(f"[CASCADE] {tier.value} failed: {error}")
            text = error_response(tier.value)
        return _TierResponse(text=text, concern=parse_concern_level(text))

    async def _call_cloud(self, prompt: str, image_b64: str) -> str | None:
        assert self._cloud is not None
        self._fallback_count += 1
        try:
            return await asyncio.wait_for(
                self._cloud.analyze(image_b64, prompt),
                timeout=self._timeouts.fallback,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"[CASCADE] cloud fallback timed out after {self._timeouts.fallback}s"
            )
        except Exception as error:
            logger.error(f"[CASCADE] cloud fallback failed: {error}")
        return None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()
