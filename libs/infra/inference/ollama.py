from __future__ import annotations

import httpx
from loguru import logger

from libs.core.application.contracts import InferenceUnavailableError, ModelTier

DEFAULT_OLLAMA_HOST = "http://localhost:11434"
DEFAULT_TRIAGE_MODEL = "moondream"
DEFAULT_ANALYSIS_MODEL = "llava:7b"
GENERATE_OPTIONS = {"temperature": 0.3, "num_predict": 512}


class OllamaClient:
    """Local Ollama vision backend serving the triage and detailed tiers."""

    def __init__(
        self,
        host: str = DEFAULT_OLLAMA_HOST,
        triage_model: str = DEFAULT_TRIAGE_MODEL,
        analysis_model: str = DEFAULT_ANALYSIS_MODEL,
        connect_timeout_sec: float = 5.0,
        read_timeout_sec: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._host = host.rstrip("/")
        self._models = {
            ModelTier.TRIAGE: triage_model,
            ModelTier.DETAILED: analysis_model,
        }
        self._timeout = httpx.Timeout(read_timeout_sec, connect=connect_timeout_sec)
        self._transport = transport

    def model_for(self, tier: ModelTier) -> str:
        return self._models[tier]

    async def generate(self, tier: ModelTier, prompt: str, image_b64: str) -> str:
        payload = {
            "model": self._models[tier],
            "prompt": prompt,
            "images": [image_b64],
            "stream": False,
            "options": GENERATE_OPTIONS,
        }
        try:
            async with self._client() as client:
                response = await client.post("/api/generate", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as error:
            raise InferenceUnavailableError(
                f"Ollama {tier.value} request failed: {error}"
            ) from error

        text = data.get("response")
        if not isinstance(text, str):
            raise InferenceUnavailableError(
                f"Ollama {tier.value} returned no response text"
            )
        return text

    async def is_healthy(self) -> bool:
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
        except httpx.HTTPError as error:
            logger.warning(f"[OLLAMA] health check failed: {error}")
            return False
        return response.status_code == 200

    async def list_models(self) -> list[str]:
        try:
            async with self._client() as client:
                response = await client.get("/api/tags")
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as error:
            raise InferenceUnavailableError(f"Ollama model listing failed: {error}") from error
        return [model.get("name", "") for model in data.get("models", [])]

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._host,
            timeout=self._timeout,
            transport=self._transport,
        )
