"""Cloud vision fallback across OpenRouter, OpenAI and Anthropic.

Providers are tried in order, preferred one first; the first non-failing
provider's text wins. Only providers with an API key take part.
"""

from __future__ import annotations

import re

import httpx
from loguru import logger

from libs.core.application.contracts import InferenceUnavailableError

PROVIDER_ORDER = ("openrouter", "openai", "anthropic")

OPENROUTER_URL = "https://openrouter.ai/api/v1/chat/completions"
OPENAI_URL = "https://api.openai.com/v1/chat/completions"
ANTHROPIC_URL = "https://api.anthropic.com/v1/messages"

OPENROUTER_MODEL = "openai/gpt-4o-mini"
OPENAI_MODEL = "gpt-4o-mini"
ANTHROPIC_MODEL = "claude-sonnet-4-20250514"
ANTHROPIC_VERSION = "2023-06-01"

MAX_TOKENS = 512
TEMPERATURE = 0.3

_DATA_URL_PREFIX = re.compile(r"^data:image/[a-z]+;base64,")


class CloudFallbackClient:
    def __init__(
        self,
        openrouter_api_key: str | None = None,
        openai_api_key: str | None = None,
        anthropic_api_key: str | None = None,
        preferred_provider: str = "openrouter",
        timeout_sec: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._keys = {
            "openrouter": openrouter_api_key or None,
            "openai": openai_api_key or None,
            "anthropic": anthropic_api_key or None,
        }
        self._preferred = preferred_provider
        self._timeout = httpx.Timeout(timeout_sec)
        self._transport = transport
        self._call_count = 0
        self._error_count = 0

    def is_available(self) -> bool:
        return bool(self.get_available_providers())

    def get_available_providers(self) -> list[str]:
        return [name for name in PROVIDER_ORDER if self._keys[name]]

    def provider_chain(self) -> list[str]:
        available = self.get_available_providers()
        if self._preferred in available:
            return [self._preferred] + [
                name for name in available if name != self._preferred
            ]
        return available

    async def analyze(self, image_b64: str, prompt: str) -> str:
        chain = self.provider_chain()
        if not chain:
            raise InferenceUnavailableError("No cloud providers configured")

        last_error: Exception | None = None
        async with httpx.AsyncClient(
            timeout=self._timeout, transport=self._transport
        ) as client:
            for provider in chain:
                self._call_count += 1
                try:
                    text = await self._call_provider(client, provider, image_b64, prompt)
                except (httpx.HTTPError, KeyError, IndexError, ValueError) as error:
                    self._error_count += 1
                    last_error = error
                    logger.error(f"[CLOUD] {provider} failed: {error}")
                    continue
                logger.info(f"[CLOUD] {provider} answered")
                return text

        raise InferenceUnavailableError(
            f"All cloud providers failed: {last_error}"
        ) from last_error

    def get_stats(self) -> dict[str, object]:
        return {
            "available": self.is_available(),
            "providers": self.get_available_providers(),
            "call_count": self._call_count,
            "error_count": self._error_count,
            "error_rate": (
                self._error_count / self._call_count if self._call_count else 0.0
            ),
        }

    async def _call_provider(
        self,
        client: httpx.AsyncClient,
        provider: str,
        image_b64: str,
        prompt: str,
    ) -> str:
        key = self._keys[provider]
        if provider == "anthropic":
            return await _call_anthropic(client, key, image_b64, prompt)
        if provider == "openrouter":
            headers = {
                "Authorization": f"Bearer {key}",
                "X-Title": "Guardian Analysis",
            }
            return await _call_chat_completions(
                client, OPENROUTER_URL, OPENROUTER_MODEL, headers, image_b64, prompt
            )
        headers = {"Authorization": f"Bearer {key}"}
        return await _call_chat_completions(
            client, OPENAI_URL, OPENAI_MODEL, headers, image_b64, prompt
        )


async def _call_chat_completions(
    client: httpx.AsyncClient,
    url: str,
    model: str,
    headers: dict[str, str],
    image_b64: str,
    prompt: str,
) -> str:
    image_url = (
        image_b64
        if image_b64.startswith("data:")
        else f"data:image/jpeg;base64,{image_b64}"
    )
    payload = {
        "model": model,
        "messages": [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": image_url}},
                ],
            }
        ],
        "max_tokens": MAX_TOKENS,
        "temperature": TEMPERATURE,
    }
    response = await client.post(url, json=payload, headers=headers)
    response.raise_for_status()
    choices = response.json().get("choices") or []
    if not choices:
        return ""
    return choices[0].get("message", {}).get("content") or ""


async def _call_anthropic(
    client: httpx.AsyncClient,
    api_key: str,
    image_b64: str,
    prompt: str,
) -> str:
    payload = {
        "model": ANTHROPIC_MODEL,
        "max_tokens": MAX_TOKENS,
        "messages": [
            {
                "role": "user",
                "content": [
                    {
                        "type": "image",
                        "source": {
                            "type": "base64",
                            "media_type": "image/jpeg",
                            "data": _DATA_URL_PREFIX.sub("", image_b64),
                        },
                    },
                    {"type": "text", "text": prompt},
                ],
            }
        ],
    }
    headers = {"x-api-key": api_key, "anthropic-version": ANTHROPIC_VERSION}
    response = await client.post(ANTHROPIC_URL, json=payload, headers=headers)
    response.raise_for_status()
    for block in response.json().get("content", []):
        if block.get("type") == "text":
            return block.get("text") or ""
    return ""
