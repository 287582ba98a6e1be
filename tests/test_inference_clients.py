"""HTTP client tests against mocked transports."""

import asyncio
import json

import httpx
import pytest

from libs.core.application.contracts import InferenceUnavailableError, ModelTier
from libs.core.domain.entities import Alert, AlertSeverity
from libs.infra.inference.cloud import CloudFallbackClient
from libs.infra.inference.ollama import OllamaClient
from libs.infra.notify.webhook import WebhookAlertNotifier


class Recorder:
    """Mock transport handler that records requests and replays responses."""

    def __init__(self, responses: dict[str, httpx.Response]) -> None:
        self.responses = responses
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses[request.url.host + request.url.path]

    @property
    def hosts(self) -> list[str]:
        return [request.url.host for request in self.requests]


def _ollama(recorder: Recorder) -> OllamaClient:
    return OllamaClient(
        host="http://ollama:11434",
        triage_model="moondream",
        analysis_model="llava:7b",
        transport=httpx.MockTransport(recorder),
    )


def test_ollama_generate_uses_tier_model() -> None:
    recorder = Recorder(
        {"ollama/api/generate": httpx.Response(200, json={"response": "NO CONCERN"})}
    )

    text = asyncio.run(
        _ollama(recorder).generate(ModelTier.DETAILED, "Describe the room", "aW1hZ2U=")
    )

    body = json.loads(recorder.requests[0].content)
    assert text == "NO CONCERN"
    assert body["model"] == "llava:7b"
    assert body["images"] == ["aW1hZ2U="]
    assert body["stream"] is False


def test_ollama_error_raises_unavailable() -> None:
    recorder = Recorder({"ollama/api/generate": httpx.Response(500, text="oom")})

    with pytest.raises(InferenceUnavailableError):
        asyncio.run(_ollama(recorder).generate(ModelTier.TRIAGE, "Check", "aW1hZ2U="))


def test_ollama_health_and_models() -> None:
    recorder = Recorder(
        {
            "ollama/api/tags": httpx.Response(
                200, json={"models": [{"name": "moondream"}, {"name": "llava:7b"}]}
            )
        }
    )
    client = _ollama(recorder)

    assert asyncio.run(client.is_healthy()) is True
    assert asyncio.run(client.list_models()) == ["moondream", "llava:7b"]


def test_ollama_unreachable_is_unhealthy() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = OllamaClient(transport=httpx.MockTransport(refuse))

    assert asyncio.run(client.is_healthy()) is False


def _chat_reply(text: str) -> httpx.Response:
    return httpx.Response(200, json={"choices": [{"message": {"content": text}}]})


def test_cloud_tries_preferred_provider_first() -> None:
    recorder = Recorder(
        {
            "api.anthropic.com/v1/messages": httpx.Response(
                200, json={"content": [{"type": "text", "text": "HIGH CONCERN"}]}
            ),
            "api.openai.com/v1/chat/completions": _chat_reply("NO CONCERN"),
        }
    )
    client = CloudFallbackClient(
        openai_api_key="sk-openai",
        anthropic_api_key="sk-anthropic",
        preferred_provider="anthropic",
        transport=httpx.MockTransport(recorder),
    )

    text = asyncio.run(client.analyze("data:image/jpeg;base64,aW1hZ2U=", "Check"))

    request = recorder.requests[0]
    image = json.loads(request.content)["messages"][0]["content"][0]
    assert text == "HIGH CONCERN"
    assert recorder.hosts == ["api.anthropic.com"]
    assert request.headers["x-api-key"] == "sk-anthropic"
    assert image["source"]["data"] == "aW1hZ2U="


def test_cloud_falls_through_failing_provider() -> None:
    recorder = Recorder(
        {
            "openrouter.ai/api/v1/chat/completions": httpx.Response(429),
            "api.openai.com/v1/chat/completions": _chat_reply("MEDIUM CONCERN"),
        }
    )
    client = CloudFallbackClient(
        openrouter_api_key="sk-router",
        openai_api_key="sk-openai",
        transport=httpx.MockTransport(recorder),
    )

    text = asyncio.run(client.analyze("aW1hZ2U=", "Check"))

    image = json.loads(recorder.requests[1].content)["messages"][0]["content"][1]
    assert text == "MEDIUM CONCERN"
    assert recorder.hosts == ["openrouter.ai", "api.openai.com"]
    assert image["image_url"]["url"] == "data:image/jpeg;base64,aW1hZ2U="
    assert client.get_stats()["error_count"] == 1


def test_cloud_all_providers_failing_raises() -> None:
    recorder = Recorder(
        {
            "api.openai.com/v1/chat/completions": httpx.Response(500),
            "api.anthropic.com/v1/messages": httpx.Response(503),
        }
    )
    client = CloudFallbackClient(
        openai_api_key="sk-openai",
        anthropic_api_key="sk-anthropic",
        transport=httpx.MockTransport(recorder),
    )

    with pytest.raises(InferenceUnavailableError):
        asyncio.run(client.analyze("aW1hZ2U=", "Check"))
    assert recorder.hosts == ["api.openai.com", "api.anthropic.com"]


def test_cloud_without_keys_is_unavailable() -> None:
    client = CloudFallbackClient()

    assert client.is_available() is False
    assert client.get_available_providers() == []
    with pytest.raises(InferenceUnavailableError):
        asyncio.run(client.analyze("aW1hZ2U=", "Check"))


def _alert() -> Alert:
    return Alert(
        alert_id="alert-1",
        job_id="job-1",
        stream_id="nursery",
        alert_type="concern",
        severity=AlertSeverity.URGENT,
        message="I see the baby standing at the crib rail",
        created_at="2024-01-01T00:00:00+00:00",
        result_id="result-1",
    )


def test_webhook_posts_alert() -> None:
    recorder = Recorder({"hooks.example/alerts": httpx.Response(204)})
    notifier = WebhookAlertNotifier(
        "https://hooks.example/alerts", transport=httpx.MockTransport(recorder)
    )

    asyncio.run(notifier.notify(_alert()))

    body = json.loads(recorder.requests[0].content)
    assert body["alert_id"] == "alert-1"
    assert body["severity"] == "urgent"
    assert body["result_id"] == "result-1"


def test_webhook_error_status_raises() -> None:
    recorder = Recorder({"hooks.example/alerts": httpx.Response(502)})
    notifier = WebhookAlertNotifier(
        "https://hooks.example/alerts", transport=httpx.MockTransport(recorder)
    )

    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(notifier.notify(_alert()))
