"""
Tests for the Azure transport client.

The real AsyncAzureOpenAI client is used, backed by an httpx.MockTransport.
"""

import asyncio
import json
import time

import httpx
import pytest

from ai.batch_analyzer import BatchAnalyzer
from ai.transport import AzureTransportClient, ensure_json_instruction, normalize_endpoint
from config.constants import FORCED_JSON_INSTRUCTION
from core.exceptions import (
    APIServerError, ConfigurationError, EmptyContentError, MissingAPIKeyError,
    PayloadTooLargeError, RateLimitExceededError,
)
from core.models import ResultStatus


def completion(content, finish_reason="stop"):
    return httpx.Response(200, json={
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 0,
        "model": "gpt-test",
        "choices": [{
            "index": 0,
            "finish_reason": finish_reason,
            "message": {"role": "assistant", "content": content},
        }],
    })


def error(status, message, code=None, headers=None):
    return httpx.Response(status, headers=headers, json={"error": {"message": message, "code": code}})


class ScriptedAzure:
    """MockTransport handler replaying responses in order and recording request bodies."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if callable(response):
            response = response(body)
        # Fresh copy: a response object is consumed once read
        return httpx.Response(response.status_code, headers=response.headers, content=response.content)


def make_transport(settings, azure: ScriptedAzure) -> AzureTransportClient:
    client = httpx.AsyncClient(transport=httpx.MockTransport(azure))
    return AzureTransportClient(settings, http_client=client)


def user(content="Analyse"):
    return [{"role": "user", "content": content}]


def test_normalize_endpoint():
    """A bare host gets https and loses trailing slashes."""
    assert normalize_endpoint("example.openai.azure.com/") == "https://example.openai.azure.com"
    assert normalize_endpoint("http://localhost:8080") == "http://localhost:8080"
    assert normalize_endpoint("") == ""


def test_ensure_json_instruction():
    """A strict-JSON system message is added only when nothing mentions json."""
    messages = ensure_json_instruction(user("Bonjour"))
    assert messages[0] == {"role": "system", "content": FORCED_JSON_INSTRUCTION}

    already = [{"role": "system", "content": "Réponds en JSON"}] + user()
    assert ensure_json_instruction(already) == already


def test_missing_configuration(make_settings):
    """Construction fails without key, endpoint and deployment."""
    with pytest.raises(MissingAPIKeyError):
        AzureTransportClient(make_settings(azure_api_key="", azure_endpoint="", azure_deployment=""))


def test_send_success(settings):
    """Content, finish reason and the JSON request shape."""
    azure = ScriptedAzure(completion('{"results": []}'))

    async def run():
        async with make_transport(settings, azure) as transport:
            return await transport.send(user(), max_tokens=1234, system_prompt="Réponds en JSON")

    result = asyncio.run(run())

    assert result.content == '{"results": []}'
    assert result.finish_reason == "stop"
    request = azure.requests[0]
    assert request["model"] == "gpt-test"
    assert request["max_tokens"] == 1234
    assert request["response_format"] == {"type": "json_object"}
    assert request["messages"][0] == {"role": "system", "content": "Réponds en JSON"}
    assert "temperature" not in request


def test_forced_json_message(settings):
    """A prompt that never says json gets the strict-JSON instruction first."""
    azure = ScriptedAzure(completion('{"ok": true}'))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user("Bonjour"))

    asyncio.run(run())

    assert azure.requests[0]["messages"][0] == {"role": "system", "content": FORCED_JSON_INSTRUCTION}


def test_rate_limit_honors_retry_after_ms(settings, answer, make_items):
    """429 with retry-after-ms=500: one retry after at least 500ms, all items ok."""
    azure = ScriptedAzure(
        error(429, "Rate limit reached", code="429", headers={"retry-after-ms": "500"}),
        lambda body: completion(answer(json.loads(body["messages"][-1]["content"]))),
    )

    async def run(items):
        async with make_transport(settings, azure) as transport:
            analyzer = BatchAnalyzer(transport, settings)
            started = time.monotonic()
            results = await analyzer.analyze(items, "Réponds en JSON")
            return results, time.monotonic() - started, transport.call_count

    results, elapsed, call_count = asyncio.run(run(make_items(5)))

    assert elapsed >= 0.5
    assert call_count == 2
    assert len(azure.requests) == 2
    assert len(results) == 5
    assert all(r.status == ResultStatus.OK for r in results)


def test_rate_limit_exhausted(make_settings):
    """Persistent 429 surfaces as RateLimitExceededError."""
    settings = make_settings(azure_max_retries=1)
    azure = ScriptedAzure(error(429, "Rate limit reached", headers={"retry-after-ms": "10"}))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user())

    with pytest.raises(RateLimitExceededError):
        asyncio.run(run())
    assert len(azure.requests) == 2


def test_unauthorized_is_fatal(settings):
    """401 raises ConfigurationError after exactly one call."""
    azure = ScriptedAzure(error(401, "Access denied due to invalid subscription key"))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user())

    with pytest.raises(ConfigurationError):
        asyncio.run(run())
    assert len(azure.requests) == 1


def test_deployment_not_found_is_fatal(settings):
    """404 raises ConfigurationError without retrying."""
    azure = ScriptedAzure(error(404, "The API deployment for this resource does not exist", code="DeploymentNotFound"))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user())

    with pytest.raises(ConfigurationError):
        asyncio.run(run())
    assert len(azure.requests) == 1


def test_server_error_is_retried(settings):
    """5xx is retried with backoff."""
    azure = ScriptedAzure(error(503, "Service unavailable"), completion('{"results": []}'))

    async def run():
        async with make_transport(settings, azure) as transport:
            return await transport.send(user())

    result = asyncio.run(run())

    assert result.content == '{"results": []}'
    assert len(azure.requests) == 2


def test_server_error_exhausted(make_settings):
    """Retries stop after azure_max_retries + 1 attempts."""
    settings = make_settings(azure_max_retries=2)
    azure = ScriptedAzure(error(500, "Internal error"))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user())

    with pytest.raises(APIServerError):
        asyncio.run(run())
    assert len(azure.requests) == 3


def test_context_length_is_payload_too_large(settings):
    """Context length overflow is a typed, non-retried error."""
    azure = ScriptedAzure(error(
        400, "This model's maximum context length is 8192 tokens", code="context_length_exceeded"
    ))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user())

    with pytest.raises(PayloadTooLargeError):
        asyncio.run(run())
    assert len(azure.requests) == 1


def test_truncation_retry(settings):
    """finish_reason=length triggers one resend with a larger budget."""
    azure = ScriptedAzure(
        completion('{"results": [{"id": "QCM#2"', finish_reason="length"),
        completion('{"results": []}'),
    )

    async def run():
        async with make_transport(settings, azure) as transport:
            return await transport.send(user(), max_tokens=4000)

    result = asyncio.run(run())

    assert result.content == '{"results": []}'
    assert len(azure.requests) == 2
    assert azure.requests[1]["max_tokens"] == max(8000, settings.truncation_max_tokens)


def test_empty_content_fallback(settings):
    """Empty JSON-mode content is retried once without response_format."""
    azure = ScriptedAzure(completion(""), completion('{"results": []}'))

    async def run():
        async with make_transport(settings, azure) as transport:
            return await transport.send(user())

    result = asyncio.run(run())

    assert result.content == '{"results": []}'
    assert "response_format" in azure.requests[0]
    assert "response_format" not in azure.requests[1]


def test_empty_content_twice(settings):
    """Still empty without JSON mode raises EmptyContentError."""
    azure = ScriptedAzure(completion(""))

    async def run():
        async with make_transport(settings, azure) as transport:
            await transport.send(user())

    with pytest.raises(EmptyContentError):
        asyncio.run(run())
    assert len(azure.requests) == 2


def test_unsupported_max_tokens_is_renamed(settings):
    """A deployment rejecting max_tokens gets max_completion_tokens instead."""
    azure = ScriptedAzure(
        error(
            400,
            "Unsupported parameter: 'max_tokens' is not supported with this model. "
            "Use 'max_completion_tokens' instead.",
            code="unsupported_parameter",
        ),
        completion('{"results": []}'),
    )

    async def run():
        async with make_transport(settings, azure) as transport:
            return await transport.send(user(), max_tokens=2000)

    asyncio.run(run())

    assert len(azure.requests) == 2
    assert "max_tokens" not in azure.requests[1]
    assert azure.requests[1]["max_completion_tokens"] == 2000
