"""
Shared fixtures: test settings and a scripted transport.
"""

import asyncio
import json

import pytest

from config.settings import Settings
from core.models import AnalyzableItem, ChatResult, ItemKind


def build_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        azure_api_key="test-key",
        azure_endpoint="https://example-resource.openai.azure.com",
        azure_deployment="gpt-test",
        wave_cooldown_seconds=0,
        retry_base_delay=0.01,
        retry_max_delay=0.05,
    )
    values.update(overrides)
    return Settings(**values)


def answer_all(payload: dict) -> str:
    """A well-formed response covering every item of a payload."""
    results = []
    for item in payload["items"]:
        if payload["task"] == "qroc_explanations":
            results.append({"id": item["id"], "status": "ok", "explanation": f"Explication {item['id']}"})
        else:
            results.append({
                "id": item["id"],
                "status": "ok",
                "correctAnswers": [0],
                "optionExplanations": [f"Option {i}" for i in range(len(item["options"]))],
                "globalExplanation": "Synthèse",
            })
    return json.dumps({"results": results}, ensure_ascii=False)


class FakeTransport:
    """Transport stand-in: `respond(payload, system_prompt)` returns content or raises."""

    def __init__(self, respond=None):
        self.respond = respond or (lambda payload, system_prompt: answer_all(payload))
        self.calls = []
        self.prompts = []

    async def send(self, messages, max_tokens=None, system_prompt=None, temperature=None):
        payload = json.loads(messages[-1]["content"])
        self.calls.append(payload)
        self.prompts.append(system_prompt)
        content = self.respond(payload, system_prompt)
        if asyncio.iscoroutine(content):
            content = await content
        return ChatResult(content=content)


def mcq_items(count: int, prefix: str = "QCM") -> list:
    return [
        AnalyzableItem(
            id=f"{prefix}#{i + 2}",
            kind=ItemKind.MCQ,
            question_text=f"Question {i}",
            options=["un", "deux", "trois"],
            provided_answer_raw="A",
        )
        for i in range(count)
    ]


@pytest.fixture
def make_settings():
    return build_settings


@pytest.fixture
def settings():
    return build_settings()


@pytest.fixture
def fake_transport():
    return FakeTransport


@pytest.fixture
def make_items():
    return mcq_items


@pytest.fixture
def answer():
    return answer_all
