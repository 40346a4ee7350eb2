"""
Tests for settings, retry delays and the request budget limiter.
"""

import asyncio

import pytest
from pydantic import ValidationError

from config.settings import Settings
from utils.rate_limiter import TokenBudgetLimiter, estimate_tokens
from utils.retry import calculate_delay, parse_retry_after


def test_azure_variables(monkeypatch):
    """Azure settings are read from the AZURE_OPENAI_* names."""
    monkeypatch.setenv("AZURE_OPENAI_API_KEY", "secret")
    monkeypatch.setenv("AZURE_OPENAI_TARGET", "https://res.openai.azure.com")
    monkeypatch.setenv("AZURE_OPENAI_DEPLOYMENT_NAME", "gpt-4o")
    monkeypatch.setenv("AZURE_OPENAI_FORCE_OFFLINE", "false")

    settings = Settings(_env_file=None)

    assert settings.azure_endpoint == "https://res.openai.azure.com"
    assert settings.azure_deployment == "gpt-4o"
    assert settings.is_azure_configured
    assert settings.ai_enabled


def test_force_offline_disables_ai(make_settings):
    """A configured deployment can still be forced offline."""
    settings = make_settings(force_offline=True)

    assert settings.is_azure_configured
    assert not settings.ai_enabled


def test_batching_bounds(make_settings):
    """Sizes never drop below 1 and retry batches are capped."""
    settings = make_settings(batch_size=0, concurrency=-2, retry_batch_size=500)

    assert settings.batch_size == 1
    assert settings.concurrency == 1
    assert settings.retry_batch_size == 40


def test_overrides_are_validated(make_settings):
    """CLI overrides go through the same validators as the environment."""
    settings = make_settings(batch_size=4).with_overrides(concurrency=0, retry_batch_size=500)

    assert settings.concurrency == 1
    assert settings.retry_batch_size == 40
    assert settings.batch_size == 4
    assert settings.azure_deployment == "gpt-test"
    with pytest.raises(ValidationError):
        settings.with_overrides(shrink_factor=2)


def test_invalid_values(make_settings):
    """Shrink factor and match policy are validated."""
    with pytest.raises(ValidationError):
        make_settings(shrink_factor=1.5)
    with pytest.raises(ValidationError):
        make_settings(qroc_match_policy="fuzzy")
    assert make_settings(qroc_match_policy="CONTAINS").qroc_match_policy == "contains"


def test_calculate_delay_is_capped():
    """Backoff grows exponentially and never exceeds the cap."""
    assert calculate_delay(0, 1.0, 60.0, jitter=False) == 1.0
    assert calculate_delay(3, 1.0, 60.0, jitter=False) == 8.0
    assert calculate_delay(10, 1.0, 60.0) == 60.0
    assert 2.0 <= calculate_delay(1, 1.0, 60.0) <= 2.5


def test_parse_retry_after():
    """retry-after-ms wins over retry-after."""
    assert parse_retry_after({"retry-after-ms": "500", "retry-after": "7"}) == 0.5
    assert parse_retry_after({"retry-after": "7"}) == 7.0
    assert parse_retry_after({"retry-after": "Wed, 21 Oct 2015 07:28:00 GMT"}) is None
    assert parse_retry_after({}) is None


def test_estimate_tokens():
    """About four characters per token, at least one."""
    assert estimate_tokens("") == 1
    assert estimate_tokens("x" * 400) == 100


def test_disabled_limiter_never_waits():
    """Zero budgets disable the limiter."""
    limiter = TokenBudgetLimiter()

    assert not limiter.enabled
    assert asyncio.run(limiter.acquire(10_000)) == 0.0


def test_request_budget_waits_for_window():
    """The third request in a two-per-window budget waits."""
    limiter = TokenBudgetLimiter(requests_per_minute=2, window_seconds=0.1)

    async def run():
        return [await limiter.acquire(1) for _ in range(3)]

    waits = asyncio.run(run())

    assert waits[:2] == [0.0, 0.0]
    assert waits[2] > 0
