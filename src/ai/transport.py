"""
Azure OpenAI transport client.

Issues one chat-completion call and owns every retry decision around it:
- network errors, timeouts and 5xx: exponential backoff
- 429: server retry-after (retry-after-ms preferred), else backoff capped at 60s
- finish_reason=length: one resend with a larger token budget
- empty content: one resend without JSON response_format
- 401/404/other 4xx: fatal ConfigurationError, never retried

The openai SDK's own retries are disabled so the policy lives in one place.
"""

from typing import Any, Dict, List, Optional, Set

import httpx
import openai
from openai import AsyncAzureOpenAI
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception_type, stop_after_attempt

from config.constants import API_CONNECT_TIMEOUT, FORCED_JSON_INSTRUCTION, MCQ_MAX_TOKENS
from config.logging_config import get_logger
from config.settings import Settings, get_settings
from core.exceptions import (
    APIConnectionError, APIRateLimitError, APIResponseError, APIServerError, APITimeoutError,
    ConfigurationError, EmptyContentError, MissingAPIKeyError, PayloadTooLargeError,
    RateLimitExceededError,
)
from core.models import ChatResult
from utils.rate_limiter import TokenBudgetLimiter, estimate_tokens
from utils.retry import RetryConfig, parse_retry_after, wait_retry_after

logger = get_logger(__name__)

RETRYABLE_ERRORS = (APIConnectionError, APITimeoutError, APIServerError, APIRateLimitError)
_TOKEN_PARAMS = ("max_tokens", "max_completion_tokens")


def normalize_endpoint(raw: str) -> str:
    """Add a scheme when missing and drop trailing slashes."""
    endpoint = (raw or "").strip()
    if not endpoint:
        return ""
    if not endpoint.lower().startswith(("http://", "https://")):
        endpoint = "https://" + endpoint
    return endpoint.rstrip("/")


def ensure_json_instruction(messages: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """
    Azure only honors response_format=json_object when a message mentions
    "json"; prepend a strict-JSON system message when none does.
    """
    mentions_json = any(
        isinstance(m.get("content"), str) and "json" in m["content"].lower()
        for m in messages
    )
    if mentions_json:
        return messages
    return [{"role": "system", "content": FORCED_JSON_INSTRUCTION}] + messages


class AzureTransportClient:
    """
    Chat-completion client for one Azure OpenAI deployment.

    Usage:
        transport = AzureTransportClient(get_settings())
        result = await transport.send(
            [{"role": "user", "content": payload}],
            max_tokens=4000,
            system_prompt=prompt,
        )
        result.content, result.finish_reason
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        rate_limiter: Optional[TokenBudgetLimiter] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.settings = settings or get_settings()
        if not self.settings.is_azure_configured:
            raise MissingAPIKeyError(
                "Azure OpenAI is not configured",
                details={"required": [
                    "AZURE_OPENAI_API_KEY",
                    "AZURE_OPENAI_ENDPOINT (or AZURE_OPENAI_TARGET)",
                    "AZURE_OPENAI_CHAT_DEPLOYMENT (or AZURE_OPENAI_DEPLOYMENT_NAME)",
                ]},
            )

        self.endpoint = normalize_endpoint(self.settings.azure_endpoint)
        self.deployment = self.settings.azure_deployment
        self.retry_config = retry_config or RetryConfig(
            max_attempts=self.settings.azure_max_retries + 1,
            base_delay=self.settings.retry_base_delay,
            max_delay=self.settings.retry_max_delay,
        )
        self.rate_limiter = rate_limiter or TokenBudgetLimiter(
            tokens_per_minute=self.settings.tokens_per_minute,
            requests_per_minute=self.settings.requests_per_minute,
        )
        self.call_count = 0
        self._client = self._create_client(http_client)

    def _create_client(self, http_client: Optional[httpx.AsyncClient]) -> AsyncAzureOpenAI:
        """Create the Azure client with its own timeout and no SDK retries."""
        timeout_s = self.settings.azure_timeout_ms / 1000.0
        timeout = httpx.Timeout(timeout_s, connect=min(API_CONNECT_TIMEOUT, timeout_s))

        client_kwargs = {
            "api_key": self.settings.azure_api_key,
            "azure_endpoint": self.endpoint,
            "api_version": self.settings.azure_api_version,
            "timeout": timeout,
            "max_retries": 0,
        }
        if http_client is not None:
            client_kwargs["http_client"] = http_client

        return AsyncAzureOpenAI(**client_kwargs)

    async def close(self) -> None:
        await self._client.close()

    async def __aenter__(self) -> "AzureTransportClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    # ==================== PUBLIC API ====================

    async def send(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: Optional[int] = None,
        system_prompt: Optional[str] = None,
        temperature: Optional[float] = None,
    ) -> ChatResult:
        """
        Send one chat completion.

        Args:
            messages: Chat messages ({"role", "content"} dicts); not mutated
            max_tokens: Completion token budget
            system_prompt: Optional system message placed first
            temperature: Omitted by default, some deployments reject it

        Returns:
            ChatResult with non-empty content

        Raises:
            ConfigurationError: 401, 404 or another non-recoverable 4xx
            RateLimitExceededError: 429 retries exhausted
            APIConnectionError / APITimeoutError / APIServerError: retries exhausted
            PayloadTooLargeError: 413 or context length exceeded
            EmptyContentError: no content even without JSON mode
        """
        final_messages = [dict(m) for m in messages]
        if system_prompt:
            final_messages.insert(0, {"role": "system", "content": system_prompt})
        final_messages = ensure_json_instruction(final_messages)

        budget = max_tokens or MCQ_MAX_TOKENS
        request: Dict[str, Any] = {
            "model": self.deployment,
            "messages": final_messages,
            "max_tokens": budget,
            "response_format": {"type": "json_object"},
        }
        if temperature is not None:
            request["temperature"] = temperature

        result = await self._send_with_retries(request)

        if result.finish_reason == "length":
            larger = max(budget * 2, self.settings.truncation_max_tokens)
            logger.warning(f"Response truncated at {budget} tokens, retrying once with {larger}")
            request = self._with_token_budget(request, larger)
            result = await self._send_with_retries(request)

        if not result.content.strip() and "response_format" in request:
            logger.warning("Empty content in JSON mode, retrying once without response_format")
            request = {k: v for k, v in request.items() if k != "response_format"}
            result = await self._send_with_retries(request)

        if not result.content.strip():
            raise EmptyContentError(
                "Azure OpenAI returned empty content",
                details={"finish_reason": result.finish_reason},
            )
        return result

    # ==================== RETRY LOOP ====================

    async def _send_with_retries(self, request: Dict[str, Any]) -> ChatResult:
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.retry_config.max_attempts),
            wait=wait_retry_after(self.retry_config),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=self._log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._call_once(request)
        except APIRateLimitError as e:
            raise RateLimitExceededError(
                f"Azure OpenAI rate limit exceeded after {self.retry_config.max_attempts} attempts",
                details={"retry_after": e.retry_after},
            ) from e
        raise APIResponseError("Retry loop ended without a result")

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
        logger.warning(
            f"Retry {retry_state.attempt_number}/{self.retry_config.max_attempts} "
            f"after {exc.__class__.__name__}: {exc}. Waiting {delay:.1f}s"
        )

    async def _call_once(self, request: Dict[str, Any]) -> ChatResult:
        """One HTTP round trip, plus in-place request fixes for rejected parameters."""
        await self.rate_limiter.acquire(self._estimate_tokens(request))

        applied: Set[str] = set()
        while True:
            self.call_count += 1
            try:
                completion = await self._client.chat.completions.create(**request)
                break
            except openai.BadRequestError as e:
                if self._adjust_for_bad_request(request, e, applied):
                    continue
                raise self._translate(e) from e
            except openai.OpenAIError as e:
                raise self._translate(e) from e

        if not completion.choices:
            return ChatResult(content="", finish_reason="no-choices")

        choice = completion.choices[0]
        message = choice.message
        content = message.content if message else None
        if not content and message is not None and message.tool_calls:
            content = message.tool_calls[0].function.arguments
        return ChatResult(content=content or "", finish_reason=choice.finish_reason or "stop")

    # ==================== HELPERS ====================

    @staticmethod
    def _with_token_budget(request: Dict[str, Any], budget: int) -> Dict[str, Any]:
        updated = dict(request)
        for param in _TOKEN_PARAMS:
            if param in updated:
                updated[param] = budget
        return updated

    @staticmethod
    def _estimate_tokens(request: Dict[str, Any]) -> int:
        prompt = sum(estimate_tokens(str(m.get("content", ""))) for m in request["messages"])
        completion = next((request[p] for p in _TOKEN_PARAMS if p in request), 0)
        return prompt + completion

    @staticmethod
    def _adjust_for_bad_request(request: Dict[str, Any], error: openai.BadRequestError, applied: Set[str]) -> bool:
        """
        Drop or rename a parameter the deployment rejected.

        Each adjustment is applied at most once per call. Returns True when
        the request was changed and should be resent.
        """
        message = str(error.message).lower()

        if "temperature" in request and "temperature" in message and "temperature" not in applied:
            logger.warning("400 mentioning temperature, retrying without temperature")
            del request["temperature"]
            applied.add("temperature")
            return True

        if "response_format" in request and ("response_format" in message or "json_object" in message) \
                and "response_format" not in applied:
            logger.warning("400 mentioning response_format, retrying without response_format")
            del request["response_format"]
            applied.add("response_format")
            return True

        if "unsupported" in message:
            for current, replacement in (_TOKEN_PARAMS, tuple(reversed(_TOKEN_PARAMS))):
                if current in request and current in message and current not in applied:
                    logger.warning(f"400 unsupported {current}, retrying with {replacement}")
                    request[replacement] = request.pop(current)
                    applied.add(current)
                    return True

        return False

    def _translate(self, error: openai.OpenAIError) -> Exception:
        """Map SDK errors onto the pipeline's exception taxonomy."""
        # APITimeoutError subclasses APIConnectionError in the SDK
        if isinstance(error, openai.APITimeoutError):
            return APITimeoutError(
                f"Azure OpenAI request timed out after {self.settings.azure_timeout_ms}ms"
            )
        if isinstance(error, openai.APIConnectionError):
            return APIConnectionError(f"Connection to Azure OpenAI failed: {error}")

        if isinstance(error, openai.APIStatusError):
            status = error.status_code
            message = str(error.message)
            code = str(getattr(error, "code", "") or "")

            if status == 429:
                return APIRateLimitError(
                    f"Azure OpenAI rate limited (429): {message}",
                    retry_after=parse_retry_after(error.response.headers),
                )
            if status == 401:
                return ConfigurationError(
                    "Azure OpenAI unauthorized (401). Check AZURE_OPENAI_API_KEY and resource access policies."
                )
            if status == 404:
                return ConfigurationError(
                    "Azure OpenAI deployment not found (404). Verify the endpoint and the deployment name.",
                    details={"endpoint": self.endpoint, "deployment": self.deployment},
                )
            if status == 413 or "context_length_exceeded" in code or "maximum context length" in message.lower():
                return PayloadTooLargeError(f"Azure OpenAI payload too large ({status}): {message}")
            if status >= 500:
                return APIServerError(f"Azure OpenAI server error {status}: {message}", status_code=status)
            return ConfigurationError(
                f"Azure OpenAI error {status}: {message}",
                details={"status_code": status},
            )

        return APIResponseError(f"Unexpected Azure OpenAI error: {error}")
