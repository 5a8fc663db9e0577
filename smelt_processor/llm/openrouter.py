"""OpenRouter chat-completions client with retry and rate-limit handling.

Every attempt gets its own request timeout. Transport failures, timeouts,
HTTP 5xx and HTTP 429 are retried with exponential backoff; 429 honors
Retry-After. Credential, quota and malformed-request errors fail fast.
"""

from __future__ import annotations

import base64
import logging
import math
import os
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from smelt_processor.llm.interface import (
    CompletionOptions,
    ExternalCallResult,
    LLMClient,
    Message,
    TokenUsage,
)
from smelt_processor.utils.errors import (
    ConnectionLostError,
    CredentialInvalidError,
    ProviderRequestError,
    ProviderUnavailableError,
    QuotaExhaustedError,
    RateLimitError,
)
from smelt_processor.utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://openrouter.ai/api/v1/chat/completions"
DEFAULT_TEXT_MODEL = "anthropic/claude-3.5-sonnet"
DEFAULT_TRANSCRIPTION_MODEL = "google/gemini-2.5-pro-preview"

MAX_RETRIES = 3
INITIAL_RETRY_DELAY_SECONDS = 1.0
MAX_RETRY_DELAY_SECONDS = 30.0
COMPLETION_TIMEOUT_SECONDS = 120.0
TRANSCRIPTION_TIMEOUT_SECONDS = 180.0
MAX_TOKENS_CEILING = 16384

TRANSCRIPTION_INSTRUCTION = (
    "Transcribe this audio recording. Output ONLY the transcript text, with no "
    "additional commentary, labels, or formatting. Preserve the speaker's words "
    "exactly as spoken, including filler words, corrections, and natural speech "
    "patterns. If there are multiple speakers, indicate speaker changes with a "
    "simple line break."
)

RETRYABLE_ERRORS = (RateLimitError, ProviderUnavailableError, ConnectionLostError)


def parse_retry_after(value: str | None, now: datetime | None = None) -> float | None:
    """Convert a Retry-After header to a delay in seconds.

    Accepts delta-seconds or an HTTP date; dates in the past give 0.
    Returns None when the header is missing or unparseable.
    """
    if not value:
        return None
    value = value.strip()
    try:
        return max(0.0, float(int(value)))
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    return float(max(0, math.ceil((when - current).total_seconds())))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = {}
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return f"API request failed with status {response.status_code}"


class OpenRouterClient(LLMClient):
    """Resilient client for the OpenRouter chat-completions API.

    Configuration from constructor arguments or environment variables:
        OPENROUTER_API_KEY, OPENROUTER_API_URL, SMELT_TEXT_MODEL,
        SMELT_TRANSCRIPTION_MODEL

    Args:
        api_key: System credential used when a call supplies none.
        api_url: Chat-completions endpoint.
        text_model: Default model for complete().
        transcription_model: Default model for transcribe().
        max_retries: Retries after the first attempt (default 3).
        base_delay: Backoff base in seconds.
        max_delay: Cap for a single backoff wait in seconds.
        jitter_ratio: Random jitter as a fraction of the backoff delay.
        completion_timeout: Per-attempt timeout for complete().
        transcription_timeout: Per-attempt timeout for transcribe().
        transport: Optional httpx transport (used by tests).
    """

    def __init__(
        self,
        api_key: str | None = None,
        api_url: str | None = None,
        text_model: str | None = None,
        transcription_model: str | None = None,
        max_retries: int = MAX_RETRIES,
        base_delay: float = INITIAL_RETRY_DELAY_SECONDS,
        max_delay: float = MAX_RETRY_DELAY_SECONDS,
        jitter_ratio: float = 0.3,
        completion_timeout: float = COMPLETION_TIMEOUT_SECONDS,
        transcription_timeout: float = TRANSCRIPTION_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.system_api_key = api_key or os.environ.get("OPENROUTER_API_KEY", "")
        self.api_url = api_url or os.environ.get("OPENROUTER_API_URL", DEFAULT_API_URL)
        self.text_model = text_model or os.environ.get(
            "SMELT_TEXT_MODEL", DEFAULT_TEXT_MODEL
        )
        self.transcription_model = transcription_model or os.environ.get(
            "SMELT_TRANSCRIPTION_MODEL", DEFAULT_TRANSCRIPTION_MODEL
        )
        self.completion_timeout = completion_timeout
        self.transcription_timeout = transcription_timeout
        self._transport = transport
        self._post = retry_with_backoff(
            max_retries=max_retries,
            base_delay=base_delay,
            max_delay=max_delay,
            jitter_ratio=jitter_ratio,
            retryable_exceptions=RETRYABLE_ERRORS,
        )(self._post_once)

    def _resolve_api_key(self, options: CompletionOptions) -> str:
        """Prefer the caller's credential, else the system one."""
        if options.api_key:
            return options.api_key
        if not self.system_api_key:
            raise CredentialInvalidError("OPENROUTER API KEY NOT CONFIGURED")
        return self.system_api_key

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {api_key}",
            "Content-Type": "application/json",
            "X-Title": "SMELT",
        }

    async def _post_once(
        self, payload: dict[str, Any], api_key: str, timeout: float
    ) -> dict[str, Any]:
        """Make a single request. Raises a typed ProviderError on failure."""
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport
            ) as client:
                response = await client.post(
                    self.api_url, headers=self._headers(api_key), json=payload
                )
        except httpx.TimeoutException as exc:
            raise ProviderUnavailableError("LLM REQUEST TIMED OUT") from exc
        except httpx.RequestError as exc:
            raise ConnectionLostError(
                f"CONNECTION TO LLM SERVICE LOST: {type(exc).__name__}"
            ) from exc

        status = response.status_code
        if response.is_success:
            try:
                return response.json()
            except ValueError as exc:
                raise ProviderRequestError(
                    "INVALID RESPONSE FROM MODEL", status_code=status
                ) from exc

        if status == 429:
            raise RateLimitError(
                retry_after=parse_retry_after(response.headers.get("Retry-After"))
            )
        if status >= 500:
            raise ProviderUnavailableError(
                f"LLM SERVICE UNAVAILABLE (STATUS {status})", status_code=status
            )
        if status in (401, 403):
            raise CredentialInvalidError(status_code=status)
        if status == 402:
            raise QuotaExhaustedError(status_code=status)
        raise ProviderRequestError(_error_message(response), status_code=status)

    @staticmethod
    def _to_result(
        data: dict[str, Any], fallback_model: str, empty_message: str
    ) -> ExternalCallResult:
        choices = data.get("choices") or []
        if not choices:
            raise ProviderRequestError(empty_message)
        content = (choices[0].get("message") or {}).get("content") or ""
        usage_data = data.get("usage")
        usage = None
        if isinstance(usage_data, dict):
            usage = TokenUsage(
                prompt_tokens=int(usage_data.get("prompt_tokens", 0)),
                completion_tokens=int(usage_data.get("completion_tokens", 0)),
                total_tokens=int(usage_data.get("total_tokens", 0)),
            )
        return ExternalCallResult(
            content=content,
            model=data.get("model") or fallback_model,
            usage=usage,
        )

    async def complete(
        self, messages: list[Message], options: CompletionOptions | None = None
    ) -> ExternalCallResult:
        """Create a text completion.

        Raises:
            ProviderError: A typed subclass describing the failure.
        """
        options = options or CompletionOptions()
        api_key = self._resolve_api_key(options)
        model = options.model or self.text_model
        payload = {
            "model": model,
            "messages": [m.to_payload() for m in messages],
            "temperature": 0.7 if options.temperature is None else options.temperature,
            "max_tokens": min(options.max_tokens or 4096, MAX_TOKENS_CEILING),
            **options.extra,
        }
        data = await self._post(payload, api_key, self.completion_timeout)
        return self._to_result(data, model, "NO RESPONSE FROM MODEL")

    async def transcribe(
        self,
        audio: bytes,
        mime_type: str,
        options: CompletionOptions | None = None,
    ) -> ExternalCallResult:
        """Transcribe audio with a multimodal model.

        Uses the longer transcription timeout and a low temperature.

        Raises:
            ProviderError: A typed subclass describing the failure.
        """
        options = options or CompletionOptions()
        api_key = self._resolve_api_key(options)
        model = options.model or self.transcription_model
        encoded = base64.b64encode(audio).decode("ascii")
        message = Message(
            role="user",
            content=[
                {"type": "text", "text": TRANSCRIPTION_INSTRUCTION},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                },
            ],
        )
        payload = {
            "model": model,
            "messages": [message.to_payload()],
            "temperature": 0.1 if options.temperature is None else options.temperature,
            "max_tokens": min(options.max_tokens or MAX_TOKENS_CEILING, MAX_TOKENS_CEILING),
            **options.extra,
        }
        logger.info("Sending %d bytes of %s for transcription", len(audio), mime_type)
        data = await self._post(payload, api_key, self.transcription_timeout)
        return self._to_result(data, model, "NO TRANSCRIPTION RESPONSE")
