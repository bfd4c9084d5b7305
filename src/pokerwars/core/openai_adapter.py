"""Seat adapter for the Chat Completions API.

Used directly for provider "openai" and, through OpenRouterAdapter, for every
bare gateway model id a seat names. Each call sends the whole decision
transcript and returns the reply text for the decision parser.

SDK failures are classified into AdapterError types the decision pipeline
understands: a timeout or an exhausted rate-limit retry costs the seat a
check/fold fallback, and a completion with no usable text is reported as
"empty_response" rather than passed on as a malformed reply.
"""

import time
from typing import Any

import openai
from openai import OpenAI

from pokerwars.core.adapter import AdapterError, AdapterResponse, ModelAdapter

_RATE_LIMIT_BACKOFF_S = 5.0
# Model id fragments of reasoning models (max_completion_tokens, fixed temperature)
_REASONING_MARKERS = ("gpt-5", "o1", "o3", "o4")


def _classify(e: Exception) -> str:
    if isinstance(e, openai.APITimeoutError):
        return "timeout"
    if isinstance(e, openai.RateLimitError):
        return "rate_limit"
    return "api_error"


class OpenAIAdapter(ModelAdapter):
    def __init__(
        self,
        model_id: str,
        api_key: str,
        base_url: str | None = None,
        temperature: float = 0.0,
        extra_headers: dict[str, str] | None = None,
    ):
        self._model_id = model_id
        self._temperature = temperature

        client_kwargs: dict[str, Any] = {"api_key": api_key}
        if base_url:
            client_kwargs["base_url"] = base_url
        if extra_headers:
            client_kwargs["default_headers"] = extra_headers
        self._client = OpenAI(**client_kwargs)

    @property
    def model_id(self) -> str:
        return self._model_id

    def query(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        timeout_s: float,
        context: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        start = time.monotonic()
        completion = self._call_api(messages, max_tokens, timeout_s)
        latency_ms = (time.monotonic() - start) * 1000

        if not completion.choices:
            raise AdapterError("empty_response", self._model_id, "API returned no choices")
        message = completion.choices[0].message
        raw_text = message.content or ""
        reasoning_text = getattr(message, "reasoning_content", None)
        # Reasoning with no content still reaches the parser, which reports it
        if not raw_text.strip() and not reasoning_text:
            raise AdapterError("empty_response", self._model_id, "empty message content")

        usage = completion.usage
        return AdapterResponse(
            raw_text=raw_text,
            reasoning_text=reasoning_text,
            input_tokens=usage.prompt_tokens if usage else 0,
            output_tokens=usage.completion_tokens if usage else 0,
            latency_ms=latency_ms,
            model_id=self._model_id,
            model_version=completion.model or self._model_id,
        )

    def _is_reasoning_model(self) -> bool:
        return any(marker in self._model_id for marker in _REASONING_MARKERS)

    def _request_kwargs(self, messages, max_tokens, timeout_s) -> dict[str, Any]:
        reasoning = self._is_reasoning_model()
        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "messages": messages,
            "max_completion_tokens" if reasoning else "max_tokens": max_tokens,
            "timeout": timeout_s,
        }
        if not reasoning:
            kwargs["temperature"] = self._temperature
        return kwargs

    def _call_api(self, messages, max_tokens, timeout_s):
        """One request; a rate limit gets a single retry after a backoff."""
        kwargs = self._request_kwargs(messages, max_tokens, timeout_s)
        for attempt in range(2):
            try:
                return self._client.chat.completions.create(**kwargs)
            except Exception as e:
                error_type = _classify(e)
                if error_type == "rate_limit" and attempt == 0:
                    time.sleep(_RATE_LIMIT_BACKOFF_S)
                    continue
                raise AdapterError(error_type, self._model_id, str(e)) from e
        raise AdapterError("api_error", self._model_id, "max retries exceeded")
