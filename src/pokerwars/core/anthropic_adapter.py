"""Anthropic Messages API adapter.

System messages travel in the separate `system` parameter; thinking blocks
come back as reasoning_text and text blocks as raw_text.
"""

import time
from typing import Any

import anthropic
from anthropic import Anthropic

from pokerwars.core.adapter import AdapterError, AdapterResponse, ModelAdapter

_RATE_LIMIT_BACKOFF_S = 5.0


class AnthropicAdapter(ModelAdapter):
    """Adapter for the Anthropic Messages API."""

    def __init__(
        self,
        model_id: str,
        api_key: str,
        temperature: float = 0.0,
    ):
        self._model_id = model_id
        self._temperature = temperature
        self._client = Anthropic(api_key=api_key)

    def query(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        timeout_s: float,
        context: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        system, turns = _split_system(messages)
        start = time.monotonic()
        msg = self._call_api(system, turns, max_tokens, timeout_s)
        elapsed_ms = (time.monotonic() - start) * 1000

        raw_parts: list[str] = []
        reasoning_text = None
        for block in msg.content:
            if block.type == "thinking":
                reasoning_text = block.thinking
            elif block.type == "text":
                raw_parts.append(block.text)
        raw_text = "".join(raw_parts)
        if not raw_text.strip():
            raise AdapterError("empty_response", self._model_id, "no text content")

        return AdapterResponse(
            raw_text=raw_text,
            reasoning_text=reasoning_text,
            input_tokens=msg.usage.input_tokens,
            output_tokens=msg.usage.output_tokens,
            latency_ms=elapsed_ms,
            model_id=self._model_id,
            model_version=msg.model,
        )

    def _call_api(self, system, messages, max_tokens, timeout_s):
        """Call the API with one rate-limit retry."""
        kwargs: dict[str, Any] = {
            "model": self._model_id,
            "messages": messages,
            "max_tokens": max_tokens,
            "temperature": self._temperature,
            "timeout": timeout_s,
        }
        if system:
            kwargs["system"] = system
        for attempt in range(2):
            try:
                return self._client.messages.create(**kwargs)
            except anthropic.APITimeoutError as e:
                raise AdapterError("timeout", self._model_id, str(e)) from e
            except anthropic.RateLimitError as e:
                if attempt == 0:
                    time.sleep(_RATE_LIMIT_BACKOFF_S)
                    continue
                raise AdapterError("rate_limit", self._model_id, str(e)) from e
            except anthropic.APIError as e:
                raise AdapterError("api_error", self._model_id, str(e)) from e
            except Exception as e:
                raise AdapterError("api_error", self._model_id, str(e)) from e
        raise AdapterError("api_error", self._model_id, "max retries exceeded")


def _split_system(messages: list[dict[str, str]]) -> tuple[str, list[dict[str, str]]]:
    """Pull system messages out of a chat transcript."""
    system = "\n\n".join(m["content"] for m in messages if m.get("role") == "system")
    turns = [m for m in messages if m.get("role") != "system"]
    return system, turns
