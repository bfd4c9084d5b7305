"""Model adapters: one chat transcript in, one reply out.

Every seat's LLMAgent talks to its model through a ModelAdapter. Adapters
never let an SDK exception reach the agent; each failure becomes an
AdapterError whose error_type the decision pipeline records as the seat's
fallback reason and referee violation before substituting check/fold.

MockAdapter plays offline from a strategy callable and fails the same way a
gateway does, so mock tournaments exercise the fallback paths too.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable
import time


class AdapterError(Exception):
    """A failed model call, already classified for the fallback path."""

    def __init__(
        self,
        error_type: str,
        model_id: str,
        details: str = "",
    ):
        self.error_type = error_type  # "timeout", "rate_limit", "api_error", "empty_response"
        self.model_id = model_id
        self.details = details
        super().__init__(f"{error_type} from {model_id}: {details}")


@dataclass(frozen=True)
class AdapterResponse:
    """One model reply plus the token usage charged to the seat."""

    raw_text: str
    reasoning_text: str | None  # provider thinking output, kept out of parsing
    input_tokens: int
    output_tokens: int
    latency_ms: float
    model_id: str
    model_version: str


class ModelAdapter(ABC):
    @abstractmethod
    def query(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        timeout_s: float,
        context: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        """Send the decision transcript (system, decision prompt, tool turns)
        and return the model's reply.

        `context` carries seat_index and hand_number; gateways ignore it,
        mock strategies may use it.
        """


MockStrategy = Callable[[list[dict[str, str]], dict[str, Any]], str]

# Rough chars-per-token, used for mock truncation and usage counts
_CHARS_PER_TOKEN = 4


class MockAdapter(ModelAdapter):
    """Offline seat driven by a strategy from pokerwars.strategies.

    The strategy gets (messages, context) and returns the reply text. A
    strategy that raises becomes an "api_error" and a blank reply becomes an
    "empty_response", the same failures a gateway adapter reports. Replies
    longer than the output-token cap are cut, as a real model would be.
    """

    def __init__(self, model_id: str, strategy: MockStrategy):
        self._model_id = model_id
        self._strategy = strategy

    def query(
        self,
        messages: list[dict[str, str]],
        max_tokens: int,
        timeout_s: float,
        context: dict[str, Any] | None = None,
    ) -> AdapterResponse:
        start = time.monotonic()
        try:
            raw = self._strategy(messages, context or {})
        except AdapterError:
            raise
        except Exception as e:
            raise AdapterError("api_error", self._model_id, f"strategy failed: {e}") from e
        if not raw or not raw.strip():
            raise AdapterError("empty_response", self._model_id, "strategy returned no text")

        raw = raw[: max_tokens * _CHARS_PER_TOKEN]
        prompt_chars = sum(len(m.get("content", "")) for m in messages)

        return AdapterResponse(
            raw_text=raw,
            reasoning_text=None,
            input_tokens=prompt_chars // _CHARS_PER_TOKEN,
            output_tokens=max(1, len(raw) // _CHARS_PER_TOKEN),
            latency_ms=(time.monotonic() - start) * 1000,
            model_id=self._model_id,
            model_version=self._model_id,
        )
