"""LLM poker agent with read-only query tools.

The agent talks to a ModelAdapter in plain text. Each reply is either a
decision JSON or a tool request ({"tool": ..., "arguments": ...}); tool
results are fed back as the next user message. At most max_tool_steps
model calls are made per decision, and the last one must decide.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import Any

from pokerwars.config import AgentConfig, ComputeCaps
from pokerwars.core.adapter import AdapterError, MockAdapter, ModelAdapter
from pokerwars.core.anthropic_adapter import AnthropicAdapter
from pokerwars.core.openai_adapter import OpenAIAdapter
from pokerwars.core.openrouter_adapter import OpenRouterAdapter
from pokerwars.core.parser import KIND_TOOL, DecisionParser
from pokerwars.models import Action, ActionRecord, Decision, TournamentState
from pokerwars.prompts import FINAL_STEP_NOTICE, build_tool_result_message
from pokerwars.strategies import STRATEGIES

logger = logging.getLogger(__name__)

MAX_HISTORY_HANDS = 20
DEFAULT_HISTORY_HANDS = 5


class AgentError(Exception):
    """The agent could not produce a decision."""

    def __init__(
        self,
        kind: str,
        details: str = "",
        tool_calls: list[dict] | None = None,
        raw_output: str = "",
    ):
        self.kind = kind  # "malformed_output", "tool_limit" or an adapter error_type
        self.details = details
        self.tool_calls = tool_calls or []
        self.raw_output = raw_output
        super().__init__(f"{kind}: {details}")


@dataclass(frozen=True)
class AgentReply:
    decision: Decision
    tool_calls: list[dict]
    raw_output: str
    model_id: str
    input_tokens: int
    output_tokens: int
    injection_detected: bool = False


@dataclass
class QueryTools:
    """Read-only views of the run, offered to the agent mid-decision.

    Every invocation is recorded in `calls` as {name, input, output}.
    """

    storage: Any  # RunStorage
    run_id: str
    seat_index: int
    state: TournamentState
    hand_actions: list[ActionRecord]
    calls: list[dict] = field(default_factory=list)

    def invoke(self, name: str, arguments: dict | None = None) -> Any:
        arguments = dict(arguments or {})
        if name == "get_previous_hands":
            limit = arguments.get("limit", DEFAULT_HISTORY_HANDS)
            if not isinstance(limit, int) or isinstance(limit, bool):
                limit = DEFAULT_HISTORY_HANDS
            arguments = {"limit": max(1, min(MAX_HISTORY_HANDS, limit))}
            output = self.get_previous_hands(**arguments)
        elif name == "get_standings":
            arguments = {}
            output = self.get_standings()
        elif name == "get_my_hand_actions":
            arguments = {}
            output = self.get_my_hand_actions()
        else:
            output = {"error": f"unknown tool {name!r}"}
        self.calls.append({"name": name, "input": arguments, "output": output})
        return output

    def get_previous_hands(self, limit: int = DEFAULT_HISTORY_HANDS) -> list[dict]:
        hands = self.storage.recent_hands(self.run_id, limit)
        return [
            {
                "hand_number": h.hand_number,
                "winners": [{"seat_index": w.seat_index, "amount": w.amount_won} for w in h.winners],
                "showdown_hands": [
                    {"seat_index": w.seat_index, "hand_rank": w.hand_rank} for w in h.winners
                ],
                "significant_actions": [
                    {"seat_index": a.seat_index, "action": a.action, "amount": a.amount, "round": a.round}
                    for a in h.actions if a.action in (Action.BET.value, Action.RAISE.value)
                ],
            }
            for h in hands
        ]

    def get_standings(self) -> list[dict]:
        seats = sorted(self.state.active_seats(), key=lambda s: s.stack, reverse=True)
        return [
            {"rank": i, "seat_index": s.seat_index, "stack": s.stack, "is_me": s.seat_index == self.seat_index}
            for i, s in enumerate(seats, 1)
        ]

    def get_my_hand_actions(self) -> list[dict]:
        return [
            {"action": a.action, "amount": a.amount, "round": a.round}
            for a in self.hand_actions if a.seat_index == self.seat_index
        ]


class LLMAgent:
    """Drives one model through the tool loop to a decision."""

    def __init__(self, adapter: ModelAdapter, model_id: str, caps: ComputeCaps):
        self._adapter = adapter
        self._model_id = model_id
        self._caps = caps
        self._parser = DecisionParser()

    @property
    def model_id(self) -> str:
        return self._model_id

    def decide(
        self,
        system_prompt: str,
        decision_prompt: str,
        tools: QueryTools | None = None,
        context: dict[str, Any] | None = None,
    ) -> AgentReply:
        messages = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": decision_prompt},
        ]
        input_tokens = output_tokens = 0
        injection = False
        trace = tools.calls if tools is not None else []
        steps = max(1, self._caps.max_tool_steps)

        for step in range(steps):
            final = step == steps - 1
            if final and step > 0:
                messages.append({"role": "user", "content": FINAL_STEP_NOTICE})
            try:
                response = self._adapter.query(
                    messages,
                    max_tokens=self._caps.max_output_tokens,
                    timeout_s=self._caps.timeout_s,
                    context=context,
                )
            except AdapterError as e:
                raise AgentError(e.error_type, e.details, list(trace)) from e

            input_tokens += response.input_tokens
            output_tokens += response.output_tokens
            result = self._parser.parse(response.raw_text)
            injection = injection or result.injection_detected

            if not result.success:
                raise AgentError("malformed_output", result.error or "", list(trace), response.raw_text)

            if result.kind == KIND_TOOL:
                if tools is None or final:
                    raise AgentError(
                        "tool_limit", f"tool request on final step ({steps} allowed)",
                        list(trace), response.raw_text,
                    )
                output = tools.invoke(result.payload["tool"], result.payload.get("arguments"))
                messages.append({"role": "assistant", "content": response.raw_text})
                messages.append({
                    "role": "user",
                    "content": build_tool_result_message(result.payload["tool"], output),
                })
                continue

            payload = result.payload
            amount = payload.get("amount")
            return AgentReply(
                decision=Decision(
                    action=Action(payload["action"]),
                    amount=int(amount) if amount is not None else None,
                    reasoning=payload.get("reasoning") or "",
                ),
                tool_calls=list(trace),
                raw_output=response.raw_text,
                model_id=response.model_version or self._model_id,
                input_tokens=input_tokens,
                output_tokens=output_tokens,
                injection_detected=injection,
            )

        raise AgentError("tool_limit", f"no decision after {steps} steps", list(trace))


# ------------------------------------------------------------------
# Factory
# ------------------------------------------------------------------

def build_adapter(agent: AgentConfig) -> ModelAdapter:
    """Build the adapter for an agent config."""
    if agent.provider == "mock":
        strategy_fn = STRATEGIES.get(agent.strategy or "")
        if strategy_fn is None:
            raise ValueError(
                f"Unknown mock strategy: {agent.strategy!r}. "
                f"Available: {list(STRATEGIES)}"
            )
        return MockAdapter(model_id=agent.name, strategy=strategy_fn)

    if agent.provider not in ("openai", "anthropic", "openrouter"):
        raise ValueError(f"Unsupported provider: {agent.provider!r}")

    api_key = os.environ.get(agent.api_key_env or "")
    if not api_key:
        raise ValueError(
            f"API key env var {agent.api_key_env!r} not set for agent {agent.name!r}"
        )
    if agent.provider == "openai":
        return OpenAIAdapter(
            model_id=agent.model_id, api_key=api_key,
            base_url=agent.base_url, temperature=agent.temperature,
        )
    if agent.provider == "anthropic":
        return AnthropicAdapter(
            model_id=agent.model_id, api_key=api_key, temperature=agent.temperature,
        )
    return OpenRouterAdapter(
        model_id=agent.model_id, api_key=api_key, temperature=agent.temperature,
        site_url=agent.site_url, app_name=agent.app_name, base_url=agent.base_url,
    )


def build_agent(agent: AgentConfig, caps: ComputeCaps) -> LLMAgent:
    return LLMAgent(build_adapter(agent), agent.model_id or agent.name, caps)
