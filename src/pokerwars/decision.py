"""Decision pipeline: agent call, legality repair, raise-cap override.

Nothing an agent returns can reach the engine unchecked. The agent call
resolves to exactly one of DecisionOk or AgentFailure; a failure becomes a
deterministic fallback (check if legal, otherwise fold). Every decision is
logged, whichever path produced it.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from pokerwars.agent import AgentError, AgentReply, LLMAgent, QueryTools
from pokerwars.core.referee import Referee, ViolationKind
from pokerwars.core.sanitizer import bound_rationale
from pokerwars.core.telemetry import DecisionEntry, EventLogger
from pokerwars.models import Action, ActionRecord, Decision, DecisionContext, LegalActions
from pokerwars.prompts import build_decision_prompt, build_system_prompt

logger = logging.getLogger(__name__)

ToolsFactory = Callable[[DecisionContext, list[ActionRecord]], QueryTools]

_FAILURE_KINDS = {
    "timeout": ViolationKind.TIMEOUT,
    "malformed_output": ViolationKind.MALFORMED_OUTPUT,
    "tool_limit": ViolationKind.TOOL_LIMIT,
    "empty_response": ViolationKind.EMPTY_RESPONSE,
}


@dataclass(frozen=True)
class DecisionOk:
    reply: AgentReply


@dataclass(frozen=True)
class AgentFailure:
    reason: str
    details: str = ""
    tool_calls: list[dict] = field(default_factory=list)
    raw_output: str = ""


@dataclass(frozen=True)
class Repair:
    """A legal decision plus what had to change to get there."""

    decision: Decision
    notes: list[str]
    violations: list[ViolationKind]


# ------------------------------------------------------------------
# Pure rules
# ------------------------------------------------------------------

def repair_decision(decision: Decision, legal: LegalActions) -> Repair:
    """Turn any proposal into an engine-submittable decision."""
    notes: list[str] = []
    violations: list[ViolationKind] = []
    action, amount = decision.action, decision.amount

    if not legal.allows(action):
        substitute = legal.actions[0] if legal.actions else Action.FOLD
        notes.append(f"Action {action.value} was invalid, using {substitute.value}")
        violations.append(ViolationKind.ILLEGAL_ACTION)
        action = substitute
        amount = legal.min_amount if action.is_aggressive else None

    if not action.is_aggressive:
        return Repair(Decision(action, None, decision.reasoning), notes, violations)

    if amount is None:
        if legal.min_amount is not None:
            notes.append(f"No amount given, using minimum {legal.min_amount}")
            violations.append(ViolationKind.AMOUNT_CLAMPED)
        amount = legal.min_amount
    elif legal.min_amount is not None and amount < legal.min_amount:
        notes.append(f"Amount {amount} below minimum, clamped to {legal.min_amount}")
        violations.append(ViolationKind.AMOUNT_CLAMPED)
        amount = legal.min_amount
    elif legal.max_amount is not None and amount > legal.max_amount:
        notes.append(f"Amount {amount} above maximum, clamped to {legal.max_amount} (all-in)")
        violations.append(ViolationKind.AMOUNT_CLAMPED)
        amount = legal.max_amount

    return Repair(Decision(action, amount, decision.reasoning), notes, violations)


def validate_decision(decision: Decision, legal: LegalActions) -> Decision:
    """Always-legal version of `decision`, repair notes appended to the reasoning."""
    repair = repair_decision(decision, legal)
    if not repair.notes:
        return repair.decision
    return Decision(
        repair.decision.action,
        repair.decision.amount,
        bound_rationale(decision.reasoning, repair.notes),
    )


def enforce_raise_cap(
    decision: Decision, legal: LegalActions, raise_cap_reached: bool
) -> tuple[Decision, str | None]:
    """Downgrade a bet/raise to call (or check) once the round's cap is hit.

    Returns the decision and the note explaining the override, if any.
    """
    if not raise_cap_reached or not decision.action.is_aggressive:
        return decision, None
    if legal.allows(Action.CALL):
        forced = Action.CALL
    elif legal.allows(Action.CHECK):
        forced = Action.CHECK
    else:
        forced = Action.FOLD
    note = f"Raise cap reached, {decision.action.value} changed to {forced.value}"
    return Decision(forced, None, decision.reasoning), note


def fallback_decision(failure: AgentFailure, legal: LegalActions) -> Decision:
    """Safe action after an agent failure: check if legal, otherwise fold."""
    action = Action.CHECK if legal.allows(Action.CHECK) else Action.FOLD
    detail = f": {failure.details}" if failure.details else ""
    return Decision(
        action,
        None,
        bound_rationale(
            f"Agent error ({failure.reason}){detail}",
            [f"fallback: {action.value}"],
        ),
    )


# ------------------------------------------------------------------
# Pipeline
# ------------------------------------------------------------------

class DecisionPipeline:
    """Solicits, validates and logs one decision per call."""

    def __init__(
        self,
        agents: dict[int, LLMAgent],
        event_logger: EventLogger,
        referee: Referee,
        raise_cap: int,
        timeout_s: float,
        tools_factory: ToolsFactory | None = None,
    ):
        self._agents = agents
        self._events = event_logger
        self._referee = referee
        self._raise_cap = raise_cap
        self._timeout_s = timeout_s
        self._tools_factory = tools_factory

    async def decide(
        self,
        context: DecisionContext,
        history: list[ActionRecord],
        raise_cap_reached: bool,
    ) -> Decision:
        start = time.monotonic()
        agent = self._agents[context.seat_index]
        system_prompt = build_system_prompt(
            context, self._raise_cap, raise_cap_reached,
            tools_enabled=self._tools_factory is not None,
        )
        decision_prompt = build_decision_prompt(context)
        tools = self._tools_factory(context, history) if self._tools_factory else None

        outcome = await self._ask(agent, system_prompt, decision_prompt, tools, context)

        seat = context.seat_index
        self._referee.record_decision(seat)
        notes: list[str] = []
        proposed = None

        if isinstance(outcome, DecisionOk):
            reply = outcome.reply
            proposed = reply.decision
            repair = repair_decision(proposed, context.legal)
            notes.extend(repair.notes)
            for kind in repair.violations:
                self._referee.record_violation(seat, kind)
            decision, cap_note = enforce_raise_cap(repair.decision, context.legal, raise_cap_reached)
            if cap_note:
                notes.append(cap_note)
                self._referee.record_violation(seat, ViolationKind.RAISE_CAP_OVERRIDE)
            if reply.injection_detected:
                self._referee.record_violation(seat, ViolationKind.INJECTION_ATTEMPT)
            final = Decision(decision.action, decision.amount, bound_rationale(decision.reasoning, notes))
            tool_calls, raw_output = reply.tool_calls, reply.raw_output
            failure_reason = None
        else:
            logger.warning(
                "Seat %d agent failed (%s: %s), falling back",
                seat, outcome.reason, outcome.details,
            )
            self._referee.record_violation(
                seat, _FAILURE_KINDS.get(outcome.reason, ViolationKind.ADAPTER_ERROR)
            )
            final = fallback_decision(outcome, context.legal)
            tool_calls, raw_output = outcome.tool_calls, outcome.raw_output
            failure_reason = outcome.reason
            reply = None

        duration_ms = (time.monotonic() - start) * 1000
        self._events.log(DecisionEntry(
            hand_number=context.hand_number,
            seat_index=seat,
            agent=context.agent,
            model_id=reply.model_id if reply else agent.model_id,
            round=context.round,
            position=context.position,
            hole_cards=list(context.hole_cards),
            community_cards=list(context.community_cards),
            pot=context.pot,
            to_call=context.to_call,
            stack=context.stack,
            legal_actions=context.legal.to_dict(),
            prompt=decision_prompt,
            tool_calls=tool_calls,
            raw_output=raw_output,
            proposed=proposed.to_dict() if proposed else None,
            decision=final.to_dict(),
            outcome="ok" if failure_reason is None else "fallback",
            failure_reason=failure_reason,
            notes=notes,
            raise_cap_reached=raise_cap_reached,
            input_tokens=reply.input_tokens if reply else 0,
            output_tokens=reply.output_tokens if reply else 0,
            duration_ms=round(duration_ms, 1),
            injection_detected=bool(reply and reply.injection_detected),
        ))
        return final

    async def _ask(
        self,
        agent: LLMAgent,
        system_prompt: str,
        decision_prompt: str,
        tools: QueryTools | None,
        context: DecisionContext,
    ) -> DecisionOk | AgentFailure:
        meta = {"seat_index": context.seat_index, "hand_number": context.hand_number}
        try:
            reply = await asyncio.wait_for(
                asyncio.to_thread(agent.decide, system_prompt, decision_prompt, tools, meta),
                timeout=self._timeout_s,
            )
        except asyncio.TimeoutError:
            calls = list(tools.calls) if tools else []
            return AgentFailure("timeout", f"no decision within {self._timeout_s}s", calls)
        except AgentError as e:
            return AgentFailure(e.kind, e.details, e.tool_calls, e.raw_output)
        except Exception as e:
            logger.exception("Unexpected agent error for seat %d", context.seat_index)
            return AgentFailure("agent_exception", repr(e))
        return DecisionOk(reply)
