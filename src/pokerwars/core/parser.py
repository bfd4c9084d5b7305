"""DecisionParser — extract agent replies from raw model text.

A reply is either a poker decision ({"action", "amount", "reasoning"}) or a
query-tool request ({"tool", "arguments"}). The last JSON object in the
text that validates against either schema wins, so a model that changes
its mind mid-reply ("wait, actually...") gets its final answer used.
"""

import json
import re
from dataclasses import dataclass

import jsonschema

from pokerwars.core.sanitizer import detect_injection
from pokerwars.core.schemas import decision_schema, tool_call_schema

# Outermost { ... } with up to one level of nesting
_JSON_OBJECT_RE = re.compile(r"\{[^{}]*(?:\{[^{}]*\}[^{}]*)*\}")
_FENCE_RE = re.compile(r"```(?:json)?", re.IGNORECASE)

KIND_DECISION = "decision"
KIND_TOOL = "tool"


@dataclass(frozen=True)
class ParseResult:
    """Result of parsing one model reply."""

    success: bool
    kind: str | None  # "decision" or "tool"
    payload: dict | None
    raw_json: str | None
    error: str | None
    injection_detected: bool


class DecisionParser:
    """Find the last schema-valid decision or tool request in a reply."""

    def __init__(self, allow_tools: bool = True):
        self._allow_tools = allow_tools

    def parse(self, raw_text: str) -> ParseResult:
        injection = detect_injection(raw_text)
        candidates = _JSON_OBJECT_RE.findall(_FENCE_RE.sub("", raw_text))

        if not candidates:
            return ParseResult(
                success=False,
                kind=None,
                payload=None,
                raw_json=None,
                error="No JSON object found in output",
                injection_detected=injection,
            )

        last_error = None
        best = None  # last valid (kind, payload, raw_json)

        for candidate in candidates:
            try:
                parsed = json.loads(candidate)
            except json.JSONDecodeError as e:
                last_error = f"JSON parse error: {e}"
                continue

            if not isinstance(parsed, dict):
                last_error = "JSON value is not an object"
                continue

            if isinstance(parsed.get("action"), str):
                parsed["action"] = parsed["action"].strip().lower()

            kind, error = self._classify(parsed)
            if kind is None:
                last_error = error
                continue
            best = (kind, parsed, candidate)

        if best:
            return ParseResult(
                success=True,
                kind=best[0],
                payload=best[1],
                raw_json=best[2],
                error=None,
                injection_detected=injection,
            )

        return ParseResult(
            success=False,
            kind=None,
            payload=None,
            raw_json=candidates[-1],
            error=last_error,
            injection_detected=injection,
        )

    def _classify(self, parsed: dict) -> tuple[str | None, str | None]:
        if "tool" in parsed:
            if not self._allow_tools:
                return None, "Tool requests are not allowed on the final step"
            try:
                jsonschema.validate(parsed, tool_call_schema())
            except jsonschema.ValidationError as e:
                return None, f"Schema validation: {e.message}"
            return KIND_TOOL, None
        try:
            jsonschema.validate(parsed, decision_schema())
        except jsonschema.ValidationError as e:
            return None, f"Schema validation: {e.message}"
        return KIND_DECISION, None
