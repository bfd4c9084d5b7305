"""Referee — per-seat decision fidelity tracking.

One Referee per run. Every decision is counted, and every way the pipeline
had to step in (agent fallback, illegal action repaired, amount clamped,
raise-cap override, injection flag) is tallied against the seat. The report
lives inside TournamentState so a resumed run keeps its counts.
"""

from __future__ import annotations

from collections import defaultdict
from enum import Enum


class ViolationKind(Enum):
    TIMEOUT = "timeout"
    MALFORMED_OUTPUT = "malformed_output"
    TOOL_LIMIT = "tool_limit"
    ADAPTER_ERROR = "adapter_error"
    EMPTY_RESPONSE = "empty_response"
    ILLEGAL_ACTION = "illegal_action"
    AMOUNT_CLAMPED = "amount_clamped"
    RAISE_CAP_OVERRIDE = "raise_cap_override"
    INJECTION_ATTEMPT = "injection_attempt"


# Kinds that mean the agent produced no usable decision at all
FALLBACK_KINDS = frozenset({
    ViolationKind.TIMEOUT,
    ViolationKind.MALFORMED_OUTPUT,
    ViolationKind.TOOL_LIMIT,
    ViolationKind.ADAPTER_ERROR,
    ViolationKind.EMPTY_RESPONSE,
})

_COUNTERS = ("decisions", "fallbacks", "total_violations") + tuple(k.value for k in ViolationKind)


class Referee:
    """Tallies decision outcomes per seat."""

    def __init__(self, report: dict | None = None) -> None:
        self._counts: dict[str, dict[str, int]] = defaultdict(
            lambda: dict.fromkeys(_COUNTERS, 0)
        )
        for seat_key, counts in (report or {}).items():
            restored = dict.fromkeys(_COUNTERS, 0)
            restored.update({k: v for k, v in counts.items() if k in restored})
            self._counts[seat_key] = restored

    def record_decision(self, seat_index: int) -> None:
        self._counts[str(seat_index)]["decisions"] += 1

    def record_violation(self, seat_index: int, kind: ViolationKind) -> None:
        counts = self._counts[str(seat_index)]
        counts[kind.value] += 1
        counts["total_violations"] += 1
        if kind in FALLBACK_KINDS:
            counts["fallbacks"] += 1

    def fallback_count(self, seat_index: int) -> int:
        return self._counts[str(seat_index)]["fallbacks"]

    def get_fidelity_report(self) -> dict[str, dict[str, int]]:
        return {seat: dict(counts) for seat, counts in sorted(self._counts.items())}
