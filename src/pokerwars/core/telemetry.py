"""EventLogger — the run's append-only JSONL event log.

One logger per run, writing through RunStorage to runs/<run_id>/logs.jsonl.
Entry types: decision, hand_start, hand_end, tournament_end. Every line
carries the schema version, run id, entry type and a UTC timestamp.
Observers (SSE stream, terminal spectator) tail this file.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import pokerwars

if TYPE_CHECKING:
    from pokerwars.storage import RunStorage

SCHEMA_VERSION = "1.0.0"


@dataclass
class DecisionEntry:
    """One seat's decision, successful or not."""

    hand_number: int
    seat_index: int
    agent: str
    model_id: str
    round: str
    position: int
    hole_cards: list[str]
    community_cards: list[str]
    pot: int
    to_call: int
    stack: int
    legal_actions: dict
    prompt: str
    tool_calls: list[dict]
    raw_output: str
    proposed: dict | None
    decision: dict
    outcome: str  # "ok" or "fallback"
    failure_reason: str | None
    notes: list[str]
    raise_cap_reached: bool
    input_tokens: int
    output_tokens: int
    duration_ms: float
    injection_detected: bool = False

    entry_type = "decision"


@dataclass
class HandStartEntry:
    hand_number: int
    small_blind: int
    big_blind: int
    button: int
    seats: list[dict]

    entry_type = "hand_start"


@dataclass
class HandEndEntry:
    hand_number: int
    winners: list[dict]
    pot_total: int
    stacks: dict[str, int] = field(default_factory=dict)
    eliminated: list[int] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    entry_type = "hand_end"


@dataclass
class TournamentEndEntry:
    winner: int | None
    winner_agent: str | None
    hands_played: int
    fidelity_report: dict = field(default_factory=dict)

    entry_type = "tournament_end"


class EventLogger:
    """Writes typed entries to a run's event log."""

    def __init__(self, storage: RunStorage, run_id: str):
        self._storage = storage
        self._run_id = run_id

    @property
    def run_id(self) -> str:
        return self._run_id

    def log(self, entry: Any) -> dict:
        record = {
            "type": entry.entry_type,
            "schema_version": SCHEMA_VERSION,
            "engine_version": pokerwars.__version__,
            "run_id": self._run_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        record.update(asdict(entry))
        self._storage.append_log(self._run_id, record)
        return record
