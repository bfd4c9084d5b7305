"""Tournament data model.

Plain dataclasses with to_dict/from_dict for the JSON store. Seat-keyed
mappings are written with string keys (JSON objects) and converted back to
ints on load.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class Action(str, Enum):
    FOLD = "fold"
    CHECK = "check"
    CALL = "call"
    BET = "bet"
    RAISE = "raise"

    @property
    def is_aggressive(self) -> bool:
        return self in (Action.BET, Action.RAISE)


class TournamentStatus(str, Enum):
    WAITING = "waiting"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


# ------------------------------------------------------------------
# Durable tournament state
# ------------------------------------------------------------------

@dataclass
class BlindState:
    level: int
    small_blind: int
    big_blind: int
    hands_until_next: int


@dataclass
class SeatState:
    seat_index: int
    agent: str
    stack: int
    bet: int = 0
    eliminated: bool = False
    in_hand: bool = False


@dataclass
class TournamentState:
    """Single durable source of truth for a run."""

    run_id: str
    name: str
    status: TournamentStatus
    current_hand: int
    seats: list[SeatState]
    blinds: BlindState
    button: int | None = None
    winner: int | None = None
    started_at: str | None = None
    completed_at: str | None = None
    hand_in_progress: bool = False
    # Stacks as they stood when the in-progress hand was dealt
    checkpoint_stacks: dict[int, int] = field(default_factory=dict)
    fidelity: dict[str, dict] = field(default_factory=dict)

    def seat(self, seat_index: int) -> SeatState:
        for s in self.seats:
            if s.seat_index == seat_index:
                return s
        raise KeyError(f"No seat {seat_index} in run {self.run_id}")

    def active_seats(self) -> list[SeatState]:
        """Non-eliminated seats in seat order."""
        return [s for s in self.seats if not s.eliminated]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["status"] = self.status.value
        d["checkpoint_stacks"] = {str(k): v for k, v in self.checkpoint_stacks.items()}
        return d

    @classmethod
    def from_dict(cls, d: dict) -> TournamentState:
        return cls(
            run_id=d["run_id"],
            name=d.get("name", "poker-wars"),
            status=TournamentStatus(d["status"]),
            current_hand=d["current_hand"],
            seats=[SeatState(**s) for s in d["seats"]],
            blinds=BlindState(**d["blinds"]),
            button=d.get("button"),
            winner=d.get("winner"),
            started_at=d.get("started_at"),
            completed_at=d.get("completed_at"),
            hand_in_progress=d.get("hand_in_progress", False),
            checkpoint_stacks={int(k): v for k, v in d.get("checkpoint_stacks", {}).items()},
            fidelity=d.get("fidelity", {}),
        )


# ------------------------------------------------------------------
# Decisions
# ------------------------------------------------------------------

@dataclass(frozen=True)
class LegalActions:
    """Actions open to the seat to act, with bet-to bounds for bet/raise."""

    actions: tuple[Action, ...]
    min_amount: int | None = None
    max_amount: int | None = None

    def allows(self, action: Action) -> bool:
        return action in self.actions

    def to_dict(self) -> dict:
        return {
            "actions": [a.value for a in self.actions],
            "min_amount": self.min_amount,
            "max_amount": self.max_amount,
        }


@dataclass(frozen=True)
class Decision:
    action: Action
    amount: int | None = None
    reasoning: str = ""

    def to_dict(self) -> dict:
        return {"action": self.action.value, "amount": self.amount, "reasoning": self.reasoning}


@dataclass(frozen=True)
class OpponentInfo:
    seat_index: int
    agent: str
    stack: int
    bet: int
    active: bool


@dataclass(frozen=True)
class DecisionContext:
    """Everything an agent sees for one action. Never persisted."""

    hand_number: int
    seat_index: int
    agent: str
    hole_cards: tuple[str, ...]
    community_cards: tuple[str, ...]
    stack: int
    bet: int
    pot: int
    to_call: int
    legal: LegalActions
    round: str
    position: int
    seat_count: int
    button: int
    small_blind: int
    big_blind: int
    opponents: tuple[OpponentInfo, ...]

    def to_dict(self) -> dict:
        d = asdict(self)
        d["legal"] = self.legal.to_dict()
        d["hole_cards"] = list(self.hole_cards)
        d["community_cards"] = list(self.community_cards)
        d["opponents"] = [asdict(o) for o in self.opponents]
        return d


# ------------------------------------------------------------------
# Hand history
# ------------------------------------------------------------------

@dataclass
class ActionRecord:
    seat_index: int
    action: str
    amount: int | None
    round: str
    latency_ms: float
    reasoning: str = ""


@dataclass
class PotInfo:
    size: int
    eligible: list[int]


@dataclass
class HandSeatInfo:
    seat_index: int
    agent: str
    starting_stack: int
    ending_stack: int
    hole_cards: list[str] | None  # None once folded before reveal


@dataclass
class HandResult:
    seat_index: int
    amount_won: int
    hand_rank: str
    rank_value: int
    cards: list[str] = field(default_factory=list)
    description: str = ""


@dataclass
class HandRecord:
    hand_number: int
    small_blind: int
    big_blind: int
    button: int
    seats: list[HandSeatInfo]
    community_cards: list[str]
    actions: list[ActionRecord]
    pots: list[PotInfo]
    winners: list[HandResult]
    timestamp: str = field(default_factory=utc_now)
    warnings: list[str] = field(default_factory=list)

    @property
    def pot_total(self) -> int:
        return sum(p.size for p in self.pots)

    def seat(self, seat_index: int) -> HandSeatInfo | None:
        for s in self.seats:
            if s.seat_index == seat_index:
                return s
        return None

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, d: dict[str, Any]) -> HandRecord:
        return cls(
            hand_number=d["hand_number"],
            small_blind=d["small_blind"],
            big_blind=d["big_blind"],
            button=d["button"],
            seats=[HandSeatInfo(**s) for s in d["seats"]],
            community_cards=list(d.get("community_cards", [])),
            actions=[ActionRecord(**a) for a in d.get("actions", [])],
            pots=[PotInfo(**p) for p in d.get("pots", [])],
            winners=[HandResult(**w) for w in d.get("winners", [])],
            timestamp=d.get("timestamp", ""),
            warnings=list(d.get("warnings", [])),
        )
