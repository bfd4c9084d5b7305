"""Table snapshots and decision contexts.

TableSnapshot is everything the conductor may need from the engine, read in
one go while the engine still answers. Decision contexts are derived from a
snapshot without touching the engine again.
"""

from __future__ import annotations

from dataclasses import dataclass

from pokerwars.holdem.table import Pot, RulesEngine, SeatChips
from pokerwars.models import DecisionContext, LegalActions, OpponentInfo


@dataclass
class TableSnapshot:
    hand_number: int
    button: int
    round: str
    community_cards: list[str]
    hole_cards: dict[int, list[str]]
    chips: dict[int, SeatChips]
    pots: list[Pot]
    hand_players: list[int]
    to_act: int | None = None
    legal: LegalActions | None = None
    captured_at: str = ""

    @classmethod
    def capture(cls, engine: RulesEngine, hand_number: int, label: str = "") -> TableSnapshot:
        """Read every transition-gated fact from the engine.

        Raises whatever the engine raises; callers decide how to degrade.
        """
        to_act = legal = None
        if engine.is_betting_round_in_progress():
            to_act = engine.player_to_act()
            legal = engine.legal_actions()
        return cls(
            hand_number=hand_number,
            button=engine.button(),
            round=engine.round_of_betting(),
            community_cards=engine.community_cards(),
            hole_cards=engine.hole_cards(),
            chips=engine.seats(),
            pots=[Pot(p.size, list(p.eligible)) for p in engine.pots()],
            hand_players=list(engine.hand_players()),
            to_act=to_act,
            legal=legal,
            captured_at=label,
        )

    @property
    def pot_total(self) -> int:
        return sum(p.size for p in self.pots)

    def max_bet(self) -> int:
        return max((self.chips[s].bet for s in self.hand_players if s in self.chips), default=0)


def build_decision_context(
    snapshot: TableSnapshot,
    seat_index: int,
    legal: LegalActions,
    seated: dict[int, str],
    small_blind: int,
    big_blind: int,
) -> DecisionContext:
    """Situational view for one acting seat.

    `seated` maps every non-eliminated seat to its agent. Position is the
    seat's clockwise offset from the button among seated seats.
    """
    if seat_index not in seated or seat_index not in snapshot.chips:
        raise ValueError(f"Seat {seat_index} is not seated at the table")

    order = sorted(seated)
    button = snapshot.button if snapshot.button in seated else order[0]
    position = (order.index(seat_index) - order.index(button)) % len(order)
    own = snapshot.chips[seat_index]

    opponents = tuple(
        OpponentInfo(
            seat_index=s,
            agent=seated[s],
            stack=snapshot.chips[s].stack if s in snapshot.chips else 0,
            bet=snapshot.chips[s].bet if s in snapshot.chips else 0,
            active=s in snapshot.hand_players,
        )
        for s in order if s != seat_index
    )

    return DecisionContext(
        hand_number=snapshot.hand_number,
        seat_index=seat_index,
        agent=seated[seat_index],
        hole_cards=tuple(snapshot.hole_cards.get(seat_index, [])),
        community_cards=tuple(snapshot.community_cards),
        stack=own.stack,
        bet=own.bet,
        pot=snapshot.pot_total,
        to_call=max(0, snapshot.max_bet() - own.bet),
        legal=legal,
        round=snapshot.round,
        position=position,
        seat_count=len(order),
        button=snapshot.button,
        small_blind=small_blind,
        big_blind=big_blind,
        opponents=opponents,
    )
