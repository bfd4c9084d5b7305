"""No-Limit Texas Hold'em table.

The tournament drives hands through the RulesEngine interface. Several reads
are only valid inside a window: pots, players, button, cards, round and the
seat to act can be read while a hand is in progress, and showdown winners
only between showdown() and the next start_hand(). Reading outside the
window raises TableStateError, so callers must capture what they need
before triggering a transition.

Amounts are "bet-to" totals for the current betting round.
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum

from pokerwars.holdem.evaluator import (
    HAND_NAMES,
    RANKS,
    SUITS,
    Card,
    HandRank,
    describe,
    evaluate_best,
    hand_category,
    parse_card,
)
from pokerwars.models import Action, LegalActions

__all__ = [
    "RulesEngine", "HoldemTable", "TableStateError", "SeatChips", "Pot",
    "ShowdownWinner", "Street", "build_side_pots", "split_pot", "seats_from_button",
]

FULL_DECK = [f"{r}{s}" for r in RANKS for s in SUITS]
MAX_SEATS = 10


class TableStateError(RuntimeError):
    """Engine query outside its readable window, or an illegal engine call."""


class Street(str, Enum):
    PREFLOP = "preflop"
    FLOP = "flop"
    TURN = "turn"
    RIVER = "river"


_NEXT_STREET = {Street.PREFLOP: Street.FLOP, Street.FLOP: Street.TURN, Street.TURN: Street.RIVER}


@dataclass(frozen=True)
class SeatChips:
    stack: int  # chips behind
    bet: int  # committed this betting round
    total_chips: int


@dataclass
class Pot:
    size: int
    eligible: list[int] = field(default_factory=list)


@dataclass(frozen=True)
class ShowdownWinner:
    seat_index: int
    rank: HandRank
    rank_name: str
    score: int
    cards: tuple[str, ...]
    description: str


# ------------------------------------------------------------------
# Pot arithmetic
# ------------------------------------------------------------------

def build_side_pots(invested: dict[int, int], folded: set[int]) -> list[Pot]:
    """Layer pots from per-seat investment.

    Each distinct investment level forms a layer that every seat investing at
    least that much contributes to; folded seats contribute but are not
    eligible. Adjacent layers with the same eligible set are merged, and a
    layer nobody can win (all contributors folded) joins the pot below it.
    """
    levels = sorted({v for v in invested.values() if v > 0})
    pots: list[Pot] = []
    prev = 0
    for level in levels:
        contributors = [s for s, v in invested.items() if v >= level]
        amount = (level - prev) * len(contributors)
        eligible = sorted(s for s in contributors if s not in folded)
        prev = level
        if pots and (not eligible or pots[-1].eligible == eligible):
            pots[-1].size += amount
        else:
            pots.append(Pot(size=amount, eligible=eligible))
    return pots


def seats_from_button(seats: list[int], button: int) -> list[int]:
    """Seats in clockwise order starting left of the button."""
    ordered = sorted(seats)
    after = [s for s in ordered if s > button]
    return after + [s for s in ordered if s <= button]


def split_pot(amount: int, winners: list[int], button: int) -> dict[int, int]:
    """Split a pot evenly; odd chips go one each, clockwise from the button."""
    if not winners:
        return {}
    order = seats_from_button(winners, button)
    share, remainder = divmod(amount, len(order))
    return {seat: share + (1 if i < remainder else 0) for i, seat in enumerate(order)}


# ------------------------------------------------------------------
# Engine interface
# ------------------------------------------------------------------

class RulesEngine(ABC):
    """Betting and showdown state machine consumed by the hand conductor."""

    @abstractmethod
    def sit_down(self, seat_index: int, buy_in: int) -> None: ...

    @abstractmethod
    def stand_up(self, seat_index: int) -> None: ...

    @abstractmethod
    def set_forced_bets(self, small_blind: int, big_blind: int) -> None: ...

    @abstractmethod
    def start_hand(self, button: int | None = None, deck_seed: int | None = None) -> None: ...

    @abstractmethod
    def is_hand_in_progress(self) -> bool: ...

    @abstractmethod
    def is_betting_round_in_progress(self) -> bool: ...

    @abstractmethod
    def are_betting_rounds_completed(self) -> bool: ...

    @abstractmethod
    def player_to_act(self) -> int: ...

    @abstractmethod
    def legal_actions(self) -> LegalActions: ...

    @abstractmethod
    def action_taken(self, action: Action, amount: int | None = None) -> None: ...

    @abstractmethod
    def end_betting_round(self) -> None: ...

    @abstractmethod
    def showdown(self) -> None: ...

    @abstractmethod
    def seats(self) -> dict[int, SeatChips]: ...

    @abstractmethod
    def hole_cards(self) -> dict[int, list[str]]: ...

    @abstractmethod
    def community_cards(self) -> list[str]: ...

    @abstractmethod
    def pots(self) -> list[Pot]: ...

    @abstractmethod
    def hand_players(self) -> list[int]:
        """Seats dealt into the hand that have not folded."""

    @abstractmethod
    def button(self) -> int: ...

    @abstractmethod
    def round_of_betting(self) -> str: ...

    @abstractmethod
    def winners(self) -> list[list[ShowdownWinner]]:
        """Showdown winners per pot, aligned with the pots at showdown."""


# ------------------------------------------------------------------
# No-Limit implementation
# ------------------------------------------------------------------

class HoldemTable(RulesEngine):
    """No-Limit Hold'em for 2-10 seats."""

    def __init__(self, num_seats: int = MAX_SEATS) -> None:
        self._num_seats = num_seats
        self._stacks: dict[int, int] = {}
        self._small_blind = 0
        self._big_blind = 0
        self._last_button: int | None = None

        # Per-hand state
        self._hand_in_progress = False
        self._button: int | None = None
        self._dealt: list[int] = []
        self._folded: set[int] = set()
        self._all_in: set[int] = set()
        self._hole: dict[int, list[str]] = {}
        self._community: list[str] = []
        self._deck: list[str] = []
        self._street = Street.PREFLOP
        self._bets: dict[int, int] = {}
        self._invested: dict[int, int] = {}
        self._acted: set[int] = set()
        self._to_act: int | None = None
        self._round_in_progress = False
        self._rounds_completed = False
        self._last_raise = 0
        self._winners: list[list[ShowdownWinner]] | None = None

    # -- seats ----------------------------------------------------------

    def sit_down(self, seat_index: int, buy_in: int) -> None:
        if not 0 <= seat_index < self._num_seats:
            raise TableStateError(f"Seat {seat_index} out of range")
        if seat_index in self._stacks:
            raise TableStateError(f"Seat {seat_index} is taken")
        if buy_in <= 0:
            raise TableStateError("Buy-in must be positive")
        self._stacks[seat_index] = buy_in

    def stand_up(self, seat_index: int) -> None:
        if self._hand_in_progress:
            raise TableStateError("Cannot stand up during a hand")
        if seat_index not in self._stacks:
            raise TableStateError(f"Seat {seat_index} is empty")
        del self._stacks[seat_index]

    def set_forced_bets(self, small_blind: int, big_blind: int) -> None:
        if self._hand_in_progress:
            raise TableStateError("Cannot change blinds during a hand")
        self._small_blind = small_blind
        self._big_blind = big_blind

    def seats(self) -> dict[int, SeatChips]:
        return {
            s: SeatChips(stack=stack, bet=self._bets.get(s, 0),
                         total_chips=stack + self._bets.get(s, 0))
            for s, stack in sorted(self._stacks.items())
        }

    # -- hand lifecycle -------------------------------------------------

    def start_hand(self, button: int | None = None, deck_seed: int | None = None) -> None:
        if self._hand_in_progress:
            raise TableStateError("A hand is already in progress")
        if self._big_blind <= 0:
            raise TableStateError("Forced bets are not set")
        players = sorted(s for s, stack in self._stacks.items() if stack > 0)
        if len(players) < 2:
            raise TableStateError("Need at least two funded seats to deal")

        if button is None:
            button = (players[0] if self._last_button is None
                      else seats_from_button(players, self._last_button)[0])
        elif button not in players:
            raise TableStateError(f"Button seat {button} is not seated")

        self._button = button
        self._last_button = button
        self._dealt = players
        self._folded = set()
        self._all_in = set()
        self._community = []
        self._street = Street.PREFLOP
        self._bets = {s: 0 for s in players}
        self._invested = {s: 0 for s in players}
        self._winners = None
        self._rounds_completed = False
        self._last_raise = self._big_blind

        self._deck = self._shuffled_deck(deck_seed)

        order = seats_from_button(players, button)
        if len(players) == 2:
            # Heads-up: button posts the small blind
            sb, bb = button, order[0]
        else:
            sb, bb = order[0], order[1]
        self._post(sb, self._small_blind)
        self._post(bb, self._big_blind)

        self._hole = {s: [] for s in players}
        for _ in range(2):
            for s in order:
                self._hole[s].append(self._deck.pop())

        self._hand_in_progress = True
        # Preflop action opens left of the big blind
        self._open_round(after=bb)

    def is_hand_in_progress(self) -> bool:
        return self._hand_in_progress

    def is_betting_round_in_progress(self) -> bool:
        return self._hand_in_progress and self._round_in_progress

    def are_betting_rounds_completed(self) -> bool:
        self._require_hand()
        return self._rounds_completed

    # -- betting ----------------------------------------------------------

    def player_to_act(self) -> int:
        self._require_round()
        return self._to_act

    def legal_actions(self) -> LegalActions:
        self._require_round()
        seat = self._to_act
        top = self._max_bet()
        my_bet = self._bets[seat]
        stack = self._stacks[seat]
        to_call = top - my_bet

        actions = [Action.FOLD]
        actions.append(Action.CHECK if to_call <= 0 else Action.CALL)

        others_can_respond = any(
            s != seat and s not in self._all_in for s in self._live_players()
        )
        if stack > to_call and others_can_respond and seat not in self._acted:
            ceiling = my_bet + stack
            if top == 0:
                actions.append(Action.BET)
                floor = min(self._big_blind, ceiling)
            else:
                actions.append(Action.RAISE)
                floor = min(top + self._last_raise, ceiling)
            return LegalActions(tuple(actions), min_amount=floor, max_amount=ceiling)
        return LegalActions(tuple(actions))

    def action_taken(self, action: Action, amount: int | None = None) -> None:
        legal = self.legal_actions()
        action = Action(action)
        if not legal.allows(action):
            raise TableStateError(f"Illegal action {action.value}")
        seat = self._to_act
        top = self._max_bet()

        if action == Action.FOLD:
            self._folded.add(seat)
        elif action == Action.CALL:
            self._commit(seat, min(top - self._bets[seat], self._stacks[seat]))
        elif action.is_aggressive:
            if amount is None or not legal.min_amount <= amount <= legal.max_amount:
                raise TableStateError(
                    f"{action.value} amount {amount} outside "
                    f"[{legal.min_amount}, {legal.max_amount}]"
                )
            self._commit(seat, amount - self._bets[seat])
            increment = amount - top
            # A short all-in raise does not reopen raising for seats that
            # already acted; they may only call or fold
            if top == 0 or increment >= self._last_raise:
                self._last_raise = max(increment, self._last_raise)
                self._acted = set()

        self._acted.add(seat)
        self._advance(seat)

    def end_betting_round(self) -> None:
        self._require_hand()
        if self._round_in_progress:
            raise TableStateError("Betting round still in progress")
        live = self._live_players()
        if len(live) == 1:
            # Everyone else folded: the last seat takes every pot
            self._stacks[live[0]] += sum(self._invested.values())
            self._finish_hand()
            return
        if self._rounds_completed:
            raise TableStateError("Betting rounds already completed, call showdown()")

        self._bets = {s: 0 for s in self._dealt}
        if self._street == Street.RIVER:
            self._rounds_completed = True
            return

        self._street = _NEXT_STREET[self._street]
        self._deck.pop()  # burn
        for _ in range(3 if self._street == Street.FLOP else 1):
            self._community.append(self._deck.pop())
        self._last_raise = self._big_blind
        self._open_round(after=self._button)

    def showdown(self) -> None:
        self._require_hand()
        if not self._rounds_completed:
            raise TableStateError("Betting rounds are not completed")

        board = [parse_card(c) for c in self._community]
        scored: dict[int, tuple[int, list[Card]]] = {}
        for seat in self._live_players():
            hole = [parse_card(c) for c in self._hole[seat]]
            scored[seat] = evaluate_best(hole + board)

        results: list[list[ShowdownWinner]] = []
        for pot in build_side_pots(self._invested, self._folded):
            best = max(scored[s][0] for s in pot.eligible)
            pot_winners = [s for s in pot.eligible if scored[s][0] == best]
            for seat, won in split_pot(pot.size, pot_winners, self._button).items():
                self._stacks[seat] += won
            results.append([
                self._winner_entry(seat, *scored[seat])
                for seat in seats_from_button(pot_winners, self._button)
            ])

        self._finish_hand()
        self._winners = results

    # -- transition-gated reads ----------------------------------------

    def hole_cards(self) -> dict[int, list[str]]:
        self._require_hand()
        return {s: list(cards) for s, cards in self._hole.items()}

    def community_cards(self) -> list[str]:
        self._require_hand()
        return list(self._community)

    def pots(self) -> list[Pot]:
        self._require_hand()
        return build_side_pots(self._invested, self._folded)

    def hand_players(self) -> list[int]:
        self._require_hand()
        return self._live_players()

    def button(self) -> int:
        self._require_hand()
        return self._button

    def round_of_betting(self) -> str:
        self._require_hand()
        return self._street.value

    def winners(self) -> list[list[ShowdownWinner]]:
        if self._winners is None:
            raise TableStateError("No showdown result available")
        return self._winners

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _require_hand(self) -> None:
        if not self._hand_in_progress:
            raise TableStateError("No hand in progress")

    def _require_round(self) -> None:
        if not self.is_betting_round_in_progress():
            raise TableStateError("No betting round in progress")

    def _live_players(self) -> list[int]:
        return [s for s in self._dealt if s not in self._folded]

    def _can_act(self) -> list[int]:
        return [s for s in self._live_players() if s not in self._all_in]

    def _max_bet(self) -> int:
        return max((self._bets[s] for s in self._dealt), default=0)

    def _post(self, seat: int, amount: int) -> None:
        self._commit(seat, min(amount, self._stacks[seat]))

    def _commit(self, seat: int, chips: int) -> None:
        self._stacks[seat] -= chips
        self._bets[seat] += chips
        self._invested[seat] += chips
        if self._stacks[seat] == 0:
            self._all_in.add(seat)

    def _pending(self) -> list[int]:
        """Seats that still owe an action this round."""
        top = self._max_bet()
        can_act = self._can_act()
        if len(self._live_players()) <= 1:
            return []
        if len(can_act) == 1 and self._bets[can_act[0]] >= top:
            return []
        return [s for s in can_act if s not in self._acted or self._bets[s] < top]

    def _open_round(self, after: int) -> None:
        self._acted = set()
        pending = self._pending()
        self._round_in_progress = bool(pending)
        self._to_act = self._next_pending(after, pending)

    def _advance(self, seat: int) -> None:
        pending = self._pending()
        self._round_in_progress = bool(pending)
        self._to_act = self._next_pending(seat, pending)

    def _next_pending(self, after: int, pending: list[int]) -> int | None:
        if not pending:
            return None
        return seats_from_button(pending, after)[0]

    def _shuffled_deck(self, deck_seed: int | None) -> list[str]:
        """Deck for the next hand; cards are dealt from the end."""
        deck = list(FULL_DECK)
        random.Random(deck_seed).shuffle(deck)
        return deck

    def _finish_hand(self) -> None:
        self._hand_in_progress = False
        self._round_in_progress = False
        self._to_act = None
        self._bets = {}

    def _winner_entry(self, seat: int, score: int, best: list[Card]) -> ShowdownWinner:
        category = hand_category(score)
        return ShowdownWinner(
            seat_index=seat,
            rank=category,
            rank_name=HAND_NAMES[category],
            score=score,
            cards=tuple(str(c) for c in best),
            description=describe(score, best),
        )
