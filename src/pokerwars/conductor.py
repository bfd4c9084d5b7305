"""HandConductor — drives one hand from deal to resolution.

The engine forgets most of a hand once it ends: pots, live seats, cards and
the button all become unreadable. The conductor therefore captures a
TableSnapshot at the deal, after every action, after every round advance
and right before showdown, and resolves the hand purely from the last good
snapshot plus the showdown winners read immediately after showdown().
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from pokerwars.context import TableSnapshot, build_decision_context
from pokerwars.core.telemetry import HandEndEntry, HandStartEntry
from pokerwars.holdem.table import Pot, ShowdownWinner, TableStateError, split_pot
from pokerwars.models import (
    Action,
    ActionRecord,
    BlindState,
    HandRecord,
    HandResult,
    HandSeatInfo,
    PotInfo,
)

if TYPE_CHECKING:
    from pokerwars.tournament import RunHandle

logger = logging.getLogger(__name__)

FOLD_WIN = "Fold Win"
UNKNOWN_RANK = "Unknown"


@dataclass
class TrackedHandState:
    """Last good view of the hand in play, plus capture warnings."""

    hand_number: int
    snapshot: TableSnapshot | None = None
    folded: set[int] = field(default_factory=set)
    warnings: list[str] = field(default_factory=list)

    def capture(self, engine, label: str) -> bool:
        """Refresh the snapshot; on failure keep the previous one and warn."""
        try:
            snapshot = TableSnapshot.capture(engine, self.hand_number, label)
        except Exception as e:
            return self._capture_failed(label, f"{type(e).__name__}: {e}")
        if not snapshot.chips or not snapshot.hand_players:
            return self._capture_failed(label, "engine returned no table state")
        self.snapshot = snapshot
        return True

    def live_seats(self) -> list[int]:
        if self.snapshot is None:
            return []
        return [s for s in self.snapshot.hand_players if s not in self.folded]

    def to_api(self) -> dict | None:
        """Current-hand view served by the API."""
        snap = self.snapshot
        if snap is None:
            return None
        return {
            "hand_number": self.hand_number,
            "round": snap.round,
            "button": snap.button,
            "community_cards": list(snap.community_cards),
            "pots": [{"size": p.size, "eligible": list(p.eligible)} for p in snap.pots],
            "to_act": snap.to_act,
            "legal_actions": snap.legal.to_dict() if snap.legal else None,
            "players": [
                {
                    "seat_index": s,
                    "hole_cards": list(snap.hole_cards.get(s, [])),
                    "stack": snap.chips[s].stack,
                    "bet": snap.chips[s].bet,
                }
                for s in self.live_seats() if s in snap.chips
            ],
            "warnings": list(self.warnings),
        }

    def _capture_failed(self, label: str, reason: str) -> bool:
        message = f"Hand {self.hand_number}: capture at {label} failed ({reason}), using last snapshot"
        logger.warning(message)
        self.warnings.append(message)
        return False


def compute_winnings(
    pots: list[Pot], winners: list[list[int]], button: int
) -> dict[int, int]:
    """Chips won per seat, pot by pot.

    Each pot is split evenly among its winners; remainder chips go one at a
    time clockwise from the button, the same rule the table applies.
    """
    totals: dict[int, int] = {}
    for pot, pot_winners in zip(pots, winners):
        eligible = [s for s in pot_winners if s in pot.eligible] or pot_winners
        for seat, amount in split_pot(pot.size, eligible, button).items():
            totals[seat] = totals.get(seat, 0) + amount
    return totals


class HandConductor:
    """Plays hands for one run."""

    def __init__(self, run: RunHandle):
        self._run = run

    async def play_hand(
        self, hand_number: int, blinds: BlindState, button: int | None = None
    ) -> HandRecord:
        run = self._run
        engine = run.engine
        seated = {s.seat_index: s.agent for s in run.state.active_seats()}
        table_seats = engine.seats()
        starting = {s: table_seats[s].stack for s in seated if s in table_seats}

        engine.set_forced_bets(blinds.small_blind, blinds.big_blind)
        deck_seed = run.seeds.get_hand_seed(run.state.run_id, hand_number) if run.seeds else None
        engine.start_hand(button=button, deck_seed=deck_seed)

        tracked = TrackedHandState(hand_number)
        run.tracked = tracked
        if not tracked.capture(engine, "deal"):
            raise TableStateError(f"Hand {hand_number}: table unreadable right after the deal")
        hand_button = tracked.snapshot.button

        logger.info(
            "=== Hand %d === blinds %d/%d, button seat %d",
            hand_number, blinds.small_blind, blinds.big_blind, hand_button,
        )
        run.events.log(HandStartEntry(
            hand_number=hand_number,
            small_blind=blinds.small_blind,
            big_blind=blinds.big_blind,
            button=hand_button,
            seats=[
                {"seat_index": s, "agent": seated[s], "stack": starting[s]}
                for s in sorted(starting)
            ],
        ))
        self._sync_state(tracked)

        actions = await self._betting_loop(tracked, seated, blinds)
        showdown_winners, pre_showdown = self._finish(tracked)

        return self._resolve(
            tracked, blinds, hand_button, seated, starting, actions,
            showdown_winners, pre_showdown,
        )

    # ------------------------------------------------------------------
    # Betting
    # ------------------------------------------------------------------

    async def _betting_loop(
        self, tracked: TrackedHandState, seated: dict[int, str], blinds: BlindState
    ) -> list[ActionRecord]:
        run = self._run
        engine = run.engine
        raise_cap = run.config.raise_cap
        actions: list[ActionRecord] = []
        raises_this_round = 0

        while engine.is_betting_round_in_progress() or (
            engine.is_hand_in_progress() and not engine.are_betting_rounds_completed()
        ):
            if not engine.is_betting_round_in_progress():
                engine.end_betting_round()
                raises_this_round = 0
                if engine.is_hand_in_progress():
                    tracked.capture(engine, "round advance")
                continue

            seat = engine.player_to_act()
            legal = engine.legal_actions()
            context = build_decision_context(
                tracked.snapshot, seat, legal, seated, blinds.small_blind, blinds.big_blind,
            )
            start = time.monotonic()
            decision = await run.pipeline.decide(
                context, list(actions), raises_this_round >= raise_cap,
            )
            latency_ms = (time.monotonic() - start) * 1000

            engine.action_taken(decision.action, decision.amount)
            if decision.action.is_aggressive:
                raises_this_round += 1
            elif decision.action == Action.FOLD:
                tracked.folded.add(seat)

            actions.append(ActionRecord(
                seat_index=seat,
                action=decision.action.value,
                amount=decision.amount,
                round=context.round,
                latency_ms=round(latency_ms, 1),
                reasoning=decision.reasoning,
            ))
            logger.info(
                "Hand %d %s: seat %d %s%s (%.0fms)",
                tracked.hand_number, context.round, seat, decision.action.value,
                f" {decision.amount}" if decision.amount is not None else "", latency_ms,
            )
            if engine.is_hand_in_progress():
                tracked.capture(engine, "action")
                self._sync_state(tracked)

        return actions

    def _finish(
        self, tracked: TrackedHandState
    ) -> tuple[list[list[ShowdownWinner]] | None, TableSnapshot | None]:
        """Fold-out or showdown. Returns (showdown winners, pre-showdown snapshot)."""
        engine = self._run.engine
        if not engine.is_hand_in_progress():
            return None, None

        tracked.capture(engine, "showdown")
        pre_showdown = tracked.snapshot
        engine.showdown()
        try:
            winners = engine.winners()
        except Exception as e:
            message = f"Hand {tracked.hand_number}: showdown winners unavailable ({e})"
            logger.warning(message)
            tracked.warnings.append(message)
            winners = None
        return winners, pre_showdown

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _resolve(
        self,
        tracked: TrackedHandState,
        blinds: BlindState,
        button: int,
        seated: dict[int, str],
        starting: dict[int, int],
        actions: list[ActionRecord],
        showdown_winners: list[list[ShowdownWinner]] | None,
        pre_showdown: TableSnapshot | None,
    ) -> HandRecord:
        run = self._run
        snap = pre_showdown or tracked.snapshot
        pots = [PotInfo(p.size, list(p.eligible)) for p in snap.pots]
        pot_total = snap.pot_total

        if pre_showdown is None:
            results = self._fold_out(tracked, pot_total)
        elif showdown_winners is not None:
            results = self._showdown_results(snap, showdown_winners, button)
        else:
            results = []

        won = {r.seat_index: r.amount_won for r in results}
        ending = self._ending_stacks(tracked, starting, won)

        if pre_showdown is not None and showdown_winners is None:
            # Winners unknown: infer from stack growth across showdown
            results = [
                HandResult(s, ending[s] - pre_showdown.chips[s].stack, UNKNOWN_RANK, 0)
                for s in sorted(ending)
                if s in pre_showdown.chips and ending[s] > pre_showdown.chips[s].stack
            ]

        if sum(starting.values()) != sum(ending.values()):
            message = (
                f"Hand {tracked.hand_number}: chip count changed "
                f"{sum(starting.values())} -> {sum(ending.values())}"
            )
            logger.warning(message)
            tracked.warnings.append(message)

        revealed = set(snap.hand_players) - tracked.folded
        record = HandRecord(
            hand_number=tracked.hand_number,
            small_blind=blinds.small_blind,
            big_blind=blinds.big_blind,
            button=button,
            seats=[
                HandSeatInfo(
                    seat_index=s,
                    agent=seated[s],
                    starting_stack=starting[s],
                    ending_stack=ending[s],
                    hole_cards=list(snap.hole_cards.get(s, [])) if s in revealed else None,
                )
                for s in sorted(starting)
            ],
            community_cards=list(snap.community_cards),
            actions=actions,
            pots=pots,
            winners=results,
            warnings=list(tracked.warnings),
        )

        for r in results:
            logger.info(
                "Hand %d: seat %d wins %d (%s)",
                tracked.hand_number, r.seat_index, r.amount_won, r.description or r.hand_rank,
            )
        run.storage.save_hand(run.state.run_id, record)
        run.events.log(HandEndEntry(
            hand_number=tracked.hand_number,
            winners=[
                {
                    "seat_index": r.seat_index,
                    "agent": seated.get(r.seat_index),
                    "amount_won": r.amount_won,
                    "hand_rank": r.hand_rank,
                    "description": r.description,
                }
                for r in results
            ],
            pot_total=pot_total,
            stacks={str(s): ending[s] for s in sorted(ending)},
            eliminated=[s for s in sorted(ending) if ending[s] == 0],
            warnings=list(tracked.warnings),
        ))
        return record

    def _fold_out(self, tracked: TrackedHandState, pot_total: int) -> list[HandResult]:
        live = tracked.live_seats()
        if len(live) != 1:
            message = f"Hand {tracked.hand_number}: fold-out with {len(live)} live seats tracked"
            logger.warning(message)
            tracked.warnings.append(message)
            return []
        return [HandResult(live[0], pot_total, FOLD_WIN, 0, description=FOLD_WIN)]

    @staticmethod
    def _showdown_results(
        snap: TableSnapshot, showdown_winners: list[list[ShowdownWinner]], button: int
    ) -> list[HandResult]:
        per_pot = [[w.seat_index for w in pot] for pot in showdown_winners]
        amounts = compute_winnings(snap.pots, per_pot, button)
        best: dict[int, ShowdownWinner] = {}
        for pot in showdown_winners:
            for w in pot:
                if w.seat_index not in best or w.score > best[w.seat_index].score:
                    best[w.seat_index] = w
        return [
            HandResult(
                seat_index=s,
                amount_won=amounts.get(s, 0),
                hand_rank=w.rank_name,
                rank_value=int(w.rank),
                cards=list(w.cards),
                description=w.description,
            )
            for s, w in sorted(best.items())
        ]

    def _ending_stacks(
        self, tracked: TrackedHandState, starting: dict[int, int], won: dict[int, int]
    ) -> dict[int, int]:
        try:
            table = self._run.engine.seats()
            return {s: table[s].stack for s in starting}
        except Exception as e:
            message = f"Hand {tracked.hand_number}: stacks unreadable ({e}), using tracked stacks"
            logger.warning(message)
            tracked.warnings.append(message)
        chips = tracked.snapshot.chips
        return {
            s: (chips[s].stack if s in chips else starting[s]) + won.get(s, 0)
            for s in starting
        }

    def _sync_state(self, tracked: TrackedHandState) -> None:
        """Persist live stacks and bets from the latest snapshot."""
        run = self._run
        snap = tracked.snapshot
        for seat in run.state.active_seats():
            chips = snap.chips.get(seat.seat_index)
            if chips is None:
                continue
            seat.stack = chips.stack
            seat.bet = chips.bet
            seat.in_hand = seat.seat_index in tracked.live_seats()
        run.state.fidelity = run.referee.get_fidelity_report()
        run.storage.save_state(run.state)
