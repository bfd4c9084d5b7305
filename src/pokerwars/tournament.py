"""Tournament loop and run lifecycle.

RunHandle bundles everything one run needs (config, state, engine, pipeline,
storage, logging) and is passed explicitly to the conductor; nothing lives in
module globals. TournamentRunner sequences hands until one seat is left.
TournamentManager owns the single background run a process may have and
implements start and resume.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field, replace

from pokerwars.agent import LLMAgent, QueryTools, build_agent
from pokerwars.conductor import HandConductor, TrackedHandState
from pokerwars.config import BlindLevel, ConfigError, TournamentConfig, resolve_agent
from pokerwars.core.referee import Referee
from pokerwars.core.seed import SeedManager
from pokerwars.core.telemetry import EventLogger, TournamentEndEntry
from pokerwars.decision import DecisionPipeline
from pokerwars.holdem.table import HoldemTable, RulesEngine, seats_from_button
from pokerwars.models import (
    BlindState,
    SeatState,
    TournamentState,
    TournamentStatus,
    utc_now,
)
from pokerwars.storage import RunStorage, new_run_id

logger = logging.getLogger(__name__)

AgentFactory = Callable[..., LLMAgent]


class TournamentConflictError(RuntimeError):
    """A run is already active in this process."""


class RunNotFoundError(LookupError):
    """No resumable run with that id."""


def initial_blinds(structure: list[BlindLevel]) -> BlindState:
    first = structure[0]
    return BlindState(
        level=0,
        small_blind=first.small_blind,
        big_blind=first.big_blind,
        hands_until_next=first.hands_until_increase,
    )


def advance_blinds(blinds: BlindState, structure: list[BlindLevel]) -> BlindState:
    """Blinds for the next hand.

    The level changes only once hands_until_next has run down to zero. At the
    final level the count is reset and the blinds stay where they are.
    """
    if blinds.hands_until_next > 0:
        return blinds
    next_level = blinds.level + 1
    if next_level >= len(structure):
        return replace(blinds, hands_until_next=structure[-1].hands_until_increase)
    level = structure[next_level]
    return BlindState(
        level=next_level,
        small_blind=level.small_blind,
        big_blind=level.big_blind,
        hands_until_next=level.hands_until_increase,
    )


@dataclass
class RunHandle:
    """Everything a single run touches."""

    config: TournamentConfig
    state: TournamentState
    storage: RunStorage
    engine: RulesEngine
    events: EventLogger
    referee: Referee
    pipeline: DecisionPipeline
    seeds: SeedManager | None = None
    tracked: TrackedHandState | None = None
    stop_requested: threading.Event = field(default_factory=threading.Event)

    @classmethod
    def build(
        cls,
        config: TournamentConfig,
        state: TournamentState,
        storage: RunStorage,
        engine: RulesEngine | None = None,
        agent_factory: AgentFactory = build_agent,
    ) -> RunHandle:
        """Build agents, seat the table from state and wire the pipeline.

        Raises ConfigError if an agent cannot be built (unknown strategy,
        missing API key).
        """
        agents: dict[int, LLMAgent] = {}
        problems = []
        for seat in state.active_seats():
            try:
                agents[seat.seat_index] = agent_factory(
                    resolve_agent(seat.agent, config.agents), config.compute_caps,
                )
            except ValueError as e:
                problems.append(f"seat {seat.seat_index}: {e}")
        if problems:
            raise ConfigError(problems)

        engine = engine or HoldemTable()
        for seat in state.active_seats():
            engine.sit_down(seat.seat_index, seat.stack)

        events = EventLogger(storage, state.run_id)
        referee = Referee(state.fidelity)
        handle = cls(
            config=config,
            state=state,
            storage=storage,
            engine=engine,
            events=events,
            referee=referee,
            pipeline=None,  # wired below; the tools factory needs the handle
            seeds=SeedManager(config.seed) if config.seed is not None else None,
        )
        handle.pipeline = DecisionPipeline(
            agents=agents,
            event_logger=events,
            referee=referee,
            raise_cap=config.raise_cap,
            timeout_s=config.compute_caps.timeout_s,
            tools_factory=handle.query_tools,
        )
        return handle

    def query_tools(self, context, history) -> QueryTools:
        return QueryTools(
            storage=self.storage,
            run_id=self.state.run_id,
            seat_index=context.seat_index,
            state=self.state,
            hand_actions=list(history),
        )

    def save(self) -> None:
        self.state.fidelity = self.referee.get_fidelity_report()
        self.storage.save_state(self.state)


class TournamentRunner:
    """Plays hands until a single seat remains."""

    def __init__(self, run: RunHandle):
        self._run = run
        self._conductor = HandConductor(run)

    async def run(self, starting_hand: int = 1) -> TournamentState:
        run = self._run
        hand_number = starting_hand
        replaying = run.state.hand_in_progress and starting_hand == run.state.current_hand
        logger.info(
            "Running %s from hand %d with %d players",
            run.state.run_id, hand_number, len(run.state.active_seats()),
        )

        while not run.stop_requested.is_set():
            run.state = run.storage.load_state(run.state.run_id)
            state = run.state
            active = state.active_seats()
            if len(active) <= 1:
                return self._complete(hand_number - 1)

            blinds = advance_blinds(state.blinds, run.config.blind_structure)
            if blinds.level != state.blinds.level:
                logger.info("Blinds increasing to %d/%d", blinds.small_blind, blinds.big_blind)
            state.blinds = blinds

            button = self._choose_button(state, replaying)
            replaying = False
            state.current_hand = hand_number
            state.button = button
            state.hand_in_progress = True
            state.checkpoint_stacks = {s.seat_index: s.stack for s in active}
            run.save()

            await self._conductor.play_hand(hand_number, blinds, button)
            self._after_hand()

            hand_number += 1
            if run.config.hand_delay_s > 0:
                await asyncio.sleep(run.config.hand_delay_s)

        logger.info("Run %s stopped before hand %d", run.state.run_id, hand_number)
        return run.state

    @staticmethod
    def _choose_button(state: TournamentState, replaying: bool) -> int:
        seats = [s.seat_index for s in state.active_seats()]
        if state.button is None:
            return seats[0]
        if replaying and state.button in seats:
            return state.button
        return seats_from_button(seats, state.button)[0]

    def _after_hand(self) -> None:
        run = self._run
        state = run.state
        table = run.engine.seats()
        for seat in state.active_seats():
            chips = table.get(seat.seat_index)
            seat.stack = chips.stack if chips else 0
            seat.bet = 0
            seat.in_hand = False
            if seat.stack == 0:
                seat.eliminated = True
                if chips is not None:
                    run.engine.stand_up(seat.seat_index)
                logger.info("Seat %d (%s) eliminated", seat.seat_index, seat.agent)

        state.blinds = replace(state.blinds, hands_until_next=state.blinds.hands_until_next - 1)
        state.hand_in_progress = False
        state.checkpoint_stacks = {}
        run.tracked = None
        run.save()

    def _complete(self, hands_played: int) -> TournamentState:
        run = self._run
        state = run.state
        active = state.active_seats()
        winner: SeatState | None = active[0] if active else None
        state.status = TournamentStatus.COMPLETED
        state.winner = winner.seat_index if winner else None
        state.completed_at = utc_now()
        state.hand_in_progress = False
        run.save()
        run.events.log(TournamentEndEntry(
            winner=state.winner,
            winner_agent=winner.agent if winner else None,
            hands_played=hands_played,
            fidelity_report=run.referee.get_fidelity_report(),
        ))
        if winner:
            logger.info("Run %s complete: seat %d (%s) wins", state.run_id, winner.seat_index, winner.agent)
        else:
            logger.info("Run %s complete with no winner", state.run_id)
        return state


class TournamentManager:
    """Start and resume runs, one at a time, on a background thread."""

    def __init__(
        self,
        storage: RunStorage,
        engine_factory: Callable[[], RulesEngine] = HoldemTable,
        agent_factory: AgentFactory = build_agent,
    ):
        self.storage = storage
        self._engine_factory = engine_factory
        self._agent_factory = agent_factory
        self._lock = threading.Lock()
        self._handle: RunHandle | None = None
        self._thread: threading.Thread | None = None
        self._result: TournamentState | None = None
        self.last_error: str | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, config: TournamentConfig) -> TournamentState:
        with self._lock:
            self._ensure_idle()
            state = TournamentState(
                run_id=new_run_id(),
                name=config.name,
                status=TournamentStatus.WAITING,
                current_hand=0,
                seats=[
                    SeatState(seat_index=s.index, agent=s.agent, stack=config.starting_stack)
                    for s in config.seats
                ],
                blinds=initial_blinds(config.blind_structure),
                started_at=utc_now(),
            )
            handle = self._build(config, state)
            self.storage.create_run(state)
            logger.info("Started run %s with %d seats", state.run_id, len(state.seats))
            self._launch(handle, 1)
            return state

    def resume(self, run_id: str, config: TournamentConfig) -> TournamentState:
        with self._lock:
            self._ensure_idle()
            if not self.storage.run_exists(run_id):
                raise RunNotFoundError(f"Run {run_id} not found")
            state = self.storage.load_state(run_id)
            if state.status == TournamentStatus.COMPLETED:
                raise RunNotFoundError(f"Run {run_id} is {state.status.value}, not resumable")

            restore_stacks(state)
            starting_hand = state.current_hand if state.hand_in_progress else state.current_hand + 1
            handle = self._build(config, state)
            self.storage.save_state(state)
            logger.info(
                "Resuming run %s from hand %d with %d players",
                run_id, starting_hand, len(state.active_seats()),
            )
            self._launch(handle, starting_hand)
            return state

    def resume_latest(self, config: TournamentConfig) -> TournamentState | None:
        run_id = self.storage.find_latest_unfinished()
        if run_id is None:
            return None
        return self.resume(run_id, config)

    def stop(self, timeout: float | None = None) -> None:
        handle = self._handle
        if handle is not None:
            handle.stop_requested.set()
        self.join(timeout)

    def join(self, timeout: float | None = None) -> TournamentState | None:
        thread = self._thread
        if thread is not None:
            thread.join(timeout)
        return self._result

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def current_run_id(self) -> str | None:
        return self._handle.state.run_id if self._handle else None

    def current_hand(self) -> dict | None:
        handle = self._handle
        if handle is None or handle.tracked is None or not self.is_running():
            return None
        return handle.tracked.to_api()

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _ensure_idle(self) -> None:
        if self.is_running():
            raise TournamentConflictError(
                f"Run {self.current_run_id} is already in progress"
            )

    def _build(self, config: TournamentConfig, state: TournamentState) -> RunHandle:
        return RunHandle.build(
            config, state, self.storage,
            engine=self._engine_factory(),
            agent_factory=self._agent_factory,
        )

    def _launch(self, handle: RunHandle, starting_hand: int) -> None:
        self._handle = handle
        self._result = None
        self.last_error = None
        handle.state.status = TournamentStatus.IN_PROGRESS
        handle.save()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(handle, starting_hand),
            name=f"tournament-{handle.state.run_id}",
            daemon=True,
        )
        self._thread.start()

    def _run_loop(self, handle: RunHandle, starting_hand: int) -> None:
        try:
            self._result = asyncio.run(TournamentRunner(handle).run(starting_hand))
        except Exception as e:
            # Persisted state stays in_progress so the run can be resumed
            logger.exception("Tournament loop for %s crashed", handle.state.run_id)
            self.last_error = f"{type(e).__name__}: {e}"


def restore_stacks(state: TournamentState) -> None:
    """Roll seat stacks back to the last confirmed point.

    If a hand was interrupted, its partial actions are discarded by restoring
    the stacks checkpointed when it was dealt. Seats left with no chips are
    eliminated.
    """
    for seat in state.active_seats():
        if state.hand_in_progress:
            seat.stack = state.checkpoint_stacks.get(seat.seat_index, seat.stack)
        seat.bet = 0
        seat.in_hand = False
        if seat.stack <= 0:
            seat.stack = 0
            seat.eliminated = True

