"""Tests for blinds, the tournament loop and run start/resume."""

import time
from unittest.mock import patch

import pytest

from pokerwars.config import BlindLevel, ConfigError, parse_config
from pokerwars.holdem.table import HoldemTable
from pokerwars.models import BlindState, SeatState, TournamentState, TournamentStatus
from pokerwars.tournament import (
    RunNotFoundError,
    TournamentConflictError,
    TournamentManager,
    advance_blinds,
    initial_blinds,
    restore_stacks,
)

from conftest import make_config, make_config_dict, passive_strategy, scripted_factory

STRUCTURE = [BlindLevel(10, 20, 2), BlindLevel(20, 40, 3)]


def slow_strategy(messages, context):
    time.sleep(0.05)
    return passive_strategy(messages, context)


def _entries(storage, run_id, entry_type):
    entries, _ = storage.read_log(run_id)
    return [e for e in entries if e["type"] == entry_type]


def _interrupted_state(run_id="2026-01-02-resume1"):
    return TournamentState(
        run_id=run_id,
        name="test-tourney",
        status=TournamentStatus.IN_PROGRESS,
        current_hand=3,
        seats=[SeatState(0, "bot0", 250, bet=50, in_hand=True),
               SeatState(1, "bot1", 650, bet=50, in_hand=True)],
        blinds=BlindState(0, 10, 20, 5),
        button=1,
        hand_in_progress=True,
        checkpoint_stacks={0: 300, 1: 700},
    )


class FaultyTable(HoldemTable):
    def start_hand(self, button=None, deck_seed=None):
        raise RuntimeError("deck on fire")


class TestBlinds:
    def test_initial(self):
        assert initial_blinds(STRUCTURE) == BlindState(0, 10, 20, 2)

    def test_unchanged_while_hands_remain(self):
        blinds = BlindState(0, 10, 20, 1)
        assert advance_blinds(blinds, STRUCTURE) is blinds

    def test_level_up_at_zero(self):
        assert advance_blinds(BlindState(0, 10, 20, 0), STRUCTURE) == BlindState(1, 20, 40, 3)

    def test_final_level_resets_count(self):
        assert advance_blinds(BlindState(1, 20, 40, 0), STRUCTURE) == BlindState(1, 20, 40, 3)


class TestRestoreStacks:
    def test_rolls_back_interrupted_hand(self):
        state = _interrupted_state()
        restore_stacks(state)
        assert [(s.stack, s.bet, s.in_hand) for s in state.seats] == [(300, 0, False), (700, 0, False)]

    def test_idempotent(self):
        state = _interrupted_state()
        restore_stacks(state)
        restore_stacks(state)
        assert [s.stack for s in state.seats] == [300, 700]

    def test_completed_hand_keeps_stacks(self):
        state = _interrupted_state()
        state.hand_in_progress = False
        restore_stacks(state)
        assert [s.stack for s in state.seats] == [250, 650]

    def test_broke_seat_eliminated(self):
        state = _interrupted_state()
        state.checkpoint_stacks = {0: 0, 1: 1000}
        restore_stacks(state)
        assert state.seat(0).eliminated is True
        assert [s.seat_index for s in state.active_seats()] == [1]


class TestFullRun:
    @pytest.fixture
    def finished(self, storage):
        manager = TournamentManager(storage)
        config = make_config(strategies=("raise_maniac", "always_call", "always_call"), starting_stack=200)
        state = manager.start(config)
        result = manager.join(timeout=60)
        return storage, state.run_id, result

    def test_completes_with_one_winner(self, finished):
        storage, run_id, result = finished
        assert result.status == TournamentStatus.COMPLETED
        assert result.winner is not None
        assert [s.seat_index for s in result.active_seats()] == [result.winner]
        assert result.seat(result.winner).stack == 600
        assert result.completed_at is not None

    def test_state_persisted(self, finished):
        storage, run_id, result = finished
        saved = storage.load_state(run_id)
        assert saved.status == TournamentStatus.COMPLETED
        assert saved.hand_in_progress is False
        assert saved.checkpoint_stacks == {}
        assert storage.find_latest_unfinished() is None

    def test_tournament_end_logged_last(self, finished):
        storage, run_id, result = finished
        entries, _ = storage.read_log(run_id)
        end = entries[-1]
        assert end["type"] == "tournament_end"
        assert end["winner"] == result.winner
        assert end["hands_played"] == result.current_hand
        assert set(end["fidelity_report"]) == {"0", "1", "2"}

    def test_every_hand_conserves_chips(self, finished):
        storage, run_id, result = finished
        numbers = storage.hand_numbers(run_id)
        assert numbers == list(range(1, result.current_hand + 1))
        for n in numbers:
            record = storage.load_hand(run_id, n)
            assert sum(s.starting_stack for s in record.seats) == 600
            assert sum(s.ending_stack for s in record.seats) == 600

    def test_eliminated_seats_not_dealt_again(self, finished):
        storage, run_id, result = finished
        out = {}
        for n in storage.hand_numbers(run_id):
            record = storage.load_hand(run_id, n)
            for seat in record.seats:
                assert seat.seat_index not in out
                if seat.ending_stack == 0:
                    out[seat.seat_index] = n
        assert len(out) == 2

    def test_button_rotates(self, finished):
        storage, run_id, result = finished
        assert storage.load_hand(run_id, 1).button == 0
        if result.current_hand >= 2:
            record = storage.load_hand(run_id, 2)
            assert record.button != 0


class TestBlindProgression:
    def test_blinds_rise_between_hands(self, storage):
        manager = TournamentManager(storage)
        config = make_config(starting_stack=60, blinds=((10, 20, 1), (20, 40, 1)))
        state = manager.start(config)
        result = manager.join(timeout=60)
        assert result.status == TournamentStatus.COMPLETED
        assert storage.load_hand(state.run_id, 1).big_blind == 20
        assert storage.load_hand(state.run_id, 2).big_blind == 40
        for n in storage.hand_numbers(state.run_id)[2:]:
            assert storage.load_hand(state.run_id, n).big_blind == 40


class TestManager:
    def test_start_rejects_unbuildable_agent(self, storage, monkeypatch):
        monkeypatch.delenv("OPENROUTER_API_KEY", raising=False)
        raw = make_config_dict()
        raw["seats"][1]["agent"] = "openai/gpt-4o"
        manager = TournamentManager(storage)
        with pytest.raises(ConfigError) as exc_info:
            manager.start(parse_config(raw))
        assert "seat 1" in str(exc_info.value)
        assert storage.list_runs() == []
        assert manager.is_running() is False

    def test_conflict_while_running(self, storage):
        manager = TournamentManager(storage, agent_factory=scripted_factory(bot0=slow_strategy, bot1=slow_strategy))
        config = make_config()
        manager.start(config)
        try:
            with pytest.raises(TournamentConflictError):
                manager.start(config)
        finally:
            manager.stop(timeout=30)
        assert manager.is_running() is False

    def test_stop_leaves_run_resumable(self, storage):
        manager = TournamentManager(storage, agent_factory=scripted_factory(bot0=slow_strategy, bot1=slow_strategy))
        state = manager.start(make_config())
        manager.stop(timeout=30)
        saved = storage.load_state(state.run_id)
        assert saved.status == TournamentStatus.IN_PROGRESS
        assert saved.hand_in_progress is False
        assert storage.find_latest_unfinished() == state.run_id

    def test_new_run_waits_until_launched(self, storage):
        manager = TournamentManager(storage)
        with patch.object(TournamentManager, "_launch") as launch:
            state = manager.start(make_config())
        launch.assert_called_once()
        saved = storage.load_state(state.run_id)
        assert saved.status == TournamentStatus.WAITING
        assert storage.find_latest_unfinished() == state.run_id

    def test_waiting_run_resumes_from_first_hand(self, storage):
        with patch.object(TournamentManager, "_launch"):
            state = TournamentManager(storage).start(make_config())
        manager = TournamentManager(storage)
        manager.resume(state.run_id, make_config(strategies=("raise_maniac", "always_call")))
        assert storage.load_state(state.run_id).status in (
            TournamentStatus.IN_PROGRESS, TournamentStatus.COMPLETED,
        )
        result = manager.join(timeout=60)
        assert result.status == TournamentStatus.COMPLETED
        assert storage.hand_numbers(state.run_id)[0] == 1

    def test_current_hand_idle(self, storage):
        assert TournamentManager(storage).current_hand() is None

    def test_resume_unknown_run(self, storage):
        with pytest.raises(RunNotFoundError):
            TournamentManager(storage).resume("2026-01-01-missing0", make_config())

    def test_resume_completed_run(self, storage):
        state = _interrupted_state()
        state.status = TournamentStatus.COMPLETED
        storage.create_run(state)
        with pytest.raises(RunNotFoundError):
            TournamentManager(storage).resume(state.run_id, make_config())

    def test_resume_latest_with_nothing_to_resume(self, storage):
        assert TournamentManager(storage).resume_latest(make_config()) is None

    def test_crash_recorded_and_resumable(self, storage):
        manager = TournamentManager(storage, engine_factory=FaultyTable)
        state = manager.start(make_config())
        manager.join(timeout=30)
        assert manager.last_error == "RuntimeError: deck on fire"
        saved = storage.load_state(state.run_id)
        assert saved.status == TournamentStatus.IN_PROGRESS
        assert saved.hand_in_progress is True
        assert saved.current_hand == 1

        recovered = TournamentManager(storage)
        recovered.resume(state.run_id, make_config(strategies=("raise_maniac", "always_call")))
        result = recovered.join(timeout=60)
        assert result.status == TournamentStatus.COMPLETED
        assert storage.load_hand(state.run_id, 1).button == 0


class TestResume:
    @pytest.fixture
    def resumed(self, storage):
        state = _interrupted_state()
        storage.create_run(state)
        manager = TournamentManager(storage)
        config = make_config(strategies=("raise_maniac", "always_call"))
        restored = manager.resume(state.run_id, config)
        result = manager.join(timeout=60)
        return storage, restored, result

    def test_stacks_restored_from_checkpoint(self, resumed):
        storage, restored, result = resumed
        record = storage.load_hand(restored.run_id, 3)
        assert {s.seat_index: s.starting_stack for s in record.seats} == {0: 300, 1: 700}

    def test_interrupted_hand_replayed(self, resumed):
        storage, restored, result = resumed
        numbers = storage.hand_numbers(restored.run_id)
        assert numbers[0] == 3
        assert storage.load_hand(restored.run_id, 3).button == 1

    def test_runs_to_completion(self, resumed):
        storage, restored, result = resumed
        assert result.status == TournamentStatus.COMPLETED
        assert result.seat(result.winner).stack == 1000

    def test_resume_latest_picks_unfinished(self, storage):
        state = _interrupted_state()
        storage.create_run(state)
        manager = TournamentManager(storage)
        resumed = manager.resume_latest(make_config(strategies=("raise_maniac", "always_call")))
        manager.join(timeout=60)
        assert resumed.run_id == state.run_id
