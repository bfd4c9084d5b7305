"""Tests for the run event log."""

import json

from pokerwars.core.telemetry import (
    SCHEMA_VERSION,
    EventLogger,
    HandEndEntry,
    HandStartEntry,
    TournamentEndEntry,
)
from pokerwars.models import TournamentState, TournamentStatus
from pokerwars.storage import RunStorage
from pokerwars.tournament import initial_blinds

from conftest import make_config


def _create_run(storage: RunStorage, run_id: str = "2026-01-01-abcd1234") -> str:
    config = make_config()
    storage.create_run(TournamentState(
        run_id=run_id, name="t", status=TournamentStatus.IN_PROGRESS, current_hand=0,
        seats=[], blinds=initial_blinds(config.blind_structure),
    ))
    return run_id


class TestEventLogger:
    def test_envelope_fields(self, storage):
        run_id = _create_run(storage)
        logger = EventLogger(storage, run_id)
        record = logger.log(HandStartEntry(
            hand_number=1, small_blind=10, big_blind=20, button=0,
            seats=[{"seat_index": 0, "agent": "bot0", "stack": 500}],
        ))
        assert record["type"] == "hand_start"
        assert record["schema_version"] == SCHEMA_VERSION
        assert record["run_id"] == run_id
        assert "timestamp" in record
        assert record["seats"][0]["agent"] == "bot0"

    def test_lines_appended_in_order(self, storage):
        run_id = _create_run(storage)
        logger = EventLogger(storage, run_id)
        logger.log(HandEndEntry(hand_number=1, winners=[], pot_total=30, stacks={"0": 515, "1": 485}))
        logger.log(TournamentEndEntry(winner=0, winner_agent="bot0", hands_played=1))

        lines = storage.log_path(run_id).read_text().splitlines()
        assert len(lines) == 2
        first, second = (json.loads(line) for line in lines)
        assert first["type"] == "hand_end"
        assert first["stacks"] == {"0": 515, "1": 485}
        assert second["type"] == "tournament_end"
        assert second["fidelity_report"] == {}

    def test_entry_type_not_a_field(self, storage):
        run_id = _create_run(storage)
        record = EventLogger(storage, run_id).log(
            TournamentEndEntry(winner=None, winner_agent=None, hands_played=0)
        )
        assert "entry_type" not in record
