"""RunStorage — file store for tournament runs.

Layout under the runs directory:

    runs/<run_id>/game.json      TournamentState snapshot
    runs/<run_id>/hand-<n>.json  one HandRecord per finished hand
    runs/<run_id>/logs.jsonl     append-only event log

JSON documents are written atomically (tmp file + rename) and log lines are
flushed and fsynced before append_log returns, so a step is only complete
once its data is on disk. Any write failure raises StorageError, which is
fatal to the run.
"""

from __future__ import annotations

import json
import logging
import os
import re
import tempfile
import time
import uuid
from collections.abc import Callable, Iterator
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING

from pokerwars.models import HandRecord, TournamentState, TournamentStatus

if TYPE_CHECKING:
    from pokerwars.core.mongo_sink import MongoSink

logger = logging.getLogger(__name__)

STATE_FILE = "game.json"
LOG_FILE = "logs.jsonl"
_HAND_FILE_RE = re.compile(r"^hand-(\d+)\.json$")


class StorageError(RuntimeError):
    """A read or write against the run store failed."""


def new_run_id() -> str:
    """Date-prefixed run id, e.g. 2026-03-01-1a2b3c4d."""
    date = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    return f"{date}-{uuid.uuid4().hex[:8]}"


class RunStorage:
    """Durable store for run state, hand records and event logs."""

    def __init__(self, root: Path, mirror: MongoSink | None = None):
        self.root = Path(root)
        self._mirror = mirror

    def run_dir(self, run_id: str) -> Path:
        return self.root / run_id

    def log_path(self, run_id: str) -> Path:
        return self.run_dir(run_id) / LOG_FILE

    def run_exists(self, run_id: str) -> bool:
        return (self.run_dir(run_id) / STATE_FILE).exists()

    def close(self) -> None:
        """Flush and stop the mirror, if any."""
        if self._mirror is not None:
            self._mirror.close()

    # ------------------------------------------------------------------
    # Tournament state
    # ------------------------------------------------------------------

    def create_run(self, state: TournamentState) -> Path:
        run_dir = self.run_dir(state.run_id)
        try:
            run_dir.mkdir(parents=True, exist_ok=False)
        except OSError as e:
            raise StorageError(f"Cannot create run directory {run_dir}: {e}") from e
        self.save_state(state)
        return run_dir

    def save_state(self, state: TournamentState) -> None:
        data = state.to_dict()
        self._write_json(self.run_dir(state.run_id) / STATE_FILE, data)
        self._mirror_call("save_state", data)

    def load_state(self, run_id: str) -> TournamentState:
        path = self.run_dir(run_id) / STATE_FILE
        try:
            return TournamentState.from_dict(self._read_json(path))
        except (KeyError, TypeError, ValueError) as e:
            raise StorageError(f"Corrupted state for run {run_id}: {e}") from e

    # ------------------------------------------------------------------
    # Hand records
    # ------------------------------------------------------------------

    def save_hand(self, run_id: str, record: HandRecord) -> None:
        data = record.to_dict()
        self._write_json(self.run_dir(run_id) / f"hand-{record.hand_number}.json", data)
        self._mirror_call("save_hand", run_id, data)

    def load_hand(self, run_id: str, hand_number: int) -> HandRecord | None:
        path = self.run_dir(run_id) / f"hand-{hand_number}.json"
        if not path.exists():
            return None
        try:
            return HandRecord.from_dict(self._read_json(path))
        except (KeyError, TypeError) as e:
            raise StorageError(f"Corrupted hand {hand_number} in run {run_id}: {e}") from e

    def hand_numbers(self, run_id: str) -> list[int]:
        run_dir = self.run_dir(run_id)
        if not run_dir.is_dir():
            return []
        numbers = []
        for path in run_dir.iterdir():
            m = _HAND_FILE_RE.match(path.name)
            if m:
                numbers.append(int(m.group(1)))
        return sorted(numbers)

    def recent_hands(self, run_id: str, limit: int) -> list[HandRecord]:
        """The last `limit` hand records, oldest first."""
        numbers = self.hand_numbers(run_id)[-limit:] if limit > 0 else []
        return [h for h in (self.load_hand(run_id, n) for n in numbers) if h is not None]

    def list_hands(self, run_id: str) -> list[dict]:
        """Summaries of every finished hand, ascending by hand number."""
        summaries = []
        for n in self.hand_numbers(run_id):
            try:
                record = self.load_hand(run_id, n)
            except StorageError as e:
                logger.warning("Skipping hand %d of %s: %s", n, run_id, e)
                continue
            if record is None:
                continue
            summaries.append({
                "hand_number": record.hand_number,
                "winners": [
                    {"seat_index": w.seat_index, "amount_won": w.amount_won, "hand_rank": w.hand_rank}
                    for w in record.winners
                ],
                "pot_size": record.pot_total,
                "timestamp": record.timestamp,
            })
        return summaries

    # ------------------------------------------------------------------
    # Runs
    # ------------------------------------------------------------------

    def list_runs(self) -> list[dict]:
        """Summaries of every run, newest first. Unreadable runs are skipped."""
        if not self.root.is_dir():
            return []
        runs = []
        for run_dir in self.root.iterdir():
            if not (run_dir / STATE_FILE).exists():
                continue
            try:
                state = self.load_state(run_dir.name)
            except StorageError as e:
                logger.warning("Skipping unreadable run %s: %s", run_dir.name, e)
                continue
            winner = None
            if state.winner is not None:
                winner = {"seat_index": state.winner, "agent": state.seat(state.winner).agent}
            runs.append({
                "run_id": state.run_id,
                "name": state.name,
                "status": state.status.value,
                "winner": winner,
                "started_at": state.started_at,
                "completed_at": state.completed_at,
                "hands_played": len(self.hand_numbers(state.run_id)),
                "seat_count": len(state.seats),
            })
        runs.sort(key=lambda r: (r["started_at"] or "", r["run_id"]), reverse=True)
        return runs

    def find_latest_unfinished(self) -> str | None:
        """Run id of the newest run that has not completed."""
        for run in self.list_runs():
            if run["status"] != TournamentStatus.COMPLETED.value:
                return run["run_id"]
        return None

    # ------------------------------------------------------------------
    # Event log
    # ------------------------------------------------------------------

    def append_log(self, run_id: str, entry: dict) -> None:
        line = json.dumps(entry, default=str) + "\n"
        try:
            with open(self.log_path(run_id), "a", encoding="utf-8") as f:
                f.write(line)
                f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            raise StorageError(f"Cannot append to log of run {run_id}: {e}") from e
        self._mirror_call("log_entry", run_id, entry)

    def read_log(self, run_id: str, offset: int = 0) -> tuple[list[dict], int]:
        """Read complete log lines from a byte offset.

        Returns (entries, new_offset). A trailing partial line (a writer
        mid-append) is left for the next read.
        """
        path = self.log_path(run_id)
        if not path.exists():
            return [], offset
        with open(path, "rb") as f:
            size = os.fstat(f.fileno()).st_size
            if size < offset:
                # Log was replaced; start over
                offset = 0
            f.seek(offset)
            chunk = f.read(size - offset)

        end = chunk.rfind(b"\n")
        if end < 0:
            return [], offset
        entries = []
        for raw in chunk[: end + 1].splitlines():
            if not raw.strip():
                continue
            try:
                entries.append(json.loads(raw))
            except json.JSONDecodeError:
                logger.warning("Skipping corrupt log line in %s", run_id)
        return entries, offset + end + 1

    def follow_log(
        self,
        run_id: str,
        offset: int = 0,
        poll_s: float = 0.5,
        should_stop: Callable[[], bool] | None = None,
    ) -> Iterator[tuple[list[dict], int]]:
        """Yield (entries, offset) batches forever, polling the log.

        Empty batches are yielded on idle polls so callers can send
        keep-alives or check for shutdown. Read errors are retried from
        the last good offset.
        """
        while not (should_stop and should_stop()):
            try:
                entries, offset = self.read_log(run_id, offset)
            except OSError as e:
                logger.warning("Log read failed for %s, retrying: %s", run_id, e)
                entries = []
            yield entries, offset
            if not entries:
                time.sleep(poll_s)

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _write_json(self, path: Path, data: dict) -> None:
        """Write JSON atomically (tmp + rename)."""
        tmp_path = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=path.parent, suffix=".tmp")
            with os.fdopen(fd, "w") as f:
                json.dump(data, f, indent=2, default=str)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except OSError:
                    pass
            raise StorageError(f"Cannot write {path}: {e}") from e

    def _read_json(self, path: Path) -> dict:
        try:
            with open(path) as f:
                return json.load(f)
        except FileNotFoundError as e:
            raise StorageError(f"Missing {path}") from e
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Cannot read {path}: {e}") from e

    def _mirror_call(self, method: str, *args) -> None:
        if self._mirror is None:
            return
        try:
            getattr(self._mirror, method)(*args)
        except Exception as e:
            logger.warning("Mongo mirror %s failed: %s", method, e)
