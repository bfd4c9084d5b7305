"""MongoSink — optional background MongoDB mirror of a run.

Log entries, hand records and state snapshots are queued and written by a
daemon thread in batches. The file store stays authoritative: pymongo
errors are logged as warnings and never reach the caller.
"""

from __future__ import annotations

import logging
import queue
import threading
from datetime import datetime, timezone

from pymongo import ASCENDING, MongoClient
from pymongo.errors import PyMongoError

logger = logging.getLogger(__name__)

_BATCH_SIZE = 50
_SENTINEL = object()


class MongoSink:
    """Background MongoDB writer.

    Connects, pings, then runs a daemon thread draining the queue. If the
    initial connection fails the sink disables itself and every method
    becomes a no-op.
    """

    def __init__(self, uri: str, db_name: str) -> None:
        self._uri = uri
        self._db_name = db_name
        self._disabled = False
        self._closed = False
        self._client = None
        self._thread: threading.Thread | None = None
        self._queue: queue.Queue = queue.Queue()

        try:
            self._client = MongoClient(uri, serverSelectionTimeoutMS=5000)
            self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("MongoDB connection failed, mirror disabled: %s", exc)
            self._disabled = True
            return

        self._db = self._client[db_name]
        self._ensure_indexes()

        self._thread = threading.Thread(
            target=self._writer_loop, daemon=True, name="mongo-sink-writer",
        )
        self._thread.start()

    @property
    def enabled(self) -> bool:
        return not self._disabled and not self._closed

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> MongoSink:
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def log_entry(self, run_id: str, record: dict) -> None:
        """Enqueue one event log entry for insertion."""
        if not self.enabled:
            return
        doc = dict(record)
        doc["run_id"] = run_id
        doc["_ingested_at"] = datetime.now(timezone.utc)
        self._queue.put(("insert", "events", None, doc))

    def save_hand(self, run_id: str, record: dict) -> None:
        """Enqueue a hand record upsert keyed by (run_id, hand_number)."""
        if not self.enabled:
            return
        doc = dict(record)
        doc["run_id"] = run_id
        key = {"run_id": run_id, "hand_number": record["hand_number"]}
        self._queue.put(("upsert", "hands", key, doc))

    def save_state(self, state: dict) -> None:
        """Enqueue a tournament state upsert keyed by run_id."""
        if not self.enabled:
            return
        doc = dict(state)
        doc["_updated_at"] = datetime.now(timezone.utc)
        self._queue.put(("upsert", "runs", {"run_id": state["run_id"]}, doc))

    def close(self) -> None:
        """Send sentinel, drain remaining items, join background thread."""
        if self._closed:
            return
        self._closed = True

        if self._thread is not None:
            self._queue.put(_SENTINEL)
            self._thread.join(timeout=10)

        if self._client:
            self._client.close()

    # ------------------------------------------------------------------
    # Internal: background writer
    # ------------------------------------------------------------------

    def _writer_loop(self) -> None:
        """Drain the queue and batch-write to MongoDB."""
        while True:
            try:
                item = self._queue.get(timeout=1.0)
            except queue.Empty:
                continue
            if item is _SENTINEL:
                self._drain_remaining()
                return

            batch = [item]
            while len(batch) < _BATCH_SIZE:
                try:
                    item = self._queue.get_nowait()
                except queue.Empty:
                    break
                if item is _SENTINEL:
                    self._flush_batch(batch)
                    self._drain_remaining()
                    return
                batch.append(item)

            self._flush_batch(batch)

    def _drain_remaining(self) -> None:
        batch = []
        while True:
            try:
                item = self._queue.get_nowait()
            except queue.Empty:
                break
            if item is not _SENTINEL:
                batch.append(item)
        if batch:
            self._flush_batch(batch)

    def _flush_batch(self, batch: list[tuple]) -> None:
        """Insert log entries in bulk, upsert hands and states one by one."""
        inserts: dict[str, list[dict]] = {}
        for op, collection, key, doc in batch:
            if op == "insert":
                inserts.setdefault(collection, []).append(doc)
                continue
            try:
                self._db[collection].update_one(key, {"$set": doc}, upsert=True)
            except PyMongoError as exc:
                logger.warning("Failed to upsert %s %s: %s", collection, key, exc)

        for collection, docs in inserts.items():
            try:
                self._db[collection].insert_many(docs)
            except PyMongoError as exc:
                logger.warning("Failed to insert %d %s documents: %s", len(docs), collection, exc)

    # ------------------------------------------------------------------
    # Internal: indexes
    # ------------------------------------------------------------------

    def _ensure_indexes(self) -> None:
        try:
            events = self._db["events"]
            events.create_index("run_id")
            events.create_index("type")
            events.create_index([("run_id", ASCENDING), ("hand_number", ASCENDING)])

            hands = self._db["hands"]
            hands.create_index(
                [("run_id", ASCENDING), ("hand_number", ASCENDING)], unique=True,
            )

            runs = self._db["runs"]
            runs.create_index("run_id", unique=True)
            runs.create_index("status")
        except PyMongoError as exc:
            logger.warning("Failed to create indexes: %s", exc)
