"""HTTP API and live log stream.

Routes:
    GET  /health                  liveness
    GET  /api/game                run state, current hand and hand summaries
    POST /api/game/start          start a run (body: config mapping, optional)
    GET  /api/games               every run, newest first
    GET  /api/hands               hand summaries of a run
    GET  /api/hands/<n>           one hand record
    GET  /api/logs/stream         SSE: replay the event log, then tail it

Run-scoped routes take ?run_id=...; without it they use the active run, or
the newest one on disk. Failures are {"success": false, "error": "..."}.
"""

from __future__ import annotations

import json
import logging
import re
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from urllib.parse import parse_qs, urlparse

from pokerwars.config import ConfigError, TournamentConfig, parse_config
from pokerwars.storage import StorageError
from pokerwars.tournament import RunNotFoundError, TournamentConflictError, TournamentManager

logger = logging.getLogger(__name__)

_RUN_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]*$")
_HAND_PATH_RE = re.compile(r"^/api/hands/(\d+)$")
MAX_BODY_BYTES = 1 << 20


class ApiError(Exception):
    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(message)


class ApiHandler(BaseHTTPRequestHandler):
    manager: TournamentManager  # set on a bound subclass by make_server
    default_config: TournamentConfig | None = None
    stopping: threading.Event
    keepalive_s: float = 30.0
    poll_s: float = 0.5

    def log_message(self, format, *args):
        logger.debug("%s - %s", self.address_string(), format % args)

    # ------------------------------------------------------------------
    # Dispatch
    # ------------------------------------------------------------------

    def do_OPTIONS(self):
        self.send_response(204)
        self._cors_headers()
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_GET(self):
        url = urlparse(self.path)
        query = parse_qs(url.query)
        if url.path == "/api/logs/stream":
            self._guard(lambda: self._serve_sse(self._run_id(query)))
            return
        routes = {
            "/health": lambda: {"status": "ok"},
            "/api/game": lambda: self._game(query),
            "/api/games": lambda: {"success": True, "games": self.manager.storage.list_runs()},
            "/api/hands": lambda: self._hands(query),
        }
        if url.path in routes:
            self._guard(lambda: self._send_json(200, routes[url.path]()))
            return
        match = _HAND_PATH_RE.match(url.path)
        if match:
            self._guard(lambda: self._send_json(200, self._hand(query, int(match.group(1)))))
            return
        self._send_error(404, f"Unknown route {url.path}")

    def do_POST(self):
        url = urlparse(self.path)
        if url.path == "/api/game/start":
            self._guard(lambda: self._send_json(200, self._start()))
            return
        self._send_error(404, f"Unknown route {url.path}")

    def _guard(self, fn) -> None:
        try:
            fn()
        except ApiError as e:
            self._send_error(e.status, e.message)
        except ConfigError as e:
            self._send_error(400, str(e))
        except RunNotFoundError as e:
            self._send_error(404, str(e))
        except TournamentConflictError as e:
            self._send_error(409, str(e))
        except StorageError as e:
            logger.error("Storage failure serving %s: %s", self.path, e)
            self._send_error(500, str(e))
        except (BrokenPipeError, ConnectionResetError):
            pass
        except Exception as e:
            logger.exception("Unhandled error serving %s", self.path)
            self._send_error(500, f"Internal error: {e}")

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _game(self, query: dict) -> dict:
        run_id = self._run_id(query)
        storage = self.manager.storage
        state = storage.load_state(run_id)
        is_current = run_id == self.manager.current_run_id
        return {
            "success": True,
            "game": state.to_dict(),
            "running": is_current and self.manager.is_running(),
            "current_hand": self.manager.current_hand() if is_current else None,
            "hands": storage.list_hands(run_id),
            "last_error": self.manager.last_error if is_current else None,
        }

    def _hands(self, query: dict) -> dict:
        run_id = self._run_id(query)
        return {"success": True, "run_id": run_id, "hands": self.manager.storage.list_hands(run_id)}

    def _hand(self, query: dict, hand_number: int) -> dict:
        run_id = self._run_id(query)
        record = self.manager.storage.load_hand(run_id, hand_number)
        if record is None:
            raise ApiError(404, f"Hand {hand_number} not found in run {run_id}")
        return {"success": True, "run_id": run_id, "hand": record.to_dict()}

    def _start(self) -> dict:
        body = self._read_body()
        if body:
            config = parse_config(body)
        elif self.default_config is not None:
            config = self.default_config
        else:
            raise ApiError(400, "No config given and no default config loaded")
        state = self.manager.start(config)
        return {"success": True, "run_id": state.run_id, "game": state.to_dict()}

    def _serve_sse(self, run_id: str) -> None:
        storage = self.manager.storage
        if not storage.run_exists(run_id):
            raise ApiError(404, f"Run {run_id} not found")

        self.send_response(200)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "keep-alive")
        self.send_header("X-Accel-Buffering", "no")
        self._cors_headers()
        self.end_headers()

        last_write = time.monotonic()
        for entries, _offset in storage.follow_log(
            run_id, 0, poll_s=self.poll_s, should_stop=self.stopping.is_set,
        ):
            for entry in entries:
                self.wfile.write(f"data: {json.dumps(entry, default=str)}\n\n".encode("utf-8"))
            if entries:
                self.wfile.flush()
                last_write = time.monotonic()
            elif time.monotonic() - last_write >= self.keepalive_s:
                self.wfile.write(b": keep-alive\n\n")
                self.wfile.flush()
                last_write = time.monotonic()

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_id(self, query: dict) -> str:
        run_id = (query.get("run_id") or [None])[0]
        if run_id is None:
            run_id = self.manager.current_run_id
        if run_id is None:
            runs = self.manager.storage.list_runs()
            if not runs:
                raise ApiError(404, "No game found")
            run_id = runs[0]["run_id"]
        if not _RUN_ID_RE.match(run_id):
            raise ApiError(400, f"Invalid run id {run_id!r}")
        if not self.manager.storage.run_exists(run_id):
            raise ApiError(404, f"Run {run_id} not found")
        return run_id

    def _read_body(self) -> dict | None:
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            raise ApiError(400, "Invalid Content-Length header") from None
        if length < 0:
            raise ApiError(400, "Invalid Content-Length header")
        if length > MAX_BODY_BYTES:
            raise ApiError(400, "Request body too large")
        if length == 0:
            return None
        raw = self.rfile.read(length)
        try:
            body = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ApiError(400, f"Invalid JSON body: {e}") from e
        if body in ({}, None):
            return None
        if not isinstance(body, dict):
            raise ApiError(400, "Request body must be a JSON object")
        return body.get("config", body)

    def _cors_headers(self) -> None:
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")

    def _send_json(self, status: int, payload: dict) -> None:
        body = json.dumps(payload, default=str).encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self._cors_headers()
        self.end_headers()
        self.wfile.write(body)

    def _send_error(self, status: int, message: str) -> None:
        self._send_json(status, {"success": False, "error": message})


def make_server(
    manager: TournamentManager,
    host: str = "127.0.0.1",
    port: int = 6010,
    default_config: TournamentConfig | None = None,
) -> ThreadingHTTPServer:
    """Build a server bound to `manager`. Call serve_forever() to run it."""
    stopping = threading.Event()
    handler = type("BoundApiHandler", (ApiHandler,), {
        "manager": manager,
        "default_config": default_config,
        "stopping": stopping,
    })
    server = ThreadingHTTPServer((host, port), handler)
    server.daemon_threads = True
    server.stopping = stopping
    return server


def shutdown_server(server: ThreadingHTTPServer) -> None:
    """Stop accepting requests and end open log streams."""
    server.stopping.set()
    server.shutdown()
    server.server_close()
