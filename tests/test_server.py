"""Tests for the HTTP API and the SSE log stream."""

import http.client
import json
import threading
import urllib.error
import urllib.request
from unittest.mock import MagicMock

import pytest

from pokerwars.server import make_server, shutdown_server
from pokerwars.tournament import TournamentConflictError, TournamentManager

from conftest import make_config, make_config_dict

QUICK = ("raise_maniac", "always_call")


def _serve(manager, default_config=None):
    server = make_server(manager, "127.0.0.1", 0, default_config=default_config)
    threading.Thread(target=server.serve_forever, daemon=True).start()
    return server, f"http://127.0.0.1:{server.server_address[1]}"


def _call(base, path, method="GET", body=None, raw=None):
    data = raw if raw is not None else (json.dumps(body).encode() if body is not None else None)
    request = urllib.request.Request(
        base + path, data=data, method=method, headers={"Content-Type": "application/json"},
    )
    try:
        with urllib.request.urlopen(request, timeout=10) as resp:
            return resp.status, json.loads(resp.read())
    except urllib.error.HTTPError as e:
        return e.code, json.loads(e.read())


@pytest.fixture
def api(storage):
    manager = TournamentManager(storage)
    server, base = _serve(manager, default_config=make_config(strategies=QUICK))
    yield manager, base
    manager.stop(timeout=30)
    shutdown_server(server)


@pytest.fixture
def finished_run(api):
    manager, base = api
    status, body = _call(base, "/api/game/start", "POST", body={})
    assert status == 200
    manager.join(timeout=60)
    return manager, base, body["run_id"]


class TestBasics:
    def test_health(self, api):
        _, base = api
        assert _call(base, "/health") == (200, {"status": "ok"})

    def test_no_game_yet(self, api):
        _, base = api
        status, body = _call(base, "/api/game")
        assert status == 404
        assert body == {"success": False, "error": "No game found"}

    def test_games_empty(self, api):
        _, base = api
        assert _call(base, "/api/games") == (200, {"success": True, "games": []})

    def test_unknown_route(self, api):
        _, base = api
        status, body = _call(base, "/api/nope")
        assert status == 404
        assert body["success"] is False

    def test_options_preflight(self, api):
        _, base = api
        request = urllib.request.Request(base + "/api/game/start", method="OPTIONS")
        with urllib.request.urlopen(request, timeout=10) as resp:
            assert resp.status == 204
            assert resp.headers["Access-Control-Allow-Origin"] == "*"

    def test_invalid_run_id(self, api):
        _, base = api
        status, body = _call(base, "/api/game?run_id=..%2Fetc")
        assert status == 400
        assert "Invalid run id" in body["error"]

    def test_unknown_run_id(self, api):
        _, base = api
        status, _ = _call(base, "/api/hands?run_id=2026-01-01-missing0")
        assert status == 404


class TestStart:
    def test_start_with_body_config(self, api):
        manager, base = api
        status, body = _call(base, "/api/game/start", "POST", body={"config": make_config_dict(strategies=QUICK)})
        assert status == 200
        assert body["success"] is True
        assert body["game"]["status"] == "in_progress"
        manager.join(timeout=60)

    def test_invalid_config(self, api):
        _, base = api
        status, body = _call(base, "/api/game/start", "POST", body={"tournament": {"starting_stack": -1}})
        assert status == 400
        assert "Invalid config" in body["error"]
        assert "starting_stack" in body["error"]

    def test_invalid_json(self, api):
        _, base = api
        status, body = _call(base, "/api/game/start", "POST", raw=b"{not json")
        assert status == 400
        assert "Invalid JSON" in body["error"]

    def test_non_mapping_config_section(self, api):
        _, base = api
        raw = make_config_dict(strategies=QUICK)
        raw["server"] = [1]
        status, body = _call(base, "/api/game/start", "POST", body=raw)
        assert status == 400
        assert "server: must be a mapping" in body["error"]

    @pytest.mark.parametrize("length", ["abc", "-5"])
    def test_bad_content_length(self, api, length):
        _, base = api
        host, port = base.removeprefix("http://").split(":")
        conn = http.client.HTTPConnection(host, int(port), timeout=10)
        try:
            conn.putrequest("POST", "/api/game/start")
            conn.putheader("Content-Type", "application/json")
            conn.putheader("Content-Length", length)
            conn.endheaders()
            resp = conn.getresponse()
            status, body = resp.status, json.loads(resp.read())
        finally:
            conn.close()
        assert status == 400
        assert body == {"success": False, "error": "Invalid Content-Length header"}
        assert api[0].is_running() is False

    def test_no_default_config(self, storage):
        server, base = _serve(TournamentManager(storage))
        try:
            status, body = _call(base, "/api/game/start", "POST", body={})
        finally:
            shutdown_server(server)
        assert status == 400
        assert "No config given" in body["error"]

    def test_conflict(self):
        manager = MagicMock()
        manager.start.side_effect = TournamentConflictError("Run r1 is already in progress")
        server, base = _serve(manager, default_config=make_config())
        try:
            status, body = _call(base, "/api/game/start", "POST", body={})
        finally:
            shutdown_server(server)
        assert status == 409
        assert body == {"success": False, "error": "Run r1 is already in progress"}


class TestRunViews:
    def test_game(self, finished_run):
        _, base, run_id = finished_run
        status, body = _call(base, "/api/game")
        assert status == 200
        assert body["game"]["run_id"] == run_id
        assert body["game"]["status"] == "completed"
        assert body["running"] is False
        assert body["current_hand"] is None
        assert body["last_error"] is None
        assert body["hands"][0]["hand_number"] == 1

    def test_games_lists_run(self, finished_run):
        _, base, run_id = finished_run
        _, body = _call(base, "/api/games")
        (game,) = body["games"]
        assert game["run_id"] == run_id
        assert game["winner"] is not None

    def test_hands(self, finished_run):
        _, base, run_id = finished_run
        status, body = _call(base, f"/api/hands?run_id={run_id}")
        assert status == 200
        assert body["run_id"] == run_id
        assert all(h["pot_size"] > 0 for h in body["hands"])

    def test_single_hand(self, finished_run):
        _, base, run_id = finished_run
        status, body = _call(base, f"/api/hands/1?run_id={run_id}")
        assert status == 200
        assert body["hand"]["hand_number"] == 1
        assert len(body["hand"]["seats"]) == 2

    def test_missing_hand(self, finished_run):
        _, base, run_id = finished_run
        status, body = _call(base, f"/api/hands/9999?run_id={run_id}")
        assert status == 404
        assert "Hand 9999 not found" in body["error"]


class TestLogStream:
    def test_replays_log(self, finished_run):
        _, base, run_id = finished_run
        types = []
        with urllib.request.urlopen(f"{base}/api/logs/stream?run_id={run_id}", timeout=10) as resp:
            assert resp.headers["Content-Type"] == "text/event-stream"
            while "tournament_end" not in types:
                line = resp.readline().decode("utf-8").strip()
                if line.startswith("data: "):
                    types.append(json.loads(line[len("data: "):])["type"])
        assert types[0] == "hand_start"
        assert "decision" in types
        assert "hand_end" in types

    def test_unknown_run(self, api):
        _, base = api
        status, body = _call(base, "/api/logs/stream?run_id=2026-01-01-missing0")
        assert status == 404
        assert body["success"] is False
