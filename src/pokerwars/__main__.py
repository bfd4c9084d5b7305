"""CLI entry point: python -m pokerwars <command>

Commands:
    serve   HTTP API; resumes the latest unfinished run on startup
    run     play one tournament in the foreground
    watch   live terminal view of a run
    runs    list runs
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

from pokerwars.config import ConfigError, StorageConfig, TournamentConfig, load_config
from pokerwars.core.mongo_sink import MongoSink
from pokerwars.storage import RunStorage
from pokerwars.tournament import RunNotFoundError, TournamentManager

DEFAULT_CONFIG = Path("config.yaml")


def _build_storage(storage_cfg: StorageConfig) -> RunStorage:
    mirror = None
    if storage_cfg.mongo_uri:
        mirror = MongoSink(storage_cfg.mongo_uri, storage_cfg.mongo_db)
    return RunStorage(storage_cfg.runs_dir, mirror=mirror)


def _load(path: Path) -> TournamentConfig:
    try:
        return load_config(path)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


def _print_results(storage: RunStorage, run_id: str) -> None:
    state = storage.load_state(run_id)
    print("=" * 60)
    print(f"RESULTS  {state.name} ({run_id})")
    print("=" * 60)
    print(f"  Status: {state.status.value}   Hands: {state.current_hand}")
    if state.winner is not None:
        print(f"  Winner: seat {state.winner} ({state.seat(state.winner).agent})")
    print()
    print("-" * 60)
    print("FIDELITY")
    print("-" * 60)
    for seat_key, counts in state.fidelity.items():
        seat = state.seat(int(seat_key))
        print(
            f"  seat {seat_key} {seat.agent:30s} decisions {counts.get('decisions', 0):>4d}"
            f"  fallbacks {counts.get('fallbacks', 0):>3d}"
            f"  violations {counts.get('total_violations', 0):>3d}"
        )
    print()
    print(f"Run directory: {storage.run_dir(run_id)}")


# ------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------

def cmd_serve(args) -> None:
    from pokerwars.server import make_server, shutdown_server

    config = _load(args.config)
    storage = _build_storage(config.storage)
    manager = TournamentManager(storage)

    if not args.no_resume:
        try:
            state = manager.resume_latest(config)
        except (RunNotFoundError, ConfigError) as e:
            logging.getLogger("pokerwars").warning("Auto-resume skipped: %s", e)
            state = None
        if state is not None:
            print(f"Resumed run {state.run_id} at hand {state.current_hand}")

    host = args.host or config.server.host
    port = args.port or config.server.port
    server = make_server(manager, host, port, default_config=config)
    print(f"Poker Wars API on http://{host}:{port}")
    print(f"  Runs: {storage.root.resolve()}")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\nShutting down.")
    finally:
        shutdown_server(server)
        manager.stop(timeout=5)
        storage.close()


def cmd_run(args) -> None:
    config = _load(args.config)
    storage = _build_storage(config.storage)
    manager = TournamentManager(storage)

    print(f"Tournament: {config.name} (seed={config.seed}, seats={len(config.seats)})")
    try:
        if args.resume:
            state = manager.resume(args.resume, config)
        else:
            state = manager.start(config)
    except (ConfigError, RunNotFoundError) as e:
        print(f"Error: {e}", file=sys.stderr)
        storage.close()
        sys.exit(2)

    print(f"Run: {state.run_id}")
    print()
    try:
        manager.join()
    except KeyboardInterrupt:
        print("\nStopping after the current hand...")
        manager.stop()
    finally:
        storage.close()

    if manager.last_error:
        print(f"Error: run halted: {manager.last_error}", file=sys.stderr)
        sys.exit(1)
    _print_results(storage, state.run_id)


def cmd_watch(args) -> None:
    from pokerwars.spectate import watch

    storage = RunStorage(args.runs_dir)
    run_id = args.run_id
    if run_id is None:
        runs = storage.list_runs()
        if not runs:
            print(f"No runs found in {storage.root.resolve()}", file=sys.stderr)
            sys.exit(1)
        run_id = runs[0]["run_id"]
    elif not storage.run_exists(run_id):
        print(f"Error: run {run_id} not found", file=sys.stderr)
        sys.exit(1)
    watch(storage, run_id)


def cmd_runs(args) -> None:
    storage = RunStorage(args.runs_dir)
    runs = storage.list_runs()
    if not runs:
        print("No runs.")
        return
    for run in runs:
        winner = run["winner"]
        winner_text = f"seat {winner['seat_index']} ({winner['agent']})" if winner else "-"
        print(
            f"  {run['run_id']:24s} {run['status']:12s} hands {run['hands_played']:>4d}"
            f"  seats {run['seat_count']:>2d}  winner {winner_text}"
        )


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="pokerwars",
        description="LLM No-Limit Hold'em tournaments",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")
    parser.add_argument("--env-file", type=Path, default=None, help="Load API keys from this .env file")
    sub = parser.add_subparsers(dest="command", required=True)

    serve = sub.add_parser("serve", help="Run the HTTP API")
    serve.add_argument("-c", "--config", type=Path, default=DEFAULT_CONFIG)
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--no-resume", action="store_true", help="Do not resume the latest unfinished run")
    serve.set_defaults(func=cmd_serve)

    run = sub.add_parser("run", help="Play a tournament in the foreground")
    run.add_argument("-c", "--config", type=Path, default=DEFAULT_CONFIG)
    run.add_argument("--resume", metavar="RUN_ID", default=None, help="Resume this run instead of starting one")
    run.set_defaults(func=cmd_run)

    watch = sub.add_parser("watch", help="Live terminal view of a run")
    watch.add_argument("run_id", nargs="?", default=None)
    watch.add_argument("--runs-dir", type=Path, default=Path("runs"))
    watch.set_defaults(func=cmd_watch)

    runs = sub.add_parser("runs", help="List runs")
    runs.add_argument("--runs-dir", type=Path, default=Path("runs"))
    runs.set_defaults(func=cmd_runs)

    args = parser.parse_args()
    load_dotenv(args.env_file)
    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    args.func(args)


if __name__ == "__main__":
    main()
