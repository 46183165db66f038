"""Entrypoint: solve or debug screenshots from the command line."""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

sys.path.insert(0, str(Path(__file__).resolve().parent / "src"))

from snap_solver.config import ConfigStore
from snap_solver.coordinator import PipelineCoordinator
from snap_solver.events import EventChannel, ProcessingEvent
from snap_solver.history import CallHistory, apply_migrations
from snap_solver.llm.registry import ProviderClientRegistry, check_credentials
from snap_solver.llm.types import ProviderIdentity
from snap_solver.screenshots import ScreenshotQueues


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Screenshot-to-answer assistant")
    parser.add_argument("--settings", default="config/settings.yaml", help="Path to settings.yaml")

    subparsers = parser.add_subparsers(dest="command")
    solve = subparsers.add_parser("solve", help="Solve the screenshots in the main queue (default)")
    solve.add_argument("images", nargs="*", help="Screenshot files (defaults to the configured directory)")
    solve.add_argument("--extra", nargs="*", default=None, help="Extra screenshots for a follow-up debug pass")
    solve.add_argument("--debug", action="store_true", help="Run the debug pipeline after a successful solve")

    check = subparsers.add_parser("check-key", help="Validate an API key format")
    check.add_argument("provider", choices=[p.value for p in ProviderIdentity])
    check.add_argument("api_key")

    history = subparsers.add_parser("history", help="Show recent pipeline runs")
    history.add_argument("--limit", type=int, default=20)

    subparsers.add_parser("init-db", help="Apply SQLite migrations only")
    return parser


def _print_event(event: ProcessingEvent, payload) -> None:
    if event is ProcessingEvent.STATUS:
        print(f"[{payload['progress']:>3}%] {payload['message']}")
    elif event in (ProcessingEvent.SOLUTION_SUCCESS, ProcessingEvent.DEBUG_SUCCESS):
        print(f"== {event.value} ==")
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    elif payload is None or isinstance(payload, dict):
        print(f"-- {event.value}")
    elif isinstance(payload, str):
        print(f"-- {event.value}: {payload}")


def _run_solve(args, store: ConfigStore) -> int:
    settings = store.load()
    if args.images or args.extra is not None:
        queues = ScreenshotQueues(args.images, args.extra or ())
    else:
        queues = ScreenshotQueues.from_directories(settings.screenshot_dir, settings.extra_screenshot_dir)

    history = CallHistory(settings.history_path) if settings.history_enabled else None
    registry = ProviderClientRegistry(call_logger=history.log_call if history else None)
    registry.apply_settings(settings)
    channel = EventChannel()
    channel.subscribe(_print_event)
    coordinator = PipelineCoordinator(store, registry, queues, channel=channel, history=history)
    try:
        result = coordinator.solve()
        if result.ok and args.debug:
            result = coordinator.debug()
        return 0 if result.ok else 1
    finally:
        coordinator.close()
        if history is not None:
            history.close()


def _run_history(limit: int, db_path: str) -> None:
    history = CallHistory(db_path)
    try:
        runs = history.recent_runs(limit)
        summary = history.summary()
    finally:
        history.close()
    print(
        f"{summary['calls']} call(s), {summary['failures']} failed, "
        f"tokens in/out {summary['tokens_in']}/{summary['tokens_out']}"
    )
    for run in runs:
        status = run["outcome"] if not run.get("error") else f"{run['outcome']}:{run['error']}"
        print(
            f"- {run['created_at']} {run['kind']} provider={run['provider']} "
            f"status={status} screenshots={run['screenshot_count']}"
        )


def main() -> None:
    load_dotenv()
    parser = _build_parser()
    args = parser.parse_args()
    command = args.command or "solve"

    store = ConfigStore(args.settings)
    settings = store.load()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if command == "check-key":
        ok, error = check_credentials(ProviderIdentity(args.provider), args.api_key)
        print("valid" if ok else error)
        sys.exit(0 if ok else 1)

    if command == "init-db":
        apply_migrations(settings.history_path)
        print(f"Database initialized at {settings.history_path}")
        return

    if command == "history":
        _run_history(args.limit, settings.history_path)
        return

    if not hasattr(args, "images"):
        args = parser.parse_args(["solve"])
    sys.exit(_run_solve(args, store))


if __name__ == "__main__":
    main()
