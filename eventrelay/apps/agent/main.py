"""Relay agent command line.

Runs the agent, or performs one control-surface operation against the
configured store and collector:

    eventrelay run                 # run until interrupted
    eventrelay flush               # one delivery cycle, request path only
    eventrelay export -o out.json  # every stored event
    eventrelay stats               # aggregate counts
    eventrelay submit '{"type": "page_open", "url": "https://example.com"}'

Settings come from EVENTRELAY_* environment variables; flags override them.

Usage:
    python -m eventrelay.apps.agent.main --help
"""

import argparse
import asyncio
import contextlib
import dataclasses
import json
import logging
import signal
import sys
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ValidationError

from eventrelay.core.agent import ControlResult, RelayAgent
from eventrelay.core.config import RelaySettings
from eventrelay.core.logging import configure_relay_logger


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return dataclasses.asdict(value)
    return str(value)


def render(result: ControlResult) -> str:
    """JSON view of a control result: {"status", "data"} or {"status", "message"}."""
    body: dict[str, Any] = {"status": result.status}
    if result.data is not None:
        body["data"] = result.data
    if result.error is not None:
        body["message"] = result.error
    return json.dumps(body, indent=2, default=_json_default)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="eventrelay", description=__doc__.split("\n\n")[0])
    parser.add_argument("--store", choices=["memory", "sqlite", "redis"], help="event store")
    parser.add_argument("--store-path", type=Path, help="SQLite database file")
    parser.add_argument("--http-url", help="collector request endpoint")
    parser.add_argument("--ws-url", help="collector stream endpoint")
    parser.add_argument("--log-level", default="INFO", help="logging level (default: INFO)")

    sub = parser.add_subparsers(dest="command", required=True)
    run = sub.add_parser("run", help="run the agent until interrupted")
    run.add_argument("--flush-interval", type=float, help="seconds between delivery cycles")
    sub.add_parser("flush", help="run one delivery cycle now")
    export = sub.add_parser("export", help="print every stored event as JSON")
    export.add_argument("-o", "--output", type=Path, help="write to a file instead of stdout")
    sub.add_parser("stats", help="print aggregate statistics as JSON")
    submit = sub.add_parser("submit", help="store one event")
    submit.add_argument("event", nargs="?", help="JSON object (read from stdin if omitted)")
    return parser


def settings_from_args(args: argparse.Namespace) -> RelaySettings:
    overrides: dict[str, Any] = {}
    for flag, name in (
        ("store", "store"),
        ("store_path", "store_path"),
        ("http_url", "collector_http_url"),
        ("ws_url", "collector_ws_url"),
        ("flush_interval", "flush_interval"),
    ):
        value = getattr(args, flag, None)
        if value is not None:
            overrides[name] = value
    if args.command != "run":
        # One-shot commands never poll reachability
        overrides["connectivity_poll_interval"] = 0
    return RelaySettings.from_env(**overrides)


async def run_agent(settings: RelaySettings) -> None:
    """Run until SIGINT/SIGTERM."""
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        with contextlib.suppress(NotImplementedError):
            loop.add_signal_handler(sig, stop.set)

    agent = RelayAgent(settings)
    await agent.start()
    try:
        await stop.wait()
    finally:
        await agent.stop()


async def run_command(args: argparse.Namespace, settings: RelaySettings) -> int:
    """Execute a one-shot command; returns the process exit code."""
    agent = RelayAgent(settings)
    try:
        if args.command == "flush":
            result = await agent.flush_now()
        elif args.command == "export":
            result = await agent.export_all()
            if result.ok and args.output is not None:
                args.output.write_text(json.dumps(result.data, indent=2), encoding="utf-8")
                result = ControlResult(ok=True, data={"exported": len(result.data), "path": str(args.output)})
        elif args.command == "stats":
            result = await agent.compute_stats()
        else:
            raw = args.event if args.event is not None else sys.stdin.read()
            try:
                record = json.loads(raw)
            except ValueError as e:
                result = ControlResult(ok=False, error=f"invalid JSON: {e}")
            else:
                event_id = await agent.submit(record)
                result = (
                    ControlResult(ok=True, data={"id": event_id})
                    if event_id is not None
                    else ControlResult(ok=False, error="event rejected")
                )
    finally:
        await agent.stop()

    print(render(result))
    return 0 if result.ok else 1


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the relay agent CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    level = getattr(logging, str(args.log_level).upper(), logging.INFO)
    configure_relay_logger(level)

    try:
        settings = settings_from_args(args)
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 2

    if args.command == "run":
        asyncio.run(run_agent(settings))
        return 0
    return asyncio.run(run_command(args, settings))


if __name__ == "__main__":
    sys.exit(main())
