"""Command line for talking to a channel's persistent runner.

Usage:
    xangi ask [--channel C] [--timeout S] [--new] PROMPT...
    xangi sessions list
    xangi sessions delete CHANNEL
    xangi settings show
    xangi settings set --auto-restart on|off
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from xangi.config import AppConfig, load_env
from xangi.lifecycle.sessions import SessionStore, reset_session
from xangi.lifecycle.settings import SettingsStore, format_settings
from xangi.runners.ports import Runner
from xangi.runners.registry import RunnerRegistry


def _parse_args(argv: list[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="xangi", description="Persistent Claude Code runner")
    sub = parser.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="send a prompt and stream the reply")
    ask.add_argument("prompt", nargs="+", help="prompt text")
    ask.add_argument("--channel", "-c", default="cli", help="conversation channel (default: cli)")
    ask.add_argument("--timeout", type=float, default=None, help="max seconds to wait for the reply")
    ask.add_argument("--new", action="store_true", help="start a fresh session for the channel")

    sessions = sub.add_parser("sessions", help="inspect stored sessions")
    sessions_sub = sessions.add_subparsers(dest="action", required=True)
    sessions_sub.add_parser("list", help="list channel -> session IDs")
    delete = sessions_sub.add_parser("delete", help="forget a channel's session")
    delete.add_argument("channel")

    settings = sub.add_parser("settings", help="show or change settings")
    settings_sub = settings.add_subparsers(dest="action", required=True)
    settings_sub.add_parser("show")
    set_cmd = settings_sub.add_parser("set")
    set_cmd.add_argument("--auto-restart", choices=["on", "off"], required=True)

    return parser.parse_args(argv)


async def _stream_reply(runner: Runner, prompt: str) -> int:
    wrote_text = False
    async for kind, payload in runner.run(prompt):
        if kind == "text":
            sys.stdout.write(str(payload))
            sys.stdout.flush()
            wrote_text = True
        elif kind == "result" and not wrote_text:
            sys.stdout.write(getattr(payload, "result", ""))
        elif kind == "error":
            print(f"\nError: {payload}", file=sys.stderr)
            return 1
    sys.stdout.write("\n")
    return 0


async def _ask(args: argparse.Namespace, app: AppConfig) -> int:
    prompt = " ".join(args.prompt).strip()
    if not prompt:
        print("Error: empty prompt", file=sys.stderr)
        return 1

    sessions = SessionStore(app.data_dir)
    registry = RunnerRegistry(app.runner, sessions, SettingsStore(app.workdir))
    try:
        if args.new:
            await reset_session(registry, sessions, args.channel)
        runner = registry.get(args.channel)
        try:
            return await asyncio.wait_for(_stream_reply(runner, prompt), timeout=args.timeout)
        except asyncio.TimeoutError:
            print(f"\nError: no reply within {args.timeout:g}s", file=sys.stderr)
            return 3
    finally:
        await registry.aclose()


def _sessions(args: argparse.Namespace, app: AppConfig) -> int:
    store = SessionStore(app.data_dir)
    if args.action == "list":
        if not len(store):
            print("No sessions.")
        for channel_id, session_id in store.items():
            print(f"{channel_id}\t{session_id}")
        return 0

    if store.delete(args.channel):
        print(f"Deleted session for {args.channel}")
        return 0
    print(f"No session for {args.channel}", file=sys.stderr)
    return 1


def _settings(args: argparse.Namespace, app: AppConfig) -> int:
    store = SettingsStore(app.workdir)
    if args.action == "set":
        print(format_settings(store.save(auto_restart=args.auto_restart == "on")))
    else:
        print(format_settings(store.load()))
    return 0


async def main(argv: list[str]) -> int:
    args = _parse_args(argv)

    load_env()
    app = AppConfig.from_env()
    logging.basicConfig(
        level=getattr(logging, app.log_level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    if args.command == "ask":
        return await _ask(args, app)
    if args.command == "sessions":
        return _sessions(args, app)
    return _settings(args, app)


def run() -> None:
    raise SystemExit(asyncio.run(main(sys.argv[1:])))


if __name__ == "__main__":
    run()
