#!/usr/bin/env python3
"""
livesync CLI - manage sessions and watch one live from the terminal.

Usage:
  livesync create-session "Onboarding checklist"
  livesync add-task ABC123 "Install the toolchain"
  livesync list-sessions
  livesync watch ABC123 --name Ada
  livesync watch ABC123 --coordinator --seconds 120
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path
from typing import List, Optional

from livesync.core.errors import LiveSyncError
from livesync.core.logging import configure_logging
from livesync.core.settings import Settings, get_settings
from livesync.infra.identity import JsonFileIdentityStore
from livesync.infra.store import RemoteStore, Row, create_store
from livesync.realtime import LiveSession, SyncRole, participant_completion
from livesync.schemas import ResourceKind
from livesync.services import SessionService


def format_tasks(rows: List[Row]) -> str:
    lines = [f"Tasks ({len(rows)}):"]
    lines.extend(f"  {r.get('order_index')}. {r.get('title')}" for r in rows)
    return "\n".join(lines)


def format_progress(live: LiveSession) -> str:
    tasks = live.get_snapshot(ResourceKind.TASKS)
    progress = live.get_snapshot(ResourceKind.PROGRESS)
    if live.role == SyncRole.PARTICIPANT and live.participant is not None:
        done, total = participant_completion(live.participant.id, tasks, progress)
        return f"Progress: {done}/{total}"
    lines = ["Progress:"]
    for p in live.get_snapshot(ResourceKind.PARTICIPANTS):
        done, total = participant_completion(p["id"], tasks, progress)
        lines.append(f"  {p.get('name')}: {done}/{total}")
    return "\n".join(lines)


def connectivity_line(live: LiveSession) -> str:
    line = f"participants online: {live.participant_count()}"
    if not live.is_connection_degraded():
        return f"[live] {line}"
    reasons = "; ".join(f"{e.kind}: {e.reason}" for e in live.connection_errors())
    return f"[degraded (polling)] {line}" + (f" ({reasons})" if reasons else "")


async def create_session(store: RemoteStore, title: str) -> int:
    session = await SessionService(store).create_session(title)
    print(f"Created session '{session.title}' with code {session.code}")
    return 0


async def add_task(store: RemoteStore, code: str, title: str) -> int:
    service = SessionService(store)
    session = await service.get_session_by_code(code)
    task = await service.add_task(session.id, title)
    print(f"Added task #{task.order_index} '{task.title}' to {session.code}")
    return 0


async def list_sessions(store: RemoteStore) -> int:
    for session in await SessionService(store).list_sessions():
        status = "active" if session.active else "closed"
        print(f"{session.code}  {session.title}  ({status})")
    return 0


async def watch(
    store: RemoteStore,
    config: Settings,
    code: str,
    name: Optional[str],
    coordinator: bool,
    seconds: Optional[float],
) -> int:
    identity = JsonFileIdentityStore(Path(config.IDENTITY_PATH).expanduser())
    role = SyncRole.COORDINATOR if coordinator else SyncRole.PARTICIPANT
    async with LiveSession(store, identity, role=role, config=config) as live:
        session = await live.attach_to_session(code, participant_name=name)
        print(f"Attached to '{session.title}' ({session.code}) as {role.value}")

        live.on_snapshot_changed(ResourceKind.TASKS, lambda rows: print(format_tasks(rows)))
        live.on_snapshot_changed(ResourceKind.PROGRESS, lambda _rows: print(format_progress(live)))
        live.on_snapshot_changed(
            ResourceKind.PARTICIPANTS, lambda _rows: print(connectivity_line(live))
        )
        print(format_tasks(live.get_snapshot(ResourceKind.TASKS)))
        print(format_progress(live))

        loop = asyncio.get_running_loop()
        deadline = loop.time() + seconds if seconds else None
        last_line = ""
        while deadline is None or loop.time() < deadline:
            line = connectivity_line(live)
            if line != last_line:
                print(line)
                last_line = line
            await asyncio.sleep(1.0)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="livesync CLI")
    parser.add_argument("--log-level", default=None, help="Override LIVESYNC_LOG_LEVEL")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    sub = parser.add_subparsers(dest="command", required=True)

    create_cmd = sub.add_parser("create-session", help="Create a session and print its code")
    create_cmd.add_argument("title", help="Session title")

    task_cmd = sub.add_parser("add-task", help="Append a task to a session")
    task_cmd.add_argument("code", help="Session join code")
    task_cmd.add_argument("title", help="Task title")

    sub.add_parser("list-sessions", help="List sessions, newest first")

    watch_cmd = sub.add_parser("watch", help="Attach to a session and print live changes")
    watch_cmd.add_argument("code", help="Session join code")
    watch_cmd.add_argument("--name", default=None, help="Participant display name")
    watch_cmd.add_argument(
        "--coordinator", action="store_true", help="Watch every participant's progress"
    )
    watch_cmd.add_argument(
        "--seconds", type=float, default=None, help="Stop after this many seconds"
    )
    return parser


async def run(args: argparse.Namespace, config: Settings) -> int:
    store = create_store(config)
    try:
        if args.command == "create-session":
            return await create_session(store, args.title)
        if args.command == "add-task":
            return await add_task(store, args.code, args.title)
        if args.command == "list-sessions":
            return await list_sessions(store)
        return await watch(
            store, config, args.code, args.name, args.coordinator, args.seconds
        )
    finally:
        await store.close()


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    config = get_settings()
    configure_logging(level=args.log_level, json_output=True if args.json_logs else None)

    try:
        return asyncio.run(run(args, config))
    except LiveSyncError as exc:
        print(f"error [{exc.category.value}]: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
