"""
Command-line access to an LLMemo archive.

Every command goes through the same request router the capture side uses::

    llmemo sessions
    llmemo messages sess_01JXYZ...
    llmemo search "retry policy"
    llmemo stats
    llmemo export --out ~/backups
    llmemo wipe --yes

Add ``--db PATH`` to any command to use a database other than
``~/.llmemo/llmemo.db``, and ``--json`` to print the raw response.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any

import structlog

from llmemo.app import Llmemo
from llmemo.export import write_export
from llmemo.models.records import ExportSnapshot

UNTITLED = "Untitled conversation"
TITLE_CHARS = 50

_logger = structlog.get_logger("llmemo.cli")


def session_title(session: dict[str, Any], messages: list[dict[str, Any]] | None = None) -> str:
    """
    Display title for a session (wire form).

    The stored title wins; otherwise the first user message, cut at 50
    characters with an ellipsis; otherwise ``"Untitled conversation"``.
    """
    if session.get("title"):
        return session["title"]
    for message in messages or []:
        if message.get("role") == "user":
            content = message.get("content", "")
            suffix = "..." if len(content) > TITLE_CHARS else ""
            return content[:TITLE_CHARS] + suffix
    return UNTITLED


# ── Commands ──────────────────────────────────────────────────────────────────


async def _sessions(memo: Llmemo, args: argparse.Namespace) -> dict[str, Any]:
    response = await memo.router.handle({"type": "GET_SESSIONS"})
    if response["success"] and not args.json:
        if not response["sessions"]:
            print("No sessions recorded yet.")
        for session in response["sessions"]:
            print(
                f"{session['id']}  {session['provider']:<7} "
                f"{session['startedAt'][:19]}  {session['messageCount']:>4} msgs  "
                f"{session_title(session)}"
            )
    return response


async def _messages(memo: Llmemo, args: argparse.Namespace) -> dict[str, Any]:
    response = await memo.router.handle(
        {"type": "GET_SESSION_MESSAGES", "sessionId": args.session_id}
    )
    if response["success"] and not args.json:
        messages = sorted(response["messages"], key=lambda m: m["timestamp"])
        listing = await memo.router.handle({"type": "GET_SESSIONS"})
        session = next(
            (s for s in listing.get("sessions", []) if s["id"] == args.session_id), {}
        )
        print(f"# {session_title(session, messages)}\n")
        for message in messages:
            print(f"[{message['timestamp'][:19]}] {message['role']}:")
            print(message["content"])
            print()
    return response


async def _search(memo: Llmemo, args: argparse.Namespace) -> dict[str, Any]:
    response = await memo.router.handle({"type": "SEARCH", "query": args.query})
    if response["success"] and not args.json:
        results = response["results"]
        print(f"{len(results)} match{'es' if len(results) != 1 else ''}")
        for message in results:
            preview = message["content"].replace("\n", " ")
            if len(preview) > 100:
                preview = preview[:100] + "..."
            print(f"  {message['sessionId']}  {message['role']:<9} {preview}")
    return response


async def _stats(memo: Llmemo, args: argparse.Namespace) -> dict[str, Any]:
    response = await memo.router.handle({"type": "GET_STATS"})
    if response["success"] and not args.json:
        stats = response["stats"]
        print(f"Sessions : {stats['totalSessions']}")
        print(f"Messages : {stats['totalMessages']}")
        for provider, count in sorted(stats["byProvider"].items()):
            print(f"  {provider:<8}: {count}")
        if stats["oldestSession"]:
            print(f"Oldest   : {stats['oldestSession'][:19]}")
            print(f"Newest   : {stats['newestSession'][:19]}")
    return response


async def _export(memo: Llmemo, args: argparse.Namespace) -> dict[str, Any]:
    response = await memo.router.handle({"type": "EXPORT"})
    if response["success"]:
        snapshot = ExportSnapshot.model_validate(response["data"])
        path = write_export(snapshot, args.out)
        response = {"success": True, "path": str(path)}
        if not args.json:
            print(f"Exported {len(snapshot.sessions)} sessions, "
                  f"{len(snapshot.messages)} messages → {path}")
    return response


async def _wipe(memo: Llmemo, args: argparse.Namespace) -> dict[str, Any]:
    response = await memo.router.handle({"type": "WIPE_ALL"})
    if response["success"] and not args.json:
        print("All sessions, messages and settings deleted.")
    return response


_COMMANDS = {
    "sessions": _sessions,
    "messages": _messages,
    "search": _search,
    "stats": _stats,
    "export": _export,
    "wipe": _wipe,
}


# ── CLI ───────────────────────────────────────────────────────────────────────


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--db",
        default=None,
        help="SQLite database file (default: ~/.llmemo/llmemo.db)",
    )
    common.add_argument(
        "--json",
        action="store_true",
        help="Print the raw router response as JSON",
    )
    common.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Log progress to stderr (default: warnings only)",
    )

    p = argparse.ArgumentParser(
        prog="llmemo",
        description="Browse, search and export captured AI chat conversations.",
    )
    sub = p.add_subparsers(dest="command", required=True)
    sub.add_parser("sessions", parents=[common], help="List sessions, newest first")
    messages = sub.add_parser("messages", parents=[common], help="Show one session's messages")
    messages.add_argument("session_id")
    search = sub.add_parser("search", parents=[common], help="Case-insensitive full-text search")
    search.add_argument("query")
    sub.add_parser("stats", parents=[common], help="Totals and per-provider counts")
    export = sub.add_parser("export", parents=[common], help="Write the JSON export file")
    export.add_argument(
        "--out",
        type=Path,
        default=Path("."),
        help="Directory for llmemo-export-YYYY-MM-DD.json (default: current directory)",
    )
    wipe = sub.add_parser("wipe", parents=[common], help="Delete everything (irreversible)")
    wipe.add_argument("--yes", action="store_true", help="Confirm the wipe")
    return p.parse_args(argv)


async def run(args: argparse.Namespace) -> int:
    """Execute a parsed command. Returns the process exit code."""
    if args.command == "wipe" and not args.yes:
        print("Refusing to wipe without --yes.", file=sys.stderr)
        return 2

    async with Llmemo.open(db_path=args.db) as memo:
        response = await _COMMANDS[args.command](memo, args)

    if args.json:
        print(json.dumps(response, indent=2, ensure_ascii=False))
    if not response.get("success"):
        _logger.error("command_failed", command=args.command, error=response.get("error"))
        if not args.json:
            print(f"ERROR: {response.get('error')}", file=sys.stderr)
        return 1
    return 0


def configure_logging(verbose: bool = False) -> None:
    """Send structlog output to stderr so stdout carries only command output."""
    structlog.configure(
        wrapper_class=structlog.make_filtering_bound_logger(
            logging.INFO if verbose else logging.WARNING
        ),
        # Looked up per logger so a replaced sys.stderr is honoured.
        logger_factory=lambda *args: structlog.PrintLogger(sys.stderr),
    )


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(args.verbose)
    return asyncio.run(run(args))


if __name__ == "__main__":
    sys.exit(main())
