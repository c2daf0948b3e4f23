"""Tests for the llmemo command line."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest
import structlog

from llmemo.app import Llmemo
from llmemo.cli import UNTITLED, main, session_title
from tests.conftest import CLAUDE_URL


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    structlog.reset_defaults()


@pytest.fixture
def db(tmp_path):
    """Path of a database holding one two-turn Claude conversation."""
    path = str(tmp_path / "cli.db")

    async def _seed() -> None:
        async with Llmemo.open(db_path=path) as memo:
            for role, content in (("user", "Hello"), ("assistant", "Hi there")):
                await memo.router.handle(
                    {
                        "type": "NEW_MESSAGE",
                        "payload": {
                            "provider": "claude",
                            "conversationId": "abc123",
                            "url": CLAUDE_URL,
                            "role": role,
                            "content": content,
                        },
                    }
                )

    asyncio.run(_seed())
    return path


def run_json(capsys, *argv: str) -> dict:
    assert main([*argv, "--json"]) == 0
    return json.loads(capsys.readouterr().out)


class TestCommands:
    def test_sessions(self, db, capsys):
        assert main(["sessions", "--db", db]) == 0
        out = capsys.readouterr().out
        assert "claude" in out
        assert "2 msgs" in out
        assert UNTITLED in out

    def test_messages(self, db, capsys):
        session_id = run_json(capsys, "sessions", "--db", db)["sessions"][0]["id"]
        assert main(["messages", session_id, "--db", db]) == 0
        out = capsys.readouterr().out
        assert out.startswith("# Hello")
        assert "user:\nHello" in out
        assert "assistant:\nHi there" in out

    def test_search(self, db, capsys):
        data = run_json(capsys, "search", "HI", "--db", db)
        assert [m["content"] for m in data["results"]] == ["Hi there"]

    def test_stats(self, db, capsys):
        assert main(["stats", "--db", db]) == 0
        out = capsys.readouterr().out
        assert "Sessions : 1" in out
        assert "Messages : 2" in out

    def test_export(self, db, capsys, tmp_path):
        out_dir = tmp_path / "exports"
        data = run_json(capsys, "export", "--out", str(out_dir), "--db", db)
        path = Path(data["path"])
        assert path.parent == out_dir
        exported = json.loads(path.read_text(encoding="utf-8"))
        assert len(exported["messages"]) == 2

    def test_wipe_requires_confirmation(self, db, capsys):
        assert main(["wipe", "--db", db]) == 2
        assert "--yes" in capsys.readouterr().err
        assert run_json(capsys, "stats", "--db", db)["stats"]["totalMessages"] == 2

    def test_wipe(self, db, capsys):
        assert main(["wipe", "--yes", "--db", db]) == 0
        capsys.readouterr()
        assert run_json(capsys, "stats", "--db", db)["stats"]["totalSessions"] == 0


class TestSessionTitle:
    def test_stored_title_wins(self):
        assert session_title({"title": "Plans"}, [{"role": "user", "content": "x"}]) == "Plans"

    def test_first_user_message_truncated(self):
        messages = [
            {"role": "assistant", "content": "Welcome"},
            {"role": "user", "content": "a" * 60},
        ]
        assert session_title({}, messages) == "a" * 50 + "..."

    def test_short_first_message_not_truncated(self):
        assert session_title({"title": None}, [{"role": "user", "content": "Hello"}]) == "Hello"

    def test_untitled(self):
        assert session_title({}) == UNTITLED
