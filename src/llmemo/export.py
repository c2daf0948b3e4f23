"""Export file: the whole archive as one pretty-printed JSON document."""

from __future__ import annotations

import json
from pathlib import Path

import structlog
from pydantic import ValidationError

from llmemo.models.records import ExportSnapshot

_logger = structlog.get_logger("llmemo.export")


class InvalidExportError(ValueError):
    """Raised when a file is not a readable LLMemo export."""

    def __init__(self, path: Path, reason: str) -> None:
        self.path = path
        super().__init__(f"{path} is not a valid LLMemo export: {reason}")


def export_filename(snapshot: ExportSnapshot) -> str:
    """``llmemo-export-YYYY-MM-DD.json`` for the snapshot's (UTC) export date."""
    return f"llmemo-export-{snapshot.exported_at.date().isoformat()}.json"


def dumps_export(snapshot: ExportSnapshot) -> str:
    """Serialize *snapshot* as ``{exportedAt, sessions, messages}`` with 2-space indent."""
    return json.dumps(snapshot.to_wire(), indent=2, ensure_ascii=False)


def write_export(snapshot: ExportSnapshot, directory: str | Path = ".") -> Path:
    """
    Write *snapshot* into *directory* and return the file path.

    An export from the same day overwrites the earlier one.

    Args:
        snapshot: Result of ``ConversationStore.export_all()``.
        directory: Target directory; created if missing.

    Returns:
        Path of the written file.
    """
    target_dir = Path(directory).expanduser()
    target_dir.mkdir(parents=True, exist_ok=True)
    path = target_dir / export_filename(snapshot)
    path.write_text(dumps_export(snapshot) + "\n", encoding="utf-8")
    _logger.info(
        "export_written",
        path=str(path),
        sessions=len(snapshot.sessions),
        messages=len(snapshot.messages),
    )
    return path


def read_export(path: str | Path) -> ExportSnapshot:
    """
    Load an export file back into an :class:`ExportSnapshot`.

    Raises:
        InvalidExportError: If the file is unreadable, not JSON, or does not
            have the export shape.
    """
    source = Path(path).expanduser()
    try:
        raw = json.loads(source.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise InvalidExportError(source, str(exc)) from exc
    try:
        return ExportSnapshot.model_validate(raw)
    except ValidationError as exc:
        raise InvalidExportError(source, str(exc)) from exc
