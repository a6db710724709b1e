"""File and conversation stores consumed by the context assembler.

The assembler only reads from these. Two implementations of each are
provided: an in-memory one for embedding the engine in another process,
and a filesystem one used by the CLI.
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path
from typing import Protocol, runtime_checkable

from ctxbundle.config import CONVERSATIONS_DIR, IndexerConfig
from ctxbundle.context.models import ConversationMessage
from ctxbundle.exceptions import StoreError
from ctxbundle.parser.core import collect_files


@runtime_checkable
class FileStore(Protocol):
    async def get_files(self, project_id: str, version_id: str | None = None) -> dict[str, str]:
        """All files of a project version as path -> content."""
        ...


@runtime_checkable
class ConversationStore(Protocol):
    async def get_recent_messages(self, project_id: str, limit: int) -> list[ConversationMessage]:
        """Up to `limit` most recent messages, oldest first."""
        ...


# ---------------------------------------------------------------------------
# File stores
# ---------------------------------------------------------------------------

class InMemoryFileStore:
    """Versioned file snapshots held in memory.

    ``version_id=None`` reads the most recently added version.
    """

    def __init__(self) -> None:
        self._versions: dict[str, dict[str, dict[str, str]]] = {}

    def add_version(self, project_id: str, files: dict[str, str], version_id: str = "") -> None:
        versions = self._versions.setdefault(project_id, {})
        versions.pop(version_id, None)
        versions[version_id] = dict(files)

    async def get_files(self, project_id: str, version_id: str | None = None) -> dict[str, str]:
        versions = self._versions.get(project_id)
        if not versions:
            raise StoreError(f"Unknown project: {project_id}")
        if version_id is None:
            version_id = next(reversed(versions))
        if version_id not in versions:
            raise StoreError(f"Unknown version {version_id!r} of project {project_id}")
        return dict(versions[version_id])


class DirectoryFileStore:
    """Serves the files under a directory, whatever the project id.

    Exclusion patterns and .gitignore are honored. Content is decoded as
    UTF-8 with replacement, so binary files keep their NUL bytes and are
    classified as binary downstream.
    """

    def __init__(self, root: str | Path, config: IndexerConfig | None = None) -> None:
        self.root = Path(root).resolve()
        self.config = config or IndexerConfig()

    async def get_files(self, project_id: str, version_id: str | None = None) -> dict[str, str]:
        return await asyncio.to_thread(self._read_all)

    def _read_all(self) -> dict[str, str]:
        if not self.root.is_dir():
            raise StoreError(f"Not a directory: {self.root}")
        files: dict[str, str] = {}
        for path in collect_files(self.root, self.config):
            rel = path.relative_to(self.root).as_posix()
            try:
                files[rel] = path.read_bytes().decode("utf-8", errors="replace")
            except OSError as e:
                raise StoreError(f"Cannot read {rel}: {e}") from e
        return files


# ---------------------------------------------------------------------------
# Conversation stores
# ---------------------------------------------------------------------------

class InMemoryConversationStore:
    """Per-project message lists held in memory."""

    def __init__(self) -> None:
        self._messages: dict[str, list[ConversationMessage]] = {}

    def add_message(self, project_id: str, role: str, content: str) -> None:
        self._messages.setdefault(project_id, []).append(ConversationMessage(role=role, content=content))

    async def get_recent_messages(self, project_id: str, limit: int) -> list[ConversationMessage]:
        messages = self._messages.get(project_id, [])
        return list(messages[-limit:]) if limit > 0 else []


class JsonlConversationStore:
    """One JSON-lines file per project: ``<dir>/<project_id>.jsonl``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory)

    @classmethod
    def for_project_root(cls, ctxbundle_dir: Path) -> JsonlConversationStore:
        return cls(ctxbundle_dir / CONVERSATIONS_DIR)

    def _path(self, project_id: str) -> Path:
        if not project_id or "/" in project_id or "\\" in project_id or project_id.startswith("."):
            raise StoreError(f"Invalid project id for conversation file: {project_id!r}")
        return self.directory / f"{project_id}.jsonl"

    def add_message(self, project_id: str, role: str, content: str) -> None:
        path = self._path(project_id)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with open(path, "a", encoding="utf-8") as f:
                f.write(json.dumps({"role": role, "content": content}) + "\n")
        except OSError as e:
            raise StoreError(f"Cannot append to {path}: {e}") from e

    async def get_recent_messages(self, project_id: str, limit: int) -> list[ConversationMessage]:
        return await asyncio.to_thread(self._read_recent, project_id, limit)

    def _read_recent(self, project_id: str, limit: int) -> list[ConversationMessage]:
        path = self._path(project_id)
        if limit <= 0 or not path.exists():
            return []
        try:
            lines = path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise StoreError(f"Cannot read {path}: {e}") from e

        messages = []
        for line in lines[-limit:]:
            if not line.strip():
                continue
            try:
                messages.append(ConversationMessage(**json.loads(line)))
            except (ValueError, TypeError) as e:
                raise StoreError(f"Corrupt conversation line in {path}: {e}") from e
        return messages
