"""Checkpoint persistence for conversation histories."""

import asyncio
import os
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Protocol

from loguru import logger

from threadkeeper.history.types import History, history_from_json, history_to_json


class CheckpointError(Exception):
    """Raised when a checkpoint cannot be written."""


class CheckpointGateway(Protocol):
    """Tag-addressed snapshot storage used by the agent core."""

    async def save(self, history: History, tag: str) -> None:
        ...

    async def load(self, tag: str) -> History:
        ...

    async def latest_tag(self) -> str | None:
        ...


@dataclass
class CheckpointInfo:
    tag: str
    path: Path
    modified_at: datetime


class FileCheckpointStore:
    """
    Stores each snapshot as a JSON array of turns.

    Directory layout:
        <directory>/
        ├── checkpoint-<tag>.json
        └── checkpoint-<tag>.json
    """

    FILE_PREFIX = "checkpoint-"
    FILE_SUFFIX = ".json"

    def __init__(self, directory: Path):
        self.directory = Path(directory).expanduser()

    # ── public API ──────────────────────────────────────────────

    async def save(self, history: History, tag: str) -> None:
        """Write (or overwrite) the snapshot for *tag*."""
        await asyncio.to_thread(self._write, history, tag)

    async def load(self, tag: str) -> History:
        """Read the snapshot for *tag*; empty when absent or unreadable."""
        return await asyncio.to_thread(self._read, tag)

    async def latest_tag(self) -> str | None:
        """Tag of the most recently modified checkpoint."""
        checkpoints = await asyncio.to_thread(self.list_checkpoints)
        return checkpoints[0].tag if checkpoints else None

    def list_checkpoints(self) -> list[CheckpointInfo]:
        """List checkpoints, newest first."""
        if not self.directory.is_dir():
            return []

        found = []
        for path in self.directory.glob(f"{self.FILE_PREFIX}*{self.FILE_SUFFIX}"):
            if not path.is_file():
                continue
            tag = path.name[len(self.FILE_PREFIX):-len(self.FILE_SUFFIX)]
            found.append(CheckpointInfo(
                tag=tag,
                path=path,
                modified_at=datetime.fromtimestamp(path.stat().st_mtime),
            ))
        return sorted(found, key=lambda c: c.modified_at, reverse=True)

    def path_for(self, tag: str) -> Path:
        if not tag or "/" in tag or "\\" in tag or tag in (".", ".."):
            raise ValueError(f"Invalid checkpoint tag: {tag!r}")
        return self.directory / f"{self.FILE_PREFIX}{tag}{self.FILE_SUFFIX}"

    # ── internal helpers ────────────────────────────────────────

    def _write(self, history: History, tag: str) -> None:
        path = self.path_for(tag)
        tmp = path.with_suffix(path.suffix + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp.write_text(history_to_json(history), encoding="utf-8")
            os.replace(tmp, path)
        except OSError as e:
            raise CheckpointError(f"Failed to save checkpoint {tag}: {e}") from e
        logger.debug(f"Saved checkpoint {tag} ({len(history)} turns)")

    def _read(self, tag: str) -> History:
        path = self.path_for(tag)
        if not path.exists():
            return []
        try:
            return history_from_json(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Failed to load checkpoint {tag}: {e}")
            return []
