"""Live conversation session."""

import asyncio
import uuid
from dataclasses import dataclass, field
from datetime import datetime

from threadkeeper.history.types import History, Turn


@dataclass
class ChatSession:
    """
    A conversation session.

    Owns the live history and the tag under which it is checkpointed. The
    tag stays ``None`` until the first save. Hold ``lock`` while mutating,
    compacting or saving the history so those steps never interleave.
    """

    history: History = field(default_factory=list)
    tag: str | None = None
    created_at: datetime = field(default_factory=datetime.now)
    updated_at: datetime = field(default_factory=datetime.now)
    lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False, compare=False)

    def append(self, turn: Turn) -> None:
        """Add a turn to the end of the history."""
        self.history.append(turn)
        self.updated_at = datetime.now()

    def replace_history(self, history: History) -> None:
        self.history = list(history)
        self.updated_at = datetime.now()

    def ensure_tag(self) -> str:
        """Return the session tag, assigning a random one on first use."""
        if not self.tag:
            self.tag = str(uuid.uuid4())
        return self.tag
