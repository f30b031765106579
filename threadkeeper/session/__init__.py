"""Session state and checkpoint persistence."""

from threadkeeper.session.checkpoint import (
    CheckpointError,
    CheckpointGateway,
    FileCheckpointStore,
)
from threadkeeper.session.manager import ChatSession

__all__ = ["ChatSession", "CheckpointError", "CheckpointGateway", "FileCheckpointStore"]
