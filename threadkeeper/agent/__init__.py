"""Agent core: token accounting, compaction, autosave and the agent loop."""
