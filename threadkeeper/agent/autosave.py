"""Checkpoint the session after each turn, compacting it first."""

from loguru import logger

from threadkeeper.agent.compactor import CompactionResult, Compactor, CompressionStrategy
from threadkeeper.config.schema import AutosaveConfig
from threadkeeper.session.checkpoint import CheckpointGateway
from threadkeeper.session.manager import ChatSession


async def autosave(
    session: ChatSession,
    settings: AutosaveConfig,
    store: CheckpointGateway,
    strategy: CompressionStrategy | None = None,
) -> CompactionResult | None:
    """Compact the session history if it is over budget, then save it.

    The caller must hold ``session.lock``. Returns the compaction result, or
    ``None`` when autosave is disabled or there is nothing to save. Storage
    errors propagate.
    """
    if not settings.enabled:
        return None
    if not session.history:
        return None

    compactor = Compactor(settings, strategy)
    result = await compactor.compact(session.history, session.tag)
    if result.changed:
        session.replace_history(result.history)
        session.tag = result.tag

    tag = session.ensure_tag()
    await store.save(session.history, tag)
    logger.debug(f"Autosaved {len(session.history)} turns under {tag}")
    return result


async def resume(store: CheckpointGateway, tag: str | None = None) -> ChatSession:
    """Load a session from a checkpoint.

    Without a tag the most recently written checkpoint is used. An unknown
    or empty checkpoint gives a fresh session with no tag.
    """
    tag = tag or await store.latest_tag()
    if not tag:
        logger.info("No checkpoint found; starting a new session")
        return ChatSession()

    history = await store.load(tag)
    if not history:
        logger.info(f"Checkpoint {tag} is empty or missing; starting a new session")
        return ChatSession()

    logger.info(f"Resumed checkpoint {tag} ({len(history)} turns)")
    return ChatSession(history=history, tag=tag)
