"""Jobs that depend on external providers.

Both jobs are idempotent functions of current state, so the whole unit of
work is retried with exponential backoff when the provider raises
``TransientExternalError``. A missing entry is logged and skipped; after
the last attempt the error propagates to the caller.
"""

from typing import Any, Dict, Optional, Protocol

from tenacity import retry, stop_after_attempt, wait_exponential, retry_if_exception_type

from mediawatch.core.db import SessionFactory, get_sessionmaker
from mediawatch.core.errors import TransientExternalError
from mediawatch.core.logging import get_logger
from mediawatch.core.models import Entry
from mediawatch.core import repositories as repo
from mediawatch.core.result import Err, ErrorKind, Ok, Result
from mediawatch.core.settings import get_settings
from mediawatch.analytics.sentiment import SentimentProvider

logger = get_logger(__name__)

settings = get_settings()


class StatsProvider(Protocol):
    """External engagement stats collaborator (e.g. a social platform API)."""

    async def fetch_stats(self, entry: Entry) -> Dict[str, int]:
        ...


# =============================================================================
# SENTIMENT
# =============================================================================

@retry(
    stop=stop_after_attempt(settings.retry_attempts),
    wait=wait_exponential(multiplier=1, min=settings.retry_min_wait, max=settings.retry_max_wait),
    retry=retry_if_exception_type(TransientExternalError),
    reraise=True
)
async def _apply_sentiment(entry_id: int, provider: SentimentProvider, force: bool,
                           session_factory: SessionFactory) -> Result:
    async with session_factory() as session:
        entry = await session.get(Entry, entry_id)
        if entry is None:
            logger.warning(f"set_entry_sentiment: entry {entry_id} not found, skipping")
            return Err(ErrorKind.NOT_FOUND, f"Entry {entry_id} not found", {"entry_id": entry_id})

        # Only entries that belong to a topic are scored
        if not await repo.entry_belongs_to_any_topic(session, entry_id):
            return Ok({"entry_id": entry_id, "skipped": "no_topic"})

        if entry.polarity is not None and not force:
            return Ok({"entry_id": entry_id, "skipped": "already_set"})

        signal = await provider.score(entry)
        polarity = signal.to_polarity()
        entry.polarity = int(polarity)
        await session.commit()

    confidence = signal.confidence_level()
    logger.info(
        f"set_entry_sentiment: successfully set polarity for entry {entry_id}: {polarity.label}",
        extra={"entry_id": entry_id, "polarity": polarity.label},
    )
    return Ok({
        "entry_id": entry_id,
        "polarity": polarity.label,
        "confidence": confidence.value if confidence else None,
    })


async def set_entry_sentiment(entry_id: int, provider: SentimentProvider, force: bool = False,
                              session_factory: Optional[SessionFactory] = None) -> Result:
    """
    Score an entry with the external provider and store its canonical polarity.

    Args:
        entry_id: Entry id
        provider: Sentiment scoring provider
        force: Re-score even if a polarity is already stored
        session_factory: Session factory

    Returns:
        Ok with the stored polarity (or the skip reason), or Err(not_found)

    Raises:
        TransientExternalError: provider still failing after the last attempt
    """
    try:
        return await _apply_sentiment(entry_id, provider, force, session_factory or get_sessionmaker())
    except TransientExternalError as e:
        logger.error(
            f"set_entry_sentiment: failed for entry {entry_id}: {e.message}",
            extra={"entry_id": entry_id, "provider": e.provider},
        )
        raise


# =============================================================================
# ENGAGEMENT STATS
# =============================================================================

@retry(
    stop=stop_after_attempt(settings.retry_attempts),
    wait=wait_exponential(multiplier=1, min=settings.retry_min_wait, max=settings.retry_max_wait),
    retry=retry_if_exception_type(TransientExternalError),
    reraise=True
)
async def _apply_stats(entry_id: int, provider: StatsProvider, session_factory: SessionFactory) -> Result:
    async with session_factory() as session:
        entry = await session.get(Entry, entry_id)
        if entry is None:
            logger.warning(f"update_entry_stats: entry {entry_id} not found, skipping")
            return Err(ErrorKind.NOT_FOUND, f"Entry {entry_id} not found", {"entry_id": entry_id})

        stats = await provider.fetch_stats(entry)
        if not stats:
            logger.error(f"update_entry_stats: no stats returned for entry {entry_id}")
            return Err(ErrorKind.TRANSIENT_EXTERNAL, "No stats returned", {"entry_id": entry_id})

        applied: Dict[str, Any] = {}
        for name in Entry.INTERACTION_FIELDS:
            if name in stats and stats[name] is not None:
                setattr(entry, name, int(stats[name]))
                applied[name] = int(stats[name])

        entry.total_count = entry.interactions
        applied["total_count"] = entry.total_count
        await session.commit()

    logger.info(f"update_entry_stats: successfully updated stats for entry {entry_id}", extra=applied)
    return Ok({"entry_id": entry_id, **applied})


async def update_entry_stats(entry_id: int, provider: StatsProvider,
                             session_factory: Optional[SessionFactory] = None) -> Result:
    """
    Refresh an entry's engagement counters from the external provider.

    Unknown counters in the provider response are ignored; ``total_count``
    is recomputed from the stored counters.

    Raises:
        TransientExternalError: provider still failing after the last attempt
    """
    try:
        return await _apply_stats(entry_id, provider, session_factory or get_sessionmaker())
    except TransientExternalError as e:
        logger.error(
            f"update_entry_stats: failed for entry {entry_id}: {e.message}",
            extra={"entry_id": entry_id, "provider": e.provider},
        )
        raise
