"""Topic resync job: re-derive associations for a topic's recent entries."""

from datetime import datetime, time, timedelta, timezone
from typing import Optional

from mediawatch.core.db import SessionFactory, get_sessionmaker
from mediawatch.core.logging import get_logger
from mediawatch.core import repositories as repo
from mediawatch.core.result import Err, ErrorKind, Ok, Result
from mediawatch.classifier.sync import sync_entry_from_current_tags
from mediawatch.jobs.backfill import process_each

logger = get_logger(__name__)

DEFAULT_LOOKBACK_DAYS = 60


async def resync_topic_from_tags(topic_id: int, lookback_days: int = DEFAULT_LOOKBACK_DAYS,
                                 session_factory: Optional[SessionFactory] = None,
                                 now: Optional[datetime] = None) -> Result:
    """
    Re-sync every enabled entry in the window that carries one of the topic's tags.

    Run after a topic's tag set changes. Entries already linked to the topic
    are re-synced too, so entries that lost coverage get unlinked.

    Args:
        topic_id: Topic id
        lookback_days: Window length in days, from the start of the first day
        session_factory: Session factory
        now: Window end (defaults to the current time)

    Returns:
        Ok({topic_id, topic_name, entries_found, synced, errors}) or Err(not_found)
    """
    session_factory = session_factory or get_sessionmaker()
    now = now or datetime.now(timezone.utc)
    start = datetime.combine((now - timedelta(days=lookback_days)).date(), time.min, tzinfo=now.tzinfo)
    end = datetime.combine(now.date(), time.max, tzinfo=now.tzinfo)

    async with session_factory() as session:
        topic = await repo.get_topic(session, topic_id)
        if topic is None:
            logger.warning(f"resync_topic_from_tags: topic {topic_id} not found, skipping")
            return Err(ErrorKind.NOT_FOUND, f"Topic {topic_id} not found", {"topic_id": topic_id})

        topic_name = topic.name
        tag_ids = [tag.id for tag in topic.tags]
        summary = {"topic_id": topic_id, "topic_name": topic_name, "entries_found": 0, "synced": 0, "errors": 0}

        if not tag_ids:
            logger.info(f"resync_topic_from_tags: topic {topic_id} has no tags, skipping")
            return Ok(summary)

        entry_ids = await repo.entry_ids_for_topic_window(session, tag_ids, start, end)
        entries_found = len(entry_ids)
        linked = await repo.entry_ids_linked_to_topic(session, topic_id)
        entry_ids = sorted(set(entry_ids) | linked)
        topics = await repo.get_topic_catalog(session)

    logger.info(
        f"resync_topic_from_tags: starting sync for topic {topic_id} ({topic_name}) - "
        f"{len(tag_ids)} tags, {lookback_days} days, {entries_found} entries found, {len(entry_ids)} to sync"
    )

    results, errors = await process_each(
        session_factory,
        entry_ids,
        lambda session, entry_id: sync_entry_from_current_tags(session, entry_id, topics),
        "resync_topic_from_tags",
    )

    summary.update(entries_found=entries_found, synced=len(results), errors=len(errors))
    logger.info(
        f"resync_topic_from_tags: completed for topic {topic_id} - synced: {len(results)}, errors: {len(errors)}",
        extra=summary,
    )
    return Ok(summary)
