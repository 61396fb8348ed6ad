"""Tagging jobs.

Keep the stored tag lists of web entries in line with the tag catalog and
re-sync the association indexes of every entry whose lists changed:

- tag_entry: full re-derivation of one entry's body and title tags
- tag_range_by_new_tag: apply a newly created tag to entries in a date range
- untag_removed_tag: drop a deleted tag from every entry
- retag_tag_entries: re-check entries carrying a tag whose spellings changed
"""

from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from mediawatch.core.catalog import TagSpec
from mediawatch.core.db import SessionFactory, get_sessionmaker
from mediawatch.core.logging import get_logger
from mediawatch.core.models import Entry, TAG_CONTEXT, TITLE_TAG_CONTEXT
from mediawatch.core import repositories as repo
from mediawatch.core.result import Err, ErrorKind, Ok, Result
from mediawatch.core.settings import get_settings
from mediawatch.classifier.extract import extract_tags, extract_title_tags
from mediawatch.classifier.sync import sync_entry_from_current_tags
from mediawatch.jobs.backfill import process_each

logger = get_logger(__name__)

DateRange = Tuple[datetime, datetime]


def _matched(result: Result) -> frozenset:
    return result.value if result.ok else frozenset()


async def tag_entry(entry_id: int, session_factory: Optional[SessionFactory] = None) -> Result:
    """
    Re-derive both tag lists of an entry and re-sync its associations.

    Args:
        entry_id: Entry id
        session_factory: Session factory (defaults to the configured database)

    Returns:
        Ok with the matched tags and sync counts, or Err(not_found)
    """
    session_factory = session_factory or get_sessionmaker()

    async with session_factory() as session:
        catalog = await repo.get_tag_catalog(session)

        body = await extract_tags(session, entry_id, catalog)
        if not body.ok and body.kind == ErrorKind.NOT_FOUND:
            logger.warning(f"tag_entry: entry {entry_id} not found, skipping")
            return body
        title = await extract_title_tags(session, entry_id, catalog)

        body_tags, title_tags = _matched(body), _matched(title)
        await repo.replace_tag_names(session, Entry.TAGGABLE_TYPE, entry_id, body_tags, TAG_CONTEXT)
        await repo.replace_tag_names(session, Entry.TAGGABLE_TYPE, entry_id, title_tags, TITLE_TAG_CONTEXT)

        sync = await sync_entry_from_current_tags(session, entry_id)
        await session.commit()

    logger.info(
        f"tag_entry: entry {entry_id} tagged with {len(body_tags)} tags, {len(title_tags)} title tags",
        extra={"entry_id": entry_id, "tags": sorted(body_tags), "title_tags": sorted(title_tags)},
    )
    data = {"tags": sorted(body_tags), "title_tags": sorted(title_tags)}
    data.update(sync.to_dict())
    return Ok(data)


async def _apply_tag(session: AsyncSession, entry_id: int, catalog: Sequence[TagSpec],
                     tag_id: int, remove_unmatched: bool) -> bool:
    """Add (or with ``remove_unmatched`` also drop) one tag on both lists; re-sync on change."""
    changed = False
    for context, extract in ((TAG_CONTEXT, extract_tags), (TITLE_TAG_CONTEXT, extract_title_tags)):
        result = await extract(session, entry_id, catalog, tag_id=tag_id)
        if result.ok:
            changed |= await repo.add_tag(session, tag_id, Entry.TAGGABLE_TYPE, entry_id, context)
        elif result.kind == ErrorKind.NOT_FOUND:
            return False
        elif remove_unmatched:
            changed |= await repo.remove_tag(session, tag_id, Entry.TAGGABLE_TYPE, entry_id, context)

    if changed:
        await sync_entry_from_current_tags(session, entry_id)
    return changed


async def tag_range_by_new_tag(tag_id: int, date_range: Optional[DateRange] = None,
                               session_factory: Optional[SessionFactory] = None) -> Result:
    """
    Apply one tag to every entry published in a date range that mentions it.

    Args:
        tag_id: Tag to apply
        date_range: (start, end); defaults to the last ``tag_lookback_days`` days
        session_factory: Session factory

    Returns:
        Ok({tag_id, entries_checked, tagged, errors}) or Err(not_found)
    """
    session_factory = session_factory or get_sessionmaker()
    if date_range is None:
        end = datetime.now(timezone.utc)
        date_range = (end - timedelta(days=get_settings().tag_lookback_days), end)
    start, end = date_range

    async with session_factory() as session:
        catalog = await repo.get_tag_catalog(session, tag_id)
        if not catalog:
            return Err(ErrorKind.NOT_FOUND, f"Tag {tag_id} not found", {"tag_id": tag_id})
        entry_ids = await repo.entry_ids_published_between(session, start, end, enabled_only=False)

    logger.info(f"tag_range_by_new_tag: checking {len(entry_ids)} entries for tag {tag_id}")

    results, errors = await process_each(
        session_factory,
        entry_ids,
        lambda session, entry_id: _apply_tag(session, entry_id, catalog, tag_id, remove_unmatched=False),
        "tag_range_by_new_tag",
    )

    tagged = sum(1 for changed in results if changed)
    logger.info(f"tag_range_by_new_tag: finish tagging {tagged} of {len(entry_ids)} entries")
    return Ok({"tag_id": tag_id, "entries_checked": len(entry_ids), "tagged": tagged, "errors": errors})


async def untag_removed_tag(tag_id: int, session_factory: Optional[SessionFactory] = None) -> Result:
    """
    Remove a tag from every entry's lists and re-sync the entries that carried it.

    Works whether or not the tag row still exists.

    Returns:
        Ok({tag_id, untagged, synced, errors})
    """
    session_factory = session_factory or get_sessionmaker()

    async with session_factory() as session:
        affected = await repo.remove_tag_everywhere(session, tag_id, Entry.TAGGABLE_TYPE)
        await session.commit()

    entry_ids = sorted({taggable_id for _type, taggable_id in affected})
    results, errors = await process_each(
        session_factory,
        entry_ids,
        lambda session, entry_id: sync_entry_from_current_tags(session, entry_id),
        "untag_removed_tag",
    )

    logger.info(
        f"untag_removed_tag: tag {tag_id} removed from {len(entry_ids)} entries",
        extra={"tag_id": tag_id, "untagged": len(entry_ids), "sync_errors": len(errors)},
    )
    return Ok({"tag_id": tag_id, "untagged": len(entry_ids), "synced": len(results), "errors": errors})


async def retag_tag_entries(tag_id: int, session_factory: Optional[SessionFactory] = None) -> Result:
    """
    Re-match a tag against the entries currently carrying it.

    Entries whose text no longer mentions the tag (or any of its current
    variations) lose it; the title list is checked independently.

    Returns:
        Ok({tag_id, entries_checked, changed, errors}) or Err(not_found)
    """
    session_factory = session_factory or get_sessionmaker()

    async with session_factory() as session:
        catalog = await repo.get_tag_catalog(session, tag_id)
        if not catalog:
            return Err(ErrorKind.NOT_FOUND, f"Tag {tag_id} not found", {"tag_id": tag_id})
        entry_ids = await repo.content_ids_tagged_with(
            session, Entry.TAGGABLE_TYPE, [tag_id], (TAG_CONTEXT, TITLE_TAG_CONTEXT)
        )

    results, errors = await process_each(
        session_factory,
        entry_ids,
        lambda session, entry_id: _apply_tag(session, entry_id, catalog, tag_id, remove_unmatched=True),
        "retag_tag_entries",
    )

    changed = sum(1 for value in results if value)
    logger.info(f"retag_tag_entries: tag {tag_id} re-checked on {len(entry_ids)} entries, {changed} changed")
    return Ok({"tag_id": tag_id, "entries_checked": len(entry_ids), "changed": changed, "errors": errors})
