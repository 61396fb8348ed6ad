"""Repository layer for database operations.

Provides async reads of the tag/topic catalogs, tag-list maintenance for
every content variant, association index rows, and id batching for
long-running jobs. Functions flush but never commit; the calling job owns
the transaction.
"""

from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple, Type

from sqlalchemy import select, func, delete, and_, or_
from sqlalchemy.ext.asyncio import AsyncSession

from mediawatch.core.models import (
    Tag, Topic, Tagging, Entry, EntryTopic, EntryTitleTopic, TAG_CONTEXT, TITLE_TAG_CONTEXT
)
from mediawatch.core.logging import get_logger
from mediawatch.core.catalog import TagSpec, TopicSpec

logger = get_logger(__name__)


# =============================================================================
# CATALOG
# =============================================================================

async def get_tag_catalog(session: AsyncSession, tag_id: Optional[int] = None) -> List[TagSpec]:
    """
    Load the tag catalog (or a single tag) as immutable specs.

    Args:
        session: Database session
        tag_id: Restrict to one tag

    Returns:
        List of TagSpec
    """
    stmt = select(Tag).order_by(Tag.id)
    if tag_id is not None:
        stmt = stmt.where(Tag.id == tag_id)

    result = await session.execute(stmt)
    catalog = [TagSpec.from_tag(tag) for tag in result.scalars().all()]

    logger.debug(f"Loaded {len(catalog)} tags")
    return catalog


async def get_topic_catalog(session: AsyncSession, active_only: bool = False) -> List[TopicSpec]:
    """
    Load topics with their tag names.

    Args:
        session: Database session
        active_only: Skip inactive topics

    Returns:
        List of TopicSpec
    """
    stmt = select(Topic).order_by(Topic.id)
    if active_only:
        stmt = stmt.where(Topic.active == True)  # noqa: E712

    result = await session.execute(stmt)
    return [TopicSpec.from_topic(topic) for topic in result.scalars().all()]


async def get_topic(session: AsyncSession, topic_id: int) -> Optional[Topic]:
    stmt = select(Topic).where(Topic.id == topic_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def topic_ids_for_tag_names(session: AsyncSession, tag_names: Iterable[str]) -> Set[int]:
    """Topics whose tag set intersects the given tag names."""
    names = list(tag_names)
    if not names:
        return set()

    stmt = (
        select(Topic.id)
        .join(Topic.tags)
        .where(Tag.name.in_(names))
        .distinct()
    )
    result = await session.execute(stmt)
    return {row[0] for row in result.fetchall()}


# =============================================================================
# TAG LISTS
# =============================================================================

async def get_tag_names(session: AsyncSession, taggable_type: str, taggable_id: int,
                        context: str = TAG_CONTEXT) -> Set[str]:
    """
    Current tag names of a content item for a context, read from the store.

    Args:
        session: Database session
        taggable_type: Content variant (e.g. 'Entry')
        taggable_id: Content id
        context: 'tags' or 'title_tags'

    Returns:
        Set of tag names
    """
    stmt = (
        select(Tag.name)
        .join(Tagging, Tagging.tag_id == Tag.id)
        .where(
            Tagging.taggable_type == taggable_type,
            Tagging.taggable_id == taggable_id,
            Tagging.context == context,
        )
    )
    result = await session.execute(stmt)
    return {row[0] for row in result.fetchall()}


async def replace_tag_names(session: AsyncSession, taggable_type: str, taggable_id: int,
                            tag_names: Iterable[str], context: str = TAG_CONTEXT) -> Tuple[int, int]:
    """
    Make the stored tag list of a content item equal to ``tag_names``.

    Unknown names are ignored. Only the difference is written.

    Returns:
        Tuple of (added, removed)
    """
    wanted = set(tag_names)

    stmt = (
        select(Tagging.id, Tag.name)
        .join(Tag, Tagging.tag_id == Tag.id)
        .where(
            Tagging.taggable_type == taggable_type,
            Tagging.taggable_id == taggable_id,
            Tagging.context == context,
        )
    )
    result = await session.execute(stmt)
    existing: Dict[str, int] = {name: tagging_id for tagging_id, name in result.fetchall()}

    stale_ids = [tagging_id for name, tagging_id in existing.items() if name not in wanted]
    if stale_ids:
        await session.execute(delete(Tagging).where(Tagging.id.in_(stale_ids)))

    missing = wanted - existing.keys()
    added = 0
    if missing:
        tag_rows = await session.execute(select(Tag.id, Tag.name).where(Tag.name.in_(missing)))
        for tag_id, _name in tag_rows.fetchall():
            session.add(Tagging(
                tag_id=tag_id,
                taggable_type=taggable_type,
                taggable_id=taggable_id,
                context=context,
            ))
            added += 1

    await session.flush()
    return added, len(stale_ids)


async def add_tag(session: AsyncSession, tag_id: int, taggable_type: str, taggable_id: int,
                  context: str = TAG_CONTEXT) -> bool:
    """Add one tag to a content item's list. Returns False when already present."""
    stmt = select(Tagging.id).where(
        Tagging.tag_id == tag_id,
        Tagging.taggable_type == taggable_type,
        Tagging.taggable_id == taggable_id,
        Tagging.context == context,
    )
    result = await session.execute(stmt)
    if result.scalar_one_or_none() is not None:
        return False

    session.add(Tagging(tag_id=tag_id, taggable_type=taggable_type,
                        taggable_id=taggable_id, context=context))
    await session.flush()
    return True


async def remove_tag(session: AsyncSession, tag_id: int, taggable_type: str, taggable_id: int,
                     context: str = TAG_CONTEXT) -> bool:
    """Remove one tag from a content item's list. Returns False when it was absent."""
    result = await session.execute(
        delete(Tagging).where(
            Tagging.tag_id == tag_id,
            Tagging.taggable_type == taggable_type,
            Tagging.taggable_id == taggable_id,
            Tagging.context == context,
        )
    )
    await session.flush()
    return (result.rowcount or 0) > 0


async def remove_tag_everywhere(session: AsyncSession, tag_id: int,
                                taggable_type: Optional[str] = None) -> List[Tuple[str, int]]:
    """
    Remove a tag from every content item's lists (all contexts).

    Returns:
        Distinct (taggable_type, taggable_id) pairs that lost the tag
    """
    conditions = [Tagging.tag_id == tag_id]
    if taggable_type:
        conditions.append(Tagging.taggable_type == taggable_type)

    result = await session.execute(
        select(Tagging.taggable_type, Tagging.taggable_id).where(*conditions).distinct()
    )
    affected = [(row[0], row[1]) for row in result.fetchall()]

    await session.execute(delete(Tagging).where(*conditions))
    await session.flush()

    logger.debug(f"Removed tag {tag_id} from {len(affected)} items")
    return affected


async def content_ids_tagged_with(session: AsyncSession, taggable_type: str,
                                  tag_ids: Iterable[int],
                                  contexts: Iterable[str] = (TAG_CONTEXT,)) -> List[int]:
    """Ids of content items carrying any of the tags in any of the contexts."""
    ids = list(tag_ids)
    if not ids:
        return []

    stmt = (
        select(Tagging.taggable_id)
        .where(
            Tagging.taggable_type == taggable_type,
            Tagging.tag_id.in_(ids),
            Tagging.context.in_(list(contexts)),
        )
        .distinct()
        .order_by(Tagging.taggable_id)
    )
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


# =============================================================================
# ASSOCIATION INDEXES
# =============================================================================

AssociationModel = Type[EntryTopic]


async def get_associated_topic_ids(session: AsyncSession, association: AssociationModel,
                                   entry_id: int) -> Set[int]:
    stmt = select(association.topic_id).where(association.entry_id == entry_id)
    result = await session.execute(stmt)
    return {row[0] for row in result.fetchall()}


async def insert_associations(session: AsyncSession, association: AssociationModel,
                              entry_id: int, topic_ids: Iterable[int]) -> int:
    count = 0
    for topic_id in topic_ids:
        session.add(association(entry_id=entry_id, topic_id=topic_id))
        count += 1
    if count:
        await session.flush()
    return count


async def delete_associations(session: AsyncSession, association: AssociationModel,
                              entry_id: int, topic_ids: Iterable[int]) -> int:
    ids = list(topic_ids)
    if not ids:
        return 0
    await session.execute(
        delete(association).where(
            association.entry_id == entry_id,
            association.topic_id.in_(ids),
        )
    )
    await session.flush()
    return len(ids)


# =============================================================================
# ENTRY SELECTION
# =============================================================================

def _id_bounds(start_id: Optional[int], end_id: Optional[int]) -> list:
    conditions = []
    if start_id is not None:
        conditions.append(Entry.id >= start_id)
    if end_id is not None:
        conditions.append(Entry.id <= end_id)
    return conditions


async def count_entries(session: AsyncSession, start_id: Optional[int] = None,
                        end_id: Optional[int] = None) -> int:
    stmt = select(func.count(Entry.id)).where(*_id_bounds(start_id, end_id))
    result = await session.execute(stmt)
    return result.scalar() or 0


async def next_entry_ids(session: AsyncSession, after_id: Optional[int], limit: int,
                         start_id: Optional[int] = None, end_id: Optional[int] = None) -> List[int]:
    """
    Next batch of entry ids in ascending order (keyset pagination).

    Args:
        session: Database session
        after_id: Last id already processed (exclusive)
        limit: Batch size
        start_id: Inclusive lower bound of the range
        end_id: Inclusive upper bound of the range

    Returns:
        Up to ``limit`` ids
    """
    conditions = _id_bounds(start_id, end_id)
    if after_id is not None:
        conditions.append(Entry.id > after_id)

    stmt = select(Entry.id).where(*conditions).order_by(Entry.id).limit(limit)
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


async def entry_ids_published_between(session: AsyncSession, start: datetime,
                                      end: datetime, enabled_only: bool = True) -> List[int]:
    conditions = [Entry.published_at >= start, Entry.published_at <= end]
    if enabled_only:
        conditions.append(Entry.enabled == True)  # noqa: E712

    stmt = select(Entry.id).where(and_(*conditions)).order_by(Entry.id)
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


async def entry_ids_for_topic_window(session: AsyncSession, tag_ids: Iterable[int],
                                     start: datetime, end: datetime) -> List[int]:
    """Enabled entries in the window carrying any of the tags, in body or title lists."""
    ids = list(tag_ids)
    if not ids:
        return []

    stmt = (
        select(Entry.id)
        .join(Tagging, and_(
            Tagging.taggable_type == Entry.TAGGABLE_TYPE,
            Tagging.taggable_id == Entry.id,
        ))
        .where(
            Tagging.tag_id.in_(ids),
            or_(Tagging.context == TAG_CONTEXT, Tagging.context == TITLE_TAG_CONTEXT),
            Entry.enabled == True,  # noqa: E712
            Entry.published_at >= start,
            Entry.published_at <= end,
        )
        .distinct()
        .order_by(Entry.id)
    )
    result = await session.execute(stmt)
    return [row[0] for row in result.fetchall()]


async def entry_ids_linked_to_topic(session: AsyncSession, topic_id: int) -> Set[int]:
    """Entries currently present in either association index for a topic."""
    ids: Set[int] = set()
    for association in (EntryTopic, EntryTitleTopic):
        result = await session.execute(
            select(association.entry_id).where(association.topic_id == topic_id)
        )
        ids.update(row[0] for row in result.fetchall())
    return ids


async def entry_belongs_to_any_topic(session: AsyncSession, entry_id: int) -> bool:
    for association in (EntryTopic, EntryTitleTopic):
        result = await session.execute(
            select(association.id).where(association.entry_id == entry_id).limit(1)
        )
        if result.scalar_one_or_none() is not None:
            return True
    return False


# =============================================================================
# CATALOG SEEDING
# =============================================================================

async def upsert_tag_from_yaml(session: AsyncSession, yaml_rec: Dict[str, Any]) -> Tag:
    """
    Upsert a tag from a YAML record by name.

    Args:
        session: Database session
        yaml_rec: Record with 'name' and optional 'variations' (list or comma separated string)

    Returns:
        Tag object (existing or newly created)
    """
    name = (yaml_rec.get('name') or '').strip()
    if not name:
        raise ValueError("Tag record missing required 'name' field")

    variations = yaml_rec.get('variations') or ''
    if isinstance(variations, (list, tuple)):
        variations = ', '.join(str(v).strip() for v in variations if str(v).strip())

    result = await session.execute(select(Tag).where(Tag.name == name))
    tag = result.scalar_one_or_none()

    if tag:
        tag.variations = variations
        logger.info(f"Updated existing tag: {name}")
    else:
        tag = Tag(name=name, variations=variations)
        session.add(tag)
        logger.info(f"Created new tag: {name}")

    await session.flush()
    return tag


async def upsert_topic_from_yaml(session: AsyncSession, yaml_rec: Dict[str, Any]) -> Topic:
    """
    Upsert a topic from a YAML record by name, replacing its tag set.

    Tag names that are not in the catalog are skipped with a warning.
    """
    name = (yaml_rec.get('name') or '').strip()
    if not name:
        raise ValueError("Topic record missing required 'name' field")

    tag_names = [str(t).strip() for t in yaml_rec.get('tags', []) if str(t).strip()]
    tags = []
    if tag_names:
        result = await session.execute(select(Tag).where(Tag.name.in_(tag_names)))
        tags = list(result.scalars().all())
        missing = set(tag_names) - {tag.name for tag in tags}
        if missing:
            logger.warning(f"Topic {name}: unknown tags skipped: {sorted(missing)}")

    result = await session.execute(select(Topic).where(Topic.name == name))
    topic = result.scalar_one_or_none()

    if topic is None:
        topic = Topic(name=name)
        session.add(topic)
        logger.info(f"Created new topic: {name}")
    else:
        logger.info(f"Updated existing topic: {name}")

    topic.active = bool(yaml_rec.get('active', True))
    topic.tags = tags

    await session.flush()
    return topic
