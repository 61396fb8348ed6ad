"""Association index synchronization.

Each content item has two derived indexes (body and title) mapping it to
topics. A sync computes the desired topic set from the item's matched tag
names and reconciles the stored rows against it: rows for topics no longer
desired are deleted, missing rows are inserted, everything else is left
untouched. Running a sync twice with unchanged inputs writes nothing the
second time.
"""

from dataclasses import dataclass
from typing import AbstractSet, Iterable, Optional, Sequence, Set, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from mediawatch.core.errors import NotFoundError, ValidationFailure
from mediawatch.core.logging import get_logger
from mediawatch.core.models import Entry, EntryTitleTopic, EntryTopic, TAG_CONTEXT, TITLE_TAG_CONTEXT
from mediawatch.core import repositories as repo
from mediawatch.core.catalog import TopicSpec

logger = get_logger(__name__)


@dataclass(frozen=True)
class SyncResult:
    """Outcome of one content item's reconciliation."""
    entry_id: int
    linked_topic_count: int
    linked_title_topic_count: int
    added: int = 0
    removed: int = 0

    @property
    def writes(self) -> int:
        return self.added + self.removed

    def to_dict(self) -> dict:
        return {
            "entry_id": self.entry_id,
            "linked_topic_count": self.linked_topic_count,
            "linked_title_topic_count": self.linked_title_topic_count,
            "added": self.added,
            "removed": self.removed,
        }


def desired_topic_ids(topics: Iterable[TopicSpec], matched_tag_names: AbstractSet[str]) -> Set[int]:
    """Topics whose tag set intersects the matched tag names."""
    if not matched_tag_names:
        return set()
    return {topic.id for topic in topics if not topic.tag_names.isdisjoint(matched_tag_names)}


def reconcile(existing: AbstractSet[int], desired: AbstractSet[int]) -> Tuple[Set[int], Set[int]]:
    """Return (to_insert, to_delete) turning ``existing`` into ``desired``."""
    return set(desired) - set(existing), set(existing) - set(desired)


class AssociationSynchronizer:
    """Reconciles the body and title association indexes of web entries."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _reconcile_index(self, association, entry_id: int, desired: Set[int]) -> Tuple[int, int]:
        existing = await repo.get_associated_topic_ids(self.session, association, entry_id)
        to_insert, to_delete = reconcile(existing, desired)

        removed = await repo.delete_associations(self.session, association, entry_id, to_delete)
        added = await repo.insert_associations(self.session, association, entry_id, sorted(to_insert))
        return added, removed

    async def sync(self, entry_id: int, body_tag_names: AbstractSet[str],
                   title_tag_names: AbstractSet[str],
                   topics: Sequence[TopicSpec]) -> SyncResult:
        """
        Replace both association indexes of an entry with the desired topic sets.

        Args:
            entry_id: Entry to reconcile
            body_tag_names: Tag names matched in the body fields
            title_tag_names: Tag names matched in the title
            topics: Topic catalog

        Returns:
            SyncResult with linked counts and write counts

        Raises:
            ValidationFailure: the store rejected a reconciled write
        """
        desired_body = desired_topic_ids(topics, body_tag_names)
        desired_title = desired_topic_ids(topics, title_tag_names)

        try:
            body_added, body_removed = await self._reconcile_index(EntryTopic, entry_id, desired_body)
            title_added, title_removed = await self._reconcile_index(EntryTitleTopic, entry_id, desired_title)
        except IntegrityError as e:
            raise ValidationFailure(
                f"Association write rejected for entry {entry_id}",
                {"entry_id": entry_id, "error": str(e.orig) if e.orig else str(e)},
            ) from e

        result = SyncResult(
            entry_id=entry_id,
            linked_topic_count=len(desired_body),
            linked_title_topic_count=len(desired_title),
            added=body_added + title_added,
            removed=body_removed + title_removed,
        )

        if result.writes:
            logger.debug(
                f"Synced entry {entry_id}: +{result.added} -{result.removed}",
                extra=result.to_dict(),
            )
        return result


async def sync_entry_from_current_tags(session: AsyncSession, entry_id: int,
                                       topics: Optional[Sequence[TopicSpec]] = None) -> SyncResult:
    """
    Sync an entry from the tag lists currently stored for it.

    Tag names and (when not given) the topic catalog are read fresh from the
    store so the result reflects the latest catalog state.

    Raises:
        NotFoundError: the entry does not exist
    """
    if await session.get(Entry, entry_id) is None:
        raise NotFoundError("Entry", entry_id)

    if topics is None:
        topics = await repo.get_topic_catalog(session)

    body_tags = await repo.get_tag_names(session, Entry.TAGGABLE_TYPE, entry_id, TAG_CONTEXT)
    title_tags = await repo.get_tag_names(session, Entry.TAGGABLE_TYPE, entry_id, TITLE_TAG_CONTEXT)

    return await AssociationSynchronizer(session).sync(entry_id, body_tags, title_tags, topics)
