"""Tag extraction for stored content items."""

from typing import FrozenSet, Iterable, Optional, Type

from sqlalchemy.ext.asyncio import AsyncSession

from mediawatch.core.logging import get_logger
from mediawatch.core.models import ContentMixin, Entry
from mediawatch.core.result import Err, ErrorKind, Ok, Result
from mediawatch.classifier.matcher import build_matcher

logger = get_logger(__name__)

NO_TAGS_FOUND = "No tags found"


async def _extract(session: AsyncSession, model: Type[ContentMixin], content_id: int,
                   catalog: Iterable, tag_id: Optional[int], title_only: bool) -> Result:
    item = await session.get(model, content_id)
    if item is None:
        return Err(ErrorKind.NOT_FOUND, f"{model.__name__} {content_id} not found",
                   {"id": content_id})

    fields = item.title_fields() if title_only else item.text_fields()
    matched: FrozenSet[str] = build_matcher(catalog).match(fields, restrict_to_tag_id=tag_id)

    if not matched:
        return Err(ErrorKind.NO_MATCH, NO_TAGS_FOUND, {"id": content_id})
    return Ok(matched)


async def extract_tags(session: AsyncSession, content_id: int, catalog: Iterable,
                       tag_id: Optional[int] = None,
                       model: Type[ContentMixin] = Entry) -> Result:
    """
    Match body fields of a content item against the catalog.

    Args:
        session: Database session
        content_id: Id of the content item
        catalog: Tag catalog (TagSpec or Tag rows)
        tag_id: Only test this tag
        model: Content variant

    Returns:
        Ok(frozenset of tag names), Err(not_found) or Err(no_match)
    """
    return await _extract(session, model, content_id, catalog, tag_id, title_only=False)


async def extract_title_tags(session: AsyncSession, content_id: int, catalog: Iterable,
                             tag_id: Optional[int] = None,
                             model: Type[ContentMixin] = Entry) -> Result:
    """Same as ``extract_tags`` but over title fields only."""
    return await _extract(session, model, content_id, catalog, tag_id, title_only=True)
