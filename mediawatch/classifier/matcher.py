"""Whole-word tag matching against free text.

A ``TagMatcher`` is compiled once from a tag catalog: every tag name and
variation becomes an escaped, case-insensitive pattern bounded by
non-word characters. Matching a content item only runs the precompiled
patterns, so callers that classify many items against the same catalog
should build one matcher (``build_matcher`` memoizes by catalog content).
"""

import re
from functools import lru_cache
from typing import Any, FrozenSet, Iterable, List, Optional, Pattern, Sequence, Tuple

from mediawatch.core.catalog import TagSpec
from mediawatch.core.logging import get_logger

logger = get_logger(__name__)


def compile_term(term: str) -> Pattern:
    """Case-insensitive whole-word pattern for a literal term."""
    return re.compile(r"(?<!\w)" + re.escape(term) + r"(?!\w)", re.IGNORECASE)


def join_fields(text_fields: Iterable[Optional[str]]) -> str:
    """Concatenate content fields with a space so words never fuse across fields."""
    return " ".join(field or "" for field in text_fields)


class TagMatcher:
    """Precompiled matcher for a tag catalog."""

    def __init__(self, catalog: Iterable[Any]):
        self._entries: List[Tuple[int, str, List[Tuple[str, Pattern]]]] = []

        for item in catalog:
            spec = item if isinstance(item, TagSpec) else TagSpec.from_tag(item)
            if not spec.name.strip():
                # Blank names never match
                continue
            patterns = [(term.lower(), compile_term(term)) for term in spec.spellings()]
            self._entries.append((spec.id, spec.name, patterns))

        logger.debug(f"Compiled tag matcher with {len(self._entries)} tags")

    def __len__(self) -> int:
        return len(self._entries)

    def match(self, text_fields: Sequence[Optional[str]],
              restrict_to_tag_id: Optional[int] = None) -> FrozenSet[str]:
        """
        Return the names of tags whose name or a variation appears as a whole word.

        Args:
            text_fields: Content fields; missing fields count as empty strings
            restrict_to_tag_id: Only test this tag

        Returns:
            Set of matched canonical tag names (empty if nothing matched)
        """
        text = join_fields(text_fields)
        if not text.strip():
            return frozenset()

        lowered = text.lower()
        found = set()

        for tag_id, name, patterns in self._entries:
            if restrict_to_tag_id is not None and tag_id != restrict_to_tag_id:
                continue
            for term, pattern in patterns:
                # Substring check first; the regex only confirms word boundaries
                if term in lowered and pattern.search(text):
                    found.add(name)
                    break

        return frozenset(found)


def catalog_fingerprint(catalog: Iterable[Any]) -> Tuple[Tuple[int, str, str], ...]:
    specs = (item if isinstance(item, TagSpec) else TagSpec.from_tag(item) for item in catalog)
    return tuple(sorted((s.id, s.name, s.variations) for s in specs))


@lru_cache(maxsize=8)
def _matcher_for(fingerprint: Tuple[Tuple[int, str, str], ...]) -> TagMatcher:
    return TagMatcher(TagSpec(id=i, name=n, variations=v) for i, n, v in fingerprint)


def build_matcher(catalog: Iterable[Any]) -> TagMatcher:
    """Matcher for the catalog, rebuilt only when the catalog content changes."""
    return _matcher_for(catalog_fingerprint(catalog))


def match_tags(text_fields: Sequence[Optional[str]], catalog: Iterable[Any],
               restrict_to_tag_id: Optional[int] = None) -> FrozenSet[str]:
    """Match content fields against a tag catalog."""
    return build_matcher(catalog).match(text_fields, restrict_to_tag_id)
