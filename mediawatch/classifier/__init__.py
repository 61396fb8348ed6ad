"""Content classification package.

This package contains modules for:
- Whole-word tag matching (matcher.py)
- Body/title tag extraction for stored content (extract.py)
- Topic association index reconciliation (sync.py)
"""

from .matcher import (
    TagSpec,
    TagMatcher,
    build_matcher,
    match_tags
)

from .extract import extract_tags, extract_title_tags

from .sync import (
    AssociationSynchronizer,
    SyncResult,
    desired_topic_ids,
    reconcile,
    sync_entry_from_current_tags
)

__all__ = [
    # Matching
    'TagSpec',
    'TagMatcher',
    'build_matcher',
    'match_tags',

    # Extraction
    'extract_tags',
    'extract_title_tags',

    # Associations
    'AssociationSynchronizer',
    'SyncResult',
    'desired_topic_ids',
    'reconcile',
    'sync_entry_from_current_tags'
]
