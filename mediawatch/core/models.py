"""Database models for MediaWatch."""
from typing import Dict, List, Optional

from sqlalchemy import (
    Column, String, DateTime, Boolean, Text, Integer, Float,
    ForeignKey, Index, UniqueConstraint, Table, JSON
)
from sqlalchemy.orm import mapped_column, relationship
from sqlalchemy.sql import func

from .db import Base


topic_tags = Table(
    "topic_tags",
    Base.metadata,
    Column("topic_id", ForeignKey("topics.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Site(Base):
    """Publishers that content belongs to."""
    __tablename__ = "sites"

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(200), nullable=False, unique=True)
    url = mapped_column(String(1000), nullable=True)


class Tag(Base):
    """Canonical term plus alternate spellings used for text matching."""
    __tablename__ = "tags"

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False, unique=True)
    variations = mapped_column(Text, nullable=True)  # comma separated
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())

    topics = relationship("Topic", secondary=topic_tags, back_populates="tags")

    def variation_list(self) -> List[str]:
        """Variations split on commas, trimmed, blanks dropped."""
        if not self.variations:
            return []
        return [v.strip() for v in self.variations.split(",") if v.strip()]


class Topic(Base):
    """User-defined classification label backed by a set of tags."""
    __tablename__ = "topics"

    id = mapped_column(Integer, primary_key=True)
    name = mapped_column(String(255), nullable=False)
    active = mapped_column(Boolean, default=True, nullable=False)

    tags = relationship("Tag", secondary=topic_tags, back_populates="topics", lazy="selectin")


class Tagging(Base):
    """Tag list rows for any content variant, per context ('tags' | 'title_tags')."""
    __tablename__ = "taggings"

    id = mapped_column(Integer, primary_key=True)
    tag_id = mapped_column(ForeignKey("tags.id", ondelete="CASCADE"), nullable=False, index=True)
    taggable_type = mapped_column(String(50), nullable=False)
    taggable_id = mapped_column(Integer, nullable=False)
    context = mapped_column(String(32), nullable=False, default="tags")
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())

    tag = relationship("Tag", lazy="joined")

    __table_args__ = (
        UniqueConstraint("tag_id", "taggable_type", "taggable_id", "context", name="uq_tagging"),
        Index("idx_taggings_taggable_context", "taggable_type", "taggable_id", "context"),
    )


class ContentMixin:
    """Capabilities shared by every content variant.

    Subclasses declare:
    - TAGGABLE_TYPE: value stored in taggings.taggable_type
    - TEXT_FIELDS: attribute names matched for body tags and text analysis
    - TITLE_FIELDS: attribute names matched for title tags
    - INTERACTION_FIELDS: engagement counters summed into the weighted interactions
    - POLARITY_FIELD: column holding the canonical polarity code, if any
    """

    TAGGABLE_TYPE: str = ""
    TEXT_FIELDS: tuple = ()
    TITLE_FIELDS: tuple = ()
    INTERACTION_FIELDS: tuple = ()
    POLARITY_FIELD: Optional[str] = None

    def text_fields(self) -> List[str]:
        return [getattr(self, name) or "" for name in self.TEXT_FIELDS]

    def title_fields(self) -> List[str]:
        return [getattr(self, name) or "" for name in self.TITLE_FIELDS]

    def engagement_metrics(self) -> Dict[str, int]:
        return {name: getattr(self, name) or 0 for name in self.INTERACTION_FIELDS}

    @property
    def interactions(self) -> int:
        return sum(self.engagement_metrics().values())

    @classmethod
    def interactions_expression(cls):
        """SQL expression for the weighted interactions, for store-side ordering and sums."""
        columns = [func.coalesce(getattr(cls, name), 0) for name in cls.INTERACTION_FIELDS]
        expression = columns[0]
        for column in columns[1:]:
            expression = expression + column
        return expression

    @classmethod
    def polarity_column(cls):
        return getattr(cls, cls.POLARITY_FIELD) if cls.POLARITY_FIELD else None


class Entry(ContentMixin, Base):
    """Crawled web articles."""
    __tablename__ = "entries"

    TAGGABLE_TYPE = "Entry"
    TEXT_FIELDS = ("title", "description", "content")
    TITLE_FIELDS = ("title",)
    INTERACTION_FIELDS = ("reaction_count", "comment_count", "share_count")
    POLARITY_FIELD = "polarity"

    id = mapped_column(Integer, primary_key=True)
    site_id = mapped_column(ForeignKey("sites.id"), index=True, nullable=True)
    url = mapped_column(String(1500), unique=True, nullable=False)
    title = mapped_column(String(800), nullable=True)
    description = mapped_column(Text, nullable=True)
    content = mapped_column(Text, nullable=True)
    published_at = mapped_column(DateTime(timezone=True), index=True)
    enabled = mapped_column(Boolean, default=True, nullable=False)
    reaction_count = mapped_column(Integer, default=0, nullable=False)
    comment_count = mapped_column(Integer, default=0, nullable=False)
    share_count = mapped_column(Integer, default=0, nullable=False)
    total_count = mapped_column(Integer, default=0, nullable=False)
    polarity = mapped_column(Integer, nullable=True)  # 0 neutral | 1 positive | 2 negative

    site = relationship("Site")


class FacebookEntry(ContentMixin, Base):
    """Facebook fanpage posts."""
    __tablename__ = "facebook_entries"

    TAGGABLE_TYPE = "FacebookEntry"
    TEXT_FIELDS = ("message", "attachment_title", "attachment_description")
    TITLE_FIELDS = ("attachment_title",)
    INTERACTION_FIELDS = ("reactions_total_count", "comments_count", "share_count")
    POLARITY_FIELD = "sentiment_label"

    id = mapped_column(Integer, primary_key=True)
    site_id = mapped_column(ForeignKey("sites.id"), index=True, nullable=True)
    facebook_post_id = mapped_column(String(100), unique=True, nullable=False)
    published_at = mapped_column(DateTime(timezone=True), index=True)
    message = mapped_column(Text, nullable=True)
    attachment_title = mapped_column(Text, nullable=True)
    attachment_description = mapped_column(Text, nullable=True)
    reactions_total_count = mapped_column(Integer, default=0, nullable=False)
    comments_count = mapped_column(Integer, default=0, nullable=False)
    share_count = mapped_column(Integer, default=0, nullable=False)
    reactions = mapped_column(JSON, nullable=True)  # {like: n, love: n, ...}
    sentiment_score = mapped_column(Float, nullable=True)
    sentiment_label = mapped_column(Integer, nullable=True)
    sentiment_confidence = mapped_column(Float, nullable=True)


class TwitterPost(ContentMixin, Base):
    """Tweets from tracked profiles."""
    __tablename__ = "twitter_posts"

    TAGGABLE_TYPE = "TwitterPost"
    TEXT_FIELDS = ("text",)
    TITLE_FIELDS = ()
    INTERACTION_FIELDS = ("favorite_count", "retweet_count", "reply_count", "quote_count")

    id = mapped_column(Integer, primary_key=True)
    site_id = mapped_column(ForeignKey("sites.id"), index=True, nullable=True)
    tweet_id = mapped_column(String(100), unique=True, nullable=False)
    published_at = mapped_column(DateTime(timezone=True), index=True)
    text = mapped_column(Text, nullable=True)
    favorite_count = mapped_column(Integer, default=0, nullable=False)
    retweet_count = mapped_column(Integer, default=0, nullable=False)
    reply_count = mapped_column(Integer, default=0, nullable=False)
    quote_count = mapped_column(Integer, default=0, nullable=False)
    views_count = mapped_column(Integer, default=0, nullable=False)


class InstagramPost(ContentMixin, Base):
    """Instagram posts from tracked profiles."""
    __tablename__ = "instagram_posts"

    TAGGABLE_TYPE = "InstagramPost"
    TEXT_FIELDS = ("caption",)
    TITLE_FIELDS = ()
    INTERACTION_FIELDS = ("likes_count", "comments_count")

    id = mapped_column(Integer, primary_key=True)
    site_id = mapped_column(ForeignKey("sites.id"), index=True, nullable=True)
    shortcode = mapped_column(String(100), unique=True, nullable=False)
    published_at = mapped_column(DateTime(timezone=True), index=True)
    caption = mapped_column(Text, nullable=True)
    likes_count = mapped_column(Integer, default=0, nullable=False)
    comments_count = mapped_column(Integer, default=0, nullable=False)


class EntryTopic(Base):
    """Body association index: entry <-> topic."""
    __tablename__ = "entry_topics"

    id = mapped_column(Integer, primary_key=True)
    entry_id = mapped_column(ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    topic_id = mapped_column(ForeignKey("topics.id", ondelete="CASCADE"), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("entry_id", "topic_id", name="idx_entry_topics_unique"),
        Index("idx_topic_entries", "topic_id", "entry_id"),
    )


class EntryTitleTopic(Base):
    """Title association index: entry <-> topic."""
    __tablename__ = "entry_title_topics"

    id = mapped_column(Integer, primary_key=True)
    entry_id = mapped_column(ForeignKey("entries.id", ondelete="CASCADE"), nullable=False)
    topic_id = mapped_column(ForeignKey("topics.id", ondelete="CASCADE"), nullable=False)
    created_at = mapped_column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("entry_id", "topic_id", name="idx_entry_title_topics_unique"),
        Index("idx_topic_title_entries", "topic_id", "entry_id"),
    )


CONTENT_MODELS = {
    "web": Entry,
    "facebook": FacebookEntry,
    "twitter": TwitterPost,
    "instagram": InstagramPost,
}

TAG_CONTEXT = "tags"
TITLE_TAG_CONTEXT = "title_tags"

Index('idx_entries_site_published', Entry.site_id, Entry.published_at)
Index('idx_facebook_entries_published', FacebookEntry.published_at, FacebookEntry.sentiment_label)
