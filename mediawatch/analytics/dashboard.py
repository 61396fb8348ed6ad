"""Dashboard aggregation.

Composes the analytics payload for one scope (topic, tag or site) and one
content source. Every metric is computed by the store (counts, sums,
ordering, grouping) and wrapped with ``try_default`` so a failing metric
degrades to its documented default instead of failing the payload.
Payloads are cached per scope, parameters and calendar day.
"""

import copy
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Type
from zoneinfo import ZoneInfo

from sqlalchemy import and_, case, desc, func, literal_column, select
from sqlalchemy.ext.asyncio import AsyncSession

from mediawatch.core.cache import AggregationCache, get_cache
from mediawatch.core.db import SessionFactory, get_sessionmaker
from mediawatch.core.logging import get_logger
from mediawatch.core.models import (
    CONTENT_MODELS, ContentMixin, Entry, EntryTitleTopic, EntryTopic,
    Site, Tag, Tagging, TAG_CONTEXT, topic_tags
)
from mediawatch.core.settings import Settings, get_settings
from mediawatch.classifier.matcher import join_fields
from mediawatch.analytics.sentiment import (
    BUCKETS, NEGATIVE_THRESHOLD, POSITIVE_THRESHOLD, Polarity,
    bucket_percentages, classify_confidence, normalize
)
from mediawatch.analytics.text import TextAnalyzer, load_stop_words

logger = get_logger(__name__)

SCOPE_TYPES = ("topic", "tag", "site")

# Documented defaults returned when a metric fails
DEFAULT_TOTALS = {"count": 0, "interactions": 0, "average_interactions": 0}
DEFAULT_TIME_SERIES = {"counts": {}, "interactions": {}}
DEFAULT_ROLLUP = {"interactions": [], "counts": []}
DEFAULT_TRENDING = {"words": [], "bigrams": []}
DEFAULT_VELOCITY = {"velocity_percent": 0, "direction": "stable"}
DEFAULT_SENTIMENT = {
    "counts": {bucket.label: 0 for bucket in BUCKETS},
    "percentages": {bucket.label: 0.0 for bucket in BUCKETS},
    "interactions": {bucket.label: 0 for bucket in BUCKETS},
    "interaction_percentages": {bucket.label: 0.0 for bucket in BUCKETS},
    "confidence": None,
}

VELOCITY_THRESHOLD = 10


async def try_default(fn: Callable[[], Awaitable[Any]], default: Any, name: str = "",
                      failures: Optional[List[str]] = None) -> Any:
    """
    Run ``fn`` and return its result, or a copy of ``default`` if it raises.

    Args:
        fn: Async callable computing the metric
        default: Value returned on failure
        name: Metric name for the log line
        failures: When given, failed metric names are appended to it

    Returns:
        Metric value or default
    """
    try:
        return await fn()
    except Exception as e:
        logger.error(
            f"Error computing {name or 'metric'}: {e.__class__.__name__} - {e}",
            extra={"metric": name, "error_type": e.__class__.__name__},
        )
        if failures is not None:
            failures.append(name)
        return copy.deepcopy(default)


@dataclass(frozen=True)
class TagInteraction:
    """Per-tag rollup row."""
    tag: str
    count: int
    interactions: int


@dataclass(frozen=True)
class AggregationScope:
    """Resolved query context for one aggregation call."""
    model: Type[ContentMixin]
    scope_conditions: tuple
    window_conditions: tuple
    start: datetime
    end: datetime

    @property
    def conditions(self) -> tuple:
        return self.scope_conditions + self.window_conditions


def velocity(recent: float, previous: float) -> Dict[str, Any]:
    """Change of ``recent`` vs ``previous`` in percent, with a direction."""
    if not previous:
        result = dict(DEFAULT_VELOCITY)
    else:
        percent = round((recent - previous) / previous * 100, 1)
        if percent > VELOCITY_THRESHOLD:
            direction = "up"
        elif percent < -VELOCITY_THRESHOLD:
            direction = "down"
        else:
            direction = "stable"
        result = {"velocity_percent": percent, "direction": direction}
    result.update(recent=recent, previous=previous)
    return result


def local_day(value: datetime, tz: ZoneInfo) -> str:
    """Calendar day of a timestamp in ``tz``; naive values are UTC as stored."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(tz).date().isoformat()


def polarity_expression(model: Type[ContentMixin]):
    """SQL bucket code per item, or None when the source has no sentiment signal.

    Sources with a continuous ``sentiment_score`` are bucketed by the score
    thresholds (very positive/negative collapse into positive/negative);
    the stored label is used only for items without a score.
    """
    column = model.polarity_column()
    score = getattr(model, "sentiment_score", None)
    if score is None:
        return column

    # Constants are inlined so the expression renders identically in SELECT and GROUP BY
    return case(
        (score >= literal_column(repr(POSITIVE_THRESHOLD)), literal_column(str(int(Polarity.POSITIVE)))),
        (score <= literal_column(repr(NEGATIVE_THRESHOLD)), literal_column(str(int(Polarity.NEGATIVE)))),
        (score.isnot(None), literal_column(str(int(Polarity.NEUTRAL)))),
        else_=column,
    )


class DashboardAggregator:
    """Builds cached analytics payloads for topics, tags and sites.

    Supported params:
        source: 'web' | 'facebook' | 'twitter' | 'instagram' (default 'web')
        days: window length in days (default from settings)
        title: for topic scope on web entries, use the title association index
    """

    def __init__(self, session_factory: Optional[SessionFactory] = None,
                 cache: Optional[AggregationCache] = None,
                 analyzer: Optional[TextAnalyzer] = None,
                 settings: Optional[Settings] = None,
                 clock: Optional[Callable[[], datetime]] = None):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or get_sessionmaker()
        self.cache = cache or get_cache()
        self.analyzer = analyzer or TextAnalyzer(load_stop_words(self.settings.stop_words_path))
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def aggregate(self, scope_type: str, scope_id: int,
                        params: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """
        Cached analytics payload for a scope.

        Args:
            scope_type: 'topic', 'tag' or 'site'
            scope_id: Id of the topic, tag or site
            params: Request parameters (part of the cache key)

        Returns:
            Payload dict

        Raises:
            ValueError: unknown scope type or source
        """
        params = dict(params or {})
        if scope_type not in SCOPE_TYPES:
            raise ValueError(f"Unknown scope type: {scope_type}")
        source = params.get("source", "web")
        if source not in CONTENT_MODELS:
            raise ValueError(f"Unknown source: {source}")

        key = self.cache.key_for(scope_type, scope_id, params)
        payload, hit = await self.cache.fetch(
            key, lambda: self.compute(scope_type, scope_id, params)
        )

        logger.info(
            f"Dashboard {scope_type}:{scope_id} ({source}) served, cache {'hit' if hit else 'miss'}",
            extra={"scope_type": scope_type, "scope_id": scope_id, "cache_hit": hit},
        )
        return payload

    async def compute(self, scope_type: str, scope_id: int, params: Mapping[str, Any]) -> Dict[str, Any]:
        """Compute the payload without consulting the cache."""
        start_time = time.time()
        scope = self.resolve_scope(scope_type, scope_id, params)
        failures: List[str] = []

        metrics = [
            ("totals", self.totals, DEFAULT_TOTALS),
            ("top_items", self.top_items, []),
            ("time_series", self.time_series, DEFAULT_TIME_SERIES),
            ("tags", self.tag_rollup, DEFAULT_ROLLUP),
            ("sites", self.site_rollup, DEFAULT_ROLLUP),
            ("trending", self.trending_terms, DEFAULT_TRENDING),
            ("sentiment", self.sentiment, DEFAULT_SENTIMENT),
            ("trend_velocity", self.trend_velocity, DEFAULT_VELOCITY),
            ("engagement_velocity", self.engagement_velocity, DEFAULT_VELOCITY),
        ]

        payload: Dict[str, Any] = {
            "scope": {"type": scope_type, "id": scope_id},
            "source": params.get("source", "web"),
            "window": {"start": scope.start.isoformat(), "end": scope.end.isoformat()},
        }
        for name, metric, default in metrics:
            payload[name] = await try_default(
                lambda metric=metric: self._run(metric, scope), default, name, failures
            )

        payload["failed_metrics"] = failures
        payload["generated_at"] = self._clock().isoformat()

        runtime = time.time() - start_time
        logger.info(
            f"Aggregated {scope_type}:{scope_id} in {runtime:.2f}s ({len(failures)} failed metrics)",
            extra={"runtime_seconds": runtime, "failed_metrics": failures},
        )
        return payload

    async def _run(self, metric: Callable[[AsyncSession, AggregationScope], Awaitable[Any]],
                   scope: AggregationScope) -> Any:
        # One session per metric so a failed query cannot poison the others
        async with self.session_factory() as session:
            return await metric(session, scope)

    # ------------------------------------------------------------------
    # Scope resolution
    # ------------------------------------------------------------------

    def resolve_scope(self, scope_type: str, scope_id: int, params: Mapping[str, Any]) -> AggregationScope:
        model = CONTENT_MODELS[params.get("source", "web")]
        days = int(params.get("days") or self.settings.days_range)
        end = self._clock()
        start = end - timedelta(days=days)

        scope_conditions = [self._scope_condition(model, scope_type, scope_id, bool(params.get("title")))]
        if model is Entry:
            scope_conditions.append(Entry.enabled == True)  # noqa: E712

        window_conditions = (model.published_at >= start, model.published_at <= end)
        return AggregationScope(model, tuple(scope_conditions), window_conditions, start, end)

    @staticmethod
    def _scope_condition(model: Type[ContentMixin], scope_type: str, scope_id: int, title: bool):
        if scope_type == "site":
            return model.site_id == scope_id

        if scope_type == "tag":
            tagged = select(Tagging.taggable_id).where(
                Tagging.taggable_type == model.TAGGABLE_TYPE,
                Tagging.tag_id == scope_id,
                Tagging.context == TAG_CONTEXT,
            )
            return model.id.in_(tagged)

        # topic: web entries read the association index, social posts their taggings
        if model is Entry:
            association = EntryTitleTopic if title else EntryTopic
            linked = select(association.entry_id).where(association.topic_id == scope_id)
            return Entry.id.in_(linked)

        tagged = (
            select(Tagging.taggable_id)
            .join(topic_tags, topic_tags.c.tag_id == Tagging.tag_id)
            .where(
                topic_tags.c.topic_id == scope_id,
                Tagging.taggable_type == model.TAGGABLE_TYPE,
                Tagging.context == TAG_CONTEXT,
            )
        )
        return model.id.in_(tagged)

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    async def totals(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, Any]:
        model = scope.model
        stmt = select(
            func.count(model.id),
            func.coalesce(func.sum(model.interactions_expression()), 0),
        ).where(*scope.conditions)
        count, interactions = (await session.execute(stmt)).one()

        return {
            "count": count,
            "interactions": int(interactions),
            "average_interactions": round(interactions / count, 1) if count else 0,
        }

    async def top_items(self, session: AsyncSession, scope: AggregationScope) -> List[Dict[str, Any]]:
        model = scope.model
        interactions = model.interactions_expression().label("interactions")
        stmt = (
            select(model, interactions)
            .where(*scope.conditions)
            .order_by(desc("interactions"), model.id)
            .limit(self.settings.top_items_limit)
        )
        rows = (await session.execute(stmt)).all()

        items = []
        for item, value in rows:
            headline = next((text for text in item.text_fields() if text), "")
            items.append({
                "id": item.id,
                "type": model.TAGGABLE_TYPE,
                "title": headline[:200],
                "site_id": item.site_id,
                "published_at": item.published_at.isoformat() if item.published_at else None,
                "interactions": int(value or 0),
            })
        return items

    async def time_series(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, Dict[str, int]]:
        """Per-day count and interaction sum, by calendar day in ``Settings.tz``."""
        model = scope.model
        stmt = (
            select(model.published_at, model.interactions_expression())
            .where(*scope.conditions)
            .order_by(model.published_at)
        )
        rows = (await session.execute(stmt)).all()

        tz = ZoneInfo(self.settings.tz)
        counts: Dict[str, int] = {}
        sums: Dict[str, int] = {}
        for published_at, interactions in rows:
            day = local_day(published_at, tz)
            counts[day] = counts.get(day, 0) + 1
            sums[day] = sums.get(day, 0) + int(interactions or 0)
        return {"counts": counts, "interactions": sums}

    async def tag_interactions(self, session: AsyncSession, scope: AggregationScope) -> List[TagInteraction]:
        """Per-tag count and interaction sum across items in scope, by interactions."""
        model = scope.model
        total = func.coalesce(func.sum(model.interactions_expression()), 0).label("total")
        stmt = (
            select(Tag.name, func.count(model.id), total)
            .select_from(model)
            .join(Tagging, and_(
                Tagging.taggable_type == model.TAGGABLE_TYPE,
                Tagging.taggable_id == model.id,
                Tagging.context == TAG_CONTEXT,
            ))
            .join(Tag, Tag.id == Tagging.tag_id)
            .where(*scope.conditions)
            .group_by(Tag.name)
            .order_by(desc("total"), Tag.name)
            .limit(self.settings.tag_rollup_limit)
        )
        rows = (await session.execute(stmt)).all()
        return [TagInteraction(tag=name, count=count, interactions=int(value)) for name, count, value in rows]

    async def tag_rollup(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, list]:
        rollup = await self.tag_interactions(session, scope)
        by_count = sorted(rollup, key=lambda row: row.count, reverse=True)
        return {
            "interactions": [[row.tag, row.interactions] for row in rollup],
            "counts": [[row.tag, row.count] for row in by_count],
        }

    async def site_rollup(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, list]:
        model = scope.model
        total = func.coalesce(func.sum(model.interactions_expression()), 0).label("total")
        stmt = (
            select(Site.name, func.count(model.id), total)
            .select_from(model)
            .join(Site, Site.id == model.site_id)
            .where(*scope.conditions)
            .group_by(Site.name)
            .order_by(desc("total"), Site.name)
            .limit(self.settings.site_rollup_limit)
        )
        rows = (await session.execute(stmt)).all()

        by_count = sorted(rows, key=lambda row: row[1], reverse=True)
        return {
            "interactions": [[name, int(value)] for name, _count, value in rows],
            "counts": [[name, count] for name, count, _value in by_count],
        }

    async def trending_terms(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, list]:
        model = scope.model
        columns = [getattr(model, name) for name in model.TEXT_FIELDS]
        stmt = (
            select(*columns)
            .where(*scope.conditions)
            .order_by(model.interactions_expression().desc(), model.id)
            .limit(self.settings.text_sample_size)
        )
        rows = (await session.execute(stmt)).all()

        documents = [join_fields(row) for row in rows]
        return self.analyzer.analyze(documents).to_dict()

    async def sentiment(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, Any]:
        model = scope.model
        polarity = polarity_expression(model)
        if polarity is None:
            # Source has no sentiment signal
            return copy.deepcopy(DEFAULT_SENTIMENT)

        bucket = polarity.label("bucket")
        stmt = (
            select(
                bucket,
                func.count(model.id),
                func.coalesce(func.sum(model.interactions_expression()), 0),
            )
            .where(*scope.conditions, polarity.isnot(None))
            .group_by(bucket)
        )
        rows = (await session.execute(stmt)).all()

        counts = {bucket.label: 0 for bucket in BUCKETS}
        interactions = {bucket.label: 0 for bucket in BUCKETS}
        for raw, count, value in rows:
            label = normalize(raw).label
            counts[label] += count
            interactions[label] += int(value)

        precision = self.settings.percentage_precision
        result = {
            "counts": counts,
            "percentages": bucket_percentages(counts, sum(counts.values()), precision),
            "interactions": interactions,
            "interaction_percentages": bucket_percentages(interactions, sum(interactions.values()), precision),
            "confidence": None,
        }

        if hasattr(model, "sentiment_confidence"):
            stmt = select(
                func.avg(model.sentiment_score),
                func.avg(model.sentiment_confidence),
            ).where(*scope.conditions, model.sentiment_score.isnot(None))
            average_score, average_confidence = (await session.execute(stmt)).one()
            if average_confidence is not None:
                result["confidence"] = {
                    "average_score": round(float(average_score or 0), 2),
                    "average_confidence": round(float(average_confidence), 2),
                    "level": classify_confidence(float(average_confidence)).value,
                }
        return result

    async def _recent_vs_previous(self, session: AsyncSession, scope: AggregationScope, measure):
        model = scope.model
        now = self._clock()
        day_ago = now - timedelta(hours=24)
        two_days_ago = now - timedelta(hours=48)

        recent_stmt = select(measure).where(*scope.scope_conditions, model.published_at >= day_ago)
        previous_stmt = select(measure).where(
            *scope.scope_conditions,
            model.published_at >= two_days_ago,
            model.published_at < day_ago,
        )
        recent = (await session.execute(recent_stmt)).scalar() or 0
        previous = (await session.execute(previous_stmt)).scalar() or 0
        return int(recent), int(previous)

    async def trend_velocity(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, Any]:
        recent, previous = await self._recent_vs_previous(session, scope, func.count(scope.model.id))
        return velocity(recent, previous)

    async def engagement_velocity(self, session: AsyncSession, scope: AggregationScope) -> Dict[str, Any]:
        measure = func.coalesce(func.sum(scope.model.interactions_expression()), 0)
        recent, previous = await self._recent_vs_previous(session, scope, measure)
        return velocity(recent, previous)
