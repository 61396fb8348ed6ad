"""Tests for dashboard aggregation."""

from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from mediawatch.analytics.dashboard import (
    DEFAULT_ROLLUP,
    DEFAULT_SENTIMENT,
    DashboardAggregator,
    try_default,
    velocity,
)
from mediawatch.analytics.text import StopWords, TextAnalyzer
from mediawatch.classifier.sync import sync_entry_from_current_tags
from mediawatch.core.cache import AggregationCache
from mediawatch.core.models import FacebookEntry, Tagging
from mediawatch.core.settings import Settings

from conftest import NOW, add_entry


class Clock:
    """Settable clock shared by the cache and the aggregator."""

    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def aggregator(session_factory, clock):
    cache = AggregationCache(backend="memory", tz="UTC", clock=clock)
    analyzer = TextAnalyzer(StopWords.of([]), word_threshold=0, bigram_threshold=0)
    return DashboardAggregator(
        session_factory=session_factory,
        cache=cache,
        analyzer=analyzer,
        settings=Settings(stop_words_path=None),
        clock=clock,
    )


@pytest_asyncio.fixture
async def entries(session_factory, catalog):
    """Two Politics entries in the window, one Sports entry and one old entry."""
    tags, site = catalog["tags"], catalog["site"]
    ids = {
        "recent": await add_entry(
            session_factory, "Paraguay elecciones", site_id=site,
            reactions=10, comments=5, polarity=1, tags=[tags["paraguay"]],
        ),
        "yesterday": await add_entry(
            session_factory, "Paraguay e Itaipú", site_id=site,
            published_at=NOW - timedelta(hours=30), reactions=3, polarity=2,
            tags=[tags["paraguay"], tags["itaipu"]],
        ),
        "sports": await add_entry(
            session_factory, "Cerro campeón", site_id=site, reactions=100, tags=[tags["cerro"]],
        ),
        "old": await add_entry(
            session_factory, "Paraguay archivo", published_at=NOW - timedelta(days=10),
            reactions=500, tags=[tags["paraguay"]],
        ),
    }
    async with session_factory() as session:
        for entry_id in ids.values():
            await sync_entry_from_current_tags(session, entry_id)
        await session.commit()
    return ids


class TestHelpers:
    """Default fallback and velocity."""

    @pytest.mark.asyncio
    async def test_try_default_returns_copy_on_failure(self):
        failures = []
        result = await try_default(AsyncMock(side_effect=RuntimeError("boom")), DEFAULT_ROLLUP, "tags", failures)

        assert result == DEFAULT_ROLLUP
        assert result is not DEFAULT_ROLLUP
        assert failures == ["tags"]

    @pytest.mark.asyncio
    async def test_try_default_passes_value_through(self):
        failures = []
        assert await try_default(AsyncMock(return_value=5), 0, "count", failures) == 5
        assert failures == []

    def test_velocity_without_previous_is_stable(self):
        assert velocity(7, 0) == {"velocity_percent": 0, "direction": "stable", "recent": 7, "previous": 0}

    @pytest.mark.parametrize("recent,previous,percent,direction", [
        (12, 10, 20.0, "up"),
        (8, 10, -20.0, "down"),
        (11, 10, 10.0, "stable"),
        (9, 10, -10.0, "stable"),
    ])
    def test_velocity_direction(self, recent, previous, percent, direction):
        result = velocity(recent, previous)
        assert result["velocity_percent"] == percent
        assert result["direction"] == direction


class TestTopicPayload:
    """Topic scope over web entries."""

    @pytest.mark.asyncio
    async def test_totals_and_top_items(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"])

        assert payload["totals"] == {"count": 2, "interactions": 18, "average_interactions": 9.0}
        assert [item["id"] for item in payload["top_items"]] == [entries["recent"], entries["yesterday"]]
        assert payload["top_items"][0]["interactions"] == 15
        assert payload["failed_metrics"] == []

    @pytest.mark.asyncio
    async def test_time_series_by_day(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"])

        assert payload["time_series"]["counts"] == {"2026-10-18": 1, "2026-10-19": 1}
        assert payload["time_series"]["interactions"] == {"2026-10-18": 3, "2026-10-19": 15}

    @pytest.mark.asyncio
    @pytest.mark.parametrize("tz, day", [("America/Asuncion", "2026-10-18"), ("UTC", "2026-10-19")])
    async def test_time_series_uses_local_calendar_day(self, session_factory, clock, catalog, tz, day):
        # 02:00 UTC is still the previous evening in Asunción
        await add_entry(session_factory, "Cerro de noche", published_at=NOW - timedelta(hours=10),
                        reactions=7, tags=[catalog["tags"]["cerro"]])
        aggregator = DashboardAggregator(
            session_factory=session_factory,
            cache=AggregationCache(backend="memory", tz="UTC", clock=clock),
            analyzer=TextAnalyzer(StopWords.of([]), word_threshold=0, bigram_threshold=0),
            settings=Settings(tz=tz, stop_words_path=None),
            clock=clock,
        )

        payload = await aggregator.aggregate("tag", catalog["tags"]["cerro"])

        assert payload["time_series"] == {"counts": {day: 1}, "interactions": {day: 7}}

    @pytest.mark.asyncio
    async def test_sentiment_buckets(self, aggregator, catalog, entries):
        sentiment = (await aggregator.aggregate("topic", catalog["topics"]["politics"]))["sentiment"]

        assert sentiment["counts"] == {"positive": 1, "neutral": 0, "negative": 1}
        assert sentiment["percentages"] == {"positive": 50.0, "neutral": 0.0, "negative": 50.0}
        assert sentiment["interactions"] == {"positive": 15, "neutral": 0, "negative": 3}
        assert sentiment["confidence"] is None

    @pytest.mark.asyncio
    async def test_tag_and_site_rollups(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"])

        assert payload["tags"]["interactions"] == [["Paraguay", 18], ["Itaipú", 3]]
        assert payload["tags"]["counts"] == [["Paraguay", 2], ["Itaipú", 1]]
        assert payload["sites"] == {"interactions": [["ABC Color", 18]], "counts": [["ABC Color", 2]]}

    @pytest.mark.asyncio
    async def test_trending_and_velocity(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"])

        assert payload["trending"]["words"][0] == ["paraguay", 2]
        assert payload["trend_velocity"]["direction"] == "stable"
        assert payload["engagement_velocity"]["velocity_percent"] == 400.0
        assert payload["engagement_velocity"]["direction"] == "up"

    @pytest.mark.asyncio
    async def test_window_excludes_old_entries(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"], {"days": 30})
        assert payload["totals"]["count"] == 3


class TestOtherScopes:
    """Tag and site scopes, social sources."""

    @pytest.mark.asyncio
    async def test_tag_scope(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("tag", catalog["tags"]["itaipu"])
        assert payload["totals"]["count"] == 1
        assert payload["top_items"][0]["id"] == entries["yesterday"]

    @pytest.mark.asyncio
    async def test_site_scope(self, aggregator, catalog, entries):
        payload = await aggregator.aggregate("site", catalog["site"])
        assert payload["totals"] == {"count": 3, "interactions": 118, "average_interactions": 39.3}

    @pytest.mark.asyncio
    async def test_facebook_topic_scope_uses_taggings(self, aggregator, session_factory, catalog):
        async with session_factory() as session:
            post = FacebookEntry(
                facebook_post_id="123_456", published_at=NOW - timedelta(hours=2),
                message="Paraguay hoy", reactions_total_count=40, comments_count=2, share_count=1,
                sentiment_score=0.8, sentiment_label=1, sentiment_confidence=0.75,
            )
            session.add(post)
            await session.flush()
            session.add(Tagging(tag_id=catalog["tags"]["paraguay"], taggable_type="FacebookEntry",
                                taggable_id=post.id, context="tags"))
            await session.commit()

        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"], {"source": "facebook"})

        assert payload["source"] == "facebook"
        assert payload["totals"]["interactions"] == 43
        assert payload["sentiment"]["counts"]["positive"] == 1
        assert payload["sentiment"]["confidence"] == {
            "average_score": 0.8, "average_confidence": 0.75, "level": "high",
        }

    @pytest.mark.asyncio
    async def test_facebook_sentiment_buckets_follow_score(self, aggregator, session_factory, catalog):
        posts = [
            # (score, stored label): the score decides whenever present
            (1.8, None),
            (-0.2, 2),
            (None, 2),
        ]
        async with session_factory() as session:
            for index, (score, label) in enumerate(posts):
                post = FacebookEntry(
                    facebook_post_id=f"123_{index}", published_at=NOW - timedelta(hours=index + 1),
                    message="Paraguay hoy", reactions_total_count=10 * (index + 1),
                    sentiment_score=score, sentiment_label=label,
                )
                session.add(post)
                await session.flush()
                session.add(Tagging(tag_id=catalog["tags"]["paraguay"], taggable_type="FacebookEntry",
                                    taggable_id=post.id, context="tags"))
            await session.commit()

        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"], {"source": "facebook"})

        sentiment = payload["sentiment"]
        assert sentiment["counts"] == {"positive": 1, "neutral": 1, "negative": 1}
        assert sentiment["interactions"] == {"positive": 10, "neutral": 20, "negative": 30}

    @pytest.mark.asyncio
    async def test_source_without_polarity_gets_default_sentiment(self, aggregator, catalog):
        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"], {"source": "twitter"})
        assert payload["sentiment"] == DEFAULT_SENTIMENT
        assert payload["totals"]["count"] == 0

    @pytest.mark.asyncio
    async def test_unknown_scope_or_source(self, aggregator):
        with pytest.raises(ValueError):
            await aggregator.aggregate("region", 1)
        with pytest.raises(ValueError):
            await aggregator.aggregate("topic", 1, {"source": "tiktok"})


class TestCaching:
    """Cache keyed by scope, params and day."""

    @pytest.mark.asyncio
    async def test_second_call_is_served_from_cache(self, aggregator, catalog, entries, monkeypatch):
        topic_id = catalog["topics"]["politics"]
        first = await aggregator.aggregate("topic", topic_id)

        compute = AsyncMock(side_effect=AssertionError("should not recompute"))
        monkeypatch.setattr(aggregator, "compute", compute)
        second = await aggregator.aggregate("topic", topic_id)

        assert second == first
        compute.assert_not_called()

    @pytest.mark.asyncio
    async def test_params_are_part_of_the_key(self, aggregator, catalog, entries):
        topic_id = catalog["topics"]["politics"]
        await aggregator.aggregate("topic", topic_id)
        await aggregator.aggregate("topic", topic_id, {"days": 3})

        assert len(aggregator.cache._memory) == 2

    @pytest.mark.asyncio
    async def test_new_day_recomputes(self, aggregator, clock, catalog, entries):
        topic_id = catalog["topics"]["politics"]
        await aggregator.aggregate("topic", topic_id)

        clock.now = NOW + timedelta(days=1)
        payload = await aggregator.aggregate("topic", topic_id)

        assert payload["generated_at"] == clock.now.isoformat()
        assert len(aggregator.cache._memory) == 2


class TestMetricFailure:
    """A failing metric degrades to its default."""

    @pytest.mark.asyncio
    async def test_failed_metric_uses_default(self, aggregator, catalog, entries, monkeypatch):
        monkeypatch.setattr(aggregator, "tag_rollup", AsyncMock(side_effect=RuntimeError("boom")))

        payload = await aggregator.aggregate("topic", catalog["topics"]["politics"])

        assert payload["tags"] == DEFAULT_ROLLUP
        assert payload["failed_metrics"] == ["tags"]
        assert payload["totals"]["count"] == 2
        assert payload["sentiment"]["counts"]["positive"] == 1
