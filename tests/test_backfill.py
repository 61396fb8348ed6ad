"""Tests for the association backfill coordinator."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from mediawatch.classifier.sync import SyncResult
from mediawatch.core.models import EntryTopic
from mediawatch.core import repositories as repo
from mediawatch.jobs import backfill
from mediawatch.jobs.backfill import BackfillCoordinator, process_each, run_isolated

from conftest import add_entry


def make_sync(fail_ids=()):
    """Sync stub recording calls and raising for selected ids."""
    calls = []

    async def sync(session, entry_id, topics):
        calls.append(entry_id)
        if entry_id in fail_ids:
            raise RuntimeError(f"write rejected for {entry_id}")
        return SyncResult(entry_id=entry_id, linked_topic_count=0, linked_title_topic_count=0)

    return sync, calls


async def add_entries(session_factory, count):
    return [await add_entry(session_factory, f"entry {i}") for i in range(count)]


class TestBackfillCoordinator:
    """Batching and failure isolation."""

    @pytest.mark.asyncio
    async def test_one_failing_item_is_skipped(self, session_factory, catalog):
        ids = await add_entries(session_factory, 10)
        sync, calls = make_sync(fail_ids={ids[4]})

        coordinator = BackfillCoordinator(session_factory, sync_fn=sync, throttle_seconds=0)
        summary = await coordinator.run(batch_size=4)

        assert summary.processed == 9
        assert summary.skipped == 1
        assert len(summary.errors) == 1
        assert summary.errors[0]["id"] == ids[4]
        assert "write rejected" in summary.errors[0]["message"]
        assert summary.errors[0]["trace"]
        assert calls == ids

    @pytest.mark.asyncio
    async def test_range_bounds(self, session_factory, catalog):
        ids = await add_entries(session_factory, 10)
        sync, calls = make_sync()

        coordinator = BackfillCoordinator(session_factory, sync_fn=sync, throttle_seconds=0)
        summary = await coordinator.run(batch_size=2, start_id=ids[2], end_id=ids[6])

        assert calls == ids[2:7]
        assert summary.total == 5
        assert summary.processed == 5
        assert summary.last_processed_id == ids[6]

    @pytest.mark.asyncio
    async def test_resume_from_checkpoint(self, session_factory, catalog):
        ids = await add_entries(session_factory, 6)
        sync, calls = make_sync()
        coordinator = BackfillCoordinator(session_factory, sync_fn=sync, throttle_seconds=0)

        first = await coordinator.run(batch_size=10, end_id=ids[2])
        await coordinator.run(batch_size=10, start_id=first.last_processed_id + 1)

        assert calls == ids

    @pytest.mark.asyncio
    async def test_empty_range(self, session_factory, catalog):
        sync, calls = make_sync()
        summary = await BackfillCoordinator(session_factory, sync_fn=sync).run(batch_size=5)

        assert summary.processed == 0
        assert summary.skipped == 0
        assert summary.errors == []
        assert calls == []

    @pytest.mark.asyncio
    async def test_throttles_between_batches(self, session_factory, catalog, monkeypatch):
        await add_entries(session_factory, 5)
        sync, _ = make_sync()
        sleep = AsyncMock()
        monkeypatch.setattr(backfill, "asyncio", MagicMock(sleep=sleep))

        await BackfillCoordinator(session_factory, sync_fn=sync, throttle_seconds=0.05).run(batch_size=2)

        # Batches of 2, 2, 1: sleeps after the two full batches
        assert sleep.await_count == 2
        sleep.assert_awaited_with(0.05)

    @pytest.mark.asyncio
    async def test_real_sync_builds_index(self, session_factory, catalog):
        tags, topics = catalog["tags"], catalog["topics"]
        entry_id = await add_entry(session_factory, "Itaipu", tags=[tags["itaipu"]])

        summary = await BackfillCoordinator(session_factory, throttle_seconds=0).run(batch_size=10)

        assert summary.processed == 1
        async with session_factory() as session:
            linked = await repo.get_associated_topic_ids(session, EntryTopic, entry_id)
        assert linked == {topics["energy"]}

    @pytest.mark.asyncio
    async def test_partial_writes_of_failing_item_are_rolled_back(self, session_factory, catalog):
        ids = await add_entries(session_factory, 3)
        energy = catalog["topics"]["energy"]

        async def sync(session, entry_id, topics):
            session.add(EntryTopic(entry_id=entry_id, topic_id=energy))
            await session.flush()
            if entry_id == ids[1]:
                raise RuntimeError("index write failed halfway")
            return SyncResult(entry_id=entry_id, linked_topic_count=1, linked_title_topic_count=0)

        summary = await BackfillCoordinator(session_factory, sync_fn=sync, throttle_seconds=0).run()

        assert (summary.processed, summary.skipped) == (2, 1)
        async with session_factory() as session:
            for entry_id, expected in zip(ids, [{energy}, set(), {energy}]):
                assert await repo.get_associated_topic_ids(session, EntryTopic, entry_id) == expected

    @pytest.mark.asyncio
    async def test_summary_dict(self, session_factory, catalog):
        await add_entries(session_factory, 2)
        sync, _ = make_sync()
        summary = await BackfillCoordinator(session_factory, sync_fn=sync, throttle_seconds=0).run()

        data = summary.to_dict()
        assert set(data) == {"processed", "skipped", "errors", "duration_seconds", "total", "last_processed_id"}
        assert data["processed"] == 2


class TestProcessEach:
    """Per-item isolation helper."""

    @pytest.mark.asyncio
    async def test_failures_recorded_and_loop_continues(self, session_factory):
        async def handler(session, entry_id):
            if entry_id == 2:
                raise ValueError("bad entry")
            return entry_id * 10

        results, errors = await process_each(session_factory, [1, 2, 3], handler, "test")

        assert results == [10, 30]
        assert [error["id"] for error in errors] == [2]
        assert errors[0]["error_type"] == "ValueError"

    @pytest.mark.asyncio
    async def test_run_isolated_rolls_back_failed_item(self, session_factory, catalog):
        entry_id = await add_entry(session_factory, "x")
        sports = catalog["topics"]["sports"]

        async def handler(session, eid):
            session.add(EntryTopic(entry_id=eid, topic_id=sports))
            await session.flush()
            raise ValueError("bad entry")

        ok, outcome = await run_isolated(session_factory, entry_id, handler, "test")

        assert ok is False
        assert outcome["id"] == entry_id
        async with session_factory() as session:
            assert await repo.get_associated_topic_ids(session, EntryTopic, entry_id) == set()
