"""Backfill of the topic association indexes over historical entries.

Walks entries in ascending id order in fixed-size batches, re-syncing each
entry from its current tag lists. A failure on one entry is recorded and
skipped; the run always completes and returns a summary. Batches are
separated by a fixed sleep as cooperative backpressure, and the summary
carries the last processed id so an interrupted run can resume from it.
"""

import asyncio
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from mediawatch.core.catalog import TopicSpec
from mediawatch.core.db import SessionFactory, get_sessionmaker
from mediawatch.core.logging import get_logger, setup_logging
from mediawatch.core import repositories as repo
from mediawatch.core.settings import Settings, get_settings
from mediawatch.classifier.sync import SyncResult, sync_entry_from_current_tags

logger = get_logger(__name__)

SyncFn = Callable[[AsyncSession, int, Sequence[TopicSpec]], Awaitable[SyncResult]]

TRACE_LINES = 3


@dataclass
class BackfillSummary:
    processed: int = 0
    skipped: int = 0
    errors: List[Dict[str, Any]] = field(default_factory=list)
    duration_seconds: float = 0.0
    total: int = 0
    last_processed_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "skipped": self.skipped,
            "errors": self.errors,
            "duration_seconds": round(self.duration_seconds, 2),
            "total": self.total,
            "last_processed_id": self.last_processed_id,
        }


def _error_entry(entry_id: int, error: Exception) -> Dict[str, Any]:
    trace = traceback.format_exception(type(error), error, error.__traceback__)
    return {
        "id": entry_id,
        "message": str(error) or error.__class__.__name__,
        "error_type": error.__class__.__name__,
        "trace": [line.rstrip() for line in trace[-TRACE_LINES:]],
    }


async def run_isolated(session_factory: SessionFactory, entry_id: int,
                       handler: Callable[[AsyncSession, int], Awaitable[Any]],
                       job_name: str) -> Tuple[bool, Any]:
    """
    Run ``handler(session, entry_id)`` in its own session and transaction.

    On failure the transaction is rolled back and the error is logged.

    Returns:
        ``(True, handler result)`` or ``(False, error entry)``
    """
    async with session_factory() as session:
        try:
            result = await handler(session, entry_id)
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(
                f"{job_name}: failed for entry {entry_id}: {e}",
                extra={"job": job_name, "entry_id": entry_id, "error_type": e.__class__.__name__},
            )
            return False, _error_entry(entry_id, e)
    return True, result


async def process_each(session_factory: SessionFactory, entry_ids: Iterable[int],
                       handler: Callable[[AsyncSession, int], Awaitable[Any]],
                       job_name: str) -> Tuple[List[Any], List[Dict[str, Any]]]:
    """
    Run ``handler(session, entry_id)`` for each entry in its own transaction.

    A failing entry is rolled back, logged and recorded; the loop continues.

    Returns:
        Tuple of (handler results for succeeded entries, error entries)
    """
    results: List[Any] = []
    errors: List[Dict[str, Any]] = []

    for entry_id in entry_ids:
        ok, outcome = await run_isolated(session_factory, entry_id, handler, job_name)
        (results if ok else errors).append(outcome)

    return results, errors


class BackfillCoordinator:
    """Re-syncs association indexes for a bounded range of entries."""

    def __init__(self, session_factory: Optional[SessionFactory] = None,
                 sync_fn: Optional[SyncFn] = None,
                 settings: Optional[Settings] = None,
                 throttle_seconds: Optional[float] = None,
                 progress_every: Optional[int] = None):
        settings = settings or get_settings()
        self.session_factory = session_factory or get_sessionmaker()
        self.sync_fn = sync_fn or sync_entry_from_current_tags
        self.default_batch_size = settings.backfill_batch_size
        self.throttle_seconds = (
            settings.backfill_throttle_seconds if throttle_seconds is None else throttle_seconds
        )
        self.progress_every = progress_every or settings.backfill_progress_every

    def _log_progress(self, done: int, total: int, started: float) -> None:
        elapsed = time.time() - started
        rate = done / elapsed if elapsed > 0 else 0.0
        remaining = max(total - done, 0)
        eta = remaining / rate if rate > 0 else 0.0
        percent = done / total * 100 if total else 100.0

        logger.info(
            f"Progress: {done}/{total} ({percent:.1f}%) | {rate:.1f} items/sec | ETA {eta / 60:.1f} min",
            extra={"done": done, "total": total, "rate": round(rate, 2), "eta_seconds": round(eta, 1)},
        )

    async def _sync_one(self, entry_id: int, topics: Sequence[TopicSpec], summary: BackfillSummary) -> None:
        async def sync(session: AsyncSession, eid: int) -> SyncResult:
            return await self.sync_fn(session, eid, topics)

        ok, outcome = await run_isolated(self.session_factory, entry_id, sync, "backfill")
        if ok:
            summary.processed += 1
        else:
            summary.skipped += 1
            summary.errors.append(outcome)

    async def run(self, batch_size: Optional[int] = None, start_id: Optional[int] = None,
                  end_id: Optional[int] = None) -> BackfillSummary:
        """
        Re-sync every entry with ``start_id <= id <= end_id``.

        Args:
            batch_size: Entries per batch
            start_id: Inclusive lower bound (None for no bound)
            end_id: Inclusive upper bound (None for no bound)

        Returns:
            BackfillSummary
        """
        batch_size = batch_size or self.default_batch_size
        started = time.time()
        summary = BackfillSummary()

        async with self.session_factory() as session:
            summary.total = await repo.count_entries(session, start_id, end_id)

        logger.info(
            f"Starting backfill of {summary.total} entries (batch size {batch_size})",
            extra={"total": summary.total, "start_id": start_id, "end_id": end_id},
        )

        last_id: Optional[int] = None
        while True:
            async with self.session_factory() as session:
                ids = await repo.next_entry_ids(session, last_id, batch_size, start_id, end_id)
                # Catalog is re-read every batch so catalog edits during a long run are picked up
                topics = await repo.get_topic_catalog(session) if ids else []

            if not ids:
                break

            for entry_id in ids:
                await self._sync_one(entry_id, topics, summary)
                summary.last_processed_id = entry_id

                done = summary.processed + summary.skipped
                if done % self.progress_every == 0:
                    self._log_progress(done, summary.total, started)

            last_id = ids[-1]
            if len(ids) < batch_size:
                break
            await asyncio.sleep(self.throttle_seconds)

        summary.duration_seconds = time.time() - started
        logger.info(
            f"Backfill completed in {summary.duration_seconds:.2f}s: "
            f"{summary.processed} processed, {summary.skipped} skipped",
            extra={"processed": summary.processed, "skipped": summary.skipped,
                   "runtime_seconds": summary.duration_seconds},
        )
        return summary


async def backfill_all(batch_size: Optional[int] = None, start_id: Optional[int] = None,
                       end_id: Optional[int] = None) -> Dict[str, Any]:
    """Job entry point: backfill both association indexes over an id range."""
    summary = await BackfillCoordinator().run(batch_size, start_id, end_id)
    return summary.to_dict()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(description='Backfill topic association indexes')
    parser.add_argument(
        '--batch-size',
        type=int,
        default=None,
        help='Entries per batch (default: BACKFILL_BATCH_SIZE setting)'
    )
    parser.add_argument('--start-id', type=int, default=None, help='First entry id (inclusive)')
    parser.add_argument('--end-id', type=int, default=None, help='Last entry id (inclusive)')
    parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose logging'
    )

    args = parser.parse_args()

    setup_logging("backfill")
    if args.verbose:
        import logging
        logging.getLogger('mediawatch').setLevel(logging.DEBUG)

    stats = asyncio.run(backfill_all(args.batch_size, args.start_id, args.end_id))

    print("\n=== Backfill Results ===")
    print(f"Total: {stats['total']}")
    print(f"Processed: {stats['processed']}")
    print(f"Skipped: {stats['skipped']}")
    print(f"Duration: {stats['duration_seconds']}s")
    print(f"Last processed id: {stats['last_processed_id']}")

    if stats['errors']:
        print(f"\nErrors ({len(stats['errors'])}):")
        for error in stats['errors'][:10]:
            print(f"  - Entry {error['id']}: {error['message']}")


if __name__ == "__main__":
    main()
