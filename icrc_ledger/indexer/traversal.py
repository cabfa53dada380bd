"""
Ledger Traversal Engine

Walks the whole transaction log newest-first and hands normalized
batches to a consumer.

Phase A (live segment):
    Sequential reads of at most live_batch_size transactions, moving the
    cursor backward from the total count. Stops at zero, or as soon as a
    response points at an archive canister.

Phase B (archive segment):
    One probe read learns the archive's native batch size. The walk then
    starts at the archive boundary rounded down to that batch size and
    proceeds in rounds of up to parallel_batches concurrent reads.
    Each round is joined and delivered in launch order. A failed read
    cancels the rest of its round and aborts the traversal.

The consumer returns truthy to continue and falsy to stop. A stop ends
the traversal after the current delivery; reads already launched in a
Phase B round still complete but their batches are not delivered.
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Optional, Union

from ..config import LedgerConfig
from ..types import ArchiveBoundary, SegmentCursor, SegmentRead, Transaction
from .segment_fetcher import SegmentFetcher
from .tx_parser import TransactionParser

BatchConsumer = Callable[[List[Transaction]], Union[bool, Awaitable[bool]]]


class TraversalEngine:
    """
    End-to-start iterator over live and archive segments.

    Usage:
        engine = TraversalEngine(fetcher, config)
        await engine.run(lambda batch: print(len(batch)) or True)
    """

    def __init__(self, fetcher: SegmentFetcher, config: Optional[LedgerConfig] = None):
        self.config = config or LedgerConfig()
        self._fetcher = fetcher
        self._parser = TransactionParser()
        self._logger = logging.getLogger("TraversalEngine")
        self._reset_stats()

    def _reset_stats(self):
        self._stats = {
            "total_transactions": 0,
            "reads": 0,
            "batches_delivered": 0,
            "transactions_delivered": 0,
            "archive_canister": None,
            "archive_boundary": None,
            "archive_batch_size": None,
            "stopped_early": False,
        }

    def _trace(self, message: str):
        if self.config.debug:
            self._logger.info(message)

    async def _deliver(self, consumer: BatchConsumer, batch: List[Transaction]) -> bool:
        """Hand one batch to the consumer; False means stop."""
        self._stats["batches_delivered"] += 1
        self._stats["transactions_delivered"] += len(batch)

        result = consumer(batch)
        if inspect.isawaitable(result):
            result = await result
        if not result:
            self._stats["stopped_early"] = True
            self._trace("Consumer requested stop")
            return False
        return True

    async def _read(self, endpoint, cursor: SegmentCursor) -> SegmentRead:
        self._stats["reads"] += 1
        return await self._fetcher.read_range(
            endpoint, cursor.start_index, cursor.length, cursor.batch_size
        )

    async def run(self, consumer: BatchConsumer) -> None:
        """Traverse the full log, newest first."""
        self._reset_stats()
        total = await self._fetcher.total_transaction_count()
        self._stats["total_transactions"] = total
        self._trace(f"Total transactions: {total}")

        boundary = await self._walk_live(total, consumer)
        if boundary is None:
            return
        await self._walk_archive(boundary, consumer)

    # =========================================================================
    # Phase A: Live Segment
    # =========================================================================

    async def _walk_live(self, total: int, consumer: BatchConsumer) -> Optional[ArchiveBoundary]:
        """
        Walk the live segment backward from total.

        Returns the archive boundary if one was discovered and the consumer
        did not stop, otherwise None.
        """
        cursor_index = total

        while cursor_index > 0:
            length = min(cursor_index, self.config.live_batch_size)
            cursor_index -= length
            cursor = SegmentCursor(start_index=cursor_index, length=length)

            self._trace(f"Fetching transactions from index {cursor.start_index} with length {length}")
            read = await self._read(self._fetcher.ledger, cursor)
            self._trace(f"Fetched {read.record_count} transactions")

            # Records come oldest-first, starting where the archived part ends
            if read.first_index is not None:
                base = read.first_index
            elif read.archive is not None:
                base = read.archive.first_index
            else:
                base = cursor.start_index
            batch = self._parser.parse_batch(read.records, lambda i: base + i)
            batch.reverse()

            if not await self._deliver(consumer, batch):
                return None

            if read.archive is not None:
                self._stats["archive_canister"] = read.archive.canister_id
                self._stats["archive_boundary"] = read.archive.first_index
                self._trace(
                    f"Found archived transactions. Archive canister: {read.archive.canister_id}, "
                    f"first index: {read.archive.first_index}"
                )
                return read.archive

        return None

    # =========================================================================
    # Phase B: Archive Segment
    # =========================================================================

    async def _probe_batch_size(self, archive) -> int:
        """Learn the archive's native batch size from a read at index 0."""
        probe = await self._read(archive, SegmentCursor(start_index=0, length=self.config.live_batch_size))
        batch_size = probe.record_count
        if batch_size <= 0:
            self._logger.warning(
                f"Archive probe returned no transactions, using batch size {self.config.live_batch_size}"
            )
            batch_size = self.config.live_batch_size
        return batch_size

    def _archive_windows(self, boundary: int, batch_size: int) -> List[SegmentCursor]:
        """
        All archive windows, newest first.

        The first window runs from the boundary rounded down to batch_size up
        to the boundary itself; each later window is one full batch lower.
        """
        start = boundary - (boundary % batch_size)
        windows = [SegmentCursor(start_index=start, length=boundary - start, batch_size=batch_size)]
        while start > 0:
            length = min(start, batch_size)
            start -= length
            windows.append(SegmentCursor(start_index=start, length=length, batch_size=batch_size))
        return windows

    async def _fetch_round(self, archive, windows: List[SegmentCursor]) -> List[SegmentRead]:
        """
        Fetch one round of windows concurrently.

        Results come back in launch position, so completion order does not
        affect delivery order. The round holds at most parallel_batches
        windows, which is what bounds concurrency. If any read fails, the
        rest of the round is cancelled and awaited before the error is
        raised, so no read outlives the traversal.
        """
        tasks = [asyncio.ensure_future(self._read(archive, window)) for window in windows]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    async def _walk_archive(self, boundary: ArchiveBoundary, consumer: BatchConsumer) -> None:
        archive = self._fetcher.archive(boundary.canister_id)
        batch_size = await self._probe_batch_size(archive)
        self._stats["archive_batch_size"] = batch_size

        windows = self._archive_windows(boundary.first_index, batch_size)
        width = self.config.parallel_batches

        for offset in range(0, len(windows), width):
            round_windows = windows[offset:offset + width]
            self._trace(
                f"Fetching archived transactions in parallel. "
                f"parallel_batches={width}, index pointer={round_windows[0].start_index}"
            )
            reads = await self._fetch_round(archive, round_windows)

            for read in reads:
                self._trace(
                    f"Fetched {read.record_count} archived transactions, "
                    f"start index of the current batch is {read.cursor.start_index}"
                )
                start_index = read.cursor.start_index
                batch = self._parser.parse_batch(read.records, lambda i: start_index + i)
                batch.reverse()
                if not await self._deliver(consumer, batch):
                    return

    def get_stats(self) -> Dict:
        stats = dict(self._stats)
        stats["parser"] = self._parser.get_stats()
        return stats
