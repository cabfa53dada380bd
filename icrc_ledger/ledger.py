"""
ICRC Ledger Client

Public async API over one token ledger canister. Every call re-walks the
log from the remote source; nothing is cached between calls.
"""

import logging
from typing import Any, List, Optional

from .client import GatewayAgent
from .config import ClientConfig, LedgerConfig
from .indexer.aggregators import BalanceReplay, FilteredCallback, IdentifierFilter, UniqueAccountCounter
from .indexer.segment_fetcher import SegmentFetcher
from .indexer.traversal import BatchConsumer, TraversalEngine
from .types import HolderBalance, Transaction, UniqueAccountCounts


class Ledger:
    """
    Derived views over an ICRC ledger's transaction log.

    Usage:
        async with Ledger("ryjl3-tyaaa-aaaaa-aaaba-cai", LedgerConfig(debug=True)) as ledger:
            counts = await ledger.count_unique_accounts()
            holders = await ledger.collect_holders_and_balances("desc")

    agent is anything with a canister(canister_id) method returning a
    handle with an async call(method, args). When omitted, a GatewayAgent is
    created from client_config and closed with the Ledger.
    """

    def __init__(
        self,
        canister_id: str,
        config: Optional[LedgerConfig] = None,
        agent: Optional[Any] = None,
        client_config: Optional[ClientConfig] = None
    ):
        self.canister_id = canister_id
        self.config = config or LedgerConfig()
        self._logger = logging.getLogger("Ledger")

        self._owns_agent = agent is None
        self._agent = agent if agent is not None else GatewayAgent(client_config)
        self._ledger = self._agent.canister(canister_id)
        self._last_engine: Optional[TraversalEngine] = None

    async def close(self):
        if self._owns_agent:
            await self._agent.stop()

    async def __aenter__(self) -> "Ledger":
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.close()

    def _fetcher(self) -> SegmentFetcher:
        return SegmentFetcher(self._ledger, self._agent.canister)

    # =========================================================================
    # Discovery
    # =========================================================================

    async def get_total_supply(self) -> int:
        """Total token supply in base units."""
        return await self._fetcher().total_supply()

    async def get_total_transactions(self) -> int:
        """Total number of transactions in the log, live and archived."""
        return await self._fetcher().total_transaction_count()

    # =========================================================================
    # Traversal
    # =========================================================================

    async def iterate_transactions(self, callback: BatchConsumer) -> None:
        """
        Walk every transaction newest-first, one batch at a time.

        callback receives a list of Transactions in descending index order
        and returns True to continue or False to stop.
        """
        engine = TraversalEngine(self._fetcher(), self.config)
        self._last_engine = engine
        await engine.run(callback)
        self._logger.debug(f"Traversal finished: {engine.get_stats()}")

    async def filter_transactions_by_identifier(self, identifier: str, callback: FilteredCallback) -> None:
        """
        Walk the log passing only transactions whose sender or recipient
        account or principal equals identifier.

        Batches with no matches are skipped; the callback's return value
        decides whether to keep going.
        """
        await self.iterate_transactions(IdentifierFilter(identifier, callback))

    async def collect_transactions_for(self, identifier: str, limit: Optional[int] = None) -> List[Transaction]:
        """Newest-first transactions touching identifier, at most limit of them."""
        collected: List[Transaction] = []

        def gather(batch: List[Transaction]) -> bool:
            collected.extend(batch)
            return limit is None or len(collected) < limit

        await self.filter_transactions_by_identifier(identifier, gather)
        return collected if limit is None else collected[:limit]

    # =========================================================================
    # Aggregates
    # =========================================================================

    async def count_unique_accounts(self) -> UniqueAccountCounts:
        """Distinct accounts and principals seen on either side of any transaction."""
        counter = UniqueAccountCounter()
        await self.iterate_transactions(counter)
        return counter.result()

    async def collect_holders_and_balances(self, sort_order: str = "desc") -> List[HolderBalance]:
        """
        Replay the log into per-account balances.

        Only accounts with a positive balance are returned, sorted by balance
        ('desc' or 'asc'); equal balances are ordered by account.
        """
        replay = BalanceReplay()
        # Validate before paying for a full traversal
        replay.holders(sort_order)
        await self.iterate_transactions(replay)
        return replay.holders(sort_order)

    def get_stats(self) -> dict:
        """Stats from the most recent traversal."""
        return self._last_engine.get_stats() if self._last_engine else {}
