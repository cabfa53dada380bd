"""
Ledger Segment Fetcher

Issues single range reads against the live ledger or an archive canister
and turns the wire response into a SegmentRead.

One remote call per read_range; batching and ordering belong to the
traversal engine.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from ..client import CanisterHandle
from ..types import (
    ArchiveBoundary,
    CanisterCallError,
    SegmentCursor,
    SegmentRead,
    TotalSupplyUnavailable,
    TransactionCountUnavailable,
)
from .tx_parser import to_nat, unwrap_opt


def _archive_canister_id(archived: Dict[str, Any]) -> Optional[str]:
    """Extract the archive canister id from an archived_transactions entry."""
    callback = archived.get("callback")
    if isinstance(callback, (list, tuple)):
        callback = callback[0] if callback else None
    if isinstance(callback, dict):
        callback = callback.get("canister_id") or callback.get("principal")
    return callback if isinstance(callback, str) and callback else None


def _archived_end(archived_ranges: List[Dict[str, Any]]) -> Optional[int]:
    ends = []
    for archived in archived_ranges:
        start = to_nat(archived.get("start"))
        length = to_nat(archived.get("length"))
        if start is not None and length is not None:
            ends.append(start + length)
    return max(ends) if ends else None


class SegmentFetcher:
    """
    Range reader for one ledger and its archives.

    Usage:
        fetcher = SegmentFetcher(ledger_handle, agent.canister)
        count = await fetcher.total_transaction_count()
        read = await fetcher.read_range(fetcher.ledger, 0, 2000)
    """

    def __init__(
        self,
        ledger: CanisterHandle,
        handle_factory: Callable[[str], CanisterHandle]
    ):
        self.ledger = ledger
        self._handle_factory = handle_factory
        self._logger = logging.getLogger("SegmentFetcher")

        # Archive handles opened during this fetcher's lifetime
        self._archives: Dict[str, CanisterHandle] = {}

        # Stats
        self._calls = 0

    def archive(self, canister_id: str) -> CanisterHandle:
        """Handle for an archive canister."""
        if canister_id not in self._archives:
            self._archives[canister_id] = self._handle_factory(canister_id)
        return self._archives[canister_id]

    async def _call(self, endpoint: CanisterHandle, method: str, args: Optional[Dict] = None) -> Any:
        self._calls += 1
        return await endpoint.call(method, args)

    # =========================================================================
    # Discovery
    # =========================================================================

    async def total_supply(self) -> int:
        """icrc1_total_supply of the ledger, in base units."""
        try:
            supply = to_nat(await self._call(self.ledger, "icrc1_total_supply"))
        except CanisterCallError as e:
            raise TotalSupplyUnavailable("Unable to determine total supply from ledger") from e
        if supply is None:
            raise TotalSupplyUnavailable("Unable to determine total supply from ledger")
        return supply

    async def total_transaction_count(self) -> int:
        """
        Total number of transactions ever recorded by the ledger.

        Prefers get_total_tx; falls back to the log_length of a zero-length
        get_transactions read.
        """
        try:
            count = to_nat(await self._call(self.ledger, "get_total_tx"))
            if count is not None:
                return count
            self._logger.debug("get_total_tx returned no count, falling back to log_length")
        except CanisterCallError as e:
            self._logger.debug(f"get_total_tx failed ({e}), falling back to log_length")

        try:
            response = await self._call(self.ledger, "get_transactions", {"start": 0, "length": 0})
        except CanisterCallError as e:
            raise TransactionCountUnavailable(
                "Unable to determine total transactions from initial call"
            ) from e

        log_length = None
        if isinstance(response, dict):
            log_length = to_nat(unwrap_opt(response.get("log_length")))
        if log_length is None:
            raise TransactionCountUnavailable("Unable to determine total transactions from initial call")
        return log_length

    # =========================================================================
    # Range Reads
    # =========================================================================

    async def read_range(
        self,
        endpoint: CanisterHandle,
        start: int,
        length: int,
        batch_size: Optional[int] = None
    ) -> SegmentRead:
        """Read [start, start + length) from endpoint."""
        cursor = SegmentCursor(start_index=start, length=length, batch_size=batch_size)
        response = await self._call(endpoint, "get_transactions", {"start": start, "length": length})
        if not isinstance(response, dict):
            response = {}

        records = response.get("transactions") or []
        first_index = to_nat(unwrap_opt(response.get("first_index")))
        log_length = to_nat(unwrap_opt(response.get("log_length")))

        archive = None
        archived_ranges = [a for a in (response.get("archived_transactions") or []) if isinstance(a, dict)]
        if archived_ranges:
            canister_id = _archive_canister_id(archived_ranges[0])
            if canister_id:
                boundary = first_index if first_index is not None else _archived_end(archived_ranges)
                archive = ArchiveBoundary(canister_id=canister_id, first_index=boundary or 0)

        return SegmentRead(
            cursor=cursor,
            records=list(records),
            archive=archive,
            first_index=first_index,
            log_length=log_length,
        )

    @property
    def calls(self) -> int:
        return self._calls

    def get_stats(self) -> Dict:
        return {
            "calls": self._calls,
            "archives_opened": list(self._archives),
        }
