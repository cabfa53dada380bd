"""
ICRC Ledger Indexer

Reconstructs derived views over a segmented, append-only ledger log.

Components:
- TransactionParser: Normalizes raw records into canonical Transactions
- SegmentFetcher: Single range reads against ledger and archive canisters
- TraversalEngine: Newest-first walk over live then archive segments
- Replay aggregators: Unique accounts, balances, identifier filtering
"""

from .tx_parser import TransactionParser, parse_transaction
from .segment_fetcher import SegmentFetcher
from .traversal import TraversalEngine
from .aggregators import UniqueAccountCounter, IdentifierFilter, BalanceReplay

__all__ = [
    "TransactionParser",
    "parse_transaction",
    "SegmentFetcher",
    "TraversalEngine",
    "UniqueAccountCounter",
    "IdentifierFilter",
    "BalanceReplay",
]
