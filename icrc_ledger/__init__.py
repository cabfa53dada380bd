"""
ICRC Ledger Replay

Reads the segmented transaction log of an ICRC token ledger (live segment
plus archive canisters) and reconstructs derived views: transaction
counts, holder balances, unique accounts and filtered histories.
"""

from .config import LedgerConfig, ClientConfig, MAX_LIVE_BATCH, DEFAULT_PARALLEL_BATCHES
from .client import GatewayAgent, CanisterClient
from .ledger import Ledger
from .types import (
    Transaction,
    TransactionKind,
    PartyReference,
    HolderBalance,
    UniqueAccountCounts,
    LedgerError,
    CanisterCallError,
    TransactionCountUnavailable,
    TotalSupplyUnavailable,
)

__all__ = [
    "Ledger",
    "LedgerConfig",
    "ClientConfig",
    "MAX_LIVE_BATCH",
    "DEFAULT_PARALLEL_BATCHES",
    "GatewayAgent",
    "CanisterClient",
    "Transaction",
    "TransactionKind",
    "PartyReference",
    "HolderBalance",
    "UniqueAccountCounts",
    "LedgerError",
    "CanisterCallError",
    "TransactionCountUnavailable",
    "TotalSupplyUnavailable",
]
