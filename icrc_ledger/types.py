"""
ICRC Ledger Data Types

Pure data structures for canonical transactions and replay state.
Everything here is traversal-scoped value data: nothing outlives
a single top-level call into the engine.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Dict, Any
from enum import Enum


class LedgerError(Exception):
    """Base class for ledger traversal errors."""


class CanisterCallError(LedgerError):
    """A remote canister call failed at the transport layer."""

    def __init__(self, canister_id: str, method: str, status: Optional[int] = None, detail: str = ""):
        self.canister_id = canister_id
        self.method = method
        self.status = status
        self.detail = detail
        message = f"{method} on {canister_id} failed"
        if status is not None:
            message += f" (HTTP {status})"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class TransactionCountUnavailable(LedgerError):
    """Neither get_total_tx nor the zero-length range read reported a count."""


class TotalSupplyUnavailable(LedgerError):
    """icrc1_total_supply could not be read."""


class TransactionKind(Enum):
    """ICRC ledger operation kinds."""
    TRANSFER = "transfer"
    MINT = "mint"
    BURN = "burn"
    APPROVE = "approve"


@dataclass(frozen=True)
class PartyReference:
    """
    One side of a transaction.

    account is absent when no address could be derived from the principal.
    subaccount is the hex of the raw subaccount bytes, when one was given.
    """
    principal: str
    account: Optional[str] = None
    subaccount: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {"principal": self.principal, "account": self.account}
        if self.subaccount is not None:
            data["subaccount"] = self.subaccount
        return data


@dataclass(frozen=True)
class Transaction:
    """Canonical transaction normalized from one raw ledger record."""
    index: int
    kind: TransactionKind
    value: int
    from_party: Optional[PartyReference] = None  # absent for mint
    to_party: Optional[PartyReference] = None    # absent for burn
    fee: Optional[int] = None                    # transfer/approve only
    memo: str = ""
    timestamp: Optional[int] = None

    def touches(self, identifier: str) -> bool:
        """True if identifier is the account or principal of either party."""
        for party in (self.from_party, self.to_party):
            if party is not None and identifier in (party.account, party.principal):
                return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "index": self.index,
            "type": self.kind.value,
            "value": self.value,
            "memo": self.memo,
            "timestamp": self.timestamp,
        }
        if self.from_party is not None:
            data["from"] = self.from_party.to_dict()
        if self.to_party is not None:
            data["to"] = self.to_party.to_dict()
        if self.fee is not None:
            data["fee"] = self.fee
        return data


@dataclass
class HolderBalance:
    """Running balance for one account during replay. May go negative transiently."""
    account: str
    principal: str
    subaccount: Optional[str] = None
    balance: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account": self.account,
            "principal": self.principal,
            "subaccount": self.subaccount,
            "balance": self.balance,
        }


@dataclass(frozen=True)
class UniqueAccountCounts:
    accounts: int
    principals: int

    def to_dict(self) -> Dict[str, int]:
        return {"accounts": self.accounts, "principals": self.principals}


@dataclass
class SegmentCursor:
    """Position of one range read within a segment."""
    start_index: int
    length: int
    batch_size: Optional[int] = None  # archives only

    @property
    def end_index(self) -> int:
        return self.start_index + self.length


@dataclass(frozen=True)
class ArchiveBoundary:
    """Where the live segment hands off to an archive canister."""
    canister_id: str
    first_index: int


@dataclass(frozen=True)
class SegmentRead:
    """
    Result of one range read.

    records are raw wire records, oldest first. archive is set only when the
    response pointed at an archive canister.
    """
    cursor: SegmentCursor
    records: List[Dict[str, Any]] = field(default_factory=list)
    archive: Optional[ArchiveBoundary] = None
    first_index: Optional[int] = None
    log_length: Optional[int] = None

    @property
    def record_count(self) -> int:
        return len(self.records)
