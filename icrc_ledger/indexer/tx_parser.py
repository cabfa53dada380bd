"""
ICRC Transaction Parser

Normalizes raw ledger records into canonical Transactions.

Record variants (at most one populated, each wrapped in an optional):
- burn:     {from, amount, memo?}
- mint:     {to, amount, memo?}
- transfer: {from, to, amount, fee?, memo?}
- approve:  {from, spender, amount, fee?, memo?, created_at_time?}

A record that matches no variant, or lacks a required party, yields None.
Parsing never raises.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from ..identity import derive_account, to_bytes
from ..types import PartyReference, Transaction, TransactionKind

MEMO_LENGTH = 8


def unwrap_opt(value: Any) -> Any:
    """Unwrap a candid-JSON optional: [] / None -> None, [x] -> x, x -> x."""
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        return value[0] if value else None
    return value


def to_nat(value: Any) -> Optional[int]:
    """Coerce a nat (int or decimal string) to int."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def decode_memo(memo: Any) -> str:
    """Render an 8-byte memo as lowercase hex; anything else is ""."""
    if memo is None:
        return ""
    try:
        raw = to_bytes(memo)
    except (ValueError, TypeError):
        return ""
    if len(raw) != MEMO_LENGTH:
        return ""
    return raw.hex()


def parse_party(party: Any) -> Optional[PartyReference]:
    """Build a PartyReference from {owner, subaccount?}."""
    if not isinstance(party, dict):
        return None

    owner = party.get("owner")
    if isinstance(owner, dict):
        # {"__principal__": "..."} style encodings
        owner = next(iter(owner.values()), None)
    if not isinstance(owner, str) or not owner:
        return None

    subaccount_blob = unwrap_opt(party.get("subaccount"))
    subaccount_hex = None
    if subaccount_blob is not None:
        try:
            subaccount_hex = to_bytes(subaccount_blob).hex()
        except (ValueError, TypeError):
            subaccount_hex = None

    return PartyReference(
        principal=owner,
        account=derive_account(owner, subaccount_blob),
        subaccount=subaccount_hex,
    )


def _variant(raw: Dict[str, Any], name: str) -> Optional[Dict[str, Any]]:
    body = unwrap_opt(raw.get(name))
    return body if isinstance(body, dict) and body else None


def _parse_burn(index: int, body: Dict, timestamp: Optional[int]) -> Optional[Transaction]:
    from_party = parse_party(body.get("from"))
    if from_party is None:
        return None
    return Transaction(
        index=index,
        kind=TransactionKind.BURN,
        from_party=from_party,
        value=to_nat(body.get("amount")) or 0,
        memo=decode_memo(unwrap_opt(body.get("memo"))),
        timestamp=timestamp,
    )


def _parse_mint(index: int, body: Dict, timestamp: Optional[int]) -> Optional[Transaction]:
    to_party = parse_party(body.get("to"))
    if to_party is None:
        return None
    return Transaction(
        index=index,
        kind=TransactionKind.MINT,
        to_party=to_party,
        value=to_nat(body.get("amount")) or 0,
        memo=decode_memo(unwrap_opt(body.get("memo"))),
        timestamp=timestamp,
    )


def _parse_transfer(index: int, body: Dict, timestamp: Optional[int]) -> Optional[Transaction]:
    from_party = parse_party(body.get("from"))
    to_party = parse_party(body.get("to"))
    if from_party is None or to_party is None:
        return None
    return Transaction(
        index=index,
        kind=TransactionKind.TRANSFER,
        from_party=from_party,
        to_party=to_party,
        value=to_nat(body.get("amount")) or 0,
        fee=to_nat(unwrap_opt(body.get("fee"))),
        memo=decode_memo(unwrap_opt(body.get("memo"))),
        timestamp=timestamp,
    )


def _parse_approve(index: int, body: Dict, timestamp: Optional[int]) -> Optional[Transaction]:
    from_party = parse_party(body.get("from"))
    spender = parse_party(body.get("spender"))
    if from_party is None or spender is None:
        return None

    # Approvals carry their own creation time; the record timestamp is ignored
    created_at = to_nat(unwrap_opt(body.get("created_at_time")))
    return Transaction(
        index=index,
        kind=TransactionKind.APPROVE,
        from_party=from_party,
        to_party=spender,
        value=to_nat(body.get("amount")) or 0,
        fee=to_nat(unwrap_opt(body.get("fee"))),
        memo=decode_memo(unwrap_opt(body.get("memo"))),
        timestamp=created_at if created_at is not None else 0,
    )


_VARIANT_PARSERS: List[tuple] = [
    ("burn", _parse_burn),
    ("mint", _parse_mint),
    ("transfer", _parse_transfer),
    ("approve", _parse_approve),
]


def parse_transaction(index: int, raw: Any) -> Optional[Transaction]:
    """
    Normalize one raw record assigned to index.

    Returns None when no variant is populated or the populated one is incomplete.
    """
    if not isinstance(raw, dict):
        return None

    timestamp = to_nat(raw.get("timestamp"))
    for name, parser in _VARIANT_PARSERS:
        body = _variant(raw, name)
        if body is not None:
            # First populated variant decides the outcome
            return parser(index, body, timestamp)
    return None


class TransactionParser:
    """
    Batch wrapper around parse_transaction.

    Counts parsed and skipped records for diagnostics.

    Usage:
        parser = TransactionParser()
        txs = parser.parse_batch(records, lambda i: start + i)
    """

    def __init__(self):
        self._logger = logging.getLogger("TransactionParser")
        self._parsed = 0
        self._skipped = 0

    def parse_batch(
        self,
        records: Iterable[Any],
        index_for: Callable[[int], int]
    ) -> List[Transaction]:
        """
        Parse records in wire order.

        index_for maps a record's position in the batch to its ledger index.
        Unparseable records are dropped; the rest keep their assigned index.
        """
        transactions = []
        for position, raw in enumerate(records):
            index = index_for(position)
            tx = parse_transaction(index, raw)
            if tx is None:
                self._skipped += 1
                self._logger.debug(f"Skipping unparseable record at index {index}")
                continue
            transactions.append(tx)
            self._parsed += 1
        return transactions

    @property
    def parsed(self) -> int:
        return self._parsed

    @property
    def skipped(self) -> int:
        return self._skipped

    def get_stats(self) -> Dict:
        return {"parsed": self._parsed, "skipped": self._skipped}
