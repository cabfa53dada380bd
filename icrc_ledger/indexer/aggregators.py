"""
Replay Aggregators

Consumers for TraversalEngine batches. Each instance holds state for a
single traversal and is discarded afterwards.
"""

import inspect
import logging
from typing import Awaitable, Callable, Dict, List, Set, Union

from ..types import HolderBalance, PartyReference, Transaction, TransactionKind, UniqueAccountCounts

FilteredCallback = Callable[[List[Transaction]], Union[bool, Awaitable[bool]]]

SORT_ORDERS = ("asc", "desc")


class UniqueAccountCounter:
    """Collects distinct accounts and principals. Never stops the traversal."""

    def __init__(self):
        self._accounts: Set[str] = set()
        self._principals: Set[str] = set()

    def _add(self, party):
        # Parties without a derivable account are not counted at all
        if party is not None and party.account:
            self._accounts.add(party.account)
            self._principals.add(party.principal)

    def __call__(self, batch: List[Transaction]) -> bool:
        for tx in batch:
            self._add(tx.from_party)
            self._add(tx.to_party)
        return True

    def result(self) -> UniqueAccountCounts:
        return UniqueAccountCounts(accounts=len(self._accounts), principals=len(self._principals))


class IdentifierFilter:
    """
    Forwards transactions touching one account or principal.

    Empty filtered batches are skipped without consulting the callback.
    The callback's return value decides whether traversal continues.
    """

    def __init__(self, identifier: str, callback: FilteredCallback):
        self.identifier = identifier
        self._callback = callback
        self.matched = 0

    async def __call__(self, batch: List[Transaction]) -> bool:
        filtered = [tx for tx in batch if tx.touches(self.identifier)]
        if not filtered:
            return True

        self.matched += len(filtered)
        result = self._callback(filtered)
        if inspect.isawaitable(result):
            result = await result
        return bool(result)


class BalanceReplay:
    """
    Rebuilds per-account balances from mint, burn and transfer entries.

    Approvals do not move funds. Balances may go negative mid-replay
    because the log is walked newest-first.
    """

    def __init__(self):
        self._holders: Dict[str, HolderBalance] = {}
        self._logger = logging.getLogger("BalanceReplay")

    def _holder(self, party: PartyReference) -> HolderBalance:
        holder = self._holders.get(party.account)
        if holder is None:
            holder = HolderBalance(
                account=party.account,
                principal=party.principal,
                subaccount=party.subaccount,
            )
            self._holders[party.account] = holder
        return holder

    def _credit(self, party, amount: int):
        if party is not None and party.account:
            self._holder(party).balance += amount

    def _debit(self, party, amount: int):
        if party is not None and party.account:
            self._holder(party).balance -= amount

    def apply(self, tx: Transaction):
        if tx.kind is TransactionKind.MINT:
            self._credit(tx.to_party, tx.value)
        elif tx.kind is TransactionKind.BURN:
            self._debit(tx.from_party, tx.value)
        elif tx.kind is TransactionKind.TRANSFER:
            self._debit(tx.from_party, tx.value + (tx.fee or 0))
            self._credit(tx.to_party, tx.value)

    def __call__(self, batch: List[Transaction]) -> bool:
        for tx in batch:
            self.apply(tx)
        return True

    def holders(self, sort_order: str = "desc") -> List[HolderBalance]:
        """
        Accounts with a strictly positive final balance, sorted by balance.

        Equal balances are ordered by account ascending in both sort orders.
        """
        if sort_order not in SORT_ORDERS:
            raise ValueError(f"sort_order must be one of {SORT_ORDERS}, got {sort_order!r}")

        positive = [h for h in self._holders.values() if h.balance > 0]
        pruned = len(self._holders) - len(positive)
        if pruned:
            self._logger.debug(f"Pruned {pruned} accounts with non-positive balance")

        if sort_order == "desc":
            positive.sort(key=lambda h: (-h.balance, h.account))
        else:
            positive.sort(key=lambda h: (h.balance, h.account))
        return positive
