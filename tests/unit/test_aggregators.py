"""
Unit tests for replay aggregators.

Tests:
- Balance replay arithmetic and pruning
- Holder sort order and tie-break
- Unique account and principal counting
- Identifier filter forwarding and stop propagation
"""

import pytest

from icrc_ledger.identity import account_identifier
from icrc_ledger.indexer.aggregators import BalanceReplay, IdentifierFilter, UniqueAccountCounter
from icrc_ledger.types import PartyReference, Transaction, TransactionKind
from icrc_ledger.mock_data import mock_principal

A = mock_principal(1)
B = mock_principal(2)
C = mock_principal(3)


def party(principal: str, account: str = None) -> PartyReference:
    return PartyReference(principal=principal, account=account or account_identifier(principal))


def mint(index, to, value):
    return Transaction(index=index, kind=TransactionKind.MINT, to_party=party(to), value=value)


def burn(index, from_, value):
    return Transaction(index=index, kind=TransactionKind.BURN, from_party=party(from_), value=value)


def transfer(index, from_, to, value, fee=None):
    return Transaction(
        index=index, kind=TransactionKind.TRANSFER,
        from_party=party(from_), to_party=party(to), value=value, fee=fee,
    )


def approve(index, from_, spender, value, fee=None):
    return Transaction(
        index=index, kind=TransactionKind.APPROVE,
        from_party=party(from_), to_party=party(spender), value=value, fee=fee,
    )


def balances(replay: BalanceReplay) -> dict:
    return {h.principal: h.balance for h in replay.holders()}


class TestBalanceReplay:
    """Test balance arithmetic."""

    def test_mint_then_burn(self):
        replay = BalanceReplay()
        replay([burn(1, A, 3), mint(0, A, 10)])

        assert balances(replay) == {A: 7}

    def test_transfer_debits_value_and_fee(self):
        replay = BalanceReplay()
        replay([transfer(2, A, B, 4, fee=1), burn(1, A, 3), mint(0, A, 10)])

        assert balances(replay) == {A: 2, B: 4}

    def test_transfer_without_fee(self):
        replay = BalanceReplay()
        replay([transfer(1, A, B, 4), mint(0, A, 10)])

        assert balances(replay) == {A: 6, B: 4}

    def test_approve_does_not_move_funds(self):
        replay = BalanceReplay()
        replay([approve(1, A, B, 500, fee=1), mint(0, A, 10)])

        assert balances(replay) == {A: 10}

    def test_negative_mid_replay_recovers(self):
        replay = BalanceReplay()
        # Newest first: the spend is seen before the mint that funds it
        replay([transfer(1, A, B, 8)])
        replay([mint(0, A, 10)])

        assert balances(replay) == {A: 2, B: 8}

    def test_zero_and_negative_balances_pruned(self):
        replay = BalanceReplay()
        replay([burn(3, C, 5), transfer(2, A, B, 10), mint(1, C, 1), mint(0, A, 10)])

        assert balances(replay) == {B: 10}

    def test_party_without_account_ignored(self):
        replay = BalanceReplay()
        no_account = PartyReference(principal="bad-principal", account=None)
        replay([Transaction(index=0, kind=TransactionKind.MINT, to_party=no_account, value=10)])

        assert replay.holders() == []

    def test_holder_keeps_subaccount(self):
        replay = BalanceReplay()
        sub_party = PartyReference(principal=A, account="acct-1", subaccount="0a0b")
        replay([Transaction(index=0, kind=TransactionKind.MINT, to_party=sub_party, value=10)])

        holder = replay.holders()[0]
        assert holder.to_dict() == {"account": "acct-1", "principal": A, "subaccount": "0a0b", "balance": 10}


class TestHolderOrdering:
    """Test holder sort order and tie-break."""

    @pytest.fixture
    def replay(self):
        replay = BalanceReplay()
        replay([
            Transaction(index=0, kind=TransactionKind.MINT, to_party=party(A, "bbb"), value=5),
            Transaction(index=1, kind=TransactionKind.MINT, to_party=party(B, "aaa"), value=5),
            Transaction(index=2, kind=TransactionKind.MINT, to_party=party(C, "ccc"), value=9),
        ])
        return replay

    def test_desc(self, replay):
        assert [h.account for h in replay.holders("desc")] == ["ccc", "aaa", "bbb"]

    def test_asc(self, replay):
        assert [h.account for h in replay.holders("asc")] == ["aaa", "bbb", "ccc"]

    def test_default_is_desc(self, replay):
        assert replay.holders() == replay.holders("desc")

    def test_invalid_order(self, replay):
        with pytest.raises(ValueError):
            replay.holders("largest")


class TestUniqueAccountCounter:
    """Test unique account counting."""

    def test_three_transfers_between_two_parties(self):
        counter = UniqueAccountCounter()
        keep_going = counter([transfer(2, A, B, 1), transfer(1, B, A, 1), transfer(0, A, B, 1)])

        assert keep_going is True
        assert counter.result().to_dict() == {"accounts": 2, "principals": 2}

    def test_subaccounts_count_as_separate_accounts(self):
        counter = UniqueAccountCounter()
        counter([
            Transaction(index=0, kind=TransactionKind.MINT, to_party=party(A, "acct-1"), value=1),
            Transaction(index=1, kind=TransactionKind.MINT, to_party=party(A, "acct-2"), value=1),
        ])

        assert counter.result().to_dict() == {"accounts": 2, "principals": 1}

    def test_parties_without_account_not_counted(self):
        counter = UniqueAccountCounter()
        no_account = PartyReference(principal="bad-principal", account=None)
        counter([Transaction(index=0, kind=TransactionKind.MINT, to_party=no_account, value=1)])

        assert counter.result().to_dict() == {"accounts": 0, "principals": 0}


class TestIdentifierFilter:
    """Test identifier filtering."""

    @pytest.mark.asyncio
    async def test_forwards_only_matches(self):
        received = []
        flt = IdentifierFilter(A, lambda txs: received.append(txs) or True)

        result = await flt([transfer(2, A, B, 1), transfer(1, B, C, 1), mint(0, A, 1)])

        assert result is True
        assert [[tx.index for tx in txs] for txs in received] == [[2, 0]]
        assert flt.matched == 2

    @pytest.mark.asyncio
    async def test_matches_account(self):
        received = []
        flt = IdentifierFilter(account_identifier(C), lambda txs: received.append(txs) or True)

        await flt([transfer(1, B, C, 1), transfer(0, A, B, 1)])

        assert [tx.index for tx in received[0]] == [1]

    @pytest.mark.asyncio
    async def test_empty_batches_skip_callback(self):
        calls = []
        flt = IdentifierFilter(C, lambda txs: calls.append(txs) or False)

        result = await flt([transfer(0, A, B, 1)])

        assert result is True
        assert calls == []

    @pytest.mark.asyncio
    async def test_stop_propagates(self):
        flt = IdentifierFilter(A, lambda txs: False)
        assert await flt([mint(0, A, 1)]) is False

    @pytest.mark.asyncio
    async def test_async_callback(self):
        async def callback(txs):
            return len(txs) < 5

        flt = IdentifierFilter(A, callback)
        assert await flt([mint(0, A, 1)]) is True
