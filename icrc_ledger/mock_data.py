"""
Mock Ledger for ICRC Canisters

Serves a synthetic transaction log through in-memory ledger and archive
canisters, using the same wire shapes as the gateway.

Use cases:
- Unit testing without a replica or gateway
- Exercising live/archive handoff with arbitrary batch sizes
- Counting remote calls and in-flight concurrency
"""

import asyncio
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

from .identity import principal_from_bytes
from .types import CanisterCallError

DEFAULT_LEDGER_ID = "ryjl3-tyaaa-aaaaa-aaaba-cai"
DEFAULT_ARCHIVE_ID = "qjdve-lqaaa-aaaaa-aaaeq-cai"

DEFAULT_TIMESTAMP = 1_700_000_000_000_000_000


# =============================================================================
# Record builders (wire format)
# =============================================================================

def mock_principal(n: int) -> str:
    """Stable, valid textual principal for a small integer."""
    return principal_from_bytes(n.to_bytes(8, "big") + b"\x01")


def wire_account(owner: str, subaccount: Optional[bytes] = None) -> Dict[str, Any]:
    return {"owner": owner, "subaccount": [list(subaccount)] if subaccount is not None else []}


def _opt(value: Any) -> List[Any]:
    return [] if value is None else [value]


def _memo(memo: Optional[bytes]) -> List[Any]:
    return [] if memo is None else [list(memo)]


def _record(kind: str, body: Dict[str, Any], timestamp: int) -> Dict[str, Any]:
    record = {"kind": kind, "timestamp": timestamp, "burn": [], "mint": [], "transfer": [], "approve": []}
    record[kind] = [body]
    return record


def make_mint(to: Dict, amount: int, memo: Optional[bytes] = None, timestamp: int = DEFAULT_TIMESTAMP) -> Dict:
    return _record("mint", {"to": to, "amount": amount, "memo": _memo(memo), "created_at_time": []}, timestamp)


def make_burn(from_: Dict, amount: int, memo: Optional[bytes] = None, timestamp: int = DEFAULT_TIMESTAMP) -> Dict:
    return _record("burn", {"from": from_, "amount": amount, "memo": _memo(memo), "created_at_time": []}, timestamp)


def make_transfer(
    from_: Dict,
    to: Dict,
    amount: int,
    fee: Optional[int] = None,
    memo: Optional[bytes] = None,
    timestamp: int = DEFAULT_TIMESTAMP
) -> Dict:
    body = {"from": from_, "to": to, "amount": amount, "fee": _opt(fee), "memo": _memo(memo), "created_at_time": []}
    return _record("transfer", body, timestamp)


def make_approve(
    from_: Dict,
    spender: Dict,
    amount: int,
    fee: Optional[int] = None,
    memo: Optional[bytes] = None,
    created_at_time: Optional[int] = None,
    timestamp: int = DEFAULT_TIMESTAMP
) -> Dict:
    body = {
        "from": from_,
        "spender": spender,
        "amount": amount,
        "fee": _opt(fee),
        "memo": _memo(memo),
        "created_at_time": _opt(created_at_time),
        "expected_allowance": [],
        "expires_at": [],
    }
    return _record("approve", body, timestamp)


# =============================================================================
# Synthetic log generation
# =============================================================================

@dataclass
class MockConfig:
    """Configuration for the mock ledger."""

    # Generated log (ignored when explicit records are passed)
    num_transactions: int = 2500
    num_accounts: int = 8
    mint_amount_range: tuple = (1_000, 1_000_000)
    fee: int = 10
    approve_probability: float = 0.05
    burn_probability: float = 0.05

    # Segmenting: the oldest archived_count transactions live in the archive
    archived_count: int = 0
    live_batch_size: int = 2000
    archive_batch_size: int = 2000

    # Canister ids
    ledger_id: str = DEFAULT_LEDGER_ID
    archive_id: str = DEFAULT_ARCHIVE_ID

    # Response behavior
    supports_get_total_tx: bool = True
    supports_log_length: bool = True
    report_first_index: bool = True

    # Per-call latency in seconds, keyed by read start index
    latency: Optional[Callable[[int], float]] = None

    accounts: List[str] = field(default_factory=list)


def generate_records(config: MockConfig, rng: random.Random) -> List[Dict]:
    """Generate a balance-consistent log of mints, transfers, burns and approvals."""
    owners = [mock_principal(i) for i in range(config.num_accounts)]
    config.accounts = owners
    balances = {owner: 0 for owner in owners}
    records = []

    for n in range(config.num_transactions):
        timestamp = DEFAULT_TIMESTAMP + n * 1_000_000_000
        funded = [owner for owner, balance in balances.items() if balance > config.fee]
        roll = rng.random()

        if not funded or n < config.num_accounts:
            owner = owners[n % len(owners)] if n < config.num_accounts else rng.choice(owners)
            amount = rng.randint(*config.mint_amount_range)
            balances[owner] += amount
            records.append(make_mint(wire_account(owner), amount, timestamp=timestamp))
        elif roll < config.approve_probability:
            owner, spender = rng.choice(funded), rng.choice(owners)
            balances[owner] -= config.fee
            records.append(make_approve(
                wire_account(owner), wire_account(spender), rng.randint(1, 1000),
                fee=config.fee, created_at_time=timestamp, timestamp=timestamp
            ))
        elif roll < config.approve_probability + config.burn_probability:
            owner = rng.choice(funded)
            amount = rng.randint(1, balances[owner])
            balances[owner] -= amount
            records.append(make_burn(wire_account(owner), amount, timestamp=timestamp))
        else:
            sender, receiver = rng.choice(funded), rng.choice(owners)
            amount = rng.randint(1, balances[sender] - config.fee)
            balances[sender] -= amount + config.fee
            balances[receiver] += amount
            memo = rng.getrandbits(64).to_bytes(8, "big") if rng.random() < 0.5 else None
            records.append(make_transfer(
                wire_account(sender), wire_account(receiver), amount,
                fee=config.fee, memo=memo, timestamp=timestamp
            ))

    return records


def supply_of(records: List[Dict]) -> int:
    """Total supply implied by a log: mints minus burns minus fees."""
    supply = 0
    for record in records:
        for kind in ("mint", "burn", "transfer", "approve"):
            if record.get(kind):
                body = record[kind][0]
                amount = int(body.get("amount", 0))
                fee = int(body["fee"][0]) if body.get("fee") else 0
                if kind == "mint":
                    supply += amount
                elif kind == "burn":
                    supply -= amount
                else:
                    supply -= fee
    return supply


# =============================================================================
# Mock canisters
# =============================================================================

class MockCanister:
    """In-memory canister handle; records every call."""

    def __init__(self, ledger: "MockLedger", canister_id: str):
        self.canister_id = canister_id
        self._ledger = ledger
        self.calls: List[tuple] = []

    @property
    def call_count(self) -> int:
        return len(self.calls)

    async def call(self, method: str, args: Optional[Dict[str, Any]] = None) -> Any:
        args = args or {}
        self.calls.append((method, dict(args)))
        return await self._ledger.dispatch(self.canister_id, method, args)


class MockLedger:
    """
    Mock agent serving a ledger canister and one archive canister.

    Usage:
        mock = MockLedger(MockConfig(num_transactions=5000, archived_count=3000), seed=42)
        ledger = Ledger(mock.config.ledger_id, agent=mock)
    """

    def __init__(
        self,
        config: Optional[MockConfig] = None,
        records: Optional[List[Dict]] = None,
        seed: Optional[int] = None
    ):
        self.config = config or MockConfig()
        rng = random.Random(seed)
        if records is None:
            records = generate_records(self.config, rng)
        self.records = records
        self.total_supply = supply_of(records)

        self._canisters: Dict[str, MockCanister] = {}
        self.failing_methods: Dict[str, set] = {}
        self.failing_reads: set = set()

        # Concurrency tracking across all canisters
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def total(self) -> int:
        return len(self.records)

    def canister(self, canister_id: str) -> MockCanister:
        if canister_id not in self._canisters:
            self._canisters[canister_id] = MockCanister(self, canister_id)
        return self._canisters[canister_id]

    @property
    def ledger_canister(self) -> MockCanister:
        return self.canister(self.config.ledger_id)

    @property
    def archive_canister(self) -> MockCanister:
        return self.canister(self.config.archive_id)

    def fail(self, canister_id: str, method: str):
        """Make every future call to method on canister_id fail."""
        self.failing_methods.setdefault(canister_id, set()).add(method)

    def fail_read(self, canister_id: str, start: int):
        """Make range reads at start on canister_id fail after their latency."""
        self.failing_reads.add((canister_id, start))

    def total_calls(self) -> int:
        return sum(c.call_count for c in self._canisters.values())

    async def dispatch(self, canister_id: str, method: str, args: Dict[str, Any]) -> Any:
        if method in self.failing_methods.get(canister_id, set()):
            raise CanisterCallError(canister_id, method, 500, "mock failure")

        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.config.latency(int(args.get("start", 0))) if self.config.latency else 0
            await asyncio.sleep(delay)
            if (canister_id, args.get("start")) in self.failing_reads:
                raise CanisterCallError(canister_id, method, 500, "mock read failure")

            if canister_id == self.config.ledger_id:
                return self._ledger_call(method, args)
            if canister_id == self.config.archive_id:
                return self._archive_call(method, args)
            raise CanisterCallError(canister_id, method, 404, "unknown canister")
        finally:
            self.in_flight -= 1

    def _ledger_call(self, method: str, args: Dict[str, Any]) -> Any:
        if method == "icrc1_total_supply":
            return self.total_supply
        if method == "get_total_tx":
            if not self.config.supports_get_total_tx:
                raise CanisterCallError(self.config.ledger_id, method, 404, "method not found")
            return self.total
        if method == "get_transactions":
            return self._live_range(int(args["start"]), int(args["length"]))
        raise CanisterCallError(self.config.ledger_id, method, 404, "method not found")

    def _live_range(self, start: int, length: int) -> Dict[str, Any]:
        archived = self.config.archived_count
        served_start = max(start, archived)
        served_end = min(start + length, self.total, served_start + self.config.live_batch_size)

        response: Dict[str, Any] = {
            "transactions": self.records[served_start:served_end] if served_end > served_start else [],
            "archived_transactions": [],
        }
        if self.config.report_first_index:
            response["first_index"] = served_start
        if self.config.supports_log_length:
            response["log_length"] = self.total
        if start < archived and length > 0:
            response["archived_transactions"].append({
                "start": start,
                "length": min(start + length, archived) - start,
                "callback": [self.config.archive_id, "get_transactions"],
            })
        return response

    def _archive_call(self, method: str, args: Dict[str, Any]) -> Any:
        if method != "get_transactions":
            raise CanisterCallError(self.config.archive_id, method, 404, "method not found")
        start, length = int(args["start"]), int(args["length"])
        end = min(start + min(length, self.config.archive_batch_size), self.config.archived_count)
        return {"transactions": self.records[start:end] if end > start else []}
