"""
Unit tests for the ledger traversal engine.

Tests:
- Live segment batching and read sizes
- Live/archive handoff and archive windowing
- Completeness and strict descending order
- Bounded fan-out with launch-order delivery
- Early stop and error propagation
"""

import pytest
import asyncio

from icrc_ledger.config import LedgerConfig
from icrc_ledger.indexer.segment_fetcher import SegmentFetcher
from icrc_ledger.indexer.traversal import TraversalEngine
from icrc_ledger.mock_data import MockConfig, MockLedger, make_mint, mock_principal, wire_account
from icrc_ledger.types import CanisterCallError, TransactionCountUnavailable


def build_engine(mock: MockLedger, **config_kwargs) -> TraversalEngine:
    fetcher = SegmentFetcher(mock.ledger_canister, mock.canister)
    return TraversalEngine(fetcher, LedgerConfig(**config_kwargs))


async def collect(engine: TraversalEngine) -> list:
    batches = []

    def consumer(batch):
        batches.append([tx.index for tx in batch])
        return True

    await engine.run(consumer)
    return batches


def range_reads(canister) -> list:
    return [args for method, args in canister.calls if method == "get_transactions"]


def flatten(batches: list) -> list:
    return [index for batch in batches for index in batch]


class StubCanister:
    """Scripted canister returning fixed responses per method."""

    def __init__(self, canister_id, responses):
        self.canister_id = canister_id
        self.responses = responses
        self.calls = []

    async def call(self, method, args=None):
        self.calls.append((method, args))
        return self.responses[method]


class TestLiveSegment:
    """Test Phase A walking without archives."""

    @pytest.mark.asyncio
    async def test_empty_log_is_noop(self):
        mock = MockLedger(MockConfig(num_transactions=0))
        engine = build_engine(mock)

        batches = await collect(engine)

        assert batches == []
        assert range_reads(mock.ledger_canister) == []

    @pytest.mark.asyncio
    async def test_2500_transactions_take_two_reads(self):
        mock = MockLedger(MockConfig(num_transactions=2500), seed=1)
        engine = build_engine(mock)

        batches = await collect(engine)

        assert range_reads(mock.ledger_canister) == [
            {"start": 500, "length": 2000},
            {"start": 0, "length": 500},
        ]
        assert [len(b) for b in batches] == [2000, 500]
        assert batches[0][0] == 2499
        assert batches[0][-1] == 500
        assert batches[1][0] == 499
        assert batches[1][-1] == 0

    @pytest.mark.asyncio
    async def test_indices_strictly_descending(self):
        mock = MockLedger(MockConfig(num_transactions=4321), seed=2)
        engine = build_engine(mock, live_batch_size=1000)

        indices = flatten(await collect(engine))

        assert indices == list(range(4320, -1, -1))

    @pytest.mark.asyncio
    async def test_falls_back_to_log_length(self):
        mock = MockLedger(MockConfig(num_transactions=30, supports_get_total_tx=False), seed=3)
        engine = build_engine(mock)

        indices = flatten(await collect(engine))

        assert indices == list(range(29, -1, -1))

    @pytest.mark.asyncio
    async def test_count_discovery_failure_is_fatal(self):
        mock = MockLedger(MockConfig(num_transactions=30, supports_get_total_tx=False), seed=3)
        mock.fail(mock.config.ledger_id, "get_transactions")
        engine = build_engine(mock)

        with pytest.raises(TransactionCountUnavailable):
            await collect(engine)

    @pytest.mark.asyncio
    async def test_unparseable_records_dropped_without_shifting_indices(self):
        alice = wire_account(mock_principal(1))
        records = [make_mint(alice, 1), {"burn": [], "mint": [], "transfer": [], "approve": []}, make_mint(alice, 3)]
        mock = MockLedger(MockConfig(), records=records)
        engine = build_engine(mock)

        batches = await collect(engine)

        assert batches == [[2, 0]]
        assert engine.get_stats()["parser"]["skipped"] == 1


class TestArchiveHandoff:
    """Test Phase A -> Phase B transition."""

    @pytest.mark.asyncio
    async def test_handoff_boundary_is_contiguous(self):
        mock = MockLedger(
            MockConfig(num_transactions=2500, archived_count=1000, archive_batch_size=300),
            seed=4,
        )
        engine = build_engine(mock)

        batches = await collect(engine)

        # One live read reveals the archive
        assert range_reads(mock.ledger_canister) == [{"start": 500, "length": 2000}]
        assert batches[0][0] == 2499
        assert batches[0][-1] == 1000
        assert batches[1][0] == 999
        assert flatten(batches) == list(range(2499, -1, -1))

    @pytest.mark.asyncio
    async def test_archive_probe_then_windows(self):
        mock = MockLedger(
            MockConfig(num_transactions=2500, archived_count=1000, archive_batch_size=300),
            seed=4,
        )
        engine = build_engine(mock)

        await collect(engine)

        assert range_reads(mock.archive_canister) == [
            {"start": 0, "length": 2000},   # probe
            {"start": 900, "length": 100},
            {"start": 600, "length": 300},
            {"start": 300, "length": 300},
            {"start": 0, "length": 300},
        ]
        stats = engine.get_stats()
        assert stats["archive_batch_size"] == 300
        assert stats["archive_boundary"] == 1000

    @pytest.mark.asyncio
    async def test_fully_archived_log_still_reads_live_once(self):
        mock = MockLedger(
            MockConfig(num_transactions=3000, archived_count=3000, archive_batch_size=500),
            seed=5,
        )
        engine = build_engine(mock)

        batches = await collect(engine)

        assert range_reads(mock.ledger_canister) == [{"start": 1000, "length": 2000}]
        assert batches[0] == []
        assert flatten(batches) == list(range(2999, -1, -1))

    @pytest.mark.asyncio
    async def test_boundary_without_first_index(self):
        mock = MockLedger(
            MockConfig(
                num_transactions=2500,
                archived_count=1000,
                archive_batch_size=300,
                report_first_index=False,
            ),
            seed=6,
        )
        engine = build_engine(mock)

        indices = flatten(await collect(engine))

        assert indices == list(range(2499, -1, -1))

    @pytest.mark.asyncio
    async def test_boundary_at_zero_flushes_once(self):
        alice = wire_account(mock_principal(1))
        ledger = StubCanister("ledger", {
            "get_total_tx": 2,
            "get_transactions": {
                "transactions": [make_mint(alice, 1), make_mint(alice, 2)],
                "first_index": 0,
                "archived_transactions": [{"start": 0, "length": 0, "callback": ["archive"]}],
            },
        })
        archive = StubCanister("archive", {"get_transactions": {"transactions": []}})
        fetcher = SegmentFetcher(ledger, lambda canister_id: archive)
        engine = TraversalEngine(fetcher, LedgerConfig())

        batches = await collect(engine)

        assert batches == [[1, 0], []]
        assert [args for _, args in archive.calls] == [
            {"start": 0, "length": 2000},
            {"start": 0, "length": 0},
        ]
        # Empty probe falls back to the live batch size
        assert engine.get_stats()["archive_batch_size"] == 2000


class TestArchiveFanOut:
    """Test bounded concurrency and delivery order in Phase B."""

    @pytest.fixture
    def mock(self):
        # Later windows (lower start) finish first
        config = MockConfig(
            num_transactions=5000,
            archived_count=3000,
            archive_batch_size=300,
            latency=lambda start: 0.001 + start / 1_000_000,
        )
        return MockLedger(config, seed=7)

    @pytest.mark.asyncio
    async def test_completion_order_does_not_change_delivery(self, mock):
        engine = build_engine(mock, parallel_batches=4)

        indices = flatten(await collect(engine))

        assert indices == list(range(4999, -1, -1))

    @pytest.mark.asyncio
    async def test_in_flight_reads_bounded(self, mock):
        engine = build_engine(mock, parallel_batches=3)

        await collect(engine)

        assert mock.max_in_flight == 3

    @pytest.mark.asyncio
    async def test_sequential_when_parallel_is_one(self, mock):
        engine = build_engine(mock, parallel_batches=1)

        indices = flatten(await collect(engine))

        assert mock.max_in_flight == 1
        assert indices == list(range(4999, -1, -1))

    @pytest.mark.asyncio
    async def test_archive_failure_propagates(self, mock):
        mock.fail(mock.config.archive_id, "get_transactions")
        engine = build_engine(mock, parallel_batches=4)

        with pytest.raises(CanisterCallError):
            await collect(engine)

    @pytest.mark.asyncio
    async def test_archive_failure_cancels_rest_of_round(self):
        # The failing read finishes well before its siblings in the round
        config = MockConfig(
            num_transactions=5000,
            archived_count=3000,
            archive_batch_size=300,
            latency=lambda start: 0.001 if start == 2400 else 0.2,
        )
        mock = MockLedger(config, seed=7)
        mock.fail_read(config.archive_id, 2400)
        engine = build_engine(mock, parallel_batches=4)

        with pytest.raises(CanisterCallError):
            await collect(engine)

        assert mock.in_flight == 0
        starts = [args["start"] for args in range_reads(mock.archive_canister)]
        assert 1800 not in starts


class TestEarlyStop:
    """Test consumer-requested stop."""

    @pytest.mark.asyncio
    async def test_stop_on_first_batch_prevents_further_reads(self):
        mock = MockLedger(
            MockConfig(num_transactions=5000, archived_count=3000, archive_batch_size=300),
            seed=8,
        )
        engine = build_engine(mock)
        seen = []

        def consumer(batch):
            seen.append(batch)
            return False

        await engine.run(consumer)

        assert len(seen) == 1
        # get_total_tx plus a single range read
        assert mock.total_calls() == 2
        assert engine.get_stats()["stopped_early"] is True

    @pytest.mark.asyncio
    async def test_stop_mid_round_skips_remaining_deliveries(self):
        mock = MockLedger(
            MockConfig(num_transactions=5000, archived_count=3000, archive_batch_size=300),
            seed=9,
        )
        engine = build_engine(mock, parallel_batches=4)
        delivered = []

        def consumer(batch):
            delivered.append([tx.index for tx in batch])
            return not any(tx.index < 3000 for tx in batch)

        await engine.run(consumer)

        # Probe plus one full round; the round's reads all completed
        assert len(range_reads(mock.archive_canister)) == 5
        # Two live batches, the empty boundary window, then the stopping batch
        assert len(delivered) == 4
        assert delivered[-1][0] == 2999

    @pytest.mark.asyncio
    async def test_async_consumer(self):
        mock = MockLedger(MockConfig(num_transactions=2500), seed=10)
        engine = build_engine(mock)
        count = 0

        async def consumer(batch):
            nonlocal count
            await asyncio.sleep(0)
            count += len(batch)
            return True

        await engine.run(consumer)

        assert count == 2500
