"""Unit tests for the TransferScheduler class."""

import asyncio
import json
import random
from unittest.mock import AsyncMock, MagicMock

import pytest

from union_sentinel.config import Endpoint, Ics20Protocol
from union_sentinel.cycle_monitor import CycleMonitor
from union_sentinel.errors import BroadcastError
from union_sentinel.models import TransferState
from union_sentinel.scheduler import TransferScheduler

from conftest import EVM_RECEIVER, TOKEN_ADDRESS

FORWARD_MEMO = json.dumps({
    "forward": {
        "receiver": "stars1x",
        "channel": "channel-9",
        "next": {"forward": {"receiver": "osmo1y", "channel": "channel-4"}},
    }
})


def make_adapter(tx_hash="0x" + "ab" * 32):
    adapter = MagicMock()
    adapter.send = AsyncMock(return_value=tx_hash)
    return adapter


def make_scheduler(interactions, adapters=None, monitor=None, seed=7, clock=None, **kwargs):
    return TransferScheduler(
        tuple(interactions),
        adapters or {"union": make_adapter(), "sepolia": make_adapter()},
        monitor or CycleMonitor(),
        rng=random.Random(seed),
        clock=clock or (lambda: 1000.0),
        **kwargs,
    )


class TestBuildTransfer:
    """Test suite for parameter draws."""

    def test_amount_within_bounds(self, make_interaction):
        interaction = make_interaction(amount_min=1, amount_max=3)
        scheduler = make_scheduler([interaction])

        amounts = {scheduler.build_transfer(interaction).amount for _ in range(500)}
        assert amounts == {1, 2, 3}

    def test_fixed_amount(self, make_interaction):
        interaction = make_interaction(amount_min=7, amount_max=7)
        scheduler = make_scheduler([interaction])
        assert all(scheduler.build_transfer(interaction).amount == 7 for _ in range(50))

    def test_memo_probability_zero_never_attaches(self, make_interaction):
        interaction = make_interaction(memo="gm", sending_memo_probability=0.0)
        scheduler = make_scheduler([interaction])
        assert all(scheduler.build_transfer(interaction).memo is None for _ in range(2000))

    def test_memo_probability_one_always_attaches(self, make_interaction):
        interaction = make_interaction(memo="gm", sending_memo_probability=1.0)
        scheduler = make_scheduler([interaction])
        assert all(scheduler.build_transfer(interaction).memo == "gm" for _ in range(2000))

    def test_memo_frequency_converges(self, make_interaction):
        interaction = make_interaction(memo="gm", sending_memo_probability=0.3)
        scheduler = make_scheduler([interaction], seed=1234)

        draws = [scheduler.build_transfer(interaction).memo for _ in range(10_000)]
        fraction = sum(memo is not None for memo in draws) / len(draws)
        assert abs(fraction - 0.3) < 0.03

    def test_empty_memo_is_never_sent(self, make_interaction):
        interaction = make_interaction(memo="", sending_memo_probability=1.0)
        scheduler = make_scheduler([interaction])
        assert scheduler.build_transfer(interaction).memo is None

    def test_memo_used_verbatim_with_forward_count(self, make_interaction):
        interaction = make_interaction(memo=FORWARD_MEMO, sending_memo_probability=1.0)
        scheduler = make_scheduler([interaction])

        transfer = scheduler.build_transfer(interaction)
        assert transfer.memo == FORWARD_MEMO
        assert transfer.expected_forwards == 2

    def test_denom_and_receiver_choice(self, make_interaction):
        receivers = (EVM_RECEIVER, "0x6666666666666666666666666666666666666666")
        interaction = make_interaction(
            denoms=("muno", "ibc/ABC"),
            protocol=Ics20Protocol(receivers=receivers),
        )
        scheduler = make_scheduler([interaction])

        transfers = [scheduler.build_transfer(interaction) for _ in range(200)]
        assert {t.denom for t in transfers} == {"muno", "ibc/ABC"}
        assert {t.receiver for t in transfers} == set(receivers)

    def test_same_seed_same_draws(self, make_interaction):
        interaction = make_interaction(memo="gm", sending_memo_probability=0.5)
        first = make_scheduler([interaction], seed=99)
        second = make_scheduler([interaction], seed=99)

        draws = lambda s: [
            (t.amount, t.memo) for t in (s.build_transfer(interaction) for _ in range(50))
        ]
        assert draws(first) == draws(second)

    def test_missing_source_adapter(self, make_interaction):
        with pytest.raises(ValueError, match="No adapter"):
            make_scheduler([make_interaction()], adapters={"sepolia": make_adapter()})


class TestDispatch:
    """Test suite for dispatching transfers."""

    @pytest.mark.asyncio
    async def test_successful_dispatch(self, make_interaction):
        interaction = make_interaction()
        adapter = make_adapter("0xfeed")
        monitor = CycleMonitor()
        scheduler = make_scheduler(
            [interaction], adapters={"union": adapter}, monitor=monitor, transfer_timeout=600
        )

        transfer = await scheduler.dispatch(scheduler.build_transfer(interaction))

        assert transfer.state is TransferState.BROADCAST
        assert transfer.tx_hash == "0xfeed"
        assert transfer.dispatched_at == 1000.0
        assert monitor.in_flight() == [transfer]
        adapter.send.assert_awaited_once_with(
            "channel-0",
            transfer.receiver,
            "muno",
            transfer.amount,
            memo=None,
            timeout_timestamp=1600 * 1_000_000_000,
            via="transfer",
        )

    @pytest.mark.asyncio
    async def test_ucs01_dispatch_uses_source_adapter(self, ucs01_interaction):
        sepolia = make_adapter()
        union = make_adapter()
        scheduler = make_scheduler([ucs01_interaction], adapters={"sepolia": sepolia, "union": union})

        await scheduler.dispatch(scheduler.build_transfer(ucs01_interaction))

        union.send.assert_not_awaited()
        sepolia.send.assert_awaited_once()
        args, kwargs = sepolia.send.call_args
        assert args[0] == "channel-1"
        assert args[2] == TOKEN_ADDRESS
        assert kwargs["via"] is None

    @pytest.mark.asyncio
    async def test_broadcast_failure_is_recorded(self, make_interaction):
        interaction = make_interaction()
        adapter = make_adapter()
        adapter.send.side_effect = BroadcastError("union: account sequence mismatch")
        monitor = CycleMonitor()
        scheduler = make_scheduler([interaction], adapters={"union": adapter}, monitor=monitor)

        transfer = await scheduler.dispatch(scheduler.build_transfer(interaction))

        assert transfer.state is TransferState.FAILED
        assert transfer.failure_reason == "union: account sequence mismatch"
        assert monitor.in_flight() == []
        assert monitor.stats(interaction.name).failed_broadcast == 1
        # no deadline: a sweep never times it out
        assert monitor.sweep_expired(now=10**9) == []

    @pytest.mark.asyncio
    async def test_unexpected_error_is_recorded(self, make_interaction):
        interaction = make_interaction()
        adapter = make_adapter()
        adapter.send.side_effect = RuntimeError("boom")
        scheduler = make_scheduler([interaction], adapters={"union": adapter})

        transfer = await scheduler.dispatch(scheduler.build_transfer(interaction))

        assert transfer.state is TransferState.FAILED
        assert "RuntimeError" in transfer.failure_reason

    @pytest.mark.asyncio
    async def test_failure_does_not_affect_other_interactions(self, make_interaction, ucs01_interaction):
        failing = make_adapter()
        failing.send.side_effect = BroadcastError("down")
        working = make_adapter()
        monitor = CycleMonitor()
        scheduler = make_scheduler(
            [make_interaction(), ucs01_interaction],
            adapters={"union": failing, "sepolia": working},
            monitor=monitor,
        )

        results = await asyncio.gather(
            scheduler.dispatch(scheduler.build_transfer(scheduler.interactions[0])),
            scheduler.dispatch(scheduler.build_transfer(scheduler.interactions[1])),
        )

        assert [t.state for t in results] == [TransferState.FAILED, TransferState.BROADCAST]
        assert monitor.in_flight_count == 1


class TestScheduling:
    """Test suite for the periodic and single-interaction loops."""

    @pytest.mark.asyncio
    async def test_single_mode_dispatches_exactly_once(self, make_interaction):
        interaction = make_interaction(send_packet_interval=1, expect_full_cycle=1, amount_min=1, amount_max=1)
        adapter = make_adapter()
        scheduler = make_scheduler([interaction], adapters={"union": adapter})

        transfer = await scheduler.run_single()

        assert transfer.amount == 1
        assert scheduler.dispatched == 1
        adapter.send.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_periodic_ticks(self, make_interaction):
        interaction = make_interaction(send_packet_interval=1, interval_unit_seconds=0.01)
        adapter = make_adapter()
        scheduler = make_scheduler([interaction], adapters={"union": adapter}, clock=None)

        task = asyncio.create_task(scheduler.run_interaction(interaction))
        await asyncio.sleep(0.055)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert adapter.send.await_count >= 2

    @pytest.mark.asyncio
    async def test_slow_broadcast_does_not_delay_ticks(self, make_interaction):
        interaction = make_interaction(send_packet_interval=1, interval_unit_seconds=0.01)
        never = asyncio.Event()

        async def hang(*args, **kwargs):
            await never.wait()

        adapter = MagicMock()
        adapter.send = AsyncMock(side_effect=hang)
        scheduler = make_scheduler([interaction], adapters={"union": adapter})

        task = asyncio.create_task(scheduler.run_interaction(interaction))
        await asyncio.sleep(0.055)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert scheduler.pending_dispatches >= 2
        await scheduler.cancel_pending()
        assert scheduler.pending_dispatches == 0

    @pytest.mark.asyncio
    async def test_timeout_scenario(self, make_interaction):
        """Interval 50, budget 35, amounts 1-3 of muno, never a memo."""
        interaction = make_interaction(
            memo="gm",
            sending_memo_probability=0,
            denoms=("muno",),
            send_packet_interval=50,
            expect_full_cycle=35,
            amount_min=1,
            amount_max=3,
        )
        monitor = CycleMonitor()
        scheduler = make_scheduler([interaction], monitor=monitor, clock=lambda: 1000.0)

        transfers = [
            await scheduler.dispatch(scheduler.build_transfer(interaction)) for _ in range(30)
        ]

        assert all(t.amount in {1, 2, 3} for t in transfers)
        assert all(t.memo is None for t in transfers)
        assert all(t.denom == "muno" for t in transfers)

        assert monitor.sweep_expired(now=1034.9) == []
        assert len(monitor.sweep_expired(now=1035.0)) == 30
        assert all(t.state is TransferState.TIMED_OUT for t in transfers)
        assert monitor.sweep_expired(now=1100.0) == []

    def test_source_endpoint_must_have_adapter(self, make_interaction):
        interaction = make_interaction(source=Endpoint("osmosis", "channel-2"))
        with pytest.raises(ValueError):
            make_scheduler([interaction])
