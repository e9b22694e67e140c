"""
Test suite for the orchestrator and block watcher.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from bundler.core.orchestrator import Orchestrator, OrchestratorState
from bundler.core.outcome import OutcomeStatus, SubmissionOutcome
from bundler.core.watcher import BlockWatcher
from bundler.node.interface import NodeConnectionError
from bundler.tx.builder import BuildError


@pytest.fixture
def mock_builder(sample_bundle):
    builder = MagicMock()
    builder.build = AsyncMock(return_value=sample_bundle)
    return builder


@pytest.fixture
def mock_broadcaster():
    broadcaster = MagicMock()
    broadcaster.broadcast = AsyncMock(return_value=SubmissionOutcome.not_included(101, "0xhash"))
    broadcaster.close = AsyncMock()
    return broadcaster


@pytest.fixture
def orchestrator(
    test_config, mock_node, safe_identity, execution_identity, mock_builder, mock_broadcaster
):
    return Orchestrator(
        config=test_config,
        node=mock_node,
        safe=safe_identity,
        execution=execution_identity,
        builder=mock_builder,
        broadcaster=mock_broadcaster,
    )


# ============================================================================
# Test Orchestrator Cycles
# ============================================================================

class TestOrchestratorCycle:
    """Tests for one build and broadcast cycle."""

    def test_initial_state(self, orchestrator, test_config):
        assert orchestrator.state == OrchestratorState.IDLE
        assert not orchestrator.is_done
        assert orchestrator.payload == bytes.fromhex("1234abcd")
        assert orchestrator.transfer_amount == test_config.transfer_amount

    @pytest.mark.asyncio
    async def test_included_moves_to_done(self, orchestrator, mock_broadcaster):
        mock_broadcaster.broadcast.return_value = SubmissionOutcome.included(101, "0xhash")

        outcome = await orchestrator.handle_block(100)

        assert outcome.status == OutcomeStatus.INCLUDED
        assert orchestrator.state == OrchestratorState.DONE
        assert orchestrator.is_done

    @pytest.mark.asyncio
    async def test_not_included_returns_to_idle(self, orchestrator, mock_builder, sample_bundle):
        outcome = await orchestrator.handle_block(100)

        assert outcome.status == OutcomeStatus.NOT_INCLUDED
        assert orchestrator.state == OrchestratorState.IDLE
        mock_builder.build.assert_awaited_once_with(
            100, bytes.fromhex("1234abcd"), orchestrator.transfer_amount
        )

    @pytest.mark.asyncio
    async def test_broadcast_targets_current_block(self, orchestrator, mock_broadcaster, sample_bundle):
        await orchestrator.handle_block(100)

        mock_broadcaster.broadcast.assert_awaited_once_with(sample_bundle, 100)

    @pytest.mark.asyncio
    async def test_transport_error_returns_to_idle(self, orchestrator, mock_broadcaster):
        mock_broadcaster.broadcast.return_value = SubmissionOutcome.transport_error(101, "refused")

        await orchestrator.handle_block(100)

        assert orchestrator.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_build_failure_skips_broadcast(self, orchestrator, mock_builder, mock_broadcaster):
        mock_builder.build.side_effect = BuildError("estimation failed")
        errors = []
        orchestrator.on_error(errors.append)

        outcome = await orchestrator.handle_block(100)

        assert outcome is None
        assert orchestrator.state == OrchestratorState.IDLE
        mock_broadcaster.broadcast.assert_not_awaited()
        assert len(errors) == 1

    @pytest.mark.asyncio
    async def test_broadcast_exception_returns_to_idle(self, orchestrator, mock_broadcaster):
        mock_broadcaster.broadcast.side_effect = NodeConnectionError("node down")

        outcome = await orchestrator.handle_block(100)

        assert outcome is None
        assert orchestrator.state == OrchestratorState.IDLE

    @pytest.mark.asyncio
    async def test_block_skipped_while_cycle_in_flight(self, orchestrator, mock_builder, sample_bundle):
        release = asyncio.Event()

        async def slow_build(*args):
            await release.wait()
            return sample_bundle

        mock_builder.build.side_effect = slow_build

        first = asyncio.create_task(orchestrator.handle_block(100))
        await asyncio.sleep(0)
        assert orchestrator.state == OrchestratorState.BUILDING

        skipped = await orchestrator.handle_block(101)
        release.set()
        await first

        assert skipped is None
        assert mock_builder.build.await_count == 1
        assert orchestrator.get_stats()["skipped_blocks"] == 1

    @pytest.mark.asyncio
    async def test_no_cycle_after_done(self, orchestrator, mock_builder, mock_broadcaster):
        mock_broadcaster.broadcast.return_value = SubmissionOutcome.included(101)

        await orchestrator.handle_block(100)
        again = await orchestrator.handle_block(101)

        assert again is None
        assert mock_builder.build.await_count == 1

    @pytest.mark.asyncio
    async def test_callbacks(self, orchestrator, sample_bundle):
        built, outcomes = [], []
        orchestrator.on_bundle_built(built.append)
        orchestrator.on_outcome(outcomes.append)

        await orchestrator.handle_block(100)

        assert built == [sample_bundle]
        assert outcomes[0].status == OutcomeStatus.NOT_INCLUDED

    @pytest.mark.asyncio
    async def test_stats(self, orchestrator):
        await orchestrator.handle_block(100)

        stats = orchestrator.get_stats()
        assert stats["cycles"] == 1
        assert stats["last_block"] == 100
        assert stats["state"] == "idle"
        assert stats["last_outcome"]["status"] == "not_included"


# ============================================================================
# Test Orchestrator Run Loop
# ============================================================================

class TestOrchestratorRun:
    """Tests for the watch loop."""

    @pytest.mark.asyncio
    async def test_run_until_included(self, orchestrator, mock_node, mock_broadcaster):
        mock_node.block_stream = [100, 101, 102, 103]
        mock_broadcaster.broadcast.side_effect = [
            SubmissionOutcome.not_included(101),
            SubmissionOutcome.included(102, "0xhash"),
            SubmissionOutcome.included(103),
        ]

        included = await orchestrator.run()

        assert included is True
        assert orchestrator.state == OrchestratorState.DONE
        assert mock_broadcaster.broadcast.await_count == 2
        mock_broadcaster.close.assert_awaited()

    @pytest.mark.asyncio
    async def test_run_ends_with_stream(self, orchestrator, mock_node):
        mock_node.block_stream = [100, 101]

        included = await orchestrator.run()

        assert included is False
        assert orchestrator.get_stats()["cycles"] == 2

    @pytest.mark.asyncio
    async def test_stop_ends_run(self, orchestrator, mock_node):
        mock_node.block_stream = list(range(100, 200))
        mock_node.block_interval = 0.05

        task = asyncio.create_task(orchestrator.run())
        await asyncio.sleep(0.1)
        orchestrator.stop()
        included = await asyncio.wait_for(task, timeout=2)

        assert included is False
        assert orchestrator.get_stats()["cycles"] < 100

    @pytest.mark.asyncio
    async def test_builder_requires_initialize(self, test_config, mock_node):
        orchestrator = Orchestrator(config=test_config, node=mock_node)

        with pytest.raises(RuntimeError):
            orchestrator.builder

    @pytest.mark.asyncio
    async def test_initialize_creates_components(self, test_config, mock_node):
        orchestrator = Orchestrator(config=test_config, node=mock_node)

        await orchestrator.initialize()

        assert orchestrator.builder.safe.address != orchestrator.builder.execution.address
        assert mock_node._connected
        await orchestrator.shutdown()
        assert not mock_node._connected


# ============================================================================
# Test Block Watcher
# ============================================================================

class TestBlockWatcher:
    """Tests for BlockWatcher."""

    @pytest.mark.asyncio
    async def test_callbacks_in_block_order(self, mock_node):
        mock_node.block_stream = [5, 6, 7]
        seen = []

        async def record(block_number):
            seen.append(block_number)

        watcher = BlockWatcher(mock_node, record)
        await watcher.run()

        assert seen == [5, 6, 7]
        assert watcher.last_block == 7

    @pytest.mark.asyncio
    async def test_callback_error_does_not_stop_watching(self, mock_node):
        mock_node.block_stream = [5, 6, 7]
        seen = []

        async def flaky(block_number):
            if block_number == 6:
                raise RuntimeError("cycle crashed")
            seen.append(block_number)

        watcher = BlockWatcher(mock_node, flaky)
        await watcher.run()

        assert seen == [5, 7]

    @pytest.mark.asyncio
    async def test_stop_from_callback(self, mock_node):
        mock_node.block_stream = [5, 6, 7, 8]
        seen = []
        watcher = None

        async def stop_at_six(block_number):
            seen.append(block_number)
            if block_number == 6:
                watcher.stop()

        watcher = BlockWatcher(mock_node, stop_at_six)
        await watcher.run()

        assert seen == [5, 6]
        assert watcher.stop_requested

    @pytest.mark.asyncio
    async def test_subscription_error_propagates(self, mock_node):
        async def broken_stream():
            yield 5
            raise NodeConnectionError("subscription lost")

        mock_node.subscribe_new_blocks = broken_stream
        watcher = BlockWatcher(mock_node, AsyncMock())

        with pytest.raises(NodeConnectionError):
            await watcher.run()
