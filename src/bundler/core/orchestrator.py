"""
Main bundle orchestrator.

Coordinates all components to run one build and broadcast cycle per block
until the bundle lands on-chain.
"""

import asyncio
from datetime import datetime
from enum import Enum
from typing import Callable, Optional

import structlog

from bundler.config import BundlerConfig, NodeProvider, get_config
from bundler.core.bundle import Bundle
from bundler.core.outcome import SubmissionOutcome
from bundler.core.watcher import BlockWatcher
from bundler.gas.estimator import GasEstimator
from bundler.node.http import HttpRpcAdapter
from bundler.node.interface import ChainReader
from bundler.node.websocket import WebSocketRpcAdapter
from bundler.relay.broadcaster import RelayBroadcaster
from bundler.tx.builder import BundleBuilder
from bundler.tx.signer import SigningIdentity, load_identities

logger = structlog.get_logger(__name__)


class OrchestratorState(str, Enum):
    """State of the submission cycle."""
    IDLE = "idle"                  # Waiting for the next block
    BUILDING = "building"          # Estimating gas and pricing the bundle
    BROADCASTING = "broadcasting"  # Sending to relays and awaiting inclusion
    DONE = "done"                  # Bundle included; terminal


class Orchestrator:
    """
    Main orchestrator.

    Coordinates:
    - Block watching
    - Bundle building (gas estimation, fees, funding)
    - Relay broadcast and inclusion checks

    Only one cycle runs at a time; blocks arriving while a cycle is in
    flight are skipped.

    Usage:
        ```python
        orchestrator = Orchestrator(payload=b"...", transfer_amount=10**18)
        await orchestrator.initialize()
        included = await orchestrator.run()
        ```
    """

    def __init__(
        self,
        payload: Optional[bytes] = None,
        transfer_amount: Optional[int] = None,
        config: Optional[BundlerConfig] = None,
        node: Optional[ChainReader] = None,
        safe: Optional[SigningIdentity] = None,
        execution: Optional[SigningIdentity] = None,
        estimator: Optional[GasEstimator] = None,
        builder: Optional[BundleBuilder] = None,
        broadcaster: Optional[RelayBroadcaster] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            payload: Claim calldata (defaults to the configured payload)
            transfer_amount: Tokens to forward (defaults to the configured amount)
            config: Bundler configuration
            node: Custom chain reader (auto-created based on config if not provided)
            safe: Safe wallet identity (loaded from config if not provided)
            execution: Execution wallet identity (loaded from config if not provided)
            estimator: Custom gas estimator
            builder: Custom bundle builder
            broadcaster: Custom relay broadcaster
        """
        self.config = config or get_config()
        self.payload = payload if payload is not None else self.config.claim_payload_bytes
        self.transfer_amount = (
            transfer_amount if transfer_amount is not None else self.config.transfer_amount
        )

        if node:
            self.node = node
        elif self.config.node_provider == NodeProvider.WEBSOCKET:
            self.node = WebSocketRpcAdapter(self.config)
        else:
            self.node = HttpRpcAdapter(self.config)

        self._safe = safe
        self._execution = execution
        self._estimator = estimator
        self._builder = builder
        self._broadcaster = broadcaster
        self._watcher: Optional[BlockWatcher] = None

        # State
        self._state = OrchestratorState.IDLE
        self._cycle_lock = asyncio.Lock()
        self._initialized = False
        self._cycles = 0
        self._skipped_blocks = 0
        self._last_block: Optional[int] = None
        self._last_outcome: Optional[SubmissionOutcome] = None
        self._last_cycle_time: Optional[datetime] = None

        # Callbacks
        self._on_bundle_built: Optional[Callable[[Bundle], None]] = None
        self._on_outcome: Optional[Callable[[SubmissionOutcome], None]] = None
        self._on_error: Optional[Callable[[Exception], None]] = None

    @property
    def state(self) -> OrchestratorState:
        return self._state

    @property
    def is_done(self) -> bool:
        return self._state == OrchestratorState.DONE

    @property
    def builder(self) -> BundleBuilder:
        if self._builder is None:
            raise RuntimeError("Orchestrator not initialized")
        return self._builder

    async def initialize(self) -> None:
        """
        Connect to the node and set up all components.

        Raises:
            SigningKeyError: If wallet keys are missing or invalid
            NodeConnectionError: If the node cannot be reached
        """
        if self._initialized:
            return

        if self._safe is None or self._execution is None:
            self._safe, self._execution = load_identities(self.config)

        logger.info(
            "orchestrator_initializing",
            safe=self._safe.address,
            execution=self._execution.address,
        )

        await self.node.connect()

        if self._estimator is None:
            self._estimator = GasEstimator(self.config)

        if self._builder is None:
            self._builder = BundleBuilder(
                node=self.node,
                estimator=self._estimator,
                safe=self._safe,
                execution=self._execution,
                config=self.config,
            )

        if self._broadcaster is None:
            self._broadcaster = RelayBroadcaster(
                node=self.node,
                auth_identity=self._safe,
                config=self.config,
            )

        self._initialized = True
        logger.info("orchestrator_initialized", relays=len(self.config.relayers))

    async def shutdown(self) -> None:
        """Close connections and HTTP clients."""
        if self._estimator:
            await self._estimator.close()
        if self._broadcaster:
            await self._broadcaster.close()
        await self.node.disconnect()

        self._initialized = False
        logger.info("orchestrator_shutdown")

    async def run(self) -> bool:
        """
        Watch blocks and run cycles until the bundle is included or stop() is called.

        Returns:
            True if the bundle was included
        """
        if not self._initialized:
            await self.initialize()

        self._watcher = BlockWatcher(self.node, self.handle_block)
        logger.info("orchestrator_starting")

        try:
            await self._watcher.run()
        except asyncio.CancelledError:
            logger.info("orchestrator_cancelled")
            raise
        except Exception as e:
            logger.error("orchestrator_error", error=str(e))
            if self._on_error:
                self._on_error(e)
            raise
        finally:
            await self.shutdown()

        return self.is_done

    def stop(self) -> None:
        """Request the watch loop to end."""
        if self._watcher:
            self._watcher.stop()
        logger.info("orchestrator_stopping")

    async def handle_block(self, block_number: int) -> Optional[SubmissionOutcome]:
        """
        Run one cycle for a new block.

        Returns:
            The submission outcome, or None if the cycle was skipped or failed
        """
        if self._state == OrchestratorState.DONE:
            return None

        if self._cycle_lock.locked():
            self._skipped_blocks += 1
            logger.info("block_skipped_cycle_in_flight", block=block_number)
            return None

        async with self._cycle_lock:
            return await self._run_cycle(block_number)

    async def _run_cycle(self, block_number: int) -> Optional[SubmissionOutcome]:
        """Build and broadcast for one block."""
        self._cycles += 1
        self._last_block = block_number
        self._last_cycle_time = datetime.utcnow()

        self._state = OrchestratorState.BUILDING
        try:
            bundle = await self.builder.build(block_number, self.payload, self.transfer_amount)
        except Exception as e:
            logger.error("cycle_build_failed", block=block_number, error=str(e))
            self._state = OrchestratorState.IDLE
            if self._on_error:
                self._on_error(e)
            return None

        if self._on_bundle_built:
            self._on_bundle_built(bundle)

        self._state = OrchestratorState.BROADCASTING
        try:
            outcome = await self._broadcaster.broadcast(bundle, block_number)
        except Exception as e:
            logger.error("cycle_broadcast_failed", block=block_number, error=str(e))
            self._state = OrchestratorState.IDLE
            if self._on_error:
                self._on_error(e)
            return None

        self._last_outcome = outcome
        if self._on_outcome:
            self._on_outcome(outcome)

        if outcome.is_included:
            self._state = OrchestratorState.DONE
            logger.info("bundle_confirmed", block=outcome.target_block, bundle_hash=outcome.bundle_hash)
            self.stop()
        else:
            self._state = OrchestratorState.IDLE
            logger.info(
                "cycle_retry_next_block",
                block=block_number,
                outcome=outcome.status.value,
                detail=outcome.detail,
            )

        return outcome

    def get_stats(self) -> dict:
        """Get orchestrator statistics."""
        return {
            "initialized": self._initialized,
            "state": self._state.value,
            "cycles": self._cycles,
            "skipped_blocks": self._skipped_blocks,
            "last_block": self._last_block,
            "last_outcome": self._last_outcome.to_dict() if self._last_outcome else None,
            "last_cycle_time": self._last_cycle_time.isoformat() if self._last_cycle_time else None,
            "estimator": self._estimator.get_stats() if self._estimator else {},
        }

    # Callback registration

    def on_bundle_built(self, callback: Callable[[Bundle], None]) -> None:
        """Register callback for built bundles."""
        self._on_bundle_built = callback

    def on_outcome(self, callback: Callable[[SubmissionOutcome], None]) -> None:
        """Register callback for submission outcomes."""
        self._on_outcome = callback

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        """Register callback for error events."""
        self._on_error = callback
