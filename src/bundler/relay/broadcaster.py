"""
Relay Broadcaster - signs a bundle and submits it to every relay.

One broadcast signs the bundle once, simulates it, fans it out to all
configured relays concurrently and finally submits it to the primary relay
and waits for the target block to resolve the outcome.
"""

import asyncio
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import httpx
import structlog

from bundler.config import BundlerConfig, get_config
from bundler.core.bundle import BUNDLE_ORDER, Bundle, StepRole
from bundler.core.outcome import SubmissionOutcome
from bundler.node.interface import ChainReader, NodeConnectionError
from bundler.relay.client import RelayClient, RelayTransportError, SimulationResult
from bundler.tx.signer import SignedTransaction, SigningIdentity

logger = structlog.get_logger(__name__)


class SimulationAdvisoryError(Exception):
    """Raised when a relay simulation reports a failing bundle."""
    pass


@dataclass(frozen=True)
class SignedBundle:
    """Signed transactions of a bundle, in bundle order."""
    transactions: Tuple[SignedTransaction, ...]

    @property
    def raw_transactions(self) -> List[str]:
        return [tx.raw for tx in self.transactions]

    @property
    def tx_hashes(self) -> List[str]:
        return [tx.tx_hash for tx in self.transactions]


class RelayBroadcaster:
    """
    Broadcasts bundles to private relays.

    Fan-out submissions are independent: a failing relay is logged and
    never blocks the others. Only the primary relay's resolution decides
    the outcome of the cycle.
    """

    def __init__(
        self,
        node: ChainReader,
        auth_identity: SigningIdentity,
        config: Optional[BundlerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the broadcaster.

        Args:
            node: Chain reader for nonces and inclusion checks
            auth_identity: Identity authenticating fan-out submissions
            config: Bundler configuration
            client: Shared HTTP client (created if not provided)
        """
        self.node = node
        self.auth_identity = auth_identity
        self.config = config or get_config()
        self._client = client or httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
        self._owns_client = client is None

        self.relays = [
            RelayClient(url, auth_identity, self._client)
            for url in self.config.relayers
        ]

    def primary_client(self, auth_identity: SigningIdentity) -> RelayClient:
        """Client for the primary relay, authenticated by the given identity."""
        return RelayClient(self.config.primary_relay_url, auth_identity, self._client)

    async def sign_bundle(self, bundle: Bundle) -> SignedBundle:
        """
        Assign nonces and sign every step with its sender.

        Consecutive steps from the same sender get consecutive nonces.
        """
        next_nonce: Dict[str, int] = {}
        signed = []

        for step in bundle:
            address = step.sender_address
            if address not in next_nonce:
                next_nonce[address] = await self.node.get_transaction_count(address)
            nonce = next_nonce[address]
            next_nonce[address] = nonce + 1
            signed.append(step.sender.sign_transaction(step.to_transaction(nonce)))

        logger.debug("bundle_signed", tx_hashes=[tx.tx_hash for tx in signed])
        return SignedBundle(transactions=tuple(signed))

    async def simulate(
        self,
        relay: RelayClient,
        signed: SignedBundle,
        block_number: int,
    ) -> SimulationResult:
        """
        Simulate a signed bundle against the latest state.

        Raises:
            SimulationAdvisoryError: If the simulation fails or reports an error
        """
        try:
            result = await relay.simulate(signed.raw_transactions, block_number, "latest")
        except RelayTransportError as e:
            raise SimulationAdvisoryError(f"Simulation request failed: {e}") from e

        if not result.success:
            raise SimulationAdvisoryError(result.error)

        logger.info(
            "bundle_simulated",
            block=block_number,
            gas_used=result.total_gas_used,
            bundle_gas_price=result.bundle_gas_price,
        )
        return result

    async def _submit(
        self,
        relay: RelayClient,
        signed: SignedBundle,
        block_number: int,
    ) -> Optional[str]:
        """Submit to one relay; failures are logged and yield None."""
        try:
            bundle_hash = await relay.send_bundle(signed.raw_transactions, block_number)
        except RelayTransportError as e:
            logger.warning(
                "relay_submission_failed",
                relay=relay.endpoint_url,
                block=block_number,
                error=str(e),
            )
            return None
        except Exception as e:
            logger.error(
                "relay_submission_error",
                relay=relay.endpoint_url,
                block=block_number,
                error=str(e),
            )
            return None

        logger.info("bundle_sent", relay=relay.endpoint_url, block=block_number, bundle_hash=bundle_hash)
        return bundle_hash

    async def fan_out(self, signed: SignedBundle, block_number: int) -> List[Optional[str]]:
        """Submit to every configured relay concurrently and wait for all of them."""
        results = await asyncio.gather(
            *(self._submit(relay, signed, block_number) for relay in self.relays),
            return_exceptions=True,
        )
        return [None if isinstance(result, BaseException) else result for result in results]

    async def await_inclusion(self, signed: SignedBundle, target_block: int) -> bool:
        """
        Wait until the target block is produced and check for the bundle.

        The wait is bounded by the inclusion timeout. The bundle counts as
        included when any of its transactions has a receipt, or when the
        execution wallet's nonce moved past the claim step's nonce.
        """
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.config.inclusion_timeout_seconds

        while True:
            try:
                head = await self.node.get_block_number()
                if head >= target_block:
                    break
            except NodeConnectionError as e:
                logger.warning("inclusion_poll_failed", block=target_block, error=str(e))

            if loop.time() >= deadline:
                logger.warning("inclusion_wait_timeout", block=target_block)
                break
            await asyncio.sleep(self.config.inclusion_poll_interval_seconds)

        for tx_hash in signed.tx_hashes:
            if await self.node.get_transaction_receipt(tx_hash):
                return True

        claim_index = BUNDLE_ORDER.index(StepRole.CLAIM)
        claim = signed.transactions[claim_index]
        current_nonce = await self.node.get_transaction_count(claim.sender)
        if current_nonce > claim.nonce:
            logger.info("execution_nonce_advanced", nonce=current_nonce, claim_nonce=claim.nonce)
            return True

        return False

    async def broadcast(self, bundle: Bundle, target_block: int) -> SubmissionOutcome:
        """
        Broadcast a bundle built at target_block for inclusion in the next block.

        Args:
            bundle: Bundle to submit
            target_block: Current block; the bundle targets target_block + 1

        Returns:
            Outcome resolved from the primary relay
        """
        submission_block = target_block + 1
        logger.info("broadcasting_bundle", block=submission_block, relays=len(self.relays))

        signed = await self.sign_bundle(bundle)
        primary = self.primary_client(SigningIdentity.generate())

        try:
            await self.simulate(primary, signed, submission_block)
        except SimulationAdvisoryError as e:
            logger.error("simulation_error", block=submission_block, error=str(e))
            if self.config.abort_on_simulation_failure:
                return SubmissionOutcome.simulation_failed(submission_block, str(e))

        results = await self.fan_out(signed, submission_block)
        logger.info(
            "fan_out_completed",
            block=submission_block,
            accepted=sum(1 for r in results if r is not None),
            total=len(results),
        )

        try:
            bundle_hash = await primary.send_bundle(signed.raw_transactions, submission_block)
        except RelayTransportError as e:
            logger.error("primary_submission_failed", block=submission_block, error=str(e))
            return SubmissionOutcome.transport_error(submission_block, str(e))

        if await self.await_inclusion(signed, submission_block):
            logger.info("bundle_included", block=submission_block, bundle_hash=bundle_hash)
            return SubmissionOutcome.included(submission_block, bundle_hash)

        logger.info("bundle_not_included", block=submission_block, bundle_hash=bundle_hash)
        return SubmissionOutcome.not_included(submission_block, bundle_hash)

    async def close(self) -> None:
        """Close the HTTP client if owned."""
        if self._owns_client:
            await self._client.aclose()
