"""
Gas Estimator - estimates bundle gas through a simulation service.

Sends the whole draft bundle to a bundle-aware gas estimation endpoint
(Tenderly's tenderly_estimateGasBundle by default) and caches the result
for a window of blocks.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, List, Optional

import httpx
import structlog

from bundler.config import BundlerConfig, get_config
from bundler.core.bundle import GasEstimate, GasEstimateEntry
from bundler.node.interface import parse_quantity

logger = structlog.get_logger(__name__)

# Indices of the draft transactions whose gas is estimated (claim, transfer).
# The funding step at index 0 always uses the fixed transfer gas limit.
ESTIMATED_INDICES = (1, 2)


class EstimationError(Exception):
    """Raised when the simulation service is unreachable or answers badly."""
    pass


@dataclass
class GasEstimateCache:
    """
    Last estimate and the block it was obtained at.

    An estimate is reusable while current_block - valid_since_block < window.
    """
    estimate: Optional[GasEstimate] = None
    valid_since_block: int = 0

    def lookup(self, current_block: int, window: int) -> Optional[GasEstimate]:
        """Return the cached estimate if still inside the window."""
        if self.estimate is None:
            return None
        if current_block - self.valid_since_block < window:
            return self.estimate
        return None


class GasEstimator:
    """
    Estimates gas for the claim and transfer steps of a draft bundle.

    The cache is the only state shared between cycles; reads and refreshes
    run under a lock so overlapping cycles issue at most one request.
    """

    def __init__(
        self,
        config: Optional[BundlerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the estimator.

        Args:
            config: Bundler configuration
            client: HTTP client (created on first use if not provided)
        """
        self.config = config or get_config()
        self.url = self.config.simulation_url
        self.method = self.config.simulation_method
        self.window = self.config.gas_cache_window_blocks
        self._client = client
        self._owns_client = client is None
        self._cache = GasEstimateCache()
        self._lock = asyncio.Lock()
        self._stats = {"requests": 0, "cache_hits": 0}

    @property
    def cache(self) -> GasEstimateCache:
        return self._cache

    async def estimate(self, draft_steps: List[dict], current_block: int) -> GasEstimate:
        """
        Get gas estimates for a draft bundle.

        Args:
            draft_steps: Funding, claim and transfer transactions as JSON-RPC call objects
            current_block: Block the estimate is requested at

        Returns:
            Estimates for the claim and transfer steps

        Raises:
            EstimationError: If the service fails or its answer is malformed
        """
        async with self._lock:
            cached = self._cache.lookup(current_block, self.window)
            if cached is not None:
                self._stats["cache_hits"] += 1
                logger.info(
                    "gas_estimate_cache_hit",
                    block=current_block,
                    valid_since=self._cache.valid_since_block,
                )
                return cached

            logger.info("gas_estimate_requested", block=current_block, steps=len(draft_steps))
            estimate = await self._request_estimate(draft_steps)

            self._cache = GasEstimateCache(estimate=estimate, valid_since_block=current_block)
            logger.info(
                "gas_estimate_completed",
                block=current_block,
                claim_gas=estimate.claim_gas,
                transfer_gas=estimate.transfer_gas,
            )
            return estimate

    async def _request_estimate(self, draft_steps: List[dict]) -> GasEstimate:
        """Call the simulation service."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
            self._owns_client = True

        payload = {
            "jsonrpc": "2.0",
            "id": 0,
            "method": self.method,
            "params": [draft_steps, "latest"],
        }

        self._stats["requests"] += 1
        try:
            response = await self._client.post(
                self.url,
                json=payload,
                headers={"Content-Type": "application/json"},
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPError as e:
            logger.error("gas_estimate_request_failed", error=str(e))
            raise EstimationError(f"Simulation service request failed: {e}") from e
        except ValueError as e:
            raise EstimationError(f"Simulation service returned invalid JSON: {e}") from e

        return parse_estimate_response(data, expected_steps=len(draft_steps))

    async def close(self) -> None:
        """Close the HTTP client if owned."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def get_stats(self) -> dict:
        """Get estimator statistics."""
        return {
            **self._stats,
            "cached_since_block": self._cache.valid_since_block if self._cache.estimate else None,
        }


def parse_estimate_response(data: Any, expected_steps: int) -> GasEstimate:
    """
    Parse a JSON-RPC estimate response into a GasEstimate.

    Raises:
        EstimationError: On error objects, missing entries or invalid gas values
    """
    if not isinstance(data, dict):
        raise EstimationError("Simulation response is not an object")

    if data.get("error"):
        error = data["error"]
        message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
        raise EstimationError(f"Simulation service error: {message}")

    results = data.get("result")
    if not isinstance(results, list) or len(results) < expected_steps:
        raise EstimationError(
            f"Expected {expected_steps} gas results, got {results!r:.200}"
        )

    entries = []
    for index in ESTIMATED_INDICES:
        item = results[index]
        if not isinstance(item, dict) or item.get("error"):
            raise EstimationError(f"Simulation failed for transaction {index}: {item!r:.200}")
        try:
            gas = parse_quantity(item["gas"])
            entries.append(GasEstimateEntry(transaction_index=index, gas_units=gas))
        except (KeyError, ValueError) as e:
            raise EstimationError(f"Invalid gas value for transaction {index}: {e}") from e

    return GasEstimate(entries=tuple(entries))
