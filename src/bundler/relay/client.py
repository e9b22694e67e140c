"""
Relay client - JSON-RPC access to one private bundle relay.

Requests are authenticated with the X-Flashbots-Signature header: the
auth identity signs the keccak of the request body.
"""

import itertools
import json
from dataclasses import dataclass, field
from typing import Any, List, Optional

import httpx
import structlog
from web3 import Web3

from bundler.node.interface import parse_quantity
from bundler.tx.signer import SigningIdentity

logger = structlog.get_logger(__name__)


class RelayTransportError(Exception):
    """Raised when a relay is unreachable or rejects a request."""

    def __init__(self, message: str, endpoint: str, code: Optional[int] = None):
        super().__init__(message)
        self.endpoint = endpoint
        self.code = code


@dataclass
class SimulationResult:
    """Parsed eth_callBundle response."""
    error: Optional[str] = None
    results: List[dict] = field(default_factory=list)
    bundle_gas_price: Optional[int] = None
    coinbase_diff: Optional[int] = None
    total_gas_used: Optional[int] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @classmethod
    def from_response(cls, result: dict) -> "SimulationResult":
        """Build from the result object of eth_callBundle."""
        raw_results = result.get("results")
        results = [
            item for item in (raw_results if isinstance(raw_results, list) else [])
            if isinstance(item, dict)
        ]
        error = None
        for index, item in enumerate(results):
            if item.get("error") or item.get("revert"):
                error = f"transaction {index} failed: {item.get('revert') or item.get('error')}"
                break

        def quantity(key):
            value = result.get(key)
            return parse_quantity(value) if value is not None else None

        return cls(
            error=error,
            results=results,
            bundle_gas_price=quantity("bundleGasPrice"),
            coinbase_diff=quantity("coinbaseDiff"),
            total_gas_used=quantity("totalGasUsed"),
        )


def flashbots_signature(identity: SigningIdentity, body: str) -> str:
    """Compute the X-Flashbots-Signature header value for a request body."""
    digest = Web3.to_hex(Web3.keccak(text=body))
    return f"{identity.address}:{identity.sign_message(digest)}"


class RelayClient:
    """
    Client for one relay endpoint.

    Sends signed raw transactions as bundles and simulates them.
    """

    def __init__(
        self,
        endpoint_url: str,
        auth_identity: SigningIdentity,
        client: httpx.AsyncClient,
    ):
        """
        Initialize the relay client.

        Args:
            endpoint_url: Relay JSON-RPC URL
            auth_identity: Identity signing the request header
            client: Shared HTTP client
        """
        self.endpoint_url = endpoint_url
        self.auth_identity = auth_identity
        self._client = client
        self._ids = itertools.count(1)

    async def _request(self, method: str, params: List[Any]) -> Any:
        """Make an authenticated JSON-RPC call."""
        body = json.dumps({
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params,
        })
        headers = {
            "Content-Type": "application/json",
            "X-Flashbots-Signature": flashbots_signature(self.auth_identity, body),
        }

        try:
            response = await self._client.post(self.endpoint_url, content=body, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise RelayTransportError(f"Relay request failed: {e}", self.endpoint_url)

        try:
            data = response.json()
        except ValueError:
            raise RelayTransportError(
                f"Relay returned HTTP {response.status_code}: {response.text[:200]}",
                self.endpoint_url,
            )

        if not isinstance(data, dict):
            raise RelayTransportError("Relay returned a non-object response", self.endpoint_url)

        if data.get("error"):
            error = data["error"]
            message = error.get("message", "Unknown error") if isinstance(error, dict) else str(error)
            code = error.get("code") if isinstance(error, dict) else None
            raise RelayTransportError(message, self.endpoint_url, code)

        if response.status_code != 200:
            raise RelayTransportError(f"Relay returned HTTP {response.status_code}", self.endpoint_url)

        return data.get("result")

    async def simulate(
        self,
        signed_transactions: List[str],
        block_number: int,
        state_block: str = "latest",
    ) -> SimulationResult:
        """
        Simulate a bundle with eth_callBundle.

        Args:
            signed_transactions: Raw signed transactions in bundle order
            block_number: Block the bundle is simulated for
            state_block: State the simulation starts from
        """
        result = await self._request("eth_callBundle", [{
            "txs": signed_transactions,
            "blockNumber": hex(block_number),
            "stateBlockNumber": state_block,
        }])
        if not isinstance(result, dict):
            raise RelayTransportError("Simulation returned no result", self.endpoint_url)
        try:
            return SimulationResult.from_response(result)
        except (AttributeError, TypeError, ValueError) as e:
            raise RelayTransportError(f"Malformed simulation result: {e}", self.endpoint_url)

    async def send_bundle(self, signed_transactions: List[str], target_block: int) -> Optional[str]:
        """
        Submit a bundle with eth_sendBundle.

        Returns:
            Bundle hash reported by the relay, if any
        """
        result = await self._request("eth_sendBundle", [{
            "txs": signed_transactions,
            "blockNumber": hex(target_block),
        }])
        if isinstance(result, dict):
            return result.get("bundleHash")
        return result

    def __repr__(self) -> str:
        return f"RelayClient({self.endpoint_url})"
