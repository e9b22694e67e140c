"""
HTTP JSON-RPC adapter for node integration.

Provides chain access over a plain Ethereum JSON-RPC endpoint. New blocks
are detected by polling eth_blockNumber.
"""

import asyncio
import itertools
from typing import Any, AsyncIterator, List, Optional

import httpx
import structlog

from bundler.config import BundlerConfig, get_config
from bundler.node.interface import (
    BlockHeader,
    ChainReader,
    NodeConnectionError,
    result_block_header,
    result_quantity,
    rpc_error_from,
)

logger = structlog.get_logger(__name__)


class HttpRpcAdapter(ChainReader):
    """
    HTTP JSON-RPC adapter.

    Implements the ChainReader using standard eth_* methods.
    """

    def __init__(
        self,
        config: Optional[BundlerConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Initialize the HTTP adapter.

        Args:
            config: Bundler configuration. Uses global config if not provided.
            client: Pre-built HTTP client (the adapter creates one if not provided)
        """
        self.config = config or get_config()
        self.rpc_url = self.config.rpc_url
        self.poll_interval = self.config.block_poll_interval_seconds
        self._client = client
        self._owns_client = client is None
        self._ids = itertools.count(1)

    async def connect(self) -> None:
        """Create the HTTP client and check the node answers."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.config.http_timeout_seconds,
                headers={"Content-Type": "application/json"},
            )
            self._owns_client = True

        chain_id = result_quantity("eth_chainId", await self._request("eth_chainId"))
        if chain_id != self.config.chain_id:
            raise NodeConnectionError(
                f"Node chain ID {chain_id} does not match configured {self.config.chain_id}"
            )
        logger.info("rpc_connected", url=self.rpc_url, chain_id=chain_id)

    async def disconnect(self) -> None:
        """Close the HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
            logger.info("rpc_disconnected")

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Any:
        """Make a JSON-RPC call and return its result."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.config.http_timeout_seconds)
            self._owns_client = True

        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": params or [],
        }

        try:
            response = await self._client.post(self.rpc_url, json=payload)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.error("rpc_request_error", method=method, error=str(e))
            raise NodeConnectionError(f"RPC request failed: {e}")

        if response.status_code != 200:
            logger.error(
                "rpc_request_failed",
                method=method,
                status=response.status_code,
                error=response.text,
            )
            raise NodeConnectionError(f"RPC error: HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as e:
            raise NodeConnectionError(f"Invalid RPC response: {e}")

        if not isinstance(data, dict):
            raise NodeConnectionError(f"Invalid RPC response: {data!r:.100}")

        if data.get("error"):
            raise rpc_error_from(data["error"])

        return data.get("result")

    async def get_block_number(self) -> int:
        """Get the latest block number."""
        return result_quantity("eth_blockNumber", await self._request("eth_blockNumber"))

    async def get_block(self, number: int) -> BlockHeader:
        """Get a block header."""
        data = await self._request("eth_getBlockByNumber", [hex(number), False])
        return result_block_header(number, data)

    async def get_balance(self, address: str) -> int:
        """Get the balance of an address at the latest block."""
        return result_quantity(
            "eth_getBalance",
            await self._request("eth_getBalance", [address, "latest"]),
        )

    async def get_transaction_count(self, address: str) -> int:
        """Get the nonce of an address at the latest block."""
        return result_quantity(
            "eth_getTransactionCount",
            await self._request("eth_getTransactionCount", [address, "latest"]),
        )

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """Get a transaction receipt."""
        receipt = await self._request("eth_getTransactionReceipt", [tx_hash])
        return receipt if isinstance(receipt, dict) else None

    async def subscribe_new_blocks(self) -> AsyncIterator[int]:
        """Poll for new blocks and yield every height in order."""
        last_seen: Optional[int] = None

        while True:
            try:
                head = await self.get_block_number()
            except NodeConnectionError as e:
                logger.warning("block_poll_failed", error=str(e))
                await asyncio.sleep(self.poll_interval)
                continue

            if last_seen is None:
                last_seen = head
                yield head
            elif head > last_seen:
                for number in range(last_seen + 1, head + 1):
                    yield number
                last_seen = head

            await asyncio.sleep(self.poll_interval)
