"""
WebSocket JSON-RPC adapter for node integration.

Provides chain access over a WebSocket endpoint and receives new blocks
through an eth_subscribe("newHeads") subscription.
"""

import asyncio
import json
import itertools
from typing import Any, AsyncIterator, Dict, List, Optional

import structlog
import websockets
from websockets.asyncio.client import ClientConnection

from bundler.config import BundlerConfig, get_config
from bundler.node.interface import (
    BlockHeader,
    ChainReader,
    NodeConnectionError,
    parse_quantity,
    result_block_header,
    result_quantity,
    rpc_error_from,
)

logger = structlog.get_logger(__name__)

_CLOSED = object()


class WebSocketRpcAdapter(ChainReader):
    """
    WebSocket JSON-RPC adapter.

    Implements the ChainReader over a persistent WebSocket connection.
    Responses are matched to requests by id; subscription notifications
    are routed to per-subscription queues.
    """

    def __init__(self, config: Optional[BundlerConfig] = None):
        """
        Initialize the WebSocket adapter.

        Args:
            config: Bundler configuration. Uses global config if not provided.
        """
        self.config = config or get_config()
        self.ws_url = self.config.ws_url
        self._ws: Optional[ClientConnection] = None
        self._ids = itertools.count(1)
        self._pending_requests: Dict[int, asyncio.Future] = {}
        self._subscriptions: Dict[str, asyncio.Queue] = {}
        self._receive_task: Optional[asyncio.Task] = None

    async def connect(self) -> None:
        """Establish the WebSocket connection."""
        if self._ws is not None:
            return

        if not self.ws_url:
            raise NodeConnectionError("WebSocket URL not configured")

        try:
            self._ws = await websockets.connect(
                self.ws_url,
                ping_interval=30,
                ping_timeout=10,
            )
        except (OSError, websockets.WebSocketException) as e:
            raise NodeConnectionError(f"Failed to connect to {self.ws_url}: {e}")

        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("ws_connected", url=self.ws_url)

    async def disconnect(self) -> None:
        """Close the WebSocket connection."""
        if self._receive_task:
            self._receive_task.cancel()
            try:
                await self._receive_task
            except asyncio.CancelledError:
                pass
            self._receive_task = None

        if self._ws:
            await self._ws.close()
            self._ws = None
            logger.info("ws_disconnected")

    async def _receive_loop(self) -> None:
        """Background task dispatching incoming messages."""
        try:
            async for message in self._ws:
                try:
                    data = json.loads(message)
                except ValueError as e:
                    logger.warning("ws_message_malformed", error=str(e))
                    continue
                self._dispatch(data)
        except websockets.ConnectionClosed:
            logger.warning("ws_connection_closed")
        finally:
            for future in self._pending_requests.values():
                if not future.done():
                    future.set_exception(NodeConnectionError("WebSocket connection closed"))
            self._pending_requests.clear()
            for queue in self._subscriptions.values():
                queue.put_nowait(_CLOSED)

    def _dispatch(self, data: Any) -> None:
        """Route a response or subscription notification."""
        if not isinstance(data, dict):
            logger.warning("ws_message_malformed", message=repr(data)[:100])
            return

        if data.get("method") == "eth_subscription":
            params = data.get("params")
            if not isinstance(params, dict):
                return
            queue = self._subscriptions.get(params.get("subscription"))
            if queue is not None:
                queue.put_nowait(params.get("result"))
            return

        request_id = data.get("id")
        if not isinstance(request_id, int):
            return
        future = self._pending_requests.pop(request_id, None)
        if future is None or future.done():
            return
        if data.get("error"):
            future.set_exception(rpc_error_from(data["error"]))
        else:
            future.set_result(data.get("result"))

    async def _request(
        self,
        method: str,
        params: Optional[List[Any]] = None,
        timeout: float = 30.0,
    ) -> Any:
        """Send a JSON-RPC request and await the response."""
        if not self._ws:
            await self.connect()
        if self._receive_task is not None and self._receive_task.done():
            raise NodeConnectionError("WebSocket connection closed")

        request_id = next(self._ids)
        request = {
            "jsonrpc": "2.0",
            "id": request_id,
            "method": method,
            "params": params or [],
        }

        future = asyncio.get_running_loop().create_future()
        self._pending_requests[request_id] = future

        try:
            await self._ws.send(json.dumps(request))
            return await asyncio.wait_for(future, timeout=timeout)
        except asyncio.TimeoutError:
            self._pending_requests.pop(request_id, None)
            raise NodeConnectionError(f"RPC request timeout: {method}")
        except websockets.WebSocketException as e:
            self._pending_requests.pop(request_id, None)
            raise NodeConnectionError(f"RPC request failed: {e}")

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
        """Subscribe to newHeads and yield block numbers as they arrive."""
        subscription_id = await self._request("eth_subscribe", ["newHeads"])
        queue: asyncio.Queue = asyncio.Queue()
        self._subscriptions[subscription_id] = queue
        logger.info("block_subscription_started", subscription=subscription_id)

        try:
            while True:
                head = await queue.get()
                if head is _CLOSED:
                    raise NodeConnectionError("Block subscription closed")
                try:
                    number = parse_quantity(head["number"])
                except (KeyError, TypeError, ValueError) as e:
                    logger.warning("block_header_malformed", error=str(e))
                    continue
                yield number
        finally:
            self._subscriptions.pop(subscription_id, None)
            if self._ws is not None:
                try:
                    await self._request("eth_unsubscribe", [subscription_id], timeout=5.0)
                except NodeConnectionError as e:
                    logger.debug("block_unsubscribe_failed", error=str(e))
