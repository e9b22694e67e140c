"""
Node Integration Layer.

Provides abstracted access to chain data: blocks, balances, nonces,
receipts and new block notifications. Supports HTTP and WebSocket backends.
"""

from bundler.node.interface import ChainReader, BlockHeader, ChainParameters, NodeConnectionError
from bundler.node.http import HttpRpcAdapter
from bundler.node.websocket import WebSocketRpcAdapter

__all__ = [
    "ChainReader",
    "BlockHeader",
    "ChainParameters",
    "NodeConnectionError",
    "HttpRpcAdapter",
    "WebSocketRpcAdapter",
]
