"""
Abstract interface for chain node integration.

Defines the contract for blockchain access that all node adapters must implement.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional


@dataclass(frozen=True)
class BlockHeader:
    """Subset of a block header needed for fee computation."""
    number: int
    base_fee_per_gas: Optional[int]    # None before EIP-1559 activation


@dataclass(frozen=True)
class ChainParameters:
    """Chain parameters in force at a given block."""
    chain_id: int
    base_fee_per_gas: int


def parse_quantity(value: Any) -> int:
    """Decode a JSON-RPC quantity (0x-hex string or integer)."""
    if isinstance(value, bool):
        raise ValueError(f"Invalid quantity: {value!r}")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        return int(value, 16) if value.startswith(("0x", "0X")) else int(value)
    raise ValueError(f"Invalid quantity: {value!r}")


def parse_block_header(data: dict) -> BlockHeader:
    """Build a BlockHeader from an eth_getBlockByNumber result."""
    base_fee = data.get("baseFeePerGas")
    return BlockHeader(
        number=parse_quantity(data["number"]),
        base_fee_per_gas=parse_quantity(base_fee) if base_fee is not None else None,
    )


class ChainReader(ABC):
    """
    Abstract interface for chain node access.

    This interface defines all blockchain operations needed by the bundler:
    - Block and fee queries
    - Balance and nonce queries
    - Receipt lookups for inclusion checks
    - New block notifications
    """

    @abstractmethod
    async def connect(self) -> None:
        """
        Establish connection to the node.

        Raises:
            NodeConnectionError: If connection cannot be established
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close connection to the node."""
        pass

    @abstractmethod
    async def get_block_number(self) -> int:
        """Get the number of the most recent block."""
        pass

    @abstractmethod
    async def get_block(self, number: int) -> BlockHeader:
        """
        Get a block header by number.

        Args:
            number: Block height

        Returns:
            Header of the block

        Raises:
            NodeConnectionError: If the block is unknown or the request fails
        """
        pass

    @abstractmethod
    async def get_balance(self, address: str) -> int:
        """
        Get the native balance of an account at the latest block.

        Args:
            address: Account address

        Returns:
            Balance in wei
        """
        pass

    @abstractmethod
    async def get_transaction_count(self, address: str) -> int:
        """Get the confirmed nonce of an account at the latest block."""
        pass

    @abstractmethod
    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        """
        Get a transaction receipt.

        Returns:
            The receipt if the transaction is mined, None otherwise
        """
        pass

    @abstractmethod
    def subscribe_new_blocks(self) -> AsyncIterator[int]:
        """
        Iterate over new block numbers as they are produced.

        Numbers are yielded in arrival order. The iterator runs until
        the consumer stops iterating or the connection fails.
        """
        pass


class NodeConnectionError(Exception):
    """Raised when communication with the node fails."""
    pass


class RpcError(NodeConnectionError):
    """Raised when the node answers with a JSON-RPC error object."""

    def __init__(self, message: str, code: Optional[int] = None):
        super().__init__(message)
        self.code = code


def result_quantity(method: str, value: Any) -> int:
    """
    Decode the quantity returned by an RPC method.

    Raises:
        NodeConnectionError: If the node answered with a malformed value
    """
    try:
        return parse_quantity(value)
    except ValueError as e:
        raise NodeConnectionError(f"Malformed {method} result: {value!r:.100}") from e


def result_block_header(number: int, data: Any) -> BlockHeader:
    """
    Decode an eth_getBlockByNumber result.

    Raises:
        NodeConnectionError: If the block is missing or malformed
    """
    if data is None:
        raise NodeConnectionError(f"Block {number} not found")
    try:
        return parse_block_header(data)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise NodeConnectionError(f"Malformed block {number}: {e}") from e


def rpc_error_from(error: Any) -> RpcError:
    """Build an RpcError from a JSON-RPC error member of any shape."""
    if isinstance(error, dict):
        return RpcError(str(error.get("message", "Unknown error")), error.get("code"))
    return RpcError(str(error))
