"""
Pytest configuration and shared fixtures for the test suite.
"""

import asyncio
import json
from typing import Callable, Dict, List, Optional

import httpx
import pytest
from web3 import Web3

from bundler.config import BundlerConfig
from bundler.core.bundle import Bundle, BundleStep, GasEstimate, GasEstimateEntry, StepRole
from bundler.node.interface import BlockHeader, ChainReader, NodeConnectionError
from bundler.tx.signer import SigningIdentity


SAFE_KEY = "0x" + "11" * 32
EXECUTION_KEY = "0x" + "22" * 32
CLAIM_CONTRACT = "0x" + "c1" * 20
TOKEN_CONTRACT = "0x" + "70" * 20

RELAY_URLS = [
    "https://relay-a.test",
    "https://relay-b.test",
    "https://relay-c.test",
]
PRIMARY_RELAY_URL = "https://primary.test"
SIMULATION_URL = "https://simulation.test/estimate"


# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def test_config() -> BundlerConfig:
    """Create a test configuration."""
    return BundlerConfig(
        chain_id=1,
        rpc_url="https://node.test",
        relayers=list(RELAY_URLS),
        primary_relay_url=PRIMARY_RELAY_URL,
        simulation_url=SIMULATION_URL,
        claim_contract_address=CLAIM_CONTRACT,
        token_contract_address=TOKEN_CONTRACT,
        safe_wallet_private_key=SAFE_KEY,
        execution_wallet_private_key=EXECUTION_KEY,
        claim_payload="0x1234abcd",
        transfer_amount=2_677_500_000_000_000_000_000,
        inclusion_timeout_seconds=0.2,
        inclusion_poll_interval_seconds=0.01,
        block_poll_interval_seconds=0.01,
        log_level="DEBUG",
    )


# ============================================================================
# Identity Fixtures
# ============================================================================

@pytest.fixture
def safe_identity() -> SigningIdentity:
    return SigningIdentity.from_key(SAFE_KEY, label="safe")


@pytest.fixture
def execution_identity() -> SigningIdentity:
    return SigningIdentity.from_key(EXECUTION_KEY, label="execution")


# ============================================================================
# Test Data Generators
# ============================================================================

def make_estimate(claim_gas: int = 150_000, transfer_gas: int = 50_000) -> GasEstimate:
    """Create a gas estimate for the claim and transfer steps."""
    return GasEstimate(entries=(
        GasEstimateEntry(transaction_index=1, gas_units=claim_gas),
        GasEstimateEntry(transaction_index=2, gas_units=transfer_gas),
    ))


def estimate_response(claim_gas: int = 150_000, transfer_gas: int = 50_000) -> dict:
    """JSON-RPC body returned by the simulation service."""
    return {
        "jsonrpc": "2.0",
        "id": 0,
        "result": [
            {"gas": hex(21_000), "gasUsed": hex(21_000)},
            {"gas": hex(claim_gas), "gasUsed": hex(claim_gas - 10_000)},
            {"gas": hex(transfer_gas), "gasUsed": hex(transfer_gas - 5_000)},
        ],
    }


def make_bundle(
    safe: SigningIdentity,
    execution: SigningIdentity,
    funding_value: int = 1_000_000,
    fee: int = 10,
    block_number: int = 100,
) -> Bundle:
    """Create a priced bundle directly, bypassing the builder."""
    def step(role, sender, recipient, value, payload, gas):
        return BundleStep(
            role=role,
            sender=sender,
            recipient=recipient,
            value=value,
            payload=payload,
            gas_limit=gas,
            max_fee_per_gas=fee,
            max_priority_fee_per_gas=fee,
            chain_id=1,
        )

    return Bundle(
        funding=step(StepRole.FUNDING, safe, execution.address, funding_value, b"", 21_000),
        claim=step(
            StepRole.CLAIM, execution, Web3.to_checksum_address(CLAIM_CONTRACT),
            0, bytes.fromhex("1234abcd"), 150_000,
        ),
        transfer=step(
            StepRole.TRANSFER, execution, Web3.to_checksum_address(TOKEN_CONTRACT),
            0, b"\xa9\x05\x9c\xbb", 50_000,
        ),
        block_number=block_number,
    )


@pytest.fixture
def sample_bundle(safe_identity, execution_identity) -> Bundle:
    return make_bundle(safe_identity, execution_identity)


# ============================================================================
# Mock Chain Reader
# ============================================================================

class MockChainReader(ChainReader):
    """Mock chain reader for testing."""

    def __init__(self, head: int = 100, base_fee: int = 10):
        self.head = head
        self.base_fee = base_fee
        self.blocks: Dict[int, BlockHeader] = {}
        self.balances: Dict[str, int] = {}
        self.nonces: Dict[str, int] = {}
        self.receipts: Dict[str, dict] = {}
        self.block_stream: List[int] = []
        self.block_interval = 0.01
        self.fail_balance = False
        self._connected = False

    async def connect(self) -> None:
        self._connected = True

    async def disconnect(self) -> None:
        self._connected = False

    async def get_block_number(self) -> int:
        return self.head

    async def get_block(self, number: int) -> BlockHeader:
        return self.blocks.get(number, BlockHeader(number=number, base_fee_per_gas=self.base_fee))

    async def get_balance(self, address: str) -> int:
        if self.fail_balance:
            raise NodeConnectionError("balance lookup failed")
        return self.balances.get(address, 0)

    async def get_transaction_count(self, address: str) -> int:
        return self.nonces.get(address, 0)

    async def get_transaction_receipt(self, tx_hash: str) -> Optional[dict]:
        return self.receipts.get(tx_hash)

    async def subscribe_new_blocks(self):
        for number in self.block_stream:
            self.head = max(self.head, number)
            yield number
            await asyncio.sleep(self.block_interval)


@pytest.fixture
def mock_node() -> MockChainReader:
    """Create a mock chain reader."""
    return MockChainReader()


# ============================================================================
# HTTP Service Fakes
# ============================================================================

class RecordingHandler:
    """
    httpx.MockTransport handler recording JSON-RPC calls per host.

    Routes are keyed by host; each route returns an httpx.Response or
    raises an httpx exception.
    """

    def __init__(self, routes: Dict[str, Callable[[httpx.Request, dict], httpx.Response]]):
        self.routes = routes
        self.calls: List[tuple] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.calls.append((request.url.host, body, request))
        return self.routes[request.url.host](request, body)

    def calls_to(self, host: str, method: Optional[str] = None) -> List[dict]:
        return [
            body for h, body, _ in self.calls
            if h == host and (method is None or body.get("method") == method)
        ]


def rpc_result(result) -> Callable[[httpx.Request, dict], httpx.Response]:
    """Route answering every call with the same result."""
    def route(request, body):
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body.get("id"), "result": result})
    return route


def rpc_error(message: str, code: int = -32000) -> Callable[[httpx.Request, dict], httpx.Response]:
    """Route answering every call with a JSON-RPC error."""
    def route(request, body):
        return httpx.Response(
            200,
            json={"jsonrpc": "2.0", "id": body.get("id"), "error": {"code": code, "message": message}},
        )
    return route


def connection_refused(request, body):
    raise httpx.ConnectError("connection refused", request=request)
