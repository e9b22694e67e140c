"""
Configuration management for the bundle relayer.

Supports configuration via environment variables and .env files.
"""

from enum import Enum
from typing import List, Optional

from pydantic import Field, HttpUrl, SecretStr, TypeAdapter, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class NodeProvider(str, Enum):
    """Supported transports for chain RPC access."""
    HTTP = "http"
    WEBSOCKET = "websocket"


DEFAULT_RELAYERS = [
    "https://rpc.titanbuilder.xyz",
    "https://mevshare-rpc.beaverbuild.org",
    "https://rsync-builder.xyz",
]

_HTTP_URL = TypeAdapter(HttpUrl)


class BundlerConfig(BaseSettings):
    """
    Configuration settings for the bundle relayer.

    All settings can be configured via environment variables with the BUNDLER_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="BUNDLER_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Chain settings
    chain_id: int = Field(
        default=1,
        description="Chain ID used in every bundle transaction"
    )
    rpc_url: str = Field(
        default="https://ethereum-rpc.publicnode.com/",
        description="HTTP JSON-RPC endpoint of the chain node"
    )
    ws_url: Optional[str] = Field(
        default=None,
        description="WebSocket JSON-RPC endpoint (required for the websocket provider)"
    )
    node_provider: NodeProvider = Field(
        default=NodeProvider.HTTP,
        description="Transport used for chain access"
    )
    block_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Polling interval for new blocks with the HTTP provider"
    )

    # Relay settings
    relayers: List[str] = Field(
        default_factory=lambda: list(DEFAULT_RELAYERS),
        description="Relay endpoints receiving fan-out copies of the bundle"
    )
    primary_relay_url: str = Field(
        default="https://relay.flashbots.net",
        description="Relay used for simulation and the awaited submission"
    )

    # Gas simulation service
    simulation_url: str = Field(
        default="https://mainnet.gateway.tenderly.co/API-KEY",
        description="JSON-RPC endpoint of the gas simulation service"
    )
    simulation_method: str = Field(
        default="tenderly_estimateGasBundle",
        description="RPC method estimating gas for a bundle"
    )

    # Contracts
    token_contract_address: Optional[str] = Field(
        default=None,
        description="ERC-20 token moved to the safe wallet by the transfer step"
    )
    claim_contract_address: Optional[str] = Field(
        default=None,
        description="Contract called by the claim step"
    )

    # Wallets
    safe_wallet_private_key: Optional[SecretStr] = Field(
        default=None,
        description="Private key of the safe wallet (funds gas, receives tokens)"
    )
    execution_wallet_private_key: Optional[SecretStr] = Field(
        default=None,
        description="Private key of the execution wallet (claims and transfers)"
    )

    # Bundle contents
    claim_payload: str = Field(
        default="0x",
        description="Hex calldata of the claim call"
    )
    transfer_amount: int = Field(
        default=0,
        ge=0,
        description="Token amount (smallest unit) transferred to the safe wallet"
    )
    token_decimals: int = Field(
        default=18,
        ge=0,
        description="Decimals used to convert CLI token amounts"
    )

    # Gas and fee parameters
    gas_cache_window_blocks: int = Field(
        default=20,
        ge=1,
        description="Number of blocks a gas estimate stays reusable"
    )
    funding_gas_limit: int = Field(
        default=21000,
        ge=21000,
        description="Gas limit of the funding transfer"
    )
    estimate_funding_value: int = Field(
        default=10**16,
        ge=0,
        description="Value of the funding step in the draft sent for estimation"
    )
    priority_fee_per_gas: Optional[int] = Field(
        default=None,
        ge=0,
        description="Priority tip per gas; base fee is used for both fee fields when unset"
    )

    # Broadcast behavior
    abort_on_simulation_failure: bool = Field(
        default=False,
        description="Skip sending when the relay simulation reports an error"
    )
    inclusion_timeout_seconds: float = Field(
        default=36.0,
        gt=0,
        description="Maximum time to wait for the target block before giving up"
    )
    inclusion_poll_interval_seconds: float = Field(
        default=1.0,
        gt=0,
        description="Polling interval while waiting for inclusion"
    )
    http_timeout_seconds: float = Field(
        default=10.0,
        gt=0,
        description="Timeout for relay, simulation and RPC HTTP requests"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @field_validator("rpc_url", "primary_relay_url", "simulation_url", "relayers")
    @classmethod
    def _check_endpoints(cls, v):
        for url in v if isinstance(v, list) else [v]:
            try:
                _HTTP_URL.validate_python(url)
            except ValidationError:
                raise ValueError(f"Invalid HTTP endpoint URL: {url}")
        return v

    @property
    def claim_payload_bytes(self) -> bytes:
        """Decode the claim payload from hex."""
        payload = self.claim_payload
        if payload.startswith(("0x", "0X")):
            payload = payload[2:]
        return bytes.fromhex(payload)


# Global config instance
_config: Optional[BundlerConfig] = None


def get_config() -> BundlerConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = BundlerConfig()
    return _config


def set_config(config: BundlerConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
