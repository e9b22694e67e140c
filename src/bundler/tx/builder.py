"""
Bundle Builder - constructs the funding/claim/transfer bundle.

Combines the gas estimate, the block's base fee and the execution
wallet's balance into three fully priced transactions.
"""

from typing import List, Optional

import structlog
from eth_abi import encode
from web3 import Web3

from bundler.config import BundlerConfig, get_config
from bundler.core.bundle import Bundle, BundleStep, GasEstimate, StepRole
from bundler.gas.estimator import EstimationError, GasEstimator
from bundler.node.interface import ChainParameters, ChainReader, NodeConnectionError
from bundler.tx.signer import SigningIdentity

logger = structlog.get_logger(__name__)

TRANSFER_SELECTOR = Web3.keccak(text="transfer(address,uint256)")[:4]


class BuildError(Exception):
    """Raised when a bundle cannot be built; the cause is chained."""
    pass


def encode_transfer(recipient: str, amount: int) -> bytes:
    """Encode an ERC-20 transfer(address,uint256) call."""
    return bytes(TRANSFER_SELECTOR) + encode(
        ["address", "uint256"],
        [Web3.to_checksum_address(recipient), amount],
    )


def compute_funding_value(gas_limit_total: int, max_fee_per_gas: int, balance: int) -> int:
    """
    Amount the safe wallet must send so the execution wallet can pay its gas.

    Returns max(0, gas_limit_total * max_fee_per_gas - balance).
    """
    required_fee = gas_limit_total * max_fee_per_gas
    return max(0, required_fee - balance)


class BundleBuilder:
    """
    Builds priced bundles for a given block.

    Usage:
        ```python
        builder = BundleBuilder(node, estimator, safe, execution)
        bundle = await builder.build(block_number, payload, amount)
        ```
    """

    def __init__(
        self,
        node: ChainReader,
        estimator: GasEstimator,
        safe: SigningIdentity,
        execution: SigningIdentity,
        config: Optional[BundlerConfig] = None,
    ):
        """
        Initialize the bundle builder.

        Args:
            node: Chain reader for fees and balances
            estimator: Gas estimator for the claim and transfer steps
            safe: Identity funding the execution wallet and receiving tokens
            execution: Identity performing the claim and transfer
            config: Bundler configuration
        """
        self.node = node
        self.estimator = estimator
        self.safe = safe
        self.execution = execution
        self.config = config or get_config()

        if not self.config.claim_contract_address or not self.config.token_contract_address:
            raise ValueError("Claim and token contract addresses must be configured")

        self.claim_contract = Web3.to_checksum_address(self.config.claim_contract_address)
        self.token_contract = Web3.to_checksum_address(self.config.token_contract_address)

    def draft_steps(self, payload: bytes, transfer_amount: int) -> List[dict]:
        """
        Build the unpriced draft bundle sent for gas estimation.

        The funding step carries a nominal value so the simulated execution
        wallet can pay for the following calls.
        """
        return [
            {
                "from": self.safe.address,
                "to": self.execution.address,
                "data": "0x",
                "value": hex(self.config.estimate_funding_value),
            },
            {
                "from": self.execution.address,
                "to": self.claim_contract,
                "data": Web3.to_hex(payload),
            },
            {
                "from": self.execution.address,
                "to": self.token_contract,
                "data": Web3.to_hex(encode_transfer(self.safe.address, transfer_amount)),
            },
        ]

    async def get_chain_parameters(self, block_number: int) -> ChainParameters:
        """Fetch the base fee of a block."""
        header = await self.node.get_block(block_number)
        if header.base_fee_per_gas is None:
            raise BuildError(f"Block {block_number} has no base fee")
        return ChainParameters(
            chain_id=self.config.chain_id,
            base_fee_per_gas=header.base_fee_per_gas,
        )

    def fee_caps(self, params: ChainParameters) -> tuple:
        """
        Get (max_fee_per_gas, max_priority_fee_per_gas).

        Without a configured tip both caps equal the base fee.
        """
        tip = self.config.priority_fee_per_gas
        if tip is None:
            return params.base_fee_per_gas, params.base_fee_per_gas
        return params.base_fee_per_gas + tip, tip

    async def build(self, block_number: int, payload: bytes, transfer_amount: int) -> Bundle:
        """
        Build the bundle for a block.

        Args:
            block_number: Block whose base fee prices the bundle
            payload: Calldata of the claim call
            transfer_amount: Tokens forwarded to the safe wallet

        Returns:
            Bundle of funding, claim and transfer steps

        Raises:
            BuildError: If estimation, fee or balance lookups fail
        """
        logger.info("building_bundle", block=block_number)

        try:
            estimate = await self.estimator.estimate(
                self.draft_steps(payload, transfer_amount),
                block_number,
            )
            params = await self.get_chain_parameters(block_number)
            balance = await self.node.get_balance(self.execution.address)
        except BuildError:
            raise
        except (EstimationError, NodeConnectionError) as e:
            logger.error("bundle_build_failed", block=block_number, error=str(e))
            raise BuildError(f"Failed to build bundle for block {block_number}: {e}") from e

        try:
            bundle = self._assemble(block_number, payload, transfer_amount, estimate, params, balance)
        except (KeyError, ValueError) as e:
            raise BuildError(f"Invalid bundle for block {block_number}: {e}") from e

        logger.info(
            "bundle_built",
            block=block_number,
            gas_limit_total=bundle.gas_limit_total,
            max_fee_per_gas=bundle.claim.max_fee_per_gas,
            balance=balance,
            funding_value=bundle.funding.value,
        )
        return bundle

    def _assemble(
        self,
        block_number: int,
        payload: bytes,
        transfer_amount: int,
        estimate: GasEstimate,
        params: ChainParameters,
        balance: int,
    ) -> Bundle:
        """Price the three steps."""
        max_fee, priority_fee = self.fee_caps(params)
        funding_value = compute_funding_value(estimate.total, max_fee, balance)

        def step(role, sender, recipient, value, data, gas_limit):
            return BundleStep(
                role=role,
                sender=sender,
                recipient=recipient,
                value=value,
                payload=data,
                gas_limit=gas_limit,
                max_fee_per_gas=max_fee,
                max_priority_fee_per_gas=priority_fee,
                chain_id=params.chain_id,
            )

        return Bundle(
            funding=step(
                StepRole.FUNDING,
                self.safe,
                self.execution.address,
                funding_value,
                b"",
                self.config.funding_gas_limit,
            ),
            claim=step(
                StepRole.CLAIM,
                self.execution,
                self.claim_contract,
                0,
                payload,
                estimate.claim_gas,
            ),
            transfer=step(
                StepRole.TRANSFER,
                self.execution,
                self.token_contract,
                0,
                encode_transfer(self.safe.address, transfer_amount),
                estimate.transfer_gas,
            ),
            block_number=block_number,
        )
