"""
Bundle model.

Represents the three ordered transactions submitted together to a relay,
and the gas estimate they are built from.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Iterator, Optional, Tuple

if TYPE_CHECKING:
    from bundler.tx.signer import SigningIdentity


class StepRole(str, Enum):
    """Position of a step inside a bundle."""
    FUNDING = "funding"      # Safe wallet tops up the execution wallet
    CLAIM = "claim"          # Execution wallet calls the claim contract
    TRANSFER = "transfer"    # Execution wallet forwards tokens to the safe wallet


BUNDLE_ORDER = (StepRole.FUNDING, StepRole.CLAIM, StepRole.TRANSFER)


@dataclass(frozen=True)
class GasEstimateEntry:
    """Estimated gas for one transaction of the draft bundle."""
    transaction_index: int
    gas_units: int

    def __post_init__(self):
        if self.gas_units < 0:
            raise ValueError(f"Negative gas estimate for transaction {self.transaction_index}")


@dataclass(frozen=True)
class GasEstimate:
    """
    Gas estimates for the estimated (non-funding) steps of a draft bundle.

    Entries are ordered by transaction index: the claim step (index 1)
    followed by the transfer step (index 2).
    """
    entries: Tuple[GasEstimateEntry, ...]

    def gas_for(self, transaction_index: int) -> int:
        """Get the estimated gas of a draft transaction by index."""
        for entry in self.entries:
            if entry.transaction_index == transaction_index:
                return entry.gas_units
        raise KeyError(f"No estimate for transaction {transaction_index}")

    @property
    def claim_gas(self) -> int:
        return self.gas_for(1)

    @property
    def transfer_gas(self) -> int:
        return self.gas_for(2)

    @property
    def total(self) -> int:
        """Combined gas of the estimated steps."""
        return sum(entry.gas_units for entry in self.entries)

    def __len__(self) -> int:
        return len(self.entries)


@dataclass(frozen=True)
class BundleStep:
    """
    One transaction of a bundle, before nonce assignment and signing.

    Attributes:
        role: Position of the step in the bundle
        sender: Identity signing the transaction
        recipient: Destination address
        value: Native value in wei
        payload: Calldata
        gas_limit: Gas limit
        max_fee_per_gas: EIP-1559 fee cap
        max_priority_fee_per_gas: EIP-1559 tip cap
        chain_id: Chain the transaction is valid on
    """

    role: StepRole
    sender: "SigningIdentity" = field(compare=False)
    recipient: str
    value: int
    payload: bytes
    gas_limit: int
    max_fee_per_gas: int
    max_priority_fee_per_gas: int
    chain_id: int

    def __post_init__(self):
        if self.value < 0:
            raise ValueError(f"{self.role.value} step has negative value")
        if self.gas_limit <= 0:
            raise ValueError(f"{self.role.value} step has no gas limit")

    @property
    def sender_address(self) -> str:
        return self.sender.address

    @property
    def max_fee(self) -> int:
        """Upper bound of the fee this step can pay."""
        return self.gas_limit * self.max_fee_per_gas

    def to_transaction(self, nonce: int) -> dict:
        """Build the EIP-1559 transaction dictionary for signing."""
        return {
            "type": 2,
            "chainId": self.chain_id,
            "nonce": nonce,
            "to": self.recipient,
            "value": self.value,
            "data": self.payload,
            "gas": self.gas_limit,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
        }

    def to_dict(self) -> dict:
        """Convert to dictionary for logging and display."""
        return {
            "role": self.role.value,
            "from": self.sender_address,
            "to": self.recipient,
            "value": self.value,
            "data": "0x" + self.payload.hex(),
            "gas_limit": self.gas_limit,
            "max_fee_per_gas": self.max_fee_per_gas,
            "max_priority_fee_per_gas": self.max_priority_fee_per_gas,
            "chain_id": self.chain_id,
        }


@dataclass(frozen=True)
class Bundle:
    """
    An ordered, all-or-nothing set of three transactions.

    The order is fixed by construction: funding, claim, transfer.
    """

    funding: BundleStep
    claim: BundleStep
    transfer: BundleStep
    block_number: Optional[int] = None

    def __post_init__(self):
        for step, role in zip(self.steps, BUNDLE_ORDER):
            if step.role != role:
                raise ValueError(f"Expected {role.value} step, got {step.role.value}")

    @property
    def steps(self) -> Tuple[BundleStep, BundleStep, BundleStep]:
        return (self.funding, self.claim, self.transfer)

    @property
    def gas_limit_total(self) -> int:
        """Gas of the claim and transfer steps."""
        return self.claim.gas_limit + self.transfer.gas_limit

    def __iter__(self) -> Iterator[BundleStep]:
        return iter(self.steps)

    def __len__(self) -> int:
        return len(self.steps)

    def to_dict(self) -> dict:
        """Convert to dictionary for serialization."""
        return {
            "block_number": self.block_number,
            "gas_limit_total": self.gas_limit_total,
            "steps": [step.to_dict() for step in self.steps],
        }

    def __repr__(self) -> str:
        return (
            f"Bundle(block={self.block_number}, funding={self.funding.value}, "
            f"gas={self.gas_limit_total})"
        )
