"""
Signing identities - handle transaction and message signing.

Wraps local eth_account keys. Two configured identities take part in a
bundle: the safe wallet (funds gas, receives proceeds, authenticates relay
submissions) and the execution wallet (performs the claim and transfer).
"""

from dataclasses import dataclass
from typing import Optional

import structlog
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_account.signers.local import LocalAccount
from web3 import Web3

from bundler.config import BundlerConfig, get_config

logger = structlog.get_logger(__name__)


class SigningKeyError(Exception):
    """Raised when a signing key is missing or invalid."""
    pass


@dataclass(frozen=True)
class SignedTransaction:
    """A signed transaction ready for relay submission."""
    raw: str        # 0x-prefixed RLP
    tx_hash: str    # 0x-prefixed hash
    sender: str
    nonce: int


class SigningIdentity:
    """
    An address plus the ability to sign for it.

    Security note: keys live in process memory. In production, consider
    a remote signer or KMS-backed account.
    """

    def __init__(self, account: LocalAccount, label: str = ""):
        self._account = account
        self.label = label

    @classmethod
    def from_key(cls, private_key: str, label: str = "") -> "SigningIdentity":
        """
        Load an identity from a hex private key.

        Raises:
            SigningKeyError: If the key cannot be parsed
        """
        try:
            account = Account.from_key(private_key)
        except Exception as e:
            raise SigningKeyError(f"Invalid private key for {label or 'identity'}: {e}")

        logger.info("signing_key_loaded", label=label, address=account.address)
        return cls(account, label)

    @classmethod
    def generate(cls, label: str = "ephemeral") -> "SigningIdentity":
        """Create a throwaway identity with a random key."""
        return cls(Account.create(), label)

    @property
    def address(self) -> str:
        """Checksummed address of the identity."""
        return self._account.address

    def sign_transaction(self, tx: dict) -> SignedTransaction:
        """
        Sign a transaction dictionary.

        Args:
            tx: Transaction fields, including nonce and chainId

        Returns:
            Signed transaction with raw bytes and hash as hex
        """
        signed = self._account.sign_transaction(tx)
        return SignedTransaction(
            raw=Web3.to_hex(signed.raw_transaction),
            tx_hash=Web3.to_hex(signed.hash),
            sender=self.address,
            nonce=tx["nonce"],
        )

    def sign_message(self, text: str) -> str:
        """Sign text as an EIP-191 personal message; returns the 0x-hex signature."""
        signed = self._account.sign_message(encode_defunct(text=text))
        return Web3.to_hex(signed.signature)

    def __repr__(self) -> str:
        return f"SigningIdentity(label={self.label!r}, address={self.address})"


def load_identity(key: Optional[str], label: str) -> SigningIdentity:
    """Load an identity, failing if the key is absent."""
    if not key:
        raise SigningKeyError(f"No private key configured for the {label} wallet")
    return SigningIdentity.from_key(key, label=label)


def load_identities(config: Optional[BundlerConfig] = None) -> tuple:
    """
    Load the safe and execution identities from configuration.

    Returns:
        (safe_identity, execution_identity)

    Raises:
        SigningKeyError: If either key is missing or invalid
    """
    config = config or get_config()
    safe_key = config.safe_wallet_private_key
    exec_key = config.execution_wallet_private_key

    safe = load_identity(safe_key.get_secret_value() if safe_key else None, "safe")
    execution = load_identity(exec_key.get_secret_value() if exec_key else None, "execution")

    if safe.address == execution.address:
        raise SigningKeyError("Safe and execution wallets must be different accounts")

    return safe, execution
