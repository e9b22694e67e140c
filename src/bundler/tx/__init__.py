"""
Transaction module.

Handles bundle construction and signing identities.
"""

from bundler.tx.builder import BundleBuilder, BuildError
from bundler.tx.signer import SigningIdentity, SigningKeyError

__all__ = [
    "BundleBuilder",
    "BuildError",
    "SigningIdentity",
    "SigningKeyError",
]
