"""
Relay module.

Submits signed bundles to private relays and resolves their inclusion.
"""

from bundler.relay.client import RelayClient, RelayTransportError, SimulationResult
from bundler.relay.broadcaster import RelayBroadcaster, SignedBundle, SimulationAdvisoryError

__all__ = [
    "RelayClient",
    "RelayTransportError",
    "SimulationResult",
    "RelayBroadcaster",
    "SignedBundle",
    "SimulationAdvisoryError",
]
