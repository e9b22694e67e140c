"""
Private Bundle Relayer

Builds an ordered funding/claim/transfer bundle every block and submits it
to private relays until it is included on-chain, keeping the transactions
out of the public mempool.
"""

__version__ = "0.1.0"

from bundler.core.bundle import Bundle, BundleStep
from bundler.core.outcome import OutcomeStatus, SubmissionOutcome
from bundler.core.orchestrator import Orchestrator, OrchestratorState

__all__ = [
    "Orchestrator",
    "OrchestratorState",
    "Bundle",
    "BundleStep",
    "OutcomeStatus",
    "SubmissionOutcome",
]
