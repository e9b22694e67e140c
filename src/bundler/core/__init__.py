"""
Core bundler components.

This module contains the bundle and outcome models, the block watcher
and the orchestrator state machine.
"""

from bundler.core.bundle import Bundle, BundleStep, GasEstimate, GasEstimateEntry, StepRole
from bundler.core.outcome import OutcomeStatus, SubmissionOutcome

__all__ = [
    "Bundle",
    "BundleStep",
    "GasEstimate",
    "GasEstimateEntry",
    "StepRole",
    "OutcomeStatus",
    "SubmissionOutcome",
]
