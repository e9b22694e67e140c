"""
Submission outcome model.

Result of one broadcast cycle, as classified by the relay broadcaster.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class OutcomeStatus(str, Enum):
    """Resolution of a bundle submission."""
    INCLUDED = "included"                  # Bundle transactions landed on-chain
    NOT_INCLUDED = "not_included"          # Target block passed without the bundle
    SIMULATION_FAILED = "simulation_failed"  # Not sent, simulation rejected the bundle
    TRANSPORT_ERROR = "transport_error"    # Primary relay rejected or was unreachable


@dataclass(frozen=True)
class SubmissionOutcome:
    """
    Outcome of one bundle submission.

    Attributes:
        status: Resolution of the submission
        target_block: Block the bundle was submitted for
        bundle_hash: Hash returned by the primary relay, if any
        detail: Error description for failed outcomes
    """

    status: OutcomeStatus
    target_block: int
    bundle_hash: Optional[str] = None
    detail: Optional[str] = None

    @classmethod
    def included(cls, target_block: int, bundle_hash: Optional[str] = None) -> "SubmissionOutcome":
        return cls(OutcomeStatus.INCLUDED, target_block, bundle_hash)

    @classmethod
    def not_included(cls, target_block: int, bundle_hash: Optional[str] = None) -> "SubmissionOutcome":
        return cls(OutcomeStatus.NOT_INCLUDED, target_block, bundle_hash)

    @classmethod
    def simulation_failed(cls, target_block: int, detail: str) -> "SubmissionOutcome":
        return cls(OutcomeStatus.SIMULATION_FAILED, target_block, detail=detail)

    @classmethod
    def transport_error(cls, target_block: int, detail: str) -> "SubmissionOutcome":
        return cls(OutcomeStatus.TRANSPORT_ERROR, target_block, detail=detail)

    @property
    def is_included(self) -> bool:
        return self.status == OutcomeStatus.INCLUDED

    def to_dict(self) -> dict:
        return {
            "status": self.status.value,
            "target_block": self.target_block,
            "bundle_hash": self.bundle_hash,
            "detail": self.detail,
        }
