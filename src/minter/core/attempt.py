"""
Transaction attempt model.

Tracks one signed transaction through submission.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pycardano import Transaction


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AttemptState(str, Enum):
    """State of a submission attempt."""
    BUILT = "built"                           # Transaction body assembled
    SIGNED = "signed"                         # Wallet witness attached
    SUBMITTED = "submitted"                   # Submission in flight
    CONFIRMED = "confirmed"                   # Ledger accepted the transaction
    REJECTED_CONFLICT = "rejected_conflict"   # Inputs already spent (indexer lag)
    REJECTED_OTHER = "rejected_other"         # Any other ledger rejection
    NETWORK_FAILURE = "network_failure"       # Provider unreachable or timed out
    OUTCOME_UNKNOWN = "outcome_unknown"       # Cancelled while in flight


class FailureClass(str, Enum):
    """Classification of the last failed submission."""
    CONFLICT = "conflict"
    REJECTED = "rejected"
    NETWORK = "network"


TERMINAL_STATES = frozenset({
    AttemptState.CONFIRMED,
    AttemptState.REJECTED_CONFLICT,
    AttemptState.OUTCOME_UNKNOWN,
})


@dataclass
class TransactionAttempt:
    """
    One signed transaction and its submission history.

    Attributes:
        transaction: The signed transaction
        state: Current state
        attempts: Number of submission calls made
        last_failure: Classification of the last failure, if any
        last_reason: Human readable reason of the last failure
        transaction_id: Ledger transaction id once accepted
    """

    transaction: Transaction
    state: AttemptState = AttemptState.SIGNED
    attempts: int = 0
    last_failure: Optional[FailureClass] = None
    last_reason: Optional[str] = None
    transaction_id: Optional[str] = None
    created_at: datetime = field(default_factory=_now)
    updated_at: datetime = field(default_factory=_now)

    @property
    def local_id(self) -> str:
        """Transaction id computed from the body."""
        return self.transaction.transaction_body.hash().hex()

    def mark_submitted(self) -> None:
        """Record a submission call."""
        self.state = AttemptState.SUBMITTED
        self.attempts += 1
        self.updated_at = _now()

    def mark_confirmed(self, transaction_id: str) -> None:
        self.state = AttemptState.CONFIRMED
        self.transaction_id = transaction_id
        self.updated_at = _now()

    def mark_conflict(self, reason: str) -> None:
        self.state = AttemptState.REJECTED_CONFLICT
        self.last_failure = FailureClass.CONFLICT
        self.last_reason = reason
        self.updated_at = _now()

    def mark_rejected(self, reason: str) -> None:
        self.state = AttemptState.REJECTED_OTHER
        self.last_failure = FailureClass.REJECTED
        self.last_reason = reason
        self.updated_at = _now()

    def mark_network_failure(self, reason: str) -> None:
        self.state = AttemptState.NETWORK_FAILURE
        self.last_failure = FailureClass.NETWORK
        self.last_reason = reason
        self.updated_at = _now()

    def mark_unknown(self) -> None:
        """Cancelled while a submission was in flight."""
        self.state = AttemptState.OUTCOME_UNKNOWN
        self.updated_at = _now()

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def can_retry(self, max_attempts: int) -> bool:
        """
        Only confirmed rejections and network failures may be retried,
        and only while attempts remain.
        """
        return (
            self.state in (AttemptState.REJECTED_OTHER, AttemptState.NETWORK_FAILURE)
            and self.attempts < max_attempts
        )
