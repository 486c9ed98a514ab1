"""
Terminal results returned by the token service.

A request ends in exactly one of Success, RetryLater or PermanentFailure.
"""

from dataclasses import dataclass
from typing import Optional, Union

from minter.core.errors import FailureKind


@dataclass(frozen=True)
class Success:
    """Transaction accepted by the ledger."""
    transaction_id: str
    unit: str
    policy_id: str
    attempts: int = 1

    @property
    def ok(self) -> bool:
        return True

    def to_dict(self) -> dict:
        return {
            "status": "success",
            "txHash": self.transaction_id,
            "unit": self.unit,
            "policyId": self.policy_id,
        }


@dataclass(frozen=True)
class RetryLater:
    """
    Inputs conflicted with a transaction the indexer has not caught up with.

    The caller should wait and re-request so fresh inputs are queried.
    """
    suggested_wait_ms: int
    reason: str = ""

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "status": "retry_later",
            "suggestedWaitMs": self.suggested_wait_ms,
            "reason": self.reason,
        }


@dataclass(frozen=True)
class PermanentFailure:
    """Request failed; retrying without external change will not help."""
    kind: FailureKind
    reason: str
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return False

    def to_dict(self) -> dict:
        return {
            "status": "failed",
            "kind": self.kind.value,
            "reason": self.reason,
        }


MintResult = Union[Success, RetryLater, PermanentFailure]


@dataclass(frozen=True)
class StatusRecord:
    """One status update read back from the chain, in chain order."""
    transaction_id: str
    block_height: Optional[int]
    block_time: Optional[int]
    status: Optional[str]
    description: str = ""
    note: str = ""
    timestamp: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "txHash": self.transaction_id,
            "blockHeight": self.block_height,
            "blockTime": self.block_time,
            "status": self.status,
            "description": self.description,
            "note": self.note,
            "timestamp": self.timestamp,
        }
