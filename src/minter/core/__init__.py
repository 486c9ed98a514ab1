"""
Core minter components.

Result types, error taxonomy, submission attempts, the wallet session and
the token service orchestrating mint and status update requests.
"""

from minter.core.errors import FailureKind, MinterError
from minter.core.results import MintResult, PermanentFailure, RetryLater, StatusRecord, Success
from minter.core.session import WalletSession
from minter.core.service import TokenService

__all__ = [
    "FailureKind",
    "MinterError",
    "MintResult",
    "PermanentFailure",
    "RetryLater",
    "StatusRecord",
    "Success",
    "WalletSession",
    "TokenService",
]
