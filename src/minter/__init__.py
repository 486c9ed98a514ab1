"""
Coffee Batch Minter

Issues coffee batch tokens on Cardano from a single custodial wallet and
records each batch's status history as metadata-carrying self transfers.
"""

__version__ = "0.1.0"

from minter.core.results import PermanentFailure, RetryLater, Success
from minter.core.service import TokenService
from minter.core.session import WalletSession

__all__ = [
    "TokenService",
    "WalletSession",
    "Success",
    "RetryLater",
    "PermanentFailure",
]
