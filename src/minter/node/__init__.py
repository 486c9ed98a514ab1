"""
Ledger Gateway Layer.

Provides abstracted access to Cardano ledger data and transaction submission.
"""

from minter.node.interface import (
    AssetTransaction,
    LedgerGateway,
    NetworkError,
    ProtocolParameters,
    RejectionKind,
    SubmissionRejected,
)
from minter.node.blockfrost import BlockfrostGateway

__all__ = [
    "AssetTransaction",
    "LedgerGateway",
    "NetworkError",
    "ProtocolParameters",
    "RejectionKind",
    "SubmissionRejected",
    "BlockfrostGateway",
]
