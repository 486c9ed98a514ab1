"""
Error taxonomy for the minter.

Every failure carries a FailureKind so callers can branch on the kind
instead of parsing message text. Messages never contain secrets.
"""

from enum import Enum
from typing import Optional


class FailureKind(str, Enum):
    """Closed set of failure kinds surfaced to callers."""
    INVALID_SEED = "invalid_seed"                 # Seed cannot be decoded into key material
    INVALID_REQUEST = "invalid_request"           # Missing or malformed request fields
    INVALID_SCRIPT = "invalid_script"             # Minting script template unusable
    NO_FUNDS = "no_funds"                         # Wallet has no spendable inputs
    INSUFFICIENT_FUNDS = "insufficient_funds"     # Inputs cannot cover outputs and fee
    ASSET_NOT_HELD = "asset_not_held"             # Wallet does not hold the asset
    METADATA_TOO_LARGE = "metadata_too_large"     # Metadata exceeds the size ceiling
    BUILD_FAILED = "build_failed"                 # Unexpected transaction construction error
    SUBMISSION_REJECTED = "submission_rejected"   # Ledger rejected after all attempts
    NETWORK = "network"                           # Provider unreachable after all attempts
    CANCELLED = "cancelled"                       # Stopped by an external cancellation signal


class MinterError(Exception):
    """Base class for all minter errors."""

    kind: FailureKind = FailureKind.BUILD_FAILED

    def __init__(self, reason: str, kind: Optional[FailureKind] = None):
        super().__init__(reason)
        self.reason = reason
        if kind is not None:
            self.kind = kind


class InvalidSeedError(MinterError):
    """Raised when a seed phrase cannot be turned into a signing key."""
    kind = FailureKind.INVALID_SEED


class InvalidRequestError(MinterError):
    """Raised for missing or malformed request fields."""
    kind = FailureKind.INVALID_REQUEST


class InvalidScriptError(MinterError):
    """Raised when the minting script template cannot be parameterized."""
    kind = FailureKind.INVALID_SCRIPT


class NoFundsAvailable(MinterError):
    """Raised when the wallet has no spendable inputs at all."""
    kind = FailureKind.NO_FUNDS


class InsufficientFunds(MinterError):
    """Raised when the selected inputs cannot cover minimum outputs plus fee."""
    kind = FailureKind.INSUFFICIENT_FUNDS

    def __init__(self, reason: str, required: int = 0, available: int = 0):
        super().__init__(reason)
        self.required = required
        self.available = available


class AssetNotHeld(MinterError):
    """Raised when no wallet input carries the requested asset."""
    kind = FailureKind.ASSET_NOT_HELD

    def __init__(self, asset_unit: str):
        super().__init__(f"Wallet holds no input carrying asset {asset_unit}")
        self.asset_unit = asset_unit


class MetadataTooLarge(MinterError):
    """Raised when serialized metadata exceeds the configured ceiling."""
    kind = FailureKind.METADATA_TOO_LARGE

    def __init__(self, size: int, limit: int):
        super().__init__(f"Metadata is {size} bytes, limit is {limit} bytes")
        self.size = size
        self.limit = limit


class TransactionBuildError(MinterError):
    """Raised when transaction construction fails unexpectedly."""
    kind = FailureKind.BUILD_FAILED
