"""
Abstract interface for the ledger provider.

Defines the contract for blockchain access that all gateways must implement,
and the failure taxonomy decided at this boundary.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Optional

from pycardano import Transaction, UTxO


@dataclass
class ProtocolParameters:
    """Protocol parameters needed for fee and minimum output calculation."""
    min_fee_a: int                     # Fee coefficient (per byte)
    min_fee_b: int                     # Fee constant
    max_tx_size: int                   # Maximum transaction size in bytes
    coins_per_utxo_byte: int           # Min lovelace per UTXO byte
    collateral_percentage: int         # Collateral percentage for scripts
    price_mem: float                   # Plutus memory price
    price_step: float                  # Plutus step price
    cost_models: Dict[str, List[int]] = field(default_factory=dict)  # Raw cost models by language


@dataclass
class AssetTransaction:
    """A transaction that touched an asset, with its metadata by label."""
    transaction_id: str
    block_height: Optional[int]
    block_time: Optional[int]
    metadata: Dict[int, object] = field(default_factory=dict)


class RejectionKind(str, Enum):
    """Ledger-level rejection classes."""
    CONFLICT = "conflict"   # Input already spent or value not conserved
    OTHER = "other"


class NetworkError(Exception):
    """Raised for connectivity, timeout and provider failures."""
    pass


class SubmissionRejected(Exception):
    """Raised when the ledger rejects a transaction."""

    def __init__(self, reason: str, kind: RejectionKind = RejectionKind.OTHER):
        super().__init__(reason)
        self.reason = reason
        self.kind = kind

    @property
    def is_conflict(self) -> bool:
        return self.kind == RejectionKind.CONFLICT


class LedgerGateway(ABC):
    """
    Abstract gateway to the ledger provider.

    This is the only network boundary of the minter:
    - UTXO queries
    - Protocol parameters
    - Transaction submission
    - Confirmation and asset history lookups
    """

    async def __aenter__(self) -> "LedgerGateway":
        await self.connect()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.disconnect()

    @abstractmethod
    async def connect(self) -> None:
        """
        Prepare the connection to the provider.

        Raises:
            NetworkError: If the provider cannot be reached
        """
        pass

    @abstractmethod
    async def disconnect(self) -> None:
        """Close the connection to the provider."""
        pass

    @abstractmethod
    async def list_spendable_inputs(self, address: str) -> List[UTxO]:
        """
        Get the spendable inputs at an address.

        The result may lag behind recently submitted transactions.

        Args:
            address: Bech32 encoded address

        Returns:
            List of UTXOs at the address
        """
        pass

    @abstractmethod
    async def get_protocol_parameters(self) -> ProtocolParameters:
        """Get current protocol parameters."""
        pass

    @abstractmethod
    async def submit(self, tx: Transaction) -> str:
        """
        Submit a signed transaction.

        Args:
            tx: Signed transaction

        Returns:
            Transaction id

        Raises:
            SubmissionRejected: If the ledger rejects the transaction
            NetworkError: If the provider cannot be reached
        """
        pass

    @abstractmethod
    async def transaction_exists(self, tx_id: str) -> bool:
        """
        Check whether the provider has seen a transaction, in a block or in its mempool.

        Raises:
            NetworkError: If the provider cannot be reached
        """
        pass

    @abstractmethod
    async def await_confirmation(self, tx_id: str, timeout_seconds: int = 180) -> bool:
        """
        Wait until a transaction is included in a block.

        Returns:
            True if included within the timeout
        """
        pass

    @abstractmethod
    async def get_asset_history(self, unit: str) -> List[AssetTransaction]:
        """
        Get the transactions that moved an asset, oldest first.

        Args:
            unit: Policy id concatenated with the hex asset name
        """
        pass


def split_unit(unit: str) -> tuple:
    """Split an asset unit into (policy id hex, asset name hex)."""
    return unit[:56], unit[56:]
