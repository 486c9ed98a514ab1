"""
UTXO Selector - chooses the funding input for a transaction.

Selection is a pure function of the input set: the same set always yields
the same input, whatever order the provider listed it in. A retried mint
against an unchanged set therefore binds the same policy id.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence, Tuple

import structlog

from pycardano import TransactionInput, UTxO

from minter.config import MinterConfig, get_config
from minter.core.errors import NoFundsAvailable

logger = structlog.get_logger(__name__)


def utxo_ref(utxo: UTxO) -> str:
    """Format a UTXO reference as tx_hash#index."""
    return f"{utxo.input.transaction_id.payload.hex()}#{utxo.input.index}"


def canonical_key(utxo: UTxO) -> Tuple[str, int]:
    return utxo.input.transaction_id.payload.hex(), utxo.input.index


def is_pure(utxo: UTxO) -> bool:
    """True if the UTXO carries only lovelace."""
    multi_asset = utxo.output.amount.multi_asset
    return not multi_asset or all(len(assets) == 0 for assets in multi_asset.values())


@dataclass(frozen=True)
class SelectionResult:
    """Chosen input and whether the pure-input preference could not be met."""
    utxo: UTxO
    fallback: bool = False


class UtxoSelector:
    """
    Selects one funding input from the wallet's spendable set.

    Policy:
    1. Prefer pure-lovelace inputs holding more than `min_pure_lovelace`;
       among them take the largest, ties broken by reference.
    2. Otherwise fall back to the first input in reference order and warn.
    """

    def __init__(
        self,
        min_pure_lovelace: Optional[int] = None,
        config: Optional[MinterConfig] = None,
    ):
        self.config = config or get_config()
        self.min_pure_lovelace = (
            min_pure_lovelace if min_pure_lovelace is not None
            else self.config.min_pure_lovelace
        )

    def choose(
        self,
        inputs: Sequence[UTxO],
        exclude: Iterable[TransactionInput] = (),
    ) -> SelectionResult:
        """
        Choose an input.

        Args:
            inputs: Spendable inputs of the wallet
            exclude: Input references already used by the transaction

        Raises:
            NoFundsAvailable: If no candidate input remains
        """
        excluded = {(ref.transaction_id.payload.hex(), ref.index) for ref in exclude}
        candidates: List[UTxO] = sorted(
            (u for u in inputs if canonical_key(u) not in excluded),
            key=canonical_key,
        )

        if not candidates:
            raise NoFundsAvailable("No spendable inputs available at the wallet address")

        pure = [
            u for u in candidates
            if is_pure(u) and u.output.amount.coin > self.min_pure_lovelace
        ]
        if pure:
            # sorted() is stable, so equal amounts keep reference order
            chosen = sorted(pure, key=lambda u: -u.output.amount.coin)[0]
            return SelectionResult(chosen)

        chosen = candidates[0]
        logger.warning(
            "utxo_selection_fallback",
            utxo=utxo_ref(chosen),
            candidates=len(candidates),
            min_pure_lovelace=self.min_pure_lovelace,
        )
        return SelectionResult(chosen, fallback=True)

    def select(
        self,
        inputs: Sequence[UTxO],
        exclude: Iterable[TransactionInput] = (),
    ) -> UTxO:
        """Choose an input and return it."""
        return self.choose(inputs, exclude).utxo
