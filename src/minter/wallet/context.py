"""
Wallet Context - derives the custodial signing identity.

Holds key material for the duration of one request only.
"""

import copy
from typing import Optional

import structlog

from pycardano import (
    Address,
    ExtendedSigningKey,
    Network,
    Transaction,
    TransactionWitnessSet,
    VerificationKeyHash,
    VerificationKeyWitness,
)
from pycardano.crypto.bip32 import HDWallet

from minter.core.errors import InvalidSeedError

logger = structlog.get_logger(__name__)

PAYMENT_PATH = "m/1852'/1815'/0'/0/0"
STAKE_PATH = "m/1852'/1815'/0'/2/0"


class WalletContext:
    """
    Signing identity derived from a seed phrase.

    The seed itself is never stored; only the derived payment key is kept
    until close() is called. Use as a context manager so the key is dropped
    when the request ends.
    """

    def __init__(self, payment_skey: ExtendedSigningKey, address: Address):
        self._payment_skey: Optional[ExtendedSigningKey] = payment_skey
        self._address = address
        self._payment_key_hash = payment_skey.to_verification_key().hash()

    @classmethod
    def from_seed(cls, seed: str, network: Network = Network.TESTNET) -> "WalletContext":
        """
        Derive the signing identity and base address from a BIP-39 mnemonic.

        Args:
            seed: Mnemonic phrase (secret)
            network: Network the address is derived for

        Raises:
            InvalidSeedError: If the seed cannot be decoded into key material
        """
        if not seed or not seed.strip():
            raise InvalidSeedError("Seed phrase is empty")

        try:
            hdwallet = HDWallet.from_mnemonic(" ".join(seed.split()))
            payment_skey = ExtendedSigningKey.from_hdwallet(hdwallet.derive_from_path(PAYMENT_PATH))
            stake_skey = ExtendedSigningKey.from_hdwallet(hdwallet.derive_from_path(STAKE_PATH))
        except Exception:
            # Drop the cause, it may echo the phrase
            raise InvalidSeedError("Seed phrase could not be decoded into key material") from None

        address = Address(
            payment_part=payment_skey.to_verification_key().hash(),
            staking_part=stake_skey.to_verification_key().hash(),
            network=network,
        )
        logger.debug("wallet_derived", address=str(address)[:30] + "...")
        return cls(payment_skey, address)

    @classmethod
    def derive_address(cls, seed: str, network: Network = Network.TESTNET) -> str:
        """
        Derive only the base address; key material is dropped before returning.

        Raises:
            InvalidSeedError: If the seed cannot be decoded into key material
        """
        with cls.from_seed(seed, network) as wallet:
            return wallet.address_str

    def __enter__(self) -> "WalletContext":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"WalletContext(address={str(self._address)[:30]}...)"

    def close(self) -> None:
        """Drop the key material."""
        self._payment_skey = None

    @property
    def address(self) -> Address:
        return self._address

    @property
    def address_str(self) -> str:
        return str(self._address)

    @property
    def payment_key_hash(self) -> VerificationKeyHash:
        return self._payment_key_hash

    @property
    def is_open(self) -> bool:
        return self._payment_skey is not None

    def sign_transaction(self, tx: Transaction) -> Transaction:
        """
        Sign a transaction with the payment key.

        Script and redeemer witnesses already present on the transaction
        are kept.

        Args:
            tx: Unsigned transaction

        Returns:
            Signed transaction
        """
        if self._payment_skey is None:
            raise RuntimeError("Wallet context is closed")

        body_hash = tx.transaction_body.hash()
        vkey_witness = VerificationKeyWitness(
            self._payment_skey.to_verification_key(),
            self._payment_skey.sign(body_hash),
        )

        witness_set = copy.copy(tx.transaction_witness_set or TransactionWitnessSet())
        vkey_witnesses = [
            w for w in (witness_set.vkey_witnesses or [])
            if w.vkey != vkey_witness.vkey
        ]
        vkey_witnesses.append(vkey_witness)
        witness_set.vkey_witnesses = vkey_witnesses

        logger.debug("transaction_signed", tx_hash=body_hash.hex()[:16] + "...")

        return Transaction(
            tx.transaction_body,
            witness_set,
            auxiliary_data=tx.auxiliary_data,
        )
