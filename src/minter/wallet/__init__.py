"""
Wallet module.

Derives the custodial signing identity from a seed phrase.
"""

from minter.wallet.context import WalletContext

__all__ = ["WalletContext"]
