"""
Bitcoin wallet transaction engine: key derivation, building, signing and fee bumping.
"""

from btcwallet.wallet.bip32 import HDKey
from btcwallet.wallet.builder import TransactionBuilder
from btcwallet.wallet.fee_bump import FeeBumper
from btcwallet.wallet.signing import TransactionSigner

__all__ = ["FeeBumper", "HDKey", "TransactionBuilder", "TransactionSigner"]
