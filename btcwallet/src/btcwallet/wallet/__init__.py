"""
Wallet functionality: BIP39/BIP32 derivation, transaction building, signing and fee bumping.
"""

from btcwallet.wallet.bip32 import DerivationPath, HDKey, derive_address
from btcwallet.wallet.bip39 import generate_mnemonic, mnemonic_to_seed, validate_mnemonic
from btcwallet.wallet.builder import TransactionBuilder
from btcwallet.wallet.fee_bump import FeeBumper
from btcwallet.wallet.models import BuildResult, CPFPResult, DerivedAddress, FeeRates, RBFResult
from btcwallet.wallet.signing import TransactionSigner

__all__ = [
    "BuildResult",
    "CPFPResult",
    "DerivationPath",
    "DerivedAddress",
    "FeeBumper",
    "FeeRates",
    "HDKey",
    "RBFResult",
    "TransactionBuilder",
    "TransactionSigner",
    "derive_address",
    "generate_mnemonic",
    "mnemonic_to_seed",
    "validate_mnemonic",
]
