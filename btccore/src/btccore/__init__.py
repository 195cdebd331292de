"""
btccore - Core library for the Bitcoin wallet engine

Provides the crypto provider, address/script codec and transaction model.
"""

__version__ = "0.1.0"

from btccore.bitcoin import NetworkType, ScriptType
from btccore.crypto import CryptoProvider
from btccore.transaction import UTXO, OutPoint, Transaction, TxInput, TxOutput

__all__ = [
    "CryptoProvider",
    "NetworkType",
    "OutPoint",
    "ScriptType",
    "Transaction",
    "TxInput",
    "TxOutput",
    "UTXO",
]
