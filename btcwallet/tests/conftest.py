"""
Pytest configuration and fixtures for btcwallet tests.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from btccore.bitcoin import address_to_scriptpubkey
from btccore.transaction import UTXO, OutPoint
from btcwallet.wallet.bip32 import derive_address
from btcwallet.wallet.bip39 import mnemonic_to_seed
from btcwallet.wallet.models import DerivedAddress


@pytest.fixture
def test_mnemonic() -> str:
    """Test mnemonic (BIP39 test vector)"""
    return (
        "abandon abandon abandon abandon abandon abandon "
        "abandon abandon abandon abandon abandon about"
    )


@pytest.fixture
def test_seed(test_mnemonic: str) -> bytes:
    return mnemonic_to_seed(test_mnemonic)


@pytest.fixture
def test_network() -> str:
    """Test network"""
    return "regtest"


@pytest.fixture
def wallet_address(test_seed: bytes) -> Callable[..., DerivedAddress]:
    """Derive mainnet wallet addresses: wallet_address(index, purpose=84, change=0)."""

    def _derive(index: int = 0, purpose: int = 84, change: int = 0) -> DerivedAddress:
        return derive_address(test_seed, f"m/{purpose}'/0'/0'/{change}/{index}")

    return _derive


@pytest.fixture
def make_utxo() -> Callable[..., UTXO]:
    """Build a UTXO paying ``address`` from a synthetic funding txid."""

    def _make(address: str, value: int, txid_byte: int = 0xAA, vout: int = 0) -> UTXO:
        return UTXO(
            outpoint=OutPoint(txid=bytes([txid_byte]) * 32, vout=vout),
            value=value,
            script_pubkey=address_to_scriptpubkey(address),
            address=address,
            confirmations=1,
        )

    return _make


# Unrelated mainnet address used as a payment destination
DESTINATION = "bc1qw508d6qejxtdg4y5r3zarvary0c5xw7kv8f3t4"


@pytest.fixture
def destination() -> str:
    return DESTINATION
