"""
Wallet data models.
"""

from __future__ import annotations

import dataclasses
from collections.abc import Iterator

from pydantic import Field
from pydantic.dataclasses import dataclass

from btccore.bitcoin import ScriptType
from btccore.constants import (
    FALLBACK_FEE_RATE_FAST,
    FALLBACK_FEE_RATE_FASTEST,
    FALLBACK_FEE_RATE_NORMAL,
    FALLBACK_FEE_RATE_SLOW,
)
from btccore.transaction import UTXO, Transaction


@dataclass
class FeeRates:
    """Fee-market snapshot in sat/vB."""

    slow: float = Field(default=FALLBACK_FEE_RATE_SLOW, gt=0)
    normal: float = Field(default=FALLBACK_FEE_RATE_NORMAL, gt=0)
    fast: float = Field(default=FALLBACK_FEE_RATE_FAST, gt=0)
    fastest: float = Field(default=FALLBACK_FEE_RATE_FASTEST, gt=0)


@dataclass(frozen=True)
class DerivedAddress:
    """Key material and address at a derivation path."""

    private_key: bytes
    public_key: bytes
    address: str
    path: str
    script_type: ScriptType

    def __iter__(self) -> Iterator[bytes | str]:
        # Unpacks as (private_key, address)
        yield self.private_key
        yield self.address

    @property
    def short_path(self) -> str:
        """Get shortened path for display (e.g., m/84'/0'/0'/0/5 -> 0/5)."""
        parts = self.path.split("/")
        if len(parts) >= 2:
            return f"{parts[-2]}/{parts[-1]}"
        return self.path


@dataclasses.dataclass
class BuildResult:
    """Unsigned transaction plus its fee accounting."""

    transaction: Transaction
    fee: int
    change: int
    estimated_vsize: int
    input_utxos: list[UTXO]

    @property
    def has_change_output(self) -> bool:
        # change is 0 when a dust remainder was absorbed into the fee
        return self.change > 0


@dataclasses.dataclass
class RBFResult:
    """Unsigned replacement for an RBF-signalling transaction."""

    original: Transaction
    replacement: Transaction
    original_fee: int
    new_fee: int
    fee_bump_percent: float
    input_utxos: list[UTXO]

    @property
    def fee_increase(self) -> int:
        return self.new_fee - self.original_fee


@dataclasses.dataclass
class CPFPResult:
    """Unsigned child transaction paying for its parent."""

    parent_txid: str
    child: Transaction
    parent_fee: int
    child_fee: int
    effective_fee_rate: float
    input_utxos: list[UTXO]

    @property
    def total_fee(self) -> int:
        return self.parent_fee + self.child_fee


__all__ = ["BuildResult", "CPFPResult", "DerivedAddress", "FeeRates", "RBFResult"]
