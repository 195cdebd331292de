"""
Unsigned transaction assembly with fee and dust accounting.

Sizes are vbyte approximations keyed by the type of the spent output, not
exact weight accounting. The signer fills in scriptSig/witness data later.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence

from loguru import logger

from btccore.bitcoin import (
    NetworkParams,
    NetworkType,
    ScriptType,
    address_to_scriptpubkey,
    detect_script_type,
    format_amount,
    get_network_params,
    validate_satoshi_amount,
)
from btccore.constants import (
    INPUT_VSIZE_DEFAULT,
    INPUT_VSIZE_P2PKH,
    INPUT_VSIZE_P2SH_P2WPKH,
    INPUT_VSIZE_P2WPKH,
    OUTPUT_VSIZE,
    TX_OVERHEAD_VSIZE,
)
from btccore.crypto import CryptoProvider, default_provider
from btccore.errors import AmountBelowDustError, InsufficientFundsError
from btccore.settings import EngineSettings, get_settings
from btccore.transaction import UTXO, Transaction, TxInput, TxOutput
from btcwallet.wallet.models import BuildResult

INPUT_VSIZES = {
    ScriptType.P2PKH: INPUT_VSIZE_P2PKH,
    ScriptType.P2WPKH: INPUT_VSIZE_P2WPKH,
    ScriptType.P2SH: INPUT_VSIZE_P2SH_P2WPKH,
}


def input_vsize(script_pubkey: bytes) -> int:
    """Approximate vbytes to spend an output with this scriptPubKey."""
    return INPUT_VSIZES.get(detect_script_type(script_pubkey), INPUT_VSIZE_DEFAULT)


def estimate_vsize(input_scripts: Iterable[bytes], output_count: int) -> int:
    """
    Estimate transaction vsize.

    Args:
        input_scripts: scriptPubKeys of the outputs being spent
        output_count: Number of outputs

    Returns:
        10 + sum of per-input costs + 34 per output
    """
    return TX_OVERHEAD_VSIZE + sum(input_vsize(s) for s in input_scripts) + OUTPUT_VSIZE * output_count


def fee_for_vsize(vsize: int, fee_rate: float) -> int:
    return math.ceil(vsize * fee_rate)


class TransactionBuilder:
    """
    Builds unsigned transactions from already-selected UTXOs.

    Stateless apart from its configuration; safe to share.
    """

    def __init__(
        self,
        network: str | NetworkType | NetworkParams = "mainnet",
        crypto: CryptoProvider | None = None,
        settings: EngineSettings | None = None,
    ):
        self.network = get_network_params(network)
        self.crypto = crypto or default_provider()
        self.settings = settings or get_settings()

    @property
    def dust_limit(self) -> int:
        return self.settings.policy.dust_limit

    def estimate_vsize(self, inputs: Sequence[UTXO], output_count: int) -> int:
        return estimate_vsize((utxo.script_pubkey for utxo in inputs), output_count)

    def estimate_fee(self, inputs: Sequence[UTXO], output_count: int, fee_rate: float) -> int:
        """Fee in sats for spending ``inputs`` into ``output_count`` outputs."""
        if fee_rate <= 0:
            raise ValueError(f"Fee rate must be positive, got {fee_rate}")
        return fee_for_vsize(self.estimate_vsize(inputs, output_count), fee_rate)

    def select_utxos(
        self,
        utxos: Sequence[UTXO],
        target_amount: int,
        fee_rate: float,
        output_count: int = 1,
        min_confirmations: int = 0,
    ) -> list[UTXO]:
        """
        Select UTXOs covering ``target_amount`` plus the fee of spending them.
        Uses simple greedy selection, largest value first.

        The fee is estimated with ``output_count + 1`` outputs, matching
        build_transaction's change slot.

        Raises:
            InsufficientFundsError: If all eligible UTXOs cannot cover the target
        """
        if fee_rate <= 0:
            raise ValueError(f"Fee rate must be positive, got {fee_rate}")

        eligible = [utxo for utxo in utxos if utxo.confirmations >= min_confirmations]
        eligible.sort(key=lambda u: u.value, reverse=True)

        selected: list[UTXO] = []
        total = 0
        for utxo in eligible:
            selected.append(utxo)
            total += utxo.value
            if total >= target_amount + self.estimate_fee(selected, output_count + 1, fee_rate):
                logger.debug(f"Selected {len(selected)} of {len(eligible)} UTXOs, total {total:,} sats")
                return selected

        needed = target_amount + self.estimate_fee(selected, output_count + 1, fee_rate)
        raise InsufficientFundsError(
            f"Insufficient funds: need about {needed:,} sats, have {total:,} sats"
        )

    def build_transaction(
        self,
        inputs: Sequence[UTXO],
        outputs: Sequence[tuple[str, int]],
        change_address: str,
        fee_rate: float | None = None,
        sequence: int | None = None,
    ) -> BuildResult:
        """
        Build an unsigned transaction.

        Args:
            inputs: UTXOs to spend, in order
            outputs: (address, amount) pairs to pay
            change_address: Wallet address receiving the remainder
            fee_rate: sat/vB (default from settings)
            sequence: nSequence for every input (default from settings)

        Returns:
            BuildResult with the unsigned transaction and its fee accounting

        Raises:
            AmountBelowDustError: If a requested output is below the dust limit
            InvalidAddressError: If an address cannot be decoded
            InsufficientFundsError: If inputs cannot cover outputs plus fee
        """
        policy = self.settings.policy
        if fee_rate is None:
            fee_rate = policy.default_fee_rate

        if not inputs:
            raise ValueError("At least one input is required")
        if fee_rate <= 0:
            raise ValueError(f"Fee rate must be positive, got {fee_rate}")

        if sequence is None:
            sequence = policy.default_sequence

        tx_outputs = []
        for address, amount in outputs:
            validate_satoshi_amount(amount)
            if amount < self.dust_limit:
                raise AmountBelowDustError(amount, self.dust_limit)
            tx_outputs.append(
                TxOutput(value=amount, script_pubkey=address_to_scriptpubkey(address, self.network))
            )
        change_script = address_to_scriptpubkey(change_address, self.network)

        tx_inputs = [TxInput(previous_output=utxo.outpoint, sequence=sequence) for utxo in inputs]

        total_in = sum(utxo.value for utxo in inputs)
        total_out = sum(out.value for out in tx_outputs)

        # One extra output slot for the potential change output
        estimated_vsize = self.estimate_vsize(inputs, len(tx_outputs) + 1)
        fee = fee_for_vsize(estimated_vsize, fee_rate)
        change = total_in - total_out - fee

        logger.debug(
            f"Build: inputs={total_in:,} outputs={total_out:,} "
            f"vsize~{estimated_vsize} fee={fee:,} change={change:,}"
        )

        if change < 0:
            raise InsufficientFundsError(
                f"Insufficient funds: need {total_out + fee:,} sats, have {total_in:,} sats"
            )

        if change > self.dust_limit:
            tx_outputs.append(TxOutput(value=change, script_pubkey=change_script))
        else:
            if change > 0:
                logger.debug(f"Dropping dust change of {change} sats into the fee")
            change = 0

        tx = Transaction(
            version=policy.tx_version,
            inputs=tx_inputs,
            outputs=tx_outputs,
            locktime=0,
        )
        actual_fee = total_in - tx.total_output_value()

        logger.info(
            f"Built transaction with {len(tx_inputs)} input(s), {len(tx_outputs)} output(s), "
            f"fee {format_amount(actual_fee)}"
        )

        return BuildResult(
            transaction=tx,
            fee=actual_fee,
            change=change,
            estimated_vsize=estimated_vsize,
            input_utxos=list(inputs),
        )


__all__ = [
    "INPUT_VSIZES",
    "TransactionBuilder",
    "estimate_vsize",
    "fee_for_vsize",
    "input_vsize",
]
