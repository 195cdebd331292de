"""
Fee bumping: Replace-By-Fee replacements and Child-Pays-For-Parent children.

The engine never talks to the network. Previous transactions come from a
caller-supplied ``tx_lookup`` and fee-market data from an optional
``fee_rate_source``; both are plain callables. Results are unsigned and
must go through the signer before broadcast.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Sequence

from loguru import logger

from btccore.bitcoin import (
    NetworkParams,
    NetworkType,
    address_to_scriptpubkey,
    format_amount,
    get_network_params,
    try_scriptpubkey_to_address,
)
from btccore.errors import (
    CannotBumpFeeError,
    InsufficientFeeBumpError,
    InsufficientFundsError,
    NoUnspentOutputsError,
    ParentFeeAlreadySufficientError,
    RbfNotEnabledError,
)
from btccore.settings import EngineSettings, get_settings
from btccore.transaction import UTXO, OutPoint, Transaction, TxInput, TxOutput
from btcwallet.wallet.builder import TransactionBuilder, fee_for_vsize
from btcwallet.wallet.models import CPFPResult, FeeRates, RBFResult

TxLookup = Callable[[str], bytes | str]
FeeRateSource = Callable[[], FeeRates]


class FeeBumper:
    """
    Builds RBF replacements and CPFP children for wallet transactions.

    Args:
        network: Network the transactions belong to
        tx_lookup: Returns the raw transaction (bytes or hex) for a txid
        fee_rate_source: Returns current fee rates; settings fallbacks otherwise
        builder: Builder whose size estimator is used
        settings: Engine settings (dust limit, sequences, fallbacks)
    """

    def __init__(
        self,
        network: str | NetworkType | NetworkParams,
        tx_lookup: TxLookup,
        fee_rate_source: FeeRateSource | None = None,
        builder: TransactionBuilder | None = None,
        settings: EngineSettings | None = None,
    ):
        self.network = get_network_params(network)
        self.tx_lookup = tx_lookup
        self.fee_rate_source = fee_rate_source
        self.settings = settings or get_settings()
        self.builder = builder or TransactionBuilder(self.network, settings=self.settings)

    @property
    def dust_limit(self) -> int:
        return self.settings.policy.dust_limit

    # -------------------------------------------------------------------------
    # Lookups
    # -------------------------------------------------------------------------

    def fetch_transaction(self, txid: str) -> Transaction:
        raw = self.tx_lookup(txid)
        if isinstance(raw, str):
            return Transaction.from_hex(raw)
        return Transaction.parse(raw)

    def fee_rates(self) -> FeeRates:
        if self.fee_rate_source is not None:
            return self.fee_rate_source()
        fees = self.settings.fees
        return FeeRates(slow=fees.slow, normal=fees.normal, fast=fees.fast, fastest=fees.fastest)

    def _output_utxo(self, tx: Transaction, vout: int) -> UTXO:
        if not 0 <= vout < len(tx.outputs):
            raise ValueError(f"Transaction {tx.txid} has no output {vout}")
        out = tx.outputs[vout]
        return UTXO(
            outpoint=OutPoint.from_txid_hex(tx.txid, vout),
            value=out.value,
            script_pubkey=out.script_pubkey,
            address=try_scriptpubkey_to_address(out.script_pubkey, self.network) or "",
        )

    def previous_outputs(self, tx: Transaction) -> list[UTXO]:
        """Resolve the outputs spent by ``tx`` through the lookup callable."""
        parents: dict[str, Transaction] = {}
        utxos = []
        for inp in tx.inputs:
            txid = inp.previous_output.txid_hex
            if txid not in parents:
                parents[txid] = self.fetch_transaction(txid)
            utxos.append(self._output_utxo(parents[txid], inp.previous_output.vout))
        return utxos

    def _fee_and_size(self, tx: Transaction, prev_utxos: Sequence[UTXO]) -> tuple[int, int]:
        fee = sum(u.value for u in prev_utxos) - tx.total_output_value()
        vsize = self.builder.estimate_vsize(prev_utxos, len(tx.outputs))
        return fee, vsize

    def _find_change_output(self, tx: Transaction, owned_addresses: Iterable[str]) -> int:
        """Last output paying an owned address, else the last of several outputs."""
        owned = set(owned_addresses)
        for i in range(len(tx.outputs) - 1, -1, -1):
            address = try_scriptpubkey_to_address(tx.outputs[i].script_pubkey, self.network)
            if address is not None and address in owned:
                return i
        if len(tx.outputs) > 1:
            return len(tx.outputs) - 1
        raise CannotBumpFeeError("No change output available to absorb the fee increase")

    @staticmethod
    def _unsigned_copy(tx: Transaction) -> Transaction:
        return Transaction(
            version=tx.version,
            inputs=[
                TxInput(previous_output=inp.previous_output, sequence=inp.sequence)
                for inp in tx.inputs
            ],
            outputs=[TxOutput(value=out.value, script_pubkey=out.script_pubkey) for out in tx.outputs],
            locktime=tx.locktime,
        )

    # -------------------------------------------------------------------------
    # RBF
    # -------------------------------------------------------------------------

    def create_rbf_transaction(
        self,
        original_txid: str,
        new_fee_rate: float,
        owned_addresses: Iterable[str] = (),
    ) -> RBFResult:
        """
        Build a replacement paying ``new_fee_rate``.

        The fee increase is taken from the change output. Inputs keep their
        outpoints and sequences; signatures are cleared.

        Raises:
            RbfNotEnabledError: No input signals replaceability
            InsufficientFeeBumpError: New fee does not exceed the original fee
            CannotBumpFeeError: No output can absorb the increase
            InsufficientFundsError: Change output is smaller than the increase
        """
        if new_fee_rate <= 0:
            raise ValueError(f"Fee rate must be positive, got {new_fee_rate}")

        original = self.fetch_transaction(original_txid)
        if not original.signals_rbf:
            raise RbfNotEnabledError(f"Transaction {original_txid} does not signal RBF")

        prev_utxos = self.previous_outputs(original)
        original_fee, vsize = self._fee_and_size(original, prev_utxos)
        new_fee = fee_for_vsize(vsize, new_fee_rate)

        logger.debug(f"RBF {original_txid}: original fee={original_fee:,} new fee={new_fee:,}")

        if new_fee <= original_fee:
            raise InsufficientFeeBumpError(
                f"New fee {new_fee:,} sats must exceed original fee {original_fee:,} sats"
            )

        change_index = self._find_change_output(original, owned_addresses)
        replacement = self._unsigned_copy(original)

        new_value = replacement.outputs[change_index].value - (new_fee - original_fee)
        if new_value < 0:
            raise InsufficientFundsError(
                f"Change output of {replacement.outputs[change_index].value:,} sats cannot "
                f"cover fee increase of {new_fee - original_fee:,} sats"
            )
        if new_value < self.dust_limit:
            logger.debug(f"Dropping change output {change_index}: {new_value} sats is dust")
            del replacement.outputs[change_index]
            if not replacement.outputs:
                raise CannotBumpFeeError("Fee bump would leave the transaction without outputs")
        else:
            replacement.outputs[change_index].value = new_value

        actual_fee = sum(u.value for u in prev_utxos) - replacement.total_output_value()
        bump_percent = (
            (actual_fee - original_fee) / original_fee * 100 if original_fee > 0 else 100.0
        )

        logger.info(
            f"Created RBF replacement for {original_txid}: fee {format_amount(original_fee)} "
            f"-> {format_amount(actual_fee)} (+{bump_percent:.1f}%)"
        )

        return RBFResult(
            original=original,
            replacement=replacement,
            original_fee=original_fee,
            new_fee=actual_fee,
            fee_bump_percent=bump_percent,
            input_utxos=prev_utxos,
        )

    def create_cancel_transaction(
        self,
        txid: str,
        safe_address: str,
        owned_addresses: Iterable[str] = (),
    ) -> RBFResult:
        """
        Replace ``txid`` with a transaction sending all of its inputs to
        ``safe_address`` at an aggressive fee rate.

        The rate is max(2 x original rate, fastest market rate, 1 sat/vB).
        """
        owned = set(owned_addresses)
        if owned and safe_address not in owned:
            raise ValueError(f"Cancel destination {safe_address} is not a wallet address")

        original = self.fetch_transaction(txid)
        if not original.signals_rbf:
            raise RbfNotEnabledError(f"Transaction {txid} does not signal RBF")

        prev_utxos = self.previous_outputs(original)
        original_fee, original_vsize = self._fee_and_size(original, prev_utxos)
        original_rate = original_fee / original_vsize

        fee_rate = max(2 * original_rate, self.fee_rates().fastest, 1.0)
        new_fee = fee_for_vsize(self.builder.estimate_vsize(prev_utxos, 1), fee_rate)
        if new_fee <= original_fee:
            new_fee = original_fee + 1

        total_in = sum(u.value for u in prev_utxos)
        value = total_in - new_fee
        if value < self.dust_limit:
            raise InsufficientFundsError(
                f"Inputs of {total_in:,} sats cannot pay cancel fee of {new_fee:,} sats"
            )

        replacement = self._unsigned_copy(original)
        replacement.outputs = [
            TxOutput(value=value, script_pubkey=address_to_scriptpubkey(safe_address, self.network))
        ]

        logger.info(f"Created cancel replacement for {txid} at {fee_rate:.2f} sat/vB")

        return RBFResult(
            original=original,
            replacement=replacement,
            original_fee=original_fee,
            new_fee=new_fee,
            fee_bump_percent=(new_fee - original_fee) / original_fee * 100
            if original_fee > 0
            else 100.0,
            input_utxos=prev_utxos,
        )

    def recommended_bump_rate(self, txid: str) -> float:
        """Market ``fast`` rate, at least 1 sat/vB above the transaction's own rate."""
        tx = self.fetch_transaction(txid)
        fee, vsize = self._fee_and_size(tx, self.previous_outputs(tx))
        return max(self.fee_rates().fast, fee / vsize + 1)

    # -------------------------------------------------------------------------
    # CPFP
    # -------------------------------------------------------------------------

    def create_cpfp_transaction(
        self,
        parent_txid: str,
        target_fee_rate: float,
        receive_address: str,
        unspent_vouts: Sequence[int],
    ) -> CPFPResult:
        """
        Build a child spending the parent's unspent wallet outputs so that
        parent and child together pay ``target_fee_rate``.

        Raises:
            NoUnspentOutputsError: Nothing to spend
            ParentFeeAlreadySufficientError: Parent already pays the target
            InsufficientFundsError: Child output would be dust
        """
        if target_fee_rate <= 0:
            raise ValueError(f"Fee rate must be positive, got {target_fee_rate}")
        if not unspent_vouts:
            raise NoUnspentOutputsError(f"No unspent outputs of {parent_txid} to spend")
        if len(set(unspent_vouts)) != len(unspent_vouts):
            raise ValueError(f"Duplicate output index in {list(unspent_vouts)}")

        parent = self.fetch_transaction(parent_txid)
        parent_fee, parent_vsize = self._fee_and_size(parent, self.previous_outputs(parent))

        spent = [self._output_utxo(parent, vout) for vout in unspent_vouts]
        child_vsize = self.builder.estimate_vsize(spent, 1)

        target_total_fee = fee_for_vsize(parent_vsize + child_vsize, target_fee_rate)
        child_fee = target_total_fee - parent_fee

        logger.debug(
            f"CPFP {parent_txid}: parent fee={parent_fee:,} vsize~{parent_vsize}, "
            f"child vsize~{child_vsize}, child fee={child_fee:,}"
        )

        if child_fee <= 0:
            raise ParentFeeAlreadySufficientError(
                f"Parent fee {parent_fee:,} sats already meets {target_fee_rate} sat/vB"
            )

        child_value = sum(u.value for u in spent) - child_fee
        if child_value < self.dust_limit:
            raise InsufficientFundsError(
                f"Child output of {child_value:,} sats would be below dust limit"
            )

        sequence = self.settings.policy.cpfp_sequence
        child = Transaction(
            version=self.settings.policy.tx_version,
            inputs=[TxInput(previous_output=u.outpoint, sequence=sequence) for u in spent],
            outputs=[
                TxOutput(
                    value=child_value,
                    script_pubkey=address_to_scriptpubkey(receive_address, self.network),
                )
            ],
            locktime=0,
        )

        effective_rate = (parent_fee + child_fee) / (parent_vsize + child_vsize)
        logger.info(
            f"Created CPFP child for {parent_txid}: fee {format_amount(child_fee)}, "
            f"effective {effective_rate:.2f} sat/vB"
        )

        return CPFPResult(
            parent_txid=parent_txid,
            child=child,
            parent_fee=parent_fee,
            child_fee=child_fee,
            effective_fee_rate=effective_rate,
            input_utxos=spent,
        )


__all__ = ["FeeBumper", "FeeRateSource", "TxLookup"]
