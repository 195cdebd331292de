"""
Tests for RBF replacements, cancellations and CPFP children.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import pytest

from btccore.bitcoin import address_to_scriptpubkey
from btccore.constants import SEQUENCE_RBF
from btccore.errors import (
    CannotBumpFeeError,
    InsufficientFeeBumpError,
    InsufficientFundsError,
    NoUnspentOutputsError,
    ParentFeeAlreadySufficientError,
    RbfNotEnabledError,
)
from btccore.transaction import UTXO, OutPoint, Transaction, TxInput, TxOutput
from btcwallet.wallet.builder import TransactionBuilder
from btcwallet.wallet.fee_bump import FeeBumper
from btcwallet.wallet.models import FeeRates
from btcwallet.wallet.signing import TransactionSigner


@dataclass
class FakeChain:
    """In-memory txid -> raw transaction store used as the lookup callable."""

    transactions: dict[str, str] = field(default_factory=dict)
    lookups: list[str] = field(default_factory=list)

    def add(self, tx: Transaction) -> str:
        self.transactions[tx.txid] = tx.to_hex()
        return tx.txid

    def __call__(self, txid: str) -> str:
        self.lookups.append(txid)
        return self.transactions[txid]


@dataclass
class Wallet:
    chain: FakeChain
    funding: UTXO
    private_key: bytes
    change_address: str
    builder: TransactionBuilder
    signer: TransactionSigner

    def send(self, destination: str, amount: int, fee_rate: float, sequence: int = SEQUENCE_RBF) -> Transaction:
        result = self.builder.build_transaction(
            [self.funding], [(destination, amount)], self.change_address, fee_rate, sequence=sequence
        )
        signed = self.signer.sign_transaction(result.transaction, [self.private_key], [self.funding])
        self.chain.add(signed)
        return signed


@pytest.fixture
def chain() -> FakeChain:
    return FakeChain()


@pytest.fixture
def wallet(chain, wallet_address) -> Wallet:
    owner = wallet_address(0)
    script = address_to_scriptpubkey(owner.address)
    funding_tx = Transaction(
        inputs=[TxInput(previous_output=OutPoint(txid=b"\x42" * 32, vout=0))],
        outputs=[TxOutput(value=100_000, script_pubkey=script)],
    )
    chain.add(funding_tx)
    return Wallet(
        chain=chain,
        funding=UTXO(
            outpoint=OutPoint.from_txid_hex(funding_tx.txid, 0),
            value=100_000,
            script_pubkey=script,
            address=owner.address,
        ),
        private_key=owner.private_key,
        change_address=wallet_address(0, change=1).address,
        builder=TransactionBuilder("mainnet"),
        signer=TransactionSigner("mainnet"),
    )


@pytest.fixture
def bumper(chain) -> FeeBumper:
    return FeeBumper("mainnet", chain)


def _market(fast: float = 5, fastest: float = 8) -> FeeRates:
    return FeeRates(slow=1, normal=2, fast=fast, fastest=fastest)


class TestRBF:
    def test_bump_takes_fee_from_change(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10)

        result = bumper.create_rbf_transaction(original.txid, 20, [wallet.change_address])

        replacement = result.replacement
        assert result.original_fee == 1_460
        assert result.new_fee == 2_920
        assert result.fee_increase == 1_460
        assert result.fee_bump_percent == pytest.approx(100.0)
        assert [out.value for out in replacement.outputs] == [50_000, 47_080]
        assert result.input_utxos == [wallet.funding]

    def test_replacement_keeps_inputs_and_clears_signatures(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10)
        assert original.has_witness

        replacement = bumper.create_rbf_transaction(original.txid, 20).replacement

        assert [i.previous_output for i in replacement.inputs] == [
            i.previous_output for i in original.inputs
        ]
        assert [i.sequence for i in replacement.inputs] == [SEQUENCE_RBF]
        assert not replacement.has_witness
        assert replacement.version == original.version
        assert replacement.locktime == original.locktime

    def test_replacement_can_be_signed(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10)
        result = bumper.create_rbf_transaction(original.txid, 20)

        signed = wallet.signer.sign_transaction(result.replacement, [wallet.private_key], result.input_utxos)

        assert wallet.signer.verify_input_signature(signed, 0, wallet.funding)
        assert signed.txid != original.txid

    def test_conserves_value(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10)
        result = bumper.create_rbf_transaction(original.txid, 33.3)
        assert wallet.funding.value == result.replacement.total_output_value() + result.new_fee

    def test_requires_rbf_signal(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10, sequence=0xFFFFFFFF)
        with pytest.raises(RbfNotEnabledError):
            bumper.create_rbf_transaction(original.txid, 20)

    def test_locktime_sequence_does_not_signal(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10, sequence=0xFFFFFFFE)
        with pytest.raises(RbfNotEnabledError):
            bumper.create_rbf_transaction(original.txid, 20)

    @pytest.mark.parametrize("rate", [5, 10])
    def test_new_fee_must_be_higher(self, wallet, bumper, destination, rate: float) -> None:
        original = wallet.send(destination, 50_000, 10)
        with pytest.raises(InsufficientFeeBumpError):
            bumper.create_rbf_transaction(original.txid, rate)

    def test_no_change_output(self, wallet, bumper, destination) -> None:
        # Spends everything into a single payment
        original = wallet.send(destination, 98_540, 10)
        assert len(original.outputs) == 1
        with pytest.raises(CannotBumpFeeError):
            bumper.create_rbf_transaction(original.txid, 20)

    def test_dust_change_is_dropped(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 97_000, 10)
        assert original.outputs[1].value == 1_540

        result = bumper.create_rbf_transaction(original.txid, 17, [wallet.change_address])

        assert len(result.replacement.outputs) == 1
        assert result.replacement.outputs[0].value == 97_000
        assert result.new_fee == 3_000
        assert result.fee_bump_percent == pytest.approx((3_000 - 1_460) / 1_460 * 100)

    def test_change_too_small(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 97_000, 10)
        with pytest.raises(InsufficientFundsError):
            bumper.create_rbf_transaction(original.txid, 30)

    def test_owned_address_selects_change(self, wallet, bumper, wallet_address) -> None:
        # The owned output absorbs the increase even though it is not the last one
        other = wallet_address(9).address
        original = wallet.send(other, 50_000, 10)
        result = bumper.create_rbf_transaction(original.txid, 20, [other])
        assert [out.value for out in result.replacement.outputs] == [48_540, 48_540]

    def test_invalid_fee_rate(self, bumper) -> None:
        with pytest.raises(ValueError):
            bumper.create_rbf_transaction("00" * 32, 0)

    def test_accepts_raw_bytes_lookup(self, wallet, destination) -> None:
        original = wallet.send(destination, 50_000, 10)
        raw = {txid: bytes.fromhex(tx_hex) for txid, tx_hex in wallet.chain.transactions.items()}
        bumper = FeeBumper("mainnet", raw.__getitem__)
        assert bumper.create_rbf_transaction(original.txid, 20).new_fee == 2_920


class TestCancel:
    def test_cancel_uses_fastest_rate(self, wallet, bumper, destination, wallet_address) -> None:
        original = wallet.send(destination, 50_000, 10)
        safe = wallet_address(7).address

        result = bumper.create_cancel_transaction(original.txid, safe)

        # max(2 * 10, fastest 50, 1) * (10 + 68 + 34)
        assert result.new_fee == 5_600
        assert len(result.replacement.outputs) == 1
        assert result.replacement.outputs[0].value == 94_400
        assert result.replacement.outputs[0].script_pubkey == address_to_scriptpubkey(safe)

    def test_cancel_doubles_original_rate(self, wallet, chain, destination, wallet_address) -> None:
        original = wallet.send(destination, 50_000, 10)
        bumper = FeeBumper("mainnet", chain, fee_rate_source=_market())

        result = bumper.create_cancel_transaction(original.txid, wallet_address(7).address)

        assert result.new_fee == 112 * 20
        assert result.new_fee > result.original_fee

    def test_cancel_requires_owned_destination(self, wallet, bumper, destination, wallet_address) -> None:
        original = wallet.send(destination, 50_000, 10)
        with pytest.raises(ValueError):
            bumper.create_cancel_transaction(
                original.txid, destination, owned_addresses=[wallet_address(7).address]
            )

    def test_cancel_requires_rbf(self, wallet, bumper, destination, wallet_address) -> None:
        original = wallet.send(destination, 50_000, 10, sequence=0xFFFFFFFF)
        with pytest.raises(RbfNotEnabledError):
            bumper.create_cancel_transaction(original.txid, wallet_address(7).address)


class TestRecommendedRate:
    def test_market_fast_rate(self, wallet, bumper, destination) -> None:
        original = wallet.send(destination, 50_000, 10)
        assert bumper.recommended_bump_rate(original.txid) == 50

    def test_above_current_rate(self, wallet, chain, destination) -> None:
        original = wallet.send(destination, 50_000, 10)
        bumper = FeeBumper("mainnet", chain, fee_rate_source=_market(fast=5))
        assert bumper.recommended_bump_rate(original.txid) == pytest.approx(11)


class TestCPFP:
    def test_child_pays_for_parent(self, wallet, bumper, destination, wallet_address) -> None:
        parent = wallet.send(destination, 50_000, 10)
        receive = wallet_address(4).address

        result = bumper.create_cpfp_transaction(parent.txid, 30, receive, [1])

        # package: parent 146 vB + child 112 vB at 30 sat/vB
        assert result.parent_fee == 1_460
        assert result.child_fee == 7_740 - 1_460
        assert result.total_fee == 7_740
        assert result.effective_fee_rate == pytest.approx(30)
        assert result.parent_txid == parent.txid

        child = result.child
        assert len(child.inputs) == 1
        assert child.inputs[0].previous_output == OutPoint.from_txid_hex(parent.txid, 1)
        assert child.inputs[0].sequence == 0xFFFFFFFD
        assert child.outputs[0].value == 48_540 - 6_280
        assert child.outputs[0].script_pubkey == address_to_scriptpubkey(receive)

    def test_child_can_be_signed(self, wallet, bumper, destination, wallet_address) -> None:
        parent = wallet.send(destination, 50_000, 10)
        result = bumper.create_cpfp_transaction(parent.txid, 30, wallet_address(4).address, [1])

        change_key = wallet_address(0, change=1).private_key
        signed = wallet.signer.sign_transaction(result.child, [change_key], result.input_utxos)

        assert wallet.signer.verify_input_signature(signed, 0, result.input_utxos[0])

    def test_parent_already_sufficient(self, wallet, bumper, destination, wallet_address) -> None:
        parent = wallet.send(destination, 50_000, 10)
        with pytest.raises(ParentFeeAlreadySufficientError):
            bumper.create_cpfp_transaction(parent.txid, 5, wallet_address(4).address, [1])

    def test_no_unspent_outputs(self, bumper, wallet_address) -> None:
        with pytest.raises(NoUnspentOutputsError):
            bumper.create_cpfp_transaction("ab" * 32, 30, wallet_address(4).address, [])

    def test_child_would_be_dust(self, wallet, bumper, destination, wallet_address) -> None:
        parent = wallet.send(destination, 97_000, 10)
        with pytest.raises(InsufficientFundsError):
            bumper.create_cpfp_transaction(parent.txid, 30, wallet_address(4).address, [1])

    def test_unknown_vout(self, wallet, bumper, destination, wallet_address) -> None:
        parent = wallet.send(destination, 50_000, 10)
        with pytest.raises(ValueError):
            bumper.create_cpfp_transaction(parent.txid, 30, wallet_address(4).address, [5])

    def test_duplicate_vout_rejected(self, wallet, bumper, destination, wallet_address) -> None:
        parent = wallet.send(destination, 50_000, 10)
        with pytest.raises(ValueError, match="Duplicate"):
            bumper.create_cpfp_transaction(parent.txid, 30, wallet_address(4).address, [1, 1])


class TestFeeRates:
    def test_settings_fallback(self, bumper) -> None:
        rates = bumper.fee_rates()
        assert (rates.slow, rates.normal, rates.fast, rates.fastest) == (5, 20, 50, 50)

    def test_source_is_used(self, chain) -> None:
        bumper = FeeBumper("mainnet", chain, fee_rate_source=lambda: _market(fast=7))
        assert bumper.fee_rates().fast == 7

    def test_rates_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            FeeRates(slow=0)
