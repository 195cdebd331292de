"""
Tests for unsigned transaction building.
"""

from __future__ import annotations

import pytest

from btccore.bitcoin import address_to_scriptpubkey
from btccore.constants import SEQUENCE_RBF
from btccore.errors import AmountBelowDustError, InsufficientFundsError, InvalidAddressError
from btccore.settings import EngineSettings
from btcwallet.wallet.builder import TransactionBuilder, estimate_vsize, fee_for_vsize, input_vsize

P2PKH_SCRIPT = bytes.fromhex("76a91477bff20c60e522dfaa3350c39b030a5d004e839a88ac")
P2SH_SCRIPT = bytes.fromhex("a914b472a266d0bd89c13706a4132ccfb16f7c3b9fcb87")
P2WPKH_SCRIPT = bytes.fromhex("0014751e76e8199196d454941c45d1b3a323f1433bd6")
P2TR_SCRIPT = bytes.fromhex("5120" + "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")


@pytest.fixture
def builder() -> TransactionBuilder:
    return TransactionBuilder("mainnet")


@pytest.fixture
def funding(wallet_address, make_utxo):
    return make_utxo(wallet_address(0).address, 100_000)


@pytest.fixture
def change_address(wallet_address) -> str:
    return wallet_address(0, change=1).address


class TestSizeEstimation:
    def test_input_sizes(self) -> None:
        assert input_vsize(P2PKH_SCRIPT) == 148
        assert input_vsize(P2SH_SCRIPT) == 91
        assert input_vsize(P2WPKH_SCRIPT) == 68
        assert input_vsize(P2TR_SCRIPT) == 148

    def test_estimate(self) -> None:
        assert estimate_vsize([P2WPKH_SCRIPT], 2) == 146
        assert estimate_vsize([P2PKH_SCRIPT, P2SH_SCRIPT], 1) == 10 + 148 + 91 + 34

    def test_fee_rounds_up(self) -> None:
        assert fee_for_vsize(141, 1.5) == 212
        assert fee_for_vsize(146, 10) == 1460

    def test_builder_estimate_fee(self, builder, funding) -> None:
        assert builder.estimate_fee([funding], 2, 10) == 1460
        with pytest.raises(ValueError):
            builder.estimate_fee([funding], 2, 0)


class TestBuildTransaction:
    def test_simple_payment_with_change(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction([funding], [(destination, 50_000)], change_address, 10)

        tx = result.transaction
        assert result.estimated_vsize == 146
        assert result.fee == 1460
        assert result.change == 48_540
        assert result.has_change_output
        assert len(tx.outputs) == 2
        assert tx.outputs[0].value == 50_000
        assert tx.outputs[0].script_pubkey == address_to_scriptpubkey(destination)
        assert tx.outputs[1].value == 48_540
        assert tx.outputs[1].script_pubkey == address_to_scriptpubkey(change_address)
        assert result.input_utxos == [funding]

    def test_value_conservation(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction([funding], [(destination, 50_000)], change_address, 10)
        assert funding.value == result.transaction.total_output_value() + result.fee

    def test_inputs_unsigned_in_order(self, builder, wallet_address, make_utxo, change_address, destination) -> None:
        first = make_utxo(wallet_address(0).address, 30_000, txid_byte=0x01)
        second = make_utxo(wallet_address(1).address, 40_000, txid_byte=0x02, vout=3)

        result = builder.build_transaction([first, second], [(destination, 60_000)], change_address, 2)

        tx = result.transaction
        assert [inp.previous_output for inp in tx.inputs] == [first.outpoint, second.outpoint]
        assert all(inp.script_sig == b"" and inp.witness == [] for inp in tx.inputs)
        assert tx.version == 2
        assert tx.locktime == 0

    def test_default_sequence_does_not_signal_rbf(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction([funding], [(destination, 50_000)], change_address, 10)
        assert all(inp.sequence == 0xFFFFFFFE for inp in result.transaction.inputs)
        assert not result.transaction.signals_rbf

    def test_explicit_rbf_sequence(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction(
            [funding], [(destination, 50_000)], change_address, 10, sequence=SEQUENCE_RBF
        )
        assert result.transaction.signals_rbf

    def test_insufficient_funds(self, builder, funding, change_address, destination) -> None:
        with pytest.raises(InsufficientFundsError):
            builder.build_transaction([funding], [(destination, 99_500)], change_address, 10)

    def test_output_below_dust(self, builder, funding, change_address, destination) -> None:
        with pytest.raises(AmountBelowDustError) as exc_info:
            builder.build_transaction([funding], [(destination, 500)], change_address, 10)
        assert exc_info.value.amount == 500
        assert exc_info.value.dust_limit == 546

    def test_output_at_dust_limit_allowed(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction([funding], [(destination, 546)], change_address, 10)
        assert result.transaction.outputs[0].value == 546

    def test_dust_change_goes_to_fee(self, builder, funding, change_address, destination) -> None:
        # Leaves exactly 500 sats of change after the estimated 1460 sat fee
        result = builder.build_transaction([funding], [(destination, 98_040)], change_address, 10)

        assert result.change == 0
        assert not result.has_change_output
        assert len(result.transaction.outputs) == 1
        assert result.fee == 1_960

    def test_exact_spend(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction([funding], [(destination, 98_540)], change_address, 10)
        assert result.change == 0
        assert result.fee == 1_460
        assert len(result.transaction.outputs) == 1

    def test_multiple_outputs(self, builder, funding, change_address, destination, wallet_address) -> None:
        outputs = [(destination, 20_000), (wallet_address(5).address, 30_000)]
        result = builder.build_transaction([funding], outputs, change_address, 1)
        # 10 + 68 + 3 * 34
        assert result.estimated_vsize == 180
        assert [out.value for out in result.transaction.outputs] == [20_000, 30_000, 49_820]

    def test_requires_inputs(self, builder, change_address, destination) -> None:
        with pytest.raises(ValueError):
            builder.build_transaction([], [(destination, 10_000)], change_address, 10)

    def test_requires_positive_fee_rate(self, builder, funding, change_address, destination) -> None:
        with pytest.raises(ValueError):
            builder.build_transaction([funding], [(destination, 10_000)], change_address, 0)

    def test_rejects_negative_amount(self, builder, funding, change_address, destination) -> None:
        with pytest.raises(ValueError):
            builder.build_transaction([funding], [(destination, -1)], change_address, 10)

    def test_rejects_wrong_network_address(self, funding, change_address) -> None:
        testnet_builder = TransactionBuilder("testnet")
        with pytest.raises(InvalidAddressError):
            testnet_builder.build_transaction(
                [funding], [("1BvBMSEYstWetqTFn5Au4m4GFg7xJaNVN2", 10_000)], change_address, 10
            )

    def test_custom_dust_limit(self, funding, change_address, destination) -> None:
        settings = EngineSettings(policy={"dust_limit": 1_000})
        strict = TransactionBuilder("mainnet", settings=settings)
        assert strict.dust_limit == 1_000
        with pytest.raises(AmountBelowDustError):
            strict.build_transaction([funding], [(destination, 600)], change_address, 10)

    def test_fee_rate_defaults_to_settings(self, funding, change_address, destination) -> None:
        settings = EngineSettings(policy={"default_fee_rate": 10})
        result = TransactionBuilder("mainnet", settings=settings).build_transaction(
            [funding], [(destination, 50_000)], change_address
        )
        assert result.fee == 1_460

    def test_fractional_fee_rate(self, builder, funding, change_address, destination) -> None:
        result = builder.build_transaction([funding], [(destination, 50_000)], change_address, 1.01)
        # ceil(146 * 1.01) = ceil(147.46)
        assert result.fee == 148


class TestSelectUtxos:
    @pytest.fixture
    def wallet_utxos(self, wallet_address, make_utxo):
        return [
            make_utxo(wallet_address(0).address, 20_000, txid_byte=0x03),
            make_utxo(wallet_address(1).address, 50_000, txid_byte=0x01),
            make_utxo(wallet_address(2).address, 30_000, txid_byte=0x02),
        ]

    def test_largest_first(self, builder, wallet_utxos) -> None:
        selected = builder.select_utxos(wallet_utxos, 60_000, 10)
        assert [u.value for u in selected] == [50_000, 30_000]

    def test_fee_counted_in_target(self, builder, wallet_utxos) -> None:
        # 50_000 alone cannot also pay the 1460 sat fee
        selected = builder.select_utxos(wallet_utxos, 49_000, 10)
        assert len(selected) == 2

    def test_uses_everything_when_needed(self, builder, wallet_utxos) -> None:
        # 10 + 3 * 68 + 2 * 34 = 282 vB
        selected = builder.select_utxos(wallet_utxos, 97_180, 10)
        assert len(selected) == 3

    def test_insufficient(self, builder, wallet_utxos) -> None:
        with pytest.raises(InsufficientFundsError):
            builder.select_utxos(wallet_utxos, 97_181, 10)

    def test_min_confirmations(self, builder, wallet_utxos) -> None:
        with pytest.raises(InsufficientFundsError):
            builder.select_utxos(wallet_utxos, 1_000, 10, min_confirmations=2)

    def test_selection_feeds_builder(self, builder, wallet_utxos, change_address, destination) -> None:
        selected = builder.select_utxos(wallet_utxos, 60_000, 10)
        result = builder.build_transaction(selected, [(destination, 60_000)], change_address, 10)
        assert result.fee == 2_140
        assert result.change == 80_000 - 60_000 - 2_140
