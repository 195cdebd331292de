"""
Tests for btccore.errors
"""

from __future__ import annotations

import pytest

from btccore import errors


@pytest.mark.parametrize(
    "exc_type, group",
    [
        (errors.InvalidWordCountError, errors.ValidationError),
        (errors.InvalidWordError, errors.ValidationError),
        (errors.InvalidChecksumError, errors.MnemonicError),
        (errors.InvalidEntropyError, errors.MnemonicError),
        (errors.InvalidAddressError, errors.ValidationError),
        (errors.InvalidDerivationPathError, errors.ValidationError),
        (errors.TransactionParseError, errors.ValidationError),
        (errors.KeyDerivationError, errors.CryptoOperationError),
        (errors.SigningError, errors.CryptoOperationError),
        (errors.AmountBelowDustError, errors.PolicyError),
        (errors.InsufficientFundsError, errors.PolicyError),
        (errors.InsufficientFeeBumpError, errors.PolicyError),
        (errors.ParentFeeAlreadySufficientError, errors.PolicyError),
        (errors.UnsupportedScriptTypeError, errors.StructuralError),
        (errors.PrivateKeyMismatchError, errors.StructuralError),
        (errors.CannotBumpFeeError, errors.StructuralError),
        (errors.RbfNotEnabledError, errors.StructuralError),
        (errors.NoUnspentOutputsError, errors.StructuralError),
    ],
)
def test_hierarchy(exc_type: type[Exception], group: type[Exception]) -> None:
    assert issubclass(exc_type, group)
    assert issubclass(exc_type, errors.WalletEngineError)


def test_validation_errors_are_value_errors() -> None:
    with pytest.raises(ValueError):
        raise errors.InvalidAddressError("bad address")


def test_policy_errors_are_not_value_errors() -> None:
    assert not issubclass(errors.InsufficientFundsError, ValueError)


def test_mnemonic_error_attributes() -> None:
    assert errors.InvalidWordCountError(13).count == 13
    err = errors.InvalidWordError("bitcoinz")
    assert err.word == "bitcoinz"
    assert "bitcoinz" in str(err)


def test_dust_error_message() -> None:
    err = errors.AmountBelowDustError(100, 546)
    assert (err.amount, err.dust_limit) == (100, 546)
    assert "546" in str(err)
