"""
Exception hierarchy for the wallet engine.

Errors are grouped by how a caller is expected to react:

- ValidationError: bad input at the boundary of a call (mnemonic, address,
  path, raw transaction). Nothing has been applied.
- CryptoOperationError: a curve operation was impossible (invalid scalar,
  unparsable key or signature). Abort the current flow.
- PolicyError: economic rule violated (dust, funds, fee). The caller may
  adjust amounts or fee rate and retry.
- StructuralError: the request cannot be satisfied for this transaction
  shape (script type, key count, missing change output).
"""

from __future__ import annotations


class WalletEngineError(Exception):
    """Base class for every error raised by the engine."""


# =============================================================================
# Validation
# =============================================================================


class ValidationError(WalletEngineError, ValueError):
    pass


class MnemonicError(ValidationError):
    pass


class InvalidWordCountError(MnemonicError):
    def __init__(self, count: int):
        super().__init__(f"Invalid mnemonic word count: {count} (expected 12, 15, 18, 21 or 24)")
        self.count = count


class InvalidWordError(MnemonicError):
    def __init__(self, word: str):
        super().__init__(f"Word not in BIP39 wordlist: {word!r}")
        self.word = word


class InvalidChecksumError(MnemonicError):
    def __init__(self) -> None:
        super().__init__("Mnemonic checksum mismatch")


class InvalidEntropyError(MnemonicError):
    pass


class InvalidAddressError(ValidationError):
    pass


class InvalidDerivationPathError(ValidationError):
    pass


class TransactionParseError(ValidationError):
    pass


# =============================================================================
# Cryptographic operations
# =============================================================================


class CryptoOperationError(WalletEngineError):
    pass


class KeyDerivationError(CryptoOperationError):
    pass


class SigningError(CryptoOperationError):
    pass


# =============================================================================
# Economic policy
# =============================================================================


class PolicyError(WalletEngineError):
    pass


class AmountBelowDustError(PolicyError):
    def __init__(self, amount: int, dust_limit: int):
        super().__init__(f"Output amount {amount} sats is below dust limit ({dust_limit} sats)")
        self.amount = amount
        self.dust_limit = dust_limit


class InsufficientFundsError(PolicyError):
    pass


class InsufficientFeeBumpError(PolicyError):
    pass


class ParentFeeAlreadySufficientError(PolicyError):
    pass


# =============================================================================
# Structural
# =============================================================================


class StructuralError(WalletEngineError):
    pass


class UnsupportedScriptTypeError(StructuralError):
    pass


class PrivateKeyMismatchError(StructuralError):
    pass


class CannotBumpFeeError(StructuralError):
    pass


class RbfNotEnabledError(StructuralError):
    pass


class NoUnspentOutputsError(StructuralError):
    pass


__all__ = [
    "AmountBelowDustError",
    "CannotBumpFeeError",
    "CryptoOperationError",
    "InsufficientFeeBumpError",
    "InsufficientFundsError",
    "InvalidAddressError",
    "InvalidChecksumError",
    "InvalidDerivationPathError",
    "InvalidEntropyError",
    "InvalidWordCountError",
    "InvalidWordError",
    "KeyDerivationError",
    "MnemonicError",
    "NoUnspentOutputsError",
    "ParentFeeAlreadySufficientError",
    "PolicyError",
    "PrivateKeyMismatchError",
    "RbfNotEnabledError",
    "SigningError",
    "StructuralError",
    "TransactionParseError",
    "UnsupportedScriptTypeError",
    "ValidationError",
    "WalletEngineError",
]
