"""
BIP39 mnemonic generation, validation and seed derivation.

Phrase encoding, decoding and generation go through python-mnemonic.
Inputs are pre-checked so each failure maps to a typed error.
"""

from __future__ import annotations

import hashlib
import unicodedata
from functools import lru_cache

from mnemonic import Mnemonic

from btccore.constants import (
    BIP39_PBKDF2_ROUNDS,
    BIP39_VALID_STRENGTHS,
    BIP39_VALID_WORD_COUNTS,
)
from btccore.errors import (
    InvalidChecksumError,
    InvalidEntropyError,
    InvalidWordCountError,
    InvalidWordError,
    MnemonicError,
)


@lru_cache(maxsize=1)
def _mnemonic() -> Mnemonic:
    return Mnemonic("english")


@lru_cache(maxsize=1)
def _words() -> frozenset[str]:
    return frozenset(_mnemonic().wordlist)


def _normalize(text: str) -> str:
    return unicodedata.normalize("NFKD", text)


def _split_words(phrase: str) -> list[str]:
    return _normalize(phrase).lower().split()


def mnemonic_from_entropy(entropy: bytes) -> str:
    """
    Encode entropy as a mnemonic.

    Args:
        entropy: 16, 20, 24, 28 or 32 bytes

    Returns:
        Space-separated mnemonic of 12-24 words

    Raises:
        InvalidEntropyError: If the entropy length is not allowed
    """
    if len(entropy) * 8 not in BIP39_VALID_STRENGTHS:
        raise InvalidEntropyError(
            f"Entropy must be 16, 20, 24, 28 or 32 bytes, got {len(entropy)}"
        )
    return _mnemonic().to_mnemonic(entropy)


def mnemonic_to_entropy(phrase: str) -> bytes:
    """
    Decode a mnemonic back to its entropy, verifying the checksum.

    Raises:
        InvalidWordCountError: Word count is not 12, 15, 18, 21 or 24
        InvalidWordError: A word is not in the wordlist
        InvalidChecksumError: Checksum bits do not match
    """
    words = _split_words(phrase)
    if len(words) not in BIP39_VALID_WORD_COUNTS:
        raise InvalidWordCountError(len(words))

    known = _words()
    for word in words:
        if word not in known:
            raise InvalidWordError(word)

    try:
        return bytes(_mnemonic().to_entropy(words))
    except ValueError as e:
        # Word count and wordlist membership are checked above
        raise InvalidChecksumError() from e


def generate_mnemonic(strength: int = 256) -> str:
    """
    Generate a new mnemonic from secure randomness.

    Args:
        strength: Entropy bits (128, 160, 192, 224 or 256)

    Returns:
        Mnemonic phrase with valid checksum
    """
    if strength not in BIP39_VALID_STRENGTHS:
        raise InvalidEntropyError(
            f"Strength must be one of {', '.join(map(str, BIP39_VALID_STRENGTHS))}, got {strength}"
        )
    return _mnemonic().generate(strength=strength)


def word_count_to_strength(word_count: int) -> int:
    if word_count not in BIP39_VALID_WORD_COUNTS:
        raise InvalidWordCountError(word_count)
    return word_count * 11 * 32 // 33


def validate_mnemonic(phrase: str) -> bool:
    """
    Validate a mnemonic phrase.

    Returns:
        True when the phrase is valid

    Raises:
        MnemonicError: The specific validation failure
    """
    mnemonic_to_entropy(phrase)
    return True


def is_valid_mnemonic(phrase: str) -> bool:
    """Boolean form of validate_mnemonic; never raises."""
    try:
        return validate_mnemonic(phrase)
    except MnemonicError:
        return False


def mnemonic_to_seed(mnemonic: str, passphrase: str = "") -> bytes:
    """
    Convert BIP39 mnemonic to a 64-byte seed.

    PBKDF2-HMAC-SHA512 over the NFKD-normalized phrase with salt
    "mnemonic" + passphrase and 2048 rounds. The phrase is not validated
    here, matching BIP39.
    """
    mnemonic_bytes = _normalize(" ".join(mnemonic.split())).encode("utf-8")
    salt = _normalize("mnemonic" + passphrase).encode("utf-8")
    return hashlib.pbkdf2_hmac("sha512", mnemonic_bytes, salt, BIP39_PBKDF2_ROUNDS, dklen=64)


__all__ = [
    "generate_mnemonic",
    "is_valid_mnemonic",
    "mnemonic_from_entropy",
    "mnemonic_to_entropy",
    "mnemonic_to_seed",
    "validate_mnemonic",
    "word_count_to_strength",
]
