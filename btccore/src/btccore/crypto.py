"""
Cryptographic primitives for the wallet engine.

Hash functions are plain module-level functions. Elliptic-curve operations
live on CryptoProvider, a stateless wrapper around libsecp256k1 (coincurve).
Every EC method returns None when the operation is impossible (bad length,
scalar out of range, unparsable key) so callers can abort without relying
on exceptions for control flow.
"""

from __future__ import annotations

import hashlib
import secrets

import coincurve
from coincurve.ecdsa import cdata_to_der, deserialize_compact
from loguru import logger

from btccore.constants import CURVE_ORDER

try:
    hashlib.new("ripemd160")
    _HASHLIB_HAS_RIPEMD160 = True
except ValueError:
    _HASHLIB_HAS_RIPEMD160 = False


# =============================================================================
# Hash Functions
# =============================================================================


def sha256(data: bytes) -> bytes:
    return hashlib.sha256(data).digest()


def hash256(data: bytes) -> bytes:
    """
    SHA256(SHA256(data)) - Used for Bitcoin txids, checksums and sighashes.

    Args:
        data: Input data to hash

    Returns:
        32-byte hash
    """
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def ripemd160(data: bytes) -> bytes:
    """
    RIPEMD-160 digest.

    Uses hashlib when the linked OpenSSL still ships the algorithm, otherwise
    the pycryptodome implementation.
    """
    if _HASHLIB_HAS_RIPEMD160:
        return hashlib.new("ripemd160", data).digest()

    from Crypto.Hash import RIPEMD160

    return RIPEMD160.new(data).digest()


def hash160(data: bytes) -> bytes:
    """
    RIPEMD160(SHA256(data)) - Used for Bitcoin addresses and key fingerprints.

    Args:
        data: Input data to hash

    Returns:
        20-byte hash
    """
    return ripemd160(sha256(data))


def tagged_hash(tag: str, msg: bytes) -> bytes:
    """BIP340 tagged hash: SHA256(SHA256(tag) || SHA256(tag) || msg)."""
    tag_hash = sha256(tag.encode("utf-8"))
    return sha256(tag_hash + tag_hash + msg)


# =============================================================================
# DER helpers
# =============================================================================


def compact_to_der(signature: bytes) -> bytes:
    """Convert a 64-byte r||s signature to strict DER."""
    if len(signature) != 64:
        raise ValueError(f"Compact signature must be 64 bytes, got {len(signature)}")
    r = int.from_bytes(signature[:32], "big")
    s = int.from_bytes(signature[32:], "big")
    if not (0 < r < CURVE_ORDER and 0 < s < CURVE_ORDER):
        raise ValueError("Compact signature r and s must be in [1, n-1]")
    return cdata_to_der(deserialize_compact(signature))


# =============================================================================
# Elliptic curve operations
# =============================================================================


class CryptoProvider:
    """
    secp256k1 operations used by key derivation and signing.

    The provider holds no state; one instance can be shared freely between
    threads and components.
    """

    def generate_private_key(self) -> bytes:
        while True:
            candidate = secrets.token_bytes(32)
            if self.is_valid_private_key(candidate):
                return candidate

    def is_valid_private_key(self, private_key: bytes) -> bool:
        if len(private_key) != 32:
            return False
        value = int.from_bytes(private_key, "big")
        return 0 < value < CURVE_ORDER

    def _private_key(self, private_key: bytes) -> coincurve.PrivateKey | None:
        if not self.is_valid_private_key(private_key):
            logger.debug("Rejected private key: wrong length or out of range")
            return None
        return coincurve.PrivateKey(private_key)

    def derive_public_key(self, private_key: bytes, compressed: bool = True) -> bytes | None:
        """
        Derive the SEC1 public key for a private key.

        Returns:
            33-byte (compressed) or 65-byte (uncompressed) public key, or None
        """
        key = self._private_key(private_key)
        if key is None:
            return None
        return key.public_key.format(compressed=compressed)

    def sign_ecdsa(self, msg_hash: bytes, private_key: bytes) -> bytes | None:
        """
        Sign a 32-byte digest with ECDSA (RFC6979 nonce, low-S).

        The digest is signed as-is; hashing is the caller's job.

        Returns:
            DER-encoded signature (at most 72 bytes) or None
        """
        if len(msg_hash) != 32:
            logger.debug(f"Refusing to sign digest of length {len(msg_hash)}")
            return None
        key = self._private_key(private_key)
        if key is None:
            return None
        return key.sign(msg_hash, hasher=None)

    def sign_ecdsa_compact(self, msg_hash: bytes, private_key: bytes) -> bytes | None:
        """Sign a 32-byte digest and return the 64-byte r||s form."""
        if len(msg_hash) != 32:
            return None
        key = self._private_key(private_key)
        if key is None:
            return None
        # Recoverable signatures share the nonce function; drop the recovery id
        return key.sign_recoverable(msg_hash, hasher=None)[:64]

    def verify_ecdsa(self, signature: bytes, public_key: bytes, msg_hash: bytes) -> bool:
        """
        Verify an ECDSA signature over a 32-byte digest.

        Accepts DER signatures and 64-byte compact signatures.
        """
        if len(msg_hash) != 32 or not signature:
            return False
        try:
            der = compact_to_der(signature) if len(signature) == 64 else signature
            return coincurve.PublicKey(public_key).verify(der, msg_hash, hasher=None)
        except (ValueError, TypeError):
            return False

    def x_only_public_key(self, private_key: bytes) -> bytes | None:
        """BIP340 x-only public key (32 bytes)."""
        pubkey = self.derive_public_key(private_key, compressed=True)
        if pubkey is None:
            return None
        return pubkey[1:]

    def sign_schnorr(
        self, msg_hash: bytes, private_key: bytes, aux_rand: bytes | None = None
    ) -> bytes | None:
        """
        Create a BIP340 Schnorr signature.

        Args:
            msg_hash: 32-byte message
            private_key: 32-byte secret; the x-only key pair is derived from it
            aux_rand: Optional 32 bytes of auxiliary randomness

        Returns:
            64-byte signature or None
        """
        if len(msg_hash) != 32:
            return None
        if aux_rand is not None and len(aux_rand) != 32:
            return None
        key = self._private_key(private_key)
        if key is None:
            return None
        if aux_rand is None:
            return key.sign_schnorr(msg_hash)
        return key.sign_schnorr(msg_hash, aux_rand)

    def verify_schnorr(self, signature: bytes, x_only_pubkey: bytes, msg_hash: bytes) -> bool:
        if len(signature) != 64 or len(x_only_pubkey) != 32 or len(msg_hash) != 32:
            return False
        try:
            return coincurve.PublicKeyXOnly(x_only_pubkey).verify(signature, msg_hash)
        except (ValueError, TypeError):
            return False

    def tweak_add_private_key(self, private_key: bytes, tweak: bytes) -> bytes | None:
        """
        Scalar addition (private_key + tweak) mod n.

        Used by BIP32 child derivation. Returns None when the tweak is not
        below the curve order or the sum is zero.
        """
        key = self._private_key(private_key)
        if key is None or len(tweak) != 32:
            return None
        tweak_int = int.from_bytes(tweak, "big")
        if tweak_int >= CURVE_ORDER:
            logger.debug("Tweak is not below the curve order")
            return None
        if tweak_int == 0:
            return private_key
        try:
            return key.add(tweak).secret
        except ValueError:
            logger.debug("Tweak-add produced an invalid key")
            return None

    def tweak_keypair_x_only(self, private_key: bytes, tweak: bytes) -> bytes | None:
        """
        Tweak a key pair the way BIP341 does for x-only keys.

        The secret is negated first when its public key has an odd Y, so the
        result matches P + t*G where P is the even-Y lift of the x-only key.
        """
        pubkey = self.derive_public_key(private_key, compressed=True)
        if pubkey is None or len(tweak) != 32:
            return None
        if pubkey[0] == 0x03:
            negated = CURVE_ORDER - int.from_bytes(private_key, "big")
            private_key = negated.to_bytes(32, "big")
        return self.tweak_add_private_key(private_key, tweak)

    def taproot_tweak_private_key(self, private_key: bytes, merkle_root: bytes = b"") -> bytes | None:
        """Tweaked secret for a Taproot key-path spend (BIP86 when merkle_root is empty)."""
        internal_key = self.x_only_public_key(private_key)
        if internal_key is None:
            return None
        tweak = tagged_hash("TapTweak", internal_key + merkle_root)
        return self.tweak_keypair_x_only(private_key, tweak)

    def taproot_output_key(self, internal_key: bytes, merkle_root: bytes = b"") -> bytes | None:
        """
        Compute the x-only Taproot output key Q = P + H_TapTweak(P || m)*G.

        Args:
            internal_key: 32-byte x-only key or 33-byte compressed key
            merkle_root: Script tree root, empty for key-path only outputs
        """
        if len(internal_key) == 33:
            internal_key = internal_key[1:]
        if len(internal_key) != 32:
            return None
        tweak = tagged_hash("TapTweak", internal_key + merkle_root)
        if int.from_bytes(tweak, "big") >= CURVE_ORDER:
            return None
        try:
            point = coincurve.PublicKey(b"\x02" + internal_key)
            return point.add(tweak).format(compressed=True)[1:]
        except ValueError:
            return None


_default_provider = CryptoProvider()


def default_provider() -> CryptoProvider:
    """Shared stateless provider for callers that do not inject their own."""
    return _default_provider


__all__ = [
    "CryptoProvider",
    "compact_to_der",
    "default_provider",
    "hash160",
    "hash256",
    "ripemd160",
    "sha256",
    "tagged_hash",
]
