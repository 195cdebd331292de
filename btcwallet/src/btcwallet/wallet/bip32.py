"""
BIP32 HD key derivation.

Implements BIP32 private derivation plus the BIP44/49/84/86 purpose
conventions used to pick an address type from a derivation path.
"""

from __future__ import annotations

import hashlib
import hmac
import re
import struct
from dataclasses import dataclass, field

from loguru import logger

from btccore.bitcoin import (
    NetworkParams,
    NetworkType,
    ScriptType,
    base58check_decode,
    base58check_encode,
    get_network_params,
    pubkey_to_address,
)
from btccore.constants import CURVE_ORDER, HARDENED_OFFSET
from btccore.crypto import CryptoProvider, default_provider, hash160
from btccore.errors import (
    InvalidAddressError,
    InvalidDerivationPathError,
    KeyDerivationError,
    ValidationError,
)
from btccore.settings import get_settings
from btcwallet.wallet.models import DerivedAddress

# Purpose field -> address type
PURPOSE_SCRIPT_TYPES = {
    44: ScriptType.P2PKH,
    49: ScriptType.P2SH,  # P2SH-wrapped P2WPKH
    84: ScriptType.P2WPKH,
    86: ScriptType.P2TR,
}

_COMPONENT_RE = re.compile(r"^(\d+)(['hH]?)$")


@dataclass(frozen=True)
class DerivationPath:
    """Parsed derivation path: ordered (index, hardened) pairs."""

    components: tuple[tuple[int, bool], ...] = ()

    @classmethod
    def parse(cls, path: str) -> DerivationPath:
        """
        Parse path notation such as "m/84'/0'/0'/0/5".

        ', h and H mark hardened components.

        Raises:
            InvalidDerivationPathError: If the path is malformed
        """
        parts = path.strip().split("/")
        if parts[0] not in ("m", "M"):
            raise InvalidDerivationPathError(f"Path must start with 'm': {path!r}")

        components = []
        for part in parts[1:]:
            match = _COMPONENT_RE.match(part)
            if match is None:
                raise InvalidDerivationPathError(f"Invalid path component {part!r} in {path!r}")
            index = int(match.group(1))
            if index >= HARDENED_OFFSET:
                raise InvalidDerivationPathError(f"Path index out of range: {index}")
            components.append((index, bool(match.group(2))))

        return cls(tuple(components))

    @property
    def indices(self) -> list[int]:
        """Child indices with the hardened offset applied."""
        return [index + HARDENED_OFFSET if hardened else index for index, hardened in self.components]

    @property
    def purpose(self) -> int | None:
        if not self.components:
            return None
        return self.components[0][0]

    def __str__(self) -> str:
        return "/".join(["m"] + [f"{i}'" if h else str(i) for i, h in self.components])

    def __len__(self) -> int:
        return len(self.components)


@dataclass(frozen=True)
class HDKey:
    """
    Hierarchical Deterministic Key for Bitcoin.
    Implements BIP32 derivation. Instances are immutable; derivation
    returns new keys.
    """

    private_key: bytes
    chain_code: bytes
    depth: int = 0
    index: int = 0
    parent_fingerprint: bytes = b"\x00\x00\x00\x00"
    crypto: CryptoProvider = field(default_factory=default_provider, repr=False, compare=False)

    @classmethod
    def from_seed(cls, seed: bytes, crypto: CryptoProvider | None = None) -> HDKey:
        """Create master HD key from seed"""
        if not 16 <= len(seed) <= 64:
            raise KeyDerivationError(f"Seed must be 16-64 bytes, got {len(seed)}")

        hmac_result = hmac.new(b"Bitcoin seed", seed, hashlib.sha512).digest()
        key_bytes = hmac_result[:32]
        chain_code = hmac_result[32:]

        crypto = crypto or default_provider()
        if not crypto.is_valid_private_key(key_bytes):
            raise KeyDerivationError("Master key is invalid for this seed")

        return cls(private_key=key_bytes, chain_code=chain_code, crypto=crypto)

    @property
    def public_key(self) -> bytes:
        """Compressed SEC1 public key."""
        pubkey = self.crypto.derive_public_key(self.private_key, compressed=True)
        if pubkey is None:
            raise KeyDerivationError("Cannot derive public key")
        return pubkey

    @property
    def fingerprint(self) -> bytes:
        return hash160(self.public_key)[:4]

    @property
    def is_hardened(self) -> bool:
        return self.index >= HARDENED_OFFSET

    def derive_child(self, index: int) -> HDKey:
        """
        Derive the child at ``index``; indices >= 2^31 are hardened.

        Raises:
            KeyDerivationError: If IL >= n or the child key is zero
        """
        if not 0 <= index <= 0xFFFFFFFF:
            raise KeyDerivationError(f"Child index out of range: {index}")

        if index >= HARDENED_OFFSET:
            data = b"\x00" + self.private_key + index.to_bytes(4, "big")
        else:
            data = self.public_key + index.to_bytes(4, "big")

        hmac_result = hmac.new(self.chain_code, data, hashlib.sha512).digest()
        key_offset = hmac_result[:32]
        child_chain = hmac_result[32:]

        if int.from_bytes(key_offset, "big") >= CURVE_ORDER:
            raise KeyDerivationError(f"Invalid child key at index {index} (IL >= n)")

        child_key = self.crypto.tweak_add_private_key(self.private_key, key_offset)
        if child_key is None:
            raise KeyDerivationError(f"Invalid child key at index {index}")

        return HDKey(
            private_key=child_key,
            chain_code=child_chain,
            depth=self.depth + 1,
            index=index,
            parent_fingerprint=self.fingerprint,
            crypto=self.crypto,
        )

    def derive(self, path: str | DerivationPath) -> HDKey:
        """
        Derive child key from path notation (e.g., "m/84'/0'/0'/0/0")
        ' indicates hardened derivation
        """
        if isinstance(path, str):
            path = DerivationPath.parse(path)

        key = self
        for index in path.indices:
            key = key.derive_child(index)
        return key

    def _serialize(self, version: int, key_data: bytes) -> str:
        payload = (
            struct.pack(">I", version)
            + bytes([self.depth])
            + self.parent_fingerprint
            + struct.pack(">I", self.index)
            + self.chain_code
            + key_data
        )
        return base58check_encode(payload)

    def to_xprv(self, network: str | NetworkType | NetworkParams = "mainnet") -> str:
        """Extended private key (xprv/tprv)."""
        params = get_network_params(network)
        return self._serialize(params.xprv_version, b"\x00" + self.private_key)

    def to_xpub(self, network: str | NetworkType | NetworkParams = "mainnet") -> str:
        """Extended public key (xpub/tpub)."""
        params = get_network_params(network)
        return self._serialize(params.xpub_version, self.public_key)


def generate_master_key(seed: bytes, crypto: CryptoProvider | None = None) -> HDKey:
    return HDKey.from_seed(seed, crypto)


def derive_key(parent: HDKey, index: int, hardened: bool = False) -> HDKey:
    """Derive one child; ``index`` is given without the hardened offset."""
    if not 0 <= index < HARDENED_OFFSET:
        raise KeyDerivationError(f"Child index out of range: {index}")
    return parent.derive_child(index + HARDENED_OFFSET if hardened else index)


def derive_path(seed: bytes, path: str, crypto: CryptoProvider | None = None) -> HDKey:
    return HDKey.from_seed(seed, crypto).derive(path)


def script_type_for_purpose(purpose: int | None) -> ScriptType:
    """Address type implied by a BIP44-style purpose field, P2WPKH otherwise."""
    if purpose is None:
        return ScriptType.P2WPKH
    return PURPOSE_SCRIPT_TYPES.get(purpose, ScriptType.P2WPKH)


def derive_address(
    seed: bytes,
    path: str,
    network: str | NetworkType | NetworkParams = "mainnet",
    crypto: CryptoProvider | None = None,
) -> DerivedAddress:
    """
    Derive the key and address at ``path``.

    The script type follows the purpose field: 44 -> P2PKH,
    49 -> P2SH-P2WPKH, 84 -> P2WPKH, 86 -> P2TR (BIP86 key-path output).
    Any other purpose yields a P2WPKH address.

    Returns:
        DerivedAddress, which also unpacks as (private_key, address)
    """
    parsed = DerivationPath.parse(path)
    script_type = script_type_for_purpose(parsed.purpose)

    key = derive_path(seed, str(parsed), crypto)
    public_key = key.public_key
    address = pubkey_to_address(public_key, script_type, network)

    if get_settings().logging.sensitive:
        logger.debug(f"Derived {script_type.value} address {address} at {parsed}")

    return DerivedAddress(
        private_key=key.private_key,
        public_key=public_key,
        address=address,
        path=str(parsed),
        script_type=script_type,
    )


def account_path(
    purpose: int,
    network: str | NetworkType | NetworkParams = "mainnet",
    account: int = 0,
    change: int = 0,
    index: int = 0,
) -> str:
    """Build m/purpose'/coin'/account'/change/index for ``network``."""
    coin_type = get_network_params(network).bip44_coin_type
    return f"m/{purpose}'/{coin_type}'/{account}'/{change}/{index}"


def private_key_to_wif(
    private_key: bytes,
    network: str | NetworkType | NetworkParams = "mainnet",
    compressed: bool = True,
) -> str:
    """Encode a private key in Wallet Import Format."""
    if len(private_key) != 32:
        raise ValidationError(f"Private key must be 32 bytes, got {len(private_key)}")
    params = get_network_params(network)
    payload = bytes([params.wif_version]) + private_key
    if compressed:
        payload += b"\x01"
    return base58check_encode(payload)


def wif_to_private_key(wif: str) -> tuple[bytes, bool, NetworkType]:
    """
    Decode a WIF string.

    Returns:
        (private_key, compressed, network); testnet WIF maps to TESTNET
    """
    try:
        payload = base58check_decode(wif)
    except InvalidAddressError as e:
        raise ValidationError(f"Invalid WIF: {e}") from e
    if not payload:
        raise ValidationError("Invalid WIF: empty payload")

    version = payload[0]
    if version == get_network_params(NetworkType.MAINNET).wif_version:
        network = NetworkType.MAINNET
    elif version == get_network_params(NetworkType.TESTNET).wif_version:
        network = NetworkType.TESTNET
    else:
        raise ValidationError(f"Unknown WIF version: {version:#04x}")

    if len(payload) == 33:
        return payload[1:], False, network
    if len(payload) == 34 and payload[33] == 0x01:
        return payload[1:33], True, network
    raise ValidationError(f"Invalid WIF payload length: {len(payload)}")


__all__ = [
    "PURPOSE_SCRIPT_TYPES",
    "DerivationPath",
    "HDKey",
    "account_path",
    "derive_address",
    "derive_key",
    "derive_path",
    "generate_master_key",
    "private_key_to_wif",
    "script_type_for_purpose",
    "wif_to_private_key",
]
