"""
Bitcoin address and script utilities.

This module provides the address/script codec:
- Network parameters (bech32 HRP, base58 version bytes, WIF and BIP32 versions)
- Base58Check and Bech32/Bech32m encoding/decoding
- scriptPubKey templates for P2PKH, P2SH, P2WPKH, P2WSH and P2TR
- Structural script type detection
- Amount helpers

Uses external libraries for the checksummed encodings:
- embit: bech32/bech32m segwit address codec (BIP173/BIP350)
- base58: Base58Check encoding
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import Enum

import base58
from embit import bech32 as embit_bech32

from btccore.constants import SATS_PER_BTC
from btccore.crypto import default_provider, hash160, sha256
from btccore.errors import InvalidAddressError


class NetworkType(str, Enum):
    """Bitcoin network types."""

    MAINNET = "mainnet"
    TESTNET = "testnet"
    REGTEST = "regtest"


@dataclass(frozen=True)
class NetworkParams:
    """Per-network encoding constants."""

    name: NetworkType
    bech32_hrp: str
    p2pkh_version: int
    p2sh_version: int
    wif_version: int
    xpub_version: int
    xprv_version: int
    bip44_coin_type: int


MAINNET_PARAMS = NetworkParams(
    name=NetworkType.MAINNET,
    bech32_hrp="bc",
    p2pkh_version=0x00,
    p2sh_version=0x05,
    wif_version=0x80,
    xpub_version=0x0488B21E,
    xprv_version=0x0488ADE4,
    bip44_coin_type=0,
)

TESTNET_PARAMS = NetworkParams(
    name=NetworkType.TESTNET,
    bech32_hrp="tb",
    p2pkh_version=0x6F,
    p2sh_version=0xC4,
    wif_version=0xEF,
    xpub_version=0x043587CF,
    xprv_version=0x04358394,
    bip44_coin_type=1,
)

# Regtest shares every testnet constant
REGTEST_PARAMS = NetworkParams(
    name=NetworkType.REGTEST,
    bech32_hrp=TESTNET_PARAMS.bech32_hrp,
    p2pkh_version=TESTNET_PARAMS.p2pkh_version,
    p2sh_version=TESTNET_PARAMS.p2sh_version,
    wif_version=TESTNET_PARAMS.wif_version,
    xpub_version=TESTNET_PARAMS.xpub_version,
    xprv_version=TESTNET_PARAMS.xprv_version,
    bip44_coin_type=TESTNET_PARAMS.bip44_coin_type,
)

NETWORK_PARAMS = {
    NetworkType.MAINNET: MAINNET_PARAMS,
    NetworkType.TESTNET: TESTNET_PARAMS,
    NetworkType.REGTEST: REGTEST_PARAMS,
}

KNOWN_HRPS = frozenset(params.bech32_hrp for params in NETWORK_PARAMS.values())


def get_network_params(network: str | NetworkType | NetworkParams) -> NetworkParams:
    """
    Resolve network parameters.

    Args:
        network: Network name, enum member, or params object

    Returns:
        NetworkParams for the network
    """
    if isinstance(network, NetworkParams):
        return network
    if isinstance(network, str):
        network = NetworkType(network)
    return NETWORK_PARAMS[network]


def get_hrp(network: str | NetworkType | NetworkParams) -> str:
    """Get bech32 human-readable part for network."""
    return get_network_params(network).bech32_hrp


class ScriptType(str, Enum):
    """scriptPubKey templates recognised by the engine."""

    P2PKH = "p2pkh"
    P2SH = "p2sh"
    P2WPKH = "p2wpkh"
    P2WSH = "p2wsh"
    P2TR = "p2tr"
    UNKNOWN = "unknown"


# =============================================================================
# Amount Utilities
# =============================================================================


def btc_to_sats(btc: float) -> int:
    """
    Convert BTC to satoshis safely.

    Uses round() instead of int() to avoid floating point precision errors
    that can truncate values (e.g. 0.0003 * 1e8 = 29999.999...).
    """
    return round(btc * SATS_PER_BTC)


def sats_to_btc(sats: int) -> float:
    """Convert satoshis to BTC. Only use for display/output."""
    return sats / SATS_PER_BTC


def format_amount(sats: int, include_unit: bool = True) -> str:
    """
    Format satoshi amount as string.
    Default: '1,000,000 sats (0.01000000 BTC)'
    """
    if include_unit:
        btc_val = sats_to_btc(sats)
        return f"{sats:,} sats ({btc_val:.8f} BTC)"
    return f"{sats:,}"


def validate_satoshi_amount(sats: int) -> None:
    """
    Validate that amount is a non-negative integer.

    Raises:
        TypeError: If amount is not an integer
        ValueError: If amount is negative
    """
    if isinstance(sats, bool) or not isinstance(sats, int):
        raise TypeError(f"Amount must be an integer (satoshis), got {type(sats)}")
    if sats < 0:
        raise ValueError(f"Amount cannot be negative, got {sats}")


# =============================================================================
# Base58Check
# =============================================================================


def base58check_encode(payload: bytes) -> str:
    """
    Encode payload || HASH256(payload)[:4] in base58.

    Leading zero bytes become leading '1' characters.
    """
    return base58.b58encode_check(payload).decode("ascii")


def base58check_decode(text: str) -> bytes:
    """
    Decode a Base58Check string and verify its checksum.

    Returns:
        The payload without the 4-byte checksum

    Raises:
        InvalidAddressError: On invalid characters or checksum mismatch
    """
    try:
        return base58.b58decode_check(text)
    except ValueError as e:
        raise InvalidAddressError(f"Invalid base58check string: {e}") from e


# =============================================================================
# Bech32 / Bech32m
# =============================================================================


def _check_witness_program(witver: int, program: bytes) -> None:
    if witver == 0 and len(program) in (20, 32):
        return
    if witver == 1 and len(program) == 32:
        return
    raise InvalidAddressError(
        f"Unsupported witness version/program: v{witver} with {len(program)}-byte program"
    )


def _split_hrp(address: str) -> str | None:
    """Human-readable part of a bech32 string, lowercased; None without a separator."""
    pos = address.rfind("1")
    if pos < 1:
        return None
    return address[:pos].lower()


def bech32_encode_address(hrp: str, witver: int, program: bytes) -> str:
    """
    Encode a segwit address.

    Version 0 uses the bech32 checksum, version 1 (Taproot) uses bech32m.

    Raises:
        InvalidAddressError: If the version/program combination is unsupported
    """
    _check_witness_program(witver, program)
    result = embit_bech32.encode(hrp, witver, program)
    if result is None:
        raise InvalidAddressError(f"Failed to encode bech32 address for hrp {hrp!r}")
    return result


def bech32_decode_address(address: str) -> tuple[str, int, bytes]:
    """
    Decode a segwit address.

    Returns:
        (hrp, witness_version, witness_program)

    Raises:
        InvalidAddressError: On checksum failure, wrong checksum variant or an
            unsupported version/program combination
    """
    hrp = _split_hrp(address)
    if hrp is None:
        raise InvalidAddressError(f"Invalid bech32 address: {address}")

    witver, witprog = embit_bech32.decode(hrp, address)
    if witver is None or witprog is None:
        raise InvalidAddressError(f"Invalid segwit address: {address}")

    program = bytes(witprog)
    _check_witness_program(witver, program)
    return hrp, witver, program


# =============================================================================
# Script templates
# =============================================================================


def _require_length(data: bytes, length: int, what: str) -> None:
    if len(data) != length:
        raise ValueError(f"{what} must be {length} bytes, got {len(data)}")


def p2pkh_script(pubkey_hash: bytes) -> bytes:
    # OP_DUP OP_HASH160 PUSH20 <pkh> OP_EQUALVERIFY OP_CHECKSIG
    _require_length(pubkey_hash, 20, "Public key hash")
    return b"\x76\xa9\x14" + pubkey_hash + b"\x88\xac"


def p2sh_script(script_hash: bytes) -> bytes:
    # OP_HASH160 PUSH20 <sh> OP_EQUAL
    _require_length(script_hash, 20, "Script hash")
    return b"\xa9\x14" + script_hash + b"\x87"


def p2wpkh_script(pubkey_hash: bytes) -> bytes:
    # OP_0 PUSH20 <pkh>
    _require_length(pubkey_hash, 20, "Public key hash")
    return b"\x00\x14" + pubkey_hash


def p2wsh_script(script_hash: bytes) -> bytes:
    # OP_0 PUSH32 <sha256(script)>
    _require_length(script_hash, 32, "Script hash")
    return b"\x00\x20" + script_hash


def p2tr_script(output_key: bytes) -> bytes:
    # OP_1 PUSH32 <x-only key>
    _require_length(output_key, 32, "X-only output key")
    return b"\x51\x20" + output_key


def create_p2pkh_script_code(pubkey: bytes | str) -> bytes:
    """
    scriptCode used when signing P2PKH-style spends (legacy P2PKH, and
    P2WPKH / P2SH-P2WPKH under BIP143).
    """
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    return p2pkh_script(hash160(pubkey))


def pubkey_to_p2wpkh_script(pubkey: bytes | str) -> bytes:
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    return p2wpkh_script(hash160(pubkey))


def pubkey_to_p2sh_p2wpkh_redeem_script(pubkey: bytes) -> bytes:
    """Redeem script of a nested segwit output: OP_0 PUSH20 <hash160(pubkey)>."""
    return p2wpkh_script(hash160(pubkey))


def script_to_p2wsh_scriptpubkey(script: bytes) -> bytes:
    return p2wsh_script(sha256(script))


def push_data(data: bytes) -> bytes:
    """Minimal script push of arbitrary data."""
    length = len(data)
    if length < 0x4C:
        return bytes([length]) + data
    if length <= 0xFF:
        return b"\x4c" + bytes([length]) + data
    if length <= 0xFFFF:
        return b"\x4d" + struct.pack("<H", length) + data
    return b"\x4e" + struct.pack("<I", length) + data


def detect_script_type(script: bytes) -> ScriptType:
    """
    Classify a scriptPubKey by its length and opcode prefix.

    Args:
        script: scriptPubKey bytes

    Returns:
        ScriptType, UNKNOWN when no template matches
    """
    length = len(script)
    if length == 25 and script[0] == 0x76 and script[1] == 0xA9:
        return ScriptType.P2PKH
    if length == 23 and script[0] == 0xA9:
        return ScriptType.P2SH
    if length == 22 and script[0] == 0x00 and script[1] == 0x14:
        return ScriptType.P2WPKH
    if length == 34 and script[0] == 0x00 and script[1] == 0x20:
        return ScriptType.P2WSH
    if length == 34 and script[0] == 0x51 and script[1] == 0x20:
        return ScriptType.P2TR
    return ScriptType.UNKNOWN


# =============================================================================
# Address Encoding/Decoding
# =============================================================================


def address_to_scriptpubkey(
    address: str, network: str | NetworkType | NetworkParams | None = None
) -> bytes:
    """
    Convert Bitcoin address to scriptPubKey.

    Supports:
    - P2WPKH / P2WSH (bc1q..., tb1q...)
    - P2TR (bc1p..., tb1p...)
    - P2PKH (1..., m..., n...)
    - P2SH (3..., 2...)

    Args:
        address: Bitcoin address string
        network: When given, the address must belong to this network

    Returns:
        scriptPubKey bytes

    Raises:
        InvalidAddressError: If the address cannot be decoded or is not one
            of the five recognised script types
    """
    params = get_network_params(network) if network is not None else None
    address = address.strip()

    if _split_hrp(address) in KNOWN_HRPS:
        hrp, witver, program = bech32_decode_address(address)
        if params is not None and hrp != params.bech32_hrp:
            raise InvalidAddressError(f"Address {address} is not a {params.name.value} address")
        if witver == 0 and len(program) == 20:
            return p2wpkh_script(program)
        if witver == 0:
            return p2wsh_script(program)
        return p2tr_script(program)

    decoded = base58check_decode(address)
    if len(decoded) != 21:
        raise InvalidAddressError(f"Invalid base58 address payload length: {len(decoded)}")
    version = decoded[0]
    payload = decoded[1:]

    candidates = [params] if params is not None else list(NETWORK_PARAMS.values())
    if any(version == p.p2pkh_version for p in candidates):
        return p2pkh_script(payload)
    if any(version == p.p2sh_version for p in candidates):
        return p2sh_script(payload)

    raise InvalidAddressError(f"Unknown address version: {version:#04x}")


def scriptpubkey_to_address(
    scriptpubkey: bytes, network: str | NetworkType | NetworkParams = "mainnet"
) -> str:
    """
    Convert scriptPubKey to address.

    Raises:
        InvalidAddressError: For scripts that have no address form
    """
    params = get_network_params(network)
    script_type = detect_script_type(scriptpubkey)

    if script_type == ScriptType.P2WPKH or script_type == ScriptType.P2WSH:
        return bech32_encode_address(params.bech32_hrp, 0, scriptpubkey[2:])
    if script_type == ScriptType.P2TR:
        return bech32_encode_address(params.bech32_hrp, 1, scriptpubkey[2:])
    if (
        script_type == ScriptType.P2PKH
        and scriptpubkey[2] == 0x14
        and scriptpubkey[23] == 0x88
        and scriptpubkey[24] == 0xAC
    ):
        return base58check_encode(bytes([params.p2pkh_version]) + scriptpubkey[3:23])
    if script_type == ScriptType.P2SH and scriptpubkey[1] == 0x14 and scriptpubkey[22] == 0x87:
        return base58check_encode(bytes([params.p2sh_version]) + scriptpubkey[2:22])

    raise InvalidAddressError(f"Unsupported scriptPubKey: {scriptpubkey.hex()}")


def try_scriptpubkey_to_address(
    scriptpubkey: bytes, network: str | NetworkType | NetworkParams = "mainnet"
) -> str | None:
    try:
        return scriptpubkey_to_address(scriptpubkey, network)
    except InvalidAddressError:
        return None


def pubkey_to_address(
    pubkey: bytes,
    script_type: ScriptType,
    network: str | NetworkType | NetworkParams = "mainnet",
) -> str:
    """
    Build the address paying to a public key.

    P2SH produces a nested segwit (P2SH-P2WPKH) address and P2TR a BIP86
    key-path output. P2WSH treats ``pubkey`` as the witness script.
    """
    params = get_network_params(network)

    if script_type == ScriptType.P2PKH:
        script = p2pkh_script(hash160(pubkey))
    elif script_type == ScriptType.P2SH:
        script = p2sh_script(hash160(pubkey_to_p2sh_p2wpkh_redeem_script(pubkey)))
    elif script_type == ScriptType.P2WPKH:
        if len(pubkey) != 33:
            raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
        script = p2wpkh_script(hash160(pubkey))
    elif script_type == ScriptType.P2WSH:
        script = script_to_p2wsh_scriptpubkey(pubkey)
    elif script_type == ScriptType.P2TR:
        output_key = default_provider().taproot_output_key(pubkey)
        if output_key is None:
            raise ValueError("Cannot compute taproot output key")
        script = p2tr_script(output_key)
    else:
        raise ValueError(f"Cannot build an address for script type {script_type}")

    return scriptpubkey_to_address(script, params)


def pubkey_to_p2wpkh_address(pubkey: bytes | str, network: str | NetworkType = "mainnet") -> str:
    """Convert compressed public key to P2WPKH (native SegWit) address."""
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)
    return pubkey_to_address(pubkey, ScriptType.P2WPKH, network)


def validate_address(address: str, network: str | NetworkType | NetworkParams = "mainnet") -> bool:
    """Check that an address decodes to a recognised script on ``network``."""
    try:
        address_to_scriptpubkey(address, network)
        return True
    except InvalidAddressError:
        return False


__all__ = [
    "KNOWN_HRPS",
    "MAINNET_PARAMS",
    "NETWORK_PARAMS",
    "REGTEST_PARAMS",
    "TESTNET_PARAMS",
    "NetworkParams",
    "NetworkType",
    "ScriptType",
    "address_to_scriptpubkey",
    "base58check_decode",
    "base58check_encode",
    "bech32_decode_address",
    "bech32_encode_address",
    "btc_to_sats",
    "create_p2pkh_script_code",
    "detect_script_type",
    "format_amount",
    "get_hrp",
    "get_network_params",
    "p2pkh_script",
    "p2sh_script",
    "p2tr_script",
    "p2wpkh_script",
    "p2wsh_script",
    "pubkey_to_address",
    "pubkey_to_p2sh_p2wpkh_redeem_script",
    "pubkey_to_p2wpkh_address",
    "pubkey_to_p2wpkh_script",
    "push_data",
    "sats_to_btc",
    "script_to_p2wsh_scriptpubkey",
    "scriptpubkey_to_address",
    "try_scriptpubkey_to_address",
    "validate_address",
    "validate_satoshi_amount",
]
