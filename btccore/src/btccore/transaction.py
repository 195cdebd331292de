"""
Transaction model and canonical wire (de)serialization.

Serialization is segwit-aware: the 0x00 marker, 0x01 flag and the per-input
witness stacks are written only when at least one input carries witness
data. The txid always commits to the legacy (witness-stripped) encoding.
"""

from __future__ import annotations

import math
import struct
from dataclasses import dataclass, field, replace

from btccore.bitcoin import (
    NetworkParams,
    NetworkType,
    ScriptType,
    detect_script_type,
    try_scriptpubkey_to_address,
)
from btccore.constants import DEFAULT_TX_VERSION, RBF_SEQUENCE_THRESHOLD, SEQUENCE_FINAL
from btccore.crypto import hash256
from btccore.errors import TransactionParseError

# =============================================================================
# Varint
# =============================================================================


def encode_varint(n: int) -> bytes:
    """
    Encode integer as Bitcoin varint (CompactSize).

    Args:
        n: Integer to encode

    Returns:
        Encoded bytes
    """
    if n < 0:
        raise ValueError(f"Cannot encode negative varint: {n}")
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """
    Decode Bitcoin varint from bytes.

    Args:
        data: Input bytes
        offset: Starting offset in data

    Returns:
        (value, new_offset) tuple

    Raises:
        TransactionParseError: If the data ends inside the varint
    """
    if offset >= len(data):
        raise TransactionParseError("Unexpected end of data reading varint")
    first = data[offset]
    if first < 0xFD:
        return first, offset + 1
    width, fmt = {0xFD: (2, "<H"), 0xFE: (4, "<I"), 0xFF: (8, "<Q")}[first]
    end = offset + 1 + width
    if end > len(data):
        raise TransactionParseError("Unexpected end of data reading varint")
    return struct.unpack(fmt, data[offset + 1 : end])[0], end


def _var_bytes(data: bytes) -> bytes:
    return encode_varint(len(data)) + data


# =============================================================================
# Transaction Models
# =============================================================================


@dataclass(frozen=True)
class OutPoint:
    """Reference to a previous output. ``txid`` is in wire (little-endian) order."""

    txid: bytes
    vout: int

    def __post_init__(self) -> None:
        if len(self.txid) != 32:
            raise ValueError(f"Outpoint txid must be 32 bytes, got {len(self.txid)}")
        if not 0 <= self.vout <= 0xFFFFFFFF:
            raise ValueError(f"Outpoint vout out of range: {self.vout}")

    @classmethod
    def from_txid_hex(cls, txid: str, vout: int) -> OutPoint:
        """Build from a txid in RPC/display (big-endian) hex."""
        return cls(txid=bytes.fromhex(txid)[::-1], vout=vout)

    @property
    def txid_hex(self) -> str:
        return self.txid[::-1].hex()

    def serialize(self) -> bytes:
        return self.txid + struct.pack("<I", self.vout)

    def __str__(self) -> str:
        return f"{self.txid_hex}:{self.vout}"


@dataclass
class TxInput:
    """Transaction input. ``script_sig`` and ``witness`` stay empty until signed."""

    previous_output: OutPoint
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)

    @property
    def signals_rbf(self) -> bool:
        return self.sequence < RBF_SEQUENCE_THRESHOLD

    def serialize(self) -> bytes:
        return (
            self.previous_output.serialize()
            + _var_bytes(self.script_sig)
            + struct.pack("<I", self.sequence)
        )


@dataclass
class TxOutput:
    """Transaction output."""

    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return struct.pack("<q", self.value) + _var_bytes(self.script_pubkey)


@dataclass
class Transaction:
    """Bitcoin transaction."""

    version: int = DEFAULT_TX_VERSION
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """
        Serialize to the canonical wire format.

        Args:
            include_witness: Emit marker, flag and witness stacks when any
                input has witness data

        Returns:
            Serialized transaction bytes
        """
        segwit = include_witness and self.has_witness

        result = struct.pack("<i", self.version)
        if segwit:
            result += bytes([0x00, 0x01])  # SegWit marker and flag

        result += encode_varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += encode_varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if segwit:
            for inp in self.inputs:
                result += encode_varint(len(inp.witness))
                for item in inp.witness:
                    result += _var_bytes(item)

        result += struct.pack("<I", self.locktime)
        return result

    def to_hex(self) -> str:
        return self.serialize().hex()

    @property
    def txid(self) -> str:
        """Transaction ID: reversed HASH256 of the legacy serialization."""
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return hash256(self.serialize(include_witness=True))[::-1].hex()

    def weight(self) -> int:
        base = len(self.serialize(include_witness=False))
        total = len(self.serialize(include_witness=True))
        return base * 3 + total

    def vsize(self) -> int:
        return math.ceil(self.weight() / 4)

    def total_output_value(self) -> int:
        return sum(out.value for out in self.outputs)

    @property
    def signals_rbf(self) -> bool:
        return any(inp.signals_rbf for inp in self.inputs)

    def copy(self) -> Transaction:
        """Deep copy; inputs and outputs are fresh objects."""
        return Transaction(
            version=self.version,
            inputs=[replace(inp, witness=list(inp.witness)) for inp in self.inputs],
            outputs=[replace(out) for out in self.outputs],
            locktime=self.locktime,
        )

    @classmethod
    def parse(cls, raw: bytes) -> Transaction:
        """
        Parse a serialized transaction.

        Handles both SegWit and non-SegWit formats. Parsing is strict:
        truncated input or trailing bytes are rejected.

        Raises:
            TransactionParseError: On malformed data
        """
        reader = _Reader(raw)

        version = reader.unpack("<i")

        has_witness = False
        if reader.remaining() >= 2 and raw[reader.offset] == 0x00 and raw[reader.offset + 1] == 0x01:
            has_witness = True
            reader.offset += 2

        inputs = []
        for _ in range(reader.varint()):
            outpoint = OutPoint(txid=reader.read(32), vout=reader.unpack("<I"))
            script_sig = reader.read(reader.varint())
            sequence = reader.unpack("<I")
            inputs.append(TxInput(previous_output=outpoint, script_sig=script_sig, sequence=sequence))

        outputs = []
        for _ in range(reader.varint()):
            value = reader.unpack("<q")
            script_pubkey = reader.read(reader.varint())
            outputs.append(TxOutput(value=value, script_pubkey=script_pubkey))

        if has_witness:
            for inp in inputs:
                inp.witness = [reader.read(reader.varint()) for _ in range(reader.varint())]

        locktime = reader.unpack("<I")

        if reader.remaining():
            raise TransactionParseError(f"{reader.remaining()} trailing bytes after transaction")

        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    @classmethod
    def from_hex(cls, tx_hex: str) -> Transaction:
        try:
            raw = bytes.fromhex(tx_hex.strip())
        except ValueError as e:
            raise TransactionParseError(f"Invalid transaction hex: {e}") from e
        return cls.parse(raw)


class _Reader:
    """Bounds-checked cursor over serialized transaction bytes."""

    def __init__(self, data: bytes):
        self.data = data
        self.offset = 0

    def remaining(self) -> int:
        return len(self.data) - self.offset

    def read(self, n: int) -> bytes:
        if n > self.remaining():
            raise TransactionParseError(
                f"Unexpected end of data: need {n} bytes at offset {self.offset}, "
                f"have {self.remaining()}"
            )
        chunk = self.data[self.offset : self.offset + n]
        self.offset += n
        return chunk

    def unpack(self, fmt: str) -> int:
        return struct.unpack(fmt, self.read(struct.calcsize(fmt)))[0]

    def varint(self) -> int:
        value, self.offset = decode_varint(self.data, self.offset)
        return value


def get_txid(tx_hex: str) -> str:
    """
    Calculate transaction ID (double SHA256 of non-witness data).

    Args:
        tx_hex: Transaction hex

    Returns:
        Transaction ID as hex string
    """
    return Transaction.from_hex(tx_hex).txid


# =============================================================================
# Unspent outputs
# =============================================================================


@dataclass(frozen=True)
class UTXO:
    """An unspent output owned by the wallet, consumed once as an input."""

    outpoint: OutPoint
    value: int
    script_pubkey: bytes
    address: str = ""
    confirmations: int = 0

    @property
    def txid(self) -> str:
        return self.outpoint.txid_hex

    @property
    def vout(self) -> int:
        return self.outpoint.vout

    @property
    def script_type(self) -> ScriptType:
        return detect_script_type(self.script_pubkey)


# =============================================================================
# Decoding for display
# =============================================================================


@dataclass
class DecodedInput:
    txid: str
    vout: int
    sequence: int
    script_sig: str
    witness: list[str]

    @property
    def signals_rbf(self) -> bool:
        return self.sequence < RBF_SEQUENCE_THRESHOLD


@dataclass
class DecodedOutput:
    value: int
    script_pubkey: str
    script_type: ScriptType
    address: str | None


@dataclass
class DecodedTransaction:
    """Human-oriented view of a raw transaction."""

    txid: str
    wtxid: str
    version: int
    locktime: int
    size: int
    vsize: int
    weight: int
    inputs: list[DecodedInput]
    outputs: list[DecodedOutput]

    @property
    def total_output_value(self) -> int:
        return sum(out.value for out in self.outputs)

    @property
    def signals_rbf(self) -> bool:
        return any(inp.signals_rbf for inp in self.inputs)


def decode_transaction(
    raw_hex: str, network: str | NetworkType | NetworkParams = "mainnet"
) -> DecodedTransaction:
    """
    Decode a raw transaction, resolving output addresses on ``network``.

    Outputs whose script has no address form get ``address=None``.
    """
    tx = Transaction.from_hex(raw_hex)

    inputs = [
        DecodedInput(
            txid=inp.previous_output.txid_hex,
            vout=inp.previous_output.vout,
            sequence=inp.sequence,
            script_sig=inp.script_sig.hex(),
            witness=[item.hex() for item in inp.witness],
        )
        for inp in tx.inputs
    ]
    outputs = [
        DecodedOutput(
            value=out.value,
            script_pubkey=out.script_pubkey.hex(),
            script_type=detect_script_type(out.script_pubkey),
            address=try_scriptpubkey_to_address(out.script_pubkey, network),
        )
        for out in tx.outputs
    ]

    return DecodedTransaction(
        txid=tx.txid,
        wtxid=tx.wtxid,
        version=tx.version,
        locktime=tx.locktime,
        size=len(tx.serialize()),
        vsize=tx.vsize(),
        weight=tx.weight(),
        inputs=inputs,
        outputs=outputs,
    )


__all__ = [
    "UTXO",
    "DecodedInput",
    "DecodedOutput",
    "DecodedTransaction",
    "OutPoint",
    "Transaction",
    "TxInput",
    "TxOutput",
    "decode_transaction",
    "decode_varint",
    "encode_varint",
    "get_txid",
]
