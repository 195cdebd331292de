"""
Bitcoin transaction signing for P2PKH, P2WPKH and P2SH-P2WPKH inputs.

Each input is signed according to the type of the output it spends:
legacy sighash for P2PKH, BIP143 for the two segwit variants. Signing
works on a copy; the caller's transaction is never modified.
"""

from __future__ import annotations

from collections.abc import Sequence

from loguru import logger

from btccore.bitcoin import (
    NetworkParams,
    NetworkType,
    ScriptType,
    create_p2pkh_script_code,
    detect_script_type,
    get_network_params,
    pubkey_to_p2sh_p2wpkh_redeem_script,
    push_data,
)
from btccore.constants import SIGHASH_ALL
from btccore.crypto import CryptoProvider, default_provider, hash160, hash256
from btccore.errors import (
    PrivateKeyMismatchError,
    SigningError,
    UnsupportedScriptTypeError,
)
from btccore.transaction import UTXO, Transaction, encode_varint


def _check_sighash_type(sighash_type: int) -> None:
    if sighash_type != SIGHASH_ALL:
        raise SigningError(f"Unsupported sighash type: {sighash_type:#04x}")


def compute_sighash_legacy(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """
    Legacy (pre-segwit) signature hash.

    The scriptCode is substituted at ``input_index``; every other input is
    serialized with an empty script.
    """
    _check_sighash_type(sighash_type)
    if not 0 <= input_index < len(tx.inputs):
        raise SigningError("Input index out of range")

    preimage = tx.version.to_bytes(4, "little", signed=True)
    preimage += encode_varint(len(tx.inputs))
    for i, inp in enumerate(tx.inputs):
        script = script_code if i == input_index else b""
        preimage += (
            inp.previous_output.serialize()
            + encode_varint(len(script))
            + script
            + inp.sequence.to_bytes(4, "little")
        )
    preimage += encode_varint(len(tx.outputs))
    for out in tx.outputs:
        preimage += out.serialize()
    preimage += tx.locktime.to_bytes(4, "little")
    preimage += sighash_type.to_bytes(4, "little")

    return hash256(preimage)


def compute_sighash_segwit(
    tx: Transaction,
    input_index: int,
    script_code: bytes,
    value: int,
    sighash_type: int = SIGHASH_ALL,
) -> bytes:
    """BIP143 signature hash for a segwit v0 input."""
    _check_sighash_type(sighash_type)
    if not 0 <= input_index < len(tx.inputs):
        raise SigningError("Input index out of range")

    hash_prevouts = hash256(b"".join(inp.previous_output.serialize() for inp in tx.inputs))
    hash_sequence = hash256(b"".join(inp.sequence.to_bytes(4, "little") for inp in tx.inputs))
    hash_outputs = hash256(b"".join(out.serialize() for out in tx.outputs))

    target_input = tx.inputs[input_index]

    preimage = (
        tx.version.to_bytes(4, "little", signed=True)
        + hash_prevouts
        + hash_sequence
        + target_input.previous_output.serialize()
        + encode_varint(len(script_code))
        + script_code
        + value.to_bytes(8, "little", signed=True)
        + target_input.sequence.to_bytes(4, "little")
        + hash_outputs
        + tx.locktime.to_bytes(4, "little")
        + sighash_type.to_bytes(4, "little")
    )

    return hash256(preimage)


class TransactionSigner:
    """Signs built transactions input by input."""

    def __init__(
        self,
        network: str | NetworkType | NetworkParams = "mainnet",
        crypto: CryptoProvider | None = None,
    ):
        self.network = get_network_params(network)
        self.crypto = crypto or default_provider()

    def _public_key_for(self, private_key: bytes, utxo: UTXO, input_index: int) -> bytes:
        """Pick the public key encoding whose hash the spent script commits to."""
        compressed = self.crypto.derive_public_key(private_key, compressed=True)
        if compressed is None:
            raise SigningError(f"Invalid private key for input {input_index}")

        script = utxo.script_pubkey
        script_type = detect_script_type(script)

        if script_type == ScriptType.P2PKH:
            committed = script[3:23]
            if hash160(compressed) == committed:
                return compressed
            uncompressed = self.crypto.derive_public_key(private_key, compressed=False)
            if uncompressed is not None and hash160(uncompressed) == committed:
                return uncompressed
        elif script_type == ScriptType.P2WPKH:
            if hash160(compressed) == script[2:22]:
                return compressed
        elif script_type == ScriptType.P2SH:
            if hash160(pubkey_to_p2sh_p2wpkh_redeem_script(compressed)) == script[2:22]:
                return compressed
        else:
            raise UnsupportedScriptTypeError(
                f"Cannot sign input {input_index} spending {script_type.value} output"
            )

        raise PrivateKeyMismatchError(
            f"Private key for input {input_index} does not match the spent output"
        )

    def _sign_digest(self, sighash: bytes, private_key: bytes, pubkey: bytes, input_index: int) -> bytes:
        signature = self.crypto.sign_ecdsa(sighash, private_key)
        if signature is None:
            raise SigningError(f"Signing failed for input {input_index}")
        if not self.crypto.verify_ecdsa(signature, pubkey, sighash):
            raise SigningError(f"Produced signature does not verify for input {input_index}")
        return signature + bytes([SIGHASH_ALL])

    def sign_transaction(
        self,
        tx: Transaction,
        private_keys: Sequence[bytes],
        utxos: Sequence[UTXO],
    ) -> Transaction:
        """
        Sign every input of ``tx``.

        Args:
            tx: Unsigned transaction
            private_keys: One 32-byte key per input, in input order
            utxos: The outputs being spent, in input order

        Returns:
            A new, fully signed transaction

        Raises:
            PrivateKeyMismatchError: Key/UTXO count differs from input count,
                or a key does not control its input
            UnsupportedScriptTypeError: An input spends an unsupported script
            SigningError: The crypto provider could not produce a signature
        """
        if len(private_keys) != len(tx.inputs):
            raise PrivateKeyMismatchError(
                f"Got {len(private_keys)} private keys for {len(tx.inputs)} inputs"
            )
        if len(utxos) != len(tx.inputs):
            raise PrivateKeyMismatchError(f"Got {len(utxos)} UTXOs for {len(tx.inputs)} inputs")
        for i, (inp, utxo) in enumerate(zip(tx.inputs, utxos, strict=True)):
            if inp.previous_output != utxo.outpoint:
                raise ValueError(f"UTXO {utxo.outpoint} does not match input {i}")

        pubkeys = [
            self._public_key_for(key, utxo, i)
            for i, (key, utxo) in enumerate(zip(private_keys, utxos, strict=True))
        ]

        signed = tx.copy()
        for i, (key, utxo, pubkey) in enumerate(zip(private_keys, utxos, pubkeys, strict=True)):
            script_type = detect_script_type(utxo.script_pubkey)
            inp = signed.inputs[i]

            if script_type == ScriptType.P2PKH:
                sighash = compute_sighash_legacy(tx, i, utxo.script_pubkey)
                signature = self._sign_digest(sighash, key, pubkey, i)
                inp.script_sig = push_data(signature) + push_data(pubkey)
                inp.witness = []
            else:
                script_code = create_p2pkh_script_code(pubkey)
                sighash = compute_sighash_segwit(tx, i, script_code, utxo.value)
                signature = self._sign_digest(sighash, key, pubkey, i)
                if script_type == ScriptType.P2SH:
                    inp.script_sig = push_data(pubkey_to_p2sh_p2wpkh_redeem_script(pubkey))
                else:
                    inp.script_sig = b""
                inp.witness = [signature, pubkey]

            logger.debug(f"Signed input {i} ({script_type.value})")

        logger.info(f"Signed {len(signed.inputs)} input(s) of {signed.txid}")
        return signed

    def verify_input_signature(self, tx: Transaction, input_index: int, utxo: UTXO) -> bool:
        """Check the signature attached to a signed P2PKH/P2WPKH/P2SH-P2WPKH input."""
        if not 0 <= input_index < len(tx.inputs):
            return False
        inp = tx.inputs[input_index]
        script_type = detect_script_type(utxo.script_pubkey)

        if script_type == ScriptType.P2PKH:
            items = _parse_pushes(inp.script_sig)
            if items is None or len(items) != 2:
                return False
            signature, pubkey = items
            if hash160(pubkey) != utxo.script_pubkey[3:23]:
                return False
            digest = compute_sighash_legacy(tx, input_index, utxo.script_pubkey)
        elif script_type in (ScriptType.P2WPKH, ScriptType.P2SH):
            if len(inp.witness) != 2:
                return False
            signature, pubkey = inp.witness
            if script_type == ScriptType.P2WPKH:
                if hash160(pubkey) != utxo.script_pubkey[2:22]:
                    return False
            else:
                redeem_script = pubkey_to_p2sh_p2wpkh_redeem_script(pubkey)
                if inp.script_sig != push_data(redeem_script):
                    return False
                if hash160(redeem_script) != utxo.script_pubkey[2:22]:
                    return False
            digest = compute_sighash_segwit(
                tx, input_index, create_p2pkh_script_code(pubkey), utxo.value
            )
        else:
            return False

        if not signature or signature[-1] != SIGHASH_ALL:
            return False
        return self.crypto.verify_ecdsa(signature[:-1], pubkey, digest)


def _parse_pushes(script: bytes) -> list[bytes] | None:
    """Split a push-only script into its data items; None if it is not push-only."""
    items = []
    offset = 0
    while offset < len(script):
        opcode = script[offset]
        offset += 1
        if opcode < 0x4C:
            length = opcode
        elif opcode == 0x4C and offset + 1 <= len(script):
            length = script[offset]
            offset += 1
        elif opcode == 0x4D and offset + 2 <= len(script):
            length = int.from_bytes(script[offset : offset + 2], "little")
            offset += 2
        else:
            return None
        if offset + length > len(script):
            return None
        items.append(script[offset : offset + length])
        offset += length
    return items


__all__ = [
    "TransactionSigner",
    "compute_sighash_legacy",
    "compute_sighash_segwit",
]
