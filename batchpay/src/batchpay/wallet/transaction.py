"""
Transaction model, wire serialization and the batch payment builder.

Builds the unsigned batch transaction from:
- Selected UTXOs of the funding address (bound to their previous script and value)
- One output per recipient at the fixed payout amount
- An optional change output back to the funding address
"""

from __future__ import annotations

import hashlib
import math
import struct
from collections.abc import Sequence
from dataclasses import dataclass, field

from loguru import logger

from batchpay.constants import SEQUENCE_FINAL, STANDARD_DUST_LIMIT, TX_LOCKTIME, TX_VERSION
from batchpay.errors import ArithmeticFault, ScriptMismatchError
from batchpay.models import NetworkType, RecipientOutput
from batchpay.wallet.address import address_to_scriptpubkey, scriptpubkey_to_address
from batchpay.wallet.selection import CoinSelection


def hash256(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def varint(n: int) -> bytes:
    """Encode integer as Bitcoin varint."""
    if n < 0xFD:
        return bytes([n])
    elif n <= 0xFFFF:
        return bytes([0xFD]) + struct.pack("<H", n)
    elif n <= 0xFFFFFFFF:
        return bytes([0xFE]) + struct.pack("<I", n)
    else:
        return bytes([0xFF]) + struct.pack("<Q", n)


def read_varint(data: bytes, offset: int) -> tuple[int, int]:
    """Read varint at offset, returning (value, new_offset)."""
    first = data[offset]
    offset += 1

    if first < 0xFD:
        return first, offset
    if first == 0xFD:
        return struct.unpack("<H", data[offset : offset + 2])[0], offset + 2
    if first == 0xFE:
        return struct.unpack("<I", data[offset : offset + 4])[0], offset + 4
    return struct.unpack("<Q", data[offset : offset + 8])[0], offset + 8


def serialize_outpoint(txid: str, vout: int) -> bytes:
    """Serialize outpoint (txid:vout)."""
    # txid is in RPC format (big-endian), need to reverse for raw tx
    txid_bytes = bytes.fromhex(txid)[::-1]
    return txid_bytes + struct.pack("<I", vout)


def serialize_script(script: bytes) -> bytes:
    return varint(len(script)) + script


@dataclass
class TxInput:
    """Transaction input.

    value and script_pubkey describe the spent output; they are not part of
    the wire format but every segwit sighash commits to them.
    """

    txid: str
    vout: int
    value: int = 0
    script_pubkey: bytes = b""
    script_sig: bytes = b""
    sequence: int = SEQUENCE_FINAL
    witness: list[bytes] = field(default_factory=list)

    @property
    def outpoint(self) -> bytes:
        return serialize_outpoint(self.txid, self.vout)

    def serialize(self) -> bytes:
        return self.outpoint + serialize_script(self.script_sig) + struct.pack("<I", self.sequence)


@dataclass
class TxOutput:
    """Transaction output."""

    value: int
    script_pubkey: bytes
    address: str = ""

    def serialize(self) -> bytes:
        return struct.pack("<Q", self.value) + serialize_script(self.script_pubkey)


@dataclass
class Transaction:
    inputs: list[TxInput] = field(default_factory=list)
    outputs: list[TxOutput] = field(default_factory=list)
    version: int = TX_VERSION
    locktime: int = TX_LOCKTIME

    @property
    def has_witness(self) -> bool:
        return any(inp.witness for inp in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        """Serialize to wire format (BIP144 when witness data is present)."""
        with_witness = include_witness and self.has_witness

        result = struct.pack("<I", self.version)
        if with_witness:
            # Marker and flag for SegWit
            result += bytes([0x00, 0x01])

        result += varint(len(self.inputs))
        for inp in self.inputs:
            result += inp.serialize()

        result += varint(len(self.outputs))
        for out in self.outputs:
            result += out.serialize()

        if with_witness:
            for inp in self.inputs:
                result += varint(len(inp.witness))
                for item in inp.witness:
                    result += serialize_script(item)

        result += struct.pack("<I", self.locktime)
        return result

    @property
    def txid(self) -> str:
        """Double SHA256 of the witness-stripped serialization, in RPC byte order."""
        return hash256(self.serialize(include_witness=False))[::-1].hex()

    @property
    def wtxid(self) -> str:
        return hash256(self.serialize())[::-1].hex()

    @property
    def weight(self) -> int:
        base_size = len(self.serialize(include_witness=False))
        total_size = len(self.serialize())
        return base_size * 3 + total_size

    @property
    def vsize(self) -> int:
        return math.ceil(self.weight / 4)

    @property
    def total_input_value(self) -> int:
        return sum(inp.value for inp in self.inputs)

    @property
    def total_output_value(self) -> int:
        return sum(out.value for out in self.outputs)


def parse_transaction(tx_bytes: bytes) -> Transaction:
    """Parse a transaction from wire bytes (legacy or BIP144 witness format)."""
    try:
        offset = 0
        version = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

        has_witness = False
        if tx_bytes[offset] == 0x00 and tx_bytes[offset + 1] == 0x01:
            has_witness = True
            offset += 2

        input_count, offset = read_varint(tx_bytes, offset)
        inputs: list[TxInput] = []
        for _ in range(input_count):
            txid = tx_bytes[offset : offset + 32][::-1].hex()
            offset += 32
            vout = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            script_len, offset = read_varint(tx_bytes, offset)
            script_sig = tx_bytes[offset : offset + script_len]
            offset += script_len
            sequence = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
            offset += 4
            inputs.append(TxInput(txid=txid, vout=vout, script_sig=script_sig, sequence=sequence))

        output_count, offset = read_varint(tx_bytes, offset)
        outputs: list[TxOutput] = []
        for _ in range(output_count):
            value = struct.unpack("<Q", tx_bytes[offset : offset + 8])[0]
            offset += 8
            script_len, offset = read_varint(tx_bytes, offset)
            script_pubkey = tx_bytes[offset : offset + script_len]
            offset += script_len
            outputs.append(TxOutput(value=value, script_pubkey=script_pubkey))

        if has_witness:
            for inp in inputs:
                item_count, offset = read_varint(tx_bytes, offset)
                for _ in range(item_count):
                    item_len, offset = read_varint(tx_bytes, offset)
                    inp.witness.append(tx_bytes[offset : offset + item_len])
                    offset += item_len

        locktime = struct.unpack("<I", tx_bytes[offset : offset + 4])[0]
        offset += 4

    except (IndexError, struct.error) as e:
        raise ValueError(f"Failed to parse transaction: {e}") from e

    if offset != len(tx_bytes):
        raise ValueError(f"Failed to parse transaction: {len(tx_bytes) - offset} trailing bytes")

    return Transaction(inputs=inputs, outputs=outputs, version=version, locktime=locktime)


@dataclass
class UnsignedBatch:
    """Unsigned batch transaction plus the amounts that went into it."""

    transaction: Transaction
    total_input: int
    total_payout: int
    fee: int
    change_value: int
    change_index: int | None = None

    @property
    def has_change(self) -> bool:
        return self.change_index is not None


def build_transaction(
    selection: CoinSelection,
    recipients: Sequence[RecipientOutput],
    funding_script: bytes,
    network: NetworkType | str = "mainnet",
    dust_threshold: int = STANDARD_DUST_LIMIT,
) -> UnsignedBatch:
    """
    Build the unsigned batch payment transaction.

    Change below the dust threshold is left to the miner; the returned fee is
    then the full difference between inputs and outputs.

    Raises:
        ScriptMismatchError: If a selected UTXO is not bound to the funding script
        ArithmeticFault: If the selection does not actually cover payout plus fee
    """
    network = NetworkType(network)
    if not recipients:
        raise ValueError("At least one recipient is required")

    tx = Transaction()

    for utxo in selection.utxos:
        if utxo.script_pubkey != funding_script:
            raise ScriptMismatchError(utxo.txid, utxo.vout, funding_script, utxo.script_pubkey)
        tx.inputs.append(
            TxInput(
                txid=utxo.txid,
                vout=utxo.vout,
                value=utxo.value,
                script_pubkey=utxo.script_pubkey,
            )
        )

    for recipient in recipients:
        tx.outputs.append(
            TxOutput(
                value=recipient.value,
                script_pubkey=address_to_scriptpubkey(recipient.address, network),
                address=recipient.address,
            )
        )

    total_input = sum(utxo.value for utxo in selection.utxos)
    total_payout = sum(recipient.value for recipient in recipients)
    change = total_input - total_payout - selection.fee

    if change < 0:
        raise ArithmeticFault(
            f"Negative change ({change} sats): inputs {total_input}, payout {total_payout}, "
            f"fee {selection.fee}"
        )

    change_index = None
    if change >= dust_threshold:
        change_index = len(tx.outputs)
        tx.outputs.append(
            TxOutput(
                value=change,
                script_pubkey=funding_script,
                address=scriptpubkey_to_address(funding_script, network),
            )
        )
        fee = selection.fee
        logger.info(f"Adding change output: {change} sats")
    else:
        fee = selection.fee + change
        logger.info(
            f"Change of {change} sats is below dust threshold ({dust_threshold}), "
            "adding it to the fee"
        )

    if total_input != tx.total_output_value + fee:
        raise ArithmeticFault(
            f"Value not conserved: inputs {total_input} != outputs {tx.total_output_value} "
            f"+ fee {fee}"
        )

    logger.debug(
        f"Built unsigned transaction: {len(tx.inputs)} inputs, {len(tx.outputs)} outputs, "
        f"fee {fee} sats"
    )

    return UnsignedBatch(
        transaction=tx,
        total_input=total_input,
        total_payout=total_payout,
        fee=fee,
        change_value=change if change_index is not None else 0,
        change_index=change_index,
    )
