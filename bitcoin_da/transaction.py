"""Consensus serialization for Bitcoin transactions and blocks.

Just enough of the wire format to deserialize ``getblock`` payloads, compute
transaction ids and block hashes, and re-serialize transactions for
broadcasting. All hashes are kept in internal byte order; the ``*_hex``
helpers return the reversed form shown by nodes and explorers.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Iterable, List, Sequence


class SerializationError(ValueError):
    """Raised when raw transaction or block bytes cannot be decoded."""


def double_sha256(data: bytes) -> bytes:
    """Return SHA256(SHA256(data))."""

    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def ser_compact_size(n: int) -> bytes:
    """Serialize an integer as a Bitcoin compact size."""

    if n < 253:
        return bytes([n])
    elif n <= 0xFFFF:
        return b"\xfd" + n.to_bytes(2, "little")
    elif n <= 0xFFFFFFFF:
        return b"\xfe" + n.to_bytes(4, "little")
    else:
        return b"\xff" + n.to_bytes(8, "little")


def ser_bytes(data: bytes) -> bytes:
    return ser_compact_size(len(data)) + data


class ByteReader:
    """Cursor over a byte string that raises on truncation."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        self.offset = 0

    def read(self, size: int) -> bytes:
        end = self.offset + size
        if size < 0 or end > len(self.data):
            raise SerializationError(
                f"Unexpected end of data: wanted {size} bytes at offset {self.offset}"
            )
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def peek(self, size: int) -> bytes:
        return self.data[self.offset : self.offset + size]

    def read_int(self, size: int) -> int:
        return int.from_bytes(self.read(size), "little")

    def read_compact_size(self) -> int:
        prefix = self.read_int(1)
        if prefix < 253:
            return prefix
        width = {253: 2, 254: 4, 255: 8}[prefix]
        return self.read_int(width)

    def read_var_bytes(self) -> bytes:
        return self.read(self.read_compact_size())

    @property
    def exhausted(self) -> bool:
        return self.offset >= len(self.data)


@dataclass(frozen=True)
class OutPoint:
    """Reference to a previous output; ``txid`` is in internal byte order."""

    txid: bytes
    vout: int

    @classmethod
    def from_hex(cls, txid_hex: str, vout: int) -> "OutPoint":
        return cls(txid=bytes.fromhex(txid_hex)[::-1], vout=vout)

    @property
    def txid_hex(self) -> str:
        return self.txid[::-1].hex()

    def serialize(self) -> bytes:
        return self.txid + self.vout.to_bytes(4, "little")


@dataclass
class TxIn:
    prevout: OutPoint
    script_sig: bytes = b""
    sequence: int = 0xFFFFFFFF
    witness: List[bytes] = field(default_factory=list)


@dataclass
class TxOut:
    value: int
    script_pubkey: bytes

    def serialize(self) -> bytes:
        return self.value.to_bytes(8, "little") + ser_bytes(self.script_pubkey)


@dataclass
class Transaction:
    version: int
    inputs: List[TxIn]
    outputs: List[TxOut]
    locktime: int = 0

    @property
    def has_witness(self) -> bool:
        return any(txin.witness for txin in self.inputs)

    def serialize(self, include_witness: bool = True) -> bytes:
        use_witness = include_witness and self.has_witness
        parts = [self.version.to_bytes(4, "little", signed=True)]
        if use_witness:
            parts.append(b"\x00\x01")
        parts.append(ser_compact_size(len(self.inputs)))
        for txin in self.inputs:
            parts.append(txin.prevout.serialize())
            parts.append(ser_bytes(txin.script_sig))
            parts.append(txin.sequence.to_bytes(4, "little"))
        parts.append(ser_compact_size(len(self.outputs)))
        for txout in self.outputs:
            parts.append(txout.serialize())
        if use_witness:
            for txin in self.inputs:
                parts.append(ser_compact_size(len(txin.witness)))
                for item in txin.witness:
                    parts.append(ser_bytes(item))
        parts.append(self.locktime.to_bytes(4, "little"))
        return b"".join(parts)

    def to_hex(self) -> str:
        return self.serialize().hex()

    def txid(self) -> bytes:
        """Return the transaction id in internal byte order."""

        return double_sha256(self.serialize(include_witness=False))

    def txid_hex(self) -> str:
        return self.txid()[::-1].hex()

    @classmethod
    def deserialize(cls, reader: ByteReader) -> "Transaction":
        version = int.from_bytes(reader.read(4), "little", signed=True)
        segwit = reader.peek(2) == b"\x00\x01"
        if segwit:
            reader.read(2)

        inputs: List[TxIn] = []
        for _ in range(reader.read_compact_size()):
            prevout = OutPoint(txid=reader.read(32), vout=reader.read_int(4))
            script_sig = reader.read_var_bytes()
            sequence = reader.read_int(4)
            inputs.append(TxIn(prevout=prevout, script_sig=script_sig, sequence=sequence))

        outputs: List[TxOut] = []
        for _ in range(reader.read_compact_size()):
            value = reader.read_int(8)
            outputs.append(TxOut(value=value, script_pubkey=reader.read_var_bytes()))

        if segwit:
            for txin in inputs:
                txin.witness = [reader.read_var_bytes() for _ in range(reader.read_compact_size())]

        locktime = reader.read_int(4)
        return cls(version=version, inputs=inputs, outputs=outputs, locktime=locktime)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Transaction":
        reader = ByteReader(raw)
        tx = cls.deserialize(reader)
        if not reader.exhausted:
            raise SerializationError("Trailing bytes after transaction")
        return tx

    @classmethod
    def from_hex(cls, raw_hex: str) -> "Transaction":
        try:
            raw = bytes.fromhex(raw_hex)
        except ValueError as exc:
            raise SerializationError("Transaction hex is not valid hex") from exc
        return cls.from_bytes(raw)


@dataclass
class BlockHeader:
    version: int
    prev_blockhash: bytes
    merkle_root: bytes
    time: int
    bits: int
    nonce: int

    def serialize(self) -> bytes:
        return b"".join(
            [
                self.version.to_bytes(4, "little", signed=True),
                self.prev_blockhash,
                self.merkle_root,
                self.time.to_bytes(4, "little"),
                self.bits.to_bytes(4, "little"),
                self.nonce.to_bytes(4, "little"),
            ]
        )

    def block_hash(self) -> bytes:
        return double_sha256(self.serialize())

    def block_hash_hex(self) -> str:
        return self.block_hash()[::-1].hex()

    @classmethod
    def deserialize(cls, reader: ByteReader) -> "BlockHeader":
        return cls(
            version=int.from_bytes(reader.read(4), "little", signed=True),
            prev_blockhash=reader.read(32),
            merkle_root=reader.read(32),
            time=reader.read_int(4),
            bits=reader.read_int(4),
            nonce=reader.read_int(4),
        )


def parse_raw_block(raw: bytes) -> tuple[BlockHeader, List[Transaction]]:
    """Split a serialized block into its header and transactions."""

    reader = ByteReader(raw)
    header = BlockHeader.deserialize(reader)
    txs = [Transaction.deserialize(reader) for _ in range(reader.read_compact_size())]
    if not reader.exhausted:
        raise SerializationError("Trailing bytes after block")
    return header, txs


def serialize_block(header: BlockHeader, txs: Sequence[Transaction]) -> bytes:
    return header.serialize() + ser_compact_size(len(txs)) + b"".join(tx.serialize() for tx in txs)


def merkle_root(txids: Iterable[bytes]) -> bytes:
    """Compute the block merkle root from ordered txids (internal byte order).

    Odd levels duplicate their last node. An empty list has no root.
    """

    level = list(txids)
    if not level:
        raise ValueError("Cannot compute a merkle root without transactions")
    while len(level) > 1:
        if len(level) % 2:
            level.append(level[-1])
        level = [double_sha256(level[i] + level[i + 1]) for i in range(0, len(level), 2)]
    return level[0]
