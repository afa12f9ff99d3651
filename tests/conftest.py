from __future__ import annotations

import hashlib
from typing import Callable, List, Optional, Sequence

import pytest

from bitcoin_da.compression import ZstdBlobCompressor
from bitcoin_da.envelope import build_envelope_script
from bitcoin_da.model import Block
from bitcoin_da.node import annotate_transaction
from bitcoin_da.signing import sign_blob_with_private_key
from bitcoin_da.transaction import BlockHeader, OutPoint, Transaction, TxIn, TxOut, merkle_root

ROLLUP_NAME = "sov-btc"
SEQUENCER_KEY_HEX = "1f" * 32
OTHER_KEY_HEX = "2e" * 32
REVEAL_KEY = bytes.fromhex("79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798")
CONTROL_BLOCK = b"\xc1" + REVEAL_KEY


def _sha256d(data: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(data).digest()).digest()


def grind_locktime(tx: Transaction, prefix_bytes: int, *, sampled: bool = True) -> Transaction:
    """Pick a locktime so the txid does (or does not) start with ``prefix_bytes`` zeros."""

    if prefix_bytes == 0:
        return tx
    head = tx.serialize(include_witness=False)[:-4]
    target = bytes(prefix_bytes)
    for locktime in range(1 << 32):
        digest = _sha256d(head + locktime.to_bytes(4, "little"))
        if (digest[:prefix_bytes] == target) == sampled:
            tx.locktime = locktime
            return tx
    raise AssertionError("locktime space exhausted")  # pragma: no cover


def reveal_transaction(script: bytes, *, seed: int = 0) -> Transaction:
    """A one-input script-path spend of ``script``; ``seed`` varies the prevout."""

    prevout = OutPoint(txid=hashlib.sha256(seed.to_bytes(4, "little")).digest(), vout=0)
    witness = [b"\x01" * 64, script, CONTROL_BLOCK]
    return Transaction(
        version=2,
        inputs=[TxIn(prevout=prevout, sequence=0xFFFFFFFD, witness=witness)],
        outputs=[TxOut(value=546, script_pubkey=b"\x51\x20" + REVEAL_KEY)],
    )


def plain_transaction(*, seed: int = 0) -> Transaction:
    prevout = OutPoint(txid=hashlib.sha256(b"plain" + seed.to_bytes(4, "little")).digest(), vout=1)
    return Transaction(
        version=2,
        inputs=[TxIn(prevout=prevout, script_sig=b"\x00")],
        outputs=[TxOut(value=10_000, script_pubkey=b"\x00\x14" + b"\x22" * 20)],
    )


def envelope_transaction(
    blob: bytes,
    *,
    rollup_name: str = ROLLUP_NAME,
    key_hex: str = SEQUENCER_KEY_HEX,
    seed: int = 0,
    signature: Optional[bytes] = None,
    public_key: Optional[bytes] = None,
    body: Optional[bytes] = None,
) -> Transaction:
    """A reveal transaction carrying a signed envelope for ``blob``.

    ``signature``, ``public_key`` and ``body`` override the honest values.
    """

    compressed = ZstdBlobCompressor().compress(blob)
    honest_signature, honest_public_key = sign_blob_with_private_key(compressed, key_hex)
    script = build_envelope_script(
        rollup_name,
        compressed if body is None else body,
        honest_signature if signature is None else signature,
        honest_public_key if public_key is None else public_key,
        seed.to_bytes(8, "little"),
        reveal_key=REVEAL_KEY,
    )
    return reveal_transaction(script, seed=seed)


def make_block(txs: Sequence[Transaction], rollup_name: str = ROLLUP_NAME, height: Optional[int] = None) -> Block:
    header = BlockHeader(
        version=0x20000000,
        prev_blockhash=b"\x00" * 32,
        merkle_root=merkle_root(tx.txid() for tx in txs),
        time=1_700_000_000,
        bits=0x207FFFFF,
        nonce=0,
    )
    txdata = [annotate_transaction(tx, rollup_name) for tx in txs]
    return Block(header=header, txdata=txdata, height=height)


@pytest.fixture
def compressor() -> ZstdBlobCompressor:
    return ZstdBlobCompressor()


@pytest.fixture
def make_envelope_tx() -> Callable[..., Transaction]:
    return envelope_transaction


@pytest.fixture
def block_factory() -> Callable[..., Block]:
    return make_block


@pytest.fixture
def sampled_block() -> Block:
    """Block with two authenticated blobs, one foreign envelope and plain txs.

    Uses a one-byte sampling prefix; every envelope tx is sampled, plain
    transactions are not.
    """

    txs: List[Transaction] = [
        grind_locktime(plain_transaction(seed=0), 1, sampled=False),
        grind_locktime(envelope_transaction(b"batch-1", seed=1), 1),
        grind_locktime(plain_transaction(seed=2), 1, sampled=False),
        grind_locktime(envelope_transaction(b"batch-2", seed=3, key_hex=OTHER_KEY_HEX), 1),
        grind_locktime(envelope_transaction(b"other-rollup", rollup_name="sov-btc2", seed=4), 1),
    ]
    return make_block(txs)
