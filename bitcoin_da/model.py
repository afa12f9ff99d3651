"""Data types shared by the DA service, its proofs and the submission flow.

Blocks handed to the service are already annotated: the node client
authenticates every transaction once while fetching, and the scanner and
proof builder trust those annotations afterwards.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .transaction import BlockHeader, Transaction

SATS_PER_BTC = Decimal("100000000")


@dataclass
class BlobWithSender:
    """A rollup blob extracted from a block.

    ``hash`` is the double-SHA256 of the compressed on-chain body, not of
    ``blob``; it can be recomputed from the envelope alone.
    """

    blob: bytes
    sender: bytes
    hash: bytes


@dataclass
class AnnotatedTransaction:
    """A block transaction with the sender/hash recovered at fetch time.

    ``sender`` and ``blob_hash`` are ``None`` when the transaction does not
    carry an authenticated envelope for the configured rollup.
    """

    transaction: Transaction
    sender: Optional[bytes] = None
    blob_hash: Optional[bytes] = None

    @property
    def authenticated(self) -> bool:
        return self.sender is not None and self.blob_hash is not None


@dataclass
class Block:
    header: BlockHeader
    txdata: List[AnnotatedTransaction] = field(default_factory=list)
    height: Optional[int] = None

    @property
    def block_hash(self) -> bytes:
        return self.header.block_hash()

    @property
    def block_hash_hex(self) -> str:
        return self.header.block_hash_hex()

    @property
    def transactions(self) -> List[Transaction]:
        return [entry.transaction for entry in self.txdata]


@dataclass
class InclusionProof:
    """Every transaction id of the block, in block order."""

    txs: List[bytes] = field(default_factory=list)


@dataclass
class CompletenessProof:
    """Full transactions whose ids pass the sampling filter."""

    txs: List[Transaction] = field(default_factory=list)


@dataclass
class UTXO:
    """Wallet output as reported by ``listunspent``; ``amount`` is in sats."""

    txid: str
    vout: int
    amount: int
    address: Optional[str] = None
    script_pubkey: Optional[str] = None
    confirmations: int = 0
    spendable: bool = True
    solvable: bool = True

    @classmethod
    def from_rpc(cls, entry: Dict[str, Any]) -> "UTXO":
        amount_btc = Decimal(str(entry.get("amount", 0)))
        return cls(
            txid=str(entry["txid"]),
            vout=int(entry["vout"]),
            amount=int(amount_btc * SATS_PER_BTC),
            address=entry.get("address"),
            script_pubkey=entry.get("scriptPubKey"),
            confirmations=int(entry.get("confirmations", 0)),
            spendable=bool(entry.get("spendable", True)),
            solvable=bool(entry.get("solvable", True)),
        )


@dataclass(frozen=True)
class SatPoint:
    """A satoshi position: an outpoint plus an offset into its value."""

    txid: str
    vout: int
    offset: int = 0

    def __str__(self) -> str:
        return f"{self.txid}:{self.vout}:{self.offset}"
