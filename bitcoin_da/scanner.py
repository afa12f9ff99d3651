"""Extract the rollup blobs carried by a fetched block."""

from __future__ import annotations

import logging
from typing import List

from .compression import BlobCompressor, CompressionError
from .envelope import DecodeError, parse_transaction
from .model import BlobWithSender, Block

logger = logging.getLogger(__name__)


class BlockScanner:
    """Walk a block's transactions and collect the blobs for one rollup.

    The scanner relies on the sender and hash attached when the block was
    fetched and does not verify signatures again. Transactions that decode
    but were not authenticated at fetch time are skipped.
    """

    def __init__(self, rollup_name: str, compressor: BlobCompressor) -> None:
        self.rollup_name = rollup_name
        self.compressor = compressor

    def extract_relevant_txs(self, block: Block) -> List[BlobWithSender]:
        blobs: List[BlobWithSender] = []
        for entry in block.txdata:
            try:
                inscription = parse_transaction(entry.transaction, self.rollup_name)
            except DecodeError:
                continue

            if not entry.authenticated:
                logger.debug(
                    "Skipping unauthenticated envelope in tx %s", entry.transaction.txid_hex()
                )
                continue

            try:
                blob = self.compressor.decompress(inscription.body)
            except CompressionError as exc:
                # Keep the entry so the claimed hashes still line up with the
                # completeness proof; the rollup sees an empty batch.
                logger.warning(
                    "Could not decompress blob in tx %s: %s", entry.transaction.txid_hex(), exc
                )
                blob = b""

            blobs.append(BlobWithSender(blob=blob, sender=entry.sender, hash=entry.blob_hash))
        return blobs
