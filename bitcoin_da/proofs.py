"""Inclusion and completeness proofs for extracted rollup blobs.

The inclusion proof is the block's full, ordered txid list; hashing it back
up to the merkle root ties it to the header. The completeness proof carries
the full body of every transaction whose txid starts with a fixed number of
zero bytes. Reveal transactions are ground by the submitter until their txid
passes that filter, so a prover can neither invent a blob (it must appear in
a sampled transaction and decompress from its body) nor hide one (every
sampled txid must be backed by a full transaction).
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .compression import BlobCompressor, CompressionError, ZstdBlobCompressor
from .envelope import DecodeError, parse_transaction
from .model import BlobWithSender, Block, CompletenessProof, InclusionProof
from .signing import AuthenticationError, verify_inscription
from .transaction import BlockHeader, merkle_root

logger = logging.getLogger(__name__)

DEFAULT_COMPLETENESS_PREFIX_BYTES = 2


class ProofVerificationError(ValueError):
    """Base class for rejected extraction proofs."""


class InclusionProofError(ProofVerificationError):
    """The txid list does not reproduce the header's merkle root."""


class CompletenessProofError(ProofVerificationError):
    """The sampled transactions do not match the claimed blobs."""


@dataclass(frozen=True)
class CompletenessFilter:
    """Public sampling predicate: the first ``prefix_bytes`` of the txid are zero."""

    prefix_bytes: int = DEFAULT_COMPLETENESS_PREFIX_BYTES

    def __post_init__(self) -> None:
        if not 0 <= self.prefix_bytes <= 32:
            raise ValueError("prefix_bytes must be between 0 and 32")

    def matches(self, txid: bytes) -> bool:
        return txid[: self.prefix_bytes] == bytes(self.prefix_bytes)


def build_extraction_proof(
    block: Block, completeness_filter: CompletenessFilter | None = None
) -> Tuple[InclusionProof, CompletenessProof]:
    """Build both proofs for ``block`` in a single pass."""

    sampler = completeness_filter or CompletenessFilter()
    inclusion = InclusionProof()
    completeness = CompletenessProof()
    for entry in block.txdata:
        txid = entry.transaction.txid()
        if sampler.matches(txid):
            completeness.txs.append(entry.transaction)
        inclusion.txs.append(txid)
    return inclusion, completeness


class BitcoinVerifier:
    """Check a prover's blobs against a block header and its two proofs."""

    def __init__(
        self,
        rollup_name: str,
        completeness_filter: CompletenessFilter | None = None,
        compressor: BlobCompressor | None = None,
    ) -> None:
        self.rollup_name = rollup_name
        self.completeness_filter = completeness_filter or CompletenessFilter()
        self.compressor = compressor or ZstdBlobCompressor()

    def _expected_blob(self, body: bytes) -> bytes:
        try:
            return self.compressor.decompress(body)
        except CompressionError:
            return b""

    def verify_inclusion(self, header: BlockHeader, inclusion: InclusionProof) -> None:
        try:
            root = merkle_root(inclusion.txs)
        except ValueError as exc:
            raise InclusionProofError("Inclusion proof is empty") from exc
        if root != header.merkle_root:
            raise InclusionProofError(
                "Merkle root recomputed from the inclusion proof does not match the header"
            )

    def verify_completeness(
        self,
        blobs: Sequence[BlobWithSender],
        inclusion: InclusionProof,
        completeness: CompletenessProof,
    ) -> None:
        sampled_ids = {txid for txid in inclusion.txs if self.completeness_filter.matches(txid)}
        claimed = Counter((blob.hash, blob.sender, blob.blob) for blob in blobs)

        provided_ids = set()
        for tx in completeness.txs:
            txid = tx.txid()
            if txid not in sampled_ids:
                raise CompletenessProofError(
                    f"Transaction {tx.txid_hex()} is not a sampled transaction of this block"
                )
            if txid in provided_ids:
                raise CompletenessProofError(f"Transaction {tx.txid_hex()} is repeated")
            provided_ids.add(txid)

            try:
                inscription = parse_transaction(tx, self.rollup_name)
                sender, blob_hash = verify_inscription(inscription)
            except (DecodeError, AuthenticationError):
                continue

            # An undecompressable body is extracted as an empty blob.
            key = (blob_hash, sender, self._expected_blob(inscription.body))
            if claimed[key] <= 0:
                raise CompletenessProofError(
                    f"Relevant transaction {tx.txid_hex()} is missing from the extracted blobs "
                    "or its payload does not match the body"
                )
            claimed[key] -= 1

        missing = sampled_ids - provided_ids
        if missing:
            raise CompletenessProofError(
                f"{len(missing)} sampled transaction(s) are missing from the completeness proof"
            )

        leftover = sum(count for count in claimed.values() if count > 0)
        if leftover:
            raise CompletenessProofError(
                f"{leftover} extracted blob(s) are not backed by the completeness proof"
            )

    def verify_relevant_txs(
        self,
        header: BlockHeader,
        blobs: Sequence[BlobWithSender],
        inclusion: InclusionProof,
        completeness: CompletenessProof,
    ) -> List[BlobWithSender]:
        """Verify both proofs, returning the blobs on success.

        Raises:
            InclusionProofError: if the txid list does not match the header.
            CompletenessProofError: if a blob was fabricated or omitted.
        """

        self.verify_inclusion(header, inclusion)
        self.verify_completeness(blobs, inclusion, completeness)
        logger.debug(
            "Verified %d blob(s) against block %s", len(blobs), header.block_hash_hex()
        )
        return list(blobs)

