from __future__ import annotations

import pytest

from bitcoin_da.model import BlobWithSender, CompletenessProof, InclusionProof
from bitcoin_da.proofs import (
    BitcoinVerifier,
    CompletenessFilter,
    CompletenessProofError,
    InclusionProofError,
    build_extraction_proof,
)
from bitcoin_da.scanner import BlockScanner
from bitcoin_da.signing import sign_blob_with_private_key

from conftest import ROLLUP_NAME, SEQUENCER_KEY_HEX, envelope_transaction, grind_locktime, make_block, plain_transaction

ONE_BYTE = CompletenessFilter(prefix_bytes=1)


@pytest.fixture
def extraction(sampled_block, compressor):
    blobs = BlockScanner(ROLLUP_NAME, compressor).extract_relevant_txs(sampled_block)
    inclusion, completeness = build_extraction_proof(sampled_block, ONE_BYTE)
    return sampled_block, blobs, inclusion, completeness


def test_completeness_filter_checks_leading_zero_bytes() -> None:
    assert CompletenessFilter().matches(b"\x00\x00" + b"\xff" * 30)
    assert not CompletenessFilter().matches(b"\x00\x01" + b"\x00" * 30)
    assert CompletenessFilter(prefix_bytes=0).matches(b"\xff" * 32)
    with pytest.raises(ValueError):
        CompletenessFilter(prefix_bytes=33)


def test_proofs_cover_every_txid_and_every_sampled_tx(extraction) -> None:
    block, _, inclusion, completeness = extraction

    assert inclusion.txs == [tx.txid() for tx in block.transactions]
    assert [tx.txid() for tx in completeness.txs] == [
        tx.txid() for tx in block.transactions if ONE_BYTE.matches(tx.txid())
    ]
    assert len(completeness.txs) == 3


def test_honest_extraction_verifies(extraction) -> None:
    block, blobs, inclusion, completeness = extraction

    verified = BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(
        block.header, blobs, inclusion, completeness
    )

    assert verified == blobs


def test_reordered_inclusion_proof_is_rejected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    swapped = list(inclusion.txs)
    swapped[0], swapped[1] = swapped[1], swapped[0]

    with pytest.raises(InclusionProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(
            block.header, blobs, InclusionProof(swapped), completeness
        )


def test_truncated_or_empty_inclusion_proof_is_rejected(extraction) -> None:
    block, _, inclusion, _ = extraction
    verifier = BitcoinVerifier(ROLLUP_NAME, ONE_BYTE)

    with pytest.raises(InclusionProofError):
        verifier.verify_inclusion(block.header, InclusionProof(inclusion.txs[:-1]))
    with pytest.raises(InclusionProofError):
        verifier.verify_inclusion(block.header, InclusionProof([]))


def test_omitted_blob_is_detected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction

    with pytest.raises(CompletenessProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(
            block.header, blobs[:1], inclusion, completeness
        )


def test_fabricated_blob_is_detected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    fabricated = BlobWithSender(blob=b"fake", sender=blobs[0].sender, hash=b"\x42" * 32)

    with pytest.raises(CompletenessProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(
            block.header, blobs + [fabricated], inclusion, completeness
        )


def test_substituted_payload_is_detected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    substituted = [BlobWithSender(b"rewritten batch", blob.sender, blob.hash) for blob in blobs]

    with pytest.raises(CompletenessProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(
            block.header, substituted, inclusion, completeness
        )


def test_undecompressable_body_is_claimed_as_empty_blob(compressor) -> None:
    signature, public_key = sign_blob_with_private_key(b"not a zstd frame", SEQUENCER_KEY_HEX)
    reveal = grind_locktime(
        envelope_transaction(
            b"unused", seed=11, body=b"not a zstd frame", signature=signature, public_key=public_key
        ),
        1,
    )
    block = make_block([grind_locktime(plain_transaction(seed=12), 1, sampled=False), reveal])
    inclusion, completeness = build_extraction_proof(block, ONE_BYTE)
    blobs = BlockScanner(ROLLUP_NAME, compressor).extract_relevant_txs(block)
    verifier = BitcoinVerifier(ROLLUP_NAME, ONE_BYTE, compressor)

    assert [blob.blob for blob in blobs] == [b""]
    verifier.verify_relevant_txs(block.header, blobs, inclusion, completeness)
    with pytest.raises(CompletenessProofError):
        verifier.verify_completeness(
            [BlobWithSender(b"not a zstd frame", blobs[0].sender, blobs[0].hash)],
            inclusion,
            completeness,
        )


def test_blob_attributed_to_wrong_sender_is_detected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    misattributed = [BlobWithSender(blobs[0].blob, blobs[1].sender, blobs[0].hash), blobs[1]]

    with pytest.raises(CompletenessProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_completeness(
            misattributed, inclusion, completeness
        )


def test_withheld_sampled_transaction_is_detected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    # Dropping the foreign-rollup envelope hides nothing relevant, but it is
    # still a sampled txid without its transaction.
    withheld = CompletenessProof(completeness.txs[:-1])

    with pytest.raises(CompletenessProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_completeness(blobs, inclusion, withheld)


def test_withheld_relevant_transaction_is_detected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    batch_one = completeness.txs[0]
    assert blobs[0].blob == b"batch-1"
    withheld = CompletenessProof([tx for tx in completeness.txs if tx is not batch_one])

    with pytest.raises(CompletenessProofError):
        BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(
            block.header, blobs, inclusion, withheld
        )


def test_unsampled_or_repeated_transactions_are_rejected(extraction) -> None:
    block, blobs, inclusion, completeness = extraction
    verifier = BitcoinVerifier(ROLLUP_NAME, ONE_BYTE)
    unsampled = block.transactions[0]
    assert not ONE_BYTE.matches(unsampled.txid())

    with pytest.raises(CompletenessProofError):
        verifier.verify_completeness(
            blobs, inclusion, CompletenessProof(completeness.txs + [unsampled])
        )
    with pytest.raises(CompletenessProofError):
        verifier.verify_completeness(
            blobs, inclusion, CompletenessProof(completeness.txs + completeness.txs[:1])
        )


def test_block_without_relevant_transactions_verifies(compressor) -> None:
    block = make_block(
        [grind_locktime(plain_transaction(seed=i), 1, sampled=False) for i in range(3)]
    )
    inclusion, completeness = build_extraction_proof(block, ONE_BYTE)

    assert completeness.txs == []
    BitcoinVerifier(ROLLUP_NAME, ONE_BYTE).verify_relevant_txs(block.header, [], inclusion, completeness)


def test_default_two_byte_filter(compressor) -> None:
    reveal = grind_locktime(envelope_transaction(b"batch", seed=9), 2)
    block = make_block([grind_locktime(plain_transaction(seed=8), 2, sampled=False), reveal])

    inclusion, completeness = build_extraction_proof(block)
    blobs = BlockScanner(ROLLUP_NAME, compressor).extract_relevant_txs(block)

    assert completeness.txs == [reveal]
    assert reveal.txid()[:2] == b"\x00\x00"
    BitcoinVerifier(ROLLUP_NAME).verify_relevant_txs(block.header, blobs, inclusion, completeness)
