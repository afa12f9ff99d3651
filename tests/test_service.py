from __future__ import annotations

from pathlib import Path
from typing import List, Tuple

import pytest

from bitcoin_da.address import Network
from bitcoin_da.checkpoints import FileRevealCheckpointStore
from bitcoin_da.config import ConfigurationError, DAServiceConfig, RPCConfig
from bitcoin_da.envelope import build_envelope_script
from bitcoin_da.model import Block, UTXO
from bitcoin_da.node import BitcoinNode
from bitcoin_da.proofs import CompletenessFilter
from bitcoin_da.service import BitcoinDAService, DAService
from bitcoin_da.transaction import OutPoint, Transaction, TxIn, TxOut

from conftest import (
    REVEAL_KEY,
    ROLLUP_NAME,
    SEQUENCER_KEY_HEX,
    grind_locktime,
    make_block,
    plain_transaction,
    reveal_transaction,
)

REGTEST_ADDRESS = "bcrt1qw508d6qejxtdg4y5r3zarvary0c5xw7kygt080"


class FakeClock:
    def __init__(self) -> None:
        self.sleeps: List[float] = []

    def sleep(self, seconds, cancel=None) -> None:
        self.sleeps.append(seconds)


class ChainStub:
    """In-memory chain: broadcast transactions are mined into the next block."""

    def __init__(self) -> None:
        self.blocks: List[Block] = [make_block([plain_transaction(seed=0)], height=0)]
        self.mempool: List[Transaction] = []

    def mine(self) -> None:
        txs = [grind_locktime(plain_transaction(seed=len(self.blocks)), 1, sampled=False)]
        self.blocks.append(make_block(txs + self.mempool, height=len(self.blocks)))
        self.mempool = []

    def get_block_count(self) -> int:
        return len(self.blocks) - 1

    def get_block_hash(self, height: int) -> str:
        return self.blocks[height].block_hash_hex

    def get_block(self, block_hash: str, rollup_name: str) -> Block:
        for block in self.blocks:
            if block.block_hash_hex == block_hash:
                txs = [entry.transaction for entry in block.txdata]
                return make_block(txs, rollup_name=rollup_name)
        raise KeyError(block_hash)

    def get_change_addresses(self) -> Tuple[str, str]:
        return (REGTEST_ADDRESS, REGTEST_ADDRESS)

    def get_utxos(self) -> List[UTXO]:
        return [UTXO(txid="ab" * 32, vout=0, amount=1_000_000)]

    def estimate_smart_fee(self) -> float:
        return 1.0

    def sign_raw_transaction_with_wallet(self, raw_tx_hex: str) -> str:
        return raw_tx_hex

    def send_raw_transaction(self, raw_tx_hex: str) -> str:
        tx = Transaction.from_hex(raw_tx_hex)
        self.mempool.append(tx)
        return tx.txid_hex()


class GrindingBuilder:
    """Builds a reveal whose txid passes a one-byte completeness filter."""

    def create_inscription_transactions(
        self,
        rollup_name,
        compressed_blob,
        signature,
        public_key,
        satpoint,
        utxos,
        change_addresses,
        destination_address,
        commit_feerate,
        reveal_feerate,
        network,
    ):
        commit = Transaction(
            version=2,
            inputs=[TxIn(prevout=OutPoint.from_hex(satpoint.txid, satpoint.vout), script_sig=b"\x00")],
            outputs=[TxOut(value=20_000, script_pubkey=b"\x51\x20" + REVEAL_KEY)],
        )
        script = build_envelope_script(
            rollup_name, compressed_blob, signature, public_key, b"\x07", reveal_key=REVEAL_KEY
        )
        reveal = reveal_transaction(script)
        reveal.inputs[0].prevout = OutPoint(commit.txid(), 0)
        return commit, grind_locktime(reveal, 1)


def _service(tmp_path: Path, chain: ChainStub, **kwargs) -> BitcoinDAService:
    return BitcoinDAService(
        chain,
        rollup_name=ROLLUP_NAME,
        network=Network.REGTEST,
        tx_builder=GrindingBuilder(),
        checkpoints=FileRevealCheckpointStore(tmp_path / "reveals"),
        destination_address=REGTEST_ADDRESS,
        sequencer_da_private_key=SEQUENCER_KEY_HEX,
        completeness_filter=CompletenessFilter(prefix_bytes=1),
        clock=FakeClock(),
        **kwargs,
    )


def test_service_implements_the_da_interface(tmp_path: Path) -> None:
    assert isinstance(_service(tmp_path, ChainStub()), DAService)


def test_sent_blob_is_extracted_and_verified(tmp_path: Path) -> None:
    chain = ChainStub()
    service = _service(tmp_path, chain, finality_depth=2)

    assert service.send_transaction(b"rollup batch #1") is None
    chain.mine()
    chain.mine()
    chain.mine()

    block = service.get_finalized_at(1)
    blobs, inclusion, completeness = service.extract_relevant_txs_with_proof(block)

    assert block.height == 1
    assert [blob.blob for blob in blobs] == [b"rollup batch #1"]
    assert block.transactions[-1] in completeness.txs
    assert service.verifier.verify_relevant_txs(block.header, blobs, inclusion, completeness) == blobs
    assert len(FileRevealCheckpointStore(tmp_path / "reveals").commit_txids()) == 1


def test_extraction_proof_does_not_depend_on_claimed_blobs(tmp_path: Path) -> None:
    chain = ChainStub()
    service = _service(tmp_path, chain)
    block = service.get_block_at(0)

    assert service.get_extraction_proof(block, []) == service.get_extraction_proof(block, [])
    inclusion, completeness = service.get_extraction_proof(block, [])
    assert inclusion.txs == [tx.txid() for tx in block.transactions]


def test_submission_requires_builder_key_and_address(tmp_path: Path) -> None:
    chain = ChainStub()

    with pytest.raises(ConfigurationError):
        BitcoinDAService(chain, rollup_name=ROLLUP_NAME).send_transaction(b"blob")
    with pytest.raises(ConfigurationError):
        BitcoinDAService(
            chain, rollup_name=ROLLUP_NAME, tx_builder=GrindingBuilder(), destination_address=REGTEST_ADDRESS
        ).send_transaction(b"blob")


def test_from_config_wires_settings(tmp_path: Path) -> None:
    config = DAServiceConfig(
        rpc=RPCConfig(user="u", password="p"),
        rollup_name=ROLLUP_NAME,
        network=Network.SIGNET,
        finality_depth=6,
        polling_interval_seconds=0.5,
        completeness_prefix_bytes=1,
        checkpoint_dir=tmp_path / "reveals",
    )

    service = BitcoinDAService.from_config(config)

    assert isinstance(service.node, BitcoinNode)
    assert service.network is Network.SIGNET
    assert service.finality.finality_depth == 6
    assert service.finality.polling_interval == 0.5
    assert service.completeness_filter == CompletenessFilter(1)
    assert service.checkpoints.directory == tmp_path / "reveals"
