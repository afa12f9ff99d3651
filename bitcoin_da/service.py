"""The DA service surface a rollup node talks to."""

from __future__ import annotations

import abc
import logging
from pathlib import Path
from typing import List, Optional, Tuple

from .address import Network
from .checkpoints import FileRevealCheckpointStore, RevealCheckpointStore
from .compression import BlobCompressor, ZstdBlobCompressor
from .config import ConfigurationError, DAServiceConfig
from .finality import FINALITY_DEPTH, POLLING_INTERVAL_SECONDS, CancelToken, Clock, FinalityTracker
from .model import BlobWithSender, Block, CompletenessProof, InclusionProof
from .node import BitcoinNode, NodeClient
from .proofs import BitcoinVerifier, CompletenessFilter, build_extraction_proof
from .rpc_client import BitcoinRPCClient
from .scanner import BlockScanner
from .submission import (
    CoinSelectionStrategy,
    InscriptionTransactionBuilder,
    SubmissionPipeline,
    SubmissionReceipt,
)

logger = logging.getLogger(__name__)


class DAService(abc.ABC):
    """Operations a data-availability layer offers to a rollup."""

    @abc.abstractmethod
    def get_finalized_at(self, height: int) -> Block:
        """Block at ``height`` once it can no longer be reorganised."""

    @abc.abstractmethod
    def get_block_at(self, height: int) -> Block:
        """Block at ``height`` as soon as it exists."""

    @abc.abstractmethod
    def extract_relevant_txs(self, block: Block) -> List[BlobWithSender]:
        """Blobs of this rollup carried by ``block``, in block order."""

    @abc.abstractmethod
    def get_extraction_proof(
        self, block: Block, blobs: List[BlobWithSender]
    ) -> Tuple[InclusionProof, CompletenessProof]:
        """Proofs that ``blobs`` is exactly what ``block`` carries."""

    @abc.abstractmethod
    def extract_relevant_txs_with_proof(
        self, block: Block
    ) -> Tuple[List[BlobWithSender], InclusionProof, CompletenessProof]:
        """Extraction and proof generation in one call."""

    @abc.abstractmethod
    def send_transaction(self, blob: bytes) -> None:
        """Publish ``blob`` on the DA layer."""


class BitcoinDAService(DAService):
    """DA service backed by a Bitcoin node, with blobs inscribed in Taproot witnesses.

    Reading (finality, extraction, proofs) needs only ``node`` and
    ``rollup_name``. Submitting additionally needs a transaction builder,
    the destination address and the sequencer's private key.
    """

    def __init__(
        self,
        node: NodeClient,
        *,
        rollup_name: str,
        network: Network = Network.REGTEST,
        compressor: Optional[BlobCompressor] = None,
        tx_builder: Optional[InscriptionTransactionBuilder] = None,
        checkpoints: Optional[RevealCheckpointStore] = None,
        destination_address: str = "",
        sequencer_da_private_key: str = "",
        finality_depth: int = FINALITY_DEPTH,
        polling_interval: float = POLLING_INTERVAL_SECONDS,
        completeness_filter: Optional[CompletenessFilter] = None,
        clock: Optional[Clock] = None,
        coin_selection: Optional[CoinSelectionStrategy] = None,
    ) -> None:
        self.node = node
        self.rollup_name = rollup_name
        self.network = network
        self.compressor = compressor or ZstdBlobCompressor()
        self.tx_builder = tx_builder
        self.checkpoints = checkpoints or FileRevealCheckpointStore(Path("reveal-checkpoints"))
        self.destination_address = destination_address
        self.sequencer_da_private_key = sequencer_da_private_key
        self.completeness_filter = completeness_filter or CompletenessFilter()
        self.coin_selection = coin_selection
        self.finality = FinalityTracker(
            node,
            rollup_name,
            finality_depth=finality_depth,
            polling_interval=polling_interval,
            clock=clock,
        )
        self.scanner = BlockScanner(rollup_name, self.compressor)

    @classmethod
    def from_config(
        cls,
        config: DAServiceConfig,
        *,
        node: Optional[NodeClient] = None,
        tx_builder: Optional[InscriptionTransactionBuilder] = None,
        checkpoints: Optional[RevealCheckpointStore] = None,
        compressor: Optional[BlobCompressor] = None,
        clock: Optional[Clock] = None,
    ) -> "BitcoinDAService":
        """Build a service from :func:`bitcoin_da.config.load_da_config` output."""

        return cls(
            node or BitcoinNode(BitcoinRPCClient(config.rpc)),
            rollup_name=config.rollup_name,
            network=config.network,
            compressor=compressor,
            tx_builder=tx_builder,
            checkpoints=checkpoints or FileRevealCheckpointStore(config.checkpoint_dir),
            destination_address=config.address,
            sequencer_da_private_key=config.sequencer_da_private_key,
            finality_depth=config.finality_depth,
            polling_interval=config.polling_interval_seconds,
            completeness_filter=CompletenessFilter(config.completeness_prefix_bytes),
            clock=clock,
        )

    @property
    def verifier(self) -> BitcoinVerifier:
        """A verifier using the same rollup name, sampling filter and codec."""

        return BitcoinVerifier(self.rollup_name, self.completeness_filter, self.compressor)

    def get_finalized_at(self, height: int, cancel: Optional[CancelToken] = None) -> Block:
        return self.finality.get_finalized_at(height, cancel)

    def get_block_at(self, height: int, cancel: Optional[CancelToken] = None) -> Block:
        return self.finality.get_block_at(height, cancel)

    def extract_relevant_txs(self, block: Block) -> List[BlobWithSender]:
        return self.scanner.extract_relevant_txs(block)

    def get_extraction_proof(
        self, block: Block, blobs: List[BlobWithSender]
    ) -> Tuple[InclusionProof, CompletenessProof]:
        # The proofs cover the whole block; ``blobs`` is what they will be checked against.
        return build_extraction_proof(block, self.completeness_filter)

    def extract_relevant_txs_with_proof(
        self, block: Block
    ) -> Tuple[List[BlobWithSender], InclusionProof, CompletenessProof]:
        logger.info("Extracting relevant txs with proof from block %s", block.block_hash_hex)
        blobs = self.extract_relevant_txs(block)
        inclusion, completeness = self.get_extraction_proof(block, blobs)
        return blobs, inclusion, completeness

    def submission_pipeline(self) -> SubmissionPipeline:
        if self.tx_builder is None:
            raise ConfigurationError("No inscription transaction builder is configured")
        if not self.destination_address:
            raise ConfigurationError("A destination address must be configured to submit blobs")
        if not self.sequencer_da_private_key:
            raise ConfigurationError("The sequencer private key must be configured to submit blobs")
        return SubmissionPipeline(
            self.node,
            self.tx_builder,
            self.compressor,
            self.checkpoints,
            rollup_name=self.rollup_name,
            network=self.network,
            destination_address=self.destination_address,
            sequencer_private_key=self.sequencer_da_private_key,
            coin_selection=self.coin_selection,
        )

    def submit_blob(self, blob: bytes) -> SubmissionReceipt:
        """Like :meth:`send_transaction` but returns the broadcast txids."""

        return self.submission_pipeline().submit(blob)

    def send_transaction(self, blob: bytes) -> None:
        self.submit_blob(blob)
