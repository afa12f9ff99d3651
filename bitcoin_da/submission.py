"""Blob submission: compress, sign, inscribe with a commit/reveal pair.

The pipeline only orchestrates. The wallet, fee estimation and the
construction of the commit and reveal transactions belong to injected
collaborators. Once the commit transaction is broadcast nothing can be
rolled back, so the reveal transaction is checkpointed before its own
broadcast.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence, Tuple, TypeVar

from .address import Network, NetworkMismatchError, require_network
from .checkpoints import RevealCheckpointStore
from .compression import BlobCompressor
from .model import SatPoint, UTXO
from .node import NodeClient
from .signing import sign_blob_with_private_key
from .transaction import Transaction

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SubmissionStep(str, Enum):
    COMPRESS = "compress"
    FETCH_CHANGE_ADDRESSES = "fetch_change_addresses"
    FETCH_UTXOS = "fetch_utxos"
    SELECT_INSCRIPTION_POINT = "select_inscription_point"
    RESOLVE_DESTINATION = "resolve_destination"
    SIGN_BLOB = "sign_blob"
    ESTIMATE_FEE = "estimate_fee"
    BUILD_TRANSACTIONS = "build_transactions"
    SIGN_COMMIT = "sign_commit"
    BROADCAST_COMMIT = "broadcast_commit"
    CHECKPOINT_REVEAL = "checkpoint_reveal"
    BROADCAST_REVEAL = "broadcast_reveal"


class PipelineStepError(RuntimeError):
    """Raised when a submission step fails; the original error is ``__cause__``.

    ``commit_txid`` is set once the commit transaction has been broadcast,
    in which case its output is spent only by the checkpointed reveal.
    """

    def __init__(self, step: SubmissionStep, cause: BaseException, commit_txid: Optional[str] = None) -> None:
        message = f"Submission failed at step '{step.value}': {cause}"
        if commit_txid:
            message += f" (commit {commit_txid} already broadcast)"
        super().__init__(message)
        self.step = step
        self.commit_txid = commit_txid


@dataclass
class SubmissionReceipt:
    commit_txid: str
    reveal_txid: str


class CoinSelectionStrategy(Protocol):
    def select(self, utxos: Sequence[UTXO]) -> SatPoint:
        ...


class FirstUtxoSelection:
    """Inscribe on the first satoshi of the first listed UTXO."""

    def select(self, utxos: Sequence[UTXO]) -> SatPoint:
        if not utxos:
            raise ValueError("No UTXOs available to inscribe on")
        first = utxos[0]
        return SatPoint(txid=first.txid, vout=first.vout, offset=0)


class InscriptionTransactionBuilder(Protocol):
    """Builds the unsigned commit transaction and the signed reveal transaction.

    The reveal must carry the envelope of :func:`bitcoin_da.envelope.build_envelope_script`
    and grind its nonce until its txid passes the completeness filter.
    """

    def create_inscription_transactions(
        self,
        rollup_name: str,
        compressed_blob: bytes,
        signature: bytes,
        public_key: bytes,
        satpoint: SatPoint,
        utxos: List[UTXO],
        change_addresses: Tuple[str, str],
        destination_address: str,
        commit_feerate: float,
        reveal_feerate: float,
        network: Network,
    ) -> Tuple[Transaction, Transaction]:
        ...


class SubmissionPipeline:
    """Turn one rollup blob into a broadcast commit/reveal pair."""

    def __init__(
        self,
        node: NodeClient,
        tx_builder: InscriptionTransactionBuilder,
        compressor: BlobCompressor,
        checkpoints: RevealCheckpointStore,
        *,
        rollup_name: str,
        network: Network,
        destination_address: str,
        sequencer_private_key: str,
        coin_selection: Optional[CoinSelectionStrategy] = None,
    ) -> None:
        self.node = node
        self.tx_builder = tx_builder
        self.compressor = compressor
        self.checkpoints = checkpoints
        self.rollup_name = rollup_name
        self.network = network
        self.destination_address = destination_address
        self.sequencer_private_key = sequencer_private_key
        self.coin_selection = coin_selection or FirstUtxoSelection()

    def _run(
        self,
        step: SubmissionStep,
        func: Callable[[], T],
        commit_txid: Optional[str] = None,
    ) -> T:
        try:
            return func()
        except NetworkMismatchError:
            raise
        except Exception as exc:
            logger.error("Submission step %s failed: %s", step.value, exc)
            raise PipelineStepError(step, exc, commit_txid=commit_txid) from exc

    def submit(self, blob: bytes) -> SubmissionReceipt:
        """Inscribe ``blob`` and return the broadcast transaction ids.

        :class:`NetworkMismatchError` propagates as is; every other failure
        is wrapped in :class:`PipelineStepError`.
        """

        compressed = self._run(SubmissionStep.COMPRESS, lambda: self.compressor.compress(blob))
        change_addresses = self._run(
            SubmissionStep.FETCH_CHANGE_ADDRESSES, self.node.get_change_addresses
        )
        utxos = self._run(SubmissionStep.FETCH_UTXOS, self.node.get_utxos)
        satpoint = self._run(
            SubmissionStep.SELECT_INSCRIPTION_POINT, lambda: self.coin_selection.select(utxos)
        )
        destination = self._run(
            SubmissionStep.RESOLVE_DESTINATION,
            lambda: require_network(self.destination_address, self.network),
        )
        signature, public_key = self._run(
            SubmissionStep.SIGN_BLOB,
            lambda: sign_blob_with_private_key(compressed, self.sequencer_private_key),
        )
        fee_rate = self._run(SubmissionStep.ESTIMATE_FEE, self.node.estimate_smart_fee)

        commit_tx, reveal_tx = self._run(
            SubmissionStep.BUILD_TRANSACTIONS,
            lambda: self.tx_builder.create_inscription_transactions(
                self.rollup_name,
                compressed,
                signature,
                public_key,
                satpoint,
                list(utxos),
                change_addresses,
                destination.text,
                fee_rate,
                fee_rate,
                self.network,
            ),
        )
        commit_txid = commit_tx.txid_hex()

        signed_commit_hex = self._run(
            SubmissionStep.SIGN_COMMIT,
            lambda: self.node.sign_raw_transaction_with_wallet(commit_tx.to_hex()),
        )
        logger.info("Broadcasting commit transaction %s", commit_txid)
        self._run(
            SubmissionStep.BROADCAST_COMMIT,
            lambda: self.node.send_raw_transaction(signed_commit_hex),
        )

        raw_reveal = reveal_tx.serialize()
        self._run(
            SubmissionStep.CHECKPOINT_REVEAL,
            lambda: self.checkpoints.save(commit_txid, raw_reveal),
            commit_txid,
        )
        logger.info("Broadcasting reveal transaction %s", reveal_tx.txid_hex())
        reveal_txid = self._run(
            SubmissionStep.BROADCAST_REVEAL,
            lambda: self.node.send_raw_transaction(raw_reveal.hex()),
            commit_txid,
        )
        logger.info("Blob inscribe tx sent. Hash: %s", reveal_txid)
        return SubmissionReceipt(commit_txid=commit_txid, reveal_txid=reveal_txid)
