"""Node-client facade used by the DA service.

:class:`BitcoinNode` turns raw RPC results into the types the service works
with. Blocks are fetched in raw form and every transaction is authenticated
here, once, so the scanner and proof builder can rely on the annotations.
"""

from __future__ import annotations

import logging
from typing import List, Protocol, Tuple

from .envelope import DecodeError
from .fees import DEFAULT_FALLBACK_FEE_RATE_SATVB, format_floors_for_log, select_fee_rate
from .model import AnnotatedTransaction, Block, UTXO
from .rpc_client import RPC_INVALID_PARAMETER, BitcoinRPCClient, NodeNotFoundError, RPCError
from .signing import AuthenticationError, recover_sender_and_hash_from_tx
from .transaction import SerializationError, Transaction, parse_raw_block

logger = logging.getLogger(__name__)


class NodeClient(Protocol):
    """Operations the DA service needs from a chain node."""

    def get_block_count(self) -> int:
        ...

    def get_block_hash(self, height: int) -> str:
        ...

    def get_block(self, block_hash: str, rollup_name: str) -> Block:
        ...

    def get_change_addresses(self) -> Tuple[str, str]:
        ...

    def get_utxos(self) -> List[UTXO]:
        ...

    def estimate_smart_fee(self) -> float:
        ...

    def sign_raw_transaction_with_wallet(self, raw_tx_hex: str) -> str:
        ...

    def send_raw_transaction(self, raw_tx_hex: str) -> str:
        ...


def annotate_transaction(tx: Transaction, rollup_name: str) -> AnnotatedTransaction:
    """Attach the authenticated sender and content hash, when there is one."""

    try:
        sender, blob_hash = recover_sender_and_hash_from_tx(tx, rollup_name)
    except DecodeError:
        return AnnotatedTransaction(transaction=tx)
    except AuthenticationError as exc:
        logger.debug("Envelope in tx %s failed authentication: %s", tx.txid_hex(), exc)
        return AnnotatedTransaction(transaction=tx)
    return AnnotatedTransaction(transaction=tx, sender=sender, blob_hash=blob_hash)


class BitcoinNode:
    """:class:`NodeClient` backed by a Bitcoin Core JSON-RPC endpoint."""

    def __init__(
        self,
        rpc: BitcoinRPCClient,
        fallback_fee_rate_satvb: float = DEFAULT_FALLBACK_FEE_RATE_SATVB,
    ) -> None:
        self.rpc = rpc
        self.fallback_fee_rate_satvb = fallback_fee_rate_satvb

    def get_block_count(self) -> int:
        return self.rpc.getblockcount()

    def get_block_hash(self, height: int) -> str:
        try:
            return self.rpc.getblockhash(height)
        except RPCError as exc:
            if exc.code == RPC_INVALID_PARAMETER:
                raise NodeNotFoundError(exc.code, exc.message) from exc
            raise

    def get_block(self, block_hash: str, rollup_name: str) -> Block:
        raw_hex = self.rpc.getblock(block_hash, 0)
        try:
            header, txs = parse_raw_block(bytes.fromhex(raw_hex))
        except ValueError as exc:
            raise SerializationError(f"Node returned an undecodable block {block_hash}") from exc

        if header.block_hash_hex() != block_hash:
            raise SerializationError(
                f"Block hash mismatch: requested {block_hash}, received {header.block_hash_hex()}"
            )
        txdata = [annotate_transaction(tx, rollup_name) for tx in txs]
        logger.debug(
            "Fetched block %s with %d transaction(s), %d authenticated envelope(s)",
            block_hash,
            len(txdata),
            sum(1 for entry in txdata if entry.authenticated),
        )
        return Block(header=header, txdata=txdata)

    def get_change_addresses(self) -> Tuple[str, str]:
        return self.rpc.getrawchangeaddress(), self.rpc.getrawchangeaddress()

    def get_utxos(self) -> List[UTXO]:
        utxos = [UTXO.from_rpc(entry) for entry in self.rpc.listunspent(0, 9999999)]
        if not utxos:
            logger.warning("Wallet has no UTXOs; fund the sequencer wallet before submitting blobs.")
            raise RuntimeError("Wallet has no UTXOs. Fund or unlock the sequencer wallet.")
        return utxos

    def estimate_smart_fee(self) -> float:
        """Return the fee rate to use, in sat/vB."""

        selection = select_fee_rate(
            self.rpc, fallback_fee_rate_satvb=self.fallback_fee_rate_satvb
        )
        logger.info(
            "Using fee rate %.2f sat/vB (%s; floors: %s)",
            selection.fee_rate_sat_vb,
            selection.source,
            format_floors_for_log(selection.floors_applied),
        )
        return selection.fee_rate_sat_vb

    def sign_raw_transaction_with_wallet(self, raw_tx_hex: str) -> str:
        signed = self.rpc.signrawtransactionwithwallet(raw_tx_hex)
        if not signed.get("complete"):
            raise RuntimeError("Node failed to produce a complete signature set")
        return signed["hex"]

    def send_raw_transaction(self, raw_tx_hex: str) -> str:
        txid = self.rpc.sendrawtransaction(raw_tx_hex)
        logger.info("Broadcasted transaction %s", txid)
        return txid
