"""Command line interface for the Bitcoin DA adapter.

Read-side commands (``finalized``, ``block``, ``extract``, ``verify``) only
need RPC credentials and a rollup name. ``send`` also needs a transaction
builder, given as ``module:factory``; the factory is called with the loaded
:class:`~bitcoin_da.config.DAServiceConfig` and returns an object
implementing :class:`~bitcoin_da.submission.InscriptionTransactionBuilder`.
"""

from __future__ import annotations

import argparse
import importlib
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Sequence

from .address import AddressError
from .checkpoints import CheckpointError, FileRevealCheckpointStore
from .config import ConfigurationError, DAServiceConfig, load_da_config, set_default_config_path
from .finality import OperationCancelled
from .model import BlobWithSender, Block, CompletenessProof, InclusionProof
from .proofs import ProofVerificationError
from .rpc_client import RPCError, RPCTransportError, format_rpc_hint
from .service import BitcoinDAService
from .submission import InscriptionTransactionBuilder, PipelineStepError

logger = logging.getLogger(__name__)


class CLIError(RuntimeError):
    """Raised when CLI arguments are invalid."""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Bitcoin data-availability adapter")
    parser.add_argument("--config", help="Path to a YAML config file (default: ~/.bitcoin-da.yaml)")
    parser.add_argument("--rollup-name", help="Override the configured rollup name")
    parser.add_argument("--rpc-url", help="Override RPC endpoint URL")
    parser.add_argument("--rpc-user", help="Override RPC username")
    parser.add_argument("--rpc-password", help="Override RPC password")
    parser.add_argument("--rpc-wallet", help="Override RPC wallet name")
    parser.add_argument("--json", dest="as_json", action="store_true", help="Emit JSON output")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    finalized_parser = subparsers.add_parser(
        "finalized", help="Wait for the block at HEIGHT to be final and print it"
    )
    finalized_parser.add_argument("height", type=int)

    block_parser = subparsers.add_parser(
        "block", help="Wait for the block at HEIGHT to exist and print it"
    )
    block_parser.add_argument("height", type=int)

    extract_parser = subparsers.add_parser(
        "extract", help="List the rollup blobs in the finalized block at HEIGHT"
    )
    extract_parser.add_argument("height", type=int)
    extract_parser.add_argument(
        "--with-proof",
        action="store_true",
        help="Include the inclusion and completeness proofs",
    )

    verify_parser = subparsers.add_parser(
        "verify", help="Extract blobs at HEIGHT and check them against their proofs"
    )
    verify_parser.add_argument("height", type=int)

    send_parser = subparsers.add_parser("send", help="Inscribe the contents of FILE as a blob")
    send_parser.add_argument("file", help="Blob file, or '-' for stdin")
    send_parser.add_argument(
        "--builder",
        required=True,
        help="Transaction builder factory as 'package.module:factory'",
    )

    subparsers.add_parser("checkpoints", help="List saved reveal checkpoints")
    return parser


def _overrides_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    rpc_overrides = {
        "endpoint": args.rpc_url,
        "user": args.rpc_user,
        "password": args.rpc_password,
        "wallet": args.rpc_wallet,
    }
    overrides: Dict[str, Any] = {
        "rpc": {key: value for key, value in rpc_overrides.items() if value is not None}
    }
    if args.rollup_name:
        overrides["rollup_name"] = args.rollup_name
    return overrides


def _load_config(args: argparse.Namespace) -> DAServiceConfig:
    if args.config:
        set_default_config_path(args.config)
    return load_da_config(overrides=_overrides_from_args(args))


def _load_builder(target: str, config: DAServiceConfig) -> InscriptionTransactionBuilder:
    module_name, _, attr = target.partition(":")
    if not module_name or not attr:
        raise CLIError(f"Builder must look like 'package.module:factory', got {target!r}")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise CLIError(f"Cannot import builder module {module_name}: {exc}") from exc
    factory = getattr(module, attr, None)
    if factory is None:
        raise CLIError(f"Module {module_name} has no attribute {attr}")
    return factory(config)


def _blob_to_dict(blob: BlobWithSender) -> Dict[str, Any]:
    return {
        "hash": blob.hash.hex(),
        "sender": blob.sender.hex(),
        "size": len(blob.blob),
        "blob": blob.blob.hex(),
    }


def _block_to_dict(block: Block) -> Dict[str, Any]:
    return {
        "hash": block.block_hash_hex,
        "height": block.height,
        "prev_blockhash": block.header.prev_blockhash[::-1].hex(),
        "merkle_root": block.header.merkle_root[::-1].hex(),
        "time": block.header.time,
        "tx_count": len(block.txdata),
        "authenticated_txids": [
            entry.transaction.txid_hex() for entry in block.txdata if entry.authenticated
        ],
    }


def _proofs_to_dict(inclusion: InclusionProof, completeness: CompletenessProof) -> Dict[str, Any]:
    return {
        "inclusion": [txid[::-1].hex() for txid in inclusion.txs],
        "completeness": [tx.to_hex() for tx in completeness.txs],
    }


def _print_block(block: Block, as_json: bool) -> None:
    summary = _block_to_dict(block)
    if as_json:
        print(json.dumps(summary, indent=2))
        return
    print(f"Block {summary['hash']} at height {summary['height']}")
    print(f"  transactions: {summary['tx_count']}")
    print(f"  authenticated envelopes: {len(summary['authenticated_txids'])}")


def _print_blobs(blobs: List[BlobWithSender]) -> None:
    if not blobs:
        print("No rollup blobs found.")
        return
    print(" idx | size     | hash                                                             | sender")
    for index, blob in enumerate(blobs):
        print(f"{index:>4} | {len(blob.blob):>8} | {blob.hash.hex()} | {blob.sender.hex()}")


def cmd_finalized(args: argparse.Namespace, service: BitcoinDAService) -> None:
    _print_block(service.get_finalized_at(args.height), args.as_json)


def cmd_block(args: argparse.Namespace, service: BitcoinDAService) -> None:
    _print_block(service.get_block_at(args.height), args.as_json)


def cmd_extract(args: argparse.Namespace, service: BitcoinDAService) -> None:
    block = service.get_finalized_at(args.height)
    if args.with_proof:
        blobs, inclusion, completeness = service.extract_relevant_txs_with_proof(block)
    else:
        blobs = service.extract_relevant_txs(block)

    if args.as_json:
        payload: Dict[str, Any] = {
            "block": block.block_hash_hex,
            "height": block.height,
            "blobs": [_blob_to_dict(blob) for blob in blobs],
        }
        if args.with_proof:
            payload.update(_proofs_to_dict(inclusion, completeness))
        print(json.dumps(payload, indent=2))
        return

    print(f"Block {block.block_hash_hex} at height {block.height}")
    _print_blobs(blobs)
    if args.with_proof:
        print(
            f"Inclusion proof: {len(inclusion.txs)} txid(s); "
            f"completeness proof: {len(completeness.txs)} transaction(s)"
        )


def cmd_verify(args: argparse.Namespace, service: BitcoinDAService) -> None:
    block = service.get_finalized_at(args.height)
    blobs, inclusion, completeness = service.extract_relevant_txs_with_proof(block)
    verified = service.verifier.verify_relevant_txs(block.header, blobs, inclusion, completeness)
    if args.as_json:
        print(json.dumps({"block": block.block_hash_hex, "verified": len(verified)}, indent=2))
        return
    print(f"Verified {len(verified)} blob(s) in block {block.block_hash_hex}")


def cmd_send(args: argparse.Namespace, service: BitcoinDAService) -> None:
    if args.file == "-":
        blob = sys.stdin.buffer.read()
    else:
        path = Path(args.file).expanduser()
        if not path.exists():
            raise CLIError(f"Blob file not found: {path}")
        blob = path.read_bytes()
    if not blob:
        raise CLIError("Refusing to inscribe an empty blob")

    receipt = service.submit_blob(blob)
    if args.as_json:
        print(json.dumps({"commit_txid": receipt.commit_txid, "reveal_txid": receipt.reveal_txid}, indent=2))
        return
    print(f"Commit transaction: {receipt.commit_txid}")
    print(f"Reveal transaction: {receipt.reveal_txid}")


def cmd_checkpoints(args: argparse.Namespace, config: DAServiceConfig) -> None:
    store = FileRevealCheckpointStore(config.checkpoint_dir)
    commit_txids = store.commit_txids()
    if args.as_json:
        print(json.dumps(commit_txids, indent=2))
        return
    if not commit_txids:
        print(f"No reveal checkpoints in {store.directory}")
        return
    for commit_txid in commit_txids:
        print(f"{commit_txid}  {store.directory / f'reveal_{commit_txid}.tx'}")


def main(argv: Sequence[str] | None = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.INFO)
    try:
        config = _load_config(args)
        if args.command == "checkpoints":
            cmd_checkpoints(args, config)
            return

        tx_builder = _load_builder(args.builder, config) if args.command == "send" else None
        service = BitcoinDAService.from_config(config, tx_builder=tx_builder)
        if args.command == "finalized":
            cmd_finalized(args, service)
        elif args.command == "block":
            cmd_block(args, service)
        elif args.command == "extract":
            cmd_extract(args, service)
        elif args.command == "verify":
            cmd_verify(args, service)
        elif args.command == "send":
            cmd_send(args, service)
        else:  # pragma: no cover - argparse enforces choices
            raise CLIError(f"Unknown command: {args.command}")
    except (KeyboardInterrupt, OperationCancelled):
        logger.info("Interrupted by user")
        parser.exit(130, "error: interrupted\n")
    except RPCError as exc:
        hint = format_rpc_hint(exc)
        parser.exit(1, f"error: {exc}\n" + (f"hint: {hint}\n" if hint else ""))
    except PipelineStepError as exc:
        hint = format_rpc_hint(exc.__cause__) if isinstance(exc.__cause__, RPCError) else None
        parser.exit(1, f"error: {exc}\n" + (f"hint: {hint}\n" if hint else ""))
    except (
        CLIError,
        ConfigurationError,
        RPCTransportError,
        AddressError,
        CheckpointError,
        ProofVerificationError,
        RuntimeError,
        ValueError,
    ) as exc:
        parser.exit(1, f"error: {exc}\n")


if __name__ == "__main__":
    main(sys.argv[1:])
