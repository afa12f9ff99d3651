"""Bitcoin data-availability adapter for rollups."""

from .address import AddressError, Network, NetworkMismatchError
from .compression import BlobCompressor, CompressionError, ZstdBlobCompressor
from .config import ConfigurationError, DAServiceConfig, RPCConfig, load_da_config, load_rpc_config
from .envelope import DecodeError, MalformedFieldError, build_envelope_script, parse_transaction
from .finality import CancelToken, FinalityTracker, OperationCancelled
from .model import BlobWithSender, Block, CompletenessProof, InclusionProof
from .proofs import (
    BitcoinVerifier,
    CompletenessFilter,
    CompletenessProofError,
    InclusionProofError,
    ProofVerificationError,
    build_extraction_proof,
)
from .rpc_client import BitcoinRPCClient, NodeNotFoundError, RPCError
from .scanner import BlockScanner
from .service import BitcoinDAService, DAService
from .signing import AuthenticationError, recover_sender_and_hash_from_tx, sign_blob_with_private_key
from .submission import PipelineStepError, SubmissionPipeline, SubmissionStep

__all__ = [
    "AddressError",
    "Network",
    "NetworkMismatchError",
    "BlobCompressor",
    "CompressionError",
    "ZstdBlobCompressor",
    "ConfigurationError",
    "DAServiceConfig",
    "RPCConfig",
    "load_da_config",
    "load_rpc_config",
    "DecodeError",
    "MalformedFieldError",
    "build_envelope_script",
    "parse_transaction",
    "CancelToken",
    "FinalityTracker",
    "OperationCancelled",
    "BlobWithSender",
    "Block",
    "CompletenessProof",
    "InclusionProof",
    "BitcoinVerifier",
    "CompletenessFilter",
    "CompletenessProofError",
    "InclusionProofError",
    "ProofVerificationError",
    "build_extraction_proof",
    "BitcoinRPCClient",
    "NodeNotFoundError",
    "RPCError",
    "BlockScanner",
    "BitcoinDAService",
    "DAService",
    "AuthenticationError",
    "recover_sender_and_hash_from_tx",
    "sign_blob_with_private_key",
    "PipelineStepError",
    "SubmissionPipeline",
    "SubmissionStep",
]
