"""Sequencer blob signing and sender authentication.

Blobs are signed with ECDSA over secp256k1. The signed message is the
double-SHA256 of the *compressed* blob, so verifiers can recompute it from
the on-chain envelope without decompressing anything. Signatures travel in
64-byte compact form (``r || s``) with a low ``s`` value, and public keys as
33-byte compressed points; anything else is rejected as malformed rather
than crashing the caller.
"""

from __future__ import annotations

from typing import Tuple

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives.asymmetric.utils import (
    Prehashed,
    decode_dss_signature,
    encode_dss_signature,
)

from .envelope import MalformedFieldError, ParsedInscription, parse_transaction
from .transaction import Transaction, double_sha256


SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141
COMPACT_SIGNATURE_LENGTH = 64
COMPRESSED_PUBLIC_KEY_LENGTH = 33

_PREHASHED_ECDSA = ec.ECDSA(Prehashed(hashes.SHA256()))


class AuthenticationError(ValueError):
    """Raised when an envelope signature does not verify."""


def blob_digest(body: bytes) -> bytes:
    """Return the 32-byte message signed for ``body`` (double SHA256)."""

    return double_sha256(body)


def load_private_key(private_key_hex: str) -> ec.EllipticCurvePrivateKey:
    """Load a secp256k1 private key from its 32-byte hex encoding."""

    try:
        raw = bytes.fromhex(private_key_hex)
    except ValueError as exc:
        raise ValueError("Sequencer private key is not valid hex") from exc
    if len(raw) != 32:
        raise ValueError(f"Sequencer private key must be 32 bytes, got {len(raw)}")
    secret = int.from_bytes(raw, "big")
    if not 0 < secret < SECP256K1_ORDER:
        raise ValueError("Sequencer private key is outside the curve order")
    return ec.derive_private_key(secret, ec.SECP256K1())


def serialize_public_key(public_key: ec.EllipticCurvePublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.X962, serialization.PublicFormat.CompressedPoint
    )


def parse_public_key(data: bytes) -> ec.EllipticCurvePublicKey:
    """Parse a compressed secp256k1 point."""

    if len(data) != COMPRESSED_PUBLIC_KEY_LENGTH or data[0] not in (0x02, 0x03):
        raise MalformedFieldError(
            f"Public key must be a {COMPRESSED_PUBLIC_KEY_LENGTH}-byte compressed point"
        )
    try:
        return ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256K1(), data)
    except ValueError as exc:
        raise MalformedFieldError("Public key is not a point on secp256k1") from exc


def parse_compact_signature(data: bytes) -> Tuple[int, int]:
    """Split a compact signature into ``(r, s)``, validating both scalars."""

    if len(data) != COMPACT_SIGNATURE_LENGTH:
        raise MalformedFieldError(
            f"Signature must be {COMPACT_SIGNATURE_LENGTH} bytes, got {len(data)}"
        )
    r = int.from_bytes(data[:32], "big")
    s = int.from_bytes(data[32:], "big")
    if not (0 < r < SECP256K1_ORDER and 0 < s < SECP256K1_ORDER):
        raise MalformedFieldError("Signature scalar is outside the curve order")
    return r, s


def sign_blob_with_private_key(blob: bytes, private_key_hex: str) -> Tuple[bytes, bytes]:
    """Sign a compressed blob, returning ``(compact_signature, public_key)``."""

    private_key = load_private_key(private_key_hex)
    der = private_key.sign(blob_digest(blob), _PREHASHED_ECDSA)
    r, s = decode_dss_signature(der)
    if s > SECP256K1_ORDER // 2:
        s = SECP256K1_ORDER - s
    signature = r.to_bytes(32, "big") + s.to_bytes(32, "big")
    return signature, serialize_public_key(private_key.public_key())


def verify_inscription(inscription: ParsedInscription) -> Tuple[bytes, bytes]:
    """Check an envelope's signature, returning ``(public_key, digest)``.

    High-``s`` signatures are refused, matching libsecp256k1 verification.

    Raises:
        MalformedFieldError: if the key or signature cannot be parsed.
        AuthenticationError: if the signature does not verify.
    """

    public_key = parse_public_key(inscription.public_key)
    r, s = parse_compact_signature(inscription.signature)
    digest = blob_digest(inscription.body)

    if s > SECP256K1_ORDER // 2:
        raise AuthenticationError("Signature is not in low-S form")
    try:
        public_key.verify(encode_dss_signature(r, s), digest, _PREHASHED_ECDSA)
    except InvalidSignature as exc:
        raise AuthenticationError("Envelope signature does not match its body") from exc
    return serialize_public_key(public_key), digest


def recover_sender_and_hash_from_tx(tx: Transaction, rollup_name: str) -> Tuple[bytes, bytes]:
    """Decode and authenticate the rollup envelope carried by ``tx``.

    Returns the sender's compressed public key and the content hash of the
    compressed body. Any decode, format or signature failure raises; there
    is no partially trusted result.
    """

    inscription = parse_transaction(tx, rollup_name)
    return verify_inscription(inscription)
