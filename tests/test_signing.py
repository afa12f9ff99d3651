from __future__ import annotations

import pytest

from bitcoin_da.envelope import MalformedFieldError, ParsedInscription
from bitcoin_da.signing import (
    SECP256K1_ORDER,
    AuthenticationError,
    blob_digest,
    load_private_key,
    recover_sender_and_hash_from_tx,
    serialize_public_key,
    sign_blob_with_private_key,
    verify_inscription,
)
from bitcoin_da.transaction import double_sha256

from conftest import OTHER_KEY_HEX, ROLLUP_NAME, SEQUENCER_KEY_HEX, envelope_transaction


def _signed(body: bytes, key_hex: str = SEQUENCER_KEY_HEX) -> ParsedInscription:
    signature, public_key = sign_blob_with_private_key(body, key_hex)
    return ParsedInscription(body=body, signature=signature, public_key=public_key)


def test_signature_verifies_and_reports_sender() -> None:
    inscription = _signed(b"compressed-batch")

    sender, digest = verify_inscription(inscription)

    assert sender == inscription.public_key
    assert len(sender) == 33 and sender[0] in (2, 3)
    assert digest == double_sha256(b"compressed-batch") == blob_digest(b"compressed-batch")


def test_signatures_are_compact_and_low_s() -> None:
    for body in (b"a", b"b", b"c", b"d"):
        signature, _ = sign_blob_with_private_key(body, SEQUENCER_KEY_HEX)
        assert len(signature) == 64
        assert int.from_bytes(signature[32:], "big") <= SECP256K1_ORDER // 2


def test_high_s_form_is_rejected() -> None:
    inscription = _signed(b"body")
    s = int.from_bytes(inscription.signature[32:], "big")
    high_s = inscription.signature[:32] + (SECP256K1_ORDER - s).to_bytes(32, "big")

    with pytest.raises(AuthenticationError):
        verify_inscription(ParsedInscription(inscription.body, high_s, inscription.public_key))


@pytest.mark.parametrize("field", ["body", "signature", "public_key"])
def test_any_flipped_byte_breaks_authentication(field: str) -> None:
    inscription = _signed(b"0123456789abcdef")
    original = getattr(inscription, field)

    for index in range(0, len(original), 7):
        mutated = bytearray(original)
        mutated[index] ^= 0x01
        values = {
            "body": inscription.body,
            "signature": inscription.signature,
            "public_key": inscription.public_key,
        }
        values[field] = bytes(mutated)
        with pytest.raises((AuthenticationError, MalformedFieldError)):
            verify_inscription(ParsedInscription(**values))


def test_signature_by_another_key_is_rejected() -> None:
    inscription = _signed(b"body")
    _, other_public_key = sign_blob_with_private_key(b"body", OTHER_KEY_HEX)

    with pytest.raises(AuthenticationError):
        verify_inscription(ParsedInscription(inscription.body, inscription.signature, other_public_key))


@pytest.mark.parametrize(
    "signature, public_key",
    [
        (b"\x01" * 63, None),
        (b"\x00" * 64, None),
        (b"\xff" * 64, None),
        (None, b"\x02" + b"\x01" * 31),
        (None, b"\x04" + b"\x01" * 32),
        (None, b"\x02" + b"\xff" * 32),
    ],
)
def test_malformed_fields_raise_decode_errors(signature: bytes | None, public_key: bytes | None) -> None:
    inscription = _signed(b"body")
    candidate = ParsedInscription(
        body=inscription.body,
        signature=inscription.signature if signature is None else signature,
        public_key=inscription.public_key if public_key is None else public_key,
    )

    with pytest.raises(MalformedFieldError):
        verify_inscription(candidate)


def test_invalid_private_keys_are_refused() -> None:
    for key in ("zz" * 32, "00" * 31, "00" * 32, f"{SECP256K1_ORDER:064x}"):
        with pytest.raises(ValueError):
            load_private_key(key)


def test_recover_sender_and_hash_from_tx() -> None:
    tx = envelope_transaction(b"batch")
    expected_public_key = serialize_public_key(load_private_key(SEQUENCER_KEY_HEX).public_key())

    sender, blob_hash = recover_sender_and_hash_from_tx(tx, ROLLUP_NAME)

    assert sender == expected_public_key
    assert len(blob_hash) == 32


def test_tampered_body_in_tx_fails_authentication() -> None:
    tx = envelope_transaction(b"batch", body=b"not what was signed")

    with pytest.raises(AuthenticationError):
        recover_sender_and_hash_from_tx(tx, ROLLUP_NAME)
