"""Rollup inscription envelope: tag grammar, decoder and encoder.

A reveal transaction carries the rollup blob in the Taproot leaf script of
its first input::

    OP_0 OP_IF
      <0x01> <rollup name>
      <0x02> <signature>
      <0x03> <public key>
      <0x04> <nonce>
      OP_0 <body chunk> <body chunk> ...
    OP_ENDIF

The decoder walks the instruction stream once. A failed match does not
rewind: instructions consumed by the failed attempt are not offered to the
next attempt. Deployed envelopes were produced against this exact matcher,
so the behavior is kept as is.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional

from .script import (
    MAX_SCRIPT_ELEMENT_SIZE,
    OP_CHECKSIG,
    OP_ENDIF,
    OP_IF,
    Instruction,
    iter_instructions,
    push_data,
    tapscript_from_witness,
)
from .transaction import Transaction


BODY_TAG = b""
ROLLUP_NAME_TAG = b"\x01"
SIGNATURE_TAG = b"\x02"
PUBLICKEY_TAG = b"\x03"
RANDOM_TAG = b"\x04"


class DecodeError(ValueError):
    """Raised when a transaction does not carry an envelope for the rollup."""


class MalformedFieldError(DecodeError):
    """Raised when an envelope field has the wrong size or encoding."""


@dataclass
class ParsedInscription:
    """Raw envelope fields; ``body`` is still compressed."""

    body: bytes
    signature: bytes
    public_key: bytes


def get_script(tx: Transaction) -> bytes:
    """Return the Taproot leaf script spent by the first input of ``tx``."""

    if not tx.inputs:
        raise DecodeError("Transaction has no inputs")
    script = tapscript_from_witness(tx.inputs[0].witness)
    if script is None:
        raise DecodeError("First input does not carry a script-path witness")
    return script


def parse_transaction(tx: Transaction, rollup_name: str) -> ParsedInscription:
    """Decode the envelope addressed to ``rollup_name`` from ``tx``."""

    return parse_envelope_script(get_script(tx), rollup_name)


def _next_push(instructions: Iterator[Instruction], expected: Optional[bytes] = None) -> Optional[bytes]:
    instruction = next(instructions, None)
    if instruction is None or not instruction.is_push:
        return None
    if expected is not None and instruction.data != expected:
        return None
    return instruction.data


def parse_envelope_script(script: bytes, rollup_name: str) -> ParsedInscription:
    """Match the envelope grammar anywhere in ``script``.

    Raises:
        DecodeError: if no position in the script satisfies the full grammar.
    """

    name_bytes = rollup_name.encode("utf-8")
    instructions = iter_instructions(script)

    for instruction in instructions:
        if not instruction.is_push or instruction.data != BODY_TAG:
            continue

        marker = next(instructions, None)
        if marker is None or not marker.is_op(OP_IF):
            continue

        if _next_push(instructions, ROLLUP_NAME_TAG) is None:
            continue
        if _next_push(instructions, name_bytes) is None:
            continue

        if _next_push(instructions, SIGNATURE_TAG) is None:
            continue
        signature = _next_push(instructions)
        if signature is None:
            continue

        if _next_push(instructions, PUBLICKEY_TAG) is None:
            continue
        public_key = _next_push(instructions)
        if public_key is None:
            continue

        if _next_push(instructions, RANDOM_TAG) is None:
            continue
        if _next_push(instructions) is None:
            continue

        if _next_push(instructions, BODY_TAG) is None:
            continue

        chunks: List[bytes] = []
        for item in instructions:
            if item.is_push:
                chunks.append(item.data or b"")
                continue
            if item.is_op(OP_ENDIF):
                return ParsedInscription(
                    body=b"".join(chunks), signature=signature, public_key=public_key
                )
            break

    raise DecodeError(f"No envelope for rollup {rollup_name!r} found in script")


def build_envelope_script(
    rollup_name: str,
    body: bytes,
    signature: bytes,
    public_key: bytes,
    nonce: bytes,
    *,
    reveal_key: Optional[bytes] = None,
    chunk_size: int = MAX_SCRIPT_ELEMENT_SIZE,
) -> bytes:
    """Encode an envelope that :func:`parse_envelope_script` accepts.

    When ``reveal_key`` (32-byte x-only key) is given, the envelope is
    prefixed with ``<reveal_key> OP_CHECKSIG`` so the leaf is spendable only
    by that key, as reveal transactions require.
    """

    if not 0 < chunk_size <= MAX_SCRIPT_ELEMENT_SIZE:
        raise ValueError(f"chunk_size must be between 1 and {MAX_SCRIPT_ELEMENT_SIZE}")

    parts: List[bytes] = []
    if reveal_key is not None:
        if len(reveal_key) != 32:
            raise ValueError(f"Reveal key must be 32 bytes, got {len(reveal_key)}")
        parts.append(push_data(reveal_key))
        parts.append(bytes([OP_CHECKSIG]))

    parts.append(push_data(BODY_TAG))
    parts.append(bytes([OP_IF]))
    for tag, value in (
        (ROLLUP_NAME_TAG, rollup_name.encode("utf-8")),
        (SIGNATURE_TAG, signature),
        (PUBLICKEY_TAG, public_key),
        (RANDOM_TAG, nonce),
    ):
        parts.append(push_data(tag))
        parts.append(push_data(value))

    parts.append(push_data(BODY_TAG))
    for start in range(0, len(body), chunk_size):
        parts.append(push_data(body[start : start + chunk_size]))
    parts.append(bytes([OP_ENDIF]))
    return b"".join(parts)
