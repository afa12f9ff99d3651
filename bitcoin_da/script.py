"""Minimal Bitcoin script tokenizer and push encoder.

Only the subset needed to read and write inscription envelopes lives here:
push opcodes, a handful of flow-control opcodes, and the witness helper that
extracts a Taproot script-path leaf. No script execution is attempted.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional, Sequence

OP_0 = 0x00
OP_FALSE = OP_0
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_PUSHDATA4 = 0x4E
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_16 = 0x60
OP_IF = 0x63
OP_NOTIF = 0x64
OP_ELSE = 0x67
OP_ENDIF = 0x68
OP_RETURN = 0x6A
OP_DROP = 0x75
OP_CHECKSIG = 0xAC

MAX_SCRIPT_ELEMENT_SIZE = 520
TAPROOT_ANNEX_PREFIX = 0x50


@dataclass(frozen=True)
class Instruction:
    """A single decoded script instruction.

    ``data`` is set for push instructions (including ``OP_0``, which pushes
    the empty byte string) and ``None`` for plain opcodes. ``error`` marks a
    push whose declared length runs past the end of the script; nothing
    follows an error instruction.
    """

    opcode: int
    data: Optional[bytes] = None
    error: bool = False

    @property
    def is_push(self) -> bool:
        return self.data is not None and not self.error

    def is_op(self, opcode: int) -> bool:
        return self.data is None and not self.error and self.opcode == opcode


def iter_instructions(script: bytes) -> Iterator[Instruction]:
    """Yield the instructions of ``script`` from left to right."""

    index = 0
    length = len(script)
    while index < length:
        opcode = script[index]
        index += 1

        if opcode == OP_0:
            yield Instruction(opcode, b"")
            continue

        if opcode < OP_PUSHDATA1:
            size = opcode
        elif opcode in (OP_PUSHDATA1, OP_PUSHDATA2, OP_PUSHDATA4):
            width = {OP_PUSHDATA1: 1, OP_PUSHDATA2: 2, OP_PUSHDATA4: 4}[opcode]
            if index + width > length:
                yield Instruction(opcode, error=True)
                return
            size = int.from_bytes(script[index : index + width], "little")
            index += width
        else:
            yield Instruction(opcode)
            continue

        if index + size > length:
            yield Instruction(opcode, error=True)
            return
        yield Instruction(opcode, bytes(script[index : index + size]))
        index += size


def push_data(data: bytes) -> bytes:
    """Return the minimal push encoding for ``data``.

    Raises:
        ValueError: if ``data`` exceeds the standard 520-byte element limit.
    """

    length = len(data)
    if length > MAX_SCRIPT_ELEMENT_SIZE:
        raise ValueError(
            f"Script element of {length} bytes exceeds the {MAX_SCRIPT_ELEMENT_SIZE}-byte limit"
        )
    if length == 0:
        return bytes([OP_0])
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    if length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data


def build_script(items: Sequence[int | bytes]) -> bytes:
    """Assemble a script from opcodes (ints) and push payloads (bytes)."""

    parts: List[bytes] = []
    for item in items:
        if isinstance(item, int):
            parts.append(bytes([item]))
        else:
            parts.append(push_data(item))
    return b"".join(parts)


def tapscript_from_witness(witness: Sequence[bytes]) -> Optional[bytes]:
    """Return the script-path leaf script of a Taproot witness, if any.

    The leaf script sits just below the control block; an optional annex
    (last element starting with ``0x50``) shifts it down by one.
    """

    items = list(witness)
    if len(items) >= 2 and items[-1][:1] == bytes([TAPROOT_ANNEX_PREFIX]):
        items = items[:-1]
    if len(items) < 2:
        return None
    return items[-2]
