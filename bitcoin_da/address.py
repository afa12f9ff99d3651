"""Bitcoin address decoding and network checks.

Supports Base58Check (P2PKH/P2SH) and BIP173/BIP350 segwit addresses. The
submission flow uses :func:`require_network` so a destination configured for
the wrong chain is rejected before anything is broadcast.

Reference:
    BIP173 (bech32): https://github.com/bitcoin/bips/blob/master/bip-0173.mediawiki
    BIP350 (bech32m): https://github.com/bitcoin/bips/blob/master/bip-0350.mediawiki
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

from .script import OP_1

BECH32_CHARSET = "qpzry9x8gf2tvdw0s3jn54khce6mua7l"
BECH32M_CONST = 0x2BC830A3
BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


class AddressError(ValueError):
    """Raised when an address string cannot be decoded."""


class NetworkMismatchError(AddressError):
    """Raised when an address belongs to a different network than configured."""


class Network(str, Enum):
    MAINNET = "bitcoin"
    TESTNET = "testnet"
    SIGNET = "signet"
    REGTEST = "regtest"

    @classmethod
    def from_name(cls, name: str) -> "Network":
        normalized = name.strip().lower()
        aliases = {"main": cls.MAINNET, "mainnet": cls.MAINNET, "test": cls.TESTNET}
        if normalized in aliases:
            return aliases[normalized]
        for network in cls:
            if network.value == normalized:
                return network
        raise ValueError(f"Unknown network: {name}")

    @property
    def bech32_hrp(self) -> str:
        return {
            Network.MAINNET: "bc",
            Network.TESTNET: "tb",
            Network.SIGNET: "tb",
            Network.REGTEST: "bcrt",
        }[self]


# Base58 version bytes: (p2pkh, p2sh)
_MAINNET_VERSIONS = (0x00, 0x05)
_TEST_VERSIONS = (0x6F, 0xC4)

# Which networks accept an address of a given encoding "kind".
_KIND_NETWORKS = {
    "base58-main": {Network.MAINNET},
    "base58-test": {Network.TESTNET, Network.SIGNET, Network.REGTEST},
    "bc": {Network.MAINNET},
    "tb": {Network.TESTNET, Network.SIGNET},
    "bcrt": {Network.REGTEST},
}


@dataclass(frozen=True)
class Address:
    """A decoded address: its encoding family and the script it pays to."""

    text: str
    kind: str
    script_pubkey: bytes

    def is_valid_for_network(self, network: Network) -> bool:
        return network in _KIND_NETWORKS.get(self.kind, set())


def bech32_polymod(values: list[int]) -> int:
    """Compute bech32 checksum polymod."""
    GEN = [0x3B6A57B2, 0x26508E6D, 0x1EA119FA, 0x3D4233DD, 0x2A1462B3]
    chk = 1
    for value in values:
        b = chk >> 25
        chk = (chk & 0x1FFFFFF) << 5 ^ value
        for i in range(5):
            chk ^= GEN[i] if ((b >> i) & 1) else 0
    return chk


def bech32_hrp_expand(hrp: str) -> list[int]:
    """Expand HRP for bech32 checksum."""
    return [ord(x) >> 5 for x in hrp] + [0] + [ord(x) & 31 for x in hrp]


def _convertbits(data: bytes | list[int], frombits: int, tobits: int, pad: bool = True) -> list[int] | None:
    acc = 0
    bits = 0
    ret = []
    maxv = (1 << tobits) - 1
    max_acc = (1 << (frombits + tobits - 1)) - 1

    for value in data:
        if value < 0 or value >> frombits:
            return None
        acc = ((acc << frombits) | value) & max_acc
        bits += frombits
        while bits >= tobits:
            bits -= tobits
            ret.append((acc >> bits) & maxv)

    if pad:
        if bits:
            ret.append((acc << (tobits - bits)) & maxv)
    elif bits >= frombits or ((acc << (tobits - bits)) & maxv):
        return None

    return ret


def encode_segwit_address(hrp: str, witver: int, witprog: bytes) -> str:
    """Encode a segwit address (bech32 for v0, bech32m for v1+)."""

    data = _convertbits(witprog, 8, 5)
    if data is None:
        raise AddressError("Failed to convert witness program to 5-bit")
    combined = [witver] + data
    const = BECH32M_CONST if witver >= 1 else 1
    polymod = bech32_polymod(bech32_hrp_expand(hrp) + combined + [0] * 6) ^ const
    checksum = [(polymod >> 5 * (5 - i)) & 31 for i in range(6)]
    return hrp + "1" + "".join(BECH32_CHARSET[d] for d in combined + checksum)


def _bech32_decode(text: str) -> Tuple[str, list[int], int]:
    if text.lower() != text and text.upper() != text:
        raise AddressError("Mixed-case bech32 address")
    text = text.lower()
    pos = text.rfind("1")
    if pos < 1 or pos + 7 > len(text) or len(text) > 90:
        raise AddressError("Malformed bech32 address")
    hrp = text[:pos]
    try:
        data = [BECH32_CHARSET.index(char) for char in text[pos + 1 :]]
    except ValueError as exc:
        raise AddressError("Invalid bech32 character") from exc
    const = bech32_polymod(bech32_hrp_expand(hrp) + data)
    return hrp, data[:-6], const


def decode_segwit_address(text: str) -> Tuple[str, int, bytes]:
    """Return ``(hrp, witness_version, witness_program)``."""

    hrp, data, const = _bech32_decode(text)
    if not data:
        raise AddressError("Empty segwit payload")
    witver = data[0]
    if witver > 16:
        raise AddressError(f"Invalid witness version {witver}")
    expected_const = 1 if witver == 0 else BECH32M_CONST
    if const != expected_const:
        raise AddressError("Bad bech32 checksum")
    program = _convertbits(data[1:], 5, 8, pad=False)
    if program is None or not 2 <= len(program) <= 40:
        raise AddressError("Invalid witness program")
    if witver == 0 and len(program) not in (20, 32):
        raise AddressError("Invalid v0 witness program length")
    return hrp, witver, bytes(program)


def _base58check_decode(text: str) -> bytes:
    value = 0
    for char in text:
        index = BASE58_ALPHABET.find(char)
        if index < 0:
            raise AddressError(f"Invalid base58 character {char!r}")
        value = value * 58 + index
    payload = value.to_bytes((value.bit_length() + 7) // 8, "big")
    leading = len(text) - len(text.lstrip("1"))
    raw = b"\x00" * leading + payload
    if len(raw) < 5:
        raise AddressError("Base58 payload too short")
    body, checksum = raw[:-4], raw[-4:]
    if hashlib.sha256(hashlib.sha256(body).digest()).digest()[:4] != checksum:
        raise AddressError("Bad base58 checksum")
    return body


def _segwit_script(witver: int, program: bytes) -> bytes:
    opcode = 0 if witver == 0 else OP_1 + witver - 1
    return bytes([opcode, len(program)]) + program


def parse_address(text: str) -> Address:
    """Decode ``text`` without checking which network it belongs to."""

    text = text.strip()
    if not text:
        raise AddressError("Address is empty")

    lowered = text.lower()
    for hrp in ("bcrt", "bc", "tb"):
        if lowered.startswith(hrp + "1"):
            decoded_hrp, witver, program = decode_segwit_address(text)
            return Address(text=text, kind=decoded_hrp, script_pubkey=_segwit_script(witver, program))

    body = _base58check_decode(text)
    if len(body) != 21:
        raise AddressError("Base58 address must carry a 20-byte hash")
    version, payload = body[0], body[1:]
    kind: Optional[str] = None
    if version in _MAINNET_VERSIONS:
        kind = "base58-main"
    elif version in _TEST_VERSIONS:
        kind = "base58-test"
    if kind is None:
        raise AddressError(f"Unknown base58 version byte {version:#04x}")

    if version in (_MAINNET_VERSIONS[0], _TEST_VERSIONS[0]):
        script = b"\x76\xa9\x14" + payload + b"\x88\xac"
    else:
        script = b"\xa9\x14" + payload + b"\x87"
    return Address(text=text, kind=kind, script_pubkey=script)


def require_network(text: str, network: Network) -> Address:
    """Decode ``text`` and make sure it is valid on ``network``.

    Raises:
        AddressError: if the address is malformed.
        NetworkMismatchError: if it belongs to another network.
    """

    address = parse_address(text)
    if not address.is_valid_for_network(network):
        raise NetworkMismatchError(
            f"Address {text} is not valid for network {network.value}"
        )
    return address


def taproot_address(output_key: bytes, network: Network) -> str:
    if len(output_key) != 32:
        raise AddressError(f"Output key must be 32 bytes, got {len(output_key)}")
    return encode_segwit_address(network.bech32_hrp, 1, output_key)


__all__ = [
    "Address",
    "AddressError",
    "Network",
    "NetworkMismatchError",
    "decode_segwit_address",
    "encode_segwit_address",
    "parse_address",
    "require_network",
    "taproot_address",
]
