"""Blob compression used before inscribing and after extraction.

The sequencer compresses batches before signing them, so the on-chain body,
its signature and its content hash all refer to the compressed bytes. The
codec is injectable; the default is a zstd frame with its content size
recorded in the header.
"""

from __future__ import annotations

from typing import Protocol

import zstandard

DEFAULT_COMPRESSION_LEVEL = 19
DEFAULT_MAX_BLOB_SIZE = 16 * 1024 * 1024


class CompressionError(RuntimeError):
    """Raised when a blob cannot be compressed or decompressed."""


class BlobCompressor(Protocol):
    def compress(self, blob: bytes) -> bytes:
        ...

    def decompress(self, body: bytes) -> bytes:
        ...


class ZstdBlobCompressor:
    """zstd codec with a hard ceiling on decompressed size.

    Bodies come from arbitrary on-chain transactions, so frames that omit
    their content size or declare more than ``max_blob_size`` are refused
    before any allocation happens.
    """

    def __init__(
        self,
        level: int = DEFAULT_COMPRESSION_LEVEL,
        max_blob_size: int = DEFAULT_MAX_BLOB_SIZE,
    ) -> None:
        self.level = level
        self.max_blob_size = max_blob_size

    def compress(self, blob: bytes) -> bytes:
        compressor = zstandard.ZstdCompressor(level=self.level, write_content_size=True)
        try:
            return compressor.compress(blob)
        except zstandard.ZstdError as exc:  # pragma: no cover - delegated to zstd
            raise CompressionError(f"zstd compression failed: {exc}") from exc

    def decompress(self, body: bytes) -> bytes:
        try:
            declared = zstandard.frame_content_size(body)
        except zstandard.ZstdError as exc:
            raise CompressionError(f"Body is not a zstd frame: {exc}") from exc
        if declared < 0:
            raise CompressionError("zstd frame does not declare its content size")
        if declared > self.max_blob_size:
            raise CompressionError(
                f"Declared blob size {declared} exceeds the {self.max_blob_size}-byte limit"
            )
        try:
            return zstandard.ZstdDecompressor().decompress(body)
        except zstandard.ZstdError as exc:
            raise CompressionError(f"zstd decompression failed: {exc}") from exc
