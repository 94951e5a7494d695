"""
Compression utilities for repository indexes.

Auto-detects the container format from magic bytes:
- zstd (current repodata format)
- gzip, xz/lzma, bzip2 (older indexes)
- anything else is read as plain data
"""

import bz2
import gzip
import lzma
import zlib

import zstandard

# Magic bytes for format detection
MAGIC_ZSTD = b'\x28\xb5\x2f\xfd'
MAGIC_GZIP = b'\x1f\x8b'
MAGIC_XZ = b'\xfd7zXZ\x00'
MAGIC_BZ2 = b'BZh'


def detect_format(data: bytes) -> str:
    """Detect compression format from magic bytes.

    Args:
        data: First 8+ bytes of the file

    Returns:
        Format name: 'zstd', 'gzip', 'xz', 'bzip2', or 'plain'
    """
    if data[:4] == MAGIC_ZSTD:
        return 'zstd'
    elif data[:2] == MAGIC_GZIP:
        return 'gzip'
    elif data[:6] == MAGIC_XZ:
        return 'xz'
    elif data[:3] == MAGIC_BZ2:
        return 'bzip2'
    return 'plain'


def decompress_bytes(data: bytes) -> bytes:
    """Decompress bytes, auto-detecting format.

    Raises:
        ValueError: If the data claims a format but does not decode
    """
    fmt = detect_format(data)
    try:
        if fmt == 'zstd':
            dctx = zstandard.ZstdDecompressor()
            with dctx.stream_reader(data) as reader:
                return reader.read()
        elif fmt == 'gzip':
            return gzip.decompress(data)
        elif fmt == 'xz':
            return lzma.decompress(data)
        elif fmt == 'bzip2':
            return bz2.decompress(data)
    except (zstandard.ZstdError, zlib.error, OSError, EOFError, lzma.LZMAError) as e:
        raise ValueError(f"Corrupt {fmt} data: {e}") from e
    return data


def compress_zstd(data: bytes, level: int = 3) -> bytes:
    """Compress data with zstd (used when writing repodata)."""
    return zstandard.ZstdCompressor(level=level).compress(data)
