"""
Value compression for the storage engine.
"""

import lz4.frame

from storage.types import CompressionType


def compress(data: bytes, compression: CompressionType) -> bytes:
    """
    Compress data with the configured algorithm.

    Args:
        data: Raw bytes
        compression: Algorithm to apply

    Returns:
        Compressed bytes, or data unchanged when compression is disabled
    """
    if compression is CompressionType.LZ4:
        return lz4.frame.compress(data)
    return data


def decompress(data: bytes, compression: CompressionType) -> bytes:
    """Reverse compress()"""
    if compression is CompressionType.LZ4:
        return lz4.frame.decompress(data)
    return data
