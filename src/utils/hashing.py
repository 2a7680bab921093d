"""
Record checksums for the storage engine.
"""

from typing import Callable, Union

import mmh3
import xxhash

from storage.types import HashType

Data = Union[bytes, bytearray]


def xxhash_64(data: Data) -> int:
    """64-bit xxHash of data, as an unsigned integer"""
    return xxhash.xxh64_intdigest(bytes(data))


def murmurhash3_64(data: Data) -> int:
    """Lower 64 bits of the 128-bit MurmurHash3 of data, as an unsigned integer"""
    return mmh3.hash64(bytes(data), signed=False)[0]


_HASH_FUNCTIONS = {
    HashType.XXHASH_64: xxhash_64,
    HashType.MURMURHASH3_64: murmurhash3_64,
}


def get_hash_function(hash_type: HashType) -> Callable[[Data], int]:
    """
    Return the checksum function for a hash type.

    Args:
        hash_type: Configured hash type

    Returns:
        Function mapping bytes to an unsigned 64-bit integer
    """
    return _HASH_FUNCTIONS[hash_type]
