"""
Typed engine settings selected through the configuration.
"""

from enum import Enum


class CompressionType(Enum):
    """Compression applied to stored values"""

    NONE = 0x0
    LZ4 = 0x1


class HashType(Enum):
    """Hash function used to checksum stored records"""

    XXHASH_64 = 0x1
    MURMURHASH3_64 = 0x2


class WriteBufferMode(Enum):
    """How writes reach the disk"""

    DIRECT = 0x0    # flush and fsync every write
    ADAPTIVE = 0x1  # buffer writes, flush when the buffer fills or on close
