"""
Lookup tables translating the accepted string literals of enumerated
parameters into typed constants. A literal missing from its table is
rejected by ConfigParser.resolve_enum.
"""

import logging
from typing import Mapping

from storage.types import CompressionType, HashType, WriteBufferMode

# Levels below DEBUG and above CRITICAL for the extra syslog-style names
TRACE = 5
SILENT = logging.CRITICAL + 10

COMPRESSION_BINDINGS: Mapping[str, CompressionType] = {
    'disabled': CompressionType.NONE,
    'lz4': CompressionType.LZ4,
}

HASHING_BINDINGS: Mapping[str, HashType] = {
    'xxhash-64': HashType.XXHASH_64,
    'murmurhash3-64': HashType.MURMURHASH3_64,
}

WRITE_BUFFER_MODE_BINDINGS: Mapping[str, WriteBufferMode] = {
    'direct': WriteBufferMode.DIRECT,
    'adaptive': WriteBufferMode.ADAPTIVE,
}

LOG_LEVEL_BINDINGS: Mapping[str, int] = {
    'silent': SILENT,
    'emerg': logging.CRITICAL,
    'alert': logging.CRITICAL,
    'crit': logging.CRITICAL,
    'error': logging.ERROR,
    'warn': logging.WARNING,
    'notice': logging.INFO,
    'info': logging.INFO,
    'debug': logging.DEBUG,
    'trace': TRACE,
}
