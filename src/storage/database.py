"""
Persisted key/value store used by the HTTP server.
Records are appended to a single log file and indexed in memory; the log is
replayed when the database is opened.
"""

import logging
import os
import struct
import threading
from typing import Dict, Optional

from config import DATA_FILE_NAME
from lifecycle.options import DatabaseOptions
from storage.types import CompressionType, HashType, WriteBufferMode
from utils.compression import compress, decompress
from utils.hashing import get_hash_function

logger = logging.getLogger(__name__)

MAGIC = b'KVDB'
FORMAT_VERSION = (0, 1)

# magic, format major, format minor, compression, hash
FILE_HEADER = struct.Struct('>4sBBBB')
# checksum, flags, key length, value length
RECORD_HEADER = struct.Struct('>QBII')

FLAG_DELETE = 0x1


class DatabaseError(Exception):
    """The database cannot be opened or its files are unreadable"""


class Database:
    """
    Append-only key/value store.

    Values are compressed and every record is checksummed with the
    algorithms chosen when the database was created; an existing database
    keeps its own settings.
    """

    def __init__(self, path: str, options: Optional[DatabaseOptions] = None):
        """
        Initialize database.

        Args:
            path: Directory holding the database files
            options: Engine options
        """
        self.path = path
        self.options = options or DatabaseOptions()
        self.data_file = os.path.join(path, DATA_FILE_NAME)

        self.compression = self.options.compression
        self.hash_type = self.options.hash
        self._hash = get_hash_function(self.hash_type)

        self._index: Dict[bytes, bytes] = {}
        self._buffer = bytearray()
        self._file = None
        self._lock = threading.RLock()

        self._stats = {
            'puts': 0,
            'gets': 0,
            'deletes': 0,
            'flushes': 0,
            'recovered_records': 0,
        }

    def open(self) -> None:
        """
        Open or create the database and replay its log.

        Raises:
            DatabaseError: If the options forbid opening this path, or the
                log was written by an incompatible format
        """
        with self._lock:
            if self._file is not None:
                return

            exists = os.path.exists(self.data_file)
            if exists and self.options.error_if_exists:
                raise DatabaseError(f"Database already exists at {self.path}")
            if not os.path.isdir(self.path):
                if not self.options.create_if_missing:
                    raise DatabaseError(f"Database does not exist at {self.path}")
                os.makedirs(self.path, exist_ok=True)

            if exists:
                self._replay()
                self._file = open(self.data_file, 'ab')
            else:
                self._file = open(self.data_file, 'wb')
                self._file.write(FILE_HEADER.pack(
                    MAGIC, FORMAT_VERSION[0], FORMAT_VERSION[1],
                    self.compression.value, self.hash_type.value))
                self._sync()

            logger.info("Opened database %s (%d keys)", self.path, len(self._index))

    def _replay(self) -> None:
        """Rebuild the index from the log, truncating a torn tail"""
        with open(self.data_file, 'r+b') as f:
            header = f.read(FILE_HEADER.size)
            if len(header) < FILE_HEADER.size:
                raise DatabaseError(f"Truncated header in {self.data_file}")

            magic, major, _minor, compression, hash_type = FILE_HEADER.unpack(header)
            if magic != MAGIC or major != FORMAT_VERSION[0]:
                raise DatabaseError(f"Unsupported data format in {self.data_file}")

            self.compression = CompressionType(compression)
            self.hash_type = HashType(hash_type)
            self._hash = get_hash_function(self.hash_type)
            if (self.compression, self.hash_type) != (self.options.compression, self.options.hash):
                logger.warning("Database %s uses %s and %s, ignoring configured settings",
                               self.path, self.compression.name, self.hash_type.name)

            good_offset = f.tell()
            while True:
                record_header = f.read(RECORD_HEADER.size)
                if not record_header:
                    break
                if len(record_header) < RECORD_HEADER.size:
                    logger.warning("Torn record header at offset %d", good_offset)
                    break

                checksum, flags, key_len, value_len = RECORD_HEADER.unpack(record_header)
                body = f.read(key_len + value_len)
                if len(body) < key_len + value_len:
                    logger.warning("Torn record at offset %d", good_offset)
                    break
                if self._hash(bytes([flags]) + body) != checksum:
                    logger.warning("Checksum mismatch at offset %d", good_offset)
                    break

                key = body[:key_len]
                if flags & FLAG_DELETE:
                    self._index.pop(key, None)
                else:
                    stored = body[key_len:]
                    self._index[key] = decompress(stored, self.compression) if stored else b''

                good_offset = f.tell()
                self._stats['recovered_records'] += 1

            f.truncate(good_offset)

    def _append(self, flags: int, key: bytes, value: bytes) -> None:
        stored = compress(value, self.compression) if value else b''
        body = key + stored
        checksum = self._hash(bytes([flags]) + body)
        self._buffer += RECORD_HEADER.pack(checksum, flags, len(key), len(stored))
        self._buffer += body

        if (self.options.write_buffer_mode is WriteBufferMode.DIRECT
                or len(self._buffer) >= self.options.write_buffer_size):
            self._flush_buffer()

    def _flush_buffer(self) -> None:
        if not self._buffer:
            return
        self._file.write(self._buffer)
        self._buffer.clear()
        self._sync()
        self._stats['flushes'] += 1

    def _sync(self) -> None:
        self._file.flush()
        os.fsync(self._file.fileno())

    def _check_open(self) -> None:
        if self._file is None:
            raise DatabaseError("Database is not open")

    def put(self, key: bytes, value: bytes) -> None:
        """
        Store a value.

        Args:
            key: Key bytes
            value: Value bytes
        """
        with self._lock:
            self._check_open()
            self._append(0, key, value)
            self._index[key] = value
            self._stats['puts'] += 1

    def get(self, key: bytes) -> Optional[bytes]:
        """
        Look up a value.

        Args:
            key: Key to look up

        Returns:
            Value bytes if found, None otherwise
        """
        with self._lock:
            self._stats['gets'] += 1
            return self._index.get(key)

    def delete(self, key: bytes) -> bool:
        """
        Delete a key.

        Returns:
            True if the key existed
        """
        with self._lock:
            self._check_open()
            if key not in self._index:
                return False
            self._append(FLAG_DELETE, key, b'')
            del self._index[key]
            self._stats['deletes'] += 1
            return True

    def flush(self) -> None:
        """Write buffered records to disk"""
        with self._lock:
            self._check_open()
            self._flush_buffer()

    def get_stats(self) -> dict:
        """Get database statistics"""
        with self._lock:
            stats = self._stats.copy()
            stats['keys'] = len(self._index)
            stats['buffered_bytes'] = len(self._buffer)
            stats['compression'] = self.compression.name
            stats['hash'] = self.hash_type.name
            stats['write_buffer_mode'] = self.options.write_buffer_mode.name
            return stats

    def close(self) -> None:
        """Flush buffered records and close the log"""
        with self._lock:
            if self._file is None:
                return
            self._flush_buffer()
            self._file.close()
            self._file = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
