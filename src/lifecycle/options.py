"""
Server-facing and engine-facing option sets.
Each class registers its parameters with a ConfigParser and is built from
the parser once every source has been applied. Instances are frozen.
"""

from dataclasses import dataclass

from config import (
    DEFAULT_HOST, DEFAULT_LISTEN_BACKLOG, DEFAULT_NUM_THREADS, DEFAULT_PORT,
    LOG_LEVEL, LOG_TARGET, MAX_REQUEST_SIZE, WRITE_BUFFER_SIZE,
)
from lifecycle.bindings import (
    COMPRESSION_BINDINGS, HASHING_BINDINGS, LOG_LEVEL_BINDINGS,
    WRITE_BUFFER_MODE_BINDINGS,
)
from lifecycle.config_parser import ConfigParser
from lifecycle.parameters import BooleanParameter, StringParameter, UnsignedIntParameter
from storage.types import CompressionType, HashType, WriteBufferMode


@dataclass(frozen=True)
class DatabaseOptions:
    """Options consumed by the storage engine"""

    create_if_missing: bool = True
    error_if_exists: bool = False
    compression: CompressionType = CompressionType.LZ4
    hash: HashType = HashType.XXHASH_64
    write_buffer_mode: WriteBufferMode = WriteBufferMode.DIRECT
    write_buffer_size: int = WRITE_BUFFER_SIZE
    log_level: int = LOG_LEVEL_BINDINGS[LOG_LEVEL]
    log_target: str = LOG_TARGET

    @staticmethod
    def add_parameters_to_config_parser(parser: ConfigParser) -> None:
        """
        Register the engine parameters.

        Args:
            parser: Parser to register with
        """
        parser.add_parameter(BooleanParameter(
            'db.create-if-missing', 'true', False,
            "Create the database directory if it does not exist.",
            slot='create_if_missing'))
        parser.add_parameter(BooleanParameter(
            'db.error-if-exists', 'false', False,
            "Fail to open the database if it already exists.",
            slot='error_if_exists'))
        parser.add_parameter(StringParameter(
            'db.storage.compression', 'lz4', False,
            "Compression algorithm for stored values. Accepted values: "
            + ', '.join(COMPRESSION_BINDINGS) + '.',
            slot='compression'))
        parser.add_parameter(StringParameter(
            'db.storage.hashing', 'xxhash-64', False,
            "Hashing algorithm used to checksum records. Accepted values: "
            + ', '.join(HASHING_BINDINGS) + '.',
            slot='hash'))
        parser.add_parameter(StringParameter(
            'db.write-buffer.mode', 'direct', False,
            "Write buffer mode. 'direct' flushes every write to disk, 'adaptive' "
            "buffers writes up to db.write-buffer.size.",
            slot='write_buffer_mode'))
        parser.add_parameter(UnsignedIntParameter(
            'db.write-buffer.size', '64MB', False,
            "Size of the write buffer in adaptive mode. Units KB, MB, GB and TB are accepted.",
            slot='write_buffer_size'))
        parser.add_parameter(StringParameter(
            'db.log.level', LOG_LEVEL, False,
            "Log level. Accepted values: " + ', '.join(LOG_LEVEL_BINDINGS) + '.',
            slot='log_level'))
        parser.add_parameter(StringParameter(
            'db.log.target', LOG_TARGET, False,
            "Log target: 'stderr', or the ident under which to log to syslog.",
            slot='log_target'))

    @classmethod
    def from_parser(cls, parser: ConfigParser) -> 'DatabaseOptions':
        """
        Build the options from a parser whose sources have been applied.

        Raises:
            UnknownEnumValue: If an enumerated parameter has an unknown value
        """
        return cls(
            create_if_missing=parser.get('db.create-if-missing'),
            error_if_exists=parser.get('db.error-if-exists'),
            compression=parser.resolve_enum('db.storage.compression', COMPRESSION_BINDINGS),
            hash=parser.resolve_enum('db.storage.hashing', HASHING_BINDINGS),
            write_buffer_mode=parser.resolve_enum('db.write-buffer.mode', WRITE_BUFFER_MODE_BINDINGS),
            write_buffer_size=parser.get('db.write-buffer.size'),
            log_level=parser.resolve_enum('db.log.level', LOG_LEVEL_BINDINGS),
            log_target=parser.get('db.log.target'),
        )


@dataclass(frozen=True)
class ServerOptions:
    """Options consumed by the network server"""

    interface: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    listen_backlog: int = DEFAULT_LISTEN_BACKLOG
    num_threads: int = DEFAULT_NUM_THREADS
    max_request_size: int = MAX_REQUEST_SIZE

    @staticmethod
    def add_parameters_to_config_parser(parser: ConfigParser) -> None:
        """
        Register the server parameters.

        Args:
            parser: Parser to register with
        """
        parser.add_parameter(StringParameter(
            'server.interface', DEFAULT_HOST, False,
            "Interface the server binds to.", slot='interface'))
        parser.add_parameter(UnsignedIntParameter(
            'server.port', str(DEFAULT_PORT), False,
            "Port the server listens on.", slot='port'))
        parser.add_parameter(UnsignedIntParameter(
            'server.listen-backlog', str(DEFAULT_LISTEN_BACKLOG), False,
            "Size of the pending connection queue.", slot='listen_backlog'))
        parser.add_parameter(UnsignedIntParameter(
            'server.num-threads', str(DEFAULT_NUM_THREADS), False,
            "Maximum number of requests handled concurrently.", slot='num_threads'))
        parser.add_parameter(UnsignedIntParameter(
            'server.max-request-size', '10MB', False,
            "Largest accepted request body.", slot='max_request_size'))

    @classmethod
    def from_parser(cls, parser: ConfigParser) -> 'ServerOptions':
        """Build the options from a parser whose sources have been applied"""
        return cls(
            interface=parser.get('server.interface'),
            port=parser.get('server.port'),
            listen_backlog=parser.get('server.listen-backlog'),
            num_threads=parser.get('server.num-threads'),
            max_request_size=parser.get('server.max-request-size'),
        )
