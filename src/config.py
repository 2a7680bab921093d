"""
Configuration constants for the key/value server supervisor.
Runtime parameters are registered with the config parser; the values here
are their built-in defaults and the supervisor's fixed settings.
"""

import os

# Versions reported by --help
VERSION_SERVER = (0, 9, 0, 0)  # major, minor, revision, build
VERSION_ENGINE = (0, 9, 0)
VERSION_DATA_FORMAT = (0, 1)

# Configuration file discovery
CONFIG_FILE_NAME = 'kvserver.conf'
CONFIG_SEARCH_PATHS = [
    os.path.join('.', CONFIG_FILE_NAME),
    os.path.join('/etc', CONFIG_FILE_NAME),
]

# Supervisor
POLL_INTERVAL = 0.5  # seconds between stop checks
EXIT_FAILURE = -1

# Network configuration
DEFAULT_HOST = 'localhost'
DEFAULT_PORT = 8080
DEFAULT_LISTEN_BACKLOG = 150
DEFAULT_NUM_THREADS = 8
MAX_REQUEST_SIZE = 10 * 1024 * 1024  # 10MB

# Storage configuration
DATA_FILE_NAME = 'data.log'
WRITE_BUFFER_SIZE = 64 * 1024 * 1024  # 64MB

# Logging configuration
LOG_LEVEL = 'info'
LOG_TARGET = 'kvserver'  # syslog ident, or 'stderr'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
