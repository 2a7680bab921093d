"""
Logging setup for the server process.
"""

import logging
import logging.handlers
import os
import sys

from config import LOG_FORMAT
from lifecycle.bindings import SILENT, TRACE

logging.addLevelName(TRACE, 'TRACE')

SYSLOG_ADDRESS = '/dev/log'
_OWNED = '_kvserver_handler'


def setup_logging(level: int, target: str = 'stderr') -> logging.Handler:
    """
    Configure the root logger.

    Args:
        level: Logging level, SILENT disables output
        target: 'stderr', or the ident to log under in syslog

    Returns:
        The handler attached to the root logger
    """
    root = logging.getLogger()
    for handler in list(root.handlers):
        if getattr(handler, _OWNED, False):
            root.removeHandler(handler)
            handler.close()

    if level >= SILENT:
        handler = logging.NullHandler()
    elif target == 'stderr' or not os.path.exists(SYSLOG_ADDRESS):
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
    else:
        handler = logging.handlers.SysLogHandler(address=SYSLOG_ADDRESS)
        handler.ident = f'{target}: '
        handler.setFormatter(logging.Formatter('%(name)s - %(levelname)s - %(message)s'))

    setattr(handler, _OWNED, True)
    root.addHandler(handler)
    root.setLevel(level)
    return handler
