"""
File and process resource helpers.
"""

import logging
import resource

logger = logging.getLogger(__name__)


def increase_limit_open_files() -> int:
    """
    Raise the soft limit on open file descriptors to the hard limit.

    Returns:
        The soft limit in effect after the call
    """
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    if hard == resource.RLIM_INFINITY or soft >= hard:
        return soft

    try:
        resource.setrlimit(resource.RLIMIT_NOFILE, (hard, hard))
    except (ValueError, OSError) as e:
        logger.warning("Could not raise open files limit from %d to %d: %s", soft, hard, e)
        return soft

    logger.debug("Raised open files limit from %d to %d", soft, hard)
    return hard
