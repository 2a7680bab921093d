"""
Detachment of the server process from its controlling terminal.

Call detach() before opening anything tied to the launching terminal or
session. The working directory is captured first, so that relative paths
given on the command line keep resolving against the launch directory once
the process has moved to '/'.
"""

import logging
import os
from enum import Enum
from typing import Optional

from lifecycle.errors import DetachFailed

logger = logging.getLogger(__name__)


class ProcessState(Enum):
    """Whether the process still belongs to its launching terminal"""

    ATTACHED = 'attached'
    DETACHED = 'detached'


class ProcessDetacher:
    """
    Turns the current process into a daemon using the double-fork idiom.
    """

    def __init__(self):
        self._working_directory: Optional[str] = None
        self._state = ProcessState.ATTACHED

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def working_directory(self) -> str:
        """Launch directory if captured, otherwise the current directory"""
        return self._working_directory or os.getcwd()

    def snapshot_working_directory(self) -> str:
        """Capture the current directory once; later calls keep the first value"""
        if self._working_directory is None:
            self._working_directory = os.getcwd()
        return self._working_directory

    def resolve_path(self, path: str) -> str:
        """
        Resolve a path given at launch time.

        Args:
            path: Absolute or relative path

        Returns:
            Absolute path, relative paths joined with the launch directory
        """
        if os.path.isabs(path):
            return path
        return os.path.normpath(os.path.join(self.working_directory, path))

    def _fork_and_exit_parent(self, step: str) -> None:
        try:
            pid = os.fork()
        except OSError as e:
            raise DetachFailed(f"{step} fork failed: {e}") from e
        if pid > 0:
            os._exit(0)

    def detach(self) -> None:
        """
        Detach from the controlling terminal.

        On return the caller is running in the grandchild of the original
        process: in a new session, not a session leader, with umask 0 and
        '/' as working directory. The intermediate processes exit with 0.

        Raises:
            DetachFailed: If forking or creating the session fails
        """
        if self._state is ProcessState.DETACHED:
            raise DetachFailed("process is already detached")

        self.snapshot_working_directory()

        self._fork_and_exit_parent('first')

        try:
            os.setsid()
        except OSError as e:
            raise DetachFailed(f"setsid failed: {e}") from e

        # Not a session leader: cannot reacquire a controlling terminal
        self._fork_and_exit_parent('second')

        os.umask(0)
        try:
            os.chdir('/')
        except OSError as e:
            logger.error("chdir(): %s", e)

        self._state = ProcessState.DETACHED
        logger.debug("Detached, pid %d, launch directory %s", os.getpid(), self._working_directory)
