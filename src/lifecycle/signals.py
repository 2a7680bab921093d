"""
Process-wide signal handling.

Two handlers are installed:
- SIGINT and SIGTERM request a graceful stop by setting a StopFlag. The
  handler does nothing else: no logging, no locks, no buffered I/O. It may
  interrupt the main thread anywhere, including inside the logging module.
- SIGSEGV and SIGABRT (and SIGBUS, SIGILL, SIGFPE) are fatal. faulthandler's
  C-level handler writes the stack of every thread straight to file
  descriptor 2, then re-raises the signal with its default action so the
  process terminates without ever returning to Python code.

A Python-level handler must never sit under a fault signal: it only runs
between bytecodes, so a fault raised in native code would resume the
faulting instruction and fault again forever.
"""

import faulthandler
import signal
from typing import Dict

STDERR_FILENO = 2

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)
FAULT_SIGNALS = (signal.SIGSEGV, signal.SIGABRT)


class StopFlag:
    """
    Stop request shared between a signal handler and the supervisory loop.
    Setting and reading are single attribute operations and take no lock.
    """

    __slots__ = ('_signum',)

    def __init__(self):
        self._signum = 0

    def set(self, signum: int = -1) -> None:
        self._signum = signum

    def is_set(self) -> bool:
        return self._signum != 0

    @property
    def signum(self) -> int:
        """Number of the signal that set the flag, -1 if set directly"""
        return self._signum


class SignalController:
    """
    Installs the termination and fault handlers and restores the previous
    ones on teardown.
    """

    def __init__(self):
        self._previous: Dict[int, object] = {}
        self._fault_handler_installed = False
        self._faulthandler_was_enabled = False

    def _install(self, signum: int, handler) -> None:
        previous = signal.signal(signum, handler)
        self._previous.setdefault(signum, previous)

    def install_termination_handler(self, stop_flag: StopFlag) -> None:
        """
        Route SIGINT and SIGTERM to stop_flag.

        Args:
            stop_flag: Flag polled by the supervisory loop
        """
        def on_termination(signum, frame):
            stop_flag.set(signum)

        for signum in TERMINATION_SIGNALS:
            self._install(signum, on_termination)

    def install_fault_handler(self) -> None:
        """
        Make fault signals dump the stack of every thread to file
        descriptor 2 and terminate the process.

        Python-level handlers found on SIGSEGV or SIGABRT are replaced by
        the default action first, which faulthandler chains to once the
        trace is written.
        """
        displaced = [signum for signum in FAULT_SIGNALS if callable(signal.getsignal(signum))]
        for signum in displaced:
            self._install(signum, signal.SIG_DFL)

        self._faulthandler_was_enabled = faulthandler.is_enabled()
        if displaced:
            # enable() does not reinstall its C handlers while already enabled
            faulthandler.disable()
        faulthandler.enable(file=STDERR_FILENO, all_threads=True)
        self._fault_handler_installed = True

    def restore(self) -> None:
        """Put back the handlers that were active before installation"""
        for signum, previous in self._previous.items():
            signal.signal(signum, previous if previous is not None else signal.SIG_DFL)
        self._previous.clear()

        if self._fault_handler_installed and not self._faulthandler_was_enabled:
            faulthandler.disable()
        self._fault_handler_installed = False

    @property
    def installed(self) -> bool:
        return bool(self._previous) or self._fault_handler_installed
