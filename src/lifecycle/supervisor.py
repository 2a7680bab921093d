"""
Boot and lifecycle supervisor for the key/value server.

Startup runs strictly in sequence on the main thread:
resolve configuration -> install signal handlers -> detach (unless
--foreground) -> start the server -> poll for a stop request -> stop.
Configuration and detachment errors end the process before the server is
started. Fault signals never reach this module: the fault handler exits
the process directly.
"""

import logging
import os
import sys
import time
from enum import Enum
from typing import Callable, List, Optional, Protocol, Sequence

from config import (
    CONFIG_SEARCH_PATHS, EXIT_FAILURE, POLL_INTERVAL, VERSION_DATA_FORMAT,
    VERSION_ENGINE, VERSION_SERVER,
)
from lifecycle.config_parser import ConfigParser, ConfigurationSet
from lifecycle.detach import ProcessDetacher
from lifecycle.errors import (
    ConfigFileNotFound, ConfigurationError, DetachFailed, MissingMandatoryParameter,
)
from lifecycle.options import DatabaseOptions, ServerOptions
from lifecycle.parameters import FlagParameter, StringParameter
from lifecycle.signals import SignalController, StopFlag
from utils.file_util import increase_limit_open_files
from utils.logger import setup_logging

logger = logging.getLogger(__name__)

CONFIGFILE_DESCRIPTION = (
    "Configuration file. If not specified, the paths "
    + ' and '.join(CONFIG_SEARCH_PATHS) + " are tested, in that order."
)

DESCRIPTION = (
    "kvserver is a persisted key-value database server.\n"
    "It runs as a daemon unless --foreground is given."
)


class SupervisorState(Enum):
    BOOTSTRAPPING = 'bootstrapping'
    CONFIGURED = 'configured'
    RUNNING = 'running'
    STOPPING = 'stopping'
    STOPPED = 'stopped'


class ShutdownReason(Enum):
    USER_SIGNAL = 'user signal'
    SERVER_REQUESTED = 'server requested'


class Server(Protocol):
    """Contract between the supervisor and the server it runs"""

    def start(self, server_options: ServerOptions, db_options: DatabaseOptions,
              path: str) -> None: ...

    def stop(self) -> None: ...

    def is_stop_requested(self) -> bool: ...


class LifecycleContext:
    """
    State shared by the supervisor and its signal handlers: the stop flag,
    the installed handlers, the detacher and the shutdown reason.
    """

    def __init__(self):
        self.stop_flag = StopFlag()
        self.signals = SignalController()
        self.detacher = ProcessDetacher()
        self.state = SupervisorState.BOOTSTRAPPING
        self._reason: Optional[ShutdownReason] = None

    @property
    def reason(self) -> Optional[ShutdownReason]:
        return self._reason

    def request_stop(self, reason: ShutdownReason) -> bool:
        """
        Record why the server is stopping. Only the first call has effect.

        Returns:
            True if this call set the reason
        """
        if self._reason is not None:
            return False
        self._reason = reason
        return True

    def install_signal_handlers(self) -> None:
        """
        Install the termination and fault handlers, once.
        Undone by restore_signal_handlers().
        """
        if self.signals.installed:
            return
        self.signals.install_termination_handler(self.stop_flag)
        self.signals.install_fault_handler()

    def restore_signal_handlers(self) -> None:
        """Restore the signal handlers active before installation"""
        self.signals.restore()


def discover_config_file(explicit: str, candidates: Sequence[str] = CONFIG_SEARCH_PATHS) -> str:
    """
    Find the configuration file to load.

    Args:
        explicit: Path given with --configfile, or ''
        candidates: Paths tried in order when no path was given

    Returns:
        Path of the file to load, or '' if there is none

    Raises:
        ConfigFileNotFound: If an explicit path does not exist
    """
    if explicit:
        if not os.path.isfile(explicit):
            raise ConfigFileNotFound(explicit)
        return explicit

    for candidate in candidates:
        if os.path.isfile(candidate):
            return candidate
    return ''


class LifecycleSupervisor:
    """
    Runs the server from command-line arguments to graceful stop.
    """

    def __init__(self, server_factory: Callable[[], Server],
                 context: Optional[LifecycleContext] = None,
                 poll_interval: float = POLL_INTERVAL,
                 config_search_paths: Sequence[str] = CONFIG_SEARCH_PATHS):
        """
        Initialize supervisor.

        Args:
            server_factory: Callable returning the server to run
            context: Lifecycle context, a fresh one by default
            poll_interval: Seconds between stop checks
            config_search_paths: Candidate configuration files
        """
        self.server_factory = server_factory
        self.context = context or LifecycleContext()
        self.poll_interval = poll_interval
        self.config_search_paths = list(config_search_paths)

        self.server: Optional[Server] = None
        self.configuration: Optional[ConfigurationSet] = None
        self.server_options: Optional[ServerOptions] = None
        self.db_options: Optional[DatabaseOptions] = None

    @property
    def state(self) -> SupervisorState:
        return self.context.state

    def build_parser(self, argv: Sequence[str]) -> ConfigParser:
        """
        Register every parameter, after a lenient pass over argv has located
        the configuration file that will provide the file source.

        Raises:
            ConfigurationError: If the configuration file cannot be located
        """
        configfile_parser = ConfigParser()
        configfile_parser.add_parameter(StringParameter(
            'configfile', '', False, CONFIGFILE_DESCRIPTION))
        configfile_parser.parse_command_line(argv, strict=False)
        configfile = discover_config_file(configfile_parser.get('configfile'),
                                          self.config_search_paths)

        parser = ConfigParser()
        parser.add_parameter(StringParameter(
            'configfile', configfile, False, CONFIGFILE_DESCRIPTION))
        parser.add_parameter(FlagParameter(
            'foreground', False,
            "When set, the server runs as a foreground process. "
            "By default, the server runs as a daemon process."))
        parser.add_parameter(StringParameter(
            'db.path', '', True,
            "Path where the database can be found or will be created."))
        DatabaseOptions.add_parameters_to_config_parser(parser)
        ServerOptions.add_parameters_to_config_parser(parser)

        # The server buffers writes unless told otherwise
        parser.set_default_value('db.write-buffer.mode', 'adaptive')
        return parser

    def configure(self, parser: ConfigParser, argv: Sequence[str]) -> None:
        """
        Apply the file and command-line sources and build the option sets.

        Raises:
            ConfigurationError: On any configuration failure
        """
        configfile = parser.get('configfile')
        if configfile:
            parser.parse_file(configfile, required=True, strict=False)
        parser.parse_command_line(argv, strict=True)

        self.configuration = parser.resolve()
        self.db_options = DatabaseOptions.from_parser(parser)
        self.server_options = ServerOptions.from_parser(parser)

        setup_logging(self.db_options.log_level, self.db_options.log_target)
        if configfile:
            logger.info("Loaded configuration file %s", configfile)
        self.context.state = SupervisorState.CONFIGURED

    def format_help(self, parser: ConfigParser) -> str:
        return (
            f"{DESCRIPTION}\n"
            f"kvserver version: {'.'.join(map(str, VERSION_SERVER[:3]))}-{VERSION_SERVER[3]}\n"
            f"Engine version: {'.'.join(map(str, VERSION_ENGINE))}\n"
            f"Data format version: {'.'.join(map(str, VERSION_DATA_FORMAT))}\n"
            f"\nParameters:\n\n{parser.format_usage()}"
        )

    def run(self, argv: Sequence[str]) -> int:
        """
        Run the server until it is asked to stop.

        Args:
            argv: Command-line arguments, without the program name

        Returns:
            Process exit code
        """
        argv: List[str] = list(argv)
        self.context.detacher.snapshot_working_directory()

        try:
            parser = self.build_parser(argv)
        except ConfigurationError as e:
            print(e, file=sys.stderr)
            return EXIT_FAILURE

        if '--help' in argv or '-h' in argv:
            print(self.format_help(parser))
            return 0

        if '--generate-doc' in argv:
            print("Parameter list in markdown format, for use in the documentation.\n")
            print(parser.format_markdown())
            return 0

        try:
            self.configure(parser, argv)
        except MissingMandatoryParameter:
            print(parser.format_missing_mandatory_parameters(), file=sys.stderr)
            return EXIT_FAILURE
        except ConfigurationError as e:
            print(e, file=sys.stderr)
            return EXIT_FAILURE

        try:
            return self._serve()
        finally:
            self.context.restore_signal_handlers()

    def _serve(self) -> int:
        increase_limit_open_files()
        self.context.install_signal_handlers()

        if not self.configuration['foreground']:
            try:
                self.context.detacher.detach()
            except DetachFailed as e:
                print(f"Could not daemonize the process: {e}", file=sys.stderr)
                return EXIT_FAILURE

        path = self.context.detacher.resolve_path(self.configuration['db.path'])
        self.server = self.server_factory()
        try:
            self.server.start(self.server_options, self.db_options, path)
        except Exception as e:
            logger.error("Could not start the server: %s", e)
            return EXIT_FAILURE

        self.context.state = SupervisorState.RUNNING
        logger.info("Daemon has started")

        self.wait_for_stop()
        self.shutdown()
        logger.info("Daemon has stopped (%s)", self.context.reason.value)
        return 0

    def wait_for_stop(self) -> ShutdownReason:
        """
        Poll the stop flag and the server until either asks for a stop.

        Returns:
            The recorded shutdown reason
        """
        stop_flag = self.context.stop_flag
        while self.context.reason is None:
            if stop_flag.is_set():
                logger.info("Received signal [%d]", stop_flag.signum)
                self.context.request_stop(ShutdownReason.USER_SIGNAL)
            elif self.server.is_stop_requested():
                logger.info("Server requested a stop")
                self.context.request_stop(ShutdownReason.SERVER_REQUESTED)
            else:
                time.sleep(self.poll_interval)
        return self.context.reason

    def shutdown(self) -> None:
        """Stop the server gracefully. Calls after the first have no effect."""
        if self.context.state is not SupervisorState.RUNNING:
            return
        self.context.state = SupervisorState.STOPPING
        self.server.stop()
        self.context.state = SupervisorState.STOPPED
