"""
Error types raised while bootstrapping the server process.
Configuration and process errors are fatal to startup; the supervisor
reports them and exits before the server is started.
"""

from typing import Iterable, List, Optional


class ConfigurationError(Exception):
    """Base class for configuration resolution failures"""


class DuplicateParameter(ConfigurationError):
    """A parameter name was registered twice"""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Parameter [{name}] is already registered")


class UnknownParameter(ConfigurationError):
    """A parameter was supplied that no descriptor recognizes"""

    def __init__(self, name: str, source: str = 'command line'):
        self.name = name
        self.source = source
        super().__init__(f"Unknown parameter [{name}] in {source}")


class MissingMandatoryParameter(ConfigurationError):
    """One or more mandatory parameters have no value after the merge"""

    def __init__(self, names: Iterable[str]):
        self.names: List[str] = list(names)
        listing = ', '.join(self.names)
        super().__init__(f"Missing mandatory parameters: [{listing}]")


class UnknownEnumValue(ConfigurationError):
    """A value is outside the accepted set of an enumerated parameter"""

    def __init__(self, name: str, value: str, accepted: Iterable[str]):
        self.name = name
        self.value = value
        self.accepted = list(accepted)
        super().__init__(
            f"Unknown value [{value}] for parameter [{name}], "
            f"accepted values: {', '.join(self.accepted)}"
        )


class ConfigFileNotFound(ConfigurationError):
    """An explicitly requested configuration file does not exist"""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Could not find configuration file [{path}]")


class ConfigFileUnreadable(ConfigurationError):
    """A configuration file exists but cannot be read or decoded"""

    def __init__(self, path: str, reason: str, line: Optional[int] = None):
        self.path = path
        self.reason = reason
        self.line = line
        location = f"{path}:{line}" if line is not None else path
        super().__init__(f"Could not read configuration file [{location}]: {reason}")


class InvalidParameterValue(ConfigurationError):
    """A raw value cannot be converted to the parameter's type"""

    def __init__(self, name: str, value: str, reason: str):
        self.name = name
        self.value = value
        super().__init__(f"Invalid value [{value}] for parameter [{name}]: {reason}")


class ProcessError(Exception):
    """Base class for process control failures"""


class DetachFailed(ProcessError):
    """The process could not be detached from its controlling terminal"""
