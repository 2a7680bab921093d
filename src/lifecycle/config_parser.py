"""
Layered configuration parser.
Merges built-in defaults, a key/value configuration file and command-line
arguments into one read-only configuration set. Precedence is fixed
(command line > file > default) and does not depend on parse order.
"""

import argparse
import logging
import os
import re
import textwrap
from collections.abc import Mapping
from typing import Any, Dict, Iterator, List, Mapping as MappingType, Sequence, Tuple, TypeVar

from lifecycle.errors import (
    ConfigFileNotFound, ConfigFileUnreadable, ConfigurationError, DuplicateParameter,
    InvalidParameterValue, MissingMandatoryParameter, UnknownEnumValue,
    UnknownParameter,
)
from lifecycle.parameters import ConfigSource, FlagParameter, Parameter

logger = logging.getLogger(__name__)

T = TypeVar('T')

_ASSIGNMENT = re.compile(r'^(?P<key>[^\s=:]+)(?:\s*[=:]\s*|\s+)(?P<value>.*)$')
_INLINE_COMMENT = re.compile(r'\s+#.*$')


class _ArgumentParser(argparse.ArgumentParser):
    """argparse parser that raises instead of exiting the process"""

    def error(self, message: str) -> None:
        raise ConfigurationError(f"Invalid command line: {message}")


class ConfigurationSet(Mapping):
    """
    Read-only mapping of parameter name to typed value, produced once all
    sources have been merged.
    """

    def __init__(self, values: Dict[str, Any], sources: Dict[str, ConfigSource]):
        self._values = dict(values)
        self._sources = dict(sources)

    def __getitem__(self, name: str) -> Any:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def source_of(self, name: str) -> ConfigSource:
        """Return the source that provided the value of a parameter"""
        return self._sources[name]

    def __repr__(self) -> str:
        return f"ConfigurationSet({self._values!r})"


class ConfigParser:
    """
    Registry of parameter descriptors and the values applied to them.

    Values are validated by their descriptor when applied, so a malformed
    value fails at the line or flag that introduced it.
    """

    def __init__(self):
        """Initialize an empty parser"""
        self._parameters: Dict[str, Parameter] = {}
        self._values: Dict[str, Tuple[ConfigSource, str, Any]] = {}

    @property
    def parameters(self) -> List[Parameter]:
        """Registered descriptors in registration order"""
        return list(self._parameters.values())

    def add_parameter(self, parameter: Parameter) -> None:
        """
        Register a parameter descriptor.

        Args:
            parameter: Descriptor to register

        Raises:
            DuplicateParameter: If a parameter with the same name exists
        """
        if parameter.name in self._parameters:
            raise DuplicateParameter(parameter.name)
        self._parameters[parameter.name] = parameter

    def set_default_value(self, name: str, raw: str) -> None:
        """
        Replace the default value of a registered parameter.

        Args:
            name: Parameter name
            raw: New raw default

        Raises:
            UnknownParameter: If the parameter is not registered
        """
        parameter = self._parameters.get(name)
        if parameter is None:
            raise UnknownParameter(name, 'defaults')
        parameter.default = raw

    def _apply(self, name: str, raw: str, source: ConfigSource) -> None:
        """Record a value unless a higher-precedence source already set it"""
        parameter = self._parameters[name]
        value = parameter.parse(raw)

        current = self._values.get(name)
        if current is not None and current[0] > source:
            return
        self._values[name] = (source, raw, value)

    def parse_file(self, path: str, required: bool = False, strict: bool = False) -> None:
        """
        Apply assignments from a configuration file.

        Args:
            path: Path to the configuration file
            required: Fail if the file does not exist
            strict: Fail on keys that are not registered

        Raises:
            ConfigFileNotFound: If required and the file does not exist
            ConfigFileUnreadable: If the file cannot be read or is not UTF-8
            UnknownParameter: If strict and an unknown key is found
            InvalidParameterValue: If a value cannot be converted
        """
        if not os.path.isfile(path):
            if required:
                raise ConfigFileNotFound(path)
            logger.debug("Configuration file %s not found, skipping", path)
            return

        try:
            with open(path, 'rb') as f:
                content = f.read()
        except OSError as e:
            raise ConfigFileUnreadable(path, e.strerror or str(e)) from None

        for lineno, data in enumerate(content.splitlines(), start=1):
            try:
                line = data.decode('utf-8').strip()
            except UnicodeDecodeError as e:
                raise ConfigFileUnreadable(path, f"invalid UTF-8 at column {e.start + 1}", lineno) from None
            if not line or line.startswith('#'):
                continue
            line = _INLINE_COMMENT.sub('', line)

            match = _ASSIGNMENT.match(line)
            if match:
                name, raw = match.group('key'), match.group('value').strip()
            else:
                name, raw = line, None

            parameter = self._parameters.get(name)
            if parameter is None:
                if strict:
                    raise UnknownParameter(name, f"file {path}:{lineno}")
                logger.debug("Ignoring unknown parameter %s in %s:%d", name, path, lineno)
                continue

            if raw is None or raw == '':
                if not isinstance(parameter, FlagParameter):
                    raise InvalidParameterValue(name, '', f"missing value in {path}:{lineno}")
                raw = 'true'

            if len(raw) >= 2 and raw[0] == raw[-1] and raw[0] in '"\'':
                raw = raw[1:-1]

            self._apply(name, raw, ConfigSource.FILE)

    def _build_argument_parser(self) -> _ArgumentParser:
        parser = _ArgumentParser(add_help=False, allow_abbrev=False,
                                 argument_default=argparse.SUPPRESS)
        for parameter in self._parameters.values():
            if parameter.takes_value:
                parser.add_argument(f'--{parameter.name}', dest=parameter.name)
            else:
                parser.add_argument(f'--{parameter.name}', dest=parameter.name,
                                    action='store_const', const='true')
        return parser

    def parse_command_line(self, argv: Sequence[str], strict: bool = True) -> None:
        """
        Apply command-line arguments.

        Args:
            argv: Arguments, without the program name
            strict: Fail on arguments that are not registered

        Raises:
            UnknownParameter: If strict and an unknown argument is found
            ConfigurationError: If an argument is malformed
        """
        parser = self._build_argument_parser()
        namespace, extras = parser.parse_known_args(list(argv))

        if strict and extras:
            unknown = extras[0]
            raise UnknownParameter(unknown.lstrip('-').split('=', 1)[0] or unknown)

        for name, raw in vars(namespace).items():
            self._apply(name, raw, ConfigSource.COMMAND_LINE)

    def source_of(self, name: str) -> ConfigSource:
        """Return the source currently providing the value of a parameter"""
        if name not in self._parameters:
            raise UnknownParameter(name, 'lookup')
        current = self._values.get(name)
        return current[0] if current else ConfigSource.DEFAULT

    def get_raw(self, name: str) -> str:
        """Return the raw string value of a parameter after the merge"""
        parameter = self._parameters.get(name)
        if parameter is None:
            raise UnknownParameter(name, 'lookup')
        current = self._values.get(name)
        return current[1] if current else parameter.default

    def get(self, name: str) -> Any:
        """Return the typed value of a parameter after the merge"""
        current = self._values.get(name)
        if current is not None:
            return current[2]
        return self._parameters[name].parse(self.get_raw(name))

    def list_missing_mandatory_parameters(self) -> List[str]:
        """Names of mandatory parameters that no file or command line provided"""
        return [
            parameter.name for parameter in self._parameters.values()
            if parameter.mandatory
            and (self.source_of(parameter.name) is ConfigSource.DEFAULT
                 or self.get_raw(parameter.name) == '')
        ]

    def format_missing_mandatory_parameters(self) -> str:
        """Render one diagnostic line per missing mandatory parameter"""
        return "\n".join(f"Missing mandatory parameter: [{name}]"
                         for name in self.list_missing_mandatory_parameters())

    def found_all_mandatory_parameters(self) -> bool:
        """Check whether every mandatory parameter has a value"""
        return not self.list_missing_mandatory_parameters()

    def resolve_enum(self, name: str, bindings: MappingType[str, T]) -> T:
        """
        Translate the raw value of an enumerated parameter.

        Args:
            name: Parameter name
            bindings: Accepted string literals mapped to typed constants

        Returns:
            The constant bound to the parameter's value

        Raises:
            UnknownEnumValue: If the value is not in the bindings
        """
        raw = self.get_raw(name)
        try:
            return bindings[raw]
        except KeyError:
            raise UnknownEnumValue(name, raw, bindings.keys()) from None

    def resolve(self) -> ConfigurationSet:
        """
        Produce the merged configuration.

        Returns:
            Read-only configuration set

        Raises:
            MissingMandatoryParameter: If a mandatory parameter has no value
        """
        missing = self.list_missing_mandatory_parameters()
        if missing:
            raise MissingMandatoryParameter(missing)

        values = {name: self.get(name) for name in self._parameters}
        sources = {name: self.source_of(name) for name in self._parameters}
        return ConfigurationSet(values, sources)

    def format_usage(self, width: int = 80) -> str:
        """Render the parameter list for --help"""
        lines = []
        for parameter in self._parameters.values():
            details = [parameter.type_name]
            if parameter.mandatory:
                details.append('mandatory')
            elif parameter.takes_value:
                details.append(f"default: {parameter.default!r}")
            lines.append(f"  --{parameter.name} ({', '.join(details)})")
            lines.extend(textwrap.wrap(parameter.description, width=width,
                                       initial_indent=' ' * 6, subsequent_indent=' ' * 6))
            lines.append('')
        return '\n'.join(lines)

    def format_markdown(self) -> str:
        """Render the parameter list as a markdown table for --generate-doc"""
        lines = [
            '| Parameter | Type | Default | Mandatory | Description |',
            '|---|---|---|---|---|',
        ]
        for parameter in self._parameters.values():
            default = f"`{parameter.default}`" if parameter.default else ''
            mandatory = 'yes' if parameter.mandatory else 'no'
            description = parameter.description.replace('|', '\\|')
            lines.append(f"| `{parameter.name}` | {parameter.type_name} | {default} "
                         f"| {mandatory} | {description} |")
        return '\n'.join(lines) + '\n'

    def __contains__(self, name: str) -> bool:
        return name in self._parameters

