"""
Typed parameter descriptors for the configuration parser.
Each descriptor knows its name, default, whether it is mandatory, and how to
convert a raw string from a file or the command line into its Python type.
"""

import re
from enum import IntEnum
from typing import Any, Optional

from lifecycle.errors import InvalidParameterValue


class ConfigSource(IntEnum):
    """Configuration sources, ordered by precedence (higher wins)"""

    DEFAULT = 0
    FILE = 1
    COMMAND_LINE = 2


_TRUE_WORDS = ('true', 'yes', 'on', '1')
_FALSE_WORDS = ('false', 'no', 'off', '0')

_SIZE_UNITS = {
    '': 1,
    'B': 1,
    'KB': 1024,
    'MB': 1024 ** 2,
    'GB': 1024 ** 3,
    'TB': 1024 ** 4,
}
_SIZE_PATTERN = re.compile(r'^\s*(\d+)\s*([KMGT]?B?)\s*$', re.IGNORECASE)


class Parameter:
    """
    Base parameter descriptor.

    Defaults are kept as raw strings, exactly as they would be written in a
    configuration file, so that they go through the same conversion as
    values coming from the other sources.
    """

    type_name = 'string'
    takes_value = True

    def __init__(self, name: str, default: str = '', mandatory: bool = False,
                 description: str = '', slot: Optional[str] = None):
        """
        Initialize parameter descriptor.

        Args:
            name: Unique parameter name, e.g. 'db.path'
            default: Raw default value
            mandatory: Whether a value must come from the file or command line
            description: Human description used in usage output
            slot: Attribute name of the options field this parameter fills
        """
        self.name = name
        self.default = default
        self.mandatory = mandatory
        self.description = description
        self.slot = slot or re.sub(r'[.\-]', '_', name)

    def parse(self, raw: str) -> Any:
        """
        Convert a raw string to the parameter's type.

        Args:
            raw: Raw value

        Returns:
            Converted value

        Raises:
            InvalidParameterValue: If the value cannot be converted
        """
        return raw

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.name!r}, default={self.default!r})"


class StringParameter(Parameter):
    """Free-form string parameter"""


class BooleanParameter(Parameter):
    """Boolean parameter that takes an explicit true/false value"""

    type_name = 'boolean'

    def parse(self, raw: str) -> bool:
        word = raw.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
        raise InvalidParameterValue(self.name, raw, "expected true or false")


class FlagParameter(BooleanParameter):
    """Boolean switch: present on the command line means true"""

    type_name = 'flag'
    takes_value = False

    def __init__(self, name: str, mandatory: bool = False, description: str = '',
                 slot: Optional[str] = None):
        super().__init__(name, 'false', mandatory, description, slot)


class UnsignedIntParameter(Parameter):
    """
    Non-negative integer parameter.
    Accepts an optional size unit (B, KB, MB, GB, TB; powers of 1024).
    """

    type_name = 'unsigned integer'

    def parse(self, raw: str) -> int:
        match = _SIZE_PATTERN.match(raw)
        if not match:
            raise InvalidParameterValue(self.name, raw, "expected a non-negative integer")

        number, unit = match.groups()
        unit = unit.upper()
        if unit and not unit.endswith('B'):
            unit += 'B'
        return int(number) * _SIZE_UNITS[unit]
