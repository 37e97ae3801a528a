"""
Command encoding for the ARC API wire protocol.

The printf-style format used by the server API is reduced to a sequence of
literal segments and conversion tags. Arguments are checked against the tags
before anything is sent, so a mismatch never costs a round trip.

Supported conversions:
    %d, %i  -> signed integer
    %u      -> unsigned integer
    %l      -> long integer
    %f      -> floating point
    %s      -> string
    %x, %X  -> integer as uppercase hex
    %e      -> system error code rendered as text
    %%      -> literal percent sign
"""

import enum
import logging
from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple, Union

from arc_api_client.client.response import get_system_message
from arc_api_client.errors import ProtocolError
from arc_api_client.server.protocol import END_OF_LINE, METHOD_SEPARATOR

logger = logging.getLogger(__name__)


class ArgKind(enum.Enum):
    INTEGER = "integer"
    UNSIGNED = "unsigned"
    FLOAT = "float"
    STRING = "string"
    HEX = "hex"
    SYSTEM_MESSAGE = "system message"


CONVERSIONS = {
    "d": ArgKind.INTEGER,
    "i": ArgKind.INTEGER,
    "l": ArgKind.INTEGER,
    "u": ArgKind.UNSIGNED,
    "f": ArgKind.FLOAT,
    "s": ArgKind.STRING,
    "x": ArgKind.HEX,
    "X": ArgKind.HEX,
    "e": ArgKind.SYSTEM_MESSAGE,
}


def _is_integer(value: Any) -> bool:
    return isinstance(value, int)


def _render(kind: ArgKind, value: Any, position: int) -> str:
    if kind is ArgKind.STRING:
        if not isinstance(value, str):
            raise ProtocolError(f"Argument {position} must be a string, got {type(value).__name__}")
        return value

    if kind is ArgKind.FLOAT:
        if not isinstance(value, (int, float)):
            raise ProtocolError(f"Argument {position} must be a number, got {type(value).__name__}")
        return f"{float(value):g}"

    if not _is_integer(value):
        raise ProtocolError(
            f"Argument {position} must be an integer for a {kind.value} conversion, got {type(value).__name__}"
        )
    value = int(value)

    if kind is ArgKind.UNSIGNED:
        if value < 0:
            raise ProtocolError(f"Argument {position} must be unsigned, got {value}")
        return str(value)
    if kind is ArgKind.HEX:
        # Negative values as 32-bit two's complement
        return f"{value & 0xFFFFFFFF if value < 0 else value:X}"
    if kind is ArgKind.SYSTEM_MESSAGE:
        return get_system_message(value)
    return str(value)


@dataclass(frozen=True)
class FormatSpec:
    """A parsed format: literal text interleaved with conversion tags."""

    segments: Tuple[Union[str, ArgKind], ...]

    @property
    def conversions(self) -> List[ArgKind]:
        return [s for s in self.segments if isinstance(s, ArgKind)]

    def render(self, args: Sequence[Any]) -> str:
        """
        Substitute args into the format.

        Raises:
            ProtocolError: If the argument count or an argument type does not match
        """
        expected = len(self.conversions)
        if len(args) != expected:
            raise ProtocolError(
                f"Format expects {expected} argument(s) but {len(args)} were supplied"
            )
        out = []
        values = iter(args)
        position = 0
        for segment in self.segments:
            if isinstance(segment, ArgKind):
                position += 1
                out.append(_render(segment, next(values), position))
            else:
                out.append(segment)
        return "".join(out)


def parse_format(fmt: str) -> FormatSpec:
    """Split a printf-style format into literals and conversion tags."""
    segments: List[Union[str, ArgKind]] = []
    literal = []
    i = 0
    while i < len(fmt):
        ch = fmt[i]
        if ch != "%":
            literal.append(ch)
            i += 1
            continue
        if i + 1 >= len(fmt):
            raise ProtocolError(f"Dangling '%' at end of format {fmt!r}")
        conversion = fmt[i + 1]
        if conversion == "%":
            literal.append("%")
        elif conversion in CONVERSIONS:
            if literal:
                segments.append("".join(literal))
                literal = []
            segments.append(CONVERSIONS[conversion])
        else:
            raise ProtocolError(f"Unsupported conversion '%{conversion}' in format {fmt!r}")
        i += 2
    if literal:
        segments.append("".join(literal))
    return FormatSpec(tuple(segments))


@dataclass(frozen=True)
class Command:
    """One wire command. Built fresh for every call."""

    class_name: str
    method_name: str
    arguments: str = ""

    @classmethod
    def build(cls, class_name: str, method_name: str, fmt: str = "", *args) -> "Command":
        return cls(class_name, method_name, parse_format(fmt).render(args))

    @property
    def text(self) -> str:
        head = f"{self.class_name}{METHOD_SEPARATOR}{self.method_name}"
        return f"{head} {self.arguments}" if self.arguments else head

    def to_wire(self, end_of_line: bool = False) -> bytes:
        text = self.text + (END_OF_LINE if end_of_line else "")
        return text.encode("utf-8")
