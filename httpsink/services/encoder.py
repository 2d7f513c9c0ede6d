"""
Value Encoder
-------------
Streams one PropertyValue to a text sink as JSON. Nothing is built in memory
first: each scalar, bracket and delimiter is written as soon as it is known.

Rules:
  - str → quoted string, bool → true/false, None → null
  - int / float / Decimal → invariant numeric text (float uses repr(),
    the shortest representation that round-trips)
  - NaN / ±Infinity → quoted, so the output stays valid JSON
  - date / time / datetime → quoted ISO-8601
  - anything else → quoted str(value)
  - sequences → arrays, structures and dictionaries → objects

The encoder never catches: if a value's own conversion raises, the error
travels up to the event formatter, which drops the event.
"""

import math
from datetime import date, datetime, time
from decimal import Decimal
from io import StringIO
from typing import Protocol

from httpsink.models.events import (
    DictionaryValue,
    PropertyValue,
    ScalarValue,
    SequenceValue,
    StructureValue,
)

DEFAULT_TYPE_TAG_NAME = "$type"

_SHORT_ESCAPES = {
    '"': '\\"',
    "\\": "\\\\",
    "\b": "\\b",
    "\t": "\\t",
    "\n": "\\n",
    "\f": "\\f",
    "\r": "\\r",
}


class TextSink(Protocol):
    def write(self, s: str, /) -> object:
        ...


def _needs_escape(ch: str) -> bool:
    # Lone surrogates cannot be encoded as UTF-8, so they travel as \uXXXX
    return ch < " " or ch == '"' or ch == "\\" or "\ud800" <= ch <= "\udfff"


def write_quoted_json_string(text: str, output: TextSink) -> None:
    output.write('"')

    # Copy clean runs in one write, escape only the characters that need it
    start = 0
    for i, ch in enumerate(text):
        if not _needs_escape(ch):
            continue
        if i > start:
            output.write(text[start:i])
        output.write(_SHORT_ESCAPES.get(ch) or f"\\u{ord(ch):04x}")
        start = i + 1

    if start < len(text):
        output.write(text[start:])
    output.write('"')


def scalar_to_string(value: object) -> str:
    """String form of a scalar, used for dictionary keys and fallback values."""
    if value is None:
        return "null"
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (datetime, date, time)):
        return value.isoformat()
    return str(value)


def _write_scalar(value: object, output: TextSink) -> None:
    if value is None:
        output.write("null")
    elif isinstance(value, str):
        write_quoted_json_string(value, output)
    elif isinstance(value, bool):
        output.write("true" if value else "false")
    elif isinstance(value, int):
        output.write(str(int(value)))
    elif isinstance(value, float):
        if math.isfinite(value):
            output.write(repr(value))
        elif math.isnan(value):
            write_quoted_json_string("NaN", output)
        else:
            write_quoted_json_string("Infinity" if value > 0 else "-Infinity", output)
    elif isinstance(value, Decimal):
        if value.is_finite():
            output.write(str(value))
        else:
            write_quoted_json_string(str(value), output)
    else:
        write_quoted_json_string(scalar_to_string(value), output)


def write_value(
    value: PropertyValue,
    output: TextSink,
    *,
    type_tag_name: str = DEFAULT_TYPE_TAG_NAME,
) -> None:
    if value is None:
        output.write("null")

    elif isinstance(value, ScalarValue):
        _write_scalar(value.value, output)

    elif isinstance(value, SequenceValue):
        output.write("[")
        delim = ""
        for element in value.elements:
            output.write(delim)
            delim = ","
            write_value(element, output, type_tag_name=type_tag_name)
        output.write("]")

    elif isinstance(value, StructureValue):
        output.write("{")
        delim = ""
        if value.type_tag is not None:
            write_quoted_json_string(type_tag_name, output)
            output.write(":")
            write_quoted_json_string(value.type_tag, output)
            delim = ","
        for field in value.properties:
            output.write(delim)
            delim = ","
            write_quoted_json_string(field.name, output)
            output.write(":")
            write_value(field.value, output, type_tag_name=type_tag_name)
        output.write("}")

    elif isinstance(value, DictionaryValue):
        output.write("{")
        delim = ""
        for key, element in value.elements:
            output.write(delim)
            delim = ","
            write_quoted_json_string(scalar_to_string(key.value), output)
            output.write(":")
            write_value(element, output, type_tag_name=type_tag_name)
        output.write("}")

    else:
        raise TypeError(f"Unsupported property value type: {type(value).__name__}")


class ValueEncoder:
    """Reusable encoder. Holds configuration only, never per-call state."""

    def __init__(self, type_tag_name: str = DEFAULT_TYPE_TAG_NAME):
        self.type_tag_name = type_tag_name

    def format(self, value: PropertyValue, output: TextSink) -> None:
        write_value(value, output, type_tag_name=self.type_tag_name)

    def to_json(self, value: PropertyValue) -> str:
        buffer = StringIO()
        self.format(value, buffer)
        return buffer.getvalue()
