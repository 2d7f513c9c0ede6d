"""
Message Templates
-----------------
Parsing and rendering of message templates such as

    "User {UserId} logged in from {@Client} after {Elapsed,8:.3f} ms"

The formatter treats this module as a black box behind `TemplateRenderer`:
it only asks for the whole message or a single token to be rendered.

Hole syntax:
  - {Name}           plain property
  - {@Name} {$Name}  destructure / stringify hint
  - {Name,-10}       alignment (negative = left-aligned)
  - {Name:.2f}       format specifier (Python format spec, `l` = literal string)
  - {{ and }}        escaped braces
Anything that does not parse as a hole is kept as literal text.
"""

import re
from collections.abc import Mapping
from typing import Protocol

from httpsink.models.events import (
    DictionaryValue,
    MessageTemplate,
    PropertyToken,
    PropertyValue,
    ScalarValue,
    SequenceValue,
    StructureValue,
    TextToken,
)

_NAME_RE = re.compile(r"^[A-Za-z0-9_]+$")
_ALIGNMENT_RE = re.compile(r"^-?[0-9]+$")

_DESTRUCTURING = {"@": "destructure", "$": "stringify"}


# ── Parsing ───────────────────────────────────────────────────────────────────

def _parse_property_token(raw: str) -> PropertyToken | None:
    """Parse one `{...}` hole. Returns None when it is not a valid hole."""
    inner = raw[1:-1]
    destructuring = "default"
    if inner[:1] in _DESTRUCTURING:
        destructuring = _DESTRUCTURING[inner[0]]
        inner = inner[1:]

    name_part, sep, fmt = inner.partition(":")
    if sep and not fmt:
        return None

    name, comma, alignment_text = name_part.partition(",")
    if not _NAME_RE.match(name):
        return None

    alignment = None
    if comma:
        if not _ALIGNMENT_RE.match(alignment_text) or int(alignment_text) == 0:
            return None
        alignment = int(alignment_text)

    return PropertyToken(
        property_name=name,
        raw_text=raw,
        format=fmt or None,
        alignment=alignment,
        destructuring=destructuring,
    )


def parse_template(text: str) -> MessageTemplate:
    tokens: list[TextToken | PropertyToken] = []
    literal: list[str] = []

    def flush() -> None:
        if literal:
            tokens.append(TextToken(text="".join(literal)))
            literal.clear()

    pos = 0
    while pos < len(text):
        ch = text[pos]

        if ch == "{":
            if text.startswith("{{", pos):
                literal.append("{")
                pos += 2
                continue

            end = text.find("}", pos)
            if end == -1:
                literal.append(text[pos:])
                break

            # A second opening brace before the close: the first is literal
            if "{" in text[pos + 1:end]:
                literal.append("{")
                pos += 1
                continue

            raw = text[pos:end + 1]
            token = _parse_property_token(raw)
            if token is None:
                literal.append(raw)
            else:
                flush()
                tokens.append(token)
            pos = end + 1

        elif ch == "}":
            literal.append("}")
            pos += 2 if text.startswith("}}", pos) else 1

        else:
            literal.append(ch)
            pos += 1

    flush()
    return MessageTemplate(text=text, tokens=tokens)


# ── Rendering ─────────────────────────────────────────────────────────────────

def _render_scalar(value: ScalarValue, fmt: str | None) -> str:
    v = value.value
    if v is None:
        return "null"
    if isinstance(v, str):
        if fmt == "l":
            return v
        return '"' + v.replace('"', '\\"') + '"'
    if fmt and fmt != "l":
        return format(v, fmt)
    return str(v)


def render_value(value: PropertyValue, fmt: str | None = None) -> str:
    """Human-readable rendering of a property value, as used in messages."""
    if isinstance(value, ScalarValue):
        return _render_scalar(value, fmt)

    if isinstance(value, SequenceValue):
        return "[" + ", ".join(render_value(e) for e in value.elements) + "]"

    if isinstance(value, StructureValue):
        fields = ", ".join(f"{f.name}: {render_value(f.value)}" for f in value.properties)
        prefix = f"{value.type_tag} " if value.type_tag else ""
        return f"{prefix}{{ {fields} }}"

    if isinstance(value, DictionaryValue):
        entries = ", ".join(
            f"({render_value(k)}: {render_value(v)})" for k, v in value.elements
        )
        return f"[{entries}]"

    raise TypeError(f"Unsupported property value type: {type(value).__name__}")


def _align(text: str, alignment: int | None) -> str:
    if alignment is None:
        return text
    if alignment < 0:
        return text.ljust(-alignment)
    return text.rjust(alignment)


def render_token(token: PropertyToken, properties: Mapping[str, PropertyValue]) -> str:
    value = properties.get(token.property_name)
    if value is None:
        return token.raw_text
    return _align(render_value(value, token.format), token.alignment)


def render_template(template: MessageTemplate, properties: Mapping[str, PropertyValue]) -> str:
    parts = []
    for token in template.tokens:
        if isinstance(token, PropertyToken):
            parts.append(render_token(token, properties))
        else:
            parts.append(token.text)
    return "".join(parts)


class TemplateRenderer(Protocol):
    def render(self, template: MessageTemplate, properties: Mapping[str, PropertyValue]) -> str:
        ...

    def render_token(self, token: PropertyToken, properties: Mapping[str, PropertyValue]) -> str:
        ...


class DefaultTemplateRenderer:
    """Renderer backed by the functions in this module."""

    def render(self, template: MessageTemplate, properties: Mapping[str, PropertyValue]) -> str:
        return render_template(template, properties)

    def render_token(self, token: PropertyToken, properties: Mapping[str, PropertyValue]) -> str:
        return render_token(token, properties)
