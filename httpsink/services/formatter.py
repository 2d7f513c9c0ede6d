"""
Event Formatter
---------------
Turns one LogEvent into one newline-terminated JSON object line:

  {"Timestamp":...,"Level":...,"MessageTemplate":...,
   "RenderedMessage":...,"Exception":...,"TraceId":...,"SpanId":...,
   "Properties":{...},"Renderings":{...}}

Only Timestamp, Level and MessageTemplate are always present; every other field
is omitted entirely when it has nothing to say. The field order is fixed.

Failure boundary:
  The event is first written into a scratch buffer. Only a fully built line is
  copied to the caller's sink. Any error on the way drops the event and leaves
  a single diagnostic line on SelfLog. The sink never sees half an object.

Thread safety:
  Delimiter bookkeeping lives in a JsonObjectWriter created per call, so one
  formatter instance can be shared between threads without locking.
"""

import traceback
from collections.abc import Iterable, Mapping
from datetime import datetime, timezone
from io import StringIO

from pydantic import BaseModel, ConfigDict

from httpsink.core.config import Settings, get_settings
from httpsink.core.errors import ErrorCode, FormattingError
from httpsink.core.logging import SelfLog
from httpsink.models.events import (
    LogEvent,
    MessageTemplateToken,
    PropertyToken,
    PropertyValue,
)
from httpsink.services.encoder import TextSink, ValueEncoder, write_quoted_json_string
from httpsink.services.template import DefaultTemplateRenderer, TemplateRenderer

_DROPPED_EVENT_TEMPLATE = (
    "Event at {0} with message template {1} could not be formatted into JSON "
    "and will be dropped: {2}"
)


def format_utc_timestamp(ts: datetime) -> str:
    """Round-trip ISO-8601 in UTC with seven fractional digits: 2024-01-01T00:00:00.0000000Z"""
    utc = ts.astimezone(timezone.utc).replace(tzinfo=None)
    return utc.isoformat(timespec="microseconds") + "0Z"


def format_round_trip(ts: datetime) -> str:
    """Round-trip ISO-8601 keeping the event's own offset: 2024-01-01T02:00:00.0000000+02:00"""
    local = ts.replace(tzinfo=None).isoformat(timespec="microseconds")
    offset = ts.isoformat(timespec="microseconds")[len(local):]
    return f"{local}0{offset or '+00:00'}"


def exception_text(exc: BaseException) -> str:
    return "".join(traceback.format_exception(type(exc), exc, exc.__traceback__))


def group_formatted_tokens(
    tokens: Iterable[MessageTemplateToken],
) -> dict[str, list[PropertyToken]]:
    """
    Property tokens with a format, grouped by property name in encounter order.
    Each group keeps one token per distinct format, first occurrence wins.
    """
    groups: dict[str, list[PropertyToken]] = {}
    for token in tokens:
        if not isinstance(token, PropertyToken) or not token.format:
            continue
        group = groups.setdefault(token.property_name, [])
        if all(seen.format != token.format for seen in group):
            group.append(token)
    return groups


class JsonObjectWriter:
    """Per-call cursor over one top-level JSON object."""

    def __init__(self, output: TextSink):
        self.output = output
        self.has_fields = False

    def begin(self) -> None:
        self.output.write("{")

    def end(self) -> None:
        self.output.write("}")

    def write_name(self, name: str) -> None:
        if self.has_fields:
            self.output.write(",")
        write_quoted_json_string(name, self.output)
        self.output.write(":")
        self.has_fields = True

    def write_string(self, name: str, value: str) -> None:
        self.write_name(name)
        write_quoted_json_string(value, self.output)


class FormatResult(BaseModel):
    """Outcome of formatting one event: either a line or the error that dropped it."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    line: str | None = None
    error: FormattingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class NormalTextFormatter:
    """
    JSON formatter for the normal (non-compact) event shape.

    Without a rendered message the payload stays small; pair it with a log
    server that renders templates itself, or use NormalRenderedTextFormatter.
    """

    def __init__(
        self,
        render_message: bool = False,
        *,
        renderer: TemplateRenderer | None = None,
        encoder: ValueEncoder | None = None,
    ):
        self.render_message = render_message
        self.renderer = renderer or DefaultTemplateRenderer()
        self.encoder = encoder or ValueEncoder()

    # ── Public API ────────────────────────────────────────────────────────────

    def format(self, event: LogEvent, output: TextSink) -> bool:
        """
        Write one JSON line for `event` to `output`.
        Returns False when the event was dropped (see SelfLog for the reason).
        """
        if event is None:
            raise ValueError("event must not be None")
        if output is None:
            raise ValueError("output must not be None")

        result = self.try_format(event)
        if not result.ok:
            self.report_dropped(event, result.error)
            return False

        output.write(result.line)
        return True

    def try_format(self, event: LogEvent) -> FormatResult:
        """Format into a scratch buffer without touching any sink or SelfLog."""
        if event is None:
            raise ValueError("event must not be None")

        buffer = StringIO()
        try:
            self.format_content(event, buffer)
        except FormattingError as exc:
            return FormatResult(error=exc)
        except Exception as exc:
            return FormatResult(error=FormattingError(
                ErrorCode.INTERNAL_ERROR,
                "Unexpected error while formatting the event.",
                internal=repr(exc),
            ))

        buffer.write("\n")
        return FormatResult(line=buffer.getvalue())

    @staticmethod
    def report_dropped(event: LogEvent, error: FormattingError) -> None:
        SelfLog.write_line(
            _DROPPED_EVENT_TEMPLATE,
            format_round_trip(event.timestamp),
            event.message_template.text,
            f"{error.code.value}: {error.detail} {error.internal}".rstrip(),
            event_timestamp=event.timestamp.isoformat(),
            message_template=event.message_template.text,
            error_code=error.code.value,
            internal_detail=error.internal,
        )

    # ── Event assembly ────────────────────────────────────────────────────────

    def format_content(self, event: LogEvent, output: TextSink) -> None:
        writer = JsonObjectWriter(output)
        writer.begin()

        self.write_timestamp(event, writer)
        self.write_level(event, writer)
        self.write_message_template(event, writer)

        if self.render_message:
            self.write_rendered_message(event, writer)

        if event.exception is not None:
            self.write_exception(event, writer)

        if event.trace_id is not None:
            self.write_trace_id(event, writer)

        if event.span_id is not None:
            self.write_span_id(event, writer)

        if event.properties:
            self.write_properties(event.properties, writer)

        groups = group_formatted_tokens(event.message_template.tokens)
        if groups:
            self.write_renderings(groups, event.properties, writer)

        writer.end()

    def write_timestamp(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        writer.write_string("Timestamp", format_utc_timestamp(event.timestamp))

    def write_level(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        writer.write_string("Level", event.level.value)

    def write_message_template(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        writer.write_string("MessageTemplate", event.message_template.text)

    def write_rendered_message(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        try:
            rendered = self.renderer.render(event.message_template, event.properties)
        except Exception as exc:
            raise FormattingError(
                ErrorCode.RENDERING_ERROR,
                "Message template could not be rendered.",
                internal=repr(exc),
            ) from exc
        writer.write_string("RenderedMessage", rendered)

    def write_exception(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        # The field stays present even when no text can be produced
        try:
            text = exception_text(event.exception)
        except Exception:
            text = ""
        writer.write_string("Exception", text)

    def write_trace_id(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        writer.write_string("TraceId", event.trace_id)

    def write_span_id(self, event: LogEvent, writer: JsonObjectWriter) -> None:
        writer.write_string("SpanId", event.span_id)

    def write_properties(
        self,
        properties: Mapping[str, PropertyValue],
        writer: JsonObjectWriter,
    ) -> None:
        output = writer.output
        writer.write_name("Properties")
        output.write("{")

        delim = ""
        for name, value in properties.items():
            output.write(delim)
            delim = ","
            write_quoted_json_string(name, output)
            output.write(":")
            try:
                self.encoder.format(value, output)
            except Exception as exc:
                raise FormattingError(
                    ErrorCode.ENCODING_ERROR,
                    f"Property '{name}' could not be encoded.",
                    internal=repr(exc),
                ) from exc

        output.write("}")

    def write_renderings(
        self,
        groups: Mapping[str, list[PropertyToken]],
        properties: Mapping[str, PropertyValue],
        writer: JsonObjectWriter,
    ) -> None:
        output = writer.output
        writer.write_name("Renderings")
        output.write("{")

        rdelim = ""
        for name, tokens in groups.items():
            output.write(rdelim)
            rdelim = ","
            write_quoted_json_string(name, output)
            output.write(":[")

            fdelim = ""
            for token in tokens:
                output.write(fdelim)
                fdelim = ","
                try:
                    rendering = self.renderer.render_token(token, properties)
                except Exception as exc:
                    raise FormattingError(
                        ErrorCode.RENDERING_ERROR,
                        f"Property '{name}' could not be rendered with format '{token.format}'.",
                        internal=repr(exc),
                    ) from exc

                output.write('{"Format":')
                write_quoted_json_string(token.format, output)
                output.write(',"Rendering":')
                write_quoted_json_string(rendering, output)
                output.write("}")

            output.write("]")

        output.write("}")


class NormalRenderedTextFormatter(NormalTextFormatter):
    """Normal formatter that always includes RenderedMessage."""

    def __init__(
        self,
        *,
        renderer: TemplateRenderer | None = None,
        encoder: ValueEncoder | None = None,
    ):
        super().__init__(True, renderer=renderer, encoder=encoder)


def formatter_from_settings(settings: Settings | None = None) -> NormalTextFormatter:
    settings = settings or get_settings()
    return NormalTextFormatter(
        render_message=settings.render_message,
        encoder=ValueEncoder(type_tag_name=settings.type_tag_name),
    )
