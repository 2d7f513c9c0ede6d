"""
Tests — Event Formatter
-----------------------
Covers: the canonical output line, field order, optional field omission,
        renderings grouping, failure containment via SelfLog, preconditions,
        and concurrent use of one formatter instance.
Run with: pytest tests/ -v
"""

import io
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from io import StringIO
from unittest.mock import MagicMock, patch

import pytest

from httpsink.core.config import Settings
from httpsink.core.errors import ErrorCode
from httpsink.core.logging import SelfLog
from httpsink.models.events import LogEvent, LogLevel, ScalarValue, StructureValue
from httpsink.services.formatter import (
    NormalRenderedTextFormatter,
    NormalTextFormatter,
    format_round_trip,
    format_utc_timestamp,
    formatter_from_settings,
)

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


class Unprintable:
    def __str__(self):
        raise RuntimeError("cannot render")


# ── Fixtures ──────────────────────────────────────────────────────────────────

@pytest.fixture
def selflog_lines():
    lines: list[str] = []
    SelfLog.enable(lines.append)
    yield lines
    SelfLog.reset()


@pytest.fixture
def hello_event():
    return LogEvent(
        timestamp=T0,
        level=LogLevel.INFORMATION,
        message_template="Hello, {Name}",
        properties={"Name": "World"},
    )


@pytest.fixture
def full_event():
    try:
        raise ValueError("bad input")
    except ValueError as exc:
        error = exc

    return LogEvent(
        timestamp=T0,
        level=LogLevel.ERROR,
        message_template="Paid {Amount:.2f} to {Payee}",
        exception=error,
        trace_id="4bf92f3577b34da6a3ce929d0e0e4736",
        span_id="00f067aa0ba902b7",
        properties={"Amount": 12.5, "Payee": "ACME"},
    )


def format_to_string(formatter, event) -> str:
    sink = StringIO()
    formatter.format(event, sink)
    return sink.getvalue()


# ── Output shape ──────────────────────────────────────────────────────────────

class TestOutputShape:
    def test_canonical_example(self, hello_event):
        output = format_to_string(NormalTextFormatter(), hello_event)
        assert output == (
            '{"Timestamp":"2024-01-01T00:00:00.0000000Z","Level":"Information",'
            '"MessageTemplate":"Hello, {Name}","Properties":{"Name":"World"}}\n'
        )

    def test_exactly_one_line(self, full_event):
        output = format_to_string(NormalRenderedTextFormatter(), full_event)
        assert output.endswith("\n")
        assert output.count("\n") == 1
        json.loads(output)

    def test_field_order_with_all_fields(self, full_event):
        output = format_to_string(NormalTextFormatter(render_message=True), full_event)
        assert list(json.loads(output)) == [
            "Timestamp", "Level", "MessageTemplate", "RenderedMessage",
            "Exception", "TraceId", "SpanId", "Properties", "Renderings",
        ]

    def test_optional_fields_omitted(self):
        event = LogEvent(timestamp=T0, message_template="Started")
        document = json.loads(format_to_string(NormalTextFormatter(), event))
        assert list(document) == ["Timestamp", "Level", "MessageTemplate"]
        assert "TraceId" not in document
        assert "Properties" not in document

    def test_rendered_message_only_when_enabled(self, hello_event):
        plain = json.loads(format_to_string(NormalTextFormatter(), hello_event))
        rendered = json.loads(format_to_string(NormalRenderedTextFormatter(), hello_event))
        assert "RenderedMessage" not in plain
        assert rendered["RenderedMessage"] == 'Hello, "World"'

    def test_exception_text_includes_traceback(self, full_event):
        document = json.loads(format_to_string(NormalTextFormatter(), full_event))
        assert "Traceback" in document["Exception"]
        assert "ValueError: bad input" in document["Exception"]

    def test_exception_without_text_written_as_empty(self, full_event):
        with patch(
            "httpsink.services.formatter.traceback.format_exception",
            side_effect=RuntimeError("no traceback"),
        ):
            document = json.loads(format_to_string(NormalTextFormatter(), full_event))

        assert document["Exception"] == ""
        assert list(document).index("Exception") == 3

    def test_hostile_property_string_round_trips(self):
        hostile = 'quote " backslash \\ newline \n unicode ✓'
        event = LogEvent(timestamp=T0, message_template="{V}", properties={"V": hostile})
        output = format_to_string(NormalTextFormatter(), event)
        assert output.count("\n") == 1
        assert json.loads(output)["Properties"]["V"] == hostile

    def test_lone_surrogate_written_to_utf8_stream(self):
        event = LogEvent(timestamp=T0, message_template="{V}", properties={"V": "bad \ud800 text"})
        raw = io.BytesIO()
        sink = io.TextIOWrapper(raw, encoding="utf-8")

        assert NormalTextFormatter(render_message=True).format(event, sink) is True
        sink.flush()

        document = json.loads(raw.getvalue().decode("utf-8"))
        assert document["Properties"]["V"] == "bad \ud800 text"

    def test_structure_property_uses_type_tag(self):
        event = LogEvent(
            timestamp=T0,
            message_template="{@Order}",
            properties={"Order": StructureValue(type_tag="Order")},
        )
        document = json.loads(format_to_string(NormalTextFormatter(), event))
        assert document["Properties"]["Order"] == {"$type": "Order"}

    def test_properties_keep_insertion_order(self):
        event = LogEvent(
            timestamp=T0,
            message_template="x",
            properties={"b": 1, "a": 2, "c": 3},
        )
        document = json.loads(format_to_string(NormalTextFormatter(), event))
        assert list(document["Properties"]) == ["b", "a", "c"]


# ── Timestamps ────────────────────────────────────────────────────────────────

class TestTimestamps:
    def test_offset_normalized_to_utc(self):
        ts = datetime(2024, 1, 1, 2, 0, 0, 123456, tzinfo=timezone(timedelta(hours=2)))
        assert format_utc_timestamp(ts) == "2024-01-01T00:00:00.1234560Z"

    def test_round_trip_keeps_offset(self):
        ts = datetime(2024, 1, 1, 2, 0, tzinfo=timezone(timedelta(hours=2)))
        assert format_round_trip(ts) == "2024-01-01T02:00:00.0000000+02:00"

    def test_naive_timestamp_taken_as_utc(self):
        event = LogEvent(timestamp=datetime(2024, 1, 1), message_template="x")
        document = json.loads(format_to_string(NormalTextFormatter(), event))
        assert document["Timestamp"] == "2024-01-01T00:00:00.0000000Z"


# ── Renderings ────────────────────────────────────────────────────────────────

class TestRenderings:
    def test_grouped_by_property_in_first_seen_order(self):
        event = LogEvent(
            timestamp=T0,
            message_template="{Amount:.2f} / {Amount:.1f} / {Amount:.2f} / {Other}",
            properties={"Amount": 3.14159, "Other": 1},
        )
        document = json.loads(format_to_string(NormalTextFormatter(), event))
        assert document["Renderings"] == {
            "Amount": [
                {"Format": ".2f", "Rendering": "3.14"},
                {"Format": ".1f", "Rendering": "3.1"},
            ]
        }

    def test_groups_follow_token_order(self):
        event = LogEvent(
            timestamp=T0,
            message_template="{B:d} {A:d}",
            properties={"A": 1, "B": 2},
        )
        document = json.loads(format_to_string(NormalTextFormatter(), event))
        assert list(document["Renderings"]) == ["B", "A"]

    def test_no_renderings_without_formats(self, hello_event):
        document = json.loads(format_to_string(NormalTextFormatter(), hello_event))
        assert "Renderings" not in document


# ── Failure containment ───────────────────────────────────────────────────────

class TestFailureContainment:
    def test_unencodable_property_drops_event(self, selflog_lines):
        event = LogEvent(
            timestamp=T0,
            message_template="Broken {Value}",
            properties={"Value": ScalarValue(value=Unprintable())},
        )
        sink = StringIO()

        written = NormalTextFormatter().format(event, sink)

        assert written is False
        assert sink.getvalue() == ""
        assert len(selflog_lines) == 1
        assert "2024-01-01T00:00:00.0000000+00:00" in selflog_lines[0]
        assert "Broken {Value}" in selflog_lines[0]
        assert "will be dropped" in selflog_lines[0]

    def test_try_format_returns_error_without_diagnostics(self, selflog_lines):
        event = LogEvent(
            timestamp=T0,
            message_template="{Value}",
            properties={"Value": ScalarValue(value=Unprintable())},
        )
        result = NormalTextFormatter().try_format(event)
        assert not result.ok
        assert result.line is None
        assert result.error.code == ErrorCode.ENCODING_ERROR
        assert selflog_lines == []

    def test_renderer_failure_drops_event(self, hello_event, selflog_lines):
        renderer = MagicMock()
        renderer.render.side_effect = RuntimeError("renderer down")
        formatter = NormalTextFormatter(render_message=True, renderer=renderer)

        assert formatter.try_format(hello_event).error.code == ErrorCode.RENDERING_ERROR

        sink = StringIO()
        formatter.format(hello_event, sink)
        assert sink.getvalue() == ""
        assert len(selflog_lines) == 1

    def test_bad_format_specifier_drops_event(self, selflog_lines):
        event = LogEvent(timestamp=T0, message_template="{N:zz}", properties={"N": 1})
        sink = StringIO()
        NormalTextFormatter().format(event, sink)
        assert sink.getvalue() == ""
        assert len(selflog_lines) == 1

    def test_next_event_still_formats_after_failure(self, hello_event, selflog_lines):
        formatter = NormalTextFormatter()
        bad = LogEvent(
            timestamp=T0,
            message_template="{V}",
            properties={"V": ScalarValue(value=Unprintable())},
        )
        sink = StringIO()
        formatter.format(bad, sink)
        formatter.format(hello_event, sink)
        assert sink.getvalue().count("\n") == 1
        assert json.loads(sink.getvalue())["Properties"] == {"Name": "World"}


# ── Preconditions ─────────────────────────────────────────────────────────────

class TestPreconditions:
    def test_missing_event_raises(self):
        with pytest.raises(ValueError):
            NormalTextFormatter().format(None, StringIO())

    def test_missing_output_raises(self, hello_event):
        with pytest.raises(ValueError):
            NormalTextFormatter().format(hello_event, None)


# ── Configuration & concurrency ───────────────────────────────────────────────

class TestConfiguration:
    def test_formatter_from_settings(self):
        settings = Settings(render_message=True, type_tag_name="_typeTag")
        formatter = formatter_from_settings(settings)
        event = LogEvent(
            timestamp=T0,
            message_template="{S}",
            properties={"S": StructureValue(type_tag="Shape")},
        )
        document = json.loads(format_to_string(formatter, event))
        assert document["RenderedMessage"] == "Shape {  }"
        assert document["Properties"]["S"] == {"_typeTag": "Shape"}

    def test_shared_instance_across_threads(self):
        formatter = NormalTextFormatter(render_message=True)
        events = [
            LogEvent(
                timestamp=T0,
                message_template="Item {Index} of {Total:d}",
                properties={"Index": i, "Total": 200},
            )
            for i in range(200)
        ]

        with ThreadPoolExecutor(max_workers=8) as pool:
            outputs = list(pool.map(lambda e: format_to_string(formatter, e), events))

        for i, output in enumerate(outputs):
            document = json.loads(output)
            assert document["Properties"]["Index"] == i
            assert list(document)[0] == "Timestamp"
