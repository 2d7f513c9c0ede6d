"""
Pydantic Models — Log Events, Property Values, Message Templates
----------------------------------------------------------------
These models are the read-only input of the formatter:
  1. LogEvent — one structured record from the logging pipeline
  2. PropertyValue — the recursive value model attached to each named property
  3. MessageTemplate — raw template text plus its parsed token sequence

PropertyValue is a tagged union discriminated by `kind`. The encoder and the
renderer dispatch on the concrete class; nothing is discovered by reflection.
"""

from collections.abc import Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class LogLevel(str, Enum):
    VERBOSE = "Verbose"
    DEBUG = "Debug"
    INFORMATION = "Information"
    WARNING = "Warning"
    ERROR = "Error"
    FATAL = "Fatal"


# ── Property values ───────────────────────────────────────────────────────────

class ScalarValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["scalar"] = "scalar"
    value: Any = None


class SequenceValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["sequence"] = "sequence"
    elements: list["PropertyValue"] = Field(default_factory=list)


class StructureField(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    value: "PropertyValue"


class StructureValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["structure"] = "structure"
    type_tag: str | None = None
    properties: list[StructureField] = Field(default_factory=list)


class DictionaryValue(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["dictionary"] = "dictionary"
    elements: list[tuple[ScalarValue, "PropertyValue"]] = Field(default_factory=list)


PropertyValue = Annotated[
    Union[ScalarValue, SequenceValue, StructureValue, DictionaryValue],
    Field(discriminator="kind"),
]

SequenceValue.model_rebuild()
StructureField.model_rebuild()
StructureValue.model_rebuild()
DictionaryValue.model_rebuild()

_PROPERTY_VALUE_TYPES = (ScalarValue, SequenceValue, StructureValue, DictionaryValue)


def to_property_value(obj: Any) -> PropertyValue:
    """
    Capture plain Python data as a PropertyValue.

    Mappings become dictionaries, lists/tuples/sets become sequences, anything
    else is kept as a scalar. Existing PropertyValues pass through untouched.
    """
    if isinstance(obj, _PROPERTY_VALUE_TYPES):
        return obj
    if isinstance(obj, Mapping):
        return DictionaryValue(elements=[
            (ScalarValue(value=key), to_property_value(value))
            for key, value in obj.items()
        ])
    if isinstance(obj, (list, tuple, set, frozenset)):
        return SequenceValue(elements=[to_property_value(item) for item in obj])
    return ScalarValue(value=obj)


# ── Message templates ─────────────────────────────────────────────────────────

class TextToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["text"] = "text"
    text: str


class PropertyToken(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["property"] = "property"
    property_name: str
    raw_text: str
    format: str | None = None
    # Positive pads on the left (right-aligned), negative pads on the right
    alignment: int | None = None
    destructuring: Literal["default", "destructure", "stringify"] = "default"


MessageTemplateToken = Annotated[
    Union[TextToken, PropertyToken],
    Field(discriminator="kind"),
]


class MessageTemplate(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: str
    tokens: list[MessageTemplateToken] = Field(default_factory=list)

    @classmethod
    def from_text(cls, text: str) -> "MessageTemplate":
        from httpsink.services.template import parse_template

        return parse_template(text)

    @property
    def property_tokens(self) -> list[PropertyToken]:
        return [token for token in self.tokens if isinstance(token, PropertyToken)]


# ── Log event ─────────────────────────────────────────────────────────────────

class LogEvent(BaseModel):
    """
    One structured record, owned by the logging pipeline.
    The formatter only borrows it for the duration of a single call.
    """

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    timestamp: datetime
    level: LogLevel = LogLevel.INFORMATION
    message_template: MessageTemplate
    exception: BaseException | None = None
    trace_id: str | None = None
    span_id: str | None = None
    properties: dict[str, PropertyValue] = Field(default_factory=dict)

    @field_validator("timestamp")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @field_validator("message_template", mode="before")
    @classmethod
    def parse_template_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return MessageTemplate.from_text(v)
        return v

    @field_validator("properties", mode="before")
    @classmethod
    def capture_properties(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, Mapping):
            return {name: to_property_value(value) for name, value in v.items()}
        return v
