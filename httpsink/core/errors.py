"""
Error Contract
--------------
All sink errors are typed. Each carries a stable `code` the caller can branch
on, a short human-readable `detail`, and an optional `internal` string with the
raw cause for the self-diagnostics channel.

Formatting errors never escape `NormalTextFormatter.format`; they are caught
at the per-event boundary and reported through SelfLog. Delivery errors are
raised to whoever drives the HTTP sink.
"""

from enum import Enum


class ErrorCode(str, Enum):
    # Formatting errors → event dropped
    ENCODING_ERROR = "encoding_error"
    RENDERING_ERROR = "rendering_error"

    # Delivery errors → batch not accepted
    DELIVERY_REJECTED = "delivery_rejected"
    DELIVERY_TIMEOUT = "delivery_timeout"
    DELIVERY_UNAVAILABLE = "delivery_unavailable"

    # Retry exhausted: detail comes from the last underlying error
    RETRIES_EXHAUSTED = "retries_exhausted"

    # Catch-all
    INTERNAL_ERROR = "internal_error"


# Codes worth another delivery attempt
RETRYABLE_CODES: frozenset[ErrorCode] = frozenset({
    ErrorCode.DELIVERY_TIMEOUT,
    ErrorCode.DELIVERY_UNAVAILABLE,
})


class SinkError(Exception):
    """Base exception for all errors raised by this package."""

    def __init__(self, code: ErrorCode, detail: str = "", *, internal: str = ""):
        self.code = code
        self.detail = detail or code.value.replace("_", " ").capitalize()
        self.internal = internal
        super().__init__(self.detail)

    @property
    def retryable(self) -> bool:
        return self.code in RETRYABLE_CODES


class FormattingError(SinkError):
    """A log event could not be turned into a JSON line."""


class DeliveryError(SinkError):
    """A batch of formatted lines could not be delivered to the endpoint."""
