"""
HTTP Delivery
-------------
Handles:
  - Formatting a batch of events into JSON lines (dropped events are skipped)
  - Posting the batch as a JSON array to the log server via httpx
  - Retry logic (max_retries, linear backoff) for timeouts, 429 and 5xx
  - All delivery failures mapped to DeliveryError

There is no buffer here: a batch that cannot be delivered is reported to the
caller, which decides whether to keep or discard it.
"""

import asyncio
import time
from collections.abc import Iterable

import httpx

from httpsink.core.config import Settings, get_settings
from httpsink.core.errors import DeliveryError, ErrorCode
from httpsink.core.logging import SelfLog, get_logger, log_sink_event
from httpsink.models.events import LogEvent
from httpsink.services.formatter import NormalTextFormatter, formatter_from_settings

logger = get_logger(__name__)


def build_batch_payload(lines: Iterable[str]) -> str:
    """Wrap formatted lines into one JSON array, without re-parsing them."""
    return "[" + ",".join(line.rstrip("\n") for line in lines) + "]"


def _check_response(response: httpx.Response) -> None:
    if response.status_code == 429:
        raise DeliveryError(
            ErrorCode.DELIVERY_UNAVAILABLE,
            "Log server rate limit hit.",
            internal=f"status=429 body={response.text[:200]}",
        )

    if response.status_code >= 500:
        raise DeliveryError(
            ErrorCode.DELIVERY_UNAVAILABLE,
            "Log server unavailable.",
            internal=f"status={response.status_code} body={response.text[:200]}",
        )

    if not response.is_success:
        raise DeliveryError(
            ErrorCode.DELIVERY_REJECTED,
            "Batch rejected by log server.",
            internal=f"status={response.status_code} body={response.text[:300]}",
        )


class HttpLogSink:
    """Formats events and posts them to `request_uri` in a single request."""

    def __init__(
        self,
        request_uri: str | None = None,
        *,
        formatter: NormalTextFormatter | None = None,
        client: httpx.AsyncClient | None = None,
        settings: Settings | None = None,
    ):
        self.settings = settings or get_settings()
        self.request_uri = request_uri or self.settings.request_uri
        self.formatter = formatter or formatter_from_settings(self.settings)
        self._client = client

    def format_batch(self, events: Iterable[LogEvent]) -> list[str]:
        lines = []
        for event in events:
            result = self.formatter.try_format(event)
            if result.ok:
                lines.append(result.line)
            else:
                self.formatter.report_dropped(event, result.error)
        return lines

    async def emit(self, events: Iterable[LogEvent]) -> int:
        """
        Deliver a batch. Returns the number of events sent.

        Retry policy:
          - Retry on: timeout, transport errors, 429, 5xx
          - No retry on: other 4xx (the server will not change its mind)
        """
        lines = self.format_batch(events)
        if not lines:
            return 0

        payload = build_batch_payload(lines)
        if self._client is not None:
            await self._post_with_retry(self._client, payload, len(lines))
        else:
            async with httpx.AsyncClient(timeout=self.settings.timeout_seconds) as client:
                await self._post_with_retry(client, payload, len(lines))
        return len(lines)

    async def _post_with_retry(self, client: httpx.AsyncClient, payload: str, count: int) -> None:
        last_error: DeliveryError | None = None
        attempt = 0
        t_start = time.monotonic()

        while attempt <= self.settings.max_retries:
            attempt += 1
            attempt_start = time.monotonic()

            try:
                response = await client.post(
                    self.request_uri,
                    content=payload.encode("utf-8"),
                    headers={"Content-Type": "application/json; charset=utf-8"},
                )
                _check_response(response)

                log_sink_event(
                    logger, "batch_delivered",
                    attempt=attempt,
                    events=count,
                    latency_ms=int((time.monotonic() - t_start) * 1000),
                )
                return

            except DeliveryError as exc:
                last_error = exc
                log_sink_event(
                    logger, "batch_attempt_failed",
                    attempt=attempt,
                    error_code=exc.code.value,
                    internal_detail=exc.internal,
                    attempt_latency_ms=int((time.monotonic() - attempt_start) * 1000),
                )
                if not exc.retryable:
                    break

            except httpx.TimeoutException as exc:
                last_error = DeliveryError(
                    ErrorCode.DELIVERY_TIMEOUT,
                    "The log server took too long to respond.",
                    internal=repr(exc),
                )
                log_sink_event(logger, "batch_timeout", attempt=attempt)

            except httpx.TransportError as exc:
                last_error = DeliveryError(
                    ErrorCode.DELIVERY_UNAVAILABLE,
                    "The log server could not be reached.",
                    internal=repr(exc),
                )
                log_sink_event(logger, "batch_transport_error", attempt=attempt)

            if attempt <= self.settings.max_retries:
                await asyncio.sleep(self.settings.retry_delay_seconds * attempt)

        SelfLog.write_line(
            "Failed to deliver {0} events to {1} after {2} attempts: {3}",
            count,
            self.request_uri,
            attempt,
            last_error.internal if last_error else "unknown",
        )

        if last_error is not None and not last_error.retryable:
            raise last_error

        raise DeliveryError(
            ErrorCode.RETRIES_EXHAUSTED,
            last_error.detail if last_error else "All delivery attempts failed.",
            internal=last_error.internal if last_error else "",
        )
