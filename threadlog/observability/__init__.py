"""Observability helpers."""

from threadlog.observability.otel import (
    initialize,
    shutdown,
    start_span,
    record_file_parsed,
    record_live_event,
    record_parser_failure,
)

__all__ = [
    "initialize",
    "shutdown",
    "start_span",
    "record_file_parsed",
    "record_live_event",
    "record_parser_failure",
]
