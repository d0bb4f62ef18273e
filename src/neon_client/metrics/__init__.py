"""Metrics module."""

from .registry import (
    record_api_request,
    record_connection_state,
    record_decode_error,
    record_handshake,
    record_reconnection,
    record_stream_close,
    record_stream_open,
    record_stream_subscribers,
    start_metrics_server,
)

__all__ = [
    "record_api_request",
    "record_connection_state",
    "record_decode_error",
    "record_handshake",
    "record_reconnection",
    "record_stream_close",
    "record_stream_open",
    "record_stream_subscribers",
    "start_metrics_server",
]
