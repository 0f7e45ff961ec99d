"""Structured logging utilities."""

from .events import (
    JsonlEventLogger,
    RunEvent,
    configure_logging,
    new_run_id,
    sanitize_arguments,
    utc_timestamp,
)

__all__ = [
    "JsonlEventLogger",
    "RunEvent",
    "configure_logging",
    "new_run_id",
    "sanitize_arguments",
    "utc_timestamp",
]
