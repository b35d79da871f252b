"""Exception taxonomy for decoding and constructing structured output.

Schema conversion never raises; decode and construction failures are
recoverable and are absorbed close to where they happen (a streamed snapshot
is skipped, a final response falls through to a placeholder). Only provider
failures and a placeholder that cannot be constructed reach the caller.
"""

from __future__ import annotations

from typing import Optional


class StructuredStreamError(Exception):
    """Base class for structured output errors."""

    error_code = "structured_stream_error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"{self.error_code}: {self.message}"


class DecodeError(StructuredStreamError):
    """No JSON value could be salvaged from the input text."""

    error_code = "decode_failed"

    def __init__(self, message: str = "Could not decode JSON", position: Optional[int] = None) -> None:
        super().__init__(message)
        self.position = position


class ConstructionError(StructuredStreamError):
    """A content tree does not match the shape of the target type."""

    error_code = "construction_failed"
