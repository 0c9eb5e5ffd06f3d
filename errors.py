"""
errors.py — failure kinds raised by the image pipeline stages.

Every stage raises one of these; the fetcher turns them into the
original-URL fallback at a single boundary.
"""
from __future__ import annotations

from typing import Optional

__all__ = [
    "PipelineError",
    "InvalidImage",
    "FetchFailure",
    "EncodeFailure",
    "FilesystemFailure",
    "ProcessingTimeout",
    "PlaceholderFailure",
]


class PipelineError(Exception):
    """Base class for anything that sends a URL down the fallback path."""

    kind = "pipeline"


class InvalidImage(PipelineError):
    """Undecodable bytes or zero dimensions."""

    kind = "invalid_image"


class FetchFailure(PipelineError):
    """Non-success HTTP status, transport error, or an empty body."""

    kind = "fetch"

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class EncodeFailure(PipelineError):
    kind = "encode"


class FilesystemFailure(PipelineError):
    """Directory creation, file write, or scratch cleanup went wrong."""

    kind = "filesystem"


class ProcessingTimeout(PipelineError):
    kind = "timeout"


class PlaceholderFailure(Exception):
    """Preview token could not be made. Never triggers the URL fallback."""
