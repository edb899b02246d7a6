"""Errors raised by the collaborators the workflow stages call into."""

from __future__ import annotations


class PageDigestError(Exception):
    """Base class for collaborator failures."""


class FetchError(PageDigestError):
    """A page could not be downloaded or returned a non-success status."""

    def __init__(self, url: str, message: str, status_code: int | None = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class SummarizationError(PageDigestError):
    """No provider produced a usable completion."""


class StorageError(PageDigestError):
    """A summary could not be written to its store."""
