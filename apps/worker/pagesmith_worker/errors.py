"""Error taxonomy shared by the worker modules."""

from __future__ import annotations


class PagesmithError(Exception):
    """Base class for errors raised by the worker."""


class ValidationError(PagesmithError, ValueError):
    """Raised when caller input is missing or invalid."""


class RangeError(ValidationError):
    """Raised when a page range is rejected in strict mode."""


class FormatError(PagesmithError, ValueError):
    """Raised when source bytes do not parse as the expected document type."""


class StorageError(PagesmithError, OSError):
    """Raised when an artifact cannot be read or written."""
