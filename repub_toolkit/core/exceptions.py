from __future__ import annotations

"""Exception classes raised by the EPUB structure engine.

Load-time problems (`StructuralError`, `ProtectionError`) abort before a
`Book` exists. Lookup problems (`NotFoundError`, `RangeFormatError`,
`DuplicateIdError`) are raised before a mutation touches any document, so
the book is unchanged when they surface.
"""

from typing import Optional


class RePubError(Exception):
    """Base exception for all toolkit errors."""

    def __init__(self, message: str, path: Optional[str] = None,
                 cause: Optional[Exception] = None) -> None:
        super().__init__(message)
        self.path = path
        self.cause = cause

    def __str__(self) -> str:
        if self.path:
            return f"[{self.path}] {super().__str__()}"
        return super().__str__()


class StructuralError(RePubError):
    """Raised when the container, package document, manifest or spine is
    missing or unreadable. The book cannot be loaded."""
    pass


class ProtectionError(RePubError):
    """Raised when DRM markers are found while loading."""
    pass


class NotFoundError(RePubError):
    """Raised when an identifier, index, range start or asset resolves to nothing."""

    def __init__(self, message: str, identifier: object = None,
                 path: Optional[str] = None) -> None:
        super().__init__(message, path)
        self.identifier = identifier


class RangeFormatError(RePubError):
    """Raised for range specifications other than ``"n..."`` or ``"n..m"``."""

    def __init__(self, range_spec: str, reason: str = "") -> None:
        self.range_spec = range_spec
        message = f"Invalid range '{range_spec}'. Expected \"n...\" or \"n..m\""
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class DuplicateIdError(RePubError):
    """Raised when inserted content would reuse a manifest id or archive path."""
    pass


__all__ = [
    "RePubError",
    "StructuralError",
    "ProtectionError",
    "NotFoundError",
    "RangeFormatError",
    "DuplicateIdError",
]
