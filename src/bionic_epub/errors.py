from __future__ import annotations


class BionicEpubError(RuntimeError):
    """Base class for conversion failures."""


class NotFoundError(BionicEpubError, FileNotFoundError):
    """Raised when the input container does not exist."""


class FormatError(BionicEpubError):
    """Raised when a container or markup document cannot be parsed."""


class ConversionIOError(BionicEpubError, OSError):
    """Raised when a filesystem operation of the pipeline fails."""


class ValidationError(BionicEpubError, ValueError):
    """Raised when user-supplied conversion options are out of range."""


__all__ = [
    "BionicEpubError",
    "ConversionIOError",
    "FormatError",
    "NotFoundError",
    "ValidationError",
]
