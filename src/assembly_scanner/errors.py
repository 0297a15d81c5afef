"""Error taxonomy for assembly resolution and metadata scanning."""

from __future__ import annotations


class ScanError(RuntimeError):
    """Base error surfaced by every public operation in this package."""


class ScanValidationError(ScanError, ValueError):
    """Blank or otherwise invalid caller input, rejected before any I/O."""


class ResolutionError(ScanError):
    """Project descriptor could not be resolved to a fresh artifact."""


class StalenessCheckError(ResolutionError):
    """Filesystem failure while comparing source and artifact timestamps."""


class MetadataLoadError(ScanError):
    """Module metadata (or a hard dependency) could not be loaded."""


def describe_exception(exc: BaseException) -> str:
    """Return a diagnostic message naming the error type and inner cause.

    Parameters
    ----------
    exc
        Exception to describe.

    Returns
    -------
    str
        Message fragment with the error type, details and inner error text.
    """
    message = f"Error type: {type(exc).__name__}. Details: {exc}"
    inner = exc.__cause__ or exc.__context__
    if inner is not None:
        message = f"Inner error: {inner}. {message}"
    return message


def require_text(value: str | None, *, field: str) -> str:
    """Return ``value`` stripped, rejecting ``None`` and blank strings.

    Parameters
    ----------
    value
        Candidate string.
    field
        Field name used in the error message.

    Returns
    -------
    str
        Stripped value.

    Raises
    ------
    ScanValidationError
        Raised when the value is missing or blank.
    """
    if value is None or not str(value).strip():
        msg = f"{field} cannot be empty"
        raise ScanValidationError(msg)
    return str(value).strip()


__all__ = [
    "MetadataLoadError",
    "ResolutionError",
    "ScanError",
    "ScanValidationError",
    "StalenessCheckError",
    "describe_exception",
    "require_text",
]
