"""
Unified hierarchy of error types. Business-rule violations all inherit from
`DocFoldersError`. Some also inherit from standard errors like FileNotFoundError
so callers that only know the standard errors still do the right thing.

Failures of the environment (permission denied, disk full, etc.) are never wrapped:
they propagate as the original `OSError`.
"""

from typing import Tuple, Type


class DocFoldersError(ValueError):
    """Base class for docfolders errors."""

    pass


class UnexpectedError(DocFoldersError):
    """For unexpected errors or runtime check failures."""

    pass


class SelfExplanatoryError(DocFoldersError):
    """Common errors that arise from 'normal' problems that are largely self-explanatory,
    i.e., no stack trace should be necessary when reporting to the user."""

    pass


class InvalidArgumentError(SelfExplanatoryError):
    """Raised when a required input is empty or blank, or a name or path is unsafe."""

    pass


class NotFoundError(SelfExplanatoryError, FileNotFoundError):
    """Raised when a target document folder or file does not exist."""

    pass


class ConflictError(SelfExplanatoryError, FileExistsError):
    """Raised when an operation would overwrite something that already exists."""

    pass


class NoContentError(SelfExplanatoryError):
    """Raised when nothing usable could be extracted from any source."""

    pass


NONFATAL_EXCEPTIONS: Tuple[Type[Exception], ...] = (
    SelfExplanatoryError,
    OSError,
    UnicodeDecodeError,
)
"""Exceptions that are not fatal and usually don't merit a full stack trace."""


def is_fatal(exception: Exception) -> bool:
    for e in NONFATAL_EXCEPTIONS:
        if isinstance(exception, e):
            return False
    return True


## Tests


def test_error_kinds():
    not_found = NotFoundError("Document folder does not exist: /tmp/x")
    conflict = ConflictError("Target document folder already exists: /tmp/y")

    assert isinstance(not_found, DocFoldersError)
    assert isinstance(not_found, FileNotFoundError)
    assert isinstance(conflict, FileExistsError)
    assert not isinstance(conflict, InvalidArgumentError)
    assert str(not_found) == "Document folder does not exist: /tmp/x"

    assert not is_fatal(NoContentError("No content"))
    assert not is_fatal(PermissionError("denied"))
    assert is_fatal(UnexpectedError("bug"))
    assert is_fatal(KeyError("key"))
