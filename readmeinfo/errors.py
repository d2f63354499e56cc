"""Exception taxonomy for readmeinfo."""

from __future__ import annotations

from pathlib import Path
from typing import Optional


class ReadmeInfoError(Exception):
    """Base class for errors raised by readmeinfo components."""


class ParseError(ReadmeInfoError):
    """Raised when a document cannot be structured at all."""

    def __init__(self, message: str, *, line: Optional[int] = None) -> None:
        super().__init__(message)
        self.line = line


class AnalyzerFailure(ReadmeInfoError):
    """An isolated analyzer failure: raised, timed out, or broke its contract."""

    EXCEPTION = "exception"
    TIMEOUT = "timeout"
    CONTRACT = "contract"
    REPORTED = "reported"

    def __init__(self, analyzer: str, reason: str, message: str) -> None:
        super().__init__(message)
        self.analyzer = analyzer
        self.reason = reason

    @classmethod
    def from_exception(cls, analyzer: str, exc: BaseException) -> "AnalyzerFailure":
        failure = cls(analyzer, cls.EXCEPTION, f"{type(exc).__name__}: {exc}")
        failure.__cause__ = exc
        return failure


class RegistrationError(ReadmeInfoError):
    """Raised when a malformed analyzer is registered."""


class FileSystemError(ReadmeInfoError):
    """Raised by the document reader when a file cannot be read or decoded."""

    def __init__(self, message: str, *, path: Optional[Path] = None) -> None:
        super().__init__(message)
        self.path = path


__all__ = [
    "AnalyzerFailure",
    "FileSystemError",
    "ParseError",
    "ReadmeInfoError",
    "RegistrationError",
]
