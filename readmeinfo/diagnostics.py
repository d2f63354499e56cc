"""Diagnostic collection and structured log export."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, List, Optional, Sequence, Tuple

from .errors import AnalyzerFailure, FileSystemError, ParseError
from .models import Diagnostic, ParseWarning, Severity

ANALYZER_FAILED = "ANALYZER_FAILED"
ANALYZER_TIMEOUT = "ANALYZER_TIMEOUT"
ANALYZER_CONTRACT_VIOLATION = "ANALYZER_CONTRACT_VIOLATION"
ANALYZER_REPORTED_FAILURE = "ANALYZER_REPORTED_FAILURE"
PARSE_FAILED = "PARSE_FAILED"
FILE_UNREADABLE = "FILE_UNREADABLE"
PIPELINE_CANCELLED = "PIPELINE_CANCELLED"
NO_ANALYSIS_RESULTS = "NO_ANALYSIS_RESULTS"
EMPTY_DOCUMENT = "EMPTY_DOCUMENT"
LOW_CONFIDENCE = "LOW_CONFIDENCE"
UNMATCHED_TEST_EVIDENCE = "UNMATCHED_TEST_EVIDENCE"
INCOMPATIBLE_FRAMEWORKS = "INCOMPATIBLE_FRAMEWORKS"
VERSION_CONFLICT = "VERSION_CONFLICT"

_LOG_LEVELS = {
    Severity.INFO: logging.INFO,
    Severity.WARNING: logging.WARNING,
    Severity.ERROR: logging.ERROR,
    Severity.CRITICAL: logging.CRITICAL,
}

_FAILURE_CODES = {
    AnalyzerFailure.EXCEPTION: (ANALYZER_FAILED, Severity.WARNING),
    AnalyzerFailure.TIMEOUT: (ANALYZER_TIMEOUT, Severity.WARNING),
    AnalyzerFailure.CONTRACT: (ANALYZER_CONTRACT_VIOLATION, Severity.ERROR),
    AnalyzerFailure.REPORTED: (ANALYZER_REPORTED_FAILURE, Severity.WARNING),
}

_BLOCKING = frozenset({Severity.ERROR, Severity.CRITICAL})


class DiagnosticsCollector:
    """Accumulates diagnostics for a single pipeline run.

    ``warnings`` holds info and warning diagnostics, ``errors`` holds error
    and critical ones, both in the order they were recorded.
    """

    def __init__(self) -> None:
        self._items: List[Diagnostic] = []
        self._lock = threading.Lock()

    def add(self, diagnostic: Diagnostic) -> Diagnostic:
        with self._lock:
            self._items.append(diagnostic)
        return diagnostic

    def record(
        self,
        severity: Severity,
        category: str,
        code: str,
        message: str,
        *,
        remediation: Sequence[str] = (),
        suggestions: Sequence[str] = (),
        analyzer: Optional[str] = None,
        line: Optional[int] = None,
    ) -> Diagnostic:
        return self.add(
            Diagnostic(
                severity=severity,
                category=category,
                code=code,
                message=message,
                remediation=tuple(remediation),
                suggestions=tuple(suggestions),
                analyzer=analyzer,
                line=line,
            )
        )

    def analyzer_failure(
        self, failure: AnalyzerFailure, *, timeout: float | None = None
    ) -> Diagnostic:
        code, severity = _FAILURE_CODES.get(
            failure.reason, (ANALYZER_FAILED, Severity.WARNING)
        )
        if failure.reason == AnalyzerFailure.TIMEOUT:
            limit = f" after {timeout:g}s" if timeout is not None else ""
            message = f"Analyzer {failure.analyzer} timed out{limit}; its findings were skipped"
            remediation = ("Increase analyzers.timeout or disable the analyzer",)
        elif failure.reason == AnalyzerFailure.CONTRACT:
            message = f"Analyzer {failure.analyzer} broke the analyzer contract: {failure}"
            remediation = ("Return an AnalysisResult from analyze()",)
        else:
            message = f"Analyzer {failure.analyzer} failed: {failure}"
            remediation = ("Re-run with --verbose to see the traceback",)
        return self.record(
            severity,
            "analyzer",
            code,
            message,
            remediation=remediation,
            analyzer=failure.analyzer,
        )

    def parse_failure(self, error: ParseError) -> Diagnostic:
        return self.record(
            Severity.CRITICAL,
            "parse",
            PARSE_FAILED,
            f"Document could not be parsed: {error}",
            remediation=("Make sure the input is UTF-8 markdown text",),
            line=error.line,
        )

    def parse_warning(self, warning: ParseWarning) -> Diagnostic:
        return self.record(
            Severity.WARNING,
            "parse",
            warning.code,
            warning.message,
            remediation=("Close the code fence with a matching marker",),
            line=warning.line,
        )

    def filesystem_failure(self, error: FileSystemError) -> Diagnostic:
        return self.record(
            Severity.CRITICAL,
            "filesystem",
            FILE_UNREADABLE,
            f"Could not read document: {error}",
            remediation=("Check that the path exists and is a readable UTF-8 file",),
        )

    def cancelled(self, stage: str) -> Diagnostic:
        return self.record(
            Severity.CRITICAL,
            "pipeline",
            PIPELINE_CANCELLED,
            f"Parsing was cancelled before the {stage} stage; partial results were discarded",
        )

    def extend(self, diagnostics: Iterable[Diagnostic]) -> None:
        for diagnostic in diagnostics:
            self.add(diagnostic)

    @property
    def diagnostics(self) -> Tuple[Diagnostic, ...]:
        with self._lock:
            return tuple(self._items)

    @property
    def errors(self) -> Tuple[Diagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.severity in _BLOCKING)

    @property
    def warnings(self) -> Tuple[Diagnostic, ...]:
        return tuple(item for item in self.diagnostics if item.severity not in _BLOCKING)

    def emit(self, logger: logging.Logger) -> None:
        """Write every diagnostic as a structured log record."""
        for diagnostic in self.diagnostics:
            logger.log(
                _LOG_LEVELS[diagnostic.severity],
                "%s: %s",
                diagnostic.code,
                diagnostic.message,
                extra={"diagnostic": diagnostic.to_dict()},
            )

    def __len__(self) -> int:
        return len(self.diagnostics)


__all__ = [
    "ANALYZER_CONTRACT_VIOLATION",
    "ANALYZER_FAILED",
    "ANALYZER_REPORTED_FAILURE",
    "ANALYZER_TIMEOUT",
    "DiagnosticsCollector",
    "EMPTY_DOCUMENT",
    "FILE_UNREADABLE",
    "INCOMPATIBLE_FRAMEWORKS",
    "LOW_CONFIDENCE",
    "NO_ANALYSIS_RESULTS",
    "PARSE_FAILED",
    "PIPELINE_CANCELLED",
    "UNMATCHED_TEST_EVIDENCE",
    "VERSION_CONFLICT",
]
