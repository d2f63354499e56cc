"""Base classes for analyzer plugins."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Iterable

from ..context import ContextIndex
from ..errors import AnalyzerFailure
from ..models import AnalysisResult, DocumentTree, PayloadKind


class Analyzer(ABC):
    """Contract for analyzers that extract one kind of finding from a document.

    Analyzers are stateless between calls: everything they need arrives as
    arguments and everything they produce leaves in the returned result.
    """

    name: str = ""
    kind: PayloadKind = PayloadKind.CUSTOM
    provides_context: bool = False

    @abstractmethod
    def analyze(
        self, tree: DocumentTree, text: str, context: ContextIndex
    ) -> AnalysisResult:
        """Produce a single result for the parsed document."""

    def success(
        self, payload: Any, confidence: float, evidence: Iterable[str] = ()
    ) -> AnalysisResult:
        return AnalysisResult.success(self.name, self.kind, payload, confidence, tuple(evidence))

    def failure(self, message: str) -> AnalysisResult:
        error = AnalyzerFailure(self.name, AnalyzerFailure.REPORTED, message)
        return AnalysisResult.failure(self.name, self.kind, error)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r})"


def noisy_or(confidences: Iterable[float]) -> float:
    """Combine independent evidence confidences: ``1 - prod(1 - c)``."""
    remaining = 1.0
    for confidence in confidences:
        remaining *= 1.0 - max(0.0, min(1.0, confidence))
    return 1.0 - remaining


def mean(values: Iterable[float]) -> float:
    items = list(values)
    return sum(items) / len(items) if items else 0.0


def unique(items: Iterable[str]) -> tuple[str, ...]:
    """Deduplicate while keeping first-seen order."""
    seen: dict[str, None] = {}
    for item in items:
        seen.setdefault(item, None)
    return tuple(seen)


__all__ = ["Analyzer", "mean", "noisy_or", "unique"]
