"""Pipeline orchestration: parse, detect languages, build context, analyze, aggregate."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, TimeoutError as FutureTimeout, wait
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

from .aggregator import PAYLOAD_TYPES, Aggregator
from .analyzers import AnalyzerRegistry, analyzer_kind
from .config import ReadmeInfoConfig
from .context import ContextIndex, build as build_context
from .diagnostics import EMPTY_DOCUMENT, DiagnosticsCollector
from .document import DocumentParser
from .errors import AnalyzerFailure, ParseError
from .logging import get_logger
from .models import (
    AnalysisResult,
    DocumentTree,
    LanguageContext,
    ParseResult,
    ProjectInfo,
    PayloadKind,
    Severity,
    field_type_errors,
)


class PipelineState(str, Enum):
    INITIALIZED = "initialized"
    PARSED = "parsed"
    LANGUAGE_DETECTED = "language-detected"
    CONTEXT_BUILT = "context-built"
    ANALYZERS_RUN = "analyzers-run"
    AGGREGATED = "aggregated"
    FINALIZED = "finalized"
    FAILED = "failed"
    CANCELLED = "cancelled"


TRANSITIONS: Dict[PipelineState, frozenset] = {
    PipelineState.INITIALIZED: frozenset(
        {PipelineState.PARSED, PipelineState.FAILED, PipelineState.CANCELLED}
    ),
    PipelineState.PARSED: frozenset({PipelineState.LANGUAGE_DETECTED, PipelineState.CANCELLED}),
    PipelineState.LANGUAGE_DETECTED: frozenset(
        {PipelineState.CONTEXT_BUILT, PipelineState.CANCELLED}
    ),
    PipelineState.CONTEXT_BUILT: frozenset({PipelineState.ANALYZERS_RUN, PipelineState.CANCELLED}),
    PipelineState.ANALYZERS_RUN: frozenset({PipelineState.AGGREGATED, PipelineState.CANCELLED}),
    PipelineState.AGGREGATED: frozenset({PipelineState.FINALIZED, PipelineState.CANCELLED}),
    PipelineState.FINALIZED: frozenset(),
    PipelineState.FAILED: frozenset(),
    PipelineState.CANCELLED: frozenset(),
}


class CancellationToken:
    """Thread-safe flag a caller sets to stop a run at the next stage boundary."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class _Cancelled(Exception):
    def __init__(self, stage: str) -> None:
        super().__init__(stage)
        self.stage = stage


@dataclass
class PipelineMetrics:
    """Wall-clock timings of one run, in seconds."""

    total: float = 0.0
    stages: Dict[str, float] = field(default_factory=dict)
    analyzers: Dict[str, float] = field(default_factory=dict)
    completeness: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": round(self.total, 6),
            "stages": {name: round(value, 6) for name, value in self.stages.items()},
            "analyzers": {name: round(value, 6) for name, value in self.analyzers.items()},
            "completeness": self.completeness,
        }


@dataclass
class PipelineStats:
    """Totals across every run of one :class:`Pipeline`."""

    executions: int = 0
    failures: int = 0
    last_duration: float = 0.0
    total_duration: float = 0.0
    last_state: Optional[PipelineState] = None

    @property
    def average_duration(self) -> float:
        return self.total_duration / self.executions if self.executions else 0.0


@dataclass
class PipelineRun:
    """State of a single parse; never shared between runs."""

    state: PipelineState = PipelineState.INITIALIZED
    history: List[PipelineState] = field(default_factory=lambda: [PipelineState.INITIALIZED])
    diagnostics: DiagnosticsCollector = field(default_factory=DiagnosticsCollector)
    tree: Optional[DocumentTree] = None
    context: ContextIndex = field(default_factory=ContextIndex)
    results: List[AnalysisResult] = field(default_factory=list)
    project: Optional[ProjectInfo] = None
    result: Optional[ParseResult] = None
    metrics: PipelineMetrics = field(default_factory=PipelineMetrics)

    def advance(self, target: PipelineState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise RuntimeError(f"Invalid pipeline transition {self.state.value} -> {target.value}")
        self.state = target
        self.history.append(target)


class Pipeline:
    """Runs the analyzers of a registry over one document per call."""

    def __init__(
        self,
        registry: AnalyzerRegistry,
        *,
        config: ReadmeInfoConfig | None = None,
        document_parser: DocumentParser | None = None,
        aggregator: Aggregator | None = None,
    ) -> None:
        self.registry = registry
        self.config = config or ReadmeInfoConfig()
        self.document_parser = document_parser or DocumentParser()
        self.aggregator = aggregator or Aggregator(self.config.aggregation)
        self.logger = get_logger("pipeline")
        self._stats = PipelineStats()
        self._stats_lock = threading.Lock()

    def run(self, text: str | bytes, cancel_token: CancellationToken | None = None) -> ParseResult:
        run = self.execute(text, cancel_token)
        if run.result is None:
            raise RuntimeError(f"Pipeline run ended in state {run.state.value} without a result")
        return run.result

    def execute(
        self, text: str | bytes, cancel_token: CancellationToken | None = None
    ) -> PipelineRun:
        """Run every stage and return the full run record.

        The record carries the state history, the diagnostics and a
        :class:`PipelineMetrics` block with stage and analyzer timings.
        """
        self.registry.freeze()
        run = PipelineRun()
        started = time.perf_counter()
        self.logger.info("Starting parse with %d analyzers", len(self.registry))
        try:
            self._checkpoint(cancel_token, "parse")
            with self._stage(run, "parse"):
                tree = self._parse(run, text)
            if tree is None:
                return run

            source = text if isinstance(text, str) else bytes(text).decode("utf-8-sig")

            self._checkpoint(cancel_token, "language detection")
            with self._stage(run, "language_detection"):
                language_result = self._detect_languages(run, tree, source)

            self._checkpoint(cancel_token, "context")
            with self._stage(run, "context"):
                run.context = build_context(self._contexts(language_result))
            run.advance(PipelineState.CONTEXT_BUILT)
            self.logger.debug("Built context index with %d spans", len(run.context))

            self._checkpoint(cancel_token, "analysis")
            with self._stage(run, "analysis"):
                downstream = self._run_analyzers(
                    self.registry.downstream(), tree, source, run.context, run.metrics
                )
            run.results = ([language_result] if language_result else []) + downstream
            run.advance(PipelineState.ANALYZERS_RUN)

            self._checkpoint(cancel_token, "aggregation")
            with self._stage(run, "aggregation"):
                for result in run.results:
                    if result.error is not None:
                        run.diagnostics.analyzer_failure(
                            result.error, timeout=self.config.analyzers.timeout
                        )
                run.project = self.aggregator.aggregate(run.results, run.diagnostics)
            run.advance(PipelineState.AGGREGATED)

            self._checkpoint(cancel_token, "finalize")
            run.result = ParseResult(
                success=True,
                data=run.project,
                errors=run.diagnostics.errors,
                warnings=run.diagnostics.warnings,
            )
            run.advance(PipelineState.FINALIZED)
        except _Cancelled as cancelled:
            self.logger.info("Parse cancelled before %s", cancelled.stage)
            run.diagnostics.cancelled(cancelled.stage)
            run.results = []
            run.project = None
            run.advance(PipelineState.CANCELLED)
            run.result = self._failed(run)
        finally:
            run.diagnostics.emit(self.logger)
            run.metrics.total = time.perf_counter() - started
            run.metrics.completeness = self._completeness(run)
            self._record(run)
            self.logger.info(
                "Parse finished in state %s after %.3fs", run.state.value, run.metrics.total
            )
        return run

    def stats(self) -> PipelineStats:
        """Return a snapshot of the totals across every run so far."""
        with self._stats_lock:
            return replace(self._stats)

    def health(self) -> Dict[str, Any]:
        """Summarise :meth:`stats` as a health report.

        The pipeline is ``degraded`` when its most recent run did not finish.
        """
        stats = self.stats()
        degraded = stats.last_state is not None and stats.last_state is not PipelineState.FINALIZED
        return {
            "status": "degraded" if degraded else "healthy",
            "executions": stats.executions,
            "failures": stats.failures,
            "last_duration": round(stats.last_duration, 6),
            "average_duration": round(stats.average_duration, 6),
            "last_state": stats.last_state.value if stats.last_state else None,
        }

    def reset_stats(self) -> None:
        with self._stats_lock:
            self._stats = PipelineStats()

    # Stages

    def _parse(self, run: PipelineRun, text: str | bytes) -> Optional[DocumentTree]:
        try:
            tree = self.document_parser.parse(text)
        except ParseError as exc:
            self.logger.warning("Document could not be parsed: %s", exc)
            run.diagnostics.parse_failure(exc)
            run.advance(PipelineState.FAILED)
            run.result = self._failed(run)
            return None
        run.tree = tree
        for warning in tree.warnings:
            run.diagnostics.parse_warning(warning)
        if not tree.blocks:
            run.diagnostics.record(
                Severity.WARNING,
                "parse",
                EMPTY_DOCUMENT,
                "Document is empty; no project information could be extracted",
                remediation=("Pass a README with at least a title or a code block",),
            )
        run.advance(PipelineState.PARSED)
        self.logger.debug("Parsed document into %d blocks", len(tree.blocks))
        return tree

    def _detect_languages(
        self, run: PipelineRun, tree: DocumentTree, text: str
    ) -> Optional[AnalysisResult]:
        provider = self.registry.context_provider()
        result: Optional[AnalysisResult] = None
        if provider is not None:
            result = self._run_analyzers(
                [provider], tree, text, ContextIndex(), run.metrics
            )[0]
            if not result.ok:
                self.logger.warning(
                    "Language detection failed; continuing without language context"
                )
        run.advance(PipelineState.LANGUAGE_DETECTED)
        return result

    @staticmethod
    def _contexts(result: Optional[AnalysisResult]) -> List[LanguageContext]:
        if result is None or not result.ok:
            return []
        contexts = getattr(result.payload, "contexts", ())
        return [ctx for ctx in contexts or () if isinstance(ctx, LanguageContext)]

    # Analyzer execution

    def _run_analyzers(
        self,
        analyzers: Sequence[Any],
        tree: DocumentTree,
        text: str,
        context: ContextIndex,
        metrics: PipelineMetrics,
    ) -> List[AnalysisResult]:
        if not analyzers:
            return []
        if self.config.analyzers.parallel and len(analyzers) > 1:
            return self._run_parallel(analyzers, tree, text, context, metrics)
        return [
            self._run_isolated(analyzer, tree, text, context, metrics) for analyzer in analyzers
        ]

    def _run_isolated(
        self,
        analyzer: Any,
        tree: DocumentTree,
        text: str,
        context: ContextIndex,
        metrics: PipelineMetrics,
    ) -> AnalysisResult:
        timeout = self.config.analyzers.timeout
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="readmeinfo-analyzer")
        try:
            future = executor.submit(self._invoke, analyzer, tree, text, context)
            try:
                result, elapsed = future.result(timeout=timeout)
            except FutureTimeout:
                metrics.analyzers[analyzer.name] = timeout
                return self._timeout(analyzer, timeout)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        metrics.analyzers[analyzer.name] = elapsed
        if elapsed > timeout:
            return self._timeout(analyzer, timeout)
        return result

    def _run_parallel(
        self,
        analyzers: Sequence[Any],
        tree: DocumentTree,
        text: str,
        context: ContextIndex,
        metrics: PipelineMetrics,
    ) -> List[AnalysisResult]:
        settings = self.config.analyzers
        workers = max(1, min(settings.max_workers, len(analyzers)))
        # Queued analyzers only start once a worker frees up, so the barrier
        # waits one timeout per wave of workers.
        waves = -(-len(analyzers) // workers)
        executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="readmeinfo-analyzer")
        futures: List[Future] = []
        try:
            for analyzer in analyzers:
                futures.append(executor.submit(self._invoke, analyzer, tree, text, context))
            wait(futures, timeout=settings.timeout * waves)
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        results: List[AnalysisResult] = []
        for analyzer, future in zip(analyzers, futures):
            if not future.done() or future.cancelled():
                metrics.analyzers[analyzer.name] = settings.timeout
                results.append(self._timeout(analyzer, settings.timeout))
                continue
            result, elapsed = future.result()
            metrics.analyzers[analyzer.name] = elapsed
            if elapsed > settings.timeout:
                results.append(self._timeout(analyzer, settings.timeout))
            else:
                results.append(result)
        return results

    def _invoke(
        self, analyzer: Any, tree: DocumentTree, text: str, context: ContextIndex
    ) -> Tuple[AnalysisResult, float]:
        name = analyzer.name
        started = time.perf_counter()
        self.logger.debug("Running analyzer %s", name)
        try:
            produced = analyzer.analyze(tree, text, context)
        except Exception as exc:
            elapsed = time.perf_counter() - started
            self._log_exception(f"Analyzer {name} failed", exc)
            failure = AnalyzerFailure.from_exception(name, exc)
            return AnalysisResult.failure(name, analyzer_kind(analyzer), failure), elapsed
        elapsed = time.perf_counter() - started
        self.logger.debug("Analyzer %s finished in %.3fs", name, elapsed)
        return self._check_result(analyzer, produced), elapsed

    def _check_result(self, analyzer: Any, produced: object) -> AnalysisResult:
        name = analyzer.name
        if not isinstance(produced, AnalysisResult):
            failure = AnalyzerFailure(
                name,
                AnalyzerFailure.CONTRACT,
                f"analyze() returned {type(produced).__name__}, expected AnalysisResult",
            )
            self.logger.warning("Analyzer %s broke its contract: %s", name, failure)
            return AnalysisResult.failure(name, analyzer_kind(analyzer), failure)
        if produced.error is not None:
            error = produced.error
            if error.analyzer != name:
                error = AnalyzerFailure(name, AnalyzerFailure.REPORTED, str(error))
            self.logger.warning("Analyzer %s reported a failure: %s", name, error)
            return AnalysisResult.failure(name, produced.kind, error)
        expected = PAYLOAD_TYPES.get(produced.kind)
        if expected is not None and isinstance(produced.payload, expected):
            problems = field_type_errors(produced.payload)
            if problems:
                failure = AnalyzerFailure(
                    name,
                    AnalyzerFailure.CONTRACT,
                    f"{PayloadKind(produced.kind).value} payload is malformed: "
                    + "; ".join(problems[:3]),
                )
                self.logger.warning("Analyzer %s broke its contract: %s", name, failure)
                return AnalysisResult.failure(name, produced.kind, failure)
        if produced.analyzer != name:
            produced = replace(produced, analyzer=name)
        return produced

    def _timeout(self, analyzer: Any, timeout: float) -> AnalysisResult:
        name = analyzer.name
        self.logger.warning("Analyzer %s exceeded the %gs timeout", name, timeout)
        failure = AnalyzerFailure(name, AnalyzerFailure.TIMEOUT, f"exceeded {timeout:g}s")
        return AnalysisResult.failure(name, analyzer_kind(analyzer), failure)

    # Helpers

    @contextmanager
    def _stage(self, run: PipelineRun, name: str) -> Iterator[None]:
        started = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - started
            run.metrics.stages[name] = elapsed
            self.logger.debug("Stage %s took %.3fs", name, elapsed)

    @staticmethod
    def _completeness(run: PipelineRun) -> float:
        """Share of the pipeline's outputs that were produced, in [0, 1]."""
        score = 0.0
        if run.tree is not None:
            score += 0.2
        if len(run.context):
            score += 0.3
        if run.project is not None and any(run.project.commands.values()):
            score += 0.3
        if run.state is PipelineState.FINALIZED:
            score += 0.2
        return round(min(score, 1.0), 4)

    def _record(self, run: PipelineRun) -> None:
        with self._stats_lock:
            stats = self._stats
            stats.executions += 1
            if run.state is not PipelineState.FINALIZED:
                stats.failures += 1
            stats.last_duration = run.metrics.total
            stats.total_duration += run.metrics.total
            stats.last_state = run.state

    @staticmethod
    def _checkpoint(cancel_token: CancellationToken | None, stage: str) -> None:
        if cancel_token is not None and cancel_token.cancelled:
            raise _Cancelled(stage)

    @staticmethod
    def _failed(run: PipelineRun) -> ParseResult:
        return ParseResult(
            success=False,
            data=None,
            errors=run.diagnostics.errors,
            warnings=run.diagnostics.warnings,
        )

    def _log_exception(self, message: str, exc: Exception) -> None:
        if self.logger.isEnabledFor(logging.DEBUG):
            self.logger.exception("%s: %s", message, exc)
        else:
            self.logger.warning("%s: %s", message, exc)


__all__ = [
    "CancellationToken",
    "Pipeline",
    "PipelineMetrics",
    "PipelineRun",
    "PipelineState",
    "PipelineStats",
    "TRANSITIONS",
]
