"""Tests for the parse pipeline: stage ordering, isolation and degradation."""

from __future__ import annotations

import time
from typing import Any, Iterator

import pytest

from readmeinfo.analyzers import (
    AnalyzerRegistry,
    CommandExtractor,
    DependencyExtractor,
    LanguageDetector,
    MetadataExtractor,
    TestingDetector,
    default_registry,
)
from readmeinfo.config import ReadmeInfoConfig
from readmeinfo.diagnostics import (
    ANALYZER_CONTRACT_VIOLATION,
    ANALYZER_FAILED,
    ANALYZER_REPORTED_FAILURE,
    ANALYZER_TIMEOUT,
    EMPTY_DOCUMENT,
    PARSE_FAILED,
    PIPELINE_CANCELLED,
)
from readmeinfo.document import UNTERMINATED_FENCE
from readmeinfo.errors import AnalyzerFailure
from readmeinfo.models import AnalysisResult, LanguageDetection, PayloadKind, Severity
from readmeinfo.parser import ReadmeParser
from readmeinfo.pipeline import (
    CancellationToken,
    Pipeline,
    PipelineRun,
    PipelineState,
    PipelineStats,
)


class _BrokenMetadata(MetadataExtractor):
    def analyze(self, tree, text, context):
        raise RuntimeError("metadata exploded")


class _SlowAnalyzer:
    name = "SlowAnalyzer"
    kind = PayloadKind.CUSTOM

    def analyze(self, tree, text, context):
        time.sleep(1.0)
        return AnalysisResult.success(self.name, self.kind, {"late": True}, 1.0)


class _WrongReturn:
    name = "WrongReturn"

    def analyze(self, tree, text, context):
        return {"not": "a result"}


class _Reporter:
    name = "Reporter"
    kind = PayloadKind.CUSTOM

    def analyze(self, tree, text, context):
        error = AnalyzerFailure(self.name, AnalyzerFailure.REPORTED, "nothing to report")
        return AnalysisResult.failure(self.name, self.kind, error)


class _Canceller:
    name = "Canceller"
    kind = PayloadKind.CUSTOM

    def __init__(self, token: CancellationToken) -> None:
        self.token = token

    def analyze(self, tree, text, context):
        self.token.cancel()
        return AnalysisResult.success(self.name, self.kind, None, 0.5)


class _LanguagePlugin:
    name = "LanguagePlugin"
    kind = PayloadKind.LANGUAGES

    def analyze(self, tree, text, context):
        payload = LanguageDetection(contexts=(), languages=("Python",))
        return AnalysisResult.success(self.name, self.kind, payload, 0.9)


class _ContextSpy:
    name = "ContextSpy"
    kind = PayloadKind.CUSTOM

    def __init__(self) -> None:
        self.seen: list[str] = []

    def analyze(self, tree, text, context):
        self.seen = context.languages()
        return AnalysisResult.success(self.name, self.kind, None, 1.0)


def _builtins(metadata: Any = None) -> list[Any]:
    return [
        LanguageDetector(),
        CommandExtractor(),
        DependencyExtractor(),
        TestingDetector(),
        metadata if metadata is not None else MetadataExtractor(),
    ]


def _confidences(value: Any) -> Iterator[float]:
    if isinstance(value, dict):
        for key, item in value.items():
            if key == "confidence":
                if isinstance(item, dict):
                    yield from item.values()
                else:
                    yield item
            else:
                yield from _confidences(item)
    elif isinstance(value, list):
        for item in value:
            yield from _confidences(item)


def _codes(diagnostics) -> list[str]:
    return [diagnostic.code for diagnostic in diagnostics]


def test_every_confidence_is_in_unit_interval(sample_readme: str) -> None:
    result = ReadmeParser(default_registry(include_plugins=False)).parse_content(sample_readme)

    values = list(_confidences(result.to_dict()))
    assert values
    assert all(0.0 <= value <= 1.0 for value in values)


def test_identical_input_produces_identical_json(sample_readme: str) -> None:
    first = ReadmeParser(default_registry(include_plugins=False)).parse_content(sample_readme)
    second = ReadmeParser(default_registry(include_plugins=False)).parse_content(sample_readme)

    assert first.to_json() == second.to_json()


def test_commands_inherit_language_from_enclosing_code_block(sample_readme: str) -> None:
    result = ReadmeParser(default_registry(include_plugins=False)).parse_content(sample_readme)

    assert result.success
    install = {command.text: command for command in result.data.commands["install"]}
    npm = install["npm install"]
    pip = install["pip install -r requirements.txt"]
    assert npm.language == "JavaScript"
    assert pip.language == "Python"
    assert npm.confidence > 0.8
    assert pip.confidence > 0.8


def test_failing_analyzer_is_isolated(sample_readme: str) -> None:
    registry = AnalyzerRegistry(_builtins(_BrokenMetadata()))
    result = ReadmeParser(registry).parse_content(sample_readme)

    assert result.success
    assert [info.name for info in result.data.languages] == ["JavaScript", "Python"]
    assert result.data.commands["install"]
    mentions = [item for item in result.warnings if "MetadataExtractor" in item.message]
    assert len(mentions) == 1
    assert mentions[0].severity is Severity.WARNING
    assert mentions[0].code == ANALYZER_FAILED
    assert mentions[0].analyzer == "MetadataExtractor"
    assert result.data.confidence["metadata"] == 0.0


def test_failing_analyzer_is_isolated_when_sequential(sample_readme: str) -> None:
    config = ReadmeInfoConfig()
    config.analyzers.parallel = False
    registry = AnalyzerRegistry(_builtins(_BrokenMetadata()))
    result = ReadmeParser(registry, config=config).parse_content(sample_readme)

    assert result.success
    assert _codes(result.warnings).count(ANALYZER_FAILED) == 1
    assert result.data.languages


def test_unterminated_fence_degrades_to_warning() -> None:
    text = "# Demo\n\n```bash\nnpm install\n"
    result = ReadmeParser(default_registry(include_plugins=False)).parse_content(text)

    assert result.success
    assert _codes(result.warnings).count(UNTERMINATED_FENCE) == 1
    assert not result.errors
    assert [command.text for command in result.data.commands["install"]] == ["npm install"]


def test_go_install_is_categorized_as_build() -> None:
    text = "# Tool\n\n```sh\ngo install ./...\n```\n"
    result = ReadmeParser(default_registry(include_plugins=False)).parse_content(text)

    assert [command.text for command in result.data.commands["build"]] == ["go install ./..."]
    assert result.data.commands["install"] == ()


def test_language_detection_failure_runs_downstream_without_context(sample_readme: str) -> None:
    class _BrokenDetector(LanguageDetector):
        def analyze(self, tree, text, context):
            raise ValueError("no languages today")

    spy = _ContextSpy()
    registry = AnalyzerRegistry([_BrokenDetector(), CommandExtractor(), spy])
    result = ReadmeParser(registry).parse_content(sample_readme)

    assert result.success
    assert spy.seen == []
    assert result.data.languages == ()
    assert result.data.commands["install"]
    assert _codes(result.warnings).count(ANALYZER_FAILED) == 1


def test_downstream_analyzers_receive_context(sample_readme: str) -> None:
    spy = _ContextSpy()
    registry = AnalyzerRegistry([spy, LanguageDetector()])
    ReadmeParser(registry).parse_content(sample_readme)

    assert spy.seen == ["JavaScript", "Python"]


def test_slow_analyzer_times_out_in_isolation() -> None:
    config = ReadmeInfoConfig()
    config.analyzers.parallel = False
    config.analyzers.timeout = 0.2
    registry = AnalyzerRegistry([LanguageDetector(), _SlowAnalyzer()])
    result = Pipeline(registry, config=config).run("# Slow\n")

    assert result.success
    timeouts = [item for item in result.warnings if item.code == ANALYZER_TIMEOUT]
    assert len(timeouts) == 1
    assert "SlowAnalyzer" in timeouts[0].message
    assert "SlowAnalyzer" not in result.data.extensions


def test_slow_analyzer_times_out_in_parallel() -> None:
    config = ReadmeInfoConfig()
    config.analyzers.timeout = 0.2
    registry = AnalyzerRegistry([LanguageDetector(), CommandExtractor(), _SlowAnalyzer()])
    result = Pipeline(registry, config=config).run("# Slow\n\n```sh\nmake\n```\n")

    assert result.success
    assert _codes(result.warnings).count(ANALYZER_TIMEOUT) == 1
    assert result.data.commands["build"]


def test_contract_violation_is_reported_as_error() -> None:
    registry = AnalyzerRegistry([LanguageDetector(), _WrongReturn()])
    result = Pipeline(registry).run("# Project\n")

    assert result.success
    assert _codes(result.errors) == [ANALYZER_CONTRACT_VIOLATION]
    assert result.errors[0].severity is Severity.ERROR


def test_reported_failure_becomes_warning() -> None:
    registry = AnalyzerRegistry([LanguageDetector(), _Reporter()])
    result = Pipeline(registry).run("# Project\n")

    assert _codes(result.warnings).count(ANALYZER_REPORTED_FAILURE) == 1


def test_custom_payloads_are_kept_as_extensions() -> None:
    class _Custom:
        name = "Custom"

        def analyze(self, tree, text, context):
            return AnalysisResult.success("ignored", PayloadKind.CUSTOM, {"blocks": len(tree.blocks)}, 1.0)

    registry = AnalyzerRegistry([LanguageDetector(), _Custom()])
    result = Pipeline(registry).run("# Project\n\nText.\n")

    assert result.data.extensions == {"Custom": {"blocks": 2}}


def test_unparseable_input_fails_the_run() -> None:
    run = Pipeline(AnalyzerRegistry(_builtins())).execute("# Binary\x00data")

    assert run.state is PipelineState.FAILED
    assert run.history == [PipelineState.INITIALIZED, PipelineState.FAILED]
    assert run.result is not None
    assert run.result.success is False
    assert run.result.data is None
    assert _codes(run.result.errors) == [PARSE_FAILED]
    assert run.result.errors[0].severity is Severity.CRITICAL


def test_successful_run_walks_every_state(sample_readme: str) -> None:
    run = Pipeline(AnalyzerRegistry(_builtins())).execute(sample_readme)

    assert run.history == [
        PipelineState.INITIALIZED,
        PipelineState.PARSED,
        PipelineState.LANGUAGE_DETECTED,
        PipelineState.CONTEXT_BUILT,
        PipelineState.ANALYZERS_RUN,
        PipelineState.AGGREGATED,
        PipelineState.FINALIZED,
    ]
    assert [result.analyzer for result in run.results] == [
        "LanguageDetector",
        "CommandExtractor",
        "DependencyExtractor",
        "TestingDetector",
        "MetadataExtractor",
    ]
    assert len(run.context) >= 2


def test_cancel_before_start_discards_results(sample_readme: str) -> None:
    token = CancellationToken()
    token.cancel()
    run = Pipeline(AnalyzerRegistry(_builtins())).execute(sample_readme, token)

    assert run.state is PipelineState.CANCELLED
    assert run.result.success is False
    assert run.result.data is None
    assert _codes(run.result.errors) == [PIPELINE_CANCELLED]


def test_cancel_during_analysis_stops_before_aggregation(sample_readme: str) -> None:
    token = CancellationToken()
    registry = AnalyzerRegistry([LanguageDetector(), _Canceller(token)])
    run = Pipeline(registry).execute(sample_readme, token)

    assert run.state is PipelineState.CANCELLED
    assert PipelineState.ANALYZERS_RUN in run.history
    assert PipelineState.AGGREGATED not in run.history
    assert run.project is None
    assert run.results == []
    assert "aggregation" in run.result.errors[0].message


def test_empty_document_warns_but_succeeds() -> None:
    result = Pipeline(AnalyzerRegistry(_builtins())).run("")

    assert result.success
    assert EMPTY_DOCUMENT in _codes(result.warnings)
    assert result.data.languages == ()


def test_bytes_input_is_decoded() -> None:
    result = Pipeline(AnalyzerRegistry(_builtins())).run(b"\xef\xbb\xbf# Bytes Project\n")

    assert result.success
    assert result.data.metadata.name == "Bytes Project"


def test_registry_is_frozen_after_first_run() -> None:
    registry = AnalyzerRegistry(_builtins())
    Pipeline(registry).run("# Project\n")

    assert registry.frozen


def test_invalid_transition_is_rejected() -> None:
    run = PipelineRun()

    with pytest.raises(RuntimeError):
        run.advance(PipelineState.FINALIZED)


def test_malformed_builtin_payload_is_a_contract_violation(sample_readme: str) -> None:
    registry = AnalyzerRegistry(_builtins() + [_LanguagePlugin()])
    result = ReadmeParser(registry).parse_content(sample_readme)

    assert result.success
    assert _codes(result.errors) == [ANALYZER_CONTRACT_VIOLATION]
    assert result.errors[0].analyzer == "LanguagePlugin"
    assert "languages[0]" in result.errors[0].message
    assert [info.name for info in result.data.languages] == ["JavaScript", "Python"]


def test_list_item_fence_commands_are_extracted() -> None:
    text = "# Demo\n\n1. Install:\n\n    ```bash\n    npm install\n    ```\n"
    result = ReadmeParser(default_registry(include_plugins=False)).parse_content(text)

    install = result.data.commands["install"]
    assert [command.text for command in install] == ["npm install"]
    assert install[0].line == 6


def test_run_records_stage_and_analyzer_timings(sample_readme: str) -> None:
    run = Pipeline(AnalyzerRegistry(_builtins())).execute(sample_readme)

    metrics = run.metrics
    assert list(metrics.stages) == [
        "parse",
        "language_detection",
        "context",
        "analysis",
        "aggregation",
    ]
    assert sorted(metrics.analyzers) == sorted(
        [
            "LanguageDetector",
            "CommandExtractor",
            "DependencyExtractor",
            "TestingDetector",
            "MetadataExtractor",
        ]
    )
    assert all(value >= 0.0 for value in metrics.stages.values())
    assert metrics.total >= max(metrics.stages.values())
    assert metrics.completeness == 1.0
    assert set(metrics.to_dict()) == {"total", "stages", "analyzers", "completeness"}


def test_timed_out_analyzer_is_charged_the_timeout() -> None:
    config = ReadmeInfoConfig()
    config.analyzers.parallel = False
    config.analyzers.timeout = 0.1
    registry = AnalyzerRegistry([LanguageDetector(), _SlowAnalyzer()])

    run = Pipeline(registry, config=config).execute("# Project\n")

    assert run.metrics.analyzers["SlowAnalyzer"] == pytest.approx(0.1)


def test_failed_parse_only_times_the_parse_stage() -> None:
    run = Pipeline(AnalyzerRegistry(_builtins())).execute("# Binary\x00data")

    assert list(run.metrics.stages) == ["parse"]
    assert run.metrics.analyzers == {}
    assert run.metrics.completeness == 0.0


def test_completeness_without_commands_or_context() -> None:
    run = Pipeline(AnalyzerRegistry(_builtins())).execute("# Plain\n\nJust prose.\n")

    assert run.state is PipelineState.FINALIZED
    assert run.metrics.completeness == pytest.approx(0.4)


def test_stats_and_health_track_every_run(sample_readme: str) -> None:
    pipeline = Pipeline(AnalyzerRegistry(_builtins()))
    assert pipeline.stats() == PipelineStats()
    assert pipeline.health()["status"] == "healthy"

    pipeline.run(sample_readme)
    pipeline.run("# Second\n")
    stats = pipeline.stats()
    assert stats.executions == 2
    assert stats.failures == 0
    assert stats.last_state is PipelineState.FINALIZED
    assert stats.average_duration == pytest.approx(stats.total_duration / 2)

    pipeline.run("# Binary\x00data")
    health = pipeline.health()
    assert health["status"] == "degraded"
    assert health["executions"] == 3
    assert health["failures"] == 1
    assert health["last_state"] == "failed"

    pipeline.reset_stats()
    assert pipeline.stats().executions == 0


def test_run_without_a_result_raises(monkeypatch) -> None:
    pipeline = Pipeline(AnalyzerRegistry(_builtins()))
    monkeypatch.setattr(pipeline, "execute", lambda text, cancel_token=None: PipelineRun())

    with pytest.raises(RuntimeError, match="without a result"):
        pipeline.run("# Project\n")
