"""Tests for result aggregation and conflict resolution."""

from __future__ import annotations

import pytest

from readmeinfo.aggregator import Aggregator, category_confidence
from readmeinfo.config import AggregationSettings
from readmeinfo.diagnostics import DiagnosticsCollector
from readmeinfo.errors import AnalyzerFailure
from readmeinfo.models import (
    AnalysisResult,
    Command,
    CommandCategory,
    CommandSet,
    Dependency,
    DependencyInfo,
    FrameworkInfo,
    LanguageDetection,
    LanguageInfo,
    PayloadKind,
    ProjectMetadata,
)


def _languages(*frameworks: FrameworkInfo, analyzer: str = "LanguageDetector") -> AnalysisResult:
    payload = LanguageDetection(
        contexts=(),
        languages=(LanguageInfo("JavaScript", 0.9, ("tag js",), 3),),
        frameworks=frameworks,
        primary="JavaScript",
    )
    return AnalysisResult.success(analyzer, PayloadKind.LANGUAGES, payload, 0.9, ("tag js",))


def _dependencies(*dependencies: Dependency, analyzer: str = "DependencyExtractor") -> AnalysisResult:
    payload = DependencyInfo(dependencies=dependencies)
    return AnalysisResult.success(analyzer, PayloadKind.DEPENDENCIES, payload, 0.8, ("install",))


def _codes(diagnostics: DiagnosticsCollector) -> list[str]:
    return [item.code for item in diagnostics.diagnostics]


def test_category_confidence_weighs_by_evidence_and_failures() -> None:
    good = AnalysisResult.success(
        "A", PayloadKind.COMMANDS, CommandSet(()), 0.8, ("one", "two", "three")
    )
    failed = AnalysisResult.failure(
        "B", PayloadKind.COMMANDS, AnalyzerFailure("B", AnalyzerFailure.EXCEPTION, "boom")
    )

    # (3 * 0.8 + 0) / 4 = 0.6, then three sources close 10% of the gap
    assert category_confidence([good, failed]) == pytest.approx(0.64)
    assert category_confidence([]) == 0.0
    assert category_confidence([failed]) == 0.0


def test_no_results_yields_empty_info_and_warning() -> None:
    diagnostics = DiagnosticsCollector()

    project = Aggregator().aggregate([], diagnostics)

    assert project.primary_language is None
    assert set(project.commands) == {"install", "build", "test", "run", "other"}
    assert all(value == 0.0 for value in project.confidence.values())
    assert _codes(diagnostics) == ["NO_ANALYSIS_RESULTS"]


def test_duplicate_frameworks_merge_to_highest_confidence() -> None:
    low = FrameworkInfo("React", "JavaScript", 0.6, ("mention",))
    high = FrameworkInfo("React", "JavaScript", 0.9, ("package react",))
    results = [_languages(low), _dependencies()]
    results[1] = AnalysisResult.success(
        "DependencyExtractor",
        PayloadKind.DEPENDENCIES,
        DependencyInfo(frameworks=(high,)),
        0.8,
        ("install",),
    )

    project = Aggregator().aggregate(results, DiagnosticsCollector())

    (react,) = project.frameworks
    assert react.confidence == 0.9
    assert react.evidence == ("mention", "package react")
    assert [conflict.kind for conflict in project.conflicts] == ["duplicate"]


def test_incompatible_frameworks_with_clear_gap() -> None:
    diagnostics = DiagnosticsCollector()
    result = _languages(
        FrameworkInfo("React", "JavaScript", 0.9),
        FrameworkInfo("Vue.js", "JavaScript", 0.5),
    )

    project = Aggregator().aggregate([result], diagnostics)

    statuses = {framework.name: framework.status for framework in project.frameworks}
    assert statuses == {"React": "primary", "Vue.js": "secondary"}
    assert "INCOMPATIBLE_FRAMEWORKS" in _codes(diagnostics)
    (conflict,) = project.conflicts
    assert conflict.resolution == "React is primary"


def test_incompatible_frameworks_within_margin_need_review() -> None:
    diagnostics = DiagnosticsCollector()
    result = _languages(
        FrameworkInfo("React", "JavaScript", 0.8),
        FrameworkInfo("Vue.js", "JavaScript", 0.75),
    )

    project = Aggregator().aggregate([result], diagnostics)

    assert {framework.status for framework in project.frameworks} == {"needs-review"}
    (warning,) = [item for item in diagnostics.warnings if item.code == "INCOMPATIBLE_FRAMEWORKS"]
    assert warning.suggestions == ("React", "Vue.js")


def test_conflict_margin_is_configurable() -> None:
    result = _languages(
        FrameworkInfo("React", "JavaScript", 0.8),
        FrameworkInfo("Vue.js", "JavaScript", 0.75),
    )
    aggregator = Aggregator(AggregationSettings(conflict_margin=0.01))

    project = aggregator.aggregate([result], DiagnosticsCollector())

    statuses = {framework.name: framework.status for framework in project.frameworks}
    assert statuses == {"React": "primary", "Vue.js": "secondary"}


def test_close_version_conflict_needs_review() -> None:
    diagnostics = DiagnosticsCollector()
    results = [
        _dependencies(Dependency("react", "18.2.0", "npm", 0.8, ("a",))),
        _dependencies(
            Dependency("react", "17.0.2", "npm", 0.75, ("b",)), analyzer="OtherDeps"
        ),
    ]

    project = Aggregator().aggregate(results, diagnostics)

    versions = {dep.version: dep.status for dep in project.dependencies.dependencies}
    assert versions == {"18.2.0": "needs-review", "17.0.2": "needs-review"}
    assert "VERSION_CONFLICT" in _codes(diagnostics)


def test_clear_version_conflict_keeps_top_version() -> None:
    diagnostics = DiagnosticsCollector()
    results = [
        _dependencies(
            Dependency("react", "18.2.0", "npm", 0.9, ("a",)),
            Dependency("react", None, "npm", 0.5, ("c",)),
        ),
        _dependencies(
            Dependency("react", "17.0.2", "npm", 0.5, ("b",)), analyzer="OtherDeps"
        ),
    ]

    project = Aggregator().aggregate(results, diagnostics)

    (react,) = project.dependencies.dependencies
    assert react.version == "18.2.0"
    assert set(react.evidence) == {"a", "b", "c"}
    assert "VERSION_CONFLICT" not in _codes(diagnostics)
    assert [conflict.resolution for conflict in project.conflicts] == ["kept 18.2.0"]


def test_commands_are_grouped_by_category() -> None:
    commands = CommandSet(
        (
            Command("make build", CommandCategory.BUILD, 0.9, None, 7),
            Command("npm install", CommandCategory.INSTALL, 0.9, "JavaScript", 3),
            Command("npm start", CommandCategory.RUN, 0.9, "JavaScript", 5),
        )
    )
    result = AnalysisResult.success(
        "CommandExtractor", PayloadKind.COMMANDS, commands, 0.9, ("x",)
    )

    project = Aggregator().aggregate([result], DiagnosticsCollector())

    assert [command.text for command in project.commands["install"]] == ["npm install"]
    assert [command.text for command in project.commands["build"]] == ["make build"]
    assert [command.text for command in project.commands["run"]] == ["npm start"]
    assert project.commands["test"] == ()
    assert project.commands["other"] == ()


def test_custom_payloads_land_in_extensions() -> None:
    custom = AnalysisResult.success("Badges", PayloadKind.CUSTOM, {"count": 2}, 1.0)
    odd = AnalysisResult.success("Odd", PayloadKind.METADATA, "not metadata", 0.4)

    project = Aggregator().aggregate([custom, odd], DiagnosticsCollector())

    assert project.extensions == {"Badges": {"count": 2}, "Odd": "not metadata"}
    assert project.metadata == ProjectMetadata()


def test_low_confidence_categories_produce_suggestions() -> None:
    diagnostics = DiagnosticsCollector()

    project = Aggregator().aggregate([_languages()], diagnostics)

    low = [item for item in diagnostics.diagnostics if item.code == "LOW_CONFIDENCE"]
    categories = sorted(item.message.split()[3] for item in low)
    assert categories == ["commands", "dependencies", "metadata", "testing"]
    testing = next(item for item in low if "testing" in item.message)
    assert "Jest" in testing.suggestions
    assert project.confidence["overall"] == pytest.approx(0.25 * project.confidence["languages"])
