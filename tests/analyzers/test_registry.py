"""Tests for analyzer registration, selection and plugin discovery."""

from __future__ import annotations

from types import SimpleNamespace

import pytest

from readmeinfo.analyzers import (
    Analyzer,
    AnalyzerRegistry,
    LanguageDetector,
    MetadataExtractor,
    builtin_analyzers,
    default_registry,
    discover_analyzers,
    validate_analyzer,
)
from readmeinfo.config import config_from_mapping
from readmeinfo.errors import RegistrationError
from readmeinfo.models import AnalysisResult, PayloadKind

BUILTIN_NAMES = [
    "LanguageDetector",
    "CommandExtractor",
    "DependencyExtractor",
    "TestingDetector",
    "MetadataExtractor",
]


class BadgeCounter(Analyzer):
    """Plugin analyzer counting shields.io badges."""

    name = "BadgeCounter"

    def analyze(self, tree, text, context):
        return self.success({"badges": text.count("img.shields.io")}, 1.0)


class DuckAnalyzer:
    name = "DuckAnalyzer"

    def analyze(self, tree, text, context):
        return AnalysisResult.success(self.name, PayloadKind.CUSTOM, None, 0.5)


class _EntryPoints(list):
    def select(self, **kwargs):
        if kwargs.get("group") == "readmeinfo.analyzers":
            return self
        return []


def test_builtins_register_in_pipeline_order() -> None:
    registry = default_registry(include_plugins=False)

    assert registry.names() == BUILTIN_NAMES
    assert registry.context_provider().name == "LanguageDetector"
    assert [analyzer.name for analyzer in registry.downstream()] == BUILTIN_NAMES[1:]


def test_custom_analyzers_are_appended_after_builtins() -> None:
    registry = default_registry(include_plugins=False, extra=[BadgeCounter])

    assert registry.names() == BUILTIN_NAMES + ["BadgeCounter"]
    assert isinstance(registry.get("badgecounter"), BadgeCounter)
    assert "BadgeCounter" in registry


def test_duck_typed_analyzers_are_accepted() -> None:
    registry = AnalyzerRegistry()

    registry.register(DuckAnalyzer())

    assert registry.names() == ["DuckAnalyzer"]


def test_missing_analyze_is_rejected() -> None:
    with pytest.raises(RegistrationError, match="callable 'analyze'"):
        AnalyzerRegistry().register(SimpleNamespace(name="NoAnalyze"))


def test_wrong_signature_is_rejected() -> None:
    class OneArgument:
        name = "OneArgument"

        def analyze(self, tree):
            return None

    with pytest.raises(RegistrationError, match="tree, text, context"):
        validate_analyzer(OneArgument())


def test_missing_name_is_rejected() -> None:
    class Nameless:
        name = "  "

        def analyze(self, tree, text, context):
            return None

    with pytest.raises(RegistrationError, match="non-empty"):
        AnalyzerRegistry().register(Nameless())


def test_unknown_kind_is_rejected() -> None:
    class OddKind(DuckAnalyzer):
        kind = "sideways"

    with pytest.raises(RegistrationError, match="unknown kind"):
        AnalyzerRegistry().register(OddKind())


def test_unknown_kind_is_reported_before_signature_problems() -> None:
    class OddKindOneArgument:
        name = "OddKindOneArgument"
        kind = "sideways"

        def analyze(self, tree):
            return None

    with pytest.raises(RegistrationError, match="unknown kind"):
        validate_analyzer(OddKindOneArgument())


def test_abstract_analyzer_class_is_rejected() -> None:
    class Unfinished(Analyzer):
        name = "Unfinished"

    with pytest.raises(RegistrationError, match="abstract; implement analyze"):
        AnalyzerRegistry().register(Unfinished)


def test_analyzer_class_with_failing_constructor_is_rejected() -> None:
    class NeedsSettings(DuckAnalyzer):
        name = "NeedsSettings"

        def __init__(self, settings):
            self.settings = settings

    with pytest.raises(RegistrationError, match="could not be instantiated"):
        AnalyzerRegistry().register(NeedsSettings)


def test_analyzer_classes_are_instantiated_on_registration() -> None:
    registry = AnalyzerRegistry()

    registered = registry.register(BadgeCounter)

    assert isinstance(registered, BadgeCounter)
    assert registry.names() == ["BadgeCounter"]


def test_duplicate_names_are_rejected_case_insensitively() -> None:
    registry = AnalyzerRegistry([DuckAnalyzer()])

    class Shadow(DuckAnalyzer):
        name = "duckanalyzer"

    with pytest.raises(RegistrationError, match="already registered"):
        registry.register(Shadow())


def test_only_one_context_provider() -> None:
    class OtherDetector(LanguageDetector):
        name = "OtherDetector"

    registry = AnalyzerRegistry([LanguageDetector()])

    with pytest.raises(RegistrationError, match="language context"):
        registry.register(OtherDetector())


def test_context_provider_runs_first_regardless_of_registration_order() -> None:
    registry = AnalyzerRegistry([DuckAnalyzer(), LanguageDetector()])

    assert registry.names() == ["LanguageDetector", "DuckAnalyzer"]


def test_frozen_registry_rejects_registration() -> None:
    registry = AnalyzerRegistry()
    registry.freeze()

    with pytest.raises(RegistrationError, match="frozen"):
        registry.register(DuckAnalyzer())


def test_select_filters_and_validates_names() -> None:
    registry = AnalyzerRegistry(builtin_analyzers())

    selected = registry.select(disabled=["metadataextractor"])
    assert "MetadataExtractor" not in selected.names()
    assert len(selected) == 4

    only = registry.select(enabled=["LanguageDetector", "CommandExtractor"])
    assert only.names() == ["LanguageDetector", "CommandExtractor"]

    with pytest.raises(ValueError, match="Unknown analyzers requested: nope"):
        registry.select(enabled=["nope"])


def test_config_selection_is_applied() -> None:
    config = config_from_mapping({"analyzers": {"disabled": ["TestingDetector"]}})
    registry = default_registry(config, include_plugins=False)

    assert "TestingDetector" not in registry
    assert len(registry) == 4


def test_discover_analyzers_loads_entry_points(monkeypatch) -> None:
    entry = SimpleNamespace(name="badges", load=lambda: BadgeCounter)
    monkeypatch.setattr(
        "readmeinfo.analyzers.importlib_metadata.entry_points",
        lambda: _EntryPoints([entry]),
    )

    analyzers = discover_analyzers()

    assert len(analyzers) == 1
    assert isinstance(analyzers[0], BadgeCounter)


def test_default_registry_includes_plugins_and_skips_name_clashes(monkeypatch) -> None:
    entries = [
        SimpleNamespace(name="badges", load=lambda: BadgeCounter),
        SimpleNamespace(name="shadow", load=lambda: MetadataExtractor),
    ]
    monkeypatch.setattr(
        "readmeinfo.analyzers.importlib_metadata.entry_points",
        lambda: _EntryPoints(entries),
    )

    registry = default_registry()

    assert registry.names() == BUILTIN_NAMES + ["BadgeCounter"]


def test_invalid_entry_point_raises_type_error(monkeypatch) -> None:
    entry = SimpleNamespace(name="broken", load=lambda: SimpleNamespace(name="broken"))
    monkeypatch.setattr(
        "readmeinfo.analyzers.importlib_metadata.entry_points",
        lambda: _EntryPoints([entry]),
    )

    with pytest.raises(TypeError, match="did not produce a valid analyzer"):
        discover_analyzers()
