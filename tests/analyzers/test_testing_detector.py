"""Tests for test framework detection."""

from __future__ import annotations

import pytest

from readmeinfo.analyzers.testing import TestingDetector
from readmeinfo.context import ContextIndex
from readmeinfo.document import parse_document
from readmeinfo.models import TestingInfo


def _detect(text: str) -> tuple[TestingInfo, float]:
    tree = parse_document(text)
    result = TestingDetector().analyze(tree, text, ContextIndex())
    assert result.ok
    return result.payload, result.confidence


def test_mentions_and_commands_combine() -> None:
    payload, confidence = _detect("We test with pytest.\n\n```bash\npytest -q\n```\n")

    (framework,) = payload.frameworks
    assert framework.name == "pytest"
    assert framework.language == "Python"
    assert framework.confidence == pytest.approx(1 - (1 - 0.6) * (1 - 0.85))
    assert confidence == framework.confidence
    assert payload.commands == ("pytest -q",)


def test_config_files_are_recorded() -> None:
    payload, _ = _detect("Settings live in `jest.config.js` and coverage goes to Codecov.\n")

    (framework,) = payload.frameworks
    assert framework.name == "Jest"
    assert framework.config_files == ("jest.config.js",)
    assert payload.config_files == ("jest.config.js",)
    assert payload.tools == ("Codecov",)
    assert payload.commands == ()


def test_dev_dependency_installs_count_as_evidence() -> None:
    payload, _ = _detect("```\nnpm install --save-dev vitest\n```\n")

    assert [framework.name for framework in payload.frameworks] == ["Vitest"]
    assert payload.frameworks[0].confidence == pytest.approx(0.8)


def test_generic_test_command_without_framework_is_unmatched() -> None:
    payload, confidence = _detect("```\nnpm test\n```\n")

    assert payload.frameworks == ()
    assert payload.commands == ("npm test",)
    (item,) = payload.unmatched
    assert (item.text, item.language, item.line) == ("npm test", "JavaScript", 2)
    assert confidence == pytest.approx(0.3)


def test_generic_command_is_matched_by_framework_of_same_language() -> None:
    payload, _ = _detect("Tests use Jest.\n\n```\nnpm test\n```\n")

    assert [framework.name for framework in payload.frameworks] == ["Jest"]
    assert payload.unmatched == ()


def test_nothing_found() -> None:
    payload, confidence = _detect("# Plain\n\nNo tests here, sadly.\n")

    assert payload == TestingInfo()
    assert confidence == 0.0
