"""Tests for ReadmeParser file handling and the module-level helpers."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from readmeinfo import ReadmeParser, parse_content, parse_file
from readmeinfo.errors import FileSystemError
from readmeinfo.reader import DocumentReader


def test_reader_strips_bom_and_resolves_directories(tmp_path: Path) -> None:
    (tmp_path / "README.md").write_bytes(b"\xef\xbb\xbf# Title\n")

    reader = DocumentReader()

    assert reader.resolve(tmp_path) == tmp_path / "README.md"
    assert reader.read(tmp_path) == "# Title\n"


def test_reader_reports_missing_files(tmp_path: Path) -> None:
    with pytest.raises(FileSystemError, match="File not found") as excinfo:
        DocumentReader().read(tmp_path / "missing.md")

    assert excinfo.value.path == tmp_path / "missing.md"


def test_reader_reports_directories_without_readme(tmp_path: Path) -> None:
    with pytest.raises(FileSystemError, match="No README found"):
        DocumentReader().read(tmp_path)


def test_reader_rejects_invalid_utf8(tmp_path: Path) -> None:
    target = tmp_path / "README.md"
    target.write_bytes(b"# Caf\xe9\n")

    with pytest.raises(FileSystemError, match="not valid"):
        DocumentReader().read(target)


def test_parse_file_matches_parse_content(write_readme, sample_readme: str) -> None:
    path = write_readme()
    parser = ReadmeParser()

    from_file = parser.parse_file(path)
    from_text = parser.parse_content(sample_readme)

    assert from_file.success
    assert from_file.to_json() == from_text.to_json()
    assert from_file.data.metadata.name == "Acme Widgets"
    assert from_file.data.metadata.license == "MIT"


def test_parse_file_missing_returns_failure(tmp_path: Path) -> None:
    result = parse_file(tmp_path / "nope.md")

    assert result.success is False
    assert result.data is None
    assert [item.code for item in result.errors] == ["FILE_UNREADABLE"]


def test_parse_file_invalid_encoding_returns_failure(tmp_path: Path) -> None:
    target = tmp_path / "README.md"
    target.write_bytes(b"\xff\xfe\x00broken")

    result = parse_file(target)

    assert result.success is False
    assert result.errors[0].code == "FILE_UNREADABLE"


def test_parse_content_helper_returns_serialisable_result(sample_readme: str) -> None:
    result = parse_content(sample_readme)
    payload = json.loads(result.to_json())

    assert payload["success"] is True
    assert payload["data"]["primary_language"] in {"JavaScript", "Python"}
    assert set(payload["data"]["commands"]) == {"install", "build", "test", "run", "other"}
    assert 0.0 <= payload["data"]["confidence"]["overall"] <= 1.0


def test_extra_analyzers_are_registered_before_first_parse(sample_readme: str) -> None:
    class HeadingCounter:
        name = "HeadingCounter"

        def analyze(self, tree, text, context):
            from readmeinfo.models import AnalysisResult, PayloadKind

            return AnalysisResult.success(
                self.name, PayloadKind.CUSTOM, len(tree.headings()), 1.0
            )

    parser = ReadmeParser(analyzers=[HeadingCounter()])
    result = parser.parse_content(sample_readme)

    assert result.data.extensions == {"HeadingCounter": 4}
