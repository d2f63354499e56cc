"""CLI behaviour tests."""

from __future__ import annotations

import io
import json
from pathlib import Path

import pytest

from readmeinfo.cli import _build_parser, main


def test_cli_accepts_verbose_before_command() -> None:
    parser = _build_parser()
    args = parser.parse_args(["--verbose", "parse"])
    assert args.verbose is True
    assert args.command == "parse"
    assert args.path == "README.md"


def test_cli_accepts_verbose_after_command() -> None:
    parser = _build_parser()
    args = parser.parse_args(["parse", "docs/README.md", "--verbose"])
    assert args.verbose is True
    assert args.path == "docs/README.md"


def test_cli_parse_flags() -> None:
    parser = _build_parser()
    args = parser.parse_args(["parse", "--sequential", "--timeout", "2", "--compact"])
    assert args.sequential is True
    assert args.timeout == 2.0
    assert args.compact is True


def test_cli_serve_defaults() -> None:
    args = _build_parser().parse_args(["serve"])
    assert (args.host, args.port) == ("127.0.0.1", 8000)


def test_parse_prints_json(write_readme, capsys) -> None:
    path = write_readme()

    main(["parse", str(path), "--sequential", "--config", str(path.parent)])

    payload = json.loads(capsys.readouterr().out)
    assert payload["success"] is True
    assert payload["data"]["metadata"]["name"] == "Acme Widgets"


def test_parse_reads_stdin(monkeypatch, capsys) -> None:
    monkeypatch.setattr("sys.stdin", io.StringIO("# From Stdin\n\nPiped text.\n"))

    main(["parse", "-", "--compact"])

    out = capsys.readouterr().out
    assert out.count("\n") == 1
    assert json.loads(out)["data"]["metadata"]["name"] == "From Stdin"


def test_parse_missing_file_exits_non_zero(tmp_path: Path, capsys) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["parse", str(tmp_path / "missing.md"), "--config", str(tmp_path)])

    assert excinfo.value.code == 1
    payload = json.loads(capsys.readouterr().out)
    assert payload["errors"][0]["code"] == "FILE_UNREADABLE"


def test_invalid_timeout_exits(tmp_path: Path) -> None:
    with pytest.raises(SystemExit) as excinfo:
        main(["parse", "--timeout", "0", "--config", str(tmp_path)])

    assert excinfo.value.code == 1


def test_invalid_config_exits(tmp_path: Path, capsys) -> None:
    (tmp_path / ".readmeinfo.yml").write_text("commands:\n  combination: mean\n", encoding="utf-8")

    with pytest.raises(SystemExit) as excinfo:
        main(["analyzers", "--config", str(tmp_path)])

    assert excinfo.value.code == 1
    assert "Invalid configuration" in capsys.readouterr().err


def test_analyzers_lists_execution_order(tmp_path: Path, capsys) -> None:
    main(["analyzers", "--config", str(tmp_path)])

    lines = capsys.readouterr().out.splitlines()
    assert lines[0] == "LanguageDetector\tlanguages (context)"
    assert lines[1:5] == [
        "CommandExtractor\tcommands",
        "DependencyExtractor\tdependencies",
        "TestingDetector\ttesting",
        "MetadataExtractor\tmetadata",
    ]
