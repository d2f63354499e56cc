"""Public entry point: turn README text or files into a ParseResult."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable

from .analyzers import AnalyzerRegistry, default_registry
from .config import ReadmeInfoConfig, load_config
from .diagnostics import DiagnosticsCollector
from .document import DocumentParser
from .errors import FileSystemError
from .logging import get_logger
from .models import ParseResult
from .pipeline import CancellationToken, Pipeline
from .reader import DocumentReader


class ReadmeParser:
    """Parses README documents with a registry fixed at construction time.

    The registry is frozen on the first parse; register extra analyzers
    through ``analyzers=`` or on the registry before that point.
    """

    def __init__(
        self,
        registry: AnalyzerRegistry | None = None,
        *,
        config: ReadmeInfoConfig | None = None,
        analyzers: Iterable[Any] = (),
        reader: DocumentReader | None = None,
        document_parser: DocumentParser | None = None,
    ) -> None:
        self.config = config or ReadmeInfoConfig()
        if registry is None:
            registry = default_registry(self.config, extra=analyzers)
        else:
            for analyzer in analyzers:
                registry.register(analyzer)
        self.registry = registry
        self.reader = reader or DocumentReader()
        self.pipeline = Pipeline(
            self.registry,
            config=self.config,
            document_parser=document_parser or DocumentParser(),
        )
        self.logger = get_logger("parser")

    @classmethod
    def from_config_file(cls, config_path: Path | str | None = None, **kwargs: Any) -> "ReadmeParser":
        config = load_config(Path(config_path) if config_path is not None else None)
        return cls(config=config, **kwargs)

    def register(self, analyzer: Any) -> Any:
        return self.registry.register(analyzer)

    def parse_content(
        self, text: str | bytes, cancel_token: CancellationToken | None = None
    ) -> ParseResult:
        return self.pipeline.run(text, cancel_token)

    def parse_file(
        self, path: Path | str, cancel_token: CancellationToken | None = None
    ) -> ParseResult:
        try:
            text = self.reader.read(path)
        except FileSystemError as exc:
            self.logger.warning("%s", exc)
            diagnostics = DiagnosticsCollector()
            diagnostics.filesystem_failure(exc)
            diagnostics.emit(self.logger)
            return ParseResult(
                success=False, errors=diagnostics.errors, warnings=diagnostics.warnings
            )
        return self.parse_content(text, cancel_token)


def parse_content(
    text: str | bytes,
    *,
    config: ReadmeInfoConfig | None = None,
    cancel_token: CancellationToken | None = None,
) -> ParseResult:
    """Parse ``text`` with a fresh :class:`ReadmeParser`."""
    return ReadmeParser(config=config).parse_content(text, cancel_token)


def parse_file(
    path: Path | str,
    *,
    config: ReadmeInfoConfig | None = None,
    cancel_token: CancellationToken | None = None,
) -> ParseResult:
    """Read and parse ``path`` with a fresh :class:`ReadmeParser`."""
    return ReadmeParser(config=config).parse_file(path, cancel_token)


__all__ = ["ReadmeParser", "parse_content", "parse_file"]
