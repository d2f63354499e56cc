"""File-reading collaborator for ReadmeParser.parse_file."""

from __future__ import annotations

from pathlib import Path
from typing import Tuple

from .errors import FileSystemError
from .logging import get_logger

README_NAMES: Tuple[str, ...] = ("README.md", "README.markdown", "readme.md", "Readme.md", "README")


class DocumentReader:
    """Reads a README from disk and returns its decoded text.

    Directories resolve to the first README file they contain. Every failure
    surfaces as :class:`FileSystemError`.
    """

    def __init__(self, encoding: str = "utf-8-sig") -> None:
        self.encoding = encoding
        self.logger = get_logger("reader")

    def resolve(self, path: Path | str) -> Path:
        candidate = Path(path).expanduser()
        if candidate.is_dir():
            for name in README_NAMES:
                readme = candidate / name
                if readme.is_file():
                    return readme
            raise FileSystemError(f"No README found in directory {candidate}", path=candidate)
        return candidate

    def read(self, path: Path | str) -> str:
        target = self.resolve(path)
        try:
            data = target.read_bytes()
        except FileNotFoundError as exc:
            raise FileSystemError(f"File not found: {target}", path=target) from exc
        except OSError as exc:
            raise FileSystemError(f"Failed to read {target}: {exc.strerror or exc}", path=target) from exc
        try:
            text = data.decode(self.encoding)
        except UnicodeDecodeError as exc:
            raise FileSystemError(f"{target} is not valid {self.encoding} text", path=target) from exc
        self.logger.debug("Read %d characters from %s", len(text), target)
        return text


__all__ = ["DocumentReader", "README_NAMES"]
