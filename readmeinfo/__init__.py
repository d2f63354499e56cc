"""Structured, confidence-scored project metadata from README documents."""

from .analyzers import Analyzer, AnalyzerRegistry, default_registry
from .config import ConfigError, ReadmeInfoConfig, load_config
from .errors import (
    AnalyzerFailure,
    FileSystemError,
    ParseError,
    ReadmeInfoError,
    RegistrationError,
)
from .models import AnalysisResult, Diagnostic, ParseResult, PayloadKind, ProjectInfo, Severity
from .parser import ReadmeParser, parse_content, parse_file
from .pipeline import CancellationToken

__version__ = "0.1.0"

__all__ = [
    "AnalysisResult",
    "Analyzer",
    "AnalyzerFailure",
    "AnalyzerRegistry",
    "CancellationToken",
    "ConfigError",
    "Diagnostic",
    "FileSystemError",
    "ParseError",
    "ParseResult",
    "PayloadKind",
    "ProjectInfo",
    "ReadmeInfoConfig",
    "ReadmeInfoError",
    "ReadmeParser",
    "RegistrationError",
    "Severity",
    "default_registry",
    "load_config",
    "parse_content",
    "parse_file",
]
