"""Core data models shared across readmeinfo components."""

from __future__ import annotations

import json
import time
from dataclasses import dataclass, field, fields, is_dataclass
from enum import Enum, IntEnum
from functools import lru_cache
from types import UnionType
from typing import Any, Dict, List, Optional, Tuple, Union, get_args, get_origin, get_type_hints

from .errors import AnalyzerFailure

_CONFIDENCE_PRECISION = 4


def clamp(value: float) -> float:
    """Clamp ``value`` into the closed unit interval."""
    if value != value:  # NaN
        return 0.0
    return max(0.0, min(1.0, float(value)))


class BlockKind(str, Enum):
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    CODE = "code"


class EvidenceTier(IntEnum):
    """Language evidence sources; a lower value wins overlap disputes."""

    CODE_TAG = 1
    FILENAME = 2
    TEXT = 3


class CommandCategory(str, Enum):
    INSTALL = "install"
    BUILD = "build"
    TEST = "test"
    RUN = "run"
    OTHER = "other"


class PayloadKind(str, Enum):
    LANGUAGES = "languages"
    COMMANDS = "commands"
    DEPENDENCIES = "dependencies"
    TESTING = "testing"
    METADATA = "metadata"
    CUSTOM = "custom"


class Severity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


# Document tree


@dataclass(frozen=True)
class Block:
    """A parsed document unit with its 1-based inclusive line range."""

    kind: BlockKind
    text: str
    start_line: int
    end_line: int
    column: int = 1
    level: int = 0
    tag: Optional[str] = None
    info: Optional[str] = None
    closed: bool = True

    @property
    def is_code(self) -> bool:
        return self.kind is BlockKind.CODE

    @property
    def is_prose(self) -> bool:
        return self.kind is not BlockKind.CODE

    @property
    def body_start(self) -> int:
        """Line number of the first content line of the block."""
        return self.start_line + 1 if self.is_code else self.start_line

    def lines(self) -> List[Tuple[int, str]]:
        """Return ``(line_number, text)`` pairs for the block contents."""
        if not self.text:
            return []
        return [
            (self.body_start + offset, line)
            for offset, line in enumerate(self.text.split("\n"))
        ]


@dataclass(frozen=True)
class ParseWarning:
    code: str
    message: str
    line: int


@dataclass(frozen=True)
class DocumentTree:
    """Addressable, immutable view over a parsed document."""

    blocks: Tuple[Block, ...]
    line_count: int
    warnings: Tuple[ParseWarning, ...] = ()

    def headings(self) -> List[Block]:
        return [block for block in self.blocks if block.kind is BlockKind.HEADING]

    def paragraphs(self) -> List[Block]:
        return [block for block in self.blocks if block.kind is BlockKind.PARAGRAPH]

    def code_blocks(self) -> List[Block]:
        return [block for block in self.blocks if block.kind is BlockKind.CODE]

    def prose_blocks(self) -> List[Block]:
        return [block for block in self.blocks if block.is_prose]

    def block_at(self, line: int) -> Optional[Block]:
        for block in self.blocks:
            if block.start_line <= line <= block.end_line:
                return block
            if block.start_line > line:
                break
        return None

    def previous(self, block: Block) -> Optional[Block]:
        index = self.blocks.index(block)
        return self.blocks[index - 1] if index > 0 else None

    def heading_for(self, block: Block) -> Optional[Block]:
        """Return the nearest heading at or before ``block``."""
        current: Optional[Block] = None
        for candidate in self.blocks:
            if candidate.start_line > block.start_line:
                break
            if candidate.kind is BlockKind.HEADING:
                current = candidate
        return current


# Language context


@dataclass(frozen=True)
class SourceRange:
    start_line: int
    end_line: int

    def contains(self, line: int) -> bool:
        return self.start_line <= line <= self.end_line

    def overlaps(self, other: "SourceRange") -> bool:
        return self.start_line <= other.end_line and other.start_line <= self.end_line

    @classmethod
    def of(cls, *blocks: Block) -> "SourceRange":
        return cls(min(b.start_line for b in blocks), max(b.end_line for b in blocks))


@dataclass(frozen=True)
class LanguageContext:
    """A detected-language span with provenance."""

    language: str
    confidence: float
    source_range: SourceRange
    evidence: Tuple[str, ...]
    origin: str
    tier: EvidenceTier
    created_at: float = field(default_factory=time.time, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "confidence", clamp(self.confidence))


# Analyzer payloads


@dataclass(frozen=True)
class LanguageInfo:
    name: str
    confidence: float
    evidence: Tuple[str, ...] = ()
    first_line: int = 0


@dataclass(frozen=True)
class FrameworkInfo:
    name: str
    language: Optional[str]
    confidence: float
    evidence: Tuple[str, ...] = ()
    category: Optional[str] = None
    status: str = "detected"


@dataclass(frozen=True)
class LanguageDetection:
    contexts: Tuple[LanguageContext, ...]
    languages: Tuple[LanguageInfo, ...]
    frameworks: Tuple[FrameworkInfo, ...] = ()
    primary: Optional[str] = None


@dataclass(frozen=True)
class Command:
    """An extracted shell-like command."""

    text: str
    category: CommandCategory
    confidence: float
    language: Optional[str] = None
    line: int = 0
    pattern: str = ""
    source: str = "code"

    def __post_init__(self) -> None:
        if not isinstance(self.category, CommandCategory):
            object.__setattr__(self, "category", CommandCategory(self.category))
        object.__setattr__(self, "confidence", clamp(self.confidence))


@dataclass(frozen=True)
class CommandSet:
    commands: Tuple[Command, ...]


@dataclass(frozen=True)
class PackageFile:
    name: str
    manager: Optional[str]
    language: Optional[str]
    confidence: float
    line: int = 0


@dataclass(frozen=True)
class Dependency:
    name: str
    version: Optional[str]
    manager: Optional[str]
    confidence: float
    evidence: Tuple[str, ...] = ()
    dev: bool = False
    status: str = "detected"


@dataclass(frozen=True)
class DependencyInfo:
    package_files: Tuple[PackageFile, ...] = ()
    dependencies: Tuple[Dependency, ...] = ()
    frameworks: Tuple[FrameworkInfo, ...] = ()


@dataclass(frozen=True)
class TestingFramework:
    __test__ = False

    name: str
    language: Optional[str]
    confidence: float
    evidence: Tuple[str, ...] = ()
    config_files: Tuple[str, ...] = ()


@dataclass(frozen=True)
class UnmatchedEvidence:
    text: str
    language: Optional[str]
    line: int


@dataclass(frozen=True)
class TestingInfo:
    __test__ = False

    frameworks: Tuple[TestingFramework, ...] = ()
    tools: Tuple[str, ...] = ()
    config_files: Tuple[str, ...] = ()
    commands: Tuple[str, ...] = ()
    unmatched: Tuple[UnmatchedEvidence, ...] = ()


@dataclass(frozen=True)
class EnvVar:
    name: str
    description: Optional[str] = None
    default: Optional[str] = None
    required: bool = True
    line: int = 0


@dataclass(frozen=True)
class ProjectMetadata:
    name: Optional[str] = None
    description: Optional[str] = None
    version: Optional[str] = None
    license: Optional[str] = None
    repository: Optional[str] = None
    environment: Tuple[EnvVar, ...] = ()
    structure: Tuple[str, ...] = ()


# Results


@dataclass(frozen=True)
class AnalysisResult:
    """One analyzer's output: a payload or a typed failure, never both."""

    analyzer: str
    kind: PayloadKind
    payload: Any = None
    confidence: float = 0.0
    evidence: Tuple[str, ...] = ()
    error: Optional[AnalyzerFailure] = field(default=None, compare=False)

    def __post_init__(self) -> None:
        if self.error is not None:
            if self.payload is not None:
                raise ValueError("failed analysis results must not carry a payload")
            object.__setattr__(self, "confidence", 0.0)
        else:
            object.__setattr__(self, "confidence", clamp(self.confidence))
        object.__setattr__(self, "evidence", tuple(self.evidence))

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(
        cls,
        analyzer: str,
        kind: PayloadKind,
        payload: Any,
        confidence: float,
        evidence: Tuple[str, ...] | List[str] = (),
    ) -> "AnalysisResult":
        return cls(analyzer, kind, payload, confidence, tuple(evidence))

    @classmethod
    def failure(
        cls, analyzer: str, kind: PayloadKind, error: AnalyzerFailure
    ) -> "AnalysisResult":
        return cls(analyzer, kind, None, 0.0, (), error)


@dataclass(frozen=True)
class ConflictRecord:
    kind: str
    subject: str
    candidates: Tuple[str, ...]
    resolution: str
    detail: str = ""


@dataclass(frozen=True)
class ProjectInfo:
    """Final aggregated record, built once per run by the aggregator."""

    metadata: ProjectMetadata
    languages: Tuple[LanguageInfo, ...]
    primary_language: Optional[str]
    frameworks: Tuple[FrameworkInfo, ...]
    dependencies: DependencyInfo
    commands: Dict[str, Tuple[Command, ...]]
    testing: TestingInfo
    confidence: Dict[str, float]
    conflicts: Tuple[ConflictRecord, ...] = ()
    extensions: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class Diagnostic:
    """A warning or error surfaced to the caller."""

    severity: Severity
    category: str
    code: str
    message: str
    remediation: Tuple[str, ...] = ()
    suggestions: Tuple[str, ...] = ()
    analyzer: Optional[str] = None
    line: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return to_jsonable(self)


@dataclass(frozen=True)
class ParseResult:
    success: bool
    data: Optional[ProjectInfo] = None
    errors: Tuple[Diagnostic, ...] = ()
    warnings: Tuple[Diagnostic, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.data is not None:
            payload["data"] = self.data.to_dict()
        payload["errors"] = [item.to_dict() for item in self.errors]
        payload["warnings"] = [item.to_dict() for item in self.warnings]
        return payload

    def to_json(self, *, indent: int | None = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent, ensure_ascii=False)


def to_jsonable(value: Any) -> Any:
    """Convert models into JSON-compatible structures with rounded floats."""
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, bool) or value is None or isinstance(value, (int, str)):
        return value
    if isinstance(value, float):
        return round(value, _CONFIDENCE_PRECISION)
    if is_dataclass(value) and not isinstance(value, type):
        return {
            item.name: to_jsonable(getattr(value, item.name))
            for item in fields(value)
            if item.name != "created_at"
        }
    if isinstance(value, dict):
        return {str(key): to_jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted(to_jsonable(item) for item in value)
    if isinstance(value, BaseException):
        return str(value)
    return str(value)


def field_type_errors(value: Any, path: str = "payload") -> List[str]:
    """List fields of a model dataclass whose values do not match their annotations.

    Nested dataclasses and tuple elements are checked recursively; lists are
    accepted wherever a tuple is declared.
    """
    if not is_dataclass(value) or isinstance(value, type):
        return [f"{path} is {type(value).__name__}, expected a dataclass"]
    hints = _type_hints(type(value))
    problems: List[str] = []
    for item in fields(value):
        problems.extend(
            _check_type(getattr(value, item.name), hints.get(item.name, Any), f"{path}.{item.name}")
        )
    return problems


@lru_cache(maxsize=None)
def _type_hints(cls: type) -> Dict[str, Any]:
    return get_type_hints(cls)


def _check_type(value: Any, hint: Any, path: str) -> List[str]:
    if hint is Any:
        return []
    origin = get_origin(hint)
    if origin is Union or origin is UnionType:
        for option in get_args(hint):
            if not _check_type(value, option, path):
                return []
        return [f"{path} has unexpected type {type(value).__name__}"]
    if hint is type(None):
        return [] if value is None else [f"{path} should be None"]
    if origin is tuple:
        if not isinstance(value, (tuple, list)):
            return [f"{path} is {type(value).__name__}, expected a sequence"]
        args = get_args(hint)
        if len(args) == 2 and args[1] is Ellipsis:
            problems: List[str] = []
            for index, element in enumerate(value):
                problems.extend(_check_type(element, args[0], f"{path}[{index}]"))
            return problems
        return []
    if origin is not None:
        return [] if isinstance(value, origin) else [f"{path} is {type(value).__name__}"]
    if hint is float:
        ok = isinstance(value, (int, float)) and not isinstance(value, bool)
        return [] if ok else [f"{path} is {type(value).__name__}, expected a number"]
    if hint is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
        return [] if ok else [f"{path} is {type(value).__name__}, expected int"]
    if isinstance(hint, type):
        if not isinstance(value, hint):
            return [f"{path} is {type(value).__name__}, expected {hint.__name__}"]
        if is_dataclass(hint):
            return field_type_errors(value, path)
    return []


__all__ = [
    "AnalysisResult",
    "Block",
    "BlockKind",
    "Command",
    "CommandCategory",
    "CommandSet",
    "ConflictRecord",
    "Dependency",
    "DependencyInfo",
    "Diagnostic",
    "DocumentTree",
    "EnvVar",
    "EvidenceTier",
    "FrameworkInfo",
    "LanguageContext",
    "LanguageDetection",
    "LanguageInfo",
    "PackageFile",
    "ParseResult",
    "ParseWarning",
    "PayloadKind",
    "ProjectInfo",
    "ProjectMetadata",
    "Severity",
    "SourceRange",
    "TestingFramework",
    "TestingInfo",
    "UnmatchedEvidence",
    "clamp",
    "field_type_errors",
    "to_jsonable",
]
