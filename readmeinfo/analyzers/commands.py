"""Command extraction with language context inheritance."""

from __future__ import annotations

import re
from typing import Dict, Iterator, List, NamedTuple, Optional, Pattern, Tuple

from .base import Analyzer, mean
from .utils import infer_language_from_command, iter_inline_code, iter_shell_lines
from ..config import CommandSettings
from ..context import ContextIndex
from ..models import (
    AnalysisResult,
    Command,
    CommandCategory,
    CommandSet,
    DocumentTree,
    PayloadKind,
)


class CommandPattern(NamedTuple):
    name: str
    regex: Pattern[str]
    confidence: float


# Tried in order; the first match decides the pattern confidence.
COMMAND_PATTERNS: Tuple[CommandPattern, ...] = (
    CommandPattern(
        "package-manager",
        re.compile(
            r"^(?:(?:npm|npx|pnpm|bun|yarn|pip3?|pipx|pipenv|poetry|conda|mamba|uv|cargo|rustup"
            r"|(?:\./)?mvnw?|(?:\./)?gradlew?|composer|gem|bundle|dotnet|nuget|brew|apt(?:-get)?"
            r"|yum|dnf|apk|choco|winget|pod|swift|deno)\s+\S"
            r"|go\s+(?:build|run|test|install|get|mod|generate|vet|fmt|work)\b"
            r"|python3? -m pip\b"
            r"|(?:yarn|bundle|pnpm)$)"
        ),
        0.95,
    ),
    CommandPattern(
        "executable",
        re.compile(
            r"^(?:(?:python3?|py|node|java|javac|ruby|php|rustc|gcc|g\+\+|clang\+\+|clang|cmake"
            r"|docker(?:-compose)?|podman|kubectl|helm|terraform|git|curl|wget|pytest|tox|nox"
            r"|jest|mocha|vitest|rake|rails|rspec|django-admin|flask|uvicorn|gunicorn|tsc|ng|vue"
            r"|nest|phpunit|ctest|ansible(?:-playbook)?|vagrant|heroku|vercel|netlify|firebase"
            r"|serverless|aws|gcloud|az)\s+\S"
            r"|(?:pytest|tox|nox|jest|mocha|vitest|rspec|rake|tsc|ctest|phpunit)$)"
        ),
        0.8,
    ),
    CommandPattern(
        "script",
        re.compile(r"^(?:\./[\w./-]+|(?:bash|sh|zsh|source|\.)\s+[\w./-]+\.?\w*)(?:\s|$)"),
        0.7,
    ),
    CommandPattern(
        "build-tool",
        re.compile(r"^(?:make|ninja|bazel|just|meson|scons|ant|task)(?:\s+[\w.:/=-]+)*$"),
        0.6,
    ),
)

_LOOKS_LIKE_CODE = re.compile(r"^[\w.$]+\s*(?:=|\(|\[|\.\w|:\s|:$)|=>|[{(]$|\};?$|\);$")
_ENV_PREFIX = re.compile(r"^(?:sudo\s+|[A-Z_][A-Z0-9_]*=\S*\s+)+")
_WORD = re.compile(r"^[a-z][\w.+-]*$")

FORCE_BUILD = re.compile(
    r"^(?:go install|(?:\./)?mvnw? (?:\S+ )*install|(?:\./)?gradlew? (?:\S+ )*install"
    r"|make install|cmake --install)\b"
)

BUILD_WORDS = frozenset(
    {"build", "compile", "package", "assemble", "dist", "rebuild", "configure", "sdist", "bdist_wheel", "webpack"}
)
TEST_WORDS = frozenset(
    {
        "test",
        "tests",
        "spec",
        "specs",
        "e2e",
        "pytest",
        "jest",
        "mocha",
        "vitest",
        "rspec",
        "phpunit",
        "tox",
        "nox",
        "cypress",
        "playwright",
        "karma",
        "jasmine",
        "unittest",
        "nose2",
        "coverage",
        "ctest",
    }
)
DEPLOY_WORDS = frozenset({"deploy", "publish", "release", "upload", "push", "apply", "rollout"})
INSTALL_WORDS = frozenset(
    {"install", "i", "add", "ci", "require", "get", "restore", "sync", "download", "bootstrap", "venv", "virtualenv"}
)
RUN_WORDS = frozenset({"run", "start", "serve", "server", "dev", "exec", "up", "watch", "launch", "runserver", "preview"})

TOOL_DEFAULTS: Dict[str, CommandCategory] = {
    **{
        tool: CommandCategory.BUILD
        for tool in ("make", "ninja", "bazel", "meson", "scons", "ant", "cmake", "tsc", "javac", "gcc", "g++", "clang", "clang++", "rustc", "gradle", "gradlew")
    },
    **{tool: CommandCategory.INSTALL for tool in ("yarn", "bundle", "pnpm")},
    **{
        tool: CommandCategory.RUN
        for tool in ("python", "python3", "py", "node", "deno", "java", "ruby", "php", "uvicorn", "gunicorn", "flask", "rails", "npx")
    },
}


def categorize(text: str) -> CommandCategory:
    """Keyword categorization with precedence build > test > deploy > install > run > other.

    Deploy commands are reported as ``other``. Installing a build product with
    the build tool itself (``go install``, ``mvn install``) counts as build.
    """
    normalised = _ENV_PREFIX.sub("", text.strip())
    if FORCE_BUILD.match(normalised):
        return CommandCategory.BUILD

    tokens = normalised.split()
    if not tokens:
        return CommandCategory.OTHER
    head = tokens[0]
    if head.startswith("./"):
        head = head[2:]
    head = head.rsplit("/", 1)[-1].lower()
    script = re.sub(r"\.(?:sh|bash|ps1|bat|cmd)$", "", head)

    words: List[str] = [script]
    for token in tokens[1:]:
        word = token.strip("'\"").lstrip("-").rstrip("/").lower()
        if not _WORD.match(word):
            continue
        words.extend(part for part in word.split(":") if part)
        if word in INSTALL_WORDS:
            # Anything after an install verb names packages, not actions.
            break

    present = set(words)
    for keywords, category in (
        (BUILD_WORDS, CommandCategory.BUILD),
        (TEST_WORDS, CommandCategory.TEST),
        (DEPLOY_WORDS, CommandCategory.OTHER),
        (INSTALL_WORDS, CommandCategory.INSTALL),
        (RUN_WORDS, CommandCategory.RUN),
    ):
        if present & keywords:
            return category
    return TOOL_DEFAULTS.get(head, CommandCategory.OTHER)


def match_pattern(text: str) -> Optional[CommandPattern]:
    """Return the highest-priority command pattern matching ``text``."""
    candidate = _ENV_PREFIX.sub("", text.strip())
    if not candidate or _LOOKS_LIKE_CODE.search(candidate):
        return None
    for pattern in COMMAND_PATTERNS:
        if pattern.regex.match(candidate):
            return pattern
    return None


class CommandExtractor(Analyzer):
    """Extracts commands from code blocks and inherits their language from context."""

    name = "CommandExtractor"
    kind = PayloadKind.COMMANDS

    INLINE_FACTOR = 0.8

    def __init__(self, settings: CommandSettings | None = None) -> None:
        self.settings = settings or CommandSettings()

    def analyze(
        self, tree: DocumentTree, text: str, context: ContextIndex
    ) -> AnalysisResult:
        best: Dict[str, Command] = {}
        for line, candidate, source in self._candidates(tree):
            pattern = match_pattern(candidate)
            if pattern is None:
                continue
            command = self._resolve(candidate, line, pattern, source, context)
            existing = best.get(command.text)
            if existing is None or command.confidence > existing.confidence:
                best[command.text] = command

        commands = sorted(best.values(), key=lambda item: (item.line, item.text))
        evidence = [f"line {command.line}: {command.text}" for command in commands]
        confidence = mean(command.confidence for command in commands)
        return self.success(CommandSet(tuple(commands)), confidence, evidence)

    def _candidates(self, tree: DocumentTree) -> Iterator[Tuple[int, str, str]]:
        for block in tree.code_blocks():
            for line, candidate in iter_shell_lines(block):
                yield line, candidate, "code"
        if self.settings.inline_code:
            for block in tree.prose_blocks():
                for line, candidate in iter_inline_code(block):
                    yield line, candidate, "inline"

    def _resolve(
        self,
        text: str,
        line: int,
        pattern: CommandPattern,
        source: str,
        context: ContextIndex,
    ) -> Command:
        pattern_confidence = pattern.confidence
        if source == "inline":
            pattern_confidence *= self.INLINE_FACTOR

        inherited = context.best_at(line)
        if inherited is not None:
            language: Optional[str] = inherited.language
            confidence = self._combine(pattern_confidence, inherited.confidence)
        else:
            language = infer_language_from_command(text)
            confidence = pattern_confidence * self.settings.fallback_penalty

        return Command(
            text=text,
            category=categorize(text),
            confidence=confidence,
            language=language,
            line=line,
            pattern=pattern.name,
            source=source,
        )

    def _combine(self, pattern_confidence: float, context_confidence: float) -> float:
        if self.settings.combination == "min":
            return min(pattern_confidence, context_confidence)
        return pattern_confidence * context_confidence


__all__ = ["COMMAND_PATTERNS", "CommandExtractor", "categorize", "match_pattern"]
