"""Dependency extraction from manifest mentions, manifest snippets and install commands."""

from __future__ import annotations

import re
from typing import Dict, Iterable, List, NamedTuple, Optional, Pattern, Tuple

from .base import Analyzer, mean, unique
from .utils import (
    MANIFEST_PARSERS,
    PACKAGE_FILE_PATTERN,
    ManifestEntry,
    framework_for_package,
    iter_inline_code,
    iter_shell_lines,
    package_file_spec,
    sniff_manifest,
    split_requirement,
)
from ..context import ContextIndex
from ..models import (
    AnalysisResult,
    Block,
    Dependency,
    DependencyInfo,
    DocumentTree,
    FrameworkInfo,
    PackageFile,
    PayloadKind,
)

_INSTALLERS: Tuple[Tuple[Pattern[str], str], ...] = (
    (re.compile(r"^npm (?:install|i|add)\b(.*)$"), "npm"),
    (re.compile(r"^pnpm (?:add|install|i)\b(.*)$"), "pnpm"),
    (re.compile(r"^yarn (?:global )?add\b(.*)$"), "yarn"),
    (re.compile(r"^bun (?:add|install|i)\b(.*)$"), "bun"),
    (re.compile(r"^(?:python3? -m )?pip3? install\b(.*)$"), "pip"),
    (re.compile(r"^uv (?:pip install|add)\b(.*)$"), "pip"),
    (re.compile(r"^pipx install\b(.*)$"), "pip"),
    (re.compile(r"^poetry add\b(.*)$"), "poetry"),
    (re.compile(r"^pipenv install\b(.*)$"), "pipenv"),
    (re.compile(r"^(?:conda|mamba) install\b(.*)$"), "conda"),
    (re.compile(r"^cargo (?:add|install)\b(.*)$"), "cargo"),
    (re.compile(r"^go (?:get|install)\b(.*)$"), "go"),
    (re.compile(r"^gem install\b(.*)$"), "gem"),
    (re.compile(r"^bundle add\b(.*)$"), "bundler"),
    (re.compile(r"^composer (?:global )?require\b(.*)$"), "composer"),
    (re.compile(r"^dotnet add (?:\S+ )?package\b(.*)$"), "nuget"),
    (re.compile(r"^brew install\b(.*)$"), "brew"),
)

_MANIFEST_MANAGERS = {
    "package.json": "npm",
    "composer.json": "composer",
    "requirements.txt": "pip",
    "pyproject.toml": "pip",
    "Cargo.toml": "cargo",
    "go.mod": "go",
    "pom.xml": "maven",
    "build.gradle": "gradle",
    "build.gradle.kts": "gradle",
    "Gemfile": "bundler",
}

_VALUE_FLAGS = frozenset(
    {
        "-r",
        "--requirement",
        "-e",
        "--editable",
        "-c",
        "--constraint",
        "-i",
        "--index-url",
        "--extra-index-url",
        "-t",
        "--target",
        "--prefix",
        "--registry",
        "-f",
        "--find-links",
        "--group",
        "-G",
        "--source",
        "-s",
        "-p",
        "--python",
        "--channel",
    }
)
_VERSION_FLAGS = frozenset({"-v", "--version"})
_DEV_FLAGS = frozenset({"-D", "--save-dev", "--dev", "-d", "--save-optional"})

# Words that show up after install verbs in prose but are not packages.
_FALSE_POSITIVES = frozenset(
    {
        "install",
        "add",
        "i",
        "the",
        "and",
        "or",
        "a",
        "to",
        "with",
        "your",
        "package",
        "packages",
        "dependencies",
        "deps",
        "requirements",
        "all",
        "global",
        "then",
        "following",
        "ci",
        "this",
        "it",
    }
)
_PACKAGE_TOKEN = re.compile(r"^@?[\w][\w.\-/@:=<>!~^*+\[\],]*$")


class _Install(NamedTuple):
    manager: str
    name: str
    version: Optional[str]
    dev: bool


def parse_install_command(text: str) -> List[_Install]:
    """Return the packages an install command would add."""
    normalised = re.sub(r"^(?:sudo\s+|[A-Z_][A-Z0-9_]*=\S*\s+)+", "", text.strip())
    for pattern, manager in _INSTALLERS:
        match = pattern.match(normalised)
        if match:
            return _parse_arguments(manager, match.group(1).split())
    return []


def _parse_arguments(manager: str, tokens: List[str]) -> List[_Install]:
    installs: List[_Install] = []
    dev = False
    skip_next = False
    version_next = False
    for raw in tokens:
        token = raw.strip("'\"")
        if skip_next:
            skip_next = False
            if raw in {"dev", "test"}:
                dev = True
            continue
        if version_next:
            version_next = False
            if installs:
                last = installs[-1]
                installs[-1] = last._replace(version=token)
            continue
        if token in {"|", "||", ";", ">", "2>&1"}:
            break
        if token.startswith("-"):
            flag = token.split("=", 1)[0]
            if flag in _DEV_FLAGS:
                dev = True
            elif flag in _VERSION_FLAGS and "=" not in token:
                version_next = True
            elif flag in _VALUE_FLAGS and "=" not in token:
                skip_next = True
            continue
        if token in {".", ".."} or token.startswith((".", "/", "~", "$", "<")) or "://" in token:
            continue
        if token.lower() in _FALSE_POSITIVES or not _PACKAGE_TOKEN.match(token):
            continue
        name, version = _split_version(manager, token)
        if name and name.lower() not in _FALSE_POSITIVES:
            installs.append(_Install(manager, name, version, False))
    return [install._replace(dev=dev) for install in installs]


def _split_version(manager: str, token: str) -> Tuple[str, Optional[str]]:
    if manager in {"npm", "pnpm", "yarn", "bun", "cargo", "go"}:
        index = token.rfind("@")
        if index > 0:
            return token[:index], token[index + 1:] or None
        return token, None
    if manager in {"pip", "pipenv", "poetry"}:
        entry = split_requirement(token)
        if entry is None:
            return token, None
        if manager == "poetry" and "@" in token:
            name, _, version = token.partition("@")
            return name, version or None
        return entry.name, entry.version
    if manager == "conda" and "=" in token:
        name, _, version = token.partition("=")
        return name, version.lstrip("=") or None
    if manager == "composer" and ":" in token:
        name, _, version = token.partition(":")
        return name, version or None
    return token, None


class DependencyExtractor(Analyzer):
    """Finds package manifests, the dependencies they declare and install commands."""

    name = "DependencyExtractor"
    kind = PayloadKind.DEPENDENCIES

    PROSE_MENTION_CONFIDENCE = 0.7
    CODE_MENTION_CONFIDENCE = 0.8
    MANIFEST_CONFIDENCE = 0.9
    INSTALL_CONFIDENCE = 0.8

    def analyze(
        self, tree: DocumentTree, text: str, context: ContextIndex
    ) -> AnalysisResult:
        files: Dict[str, PackageFile] = {}
        found: Dict[Tuple[str, str, str], Dependency] = {}

        for block in tree.blocks:
            confidence = self.CODE_MENTION_CONFIDENCE if block.is_code else self.PROSE_MENTION_CONFIDENCE
            for name, line in self._package_file_mentions(block):
                self._add_file(files, name, confidence, line)

        for block in tree.code_blocks():
            manifest = self._manifest_for(tree, block)
            if manifest is not None:
                self._add_file(files, manifest, self.MANIFEST_CONFIDENCE, block.start_line)
                entries = MANIFEST_PARSERS[manifest](block.text)
                self._add_manifest_entries(found, manifest, entries, block.start_line)
                continue
            for line, command in iter_shell_lines(block):
                self._add_installs(found, command, line)

        for block in tree.prose_blocks():
            for line, span in iter_inline_code(block):
                self._add_installs(found, span, line)

        package_files = sorted(files.values(), key=lambda item: (item.line, item.name))
        dependencies = sorted(
            found.values(),
            key=lambda item: (item.name.lower(), item.version or "", item.manager or ""),
        )
        frameworks = self._frameworks(dependencies)

        payload = DependencyInfo(
            package_files=tuple(package_files),
            dependencies=tuple(dependencies),
            frameworks=tuple(frameworks),
        )
        evidence: List[str] = [
            f"package file '{item.name}' at line {item.line}" for item in package_files
        ]
        evidence.extend(message for dep in dependencies for message in dep.evidence)
        confidence = mean(
            [item.confidence for item in package_files] + [dep.confidence for dep in dependencies]
        )
        return self.success(payload, confidence, unique(evidence))

    @staticmethod
    def _package_file_mentions(block: Block) -> Iterable[Tuple[str, int]]:
        for match in PACKAGE_FILE_PATTERN.finditer(block.text):
            line = block.body_start + block.text.count("\n", 0, match.start())
            yield match.group(1), line

    @staticmethod
    def _add_file(files: Dict[str, PackageFile], name: str, confidence: float, line: int) -> None:
        spec = package_file_spec(name)
        if spec is None:
            return
        existing = files.get(name)
        if existing is None:
            files[name] = PackageFile(name, spec.manager, spec.language, confidence, line)
        elif confidence > existing.confidence:
            files[name] = PackageFile(name, spec.manager, spec.language, confidence, min(line, existing.line))

    @staticmethod
    def _manifest_for(tree: DocumentTree, block: Block) -> Optional[str]:
        hints: List[str] = []
        if block.info:
            hints.extend(PACKAGE_FILE_PATTERN.findall(block.info))
        previous = tree.previous(block)
        if previous is not None and previous.is_prose:
            hints.extend(PACKAGE_FILE_PATTERN.findall(previous.text))
        manifest = sniff_manifest(block.tag, block.text, hints)
        if manifest is None:
            return None
        # A filename hint alone is not enough when the block holds commands.
        if not MANIFEST_PARSERS[manifest](block.text):
            return None
        return manifest

    def _add_manifest_entries(
        self,
        found: Dict[Tuple[str, str, str], Dependency],
        manifest: str,
        entries: List[ManifestEntry],
        line: int,
    ) -> None:
        manager = _MANIFEST_MANAGERS.get(manifest)
        for entry in entries:
            self._merge(
                found,
                Dependency(
                    name=entry.name,
                    version=entry.version,
                    manager=manager,
                    confidence=self.MANIFEST_CONFIDENCE,
                    evidence=(f"{manifest} snippet at line {line}",),
                    dev=entry.dev,
                ),
            )

    def _add_installs(
        self, found: Dict[Tuple[str, str, str], Dependency], command: str, line: int
    ) -> None:
        for install in parse_install_command(command):
            self._merge(
                found,
                Dependency(
                    name=install.name,
                    version=install.version,
                    manager=install.manager,
                    confidence=self.INSTALL_CONFIDENCE,
                    evidence=(f"'{command}' at line {line}",),
                    dev=install.dev,
                ),
            )

    @staticmethod
    def _merge(found: Dict[Tuple[str, str, str], Dependency], dependency: Dependency) -> None:
        key = (dependency.manager or "", dependency.name.lower(), dependency.version or "")
        existing = found.get(key)
        if existing is None:
            found[key] = dependency
            return
        keep = dependency if dependency.confidence > existing.confidence else existing
        found[key] = Dependency(
            name=keep.name,
            version=keep.version,
            manager=keep.manager,
            confidence=keep.confidence,
            evidence=unique(existing.evidence + dependency.evidence),
            dev=existing.dev and dependency.dev,
        )

    @staticmethod
    def _frameworks(dependencies: List[Dependency]) -> List[FrameworkInfo]:
        frameworks: Dict[str, FrameworkInfo] = {}
        for dep in dependencies:
            spec = framework_for_package(dep.name)
            if spec is None:
                continue
            message = f"dependency '{dep.name}' ({dep.manager or 'unknown manager'})"
            current = frameworks.get(spec.name)
            if current is None:
                frameworks[spec.name] = FrameworkInfo(
                    name=spec.name,
                    language=spec.language,
                    confidence=dep.confidence,
                    evidence=(message,),
                    category=spec.category,
                )
            else:
                frameworks[spec.name] = FrameworkInfo(
                    name=spec.name,
                    language=spec.language,
                    confidence=max(current.confidence, dep.confidence),
                    evidence=unique(current.evidence + (message,)),
                    category=spec.category,
                )
        return sorted(frameworks.values(), key=lambda item: (-item.confidence, item.name))


__all__ = ["DependencyExtractor", "parse_install_command"]
