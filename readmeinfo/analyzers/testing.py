"""Testing framework and tooling detection."""

from __future__ import annotations

import re
from collections import defaultdict
from typing import Dict, Iterator, List, Tuple

from .base import Analyzer, noisy_or, unique
from .commands import match_pattern
from .dependencies import parse_install_command
from .utils import (
    GENERIC_TEST_COMMANDS,
    MANIFEST_PARSERS,
    TEST_FRAMEWORKS,
    TEST_TOOLS,
    iter_inline_code,
    iter_shell_lines,
    sniff_manifest,
)
from ..context import ContextIndex
from ..models import (
    AnalysisResult,
    DocumentTree,
    PayloadKind,
    TestingFramework,
    TestingInfo,
    UnmatchedEvidence,
)

_CONFIG_FILES: Dict[str, str] = {
    config: spec.name for spec in TEST_FRAMEWORKS for config in spec.config_files
}
_CONFIG_PATTERN = re.compile(
    r"(?<![\w.-])("
    + "|".join(re.escape(name) for name in sorted(_CONFIG_FILES, key=len, reverse=True))
    + r")(?![\w-])"
)
_PREFIX = re.compile(r"^(?:sudo\s+|[A-Z_][A-Z0-9_]*=\S*\s+)+")


class TestingDetector(Analyzer):
    """Detects test frameworks from mentions, config files, commands and packages."""

    __test__ = False

    name = "TestingDetector"
    kind = PayloadKind.TESTING

    MENTION_CONFIDENCE = 0.6
    PACKAGE_CONFIDENCE = 0.8
    COMMAND_CONFIDENCE = 0.85
    CONFIG_CONFIDENCE = 0.9
    UNMATCHED_CONFIDENCE = 0.3

    def analyze(
        self, tree: DocumentTree, text: str, context: ContextIndex
    ) -> AnalysisResult:
        findings: Dict[str, List[Tuple[float, str]]] = defaultdict(list)
        configs: Dict[str, List[str]] = defaultdict(list)
        config_files: List[str] = []
        commands: List[str] = []
        generic: List[UnmatchedEvidence] = []
        tools: List[str] = []

        for block in tree.prose_blocks():
            for spec in TEST_FRAMEWORKS:
                for pattern in spec.mentions:
                    for match in pattern.finditer(block.text):
                        findings[spec.name].append(
                            (
                                self.MENTION_CONFIDENCE,
                                f"'{match.group(0)}' mentioned at line {block.start_line}",
                            )
                        )

        for block in tree.blocks:
            for match in _CONFIG_PATTERN.finditer(block.text):
                config = match.group(1)
                framework = _CONFIG_FILES[config]
                line_no = block.body_start + block.text.count("\n", 0, match.start())
                findings[framework].append(
                    (self.CONFIG_CONFIDENCE, f"config file '{config}' at line {line_no}")
                )
                configs[framework].append(config)
                config_files.append(config)
            for _, line in block.lines():
                for tool, pattern in TEST_TOOLS:
                    if pattern.search(line):
                        tools.append(tool)

        for number, command in self._commands(tree):
            normalised = _PREFIX.sub("", command)
            matched = False
            for spec in TEST_FRAMEWORKS:
                if any(pattern.match(normalised) for pattern in spec.commands):
                    findings[spec.name].append(
                        (self.COMMAND_CONFIDENCE, f"command '{command}' at line {number}")
                    )
                    matched = True
            for pattern, language in GENERIC_TEST_COMMANDS:
                if pattern.match(normalised):
                    generic.append(UnmatchedEvidence(command, language, number))
                    matched = True
                    break
            if matched:
                commands.append(command)
            for install in parse_install_command(command):
                self._match_package(findings, install.name, number)

        for block in tree.code_blocks():
            manifest = sniff_manifest(block.tag, block.text)
            if manifest is None:
                continue
            for entry in MANIFEST_PARSERS[manifest](block.text):
                self._match_package(findings, entry.name, block.start_line)

        frameworks = []
        for spec in TEST_FRAMEWORKS:
            items = findings.get(spec.name)
            if not items:
                continue
            frameworks.append(
                TestingFramework(
                    name=spec.name,
                    language=spec.language,
                    confidence=noisy_or(score for score, _ in items),
                    evidence=unique(message for _, message in items),
                    config_files=unique(configs.get(spec.name, [])),
                )
            )
        frameworks.sort(key=lambda item: (-item.confidence, item.name))

        detected_languages = {framework.language for framework in frameworks}
        unmatched = tuple(
            item
            for item in generic
            if (item.language is None and not frameworks)
            or (item.language is not None and item.language not in detected_languages)
        )

        payload = TestingInfo(
            frameworks=tuple(frameworks),
            tools=unique(tools),
            config_files=unique(config_files),
            commands=unique(commands),
            unmatched=unmatched,
        )
        if frameworks:
            confidence = frameworks[0].confidence
        elif commands:
            confidence = self.UNMATCHED_CONFIDENCE
        else:
            confidence = 0.0
        evidence = [message for framework in frameworks for message in framework.evidence]
        evidence.extend(f"unmatched test command '{item.text}' at line {item.line}" for item in unmatched)
        return self.success(payload, confidence, unique(evidence))

    @staticmethod
    def _commands(tree: DocumentTree) -> Iterator[Tuple[int, str]]:
        for block in tree.code_blocks():
            for number, command in iter_shell_lines(block):
                if match_pattern(command) is not None:
                    yield number, command
        for block in tree.prose_blocks():
            for number, span in iter_inline_code(block):
                if match_pattern(span) is not None:
                    yield number, span

    def _match_package(
        self, findings: Dict[str, List[Tuple[float, str]]], package: str, line: int
    ) -> None:
        lowered = package.lower()
        for spec in TEST_FRAMEWORKS:
            if lowered in spec.packages:
                findings[spec.name].append(
                    (self.PACKAGE_CONFIDENCE, f"package '{package}' at line {line}")
                )


__all__ = ["TestingDetector"]
