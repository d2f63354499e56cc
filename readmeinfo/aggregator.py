"""Merge analyzer results into one ProjectInfo with conflict resolution."""

from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from .analyzers.base import unique
from .analyzers.utils import (
    INCOMPATIBLE_FRAMEWORKS,
    LANGUAGE_TOOLS,
    package_files_for_language,
    testing_frameworks_for_language,
)
from .config import AggregationSettings
from .diagnostics import (
    INCOMPATIBLE_FRAMEWORKS as INCOMPATIBLE_CODE,
    LOW_CONFIDENCE,
    NO_ANALYSIS_RESULTS,
    UNMATCHED_TEST_EVIDENCE,
    VERSION_CONFLICT,
    DiagnosticsCollector,
)
from .logging import get_logger
from .models import (
    AnalysisResult,
    Command,
    CommandCategory,
    CommandSet,
    ConflictRecord,
    Dependency,
    DependencyInfo,
    FrameworkInfo,
    LanguageDetection,
    LanguageInfo,
    PackageFile,
    PayloadKind,
    ProjectInfo,
    ProjectMetadata,
    Severity,
    TestingFramework,
    TestingInfo,
    clamp,
)

CATEGORY_WEIGHTS: Dict[PayloadKind, float] = {
    PayloadKind.LANGUAGES: 0.25,
    PayloadKind.COMMANDS: 0.25,
    PayloadKind.DEPENDENCIES: 0.2,
    PayloadKind.TESTING: 0.15,
    PayloadKind.METADATA: 0.15,
}

PAYLOAD_TYPES: Dict[PayloadKind, type] = {
    PayloadKind.LANGUAGES: LanguageDetection,
    PayloadKind.COMMANDS: CommandSet,
    PayloadKind.DEPENDENCIES: DependencyInfo,
    PayloadKind.TESTING: TestingInfo,
    PayloadKind.METADATA: ProjectMetadata,
}

CORROBORATION_STEP = 0.05
MAX_CORROBORATION = 0.2

_STATUS_RANK = {"detected": 0, "primary": 1, "secondary": 2, "needs-review": 3}


def category_confidence(results: Sequence[AnalysisResult]) -> float:
    """Evidence-weighted mean of result confidences.

    Each successful result weighs as many units as it has evidence items; a
    failed result contributes zero confidence with unit weight. Distinct
    corroborating evidence then closes part of the remaining gap to 1.0.
    """
    if not results:
        return 0.0
    weighted = 0.0
    total = 0.0
    for result in results:
        weight = float(max(1, len(result.evidence))) if result.ok else 1.0
        weighted += weight * result.confidence
        total += weight
    mean = weighted / total
    if mean <= 0.0:
        return 0.0
    sources = len({item for result in results if result.ok for item in result.evidence})
    boost = min(MAX_CORROBORATION, CORROBORATION_STEP * max(0, sources - 1))
    return clamp(mean + boost * (1.0 - mean))


def empty_commands() -> Dict[str, Tuple[Command, ...]]:
    return {category.value: () for category in CommandCategory}


def empty_project_info() -> ProjectInfo:
    confidence = {kind.value: 0.0 for kind in CATEGORY_WEIGHTS}
    confidence["overall"] = 0.0
    return ProjectInfo(
        metadata=ProjectMetadata(),
        languages=(),
        primary_language=None,
        frameworks=(),
        dependencies=DependencyInfo(),
        commands=empty_commands(),
        testing=TestingInfo(),
        confidence=confidence,
    )


class Aggregator:
    """Combines per-analyzer results, resolving duplicates and conflicts."""

    def __init__(self, settings: AggregationSettings | None = None) -> None:
        self.settings = settings or AggregationSettings()
        self.logger = get_logger("aggregator")

    def aggregate(
        self, results: Sequence[AnalysisResult], diagnostics: DiagnosticsCollector
    ) -> ProjectInfo:
        if not results:
            diagnostics.record(
                Severity.WARNING,
                "aggregation",
                NO_ANALYSIS_RESULTS,
                "No analyzer produced results; every confidence is zero",
                remediation=("Enable at least one analyzer",),
            )
            return empty_project_info()

        by_kind: Dict[PayloadKind, List[AnalysisResult]] = defaultdict(list)
        payloads: Dict[PayloadKind, List[Any]] = defaultdict(list)
        extensions: Dict[str, Any] = {}
        for result in results:
            by_kind[result.kind].append(result)
            if not result.ok:
                continue
            expected = PAYLOAD_TYPES.get(result.kind)
            if expected is not None and isinstance(result.payload, expected):
                payloads[result.kind].append(result.payload)
            else:
                extensions[result.analyzer] = result.payload

        conflicts: List[ConflictRecord] = []

        languages = self._languages(payloads[PayloadKind.LANGUAGES], conflicts)
        dependency_info = self._dependencies(
            payloads[PayloadKind.DEPENDENCIES], conflicts, diagnostics
        )
        frameworks = self._frameworks(
            [
                framework
                for payload in payloads[PayloadKind.LANGUAGES]
                for framework in payload.frameworks
            ]
            + list(dependency_info.frameworks),
            conflicts,
            diagnostics,
        )
        commands = self._commands(payloads[PayloadKind.COMMANDS], conflicts)
        testing = self._testing(payloads[PayloadKind.TESTING], conflicts)
        metadata = self._metadata(
            [result for result in by_kind[PayloadKind.METADATA] if result.ok]
        )

        confidence = {
            kind.value: category_confidence(by_kind.get(kind, []))
            for kind in CATEGORY_WEIGHTS
        }
        confidence["overall"] = clamp(
            sum(CATEGORY_WEIGHTS[kind] * confidence[kind.value] for kind in CATEGORY_WEIGHTS)
        )

        project = ProjectInfo(
            metadata=metadata,
            languages=tuple(languages),
            primary_language=languages[0].name if languages else None,
            frameworks=tuple(frameworks),
            dependencies=dependency_info,
            commands=commands,
            testing=testing,
            confidence=confidence,
            conflicts=tuple(conflicts),
            extensions=extensions,
        )
        self._suggest(project, diagnostics)
        self.logger.debug(
            "Aggregated %d results into %d languages, %d frameworks, %d conflicts",
            len(results),
            len(languages),
            len(frameworks),
            len(conflicts),
        )
        return project

    # Duplicates

    @staticmethod
    def _merge_duplicates(
        items: Iterable[Any],
        key: Callable[[Any], Any],
        label: Callable[[Any], str],
        kind: str,
        conflicts: List[ConflictRecord],
    ) -> List[Any]:
        groups: Dict[Any, List[Any]] = {}
        for item in items:
            groups.setdefault(key(item), []).append(item)

        merged: List[Any] = []
        for group in groups.values():
            if len(group) == 1:
                merged.append(group[0])
                continue
            winner = max(group, key=lambda item: item.confidence)
            evidence = unique(
                entry for item in group for entry in item.evidence
            )
            merged.append(replace(winner, evidence=evidence))
            conflicts.append(
                ConflictRecord(
                    kind="duplicate",
                    subject=f"{kind} {label(winner)}",
                    candidates=tuple(
                        f"{label(item)} ({item.confidence:.2f})" for item in group
                    ),
                    resolution=f"kept confidence {winner.confidence:.2f}",
                    detail=f"merged evidence from {len(group)} detections",
                )
            )
        return merged

    def _languages(
        self, payloads: List[LanguageDetection], conflicts: List[ConflictRecord]
    ) -> List[LanguageInfo]:
        languages = self._merge_duplicates(
            (info for payload in payloads for info in payload.languages),
            key=lambda info: info.name.lower(),
            label=lambda info: info.name,
            kind="language",
            conflicts=conflicts,
        )
        languages.sort(
            key=lambda info: (-info.confidence, -len(info.evidence), info.first_line, info.name)
        )
        return languages

    # Frameworks

    def _frameworks(
        self,
        detected: List[FrameworkInfo],
        conflicts: List[ConflictRecord],
        diagnostics: DiagnosticsCollector,
    ) -> List[FrameworkInfo]:
        frameworks = self._merge_duplicates(
            detected,
            key=lambda info: info.name.lower(),
            label=lambda info: info.name,
            kind="framework",
            conflicts=conflicts,
        )
        by_name = {framework.name: framework for framework in frameworks}
        statuses: Dict[str, str] = {name: "detected" for name in by_name}

        def promote(name: str, status: str) -> None:
            if _STATUS_RANK[status] > _STATUS_RANK[statuses[name]]:
                statuses[name] = status

        margin = self.settings.conflict_margin
        for first, second in INCOMPATIBLE_FRAMEWORKS:
            left, right = by_name.get(first), by_name.get(second)
            if left is None or right is None:
                continue
            high, low = (left, right) if left.confidence >= right.confidence else (right, left)
            gap = high.confidence - low.confidence
            if gap > margin:
                promote(high.name, "primary")
                promote(low.name, "secondary")
                resolution = f"{high.name} is primary"
                message = (
                    f"Incompatible frameworks detected: {high.name} ({high.confidence:.2f}) "
                    f"and {low.name} ({low.confidence:.2f}); treating {high.name} as primary"
                )
            else:
                promote(high.name, "needs-review")
                promote(low.name, "needs-review")
                resolution = "needs manual review"
                message = (
                    f"Incompatible frameworks detected: {high.name} ({high.confidence:.2f}) "
                    f"and {low.name} ({low.confidence:.2f}); confidence gap {gap:.2f} is within "
                    f"the {margin:.2f} margin, both flagged for review"
                )
            conflicts.append(
                ConflictRecord(
                    kind="incompatible",
                    subject=f"{high.name} / {low.name}",
                    candidates=(
                        f"{high.name} ({high.confidence:.2f})",
                        f"{low.name} ({low.confidence:.2f})",
                    ),
                    resolution=resolution,
                    detail=f"confidence gap {gap:.2f}",
                )
            )
            diagnostics.record(
                Severity.WARNING,
                "conflict",
                INCOMPATIBLE_CODE,
                message,
                remediation=("Check which framework the project actually uses",),
                suggestions=(high.name, low.name),
            )

        resolved = [replace(framework, status=statuses[framework.name]) for framework in frameworks]
        resolved.sort(key=lambda info: (-info.confidence, info.name))
        return resolved

    # Commands

    def _commands(
        self, payloads: List[CommandSet], conflicts: List[ConflictRecord]
    ) -> Dict[str, Tuple[Command, ...]]:
        best: Dict[str, Command] = {}
        counts: Counter[str] = Counter()
        for payload in payloads:
            for command in payload.commands:
                counts[command.text] += 1
                existing = best.get(command.text)
                if existing is None or command.confidence > existing.confidence:
                    best[command.text] = command
        for text, count in sorted(counts.items()):
            if count > 1:
                conflicts.append(
                    ConflictRecord(
                        kind="duplicate",
                        subject=f"command {text}",
                        candidates=(text,) * count,
                        resolution=f"kept confidence {best[text].confidence:.2f}",
                        detail=f"reported by {count} analyzers",
                    )
                )

        grouped: Dict[str, List[Command]] = {category.value: [] for category in CommandCategory}
        for command in best.values():
            grouped[command.category.value].append(command)
        return {
            category: tuple(sorted(items, key=lambda command: (command.line, command.text)))
            for category, items in grouped.items()
        }

    # Dependencies

    def _dependencies(
        self,
        payloads: List[DependencyInfo],
        conflicts: List[ConflictRecord],
        diagnostics: DiagnosticsCollector,
    ) -> DependencyInfo:
        files: Dict[str, PackageFile] = {}
        for payload in payloads:
            for package_file in payload.package_files:
                existing = files.get(package_file.name)
                if existing is None or package_file.confidence > existing.confidence:
                    files[package_file.name] = package_file

        merged = self._merge_duplicates(
            (dependency for payload in payloads for dependency in payload.dependencies),
            key=lambda dep: (dep.manager, dep.name.lower(), dep.version),
            label=lambda dep: dep.name,
            kind="dependency",
            conflicts=conflicts,
        )

        groups: Dict[Tuple[Optional[str], str], List[Dependency]] = defaultdict(list)
        for dependency in merged:
            groups[(dependency.manager, dependency.name.lower())].append(dependency)

        dependencies: List[Dependency] = []
        for group in groups.values():
            dependencies.extend(self._resolve_versions(group, conflicts, diagnostics))
        dependencies.sort(key=lambda dep: (dep.manager or "", dep.name.lower(), dep.version or ""))

        frameworks = [
            framework for payload in payloads for framework in payload.frameworks
        ]
        return DependencyInfo(
            package_files=tuple(sorted(files.values(), key=lambda item: (item.line, item.name))),
            dependencies=tuple(dependencies),
            frameworks=tuple(frameworks),
        )

    def _resolve_versions(
        self,
        group: List[Dependency],
        conflicts: List[ConflictRecord],
        diagnostics: DiagnosticsCollector,
    ) -> List[Dependency]:
        versioned = [dep for dep in group if dep.version]
        unversioned = [dep for dep in group if not dep.version]
        if not versioned:
            return group
        if unversioned:
            # An unpinned mention corroborates the pinned declarations.
            extra = tuple(item for dep in unversioned for item in dep.evidence)
            versioned = [
                replace(dep, evidence=unique(dep.evidence + extra)) for dep in versioned
            ]
        if len(versioned) == 1:
            return versioned

        ranked = sorted(versioned, key=lambda dep: (-dep.confidence, dep.version or ""))
        top, runner_up = ranked[0], ranked[1]
        name = top.name
        candidates = tuple(f"{dep.version} ({dep.confidence:.2f})" for dep in ranked)
        gap = top.confidence - runner_up.confidence
        if gap > self.settings.conflict_margin:
            conflicts.append(
                ConflictRecord(
                    kind="version",
                    subject=f"dependency {name}",
                    candidates=candidates,
                    resolution=f"kept {top.version}",
                    detail=f"confidence gap {gap:.2f}",
                )
            )
            evidence = unique(item for dep in ranked for item in dep.evidence)
            return [replace(top, evidence=evidence)]

        conflicts.append(
            ConflictRecord(
                kind="version",
                subject=f"dependency {name}",
                candidates=candidates,
                resolution="needs manual review",
                detail=f"confidence gap {gap:.2f}",
            )
        )
        diagnostics.record(
            Severity.WARNING,
            "conflict",
            VERSION_CONFLICT,
            f"Dependency {name} declares conflicting versions: {', '.join(candidates)}",
            remediation=("Pin a single version in the README",),
            suggestions=tuple(dep.version or "" for dep in ranked),
        )
        return [replace(dep, status="needs-review") for dep in ranked]

    # Testing and metadata

    def _testing(
        self, payloads: List[TestingInfo], conflicts: List[ConflictRecord]
    ) -> TestingInfo:
        frameworks: List[TestingFramework] = self._merge_duplicates(
            (framework for payload in payloads for framework in payload.frameworks),
            key=lambda info: info.name.lower(),
            label=lambda info: info.name,
            kind="testing framework",
            conflicts=conflicts,
        )
        frameworks.sort(key=lambda info: (-info.confidence, info.name))
        languages = {framework.language for framework in frameworks}
        unmatched = tuple(
            item
            for payload in payloads
            for item in payload.unmatched
            if item.language is None or item.language not in languages
        )
        return TestingInfo(
            frameworks=tuple(frameworks),
            tools=unique(tool for payload in payloads for tool in payload.tools),
            config_files=unique(name for payload in payloads for name in payload.config_files),
            commands=unique(command for payload in payloads for command in payload.commands),
            unmatched=unmatched,
        )

    @staticmethod
    def _metadata(results: List[AnalysisResult]) -> ProjectMetadata:
        ordered = [
            result.payload
            for result in sorted(results, key=lambda result: -result.confidence)
            if isinstance(result.payload, ProjectMetadata)
        ]
        if not ordered:
            return ProjectMetadata()
        if len(ordered) == 1:
            return ordered[0]

        def first(attribute: str) -> Any:
            for payload in ordered:
                value = getattr(payload, attribute)
                if value:
                    return value
            return getattr(ordered[0], attribute)

        return ProjectMetadata(
            name=first("name"),
            description=first("description"),
            version=first("version"),
            license=first("license"),
            repository=first("repository"),
            environment=first("environment"),
            structure=first("structure"),
        )

    # Suggestions

    def _suggest(self, project: ProjectInfo, diagnostics: DiagnosticsCollector) -> None:
        threshold = self.settings.suggestion_threshold
        primary = project.primary_language
        for kind in CATEGORY_WEIGHTS:
            value = project.confidence[kind.value]
            if value >= threshold:
                continue
            diagnostics.record(
                Severity.INFO,
                "confidence",
                LOW_CONFIDENCE,
                f"Low confidence for {kind.value} ({value:.2f} < {threshold:.2f})",
                suggestions=self._alternatives(kind, project),
                remediation=(f"Document the project's {kind.value} more explicitly",),
            )

        for item in project.testing.unmatched:
            language = item.language or primary
            diagnostics.record(
                Severity.INFO,
                "testing",
                UNMATCHED_TEST_EVIDENCE,
                f"Test command '{item.text}' at line {item.line} did not match a known test framework",
                suggestions=tuple(testing_frameworks_for_language(language)),
                line=item.line,
            )

    @staticmethod
    def _alternatives(kind: PayloadKind, project: ProjectInfo) -> Tuple[str, ...]:
        primary = project.primary_language
        if kind is PayloadKind.LANGUAGES:
            counts = Counter(
                command.language
                for commands in project.commands.values()
                for command in commands
                if command.language
            )
            known = {info.name for info in project.languages}
            ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
            return tuple(language for language, _ in ranked if language not in known)
        if kind is PayloadKind.COMMANDS:
            return LANGUAGE_TOOLS.get(primary or "", ())
        if kind is PayloadKind.DEPENDENCIES:
            return tuple(package_files_for_language(primary))
        if kind is PayloadKind.TESTING:
            detected = {framework.name for framework in project.testing.frameworks}
            return tuple(
                name for name in testing_frameworks_for_language(primary) if name not in detected
            )
        return ()


__all__ = [
    "Aggregator",
    "CATEGORY_WEIGHTS",
    "category_confidence",
    "empty_commands",
    "empty_project_info",
]
