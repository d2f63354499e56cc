"""Language and framework detection over the parsed document."""

from __future__ import annotations

import re
from collections import Counter, defaultdict
from typing import Dict, List, NamedTuple, Tuple

from .base import Analyzer, unique
from .utils import (
    FRAMEWORKS,
    LANGUAGES,
    find_filenames,
    framework_for_package,
    normalize_tag,
)
from ..context import ContextIndex
from ..models import (
    AnalysisResult,
    Block,
    DocumentTree,
    EvidenceTier,
    FrameworkInfo,
    LanguageContext,
    LanguageDetection,
    LanguageInfo,
    PayloadKind,
    SourceRange,
)

_JS_IMPORT = re.compile(
    r"""(?:\bfrom\s+['"]|\brequire\(\s*['"]|^\s*import\s+['"])(@?[\w.-]+(?:/[\w.-]+)?)['"]""",
    re.MULTILINE,
)
_PY_IMPORT = re.compile(r"^\s*(?:from|import)\s+([A-Za-z_][\w]*)", re.MULTILINE)


class _Candidate(NamedTuple):
    language: str
    tier: EvidenceTier
    source_range: SourceRange
    evidence: Tuple[str, ...]


class LanguageDetector(Analyzer):
    """Builds language contexts from code tags, filename mentions and prose."""

    name = "LanguageDetector"
    kind = PayloadKind.LANGUAGES
    provides_context = True

    BASE_CONFIDENCE: Dict[EvidenceTier, float] = {
        EvidenceTier.CODE_TAG: 0.9,
        EvidenceTier.FILENAME: 0.8,
        EvidenceTier.TEXT: 0.5,
    }
    CORROBORATION_STEP = 0.05
    MAX_BOOST = 0.1
    # Blank lines allowed between a prose block and the code block it introduces.
    PROXIMITY = 2

    FRAMEWORK_MENTION_CONFIDENCE = 0.7
    FRAMEWORK_IMPORT_CONFIDENCE = 0.8
    FRAMEWORK_CEILING = 0.95

    def analyze(
        self, tree: DocumentTree, text: str, context: ContextIndex
    ) -> AnalysisResult:
        candidates: List[_Candidate] = []
        candidates.extend(self._tag_candidates(tree))
        candidates.extend(self._filename_candidates(tree))
        candidates.extend(self._mention_candidates(tree))

        contexts = self._score(self._resolve_overlaps(candidates))
        languages = self._summarize(contexts)
        frameworks = self._detect_frameworks(tree)

        payload = LanguageDetection(
            contexts=tuple(contexts),
            languages=tuple(languages),
            frameworks=tuple(frameworks),
            primary=languages[0].name if languages else None,
        )
        evidence = unique(item for ctx in contexts for item in ctx.evidence)
        confidence = languages[0].confidence if languages else 0.0
        return self.success(payload, confidence, evidence)

    def _tag_candidates(self, tree: DocumentTree) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for block in tree.code_blocks():
            language = normalize_tag(block.tag)
            if language is None:
                continue
            candidates.append(
                _Candidate(
                    language,
                    EvidenceTier.CODE_TAG,
                    SourceRange.of(block),
                    (f"code block tagged '{block.tag}' at line {block.start_line}",),
                )
            )
        return candidates

    def _filename_candidates(self, tree: DocumentTree) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for block in tree.code_blocks():
            if normalize_tag(block.tag) is not None:
                continue
            previous = tree.previous(block)
            if previous is None or not previous.is_prose:
                continue
            if block.start_line - previous.end_line > self.PROXIMITY + 1:
                continue
            mentions: Dict[str, List[str]] = defaultdict(list)
            for token, language in find_filenames(previous.text):
                mentions[language].append(token)
            for language, tokens in mentions.items():
                evidence = tuple(
                    f"filename '{token}' mentioned at line {previous.start_line}"
                    for token in unique(tokens)
                )
                candidates.append(
                    _Candidate(
                        language,
                        EvidenceTier.FILENAME,
                        SourceRange.of(previous, block),
                        evidence,
                    )
                )
        return candidates

    def _mention_candidates(self, tree: DocumentTree) -> List[_Candidate]:
        candidates: List[_Candidate] = []
        for block in tree.prose_blocks():
            for spec in LANGUAGES:
                found = [
                    match.group(0)
                    for pattern in spec.mentions
                    for match in pattern.finditer(block.text)
                ]
                if not found:
                    continue
                evidence = tuple(
                    f"'{token}' mentioned at line {block.start_line}" for token in unique(found)
                )
                candidates.append(
                    _Candidate(spec.name, EvidenceTier.TEXT, SourceRange.of(block), evidence)
                )
        return candidates

    @staticmethod
    def _resolve_overlaps(candidates: List[_Candidate]) -> List[_Candidate]:
        """Drop candidates contradicted by a higher-priority overlapping source."""
        survivors: List[_Candidate] = []
        for candidate in candidates:
            beaten = any(
                other.tier < candidate.tier
                and other.language != candidate.language
                and other.source_range.overlaps(candidate.source_range)
                for other in candidates
            )
            if not beaten:
                survivors.append(candidate)
        return survivors

    def _score(self, candidates: List[_Candidate]) -> List[LanguageContext]:
        per_language = Counter(candidate.language for candidate in candidates)
        contexts: List[LanguageContext] = []
        for candidate in candidates:
            corroboration = (len(candidate.evidence) - 1) + (per_language[candidate.language] - 1)
            boost = min(self.MAX_BOOST, self.CORROBORATION_STEP * corroboration)
            contexts.append(
                LanguageContext(
                    language=candidate.language,
                    confidence=min(1.0, self.BASE_CONFIDENCE[candidate.tier] + boost),
                    source_range=candidate.source_range,
                    evidence=candidate.evidence,
                    origin=self.name,
                    tier=candidate.tier,
                )
            )
        contexts.sort(
            key=lambda ctx: (ctx.source_range.start_line, int(ctx.tier), ctx.language)
        )
        return contexts

    @staticmethod
    def _summarize(contexts: List[LanguageContext]) -> List[LanguageInfo]:
        grouped: Dict[str, List[LanguageContext]] = defaultdict(list)
        for ctx in contexts:
            grouped[ctx.language].append(ctx)
        languages = [
            LanguageInfo(
                name=language,
                confidence=max(ctx.confidence for ctx in items),
                evidence=unique(item for ctx in items for item in ctx.evidence),
                first_line=min(ctx.source_range.start_line for ctx in items),
            )
            for language, items in grouped.items()
        ]
        languages.sort(key=lambda info: (-info.confidence, -len(info.evidence), info.first_line, info.name))
        return languages

    def _detect_frameworks(self, tree: DocumentTree) -> List[FrameworkInfo]:
        findings: Dict[str, List[Tuple[float, str]]] = defaultdict(list)
        for block in tree.prose_blocks():
            for spec in FRAMEWORKS:
                for pattern in spec.mentions:
                    for match in pattern.finditer(block.text):
                        findings[spec.name].append(
                            (
                                self.FRAMEWORK_MENTION_CONFIDENCE,
                                f"'{match.group(0)}' mentioned at line {block.start_line}",
                            )
                        )
        for block in tree.code_blocks():
            for line, package in self._imports(block):
                spec = framework_for_package(package)
                if spec is not None:
                    findings[spec.name].append(
                        (self.FRAMEWORK_IMPORT_CONFIDENCE, f"imports '{package}' at line {line}")
                    )

        frameworks: List[FrameworkInfo] = []
        by_name = {spec.name: spec for spec in FRAMEWORKS}
        for name, items in findings.items():
            spec = by_name[name]
            evidence = unique(message for _, message in items)
            confidence = min(
                self.FRAMEWORK_CEILING,
                max(score for score, _ in items) + self.CORROBORATION_STEP * (len(evidence) - 1),
            )
            frameworks.append(
                FrameworkInfo(
                    name=name,
                    language=spec.language,
                    confidence=confidence,
                    evidence=evidence,
                    category=spec.category,
                )
            )
        frameworks.sort(key=lambda item: (-item.confidence, item.name))
        return frameworks

    @staticmethod
    def _imports(block: Block) -> List[Tuple[int, str]]:
        language = normalize_tag(block.tag)
        pattern = None
        if language in {"JavaScript", "TypeScript"}:
            pattern = _JS_IMPORT
        elif language == "Python":
            pattern = _PY_IMPORT
        if pattern is None:
            return []
        found: List[Tuple[int, str]] = []
        for number, line in block.lines():
            for match in pattern.finditer(line):
                found.append((number, match.group(1).lower()))
        return found


__all__ = ["LanguageDetector"]
