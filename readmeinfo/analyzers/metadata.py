"""Project metadata extraction: title, description, license, environment and layout."""

from __future__ import annotations

import re
import tomllib
from typing import Dict, List, Optional, Tuple

from .base import Analyzer, unique
from .utils import clean_tag, load_json_object, strip_markdown
from ..context import ContextIndex
from ..models import (
    AnalysisResult,
    Block,
    BlockKind,
    DocumentTree,
    EnvVar,
    PayloadKind,
    ProjectMetadata,
)

GENERIC_TITLES = frozenset(
    {
        "readme",
        "readme.md",
        "about",
        "overview",
        "introduction",
        "contents",
        "table of contents",
        "documentation",
        "getting started",
    }
)

_REPOSITORY = re.compile(
    r"https?://(?:www\.)?(github\.com|gitlab\.com|bitbucket\.org)/([\w.-]+)/([\w.-]+?)(?:\.git)?(?=[/)#?\s\"'>\]]|$)"
)
_RESERVED_OWNERS = frozenset({"sponsors", "orgs", "features", "topics", "marketplace", "apps"})
_VERSION_BADGE = re.compile(r"badge/(?:version|release)-v?(\d+\.\d+(?:\.\d+)?)", re.I)
_VERSION_TAG = re.compile(r"(?<![\w./-])v(\d+\.\d+\.\d+(?:-[\w.]+)?)\b")
_LICENSE_HEADING = re.compile(r"^licen[cs]e\b", re.I)
_LICENSE_BADGE = re.compile(r"badge/licen[cs]e-((?:[\w.+]|--)+?)-[\w]+", re.I)

# Ordered so that more specific names win.
LICENSES: Tuple[Tuple[re.Pattern[str], str], ...] = (
    (re.compile(r"\bAGPL(?:[- ]?v?3(?:\.0)?)?\b|Affero General Public", re.I), "AGPL-3.0"),
    (re.compile(r"\bLGPL(?:[- ]?v?3(?:\.0)?)?\b|Lesser General Public", re.I), "LGPL-3.0"),
    (re.compile(r"\bGPL[- ]?v?2(?:\.0)?\b|General Public License,? (?:version|v) ?2", re.I), "GPL-2.0"),
    (re.compile(r"\bGPL(?:[- ]?v?3(?:\.0)?)?\b|General Public License", re.I), "GPL-3.0"),
    (re.compile(r"\bApache(?:[- ]License)?[-, ]*(?:Version )?2(?:\.0)?\b|\bApache\b", re.I), "Apache-2.0"),
    (re.compile(r"\bBSD[- ]2\b|2-Clause BSD|BSD-2-Clause", re.I), "BSD-2-Clause"),
    (re.compile(r"\bBSD\b", re.I), "BSD-3-Clause"),
    (re.compile(r"\bMPL(?:[- ]?2(?:\.0)?)?\b|Mozilla Public", re.I), "MPL-2.0"),
    (re.compile(r"\bISC\b"), "ISC"),
    (re.compile(r"\bUnlicense\b", re.I), "Unlicense"),
    (re.compile(r"\bCC0\b", re.I), "CC0-1.0"),
    (re.compile(r"\bMIT\b"), "MIT"),
)

_ENV_HEADING = re.compile(r"environment|\benv\b|configuration|\bconfig\b|settings|variables", re.I)
_ENV_TAGS = frozenset({"env", "dotenv", ".env", "properties", "ini"})
_ENV_NAME = r"[A-Z][A-Z0-9]*(?:_[A-Z0-9]+)+|[A-Z]{3,}[0-9]*"
_ENV_ASSIGNMENT = re.compile(
    rf"""^\s*(?:export\s+|set\s+)?({_ENV_NAME})\s*=\s*("[^"]*"|'[^']*'|[^\s#'"]*)\s*(?:#\s*(.*?))?\s*$"""
)
_ENV_ACCESS = re.compile(
    rf"""process\.env\.({_ENV_NAME})\b"""
    rf"""|process\.env\[\s*['"]({_ENV_NAME})['"]\s*\]"""
    rf"""|os\.environ\[\s*['"]({_ENV_NAME})['"]\s*\]"""
    rf"""|os\.(?:environ\.get|getenv)\(\s*['"]({_ENV_NAME})['"](?:\s*,\s*['"]([^'"]*)['"])?"""
    rf"""|ENV\[\s*['"]({_ENV_NAME})['"]\s*\]"""
    rf"""|os\.Getenv\(\s*"({_ENV_NAME})"\s*\)"""
    rf"""|std::env::var\(\s*"({_ENV_NAME})"\s*\)"""
)
_ENV_ITEM = re.compile(rf"^\s*(?:[-*+]|\d+[.)])\s+`({_ENV_NAME})`\s*(?:[:=–-]\s*)?(.*)$")
_DEFAULT = re.compile(r"\bdefaults?(?:\s+(?:is|to))?\s*[:=]?\s*`([^`]+)`|\bdefaults?(?:\s+(?:is|to))?\s*[:=]?\s*([\w./:-]+)", re.I)
_OPTIONAL = re.compile(r"\(optional\)|\boptional\b", re.I)

COMMON_ENV_DESCRIPTIONS: Dict[str, str] = {
    "PORT": "Port the server listens on",
    "HOST": "Host address the server binds to",
    "NODE_ENV": "Node.js runtime environment",
    "DEBUG": "Enables debug output",
    "LOG_LEVEL": "Logging verbosity",
    "DATABASE_URL": "Database connection string",
    "REDIS_URL": "Redis connection string",
    "SECRET_KEY": "Secret used to sign sessions and tokens",
    "API_KEY": "API key for the external service",
    "JWT_SECRET": "Secret used to sign JSON Web Tokens",
}

_TREE_LINE = re.compile(r"^(?P<prefix>[\s│|]*)(?:├──|└──|\|--|`--|\+--)\s*(?P<name>.+?)\s*(?:#.*)?$")
_TREE_MARKERS = ("├──", "└──", "|--", "`--")


class MetadataExtractor(Analyzer):
    """Pulls descriptive project metadata out of prose and sample manifests."""

    name = "MetadataExtractor"
    kind = PayloadKind.METADATA

    WEIGHTS = {"name": 0.4, "description": 0.3, "structure": 0.2, "environment": 0.1}
    STRUCTURE_CONFIDENCE = 0.8
    ENVIRONMENT_CONFIDENCE = 0.8

    def analyze(
        self, tree: DocumentTree, text: str, context: ContextIndex
    ) -> AnalysisResult:
        manifest = self._manifest_fields(tree)
        repository = self._repository(text)
        evidence: List[str] = []

        name, name_confidence = self._name(tree, repository, manifest, evidence)
        description, description_confidence = self._description(tree, manifest, evidence)
        version = self._version(tree, manifest, evidence)
        license_id = self._license(tree, manifest, evidence)
        environment = self._environment(tree, evidence)
        structure = self._structure(tree, evidence)
        if repository:
            evidence.append(f"repository {repository}")

        payload = ProjectMetadata(
            name=name,
            description=description,
            version=version,
            license=license_id,
            repository=repository,
            environment=tuple(environment),
            structure=tuple(structure),
        )
        confidence = (
            self.WEIGHTS["name"] * name_confidence
            + self.WEIGHTS["description"] * description_confidence
            + self.WEIGHTS["structure"] * (self.STRUCTURE_CONFIDENCE if structure else 0.0)
            + self.WEIGHTS["environment"] * (self.ENVIRONMENT_CONFIDENCE if environment else 0.0)
        )
        return self.success(payload, confidence, unique(evidence))

    # Name and description

    def _title_block(self, tree: DocumentTree) -> Optional[Block]:
        for block in tree.headings():
            if block.level != 1:
                continue
            title = strip_markdown(block.text)
            if title and title.lower() not in GENERIC_TITLES:
                return block
        return None

    def _name(
        self,
        tree: DocumentTree,
        repository: Optional[str],
        manifest: Dict[str, str],
        evidence: List[str],
    ) -> Tuple[Optional[str], float]:
        block = self._title_block(tree)
        if block is not None:
            evidence.append(f"title heading at line {block.start_line}")
            return strip_markdown(block.text), 0.9
        if repository:
            evidence.append("name taken from repository URL")
            return repository.rstrip("/").rsplit("/", 1)[-1], 0.7
        if manifest.get("name"):
            evidence.append("name taken from sample manifest")
            return manifest["name"], 0.6
        return None, 0.0

    def _description(
        self, tree: DocumentTree, manifest: Dict[str, str], evidence: List[str]
    ) -> Tuple[Optional[str], float]:
        title = self._title_block(tree)
        candidates = list(tree.blocks)
        if title is not None:
            candidates = candidates[candidates.index(title) + 1 :]

        for block in candidates:
            if block.kind is BlockKind.HEADING:
                if block.level == 2:
                    break
                continue
            if block.kind is not BlockKind.PARAGRAPH:
                continue
            lead = block.text.lstrip()
            if lead.startswith(">"):
                quoted = strip_markdown(
                    " ".join(line.strip().lstrip(">").strip() for line in block.text.split("\n"))
                )
                if quoted and title is not None:
                    evidence.append(f"blockquote description at line {block.start_line}")
                    return quoted, 0.8
                continue
            if re.match(r"(?:[-*+]|\d+[.)])\s|[|<]", lead):
                continue
            plain = strip_markdown(block.text)
            if 10 <= len(plain) <= 500 and plain[-1] in ".!?":
                evidence.append(f"description paragraph at line {block.start_line}")
                return plain, 0.7

        if manifest.get("description"):
            evidence.append("description taken from sample manifest")
            return manifest["description"], 0.6
        return None, 0.0

    # Version, license and repository

    @staticmethod
    def _version(
        tree: DocumentTree, manifest: Dict[str, str], evidence: List[str]
    ) -> Optional[str]:
        if manifest.get("version"):
            evidence.append("version taken from sample manifest")
            return manifest["version"]
        for block in tree.prose_blocks():
            match = _VERSION_BADGE.search(block.text) or _VERSION_TAG.search(block.text)
            if match:
                evidence.append(f"version {match.group(1)} at line {block.start_line}")
                return match.group(1)
        return None

    def _license(
        self, tree: DocumentTree, manifest: Dict[str, str], evidence: List[str]
    ) -> Optional[str]:
        blocks = list(tree.blocks)
        for index, block in enumerate(blocks):
            if block.kind is not BlockKind.HEADING or not _LICENSE_HEADING.match(
                strip_markdown(block.text)
            ):
                continue
            for follower in blocks[index + 1 :]:
                if follower.kind is BlockKind.HEADING:
                    break
                found = self._match_license(follower.text)
                if found:
                    evidence.append(f"license section at line {block.start_line}")
                    return found
        for block in tree.prose_blocks():
            match = _LICENSE_BADGE.search(block.text)
            if match:
                found = self._match_license(match.group(1).replace("--", "-").replace("_", " "))
                if found:
                    evidence.append(f"license badge at line {block.start_line}")
                    return found
        if manifest.get("license"):
            evidence.append("license taken from sample manifest")
            return manifest["license"]
        return None

    @staticmethod
    def _match_license(text: str) -> Optional[str]:
        for pattern, spdx in LICENSES:
            if pattern.search(text):
                return spdx
        return None

    @staticmethod
    def _repository(text: str) -> Optional[str]:
        for match in _REPOSITORY.finditer(text):
            host, owner, repo = match.groups()
            if owner.lower() in _RESERVED_OWNERS:
                continue
            return f"https://{host}/{owner}/{repo}"
        return None

    @staticmethod
    def _manifest_fields(tree: DocumentTree) -> Dict[str, str]:
        fields: Dict[str, str] = {}
        for block in tree.code_blocks():
            tag = clean_tag(block.tag)
            data: Dict[str, object] = {}
            if tag in {"json", "json5", "jsonc"}:
                data = load_json_object(block.text)
            elif tag == "toml":
                try:
                    document = tomllib.loads(block.text)
                except tomllib.TOMLDecodeError:
                    continue
                tool = document.get("tool")
                poetry = tool.get("poetry") if isinstance(tool, dict) else None
                for table in (document.get("project"), document.get("package"), poetry):
                    if isinstance(table, dict):
                        data = table
                        break
            for key in ("name", "description", "version", "license"):
                value = data.get(key)
                if isinstance(value, str) and value.strip() and key not in fields:
                    fields[key] = value.strip()
        return fields

    # Environment variables

    def _environment(self, tree: DocumentTree, evidence: List[str]) -> List[EnvVar]:
        found: Dict[str, EnvVar] = {}

        def record(var: EnvVar) -> None:
            existing = found.get(var.name)
            if existing is None:
                found[var.name] = var
                return
            found[var.name] = EnvVar(
                name=existing.name,
                description=existing.description or var.description,
                default=existing.default if existing.default is not None else var.default,
                required=existing.required and var.required,
                line=existing.line,
            )

        for block in tree.blocks:
            gated = self._in_env_section(tree, block)
            if block.is_code:
                env_block = gated or clean_tag(block.tag) in _ENV_TAGS or ".env" in (block.info or "")
                for number, line in block.lines():
                    if env_block:
                        assignment = _ENV_ASSIGNMENT.match(line)
                        if assignment:
                            record(self._from_assignment(assignment, number))
                            continue
                    for match in _ENV_ACCESS.finditer(line):
                        record(self._from_access(match, number))
            elif gated and block.kind is BlockKind.PARAGRAPH:
                for offset, line in enumerate(block.text.split("\n")):
                    var = self._from_prose(line, block.start_line + offset)
                    if var is not None:
                        record(var)

        variables = sorted(found.values(), key=lambda var: (var.line, var.name))
        for var in variables:
            evidence.append(f"environment variable {var.name} at line {var.line}")
        return [
            var
            if var.description
            else EnvVar(var.name, COMMON_ENV_DESCRIPTIONS.get(var.name), var.default, var.required, var.line)
            for var in variables
        ]

    @staticmethod
    def _in_env_section(tree: DocumentTree, block: Block) -> bool:
        heading = tree.heading_for(block)
        return heading is not None and heading is not block and bool(_ENV_HEADING.search(heading.text))

    @staticmethod
    def _from_assignment(match: re.Match[str], line: int) -> EnvVar:
        name = match.group(1)
        description = match.group(3) or None
        default = match.group(2).strip("'\"") or None
        return EnvVar(name=name, description=description, default=default, required=default is None, line=line)

    @staticmethod
    def _from_access(match: re.Match[str], line: int) -> EnvVar:
        groups = match.groups()
        name = next(group for index, group in enumerate(groups) if group and index != 4)
        default = groups[4] if groups[3] else None
        return EnvVar(name=name, default=default, required=default is None, line=line)

    @staticmethod
    def _from_prose(line: str, number: int) -> Optional[EnvVar]:
        stripped = line.strip()
        if stripped.startswith("|"):
            cells = [cell.strip() for cell in stripped.strip("|").split("|")]
            head = re.fullmatch(rf"`({_ENV_NAME})`", cells[0]) if cells else None
            if head is None:
                return None
            name = head.group(1)
            description = strip_markdown(cells[1]) if len(cells) > 1 and cells[1] else None
            lowered = {cell.lower() for cell in cells[2:]}
            optional = bool(lowered & {"no", "false", "optional"})
            default = None
            for cell in cells[2:]:
                if cell.startswith("`") and cell.endswith("`") and len(cell) > 2:
                    default = cell.strip("`")
                    break
            return EnvVar(name, description, default, not optional and default is None, number)

        item = _ENV_ITEM.match(line)
        if item is None:
            return None
        name, rest = item.group(1), item.group(2)
        default_match = _DEFAULT.search(rest)
        default = None
        if default_match:
            default = (default_match.group(1) or default_match.group(2) or "").rstrip(".,)") or None
        description = strip_markdown(rest) or None
        required = default is None and not _OPTIONAL.search(rest)
        return EnvVar(name, description, default, required, number)

    # Project layout

    @staticmethod
    def _structure(tree: DocumentTree, evidence: List[str]) -> List[str]:
        paths: List[str] = []
        for block in tree.code_blocks():
            if not any(marker in block.text for marker in _TREE_MARKERS):
                continue
            evidence.append(f"directory tree at line {block.start_line}")
            stack: List[Tuple[int, str]] = []
            for _, line in block.lines():
                match = _TREE_LINE.match(line)
                if match is None:
                    continue
                column = len(match.group("prefix"))
                name = match.group("name")
                while stack and stack[-1][0] >= column:
                    stack.pop()
                parents = [part.rstrip("/") for _, part in stack]
                paths.append("/".join(parents + [name]))
                stack.append((column, name))
        return list(unique(paths))


__all__ = ["COMMON_ENV_DESCRIPTIONS", "LICENSES", "MetadataExtractor"]
