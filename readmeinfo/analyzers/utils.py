"""Shared tables and helper utilities for analyzer implementations."""

from __future__ import annotations

import json
import re
import tomllib
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from typing import Dict, Iterator, List, NamedTuple, Optional, Pattern, Sequence, Tuple

from ..models import Block

# Languages


@dataclass(frozen=True)
class LanguageSpec:
    name: str
    tags: Tuple[str, ...]
    extensions: Tuple[str, ...]
    filenames: Tuple[str, ...]
    mentions: Tuple[Pattern[str], ...]


def _patterns(*sources: str) -> Tuple[Pattern[str], ...]:
    return tuple(re.compile(source) for source in sources)


LANGUAGES: Tuple[LanguageSpec, ...] = (
    LanguageSpec(
        "JavaScript",
        ("js", "javascript", "jsx", "mjs", "cjs", "node", "nodejs"),
        (".js", ".mjs", ".cjs", ".jsx"),
        ("package.json", "package-lock.json", "yarn.lock", "pnpm-lock.yaml", ".nvmrc"),
        _patterns(
            r"(?i:\bjavascript\b)",
            r"\bNode(?:\.js|JS)\b",
            r"\bnpm\b",
            r"\bpnpm\b",
            r"\bECMAScript\b",
        ),
    ),
    LanguageSpec(
        "TypeScript",
        ("ts", "typescript", "tsx"),
        (".ts", ".tsx", ".mts", ".cts"),
        ("tsconfig.json", "deno.json"),
        _patterns(r"(?i:\btypescript\b)", r"\bDeno\b"),
    ),
    LanguageSpec(
        "Python",
        ("py", "python", "python3", "py3", "python2", "pycon", "ipython"),
        (".py", ".pyi", ".ipynb"),
        (
            "requirements.txt",
            "setup.py",
            "setup.cfg",
            "pyproject.toml",
            "Pipfile",
            "Pipfile.lock",
            "poetry.lock",
            "environment.yml",
            "tox.ini",
            "manage.py",
        ),
        _patterns(
            r"(?i:\bpython\b)",
            r"\bpip3?\b",
            r"\bPyPI\b",
            r"\bvirtualenv\b",
            r"\bvenv\b",
            r"\bconda\b",
        ),
    ),
    LanguageSpec(
        "Java",
        ("java",),
        (".java", ".jar"),
        ("pom.xml", "build.gradle", "mvnw", "gradlew", "settings.gradle"),
        _patterns(r"(?i:\bjava\b)(?!\s*[Ss]cript)", r"\bMaven\b", r"\bGradle\b", r"\bJDK\b", r"\bJVM\b"),
    ),
    LanguageSpec(
        "Go",
        ("go", "golang"),
        (".go",),
        ("go.mod", "go.sum"),
        _patterns(
            r"(?i:\bgolang\b)",
            r"\bGo (?:1\.\d+|modules?|toolchain|programming language)\b",
            r"\b(?:[Ii]n|[Ww]ith|[Uu]sing|[Ww]ritten in) Go\b",
        ),
    ),
    LanguageSpec(
        "Rust",
        ("rust", "rs"),
        (".rs",),
        ("Cargo.toml", "Cargo.lock", "rust-toolchain.toml"),
        _patterns(r"\bRust\b", r"(?i:\bcargo\b)", r"\bcrates\.io\b", r"\brustup\b"),
    ),
    LanguageSpec(
        "PHP",
        ("php",),
        (".php",),
        ("composer.json", "composer.lock", "artisan"),
        _patterns(r"\bPHP\b", r"\bComposer\b", r"\bPackagist\b"),
    ),
    LanguageSpec(
        "C#",
        ("cs", "csharp", "c#"),
        (".cs", ".csproj", ".sln"),
        ("packages.config", "global.json"),
        _patterns(r"(?<![\w+])C#(?!\w)", r"(?<!\w)\.NET\b", r"\bNuGet\b"),
    ),
    LanguageSpec(
        "Ruby",
        ("rb", "ruby", "erb"),
        (".rb", ".gemspec", ".erb"),
        ("Gemfile", "Gemfile.lock", "Rakefile", ".ruby-version"),
        _patterns(r"(?i:\bruby\b)", r"\bRubyGems\b", r"\bBundler\b"),
    ),
    LanguageSpec(
        "Kotlin",
        ("kotlin", "kt", "kts"),
        (".kt", ".kts"),
        ("build.gradle.kts", "settings.gradle.kts"),
        _patterns(r"(?i:\bkotlin\b)"),
    ),
    LanguageSpec(
        "Swift",
        ("swift",),
        (".swift",),
        ("Package.swift", "Podfile"),
        _patterns(r"\bSwift(?:UI)?\b", r"\bCocoaPods\b"),
    ),
    LanguageSpec(
        "C",
        ("c", "h"),
        (".c", ".h"),
        (),
        _patterns(r"\bANSI C\b", r"\bC(?:89|99|11|17)\b", r"\b[Ww]ritten in C\b(?![+#])"),
    ),
    LanguageSpec(
        "C++",
        ("cpp", "c++", "cxx", "cc", "hpp"),
        (".cpp", ".cc", ".cxx", ".hpp", ".hh"),
        ("CMakeLists.txt", "conanfile.txt", "vcpkg.json"),
        _patterns(r"(?<!\w)C\+\+(?!\w)", r"\bCMake\b"),
    ),
)

LANGUAGES_BY_NAME: Dict[str, LanguageSpec] = {spec.name: spec for spec in LANGUAGES}

_TAG_ALIASES: Dict[str, str] = {tag: spec.name for spec in LANGUAGES for tag in spec.tags}
_EXTENSIONS: Dict[str, str] = {ext: spec.name for spec in LANGUAGES for ext in spec.extensions}
_FILENAMES: Dict[str, str] = {name: spec.name for spec in LANGUAGES for name in spec.filenames}

# Code block tags carrying data rather than shell commands.
DATA_TAGS = frozenset(
    {
        "json",
        "json5",
        "jsonc",
        "yaml",
        "yml",
        "toml",
        "xml",
        "ini",
        "cfg",
        "env",
        "dotenv",
        "properties",
        "csv",
        "diff",
        "html",
        "css",
        "sql",
        "graphql",
        "mermaid",
        "dot",
        "svg",
    }
)


def normalize_tag(tag: Optional[str]) -> Optional[str]:
    """Map a raw code-block tag to a language name, or None for neutral tags."""
    if not tag:
        return None
    cleaned = tag.strip().lower().strip("{}.")
    if cleaned.startswith("language-"):
        cleaned = cleaned[len("language-"):]
    return _TAG_ALIASES.get(cleaned)


def clean_tag(tag: Optional[str]) -> str:
    return (tag or "").strip().lower().strip("{}.")


def language_for_filename(token: str) -> Optional[str]:
    """Return the language implied by a filename or bare extension mention."""
    token = token.strip().rstrip(".,;:!?)'\"`").lstrip("(`'\"")
    if not token:
        return None
    basename = token.rsplit("/", 1)[-1]
    if basename in _FILENAMES:
        return _FILENAMES[basename]
    if "." not in basename:
        return None
    extension = "." + basename.rsplit(".", 1)[-1].lower()
    stem = basename[: -len(extension)]
    if stem and not re.fullmatch(r"[\w.+-]+", stem):
        return None
    return _EXTENSIONS.get(extension)


_FILE_TOKEN = re.compile(r"[\w@./+-]+")


def find_filenames(text: str) -> List[Tuple[str, str]]:
    """Return ``(token, language)`` pairs for filename mentions in ``text``."""
    found: List[Tuple[str, str]] = []
    for match in _FILE_TOKEN.finditer(text):
        token = match.group(0).rstrip(".,;:!?")
        # Node.js and friends are technology names, not files.
        if re.fullmatch(r"(?i)(node|vue|next|nuxt|express|nest|react|ember|three)\.js", token):
            continue
        language = language_for_filename(token)
        if language:
            found.append((token, language))
    return found


# Frameworks


@dataclass(frozen=True)
class FrameworkSpec:
    name: str
    language: str
    category: str
    mentions: Tuple[Pattern[str], ...]
    packages: Tuple[str, ...]


FRAMEWORKS: Tuple[FrameworkSpec, ...] = (
    FrameworkSpec("React", "JavaScript", "frontend", _patterns(r"\bReact(?:\.js|JS)?\b(?! Native)"), ("react",)),
    FrameworkSpec("Vue.js", "JavaScript", "frontend", _patterns(r"\bVue(?:\.js|JS)?\b"), ("vue",)),
    FrameworkSpec("Angular", "TypeScript", "frontend", _patterns(r"\bAngular(?:JS)?\b"), ("@angular/core",)),
    FrameworkSpec("Svelte", "JavaScript", "frontend", _patterns(r"\bSvelte(?:Kit)?\b"), ("svelte",)),
    FrameworkSpec("Next.js", "JavaScript", "fullstack", _patterns(r"\bNext(?:\.js|JS)\b"), ("next",)),
    FrameworkSpec("Nuxt", "JavaScript", "fullstack", _patterns(r"\bNuxt(?:\.js)?\b"), ("nuxt",)),
    FrameworkSpec("Express", "JavaScript", "backend", _patterns(r"\bExpress(?:\.js|JS)\b", r"\bExpress (?:server|app|framework)\b"), ("express",)),
    FrameworkSpec("NestJS", "TypeScript", "backend", _patterns(r"\bNest(?:JS|\.js)\b"), ("@nestjs/core",)),
    FrameworkSpec("Django", "Python", "fullstack", _patterns(r"\bDjango\b"), ("django",)),
    FrameworkSpec("Flask", "Python", "backend", _patterns(r"\bFlask\b"), ("flask",)),
    FrameworkSpec("FastAPI", "Python", "backend", _patterns(r"\bFastAPI\b"), ("fastapi",)),
    FrameworkSpec(
        "Spring Boot",
        "Java",
        "backend",
        _patterns(r"\bSpring ?Boot\b"),
        ("org.springframework.boot", "spring-boot-starter", "spring-boot-starter-web"),
    ),
    FrameworkSpec("Gin", "Go", "backend", _patterns(r"\bGin\b(?= (?:framework|web|router|server))", r"\bgin-gonic\b"), ("github.com/gin-gonic/gin",)),
    FrameworkSpec("Echo", "Go", "backend", _patterns(r"\bEcho (?:framework|web framework)\b", r"\blabstack/echo\b"), ("github.com/labstack/echo", "github.com/labstack/echo/v4")),
    FrameworkSpec("Actix", "Rust", "backend", _patterns(r"\bActix(?:[- ]web)?\b"), ("actix-web",)),
    FrameworkSpec("Rocket", "Rust", "backend", _patterns(r"\bRocket (?:framework|web framework)\b"), ("rocket",)),
    FrameworkSpec("Laravel", "PHP", "fullstack", _patterns(r"\bLaravel\b"), ("laravel/framework",)),
    FrameworkSpec("Symfony", "PHP", "fullstack", _patterns(r"\bSymfony\b"), ("symfony/framework-bundle", "symfony/symfony")),
    FrameworkSpec("Rails", "Ruby", "fullstack", _patterns(r"\bRuby on Rails\b", r"\bRails\b"), ("rails",)),
    FrameworkSpec("Sinatra", "Ruby", "backend", _patterns(r"\bSinatra\b"), ("sinatra",)),
    FrameworkSpec("ASP.NET", "C#", "fullstack", _patterns(r"\bASP\.NET(?: Core)?\b"), ("microsoft.aspnetcore.app", "microsoft.aspnetcore")),
)

FRAMEWORKS_BY_NAME: Dict[str, FrameworkSpec] = {spec.name: spec for spec in FRAMEWORKS}

INCOMPATIBLE_FRAMEWORKS: Tuple[Tuple[str, str], ...] = (
    ("React", "Vue.js"),
    ("React", "Angular"),
    ("Vue.js", "Angular"),
    ("Django", "Flask"),
    ("Express", "NestJS"),
)


def framework_for_package(package: str) -> Optional[FrameworkSpec]:
    lowered = package.lower()
    for spec in FRAMEWORKS:
        for candidate in spec.packages:
            if lowered == candidate.lower():
                return spec
            if ":" in lowered and lowered.split(":", 1)[0] == candidate.lower():
                return spec
    if "spring-boot" in lowered:
        return FRAMEWORKS_BY_NAME["Spring Boot"]
    return None


def frameworks_for_language(language: Optional[str]) -> List[str]:
    return [spec.name for spec in FRAMEWORKS if spec.language == language]


# Testing frameworks


@dataclass(frozen=True)
class TestFrameworkSpec:
    __test__ = False

    name: str
    language: str
    mentions: Tuple[Pattern[str], ...]
    config_files: Tuple[str, ...]
    commands: Tuple[Pattern[str], ...]
    packages: Tuple[str, ...]


TEST_FRAMEWORKS: Tuple[TestFrameworkSpec, ...] = (
    TestFrameworkSpec(
        "Jest",
        "JavaScript",
        _patterns(r"\bJest\b"),
        ("jest.config.js", "jest.config.ts", "jest.config.mjs", "jest.config.cjs", "jest.config.json"),
        _patterns(r"^(?:npx |yarn |pnpm )?jest\b"),
        ("jest", "ts-jest", "@jest/core"),
    ),
    TestFrameworkSpec(
        "Vitest",
        "JavaScript",
        _patterns(r"\bVitest\b"),
        ("vitest.config.ts", "vitest.config.js", "vitest.config.mts"),
        _patterns(r"^(?:npx |yarn |pnpm )?vitest\b"),
        ("vitest",),
    ),
    TestFrameworkSpec(
        "Mocha",
        "JavaScript",
        _patterns(r"\bMocha\b"),
        (".mocharc.js", ".mocharc.json", ".mocharc.yml", ".mocharc.yaml", ".mocharc.cjs"),
        _patterns(r"^(?:npx |yarn |pnpm )?mocha\b"),
        ("mocha",),
    ),
    TestFrameworkSpec(
        "Jasmine",
        "JavaScript",
        _patterns(r"\bJasmine\b"),
        ("jasmine.json",),
        _patterns(r"^(?:npx |yarn |pnpm )?jasmine\b"),
        ("jasmine", "jasmine-core"),
    ),
    TestFrameworkSpec(
        "Karma",
        "JavaScript",
        _patterns(r"\bKarma\b"),
        ("karma.conf.js", "karma.conf.ts"),
        _patterns(r"^(?:npx |yarn |pnpm )?karma\b"),
        ("karma",),
    ),
    TestFrameworkSpec(
        "Cypress",
        "JavaScript",
        _patterns(r"\bCypress\b"),
        ("cypress.config.js", "cypress.config.ts", "cypress.json"),
        _patterns(r"^(?:npx |yarn |pnpm )?cypress\b"),
        ("cypress",),
    ),
    TestFrameworkSpec(
        "Playwright",
        "JavaScript",
        _patterns(r"\bPlaywright\b"),
        ("playwright.config.ts", "playwright.config.js"),
        _patterns(r"^(?:npx |yarn |pnpm )?playwright test\b"),
        ("@playwright/test", "playwright"),
    ),
    TestFrameworkSpec(
        "pytest",
        "Python",
        _patterns(r"(?i:\bpytest\b)", r"\bpy\.test\b"),
        ("pytest.ini", "conftest.py"),
        _patterns(r"^(?:python3? -m )?pytest\b", r"^(?:poetry|pipenv|uv) run pytest\b", r"^py\.test\b"),
        ("pytest",),
    ),
    TestFrameworkSpec(
        "unittest",
        "Python",
        _patterns(r"\bunittest\b"),
        (),
        _patterns(r"^python3? -m unittest\b"),
        (),
    ),
    TestFrameworkSpec(
        "nose2",
        "Python",
        _patterns(r"\bnose2\b"),
        ("nose2.cfg",),
        _patterns(r"^(?:python3? -m )?nose2\b"),
        ("nose2",),
    ),
    TestFrameworkSpec(
        "JUnit",
        "Java",
        _patterns(r"\bJUnit ?\d?\b"),
        (),
        (),
        ("junit", "junit:junit", "org.junit.jupiter", "junit-jupiter", "org.junit.jupiter:junit-jupiter"),
    ),
    TestFrameworkSpec(
        "TestNG",
        "Java",
        _patterns(r"\bTestNG\b"),
        ("testng.xml",),
        (),
        ("testng", "org.testng:testng"),
    ),
    TestFrameworkSpec(
        "RSpec",
        "Ruby",
        _patterns(r"\bRSpec\b"),
        (".rspec", "spec_helper.rb"),
        _patterns(r"^(?:bundle exec )?rspec\b"),
        ("rspec", "rspec-rails"),
    ),
    TestFrameworkSpec(
        "Minitest",
        "Ruby",
        _patterns(r"\bMinitest\b"),
        (),
        (),
        ("minitest",),
    ),
    TestFrameworkSpec(
        "PHPUnit",
        "PHP",
        _patterns(r"\bPHPUnit\b"),
        ("phpunit.xml", "phpunit.xml.dist"),
        _patterns(r"^(?:\./)?(?:vendor/bin/)?phpunit\b"),
        ("phpunit/phpunit",),
    ),
    TestFrameworkSpec(
        "Go testing",
        "Go",
        (),
        (),
        _patterns(r"^go test\b"),
        (),
    ),
    TestFrameworkSpec(
        "Cargo test",
        "Rust",
        (),
        (),
        _patterns(r"^cargo (?:test|nextest)\b"),
        (),
    ),
    TestFrameworkSpec("xUnit", "C#", _patterns(r"\bxUnit\b"), (), (), ("xunit",)),
    TestFrameworkSpec("NUnit", "C#", _patterns(r"\bNUnit\b"), (), (), ("nunit",)),
    TestFrameworkSpec("MSTest", "C#", _patterns(r"\bMSTest\b"), (), (), ("mstest.testframework",)),
    TestFrameworkSpec(
        "GoogleTest",
        "C++",
        _patterns(r"\bGoogle ?Test\b", r"\bgtest\b"),
        (),
        (),
        ("gtest", "googletest"),
    ),
    TestFrameworkSpec("Catch2", "C++", _patterns(r"\bCatch2\b"), (), (), ("catch2",)),
)

TEST_FRAMEWORKS_BY_NAME: Dict[str, TestFrameworkSpec] = {spec.name: spec for spec in TEST_FRAMEWORKS}

# Test commands that do not identify a framework on their own.
GENERIC_TEST_COMMANDS: Tuple[Tuple[Pattern[str], Optional[str]], ...] = (
    (re.compile(r"^(?:npm|yarn|pnpm|bun)(?: run)? test\b"), "JavaScript"),
    (re.compile(r"^(?:\./)?mvnw? (?:\S+ )*(?:test|verify)\b"), "Java"),
    (re.compile(r"^(?:\./)?gradlew? (?:\S+ )*test\b"), "Java"),
    (re.compile(r"^dotnet test\b"), "C#"),
    (re.compile(r"^(?:bundle exec )?rake(?: test| spec)?$"), "Ruby"),
    (re.compile(r"^composer test\b"), "PHP"),
    (re.compile(r"^python3? (?:setup|manage)\.py test\b"), "Python"),
    (re.compile(r"^ctest\b"), "C++"),
    (re.compile(r"^make (?:test|check)\b"), None),
)

TEST_TOOLS: Tuple[Tuple[str, Pattern[str]], ...] = (
    ("coverage.py", re.compile(r"\bcoverage (?:run|report|html|xml)\b|\bpytest-cov\b|--cov\b")),
    ("Istanbul", re.compile(r"\bnyc\b|\b[Ii]stanbul\b|\bc8\b")),
    ("Codecov", re.compile(r"(?i:\bcodecov\b)")),
    ("JaCoCo", re.compile(r"(?i:\bjacoco\b)")),
    ("tox", re.compile(r"^tox\b|\btox\.ini\b|\btox -e\b")),
    ("nox", re.compile(r"^nox\b|\bnoxfile\.py\b")),
)


def testing_frameworks_for_language(language: Optional[str]) -> List[str]:
    return [spec.name for spec in TEST_FRAMEWORKS if spec.language == language]


# Package manifests


@dataclass(frozen=True)
class PackageFileSpec:
    name: str
    manager: str
    language: str


PACKAGE_FILES: Tuple[PackageFileSpec, ...] = (
    PackageFileSpec("package.json", "npm", "JavaScript"),
    PackageFileSpec("package-lock.json", "npm", "JavaScript"),
    PackageFileSpec("yarn.lock", "yarn", "JavaScript"),
    PackageFileSpec("pnpm-lock.yaml", "pnpm", "JavaScript"),
    PackageFileSpec("requirements.txt", "pip", "Python"),
    PackageFileSpec("setup.py", "pip", "Python"),
    PackageFileSpec("pyproject.toml", "pip", "Python"),
    PackageFileSpec("Pipfile", "pipenv", "Python"),
    PackageFileSpec("environment.yml", "conda", "Python"),
    PackageFileSpec("Cargo.toml", "cargo", "Rust"),
    PackageFileSpec("go.mod", "go", "Go"),
    PackageFileSpec("pom.xml", "maven", "Java"),
    PackageFileSpec("build.gradle", "gradle", "Java"),
    PackageFileSpec("build.gradle.kts", "gradle", "Kotlin"),
    PackageFileSpec("composer.json", "composer", "PHP"),
    PackageFileSpec("Gemfile", "bundler", "Ruby"),
    PackageFileSpec("Package.swift", "swiftpm", "Swift"),
    PackageFileSpec("packages.config", "nuget", "C#"),
)

PACKAGE_FILES_BY_NAME: Dict[str, PackageFileSpec] = {spec.name: spec for spec in PACKAGE_FILES}

PACKAGE_FILE_PATTERN = re.compile(
    r"(?<![\w.-])("
    + "|".join(re.escape(spec.name) for spec in sorted(PACKAGE_FILES, key=lambda s: -len(s.name)))
    + r"|[\w.-]+\.csproj)(?![\w-])"
)


def package_file_spec(name: str) -> Optional[PackageFileSpec]:
    if name.endswith(".csproj"):
        return PackageFileSpec(name, "nuget", "C#")
    return PACKAGE_FILES_BY_NAME.get(name)


def package_files_for_language(language: Optional[str]) -> List[str]:
    return [spec.name for spec in PACKAGE_FILES if spec.language == language]


# Command helpers

_COMMAND_LANGUAGES: Tuple[Tuple[Tuple[str, ...], str], ...] = (
    (("npm", "npx", "yarn", "pnpm", "node", "bun"), "JavaScript"),
    (("deno", "tsc", "ts-node"), "TypeScript"),
    (
        (
            "pip",
            "pip3",
            "pipx",
            "python",
            "python3",
            "py",
            "pytest",
            "poetry",
            "pipenv",
            "conda",
            "uv",
            "tox",
            "django-admin",
            "flask",
            "uvicorn",
            "gunicorn",
        ),
        "Python",
    ),
    (("cargo", "rustc", "rustup"), "Rust"),
    (("go",), "Go"),
    (("mvn", "mvnw", "gradle", "gradlew", "java", "javac"), "Java"),
    (("dotnet", "nuget"), "C#"),
    (("bundle", "gem", "rake", "ruby", "rails", "rspec"), "Ruby"),
    (("composer", "php"), "PHP"),
    (("swift", "pod"), "Swift"),
    (("kotlinc",), "Kotlin"),
    (("gcc", "clang"), "C"),
    (("g++", "clang++"), "C++"),
    (("bash", "sh", "zsh"), "Shell"),
)

COMMAND_TOOL_LANGUAGES: Dict[str, str] = {
    tool: language for tools, language in _COMMAND_LANGUAGES for tool in tools
}

LANGUAGE_TOOLS: Dict[str, Tuple[str, ...]] = {
    "JavaScript": ("npm", "yarn", "pnpm"),
    "TypeScript": ("npm", "tsc"),
    "Python": ("pip", "poetry", "pytest"),
    "Rust": ("cargo",),
    "Go": ("go",),
    "Java": ("mvn", "gradle"),
    "C#": ("dotnet",),
    "Ruby": ("bundle", "rake"),
    "PHP": ("composer",),
    "Kotlin": ("gradle",),
    "Swift": ("swift",),
    "C": ("make", "cmake"),
    "C++": ("cmake", "make"),
}


def command_head(text: str) -> str:
    """Return the executable word of a command, without sudo or path prefixes."""
    words = text.split()
    while words and (words[0] == "sudo" or "=" in words[0] and not words[0].startswith("-")):
        words = words[1:]
    if not words:
        return ""
    head = words[0]
    if head.startswith("./"):
        head = head[2:]
    return head.rsplit("/", 1)[-1].lower()


def infer_language_from_command(text: str) -> Optional[str]:
    """Infer the language a command belongs to from its executable."""
    head = command_head(text)
    if not head:
        return None
    if head.endswith(".sh"):
        return "Shell"
    return COMMAND_TOOL_LANGUAGES.get(head)


_PROMPT = re.compile(r"^\s*(?:\$|%|>|❯|PS [^>]*>)\s+")
_TRAILING_COMMENT = re.compile(r"\s+#\s.*$")


def iter_shell_lines(block: Block) -> Iterator[Tuple[int, str]]:
    """Yield ``(line_number, command_text)`` candidates from a code block.

    Prompt markers are stripped, backslash continuations are joined and
    ``&&`` chains are split. When the block uses prompts, unprompted lines
    are treated as program output and skipped.
    """
    if clean_tag(block.tag) in DATA_TAGS:
        return
    lines = block.lines()
    prompted = any(_PROMPT.match(raw) for _, raw in lines)
    pending: Optional[Tuple[int, str]] = None
    for number, raw in lines:
        line = raw.rstrip()
        if pending is None:
            prompt = _PROMPT.match(line)
            if prompted and not prompt:
                continue
            if prompt:
                line = line[prompt.end():]
        line = line.strip()
        if pending is not None:
            start, head = pending
            line = f"{head} {line}".strip()
            pending = None
        else:
            start = number
        if not line or line.startswith(("#", "//")):
            continue
        if line.endswith("\\"):
            pending = (start, line[:-1].rstrip())
            continue
        line = _TRAILING_COMMENT.sub("", line)
        for part in line.split(" && "):
            part = part.strip().rstrip(";").strip()
            if part:
                yield start, part
    if pending is not None and pending[1]:
        yield pending


_INLINE_CODE = re.compile(r"(?<!`)`([^`\n]+)`(?!`)")


def iter_inline_code(block: Block) -> Iterator[Tuple[int, str]]:
    """Yield ``(line_number, span)`` for inline code spans in a prose block."""
    for number, line in block.lines():
        for match in _INLINE_CODE.finditer(line):
            span = match.group(1).strip()
            if span:
                yield number, span


_IMAGE = re.compile(r"!\[[^\]]*\]\([^)]*\)")
_EMPTY_LINK = re.compile(r"\[\s*\]\([^)]*\)")
_LINK = re.compile(r"\[([^\]]+)\]\([^)]*\)")
_HTML_TAG = re.compile(r"<[^>]+>")


def strip_markdown(text: str) -> str:
    """Reduce inline markdown to its plain text."""
    text = _IMAGE.sub("", text)
    text = _EMPTY_LINK.sub("", text)
    text = _LINK.sub(r"\1", text)
    text = _HTML_TAG.sub("", text)
    text = re.sub(r"(\*{1,3}|_{2,3})(\S.*?\S|\S)\1", r"\2", text)
    text = text.replace("`", "")
    return re.sub(r"\s+", " ", text).strip()


# Manifest parsers


class ManifestEntry(NamedTuple):
    name: str
    version: Optional[str]
    dev: bool = False


_REQUIREMENT = re.compile(
    r"^([A-Za-z0-9][A-Za-z0-9._-]*)(?:\[[^\]]*\])?\s*"
    r"((?:===?|[<>!~]=?)\s*[^;#\s,]+(?:\s*,\s*(?:===?|[<>!~]=?)\s*[^;#\s,]+)*)?"
)


def split_requirement(requirement: str) -> Optional[ManifestEntry]:
    match = _REQUIREMENT.match(requirement.strip())
    if not match:
        return None
    name, spec = match.group(1), match.group(2)
    version: Optional[str] = None
    if spec:
        spec = re.sub(r"\s+", "", spec)
        version = spec[2:] if spec.startswith("==") and "," not in spec else spec
    return ManifestEntry(name, version)


def parse_requirements_text(text: str) -> List[ManifestEntry]:
    entries: List[ManifestEntry] = []
    for line in text.splitlines():
        stripped = line.strip()
        if not stripped or stripped.startswith(("#", "-")):
            continue
        match = _REQUIREMENT.match(stripped)
        rest = stripped[match.end():].strip() if match else ""
        if rest and not rest.startswith((";", "#")):
            continue
        entry = split_requirement(stripped)
        if entry:
            entries.append(entry)
    return entries


def looks_like_requirements(text: str) -> bool:
    lines = [line.strip() for line in text.splitlines() if line.strip() and not line.strip().startswith("#")]
    if not lines:
        return False
    return all(
        re.fullmatch(r"[A-Za-z0-9][A-Za-z0-9._-]*(?:\[[^\]]*\])?\s*(?:(?:===?|[<>!~]=?)\s*[^\s;#]+.*)?", line)
        for line in lines
    ) and any(re.search(r"[<>=~]=", line) for line in lines)


def parse_pyproject_text(text: str) -> List[ManifestEntry]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError:
        return []

    entries: List[ManifestEntry] = []
    project = data.get("project")
    if isinstance(project, dict):
        for dep in project.get("dependencies", []) or []:
            if isinstance(dep, str):
                entry = split_requirement(dep)
                if entry:
                    entries.append(entry)
        optional = project.get("optional-dependencies", {}) or {}
        if isinstance(optional, dict):
            for values in optional.values():
                for dep in values or []:
                    if isinstance(dep, str):
                        entry = split_requirement(dep)
                        if entry:
                            entries.append(entry._replace(dev=True))

    tool = data.get("tool") if isinstance(data.get("tool"), dict) else {}
    poetry = tool.get("poetry", {}) if isinstance(tool, dict) else {}
    if isinstance(poetry, dict):
        entries.extend(_poetry_table(poetry.get("dependencies"), dev=False))
        entries.extend(_poetry_table(poetry.get("dev-dependencies"), dev=True))
        groups = poetry.get("group", {})
        if isinstance(groups, dict):
            for group in groups.values():
                if isinstance(group, dict):
                    entries.extend(_poetry_table(group.get("dependencies"), dev=True))
    return [entry for entry in entries if entry.name.lower() != "python"]


def _poetry_table(table: object, *, dev: bool) -> List[ManifestEntry]:
    if not isinstance(table, dict):
        return []
    entries: List[ManifestEntry] = []
    for name, value in table.items():
        entries.append(ManifestEntry(str(name), _table_version(value), dev))
    return entries


def _table_version(value: object) -> Optional[str]:
    if isinstance(value, str):
        return value
    if isinstance(value, dict) and isinstance(value.get("version"), str):
        return value["version"]
    return None


def parse_package_json_text(text: str) -> List[ManifestEntry]:
    data = load_json_object(text)
    entries: List[ManifestEntry] = []
    for key, dev in (("dependencies", False), ("devDependencies", True)):
        deps = data.get(key, {})
        if isinstance(deps, dict):
            for name, version in deps.items():
                entries.append(ManifestEntry(str(name), str(version) if version else None, dev))
    return entries


def parse_composer_text(text: str) -> List[ManifestEntry]:
    data = load_json_object(text)
    entries: List[ManifestEntry] = []
    for key, dev in (("require", False), ("require-dev", True)):
        deps = data.get(key, {})
        if isinstance(deps, dict):
            for name, version in deps.items():
                if name == "php" or str(name).startswith("ext-"):
                    continue
                entries.append(ManifestEntry(str(name), str(version) if version else None, dev))
    return entries


def load_json_object(text: str) -> Dict[str, object]:
    """Return the parsed JSON object or an empty dict."""
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return {}
    if isinstance(data, dict):
        return data
    return {}


def parse_cargo_text(text: str) -> List[ManifestEntry]:
    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError:
        return []
    entries: List[ManifestEntry] = []
    for key, dev in (("dependencies", False), ("dev-dependencies", True)):
        table = data.get(key)
        if isinstance(table, dict):
            for name, value in table.items():
                entries.append(ManifestEntry(str(name), _table_version(value), dev))
    return entries


def parse_go_mod_text(text: str) -> List[ManifestEntry]:
    entries: List[ManifestEntry] = []
    in_block = False
    for line in text.splitlines():
        stripped = line.split("//", 1)[0].strip()
        if not stripped:
            continue
        if stripped.startswith("require ("):
            in_block = True
            continue
        if in_block and stripped == ")":
            in_block = False
            continue
        if stripped.startswith("require "):
            stripped = stripped[len("require "):].strip()
        elif not in_block:
            continue
        parts = stripped.split()
        if len(parts) >= 2:
            entries.append(ManifestEntry(parts[0], parts[1]))
    return entries


def parse_pom_text(text: str) -> List[ManifestEntry]:
    try:
        root = ET.fromstring(text.strip())
    except ET.ParseError:
        # snippets often list sibling <dependency> elements without a root
        try:
            root = ET.fromstring(f"<dependencies>{text.strip()}</dependencies>")
        except ET.ParseError:
            return []

    namespace = _detect_xml_namespace(root)
    prefix = f"{{{namespace}}}" if namespace else ""
    entries: List[ManifestEntry] = []
    for dep in root.iter(f"{prefix}dependency"):
        group = dep.findtext(f"{prefix}groupId", default="").strip()
        artifact = dep.findtext(f"{prefix}artifactId", default="").strip()
        version = dep.findtext(f"{prefix}version", default="").strip() or None
        scope = dep.findtext(f"{prefix}scope", default="").strip()
        if group and artifact:
            entries.append(ManifestEntry(f"{group}:{artifact}", version, scope == "test"))
    return entries


def _detect_xml_namespace(element: ET.Element) -> str | None:
    match = re.match(r"\{(.+)}", element.tag)
    return match.group(1) if match else None


_GRADLE_COORDINATE = re.compile(r"['\"]([\w\-.]+):([\w\-.]+)(?::([\w\-.+]+))?['\"]")


def parse_gradle_text(text: str) -> List[ManifestEntry]:
    entries: List[ManifestEntry] = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("//"):
            continue
        keyword = re.match(r"(\w+)\s*[( ]", line)
        if not keyword:
            continue
        configuration = keyword.group(1)
        if not any(
            token in configuration.lower()
            for token in ("implementation", "api", "compile", "runtimeonly")
        ):
            continue
        match = _GRADLE_COORDINATE.search(line)
        if match:
            entries.append(
                ManifestEntry(
                    f"{match.group(1)}:{match.group(2)}",
                    match.group(3),
                    configuration.lower().startswith("test"),
                )
            )
    return entries


def parse_gemfile_text(text: str) -> List[ManifestEntry]:
    entries: List[ManifestEntry] = []
    dev_group = False
    for line in text.splitlines():
        stripped = line.strip()
        if stripped.startswith("group ") and stripped.endswith(" do"):
            dev_group = any(token in stripped for token in (":test", ":development"))
            continue
        if stripped == "end":
            dev_group = False
            continue
        match = re.match(r"gem\s+['\"]([\w.-]+)['\"](?:\s*,\s*['\"]([^'\"]+)['\"])?", stripped)
        if match:
            entries.append(ManifestEntry(match.group(1), match.group(2), dev_group))
    return entries


MANIFEST_PARSERS = {
    "package.json": parse_package_json_text,
    "composer.json": parse_composer_text,
    "requirements.txt": parse_requirements_text,
    "pyproject.toml": parse_pyproject_text,
    "Cargo.toml": parse_cargo_text,
    "go.mod": parse_go_mod_text,
    "pom.xml": parse_pom_text,
    "build.gradle": parse_gradle_text,
    "build.gradle.kts": parse_gradle_text,
    "Gemfile": parse_gemfile_text,
}


def sniff_manifest(tag: Optional[str], text: str, hints: Sequence[str] = ()) -> Optional[str]:
    """Guess which manifest a code block holds from its tag, content and nearby filenames."""
    for hint in hints:
        if hint in MANIFEST_PARSERS:
            return hint
    cleaned = clean_tag(tag)
    stripped = text.lstrip()
    if cleaned in {"json", "json5", "jsonc", ""} and stripped.startswith("{"):
        data = load_json_object(text)
        if "require" in data or "require-dev" in data:
            return "composer.json"
        if "dependencies" in data or "devDependencies" in data:
            return "package.json"
    if cleaned in {"toml", ""}:
        if re.search(r"^\[(?:dev-)?dependencies\]", text, re.MULTILINE):
            return "Cargo.toml"
        if re.search(r"^\[(?:project|tool\.poetry[\w.-]*)\]", text, re.MULTILINE):
            return "pyproject.toml"
    if cleaned in {"xml", ""} and "<dependency>" in text:
        return "pom.xml"
    if re.search(r"^module\s+\S+", text, re.MULTILINE) and "require" in text:
        return "go.mod"
    if cleaned in {"groovy", "gradle", "kotlin", "kts"} and re.search(
        r"^\s*(?:implementation|api|testImplementation)\b", text, re.MULTILINE
    ):
        return "build.gradle"
    if cleaned in {"ruby", "rb", ""} and re.search(r"^\s*gem\s+['\"]", text, re.MULTILINE):
        return "Gemfile"
    if cleaned in {"", "txt", "text", "requirements", "pip"} and looks_like_requirements(text):
        return "requirements.txt"
    return None


__all__ = [
    "DATA_TAGS",
    "FRAMEWORKS",
    "FRAMEWORKS_BY_NAME",
    "FrameworkSpec",
    "GENERIC_TEST_COMMANDS",
    "INCOMPATIBLE_FRAMEWORKS",
    "LANGUAGES",
    "LANGUAGES_BY_NAME",
    "LANGUAGE_TOOLS",
    "LanguageSpec",
    "MANIFEST_PARSERS",
    "ManifestEntry",
    "PACKAGE_FILES",
    "PACKAGE_FILE_PATTERN",
    "PackageFileSpec",
    "TEST_FRAMEWORKS",
    "TEST_FRAMEWORKS_BY_NAME",
    "TEST_TOOLS",
    "TestFrameworkSpec",
    "clean_tag",
    "command_head",
    "find_filenames",
    "framework_for_package",
    "frameworks_for_language",
    "infer_language_from_command",
    "iter_inline_code",
    "iter_shell_lines",
    "language_for_filename",
    "normalize_tag",
    "package_file_spec",
    "package_files_for_language",
    "parse_requirements_text",
    "sniff_manifest",
    "split_requirement",
    "strip_markdown",
    "testing_frameworks_for_language",
]
