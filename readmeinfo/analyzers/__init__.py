"""Analyzer plugin implementations, registry and discovery utilities."""

from __future__ import annotations

import inspect
import threading
from importlib import metadata as importlib_metadata
from typing import Any, Iterable, List, Optional, Sequence

from .base import Analyzer
from .commands import CommandExtractor
from .dependencies import DependencyExtractor
from .language import LanguageDetector
from .metadata import MetadataExtractor
from .testing import TestingDetector
from ..config import ReadmeInfoConfig
from ..errors import RegistrationError
from ..logging import get_logger
from ..models import PayloadKind

_ENTRY_POINT_GROUP = "readmeinfo.analyzers"

logger = get_logger("analyzers")


def analyzer_kind(analyzer: Any) -> PayloadKind:
    """Return the payload kind an analyzer declares, defaulting to custom."""
    kind = getattr(analyzer, "kind", PayloadKind.CUSTOM)
    try:
        return PayloadKind(kind)
    except ValueError:
        return PayloadKind.CUSTOM


def provides_context(analyzer: Any) -> bool:
    return bool(getattr(analyzer, "provides_context", False))


def validate_analyzer(analyzer: Any) -> None:
    """Raise :class:`RegistrationError` unless ``analyzer`` satisfies the contract.

    Subclassing :class:`Analyzer` is not required; any object with a string
    ``name`` and an ``analyze(tree, text, context)`` callable is accepted.
    """
    name = getattr(analyzer, "name", None)
    if not isinstance(name, str) or not name.strip():
        raise RegistrationError(f"Analyzer {analyzer!r} must define a non-empty string 'name'")
    analyze = getattr(analyzer, "analyze", None)
    if not callable(analyze):
        raise RegistrationError(f"Analyzer '{name}' must define a callable 'analyze' method")
    kind = getattr(analyzer, "kind", PayloadKind.CUSTOM)
    try:
        PayloadKind(kind)
    except ValueError as exc:
        raise RegistrationError(f"Analyzer '{name}' declares unknown kind {kind!r}") from exc
    try:
        signature = inspect.signature(analyze)
    except (TypeError, ValueError):
        return
    try:
        signature.bind(None, None, None)
    except TypeError as exc:
        raise RegistrationError(
            f"Analyzer '{name}' must accept (tree, text, context) in analyze(): {exc}"
        ) from exc


def _instantiate(cls: type) -> Any:
    name = getattr(cls, "name", None) or cls.__name__
    if inspect.isabstract(cls):
        missing = ", ".join(sorted(getattr(cls, "__abstractmethods__", ())))
        raise RegistrationError(f"Analyzer '{name}' is abstract; implement {missing}")
    try:
        return cls()
    except Exception as exc:
        raise RegistrationError(f"Analyzer '{name}' could not be instantiated: {exc}") from exc


class AnalyzerRegistry:
    """Ordered set of analyzers, frozen once a parse has started."""

    def __init__(self, analyzers: Iterable[Any] = ()) -> None:
        self._analyzers: List[Any] = []
        self._frozen = False
        self._lock = threading.Lock()
        for analyzer in analyzers:
            self.register(analyzer)

    def register(self, analyzer: Any) -> Any:
        if isinstance(analyzer, type):
            analyzer = _instantiate(analyzer)
        with self._lock:
            if self._frozen:
                raise RegistrationError(
                    "Analyzer registry is frozen; register analyzers before parsing"
                )
            validate_analyzer(analyzer)
            key = analyzer.name.lower()
            if any(existing.name.lower() == key for existing in self._analyzers):
                raise RegistrationError(f"Analyzer '{analyzer.name}' is already registered")
            if provides_context(analyzer):
                current = self._context_provider()
                if current is not None:
                    raise RegistrationError(
                        f"Analyzer '{analyzer.name}' provides language context but "
                        f"'{current.name}' already does"
                    )
            self._analyzers.append(analyzer)
        logger.debug("Registered analyzer %s", analyzer.name)
        return analyzer

    def freeze(self) -> None:
        with self._lock:
            self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def analyzers(self) -> List[Any]:
        """Registered analyzers, context provider first, otherwise in registration order."""
        provider = self._context_provider()
        ordered = [provider] if provider is not None else []
        ordered.extend(analyzer for analyzer in self._analyzers if analyzer is not provider)
        return ordered

    def context_provider(self) -> Optional[Any]:
        return self._context_provider()

    def downstream(self) -> List[Any]:
        """Analyzers that consume language context."""
        return [analyzer for analyzer in self._analyzers if not provides_context(analyzer)]

    def get(self, name: str) -> Optional[Any]:
        key = name.lower()
        for analyzer in self._analyzers:
            if analyzer.name.lower() == key:
                return analyzer
        return None

    def names(self) -> List[str]:
        return [analyzer.name for analyzer in self.analyzers]

    def select(
        self,
        enabled: Sequence[str] | None = None,
        disabled: Sequence[str] = (),
    ) -> "AnalyzerRegistry":
        """Return a new registry restricted to ``enabled`` minus ``disabled``."""
        known = {analyzer.name.lower() for analyzer in self._analyzers}
        requested = [name.lower() for name in (enabled or [])] + [
            name.lower() for name in disabled
        ]
        missing = sorted({name for name in requested if name not in known})
        if missing:
            raise ValueError(f"Unknown analyzers requested: {', '.join(missing)}")

        enabled_set = {name.lower() for name in enabled} if enabled else None
        disabled_set = {name.lower() for name in disabled}
        return AnalyzerRegistry(
            analyzer
            for analyzer in self._analyzers
            if (enabled_set is None or analyzer.name.lower() in enabled_set)
            and analyzer.name.lower() not in disabled_set
        )

    def _context_provider(self) -> Optional[Any]:
        for analyzer in self._analyzers:
            if provides_context(analyzer):
                return analyzer
        return None

    def __len__(self) -> int:
        return len(self._analyzers)

    def __iter__(self):
        return iter(self.analyzers)

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and self.get(name) is not None


def builtin_analyzers(config: ReadmeInfoConfig | None = None) -> List[Analyzer]:
    """Instantiate the built-in analyzers in pipeline order."""
    settings = config.commands if config is not None else None
    return [
        LanguageDetector(),
        CommandExtractor(settings),
        DependencyExtractor(),
        TestingDetector(),
        MetadataExtractor(),
    ]


def discover_analyzers() -> List[Any]:
    """Load analyzers published under the ``readmeinfo.analyzers`` entry point group."""
    analyzers: List[Any] = []
    for entry in _iter_entry_points():
        try:
            loaded = entry.load()
        except Exception as exc:  # pragma: no cover - defensive guard
            raise RuntimeError(f"Failed to load analyzer entry point '{entry.name}': {exc}") from exc
        analyzers.append(_coerce_analyzer(loaded))
    return analyzers


def default_registry(
    config: ReadmeInfoConfig | None = None,
    *,
    include_plugins: bool = True,
    extra: Iterable[Any] = (),
) -> AnalyzerRegistry:
    """Build the registry used by :class:`~readmeinfo.parser.ReadmeParser`.

    Built-ins come first, then entry point plugins, then ``extra``. Plugins
    whose name clashes with an already registered analyzer are skipped.
    Analyzer selection from ``config`` is applied last.
    """
    registry = AnalyzerRegistry(builtin_analyzers(config))
    if include_plugins:
        for plugin in discover_analyzers():
            if plugin.name in registry:
                logger.warning("Skipping plugin analyzer '%s': name already registered", plugin.name)
                continue
            registry.register(plugin)
    for analyzer in extra:
        registry.register(analyzer)

    if config is not None:
        settings = config.analyzers
        if settings.enabled or settings.disabled:
            registry = registry.select(settings.enabled or None, settings.disabled)
    return registry


def _coerce_analyzer(obj: object) -> Any:
    try:
        if isinstance(obj, type):
            obj = _instantiate(obj)
        elif callable(obj) and not hasattr(obj, "analyze"):
            obj = obj()
        validate_analyzer(obj)
    except RegistrationError as exc:
        raise TypeError(f"Analyzer entry point did not produce a valid analyzer: {exc}") from exc
    return obj


def _iter_entry_points() -> Iterable[importlib_metadata.EntryPoint]:
    try:
        entry_points = importlib_metadata.entry_points()
    except Exception:  # pragma: no cover - defensive guard
        return []
    return entry_points.select(group=_ENTRY_POINT_GROUP)


__all__ = [
    "Analyzer",
    "AnalyzerRegistry",
    "CommandExtractor",
    "DependencyExtractor",
    "LanguageDetector",
    "MetadataExtractor",
    "TestingDetector",
    "analyzer_kind",
    "builtin_analyzers",
    "default_registry",
    "discover_analyzers",
    "provides_context",
    "validate_analyzer",
]
