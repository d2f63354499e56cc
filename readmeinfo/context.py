"""Immutable, queryable index over detected language contexts."""

from __future__ import annotations

from bisect import bisect_right
from typing import Iterable, Iterator, List, Optional, Tuple

from .models import LanguageContext, SourceRange


def _rank(context: LanguageContext) -> Tuple[float, int, int, str]:
    return (
        -context.confidence,
        int(context.tier),
        context.source_range.start_line,
        context.language,
    )


class ContextIndex:
    """Point and range queries over a fixed set of :class:`LanguageContext` spans."""

    __slots__ = ("_contexts", "_starts")

    def __init__(self, contexts: Iterable[LanguageContext] = ()) -> None:
        ordered = sorted(
            contexts,
            key=lambda ctx: (
                ctx.source_range.start_line,
                ctx.source_range.end_line,
                int(ctx.tier),
                ctx.language,
            ),
        )
        self._contexts: Tuple[LanguageContext, ...] = tuple(ordered)
        self._starts: Tuple[int, ...] = tuple(ctx.source_range.start_line for ctx in ordered)

    def __len__(self) -> int:
        return len(self._contexts)

    def __iter__(self) -> Iterator[LanguageContext]:
        return iter(self._contexts)

    def __bool__(self) -> bool:
        return bool(self._contexts)

    def at(self, line: int) -> List[LanguageContext]:
        """Return contexts covering ``line``, most confident first."""
        upper = bisect_right(self._starts, line)
        hits = [ctx for ctx in self._contexts[:upper] if ctx.source_range.end_line >= line]
        return sorted(hits, key=_rank)

    def best_at(self, line: int) -> Optional[LanguageContext]:
        hits = self.at(line)
        return hits[0] if hits else None

    def overlapping(self, source_range: SourceRange) -> List[LanguageContext]:
        upper = bisect_right(self._starts, source_range.end_line)
        hits = [
            ctx for ctx in self._contexts[:upper] if ctx.source_range.overlaps(source_range)
        ]
        return sorted(hits, key=_rank)

    def languages(self) -> List[str]:
        return sorted({ctx.language for ctx in self._contexts})


def build(contexts: Iterable[LanguageContext]) -> ContextIndex:
    """Build the index consumed by context-aware analyzers."""
    return ContextIndex(contexts)


__all__ = ["ContextIndex", "build"]
