"""Line-oriented markdown parser producing an addressable block tree."""

from __future__ import annotations

import re
from typing import List, Optional, Tuple

from .errors import ParseError
from .logging import get_logger
from .models import Block, BlockKind, DocumentTree, ParseWarning

UNTERMINATED_FENCE = "UNTERMINATED_CODE_FENCE"

_FENCE_OPEN = re.compile(r"^( *)(`{3,}|~{3,})[ \t]*(.*)$")
_ATX_HEADING = re.compile(r"^( {0,3})(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
_SETEXT_UNDERLINE = re.compile(r"^ {0,3}(=+|-+)[ \t]*$")
_LIST_ITEM = re.compile(r"^( {0,3})([-*+]|\d{1,9}[.)])([ \t]+|$)")


class DocumentParser:
    """Turns raw markdown into headings, paragraphs and fenced code blocks.

    Only the subset needed to locate code, headings and prose is supported.
    Malformed input degrades: an unterminated fence is closed at the end of
    the document and reported as a warning on the returned tree.
    """

    def __init__(self) -> None:
        self.logger = get_logger("document")

    def parse(self, text: str | bytes) -> DocumentTree:
        source = self._decode(text)
        lines = self._split_lines(source)

        blocks: List[Block] = []
        warnings: List[ParseWarning] = []
        paragraph: List[str] = []
        paragraph_start = 0
        paragraph_column = 1

        fence: Optional[Tuple[str, int, int, str, int]] = None
        fence_body: List[str] = []
        # content indent of the innermost open list item
        list_indent: Optional[int] = None

        def flush_paragraph() -> None:
            nonlocal paragraph
            if paragraph:
                blocks.append(
                    Block(
                        kind=BlockKind.PARAGRAPH,
                        text="\n".join(paragraph),
                        start_line=paragraph_start,
                        end_line=paragraph_start + len(paragraph) - 1,
                        column=paragraph_column,
                    )
                )
                paragraph = []

        for number, line in enumerate(lines, start=1):
            if fence is not None:
                marker, length, start, info, column = fence
                if self._closes_fence(line, marker, length, column - 1):
                    blocks.append(
                        self._code_block(fence_body, start, number, info, column, closed=True)
                    )
                    fence = None
                    fence_body = []
                else:
                    fence_body.append(_dedent(line, column - 1))
                continue

            fence_match = _FENCE_OPEN.match(line)
            if fence_match and self._opens_fence(fence_match, list_indent):
                flush_paragraph()
                indent, marker, info = fence_match.groups()
                fence = (marker[0], len(marker), number, info.strip(), len(indent) + 1)
                continue

            heading_match = _ATX_HEADING.match(line)
            if heading_match:
                flush_paragraph()
                list_indent = None
                indent, hashes, title = heading_match.groups()
                blocks.append(
                    Block(
                        kind=BlockKind.HEADING,
                        text=(title or "").strip(),
                        start_line=number,
                        end_line=number,
                        column=len(indent) + 1,
                        level=len(hashes),
                    )
                )
                continue

            if not line.strip():
                flush_paragraph()
                continue

            item = _LIST_ITEM.match(line)
            if item:
                list_indent = len(item.group(1)) + len(item.group(2)) + max(1, len(item.group(3)))
            elif list_indent is not None and not line.startswith(" "):
                list_indent = None

            underline = _SETEXT_UNDERLINE.match(line)
            if underline and paragraph:
                level = 1 if underline.group(1).startswith("=") else 2
                blocks.append(
                    Block(
                        kind=BlockKind.HEADING,
                        text=" ".join(part.strip() for part in paragraph),
                        start_line=paragraph_start,
                        end_line=number,
                        column=paragraph_column,
                        level=level,
                    )
                )
                paragraph = []
                continue
            if underline and underline.group(1).startswith("-"):
                # thematic break
                continue

            if not paragraph:
                paragraph_start = number
                paragraph_column = len(line) - len(line.lstrip()) + 1
            paragraph.append(line)

        if fence is not None:
            _, _, start, info, column = fence
            end = max(start, len(lines))
            blocks.append(self._code_block(fence_body, start, end, info, column, closed=False))
            message = f"Code fence opened at line {start} is never closed; closed at end of document"
            warnings.append(ParseWarning(code=UNTERMINATED_FENCE, message=message, line=start))
            self.logger.debug(message)
        flush_paragraph()

        tree = DocumentTree(blocks=tuple(blocks), line_count=len(lines), warnings=tuple(warnings))
        self.logger.debug(
            "Parsed %d lines into %d blocks (%d code)",
            tree.line_count,
            len(tree.blocks),
            len(tree.code_blocks()),
        )
        return tree

    @staticmethod
    def _decode(text: str | bytes) -> str:
        if isinstance(text, (bytes, bytearray)):
            try:
                text = bytes(text).decode("utf-8-sig")
            except UnicodeDecodeError as exc:
                raise ParseError(f"Document is not valid UTF-8: {exc}") from exc
        if not isinstance(text, str):
            raise ParseError(f"Expected document text, got {type(text).__name__}")
        if "\x00" in text:
            raise ParseError("Document contains NUL bytes and looks like binary data")
        return text.lstrip("\ufeff")

    @staticmethod
    def _split_lines(text: str) -> List[str]:
        normalised = text.replace("\r\n", "\n").replace("\r", "\n")
        if not normalised:
            return []
        lines = normalised.split("\n")
        if lines[-1] == "":
            lines.pop()
        return lines

    @staticmethod
    def _opens_fence(match: re.Match, list_indent: Optional[int]) -> bool:
        indent, marker, info = match.groups()
        if marker.startswith("`") and "`" in info:
            return False
        limit = 3 if list_indent is None else list_indent + 3
        return len(indent) <= limit

    @staticmethod
    def _closes_fence(line: str, marker: str, length: int, indent: int = 0) -> bool:
        stripped = line.strip()
        if len(line) - len(line.lstrip(" ")) > indent + 3 or not stripped:
            return False
        run = len(stripped) - len(stripped.lstrip(marker))
        return run >= length and not stripped[run:].strip()

    @staticmethod
    def _code_block(
        body: List[str], start: int, end: int, info: str, column: int, *, closed: bool
    ) -> Block:
        tag = info.split()[0] if info else ""
        return Block(
            kind=BlockKind.CODE,
            text="\n".join(body),
            start_line=start,
            end_line=end,
            column=column,
            tag=tag,
            info=info,
            closed=closed,
        )


def _dedent(line: str, indent: int) -> str:
    """Remove up to ``indent`` leading spaces, as fenced content is relative to its opener."""
    spaces = len(line) - len(line.lstrip(" "))
    return line[min(spaces, indent):]


def parse_document(text: str | bytes) -> DocumentTree:
    """Parse ``text`` with a fresh :class:`DocumentParser`."""
    return DocumentParser().parse(text)


__all__ = ["DocumentParser", "UNTERMINATED_FENCE", "parse_document"]
